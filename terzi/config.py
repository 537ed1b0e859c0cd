"""terzi config - typed TOML configuration with a registry of dotted keys."""

import datetime
import logging
import tomllib
from dataclasses import asdict, dataclass, field
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Callable

import platformdirs
import tomli_w

from terzi.errors import InvalidInput, NotFound, PersistenceError
from terzi.validation import is_valid_url

logger = logging.getLogger(__name__)

CONFIG_DIR = platformdirs.user_config_path("terzi")
CONFIG_FILE_NAME = "config.toml"

DEFAULT_EDITOR = "vim"


def terzi_version() -> str:
    try:
        return version("terzi")
    except PackageNotFoundError:
        return "0.1.0"


def default_config_path() -> Path:
    return CONFIG_DIR / CONFIG_FILE_NAME


# ── Sections ─────────────────────────────────────────────────────────────


@dataclass
class GeneralConfig:
    default_timeout: int = 30
    follow_redirects: bool = True
    save_history: bool = True
    max_history_entries: int = 1000
    auto_save_requests: bool = False
    check_updates: bool = True


@dataclass
class OutputConfig:
    default_format: str = "auto"
    pretty_print: bool = True
    show_headers: bool = False
    show_timing: bool = True
    show_size: bool = True
    syntax_highlighting: bool = True
    color_scheme: str = "dark"
    max_body_length: int | None = 10_000


@dataclass
class NetworkConfig:
    user_agent: str = field(default_factory=lambda: f"terzi/{terzi_version()}")
    proxy_url: str | None = None
    verify_ssl: bool = True
    connection_timeout: int = 10
    read_timeout: int = 30
    max_redirects: int = 10
    keep_alive: bool = True
    compression: bool = True


@dataclass
class StoredToken:
    """An opaque credential. terzi never refreshes it."""

    token_type: str
    value: str
    expires_at: datetime.datetime | None = None
    refresh_token: str | None = None
    scopes: list[str] = field(default_factory=list)

    def to_auth_spec(self) -> str:
        return f"{self.token_type}:{self.value}"


@dataclass
class AuthConfig:
    default_auth_type: str | None = None
    stored_tokens: dict[str, StoredToken] = field(default_factory=dict)
    auto_refresh_tokens: bool = True


@dataclass
class UiConfig:
    theme: str = "default"
    editor: str = DEFAULT_EDITOR
    confirm_dangerous_operations: bool = True
    show_welcome_message: bool = True
    auto_complete: bool = True
    fuzzy_search: bool = True
    table_style: str = "rounded"


# ── Key registry ─────────────────────────────────────────────────────────


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise InvalidInput("Invalid boolean value")


def _parse_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise InvalidInput("Invalid number value") from e


def _parse_optional_int(value: str) -> int | None:
    if value.strip() in ("", "none"):
        return None
    return _parse_int(value)


def _parse_proxy(value: str) -> str | None:
    if value.strip() in ("", "none"):
        return None
    if not is_valid_url(value):
        raise InvalidInput("Invalid proxy URL")
    return value


def _parse_str(value: str) -> str:
    return value


@dataclass(frozen=True)
class ConfigKey:
    section: str
    name: str
    parse: Callable[[str], Any]
    choices: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.section}.{self.name}"

    def convert(self, raw: str) -> Any:
        if self.choices and raw not in self.choices:
            label = self.name.replace("_", " ").replace("default ", "")
            raise InvalidInput(f"Invalid {label}. Valid options: {', '.join(self.choices)}")
        return self.parse(raw)


CONFIG_KEYS: dict[str, ConfigKey] = {
    k.key: k
    for k in (
        ConfigKey("general", "default_timeout", _parse_int),
        ConfigKey("general", "follow_redirects", _parse_bool),
        ConfigKey("general", "save_history", _parse_bool),
        ConfigKey("general", "max_history_entries", _parse_int),
        ConfigKey("general", "auto_save_requests", _parse_bool),
        ConfigKey("general", "check_updates", _parse_bool),
        ConfigKey("output", "default_format", _parse_str, ("auto", "json", "yaml", "table", "raw")),
        ConfigKey("output", "pretty_print", _parse_bool),
        ConfigKey("output", "show_headers", _parse_bool),
        ConfigKey("output", "show_timing", _parse_bool),
        ConfigKey("output", "show_size", _parse_bool),
        ConfigKey("output", "syntax_highlighting", _parse_bool),
        ConfigKey("output", "color_scheme", _parse_str, ("dark", "light", "auto")),
        ConfigKey("output", "max_body_length", _parse_optional_int),
        ConfigKey("network", "user_agent", _parse_str),
        ConfigKey("network", "proxy_url", _parse_proxy),
        ConfigKey("network", "verify_ssl", _parse_bool),
        ConfigKey("network", "connection_timeout", _parse_int),
        ConfigKey("network", "read_timeout", _parse_int),
        ConfigKey("network", "max_redirects", _parse_int),
        ConfigKey("network", "keep_alive", _parse_bool),
        ConfigKey("network", "compression", _parse_bool),
        ConfigKey("ui", "theme", _parse_str, ("default", "dark", "light", "minimal")),
        ConfigKey("ui", "editor", _parse_str),
        ConfigKey("ui", "confirm_dangerous_operations", _parse_bool),
        ConfigKey("ui", "show_welcome_message", _parse_bool),
        ConfigKey("ui", "auto_complete", _parse_bool),
        ConfigKey("ui", "fuzzy_search", _parse_bool),
        ConfigKey("ui", "table_style", _parse_str, ("ascii", "rounded", "modern", "minimal")),
    )
}


def _format_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _drop_none(obj: Any) -> Any:
    """TOML has no null; absent keys mean None."""
    if isinstance(obj, dict):
        return {k: _drop_none(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, list):
        return [_drop_none(v) for v in obj]
    return obj


def _overlay_section(config: "Config", section: str, data: Any) -> None:
    """Apply known keys of one file section, keeping the default for any
    value that fails to parse or validate."""
    if not isinstance(data, dict):
        return
    target = getattr(config, section)
    for name, raw in data.items():
        spec = CONFIG_KEYS.get(f"{section}.{name}")
        if spec is None:
            continue
        previous = getattr(target, name)
        try:
            if not isinstance(raw, (str, int, float)):
                raise InvalidInput(f"Unsupported value type {type(raw).__name__}")
            setattr(target, name, spec.convert(_format_value(raw)))
            config.validate()
        except InvalidInput as e:
            setattr(target, name, previous)
            logger.warning("Ignoring %s = %r from config file (%s)", spec.key, raw, e)


@dataclass
class Config:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    ui: UiConfig = field(default_factory=UiConfig)
    path: Path | None = field(default=None, compare=False, repr=False)

    @classmethod
    def defaults(cls, editor: str | None = None, path: Path | None = None) -> "Config":
        config = cls(path=path)
        if editor:
            config.ui.editor = editor
        return config

    @classmethod
    def load(cls, path: str | Path | None = None, editor: str | None = None) -> "Config":
        """Read config.toml, falling back to defaults if it is missing or
        unparseable. editor is the default for ui.editor when the file does
        not set one."""
        path = Path(path) if path else default_config_path()
        config = cls.defaults(editor=editor, path=path)
        if not path.exists():
            return config
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Could not parse %s (%s); using default configuration", path, e)
            return config
        return cls.from_dict(data, base=config)

    @classmethod
    def from_dict(cls, data: dict, base: "Config | None" = None) -> "Config":
        config = base or cls()
        for section in ("general", "output", "network", "ui"):
            _overlay_section(config, section, data.get(section))
        auth = data.get("auth")
        if isinstance(auth, dict):
            config.auth.default_auth_type = auth.get("default_auth_type")
            config.auth.auto_refresh_tokens = auth.get("auto_refresh_tokens", True)
            for name, tok in (auth.get("stored_tokens") or {}).items():
                try:
                    config.auth.stored_tokens[name] = StoredToken(**tok)
                except TypeError:
                    logger.warning("Ignoring malformed stored token %r", name)
        return config

    def to_dict(self) -> dict:
        return {
            "general": asdict(self.general),
            "output": asdict(self.output),
            "network": asdict(self.network),
            "auth": asdict(self.auth),
            "ui": asdict(self.ui),
        }

    def save(self, path: str | Path | None = None) -> Path:
        target = Path(path) if path else (self.path or default_config_path())
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                tomli_w.dump(_drop_none(self.to_dict()), f)
        except OSError as e:
            raise PersistenceError(f"Failed to write {target}: {e}") from e
        self.path = target
        logger.debug("Saved configuration to %s", target)
        return target

    # ── Dotted key access ────────────────────────────────────────────────

    @staticmethod
    def list_all_keys() -> list[str]:
        return list(CONFIG_KEYS)

    @staticmethod
    def _lookup(key: str) -> ConfigKey:
        try:
            return CONFIG_KEYS[key]
        except KeyError:
            raise NotFound("configuration key", key) from None

    def get_value(self, key: str) -> str | None:
        spec = self._lookup(key)
        return _format_value(getattr(getattr(self, spec.section), spec.name))

    def set_value(self, key: str, raw: str) -> Any:
        spec = self._lookup(key)
        value = spec.convert(raw)
        setattr(getattr(self, spec.section), spec.name, value)
        return value

    def update_value(self, key: str, raw: str) -> Any:
        """set_value then validate, restoring the old value if either fails."""
        spec = self._lookup(key)
        section = getattr(self, spec.section)
        previous = getattr(section, spec.name)
        value = self.set_value(key, raw)
        try:
            self.validate()
        except InvalidInput:
            setattr(section, spec.name, previous)
            raise
        return value

    def reset_to_defaults(self, editor: str | None = None) -> None:
        fresh = Config.defaults(editor=editor)
        self.general, self.output, self.network = fresh.general, fresh.output, fresh.network
        self.auth, self.ui = fresh.auth, fresh.ui

    # ── Tokens ───────────────────────────────────────────────────────────

    def save_token(self, name: str, token: StoredToken) -> None:
        self.auth.stored_tokens[name] = token

    def get_token(self, name: str) -> StoredToken | None:
        return self.auth.stored_tokens.get(name)

    def delete_token(self, name: str) -> bool:
        return self.auth.stored_tokens.pop(name, None) is not None

    def list_tokens(self) -> list[str]:
        return sorted(self.auth.stored_tokens)

    # ── Validation ───────────────────────────────────────────────────────

    def validate(self) -> None:
        g, n = self.general, self.network
        if not 1 <= g.default_timeout <= 3600:
            raise InvalidInput("Default timeout must be between 1 and 3600 seconds")
        if not 1 <= n.connection_timeout <= 300:
            raise InvalidInput("Connection timeout must be between 1 and 300 seconds")
        if not 1 <= n.read_timeout <= 3600:
            raise InvalidInput("Read timeout must be between 1 and 3600 seconds")
        if n.max_redirects > 50:
            raise InvalidInput("Max redirects cannot exceed 50")
        if not 1 <= g.max_history_entries <= 10000:
            raise InvalidInput("Max history entries must be between 1 and 10000")
        if n.proxy_url and not is_valid_url(n.proxy_url):
            raise InvalidInput(f"Invalid proxy URL: {n.proxy_url}")

    def should_use_colors(self, is_tty: bool) -> bool:
        scheme = self.output.color_scheme
        if scheme == "auto":
            return is_tty
        return scheme in ("dark", "light")
