"""terzi utils - small formatting, masking and retry helpers."""

import json
import re
import time
from typing import Callable, TypeVar
from urllib.parse import urlsplit, urlunsplit

from terzi.errors import InvalidInput

T = TypeVar("T")

_DEFAULT_PORTS = {"http": 80, "https": 443}

_SENSITIVE_HEADER_RE = re.compile(
    r"authorization|api-key|access[_-]?token|bearer|session|cookie|password|secret",
    re.IGNORECASE,
)
_SENSITIVE_BODY_RE = re.compile(
    r'"(password|token|secret|api_key|access_token)"\s*:\s*"([^"]*)"',
)


def normalize_url(url: str) -> str:
    """Lower-case scheme and host, drop a default port, use "/" for an empty path."""
    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError as e:
        raise InvalidInput(f"Invalid URL: {url}") from e
    if not parts.scheme or not parts.hostname:
        raise InvalidInput(f"Invalid URL: {url}")
    scheme = parts.scheme.lower()
    netloc = parts.hostname
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def extract_domain(url: str) -> str:
    hostname = urlsplit(url).hostname
    if not hostname:
        raise InvalidInput(f"Invalid URL: {url}")
    return hostname


def truncate_string(s: str, max_length: int) -> str:
    if len(s) <= max_length:
        return s
    return s[: max(max_length - 3, 0)] + "..."


def format_bytes(size: int) -> str:
    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{size} B"
    return f"{value:.1f} {units[unit]}"


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.2f}s"
    return f"{ms // 60_000}m {(ms % 60_000) // 1000}s"


def mask_value(value: str) -> str:
    """Keep the first and last two characters of anything longer than 4."""
    if len(value) <= 4:
        return "*" * len(value)
    return f"{value[:2]}****{value[-2:]}"


def is_sensitive_header(name: str) -> bool:
    return bool(_SENSITIVE_HEADER_RE.search(name))


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: mask_value(v) if is_sensitive_header(k) else v for k, v in headers.items()}


def mask_sensitive_body(body: str) -> str:
    """Mask string values of well-known secret fields in a JSON-ish body."""
    return _SENSITIVE_BODY_RE.sub(
        lambda m: f'"{m.group(1)}": "{mask_value(m.group(2))}"',
        body,
    )


def guess_content_type(body: str) -> str:
    trimmed = body.strip()
    if trimmed.startswith(("{", "[")):
        try:
            json.loads(trimmed)
            return "application/json"
        except ValueError:
            pass
    if trimmed.startswith("<"):
        return "application/xml"
    if "=" in trimmed and "\n" not in trimmed:
        return "application/x-www-form-urlencoded"
    return "text/plain"


def format_error_chain(error: BaseException) -> str:
    """Join an exception and its causes: 'outer → inner → root'."""
    messages: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current)
        if text and text not in messages:
            messages.append(text)
        current = current.__cause__
    return " → ".join(messages)


def retry_with_backoff(
    operation: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 0.1,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call operation until it succeeds, sleeping with exponential backoff.

    Not used by the default request flow; the last error is re-raised once
    max_attempts is reached.
    """
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except retry_on:
            if attempt == max_attempts:
                raise
            sleep(delay)
            delay = min(delay * backoff_multiplier, max_delay)
    raise ValueError("max_attempts must be at least 1")
