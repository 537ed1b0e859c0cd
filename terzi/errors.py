"""terzi errors - exception taxonomy shared by core and CLI."""


class TerziError(Exception):
    """Base class for every error terzi raises on purpose."""


class InvalidInput(TerziError):
    """Malformed URL, method, header, JSON, timeout or import document."""


class UnsupportedAuthType(TerziError):
    def __init__(self, scheme: str):
        super().__init__(f"Unsupported auth type: {scheme}")
        self.scheme = scheme


class MissingRequiredVariable(TerziError):
    def __init__(self, name: str):
        super().__init__(f"Required variable '{name}' not provided")
        self.name = name


class UnresolvedVariable(TerziError):
    def __init__(self, token: str):
        super().__init__(f"Unresolved variable: {token}")
        self.token = token


class NotFound(TerziError):
    """Unknown saved request, collection, environment or config key."""

    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind.capitalize()} '{name}' not found")
        self.kind = kind
        self.name = name


class TransportError(TerziError):
    """Network-level failure reported by the HTTP client."""


class TimedOut(TransportError):
    def __init__(self, timeout: float):
        super().__init__(f"Request timed out after {timeout}s")
        self.timeout = timeout


class PersistenceError(TerziError):
    """Writing the storage document or config file failed."""
