"""terzi validation - URL, method, header, JSON and timeout checks."""

import json
from urllib.parse import urlsplit

from terzi.errors import InvalidInput

VALID_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

MIN_TIMEOUT = 1
MAX_TIMEOUT = 3600


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def _loads_strict(text: str):
    return json.loads(text, parse_constant=_reject_constant)


def is_valid_url(url: str) -> bool:
    """True if url is an absolute URI with both a scheme and a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url)
        # .port raises ValueError for out-of-range or non-numeric ports
        parts.port  # noqa: B018
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.hostname)


def is_valid_method(method: str) -> bool:
    return isinstance(method, str) and method.upper() in VALID_METHODS


def is_valid_header_name(name: str) -> bool:
    return bool(name) and all(c.isascii() and c not in ":\r\n" for c in name)


def is_valid_header_value(value: str) -> bool:
    return "\r" not in value and "\n" not in value


def is_valid_json(text: str) -> bool:
    try:
        _loads_strict(text)
    except (TypeError, ValueError):
        return False
    return True


def is_valid_email(email: str) -> bool:
    return "@" in email and len(email.split("@")) == 2


def validate_url(url: str) -> str:
    if not is_valid_url(url):
        raise InvalidInput(
            f"Invalid URL: {url}. Please provide a valid URL starting with http:// or https://",
        )
    return url


def validate_method(method: str) -> str:
    """Return the upper-cased method or raise InvalidInput."""
    if not is_valid_method(method):
        raise InvalidInput(f"Invalid HTTP method: {method}")
    return method.upper()


def validate_header(name: str, value: str) -> tuple[str, str]:
    if not is_valid_header_name(name):
        raise InvalidInput(
            f"Invalid header name: '{name}'. "
            "Header names must be ASCII and cannot contain ':' or newlines",
        )
    if not is_valid_header_value(value):
        raise InvalidInput(
            f"Invalid header value: '{value}'. Header values cannot contain newlines",
        )
    return name, value


def validate_json(text: str) -> str:
    try:
        _loads_strict(text)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Invalid JSON: {e}") from e
    return text


def validate_timeout(timeout) -> int:
    """Timeouts are whole seconds in [1, 3600]."""
    if isinstance(timeout, bool) or not isinstance(timeout, int):
        raise InvalidInput(f"Timeout must be an integer, got {timeout!r}")
    if timeout < MIN_TIMEOUT:
        raise InvalidInput("Timeout must be at least 1 second")
    if timeout > MAX_TIMEOUT:
        raise InvalidInput("Timeout cannot exceed 1 hour")
    return timeout
