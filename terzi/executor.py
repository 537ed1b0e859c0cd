"""terzi executor - HTTP request execution."""

import logging
import time
from typing import Any

import requests

from terzi.config import Config
from terzi.errors import TimedOut, TransportError
from terzi.request import SavedRequest
from terzi.utils import format_bytes, format_error_chain

logger = logging.getLogger(__name__)


class Response:
    """Result of an executed HTTP request."""

    def __init__(
        self,
        status: int,
        headers: dict[str, str] | None = None,
        body: str = "",
        duration: float = 0.0,
        size: int = 0,
        url: str = "",
        method: str = "GET",
    ):
        self.status = status
        self.headers: dict[str, str] = headers or {}
        self.body = body
        self.duration = duration  # seconds
        self.size = size  # body bytes
        self.url = url
        self.method = method

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)

    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    def is_server_error(self) -> bool:
        return 500 <= self.status < 600

    def content_type(self) -> str | None:
        for k, v in self.headers.items():
            if k.lower() == "content-type":
                return v
        return None

    def is_json(self) -> bool:
        return "application/json" in (self.content_type() or "")

    def is_xml(self) -> bool:
        ct = self.content_type() or ""
        return "application/xml" in ct or "text/xml" in ct

    def is_html(self) -> bool:
        return "text/html" in (self.content_type() or "")

    def size_human(self) -> str:
        return format_bytes(self.size)

    def duration_human(self) -> str:
        ms = self.duration_ms
        if ms < 1000:
            return f"{ms}ms"
        return f"{self.duration:.2f}s"


def resolve_timeout(request: SavedRequest, config: Config) -> int:
    """Request-level timeout, falling back to the configured default."""
    return request.timeout or config.general.default_timeout


def build_request_kwargs(request: SavedRequest, config: Config) -> dict[str, Any]:
    headers = dict(request.headers)
    if not any(k.lower() == "user-agent" for k in headers):
        headers["User-Agent"] = config.network.user_agent
    if not config.network.compression:
        headers.setdefault("Accept-Encoding", "identity")
    if not config.network.keep_alive:
        headers.setdefault("Connection", "close")

    follow = request.follow_redirects
    if follow is None:
        follow = config.general.follow_redirects

    kwargs: dict[str, Any] = {
        "method": request.method.upper(),
        "url": request.url,
        "headers": headers,
        "data": request.body.encode("utf-8") if request.body is not None else None,
        "timeout": resolve_timeout(request, config),
        "allow_redirects": follow,
        "verify": config.network.verify_ssl,
    }
    if config.network.proxy_url:
        kwargs["proxies"] = {"http": config.network.proxy_url, "https": config.network.proxy_url}
    return kwargs


def execute_request(
    request: SavedRequest,
    config: Config | None = None,
    session: requests.Session | None = None,
) -> Response:
    """Send a saved request and return the response.

    - Timeout comes from the request, else general.default_timeout
    - Redirect policy comes from the request, else general.follow_redirects
    - Raises TimedOut when the timeout elapses, TransportError for any other
      network failure. Never retries.
    """
    config = config or Config.defaults()
    kwargs = build_request_kwargs(request, config)

    owns_session = session is None
    if owns_session:
        session = requests.Session()
    session.max_redirects = config.network.max_redirects

    logger.debug("%s %s (timeout=%ss)", kwargs["method"], kwargs["url"], kwargs["timeout"])
    try:
        start = time.monotonic()
        resp = session.request(**kwargs)
        elapsed = time.monotonic() - start
        body = resp.text
        size = len(resp.content)
    except requests.exceptions.Timeout as e:
        raise TimedOut(kwargs["timeout"]) from e
    except requests.exceptions.ConnectionError as e:
        raise TransportError(f"Connection error: {e}") from e
    except requests.exceptions.RequestException as e:
        raise TransportError(f"Request failed: {e}") from e
    finally:
        if owns_session:
            session.close()

    logger.debug(
        "%s %s -> %s in %.0fms",
        kwargs["method"],
        kwargs["url"],
        resp.status_code,
        elapsed * 1000,
    )
    return Response(
        status=resp.status_code,
        headers=dict(resp.headers),
        body=body,
        duration=elapsed,
        size=size,
        url=kwargs["url"],
        method=kwargs["method"],
    )


def execute_and_record(request: SavedRequest, storage, config: Config) -> Response:
    """Execute a request and log the outcome to history.

    Transport errors are written to history as error entries before being
    re-raised. Nothing is recorded when general.save_history is off.
    """
    record = config.general.save_history
    try:
        response = execute_request(request, config)
    except TransportError as e:
        if record:
            storage.add_error_to_history(request, format_error_chain(e))
        raise
    if record:
        storage.add_to_history(request, response)
    return response
