"""terzi request - saved request model, collections and the request builder."""

import base64
import datetime
import uuid
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from terzi.errors import InvalidInput, UnsupportedAuthType
from terzi.validation import (
    is_valid_json,
    validate_json,
    validate_method,
    validate_timeout,
    validate_url,
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _bump(previous: datetime.datetime) -> datetime.datetime:
    """Return now, but never earlier than previous."""
    now = utcnow()
    return now if now >= previous else previous


def parse_timestamp(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    parsed = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass
class SavedRequest:
    """A named, persisted description of an HTTP call."""

    name: str
    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    timeout: int | None = None
    follow_redirects: bool | None = None
    tags: list[str] = field(default_factory=list)
    description: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime | None = None

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    def touch(self) -> None:
        self.updated_at = _bump(self.updated_at)

    def add_header(self, key: str, value: str) -> None:
        self.headers[key] = value
        self.touch()

    def set_body(self, body: str | None) -> None:
        self.body = body
        self.touch()

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)
            self.touch()

    def remove_tag(self, tag: str) -> None:
        self.tags = [t for t in self.tags if t != tag]
        self.touch()

    def copy(self) -> "SavedRequest":
        return SavedRequest.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "timeout": self.timeout,
            "follow_redirects": self.follow_redirects,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "tags": list(self.tags),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SavedRequest":
        created = parse_timestamp(data["created_at"]) if data.get("created_at") else utcnow()
        updated = parse_timestamp(data["updated_at"]) if data.get("updated_at") else created
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            name=data.get("name", ""),
            url=data["url"],
            method=data["method"],
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            timeout=data.get("timeout"),
            follow_redirects=data.get("follow_redirects"),
            created_at=created,
            updated_at=updated,
            tags=list(data.get("tags") or []),
            description=data.get("description"),
        )


class RequestBuilder:
    """Fluent builder that validates as early as possible.

    The constructor rejects bad URLs and methods; ``auth`` and ``json_body``
    reject malformed input without touching the request under construction.
    Every setter returns the builder so calls can be chained::

        req = (
            RequestBuilder("https://api.example.com/users", "post")
            .auth("bearer:abc")
            .json_body('{"name": "test"}')
            .build()
        )
    """

    def __init__(self, url: str, method: str = "GET"):
        validate_url(url)
        self._request = SavedRequest(name="", url=url, method=validate_method(method))

    def name(self, name: str) -> "RequestBuilder":
        self._request.name = name
        return self

    def header(self, key: str, value: str) -> "RequestBuilder":
        self._request.headers[key] = value
        return self

    def headers(self, headers: dict[str, str]) -> "RequestBuilder":
        self._request.headers.update(headers)
        return self

    def auth(self, spec: str) -> "RequestBuilder":
        """Apply an auth spec.

        - ``bearer:<token>``          -> Authorization: Bearer <token>
        - ``basic:<user>:<pass>``     -> Authorization: Basic <b64>
        - ``api-key:<header>:<value>`` -> <header>: <value>
        - ``api-key:<value>``         -> X-API-Key: <value>
        - ``<token>`` (no colon)      -> bearer token
        """
        if ":" not in spec:
            self._request.headers["Authorization"] = f"Bearer {spec}"
            return self

        scheme, credentials = spec.split(":", 1)
        scheme = scheme.lower()

        if scheme == "bearer":
            self._request.headers["Authorization"] = f"Bearer {credentials}"
        elif scheme == "basic":
            if ":" not in credentials:
                raise InvalidInput("Basic auth requires username:password format")
            encoded = base64.b64encode(credentials.encode()).decode()
            self._request.headers["Authorization"] = f"Basic {encoded}"
        elif scheme in ("api-key", "apikey"):
            if ":" in credentials:
                header_name, value = credentials.split(":", 1)
                self._request.headers[header_name] = value
            else:
                self._request.headers["X-API-Key"] = credentials
        else:
            raise UnsupportedAuthType(scheme)
        return self

    def json_body(self, text: str) -> "RequestBuilder":
        validate_json(text)
        self._request.headers["Content-Type"] = "application/json"
        self._request.body = text
        return self

    def form_body(self, form_data: dict[str, str]) -> "RequestBuilder":
        encoded = "&".join(
            f"{quote(str(k), safe='')}={quote(str(v), safe='')}" for k, v in form_data.items()
        )
        self._request.headers["Content-Type"] = "application/x-www-form-urlencoded"
        self._request.body = encoded
        return self

    def raw_body(self, text: str) -> "RequestBuilder":
        self._request.body = text
        return self

    def timeout(self, seconds: int) -> "RequestBuilder":
        self._request.timeout = seconds
        return self

    def follow_redirects(self, follow: bool) -> "RequestBuilder":
        self._request.follow_redirects = follow
        return self

    def description(self, description: str) -> "RequestBuilder":
        self._request.description = description
        return self

    def tag(self, tag: str) -> "RequestBuilder":
        if tag not in self._request.tags:
            self._request.tags.append(tag)
        return self

    def tags(self, tags) -> "RequestBuilder":
        for t in tags:
            self.tag(t)
        return self

    def build(self) -> SavedRequest:
        return self._request.copy()


@dataclass
class RequestCollection:
    """Named group owning saved requests by value."""

    name: str
    description: str | None = None
    requests: list[SavedRequest] = field(default_factory=list)
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime | None = None

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    def add_request(self, request: SavedRequest) -> None:
        self.requests.append(request)
        self.updated_at = _bump(self.updated_at)

    def remove_request(self, request_id: str) -> bool:
        remaining = [r for r in self.requests if r.id != request_id]
        if len(remaining) == len(self.requests):
            return False
        self.requests = remaining
        self.updated_at = _bump(self.updated_at)
        return True

    def find_request(self, name: str) -> SavedRequest | None:
        for r in self.requests:
            if r.name == name:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "requests": [r.to_dict() for r in self.requests],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RequestCollection":
        created = parse_timestamp(data["created_at"]) if data.get("created_at") else utcnow()
        return cls(
            name=data["name"],
            description=data.get("description"),
            requests=[SavedRequest.from_dict(r) for r in data.get("requests") or []],
            created_at=created,
            updated_at=parse_timestamp(data["updated_at"]) if data.get("updated_at") else created,
        )


def validate_request(request: SavedRequest) -> None:
    """Raise InvalidInput if a request could not be persisted or sent."""
    validate_url(request.url)
    if request.method != validate_method(request.method):
        raise InvalidInput(f"Invalid HTTP method: {request.method}")
    content_type = request.headers.get("Content-Type", "")
    if request.body is not None and "application/json" in content_type:
        if not is_valid_json(request.body):
            raise InvalidInput("Invalid JSON body")
    if request.timeout is not None:
        validate_timeout(request.timeout)


# ── Helpers for common request shapes ────────────────────────────────────


def create_get_request(url: str) -> SavedRequest:
    return RequestBuilder(url, "GET").build()


def create_post_json_request(url: str, json_body: str) -> SavedRequest:
    return RequestBuilder(url, "POST").json_body(json_body).build()


def create_authenticated_request(url: str, method: str, token: str) -> SavedRequest:
    return RequestBuilder(url, method).auth(f"bearer:{token}").build()
