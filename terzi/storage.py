"""terzi storage - JSON document store for requests, collections, history,
environments and settings.

The whole document lives in memory for the lifetime of a Storage object and
is rewritten wholesale after every mutation. There is no cross-process
locking: a single terzi process is assumed to own the data file at a time,
and two processes mutating the same store will race (last writer wins).
"""

import datetime
import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

from terzi.errors import InvalidInput, NotFound, PersistenceError
from terzi.request import (
    RequestCollection,
    SavedRequest,
    parse_timestamp,
    utcnow,
    validate_request,
)

logger = logging.getLogger(__name__)

DATA_DIR = platformdirs.user_config_path("terzi")
DATA_FILE_NAME = "data.json"
BACKUPS_DIR_NAME = "backups"
BACKUP_PREFIX = "terzi_backup_"

MAX_HISTORY = 1000


class LoadResult(enum.Enum):
    """Outcome of reading the data file at startup."""

    FRESH = "fresh"  # no data file (or an empty one) yet
    LOADED = "loaded"
    RECOVERED_WITH_DEFAULT = "recovered_with_default"  # unreadable, replaced by an empty document


@dataclass
class HistoryEntry:
    """One executed (or failed) request. Exactly one of response_status and
    error_message is set by normal operation."""

    method: str
    url: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime.datetime = field(default_factory=utcnow)
    response_status: int | None = None
    duration_ms: int | None = None
    request_size: int | None = None
    response_size: int | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": self.url,
            "response_status": self.response_status,
            "duration_ms": self.duration_ms,
            "request_size": self.request_size,
            "response_size": self.response_size,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            timestamp=parse_timestamp(data["timestamp"]),
            method=data["method"],
            url=data["url"],
            response_status=data.get("response_status"),
            duration_ms=data.get("duration_ms"),
            request_size=data.get("request_size"),
            response_size=data.get("response_size"),
            error_message=data.get("error_message"),
        )


@dataclass
class HistoryStats:
    total_requests: int = 0
    successful_requests: int = 0
    client_errors: int = 0
    server_errors: int = 0
    failed_requests: int = 0
    total_duration_ms: int = 0
    average_duration_ms: int | None = None
    min_duration_ms: int | None = None
    max_duration_ms: int | None = None


@dataclass
class StorageData:
    """Root aggregate persisted as a single JSON document."""

    requests: dict[str, SavedRequest] = field(default_factory=dict)
    collections: dict[str, RequestCollection] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)
    environments: dict[str, dict[str, str]] = field(default_factory=dict)
    settings: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "requests": {k: v.to_dict() for k, v in self.requests.items()},
            "collections": {k: v.to_dict() for k, v in self.collections.items()},
            "history": [e.to_dict() for e in self.history],
            "environments": {k: dict(v) for k, v in self.environments.items()},
            "settings": dict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StorageData":
        if not isinstance(data, dict):
            raise ValueError("storage document must be a JSON object")
        return cls(
            requests={
                k: SavedRequest.from_dict(v) for k, v in (data.get("requests") or {}).items()
            },
            collections={
                k: RequestCollection.from_dict(v)
                for k, v in (data.get("collections") or {}).items()
            },
            history=[HistoryEntry.from_dict(e) for e in data.get("history") or []],
            environments={
                k: {str(ek): str(ev) for ek, ev in v.items()}
                for k, v in (data.get("environments") or {}).items()
            },
            settings={str(k): str(v) for k, v in (data.get("settings") or {}).items()},
        )

    @classmethod
    def from_json(cls, text: str) -> "StorageData":
        return cls.from_dict(json.loads(text))


class Storage:
    """Durable store for all mutable terzi state.

    Every mutating method updates the in-memory document and then calls
    ``save()``, which serializes the whole document and overwrites the data
    file. Read methods return copies so callers cannot mutate the cache.
    """

    def __init__(self, data_dir: str | Path | None = None, history_limit: int = MAX_HISTORY):
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.history_limit = min(history_limit, MAX_HISTORY)
        self.data = StorageData()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create data directory {self.data_dir}: {e}") from e
        self.load_result = self.load()

    @property
    def data_file(self) -> Path:
        return self.data_dir / DATA_FILE_NAME

    @property
    def backups_dir(self) -> Path:
        return self.data_dir / BACKUPS_DIR_NAME

    # ── Persistence ──────────────────────────────────────────────────────

    def load(self) -> LoadResult:
        """Read the data file into memory.

        A missing or empty file is a fresh install. A file that cannot be
        read or parsed is replaced in memory by an empty document and
        reported as RECOVERED_WITH_DEFAULT; the broken file is left on disk
        until the next save.
        """
        path = self.data_file
        if not path.exists():
            self.data = StorageData()
            return LoadResult.FRESH
        try:
            with open(path, encoding="utf-8") as f:
                contents = f.read()
        except OSError as e:
            logger.warning("Could not read %s (%s); starting with empty data", path, e)
            self.data = StorageData()
            return LoadResult.RECOVERED_WITH_DEFAULT
        if not contents.strip():
            self.data = StorageData()
            return LoadResult.FRESH
        try:
            self.data = StorageData.from_json(contents)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Data file %s is corrupted (%s); starting with empty data", path, e)
            self.data = StorageData()
            return LoadResult.RECOVERED_WITH_DEFAULT
        logger.debug(
            "Loaded %d requests, %d history entries from %s",
            len(self.data.requests),
            len(self.data.history),
            path,
        )
        return LoadResult.LOADED

    def save(self) -> None:
        """Overwrite the data file with the full in-memory document."""
        contents = json.dumps(self.data.to_dict(), indent=2)
        try:
            with open(self.data_file, "w", encoding="utf-8") as f:
                f.write(contents)
                f.flush()
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.data_file}: {e}") from e
        logger.debug("Saved storage document to %s", self.data_file)

    # ── Requests ─────────────────────────────────────────────────────────

    def save_request(self, name: str, request: SavedRequest) -> SavedRequest:
        validate_request(request)
        stored = request.copy()
        stored.name = name
        stored.touch()
        self.data.requests[name] = stored
        self.save()
        return stored.copy()

    def get_request(self, name: str) -> SavedRequest | None:
        req = self.data.requests.get(name)
        return req.copy() if req else None

    def require_request(self, name: str) -> SavedRequest:
        req = self.get_request(name)
        if req is None:
            raise NotFound("request", name)
        return req

    def list_requests(self, filter: str | None = None) -> list[SavedRequest]:
        """All requests, newest created first, optionally substring-filtered
        (case-insensitive) on name, URL, method and tags."""
        requests = [r.copy() for r in self.data.requests.values()]
        if filter:
            needle = filter.lower()
            requests = [
                r
                for r in requests
                if needle in r.name.lower()
                or needle in r.url.lower()
                or needle in r.method.lower()
                or any(needle in t.lower() for t in r.tags)
            ]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return requests

    def delete_request(self, name: str) -> bool:
        if name not in self.data.requests:
            return False
        del self.data.requests[name]
        self.save()
        return True

    def search_requests(self, query: str) -> list[SavedRequest]:
        """Score each request against query and return matches best first.

        exact name 100, name substring 50, URL 30, method 20, each matching
        tag 25, description 15. Requests scoring zero are dropped.
        """
        q = query.lower()
        scored: list[tuple[int, SavedRequest]] = []
        for req in self.list_requests():
            scored_value = score_request(req, q)
            if scored_value > 0:
                scored.append((scored_value, req))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [req for _, req in scored]

    # ── Collections ──────────────────────────────────────────────────────

    def create_collection(self, name: str, description: str | None = None) -> RequestCollection:
        collection = RequestCollection(name=name, description=description)
        self.data.collections[name] = collection
        self.save()
        return collection

    def _require_collection(self, name: str) -> RequestCollection:
        collection = self.data.collections.get(name)
        if collection is None:
            raise NotFound("collection", name)
        return collection

    def add_request_to_collection(self, collection_name: str, request: SavedRequest) -> None:
        validate_request(request)
        self._require_collection(collection_name).add_request(request.copy())
        self.save()

    def remove_request_from_collection(self, collection_name: str, request_id: str) -> bool:
        removed = self._require_collection(collection_name).remove_request(request_id)
        if removed:
            self.save()
        return removed

    def list_collections(self) -> list[RequestCollection]:
        return sorted(self.data.collections.values(), key=lambda c: c.name)

    def get_collection(self, name: str) -> RequestCollection | None:
        return self.data.collections.get(name)

    def delete_collection(self, name: str) -> bool:
        if name not in self.data.collections:
            return False
        del self.data.collections[name]
        self.save()
        return True

    # ── History ──────────────────────────────────────────────────────────

    def _append_history(self, entry: HistoryEntry) -> HistoryEntry:
        self.data.history.append(entry)
        if len(self.data.history) > self.history_limit:
            self.data.history.pop(0)
        self.save()
        return entry

    def add_to_history(self, request: SavedRequest, response) -> HistoryEntry:
        """Record a completed call. response needs status, duration_ms and size."""
        return self._append_history(
            HistoryEntry(
                method=request.method,
                url=request.url,
                response_status=response.status,
                duration_ms=response.duration_ms,
                request_size=_body_size(request.body),
                response_size=response.size,
            ),
        )

    def add_error_to_history(self, request: SavedRequest, error: str) -> HistoryEntry:
        return self._append_history(
            HistoryEntry(
                method=request.method,
                url=request.url,
                request_size=_body_size(request.body),
                error_message=str(error),
            ),
        )

    def get_history(self, limit: int = 10) -> list[HistoryEntry]:
        """Newest first; among equal timestamps the later insert wins."""
        entries = sorted(reversed(self.data.history), key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def clear_history(self) -> None:
        self.data.history.clear()
        self.save()

    def get_history_stats(self) -> HistoryStats:
        stats = HistoryStats()
        timed = 0
        for entry in self.data.history:
            stats.total_requests += 1
            status = entry.response_status
            if status is None:
                stats.failed_requests += 1
            elif 200 <= status < 300:
                stats.successful_requests += 1
            elif 400 <= status < 500:
                stats.client_errors += 1
            elif 500 <= status < 600:
                stats.server_errors += 1

            if entry.duration_ms is not None:
                timed += 1
                stats.total_duration_ms += entry.duration_ms
                if stats.min_duration_ms is None or entry.duration_ms < stats.min_duration_ms:
                    stats.min_duration_ms = entry.duration_ms
                if stats.max_duration_ms is None or entry.duration_ms > stats.max_duration_ms:
                    stats.max_duration_ms = entry.duration_ms

        if timed:
            stats.average_duration_ms = stats.total_duration_ms // timed
        return stats

    # ── Environments ─────────────────────────────────────────────────────

    def save_environment(self, name: str, variables: dict[str, str]) -> None:
        self.data.environments[name] = {str(k): str(v) for k, v in variables.items()}
        self.save()

    def get_environment(self, name: str) -> dict[str, str] | None:
        env = self.data.environments.get(name)
        return dict(env) if env is not None else None

    def list_environments(self) -> list[str]:
        return sorted(self.data.environments)

    def delete_environment(self, name: str) -> bool:
        if name not in self.data.environments:
            return False
        del self.data.environments[name]
        self.save()
        return True

    # ── Settings ─────────────────────────────────────────────────────────

    def set_setting(self, key: str, value: str) -> None:
        self.data.settings[key] = str(value)
        self.save()

    def get_setting(self, key: str) -> str | None:
        return self.data.settings.get(key)

    def list_settings(self) -> dict[str, str]:
        return dict(self.data.settings)

    # ── Export / import ──────────────────────────────────────────────────

    def export_data(self, include_history: bool = True) -> str:
        document = self.data.to_dict()
        if not include_history:
            document["history"] = []
        return json.dumps(document, indent=2)

    def import_data(self, data: str, merge: bool = False) -> None:
        """Load an exported document.

        merge=True unions the maps (imported keys win) and interleaves
        history chronologically, keeping only the newest entries up to the
        history limit. merge=False replaces everything. Invalid input raises
        InvalidInput and leaves the store untouched.
        """
        try:
            imported = StorageData.from_json(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidInput(f"Invalid import data: {e}") from e
        _validate_imported(imported)

        if merge:
            merged = StorageData(
                requests={**self.data.requests, **imported.requests},
                collections={**self.data.collections, **imported.collections},
                history=sorted(
                    self.data.history + imported.history,
                    key=lambda e: e.timestamp,
                ),
                environments={**self.data.environments, **imported.environments},
                settings={**self.data.settings, **imported.settings},
            )
            if len(merged.history) > self.history_limit:
                merged.history = merged.history[-self.history_limit :]
            self.data = merged
        else:
            self.data = imported
        self.save()

    # ── Backups ──────────────────────────────────────────────────────────

    def create_backup(self) -> Path:
        timestamp = utcnow().strftime("%Y%m%d_%H%M%S")
        path = self.backups_dir / f"{BACKUP_PREFIX}{timestamp}.json"
        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.export_data(include_history=True))
        except OSError as e:
            raise PersistenceError(f"Failed to write backup {path}: {e}") from e
        logger.debug("Backup written to %s", path)
        return path

    def list_backups(self) -> list[Path]:
        if not self.backups_dir.is_dir():
            return []
        backups = [p for p in self.backups_dir.iterdir() if p.is_file() and p.suffix == ".json"]
        backups.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return backups

    def restore_backup(self, backup_path: str | Path) -> None:
        path = Path(backup_path)
        if not path.is_file():
            raise NotFound("backup", str(path))
        with open(path, encoding="utf-8") as f:
            contents = f.read()
        self.import_data(contents, merge=False)


def _validate_imported(imported: StorageData) -> None:
    members = [(f"request '{name}'", r) for name, r in imported.requests.items()]
    for collection in imported.collections.values():
        members += [
            (f"request '{r.name}' in collection '{collection.name}'", r)
            for r in collection.requests
        ]
    for label, request in members:
        try:
            validate_request(request)
        except InvalidInput as e:
            raise InvalidInput(f"Invalid import data: {label}: {e}") from e


def score_request(request: SavedRequest, query: str) -> int:
    """Relevance of request to an already lower-cased query."""
    score = 0
    name = request.name.lower()
    if name == query:
        score += 100
    elif query in name:
        score += 50
    if query in request.url.lower():
        score += 30
    if query in request.method.lower():
        score += 20
    score += 25 * sum(1 for t in request.tags if query in t.lower())
    if request.description and query in request.description.lower():
        score += 15
    return score


def _body_size(body: str | None) -> int | None:
    return len(body.encode("utf-8")) if body is not None else None
