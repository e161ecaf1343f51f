"""Key-value store adapters backing every repository.

Values are kept as JSON text, exactly like browser storage: a read that cannot
be parsed is treated as a missing key, and a write that would exceed the
store's capacity is dropped, leaving the previous value in place.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from diskcache import Cache

logger = logging.getLogger(__name__)

QuotaListener = Callable[[str], None]

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class WriteStatus(str, Enum):
    """Outcome of a store write."""

    OK = "ok"
    CAPACITY_EXCEEDED = "capacity_exceeded"


class QuotaEvents:
    """Notification channel for writes dropped because the store is full.

    Listeners receive the key whose write was dropped. A listener that raises
    is logged and does not prevent the others from running.
    """

    def __init__(self) -> None:
        self._listeners: list[QuotaListener] = []

    def subscribe(self, listener: QuotaListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: QuotaListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("Quota listener failed for key %s", key)


class KeyValueStore(ABC):
    """Synchronous JSON store with a byte budget."""

    def __init__(
        self,
        capacity_bytes: int = 5 * 1024 * 1024,
        events: QuotaEvents | None = None,
    ) -> None:
        self.capacity_bytes = capacity_bytes
        self.events = events or QuotaEvents()
        # Entry sizes by key, measured on first use and kept current by write/remove.
        self._sizes: dict[str, int] | None = None
        self._used = 0

    @abstractmethod
    def _get_raw(self, key: str) -> str | None: ...

    @abstractmethod
    def _set_raw(self, key: str, raw: str) -> None: ...

    @abstractmethod
    def _delete_raw(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """Iterate over every stored key."""

    def read(self, key: str) -> Any | None:
        """Return the decoded value at ``key``, or None if missing or corrupt."""
        raw = self._get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring unparseable JSON stored at %s", key)
            return None

    def write(self, key: str, value: Any) -> WriteStatus:
        """Serialize and store ``value``; drop the write if it would not fit."""
        raw = json.dumps(value, ensure_ascii=False)
        sizes = self._entry_sizes()
        size = _entry_size(key, raw)
        if self._used - sizes.get(key, 0) + size > self.capacity_bytes:
            logger.warning("Storage capacity exceeded, dropping write to %s", key)
            self.events.emit(key)
            return WriteStatus.CAPACITY_EXCEEDED
        self._set_raw(key, raw)
        self._used += size - sizes.get(key, 0)
        sizes[key] = size
        logger.debug("Wrote %d bytes to %s", len(raw), key)
        return WriteStatus.OK

    def remove(self, key: str) -> None:
        self._delete_raw(key)
        self._used -= self._entry_sizes().pop(key, 0)

    def used_bytes(self) -> int:
        """Bytes currently occupied by keys and values."""
        self._entry_sizes()
        return self._used

    def _entry_sizes(self) -> dict[str, int]:
        if self._sizes is None:
            self._sizes = {}
            for key in self.keys():
                raw = self._get_raw(key)
                if raw is not None:
                    self._sizes[key] = _entry_size(key, raw)
            self._used = sum(self._sizes.values())
        return self._sizes


class MemoryStore(KeyValueStore):
    """In-process store, used for scratch sessions and tests."""

    def __init__(
        self,
        capacity_bytes: int = 5 * 1024 * 1024,
        events: QuotaEvents | None = None,
    ) -> None:
        super().__init__(capacity_bytes, events)
        self._data: dict[str, str] = {}

    def _get_raw(self, key: str) -> str | None:
        return self._data.get(key)

    def _set_raw(self, key: str, raw: str) -> None:
        self._data[key] = raw

    def _delete_raw(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


class DiskStore(KeyValueStore):
    """Persistent store kept in a diskcache directory."""

    def __init__(
        self,
        directory: Path,
        capacity_bytes: int = 5 * 1024 * 1024,
        events: QuotaEvents | None = None,
    ) -> None:
        super().__init__(capacity_bytes, events)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.cache = Cache(str(self.directory))

    def _get_raw(self, key: str) -> str | None:
        raw = self.cache.get(key)
        if raw is None or isinstance(raw, str):
            return raw
        return str(raw)

    def _set_raw(self, key: str, raw: str) -> None:
        self.cache.set(key, raw)

    def _delete_raw(self, key: str) -> None:
        self.cache.delete(key)

    def keys(self) -> Iterator[str]:
        return (key for key in list(self.cache.iterkeys()) if isinstance(key, str))

    def close(self) -> None:
        """Close the underlying cache."""
        self.cache.close()


def _entry_size(key: str, raw: str) -> int:
    return len(key.encode("utf-8")) + len(raw.encode("utf-8"))


def generate_id(existing: set[str] | None = None) -> str:
    """Return a new opaque id that does not collide with ``existing``."""
    while True:
        millis = int(datetime.now(timezone.utc).timestamp() * 1000)
        candidate = f"{millis}-{uuid.uuid4().hex[:7]}"
        if not existing or candidate not in existing:
            return candidate


def now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def next_timestamp(previous: list[str]) -> str:
    """Current time as an ISO string, strictly later than every ``previous``.

    Timestamps compare lexicographically, so ``createdAt`` stays monotonic in
    write order even when the clock does not advance between writes.
    """
    current = now_timestamp()
    latest = max(previous, default="")
    if current > latest:
        return current
    try:
        bumped = datetime.strptime(latest, TIMESTAMP_FORMAT) + timedelta(microseconds=1)
    except ValueError:
        return current
    return bumped.strftime(TIMESTAMP_FORMAT)
