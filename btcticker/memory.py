"""A small thread-safe in-memory store whose entries expire after a TTL."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Item(Generic[T]):
    expiration: datetime
    data: T


class InMemoryDB(Generic[T]):
    """Append-only store of items that expire ``ttl`` after they were added.

    A background thread drops expired items every ``interval``.
    """

    def __init__(
        self,
        size: int = 1024,
        ttl: timedelta = timedelta(minutes=10),
        interval: timedelta = timedelta(minutes=10),
        clock: Optional[Clock] = None,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("cleanup interval must be positive")
        self.size = size
        self.ttl = ttl
        self.interval = interval
        self.clock: Clock = clock if clock is not None else _utc_now
        self._items: List[_Item[T]] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._cleaner = threading.Thread(
            target=self._cleanup_loop, name="inmemorydb-cleanup", daemon=True
        )
        self._cleaner.start()

    def _now(self) -> datetime:
        return self.clock().astimezone(timezone.utc)

    def add(self, item: T) -> None:
        """Store ``item``; it expires ``ttl`` from now."""
        expiration = self._now() + self.ttl
        with self._lock:
            self._items.append(_Item(expiration, item))

    def query(self, filter_fn: Optional[Callable[[T], bool]] = None) -> List[T]:
        """Return unexpired items, in insertion order, that pass ``filter_fn``.

        With no filter every unexpired item is returned.
        """
        now = self._now()
        with self._lock:
            live = [item.data for item in self._items if item.expiration >= now]
        if filter_fn is None:
            return live
        return [data for data in live if filter_fn(data)]

    def cleanup(self) -> None:
        """Drop every item whose expiration is not after the current time."""
        now = self._now()
        with self._lock:
            self._items = [item for item in self._items if item.expiration > now]

    def _cleanup_loop(self) -> None:
        seconds = self.interval.total_seconds()
        while not self._stopped.wait(seconds):
            self.cleanup()

    def stop(self) -> None:
        """Stop the background cleanup thread."""
        self._stopped.set()

    def __enter__(self) -> "InMemoryDB[T]":
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()