"""
In-memory registry of live sandbox entries.

One registry is owned by each lifecycle manager; there is no module-level
instance. Every method is synchronous, so a lookup or mutation never yields
to the event loop halfway through. A threading lock additionally keeps the
map consistent when it is read from executor threads.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class Registry(Generic[T]):
    """Id-keyed store for sandbox or browser-context entries."""

    def __init__(self, not_found: Callable[[str], Exception]) -> None:
        self._entries: Dict[str, T] = {}
        self._lock = threading.Lock()
        self._not_found = not_found

    def insert(self, entry_id: str, entry: T) -> None:
        """Add a new entry. Ids are never reused, so a duplicate is a bug."""
        with self._lock:
            if entry_id in self._entries:
                raise KeyError(f"Duplicate registry id: {entry_id}")
            self._entries[entry_id] = entry

    def get(self, entry_id: str) -> Optional[T]:
        with self._lock:
            return self._entries.get(entry_id)

    def require(self, entry_id: str) -> T:
        """Return the entry or raise the owner's not-found error."""
        entry = self.get(entry_id)
        if entry is None:
            raise self._not_found(entry_id)
        return entry

    def remove(self, entry_id: str) -> Optional[T]:
        with self._lock:
            return self._entries.pop(entry_id, None)

    def list(self) -> List[T]:
        """Snapshot of all entries in insertion order."""
        with self._lock:
            return list(self._entries.values())

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())
