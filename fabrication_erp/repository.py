"""In-memory repositories used by the quote-to-production service layer."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .errors import FabricationError

T = TypeVar("T")


class RepositoryError(FabricationError, RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class InMemoryRepository(Generic[T]):
    """Generic repository backed by a dictionary guarded by a lock."""

    def __init__(self) -> None:
        self._items: Dict[str, T] = {}
        self._lock = threading.RLock()

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._items

    def __len__(self) -> int:  # pragma: no cover - convenience
        return len(self._items)

    def add(self, item_id: str, item: T) -> None:
        with self._lock:
            if item_id in self._items:
                raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
            self._items[item_id] = item

    def add_many(self, items: Sequence[Tuple[str, T]]) -> None:
        """Insert every pair or none of them."""

        with self._lock:
            ids = [item_id for item_id, _ in items]
            clashes = [item_id for item_id in ids if item_id in self._items]
            if clashes or len(set(ids)) != len(ids):
                raise DuplicateRecordError(f"Records already exist: {clashes or ids}")
            self._items.update(items)

    def upsert(self, item_id: str, item: T) -> None:
        with self._lock:
            self._items[item_id] = item

    def get(self, item_id: str) -> T:
        with self._lock:
            try:
                return self._items[item_id]
            except KeyError:
                raise RecordNotFoundError(f"Record with id {item_id!r} not found") from None

    def remove(self, item_id: str) -> None:
        with self._lock:
            if item_id not in self._items:
                raise RecordNotFoundError(f"Record with id {item_id!r} not found")
            del self._items[item_id]

    def list(self) -> List[T]:
        with self._lock:
            return list(self._items.values())

    def find(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for item in self.list():
            if predicate(item):
                return item
        return None

    def __iter__(self) -> Iterator[T]:  # pragma: no cover - convenience
        return iter(self.list())


__all__ = [
    "InMemoryRepository",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
]
