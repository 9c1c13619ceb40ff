"""SQLite-backed persistence for quotes, orders and the inventory ledger."""

from __future__ import annotations

import logging
import pickle
import sqlite3
import threading
from typing import Callable, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .domain import InventoryItem, ProductionOrder, Quote, StockMovement
from .ledger import InventoryLedger
from .repository import DuplicateRecordError, RecordNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteRepository(Generic[T]):
    """Repository implementation that persists pickled records inside SQLite."""

    def __init__(
        self, connection: sqlite3.Connection, table: str, lock: Optional[threading.RLock] = None
    ) -> None:
        self._connection = connection
        self._table = table
        self._lock = lock or threading.RLock()
        with self._lock:
            self._connection.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
                "id TEXT PRIMARY KEY, payload BLOB NOT NULL)"
            )
            self._connection.commit()

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):  # pragma: no cover - defensive
            return False
        with self._lock:
            cursor = self._connection.execute(
                f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)
            )
            return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:  # pragma: no cover - simple delegation
        with self._lock:
            cursor = self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
            value = cursor.fetchone()
        return int(value[0]) if value else 0

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        payload = pickle.dumps(item)
        with self._lock:
            if item_id in self:
                raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
            self._connection.execute(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)",
                (item_id, payload),
            )
            self._connection.commit()

    def add_many(self, items: Sequence[Tuple[str, T]]) -> None:
        """Insert every pair inside one transaction, or none of them."""

        rows = [(item_id, pickle.dumps(item)) for item_id, item in items]
        with self._lock:
            try:
                self._connection.executemany(
                    f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)", rows
                )
            except sqlite3.IntegrityError as exc:
                self._connection.rollback()
                raise DuplicateRecordError(
                    f"Records already exist in {self._table}: {exc}"
                ) from exc
            except sqlite3.Error:
                self._connection.rollback()
                raise
            self._connection.commit()

    def upsert(self, item_id: str, item: T) -> None:
        payload = pickle.dumps(item)
        with self._lock:
            self._connection.execute(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                (item_id, payload),
            )
            self._connection.commit()

    def get(self, item_id: str) -> T:
        with self._lock:
            cursor = self._connection.execute(
                f"SELECT payload FROM {self._table} WHERE id = ?", (item_id,)
            )
            row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return pickle.loads(row[0])

    def remove(self, item_id: str) -> None:
        with self._lock:
            cursor = self._connection.execute(
                f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"Record with id {item_id!r} not found")
            self._connection.commit()

    def list(self) -> List[T]:
        with self._lock:
            cursor = self._connection.execute(
                f"SELECT payload FROM {self._table} ORDER BY id"
            )
            rows = cursor.fetchall()
        return [pickle.loads(row[0]) for row in rows]

    def find(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for item in self.list():
            if predicate(item):
                return item
        return None


class EngineDatabase:
    """Convenience facade bundling SQLite repositories for every aggregate.

    Materials and stock movements are stored so that ``load_ledger`` can
    rebuild balances by replaying the movement log.
    """

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        self._connection = connection
        self._lock = threading.RLock()
        self.quotes = SQLiteRepository[Quote](connection, "quotes", self._lock)
        self.orders = SQLiteRepository[ProductionOrder](connection, "orders", self._lock)
        self.materials = SQLiteRepository[InventoryItem](connection, "materials", self._lock)
        self.movements = SQLiteRepository[StockMovement](connection, "movements", self._lock)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def _store_material(self, item: InventoryItem) -> None:
        self.materials.upsert(item.material_id, item)

    def _store_movements(self, movements: Sequence[StockMovement]) -> None:
        self.movements.add_many([(movement.movement_id, movement) for movement in movements])

    def load_ledger(self) -> InventoryLedger:
        """Replay persisted movements into a ledger that keeps persisting."""

        materials = self.materials.list()
        movements = self.movements.list()
        logger.info(
            "Rebuilding ledger from %d materials and %d movements", len(materials), len(movements)
        )
        return InventoryLedger.replay(
            materials,
            movements,
            on_movement=self._store_movements,
            on_material=self._store_material,
        )

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "EngineDatabase":  # pragma: no cover - convenience
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:  # pragma: no cover - convenience
        self.close()


__all__ = ["SQLiteRepository", "EngineDatabase"]
