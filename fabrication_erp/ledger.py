"""Thread-safe inventory ledger with an append-only movement log."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from .domain import (
    ZERO,
    InventoryItem,
    MaterialDemand,
    MovementKind,
    Shortage,
    StockMovement,
    utcnow,
)
from .errors import (
    InsufficientStockError,
    LedgerError,
    NegativeBalanceError,
    OverConsumptionError,
    UnknownMaterialError,
)
from .repository import DuplicateRecordError

logger = logging.getLogger(__name__)

MovementListener = Callable[[Sequence[StockMovement]], None]
MaterialListener = Callable[[InventoryItem], None]


def as_quantity(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(slots=True)
class _Balance:
    material_id: str
    name: str
    unit: str
    minimum_stock: Decimal
    total: Decimal = ZERO
    reserved: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.total - self.reserved

    def view(self) -> InventoryItem:
        return InventoryItem(
            material_id=self.material_id,
            name=self.name,
            unit=self.unit,
            total=self.total,
            reserved=self.reserved,
            minimum_stock=self.minimum_stock,
        )


class _Batch:
    """Movements staged against working copies of the balances they touch."""

    def __init__(self, first_sequence: int) -> None:
        self._next_sequence = first_sequence
        self.state: Dict[str, Tuple[_Balance, Decimal, Decimal]] = {}
        self.movements: List[StockMovement] = []

    def stage(
        self,
        balance: _Balance,
        kind: MovementKind,
        quantity: Decimal,
        origin: str,
        actor: str,
        notes: str,
    ) -> StockMovement:
        _, total, reserved = self.state.get(
            balance.material_id, (balance, balance.total, balance.reserved)
        )
        total, reserved = _apply(total, reserved, kind, quantity)
        self.state[balance.material_id] = (balance, total, reserved)
        movement = StockMovement(
            movement_id=str(uuid4()),
            sequence=self._next_sequence,
            material_id=balance.material_id,
            kind=kind,
            quantity=quantity,
            total_after=total,
            reserved_after=reserved,
            origin=origin,
            actor=actor,
            timestamp=utcnow(),
            notes=notes,
        )
        self._next_sequence += 1
        self.movements.append(movement)
        return movement


class InventoryLedger:
    """Material balances plus the movement log they are derived from.

    Every mutating call takes the ledger lock for its whole check-then-apply
    sequence, so two concurrent reservations can never both draw on the
    same available quantity. Movements are staged first and handed to the
    ``on_movement`` listener as one batch; balances change only after the
    listener returns, so a failed write leaves the ledger untouched.
    """

    def __init__(
        self,
        *,
        on_movement: Optional[MovementListener] = None,
        on_material: Optional[MaterialListener] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._balances: Dict[str, _Balance] = {}
        self._movements: List[StockMovement] = []
        self._reservations: Dict[str, Dict[str, Decimal]] = defaultdict(dict)
        self._on_movement = on_movement
        self._on_material = on_material

    def __contains__(self, material_id: object) -> bool:
        return material_id in self._balances

    # ------------------------------------------------------------------
    # Master data and reads
    # ------------------------------------------------------------------
    def register_material(
        self,
        material_id: str,
        name: str,
        unit: str,
        *,
        minimum_stock: Decimal = ZERO,
        initial_quantity: Decimal = ZERO,
        actor: str = "system",
    ) -> InventoryItem:
        initial = as_quantity(initial_quantity)
        if initial < 0:
            raise NegativeBalanceError(f"Initial stock for {material_id!r} cannot be negative")
        with self._lock:
            if material_id in self._balances:
                raise DuplicateRecordError(f"Material {material_id!r} already registered")
            balance = _Balance(material_id, name, unit, as_quantity(minimum_stock))
            if self._on_material is not None:
                self._on_material(balance.view())
            if initial > 0:
                batch = self._batch()
                batch.stage(balance, MovementKind.ENTRY, initial, "initial stock", actor, "")
                self._commit(batch)
            self._balances[material_id] = balance
            logger.info("Registered material %s (%s %s)", material_id, initial, unit)
            return balance.view()

    def item(self, material_id: str) -> InventoryItem:
        with self._lock:
            return self._balance(material_id).view()

    def items(self) -> List[InventoryItem]:
        with self._lock:
            return [balance.view() for balance in self._balances.values()]

    def critical_items(self) -> List[InventoryItem]:
        """Materials whose available balance is at or below their minimum stock."""

        with self._lock:
            return [
                balance.view()
                for balance in self._balances.values()
                if balance.available <= balance.minimum_stock
            ]

    def reserved_for(self, order_id: str) -> Dict[str, Decimal]:
        with self._lock:
            return dict(self._reservations.get(order_id, {}))

    def movements(
        self,
        *,
        material_id: Optional[str] = None,
        kind: Optional[MovementKind] = None,
        origin: Optional[str] = None,
    ) -> List[StockMovement]:
        with self._lock:
            return [
                movement
                for movement in self._movements
                if (material_id is None or movement.material_id == material_id)
                and (kind is None or movement.kind is kind)
                and (origin is None or movement.origin == origin)
            ]

    # ------------------------------------------------------------------
    # Order operations
    # ------------------------------------------------------------------
    def check_availability(self, demand: Iterable[MaterialDemand]) -> List[Shortage]:
        """Materials that cannot be covered, with the exact shortfall. Read only."""

        with self._lock:
            return self._shortages(_aggregate(demand))

    def reserve(
        self, order_id: str, demand: Iterable[MaterialDemand], *, actor: str = "system"
    ) -> List[StockMovement]:
        """Reserve the whole batch or nothing."""

        wanted = _aggregate(demand)
        with self._lock:
            shortages = self._shortages(wanted)
            if shortages:
                logger.warning(
                    "Reservation for %s rejected: %s",
                    order_id,
                    ", ".join(f"{item.material_id} short {item.shortfall}" for item in shortages),
                )
                missing = [item.material_id for item in shortages if item.material_id not in self]
                if missing:
                    raise UnknownMaterialError(missing, shortages)
                raise InsufficientStockError(shortages)
            batch = self._batch()
            for item in wanted:
                if item.quantity == 0:
                    continue
                balance = self._balances[item.material_id]
                batch.stage(balance, MovementKind.RESERVE, item.quantity, order_id, actor, "")
            self._commit(batch)
            for movement in batch.movements:
                self._track(order_id, movement.material_id, movement.quantity)
        logger.info("Reserved %d material(s) for %s", len(batch.movements), order_id)
        return batch.movements

    def consume(
        self, order_id: str, demand: Iterable[MaterialDemand], *, actor: str = "system"
    ) -> List[StockMovement]:
        """Turn an order's reservation into stock exits (release + exit per material)."""

        wanted = _aggregate(demand)
        with self._lock:
            missing = [item.material_id for item in wanted if item.material_id not in self]
            if missing:
                raise UnknownMaterialError(missing, self._shortages(wanted))
            tracked = self._reservations.get(order_id, {})
            excess = [
                f"{item.material_id}: consuming {item.quantity} but "
                f"{tracked.get(item.material_id, ZERO)} reserved"
                for item in wanted
                if item.quantity > tracked.get(item.material_id, ZERO)
            ]
            if excess:
                raise OverConsumptionError(f"Order {order_id} " + "; ".join(excess))
            drained = [
                f"{item.material_id}: consuming {item.quantity} but the balance "
                f"holds {self._balances[item.material_id].reserved} reserved"
                for item in wanted
                if item.quantity > self._balances[item.material_id].reserved
            ]
            if drained:
                raise NegativeBalanceError(f"Order {order_id} " + "; ".join(drained))
            batch = self._batch()
            for item in wanted:
                if item.quantity == 0:
                    continue
                balance = self._balances[item.material_id]
                batch.stage(balance, MovementKind.RELEASE, item.quantity, order_id, actor, "")
                batch.stage(balance, MovementKind.EXIT, item.quantity, order_id, actor, "")
            self._commit(batch)
            for item in wanted:
                self._untrack(order_id, item.material_id, item.quantity)
        logger.info("Consumed %d material(s) for %s", len(batch.movements) // 2, order_id)
        return batch.movements

    def release(self, order_id: str, *, actor: str = "system") -> List[StockMovement]:
        """Return every outstanding reservation held by ``order_id``."""

        with self._lock:
            tracked = dict(self._reservations.get(order_id, {}))
            batch = self._batch()
            for material_id, quantity in tracked.items():
                balance = self._balances[material_id]
                batch.stage(balance, MovementKind.RELEASE, quantity, order_id, actor, "")
            self._commit(batch)
            self._reservations.pop(order_id, None)
        if batch.movements:
            logger.info("Released %d reservation(s) for %s", len(batch.movements), order_id)
        return batch.movements

    # ------------------------------------------------------------------
    # Raw movements
    # ------------------------------------------------------------------
    def record_movement(
        self,
        material_id: str,
        kind: MovementKind,
        quantity: Decimal,
        *,
        origin: str = "",
        actor: str = "system",
        notes: str = "",
    ) -> StockMovement:
        """Apply one movement; ``adjust`` sets the total to ``quantity``.

        Reserve and release movements belong to an order, so ``origin`` is
        required for them and a release may not exceed what that order holds.
        """

        kind = MovementKind(kind)
        quantity = as_quantity(quantity)
        if quantity < 0:
            raise NegativeBalanceError(f"Movement quantity cannot be negative ({quantity})")
        if kind in (MovementKind.RESERVE, MovementKind.RELEASE) and not origin:
            raise LedgerError(f"A {kind.value} movement needs the order it belongs to as origin")
        with self._lock:
            balance = self._balance(material_id)
            if kind in (MovementKind.EXIT, MovementKind.RESERVE) and quantity > balance.available:
                shortage = Shortage(
                    material_id,
                    balance.name,
                    balance.unit,
                    quantity,
                    balance.available,
                    quantity - balance.available,
                )
                raise InsufficientStockError([shortage])
            if kind is MovementKind.RELEASE:
                held = self._reservations.get(origin, {}).get(material_id, ZERO)
                if quantity > held:
                    raise NegativeBalanceError(
                        f"Cannot release {quantity} of {material_id!r} for {origin}: "
                        f"only {held} reserved"
                    )
            batch = self._batch()
            movement = batch.stage(balance, kind, quantity, origin, actor, notes)
            if movement.total_after < movement.reserved_after:
                raise NegativeBalanceError(
                    f"Adjusting {material_id!r} to {quantity} leaves less than the "
                    f"{balance.reserved} reserved"
                )
            self._commit(batch)
            if kind is MovementKind.RESERVE:
                self._track(origin, material_id, quantity)
            elif kind is MovementKind.RELEASE:
                self._untrack(origin, material_id, quantity)
        logger.info(
            "Recorded %s of %s %s for %s", kind.value, quantity, material_id, origin or "-"
        )
        return movement

    # ------------------------------------------------------------------
    # Derivation from the log
    # ------------------------------------------------------------------
    @classmethod
    def replay(
        cls,
        materials: Iterable[InventoryItem],
        movements: Iterable[StockMovement],
        **listeners,
    ) -> "InventoryLedger":
        """Rebuild a ledger from material definitions and a movement log."""

        ledger = cls(**listeners)
        for item in materials:
            ledger._balances[item.material_id] = _Balance(
                item.material_id, item.name, item.unit, item.minimum_stock
            )
        for movement in sorted(movements, key=lambda movement: movement.sequence):
            balance = ledger._balance(movement.material_id)
            balance.total, balance.reserved = _apply(
                balance.total, balance.reserved, movement.kind, movement.quantity
            )
            if balance.total < 0 or balance.reserved < 0 or balance.available < 0:
                raise NegativeBalanceError(
                    f"Replaying movement {movement.sequence} drives "
                    f"{movement.material_id!r} negative"
                )
            if movement.origin and movement.kind is MovementKind.RESERVE:
                ledger._track(movement.origin, movement.material_id, movement.quantity)
            elif movement.origin and movement.kind is MovementKind.RELEASE:
                ledger._untrack(movement.origin, movement.material_id, movement.quantity)
            ledger._movements.append(movement)
        return ledger

    def verify(self) -> List[str]:
        """Differences between the incremental balances and a replay of the log.

        Also reports per-order reservations that no longer add up to the
        reserved balance of a material.
        """

        with self._lock:
            derived: Dict[str, Tuple[Decimal, Decimal]] = {
                material_id: (ZERO, ZERO) for material_id in self._balances
            }
            problems: List[str] = []
            for expected, movement in enumerate(self._movements, start=1):
                if movement.sequence != expected:
                    problems.append(
                        f"Movement {movement.sequence} found where {expected} was expected"
                    )
                if movement.material_id not in derived:
                    problems.append(
                        f"Movement {movement.sequence} references unknown "
                        f"material {movement.material_id!r}"
                    )
                    continue
                total, reserved = _apply(
                    *derived[movement.material_id], movement.kind, movement.quantity
                )
                if (total, reserved) != (movement.total_after, movement.reserved_after):
                    problems.append(
                        f"Movement {movement.sequence} records {movement.total_after}/"
                        f"{movement.reserved_after}, replay gives {total}/{reserved}"
                    )
                derived[movement.material_id] = (total, reserved)
            held: Dict[str, Decimal] = defaultdict(lambda: ZERO)
            for tracked in self._reservations.values():
                for material_id, quantity in tracked.items():
                    held[material_id] += quantity
            for material_id, balance in self._balances.items():
                if derived[material_id] != (balance.total, balance.reserved):
                    problems.append(
                        f"{material_id}: balance {balance.total}/{balance.reserved} "
                        f"!= replayed {derived[material_id][0]}/{derived[material_id][1]}"
                    )
                if held[material_id] != balance.reserved:
                    problems.append(
                        f"{material_id}: orders hold {held[material_id]} "
                        f"but {balance.reserved} is reserved"
                    )
            return problems

    # ------------------------------------------------------------------
    # Internals; callers hold the lock
    # ------------------------------------------------------------------
    def _balance(self, material_id: str) -> _Balance:
        try:
            return self._balances[material_id]
        except KeyError:
            raise UnknownMaterialError([material_id]) from None

    def _shortages(self, wanted: Sequence[MaterialDemand]) -> List[Shortage]:
        shortages = []
        for item in wanted:
            balance = self._balances.get(item.material_id)
            available = balance.available if balance is not None else ZERO
            if item.quantity > available:
                shortages.append(
                    Shortage(
                        material_id=item.material_id,
                        name=balance.name if balance is not None else item.name,
                        unit=balance.unit if balance is not None else item.unit,
                        required=item.quantity,
                        available=available,
                        shortfall=item.quantity - available,
                    )
                )
        return shortages

    def _track(self, order_id: str, material_id: str, quantity: Decimal) -> None:
        tracked = self._reservations[order_id]
        tracked[material_id] = tracked.get(material_id, ZERO) + quantity

    def _untrack(self, order_id: str, material_id: str, quantity: Decimal) -> None:
        tracked = self._reservations.get(order_id)
        if not tracked or material_id not in tracked:
            return
        remaining = tracked[material_id] - quantity
        if remaining > 0:
            tracked[material_id] = remaining
        else:
            del tracked[material_id]
        if not tracked:
            del self._reservations[order_id]

    def _batch(self) -> _Batch:
        return _Batch(len(self._movements) + 1)

    def _commit(self, batch: _Batch) -> None:
        if not batch.movements:
            return
        if self._on_movement is not None:
            self._on_movement(batch.movements)
        for balance, total, reserved in batch.state.values():
            balance.total, balance.reserved = total, reserved
        self._movements.extend(batch.movements)


def _aggregate(demand: Iterable[MaterialDemand]) -> List[MaterialDemand]:
    """Merge duplicate material ids, keeping first-seen order."""

    merged: Dict[str, MaterialDemand] = {}
    for item in demand:
        quantity = as_quantity(item.quantity)
        if quantity < 0:
            raise LedgerError(f"Demand for {item.material_id!r} cannot be negative")
        current = merged.get(item.material_id)
        if current is not None:
            quantity += current.quantity
        merged[item.material_id] = MaterialDemand(item.material_id, item.name, item.unit, quantity)
    return list(merged.values())


def _apply(
    total: Decimal, reserved: Decimal, kind: MovementKind, quantity: Decimal
) -> Tuple[Decimal, Decimal]:
    if kind is MovementKind.ENTRY:
        return total + quantity, reserved
    if kind is MovementKind.EXIT:
        return total - quantity, reserved
    if kind is MovementKind.RESERVE:
        return total, reserved + quantity
    if kind is MovementKind.RELEASE:
        return total, reserved - quantity
    return quantity, reserved


__all__ = ["InventoryLedger", "as_quantity"]
