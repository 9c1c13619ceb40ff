from __future__ import annotations

import threading
from dataclasses import replace
from decimal import Decimal

import pytest

from fabrication_erp.domain import MaterialDemand, MovementKind
from fabrication_erp.errors import (
    InsufficientStockError,
    LedgerError,
    NegativeBalanceError,
    OverConsumptionError,
    UnknownMaterialError,
)
from fabrication_erp.ledger import InventoryLedger
from fabrication_erp.repository import DuplicateRecordError


def _demand(material_id: str, quantity: str) -> MaterialDemand:
    return MaterialDemand(material_id, material_id, "un", Decimal(quantity))


@pytest.fixture
def ledger() -> InventoryLedger:
    ledger = InventoryLedger()
    ledger.register_material("chapa", "Chapa 304", "kg", initial_quantity=Decimal("5"))
    ledger.register_material(
        "pe", "Pé regulável", "un", minimum_stock=Decimal("4"), initial_quantity=Decimal("10")
    )
    return ledger


def test_initial_stock_is_an_entry_movement(ledger):
    (movement,) = ledger.movements(material_id="chapa")

    assert movement.kind is MovementKind.ENTRY
    assert movement.origin == "initial stock"
    assert movement.total_after == Decimal("5")


def test_duplicate_material_is_rejected(ledger):
    with pytest.raises(DuplicateRecordError):
        ledger.register_material("chapa", "Chapa 304", "kg")


def test_check_availability_is_read_only(ledger):
    demand = [_demand("chapa", "7"), _demand("pe", "2")]
    before = ledger.movements()

    first = ledger.check_availability(demand)
    second = ledger.check_availability(demand)

    assert first == second
    (shortage,) = first
    assert (shortage.required, shortage.available, shortage.shortfall) == (
        Decimal("7"),
        Decimal("5"),
        Decimal("2"),
    )
    assert ledger.movements() == before
    assert ledger.item("chapa").reserved == 0


def test_duplicate_demand_lines_are_merged(ledger):
    shortages = ledger.check_availability([_demand("chapa", "3"), _demand("chapa", "3")])

    assert shortages[0].required == Decimal("6")


def test_reserve_is_all_or_nothing(ledger):
    with pytest.raises(InsufficientStockError) as excinfo:
        ledger.reserve("op-1", [_demand("pe", "2"), _demand("chapa", "9")])

    assert [s.material_id for s in excinfo.value.shortages] == ["chapa"]
    assert ledger.item("pe").reserved == 0
    assert ledger.reserved_for("op-1") == {}
    assert ledger.movements(kind=MovementKind.RESERVE) == []


def test_reserve_unknown_material(ledger):
    with pytest.raises(UnknownMaterialError) as excinfo:
        ledger.reserve("op-1", [_demand("parafuso", "1"), _demand("pe", "1")])

    assert excinfo.value.missing == ("parafuso",)
    assert ledger.item("pe").reserved == 0


def test_concurrent_reservations_never_oversell(ledger):
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def attempt(order_id: str) -> None:
        barrier.wait()
        try:
            ledger.reserve(order_id, [_demand("chapa", "4")])
        except InsufficientStockError:
            result = "rejected"
        else:
            result = "reserved"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(f"op-{n}",)) for n in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["rejected", "reserved"]
    item = ledger.item("chapa")
    assert item.reserved == Decimal("4")
    assert item.available == Decimal("1")


def test_consume_turns_reservation_into_exit(ledger):
    ledger.reserve("op-1", [_demand("chapa", "4")])

    movements = ledger.consume("op-1", [_demand("chapa", "4")])

    assert [m.kind for m in movements] == [MovementKind.RELEASE, MovementKind.EXIT]
    item = ledger.item("chapa")
    assert (item.total, item.reserved) == (Decimal("1"), Decimal("0"))
    assert ledger.reserved_for("op-1") == {}


def test_consume_more_than_reserved_is_refused(ledger):
    ledger.reserve("op-1", [_demand("chapa", "2")])

    with pytest.raises(OverConsumptionError):
        ledger.consume("op-1", [_demand("chapa", "3")])
    assert ledger.item("chapa").reserved == Decimal("2")


def test_release_returns_everything_an_order_holds(ledger):
    ledger.reserve("op-1", [_demand("chapa", "2"), _demand("pe", "3")])

    released = ledger.release("op-1")

    assert len(released) == 2
    assert all(item.reserved == 0 for item in ledger.items())
    assert ledger.release("op-1") == []


def test_exit_beyond_available_is_refused(ledger):
    ledger.reserve("op-1", [_demand("chapa", "4")])

    with pytest.raises(InsufficientStockError):
        ledger.record_movement("chapa", MovementKind.EXIT, Decimal("2"))


def test_adjust_sets_total_but_never_below_reserved(ledger):
    ledger.reserve("op-1", [_demand("chapa", "4")])

    with pytest.raises(NegativeBalanceError):
        ledger.record_movement("chapa", MovementKind.ADJUST, Decimal("3"))

    movement = ledger.record_movement("chapa", MovementKind.ADJUST, Decimal("12"), notes="inventário")
    assert movement.total_after == Decimal("12")
    assert ledger.item("chapa").available == Decimal("8")


def test_release_more_than_reserved_is_refused(ledger):
    ledger.reserve("op-1", [_demand("chapa", "2")])

    with pytest.raises(NegativeBalanceError):
        ledger.record_movement("chapa", MovementKind.RELEASE, Decimal("3"), origin="op-1")
    assert ledger.item("chapa").reserved == Decimal("2")


def test_reserve_and_release_need_an_order_origin(ledger):
    ledger.reserve("op-1", [_demand("chapa", "2")])

    with pytest.raises(LedgerError):
        ledger.record_movement("chapa", MovementKind.RELEASE, Decimal("2"))
    with pytest.raises(LedgerError):
        ledger.record_movement("chapa", MovementKind.RESERVE, Decimal("1"))
    assert ledger.item("chapa").reserved == Decimal("2")
    assert ledger.reserved_for("op-1") == {"chapa": Decimal("2")}


def test_release_cannot_free_another_orders_reservation(ledger):
    ledger.reserve("op-1", [_demand("chapa", "2")])

    with pytest.raises(NegativeBalanceError):
        ledger.record_movement("chapa", MovementKind.RELEASE, Decimal("2"), origin="op-2")
    assert ledger.reserved_for("op-1") == {"chapa": Decimal("2")}


def test_manual_release_then_consume_never_goes_negative(ledger):
    ledger.reserve("op-1", [_demand("chapa", "4")])
    ledger.record_movement("chapa", MovementKind.RELEASE, Decimal("4"), origin="op-1")

    assert ledger.reserved_for("op-1") == {}
    with pytest.raises(OverConsumptionError):
        ledger.consume("op-1", [_demand("chapa", "4")])

    item = ledger.item("chapa")
    assert (item.total, item.reserved, item.available) == (Decimal("5"), 0, Decimal("5"))
    assert ledger.verify() == []


def test_manual_reserve_is_tracked_per_order(ledger):
    ledger.record_movement("chapa", MovementKind.RESERVE, Decimal("3"), origin="op-7")

    assert ledger.reserved_for("op-7") == {"chapa": Decimal("3")}
    ledger.consume("op-7", [_demand("chapa", "3")])
    assert ledger.item("chapa").total == Decimal("2")
    assert ledger.verify() == []


def test_negative_quantities_are_refused(ledger):
    with pytest.raises(NegativeBalanceError):
        ledger.record_movement("chapa", MovementKind.ENTRY, Decimal("-1"))
    with pytest.raises(LedgerError):
        ledger.reserve("op-1", [_demand("chapa", "-1")])


def test_movement_on_unknown_material(ledger):
    with pytest.raises(UnknownMaterialError):
        ledger.record_movement("parafuso", MovementKind.ENTRY, Decimal("1"))


def test_critical_items(ledger):
    assert ledger.critical_items() == []

    ledger.reserve("op-1", [_demand("pe", "6")])

    assert [item.material_id for item in ledger.critical_items()] == ["pe"]


def test_balances_are_derivable_from_the_log(ledger):
    ledger.reserve("op-1", [_demand("chapa", "3"), _demand("pe", "2")])
    ledger.consume("op-1", [_demand("chapa", "3")])
    ledger.record_movement("pe", MovementKind.ENTRY, Decimal("5"), origin="NF 1234")

    replayed = InventoryLedger.replay(ledger.items(), ledger.movements())

    assert ledger.verify() == []
    assert replayed.items() == ledger.items()
    assert replayed.reserved_for("op-1") == {"pe": Decimal("2")}
    sequences = [movement.sequence for movement in ledger.movements()]
    assert sequences == sorted(sequences) == list(range(1, len(sequences) + 1))


def test_consume_refuses_to_drain_a_reservation_the_balance_lacks():
    source = InventoryLedger()
    source.register_material("chapa", "Chapa 304", "kg", initial_quantity=Decimal("5"))
    (reserve,) = source.reserve("op-1", [_demand("chapa", "4")])
    # Older logs could free a reservation without naming the order.
    unowned_release = replace(
        reserve,
        movement_id="liberacao-avulsa",
        sequence=reserve.sequence + 1,
        kind=MovementKind.RELEASE,
        reserved_after=Decimal("0"),
        origin="",
    )

    ledger = InventoryLedger.replay(source.items(), [*source.movements(), unowned_release])

    assert any("orders hold" in problem for problem in ledger.verify())
    before = ledger.movements()
    with pytest.raises(NegativeBalanceError):
        ledger.consume("op-1", [_demand("chapa", "4")])
    assert ledger.movements() == before
    assert ledger.item("chapa").reserved == 0


def test_failed_listener_leaves_the_ledger_untouched():
    seen = []

    def listener(movements):
        if any(movement.kind is MovementKind.RESERVE for movement in movements):
            raise RuntimeError("disk full")
        seen.extend(movements)

    ledger = InventoryLedger(on_movement=listener)
    ledger.register_material("chapa", "Chapa 304", "kg", initial_quantity=Decimal("5"))

    with pytest.raises(RuntimeError):
        ledger.reserve("op-1", [_demand("chapa", "4")])

    item = ledger.item("chapa")
    assert (item.total, item.reserved) == (Decimal("5"), 0)
    assert ledger.reserved_for("op-1") == {}
    assert ledger.movements() == seen
    assert ledger.verify() == []


def test_listener_receives_a_consumption_as_one_batch():
    batches = []
    ledger = InventoryLedger(on_movement=batches.append)
    ledger.register_material("chapa", "Chapa 304", "kg", initial_quantity=Decimal("5"))
    ledger.register_material("pe", "Pé regulável", "un", initial_quantity=Decimal("8"))
    ledger.reserve("op-1", [_demand("chapa", "2"), _demand("pe", "4")])

    ledger.consume("op-1", [_demand("chapa", "2"), _demand("pe", "4")])

    assert [len(batch) for batch in batches] == [1, 1, 2, 4]
    assert [movement for batch in batches for movement in batch] == ledger.movements()
