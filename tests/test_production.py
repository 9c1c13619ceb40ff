from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from fabrication_erp import production
from fabrication_erp.domain import (
    MovementKind,
    OrderPriority,
    OrderStatus,
    ProductRequest,
    QuoteStatus,
)
from fabrication_erp.errors import (
    AlreadyConvertedError,
    InsufficientStockError,
    InvalidTransitionError,
    QuoteNotApprovedError,
    ReservationRequiredError,
)


def test_draft_quote_cannot_be_converted(service, bench_request):
    quote = service.create_quote("CLI-1", "Cozinha Industrial Ltda")
    service.add_line(quote.id, bench_request, 1)

    with pytest.raises(QuoteNotApprovedError):
        service.convert_quote(quote.id)
    assert service.orders.list() == []


def test_approved_quote_converts_exactly_once(service, approved_quote):
    order = service.convert_quote(approved_quote.id, priority=OrderPriority.HIGH)

    quote = service.quotes.get(approved_quote.id)
    assert quote.status is QuoteStatus.CONVERTED
    assert quote.production_order_id == order.id
    assert order.number == "OP-0001"
    assert order.status is OrderStatus.PENDING
    assert order.priority is OrderPriority.HIGH
    assert order.forecast_on == date(2026, 10, 17) + timedelta(days=15)
    assert service.order_for_quote(quote.id) == order

    with pytest.raises(AlreadyConvertedError):
        service.convert_quote(approved_quote.id)
    assert len(service.orders.list()) == 1


def test_order_demand_is_line_demand_times_quantity(service, approved_quote):
    order = service.convert_quote(approved_quote.id)

    assert production.total_demand(order, "inox304-1mm") == Decimal("39.500")
    assert production.total_demand(order, "pe-regulavel") == Decimal("8")
    assert production.total_demand(order, "tubo-38x1.2") == Decimal("12.000")


def test_start_requires_reservation(service, approved_quote):
    order = service.convert_quote(approved_quote.id)

    with pytest.raises(ReservationRequiredError):
        service.start_production(order.id)
    assert service.ledger.movements(kind=MovementKind.EXIT) == []


def test_reserve_start_complete_consumes_stock(service, approved_quote):
    order = service.convert_quote(approved_quote.id)

    reserved = service.reserve_materials(order.id)
    assert reserved.materials_reserved is True
    assert service.ledger.item("inox304-1mm").reserved == Decimal("39.500")

    started = service.start_production(order.id)
    assert started.status is OrderStatus.IN_PRODUCTION
    assert started.materials_consumed is True
    sheet = service.ledger.item("inox304-1mm")
    assert sheet.total == Decimal("60.500")
    assert sheet.reserved == 0
    assert service.ledger.reserved_for(order.id) == {}

    paused = service.pause_production(order.id, "Falta de gás argônio")
    assert paused.pause_reason == "Falta de gás argônio"
    service.resume_production(order.id)
    completed = service.complete_production(order.id)
    assert completed.status is OrderStatus.COMPLETED
    assert completed.completed_at is not None
    assert service.ledger.verify() == []


def test_reservation_is_all_or_nothing(service, approved_quote):
    order = service.convert_quote(approved_quote.id)
    service.ledger.record_movement("pe-regulavel", MovementKind.EXIT, Decimal("45"))

    assert [s.material_id for s in service.check_materials(order.id)] == ["pe-regulavel"]
    with pytest.raises(InsufficientStockError) as excinfo:
        service.reserve_materials(order.id)

    (shortage,) = excinfo.value.shortages
    assert shortage.shortfall == Decimal("3")
    assert service.orders.get(order.id).materials_reserved is False
    assert all(item.reserved == 0 for item in service.ledger.items())


def test_reserve_twice_is_refused(service, approved_quote):
    order = service.convert_quote(approved_quote.id)
    service.reserve_materials(order.id)

    with pytest.raises(InvalidTransitionError):
        service.reserve_materials(order.id)
    assert service.ledger.item("pe-regulavel").reserved == Decimal("8")


def test_cancel_releases_reservation(service, approved_quote):
    order = service.convert_quote(approved_quote.id)
    service.reserve_materials(order.id)

    cancelled = service.cancel_order(order.id, "Cliente desistiu")

    assert cancelled.status is OrderStatus.CANCELLED
    assert cancelled.materials_reserved is False
    assert all(item.reserved == 0 for item in service.ledger.items())
    assert service.ledger.item("inox304-1mm").available == Decimal("100")


def test_cancel_is_only_allowed_while_pending(service, approved_quote):
    order = service.convert_quote(approved_quote.id)
    service.reserve_materials(order.id)
    service.start_production(order.id)

    with pytest.raises(InvalidTransitionError):
        service.cancel_order(order.id, "tarde demais")


def test_audit_trail_records_every_transition(service, approved_quote, trail):
    order = service.convert_quote(approved_quote.id)
    service.reserve_materials(order.id)

    assert trail.actions(approved_quote.id) == ["create", "add_line", "submit", "approve", "convert"]
    assert trail.actions(order.id) == ["create", "reserve_materials"]


def test_quote_numbers_are_monthly_sequences(service):
    first = service.create_quote("CLI-1", "A")
    second = service.create_quote("CLI-2", "B")

    assert first.number == "ORC-202610-0001"
    assert second.number == "ORC-202610-0002"


def test_suggested_discount_is_applied(service):
    quote = service.create_quote("CLI-1", "Hospital Regional")
    service.add_lines(
        quote.id,
        [
            (ProductRequest("prateleira", 1000, 300), 8),
            (ProductRequest("prateleira", 600, 300), 4),
        ],
    )

    updated = service.apply_suggested_discount(quote.id)

    assert updated.item_count == 12
    assert updated.discount_percent >= Decimal("10")
    assert [line.quantity for line in updated.lines] == [8, 4]
