"""Production order aggregate derived from an approved quote."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Tuple
from uuid import uuid4

from .audit import AuditFact
from .domain import (
    MaterialDemand,
    OrderPriority,
    OrderStatus,
    ProductionOrder,
    Quote,
    QuoteStatus,
    utcnow,
)
from .errors import (
    AlreadyConvertedError,
    InvalidTransitionError,
    QuoteNotApprovedError,
    ReservationRequiredError,
)
from .quotes import TransitionResult, mark_converted

MODULE = "production"
DEFAULT_LEAD_DAYS = 15


class OrderEvent(str, Enum):
    RESERVE = "reserve"
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass(frozen=True, slots=True)
class OrderCreation:
    """Outcome of converting a quote: the new order and the converted quote."""

    order: ProductionOrder
    quote: Quote
    facts: Tuple[AuditFact, ...] = ()


def _fact(
    action: str, before: ProductionOrder, after: ProductionOrder, actor: str, **extra: Any
) -> AuditFact:
    return AuditFact(
        action=action,
        module=MODULE,
        record_id=after.id,
        record_name=after.number,
        before={
            "status": before.status.value,
            "materials_reserved": before.materials_reserved,
            "materials_consumed": before.materials_consumed,
        },
        after={
            "status": after.status.value,
            "materials_reserved": after.materials_reserved,
            "materials_consumed": after.materials_consumed,
            **extra,
        },
        actor=actor,
    )


def _require(order: ProductionOrder, status: OrderStatus, event: OrderEvent) -> None:
    if order.status is not status:
        raise InvalidTransitionError(f"Order {order.number}", order.status.value, event.value)


def aggregate_demand(quote: Quote) -> Tuple[MaterialDemand, ...]:
    """Sum every line's per-unit demand times the line quantity, by material id."""

    totals: Dict[str, MaterialDemand] = {}
    for line in quote.lines:
        for item in line.snapshot.demand:
            quantity = item.quantity * line.quantity
            current = totals.get(item.material_id)
            if current is not None:
                quantity += current.quantity
            totals[item.material_id] = MaterialDemand(
                item.material_id, item.name, item.unit, quantity
            )
    return tuple(totals.values())


def create_order_from_quote(
    quote: Quote,
    *,
    number: str,
    opened_on: date,
    lead_days: int = DEFAULT_LEAD_DAYS,
    priority: OrderPriority = OrderPriority.NORMAL,
    actor: str = "system",
) -> OrderCreation:
    """Create the single production order an approved quote may have."""

    if quote.production_order_id is not None:
        raise AlreadyConvertedError(quote.id, quote.production_order_id)
    if quote.status is not QuoteStatus.APPROVED:
        raise QuoteNotApprovedError(f"Quote {quote.number}", quote.status.value, "convert")
    order = ProductionOrder(
        id=str(uuid4()),
        number=number,
        quote_id=quote.id,
        customer_id=quote.customer_id,
        customer_name=quote.customer_name,
        opened_on=opened_on,
        forecast_on=opened_on + timedelta(days=lead_days),
        demand=aggregate_demand(quote),
        priority=priority,
    )
    converted = mark_converted(quote, order.id, actor=actor)
    created = AuditFact(
        action="create",
        module=MODULE,
        record_id=order.id,
        record_name=order.number,
        after={
            "status": order.status.value,
            "quote_id": quote.id,
            "materials": len(order.demand),
        },
        actor=actor,
    )
    return OrderCreation(order, converted.record, converted.facts + (created,))


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------
def mark_materials_reserved(
    order: ProductionOrder, *, actor: str = "system"
) -> TransitionResult[ProductionOrder]:
    """Record that the ledger committed a reservation for this order."""

    _require(order, OrderStatus.PENDING, OrderEvent.RESERVE)
    if order.materials_reserved:
        raise InvalidTransitionError(
            f"Order {order.number}", "materials already reserved", OrderEvent.RESERVE.value
        )
    updated = replace(order, materials_reserved=True)
    return TransitionResult(updated, (_fact("reserve_materials", order, updated, actor),))


def start(order: ProductionOrder, *, actor: str = "system") -> TransitionResult[ProductionOrder]:
    _require(order, OrderStatus.PENDING, OrderEvent.START)
    if not order.materials_reserved:
        raise ReservationRequiredError(
            f"Order {order.number}: reserve materials before starting production"
        )
    updated = replace(
        order,
        status=OrderStatus.IN_PRODUCTION,
        materials_consumed=True,
        started_at=utcnow(),
    )
    return TransitionResult(updated, (_fact("start", order, updated, actor),))


def pause(
    order: ProductionOrder, reason: str, *, actor: str = "system"
) -> TransitionResult[ProductionOrder]:
    _require(order, OrderStatus.IN_PRODUCTION, OrderEvent.PAUSE)
    updated = replace(order, status=OrderStatus.PAUSED, pause_reason=reason)
    return TransitionResult(updated, (_fact("pause", order, updated, actor, reason=reason),))


def resume(
    order: ProductionOrder, reason: str = "", *, actor: str = "system"
) -> TransitionResult[ProductionOrder]:
    _require(order, OrderStatus.PAUSED, OrderEvent.RESUME)
    updated = replace(order, status=OrderStatus.IN_PRODUCTION, pause_reason="")
    return TransitionResult(updated, (_fact("resume", order, updated, actor, reason=reason),))


def complete(order: ProductionOrder, *, actor: str = "system") -> TransitionResult[ProductionOrder]:
    _require(order, OrderStatus.IN_PRODUCTION, OrderEvent.COMPLETE)
    completed_at = utcnow()
    updated = replace(order, status=OrderStatus.COMPLETED, completed_at=completed_at)
    return TransitionResult(
        updated,
        (_fact("complete", order, updated, actor, completed_at=completed_at.isoformat()),),
    )


def cancel(
    order: ProductionOrder, reason: str, *, actor: str = "system"
) -> TransitionResult[ProductionOrder]:
    """Cancel a pending order; any reservation must be released by the caller."""

    _require(order, OrderStatus.PENDING, OrderEvent.CANCEL)
    updated = replace(
        order, status=OrderStatus.CANCELLED, cancel_reason=reason, materials_reserved=False
    )
    return TransitionResult(updated, (_fact("cancel", order, updated, actor, reason=reason),))


def transition(
    order: ProductionOrder, event: OrderEvent, *, actor: str = "system", reason: str = ""
) -> TransitionResult[ProductionOrder]:
    """Dispatch ``event`` to its transition function."""

    event = OrderEvent(event)
    if event is OrderEvent.RESERVE:
        return mark_materials_reserved(order, actor=actor)
    if event is OrderEvent.START:
        return start(order, actor=actor)
    if event is OrderEvent.PAUSE:
        return pause(order, reason, actor=actor)
    if event is OrderEvent.RESUME:
        return resume(order, reason, actor=actor)
    if event is OrderEvent.COMPLETE:
        return complete(order, actor=actor)
    return cancel(order, reason, actor=actor)


def total_demand(order: ProductionOrder, material_id: str) -> Decimal:
    return sum(
        (item.quantity for item in order.demand if item.material_id == material_id),
        Decimal("0"),
    )


__all__ = [
    "MODULE",
    "DEFAULT_LEAD_DAYS",
    "OrderEvent",
    "OrderCreation",
    "aggregate_demand",
    "create_order_from_quote",
    "mark_materials_reserved",
    "start",
    "pause",
    "resume",
    "complete",
    "cancel",
    "transition",
    "total_demand",
]
