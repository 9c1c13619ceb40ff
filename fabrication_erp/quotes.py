"""Quote aggregate: pure transitions returning the new state plus audit facts."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, List, Optional, Tuple, TypeVar
from uuid import uuid4

from .audit import AuditFact
from .bom import DEFAULT_REGISTRY, ModelRegistry
from .domain import CalculationSnapshot, Quote, QuoteLine, QuoteStatus, utcnow
from .errors import (
    AlreadyConvertedError,
    EngineValidationError,
    InvalidTransitionError,
    QuoteNotApprovedError,
    QuoteValidationError,
)
from .nesting import validate_nesting

MODULE = "quotes"
EMPTY_QUOTE_MESSAGE = "Quote must contain at least 1 item"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TransitionResult(Generic[T]):
    """New aggregate state and the facts the transition produced."""

    record: T
    facts: Tuple[AuditFact, ...] = ()


class QuoteEvent(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CONVERT = "convert"


def _fact(action: str, before: Quote, after: Quote, actor: str, **extra: Any) -> AuditFact:
    return AuditFact(
        action=action,
        module=MODULE,
        record_id=after.id,
        record_name=after.number,
        before={
            "status": before.status.value,
            **{key: str(getattr(before, key)) for key in extra if hasattr(before, key)},
        },
        after={"status": after.status.value, **extra},
        actor=actor,
    )


def _require(quote: Quote, status: QuoteStatus, event: str) -> None:
    if quote.status is not status:
        raise InvalidTransitionError(f"Quote {quote.number}", quote.status.value, event)


# ----------------------------------------------------------------------
# Creation and draft editing
# ----------------------------------------------------------------------
def new_quote(
    *,
    number: str,
    customer_id: str,
    customer_name: str,
    valid_from: date,
    validity_days: int,
    notes: str = "",
    actor: str = "system",
) -> TransitionResult[Quote]:
    quote = Quote(
        id=str(uuid4()),
        number=number,
        customer_id=customer_id,
        customer_name=customer_name,
        valid_from=valid_from,
        valid_until=valid_from + timedelta(days=validity_days),
        notes=notes,
    )
    fact = AuditFact(
        action="create",
        module=MODULE,
        record_id=quote.id,
        record_name=quote.number,
        after={"status": quote.status.value, "customer_id": customer_id},
        actor=actor,
    )
    return TransitionResult(quote, (fact,))


def add_line(
    quote: Quote,
    snapshot: CalculationSnapshot,
    quantity: int,
    *,
    description: str = "",
    actor: str = "system",
) -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.DRAFT, "add line")
    line = QuoteLine(
        line_id=str(uuid4()),
        snapshot=snapshot,
        quantity=quantity,
        description=description or snapshot.model_id,
    )
    updated = replace(quote, lines=quote.lines + (line,), updated_at=utcnow())
    return TransitionResult(
        updated, (_fact("add_line", quote, updated, actor, line_id=line.line_id),)
    )


def remove_line(quote: Quote, line_id: str, *, actor: str = "system") -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.DRAFT, "remove line")
    lines = tuple(line for line in quote.lines if line.line_id != line_id)
    if len(lines) == len(quote.lines):
        raise EngineValidationError(f"Quote {quote.number} has no line {line_id!r}")
    updated = replace(quote, lines=lines, updated_at=utcnow())
    return TransitionResult(
        updated, (_fact("remove_line", quote, updated, actor, line_id=line_id),)
    )


def set_discount(
    quote: Quote, percent: Decimal, *, actor: str = "system"
) -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.DRAFT, "set discount")
    percent = Decimal(percent)
    if not Decimal(0) <= percent <= Decimal(100):
        raise EngineValidationError(f"Discount must be between 0 and 100% (got {percent}%)")
    updated = replace(quote, discount_percent=percent, updated_at=utcnow())
    return TransitionResult(
        updated,
        (_fact("set_discount", quote, updated, actor, discount_percent=str(percent)),),
    )


def set_notes(quote: Quote, notes: str, *, actor: str = "system") -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.DRAFT, "edit notes")
    updated = replace(quote, notes=notes, updated_at=utcnow())
    return TransitionResult(updated, (_fact("set_notes", quote, updated, actor),))


# ----------------------------------------------------------------------
# Submission rules
# ----------------------------------------------------------------------
def validate_for_submission(
    quote: Quote, *, on: date, registry: Optional[ModelRegistry] = None
) -> List[str]:
    """Every rule ``quote`` breaks; an empty list means it may be submitted."""

    registry = registry if registry is not None else DEFAULT_REGISTRY
    violations: List[str] = []
    if not quote.lines:
        violations.append(EMPTY_QUOTE_MESSAGE)
    for number, line in enumerate(quote.lines, start=1):
        prefix = f"Line {number}"
        snapshot = line.snapshot
        if line.quantity <= 0:
            violations.append(f"{prefix}: quantity must be greater than 0")
        if snapshot.model_id not in registry:
            violations.append(f"{prefix}: unknown model {snapshot.model_id!r}")
        if snapshot.bom.is_empty:
            violations.append(f"{prefix}: BOM is empty")
        if snapshot.nesting.is_empty:
            violations.append(f"{prefix}: nesting result is empty")
        violations.extend(
            f"{prefix}: {problem}"
            for problem in validate_nesting(snapshot.nesting, snapshot.bom)
            if problem != "Nesting result is empty"
        )
        if snapshot.cost.is_empty:
            violations.append(f"{prefix}: cost breakdown is empty")
    if quote.is_expired(on):
        violations.append(f"Quote expired on {quote.valid_until.isoformat()}")
    return violations


# ----------------------------------------------------------------------
# Status transitions
# ----------------------------------------------------------------------
def submit(
    quote: Quote,
    *,
    on: date,
    registry: Optional[ModelRegistry] = None,
    actor: str = "system",
) -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.DRAFT, QuoteEvent.SUBMIT.value)
    violations = validate_for_submission(quote, on=on, registry=registry)
    if violations:
        raise QuoteValidationError(violations)
    updated = replace(quote, status=QuoteStatus.AWAITING_APPROVAL, updated_at=utcnow())
    return TransitionResult(updated, (_fact("submit", quote, updated, actor),))


def approve(quote: Quote, *, actor: str = "system") -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.AWAITING_APPROVAL, QuoteEvent.APPROVE.value)
    updated = replace(quote, status=QuoteStatus.APPROVED, updated_at=utcnow())
    return TransitionResult(updated, (_fact("approve", quote, updated, actor),))


def reject(quote: Quote, reason: str, *, actor: str = "system") -> TransitionResult[Quote]:
    _require(quote, QuoteStatus.AWAITING_APPROVAL, QuoteEvent.REJECT.value)
    updated = replace(
        quote, status=QuoteStatus.REJECTED, rejection_reason=reason, updated_at=utcnow()
    )
    return TransitionResult(
        updated, (_fact("reject", quote, updated, actor, rejection_reason=reason),)
    )


def mark_converted(
    quote: Quote, production_order_id: str, *, actor: str = "system"
) -> TransitionResult[Quote]:
    """Record the production order back-reference; only once, only when approved."""

    if quote.production_order_id is not None:
        raise AlreadyConvertedError(quote.id, quote.production_order_id)
    if quote.status is not QuoteStatus.APPROVED:
        raise QuoteNotApprovedError(
            f"Quote {quote.number}", quote.status.value, QuoteEvent.CONVERT.value
        )
    updated = replace(
        quote,
        status=QuoteStatus.CONVERTED,
        production_order_id=production_order_id,
        updated_at=utcnow(),
    )
    return TransitionResult(
        updated,
        (
            _fact(
                "convert", quote, updated, actor, production_order_id=production_order_id
            ),
        ),
    )


def transition(
    quote: Quote, event: QuoteEvent, *, actor: str = "system", **kwargs: Any
) -> TransitionResult[Quote]:
    """Dispatch ``event`` to its transition function."""

    event = QuoteEvent(event)
    if event is QuoteEvent.SUBMIT:
        return submit(quote, actor=actor, **kwargs)
    if event is QuoteEvent.APPROVE:
        return approve(quote, actor=actor)
    if event is QuoteEvent.REJECT:
        return reject(quote, kwargs.get("reason", ""), actor=actor)
    return mark_converted(quote, kwargs["production_order_id"], actor=actor)


__all__ = [
    "MODULE",
    "EMPTY_QUOTE_MESSAGE",
    "TransitionResult",
    "QuoteEvent",
    "new_quote",
    "add_line",
    "remove_line",
    "set_discount",
    "set_notes",
    "validate_for_submission",
    "submit",
    "approve",
    "reject",
    "mark_converted",
    "transition",
]
