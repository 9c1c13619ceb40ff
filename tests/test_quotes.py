from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from fabrication_erp import quotes
from fabrication_erp.domain import NestingPlan, QuoteStatus, SheetStock
from fabrication_erp.errors import (
    EngineValidationError,
    InvalidTransitionError,
    QuoteValidationError,
)

TODAY = date(2026, 10, 17)


@pytest.fixture
def draft():
    return quotes.new_quote(
        number="ORC-202610-0001",
        customer_id="CLI-1",
        customer_name="Padaria Central",
        valid_from=TODAY,
        validity_days=15,
    ).record


def test_new_quote_is_a_draft_with_validity(draft):
    assert draft.status is QuoteStatus.DRAFT
    assert draft.valid_until == TODAY + timedelta(days=15)
    assert draft.lines == ()


def test_empty_quote_cannot_be_submitted(draft):
    with pytest.raises(QuoteValidationError) as excinfo:
        quotes.submit(draft, on=TODAY)

    assert excinfo.value.violations == [quotes.EMPTY_QUOTE_MESSAGE]
    assert "at least 1 item" in str(excinfo.value)


def test_submit_approve_path(draft, bench_snapshot):
    quote = quotes.add_line(draft, bench_snapshot, 3).record
    submitted = quotes.submit(quote, on=TODAY)
    approved = quotes.approve(submitted.record, actor="gerente")

    assert submitted.record.status is QuoteStatus.AWAITING_APPROVAL
    assert approved.record.status is QuoteStatus.APPROVED
    (fact,) = approved.facts
    assert fact.action == "approve"
    assert fact.actor == "gerente"
    assert fact.before["status"] == "awaiting_approval"
    assert fact.after["status"] == "approved"


def test_reject_keeps_reason(draft, bench_snapshot):
    quote = quotes.submit(quotes.add_line(draft, bench_snapshot, 1).record, on=TODAY).record

    rejected = quotes.reject(quote, "Prazo muito longo").record

    assert rejected.status is QuoteStatus.REJECTED
    assert rejected.rejection_reason == "Prazo muito longo"


def test_transitions_from_wrong_status_are_refused(draft, bench_snapshot):
    with pytest.raises(InvalidTransitionError):
        quotes.approve(draft)
    with pytest.raises(InvalidTransitionError):
        quotes.reject(draft, "n/a")

    submitted = quotes.submit(quotes.add_line(draft, bench_snapshot, 1).record, on=TODAY).record
    with pytest.raises(InvalidTransitionError):
        quotes.add_line(submitted, bench_snapshot, 1)
    with pytest.raises(InvalidTransitionError):
        quotes.set_discount(submitted, Decimal("5"))


def test_snapshot_on_disallowed_stock_blocks_submission(draft, bench_snapshot):
    group = bench_snapshot.nesting.groups[0]
    tampered = replace(
        bench_snapshot,
        nesting=NestingPlan((replace(group, stock=SheetStock(1800, 1200)),)),
    )
    quote = quotes.add_line(draft, tampered, 1).record

    with pytest.raises(QuoteValidationError) as excinfo:
        quotes.submit(quote, on=TODAY)

    assert any("1800x1200" in violation for violation in excinfo.value.violations)


def test_every_violation_is_reported(draft, bench_snapshot):
    quote = quotes.add_line(draft, bench_snapshot, 0).record
    expired_on = quote.valid_until + timedelta(days=1)

    violations = quotes.validate_for_submission(quote, on=expired_on)

    assert violations == [
        "Line 1: quantity must be greater than 0",
        f"Quote expired on {quote.valid_until.isoformat()}",
    ]


def test_totals_and_discount(draft, bench_snapshot):
    quote = quotes.add_line(draft, bench_snapshot, 4, description="Bancada").record
    quote = quotes.set_discount(quote, Decimal("10")).record

    assert quote.item_count == 4
    assert quote.subtotal == bench_snapshot.unit_price * 4
    assert quote.discount_amount == quote.subtotal * Decimal("10") / 100
    assert quote.total == quote.subtotal - quote.discount_amount
    assert quote.lines[0].description == "Bancada"


def test_discount_outside_range_is_rejected(draft):
    with pytest.raises(EngineValidationError):
        quotes.set_discount(draft, Decimal("120"))


def test_remove_line(draft, bench_snapshot):
    quote = quotes.add_line(draft, bench_snapshot, 1).record
    line_id = quote.lines[0].line_id

    result = quotes.remove_line(quote, line_id)

    assert result.record.lines == ()
    assert result.facts[0].after["line_id"] == line_id
    with pytest.raises(EngineValidationError):
        quotes.remove_line(result.record, line_id)


def test_transitions_do_not_mutate_input(draft, bench_snapshot):
    quotes.add_line(draft, bench_snapshot, 1)

    assert draft.lines == ()
    assert draft.status is QuoteStatus.DRAFT


def test_dispatch_by_event(draft, bench_snapshot):
    quote = quotes.add_line(draft, bench_snapshot, 1).record

    submitted = quotes.transition(quote, quotes.QuoteEvent.SUBMIT, on=TODAY).record
    approved = quotes.transition(submitted, "approve").record
    converted = quotes.transition(
        approved, quotes.QuoteEvent.CONVERT, production_order_id="op-1"
    ).record

    assert converted.status is QuoteStatus.CONVERTED
    assert converted.production_order_id == "op-1"
