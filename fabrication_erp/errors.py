"""Exception hierarchy for the quote-to-production engine."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple


class FabricationError(Exception):
    """Base class for every error raised by the engine."""


# ----------------------------------------------------------------------
# Validation errors: bad input shape or range, never retried
# ----------------------------------------------------------------------
class EngineValidationError(FabricationError):
    """Raised when caller supplied input is malformed or out of range."""


class UnknownModelError(EngineValidationError):
    """Raised when a product model id is not in the model registry."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Unknown product model {model_id!r}")
        self.model_id = model_id


class DimensionOutOfRangeError(EngineValidationError):
    """Raised when one or more requested dimensions violate model bounds."""

    def __init__(self, model_id: str, problems: Sequence[str]) -> None:
        self.model_id = model_id
        self.problems: Tuple[str, ...] = tuple(problems)
        super().__init__(
            f"Invalid dimensions for model {model_id!r}: " + "; ".join(self.problems)
        )


class UnsupportedOptionError(EngineValidationError):
    """Raised when a finish or feature flag is not offered for a model."""


class UnknownCatalogEntryError(EngineValidationError, KeyError):
    """Raised when a grade, tube section or accessory SKU is not cataloged."""

    def __init__(self, table: str, key: str) -> None:
        self.table = table
        self.key = key
        super().__init__(f"No {table} entry for {key!r}")

    def __str__(self) -> str:
        return f"No {self.table} entry for {self.key!r}"


class InvalidMarginError(EngineValidationError):
    """Raised when a margin configuration cannot produce a valid price."""


class InvalidTaxRateError(EngineValidationError):
    """Raised when a tax regime sums to 100% or more."""


class CostConfigurationError(EngineValidationError):
    """Raised when the cost configuration lacks a required table entry."""


# ----------------------------------------------------------------------
# Policy violations: every violation is reported, not only the first
# ----------------------------------------------------------------------
class PolicyViolationError(FabricationError):
    """Raised when input is well formed but breaks a business policy."""

    def __init__(self, violations: Iterable[str]) -> None:
        self.violations: List[str] = list(violations)
        super().__init__("; ".join(self.violations))


class PieceExceedsStockError(PolicyViolationError):
    """Raised when a sheet piece fits no permitted stock size or a tube cut exceeds its bar."""


class DisallowedStockSizeError(PolicyViolationError):
    """Raised when nesting is requested against a non-standard sheet size."""


class QuoteValidationError(PolicyViolationError):
    """Raised when a quote cannot be submitted for approval."""


# ----------------------------------------------------------------------
# State machine violations: caller bugs
# ----------------------------------------------------------------------
class StateTransitionError(FabricationError):
    """Raised when an aggregate transition is not permitted."""


class InvalidTransitionError(StateTransitionError):
    """Raised when an event is not valid for the current status."""

    def __init__(self, record: str, status: str, event: str) -> None:
        self.record = record
        self.status = status
        self.event = event
        super().__init__(f"{record}: cannot {event} while {status}")


class QuoteNotApprovedError(InvalidTransitionError):
    """Raised when a production order is requested from an unapproved quote."""


class AlreadyConvertedError(StateTransitionError):
    """Raised when a quote already references a production order."""

    def __init__(self, quote_id: str, production_order_id: str) -> None:
        self.quote_id = quote_id
        self.production_order_id = production_order_id
        super().__init__(
            f"Quote {quote_id!r} was already converted into order {production_order_id!r}"
        )


class ReservationRequiredError(StateTransitionError):
    """Raised when production is started before materials were reserved."""


# ----------------------------------------------------------------------
# Inventory ledger
# ----------------------------------------------------------------------
class LedgerError(FabricationError):
    """Base class for inventory ledger failures."""


class InsufficientStockError(LedgerError):
    """Raised when a reservation cannot be fully covered by available stock.

    The ``shortages`` attribute lists every material that is short so the
    caller can raise purchase requests before retrying.
    """

    def __init__(self, shortages: Sequence, message: str = "") -> None:
        self.shortages = list(shortages)
        if not message:
            details = ", ".join(
                f"{shortage.material_id} short by {shortage.shortfall}"
                for shortage in self.shortages
            )
            message = f"Insufficient stock: {details}"
        super().__init__(message)


class UnknownMaterialError(InsufficientStockError):
    """Raised when an operation references a material the ledger does not hold."""

    def __init__(self, missing: Sequence[str], shortages: Sequence = ()) -> None:
        self.missing: Tuple[str, ...] = tuple(missing)
        names = ", ".join(repr(material_id) for material_id in self.missing)
        super().__init__(shortages, f"Unknown material(s) in ledger: {names}")


class OverConsumptionError(LedgerError):
    """Raised when an order consumes more than it reserved."""


class NegativeBalanceError(LedgerError):
    """Raised when a movement would drive a balance below zero."""


__all__ = [
    "FabricationError",
    "EngineValidationError",
    "UnknownModelError",
    "DimensionOutOfRangeError",
    "UnsupportedOptionError",
    "UnknownCatalogEntryError",
    "InvalidMarginError",
    "InvalidTaxRateError",
    "CostConfigurationError",
    "PolicyViolationError",
    "PieceExceedsStockError",
    "DisallowedStockSizeError",
    "QuoteValidationError",
    "StateTransitionError",
    "InvalidTransitionError",
    "QuoteNotApprovedError",
    "AlreadyConvertedError",
    "ReservationRequiredError",
    "LedgerError",
    "InsufficientStockError",
    "UnknownMaterialError",
    "OverConsumptionError",
    "NegativeBalanceError",
]
