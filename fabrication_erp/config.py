"""Cost, margin and tax configuration supplied to each calculation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .domain import ProcessKind


class MarginMethod(str, Enum):
    """How the configured margin turns cost into a net price."""

    TARGET_MARGIN = "target_margin"
    MARKUP = "markup"


@dataclass(frozen=True, slots=True)
class TaxComponent:
    name: str
    rate_percent: Decimal


@dataclass(frozen=True, slots=True)
class TaxRegime:
    """A named tax regime; a single component means a simplified regime."""

    name: str
    components: Tuple[TaxComponent, ...]

    @property
    def total_rate_percent(self) -> Decimal:
        return sum((component.rate_percent for component in self.components), Decimal("0"))

    @property
    def is_simplified(self) -> bool:
        return len(self.components) == 1


@dataclass(frozen=True, slots=True)
class DiscountTier:
    threshold: Decimal
    percent: Decimal


SIMPLES_NACIONAL = TaxRegime(
    "simples_nacional", (TaxComponent("Simples Nacional", Decimal("8.6")),)
)

LUCRO_PRESUMIDO = TaxRegime(
    "lucro_presumido",
    (
        TaxComponent("ICMS", Decimal("12")),
        TaxComponent("IPI", Decimal("5")),
        TaxComponent("PIS", Decimal("0.65")),
        TaxComponent("COFINS", Decimal("3")),
    ),
)

DEFAULT_PACKAGING_COSTS: Mapping[str, Decimal] = MappingProxyType(
    {
        "bancada": Decimal("45.00"),
        "bancada-com-cuba": Decimal("60.00"),
        "mesa": Decimal("45.00"),
        "prateleira": Decimal("18.00"),
        "cuba": Decimal("25.00"),
        "coifa": Decimal("80.00"),
        "estante": Decimal("55.00"),
        "default": Decimal("30.00"),
    }
)

DEFAULT_CATEGORY_MARGINS: Mapping[str, Decimal] = MappingProxyType(
    {
        "bancada": Decimal("25"),
        "bancada-com-cuba": Decimal("30"),
        "coifa": Decimal("35"),
        "chapa": Decimal("20"),
    }
)

DEFAULT_QUANTITY_DISCOUNTS: Tuple[DiscountTier, ...] = (
    DiscountTier(Decimal("5"), Decimal("5")),
    DiscountTier(Decimal("10"), Decimal("10")),
    DiscountTier(Decimal("20"), Decimal("15")),
)

DEFAULT_VALUE_DISCOUNTS: Tuple[DiscountTier, ...] = (
    DiscountTier(Decimal("10000"), Decimal("5")),
    DiscountTier(Decimal("25000"), Decimal("8")),
    DiscountTier(Decimal("50000"), Decimal("12")),
)


@dataclass(frozen=True, slots=True)
class CostConfig:
    """Every rate and table a cost + price calculation needs.

    Percentages are expressed as plain numbers (``30`` means 30%). The
    engine never falls back to values that are not present here.
    """

    loss_percent: Decimal = Decimal("8")
    labor_rate_per_hour: Decimal = Decimal("65.00")
    process_rates: Mapping[ProcessKind, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )
    overhead_percent: Decimal = Decimal("12")
    margin_method: MarginMethod = MarginMethod.TARGET_MARGIN
    margin_percent: Decimal = Decimal("30")
    category_margins: Mapping[str, Decimal] = field(
        default_factory=lambda: DEFAULT_CATEGORY_MARGINS
    )
    minimum_margin_percent: Optional[Decimal] = None
    allow_negative_margin: bool = False
    tax_regime: TaxRegime = SIMPLES_NACIONAL
    packaging_costs: Mapping[str, Decimal] = field(
        default_factory=lambda: DEFAULT_PACKAGING_COSTS
    )
    quantity_discounts: Tuple[DiscountTier, ...] = DEFAULT_QUANTITY_DISCOUNTS
    value_discounts: Tuple[DiscountTier, ...] = DEFAULT_VALUE_DISCOUNTS
    quote_validity_days: int = 15

    def rate_for(self, kind: ProcessKind) -> Decimal:
        return self.process_rates.get(kind, self.labor_rate_per_hour)

    def margin_for(self, category: Optional[str]) -> Decimal:
        if category is not None and category in self.category_margins:
            return self.category_margins[category]
        return self.margin_percent


def default_cost_config(**overrides) -> CostConfig:
    """Documented shop defaults with keyword overrides applied."""

    return replace(CostConfig(), **overrides)


__all__ = [
    "MarginMethod",
    "TaxComponent",
    "TaxRegime",
    "DiscountTier",
    "SIMPLES_NACIONAL",
    "LUCRO_PRESUMIDO",
    "DEFAULT_PACKAGING_COSTS",
    "DEFAULT_CATEGORY_MARGINS",
    "DEFAULT_QUANTITY_DISCOUNTS",
    "DEFAULT_VALUE_DISCOUNTS",
    "CostConfig",
    "default_cost_config",
]
