"""Margin, tax gross-up and discount rules."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

from .config import CostConfig, DiscountTier, MarginMethod, TaxRegime
from .domain import ZERO, CostBreakdown, PricingResult, TaxLine
from .errors import InvalidMarginError, InvalidTaxRateError

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ONE = Decimal("1")


def _fraction(percent: Decimal) -> Decimal:
    return Decimal(percent) / HUNDRED


def net_price(base_cost: Decimal, margin_percent: Decimal, method: MarginMethod) -> Decimal:
    """Price before tax for the given margin method."""

    if method is MarginMethod.TARGET_MARGIN:
        if margin_percent >= HUNDRED:
            raise InvalidMarginError(
                f"Target margin must be below 100% (got {margin_percent}%)"
            )
        return base_cost / (ONE - _fraction(margin_percent))
    if margin_percent <= -HUNDRED:
        raise InvalidMarginError(f"Markup must be above -100% (got {margin_percent}%)")
    return base_cost * (ONE + _fraction(margin_percent))


def _check_regime(regime: TaxRegime) -> Decimal:
    rate = regime.total_rate_percent
    if rate >= HUNDRED:
        raise InvalidTaxRateError(
            f"Tax regime {regime.name!r} totals {rate}%, which cannot be grossed up"
        )
    if any(component.rate_percent < 0 for component in regime.components):
        raise InvalidTaxRateError(f"Tax regime {regime.name!r} has a negative rate")
    return rate


def calculate_price(
    cost: CostBreakdown,
    config: CostConfig,
    *,
    category: Optional[str] = None,
) -> PricingResult:
    """Apply margin and tax rules to ``cost``.

    The margin comes from the category override when one is configured,
    otherwise from the default margin. Taxes are grossed up so that the
    final price carries the regime's rate on itself.
    """

    base = cost.total
    margin = Decimal(config.margin_for(category))
    override = margin < 0
    if override and not config.allow_negative_margin:
        raise InvalidMarginError(
            f"Negative margin {margin}% requires the negative-margin override"
        )
    net = net_price(base, margin, config.margin_method)

    floor_applied = False
    if config.minimum_margin_percent is not None:
        floor = net_price(base, Decimal(config.minimum_margin_percent), MarginMethod.TARGET_MARGIN)
        if net < floor:
            net = floor
            floor_applied = True

    rate = _check_regime(config.tax_regime)
    final = net / (ONE - _fraction(rate))
    tax_lines = tuple(
        TaxLine(component.name, component.rate_percent, final * _fraction(component.rate_percent))
        for component in config.tax_regime.components
    )
    result = PricingResult(
        base_cost=base,
        method=config.margin_method.value,
        margin_percent=margin,
        net_price=net,
        tax_regime=config.tax_regime.name,
        tax_rate_percent=rate,
        tax_lines=tax_lines,
        tax_amount=final - net,
        final_price=final,
        negative_margin_override=override,
        floor_applied=floor_applied,
    )
    logger.debug(
        "Priced cost %.2f at %s%% (%s): net %.2f, final %.2f",
        base,
        margin,
        config.margin_method.value,
        net,
        final,
    )
    return result


def _best_tier(tiers: Iterable[DiscountTier], amount: Decimal) -> Decimal:
    return max((tier.percent for tier in tiers if amount >= tier.threshold), default=ZERO)


def suggest_discount_percent(
    config: CostConfig, quantity: int, order_value: Decimal
) -> Decimal:
    """Largest discount earned by either the quantity or the order value tiers."""

    return max(
        _best_tier(config.quantity_discounts, Decimal(quantity)),
        _best_tier(config.value_discounts, Decimal(order_value)),
    )


__all__ = [
    "net_price",
    "calculate_price",
    "suggest_discount_percent",
]
