"""Cost breakdown of one product unit from its BOM, sheet nesting and bar cutting."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Sequence, Tuple

from .catalog import CatalogLookup
from .config import CostConfig
from .domain import (
    BOM,
    ZERO,
    BarNestingResult,
    CostBreakdown,
    CostCategory,
    CostLine,
    NestingPlan,
    NestingResult,
    ProcessStep,
)
from .errors import CostConfigurationError

logger = logging.getLogger(__name__)

MATERIALS = "materials"
LABOR = "labor"
LOSS = "loss"
PACKAGING = "packaging"
OVERHEAD = "overhead"
CATEGORY_ORDER = (MATERIALS, LABOR, LOSS, PACKAGING, OVERHEAD)

HUNDRED = Decimal("100")
SIXTY = Decimal("60")


def to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


def purchased_sheet_kg(group: NestingResult, density_kg_m3: float) -> Decimal:
    """Mass of every stock sheet a group consumes, waste included."""

    volume_m3 = to_decimal(group.stock_area_mm2) * to_decimal(group.thickness_mm) / Decimal(10) ** 9
    return volume_m3 * to_decimal(density_kg_m3)


def _line(description: str, quantity: Decimal, unit: str, unit_cost: Decimal) -> CostLine:
    return CostLine(
        description=description,
        quantity=quantity,
        unit=unit,
        unit_cost=unit_cost,
        amount=quantity * unit_cost,
    )


def _category(name: str, lines: Sequence[CostLine]) -> CostCategory:
    return CostCategory(
        name=name, amount=sum((line.amount for line in lines), ZERO), lines=tuple(lines)
    )


def _sheet_lines(nesting: NestingPlan, catalog: CatalogLookup) -> List[CostLine]:
    lines = []
    for group in nesting.groups:
        grade = catalog.material_grade(group.grade_id)
        lines.append(
            _line(
                f"Chapa {group.material_id} {group.stock} x{group.sheet_count}",
                purchased_sheet_kg(group, grade.density_kg_m3),
                "kg",
                catalog.material_price(group.grade_id),
            )
        )
    return lines


def purchased_bar_meters(result: BarNestingResult) -> Decimal:
    """Length of every commercial bar a tube section consumes, offcuts included."""

    return to_decimal(result.bar_length_mm) * result.bar_count / Decimal(1000)


def _tube_lines(bom: BOM, nesting: NestingPlan, catalog: CatalogLookup) -> List[CostLine]:
    cut = {result.section_id for result in nesting.bars}
    uncut = sorted({part.section_id for part in bom.tube_parts} - cut)
    if uncut:
        raise CostConfigurationError(
            f"Nesting plan has no bar layout for tube section(s): {', '.join(uncut)}"
        )
    lines = []
    for result in nesting.bars:
        tube = catalog.tube_definition(result.section_id)
        lines.append(
            _line(
                f"{tube.name} {result.bar_count} barra(s) de {result.bar_length_mm:g} mm",
                purchased_bar_meters(result),
                "m",
                tube.price_per_meter,
            )
        )
    return lines


def _accessory_lines(bom: BOM, catalog: CatalogLookup) -> List[CostLine]:
    lines = []
    for part in bom.accessories:
        accessory = catalog.accessory_definition(part.sku)
        lines.append(
            _line(accessory.name, Decimal(part.quantity), part.unit, accessory.unit_price)
        )
    return lines


def _labor_lines(processes: Sequence[ProcessStep], config: CostConfig) -> List[CostLine]:
    return [
        _line(
            step.description or step.kind.value,
            to_decimal(step.minutes) / SIXTY,
            "h",
            config.rate_for(step.kind),
        )
        for step in processes
    ]


def packaging_cost(category: str, config: CostConfig) -> Tuple[str, Decimal]:
    """Packaging entry for ``category``, falling back to the ``default`` entry."""

    table = config.packaging_costs
    if category in table:
        return category, table[category]
    if "default" in table:
        return "default", table["default"]
    raise CostConfigurationError(
        f"Packaging table has no entry for {category!r} and no 'default' entry"
    )


def calculate_cost(
    bom: BOM,
    nesting: NestingPlan,
    processes: Sequence[ProcessStep],
    config: CostConfig,
    *,
    catalog: CatalogLookup,
) -> CostBreakdown:
    """Cost of one unit by category, at full precision."""

    if bom.is_empty:
        return CostBreakdown()

    sheet_lines = _sheet_lines(nesting, catalog)
    tube_lines = _tube_lines(bom, nesting, catalog)
    accessory_lines = _accessory_lines(bom, catalog)
    materials = _category(MATERIALS, sheet_lines + tube_lines + accessory_lines)

    labor = _category(LABOR, _labor_lines(processes, config))

    lossable = sum((line.amount for line in sheet_lines + tube_lines), ZERO)
    loss = _category(
        LOSS,
        [_line("Perda de processo", lossable, "BRL", config.loss_percent / HUNDRED)],
    )

    entry, amount = packaging_cost(bom.category, config)
    packaging = _category(PACKAGING, [_line(f"Embalagem ({entry})", Decimal(1), "un", amount)])

    overhead_base = materials.amount + labor.amount
    overhead = _category(
        OVERHEAD,
        [_line("Custos indiretos", overhead_base, "BRL", config.overhead_percent / HUNDRED)],
    )

    breakdown = CostBreakdown(categories=(materials, labor, loss, packaging, overhead))
    logger.debug("Cost for %s: %s", bom.model_id, breakdown.rounded())
    return breakdown


__all__ = [
    "MATERIALS",
    "LABOR",
    "LOSS",
    "PACKAGING",
    "OVERHEAD",
    "CATEGORY_ORDER",
    "to_decimal",
    "purchased_sheet_kg",
    "purchased_bar_meters",
    "packaging_cost",
    "calculate_cost",
]
