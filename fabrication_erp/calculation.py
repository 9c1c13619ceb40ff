"""Calculation pipeline: request -> BOM -> nesting -> cost -> price snapshot."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from .bom import ModelRegistry, build_bom
from .catalog import CatalogLookup
from .config import CostConfig
from .costing import calculate_cost, purchased_bar_meters, purchased_sheet_kg
from .domain import (
    BOM,
    CalculationSnapshot,
    MaterialDemand,
    NestingPlan,
    ProductRequest,
    SheetStock,
)
from .nesting import nest
from .pricing import calculate_price

logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal("0.001")


def _qty(value: Decimal) -> Decimal:
    return value.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def material_demand(
    bom: BOM, nesting: NestingPlan, catalog: CatalogLookup
) -> Tuple[MaterialDemand, ...]:
    """Per-unit stock demand: sheet kg and tube bar metres as purchased, accessory units."""

    demand: Dict[str, MaterialDemand] = {}

    def add(material_id: str, name: str, unit: str, quantity: Decimal) -> None:
        current = demand.get(material_id)
        if current is not None:
            quantity += current.quantity
        demand[material_id] = MaterialDemand(material_id, name, unit, quantity)

    for group in nesting.groups:
        grade = catalog.material_grade(group.grade_id)
        add(
            group.material_id,
            f"Chapa {grade.name} {group.thickness_mm:g} mm",
            "kg",
            purchased_sheet_kg(group, grade.density_kg_m3),
        )
    for result in nesting.bars:
        tube = catalog.tube_definition(result.section_id)
        add(result.section_id, tube.name, "m", purchased_bar_meters(result))
    for part in bom.accessories:
        add(part.sku, part.description, part.unit, Decimal(part.quantity))

    return tuple(
        MaterialDemand(item.material_id, item.name, item.unit, _qty(item.quantity))
        for item in demand.values()
    )


def calculate_snapshot(
    request: ProductRequest,
    *,
    catalog: CatalogLookup,
    config: CostConfig,
    registry: Optional[ModelRegistry] = None,
    sizes: Optional[Sequence[SheetStock]] = None,
    kerf_mm: float = 0.0,
    edge_margin_mm: float = 0.0,
) -> CalculationSnapshot:
    """Run the full pipeline for one request and freeze the outcome.

    ``sizes`` defaults to the stock sheet sizes the catalog offers.
    """

    bom = build_bom(request, catalog=catalog, registry=registry)
    if sizes is None:
        sizes = catalog.standard_sheet_sizes()
    plan = nest(
        bom, sizes, kerf_mm=kerf_mm, edge_margin_mm=edge_margin_mm, catalog=catalog
    )
    cost = calculate_cost(bom, plan, bom.processes, config, catalog=catalog)
    pricing = calculate_price(cost, config, category=bom.category)
    snapshot = CalculationSnapshot(
        snapshot_id=str(uuid4()),
        request=request,
        bom=bom,
        nesting=plan,
        cost=cost,
        pricing=pricing,
        demand=material_demand(bom, plan, catalog),
    )
    logger.debug(
        "Snapshot %s for %s: %d sheet(s), cost %.2f, price %.2f",
        snapshot.snapshot_id,
        request.model_id,
        plan.total_sheets,
        cost.total,
        pricing.final_price,
    )
    return snapshot


def calculate_snapshots(
    requests: Sequence[ProductRequest],
    *,
    catalog: CatalogLookup,
    config: CostConfig,
    registry: Optional[ModelRegistry] = None,
    max_workers: Optional[int] = None,
) -> List[CalculationSnapshot]:
    """Calculate independent lines in parallel; results keep request order.

    The first failing request re-raises its error once every line finished.
    """

    if not requests:
        return []

    def run(request: ProductRequest) -> CalculationSnapshot:
        return calculate_snapshot(request, catalog=catalog, config=config, registry=registry)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(run, requests))


__all__ = ["material_demand", "calculate_snapshot", "calculate_snapshots"]
