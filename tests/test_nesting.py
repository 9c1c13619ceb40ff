from __future__ import annotations

from collections import Counter
from dataclasses import replace
from itertools import combinations

import pytest

from fabrication_erp.bom import build_bom
from fabrication_erp.catalog import (
    DEFAULT_ACCESSORIES,
    DEFAULT_FINISHES,
    DEFAULT_GRADES,
    DEFAULT_TUBES,
    STANDARD_SHEET_SIZES,
    InMemoryCatalog,
)
from fabrication_erp.domain import (
    BOM,
    BarCut,
    NestingPlan,
    Placement,
    ProductRequest,
    SheetInstance,
    SheetPart,
    SheetStock,
    TubePart,
)
from fabrication_erp.errors import DisallowedStockSizeError, PieceExceedsStockError
from fabrication_erp.nesting import nest, pack_bars, validate_nesting


def _sheet_bom(*parts: SheetPart) -> BOM:
    return BOM(model_id="chapa-plana", category="chapa", parts=parts)


def _part(part_id: str, length: float, width: float, quantity: int = 1, **kwargs) -> SheetPart:
    return SheetPart(part_id, part_id, "inox304", 1.0, length, width, quantity=quantity, **kwargs)


def test_workbench_nests_on_one_small_sheet(catalog, bench_request):
    bom = build_bom(bench_request, catalog=catalog)
    plan = nest(bom)

    assert len(plan.groups) == 1
    group = plan.group("inox304-1mm")
    assert group.stock == SheetStock(2000, 1250)
    assert group.sheet_count == 1
    assert validate_nesting(plan, bom) == []


def test_every_copy_is_placed_exactly_once(catalog):
    request = ProductRequest("estante-tubo", 1500, 500, 1800, shelf_count=4)
    bom = build_bom(request, catalog=catalog)
    plan = nest(bom)

    placed = Counter(placement.part_id for placement in plan.group("inox304-1mm").placements())
    assert placed == Counter({"plano": 4})
    copies = sorted(p.copy_index for p in plan.group("inox304-1mm").placements())
    assert copies == [0, 1, 2, 3]


def test_placements_stay_inside_stock_and_never_overlap(catalog):
    request = ProductRequest(
        "bancada-com-cuba", 2400, 900, 900, backsplash=True, shelf=True
    )
    plan = nest(build_bom(request, catalog=catalog))

    for group in plan.groups:
        assert group.stock in STANDARD_SHEET_SIZES
        for sheet in group.sheets:
            for placement in sheet.placements:
                assert placement.x >= 0 and placement.y >= 0
                assert placement.x2 <= sheet.stock.length_mm + 1e-6
                assert placement.y2 <= sheet.stock.width_mm + 1e-6
            for first, second in combinations(sheet.placements, 2):
                assert not first.overlaps(second)


def test_nesting_is_deterministic(catalog):
    bom = build_bom(ProductRequest("mesa", 2200, 900, 850, shelf=True), catalog=catalog)

    assert nest(bom) == nest(bom)


def test_larger_stock_is_used_when_piece_needs_it():
    plan = nest(_sheet_bom(_part("longa", 2500, 1000)))

    assert plan.groups[0].stock == SheetStock(3000, 1250)


def test_piece_is_rotated_to_fit():
    plan = nest(_sheet_bom(_part("vertical", 1000, 1900)), [SheetStock(2000, 1250)])

    (placement,) = plan.groups[0].placements()
    assert placement.rotated is True
    assert (placement.length_mm, placement.width_mm) == (1900, 1000)


def test_non_rotatable_piece_that_only_fits_rotated_is_rejected():
    bom = _sheet_bom(_part("fibra", 1000, 1900, can_rotate=False))

    with pytest.raises(PieceExceedsStockError):
        nest(bom)


def test_oversized_pieces_are_all_reported():
    bom = _sheet_bom(_part("enorme", 3100, 1300), _part("comprida", 3200, 100))

    with pytest.raises(PieceExceedsStockError) as excinfo:
        nest(bom)

    assert len(excinfo.value.violations) == 2
    assert "enorme" in excinfo.value.violations[0]


def test_edge_margin_shrinks_usable_area():
    bom = _sheet_bom(_part("cheia", 3000, 1250))

    assert nest(bom).total_sheets == 1
    with pytest.raises(PieceExceedsStockError):
        nest(bom, edge_margin_mm=5)


def test_kerf_separates_adjacent_pieces():
    bom = _sheet_bom(_part("meia", 1000, 1250, quantity=2))
    small = [SheetStock(2000, 1250)]

    assert nest(bom, small).total_sheets == 1
    assert nest(bom, small, kerf_mm=2).total_sheets == 2


def test_disallowed_stock_size_is_rejected():
    bom = _sheet_bom(_part("peca", 500, 500))

    with pytest.raises(DisallowedStockSizeError) as excinfo:
        nest(bom, [SheetStock(1800, 1200)])

    assert "1800x1200" in excinfo.value.violations[0]


def test_groups_split_by_thickness():
    bom = _sheet_bom(
        _part("fina", 500, 500),
        SheetPart("grossa", "grossa", "inox304", 2.0, 500, 500),
    )

    plan = nest(bom)

    assert [group.material_id for group in plan.groups] == ["inox304-1mm", "inox304-2mm"]
    assert plan.total_sheets == 2


def test_validate_nesting_reports_tampered_plans(catalog, bench_request):
    bom = build_bom(bench_request, catalog=catalog)
    group = nest(bom).groups[0]

    bad_size = NestingPlan((replace(group, stock=SheetStock(1800, 1200)),))
    assert any("disallowed stock size 1800x1200" in p for p in validate_nesting(bad_size, bom))

    missing = NestingPlan(
        (replace(group, sheets=(replace(group.sheets[0], placements=()),)),)
    )
    assert any("placed 0 time(s), expected 1" in p for p in validate_nesting(missing, bom))

    assert validate_nesting(NestingPlan(), bom) == [
        "Nesting result is empty",
        "inox304-1mm: part reforco-tampo placed 0 time(s), expected 2",
        "inox304-1mm: part tampo placed 0 time(s), expected 1",
        "tubo-25x1.2: cut contraventamento-lateral made 0 time(s), expected 2",
        "tubo-25x1.2: cut contraventamento-traseiro made 0 time(s), expected 2",
        "tubo-38x1.2: cut pe made 0 time(s), expected 4",
    ]


def test_validate_nesting_reports_overlap():
    bom = _sheet_bom(_part("a", 500, 500, quantity=2))
    stock = SheetStock(2000, 1250)
    sheet = SheetInstance(
        0,
        stock,
        (
            Placement("a", 0, 0, 0, 500, 500),
            Placement("a", 1, 250, 250, 500, 500),
        ),
    )
    group = replace(nest(bom).groups[0], stock=stock, sheets=(sheet,))

    problems = validate_nesting(NestingPlan((group,)), bom)

    assert problems == ["inox304-1mm sheet 1: a#0 overlaps a#1"]


def _tube(part_id: str, length: float, quantity: int = 1) -> TubePart:
    return TubePart(part_id, part_id, "tubo-38x1.2", length, quantity=quantity)


def test_workbench_tubes_are_cut_from_commercial_bars(catalog, bench_request):
    bom = build_bom(bench_request, catalog=catalog)
    plan = nest(bom, catalog=catalog)

    legs = plan.bar_group("tubo-38x1.2")
    assert (legs.bar_length_mm, legs.bar_count) == (6000.0, 1)
    assert Counter(cut.part_id for cut in legs.cuts()) == Counter({"pe": 4})
    bracing = plan.bar_group("tubo-25x1.2")
    assert bracing.bar_count == 1
    assert plan.total_bars == 2
    assert validate_nesting(plan, bom) == []


def test_bars_are_filled_first_fit_decreasing():
    parts = [_tube("a", 2000), _tube("b", 4000), _tube("c", 1500), _tube("d", 2500)]

    bars = pack_bars(parts, 6000.0)

    assert [[cut.part_id for cut in bar.cuts] for bar in bars] == [["b", "a"], ["d", "c"]]
    assert bars[0].cuts[1] == BarCut("a", 0, 4000.0, 2000)
    assert [bar.waste_mm for bar in bars] == [0.0, 2000.0]


def test_kerf_between_cuts_can_open_a_new_bar():
    parts = [_tube("meia-barra", 3000, quantity=2)]

    assert len(pack_bars(parts, 6000.0)) == 1
    bars = pack_bars(parts, 6000.0, kerf_mm=3.0)
    assert len(bars) == 2
    assert bars[1].cuts == (BarCut("meia-barra", 1, 0.0, 3000),)


def test_edge_margin_trims_both_bar_ends():
    (bar,) = pack_bars([_tube("a", 2000, quantity=2)], 6000.0, edge_margin_mm=10.0)

    assert [cut.offset_mm for cut in bar.cuts] == [10.0, 2010.0]


def test_tube_longer_than_bar_is_reported_with_sheet_problems():
    bom = BOM("chapa-plana", "chapa", (_part("enorme", 3100, 1300), _tube("longo", 6500)))

    with pytest.raises(PieceExceedsStockError) as excinfo:
        nest(bom)

    assert len(excinfo.value.violations) == 2
    assert "exceeds the 6000 mm bar of tubo-38x1.2" in excinfo.value.violations[1]


def test_bar_length_comes_from_the_catalog(catalog, bench_request):
    tubes = [replace(tube, bar_length_mm=3000.0) for tube in DEFAULT_TUBES]
    short_bars = InMemoryCatalog(DEFAULT_GRADES, tubes, DEFAULT_ACCESSORIES, DEFAULT_FINISHES)
    bom = build_bom(bench_request, catalog=catalog)

    plan = nest(bom, catalog=short_bars)

    legs = plan.bar_group("tubo-38x1.2")
    assert (legs.bar_length_mm, legs.bar_count) == (3000.0, 2)
    assert validate_nesting(plan, bom) == []


def test_validate_nesting_reports_dropped_and_overlapping_cuts():
    bom = BOM("chapa-plana", "chapa", (_tube("a", 1000, quantity=2),))
    result = nest(bom).bar_group("tubo-38x1.2")
    (bar,) = result.bars

    dropped = replace(result, bars=(replace(bar, cuts=bar.cuts[:1]),))
    assert validate_nesting(NestingPlan(bars=(dropped,)), bom) == [
        "tubo-38x1.2: cut a made 1 time(s), expected 2",
    ]

    stacked = (BarCut("a", 0, 0.0, 1000), BarCut("a", 1, 500.0, 1000))
    overlapping = replace(result, bars=(replace(bar, cuts=stacked),))
    assert validate_nesting(NestingPlan(bars=(overlapping,)), bom) == [
        "tubo-38x1.2 bar 1: a#0 overlaps a#1",
    ]
