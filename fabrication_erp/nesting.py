"""Guillotine free-rectangle nesting of sheet parts onto standard stock."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

from .catalog import DEFAULT_BAR_LENGTH_MM, STANDARD_SHEET_SIZES, CatalogLookup
from .domain import (
    BOM,
    BarCut,
    BarNestingResult,
    NestingPlan,
    NestingResult,
    Placement,
    SheetInstance,
    SheetPart,
    SheetStock,
    TubeBar,
    TubePart,
)
from .errors import DisallowedStockSizeError, PieceExceedsStockError

logger = logging.getLogger(__name__)

EPSILON = 1e-6


@dataclass(frozen=True, slots=True)
class _Copy:
    part: SheetPart
    copy_index: int
    order: int

    @property
    def sort_key(self) -> Tuple[float, float, int]:
        part = self.part
        return (-part.area_mm2, -max(part.length_mm, part.width_mm), self.order)


@dataclass(frozen=True, slots=True)
class _FreeRect:
    x: float
    y: float
    length: float
    width: float

    def fits(self, length: float, width: float) -> bool:
        return length <= self.length + EPSILON and width <= self.width + EPSILON


@dataclass(slots=True)
class _OpenSheet:
    """Mutable packing state of one sheet while a group is being nested."""

    index: int
    free: List[_FreeRect]
    placements: List[Placement] = field(default_factory=list)

    def best_fit(
        self, copy: _Copy, kerf: float
    ) -> Optional[Tuple[Tuple[float, float], int, bool]]:
        part = copy.part
        orientations = [(part.length_mm, part.width_mm, False)]
        if part.can_rotate and part.length_mm != part.width_mm:
            orientations.append((part.width_mm, part.length_mm, True))
        best: Optional[Tuple[Tuple[float, float], int, bool]] = None
        for length, width, rotated in orientations:
            need_l, need_w = length + kerf, width + kerf
            for position, rect in enumerate(self.free):
                if not rect.fits(need_l, need_w):
                    continue
                score = (
                    rect.length * rect.width - need_l * need_w,
                    min(rect.length - need_l, rect.width - need_w),
                )
                if best is None or score < best[0]:
                    best = (score, position, rotated)
        return best

    def place(self, copy: _Copy, position: int, rotated: bool, kerf: float) -> None:
        part = copy.part
        length, width = (
            (part.width_mm, part.length_mm) if rotated else (part.length_mm, part.width_mm)
        )
        rect = self.free.pop(position)
        self.placements.append(
            Placement(
                part_id=part.part_id,
                copy_index=copy.copy_index,
                x=rect.x,
                y=rect.y,
                length_mm=length,
                width_mm=width,
                rotated=rotated,
            )
        )
        self.free.extend(_guillotine_split(rect, length + kerf, width + kerf))


def _guillotine_split(rect: _FreeRect, used_l: float, used_w: float) -> List[_FreeRect]:
    """Split the remainder of ``rect`` along the longer leftover."""

    leftover_l = rect.length - used_l
    leftover_w = rect.width - used_w
    pieces: List[_FreeRect] = []
    if leftover_l >= leftover_w:
        if leftover_l > EPSILON:
            pieces.append(_FreeRect(rect.x + used_l, rect.y, leftover_l, rect.width))
        if leftover_w > EPSILON:
            pieces.append(_FreeRect(rect.x, rect.y + used_w, used_l, leftover_w))
    else:
        if leftover_w > EPSILON:
            pieces.append(_FreeRect(rect.x, rect.y + used_w, rect.length, leftover_w))
        if leftover_l > EPSILON:
            pieces.append(_FreeRect(rect.x + used_l, rect.y, leftover_l, used_w))
    return pieces


def _usable(stock: SheetStock, kerf: float, margin: float) -> _FreeRect:
    # The trailing kerf of a piece touching the far edge falls outside the sheet.
    return _FreeRect(
        margin, margin, stock.length_mm - 2 * margin + kerf, stock.width_mm - 2 * margin + kerf
    )


def _fits_stock(part: SheetPart, area: _FreeRect, kerf: float) -> bool:
    length, width = part.length_mm + kerf, part.width_mm + kerf
    if area.fits(length, width):
        return True
    return part.can_rotate and area.fits(width, length)


def _expand(parts: Sequence[SheetPart]) -> List[_Copy]:
    copies: List[_Copy] = []
    for part in parts:
        for copy_index in range(part.quantity):
            copies.append(_Copy(part, copy_index, len(copies)))
    copies.sort(key=lambda copy: copy.sort_key)
    return copies


def pack_group(
    parts: Sequence[SheetPart],
    stock: SheetStock,
    *,
    kerf_mm: float = 0.0,
    edge_margin_mm: float = 0.0,
) -> Tuple[SheetInstance, ...]:
    """First-fit over open sheets, best-fit over each sheet's free rectangles."""

    area = _usable(stock, kerf_mm, edge_margin_mm)
    sheets: List[_OpenSheet] = []
    for copy in _expand(parts):
        if not _fits_stock(copy.part, area, kerf_mm):
            raise PieceExceedsStockError(
                [f"{copy.part.part_id} ({_dims(copy.part)}) does not fit {stock}"]
            )
        for sheet in sheets:
            fit = sheet.best_fit(copy, kerf_mm)
            if fit is not None:
                sheet.place(copy, fit[1], fit[2], kerf_mm)
                break
        else:
            sheet = _OpenSheet(index=len(sheets), free=[area])
            _, position, rotated = sheet.best_fit(copy, kerf_mm)
            sheet.place(copy, position, rotated, kerf_mm)
            sheets.append(sheet)
    return tuple(
        SheetInstance(index=sheet.index, stock=stock, placements=tuple(sheet.placements))
        for sheet in sheets
    )


def _dims(part: SheetPart) -> str:
    return f"{part.length_mm:g}x{part.width_mm:g} mm"


def _choose(candidates: List[NestingResult]) -> NestingResult:
    counts = {candidate.sheet_count for candidate in candidates}
    if len(counts) == 1:
        return min(candidates, key=lambda candidate: candidate.stock.area_mm2)
    return min(
        candidates,
        key=lambda candidate: (
            round(candidate.waste_area_mm2, 6),
            candidate.sheet_count,
            candidate.stock_area_mm2,
        ),
    )


def check_stock_sizes(sizes: Sequence[SheetStock]) -> Tuple[SheetStock, ...]:
    """Reject any stock size outside the permitted set."""

    if not sizes:
        raise DisallowedStockSizeError(["No stock sheet sizes supplied"])
    disallowed = [size for size in sizes if size not in STANDARD_SHEET_SIZES]
    if disallowed:
        permitted = ", ".join(str(size) for size in STANDARD_SHEET_SIZES)
        raise DisallowedStockSizeError(
            f"Stock size {size} is not permitted (allowed: {permitted})" for size in disallowed
        )
    return tuple(dict.fromkeys(sizes))


def group_sheet_parts(bom: BOM) -> Dict[str, List[SheetPart]]:
    """Sheet parts keyed by material+thickness, in BOM order."""

    groups: Dict[str, List[SheetPart]] = {}
    for part in bom.sheet_parts:
        groups.setdefault(part.group_key, []).append(part)
    return groups


# ----------------------------------------------------------------------
# Tube bars
# ----------------------------------------------------------------------
def group_tube_parts(bom: BOM) -> Dict[str, List[TubePart]]:
    """Tube parts keyed by section, in BOM order."""

    groups: Dict[str, List[TubePart]] = {}
    for part in bom.tube_parts:
        groups.setdefault(part.section_id, []).append(part)
    return groups


def pack_bars(
    parts: Sequence[TubePart],
    bar_length_mm: float,
    *,
    kerf_mm: float = 0.0,
    edge_margin_mm: float = 0.0,
) -> Tuple[TubeBar, ...]:
    """First-fit decreasing of tube cuts onto bars of one commercial length."""

    start, end = edge_margin_mm, bar_length_mm - edge_margin_mm
    copies = [
        (part, copy_index, order)
        for order, part in enumerate(parts)
        for copy_index in range(part.quantity)
    ]
    copies.sort(key=lambda copy: (-copy[0].length_mm, copy[2], copy[1]))
    bars: List[List[BarCut]] = []
    cursors: List[float] = []
    for part, copy_index, _ in copies:
        if part.length_mm > end - start + EPSILON:
            raise PieceExceedsStockError(
                [
                    f"{part.part_id} ({part.length_mm:g} mm) does not fit "
                    f"a {bar_length_mm:g} mm bar"
                ]
            )
        for index, cursor in enumerate(cursors):
            if cursor + part.length_mm <= end + EPSILON:
                break
        else:
            index = len(bars)
            bars.append([])
            cursors.append(start)
        cut = BarCut(part.part_id, copy_index, cursors[index], part.length_mm)
        bars[index].append(cut)
        cursors[index] = cut.end_mm + kerf_mm
    return tuple(
        TubeBar(index=index, length_mm=bar_length_mm, cuts=tuple(cuts))
        for index, cuts in enumerate(bars)
    )


def _bar_length(section_id: str, catalog: Optional[CatalogLookup]) -> float:
    if catalog is None:
        return DEFAULT_BAR_LENGTH_MM
    return catalog.tube_definition(section_id).bar_length_mm


def nest(
    bom: BOM,
    sizes: Sequence[SheetStock] = STANDARD_SHEET_SIZES,
    *,
    kerf_mm: float = 0.0,
    edge_margin_mm: float = 0.0,
    catalog: Optional[CatalogLookup] = None,
) -> NestingPlan:
    """Nest every sheet part of ``bom`` and cut every tube part from bars.

    Sheets give one result per material+thickness group, tubes one result
    per section; bar lengths come from ``catalog`` when one is given.
    Heuristic, not optimal: parts are taken by descending size and the same
    input ordering always yields the same layout.
    """

    sizes = check_stock_sizes(sizes)
    groups = group_sheet_parts(bom)

    oversized = [
        f"{part.part_id} ({_dims(part)}) exceeds every permitted stock size"
        for parts in groups.values()
        for part in parts
        if not any(
            _fits_stock(part, _usable(size, kerf_mm, edge_margin_mm), kerf_mm)
            for size in sizes
        )
    ]
    tube_groups = group_tube_parts(bom)
    bar_lengths = {section_id: _bar_length(section_id, catalog) for section_id in tube_groups}
    oversized.extend(
        f"{part.part_id} ({part.length_mm:g} mm) exceeds the "
        f"{bar_lengths[section_id]:g} mm bar of {section_id}"
        for section_id, parts in tube_groups.items()
        for part in parts
        if part.length_mm > bar_lengths[section_id] - 2 * edge_margin_mm + EPSILON
    )
    if oversized:
        raise PieceExceedsStockError(oversized)

    results: List[NestingResult] = []
    for key, parts in groups.items():
        candidates = []
        for size in sizes:
            area = _usable(size, kerf_mm, edge_margin_mm)
            if not all(_fits_stock(part, area, kerf_mm) for part in parts):
                continue
            candidates.append(
                NestingResult(
                    material_id=key,
                    grade_id=parts[0].material_id,
                    thickness_mm=parts[0].thickness_mm,
                    stock=size,
                    sheets=pack_group(
                        parts, size, kerf_mm=kerf_mm, edge_margin_mm=edge_margin_mm
                    ),
                )
            )
        chosen = _choose(candidates)
        logger.debug(
            "Nested %s onto %d x %s (waste %.1f%%)",
            key,
            chosen.sheet_count,
            chosen.stock,
            chosen.waste_percent,
        )
        results.append(chosen)

    bars: List[BarNestingResult] = []
    for section_id, parts in tube_groups.items():
        length = bar_lengths[section_id]
        chosen_bars = BarNestingResult(
            section_id=section_id,
            bar_length_mm=length,
            bars=pack_bars(parts, length, kerf_mm=kerf_mm, edge_margin_mm=edge_margin_mm),
        )
        logger.debug(
            "Cut %s from %d bar(s) of %g mm (waste %.1f%%)",
            section_id,
            chosen_bars.bar_count,
            length,
            chosen_bars.waste_percent,
        )
        bars.append(chosen_bars)
    return NestingPlan(groups=tuple(results), bars=tuple(bars))


# ----------------------------------------------------------------------
# Invariant checks
# ----------------------------------------------------------------------
def validate_nesting(plan: NestingPlan, bom: BOM) -> List[str]:
    """Return every placement invariant ``plan`` breaks for ``bom``, sheets then bars."""

    problems: List[str] = []
    expected: Counter = Counter()
    for part in bom.sheet_parts:
        expected[(part.group_key, part.part_id)] += part.quantity
    if expected and plan.is_empty:
        problems.append("Nesting result is empty")

    placed: Counter = Counter()
    for group in plan.groups:
        if group.stock not in STANDARD_SHEET_SIZES:
            problems.append(
                f"{group.material_id}: disallowed stock size {group.stock}"
            )
        for sheet in group.sheets:
            stock = sheet.stock
            if stock != group.stock:
                problems.append(
                    f"{group.material_id} sheet {sheet.index + 1}: stock {stock} "
                    f"differs from group stock {group.stock}"
                )
            for placement in sheet.placements:
                placed[(group.material_id, placement.part_id)] += 1
                if (
                    placement.x < -EPSILON
                    or placement.y < -EPSILON
                    or placement.x2 > stock.length_mm + EPSILON
                    or placement.y2 > stock.width_mm + EPSILON
                ):
                    problems.append(
                        f"{group.material_id} sheet {sheet.index + 1}: "
                        f"{placement.part_id}#{placement.copy_index} lies outside the sheet"
                    )
            for first, second in combinations(sheet.placements, 2):
                if first.overlaps(second):
                    problems.append(
                        f"{group.material_id} sheet {sheet.index + 1}: "
                        f"{first.part_id}#{first.copy_index} overlaps "
                        f"{second.part_id}#{second.copy_index}"
                    )

    for key in sorted(set(expected) | set(placed)):
        want, got = expected[key], placed[key]
        if want != got:
            material_id, part_id = key
            problems.append(
                f"{material_id}: part {part_id} placed {got} time(s), expected {want}"
            )
    problems.extend(_bar_problems(plan, bom))
    return problems


def _bar_problems(plan: NestingPlan, bom: BOM) -> List[str]:
    problems: List[str] = []
    expected: Counter = Counter()
    for part in bom.tube_parts:
        expected[(part.section_id, part.part_id)] += part.quantity

    cut: Counter = Counter()
    for result in plan.bars:
        for bar in result.bars:
            if bar.length_mm != result.bar_length_mm:
                problems.append(
                    f"{result.section_id} bar {bar.index + 1}: length {bar.length_mm:g} "
                    f"differs from {result.bar_length_mm:g}"
                )
            ordered = sorted(bar.cuts, key=lambda item: item.offset_mm)
            for item in ordered:
                cut[(result.section_id, item.part_id)] += 1
                if item.offset_mm < -EPSILON or item.end_mm > bar.length_mm + EPSILON:
                    problems.append(
                        f"{result.section_id} bar {bar.index + 1}: "
                        f"{item.part_id}#{item.copy_index} lies outside the bar"
                    )
            for first, second in zip(ordered, ordered[1:]):
                if second.offset_mm < first.end_mm - EPSILON:
                    problems.append(
                        f"{result.section_id} bar {bar.index + 1}: "
                        f"{first.part_id}#{first.copy_index} overlaps "
                        f"{second.part_id}#{second.copy_index}"
                    )

    for key in sorted(set(expected) | set(cut)):
        want, got = expected[key], cut[key]
        if want != got:
            section_id, part_id = key
            problems.append(f"{section_id}: cut {part_id} made {got} time(s), expected {want}")
    return problems


__all__ = [
    "EPSILON",
    "pack_group",
    "check_stock_sizes",
    "group_sheet_parts",
    "group_tube_parts",
    "pack_bars",
    "nest",
    "validate_nesting",
]
