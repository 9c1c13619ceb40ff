"""Model registry and parametric bill-of-materials expansion."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .catalog import CatalogLookup, MaterialGrade
from .domain import (
    BOM,
    AccessoryPart,
    BasinSpec,
    PartSpec,
    ProcessKind,
    ProcessStep,
    ProductRequest,
    SheetPart,
    TubePart,
)
from .errors import DimensionOutOfRangeError, UnknownModelError, UnsupportedOptionError

logger = logging.getLogger(__name__)

# Fabrication allowances, millimetres
FLANGE = 50.0
WATER_EDGE = 10.0
SHELF_FLANGE = 40.0
BACKSPLASH_HEIGHT = 150.0
FOOT_CLEARANCE = 72.0
SIDE_BRACE_CLEARANCE = 135.0
REAR_BRACE_CLEARANCE = 130.0
REINFORCEMENT_WIDTH = 120.38
REINFORCEMENT_CLEARANCE = 56.0
SHELF_SETBACK = 100.0
BASIN_CLEARANCE = 200.0
SIX_FEET_ABOVE_LENGTH = 1900.0

LEG_TUBE = "tubo-38x1.2"
BRACE_TUBE = "tubo-25x1.2"
FRAME_TUBE = "tubo-quadrado-30x30x1.2"

# Standard minutes
CUT_MINUTES_PER_SHEET_PART = 3.0
CUT_MINUTES_PER_TUBE = 1.5
BEND_MINUTES_PER_FOLD = 1.5
WELD_MINUTES_PER_JOINT = 4.0
WELD_MINUTES_PER_SEAM_METER = 10.0
ASSEMBLY_BASE_MINUTES = 10.0
ASSEMBLY_MINUTES_PER_ACCESSORY = 1.0
PACK_MINUTES = 10.0

Bounds = Tuple[float, float]


def fold_deduction(thickness_mm: float, folds: int) -> float:
    """Material consumed by ``folds`` bends: two thicknesses per fold."""

    return 2.0 * thickness_mm * folds


@dataclass(frozen=True, slots=True)
class ModelDefinition:
    """Registry entry describing one parametric product model."""

    model_id: str
    name: str
    category: str
    builder: Callable[["_BomWriter", ProductRequest], None]
    length_mm: Bounds
    width_mm: Bounds
    height_mm: Optional[Bounds] = None
    default_thickness_mm: float = 1.0
    feet_counts: Tuple[int, ...] = ()
    shelf_counts: Tuple[int, int] = (1, 1)
    supports_backsplash: bool = False
    supports_shelf: bool = False
    supports_basin: bool = False
    finishes: Tuple[str, ...] = ("escovado", "polido", "2b")


class ModelRegistry:
    """Lookup table of product models keyed by model id."""

    def __init__(self, models: Iterable[ModelDefinition] = ()) -> None:
        self._models: Dict[str, ModelDefinition] = {}
        for model in models:
            self.register(model)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def register(self, model: ModelDefinition) -> None:
        self._models[model.model_id] = model

    def get(self, model_id: str) -> ModelDefinition:
        try:
            return self._models[model_id]
        except KeyError:
            raise UnknownModelError(model_id) from None

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._models)


# ----------------------------------------------------------------------
# Part accumulation
# ----------------------------------------------------------------------
@dataclass(slots=True)
class _BomWriter:
    """Collects parts and process drivers while a model rule runs."""

    model: ModelDefinition
    grade: MaterialGrade
    thickness_mm: float
    catalog: CatalogLookup
    parts: List[PartSpec] = field(default_factory=list)
    weld_joints: int = 0
    weld_seam_mm: float = 0.0
    extra_steps: List[ProcessStep] = field(default_factory=list)

    def sheet(
        self,
        part_id: str,
        description: str,
        length_mm: float,
        width_mm: float,
        *,
        quantity: int = 1,
        folds: int = 0,
        thickness_mm: Optional[float] = None,
    ) -> None:
        thickness = thickness_mm or self.thickness_mm
        volume_m3 = length_mm * width_mm * thickness / 1e9
        self.parts.append(
            SheetPart(
                part_id=part_id,
                description=description,
                material_id=self.grade.grade_id,
                thickness_mm=thickness,
                length_mm=round(length_mm, 2),
                width_mm=round(width_mm, 2),
                quantity=quantity,
                unit_weight_kg=round(volume_m3 * self.grade.density_kg_m3, 4),
                folds=folds,
            )
        )

    def tube(
        self, part_id: str, description: str, section_id: str, length_mm: float, *, quantity: int
    ) -> None:
        tube = self.catalog.tube_definition(section_id)
        self.parts.append(
            TubePart(
                part_id=part_id,
                description=description,
                section_id=section_id,
                length_mm=round(length_mm, 1),
                quantity=quantity,
                unit_weight_kg=round(length_mm / 1000.0 * tube.kg_per_meter, 4),
            )
        )

    def accessory(self, part_id: str, sku: str, *, quantity: int) -> None:
        definition = self.catalog.accessory_definition(sku)
        self.parts.append(
            AccessoryPart(
                part_id=part_id,
                sku=sku,
                description=definition.name,
                quantity=quantity,
                unit=definition.unit,
            )
        )

    def basin(self, prefix: str, spec: BasinSpec) -> None:
        """Welded rectangular basin: one bottom and four walls per unit."""

        count = spec.count
        t = spec.thickness_mm
        self.sheet(
            f"{prefix}-fundo", "Fundo da cuba", spec.length_mm, spec.width_mm,
            quantity=count, thickness_mm=t,
        )
        self.sheet(
            f"{prefix}-lateral-longa", "Lateral longa da cuba", spec.length_mm, spec.depth_mm,
            quantity=2 * count, thickness_mm=t,
        )
        self.sheet(
            f"{prefix}-lateral-curta", "Lateral curta da cuba", spec.width_mm, spec.depth_mm,
            quantity=2 * count, thickness_mm=t,
        )
        perimeter = 2 * (spec.length_mm + spec.width_mm)
        self.weld_seam_mm += count * (perimeter + 4 * spec.depth_mm)
        self.accessory(f"{prefix}-valvula", "valvula-3-1-2", quantity=count)

    def processes(self, finish_minutes_per_m2: float) -> Tuple[ProcessStep, ...]:
        sheets = [part for part in self.parts if isinstance(part, SheetPart)]
        tubes = [part for part in self.parts if isinstance(part, TubePart)]
        accessories = [part for part in self.parts if isinstance(part, AccessoryPart)]

        steps: List[ProcessStep] = []
        sheet_copies = sum(part.quantity for part in sheets)
        tube_copies = sum(part.quantity for part in tubes)
        cut = sheet_copies * CUT_MINUTES_PER_SHEET_PART + tube_copies * CUT_MINUTES_PER_TUBE
        if cut:
            steps.append(ProcessStep(ProcessKind.CUT, cut, "Corte laser e serra"))
        folds = sum(part.folds * part.quantity for part in sheets)
        if folds:
            steps.append(
                ProcessStep(ProcessKind.BEND, folds * BEND_MINUTES_PER_FOLD, "Dobra")
            )
        weld = (
            self.weld_joints * WELD_MINUTES_PER_JOINT
            + self.weld_seam_mm / 1000.0 * WELD_MINUTES_PER_SEAM_METER
        )
        if weld:
            steps.append(ProcessStep(ProcessKind.WELD, round(weld, 2), "Solda TIG"))
        finished_m2 = sum(part.area_mm2 * part.quantity for part in sheets) / 1e6
        if finish_minutes_per_m2 and finished_m2:
            steps.append(
                ProcessStep(
                    ProcessKind.FINISH,
                    round(finished_m2 * finish_minutes_per_m2, 2),
                    "Acabamento superficial",
                )
            )
        accessory_units = sum(part.quantity for part in accessories)
        steps.append(
            ProcessStep(
                ProcessKind.ASSEMBLY,
                ASSEMBLY_BASE_MINUTES + accessory_units * ASSEMBLY_MINUTES_PER_ACCESSORY,
                "Montagem",
            )
        )
        steps.extend(self.extra_steps)
        steps.append(ProcessStep(ProcessKind.PACK, PACK_MINUTES, "Embalagem"))
        return tuple(steps)


def _feet(model: ModelDefinition, request: ProductRequest) -> int:
    if request.feet_count is not None:
        return request.feet_count
    return 6 if request.length_mm > SIX_FEET_ABOVE_LENGTH and 6 in model.feet_counts else 4


def _legs_and_bracing(writer: _BomWriter, request: ProductRequest, leg_height: float) -> int:
    """Tube legs with levelling feet plus lateral and rear bracing."""

    feet = _feet(writer.model, request)
    writer.tube("pe", "Pé tubular", LEG_TUBE, leg_height - FOOT_CLEARANCE, quantity=feet)
    writer.tube(
        "contraventamento-lateral",
        "Contraventamento lateral",
        BRACE_TUBE,
        request.length_mm - SIDE_BRACE_CLEARANCE,
        quantity=2,
    )
    writer.tube(
        "contraventamento-traseiro",
        "Contraventamento traseiro",
        BRACE_TUBE,
        request.width_mm - REAR_BRACE_CLEARANCE,
        quantity=feet // 2,
    )
    writer.accessory("pe-nivelador", "pe-regulavel", quantity=feet)
    writer.weld_joints += feet * 2 + 2 * 2 + (feet // 2) * 2
    return feet


def _bottom_shelf(writer: _BomWriter, request: ProductRequest) -> None:
    t = writer.thickness_mm
    allowance = 2 * (SHELF_FLANGE - fold_deduction(t, 1))
    writer.sheet(
        "prateleira-inferior",
        "Prateleira inferior",
        request.length_mm - SHELF_SETBACK + allowance,
        request.width_mm - SHELF_SETBACK + allowance,
        folds=4,
    )
    writer.weld_joints += _feet(writer.model, request)


# ----------------------------------------------------------------------
# Model rules
# ----------------------------------------------------------------------
def _workbench_top(writer: _BomWriter, request: ProductRequest) -> None:
    t = writer.thickness_mm
    edge = FLANGE + WATER_EDGE
    allowance = 2 * (edge - fold_deduction(t, 2))
    writer.sheet(
        "tampo",
        "Tampo com borda d'água",
        request.length_mm + allowance,
        request.width_mm + allowance,
        folds=8,
    )
    writer.sheet(
        "reforco-tampo",
        "Reforço do tampo",
        request.length_mm - REINFORCEMENT_CLEARANCE,
        REINFORCEMENT_WIDTH,
        quantity=2,
        folds=2,
    )
    if request.backsplash:
        writer.sheet(
            "espelho",
            "Espelho traseiro",
            request.length_mm,
            BACKSPLASH_HEIGHT + FLANGE - fold_deduction(t, 1),
            folds=1,
        )
        writer.weld_joints += 2


def _build_workbench(writer: _BomWriter, request: ProductRequest) -> None:
    _workbench_top(writer, request)
    _legs_and_bracing(writer, request, request.height_mm)
    if request.shelf:
        _bottom_shelf(writer, request)


def _build_sink_workbench(writer: _BomWriter, request: ProductRequest) -> None:
    _build_workbench(writer, request)
    writer.basin("cuba", request.basin if request.basin is not None else DEFAULT_BASIN)


def _build_table(writer: _BomWriter, request: ProductRequest) -> None:
    t = writer.thickness_mm
    allowance = 2 * (SHELF_FLANGE - fold_deduction(t, 1))
    writer.sheet(
        "tampo",
        "Tampo liso",
        request.length_mm + allowance,
        request.width_mm + allowance,
        folds=4,
    )
    feet = _legs_and_bracing(writer, request, request.height_mm)
    writer.tube(
        "travessa",
        "Travessa superior",
        LEG_TUBE,
        request.length_mm - SIDE_BRACE_CLEARANCE,
        quantity=feet // 2,
    )
    writer.weld_joints += feet
    if request.shelf:
        _bottom_shelf(writer, request)


def _build_wall_shelf(writer: _BomWriter, request: ProductRequest) -> None:
    t = writer.thickness_mm
    writer.sheet(
        "prateleira",
        "Prateleira de parede",
        request.length_mm,
        request.width_mm + 2 * SHELF_FLANGE - fold_deduction(t, 2),
        folds=2,
    )
    brackets = 3 if request.length_mm > 1200 else 2
    writer.accessory("mao-francesa", "mao-francesa", quantity=brackets)
    writer.accessory("fixacao", "bucha-fixacao", quantity=brackets * 2)


def _build_basin(writer: _BomWriter, request: ProductRequest) -> None:
    writer.basin(
        "cuba",
        BasinSpec(
            length_mm=request.length_mm,
            width_mm=request.width_mm,
            depth_mm=request.height_mm,
            thickness_mm=writer.thickness_mm,
        ),
    )


def _build_hood(writer: _BomWriter, request: ProductRequest) -> None:
    length, width, height = request.length_mm, request.width_mm, request.height_mm
    t = writer.thickness_mm
    hem = SHELF_FLANGE - fold_deduction(t, 1)
    writer.sheet("coifa-topo", "Topo da coifa", length, width, folds=4)
    writer.sheet(
        "coifa-lateral-longa", "Lateral longa", length, height + hem, quantity=2, folds=2
    )
    writer.sheet(
        "coifa-lateral-curta", "Lateral curta", width, height + hem, quantity=2, folds=2
    )
    writer.weld_seam_mm += 4 * height
    writer.accessory("filtro", "filtro-inox", quantity=max(1, math.ceil(length / 500.0)))
    writer.accessory("fixacao", "bucha-fixacao", quantity=8)
    writer.extra_steps.append(
        ProcessStep(ProcessKind.INSTALLATION, 90.0, "Instalação em obra")
    )


def _build_tube_rack(writer: _BomWriter, request: ProductRequest) -> None:
    t = writer.thickness_mm
    levels = request.shelf_count or writer.model.shelf_counts[0]
    allowance = 2 * (SHELF_FLANGE - fold_deduction(t, 1))
    writer.sheet(
        "plano",
        "Plano da estante",
        request.length_mm + allowance,
        request.width_mm + allowance,
        quantity=levels,
        folds=4,
    )
    writer.tube(
        "montante", "Montante", FRAME_TUBE, request.height_mm - FOOT_CLEARANCE, quantity=4
    )
    writer.tube(
        "travessa-longa", "Travessa longa", FRAME_TUBE, request.length_mm - 60, quantity=2 * levels
    )
    writer.tube(
        "travessa-curta", "Travessa curta", FRAME_TUBE, request.width_mm - 60, quantity=2 * levels
    )
    writer.accessory("pe-nivelador", "pe-regulavel", quantity=4)
    writer.weld_joints += 8 * levels


def _build_flat_sheet(writer: _BomWriter, request: ProductRequest) -> None:
    writer.sheet("chapa", "Chapa plana cortada", request.length_mm, request.width_mm)


DEFAULT_BASIN = BasinSpec(length_mm=500.0, width_mm=400.0, depth_mm=250.0)

BENCH_LENGTH: Bounds = (500.0, 2800.0)
BENCH_WIDTH: Bounds = (400.0, 1000.0)
BENCH_HEIGHT: Bounds = (700.0, 1200.0)

DEFAULT_MODELS: Tuple[ModelDefinition, ...] = (
    ModelDefinition(
        "bancada-simples", "Bancada simples contraventada", "bancada", _build_workbench,
        BENCH_LENGTH, BENCH_WIDTH, BENCH_HEIGHT,
        feet_counts=(4, 6), supports_backsplash=True, supports_shelf=True,
    ),
    ModelDefinition(
        "bancada-com-cuba", "Bancada com cuba soldada", "bancada-com-cuba",
        _build_sink_workbench, BENCH_LENGTH, BENCH_WIDTH, BENCH_HEIGHT,
        feet_counts=(4, 6), supports_backsplash=True, supports_shelf=True,
        supports_basin=True,
    ),
    ModelDefinition(
        "mesa", "Mesa de apoio", "mesa", _build_table,
        BENCH_LENGTH, BENCH_WIDTH, (700.0, 1000.0),
        feet_counts=(4, 6), supports_shelf=True,
    ),
    ModelDefinition(
        "prateleira", "Prateleira de parede", "prateleira", _build_wall_shelf,
        (300.0, 2800.0), (200.0, 600.0),
    ),
    ModelDefinition(
        "cuba-avulsa", "Cuba avulsa soldada", "cuba", _build_basin,
        (200.0, 1000.0), (200.0, 700.0), (100.0, 500.0),
    ),
    ModelDefinition(
        "coifa", "Coifa de parede", "coifa", _build_hood,
        (600.0, 2800.0), (500.0, 1150.0), (300.0, 800.0),
        finishes=("escovado", "2b"),
    ),
    ModelDefinition(
        "estante-tubo", "Estante em tubo quadrado", "estante", _build_tube_rack,
        (500.0, 2000.0), (300.0, 700.0), (1000.0, 2200.0),
        feet_counts=(4,), shelf_counts=(2, 6),
    ),
    ModelDefinition(
        "chapa-plana", "Chapa plana sob medida", "chapa", _build_flat_sheet,
        (50.0, 3000.0), (50.0, 1250.0),
        finishes=("2b", "escovado"),
    ),
)

DEFAULT_REGISTRY = ModelRegistry(DEFAULT_MODELS)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
def _check_range(problems: List[str], name: str, value: float, bounds: Bounds) -> None:
    low, high = bounds
    if value <= 0:
        problems.append(f"{name} must be positive (got {value:g})")
    elif not low <= value <= high:
        problems.append(f"{name} {value:g} outside [{low:g}, {high:g}]")


def dimension_problems(model: ModelDefinition, request: ProductRequest) -> List[str]:
    """Every dimensional rule the request violates for ``model``."""

    problems: List[str] = []
    _check_range(problems, "length_mm", request.length_mm, model.length_mm)
    _check_range(problems, "width_mm", request.width_mm, model.width_mm)
    if model.height_mm is not None:
        _check_range(problems, "height_mm", request.height_mm, model.height_mm)
    if request.thickness_mm is not None and request.thickness_mm <= 0:
        problems.append(f"thickness_mm must be positive (got {request.thickness_mm:g})")
    if request.feet_count is not None and request.feet_count not in model.feet_counts:
        allowed = ", ".join(str(count) for count in model.feet_counts) or "none"
        problems.append(f"feet_count {request.feet_count} not allowed (allowed: {allowed})")
    low, high = model.shelf_counts
    if request.shelf_count is not None and not low <= request.shelf_count <= high:
        problems.append(f"shelf_count {request.shelf_count} outside [{low}, {high}]")
    if model.supports_basin:
        basin = request.basin if request.basin is not None else DEFAULT_BASIN
        for name in ("length_mm", "width_mm", "depth_mm", "thickness_mm"):
            if getattr(basin, name) <= 0:
                problems.append(f"basin.{name} must be positive")
        if basin.count < 1:
            problems.append("basin.count must be at least 1")
        if basin.length_mm > request.length_mm - BASIN_CLEARANCE:
            problems.append(
                f"basin.length_mm {basin.length_mm:g} must not exceed "
                f"length_mm - {BASIN_CLEARANCE:g}"
            )
        if basin.width_mm > request.width_mm - BASIN_CLEARANCE:
            problems.append(
                f"basin.width_mm {basin.width_mm:g} must not exceed "
                f"width_mm - {BASIN_CLEARANCE:g}"
            )
    return problems


def _check_options(model: ModelDefinition, request: ProductRequest, grade: MaterialGrade) -> float:
    if request.finish not in model.finishes:
        raise UnsupportedOptionError(
            f"Finish {request.finish!r} is not offered for {model.model_id!r}"
        )
    unsupported = [
        flag
        for flag, requested, supported in (
            ("backsplash", request.backsplash, model.supports_backsplash),
            ("shelf", request.shelf, model.supports_shelf),
            ("basin", request.basin is not None, model.supports_basin),
        )
        if requested and not supported
    ]
    if unsupported:
        raise UnsupportedOptionError(
            f"Model {model.model_id!r} does not support: {', '.join(unsupported)}"
        )
    thickness = request.thickness_mm or model.default_thickness_mm
    if thickness not in grade.thicknesses_mm:
        raise UnsupportedOptionError(
            f"Grade {grade.grade_id!r} is not stocked in {thickness:g} mm"
        )
    return thickness


# ----------------------------------------------------------------------
# Public entry point
# ----------------------------------------------------------------------
def build_bom(
    request: ProductRequest,
    *,
    catalog: CatalogLookup,
    registry: Optional[ModelRegistry] = None,
) -> BOM:
    """Expand a parametric request into the parts and processes of one unit."""

    model = (registry if registry is not None else DEFAULT_REGISTRY).get(request.model_id)
    problems = dimension_problems(model, request)
    if problems:
        raise DimensionOutOfRangeError(model.model_id, problems)
    grade = catalog.material_grade(request.material)
    finish = catalog.finish(request.finish)
    thickness = _check_options(model, request, grade)

    writer = _BomWriter(model=model, grade=grade, thickness_mm=thickness, catalog=catalog)
    model.builder(writer, request)
    bom = BOM(
        model_id=model.model_id,
        category=model.category,
        parts=tuple(writer.parts),
        processes=writer.processes(finish.minutes_per_m2),
    )
    logger.debug(
        "Built BOM for %s: %d parts, %.2f kg", model.model_id, len(bom.parts), bom.total_weight_kg
    )
    return bom


__all__ = [
    "ModelDefinition",
    "ModelRegistry",
    "DEFAULT_MODELS",
    "DEFAULT_REGISTRY",
    "DEFAULT_BASIN",
    "fold_deduction",
    "dimension_problems",
    "build_bom",
]
