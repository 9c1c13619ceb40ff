"""Core data structures for the quote-to-production engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from typing import ClassVar, Dict, Iterator, Optional, Tuple, Union

from .errors import NegativeBalanceError

ZERO = Decimal("0")
CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PartKind(str, Enum):
    """Discriminator for the closed set of BOM part variants."""

    SHEET = "sheet"
    TUBE = "tube"
    ACCESSORY = "accessory"


class ProcessKind(str, Enum):
    """Shop floor processes that carry a standard time."""

    CUT = "cut"
    BEND = "bend"
    WELD = "weld"
    FINISH = "finish"
    ASSEMBLY = "assembly"
    PACK = "pack"
    INSTALLATION = "installation"


class QuoteStatus(str, Enum):
    """Lifecycle stages for a quote."""

    DRAFT = "draft"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"


class OrderStatus(str, Enum):
    """Lifecycle stages for a production order."""

    PENDING = "pending"
    IN_PRODUCTION = "in_production"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderPriority(IntEnum):
    """Priority levels for production orders."""

    LOW = 1
    NORMAL = 2
    HIGH = 3
    URGENT = 4

    @property
    def label(self) -> str:
        return {
            OrderPriority.LOW: "Low",
            OrderPriority.NORMAL: "Normal",
            OrderPriority.HIGH: "High",
            OrderPriority.URGENT: "Urgent",
        }[self]


class MovementKind(str, Enum):
    """Kinds of entries in the stock movement log."""

    ENTRY = "entry"
    EXIT = "exit"
    RESERVE = "reserve"
    RELEASE = "release"
    ADJUST = "adjust"


# ----------------------------------------------------------------------
# Product request
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BasinSpec:
    """Welded basin (cuba) dimensions in millimetres."""

    length_mm: float
    width_mm: float
    depth_mm: float
    thickness_mm: float = 1.0
    count: int = 1


@dataclass(frozen=True, slots=True)
class ProductRequest:
    """Parametric description of one product to be quoted."""

    model_id: str
    length_mm: float
    width_mm: float
    height_mm: float = 0.0
    material: str = "inox304"
    finish: str = "escovado"
    thickness_mm: Optional[float] = None
    backsplash: bool = False
    shelf: bool = False
    basin: Optional[BasinSpec] = None
    feet_count: Optional[int] = None
    shelf_count: Optional[int] = None


# ----------------------------------------------------------------------
# Bill of materials
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SheetPart:
    """Rectangular blank cut from stock sheet."""

    kind: ClassVar[PartKind] = PartKind.SHEET

    part_id: str
    description: str
    material_id: str
    thickness_mm: float
    length_mm: float
    width_mm: float
    quantity: int = 1
    unit_weight_kg: float = 0.0
    folds: int = 0
    can_rotate: bool = True

    @property
    def area_mm2(self) -> float:
        return self.length_mm * self.width_mm

    @property
    def total_weight_kg(self) -> float:
        return self.unit_weight_kg * self.quantity

    @property
    def group_key(self) -> str:
        return sheet_material_id(self.material_id, self.thickness_mm)


@dataclass(frozen=True, slots=True)
class TubePart:
    """Straight tube cut to length."""

    kind: ClassVar[PartKind] = PartKind.TUBE

    part_id: str
    description: str
    section_id: str
    length_mm: float
    quantity: int = 1
    unit_weight_kg: float = 0.0

    @property
    def total_meters(self) -> float:
        return self.length_mm * self.quantity / 1000.0

    @property
    def total_weight_kg(self) -> float:
        return self.unit_weight_kg * self.quantity


@dataclass(frozen=True, slots=True)
class AccessoryPart:
    """Bought-in component counted by unit."""

    kind: ClassVar[PartKind] = PartKind.ACCESSORY

    part_id: str
    sku: str
    description: str
    quantity: int = 1
    unit: str = "un"


PartSpec = Union[SheetPart, TubePart, AccessoryPart]


@dataclass(frozen=True, slots=True)
class ProcessStep:
    kind: ProcessKind
    minutes: float
    description: str = ""


@dataclass(frozen=True, slots=True)
class BOM:
    """Expanded parts list for one unit of a product."""

    model_id: str
    category: str
    parts: Tuple[PartSpec, ...] = ()
    processes: Tuple[ProcessStep, ...] = ()

    @property
    def sheet_parts(self) -> Tuple[SheetPart, ...]:
        return tuple(part for part in self.parts if part.kind is PartKind.SHEET)

    @property
    def tube_parts(self) -> Tuple[TubePart, ...]:
        return tuple(part for part in self.parts if part.kind is PartKind.TUBE)

    @property
    def accessories(self) -> Tuple[AccessoryPart, ...]:
        return tuple(part for part in self.parts if part.kind is PartKind.ACCESSORY)

    @property
    def is_empty(self) -> bool:
        return not self.parts

    @property
    def process_names(self) -> Tuple[str, ...]:
        return tuple(step.kind.value for step in self.processes)

    @property
    def total_weight_kg(self) -> float:
        return sum(
            part.total_weight_kg for part in self.parts if part.kind is not PartKind.ACCESSORY
        )


def sheet_material_id(grade_id: str, thickness_mm: float) -> str:
    """Stock material key for a sheet grade and thickness, e.g. ``inox304-1.2mm``."""

    return f"{grade_id}-{thickness_mm:g}mm"


# ----------------------------------------------------------------------
# Nesting
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True, order=True)
class SheetStock:
    length_mm: float
    width_mm: float

    @property
    def area_mm2(self) -> float:
        return self.length_mm * self.width_mm

    @property
    def label(self) -> str:
        return f"{self.length_mm:g}x{self.width_mm:g}"

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True, slots=True)
class Placement:
    """Position of one part copy on a sheet; origin at the sheet corner."""

    part_id: str
    copy_index: int
    x: float
    y: float
    length_mm: float
    width_mm: float
    rotated: bool = False

    @property
    def x2(self) -> float:
        return self.x + self.length_mm

    @property
    def y2(self) -> float:
        return self.y + self.width_mm

    @property
    def area_mm2(self) -> float:
        return self.length_mm * self.width_mm

    def overlaps(self, other: "Placement") -> bool:
        return (
            self.x < other.x2
            and other.x < self.x2
            and self.y < other.y2
            and other.y < self.y2
        )


@dataclass(frozen=True, slots=True)
class SheetInstance:
    index: int
    stock: SheetStock
    placements: Tuple[Placement, ...] = ()

    @property
    def used_area_mm2(self) -> float:
        return sum(placement.area_mm2 for placement in self.placements)

    @property
    def waste_area_mm2(self) -> float:
        return self.stock.area_mm2 - self.used_area_mm2

    @property
    def utilization_percent(self) -> float:
        return self.used_area_mm2 / self.stock.area_mm2 * 100.0


@dataclass(frozen=True, slots=True)
class NestingResult:
    """Cutting layout for one material+thickness group."""

    material_id: str
    grade_id: str
    thickness_mm: float
    stock: SheetStock
    sheets: Tuple[SheetInstance, ...] = ()

    @property
    def sheet_count(self) -> int:
        return len(self.sheets)

    @property
    def stock_area_mm2(self) -> float:
        return self.stock.area_mm2 * self.sheet_count

    @property
    def used_area_mm2(self) -> float:
        return sum(sheet.used_area_mm2 for sheet in self.sheets)

    @property
    def waste_area_mm2(self) -> float:
        return self.stock_area_mm2 - self.used_area_mm2

    @property
    def waste_percent(self) -> float:
        if not self.sheets:
            return 0.0
        return self.waste_area_mm2 / self.stock_area_mm2 * 100.0

    def placements(self) -> Iterator[Placement]:
        for sheet in self.sheets:
            yield from sheet.placements


@dataclass(frozen=True, slots=True)
class BarCut:
    """One tube cut on a bar; ``offset_mm`` is measured from the bar start."""

    part_id: str
    copy_index: int
    offset_mm: float
    length_mm: float

    @property
    def end_mm(self) -> float:
        return self.offset_mm + self.length_mm


@dataclass(frozen=True, slots=True)
class TubeBar:
    index: int
    length_mm: float
    cuts: Tuple[BarCut, ...] = ()

    @property
    def used_mm(self) -> float:
        return sum(cut.length_mm for cut in self.cuts)

    @property
    def waste_mm(self) -> float:
        return self.length_mm - self.used_mm


@dataclass(frozen=True, slots=True)
class BarNestingResult:
    """Cutting plan of one tube section onto commercial bars."""

    section_id: str
    bar_length_mm: float
    bars: Tuple[TubeBar, ...] = ()

    @property
    def bar_count(self) -> int:
        return len(self.bars)

    @property
    def purchased_mm(self) -> float:
        return self.bar_length_mm * self.bar_count

    @property
    def used_mm(self) -> float:
        return sum(bar.used_mm for bar in self.bars)

    @property
    def waste_percent(self) -> float:
        if not self.bars:
            return 0.0
        return (self.purchased_mm - self.used_mm) / self.purchased_mm * 100.0

    def cuts(self) -> Iterator[BarCut]:
        for bar in self.bars:
            yield from bar.cuts


@dataclass(frozen=True, slots=True)
class NestingPlan:
    """Sheet and bar nesting results for a BOM plus combined totals."""

    groups: Tuple[NestingResult, ...] = ()
    bars: Tuple[BarNestingResult, ...] = ()

    @property
    def total_sheets(self) -> int:
        return sum(group.sheet_count for group in self.groups)

    @property
    def stock_area_mm2(self) -> float:
        return sum(group.stock_area_mm2 for group in self.groups)

    @property
    def waste_area_mm2(self) -> float:
        return sum(group.waste_area_mm2 for group in self.groups)

    @property
    def waste_percent(self) -> float:
        total = self.stock_area_mm2
        return self.waste_area_mm2 / total * 100.0 if total else 0.0

    @property
    def is_empty(self) -> bool:
        return self.total_sheets == 0

    @property
    def total_bars(self) -> int:
        return sum(result.bar_count for result in self.bars)

    def group(self, material_id: str) -> NestingResult:
        for result in self.groups:
            if result.material_id == material_id:
                return result
        raise KeyError(material_id)

    def bar_group(self, section_id: str) -> BarNestingResult:
        for result in self.bars:
            if result.section_id == section_id:
                return result
        raise KeyError(section_id)


# ----------------------------------------------------------------------
# Costing and pricing
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CostLine:
    description: str
    quantity: Decimal
    unit: str
    unit_cost: Decimal
    amount: Decimal


@dataclass(frozen=True, slots=True)
class CostCategory:
    name: str
    amount: Decimal
    lines: Tuple[CostLine, ...] = ()


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    """Cost of one unit split by category, kept at full precision."""

    categories: Tuple[CostCategory, ...] = ()

    @property
    def total(self) -> Decimal:
        return sum((category.amount for category in self.categories), ZERO)

    @property
    def is_empty(self) -> bool:
        return not self.categories

    def amount(self, name: str) -> Decimal:
        for category in self.categories:
            if category.name == name:
                return category.amount
        raise KeyError(name)

    def rounded(self) -> Dict[str, Decimal]:
        """Presentation view: each category and the total at two decimals."""

        view = {category.name: money(category.amount) for category in self.categories}
        view["total"] = money(self.total)
        return view


@dataclass(frozen=True, slots=True)
class TaxLine:
    name: str
    rate_percent: Decimal
    amount: Decimal


@dataclass(frozen=True, slots=True)
class PricingResult:
    base_cost: Decimal
    method: str
    margin_percent: Decimal
    net_price: Decimal
    tax_regime: str
    tax_rate_percent: Decimal
    tax_lines: Tuple[TaxLine, ...]
    tax_amount: Decimal
    final_price: Decimal
    negative_margin_override: bool = False
    floor_applied: bool = False

    @property
    def achieved_margin_percent(self) -> Decimal:
        if not self.net_price:
            return ZERO
        return (self.net_price - self.base_cost) / self.net_price * 100


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT)


# ----------------------------------------------------------------------
# Snapshots and quotes
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MaterialDemand:
    material_id: str
    name: str
    unit: str
    quantity: Decimal


@dataclass(frozen=True, slots=True)
class CalculationSnapshot:
    """Immutable record of one calculation attached to a quote line."""

    snapshot_id: str
    request: ProductRequest
    bom: BOM
    nesting: NestingPlan
    cost: CostBreakdown
    pricing: PricingResult
    demand: Tuple[MaterialDemand, ...] = ()
    created_at: datetime = field(default_factory=utcnow)

    @property
    def model_id(self) -> str:
        return self.request.model_id

    @property
    def unit_price(self) -> Decimal:
        return self.pricing.final_price


@dataclass(frozen=True, slots=True)
class QuoteLine:
    line_id: str
    snapshot: CalculationSnapshot
    quantity: int
    description: str = ""

    @property
    def unit_price(self) -> Decimal:
        return self.snapshot.unit_price

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True, slots=True)
class Quote:
    id: str
    number: str
    customer_id: str
    customer_name: str
    valid_from: date
    valid_until: date
    status: QuoteStatus = QuoteStatus.DRAFT
    lines: Tuple[QuoteLine, ...] = ()
    discount_percent: Decimal = ZERO
    production_order_id: Optional[str] = None
    notes: str = ""
    rejection_reason: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def subtotal(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), ZERO)

    @property
    def discount_amount(self) -> Decimal:
        return self.subtotal * self.discount_percent / 100

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount_amount

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def is_expired(self, on: date) -> bool:
        return on > self.valid_until


# ----------------------------------------------------------------------
# Production and inventory
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ProductionOrder:
    id: str
    number: str
    quote_id: str
    customer_id: str
    customer_name: str
    opened_on: date
    forecast_on: date
    demand: Tuple[MaterialDemand, ...] = ()
    status: OrderStatus = OrderStatus.PENDING
    priority: OrderPriority = OrderPriority.NORMAL
    materials_reserved: bool = False
    materials_consumed: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    pause_reason: str = ""
    cancel_reason: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class InventoryItem:
    """Read-only view of a material balance."""

    material_id: str
    name: str
    unit: str
    total: Decimal = ZERO
    reserved: Decimal = ZERO
    minimum_stock: Decimal = ZERO

    def __post_init__(self) -> None:
        if self.total < 0 or self.reserved < 0 or self.reserved > self.total:
            raise NegativeBalanceError(
                f"Inconsistent balances for {self.material_id!r}: "
                f"total={self.total} reserved={self.reserved}"
            )

    @property
    def available(self) -> Decimal:
        return self.total - self.reserved


@dataclass(frozen=True, slots=True)
class StockMovement:
    movement_id: str
    sequence: int
    material_id: str
    kind: MovementKind
    quantity: Decimal
    total_after: Decimal
    reserved_after: Decimal
    origin: str
    actor: str
    timestamp: datetime
    notes: str = ""

    @property
    def available_after(self) -> Decimal:
        return self.total_after - self.reserved_after


@dataclass(frozen=True, slots=True)
class Shortage:
    material_id: str
    name: str
    unit: str
    required: Decimal
    available: Decimal
    shortfall: Decimal


__all__ = [
    "PartKind",
    "ProcessKind",
    "QuoteStatus",
    "OrderStatus",
    "OrderPriority",
    "MovementKind",
    "BasinSpec",
    "ProductRequest",
    "SheetPart",
    "TubePart",
    "AccessoryPart",
    "PartSpec",
    "ProcessStep",
    "BOM",
    "sheet_material_id",
    "SheetStock",
    "Placement",
    "SheetInstance",
    "NestingResult",
    "BarCut",
    "TubeBar",
    "BarNestingResult",
    "NestingPlan",
    "CostLine",
    "CostCategory",
    "CostBreakdown",
    "TaxLine",
    "PricingResult",
    "money",
    "MaterialDemand",
    "CalculationSnapshot",
    "QuoteLine",
    "Quote",
    "ProductionOrder",
    "InventoryItem",
    "StockMovement",
    "Shortage",
    "utcnow",
    "ZERO",
]
