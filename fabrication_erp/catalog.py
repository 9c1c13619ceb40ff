"""Read-only catalog tables consumed by the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Protocol, Tuple

from .domain import SheetStock
from .errors import UnknownCatalogEntryError

#: Stock sheet sizes permitted by shop policy. Not catalog data: a catalog
#: cannot widen or narrow this set.
STANDARD_SHEET_SIZES: Tuple[SheetStock, ...] = (
    SheetStock(2000, 1250),
    SheetStock(3000, 1250),
)

#: Commercial length of tube bars unless a section states otherwise.
DEFAULT_BAR_LENGTH_MM = 6000.0


@dataclass(frozen=True, slots=True)
class MaterialGrade:
    """Sheet material grade with its density and purchase price per kg."""

    grade_id: str
    name: str
    density_kg_m3: float
    price_per_kg: Decimal
    thicknesses_mm: Tuple[float, ...] = (0.8, 1.0, 1.2, 1.5, 2.0, 3.0)


@dataclass(frozen=True, slots=True)
class TubeDefinition:
    section_id: str
    name: str
    kg_per_meter: float
    price_per_meter: Decimal
    bar_length_mm: float = DEFAULT_BAR_LENGTH_MM


@dataclass(frozen=True, slots=True)
class AccessoryDefinition:
    sku: str
    name: str
    unit_price: Decimal
    unit: str = "un"


@dataclass(frozen=True, slots=True)
class FinishDefinition:
    """Surface finish and the standard finishing time it needs per m²."""

    finish_id: str
    name: str
    minutes_per_m2: float


class CatalogLookup(Protocol):
    """Typed lookup interface the engine consumes for catalog data."""

    def material_grade(self, grade_id: str) -> MaterialGrade:
        ...

    def material_price(self, grade_id: str) -> Decimal:
        ...

    def tube_definition(self, section_id: str) -> TubeDefinition:
        ...

    def accessory_definition(self, sku: str) -> AccessoryDefinition:
        ...

    def finish(self, finish_id: str) -> FinishDefinition:
        ...

    def standard_sheet_sizes(self) -> Tuple[SheetStock, ...]:
        ...


class InMemoryCatalog:
    """Catalog backed by plain dictionaries."""

    def __init__(
        self,
        grades: Iterable[MaterialGrade] = (),
        tubes: Iterable[TubeDefinition] = (),
        accessories: Iterable[AccessoryDefinition] = (),
        finishes: Iterable[FinishDefinition] = (),
    ) -> None:
        self._grades: Dict[str, MaterialGrade] = {grade.grade_id: grade for grade in grades}
        self._tubes: Dict[str, TubeDefinition] = {tube.section_id: tube for tube in tubes}
        self._accessories: Dict[str, AccessoryDefinition] = {
            accessory.sku: accessory for accessory in accessories
        }
        self._finishes: Dict[str, FinishDefinition] = {
            finish.finish_id: finish for finish in finishes
        }

    @staticmethod
    def _lookup(table: Mapping, name: str, key: str):
        try:
            return table[key]
        except KeyError:
            raise UnknownCatalogEntryError(name, key) from None

    def material_grade(self, grade_id: str) -> MaterialGrade:
        return self._lookup(self._grades, "material grade", grade_id)

    def material_price(self, grade_id: str) -> Decimal:
        return self.material_grade(grade_id).price_per_kg

    def tube_definition(self, section_id: str) -> TubeDefinition:
        return self._lookup(self._tubes, "tube section", section_id)

    def accessory_definition(self, sku: str) -> AccessoryDefinition:
        return self._lookup(self._accessories, "accessory", sku)

    def finish(self, finish_id: str) -> FinishDefinition:
        return self._lookup(self._finishes, "finish", finish_id)

    def standard_sheet_sizes(self) -> Tuple[SheetStock, ...]:
        return STANDARD_SHEET_SIZES

    def grades(self) -> Tuple[MaterialGrade, ...]:
        return tuple(self._grades.values())

    def with_price(self, grade_id: str, price_per_kg: Decimal) -> "InMemoryCatalog":
        """Return a copy with one grade repriced; the original is untouched."""

        grade = self.material_grade(grade_id)
        grades = dict(self._grades)
        grades[grade_id] = MaterialGrade(
            grade_id=grade.grade_id,
            name=grade.name,
            density_kg_m3=grade.density_kg_m3,
            price_per_kg=Decimal(price_per_kg),
            thicknesses_mm=grade.thicknesses_mm,
        )
        return InMemoryCatalog(
            grades.values(),
            self._tubes.values(),
            self._accessories.values(),
            self._finishes.values(),
        )


# ----------------------------------------------------------------------
# Default tables
# ----------------------------------------------------------------------
DEFAULT_GRADES: Tuple[MaterialGrade, ...] = (
    MaterialGrade("inox304", "Aço inox AISI 304", 7900.0, Decimal("42.50")),
    MaterialGrade("inox316", "Aço inox AISI 316", 8000.0, Decimal("68.00")),
    MaterialGrade("inox430", "Aço inox AISI 430", 7700.0, Decimal("29.90")),
)

DEFAULT_TUBES: Tuple[TubeDefinition, ...] = (
    TubeDefinition("tubo-38x1.2", "Tubo redondo Ø38 x 1,2 mm", 1.09, Decimal("36.00")),
    TubeDefinition("tubo-25x1.2", "Tubo redondo Ø25 x 1,2 mm", 0.71, Decimal("24.00")),
    TubeDefinition(
        "tubo-quadrado-30x30x1.2", "Tubo quadrado 30 x 30 x 1,2 mm", 1.09, Decimal("39.00")
    ),
)

DEFAULT_ACCESSORIES: Tuple[AccessoryDefinition, ...] = (
    AccessoryDefinition("pe-regulavel", "Pé regulável em nylon", Decimal("14.90")),
    AccessoryDefinition("mao-francesa", "Mão francesa inox", Decimal("27.50")),
    AccessoryDefinition("valvula-3-1-2", 'Válvula de escoamento 3 1/2"', Decimal("38.00")),
    AccessoryDefinition("filtro-inox", "Filtro de gordura inox", Decimal("96.00")),
    AccessoryDefinition("rodizio", "Rodízio giratório 3\"", Decimal("32.00")),
    AccessoryDefinition("bucha-fixacao", "Bucha e parafuso de fixação", Decimal("1.20")),
)

DEFAULT_FINISHES: Tuple[FinishDefinition, ...] = (
    FinishDefinition("escovado", "Escovado", 6.0),
    FinishDefinition("polido", "Polido espelhado", 14.0),
    FinishDefinition("2b", "Laminado 2B sem acabamento", 0.0),
)


def default_catalog(overrides: Optional[Mapping[str, Decimal]] = None) -> InMemoryCatalog:
    """Build the documented default catalog, optionally repricing grades."""

    catalog = InMemoryCatalog(
        DEFAULT_GRADES, DEFAULT_TUBES, DEFAULT_ACCESSORIES, DEFAULT_FINISHES
    )
    for grade_id, price in (overrides or {}).items():
        catalog = catalog.with_price(grade_id, price)
    return catalog


__all__ = [
    "STANDARD_SHEET_SIZES",
    "DEFAULT_BAR_LENGTH_MM",
    "MaterialGrade",
    "TubeDefinition",
    "AccessoryDefinition",
    "FinishDefinition",
    "CatalogLookup",
    "InMemoryCatalog",
    "DEFAULT_GRADES",
    "DEFAULT_TUBES",
    "DEFAULT_ACCESSORIES",
    "DEFAULT_FINISHES",
    "default_catalog",
]
