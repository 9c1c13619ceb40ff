"""Quote-to-production engine for a stainless steel fabrication shop.

This package turns parametric product requests into bills of materials,
nests sheet parts onto standard stock, costs and prices the result, and
carries approved quotes through production orders backed by an inventory
ledger.
"""

from .audit import AuditFact, AuditTrail, LoggingAuditSink
from .bom import DEFAULT_REGISTRY, ModelDefinition, ModelRegistry, build_bom
from .calculation import calculate_snapshot, calculate_snapshots
from .catalog import STANDARD_SHEET_SIZES, InMemoryCatalog, default_catalog
from .config import CostConfig, MarginMethod, default_cost_config
from .costing import calculate_cost
from .domain import (
    BasinSpec,
    MovementKind,
    OrderPriority,
    OrderStatus,
    ProductionOrder,
    ProductRequest,
    Quote,
    QuoteStatus,
    SheetStock,
)
from .errors import FabricationError
from .ledger import InventoryLedger
from .nesting import nest, validate_nesting
from .pricing import calculate_price
from .services import QuoteToProductionService

__all__ = [
    "AuditFact",
    "AuditTrail",
    "LoggingAuditSink",
    "DEFAULT_REGISTRY",
    "ModelDefinition",
    "ModelRegistry",
    "build_bom",
    "calculate_snapshot",
    "calculate_snapshots",
    "STANDARD_SHEET_SIZES",
    "InMemoryCatalog",
    "default_catalog",
    "CostConfig",
    "MarginMethod",
    "default_cost_config",
    "calculate_cost",
    "BasinSpec",
    "MovementKind",
    "OrderPriority",
    "OrderStatus",
    "ProductionOrder",
    "ProductRequest",
    "Quote",
    "QuoteStatus",
    "SheetStock",
    "FabricationError",
    "InventoryLedger",
    "nest",
    "validate_nesting",
    "calculate_price",
    "QuoteToProductionService",
]
