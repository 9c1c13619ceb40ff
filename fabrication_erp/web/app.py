"""FastAPI JSON interface for the quote-to-production engine."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..audit import LoggingAuditSink
from ..domain import (
    BasinSpec,
    CalculationSnapshot,
    InventoryItem,
    MaterialDemand,
    MovementKind,
    OrderPriority,
    ProductionOrder,
    ProductRequest,
    Quote,
    Shortage,
    StockMovement,
    money,
)
from ..errors import (
    EngineValidationError,
    InsufficientStockError,
    LedgerError,
    PolicyViolationError,
    StateTransitionError,
)
from ..repository import DuplicateRecordError, RecordNotFoundError
from ..services import QuoteToProductionService
from ..storage import EngineDatabase


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------
class BasinBody(BaseModel):
    length_mm: float
    width_mm: float
    depth_mm: float
    thickness_mm: float = 1.0
    count: int = 1


class ProductRequestBody(BaseModel):
    model_id: str
    length_mm: float
    width_mm: float
    height_mm: float = 0.0
    material: str = "inox304"
    finish: str = "escovado"
    thickness_mm: Optional[float] = None
    backsplash: bool = False
    shelf: bool = False
    basin: Optional[BasinBody] = None
    feet_count: Optional[int] = None
    shelf_count: Optional[int] = None

    def to_domain(self) -> ProductRequest:
        data = self.model_dump(exclude={"basin"})
        basin = BasinSpec(**self.basin.model_dump()) if self.basin is not None else None
        return ProductRequest(basin=basin, **data)


class QuoteBody(BaseModel):
    customer_id: str
    customer_name: str
    notes: str = ""


class LineBody(BaseModel):
    request: ProductRequestBody
    quantity: int = Field(1)
    description: str = ""


class DiscountBody(BaseModel):
    percent: Decimal


class ReasonBody(BaseModel):
    reason: str = ""


class ConvertBody(BaseModel):
    priority: OrderPriority = OrderPriority.NORMAL
    lead_days: int = 15


class MaterialBody(BaseModel):
    material_id: str
    name: str
    unit: str
    minimum_stock: Decimal = Decimal("0")
    initial_quantity: Decimal = Decimal("0")


class MovementBody(BaseModel):
    kind: MovementKind
    quantity: Decimal
    origin: str = ""
    notes: str = ""


# ----------------------------------------------------------------------
# Response payloads
# ----------------------------------------------------------------------
def _money(value: Decimal) -> str:
    return str(money(value))


def _demand(items: List[MaterialDemand]) -> List[Dict[str, Any]]:
    return [
        {"material_id": item.material_id, "name": item.name, "unit": item.unit,
         "quantity": str(item.quantity)}
        for item in items
    ]


def snapshot_payload(snapshot: CalculationSnapshot) -> Dict[str, Any]:
    plan = snapshot.nesting
    pricing = snapshot.pricing
    return {
        "snapshot_id": snapshot.snapshot_id,
        "model_id": snapshot.model_id,
        "parts": [
            {"part_id": part.part_id, "kind": part.kind.value, "quantity": part.quantity}
            for part in snapshot.bom.parts
        ],
        "nesting": [
            {
                "material_id": group.material_id,
                "stock": group.stock.label,
                "sheets": group.sheet_count,
                "waste_percent": round(group.waste_percent, 2),
            }
            for group in plan.groups
        ],
        "bars": [
            {
                "section_id": result.section_id,
                "bar_length_mm": result.bar_length_mm,
                "bars": result.bar_count,
                "waste_percent": round(result.waste_percent, 2),
            }
            for result in plan.bars
        ],
        "cost": {name: str(amount) for name, amount in snapshot.cost.rounded().items()},
        "pricing": {
            "method": pricing.method,
            "margin_percent": str(pricing.margin_percent),
            "net_price": _money(pricing.net_price),
            "tax_regime": pricing.tax_regime,
            "tax_amount": _money(pricing.tax_amount),
            "final_price": _money(pricing.final_price),
        },
        "demand": _demand(list(snapshot.demand)),
    }


def quote_payload(quote: Quote) -> Dict[str, Any]:
    return {
        "id": quote.id,
        "number": quote.number,
        "customer_id": quote.customer_id,
        "customer_name": quote.customer_name,
        "status": quote.status.value,
        "valid_from": quote.valid_from.isoformat(),
        "valid_until": quote.valid_until.isoformat(),
        "lines": [
            {
                "line_id": line.line_id,
                "description": line.description,
                "model_id": line.snapshot.model_id,
                "quantity": line.quantity,
                "unit_price": _money(line.unit_price),
                "subtotal": _money(line.subtotal),
            }
            for line in quote.lines
        ],
        "discount_percent": str(quote.discount_percent),
        "subtotal": _money(quote.subtotal),
        "discount_amount": _money(quote.discount_amount),
        "total": _money(quote.total),
        "production_order_id": quote.production_order_id,
        "rejection_reason": quote.rejection_reason,
        "notes": quote.notes,
    }


def order_payload(order: ProductionOrder) -> Dict[str, Any]:
    return {
        "id": order.id,
        "number": order.number,
        "quote_id": order.quote_id,
        "customer_name": order.customer_name,
        "status": order.status.value,
        "priority": order.priority.label,
        "opened_on": order.opened_on.isoformat(),
        "forecast_on": order.forecast_on.isoformat(),
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
        "materials_reserved": order.materials_reserved,
        "materials_consumed": order.materials_consumed,
        "pause_reason": order.pause_reason,
        "demand": _demand(list(order.demand)),
    }


def shortage_payload(shortage: Shortage) -> Dict[str, Any]:
    return {
        "material_id": shortage.material_id,
        "name": shortage.name,
        "unit": shortage.unit,
        "required": str(shortage.required),
        "available": str(shortage.available),
        "shortfall": str(shortage.shortfall),
    }


def item_payload(item: InventoryItem) -> Dict[str, Any]:
    return {
        "material_id": item.material_id,
        "name": item.name,
        "unit": item.unit,
        "total": str(item.total),
        "reserved": str(item.reserved),
        "available": str(item.available),
        "minimum_stock": str(item.minimum_stock),
    }


def movement_payload(movement: StockMovement) -> Dict[str, Any]:
    return {
        "sequence": movement.sequence,
        "material_id": movement.material_id,
        "kind": movement.kind.value,
        "quantity": str(movement.quantity),
        "total_after": str(movement.total_after),
        "available_after": str(movement.available_after),
        "origin": movement.origin,
        "actor": movement.actor,
        "timestamp": movement.timestamp.isoformat(),
    }


# ----------------------------------------------------------------------
# Application
# ----------------------------------------------------------------------
def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RecordNotFoundError)
    async def not_found(request: Request, exc: RecordNotFoundError):
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.exception_handler(InsufficientStockError)
    async def insufficient(request: Request, exc: InsufficientStockError):
        return JSONResponse(
            {"detail": str(exc), "shortages": [shortage_payload(s) for s in exc.shortages]},
            status_code=409,
        )

    @app.exception_handler(LedgerError)
    async def ledger_error(request: Request, exc: LedgerError):
        return JSONResponse({"detail": str(exc)}, status_code=409)

    @app.exception_handler(StateTransitionError)
    async def conflict(request: Request, exc: StateTransitionError):
        return JSONResponse({"detail": str(exc)}, status_code=409)

    @app.exception_handler(DuplicateRecordError)
    async def duplicate(request: Request, exc: DuplicateRecordError):
        return JSONResponse({"detail": str(exc)}, status_code=409)

    @app.exception_handler(PolicyViolationError)
    async def policy(request: Request, exc: PolicyViolationError):
        return JSONResponse(
            {"detail": str(exc), "violations": exc.violations}, status_code=422
        )

    @app.exception_handler(EngineValidationError)
    async def invalid(request: Request, exc: EngineValidationError):
        return JSONResponse({"detail": str(exc)}, status_code=422)


def create_app(
    database_path: str = "fabrication.sqlite3",
    *,
    service: Optional[QuoteToProductionService] = None,
) -> FastAPI:
    database: Optional[EngineDatabase] = None
    if service is None:
        database = EngineDatabase(database_path)
        service = QuoteToProductionService(
            quote_repo=database.quotes,
            order_repo=database.orders,
            ledger=database.load_ledger(),
            audit_sinks=[LoggingAuditSink()],
        )

    app = FastAPI(title="Fabrication ERP - Quote to Production")
    app.state.engine_service = service
    app.state.database = database
    _install_error_handlers(app)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        if database is not None:
            database.close()

    def svc(request: Request) -> QuoteToProductionService:
        return request.app.state.engine_service

    # Calculations ------------------------------------------------------
    @app.get("/models")
    def list_models(request: Request):
        registry = svc(request).registry
        return [
            {
                "model_id": model.model_id,
                "name": model.name,
                "category": model.category,
                "length_mm": list(model.length_mm),
                "width_mm": list(model.width_mm),
                "height_mm": list(model.height_mm) if model.height_mm else None,
            }
            for model in (registry.get(model_id) for model_id in registry.ids())
        ]

    @app.post("/calculations")
    def calculate(request: Request, body: ProductRequestBody):
        return snapshot_payload(svc(request).calculate(body.to_domain()))

    # Quotes ------------------------------------------------------------
    @app.get("/quotes")
    def list_quotes(request: Request):
        quotes = sorted(svc(request).quotes.list(), key=lambda quote: quote.number)
        return [quote_payload(quote) for quote in quotes]

    @app.post("/quotes", status_code=201)
    def create_quote(request: Request, body: QuoteBody):
        quote = svc(request).create_quote(body.customer_id, body.customer_name, notes=body.notes)
        return quote_payload(quote)

    @app.get("/quotes/{quote_id}")
    def get_quote(request: Request, quote_id: str):
        return quote_payload(svc(request).quotes.get(quote_id))

    @app.post("/quotes/{quote_id}/lines", status_code=201)
    def add_line(request: Request, quote_id: str, body: LineBody):
        quote = svc(request).add_line(
            quote_id, body.request.to_domain(), body.quantity, description=body.description
        )
        return quote_payload(quote)

    @app.delete("/quotes/{quote_id}/lines/{line_id}")
    def remove_line(request: Request, quote_id: str, line_id: str):
        return quote_payload(svc(request).remove_line(quote_id, line_id))

    @app.put("/quotes/{quote_id}/discount")
    def set_discount(request: Request, quote_id: str, body: DiscountBody):
        return quote_payload(svc(request).set_discount(quote_id, body.percent))

    @app.get("/quotes/{quote_id}/suggested-discount")
    def suggested_discount(request: Request, quote_id: str):
        return {"percent": str(svc(request).suggested_discount(quote_id))}

    @app.post("/quotes/{quote_id}/submit")
    def submit_quote(request: Request, quote_id: str):
        return quote_payload(svc(request).submit_quote(quote_id))

    @app.post("/quotes/{quote_id}/approve")
    def approve_quote(request: Request, quote_id: str):
        return quote_payload(svc(request).approve_quote(quote_id))

    @app.post("/quotes/{quote_id}/reject")
    def reject_quote(request: Request, quote_id: str, body: ReasonBody):
        return quote_payload(svc(request).reject_quote(quote_id, body.reason))

    @app.post("/quotes/{quote_id}/convert", status_code=201)
    def convert_quote(request: Request, quote_id: str, body: Optional[ConvertBody] = None):
        body = body or ConvertBody()
        order = svc(request).convert_quote(
            quote_id, priority=body.priority, lead_days=body.lead_days
        )
        return order_payload(order)

    # Production orders -------------------------------------------------
    @app.get("/orders")
    def list_orders(request: Request):
        orders = sorted(svc(request).orders.list(), key=lambda order: order.number)
        return [order_payload(order) for order in orders]

    @app.get("/orders/{order_id}")
    def get_order(request: Request, order_id: str):
        return order_payload(svc(request).orders.get(order_id))

    @app.get("/orders/{order_id}/shortages")
    def order_shortages(request: Request, order_id: str):
        return [shortage_payload(item) for item in svc(request).check_materials(order_id)]

    @app.post("/orders/{order_id}/reserve")
    def reserve(request: Request, order_id: str):
        return order_payload(svc(request).reserve_materials(order_id))

    @app.post("/orders/{order_id}/start")
    def start(request: Request, order_id: str):
        return order_payload(svc(request).start_production(order_id))

    @app.post("/orders/{order_id}/pause")
    def pause(request: Request, order_id: str, body: ReasonBody):
        return order_payload(svc(request).pause_production(order_id, body.reason))

    @app.post("/orders/{order_id}/resume")
    def resume(request: Request, order_id: str, body: Optional[ReasonBody] = None):
        reason = body.reason if body is not None else ""
        return order_payload(svc(request).resume_production(order_id, reason))

    @app.post("/orders/{order_id}/complete")
    def complete(request: Request, order_id: str):
        return order_payload(svc(request).complete_production(order_id))

    @app.post("/orders/{order_id}/cancel")
    def cancel(request: Request, order_id: str, body: ReasonBody):
        return order_payload(svc(request).cancel_order(order_id, body.reason))

    # Inventory ---------------------------------------------------------
    @app.get("/inventory")
    def inventory(request: Request):
        return [item_payload(item) for item in svc(request).ledger.items()]

    @app.get("/inventory/critical")
    def critical(request: Request):
        return [item_payload(item) for item in svc(request).critical_materials()]

    @app.post("/inventory", status_code=201)
    def register_material(request: Request, body: MaterialBody):
        item = svc(request).register_material(
            body.material_id,
            body.name,
            body.unit,
            minimum_stock=body.minimum_stock,
            initial_quantity=body.initial_quantity,
        )
        return item_payload(item)

    @app.get("/inventory/{material_id}/movements")
    def movements(request: Request, material_id: str):
        ledger = svc(request).ledger
        ledger.item(material_id)
        return [movement_payload(m) for m in ledger.movements(material_id=material_id)]

    @app.post("/inventory/{material_id}/movements", status_code=201)
    def record_movement(request: Request, material_id: str, body: MovementBody):
        movement = svc(request).ledger.record_movement(
            material_id, body.kind, body.quantity, origin=body.origin, notes=body.notes
        )
        return movement_payload(movement)

    return app


__all__ = ["create_app"]
