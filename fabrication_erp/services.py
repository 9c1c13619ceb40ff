"""Service layer wiring calculations, aggregates, the ledger and audit sinks."""

from __future__ import annotations

import logging
import threading
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from . import production, quotes
from .audit import AuditFact, AuditSink, publish
from .bom import DEFAULT_REGISTRY, ModelRegistry
from .calculation import calculate_snapshot, calculate_snapshots
from .catalog import CatalogLookup, default_catalog
from .config import CostConfig, default_cost_config
from .domain import (
    ZERO,
    CalculationSnapshot,
    InventoryItem,
    MovementKind,
    OrderPriority,
    ProductionOrder,
    ProductRequest,
    Quote,
    Shortage,
    StockMovement,
)
from .ledger import InventoryLedger
from .pricing import suggest_discount_percent
from .repository import InMemoryRepository

logger = logging.getLogger(__name__)


class QuoteToProductionService:
    """Facade that exposes quote-to-production use-cases to clients.

    Aggregates are mutated only through their pure transition functions;
    the service persists the returned state and hands the facts to every
    audit sink. Ledger calls happen after the transition has been validated
    and before the new state is stored.
    """

    def __init__(
        self,
        *,
        catalog: Optional[CatalogLookup] = None,
        config: Optional[CostConfig] = None,
        registry: Optional[ModelRegistry] = None,
        quote_repo: Optional[InMemoryRepository[Quote]] = None,
        order_repo: Optional[InMemoryRepository[ProductionOrder]] = None,
        ledger: Optional[InventoryLedger] = None,
        audit_sinks: Sequence[AuditSink] = (),
        today: Callable[[], date] = date.today,
    ) -> None:
        self.catalog = catalog if catalog is not None else default_catalog()
        self.config = config if config is not None else default_cost_config()
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.quotes = quote_repo if quote_repo is not None else InMemoryRepository()
        self.orders = order_repo if order_repo is not None else InMemoryRepository()
        self.ledger = ledger if ledger is not None else InventoryLedger()
        self.audit_sinks: List[AuditSink] = list(audit_sinks)
        self._today = today
        self._lock = threading.RLock()

    def _publish(self, facts: Iterable[AuditFact]) -> None:
        publish(self.audit_sinks, facts)

    # ------------------------------------------------------------------
    # Calculations
    # ------------------------------------------------------------------
    def calculate(self, request: ProductRequest) -> CalculationSnapshot:
        return calculate_snapshot(
            request, catalog=self.catalog, config=self.config, registry=self.registry
        )

    def calculate_many(self, requests: Sequence[ProductRequest]) -> List[CalculationSnapshot]:
        return calculate_snapshots(
            requests, catalog=self.catalog, config=self.config, registry=self.registry
        )

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    def _next_quote_number(self, on: date) -> str:
        prefix = f"ORC-{on:%Y%m}-"
        taken = sum(1 for quote in self.quotes.list() if quote.number.startswith(prefix))
        return f"{prefix}{taken + 1:04d}"

    def _store_quote(self, result: quotes.TransitionResult[Quote]) -> Quote:
        self.quotes.upsert(result.record.id, result.record)
        self._publish(result.facts)
        return result.record

    def create_quote(
        self,
        customer_id: str,
        customer_name: str,
        *,
        notes: str = "",
        actor: str = "system",
    ) -> Quote:
        with self._lock:
            today = self._today()
            result = quotes.new_quote(
                number=self._next_quote_number(today),
                customer_id=customer_id,
                customer_name=customer_name,
                valid_from=today,
                validity_days=self.config.quote_validity_days,
                notes=notes,
                actor=actor,
            )
            self.quotes.add(result.record.id, result.record)
            self._publish(result.facts)
        logger.info("Created quote %s for %s", result.record.number, customer_name)
        return result.record

    def add_line(
        self,
        quote_id: str,
        request: ProductRequest,
        quantity: int,
        *,
        description: str = "",
        actor: str = "system",
    ) -> Quote:
        snapshot = self.calculate(request)
        with self._lock:
            quote = self.quotes.get(quote_id)
            return self._store_quote(
                quotes.add_line(quote, snapshot, quantity, description=description, actor=actor)
            )

    def add_lines(
        self,
        quote_id: str,
        items: Sequence[Tuple[ProductRequest, int]],
        *,
        actor: str = "system",
    ) -> Quote:
        """Calculate every item in parallel, then attach them in order."""

        snapshots = self.calculate_many([request for request, _ in items])
        with self._lock:
            quote = self.quotes.get(quote_id)
            facts: List[AuditFact] = []
            for snapshot, (_, quantity) in zip(snapshots, items):
                result = quotes.add_line(quote, snapshot, quantity, actor=actor)
                quote = result.record
                facts.extend(result.facts)
            return self._store_quote(quotes.TransitionResult(quote, tuple(facts)))

    def remove_line(self, quote_id: str, line_id: str, *, actor: str = "system") -> Quote:
        with self._lock:
            quote = self.quotes.get(quote_id)
            return self._store_quote(quotes.remove_line(quote, line_id, actor=actor))

    def set_discount(self, quote_id: str, percent: Decimal, *, actor: str = "system") -> Quote:
        with self._lock:
            quote = self.quotes.get(quote_id)
            return self._store_quote(quotes.set_discount(quote, percent, actor=actor))

    def suggested_discount(self, quote_id: str) -> Decimal:
        quote = self.quotes.get(quote_id)
        return suggest_discount_percent(self.config, quote.item_count, quote.subtotal)

    def apply_suggested_discount(self, quote_id: str, *, actor: str = "system") -> Quote:
        return self.set_discount(quote_id, self.suggested_discount(quote_id), actor=actor)

    def submit_quote(self, quote_id: str, *, actor: str = "system") -> Quote:
        with self._lock:
            quote = self.quotes.get(quote_id)
            updated = self._store_quote(
                quotes.submit(quote, on=self._today(), registry=self.registry, actor=actor)
            )
        logger.info("Quote %s submitted for approval", updated.number)
        return updated

    def approve_quote(self, quote_id: str, *, actor: str = "system") -> Quote:
        with self._lock:
            updated = self._store_quote(quotes.approve(self.quotes.get(quote_id), actor=actor))
        logger.info("Quote %s approved by %s", updated.number, actor)
        return updated

    def reject_quote(self, quote_id: str, reason: str, *, actor: str = "system") -> Quote:
        with self._lock:
            updated = self._store_quote(
                quotes.reject(self.quotes.get(quote_id), reason, actor=actor)
            )
        logger.info("Quote %s rejected: %s", updated.number, reason)
        return updated

    # ------------------------------------------------------------------
    # Production orders
    # ------------------------------------------------------------------
    def _next_order_number(self) -> str:
        return f"OP-{len(self.orders.list()) + 1:04d}"

    def _store_order(
        self, result: quotes.TransitionResult[ProductionOrder]
    ) -> ProductionOrder:
        self.orders.upsert(result.record.id, result.record)
        self._publish(result.facts)
        return result.record

    def convert_quote(
        self,
        quote_id: str,
        *,
        priority: OrderPriority = OrderPriority.NORMAL,
        lead_days: int = production.DEFAULT_LEAD_DAYS,
        actor: str = "system",
    ) -> ProductionOrder:
        """Create the production order for an approved quote, exactly once."""

        with self._lock:
            quote = self.quotes.get(quote_id)
            creation = production.create_order_from_quote(
                quote,
                number=self._next_order_number(),
                opened_on=self._today(),
                lead_days=lead_days,
                priority=priority,
                actor=actor,
            )
            self.orders.add(creation.order.id, creation.order)
            self.quotes.upsert(creation.quote.id, creation.quote)
            self._publish(creation.facts)
        logger.info(
            "Quote %s converted into production order %s",
            creation.quote.number,
            creation.order.number,
        )
        return creation.order

    def order_for_quote(self, quote_id: str) -> ProductionOrder:
        quote = self.quotes.get(quote_id)
        return self.orders.get(quote.production_order_id or "")

    def check_materials(self, order_id: str) -> List[Shortage]:
        order = self.orders.get(order_id)
        return self.ledger.check_availability(order.demand)

    def reserve_materials(self, order_id: str, *, actor: str = "system") -> ProductionOrder:
        with self._lock:
            order = self.orders.get(order_id)
            result = production.mark_materials_reserved(order, actor=actor)
            self.ledger.reserve(order.id, order.demand, actor=actor)
            return self._store_order(result)

    def start_production(self, order_id: str, *, actor: str = "system") -> ProductionOrder:
        with self._lock:
            order = self.orders.get(order_id)
            result = production.start(order, actor=actor)
            self.ledger.consume(order.id, order.demand, actor=actor)
            updated = self._store_order(result)
        logger.info("Production order %s started", updated.number)
        return updated

    def pause_production(
        self, order_id: str, reason: str, *, actor: str = "system"
    ) -> ProductionOrder:
        with self._lock:
            return self._store_order(
                production.pause(self.orders.get(order_id), reason, actor=actor)
            )

    def resume_production(
        self, order_id: str, reason: str = "", *, actor: str = "system"
    ) -> ProductionOrder:
        with self._lock:
            return self._store_order(
                production.resume(self.orders.get(order_id), reason, actor=actor)
            )

    def complete_production(self, order_id: str, *, actor: str = "system") -> ProductionOrder:
        with self._lock:
            updated = self._store_order(
                production.complete(self.orders.get(order_id), actor=actor)
            )
        logger.info("Production order %s completed", updated.number)
        return updated

    def cancel_order(self, order_id: str, reason: str, *, actor: str = "system") -> ProductionOrder:
        with self._lock:
            order = self.orders.get(order_id)
            result = production.cancel(order, reason, actor=actor)
            if order.materials_reserved:
                self.ledger.release(order.id, actor=actor)
            updated = self._store_order(result)
        logger.info("Production order %s cancelled: %s", updated.number, reason)
        return updated

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------
    def register_material(
        self,
        material_id: str,
        name: str,
        unit: str,
        *,
        minimum_stock: Decimal = ZERO,
        initial_quantity: Decimal = ZERO,
        actor: str = "system",
    ) -> InventoryItem:
        return self.ledger.register_material(
            material_id,
            name,
            unit,
            minimum_stock=minimum_stock,
            initial_quantity=initial_quantity,
            actor=actor,
        )

    def receive_stock(
        self,
        material_id: str,
        quantity: Decimal,
        *,
        origin: str = "",
        actor: str = "system",
        notes: str = "",
    ) -> StockMovement:
        return self.ledger.record_movement(
            material_id, MovementKind.ENTRY, quantity, origin=origin, actor=actor, notes=notes
        )

    def adjust_stock(
        self, material_id: str, quantity: Decimal, *, actor: str = "system", notes: str = ""
    ) -> StockMovement:
        return self.ledger.record_movement(
            material_id, MovementKind.ADJUST, quantity, origin="adjustment", actor=actor, notes=notes
        )

    def critical_materials(self) -> List[InventoryItem]:
        return self.ledger.critical_items()


__all__ = ["QuoteToProductionService"]
