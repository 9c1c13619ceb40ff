from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from fabrication_erp.audit import AuditTrail
from fabrication_erp.calculation import calculate_snapshot
from fabrication_erp.catalog import default_catalog
from fabrication_erp.config import default_cost_config
from fabrication_erp.domain import ProductRequest
from fabrication_erp.ledger import InventoryLedger
from fabrication_erp.services import QuoteToProductionService

TODAY = date(2026, 10, 17)

BENCH_STOCK = {
    "inox304-1mm": ("Chapa Aço inox AISI 304 1 mm", "kg", Decimal("100")),
    "tubo-38x1.2": ("Tubo redondo Ø38 x 1,2 mm", "m", Decimal("20")),
    "tubo-25x1.2": ("Tubo redondo Ø25 x 1,2 mm", "m", Decimal("20")),
    "pe-regulavel": ("Pé regulável em nylon", "un", Decimal("50")),
}


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def config():
    return default_cost_config()


@pytest.fixture
def bench_request() -> ProductRequest:
    return ProductRequest("bancada-simples", 1200, 600, 850)


@pytest.fixture
def bench_snapshot(bench_request, catalog, config):
    return calculate_snapshot(bench_request, catalog=catalog, config=config)


@pytest.fixture
def stocked_ledger() -> InventoryLedger:
    ledger = InventoryLedger()
    for material_id, (name, unit, quantity) in BENCH_STOCK.items():
        ledger.register_material(material_id, name, unit, initial_quantity=quantity)
    return ledger


@pytest.fixture
def trail() -> AuditTrail:
    return AuditTrail()


@pytest.fixture
def service(catalog, config, stocked_ledger, trail) -> QuoteToProductionService:
    return QuoteToProductionService(
        catalog=catalog,
        config=config,
        ledger=stocked_ledger,
        audit_sinks=[trail],
        today=lambda: TODAY,
    )


@pytest.fixture
def approved_quote(service, bench_request):
    quote = service.create_quote("CLI-1", "Cozinha Industrial Ltda")
    service.add_line(quote.id, bench_request, 2)
    service.submit_quote(quote.id)
    return service.approve_quote(quote.id)
