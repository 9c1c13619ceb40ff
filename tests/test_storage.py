from __future__ import annotations

import sqlite3
from datetime import date
from decimal import Decimal

import pytest

from fabrication_erp.domain import MaterialDemand, QuoteStatus
from fabrication_erp.repository import DuplicateRecordError, InMemoryRepository, RecordNotFoundError
from fabrication_erp.services import QuoteToProductionService
from fabrication_erp.storage import EngineDatabase


@pytest.fixture
def database(tmp_path):
    db = EngineDatabase(str(tmp_path / "engine.sqlite3"))
    yield db
    db.close()


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_repository_contract(kind, database):
    repo = InMemoryRepository() if kind == "memory" else database.quotes

    repo.add("a", {"value": 1})
    assert "a" in repo
    assert repo.get("a") == {"value": 1}
    with pytest.raises(DuplicateRecordError):
        repo.add("a", {"value": 2})

    repo.upsert("a", {"value": 3})
    assert repo.list() == [{"value": 3}]
    assert repo.find(lambda item: item["value"] == 3) == {"value": 3}
    assert repo.find(lambda item: item["value"] == 4) is None

    repo.remove("a")
    with pytest.raises(RecordNotFoundError):
        repo.get("a")
    with pytest.raises(RecordNotFoundError):
        repo.remove("a")


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_add_many_is_all_or_nothing(kind, database):
    repo = InMemoryRepository() if kind == "memory" else database.movements
    repo.add("b", {"value": 2})

    with pytest.raises(DuplicateRecordError):
        repo.add_many([("a", {"value": 1}), ("b", {"value": 9}), ("c", {"value": 3})])
    with pytest.raises(DuplicateRecordError):
        repo.add_many([("d", {"value": 4}), ("d", {"value": 5})])

    assert repo.list() == [{"value": 2}]
    repo.add_many([("a", {"value": 1}), ("c", {"value": 3})])
    assert sorted(item["value"] for item in repo.list()) == [1, 2, 3]


def test_quote_with_snapshot_round_trips(database, service, bench_request):
    quote = service.create_quote("CLI-9", "Açougue Bom Corte")
    quote = service.add_line(quote.id, bench_request, 2)

    database.quotes.add(quote.id, quote)
    loaded = database.quotes.get(quote.id)

    assert loaded == quote
    assert loaded.total == quote.total
    assert loaded.lines[0].snapshot.nesting == quote.lines[0].snapshot.nesting


def test_ledger_is_rebuilt_from_persisted_movements(tmp_path):
    path = str(tmp_path / "ledger.sqlite3")
    demand = [MaterialDemand("chapa", "Chapa 304", "kg", Decimal("4"))]

    with EngineDatabase(path) as first:
        ledger = first.load_ledger()
        ledger.register_material("chapa", "Chapa 304", "kg", initial_quantity=Decimal("10"))
        ledger.reserve("op-1", demand)

    with EngineDatabase(path) as second:
        rebuilt = second.load_ledger()
        item = rebuilt.item("chapa")
        assert (item.total, item.reserved) == (Decimal("10"), Decimal("4"))
        assert rebuilt.reserved_for("op-1") == {"chapa": Decimal("4")}
        assert rebuilt.verify() == []

        rebuilt.consume("op-1", demand)
        assert len(second.movements.list()) == 4


def test_service_state_survives_restart(tmp_path, bench_request):
    path = str(tmp_path / "service.sqlite3")

    with EngineDatabase(path) as database:
        service = QuoteToProductionService(
            quote_repo=database.quotes,
            order_repo=database.orders,
            ledger=database.load_ledger(),
            today=lambda: date(2026, 10, 17),
        )
        quote = service.create_quote("CLI-1", "Cantina Escolar")
        service.add_line(quote.id, bench_request, 1)
        service.submit_quote(quote.id)

    with EngineDatabase(path) as database:
        restored = database.quotes.get(quote.id)
        assert restored.status is QuoteStatus.AWAITING_APPROVAL
        assert len(restored.lines) == 1


def test_service_keeps_an_empty_database(tmp_path):
    with EngineDatabase(str(tmp_path / "empty.sqlite3")) as database:
        service = QuoteToProductionService(quote_repo=database.quotes, order_repo=database.orders)

        assert service.quotes is database.quotes
        assert service.orders is database.orders
        quote = service.create_quote("CLI-2", "Padaria Central")
        assert database.quotes.get(quote.id) == quote


def test_failed_movement_write_keeps_ledger_and_database_aligned(tmp_path, monkeypatch):
    path = str(tmp_path / "aligned.sqlite3")
    demand = [MaterialDemand("chapa", "Chapa 304", "kg", Decimal("4"))]

    with EngineDatabase(path) as database:
        ledger = database.load_ledger()
        ledger.register_material("chapa", "Chapa 304", "kg", initial_quantity=Decimal("10"))

        def refuse(items):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(database.movements, "add_many", refuse)
        with pytest.raises(sqlite3.OperationalError):
            ledger.reserve("op-1", demand)

        assert ledger.item("chapa").reserved == 0
        assert len(database.movements.list()) == len(ledger.movements()) == 1

    with EngineDatabase(path) as database:
        rebuilt = database.load_ledger()
        assert rebuilt.items() == ledger.items()
        assert rebuilt.verify() == []
