"""Demonstration script for the stainless steel quote-to-production engine."""

from __future__ import annotations

import logging
from decimal import Decimal
from pprint import pprint

from . import BasinSpec, OrderPriority, ProductRequest, QuoteToProductionService
from .audit import AuditTrail


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    trail = AuditTrail()
    erp = QuoteToProductionService(audit_sinks=[trail])

    # Estoque inicial
    erp.register_material(
        "inox304-1mm", "Chapa Aço inox AISI 304 1 mm", "kg",
        minimum_stock=Decimal("40"), initial_quantity=Decimal("250"),
    )
    erp.register_material(
        "tubo-38x1.2", "Tubo redondo Ø38 x 1,2 mm", "m",
        minimum_stock=Decimal("12"), initial_quantity=Decimal("60"),
    )
    erp.register_material(
        "tubo-25x1.2", "Tubo redondo Ø25 x 1,2 mm", "m",
        minimum_stock=Decimal("12"), initial_quantity=Decimal("60"),
    )
    erp.register_material(
        "pe-regulavel", "Pé regulável em nylon", "un",
        minimum_stock=Decimal("8"), initial_quantity=Decimal("40"),
    )
    erp.register_material(
        "valvula-3-1-2", 'Válvula de escoamento 3 1/2"', "un", initial_quantity=Decimal("10"),
    )

    # Orçamento
    quote = erp.create_quote("CLI-0042", "Restaurante Sabor da Serra", notes="Entrega na obra")
    quote = erp.add_line(
        quote.id,
        ProductRequest("bancada-simples", 1200, 600, 850, backsplash=True),
        3,
        description="Bancada de preparo 1200 x 600",
    )
    quote = erp.add_line(
        quote.id,
        ProductRequest(
            "bancada-com-cuba", 1800, 700, 900,
            basin=BasinSpec(length_mm=500, width_mm=400, depth_mm=250),
        ),
        1,
    )
    quote = erp.apply_suggested_discount(quote.id)

    print(f"Orçamento {quote.number} ({quote.status.value})")
    for line in quote.lines:
        snapshot = line.snapshot
        print(
            f" - {line.description}: {line.quantity} x R$ {line.unit_price:.2f}"
            f" ({snapshot.nesting.total_sheets} chapa(s), {snapshot.nesting.total_bars} barra(s),"
            f" perda {snapshot.nesting.waste_percent:.1f}%)"
        )
        pprint(snapshot.cost.rounded())
    print(
        f"Subtotal R$ {quote.subtotal:.2f}, desconto {quote.discount_percent}%,"
        f" total R$ {quote.total:.2f}"
    )

    erp.submit_quote(quote.id)
    erp.approve_quote(quote.id, actor="comercial")

    # Ordem de produção
    order = erp.convert_quote(quote.id, priority=OrderPriority.HIGH)
    shortages = erp.check_materials(order.id)
    if shortages:
        print("\nFalta de material")
        for shortage in shortages:
            print(f" - {shortage.name}: faltam {shortage.shortfall} {shortage.unit}")
        for shortage in shortages:
            erp.receive_stock(
                shortage.material_id, shortage.shortfall, origin="compra emergencial"
            )

    erp.reserve_materials(order.id)
    erp.start_production(order.id, actor="PCP")
    order = erp.complete_production(order.id)
    print(f"\nOrdem {order.number}: {order.status.value} em {order.completed_at:%d/%m/%Y %H:%M}")

    print("\nSaldo de estoque")
    for item in erp.ledger.items():
        print(f" - {item.name}: {item.available} {item.unit} disponível")

    print("\nTrilha de auditoria do orçamento")
    pprint(trail.actions(quote.id))


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
