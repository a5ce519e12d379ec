"""
Tests for XLSX exports
"""
import io
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from app.domain.services.export_service import (
    ORDER_HEADERS,
    REMITTANCE_HEADERS,
    _sanitize_text,
    generate_orders_excel,
    generate_remittances_excel,
)
from app.domain.services.order_service import OrderService
from app.domain.services.remittance_service import RemittanceService
from app.state_machine.states import OrderStatus


def _rows(content: bytes) -> list[tuple]:
    wb = load_workbook(io.BytesIO(content))
    return list(wb.active.iter_rows(values_only=True))


class TestSanitize:

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["=SUM(A1:A2)", "+1", "-2", "@cmd"])
    def test_formula_prefixes_are_quoted(self, value):
        assert _sanitize_text(value) == f"'{value}"

    @pytest.mark.unit
    def test_plain_text_unchanged(self):
        assert _sanitize_text("Riyadh") == "Riyadh"
        assert _sanitize_text("") == ""


class TestOrdersExcel:

    @pytest.mark.integration
    async def test_one_row_per_order_with_total(
        self, db_session, product_factory, sample_agent, stock_factory, order_factory
    ):
        oil = await product_factory(name="Argan Oil")
        soap = await product_factory(name="Black Soap", price=Decimal("20"))
        await stock_factory(oil.id)
        await stock_factory(soap.id)
        order = await OrderService(db_session).create_order(
            created_by_id=sample_agent.id,
            country="KSA",
            items=[
                {"product_id": oil.id, "quantity": 1},
                {"product_id": soap.id, "quantity": 3},
            ],
            customer_name="=HYPERLINK(\"x\")",
        )

        content = generate_orders_excel([order], Decimal("160"), "SAR")
        rows = _rows(content)

        assert rows[0][0] == "Orders export"
        header_index = rows.index(tuple(ORDER_HEADERS))
        data = rows[header_index + 1]
        assert data[0] == order.invoice_number
        assert data[5].startswith("'=")
        assert data[9] == "Argan Oil, Black Soap"
        assert data[10] == "1, 3"
        assert data[13] == 160.0

        total = rows[header_index + 2]
        assert total[0] == "Total"
        assert total[1] == 1
        assert total[11] == "SAR"
        assert total[13] == 160.0

    @pytest.mark.unit
    def test_empty_export_still_has_totals(self):
        rows = _rows(generate_orders_excel([], Decimal("0"), "SAR"))
        assert rows[-1][0] == "Total"
        assert rows[-1][1] == 0


class TestRemittancesExcel:

    @pytest.mark.integration
    async def test_sent_totals_per_currency(
        self,
        db_session,
        user_factory,
        sample_agent,
        sample_manager,
        sample_product,
        stock_factory,
        order_factory,
    ):
        from app.db.models.user import UserRole

        driver = await user_factory(
            name="PKR Driver",
            role=UserRole.DRIVER,
            country="KSA",
            commission_per_order=Decimal("30000"),
            commission_currency="PKR",
        )
        await stock_factory(sample_product.id)
        order = await order_factory(sample_agent.id, sample_product.id)
        orders = OrderService(db_session)
        await orders.assign_driver(order.id, driver.id)
        await orders.set_status(order.id, OrderStatus.DELIVERED)

        service = RemittanceService(db_session)
        first = await service.request(driver.id, Decimal("10000"))
        second = await service.request(driver.id, Decimal("12000"))
        await service.request(driver.id, Decimal("15000"))
        await service.send(first.id, sample_manager.id)
        await service.send(second.id, sample_manager.id)

        rows = _rows(generate_remittances_excel(await service.list_remittances()))
        header_index = rows.index(tuple(REMITTANCE_HEADERS))
        assert len(rows) == header_index + 1 + 3 + 1
        assert rows[-1][0] == "Total sent"
        assert rows[-1][4] == "PKR"
        assert rows[-1][6] == 22000.0
