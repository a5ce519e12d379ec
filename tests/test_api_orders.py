"""
API tests for /api/orders
"""
import io
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from app.db.models.user import UserRole


async def _create_order(test_client, agent_id: int, product_id: int, **overrides) -> dict:
    payload = {
        "created_by_id": agent_id,
        "country": "ksa",
        "items": [{"product_id": product_id, "quantity": 1}],
        "customer_name": "Fatima",
        "customer_phone": "+966501234567",
    }
    payload.update(overrides)
    response = await test_client.post("/api/orders", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateOrder:

    @pytest.mark.integration
    async def test_create(self, test_client, sample_agent, sample_product):
        data = await _create_order(test_client, sample_agent.id, sample_product.id)
        assert data["country"] == "KSA"
        assert data["currency"] == "SAR"
        assert data["status"] == "pending"
        assert Decimal(data["total"]) == Decimal("100")
        assert data["is_locked"] is False
        assert len(data["items"]) == 1

    @pytest.mark.integration
    async def test_unknown_country_rejected(self, test_client, sample_agent, sample_product):
        response = await test_client.post("/api/orders", json={
            "created_by_id": sample_agent.id,
            "country": "Atlantis",
            "items": [{"product_id": sample_product.id, "quantity": 1}],
        })
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_empty_items_rejected(self, test_client, sample_agent):
        response = await test_client.post("/api/orders", json={
            "created_by_id": sample_agent.id,
            "country": "KSA",
            "items": [],
        })
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_unknown_product(self, test_client, sample_agent):
        response = await test_client.post("/api/orders", json={
            "created_by_id": sample_agent.id,
            "country": "KSA",
            "items": [{"product_id": 999, "quantity": 1}],
        })
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_1002"


class TestOrderReads:

    @pytest.mark.integration
    async def test_get_and_list(self, test_client, sample_agent, sample_product):
        created = await _create_order(test_client, sample_agent.id, sample_product.id)
        await _create_order(test_client, sample_agent.id, sample_product.id, country="UAE")

        response = await test_client.get(f"/api/orders/{created['id']}")
        assert response.status_code == 200
        assert response.json()["invoice_number"] == created["invoice_number"]

        response = await test_client.get("/api/orders", params={"country": "uae"})
        assert [o["country"] for o in response.json()] == ["UAE"]

    @pytest.mark.integration
    async def test_read_populates_references(
        self,
        test_client,
        user_factory,
        product_factory,
        investment_factory,
        sample_agent,
        sample_driver,
        sample_product,
    ):
        unbacked = await product_factory(name="Rose Water", price=Decimal("40"))
        investor = await user_factory(name="Investor", role=UserRole.INVESTOR)
        await investment_factory(investor.id, sample_product.id)
        # a stake scoped to another country does not back KSA orders
        await investment_factory(investor.id, unbacked.id, country="UAE")

        created = await _create_order(
            test_client,
            sample_agent.id,
            sample_product.id,
            items=[
                {"product_id": sample_product.id, "quantity": 1},
                {"product_id": unbacked.id, "quantity": 2},
            ],
        )
        await test_client.post(
            f"/api/orders/{created['id']}/assign-driver", json={"driver_id": sample_driver.id}
        )

        data = (await test_client.get(f"/api/orders/{created['id']}")).json()
        assert data["driver"] == {"id": sample_driver.id, "name": "Sample Driver"}
        assert data["created_by"] == {"id": sample_agent.id, "name": "Sample Agent"}
        assert data["items"][0]["product"] == {
            "id": sample_product.id,
            "name": "Argan Oil",
            "price": "100.00",
            "base_currency": "SAR",
        }
        assert data["items"][1]["product"]["name"] == "Rose Water"
        assert data["investor_product_refs"] == [sample_product.id]
        assert data["updated_at"] is not None
        for key in ("picked_up_at", "shipped_at", "return_verified_by_id", "return_submitted_at"):
            assert data[key] is None

    @pytest.mark.integration
    async def test_unassigned_order_has_no_driver(self, test_client, sample_agent, sample_product):
        created = await _create_order(test_client, sample_agent.id, sample_product.id)
        assert created["driver"] is None
        assert created["investor_product_refs"] == []

    @pytest.mark.integration
    async def test_list_with_bad_country_filter(self, test_client):
        response = await test_client.get("/api/orders", params={"country": "Mars"})
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "country"

    @pytest.mark.integration
    async def test_missing_order(self, test_client):
        response = await test_client.get("/api/orders/4242")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"


class TestTransitions:

    @pytest.mark.integration
    async def test_assign_and_deliver(
        self, test_client, sample_agent, sample_driver, sample_product, stock_factory
    ):
        await stock_factory(sample_product.id)
        order = await _create_order(test_client, sample_agent.id, sample_product.id)

        response = await test_client.post(
            f"/api/orders/{order['id']}/assign-driver", json={"driver_id": sample_driver.id}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "assigned"

        response = await test_client.post(
            f"/api/orders/{order['id']}/driver-status",
            json={"driver_id": sample_driver.id, "status": "delivered", "collected_amount": "100"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "delivered"
        assert data["inventory_adjusted"] is True
        assert data["delivered_at"] is not None

    @pytest.mark.integration
    async def test_invalid_transition_is_409(self, test_client, sample_agent, sample_product):
        order = await _create_order(test_client, sample_agent.id, sample_product.id)
        response = await test_client.post(
            f"/api/orders/{order['id']}/status", json={"status": "returned"}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_6001"

    @pytest.mark.integration
    async def test_unknown_status_is_422(self, test_client, sample_agent, sample_product):
        order = await _create_order(test_client, sample_agent.id, sample_product.id)
        response = await test_client.post(
            f"/api/orders/{order['id']}/status", json={"status": "lost"}
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_insufficient_stock_is_409(self, test_client, sample_agent, sample_product):
        order = await _create_order(test_client, sample_agent.id, sample_product.id)
        response = await test_client.post(
            f"/api/orders/{order['id']}/status", json={"status": "delivered"}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_7001"

        response = await test_client.get(f"/api/orders/{order['id']}")
        assert response.json()["status"] == "pending"

    @pytest.mark.integration
    async def test_country_mismatch(self, test_client, sample_agent, sample_driver, sample_product):
        order = await _create_order(test_client, sample_agent.id, sample_product.id, country="Oman")
        response = await test_client.post(
            f"/api/orders/{order['id']}/assign-driver", json={"driver_id": sample_driver.id}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2003"

    @pytest.mark.integration
    async def test_claim_by_second_driver(
        self, test_client, user_factory, sample_agent, sample_driver, sample_product
    ):
        other = await user_factory(name="Second Driver", role=UserRole.DRIVER, country="KSA")
        order = await _create_order(test_client, sample_agent.id, sample_product.id)

        first = await test_client.post(
            f"/api/orders/{order['id']}/claim", json={"driver_id": sample_driver.id}
        )
        assert first.status_code == 200
        second = await test_client.post(
            f"/api/orders/{order['id']}/claim", json={"driver_id": other.id}
        )
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "ERR_2002"

    @pytest.mark.integration
    async def test_driver_not_assigned_is_403(
        self, test_client, sample_agent, sample_driver, sample_product
    ):
        order = await _create_order(test_client, sample_agent.id, sample_product.id)
        response = await test_client.post(
            f"/api/orders/{order['id']}/driver-status",
            json={"driver_id": sample_driver.id, "status": "picked_up"},
        )
        assert response.status_code == 403


class TestReturns:

    @pytest.mark.integration
    async def test_return_flow_locks_order(
        self, test_client, sample_agent, sample_manager, sample_product, stock_factory
    ):
        await stock_factory(sample_product.id, "KSA", 5)
        order = await _create_order(test_client, sample_agent.id, sample_product.id)
        order_id = order["id"]

        await test_client.post(f"/api/orders/{order_id}/status", json={"status": "delivered"})
        await test_client.post(f"/api/orders/{order_id}/status", json={"status": "returned"})

        response = await test_client.post(
            f"/api/orders/{order_id}/return/submit", json={"reason": "Damaged box"}
        )
        assert response.status_code == 200
        assert response.json()["return_submitted_to_company"] is True

        response = await test_client.post(
            f"/api/orders/{order_id}/return/verify", json={"verifier_id": sample_manager.id}
        )
        assert response.status_code == 200
        assert response.json()["is_locked"] is True

        stock = await test_client.get(f"/api/inventory/{sample_product.id}", params={"country": "KSA"})
        assert stock.json()[0]["delivered_qty"] == 0

        response = await test_client.post(f"/api/orders/{order_id}/status", json={"status": "cancelled"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2004"

    @pytest.mark.integration
    async def test_verify_before_submit_is_400(
        self, test_client, sample_agent, sample_manager, sample_product
    ):
        order = await _create_order(test_client, sample_agent.id, sample_product.id)
        await test_client.post(f"/api/orders/{order['id']}/status", json={"status": "cancelled"})

        response = await test_client.post(
            f"/api/orders/{order['id']}/return/verify", json={"verifier_id": sample_manager.id}
        )
        assert response.status_code == 400


class TestSummaryAndExport:

    @pytest.mark.integration
    async def test_summary(self, test_client, sample_agent, sample_product, stock_factory):
        await stock_factory(sample_product.id)
        delivered = await _create_order(test_client, sample_agent.id, sample_product.id)
        await test_client.post(f"/api/orders/{delivered['id']}/status", json={"status": "delivered"})
        await _create_order(test_client, sample_agent.id, sample_product.id, country="UAE", total="51")

        response = await test_client.get("/api/orders/summary")
        assert response.status_code == 200
        data = response.json()
        assert data["currency"] == "SAR"
        assert data["total_count"] == 2
        assert data["buckets"]["delivered"] == {"count": 1, "amount": "100.00"}
        # 51 AED at 1.02
        assert data["buckets"]["open"]["amount"] == "52.02"
        assert data["buckets"]["cancelled_returned"]["count"] == 0

    @pytest.mark.integration
    async def test_summary_in_other_currency(self, test_client, sample_agent, sample_product):
        await _create_order(test_client, sample_agent.id, sample_product.id, total="102")
        response = await test_client.get("/api/orders/summary", params={"currency": "aed"})
        data = response.json()
        assert data["currency"] == "AED"
        assert data["total_amount"] == "100.00"

    @pytest.mark.integration
    async def test_export_xlsx(self, test_client, sample_agent, sample_product):
        await _create_order(test_client, sample_agent.id, sample_product.id)
        await _create_order(test_client, sample_agent.id, sample_product.id, country="Kuwait", total="10")

        response = await test_client.get("/api/orders/export")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        rows = list(load_workbook(io.BytesIO(response.content)).active.iter_rows(values_only=True))
        total = rows[-1]
        assert total[0] == "Total"
        assert total[1] == 2
        # 100 SAR + 10 KWD * 12.2
        assert total[13] == 222.0
