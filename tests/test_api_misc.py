"""
API tests for users, products, investments, inventory, settings and health
"""
from unittest.mock import patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.db.models.user import UserRole


class TestHealth:

    @pytest.mark.unit
    async def test_health(self, test_client):
        for path in ("/health", "/api/health"):
            response = await test_client.get(path)
            assert response.status_code == 200
            assert response.json() == {"status": "healthy"}

    @pytest.mark.unit
    async def test_correlation_id_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers.get("X-Correlation-ID") == "abc-123"

    @pytest.mark.integration
    async def test_ready(self, test_client):
        response = await test_client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "checks": {"database": "ok", "redis": "ok"}}

    @pytest.mark.integration
    async def test_ready_degraded_without_redis(self, test_client):
        async def _down():
            raise RedisConnectionError("connection refused")

        with patch("app.core.redis_client.get_redis", _down):
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["redis"] == "unavailable"


class TestValidationEnvelope:

    @pytest.mark.unit
    async def test_422_uses_error_envelope(self, test_client):
        response = await test_client.post(
            "/api/products", json={"name": "Saffron"}, headers={"X-Correlation-ID": "val-1"}
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "ERR_1001"
        assert "price" in [e["field"] for e in error["details"]["errors"]]
        assert response.headers["X-Correlation-ID"] == "val-1"


class TestUsers:

    @pytest.mark.integration
    async def test_create_driver(self, test_client):
        response = await test_client.post("/api/users", json={
            "name": "Omar",
            "role": "DRIVER",
            "country": "uae",
            "phone_number": "+971501234567",
            "commission_per_order": "15",
            "commission_currency": "aed",
        })
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["role"] == "driver"
        assert data["country"] == "UAE"
        assert data["commission_currency"] == "AED"
        assert data["is_active"] is True

    @pytest.mark.integration
    async def test_driver_without_country_rejected(self, test_client):
        response = await test_client.post("/api/users", json={"name": "Omar", "role": "driver"})
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "country"

    @pytest.mark.integration
    async def test_invalid_role_rejected(self, test_client):
        response = await test_client.post("/api/users", json={"name": "Omar", "role": "pilot"})
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_list_filters_by_role(self, test_client, sample_agent, sample_driver):
        response = await test_client.get("/api/users", params={"role": "driver"})
        assert [u["id"] for u in response.json()] == [sample_driver.id]

    @pytest.mark.integration
    async def test_missing_user(self, test_client):
        response = await test_client.get("/api/users/999")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_3001"

    @pytest.mark.integration
    async def test_set_wallet_payout_profile(self, test_client, sample_agent):
        response = await test_client.put(f"/api/users/{sample_agent.id}/payout-profile", json={
            "method": "jazzcash",
            "account_name": "Sample Agent",
            "phone_number": "03001234567",
        })
        assert response.status_code == 200, response.text
        profile = response.json()["payout_profile"]
        assert profile["method"] == "jazzcash"
        assert profile["phone_number"] == "+92300123****"

    @pytest.mark.integration
    async def test_bank_profile_requires_iban(self, test_client, sample_agent):
        response = await test_client.put(f"/api/users/{sample_agent.id}/payout-profile", json={
            "method": "bank",
            "account_name": "Sample Agent",
            "bank_name": "Meezan Bank",
        })
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_non_payee_has_no_profile(self, test_client, sample_manager):
        response = await test_client.put(f"/api/users/{sample_manager.id}/payout-profile", json={
            "method": "jazzcash",
            "account_name": "Manager",
            "phone_number": "03001234567",
        })
        assert response.status_code == 400


class TestProducts:

    @pytest.mark.integration
    async def test_create_and_get(self, test_client):
        response = await test_client.post("/api/products", json={
            "name": "Saffron",
            "price": "45.50",
            "base_currency": "AED",
        })
        assert response.status_code == 201
        product = response.json()
        assert product["price"] == "45.50"

        response = await test_client.get(f"/api/products/{product['id']}")
        assert response.json()["name"] == "Saffron"
        assert len((await test_client.get("/api/products")).json()) == 1

    @pytest.mark.integration
    async def test_missing_product(self, test_client):
        assert (await test_client.get("/api/products/77")).status_code == 404


class TestInvestments:

    @pytest.mark.integration
    async def test_create_defaults_currency(self, test_client, user_factory, sample_owner, sample_product):
        investor = await user_factory(name="Investor", role=UserRole.INVESTOR, wallet_currency="USD")
        response = await test_client.post("/api/investments", json={
            "investor_id": investor.id,
            "product_id": sample_product.id,
            "owner_id": sample_owner.id,
            "amount": "5000",
            "quantity": 200,
            "profit_per_unit": "4",
        })
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["currency"] == "USD"
        assert data["status"] == "active"
        assert data["owner_id"] == sample_owner.id
        assert data["units_sold"] == 0

        listed = (await test_client.get("/api/investments", params={"investor_id": investor.id})).json()
        assert [i["id"] for i in listed] == [data["id"]]

    @pytest.mark.integration
    async def test_only_investors(self, test_client, sample_agent, sample_owner, sample_product):
        response = await test_client.post("/api/investments", json={
            "investor_id": sample_agent.id,
            "product_id": sample_product.id,
            "owner_id": sample_owner.id,
            "profit_per_unit": "4",
        })
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_3004"

    @pytest.mark.integration
    async def test_owner_must_hold_owner_role(self, test_client, user_factory, sample_manager, sample_product):
        investor = await user_factory(name="Investor", role=UserRole.INVESTOR)
        response = await test_client.post("/api/investments", json={
            "investor_id": investor.id,
            "product_id": sample_product.id,
            "owner_id": sample_manager.id,
            "profit_per_unit": "4",
        })
        assert response.status_code == 400
        assert response.json()["error"]["details"]["required_role"] == "owner"

    @pytest.mark.integration
    async def test_withdraw_then_cancel_conflicts(self, test_client, user_factory, investment_factory, sample_product):
        investor = await user_factory(name="Investor", role=UserRole.INVESTOR)
        investment = await investment_factory(investor.id, sample_product.id)

        response = await test_client.post(f"/api/investments/{investment.id}/withdraw")
        assert response.status_code == 200
        assert response.json()["status"] == "withdrawn"
        assert response.json()["ended_at"] is not None

        # replaying the same end is a no-op
        assert (await test_client.post(f"/api/investments/{investment.id}/withdraw")).status_code == 200

        response = await test_client.post(f"/api/investments/{investment.id}/cancel")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_8002"

        listed = (await test_client.get("/api/investments", params={"status": "active"})).json()
        assert listed == []

    @pytest.mark.integration
    async def test_missing_investment(self, test_client):
        response = await test_client.post("/api/investments/404/cancel")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_8001"


class TestInventory:

    @pytest.mark.integration
    async def test_receive_and_read(self, test_client, sample_product):
        response = await test_client.post(
            f"/api/inventory/{sample_product.id}/purchases", json={"country": "KSA", "quantity": 12}
        )
        assert response.status_code == 201, response.text
        assert response.json()["left_qty"] == 12

        response = await test_client.get(f"/api/inventory/{sample_product.id}")
        assert response.json() == [{
            "product_id": sample_product.id,
            "country": "KSA",
            "purchased_qty": 12,
            "delivered_qty": 0,
            "pending_reserved_qty": 0,
            "left_qty": 12,
        }]

    @pytest.mark.integration
    async def test_zero_quantity_is_422(self, test_client, sample_product):
        response = await test_client.post(
            f"/api/inventory/{sample_product.id}/purchases", json={"country": "KSA", "quantity": 0}
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_unknown_product(self, test_client):
        assert (await test_client.get("/api/inventory/999")).status_code == 404


class TestCurrencySettings:

    @pytest.mark.integration
    async def test_get_defaults(self, test_client):
        data = (await test_client.get("/api/settings/currency")).json()
        assert data["pivot_code"] == "SAR"
        assert data["settlement_code"] == "PKR"
        assert data["rates"]["AED"] == "1.02"

    @pytest.mark.integration
    async def test_update_rate(self, test_client):
        response = await test_client.put(
            "/api/settings/currency", json={"settlement_rates": {"SAR": "80"}}
        )
        assert response.status_code == 200
        assert response.json()["settlement_rates"]["SAR"] == "80"
        assert response.json()["settlement_rates"]["AED"] == "76"

    @pytest.mark.integration
    async def test_non_positive_rate_rejected(self, test_client):
        response = await test_client.put("/api/settings/currency", json={"rates": {"AED": "0"}})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_1001"
