"""
End-to-end ledger scenarios: commission, driver pay, remittance limits,
return restock and competing payouts.
"""
import asyncio
import os
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.exceptions import (
    BelowMinimumError,
    DuplicateAdjustmentError,
    InsufficientBalanceError,
    OrderLockedError,
)
from app.db.database import Base
from app.db.models.product import Product
from app.db.models.user import User, UserRole
from app.domain.services.commission_service import CommissionService
from app.domain.services.currency_service import CurrencyService
from app.domain.services.inventory_service import InventoryService
from app.domain.services.order_service import OrderService
from app.domain.services.remittance_service import RemittanceService
from app.state_machine.states import OrderStatus, RemittanceStatus

POSTGRES_URL = os.environ.get("TEST_POSTGRES_URL", "")


@pytest.fixture
async def flat_settlement(db_session, monkeypatch):
    """10% agent commission and 80 PKR per SAR, for round wallet figures"""
    monkeypatch.setattr(settings, "AGENT_COMMISSION_PCT", Decimal("0.10"))
    await CurrencyService(db_session).update_config({"settlement_rates": {"SAR": "80"}})


async def _delivered_order(db_session, order_factory, agent_id: int, product_id: int, total: Decimal):
    order = await order_factory(agent_id, product_id, total=total)
    return await OrderService(db_session).set_status(order.id, OrderStatus.DELIVERED)


@pytest.mark.scenario
async def test_agent_commission_moves_from_upcoming_to_delivered(
    db_session, sample_agent, sample_product, stock_factory, order_factory
):
    await stock_factory(sample_product.id)
    order = await order_factory(sample_agent.id, sample_product.id, total=Decimal("100"))
    commission = CommissionService(db_session)

    before = await commission.agent_commission(sample_agent.id)
    # 100 SAR * 0.12 = 12 SAR = 864 PKR
    assert before.upcoming_commission == Decimal("864")
    assert before.delivered_commission == Decimal("0")

    await OrderService(db_session).set_status(order.id, OrderStatus.DELIVERED)

    after = await commission.agent_commission(sample_agent.id)
    assert after.upcoming_commission == Decimal("0")
    assert after.delivered_commission == Decimal("864")
    assert after.currency == "PKR"


@pytest.mark.scenario
async def test_driver_paid_for_delivered_orders_only(
    db_session, user_factory, sample_agent, sample_product, stock_factory, order_factory
):
    driver = await user_factory(
        name="Dubai Driver",
        role=UserRole.DRIVER,
        country="UAE",
        commission_per_order=Decimal("20"),
        commission_currency="AED",
    )
    await stock_factory(sample_product.id, "UAE")
    orders = OrderService(db_session)

    for target in (OrderStatus.DELIVERED, OrderStatus.DELIVERED, OrderStatus.DELIVERED, OrderStatus.CANCELLED):
        order = await order_factory(sample_agent.id, sample_product.id, country="UAE")
        await orders.assign_driver(order.id, driver.id)
        await orders.set_status(order.id, target)

    wallet = await RemittanceService(db_session).wallet_summary(driver.id)
    assert wallet.currency == "AED"
    assert wallet.earned == Decimal("60")

    summary = await CommissionService(db_session).driver_commission(driver.id)
    assert summary.delivered_orders == 3
    assert summary.cancelled_or_returned_orders == 1


@pytest.mark.scenario
async def test_remittance_minimum_and_balance(
    db_session, flat_settlement, sample_agent, sample_product, stock_factory, order_factory
):
    await stock_factory(sample_product.id)
    await _delivered_order(db_session, order_factory, sample_agent.id, sample_product.id, Decimal("1000"))

    service = RemittanceService(db_session)
    wallet = await service.wallet_summary(sample_agent.id)
    assert wallet.available == Decimal("8000")

    with pytest.raises(BelowMinimumError) as below:
        await service.request(sample_agent.id, Decimal("9999"))
    assert below.value.details["minimum"] == "10000.00"

    with pytest.raises(InsufficientBalanceError):
        await service.request(sample_agent.id, Decimal("10000"))

    assert await service.list_remittances(requester_id=sample_agent.id) == []


@pytest.mark.scenario
async def test_verified_return_nets_stock_to_zero(
    db_session, sample_agent, sample_manager, sample_product, stock_factory, order_factory
):
    await stock_factory(sample_product.id, "KSA", 20)
    order = await order_factory(sample_agent.id, sample_product.id, quantity=5)
    orders = OrderService(db_session)
    inventory = InventoryService(db_session)

    order = await orders.set_status(order.id, OrderStatus.DELIVERED)
    assert order.inventory_adjusted is True
    assert (await inventory.snapshot(sample_product.id, "KSA"))[0].delivered_qty == 5

    await orders.set_status(order.id, OrderStatus.RETURNED)
    await orders.submit_return(order.id, reason="Customer not home")
    order = await orders.verify_return(order.id, sample_manager.id)

    level = (await inventory.snapshot(sample_product.id, "KSA"))[0]
    assert level.delivered_qty == 0
    assert level.purchased_qty == 20
    assert order.inventory_adjusted is True
    assert order.is_locked

    with pytest.raises(DuplicateAdjustmentError):
        await inventory.deduct(order)
    with pytest.raises(DuplicateAdjustmentError):
        await inventory.restock(order)
    with pytest.raises(OrderLockedError):
        await orders.set_status(order.id, OrderStatus.CANCELLED)


@pytest.mark.scenario
async def test_competing_sends_pay_out_once(
    db_session, flat_settlement, sample_agent, sample_manager, sample_product, stock_factory, order_factory
):
    """Sends run one after the other here; SQLite has no row locks to contend on."""
    await stock_factory(sample_product.id)
    await _delivered_order(db_session, order_factory, sample_agent.id, sample_product.id, Decimal("1875"))

    service = RemittanceService(db_session)
    assert (await service.wallet_summary(sample_agent.id)).available == Decimal("15000")

    first = await service.request(sample_agent.id, Decimal("10000"))
    second = await service.request(sample_agent.id, Decimal("10000"))

    sent = await service.send(first.id, sample_manager.id)
    assert sent.status == RemittanceStatus.SENT
    with pytest.raises(InsufficientBalanceError):
        await service.send(second.id, sample_manager.id)

    wallet = await service.wallet_summary(sample_agent.id)
    assert wallet.sent == Decimal("10000")
    assert wallet.available == Decimal("5000")
    assert (await service.get_remittance(second.id)).status == RemittanceStatus.PENDING


@pytest.fixture
async def postgres_sessions(monkeypatch):
    """Session factory on a real PostgreSQL database, where row locks block"""
    engine = create_async_engine(POSTGRES_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    monkeypatch.setattr(settings, "AGENT_COMMISSION_PCT", Decimal("0.10"))

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.mark.scenario
@pytest.mark.postgres
@pytest.mark.skipif(not POSTGRES_URL, reason="TEST_POSTGRES_URL not set")
async def test_concurrent_sends_serialize_on_payee_lock(postgres_sessions):
    """The sequential variant above runs on SQLite, which has no row locks.

    Here both sends race in separate sessions; the payee row lock makes the
    second one recompute the balance after the first commits.
    """
    async with postgres_sessions() as session:
        await CurrencyService(session).update_config({"settlement_rates": {"SAR": "80"}})
        agent = User(name="Agent", role=UserRole.AGENT)
        manager = User(name="Manager", role=UserRole.MANAGER)
        product = Product(name="Argan Oil", price=Decimal("100"), base_currency="SAR")
        session.add_all([agent, manager, product])
        await session.commit()

        await InventoryService(session).receive_stock(product.id, "KSA", 10)
        orders = OrderService(session)
        order = await orders.create_order(
            created_by_id=agent.id,
            country="KSA",
            items=[{"product_id": product.id, "quantity": 1}],
            total=Decimal("1875"),
        )
        await orders.set_status(order.id, OrderStatus.DELIVERED)

        service = RemittanceService(session)
        first = await service.request(agent.id, Decimal("10000"))
        second = await service.request(agent.id, Decimal("10000"))

    async def _send(remittance_id: int):
        async with postgres_sessions() as session:
            return await RemittanceService(session).send(remittance_id, manager.id)

    results = await asyncio.gather(_send(first.id), _send(second.id), return_exceptions=True)

    sent = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(sent) == 1
    assert sent[0].status == RemittanceStatus.SENT
    assert len(failed) == 1
    assert isinstance(failed[0], InsufficientBalanceError)

    async with postgres_sessions() as session:
        wallet = await RemittanceService(session).wallet_summary(agent.id)
        assert wallet.sent == Decimal("10000")
        assert wallet.available == Decimal("5000")
