"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP client against the FastAPI app
- Redis replaced by an in-memory fake
- Test data factories (users, products, stock, orders, investments)
"""
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base, get_db
from app.db.models.user import User, UserRole
from app.db.models.product import Product
from app.db.models.investment import Investment, InvestmentStatus
from app.domain.services.inventory_service import InventoryService
from app.domain.services.order_service import OrderService
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Redis
# ============================================================================

class FakeRedis:
    """In-memory stand-in for the pub/sub and list commands the app uses."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []
        self._lists: dict[str, list[str]] = {}

    async def ping(self) -> bool:
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def lpush(self, key: str, *values: str) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        items = self._lists.get(key, [])
        self._lists[key] = items[start:end + 1]
        return True

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(key, [])
        return items[start:end + 1]

    async def aclose(self) -> None:
        self._lists.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.notification_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        name: str = "Test User",
        role: UserRole = UserRole.AGENT,
        country: str | None = None,
        phone_number: str | None = None,
        commission_per_order=None,
        commission_currency: str | None = None,
        wallet_currency: str | None = None,
        payout_profile: dict | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            name=name,
            role=role,
            country=country,
            phone_number=phone_number,
            commission_per_order=commission_per_order,
            commission_currency=commission_currency,
            wallet_currency=wallet_currency,
            payout_profile=payout_profile,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def product_factory(db_session: AsyncSession):
    """Factory for creating test products"""
    async def _create_product(
        name: str = "Test Product",
        price=Decimal("100"),
        base_currency: str = "SAR",
    ) -> Product:
        product = Product(name=name, price=price, base_currency=base_currency)
        db_session.add(product)
        await db_session.commit()
        await db_session.refresh(product)
        return product

    return _create_product


@pytest.fixture
def stock_factory(db_session: AsyncSession):
    """Receive purchased stock for a product in a country"""
    async def _receive(product_id: int, country: str = "KSA", quantity: int = 100):
        return await InventoryService(db_session).receive_stock(product_id, country, quantity)

    return _receive


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating orders through the order service"""
    async def _create_order(
        created_by_id: int,
        product_id: int,
        country: str = "KSA",
        quantity: int = 1,
        unit_price=None,
        total=None,
        discount=Decimal("0"),
    ):
        item = {"product_id": product_id, "quantity": quantity}
        if unit_price is not None:
            item["unit_price"] = unit_price
        return await OrderService(db_session).create_order(
            created_by_id=created_by_id,
            country=country,
            items=[item],
            discount=discount,
            total=total,
        )

    return _create_order


@pytest.fixture
def investment_factory(db_session: AsyncSession, sample_owner: User):
    """Factory for creating investor stakes placed with the sample owner"""
    async def _create_investment(
        investor_id: int,
        product_id: int,
        profit_per_unit=Decimal("5"),
        currency: str = "SAR",
        country: str | None = None,
        status: InvestmentStatus = InvestmentStatus.ACTIVE,
    ) -> Investment:
        investment = Investment(
            investor_id=investor_id,
            product_id=product_id,
            owner_id=sample_owner.id,
            profit_per_unit=profit_per_unit,
            currency=currency,
            country=country,
            status=status,
            amount=Decimal("1000"),
            quantity=100,
        )
        db_session.add(investment)
        await db_session.commit()
        await db_session.refresh(investment)
        return investment

    return _create_investment


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_agent(user_factory) -> User:
    return await user_factory(name="Sample Agent", role=UserRole.AGENT)


@pytest.fixture
async def sample_owner(user_factory) -> User:
    return await user_factory(name="Sample Owner", role=UserRole.OWNER)


@pytest.fixture
async def sample_manager(user_factory) -> User:
    return await user_factory(name="Sample Manager", role=UserRole.MANAGER)


@pytest.fixture
async def sample_driver(user_factory) -> User:
    """KSA driver paid 20 SAR per delivered order"""
    return await user_factory(
        name="Sample Driver",
        role=UserRole.DRIVER,
        country="KSA",
        commission_per_order=Decimal("20"),
        commission_currency="SAR",
    )


@pytest.fixture
async def sample_product(product_factory) -> Product:
    return await product_factory(name="Argan Oil", price=Decimal("100"), base_currency="SAR")
