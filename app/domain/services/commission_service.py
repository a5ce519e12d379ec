"""
Commission Service - per-role accrual on delivery and earned-commission queries

Accruals are written once, when an order enters ``delivered``. "Earned" is
never stored: it is the sum of a beneficiary's accrual rows whose order is
*currently* delivered, so an order returned after delivery drops out of the
wallet without any reversal entry.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import DuplicateAdjustmentError, UserNotFoundError
from app.core.logging import get_logger
from app.db.models.commission_accrual import CommissionAccrual, AccrualRole, accrual_key
from app.db.models.investment import Investment, InvestmentStatus
from app.db.models.order import Order
from app.db.models.user import User, UserRole
from app.domain.currency import to_decimal, COUNTRY_CURRENCY
from app.domain.services.currency_service import CurrencyTables, CurrencyService
from app.state_machine.states import OrderStatus, OPEN_STATUSES, TERMINAL_NEGATIVE_STATUSES

logger = get_logger(__name__)

ZERO = Decimal("0")


def order_base_amount(order: Order) -> Decimal:
    """Order total, falling back to the sum of its lines when no total was set"""
    if order.total is not None:
        return to_decimal(order.total)
    return to_decimal(order.items_total)


def agent_commission_for(order: Order, tables: CurrencyTables) -> Decimal:
    """Agent share of an order, in the settlement currency"""
    share = order_base_amount(order) * settings.AGENT_COMMISSION_PCT
    return tables.settlement.convert(share, order.currency, tables.settlement_code)


def driver_currency(driver: User) -> str:
    if driver.commission_currency:
        return driver.commission_currency
    return COUNTRY_CURRENCY.get(driver.country or "", settings.DEFAULT_CURRENCY)


def wallet_currency(user: User) -> str:
    """Currency a payee's wallet is kept in"""
    if user.role == UserRole.AGENT:
        return settings.SETTLEMENT_CURRENCY
    if user.role == UserRole.DRIVER:
        return driver_currency(user)
    return user.wallet_currency or settings.PIVOT_CURRENCY


@dataclass
class AgentCommission:
    agent_id: int
    currency: str
    delivered_commission: Decimal = ZERO
    upcoming_commission: Decimal = ZERO
    delivered_orders: int = 0
    open_orders: int = 0


@dataclass
class DriverCommission:
    driver_id: int
    currency: str
    commission_per_order: Decimal
    delivered_orders: int = 0
    cancelled_or_returned_orders: int = 0
    earned: Decimal = ZERO


@dataclass
class InvestorSummary:
    investor_id: int
    currency: str
    earned: Decimal = ZERO
    investments: list[dict] = field(default_factory=list)


class CommissionService:
    """Service writing and aggregating commission accruals"""

    def __init__(self, db: AsyncSession, tables: CurrencyTables | None = None):
        self.db = db
        self._tables = tables

    async def tables(self) -> CurrencyTables:
        if self._tables is None:
            self._tables = await CurrencyService(self.db).get_tables()
        return self._tables

    async def _existing_slots(self, order_id: int) -> set[str]:
        result = await self.db.execute(
            select(CommissionAccrual.accrual_key).where(CommissionAccrual.order_id == order_id)
        )
        return set(result.scalars().all())

    async def accrue(self, order: Order) -> list[CommissionAccrual]:
        """
        Write the agent, driver and investor accruals for a delivered order.

        Runs inside the order transition's transaction and does not commit.
        Raises DuplicateAdjustmentError if the order already has accruals.
        """
        if await self._existing_slots(order.id):
            raise DuplicateAdjustmentError("commission", order.id)

        tables = await self.tables()
        accruals: list[CommissionAccrual] = []

        creator = await self.db.get(User, order.created_by_id)
        if creator is not None and creator.role == UserRole.AGENT:
            accruals.append(
                CommissionAccrual(
                    order_id=order.id,
                    role=AccrualRole.AGENT,
                    accrual_key=accrual_key(AccrualRole.AGENT),
                    beneficiary_id=creator.id,
                    amount=agent_commission_for(order, tables),
                    currency=tables.settlement_code,
                )
            )

        if order.driver_id is not None:
            driver = await self.db.get(User, order.driver_id)
            if driver is not None and driver.commission_per_order:
                accruals.append(
                    CommissionAccrual(
                        order_id=order.id,
                        role=AccrualRole.DRIVER,
                        accrual_key=accrual_key(AccrualRole.DRIVER),
                        beneficiary_id=driver.id,
                        amount=to_decimal(driver.commission_per_order),
                        currency=driver_currency(driver),
                    )
                )

        accruals.extend(await self._accrue_investors(order))

        for accrual in accruals:
            self.db.add(accrual)
        await self.db.flush()

        logger.info(
            "Commission accrued",
            extra_data={
                "order_id": order.id,
                "accruals": [
                    {"slot": a.accrual_key, "beneficiary_id": a.beneficiary_id,
                     "amount": str(a.amount), "currency": a.currency}
                    for a in accruals
                ],
            },
        )
        return accruals

    async def _accrue_investors(self, order: Order) -> list[CommissionAccrual]:
        quantities: dict[int, int] = defaultdict(int)
        revenue: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for item in order.items:
            quantities[item.product_id] += item.quantity
            revenue[item.product_id] += item.quantity * to_decimal(item.unit_price)
        if not quantities:
            return []

        result = await self.db.execute(
            select(Investment)
            .where(
                Investment.product_id.in_(list(quantities)),
                Investment.status == InvestmentStatus.ACTIVE,
                (Investment.country.is_(None)) | (Investment.country == order.country),
            )
            .order_by(Investment.id)
            .with_for_update()
        )

        tables = await self.tables()
        accruals = []
        for investment in result.scalars().all():
            qty = quantities[investment.product_id]
            profit = qty * to_decimal(investment.profit_per_unit)
            investment.units_sold += qty
            line_revenue = tables.convert(
                revenue[investment.product_id], order.currency, investment.currency
            )
            investment.total_revenue = to_decimal(investment.total_revenue) + line_revenue
            investment.total_profit = to_decimal(investment.total_profit) + profit
            accruals.append(
                CommissionAccrual(
                    order_id=order.id,
                    role=AccrualRole.INVESTOR,
                    accrual_key=accrual_key(AccrualRole.INVESTOR, investment.id),
                    beneficiary_id=investment.investor_id,
                    investment_id=investment.id,
                    amount=profit,
                    currency=investment.currency,
                )
            )
        return accruals

    async def _delivered_accruals(
        self, beneficiary_id: int, role: AccrualRole
    ) -> list[CommissionAccrual]:
        result = await self.db.execute(
            select(CommissionAccrual)
            .join(Order, Order.id == CommissionAccrual.order_id)
            .where(
                CommissionAccrual.beneficiary_id == beneficiary_id,
                CommissionAccrual.role == role,
                Order.status == OrderStatus.DELIVERED,
            )
        )
        return list(result.scalars().all())

    async def earned(self, user: User) -> tuple[Decimal, str]:
        """Realized commission for a payee, in the payee's wallet currency"""
        currency = wallet_currency(user)
        if not user.is_payee:
            return ZERO, currency
        role = AccrualRole(user.role.value)
        rows = await self._delivered_accruals(user.id, role)
        tables = await self.tables()
        return tables.sum_into(((r.amount, r.currency) for r in rows), currency), currency

    async def agent_commission(self, agent_id: int) -> AgentCommission:
        """Delivered commission plus what open orders would pay once delivered"""
        agent = await self.db.get(User, agent_id)
        if agent is None:
            raise UserNotFoundError(agent_id)
        tables = await self.tables()
        summary = AgentCommission(agent_id=agent_id, currency=tables.settlement_code)

        rows = await self._delivered_accruals(agent_id, AccrualRole.AGENT)
        summary.delivered_commission = tables.sum_into(
            ((r.amount, r.currency) for r in rows), tables.settlement_code
        )
        summary.delivered_orders = len(rows)

        result = await self.db.execute(
            select(Order).where(
                Order.created_by_id == agent_id,
                Order.status.in_(list(OPEN_STATUSES)),
            )
        )
        open_orders = list(result.scalars().all())
        summary.open_orders = len(open_orders)
        summary.upcoming_commission = sum(
            (agent_commission_for(o, tables) for o in open_orders), ZERO
        )
        return summary

    async def driver_commission(self, driver_id: int) -> DriverCommission:
        driver = await self.db.get(User, driver_id)
        if driver is None:
            raise UserNotFoundError(driver_id)
        currency = driver_currency(driver)
        summary = DriverCommission(
            driver_id=driver_id,
            currency=currency,
            commission_per_order=to_decimal(driver.commission_per_order or 0),
        )

        result = await self.db.execute(
            select(Order.status, func.count(Order.id))
            .where(Order.driver_id == driver_id)
            .group_by(Order.status)
        )
        for status, count in result.all():
            if status == OrderStatus.DELIVERED:
                summary.delivered_orders += count
            elif status in TERMINAL_NEGATIVE_STATUSES:
                summary.cancelled_or_returned_orders += count

        rows = await self._delivered_accruals(driver_id, AccrualRole.DRIVER)
        tables = await self.tables()
        summary.earned = tables.sum_into(((r.amount, r.currency) for r in rows), currency)
        return summary

    async def investor_summary(self, investor_id: int) -> InvestorSummary:
        investor = await self.db.get(User, investor_id)
        if investor is None:
            raise UserNotFoundError(investor_id)
        earned, currency = await self.earned(investor)
        summary = InvestorSummary(investor_id=investor_id, currency=currency, earned=earned)

        result = await self.db.execute(
            select(Investment).where(Investment.investor_id == investor_id).order_by(Investment.id)
        )
        for inv in result.scalars().all():
            summary.investments.append({
                "investment_id": inv.id,
                "product_id": inv.product_id,
                "country": inv.country,
                "currency": inv.currency,
                "status": inv.status.value,
                "units_sold": inv.units_sold,
                "total_revenue": to_decimal(inv.total_revenue),
                "total_profit": to_decimal(inv.total_profit),
            })
        return summary
