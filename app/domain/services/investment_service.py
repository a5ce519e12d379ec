"""
Investment Service - investor stakes and their lifecycle

A stake starts ``active`` and ends once, as ``withdrawn`` (investor pulls
out) or ``cancelled`` (owner voids it). Only active stakes take part in
delivery accruals; counters of an ended stake stay as they were.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AppException,
    InvalidUserRoleError,
    InvestmentNotFoundError,
    InvestmentStatusError,
    NotFoundException,
    UserNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.investment import Investment, InvestmentStatus
from app.db.models.product import Product
from app.db.models.user import User, UserRole
from app.domain.services.commission_service import wallet_currency

logger = get_logger(__name__)

ENDED_STATUSES = frozenset({InvestmentStatus.WITHDRAWN, InvestmentStatus.CANCELLED})


class InvestmentService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_user(self, user_id: int, role: UserRole) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if user.role != role:
            raise InvalidUserRoleError(user.id, user.role.value, role.value)
        return user

    async def create_investment(
        self,
        investor_id: int,
        product_id: int,
        owner_id: int,
        profit_per_unit,
        amount=Decimal("0"),
        quantity: int = 0,
        currency: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Investment:
        """Record an active stake. Profit is booked in the investor's wallet currency unless stated."""
        investor = await self._get_user(investor_id, UserRole.INVESTOR)
        owner = await self._get_user(owner_id, UserRole.OWNER)
        if await self.db.get(Product, product_id) is None:
            raise NotFoundException("Product", product_id)

        investment = Investment(
            investor_id=investor.id,
            product_id=product_id,
            owner_id=owner.id,
            country=country,
            amount=amount,
            quantity=quantity,
            currency=currency or wallet_currency(investor),
            profit_per_unit=profit_per_unit,
            status=InvestmentStatus.ACTIVE,
        )
        self.db.add(investment)
        await self.db.commit()
        await self.db.refresh(investment)

        logger.info(
            "Investment recorded",
            extra_data={
                "investment_id": investment.id,
                "user_id": investor.id,
                "owner_id": owner.id,
                "product_id": product_id,
                "country": country,
            },
        )
        return investment

    async def get_investment(self, investment_id: int) -> Investment:
        investment = await self.db.get(Investment, investment_id, populate_existing=True)
        if investment is None:
            raise InvestmentNotFoundError(investment_id)
        return investment

    async def list_investments(
        self,
        investor_id: Optional[int] = None,
        owner_id: Optional[int] = None,
        status: Optional[InvestmentStatus] = None,
    ) -> list[Investment]:
        query = select(Investment)
        if investor_id:
            query = query.where(Investment.investor_id == investor_id)
        if owner_id:
            query = query.where(Investment.owner_id == owner_id)
        if status:
            query = query.where(Investment.status == status)
        result = await self.db.execute(query.order_by(Investment.id))
        return list(result.scalars().all())

    async def end_investment(self, investment_id: int, status: InvestmentStatus) -> Investment:
        """
        Withdraw or cancel a stake.

        Repeating the same end status is a no-op. The row lock is the one
        delivery accruals take, so a stake never ends halfway through an accrual.
        """
        status = InvestmentStatus(status)
        if status not in ENDED_STATUSES:
            raise ValidationException(
                f"Investments can only end as {sorted(s.value for s in ENDED_STATUSES)}",
                field="status",
            )
        try:
            result = await self.db.execute(
                select(Investment)
                .where(Investment.id == investment_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            investment = result.scalar_one_or_none()
            if investment is None:
                raise InvestmentNotFoundError(investment_id)
            if investment.status == status:
                await self.db.rollback()
                return await self.get_investment(investment_id)
            if investment.status != InvestmentStatus.ACTIVE:
                raise InvestmentStatusError(investment.id, investment.status.value, status.value)

            investment.status = status
            investment.ended_at = utcnow()
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            if isinstance(e, AppException):
                logger.warning(
                    "Investment end rejected",
                    extra_data={"investment_id": investment_id, "error_code": e.error_code.value},
                )
            else:
                logger.error(
                    "Investment end failed, rolled back",
                    extra_data={"investment_id": investment_id, "error": str(e)},
                    exc_info=True,
                )
            raise

        logger.info(
            "Investment ended",
            extra_data={"investment_id": investment_id, "status": status.value},
        )
        return await self.get_investment(investment_id)
