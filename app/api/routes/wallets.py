"""
Wallet API Routes

Balances are derived from accruals and sent remittances on every read.
"""
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import UserNotFoundError
from app.db.database import get_db
from app.db.models.user import User, UserRole
from app.domain.currency import quantize_money
from app.domain.services.commission_service import CommissionService
from app.domain.services.remittance_service import RemittanceService

router = APIRouter()


class WalletResponse(BaseModel):
    user_id: int
    role: str
    currency: str
    earned: Decimal
    sent: Decimal
    pending: Decimal
    available: Decimal


class InvestmentLine(BaseModel):
    investment_id: int
    product_id: int
    country: Optional[str] = None
    currency: str
    status: str
    units_sold: int
    total_revenue: Decimal
    total_profit: Decimal


class CommissionResponse(BaseModel):
    """Role-specific commission breakdown"""
    user_id: int
    role: str
    currency: str
    earned: Decimal
    delivered_orders: Optional[int] = None
    open_orders: Optional[int] = None
    upcoming_commission: Optional[Decimal] = None
    commission_per_order: Optional[Decimal] = None
    cancelled_or_returned_orders: Optional[int] = None
    investments: Optional[List[InvestmentLine]] = None


@router.get(
    "/{user_id}",
    response_model=WalletResponse,
    summary="Wallet balance of a payee",
    description="available = max(0, earned - sent). Pending requests are reported, not subtracted.",
)
async def get_wallet(user_id: int, db: AsyncSession = Depends(get_db)) -> WalletResponse:
    summary = await RemittanceService(db).wallet_summary(user_id)
    return WalletResponse(
        user_id=summary.user_id,
        role=summary.role,
        currency=summary.currency,
        earned=quantize_money(summary.earned),
        sent=quantize_money(summary.sent),
        pending=quantize_money(summary.pending),
        available=quantize_money(summary.available),
    )


@router.get(
    "/{user_id}/commission",
    response_model=CommissionResponse,
    summary="Commission breakdown",
)
async def get_commission(user_id: int, db: AsyncSession = Depends(get_db)) -> CommissionResponse:
    user = await db.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    service = CommissionService(db)

    if user.role == UserRole.AGENT:
        agent = await service.agent_commission(user_id)
        return CommissionResponse(
            user_id=user_id,
            role=user.role.value,
            currency=agent.currency,
            earned=quantize_money(agent.delivered_commission),
            delivered_orders=agent.delivered_orders,
            open_orders=agent.open_orders,
            upcoming_commission=quantize_money(agent.upcoming_commission),
        )

    if user.role == UserRole.DRIVER:
        driver = await service.driver_commission(user_id)
        return CommissionResponse(
            user_id=user_id,
            role=user.role.value,
            currency=driver.currency,
            earned=quantize_money(driver.earned),
            delivered_orders=driver.delivered_orders,
            commission_per_order=driver.commission_per_order,
            cancelled_or_returned_orders=driver.cancelled_or_returned_orders,
        )

    if user.role == UserRole.INVESTOR:
        investor = await service.investor_summary(user_id)
        return CommissionResponse(
            user_id=user_id,
            role=user.role.value,
            currency=investor.currency,
            earned=quantize_money(investor.earned),
            investments=[
                InvestmentLine(
                    **{
                        **line,
                        "total_revenue": quantize_money(line["total_revenue"]),
                        "total_profit": quantize_money(line["total_profit"]),
                    }
                )
                for line in investor.investments
            ],
        )

    earned, currency = await service.earned(user)
    return CommissionResponse(user_id=user_id, role=user.role.value, currency=currency, earned=earned)
