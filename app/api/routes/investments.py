"""
Investment API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.db.models.investment import InvestmentStatus
from app.domain.currency import normalize_country
from app.domain.services.investment_service import InvestmentService

router = APIRouter()


class InvestmentCreate(BaseModel):
    investor_id: int
    product_id: int
    owner_id: int
    country: Optional[str] = None
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    quantity: int = Field(default=0, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    profit_per_unit: Decimal = Field(ge=0)

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str | None) -> str | None:
        return normalize_country(v) if v is not None else None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class InvestmentResponse(BaseModel):
    id: int
    investor_id: int
    product_id: int
    owner_id: int
    country: Optional[str] = None
    amount: Decimal
    quantity: int
    currency: str
    profit_per_unit: Decimal
    status: InvestmentStatus
    units_sold: int
    total_revenue: Decimal
    total_profit: Decimal
    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


@router.post(
    "",
    response_model=InvestmentResponse,
    status_code=201,
    summary="Record an investor stake",
    description="Profit accrues per delivered unit of the product (optionally scoped to one country).",
)
async def create_investment(data: InvestmentCreate, db: AsyncSession = Depends(get_db)) -> InvestmentResponse:
    return await InvestmentService(db).create_investment(**data.model_dump())


@router.get("", response_model=List[InvestmentResponse], summary="List investments")
async def list_investments(
    investor_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    status: Optional[InvestmentStatus] = None,
    db: AsyncSession = Depends(get_db),
) -> List[InvestmentResponse]:
    return await InvestmentService(db).list_investments(
        investor_id=investor_id, owner_id=owner_id, status=status
    )


@router.get(
    "/{investment_id}",
    response_model=InvestmentResponse,
    summary="Get investment by ID",
    responses={404: {"description": "Investment not found"}},
)
async def get_investment(investment_id: int, db: AsyncSession = Depends(get_db)) -> InvestmentResponse:
    return await InvestmentService(db).get_investment(investment_id)


@router.post(
    "/{investment_id}/withdraw",
    response_model=InvestmentResponse,
    summary="Investor withdraws a stake",
    description="Later deliveries no longer accrue profit to this stake.",
    responses={409: {"description": "Investment already ended"}},
)
async def withdraw_investment(investment_id: int, db: AsyncSession = Depends(get_db)) -> InvestmentResponse:
    return await InvestmentService(db).end_investment(investment_id, InvestmentStatus.WITHDRAWN)


@router.post(
    "/{investment_id}/cancel",
    response_model=InvestmentResponse,
    summary="Cancel a stake",
    responses={409: {"description": "Investment already ended"}},
)
async def cancel_investment(investment_id: int, db: AsyncSession = Depends(get_db)) -> InvestmentResponse:
    return await InvestmentService(db).end_investment(investment_id, InvestmentStatus.CANCELLED)
