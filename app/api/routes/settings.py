"""
Settings API Routes - currency configuration
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.domain.services.currency_service import CurrencyService

router = APIRouter()


class CurrencyConfig(BaseModel):
    """
    Both rate tables. ``rates`` are pivot units per one unit of each code;
    ``settlement_rates`` are settlement units per one unit.
    """
    pivot_code: str
    default_code: str
    rates: dict[str, Decimal]
    settlement_code: str
    settlement_default_code: str
    settlement_rates: dict[str, Decimal]


class CurrencyConfigUpdate(BaseModel):
    """Partial override; rate maps are merged per code"""
    pivot_code: Optional[str] = None
    default_code: Optional[str] = None
    rates: Optional[dict[str, Decimal]] = None
    settlement_code: Optional[str] = None
    settlement_default_code: Optional[str] = None
    settlement_rates: Optional[dict[str, Decimal]] = None


@router.get(
    "/currency",
    response_model=CurrencyConfig,
    summary="Currency tables in effect",
)
async def get_currency_settings(db: AsyncSession = Depends(get_db)) -> CurrencyConfig:
    return CurrencyConfig(**await CurrencyService(db).get_config())


@router.put(
    "/currency",
    response_model=CurrencyConfig,
    summary="Update currency tables",
    description="Rejected as a whole if either resulting table is invalid.",
    responses={400: {"description": "Non-positive rate or pivot missing from its table"}},
)
async def update_currency_settings(
    data: CurrencyConfigUpdate,
    db: AsyncSession = Depends(get_db),
) -> CurrencyConfig:
    config = await CurrencyService(db).update_config(data.model_dump(exclude_none=True))
    return CurrencyConfig(**config)
