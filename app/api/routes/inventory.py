"""
Inventory API Routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationException
from app.db.database import get_db
from app.domain.currency import normalize_country
from app.domain.services.inventory_service import InventoryService

router = APIRouter()


class StockPurchase(BaseModel):
    country: str
    quantity: int = Field(ge=1)

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        return normalize_country(v)


class StockLevelResponse(BaseModel):
    product_id: int
    country: str
    purchased_qty: int
    delivered_qty: int
    pending_reserved_qty: int
    left_qty: int


@router.post(
    "/{product_id}/purchases",
    response_model=StockLevelResponse,
    status_code=201,
    summary="Receive purchased stock",
)
async def receive_stock(
    product_id: int,
    data: StockPurchase,
    db: AsyncSession = Depends(get_db),
) -> StockLevelResponse:
    service = InventoryService(db)
    await service.receive_stock(product_id, data.country, data.quantity)
    levels = await service.snapshot(product_id, data.country)
    level = levels[0]
    return StockLevelResponse(
        product_id=level.product_id,
        country=level.country,
        purchased_qty=level.purchased_qty,
        delivered_qty=level.delivered_qty,
        pending_reserved_qty=level.pending_reserved_qty,
        left_qty=level.left_qty,
    )


@router.get(
    "/{product_id}",
    response_model=List[StockLevelResponse],
    summary="Stock levels of a product per country",
    description="left = purchased - delivered - units in open orders",
)
async def get_stock(
    product_id: int,
    country: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> List[StockLevelResponse]:
    if country is not None:
        try:
            country = normalize_country(country)
        except ValueError as e:
            raise ValidationException(str(e), field="country") from e
    levels = await InventoryService(db).snapshot(product_id, country)
    return [
        StockLevelResponse(
            product_id=level.product_id,
            country=level.country,
            purchased_qty=level.purchased_qty,
            delivered_qty=level.delivered_qty,
            pending_reserved_qty=level.pending_reserved_qty,
            left_qty=level.left_qty,
        )
        for level in levels
    ]
