"""
Product API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.core.validation import sanitized_text_validator
from app.db.database import get_db
from app.db.models.product import Product

router = APIRouter()


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(ge=0)
    base_currency: str = Field(default="SAR", min_length=3, max_length=3)
    purchase_price: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return sanitized_text_validator(v, max_length=200)

    @field_validator("base_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class ProductResponse(BaseModel):
    id: int
    name: str
    price: Decimal
    base_currency: str
    purchase_price: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


@router.post("", response_model=ProductResponse, status_code=201, summary="Create a product")
async def create_product(data: ProductCreate, db: AsyncSession = Depends(get_db)) -> ProductResponse:
    product = Product(**data.model_dump())
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product


@router.get("", response_model=List[ProductResponse], summary="List products")
async def list_products(db: AsyncSession = Depends(get_db)) -> List[ProductResponse]:
    result = await db.execute(select(Product).order_by(Product.id))
    return list(result.scalars().all())


@router.get("/{product_id}", response_model=ProductResponse, summary="Get product by ID")
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)) -> ProductResponse:
    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundException("Product", product_id)
    return product
