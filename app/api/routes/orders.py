"""
Order API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.core.exceptions import ValidationException
from app.core.validation import phone_validator, sanitized_text_validator
from app.db.database import get_db
from app.domain.currency import normalize_country, quantize_money
from app.domain.services.currency_service import CurrencyService
from app.domain.services.export_service import generate_orders_excel
from app.domain.services.order_service import OrderService
from app.state_machine.states import OrderStatus

logger = get_logger(__name__)

router = APIRouter()

EXPORT_LIMIT = 10000


def _country(v: str | None) -> str | None:
    if v is None:
        return None
    try:
        return normalize_country(v)
    except ValueError as e:
        raise ValidationException(str(e), field="country") from e


class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)


class OrderCreate(BaseModel):
    """Schema for creating an order"""
    created_by_id: int
    country: str
    items: List[OrderItemCreate] = Field(min_length=1)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    total: Optional[Decimal] = Field(default=None, ge=0)
    city: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_notes: Optional[str] = None

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        return normalize_country(v)

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        return phone_validator(v)

    @field_validator("city", "customer_name")
    @classmethod
    def sanitize_short_text(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=100)

    @field_validator("delivery_notes")
    @classmethod
    def sanitize_notes(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class UserRef(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class ProductRef(BaseModel):
    id: int
    name: str
    price: Decimal
    base_currency: str

    model_config = {"from_attributes": True}


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product: Optional[ProductRef] = None
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    """Order with its driver, creator and item products populated for display"""
    id: int
    invoice_number: str
    country: str
    currency: str
    city: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_notes: Optional[str] = None
    status: OrderStatus
    created_by_id: int
    created_by: Optional[UserRef] = None
    driver_id: Optional[int] = None
    driver: Optional[UserRef] = None
    discount: Decimal
    total: Decimal
    collected_amount: Optional[Decimal] = None
    inventory_adjusted: bool
    return_reason: Optional[str] = None
    return_submitted_to_company: bool
    return_submitted_at: Optional[datetime] = None
    return_verified_at: Optional[datetime] = None
    return_verified_by_id: Optional[int] = None
    is_locked: bool
    created_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
    investor_product_refs: List[int] = []

    model_config = {"from_attributes": True}


class DriverRequest(BaseModel):
    driver_id: int


class StatusUpdate(BaseModel):
    status: OrderStatus
    collected_amount: Optional[Decimal] = None
    note: Optional[str] = None

    @field_validator("collected_amount")
    @classmethod
    def validate_collected(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v < 0:
            raise ValueError("Collected amount cannot be negative")
        return v

    @field_validator("note")
    @classmethod
    def sanitize_note(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class DriverStatusUpdate(StatusUpdate):
    driver_id: int


class ReturnSubmit(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class ReturnVerify(BaseModel):
    verifier_id: int


class BucketTotal(BaseModel):
    count: int
    amount: Decimal


class SummaryRowResponse(BaseModel):
    country: str
    bucket: str
    count: int
    amount: Decimal
    currency: str


class StatusSummaryResponse(BaseModel):
    currency: str
    rows: List[SummaryRowResponse]
    buckets: dict[str, BucketTotal]
    total_count: int
    total_amount: Decimal


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="Create an order",
    description="Creates a pending order. The currency follows the country.",
)
async def create_order(
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    logger.info(
        "Creating order",
        extra_data={"created_by_id": data.created_by_id, "country": data.country},
    )
    service = OrderService(db)
    return await service.create_order(
        created_by_id=data.created_by_id,
        country=data.country,
        items=[item.model_dump() for item in data.items],
        discount=data.discount,
        total=data.total,
        city=data.city,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        delivery_notes=data.delivery_notes,
    )


@router.get(
    "",
    response_model=List[OrderResponse],
    summary="List orders",
)
async def list_orders(
    country: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    driver_id: Optional[int] = None,
    created_by_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> List[OrderResponse]:
    service = OrderService(db)
    return await service.list_orders(
        country=_country(country),
        status=status,
        driver_id=driver_id,
        created_by_id=created_by_id,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/summary",
    response_model=StatusSummaryResponse,
    summary="Order counts and amounts per status bucket",
    description=(
        "Per-country rows in local currency, plus bucket and grand totals "
        "converted into the requested currency (default: pivot)."
    ),
)
async def order_summary(
    country: Optional[str] = None,
    currency: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> StatusSummaryResponse:
    summary = await OrderService(db).status_summary(_country(country), currency)
    return StatusSummaryResponse(
        currency=summary.currency,
        rows=[
            SummaryRowResponse(
                country=row.country,
                bucket=row.bucket.value,
                count=row.count,
                amount=quantize_money(row.amount),
                currency=row.currency,
            )
            for row in summary.rows
        ],
        buckets={
            bucket.value: BucketTotal(count=values["count"], amount=quantize_money(values["amount"]))
            for bucket, values in summary.buckets.items()
        },
        total_count=summary.total_count,
        total_amount=quantize_money(summary.total_amount),
    )


@router.get(
    "/export",
    summary="Export orders to XLSX",
    response_class=Response,
)
async def export_orders(
    country: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    currency: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> Response:
    orders = await OrderService(db).list_orders(
        country=_country(country), status=status, limit=EXPORT_LIMIT
    )
    tables = await CurrencyService(db).get_tables()
    target = (currency or settings.PIVOT_CURRENCY).upper()
    total = tables.display.sum_across_currencies(((o.total, o.currency) for o in orders), target)

    content = generate_orders_excel(orders, quantize_money(total), target)
    logger.info("Orders exported", extra_data={"count": len(orders), "currency": target})
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": 'attachment; filename="orders.xlsx"'},
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    responses={404: {"description": "Order not found"}},
)
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)) -> OrderResponse:
    return await OrderService(db).get_order(order_id)


@router.post(
    "/{order_id}/assign-driver",
    response_model=OrderResponse,
    summary="Assign a driver",
    description="Binds a driver of the order's country; pending orders become assigned.",
)
async def assign_driver(
    order_id: int,
    data: DriverRequest,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await OrderService(db).assign_driver(order_id, data.driver_id)


@router.post(
    "/{order_id}/claim",
    response_model=OrderResponse,
    summary="Driver claims an unassigned order",
)
async def claim_order(
    order_id: int,
    data: DriverRequest,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await OrderService(db).claim_order(order_id, data.driver_id)


@router.post(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status",
    description="Setting delivered deducts stock and accrues commission atomically.",
    responses={409: {"description": "Transition not allowed or order locked"}},
)
async def set_status(
    order_id: int,
    data: StatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await OrderService(db).set_status(
        order_id, data.status, collected_amount=data.collected_amount, note=data.note
    )


@router.post(
    "/{order_id}/driver-status",
    response_model=OrderResponse,
    summary="Status change by the assigned driver",
)
async def driver_set_status(
    order_id: int,
    data: DriverStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await OrderService(db).driver_update_status(
        order_id,
        data.driver_id,
        data.status,
        collected_amount=data.collected_amount,
        note=data.note,
    )


@router.post(
    "/{order_id}/return/submit",
    response_model=OrderResponse,
    summary="Submit a returned parcel to the company",
)
async def submit_return(
    order_id: int,
    data: ReturnSubmit,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await OrderService(db).submit_return(order_id, data.reason)


@router.post(
    "/{order_id}/return/verify",
    response_model=OrderResponse,
    summary="Verify a returned parcel",
    description="Restocks deducted units and locks the order against further changes.",
)
async def verify_return(
    order_id: int,
    data: ReturnVerify,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await OrderService(db).verify_return(order_id, data.verifier_id)
