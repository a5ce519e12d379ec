"""
User API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, RootModel, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import UserNotFoundError, ValidationException
from app.core.logging import get_logger
from app.core.validation import phone_validator, sanitized_text_validator
from app.db.database import get_db
from app.db.models.user import User, UserRole
from app.domain.currency import normalize_country
from app.domain.payout_profile import PayoutProfile, masked_payout_profile

logger = get_logger(__name__)

router = APIRouter()


class UserCreate(BaseModel):
    """Schema for creating a user with validation"""
    name: str = Field(min_length=1, max_length=100)
    role: UserRole
    phone_number: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    commission_per_order: Optional[Decimal] = Field(default=None, ge=0)
    commission_currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    wallet_currency: Optional[str] = Field(default=None, min_length=3, max_length=3)

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v: str | UserRole) -> UserRole:
        """Accept both 'DRIVER' and 'driver'"""
        if isinstance(v, str) and not isinstance(v, UserRole):
            try:
                return UserRole(v.strip().lower())
            except ValueError as e:
                raise ValueError("Invalid role value") from e
        return v

    @field_validator("name", "city")
    @classmethod
    def sanitize_text(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=100)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        return phone_validator(v)

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str | None) -> str | None:
        return normalize_country(v) if v is not None else None

    @field_validator("commission_currency", "wallet_currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class PayoutProfileBody(RootModel[PayoutProfile]):
    """Bank account or mobile wallet, tagged by ``method``"""


class UserResponse(BaseModel):
    id: int
    name: str
    role: UserRole
    phone_number: Optional[str] = None
    is_active: bool
    country: Optional[str] = None
    city: Optional[str] = None
    commission_per_order: Optional[Decimal] = None
    commission_currency: Optional[str] = None
    wallet_currency: Optional[str] = None
    payout_profile: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


def _to_response(user: User) -> UserResponse:
    response = UserResponse.model_validate(user)
    response.payout_profile = masked_payout_profile(user.payout_profile)
    return response


async def _get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


@router.post(
    "",
    response_model=UserResponse,
    status_code=201,
    summary="Create a user",
    responses={422: {"description": "Validation error in request data"}},
)
async def create_user(user_data: UserCreate, db: AsyncSession = Depends(get_db)) -> UserResponse:
    if user_data.role == UserRole.DRIVER and user_data.country is None:
        raise ValidationException("Drivers must have a country", field="country")

    user = User(**user_data.model_dump())
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("User created", extra_data={"user_id": user.id, "role": user.role.value})
    return _to_response(user)


@router.get(
    "",
    response_model=List[UserResponse],
    summary="List users",
)
async def list_users(
    role: Optional[UserRole] = None,
    country: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> List[UserResponse]:
    query = select(User).where(User.is_active == True)  # noqa: E712
    if role:
        query = query.where(User.role == role)
    if country:
        query = query.where(User.country == country)
    result = await db.execute(query.order_by(User.id))
    return [_to_response(u) for u in result.scalars().all()]


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get user by ID",
    responses={404: {"description": "User not found"}},
)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)) -> UserResponse:
    return _to_response(await _get_user(db, user_id))


@router.put(
    "/{user_id}/payout-profile",
    response_model=UserResponse,
    summary="Set payout details",
    description="Bank account or mobile wallet. Returned masked.",
)
async def set_payout_profile(
    user_id: int,
    body: PayoutProfileBody,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await _get_user(db, user_id)
    if not user.is_payee:
        raise ValidationException("Only payees hold payout details", field="role")

    profile = body.root
    user.payout_profile = profile.model_dump(mode="json")
    await db.commit()
    await db.refresh(user)
    logger.info(
        "Payout profile updated",
        extra_data={"user_id": user_id, "method": profile.method},
    )
    return _to_response(user)
