"""
Commission Accrual Model - one row per order and accrual slot
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, UniqueConstraint

from app.db.database import Base, AccrualAmount, utcnow


class AccrualRole(str, enum.Enum):
    AGENT = "agent"
    DRIVER = "driver"
    INVESTOR = "investor"


def accrual_key(role: AccrualRole, investment_id: int | None = None) -> str:
    """Slot name: "agent", "driver" or "investment:<id>"."""
    if role == AccrualRole.INVESTOR:
        return f"investment:{investment_id}"
    return role.value


class CommissionAccrual(Base):
    """Immutable accrual written when an order is delivered.

    Amounts are unrounded; only API output rounds.
    """

    __tablename__ = "commission_accruals"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    role = Column(SQLEnum(AccrualRole), nullable=False)
    accrual_key = Column(String(40), nullable=False)
    beneficiary_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    investment_id = Column(Integer, ForeignKey("investments.id"), nullable=True)

    amount = Column(AccrualAmount, nullable=False)
    currency = Column(String(3), nullable=False)

    created_at = Column(DateTime, default=utcnow)

    # Accrual runs once per order and slot
    __table_args__ = (
        UniqueConstraint("order_id", "accrual_key", name="uq_accrual_order_slot"),
    )
