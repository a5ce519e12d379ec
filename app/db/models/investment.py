"""
Investment Model - an investor's stake in a product
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum

from app.db.database import Base, Money, AccrualAmount, utcnow


class InvestmentStatus(str, enum.Enum):
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"


class Investment(Base):
    """Investor stake. Counters grow as delivered orders accrue profit."""

    __tablename__ = "investments"

    id = Column(Integer, primary_key=True, index=True)
    investor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    # Company owner the stake was placed with
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Optional scoping of the stake to one country
    country = Column(String(20), nullable=True)

    amount = Column(Money, nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    profit_per_unit = Column(Money, nullable=False, default=0)
    status = Column(SQLEnum(InvestmentStatus), default=InvestmentStatus.ACTIVE, nullable=False, index=True)

    units_sold = Column(Integer, nullable=False, default=0)
    total_revenue = Column(AccrualAmount, nullable=False, default=0)
    total_profit = Column(AccrualAmount, nullable=False, default=0)

    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == InvestmentStatus.ACTIVE
