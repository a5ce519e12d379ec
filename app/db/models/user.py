"""
User Model - back-office actors and payees
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Boolean, JSON

from app.db.database import Base, Money, utcnow


class UserRole(str, enum.Enum):
    OWNER = "owner"
    MANAGER = "manager"
    AGENT = "agent"
    DRIVER = "driver"
    INVESTOR = "investor"


# Roles that hold a commission wallet
PAYEE_ROLES = frozenset({UserRole.AGENT, UserRole.DRIVER, UserRole.INVESTOR})


class User(Base):
    """Any actor of the back office. Agents, drivers and investors are payees."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(20), nullable=True, index=True)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)
    is_active = Column(Boolean, default=True)

    # Operating scope (drivers and managers)
    country = Column(String(20), nullable=True, index=True)
    city = Column(String(100), nullable=True)

    # Driver commission snapshot source
    commission_per_order = Column(Money, nullable=True)
    commission_currency = Column(String(3), nullable=True)

    # Investor wallet currency
    wallet_currency = Column(String(3), nullable=True)

    # Tagged union, see app.domain.payout_profile
    payout_profile = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_payee(self) -> bool:
        return self.role in PAYEE_ROLES
