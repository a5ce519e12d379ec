"""
Remittance Model - payout requests from commission wallets
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, Text
from sqlalchemy.orm import relationship

from app.db.database import Base, Money, utcnow
from app.db.models.user import UserRole
from app.state_machine.states import RemittanceStatus


class Remittance(Base):
    __tablename__ = "remittances"

    id = Column(Integer, primary_key=True, index=True)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(SQLEnum(UserRole), nullable=False)

    # amount holds the final sent amount once sent
    requested_amount = Column(Money, nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    note = Column(Text, nullable=True)

    status = Column(SQLEnum(RemittanceStatus), default=RemittanceStatus.PENDING, nullable=False, index=True)
    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    sent_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    requester = relationship("User", foreign_keys=[requester_id], lazy="selectin")
