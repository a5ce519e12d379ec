"""
Manual Receipt Model - receipts issued outside the remittance ledger
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean

from app.db.database import Base, Money, utcnow


class ManualReceipt(Base):
    """Receipt for a payout made outside the system. Never touches a wallet."""

    __tablename__ = "manual_receipts"

    id = Column(Integer, primary_key=True, index=True)
    issuer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    payee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    note = Column(Text, nullable=True)
    # Advisory only: the payee's available balance was lower at issue time
    exceeds_available = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
