"""
Outbox Message Model - Transactional Outbox Pattern
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON

from app.db.database import Base, utcnow


class MessageChannel(str, enum.Enum):
    RECEIPT = "receipt"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """Work for external collaborators, written in the same transaction as the change it reports"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    channel = Column(SQLEnum(MessageChannel), nullable=False, default=MessageChannel.RECEIPT)
    recipient_id = Column(String(50), nullable=False)

    message_type = Column(String(50), nullable=False)  # payout_receipt, manual_receipt
    message_content = Column(JSON, nullable=False)

    status = Column(SQLEnum(MessageStatus), default=MessageStatus.PENDING, index=True)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=5)

    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    last_error = Column(String(1000), nullable=True)
