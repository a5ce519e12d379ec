"""
Outbox Service - Transactional Outbox Pattern for receipt generation

Receipts are produced by an external renderer. The request for a receipt is
written as an outbox row in the same transaction as the payout it documents,
and the Celery worker delivers it later (at least once).
"""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_

from app.core.config import settings
from app.db.database import utcnow
from app.db.models.manual_receipt import ManualReceipt
from app.db.models.outbox_message import OutboxMessage, MessageChannel, MessageStatus
from app.db.models.remittance import Remittance
from app.db.models.user import User


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Exponential backoff ``base_seconds * 2**retry_count`` capped at
    ``max_backoff_seconds``.

    Large retry counts short-circuit to the cap without computing the power.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # Smallest exponent at which the cap is reached
    threshold = 0
    while base_seconds * (1 << threshold) < max_backoff_seconds:
        threshold += 1

    if retry_count >= threshold:
        return max_backoff_seconds

    return base_seconds * (1 << retry_count)


def _money(value) -> str:
    return str(Decimal(str(value)).quantize(Decimal("0.01")))


class OutboxService:
    """Queue and track receipt requests"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_message(
        self,
        recipient_id: str,
        message_type: str,
        message_content: dict,
        channel: MessageChannel = MessageChannel.RECEIPT,
    ) -> OutboxMessage:
        """Add a message to the current transaction; the caller commits"""
        message = OutboxMessage(
            channel=channel,
            recipient_id=recipient_id,
            message_type=message_type,
            message_content=message_content,
            status=MessageStatus.PENDING,
            retry_count=0,
            max_retries=5,
        )
        self.db.add(message)
        return message

    async def queue_payout_receipt(self, remittance: Remittance, payee: User) -> OutboxMessage:
        """Receipt for a sent remittance, carrying the final amount"""
        return await self.queue_message(
            recipient_id=str(payee.id),
            message_type="payout_receipt",
            message_content={
                "remittance_id": remittance.id,
                "payee_id": payee.id,
                "payee_name": payee.name,
                "role": remittance.role.value,
                "amount": _money(remittance.amount),
                "requested_amount": _money(remittance.requested_amount),
                "currency": remittance.currency,
                "sent_at": remittance.sent_at.isoformat() if remittance.sent_at else None,
                "sent_by_id": remittance.sent_by_id,
                "payout_profile": payee.payout_profile,
            },
        )

    async def queue_manual_receipt(self, receipt: ManualReceipt, payee: User) -> OutboxMessage:
        return await self.queue_message(
            recipient_id=str(payee.id),
            message_type="manual_receipt",
            message_content={
                "manual_receipt_id": receipt.id,
                "payee_id": payee.id,
                "payee_name": payee.name,
                "amount": _money(receipt.amount),
                "currency": receipt.currency,
                "note": receipt.note,
                "issued_by_id": receipt.issuer_id,
            },
        )

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """Pending messages whose retry time (if any) has come"""
        now = utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(OutboxMessage.next_retry_at.is_(None), OutboxMessage.next_retry_at <= now),
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get(self, message_id: int) -> OutboxMessage | None:
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.PROCESSING
            await self.db.commit()

    async def mark_as_sent(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = utcnow()
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Schedule a retry with backoff, or give up after max_retries"""
        message = await self._get(message_id)
        if message:
            message.retry_count += 1
            message.last_error = error[:1000]

            if message.retry_count >= message.max_retries:
                message.status = MessageStatus.FAILED
            else:
                message.status = MessageStatus.PENDING
                backoff_seconds = _calculate_backoff_seconds(
                    message.retry_count,
                    base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                    max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
                )
                message.next_retry_at = utcnow() + timedelta(seconds=backoff_seconds)

            await self.db.commit()

    async def cleanup_sent(self, older_than_days: int = 30) -> int:
        cutoff = utcnow() - timedelta(days=older_than_days)
        result = await self.db.execute(
            delete(OutboxMessage).where(
                OutboxMessage.status == MessageStatus.SENT,
                OutboxMessage.processed_at < cutoff,
            )
        )
        await self.db.commit()
        return result.rowcount or 0
