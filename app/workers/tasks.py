"""
Celery Tasks for Receipt Delivery

Worker side of the Transactional Outbox pattern: pending receipt requests
are POSTed to the receipt service. Delivery is at least once; the receipt
service de-duplicates on ``outbox_message_id``.
"""
from __future__ import annotations

import asyncio

import httpx
from sqlalchemy import select

from app.workers.celery_app import celery_app
from app.core.config import settings
from app.core.exceptions import ReceiptServiceError, ServiceTimeoutError
from app.core.logging import get_logger, log_async_operation, set_correlation_id
from app.db.database import get_task_session
from app.db.models.outbox_message import OutboxMessage
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)


def run_async(coro):
    """Run a coroutine on a fresh event loop under a new correlation id"""
    set_correlation_id()
    return asyncio.run(coro)


async def _post_receipt(message: OutboxMessage) -> None:
    """Deliver one receipt request. Raises on any non-2xx answer."""
    payload = {
        "outbox_message_id": message.id,
        "type": message.message_type,
        "recipient_id": message.recipient_id,
        "content": message.message_content,
    }
    timeout = settings.RECEIPT_SERVICE_TIMEOUT_SECONDS
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(settings.RECEIPT_SERVICE_URL, json=payload, timeout=timeout)
    except httpx.TimeoutException as e:
        raise ServiceTimeoutError("receipts", timeout) from e

    if response.status_code >= 300:
        raise ReceiptServiceError.from_response(response)


async def _process_single_message(message: OutboxMessage) -> tuple[bool, str]:
    """Process a single outbox message"""
    async with get_task_session() as db:
        outbox_service = OutboxService(db)
        await outbox_service.mark_as_processing(message.id)

        try:
            await _post_receipt(message)
        except (ReceiptServiceError, ServiceTimeoutError, httpx.HTTPError) as e:
            error = e.message if hasattr(e, "message") else str(e)
            logger.error(
                "Receipt delivery failed",
                extra_data={
                    "message_id": message.id,
                    "message_type": message.message_type,
                    "retry_count": message.retry_count,
                    "error": error,
                },
                exc_info=True,
            )
            await outbox_service.mark_as_failed(message.id, error)
            return False, error

        await outbox_service.mark_as_sent(message.id)
        logger.info(
            "Receipt delivered",
            extra_data={"message_id": message.id, "message_type": message.message_type},
        )
        return True, "Receipt delivered"


@log_async_operation("drain receipt outbox")
async def drain_outbox(limit: int | None = None) -> dict:
    """Deliver up to ``limit`` due receipts; returns per-message outcomes"""
    async with get_task_session() as db:
        messages = await OutboxService(db).get_pending_messages(limit=limit or settings.OUTBOX_BATCH_SIZE)

    delivered = 0
    results = []
    for message in messages:
        success, result = await _process_single_message(message)
        delivered += success
        results.append({"message_id": message.id, "success": success, "result": result})

    if results:
        logger.info(
            "Outbox batch processed",
            extra_data={"picked": len(results), "delivered": delivered, "failed": len(results) - delivered},
        )
    return {"picked": len(results), "delivered": delivered, "results": results}


@celery_app.task(name="app.workers.tasks.process_outbox_messages")
def process_outbox_messages():
    """Periodic drain of pending receipt requests"""
    return run_async(drain_outbox())


@celery_app.task(name="app.workers.tasks.send_message")
def send_message(message_id: int):
    """Deliver one receipt right away, outside the beat schedule"""

    async def _send():
        async with get_task_session() as db:
            result = await db.execute(
                select(OutboxMessage).where(OutboxMessage.id == message_id)
            )
            message = result.scalar_one_or_none()

        if not message:
            return {"error": "Message not found"}

        success, result = await _process_single_message(message)
        return {"success": success, "result": result}

    return run_async(_send())


@celery_app.task(name="app.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int | None = None):
    """Delete delivered receipt requests older than ``days``"""
    days = days or settings.OUTBOX_RETENTION_DAYS

    async def _cleanup():
        async with get_task_session() as db:
            deleted = await OutboxService(db).cleanup_sent(older_than_days=days)
        logger.info("Old outbox messages cleaned", extra_data={"deleted": deleted, "days": days})
        return {"deleted": deleted}

    return run_async(_cleanup())
