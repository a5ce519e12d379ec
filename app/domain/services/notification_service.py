"""
Notification Service - change events for back-office screens

Publishes to Redis Pub/Sub after a transaction commits and keeps a short
history list per channel. Payloads only say *what* changed (entity, id,
status); screens refetch the entity by id. Publishing is fire-and-forget:
a Redis outage is logged and never fails the business operation.
"""
import enum
import json
from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)

_HISTORY_SUFFIX = "history"
_MAX_HISTORY_SIZE = 200


class EventChannel(str, enum.Enum):
    ORDERS = "order_events"
    REMITTANCES = "remittance_events"


class EventType(str, enum.Enum):
    ORDER_CREATED = "order_created"
    ORDER_ASSIGNED = "order_assigned"
    ORDER_STATUS_CHANGED = "order_status_changed"
    ORDER_RETURN_SUBMITTED = "order_return_submitted"
    ORDER_RETURN_VERIFIED = "order_return_verified"
    REMITTANCE_REQUESTED = "remittance_requested"
    REMITTANCE_APPROVED = "remittance_approved"
    REMITTANCE_SENT = "remittance_sent"
    MANUAL_RECEIPT_ISSUED = "manual_receipt_issued"


def history_key(channel: EventChannel) -> str:
    return f"{channel.value}:{_HISTORY_SUFFIX}"


async def publish_event(
    channel: EventChannel,
    event_type: EventType,
    entity_id: int,
    status: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Publish a change event and append it to the channel history."""
    try:
        payload = {
            "type": event_type.value,
            "entity": channel.value.removesuffix("_events"),
            "id": entity_id,
            "status": status,
            "data": data or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        message = json.dumps(payload, ensure_ascii=False, default=str)

        redis = await get_redis()
        await redis.publish(channel.value, message)
        key = history_key(channel)
        await redis.lpush(key, message)
        await redis.ltrim(key, 0, _MAX_HISTORY_SIZE - 1)

        logger.debug(
            "Event published",
            extra_data={"channel": channel.value, "type": event_type.value, "id": entity_id},
        )
    except Exception as e:
        logger.error(
            "Failed to publish event",
            extra_data={
                "channel": channel.value,
                "type": event_type.value,
                "id": entity_id,
                "error": str(e),
            },
            exc_info=True,
        )


async def get_event_history(channel: EventChannel, limit: int = 50) -> list[dict[str, Any]]:
    """Most recent events first. Returns [] when Redis is unavailable."""
    try:
        redis = await get_redis()
        raw_items = await redis.lrange(history_key(channel), 0, limit - 1)
        return [json.loads(item) for item in raw_items]
    except Exception as e:
        logger.error(
            "Failed to read event history",
            extra_data={"channel": channel.value, "error": str(e)},
            exc_info=True,
        )
        return []


async def publish_order_event(event_type: EventType, order_id: int, status: str, **data: Any) -> None:
    await publish_event(EventChannel.ORDERS, event_type, order_id, status, data)


async def publish_remittance_event(
    event_type: EventType, remittance_id: int, status: str | None, **data: Any
) -> None:
    await publish_event(EventChannel.REMITTANCES, event_type, remittance_id, status, data)
