"""
Status definitions and transition tables for orders and remittances.
"""
from enum import Enum


class OrderStatus(str, Enum):
    """Fulfillment status of a COD order"""

    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    NO_RESPONSE = "no_response"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class StatusBucket(str, Enum):
    """Dashboard aggregation buckets; every status maps to exactly one"""

    OPEN = "open"
    DELIVERED = "delivered"
    CANCELLED_RETURNED = "cancelled_returned"


class RemittanceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SENT = "sent"


OPEN_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.NO_RESPONSE,
})

TERMINAL_NEGATIVE_STATUSES = frozenset({OrderStatus.RETURNED, OrderStatus.CANCELLED})

STATUS_BUCKETS: dict[OrderStatus, StatusBucket] = {
    **{s: StatusBucket.OPEN for s in OPEN_STATUSES},
    OrderStatus.DELIVERED: StatusBucket.DELIVERED,
    OrderStatus.RETURNED: StatusBucket.CANCELLED_RETURNED,
    OrderStatus.CANCELLED: StatusBucket.CANCELLED_RETURNED,
}

# Statuses a driver may set on its own orders
DRIVER_SETTABLE_STATUSES = frozenset({
    OrderStatus.PICKED_UP,
    OrderStatus.NO_RESPONSE,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})


ORDER_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.PENDING: [
        OrderStatus.ASSIGNED,
        OrderStatus.PICKED_UP,
        OrderStatus.IN_TRANSIT,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.NO_RESPONSE,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.ASSIGNED: [
        OrderStatus.PENDING,
        OrderStatus.PICKED_UP,
        OrderStatus.IN_TRANSIT,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.NO_RESPONSE,
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.PICKED_UP: [
        OrderStatus.ASSIGNED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.NO_RESPONSE,
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.IN_TRANSIT: [
        OrderStatus.PICKED_UP,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.NO_RESPONSE,
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.OUT_FOR_DELIVERY: [
        OrderStatus.IN_TRANSIT,
        OrderStatus.NO_RESPONSE,
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.NO_RESPONSE: [
        OrderStatus.ASSIGNED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.DELIVERED: [OrderStatus.RETURNED],
    OrderStatus.RETURNED: [],
    OrderStatus.CANCELLED: [],
}

REMITTANCE_TRANSITIONS: dict[RemittanceStatus, list[RemittanceStatus]] = {
    RemittanceStatus.PENDING: [RemittanceStatus.APPROVED, RemittanceStatus.SENT],
    RemittanceStatus.APPROVED: [RemittanceStatus.SENT],
    RemittanceStatus.SENT: [],
}


def is_transition_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, [])
