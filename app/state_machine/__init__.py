"""
Order and remittance status machine
"""
from app.state_machine.states import (
    OrderStatus,
    RemittanceStatus,
    StatusBucket,
    ORDER_TRANSITIONS,
    REMITTANCE_TRANSITIONS,
)
from app.state_machine.transitions import (
    SimpleTransition,
    SettlingTransition,
    classify_transition,
)

__all__ = [
    "OrderStatus",
    "RemittanceStatus",
    "StatusBucket",
    "ORDER_TRANSITIONS",
    "REMITTANCE_TRANSITIONS",
    "SimpleTransition",
    "SettlingTransition",
    "classify_transition",
]
