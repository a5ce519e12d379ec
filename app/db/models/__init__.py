"""
Database Models
"""
from app.db.models.user import User, UserRole
from app.db.models.product import Product
from app.db.models.order import Order, OrderItem
from app.db.models.inventory import InventoryRecord, InventoryMovement, MovementKind
from app.db.models.investment import Investment, InvestmentStatus
from app.db.models.commission_accrual import CommissionAccrual, AccrualRole, accrual_key
from app.db.models.remittance import Remittance
from app.db.models.manual_receipt import ManualReceipt
from app.db.models.setting import Setting
from app.db.models.outbox_message import OutboxMessage, MessageChannel, MessageStatus

__all__ = [
    "User",
    "UserRole",
    "Product",
    "Order",
    "OrderItem",
    "InventoryRecord",
    "InventoryMovement",
    "MovementKind",
    "Investment",
    "InvestmentStatus",
    "CommissionAccrual",
    "AccrualRole",
    "accrual_key",
    "Remittance",
    "ManualReceipt",
    "Setting",
    "OutboxMessage",
    "MessageChannel",
    "MessageStatus",
]
