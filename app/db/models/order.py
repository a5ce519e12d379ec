"""
Order Model - COD orders and their line items
"""
import secrets
from sqlalchemy import (
    Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Text, Boolean,
)
from sqlalchemy.orm import relationship

from app.db.database import Base, Money, utcnow
from app.state_machine.states import OrderStatus


def generate_invoice_number() -> str:
    return f"INV-{secrets.token_hex(5).upper()}"


class Order(Base):
    """Cash-on-delivery order"""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(20), unique=True, nullable=False, default=generate_invoice_number)

    country = Column(String(20), nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    city = Column(String(100), nullable=True)

    customer_name = Column(String(150), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    delivery_notes = Column(Text, nullable=True)

    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    discount = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=True)
    collected_amount = Column(Money, nullable=True)

    # Inventory adjustment guard (stays true after a verified restock)
    inventory_adjusted = Column(Boolean, nullable=False, default=False)
    inventory_adjusted_at = Column(DateTime, nullable=True)

    # Returns
    return_reason = Column(Text, nullable=True)
    return_submitted_to_company = Column(Boolean, nullable=False, default=False)
    return_submitted_at = Column(DateTime, nullable=True)
    return_verified_at = Column(DateTime, nullable=True)
    return_verified_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    picked_up_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )
    created_by = relationship("User", foreign_keys=[created_by_id], lazy="selectin")
    driver = relationship("User", foreign_keys=[driver_id], lazy="selectin")

    @property
    def is_locked(self) -> bool:
        """Verified returns freeze the order"""
        return self.return_verified_at is not None

    @property
    def investor_product_refs(self) -> list[int]:
        """Products of this order backed by an active stake in its country"""
        return sorted({
            item.product_id
            for item in self.items
            if item.product is not None and item.product.has_active_investment(self.country)
        })

    @property
    def items_total(self):
        return sum((item.quantity * item.unit_price for item in self.items), 0)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="selectin")
