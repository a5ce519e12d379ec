"""
Inventory Models - per-country stock counters and the movement journal
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, UniqueConstraint

from app.db.database import Base, utcnow


class InventoryRecord(Base):
    """Purchased and delivered counters for one product in one country.

    Pending reserved quantity is not stored; it is derived from open orders.
    """

    __tablename__ = "inventory_records"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    country = Column(String(20), nullable=False)

    purchased_qty = Column(Integer, nullable=False, default=0)
    delivered_qty = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("product_id", "country", name="uq_inventory_product_country"),
    )


class MovementKind(str, enum.Enum):
    DELIVERY_DEDUCT = "delivery_deduct"
    RETURN_RESTOCK = "return_restock"


class InventoryMovement(Base):
    """Append-only stock movement caused by an order"""

    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    country = Column(String(20), nullable=False)
    kind = Column(SQLEnum(MovementKind), nullable=False)
    quantity = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    # One deduction and one restock per order line, ever
    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "kind", name="uq_movement_order_product_kind"),
    )
