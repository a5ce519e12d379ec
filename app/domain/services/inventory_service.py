"""
Inventory Service - per-country stock counters driven by order fulfillment

Deductions and restocks are journaled in ``inventory_movements``. The journal's
unique key (order, product, kind) is what makes both operations happen at most
once per order, whatever the order's status history looks like.
"""
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DuplicateAdjustmentError,
    InsufficientStockError,
    NotFoundException,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.inventory import InventoryRecord, InventoryMovement, MovementKind
from app.db.models.order import Order, OrderItem
from app.db.models.product import Product
from app.domain.currency import SUPPORTED_COUNTRIES
from app.state_machine.states import OPEN_STATUSES

logger = get_logger(__name__)


@dataclass
class StockLevel:
    product_id: int
    country: str
    purchased_qty: int
    delivered_qty: int
    pending_reserved_qty: int

    @property
    def left_qty(self) -> int:
        return self.purchased_qty - self.delivered_qty - self.pending_reserved_qty


def _quantities_by_product(order: Order) -> dict[int, int]:
    quantities: dict[int, int] = defaultdict(int)
    for item in order.items:
        quantities[item.product_id] += item.quantity
    return dict(quantities)


class InventoryService:
    """Service for stock purchases, delivery deductions and verified restocks"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_record(
        self, product_id: int, country: str, for_update: bool = False, create: bool = False
    ) -> InventoryRecord | None:
        query = select(InventoryRecord).where(
            InventoryRecord.product_id == product_id,
            InventoryRecord.country == country,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        record = result.scalar_one_or_none()
        if record is None and create:
            record = InventoryRecord(
                product_id=product_id, country=country, purchased_qty=0, delivered_qty=0
            )
            self.db.add(record)
            await self.db.flush()
        return record

    async def _movements(self, order_id: int, kind: MovementKind) -> list[InventoryMovement]:
        result = await self.db.execute(
            select(InventoryMovement)
            .where(InventoryMovement.order_id == order_id, InventoryMovement.kind == kind)
            .order_by(InventoryMovement.id)
        )
        return list(result.scalars().all())

    async def receive_stock(self, product_id: int, country: str, quantity: int) -> InventoryRecord:
        """Record purchased units arriving in a country's warehouse"""
        if quantity < 1:
            raise ValidationException("Quantity must be at least 1", field="quantity")
        if country not in SUPPORTED_COUNTRIES:
            raise ValidationException(f"Unsupported country: {country}", field="country")
        if await self.db.get(Product, product_id) is None:
            raise NotFoundException("Product", product_id)

        record = await self._get_record(product_id, country, for_update=True, create=True)
        record.purchased_qty += quantity
        await self.db.commit()

        logger.info(
            "Stock received",
            extra_data={"product_id": product_id, "country": country, "quantity": quantity},
        )
        return record

    async def deduct(self, order: Order) -> list[InventoryMovement]:
        """
        Move the order's quantities from purchased to delivered.

        Runs inside the caller's transaction and does not commit. Raises
        InsufficientStockError if any line would exceed purchased stock and
        DuplicateAdjustmentError if the order was already deducted.
        """
        if await self._movements(order.id, MovementKind.DELIVERY_DEDUCT):
            raise DuplicateAdjustmentError("inventory", order.id)

        movements = []
        for product_id, quantity in _quantities_by_product(order).items():
            record = await self._get_record(product_id, order.country, for_update=True, create=True)
            if record.delivered_qty + quantity > record.purchased_qty:
                raise InsufficientStockError(
                    product_id=product_id,
                    country=order.country,
                    purchased=record.purchased_qty,
                    delivered=record.delivered_qty,
                    requested=quantity,
                )
            record.delivered_qty += quantity
            movement = InventoryMovement(
                order_id=order.id,
                product_id=product_id,
                country=order.country,
                kind=MovementKind.DELIVERY_DEDUCT,
                quantity=quantity,
            )
            self.db.add(movement)
            movements.append(movement)

        order.inventory_adjusted = True
        order.inventory_adjusted_at = utcnow()
        await self.db.flush()

        logger.info(
            "Inventory deducted for delivered order",
            extra_data={
                "order_id": order.id,
                "country": order.country,
                "lines": {m.product_id: m.quantity for m in movements},
            },
        )
        return movements

    async def restock(self, order: Order) -> list[InventoryMovement]:
        """
        Reverse the order's recorded deduction. No-op when nothing was deducted.

        Restores exactly what was deducted, not what the order lines say now.
        Does not commit.
        """
        deducted = await self._movements(order.id, MovementKind.DELIVERY_DEDUCT)
        if not deducted:
            logger.info(
                "Nothing to restock, order was never deducted",
                extra_data={"order_id": order.id},
            )
            return []
        if await self._movements(order.id, MovementKind.RETURN_RESTOCK):
            raise DuplicateAdjustmentError("inventory", order.id)

        movements = []
        for previous in deducted:
            record = await self._get_record(previous.product_id, previous.country, for_update=True)
            record.delivered_qty -= previous.quantity
            movement = InventoryMovement(
                order_id=order.id,
                product_id=previous.product_id,
                country=previous.country,
                kind=MovementKind.RETURN_RESTOCK,
                quantity=previous.quantity,
            )
            self.db.add(movement)
            movements.append(movement)

        await self.db.flush()
        logger.info(
            "Inventory restocked for verified return",
            extra_data={"order_id": order.id, "lines": {m.product_id: m.quantity for m in movements}},
        )
        return movements

    async def pending_reserved(self, product_id: int, country: str | None = None) -> dict[str, int]:
        """Units of the product sitting in open orders, per country"""
        query = (
            select(Order.country, func.coalesce(func.sum(OrderItem.quantity), 0))
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(OrderItem.product_id == product_id, Order.status.in_(list(OPEN_STATUSES)))
            .group_by(Order.country)
        )
        if country:
            query = query.where(Order.country == country)
        result = await self.db.execute(query)
        return {row[0]: int(row[1]) for row in result.all()}

    async def snapshot(self, product_id: int, country: str | None = None) -> list[StockLevel]:
        """Stock levels per country, including countries with only open orders"""
        if await self.db.get(Product, product_id) is None:
            raise NotFoundException("Product", product_id)

        query = select(InventoryRecord).where(InventoryRecord.product_id == product_id)
        if country:
            query = query.where(InventoryRecord.country == country)
        result = await self.db.execute(query.order_by(InventoryRecord.country))
        records = {r.country: r for r in result.scalars().all()}
        reserved = await self.pending_reserved(product_id, country)

        levels = []
        for c in sorted(set(records) | set(reserved)):
            record = records.get(c)
            levels.append(
                StockLevel(
                    product_id=product_id,
                    country=c,
                    purchased_qty=record.purchased_qty if record else 0,
                    delivered_qty=record.delivered_qty if record else 0,
                    pending_reserved_qty=reserved.get(c, 0),
                )
            )
        return levels
