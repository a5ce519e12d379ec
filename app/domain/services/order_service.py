"""
Order Service - the order status machine

Every mutating operation locks the order row (SELECT ... FOR UPDATE), applies
the change together with its inventory and commission side effects, and
commits once. Any failure rolls the whole transition back, so an order is
never delivered without its stock deduction and accruals, or vice versa.
Change notifications go out after commit and never affect the result.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    CountryMismatchError,
    DuplicateAdjustmentError,
    InvalidStatusTransitionError,
    InvalidUserRoleError,
    NotFoundException,
    OrderAccessError,
    OrderAlreadyAssignedError,
    OrderLockedError,
    OrderNotFoundError,
    UserNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.order import Order, OrderItem
from app.db.models.product import Product
from app.db.models.user import User, UserRole
from app.domain.currency import COUNTRY_CURRENCY, SUPPORTED_COUNTRIES, to_decimal
from app.domain.services.commission_service import CommissionService
from app.domain.services.currency_service import CurrencyService, CurrencyTables
from app.domain.services.inventory_service import InventoryService
from app.domain.services.notification_service import EventType, publish_order_event
from app.state_machine.states import (
    DRIVER_SETTABLE_STATUSES,
    OPEN_STATUSES,
    STATUS_BUCKETS,
    TERMINAL_NEGATIVE_STATUSES,
    OrderStatus,
    StatusBucket,
    is_transition_allowed,
)
from app.state_machine.transitions import (
    SettlingTransition,
    SimpleTransition,
    Transition,
    classify_transition,
)

logger = get_logger(__name__)

ZERO = Decimal("0")


@dataclass
class SummaryRow:
    country: str
    bucket: StatusBucket
    count: int
    amount: Decimal
    currency: str


@dataclass
class StatusSummary:
    currency: str
    rows: list[SummaryRow] = field(default_factory=list)
    buckets: dict[StatusBucket, dict] = field(default_factory=dict)
    total_count: int = 0
    total_amount: Decimal = ZERO


class OrderService:
    """Service owning order creation and every status transition"""

    def __init__(self, db: AsyncSession, tables: CurrencyTables | None = None):
        self.db = db
        self._tables = tables

    async def _currency_tables(self) -> CurrencyTables:
        if self._tables is None:
            self._tables = await CurrencyService(self.db).get_tables()
        return self._tables

    # ==================== Reads ====================

    async def get_order(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _lock_order(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders(
        self,
        country: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        driver_id: Optional[int] = None,
        created_by_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        query = select(Order)
        if country:
            query = query.where(Order.country == country)
        if status:
            query = query.where(Order.status == status)
        if driver_id:
            query = query.where(Order.driver_id == driver_id)
        if created_by_id:
            query = query.where(Order.created_by_id == created_by_id)
        result = await self.db.execute(
            query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    # ==================== Creation ====================

    async def create_order(
        self,
        created_by_id: int,
        country: str,
        items: list[dict],
        discount=ZERO,
        total=None,
        city: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        delivery_notes: Optional[str] = None,
    ) -> Order:
        """
        Create a pending order.

        The currency always follows the country. Line prices default to the
        product price converted into that currency; the total defaults to
        the sum of lines minus discount.
        """
        if country not in SUPPORTED_COUNTRIES:
            raise ValidationException(f"Unsupported country: {country}", field="country")
        if not items:
            raise ValidationException("Order must contain at least one item", field="items")
        discount = to_decimal(discount or 0)
        if discount < 0:
            raise ValidationException("Discount cannot be negative", field="discount")
        if total is not None and to_decimal(total) < 0:
            raise ValidationException("Total cannot be negative", field="total")

        creator = await self.db.get(User, created_by_id)
        if creator is None:
            raise UserNotFoundError(created_by_id)

        currency = COUNTRY_CURRENCY[country]
        tables = await self._currency_tables()

        order_items = []
        for line in items:
            quantity = int(line.get("quantity", 0))
            if quantity < 1:
                raise ValidationException("Item quantity must be at least 1", field="quantity")
            if line.get("product_id") is None:
                raise ValidationException("Item product is required", field="product_id")
            product = await self.db.get(Product, line["product_id"])
            if product is None:
                raise NotFoundException("Product", line.get("product_id"))
            unit_price = line.get("unit_price")
            if unit_price is None:
                unit_price = tables.display.convert(product.price, product.base_currency, currency)
            unit_price = to_decimal(unit_price)
            if unit_price < 0:
                raise ValidationException("Unit price cannot be negative", field="unit_price")
            order_items.append(
                OrderItem(product_id=product.id, quantity=quantity, unit_price=unit_price)
            )

        if total is None:
            lines_total = sum((i.quantity * i.unit_price for i in order_items), ZERO)
            total = max(lines_total - discount, ZERO)

        order = Order(
            country=country,
            currency=currency,
            city=city,
            customer_name=customer_name,
            customer_phone=customer_phone,
            delivery_notes=delivery_notes,
            status=OrderStatus.PENDING,
            created_by_id=creator.id,
            discount=discount,
            total=to_decimal(total),
            items=order_items,
        )
        self.db.add(order)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to create order",
                extra_data={"created_by_id": created_by_id, "error": str(e)},
                exc_info=True,
            )
            raise

        logger.info(
            "Order created",
            extra_data={
                "order_id": order.id,
                "country": country,
                "currency": currency,
                "total": str(order.total),
                "created_by_id": created_by_id,
            },
        )
        await publish_order_event(EventType.ORDER_CREATED, order.id, OrderStatus.PENDING.value)
        return await self.get_order(order.id)

    # ==================== Driver binding ====================

    async def _get_driver(self, driver_id: int) -> User:
        driver = await self.db.get(User, driver_id)
        if driver is None:
            raise UserNotFoundError(driver_id)
        if driver.role != UserRole.DRIVER or not driver.is_active:
            raise InvalidUserRoleError(driver_id, driver.role.value, UserRole.DRIVER.value)
        return driver

    def _check_bindable(self, order: Order, driver: User) -> None:
        if order.is_locked:
            raise OrderLockedError(order.id)
        if order.status not in OPEN_STATUSES:
            raise InvalidStatusTransitionError(order.id, order.status.value, OrderStatus.ASSIGNED.value)
        if driver.country != order.country:
            raise CountryMismatchError(order.id, order.country, driver.country)

    async def _bind_driver(self, order: Order, driver: User, event: str) -> Order:
        previous_driver_id = order.driver_id
        order.driver_id = driver.id
        if order.status == OrderStatus.PENDING:
            order.status = OrderStatus.ASSIGNED
        await self.db.commit()

        logger.info(
            f"Driver {event}",
            extra_data={
                "order_id": order.id,
                "driver_id": driver.id,
                "previous_driver_id": previous_driver_id,
                "status": order.status.value,
            },
        )
        await publish_order_event(
            EventType.ORDER_ASSIGNED, order.id, order.status.value, driver_id=driver.id
        )
        return await self.get_order(order.id)

    async def assign_driver(self, order_id: int, driver_id: int) -> Order:
        """Bind a driver of the order's country. pending advances to assigned."""
        try:
            order = await self._lock_order(order_id)
            driver = await self._get_driver(driver_id)
            self._check_bindable(order, driver)
            return await self._bind_driver(order, driver, "assigned")
        except Exception as e:
            await self._rollback("assign_driver", order_id, e)
            raise

    async def claim_order(self, order_id: int, driver_id: int) -> Order:
        """A driver takes an unassigned order of its own country"""
        try:
            order = await self._lock_order(order_id)
            driver = await self._get_driver(driver_id)
            self._check_bindable(order, driver)
            if order.driver_id == driver.id:
                await self.db.rollback()
                return await self.get_order(order_id)
            if order.driver_id is not None:
                raise OrderAlreadyAssignedError(order.id, order.driver_id)
            return await self._bind_driver(order, driver, "claimed order")
        except Exception as e:
            await self._rollback("claim_order", order_id, e)
            raise

    # ==================== Status transitions ====================

    async def set_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        collected_amount=None,
        note: Optional[str] = None,
        expected_driver_id: Optional[int] = None,
    ) -> Order:
        """
        Move an order along the transition table.

        Setting the current status again is an idempotent replay. Entering
        ``delivered`` deducts stock and accrues commission in the same
        transaction.

        When ``expected_driver_id`` is given, the locked order must still be
        bound to that driver.
        """
        new_status = OrderStatus(new_status)
        try:
            order = await self._lock_order(order_id)
            if expected_driver_id is not None and order.driver_id != expected_driver_id:
                raise OrderAccessError(order_id, expected_driver_id)
            if order.is_locked:
                raise OrderLockedError(order.id)

            if order.status == new_status:
                await self.db.rollback()
                logger.info(
                    "Status unchanged, replay ignored",
                    extra_data={"order_id": order_id, "status": new_status.value},
                )
                return await self.get_order(order_id)

            if not is_transition_allowed(order.status, new_status):
                raise InvalidStatusTransitionError(order.id, order.status.value, new_status.value)

            transition = classify_transition(order.status, new_status)
            await self._apply(order, transition, collected_amount, note)
            await self.db.commit()
        except Exception as e:
            await self._rollback("set_status", order_id, e)
            raise

        logger.info(
            "Order status changed",
            extra_data={
                "order_id": order_id,
                "from": transition.source.value,
                "to": transition.target.value,
                "settling": isinstance(transition, SettlingTransition),
            },
        )
        await publish_order_event(EventType.ORDER_STATUS_CHANGED, order_id, new_status.value)
        return await self.get_order(order_id)

    async def _apply(
        self,
        order: Order,
        transition: Transition,
        collected_amount,
        note: Optional[str],
    ) -> None:
        now = utcnow()
        order.status = transition.target

        if isinstance(transition, SimpleTransition):
            if transition.target == OrderStatus.PICKED_UP and order.picked_up_at is None:
                order.picked_up_at = now
            elif transition.target == OrderStatus.IN_TRANSIT and order.shipped_at is None:
                order.shipped_at = now
            if note:
                order.delivery_notes = note
            return

        if transition.terminal_negative:
            if note:
                order.return_reason = note
            return

        if order.delivered_at is None:
            order.delivered_at = now
        if collected_amount is not None:
            collected_amount = to_decimal(collected_amount)
            if collected_amount < 0:
                raise ValidationException("Collected amount cannot be negative", field="collected_amount")
            order.collected_amount = collected_amount
        elif order.collected_amount is None:
            order.collected_amount = order.total

        if transition.deduct_inventory and not order.inventory_adjusted:
            try:
                await InventoryService(self.db).deduct(order)
            except DuplicateAdjustmentError:
                logger.warning(
                    "Inventory already deducted for order, skipping",
                    extra_data={"order_id": order.id},
                )

        if transition.accrue_commission:
            commission = CommissionService(self.db, await self._currency_tables())
            try:
                await commission.accrue(order)
            except DuplicateAdjustmentError:
                logger.warning(
                    "Commission already accrued for order, skipping",
                    extra_data={"order_id": order.id},
                )

    async def driver_update_status(
        self,
        order_id: int,
        driver_id: int,
        new_status: OrderStatus,
        collected_amount=None,
        note: Optional[str] = None,
    ) -> Order:
        """Status change made by the assigned driver, limited to field statuses"""
        new_status = OrderStatus(new_status)
        if new_status not in DRIVER_SETTABLE_STATUSES:
            raise ValidationException(
                f"Drivers cannot set status '{new_status.value}'",
                field="status",
                details={"allowed": sorted(s.value for s in DRIVER_SETTABLE_STATUSES)},
            )
        return await self.set_status(
            order_id,
            new_status,
            collected_amount=collected_amount,
            note=note,
            expected_driver_id=driver_id,
        )

    # ==================== Returns ====================

    async def submit_return(self, order_id: int, reason: Optional[str] = None) -> Order:
        """Driver hands a returned or cancelled parcel back to the company"""
        try:
            order = await self._lock_order(order_id)
            if order.is_locked:
                raise OrderLockedError(order.id)
            if order.status not in TERMINAL_NEGATIVE_STATUSES:
                raise ValidationException(
                    f"Only returned or cancelled orders can be submitted, order is '{order.status.value}'",
                    field="status",
                )
            if order.return_submitted_to_company:
                await self.db.rollback()
                return await self.get_order(order_id)

            order.return_submitted_to_company = True
            order.return_submitted_at = utcnow()
            if reason:
                order.return_reason = reason
            await self.db.commit()
        except Exception as e:
            await self._rollback("submit_return", order_id, e)
            raise

        logger.info("Return submitted", extra_data={"order_id": order_id})
        await publish_order_event(EventType.ORDER_RETURN_SUBMITTED, order_id, order.status.value)
        return await self.get_order(order_id)

    async def verify_return(self, order_id: int, verifier_id: int) -> Order:
        """
        Confirm the returned parcel arrived. Restocks what was deducted
        (nothing, if the order never reached delivered) and locks the order.
        """
        try:
            order = await self._lock_order(order_id)
            if order.is_locked:
                await self.db.rollback()
                return await self.get_order(order_id)
            if not order.return_submitted_to_company:
                raise ValidationException("Return has not been submitted", field="return_submitted_to_company")
            verifier = await self.db.get(User, verifier_id)
            if verifier is None:
                raise UserNotFoundError(verifier_id)

            try:
                await InventoryService(self.db).restock(order)
            except DuplicateAdjustmentError:
                logger.warning("Return already restocked, skipping", extra_data={"order_id": order_id})

            order.return_verified_at = utcnow()
            order.return_verified_by_id = verifier.id
            await self.db.commit()
        except Exception as e:
            await self._rollback("verify_return", order_id, e)
            raise

        logger.info(
            "Return verified, order locked",
            extra_data={"order_id": order_id, "verifier_id": verifier_id},
        )
        await publish_order_event(EventType.ORDER_RETURN_VERIFIED, order_id, order.status.value)
        return await self.get_order(order_id)

    # ==================== Dashboard ====================

    async def status_summary(
        self, country: Optional[str] = None, target_currency: Optional[str] = None
    ) -> StatusSummary:
        """
        Counts and amounts per (country, bucket), each amount in the country's
        currency, plus bucket and grand totals converted into ``target_currency``.
        """
        tables = await self._currency_tables()
        target = (target_currency or settings.PIVOT_CURRENCY).upper()

        query = select(
            Order.country,
            Order.status,
            func.count(Order.id),
            func.coalesce(func.sum(Order.total), 0),
        ).group_by(Order.country, Order.status)
        if country:
            query = query.where(Order.country == country)
        result = await self.db.execute(query)

        grouped: dict[tuple[str, StatusBucket], list] = {}
        for row_country, status, count, amount in result.all():
            bucket = STATUS_BUCKETS[OrderStatus(status)]
            entry = grouped.setdefault((row_country, bucket), [0, ZERO])
            entry[0] += count
            entry[1] += to_decimal(amount)

        summary = StatusSummary(currency=target)
        summary.buckets = {b: {"count": 0, "amount": ZERO} for b in StatusBucket}
        for (row_country, bucket), (count, amount) in sorted(grouped.items(), key=lambda kv: (kv[0][0], kv[0][1].value)):
            currency = COUNTRY_CURRENCY.get(row_country, settings.DEFAULT_CURRENCY)
            summary.rows.append(SummaryRow(row_country, bucket, count, amount, currency))
            converted = tables.display.convert(amount, currency, target)
            summary.buckets[bucket]["count"] += count
            summary.buckets[bucket]["amount"] += converted
            summary.total_count += count
            summary.total_amount += converted
        return summary

    # ==================== Helpers ====================

    async def _rollback(self, action: str, order_id: int, error: Exception) -> None:
        await self.db.rollback()
        if isinstance(error, AppException):
            logger.warning(
                f"Order {action} rejected",
                extra_data={"order_id": order_id, "error_code": error.error_code.value, "error": error.message},
            )
        else:
            logger.error(
                f"Order {action} failed, rolled back",
                extra_data={"order_id": order_id, "error": str(error)},
                exc_info=True,
            )
