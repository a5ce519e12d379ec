"""
Remittance Service - payout requests against commission wallets

A wallet is never stored. Its available balance is recomputed on every read:

    available = max(0, earned - sum(sent remittances))

Pending and approved requests are reported but not subtracted, so two open
requests may together exceed the balance; ``send`` re-checks the balance
under a lock on the payee's user row, which serializes concurrent sends for
the same wallet.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidUserRoleError,
    RemittanceNotFoundError,
    RemittanceStatusError,
    UserNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.manual_receipt import ManualReceipt
from app.db.models.remittance import Remittance
from app.db.models.user import User
from app.domain.currency import to_decimal
from app.domain.services.commission_service import CommissionService
from app.domain.services.currency_service import CurrencyService, CurrencyTables
from app.domain.services.notification_service import EventType, publish_remittance_event
from app.domain.services.outbox_service import OutboxService
from app.state_machine.states import RemittanceStatus, REMITTANCE_TRANSITIONS

logger = get_logger(__name__)

ZERO = Decimal("0")


@dataclass
class WalletSummary:
    user_id: int
    role: str
    currency: str
    earned: Decimal
    sent: Decimal
    pending: Decimal

    @property
    def available(self) -> Decimal:
        return max(ZERO, self.earned - self.sent)


class RemittanceService:
    """Service for the request -> approve -> send payout workflow"""

    def __init__(self, db: AsyncSession, tables: CurrencyTables | None = None):
        self.db = db
        self._tables = tables

    async def _currency_tables(self) -> CurrencyTables:
        if self._tables is None:
            self._tables = await CurrencyService(self.db).get_tables()
        return self._tables

    async def _get_payee(self, user_id: int, for_update: bool = False) -> User:
        query = select(User).where(User.id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)
        if not user.is_payee:
            raise InvalidUserRoleError(user_id, user.role.value, "agent|driver|investor")
        return user

    async def _get_remittance(self, remittance_id: int, for_update: bool = False) -> Remittance:
        query = select(Remittance).where(Remittance.id == remittance_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        remittance = result.scalar_one_or_none()
        if remittance is None:
            raise RemittanceNotFoundError(remittance_id)
        return remittance

    # ==================== Wallet ====================

    async def _summarize(self, user: User) -> WalletSummary:
        tables = await self._currency_tables()
        earned, currency = await CommissionService(self.db, tables).earned(user)

        result = await self.db.execute(
            select(Remittance.amount, Remittance.currency, Remittance.status)
            .where(Remittance.requester_id == user.id)
        )
        sent = ZERO
        pending = ZERO
        for amount, remit_currency, status in result.all():
            converted = tables.convert(amount, remit_currency, currency)
            if status == RemittanceStatus.SENT:
                sent += converted
            else:
                pending += converted

        return WalletSummary(
            user_id=user.id,
            role=user.role.value,
            currency=currency,
            earned=earned,
            sent=sent,
            pending=pending,
        )

    async def wallet_summary(self, user_id: int) -> WalletSummary:
        return await self._summarize(await self._get_payee(user_id))

    def _minimum_in(self, currency: str, tables: CurrencyTables) -> Decimal:
        """The configured minimum, expressed in ``currency``"""
        return tables.settlement.convert(
            settings.REMITTANCE_MIN_AMOUNT, tables.settlement_code, currency
        )

    # ==================== Workflow ====================

    async def request(self, requester_id: int, amount, note: Optional[str] = None) -> Remittance:
        """
        Open a payout request in the wallet's currency.

        Raises BelowMinimumError below the configured minimum and
        InsufficientBalanceError above the available balance.
        """
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationException("Amount must be positive", field="amount")

        user = await self._get_payee(requester_id)
        tables = await self._currency_tables()
        summary = await self._summarize(user)

        in_settlement = tables.settlement.convert(amount, summary.currency, tables.settlement_code)
        if in_settlement < settings.REMITTANCE_MIN_AMOUNT:
            raise BelowMinimumError(
                requester_id,
                amount,
                self._minimum_in(summary.currency, tables).quantize(Decimal("0.01")),
                summary.currency,
            )
        if amount > summary.available:
            raise InsufficientBalanceError(requester_id, summary.available, amount, summary.currency)

        remittance = Remittance(
            requester_id=user.id,
            role=user.role,
            requested_amount=amount,
            amount=amount,
            currency=summary.currency,
            note=note,
            status=RemittanceStatus.PENDING,
        )
        self.db.add(remittance)
        await self.db.commit()

        logger.info(
            "Remittance requested",
            extra_data={
                "remittance_id": remittance.id,
                "requester_id": requester_id,
                "amount": str(amount),
                "currency": summary.currency,
                "available": str(summary.available),
            },
        )
        await publish_remittance_event(
            EventType.REMITTANCE_REQUESTED, remittance.id, RemittanceStatus.PENDING.value
        )
        return await self.get_remittance(remittance.id)

    async def approve(self, remittance_id: int, approver_id: int) -> Remittance:
        """pending -> approved. Balance is not re-checked here."""
        try:
            remittance = await self._get_remittance(remittance_id, for_update=True)
            if remittance.status != RemittanceStatus.PENDING:
                raise RemittanceStatusError(remittance_id, remittance.status.value, "approve")
            if await self.db.get(User, approver_id) is None:
                raise UserNotFoundError(approver_id)

            remittance.status = RemittanceStatus.APPROVED
            remittance.approved_by_id = approver_id
            remittance.approved_at = utcnow()
            await self.db.commit()
        except Exception as e:
            await self._rollback("approve", remittance_id, e)
            raise

        logger.info(
            "Remittance approved",
            extra_data={"remittance_id": remittance_id, "approver_id": approver_id},
        )
        await publish_remittance_event(
            EventType.REMITTANCE_APPROVED, remittance_id, RemittanceStatus.APPROVED.value
        )
        return await self.get_remittance(remittance_id)

    async def send(self, remittance_id: int, sender_id: int, actual_amount=None) -> Remittance:
        """
        Pay out a pending or approved remittance.

        The payee row is locked, the balance recomputed, and the receipt
        request queued in the same transaction. ``actual_amount`` replaces
        the requested amount when the payout differs.
        """
        try:
            remittance = await self._get_remittance(remittance_id, for_update=True)
            if RemittanceStatus.SENT not in REMITTANCE_TRANSITIONS[remittance.status]:
                raise RemittanceStatusError(remittance_id, remittance.status.value, "send")
            if await self.db.get(User, sender_id) is None:
                raise UserNotFoundError(sender_id)

            payee = await self._get_payee(remittance.requester_id, for_update=True)
            summary = await self._summarize(payee)

            amount = to_decimal(actual_amount) if actual_amount is not None else to_decimal(remittance.amount)
            if amount <= 0:
                raise ValidationException("Amount must be positive", field="actual_amount")
            amount_in_wallet = (await self._currency_tables()).convert(
                amount, remittance.currency, summary.currency
            )
            if amount_in_wallet > summary.available:
                raise InsufficientBalanceError(
                    payee.id, summary.available, amount_in_wallet, summary.currency
                )

            remittance.amount = amount
            remittance.status = RemittanceStatus.SENT
            remittance.sent_at = utcnow()
            remittance.sent_by_id = sender_id
            await self.db.flush()
            await OutboxService(self.db).queue_payout_receipt(remittance, payee)
            await self.db.commit()
        except Exception as e:
            await self._rollback("send", remittance_id, e)
            raise

        logger.info(
            "Remittance sent",
            extra_data={
                "remittance_id": remittance_id,
                "sender_id": sender_id,
                "amount": str(amount),
                "currency": remittance.currency,
                "available_before": str(summary.available),
            },
        )
        await publish_remittance_event(
            EventType.REMITTANCE_SENT, remittance_id, RemittanceStatus.SENT.value
        )
        return await self.get_remittance(remittance_id)

    async def issue_manual_receipt(
        self,
        issuer_id: int,
        payee_id: int,
        amount,
        currency: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ManualReceipt:
        """
        Record a receipt for a payout made outside the ledger.

        Never debits the wallet. A receipt above the payee's available
        balance is flagged and logged, not rejected.
        """
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationException("Amount must be positive", field="amount")
        if await self.db.get(User, issuer_id) is None:
            raise UserNotFoundError(issuer_id)
        payee = await self._get_payee(payee_id)
        summary = await self._summarize(payee)
        currency = (currency or summary.currency).upper()

        tables = await self._currency_tables()
        exceeds = tables.convert(amount, currency, summary.currency) > summary.available
        if exceeds:
            logger.warning(
                "Manual receipt exceeds available balance",
                extra_data={
                    "payee_id": payee_id,
                    "amount": str(amount),
                    "currency": currency,
                    "available": str(summary.available),
                    "wallet_currency": summary.currency,
                },
            )

        receipt = ManualReceipt(
            issuer_id=issuer_id,
            payee_id=payee.id,
            amount=amount,
            currency=currency,
            note=note,
            exceeds_available=exceeds,
        )
        self.db.add(receipt)
        try:
            await self.db.flush()
            await OutboxService(self.db).queue_manual_receipt(receipt, payee)
            await self.db.commit()
        except Exception as e:
            await self._rollback("manual_receipt", payee_id, e)
            raise

        logger.info(
            "Manual receipt issued",
            extra_data={"manual_receipt_id": receipt.id, "payee_id": payee_id, "issuer_id": issuer_id},
        )
        await publish_remittance_event(
            EventType.MANUAL_RECEIPT_ISSUED, receipt.id, None, payee_id=payee_id
        )
        return receipt

    # ==================== Reads ====================

    async def get_remittance(self, remittance_id: int) -> Remittance:
        return await self._get_remittance(remittance_id)

    async def list_remittances(
        self,
        requester_id: Optional[int] = None,
        status: Optional[RemittanceStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Remittance]:
        query = select(Remittance)
        if requester_id:
            query = query.where(Remittance.requester_id == requester_id)
        if status:
            query = query.where(Remittance.status == status)
        result = await self.db.execute(
            query.order_by(Remittance.created_at.desc(), Remittance.id.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def _rollback(self, action: str, entity_id: int, error: Exception) -> None:
        await self.db.rollback()
        if isinstance(error, AppException):
            logger.warning(
                f"Remittance {action} rejected",
                extra_data={"id": entity_id, "error_code": error.error_code.value, "error": error.message},
            )
        else:
            logger.error(
                f"Remittance {action} failed, rolled back",
                extra_data={"id": entity_id, "error": str(error)},
                exc_info=True,
            )
