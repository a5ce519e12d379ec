"""
Currency Service - builds the currency tables from defaults plus stored overrides
"""
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationException
from app.core.logging import get_logger
from app.db.models.setting import Setting
from app.domain.currency import (
    CurrencyTable,
    DEFAULT_PIVOT_RATES,
    DEFAULT_SETTLEMENT_RATES,
    to_decimal,
)

logger = get_logger(__name__)

CURRENCY_SETTING_KEY = "currency"


@dataclass(frozen=True)
class CurrencyTables:
    """The display (pivot) table and the settlement table, read together."""

    display: CurrencyTable
    settlement: CurrencyTable

    @property
    def settlement_code(self) -> str:
        return self.settlement.pivot_code

    def convert(self, amount, from_code: str, to_code: str) -> Decimal:
        """Convert with whichever table knows both codes.

        Same-currency amounts pass through untouched. Settlement codes such as
        PKR only exist in the settlement table, so that table is tried when
        the display table lacks either side.
        """
        if (from_code or "").upper() == (to_code or "").upper():
            return to_decimal(amount)
        if self.display.has(from_code) and self.display.has(to_code):
            return self.display.convert(amount, from_code, to_code)
        if self.settlement.has(from_code) and self.settlement.has(to_code):
            return self.settlement.convert(amount, from_code, to_code)
        return self.display.convert(amount, from_code, to_code)

    def sum_into(self, amounts, target_code: str) -> Decimal:
        total = Decimal("0")
        for amount, code in amounts:
            total += self.convert(amount, code, target_code)
        return total


def _default_config() -> dict:
    return {
        "pivot_code": settings.PIVOT_CURRENCY,
        "default_code": settings.DEFAULT_CURRENCY,
        "rates": dict(DEFAULT_PIVOT_RATES),
        "settlement_code": settings.SETTLEMENT_CURRENCY,
        "settlement_default_code": settings.SETTLEMENT_FALLBACK_CURRENCY,
        "settlement_rates": dict(DEFAULT_SETTLEMENT_RATES),
    }


def _normalize_rates(raw: dict, field: str) -> dict[str, Decimal]:
    rates: dict[str, Decimal] = {}
    for code, value in (raw or {}).items():
        try:
            rate = to_decimal(value)
        except ArithmeticError:
            raise ValidationException(f"Rate for {code} is not a number", field=field)
        if not rate.is_finite() or rate <= 0:
            raise ValidationException(f"Rate for {code} must be positive", field=field)
        rates[str(code).strip().upper()] = rate
    return rates


def merge_config(stored: dict | None) -> dict:
    """Overlay stored overrides on the defaults. Rate maps merge per code."""
    config = _default_config()
    stored = stored or {}
    for key in ("pivot_code", "default_code", "settlement_code", "settlement_default_code"):
        if stored.get(key):
            config[key] = str(stored[key]).strip().upper()
    config["rates"].update(_normalize_rates(stored.get("rates"), "rates"))
    config["settlement_rates"].update(
        _normalize_rates(stored.get("settlement_rates"), "settlement_rates")
    )
    return config


def build_tables(config: dict) -> CurrencyTables:
    try:
        display = CurrencyTable(
            pivot_code=config["pivot_code"],
            rates=config["rates"],
            default_code=config["default_code"],
            name="display",
        )
        settlement = CurrencyTable(
            pivot_code=config["settlement_code"],
            rates=config["settlement_rates"],
            default_code=config["settlement_default_code"],
            name="settlement",
        )
    except ValueError as e:
        raise ValidationException(str(e), field="currency")
    return CurrencyTables(display=display, settlement=settlement)


def default_tables() -> CurrencyTables:
    return build_tables(merge_config(None))


class CurrencyService:
    """Reads and updates the currency configuration row"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_setting(self, for_update: bool = False) -> Setting | None:
        query = select(Setting).where(Setting.key == CURRENCY_SETTING_KEY)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_config(self) -> dict:
        setting = await self._get_setting()
        return merge_config(setting.value if setting else None)

    async def get_tables(self) -> CurrencyTables:
        return build_tables(await self.get_config())

    async def update_config(self, changes: dict) -> dict:
        """
        Persist a partial override. Rate maps are merged per currency code.

        The merged result is validated by building both tables before commit,
        so a bad update never reaches the database.
        """
        setting = await self._get_setting(for_update=True)
        stored = dict(setting.value) if setting else {}

        for key in ("pivot_code", "default_code", "settlement_code", "settlement_default_code"):
            if changes.get(key):
                stored[key] = str(changes[key]).strip().upper()
        for key in ("rates", "settlement_rates"):
            if changes.get(key):
                merged = {code.upper(): str(rate) for code, rate in (stored.get(key) or {}).items()}
                merged.update(
                    {code: str(rate) for code, rate in _normalize_rates(changes[key], key).items()}
                )
                stored[key] = merged

        config = merge_config(stored)
        build_tables(config)

        if setting is None:
            self.db.add(Setting(key=CURRENCY_SETTING_KEY, value=stored))
        else:
            setting.value = stored
        await self.db.commit()

        logger.info(
            "Currency configuration updated",
            extra_data={"changed_keys": sorted(k for k, v in changes.items() if v)},
        )
        return config
