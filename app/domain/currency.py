"""
Currency tables.

A ``CurrencyTable`` expresses every currency as "pivot units per one unit of
this currency". Converting ``v`` from ``f`` to ``t`` is ``v * rate(f) / rate(t)``.
Two tables are built from the same configuration: the display table (pivot SAR)
used for dashboards and wallet aggregation, and the settlement table (pivot PKR)
used for agent commission and the remittance minimum.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from types import MappingProxyType
from typing import Iterable, Mapping

from app.core.logging import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")

COUNTRY_CURRENCY: dict[str, str] = {
    "UAE": "AED",
    "KSA": "SAR",
    "Oman": "OMR",
    "Bahrain": "BHD",
    "India": "INR",
    "Kuwait": "KWD",
    "Qatar": "QAR",
}

SUPPORTED_COUNTRIES = tuple(COUNTRY_CURRENCY)

DEFAULT_PIVOT_RATES: dict[str, Decimal] = {
    "SAR": Decimal("1"),
    "AED": Decimal("1.02"),
    "OMR": Decimal("9.78"),
    "BHD": Decimal("9.94"),
    "INR": Decimal("0.046"),
    "KWD": Decimal("12.2"),
    "QAR": Decimal("1.03"),
    "USD": Decimal("3.75"),
    "CNY": Decimal("0.52"),
}

DEFAULT_SETTLEMENT_RATES: dict[str, Decimal] = {
    "PKR": Decimal("1"),
    "AED": Decimal("76"),
    "OMR": Decimal("726"),
    "SAR": Decimal("72"),
    "BHD": Decimal("830"),
    "KWD": Decimal("880"),
    "QAR": Decimal("79"),
    "INR": Decimal("3.3"),
    "USD": Decimal("278"),
    "CNY": Decimal("39"),
}


def currency_for_country(country: str) -> str:
    """Currency implied by a supported country. Raises KeyError otherwise."""
    return COUNTRY_CURRENCY[country]


def normalize_country(value: str) -> str:
    """Case-insensitive lookup of a supported country name. Raises ValueError."""
    lookup = {name.lower(): name for name in SUPPORTED_COUNTRIES}
    key = (value or "").strip().lower()
    if key not in lookup:
        raise ValueError(f"Unsupported country: {value}")
    return lookup[key]


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps float inputs like 1.02 from turning into 1.0200000000000000177...
    return Decimal(str(value))


def quantize_money(amount: Decimal) -> Decimal:
    """Round for presentation only. Stored values stay unrounded."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CurrencyTable:
    """Immutable rate table around one pivot currency.

    Unknown codes fall back to ``default_code`` with a warning instead of
    failing, so a product priced in a currency nobody configured still shows
    up in totals.
    """

    pivot_code: str
    rates: Mapping[str, Decimal]
    default_code: str
    name: str = field(default="display", compare=False)

    def __post_init__(self) -> None:
        normalized = {code.upper(): to_decimal(rate) for code, rate in self.rates.items()}
        for code, rate in normalized.items():
            if rate <= 0:
                raise ValueError(f"Rate for {code} must be positive, got {rate}")
        if self.pivot_code not in normalized:
            raise ValueError(f"Pivot currency {self.pivot_code} missing from {self.name} table")
        if self.default_code not in normalized:
            raise ValueError(f"Fallback currency {self.default_code} missing from {self.name} table")
        object.__setattr__(self, "rates", MappingProxyType(normalized))

    def has(self, code: str) -> bool:
        return (code or "").upper() in self.rates

    def rate(self, code: str | None) -> Decimal:
        key = (code or "").upper()
        if key in self.rates:
            return self.rates[key]
        logger.warning(
            "Unknown currency, using fallback rate",
            extra_data={"table": self.name, "currency": code, "fallback": self.default_code},
        )
        return self.rates[self.default_code]

    def to_pivot(self, amount, code: str | None) -> Decimal:
        return to_decimal(amount) * self.rate(code)

    def convert(self, amount, from_code: str | None, to_code: str | None) -> Decimal:
        amount = to_decimal(amount)
        if (from_code or "").upper() == (to_code or "").upper():
            return amount
        return amount * self.rate(from_code) / self.rate(to_code)

    def sum_across_currencies(
        self,
        amounts: Iterable[tuple[object, str | None]],
        target_code: str,
    ) -> Decimal:
        """Sum (amount, code) pairs after converting each into ``target_code``."""
        pivot_total = sum(
            (self.to_pivot(amount, code) for amount, code in amounts),
            Decimal("0"),
        )
        return pivot_total / self.rate(target_code)
