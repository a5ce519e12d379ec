"""
Payout profile: where a payee wants remittances sent.

Stored as JSON on the user row and validated through a discriminated union,
so a bank profile always has an IBAN and a wallet profile always has a
phone number.
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from app.core.validation import (
    PhoneNumberValidator,
    ValidationPatterns,
    mask_identifier,
    phone_validator,
)


class BankPayoutProfile(BaseModel):
    method: Literal["bank"] = "bank"
    account_name: str = Field(..., min_length=2, max_length=150)
    bank_name: str = Field(..., min_length=2, max_length=150)
    iban: str
    account_number: str | None = Field(None, max_length=40)

    @field_validator("iban")
    @classmethod
    def validate_iban(cls, v: str) -> str:
        v = v.replace(" ", "").upper()
        if not ValidationPatterns.IBAN.match(v):
            raise ValueError("Invalid IBAN format")
        return v

    def masked(self) -> dict:
        data = self.model_dump()
        data["iban"] = mask_identifier(self.iban)
        data["account_number"] = mask_identifier(self.account_number)
        return data


class MobileWalletPayoutProfile(BaseModel):
    method: Literal["jazzcash", "easypaisa", "nayapay", "sadapay"]
    account_name: str = Field(..., min_length=2, max_length=150)
    phone_number: str

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return phone_validator(v)

    def masked(self) -> dict:
        data = self.model_dump()
        data["phone_number"] = PhoneNumberValidator.mask(self.phone_number)
        return data


PayoutProfile = Annotated[
    Union[BankPayoutProfile, MobileWalletPayoutProfile],
    Field(discriminator="method"),
]

payout_profile_adapter: TypeAdapter = TypeAdapter(PayoutProfile)


def parse_payout_profile(raw: dict | None):
    """Validate a stored or submitted profile. None stays None."""
    if raw is None:
        return None
    return payout_profile_adapter.validate_python(raw)


def masked_payout_profile(raw: dict | None) -> dict | None:
    profile = parse_payout_profile(raw)
    return profile.masked() if profile is not None else None
