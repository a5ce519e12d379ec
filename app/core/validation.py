"""
Input Validation Utilities

- Phone number validation (E.164 and Pakistani local mobile format)
- Masking of phone numbers and bank identifiers for display to approvers
- Text sanitization for notes and reasons
- Monetary amount validation
"""
import re
from decimal import Decimal, InvalidOperation


class ValidationPatterns:
    """Regex patterns for validation"""

    # International phone (E.164 format)
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")

    # Pakistani mobile wallets (JazzCash, Easypaisa ...): 03XXXXXXXXX
    PHONE_PK_LOCAL = re.compile(r"^03\d{9}$")

    IBAN = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{10,30}$")

    XSS_PATTERNS = [
        re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        re.compile(r"javascript:", re.IGNORECASE),
        # Event handlers must start at a word boundary (onclick=, onload=)
        re.compile(r"\bon\w+=", re.IGNORECASE),
        re.compile(r"<iframe", re.IGNORECASE),
    ]


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def validate(phone: str) -> bool:
        if not phone:
            return False
        cleaned = re.sub(r"[\s\-()]", "", phone)
        return bool(
            ValidationPatterns.PHONE_INTERNATIONAL.match(cleaned)
            or ValidationPatterns.PHONE_PK_LOCAL.match(cleaned)
        )

    @staticmethod
    def normalize(phone: str) -> str:
        """Strip formatting and convert 03XX local numbers to +92."""
        cleaned = re.sub(r"[^\d+]", "", phone)
        if ValidationPatterns.PHONE_PK_LOCAL.match(cleaned):
            cleaned = "+92" + cleaned[1:]
        return cleaned

    @staticmethod
    def mask(phone: str) -> str:
        """Mask phone number for logging and approver views"""
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


def mask_identifier(value: str | None, visible: int = 4) -> str | None:
    """Keep only the last ``visible`` characters of an IBAN or account number."""
    if value is None:
        return None
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]


class TextSanitizer:
    """Text sanitization for free-text fields (notes, return reasons)"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Trim, cap length, drop null bytes and collapse runs of spaces.

        HTML escaping is left to whoever renders the text.
        """
        if not text:
            return ""
        sanitized = text.strip()[:max_length].replace("\x00", "")
        return re.sub(r" +", " ", sanitized)

    @staticmethod
    def check_for_injection(text: str | None) -> tuple[bool, str | None]:
        """Returns (is_safe, detected_pattern)"""
        if not text:
            return True, None
        for pattern in ValidationPatterns.XSS_PATTERNS:
            if pattern.search(text):
                return False, "XSS pattern detected"
        return True, None


class AmountValidator:
    """Monetary amount validation"""

    @staticmethod
    def validate(
        amount,
        min_value: Decimal = Decimal("0"),
        max_value: Decimal = Decimal("100000000"),
        allow_zero: bool = False,
    ) -> tuple[bool, str | None]:
        """
        Validate a monetary amount.

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return False, "Amount must be a number"

        if not value.is_finite():
            return False, "Amount must be a number"
        if value < min_value or (value == 0 and not allow_zero):
            return False, f"Amount must be greater than {min_value}"
        if value > max_value:
            return False, f"Amount cannot exceed {max_value}"
        if value != value.quantize(Decimal("0.01")):
            return False, "Amount cannot have more than 2 decimal places"
        return True, None


# Pydantic field validators for reuse
def phone_validator(v: str | None) -> str | None:
    """Pydantic field validator for phone numbers"""
    if v is None:
        return None
    if not PhoneNumberValidator.validate(v):
        raise ValueError("Invalid phone number format")
    return PhoneNumberValidator.normalize(v)


def sanitized_text_validator(v: str | None, max_length: int = 1000) -> str | None:
    """Pydantic field validator for free text"""
    if v is None:
        return None
    is_safe, reason = TextSanitizer.check_for_injection(v)
    if not is_safe:
        raise ValueError(f"Text rejected: {reason}")
    return TextSanitizer.sanitize(v, max_length)


def amount_validator(v):
    """Pydantic field validator for positive monetary amounts"""
    if v is None:
        return None
    is_valid, error = AmountValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return v
