"""
Custom Exception Hierarchy

Structured exceptions for consistent error handling across the application.
Every domain error carries a stable error code and is rendered by the API
exception handlers as ``{"error": {"code", "message", "details"}}``.
"""
from decimal import Decimal
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_ALREADY_ASSIGNED = "ERR_2002"
    ORDER_COUNTRY_MISMATCH = "ERR_2003"
    ORDER_LOCKED = "ERR_2004"
    ORDER_ACCESS_DENIED = "ERR_2005"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"
    INVALID_USER_ROLE = "ERR_3004"

    # Wallet / remittance errors (4xxx)
    REMITTANCE_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_BALANCE = "ERR_4002"
    BELOW_MINIMUM = "ERR_4005"
    REMITTANCE_INVALID_STATUS = "ERR_4006"

    # External service errors (5xxx)
    RECEIPT_SERVICE_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"

    # Inventory errors (7xxx)
    INSUFFICIENT_STOCK = "ERR_7001"
    DUPLICATE_ADJUSTMENT = "ERR_7002"

    # Investment errors (8xxx)
    INVESTMENT_NOT_FOUND = "ERR_8001"
    INVESTMENT_INVALID_STATUS = "ERR_8002"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class UserNotFoundError(NotFoundException):
    def __init__(self, user_id: int):
        super().__init__("User", user_id, error_code=ErrorCode.USER_NOT_FOUND)


class InvalidUserRoleError(AppException):
    """Raised when a user does not hold the role an operation needs"""

    def __init__(self, user_id: int, role: str, required: str):
        super().__init__(
            message=f"User {user_id} has role '{role}', required '{required}'",
            error_code=ErrorCode.INVALID_USER_ROLE,
            status_code=400,
            details={"user_id": user_id, "role": role, "required_role": required}
        )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderException(AppException):
    """Base exception for order-related errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        order_id: int | None = None,
        status_code: int = 409,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        if order_id:
            self.details["order_id"] = order_id


class OrderNotFoundError(OrderException):
    def __init__(self, order_id: int):
        super().__init__(
            message=f"Order not found: {order_id}",
            error_code=ErrorCode.ORDER_NOT_FOUND,
            order_id=order_id,
            status_code=404,
        )


class CountryMismatchError(OrderException):
    """Raised when a driver is bound to an order outside the driver's country"""

    def __init__(self, order_id: int, order_country: str, driver_country: str | None):
        super().__init__(
            message=(
                f"Driver country '{driver_country}' does not match "
                f"order {order_id} country '{order_country}'"
            ),
            error_code=ErrorCode.ORDER_COUNTRY_MISMATCH,
            order_id=order_id,
            details={"order_country": order_country, "driver_country": driver_country},
        )


class OrderAlreadyAssignedError(OrderException):
    def __init__(self, order_id: int, driver_id: int):
        super().__init__(
            message=f"Order {order_id} is already assigned to another driver",
            error_code=ErrorCode.ORDER_ALREADY_ASSIGNED,
            order_id=order_id,
            details={"current_driver_id": driver_id},
        )


class OrderAccessError(OrderException):
    """Raised when a driver touches an order that is not assigned to it"""

    def __init__(self, order_id: int, driver_id: int):
        super().__init__(
            message=f"Driver {driver_id} is not assigned to order {order_id}",
            error_code=ErrorCode.ORDER_ACCESS_DENIED,
            order_id=order_id,
            status_code=403,
            details={"driver_id": driver_id},
        )


class OrderLockedError(OrderException):
    """Raised on any edit of an order whose return was verified"""

    def __init__(self, order_id: int):
        super().__init__(
            message=f"Order {order_id} is locked after return verification",
            error_code=ErrorCode.ORDER_LOCKED,
            order_id=order_id,
        )


class InvalidStatusTransitionError(OrderException):
    def __init__(self, order_id: int, current_status: str, target_status: str):
        super().__init__(
            message=f"Invalid transition from '{current_status}' to '{target_status}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            order_id=order_id,
            details={"current_status": current_status, "target_status": target_status},
        )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

class InsufficientStockError(AppException):
    """Raised when a delivery would push delivered quantity above purchases"""

    def __init__(self, product_id: int, country: str, purchased: int, delivered: int, requested: int):
        super().__init__(
            message=(
                f"Insufficient stock for product {product_id} in {country}: "
                f"purchased {purchased}, delivered {delivered}, requested {requested}"
            ),
            error_code=ErrorCode.INSUFFICIENT_STOCK,
            status_code=409,
            details={
                "product_id": product_id,
                "country": country,
                "purchased_qty": purchased,
                "delivered_qty": delivered,
                "requested_qty": requested,
            }
        )


class DuplicateAdjustmentError(AppException):
    """Raised by the ledgers when an adjustment for an order was already recorded.

    The order state machine treats it as an idempotent replay.
    """

    def __init__(self, ledger: str, order_id: int):
        super().__init__(
            message=f"{ledger} adjustment already recorded for order {order_id}",
            error_code=ErrorCode.DUPLICATE_ADJUSTMENT,
            status_code=409,
            details={"ledger": ledger, "order_id": order_id}
        )


# ---------------------------------------------------------------------------
# Investments
# ---------------------------------------------------------------------------

class InvestmentNotFoundError(NotFoundException):
    def __init__(self, investment_id: int):
        super().__init__("Investment", investment_id, error_code=ErrorCode.INVESTMENT_NOT_FOUND)


class InvestmentStatusError(AppException):
    """Raised when an investment that already ended is ended differently"""

    def __init__(self, investment_id: int, current_status: str, target_status: str):
        super().__init__(
            message=f"Investment {investment_id} is '{current_status}', cannot become '{target_status}'",
            error_code=ErrorCode.INVESTMENT_INVALID_STATUS,
            status_code=409,
            details={
                "investment_id": investment_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


# ---------------------------------------------------------------------------
# Wallets / remittances
# ---------------------------------------------------------------------------

class WalletException(AppException):
    """Base exception for wallet and remittance errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        user_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if user_id:
            self.details["user_id"] = user_id


class InsufficientBalanceError(WalletException):
    def __init__(self, user_id: int, available: Decimal, requested: Decimal, currency: str):
        super().__init__(
            message=f"Requested {requested} {currency} exceeds available balance {available} {currency}",
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            user_id=user_id,
            details={
                "available": str(available),
                "requested": str(requested),
                "currency": currency,
            }
        )


class BelowMinimumError(WalletException):
    def __init__(self, user_id: int, amount: Decimal, minimum: Decimal, currency: str):
        super().__init__(
            message=f"Minimum remittance is {minimum} {currency}",
            error_code=ErrorCode.BELOW_MINIMUM,
            user_id=user_id,
            details={"amount": str(amount), "minimum": str(minimum), "currency": currency}
        )


class RemittanceNotFoundError(NotFoundException):
    def __init__(self, remittance_id: int):
        super().__init__("Remittance", remittance_id, error_code=ErrorCode.REMITTANCE_NOT_FOUND)


class RemittanceStatusError(WalletException):
    def __init__(self, remittance_id: int, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} remittance {remittance_id} in status '{current_status}'",
            error_code=ErrorCode.REMITTANCE_INVALID_STATUS,
            details={
                "remittance_id": remittance_id,
                "current_status": current_status,
                "action": action,
            }
        )
        self.status_code = 409


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------

class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class ReceiptServiceError(ExternalServiceException):
    """Raised when the receipt renderer rejects or fails a delivery"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="receipts",
            message=f"Receipt service error: {message}",
            error_code=ErrorCode.RECEIPT_SERVICE_ERROR,
            details=details
        )

    @classmethod
    def from_response(cls, response: Any, *, max_response_chars: int = 500) -> "ReceiptServiceError":
        """Build from an httpx response, truncating the body for the log."""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=f"returned status {status_code}",
            details={
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )
