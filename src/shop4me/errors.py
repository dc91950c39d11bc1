"""Exception hierarchy for the order engine.

Messages are written for end users; internal detail goes to the log.
"""

from __future__ import annotations

from uuid import UUID


class Shop4MeError(Exception):
    """Base exception for all engine errors."""

    code = "ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(Shop4MeError):
    """Input rejected before anything was persisted."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_errors: dict[str, str] | None = None):
        super().__init__(message)
        self.field_errors = field_errors or {}


class PhoneNumberError(ValidationError):
    """Phone number cannot be normalized to the provider format."""

    code = "INVALID_PHONE"

    def __init__(self, phone: str, field: str = "phone"):
        message = (
            f"Invalid phone number format: {phone}. "
            "Expected format: +254XXXXXXXXX or 0XXXXXXXXX"
        )
        super().__init__(message, {field: message})
        self.phone = phone


class AuthenticationError(Shop4MeError):
    """No usable identity on the request."""

    code = "UNAUTHENTICATED"


class AuthorizationError(Shop4MeError):
    """The actor may not perform this action."""

    code = "FORBIDDEN"


class OrderNotFoundError(Shop4MeError):
    """Order does not exist."""

    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: UUID | str):
        super().__init__("Order not found")
        self.order_id = order_id


class ConflictError(Shop4MeError):
    """Request conflicts with the order's current state."""

    code = "CONFLICT"


class PaymentInProgressError(ConflictError):
    """An unresolved push request is still inside its cooldown window."""

    code = "PAYMENT_IN_PROGRESS"

    def __init__(self) -> None:
        super().__init__(
            "Payment is already in progress. Please wait a few minutes before trying again."
        )


class OrderAlreadyPaidError(ConflictError):
    """Order has already been paid."""

    code = "ALREADY_PAID"

    def __init__(self) -> None:
        super().__init__("Order has already been paid")


class OrderCancelledError(ConflictError):
    """Order has been cancelled."""

    code = "ORDER_CANCELLED"

    def __init__(self) -> None:
        super().__init__("Order has been cancelled")


class InvalidTransitionError(ConflictError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class OverrideRequiredError(ConflictError):
    """Transition leaves a terminal status and needs explicit confirmation."""

    code = "CONFIRMATION_REQUIRED"

    def __init__(self, from_status: str, to_status: str, warning: str):
        self.from_status = from_status
        self.to_status = to_status
        self.warning = warning
        super().__init__(warning)


class CallbackPayloadError(Shop4MeError):
    """Provider callback is structurally invalid."""

    code = "INVALID_CALLBACK"
