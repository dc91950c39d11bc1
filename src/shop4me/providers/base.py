"""Base protocol and types for push-payment providers.

All provider adapters must implement the PushPaymentProvider protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class ProviderError(Exception):
    """Provider call failed; carries a short code and a readable message."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


@dataclass(frozen=True)
class StkPushRequest:
    """Push-payment request for one order."""

    order_id: str
    phone: str  # normalized, e.g. 2547XXXXXXXX
    amount_minor: int
    account_reference: str
    transaction_desc: str


@dataclass(frozen=True)
class StkPushResult:
    """Normalized synchronous provider response."""

    accepted: bool
    merchant_request_id: str | None = None
    checkout_request_id: str | None = None
    response_code: str | None = None
    response_description: str | None = None
    customer_message: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def failure(cls, error_code: str, error_message: str) -> StkPushResult:
        """Build a rejected/transport-failure result."""
        return cls(accepted=False, error_code=error_code, error_message=error_message)


@dataclass(frozen=True)
class StkCallback:
    """Parsed asynchronous STK result."""

    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_desc: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """Provider reports the payer completed the payment."""
        return self.result_code == 0

    @property
    def amount_minor(self) -> Any:
        """``Amount`` metadata item (minor units), if present."""
        return self.metadata.get("Amount")

    @property
    def receipt_number(self) -> str | None:
        """``MpesaReceiptNumber`` metadata item, if present."""
        value = self.metadata.get("MpesaReceiptNumber")
        return str(value) if value not in (None, "") else None


class PushPaymentProvider(Protocol):
    """Protocol for push-payment provider adapters.

    The payment service uses these adapters without knowing provider
    specifics. Implementations must never raise for provider rejections or
    transport problems; those come back as ``StkPushResult.failure``.
    """

    provider_name: str

    async def request_payment(self, request: StkPushRequest) -> StkPushResult:
        """Ask the provider to prompt the payer's phone.

        Args:
            request: Order reference, normalized phone and amount.

        Returns:
            StkPushResult with correlation ids when accepted.
        """
        ...
