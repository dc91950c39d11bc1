"""M-Pesa stub provider for local development and testing.

Accepts (or rejects) push requests in-process and can build matching
callback payloads, so the full payment flow runs without Safaricom.
"""

from __future__ import annotations

import uuid
from typing import Any

from shop4me.providers.base import StkPushRequest, StkPushResult


class MpesaStubProvider:
    """Stub STK push provider.

    Every request is recorded in ``requests``. Accepted requests get
    Daraja-shaped correlation ids which ``build_callback`` reuses.
    """

    provider_name = "mpesa_stub"

    def __init__(self, reject_with: tuple[str, str] | None = None):
        """Initialize stub provider.

        Args:
            reject_with: ``(error_code, message)`` to return for every request
                instead of accepting it.
        """
        self.reject_with = reject_with
        self.requests: list[StkPushRequest] = []
        # checkout_request_id -> (merchant_request_id, request)
        self._accepted: dict[str, tuple[str, StkPushRequest]] = {}

    async def request_payment(self, request: StkPushRequest) -> StkPushResult:
        """Accept the push request (stub implementation)."""
        self.requests.append(request)

        if self.reject_with is not None:
            code, message = self.reject_with
            return StkPushResult.failure(code, message)

        token = uuid.uuid4().hex
        merchant_request_id = f"{token[:5]}-{token[5:13]}-1"
        checkout_request_id = f"ws_CO_{token[:24].upper()}"
        self._accepted[checkout_request_id] = (merchant_request_id, request)

        return StkPushResult(
            accepted=True,
            merchant_request_id=merchant_request_id,
            checkout_request_id=checkout_request_id,
            response_code="0",
            response_description="Success. Request accepted for processing",
            customer_message="Success. Request accepted for processing",
        )

    def build_callback(
        self,
        checkout_request_id: str,
        *,
        result_code: int = 0,
        result_desc: str | None = None,
        receipt: str | None = "STUB000000",
        amount_minor: int | None = None,
    ) -> dict[str, Any]:
        """Build the ``Body.stkCallback`` payload Safaricom would post back.

        Amount and phone default to the original request. Failure callbacks
        carry no metadata.
        """
        merchant_request_id, request = self._accepted[checkout_request_id]
        callback: dict[str, Any] = {
            "MerchantRequestID": merchant_request_id,
            "CheckoutRequestID": checkout_request_id,
            "ResultCode": result_code,
            "ResultDesc": result_desc
            or (
                "The service request is processed successfully."
                if result_code == 0
                else "Request cancelled by user"
            ),
        }
        if result_code == 0:
            items: list[dict[str, Any]] = [
                {
                    "Name": "Amount",
                    "Value": amount_minor if amount_minor is not None else request.amount_minor,
                },
                {"Name": "TransactionDate", "Value": 20240101120000},
                {"Name": "PhoneNumber", "Value": int(request.phone)},
            ]
            if receipt is not None:
                items.insert(1, {"Name": "MpesaReceiptNumber", "Value": receipt})
            callback["CallbackMetadata"] = {"Item": items}
        return {"Body": {"stkCallback": callback}}
