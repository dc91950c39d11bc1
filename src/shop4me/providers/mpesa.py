"""M-Pesa Daraja client: OAuth token, STK push and callback parsing.

See https://developer.safaricom.co.ke/docs
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from shop4me.config import MpesaConfig
from shop4me.errors import CallbackPayloadError
from shop4me.models.base import utcnow
from shop4me.providers.base import ProviderError, StkCallback, StkPushRequest, StkPushResult

logger = logging.getLogger(__name__)

MPESA_URLS = {
    "sandbox": {
        "oauth": "https://sandbox.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials",
        "stkpush": "https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest",
    },
    "production": {
        "oauth": "https://api.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials",
        "stkpush": "https://api.safaricom.co.ke/mpesa/stkpush/v1/processrequest",
    },
}

# Daraja timestamps are East Africa Time
EAT = timezone(timedelta(hours=3), "EAT")
TRANSACTION_TYPE = "CustomerPayBillOnline"


class DarajaClient:
    """STK push client for Safaricom Daraja.

    The bearer token is cached until shortly before ``expires_in`` so most
    push requests cost a single HTTP call.
    """

    provider_name = "mpesa_daraja"
    TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)

    def __init__(
        self,
        config: MpesaConfig,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if config.environment not in MPESA_URLS:
            raise ValueError(f"No Daraja endpoints for environment '{config.environment}'")
        self.config = config
        self.clock = clock
        self._http = http_client
        self._owns_http = http_client is None
        self._token: str | None = None
        self._token_expires_at: datetime | None = None

        problems = config.missing_fields()
        if problems:
            logger.warning("M-Pesa environment not fully configured: %s", ", ".join(problems))

    @property
    def urls(self) -> dict[str, str]:
        return MPESA_URLS[self.config.environment]

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_seconds))
        return self._http

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def generate_timestamp(self, now: datetime | None = None) -> str:
        """Timestamp in the YYYYMMDDHHmmss format Daraja expects."""
        return (now or self.clock()).astimezone(EAT).strftime("%Y%m%d%H%M%S")

    def generate_password(self, timestamp: str) -> str:
        """Base64(Shortcode + Passkey + Timestamp)."""
        if not self.config.shortcode or not self.config.passkey:
            raise ProviderError("CONFIG_ERROR", "M-Pesa shortcode and passkey are required")
        raw = f"{self.config.shortcode}{self.config.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    async def get_access_token(self) -> str:
        """Fetch (or reuse) an OAuth bearer token."""
        now = self.clock()
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token

        response = await self._client().get(
            self.urls["oauth"],
            auth=(self.config.consumer_key or "", self.config.consumer_secret or ""),
            timeout=self.config.timeout_seconds,
        )
        if response.is_error:
            logger.error("M-Pesa OAuth failed: %s %s", response.status_code, response.text)
            raise ProviderError(
                "AUTH_ERROR", f"Failed to get M-Pesa access token ({response.status_code})"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("AUTH_ERROR", "M-Pesa token response was not JSON") from e
        token = data.get("access_token")
        if not token:
            raise ProviderError("AUTH_ERROR", "M-Pesa token response had no access_token")

        expires_in = int(data.get("expires_in", 3599))
        self._token = token
        self._token_expires_at = now + timedelta(seconds=expires_in) - self.TOKEN_EXPIRY_MARGIN
        return token

    def build_payload(self, request: StkPushRequest, timestamp: str) -> dict[str, Any]:
        """STK push request body."""
        return {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.generate_password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": request.amount_minor,
            "PartyA": request.phone,
            "PartyB": self.config.shortcode,
            "PhoneNumber": request.phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": request.account_reference,
            "TransactionDesc": request.transaction_desc,
        }

    async def request_payment(self, request: StkPushRequest) -> StkPushResult:
        """Initiate an STK push. Never raises for provider or transport failures."""
        problems = self.config.missing_fields()
        if problems:
            return self._failure("CONFIG_ERROR", "M-Pesa configuration incomplete")

        try:
            token = await self.get_access_token()
            timestamp = self.generate_timestamp()
            response = await self._client().post(
                self.urls["stkpush"],
                json=self.build_payload(request, timestamp),
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.timeout_seconds,
            )
        except ProviderError as e:
            return self._failure(e.code, e.message)
        except httpx.TimeoutException:
            return self._failure("TIMEOUT", "M-Pesa did not respond in time")
        except httpx.HTTPError as e:
            logger.warning("M-Pesa transport error for order %s: %s", request.order_id, e)
            return self._failure("TRANSPORT_ERROR", "Could not reach M-Pesa")

        try:
            data = response.json()
        except ValueError:
            return self._failure(
                f"HTTP_{response.status_code}" if response.is_error else "INVALID_RESPONSE",
                "M-Pesa returned an unreadable response",
            )

        if response.is_error:
            if response.status_code == 401:
                self._token = None
            return self._failure(
                str(data.get("errorCode") or f"HTTP_{response.status_code}"),
                data.get("errorMessage") or "STK Push request failed",
            )

        response_code = str(data.get("ResponseCode", ""))
        if response_code == "0" and data.get("CheckoutRequestID") and data.get("MerchantRequestID"):
            return StkPushResult(
                accepted=True,
                merchant_request_id=data["MerchantRequestID"],
                checkout_request_id=data["CheckoutRequestID"],
                response_code=response_code,
                response_description=data.get("ResponseDescription"),
                customer_message=data.get("CustomerMessage"),
            )

        return self._failure(
            response_code or "REJECTED",
            data.get("ResponseDescription") or "STK Push request was rejected",
        )

    def _failure(self, code: str, message: str) -> StkPushResult:
        logger.warning("STK push failed: %s %s", code, message)
        return StkPushResult.failure(code, message)


def parse_stk_callback(payload: Any) -> StkCallback:
    """Parse the ``Body.stkCallback`` envelope.

    Raises CallbackPayloadError when the envelope or either correlation id
    is missing. Metadata items are keyed by ``Name``.
    """
    if not isinstance(payload, dict):
        raise CallbackPayloadError("Invalid callback structure")
    body = payload.get("Body")
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        raise CallbackPayloadError("Invalid callback structure")

    merchant_request_id = callback.get("MerchantRequestID")
    checkout_request_id = callback.get("CheckoutRequestID")
    if not merchant_request_id or not checkout_request_id:
        raise CallbackPayloadError("Missing required fields")

    try:
        result_code = int(callback.get("ResultCode"))
    except (TypeError, ValueError) as e:
        raise CallbackPayloadError("Missing or invalid ResultCode") from e

    metadata: dict[str, Any] = {}
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    for item in items:
        if isinstance(item, dict) and "Name" in item:
            metadata[item["Name"]] = item.get("Value")

    return StkCallback(
        merchant_request_id=str(merchant_request_id),
        checkout_request_id=str(checkout_request_id),
        result_code=result_code,
        result_desc=str(callback.get("ResultDesc") or ""),
        metadata=metadata,
    )
