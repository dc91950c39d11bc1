"""Payment initiation: STK push for an order."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.config import MpesaConfig, PaymentPolicy
from shop4me.database import atomic
from shop4me.errors import (
    OrderAlreadyPaidError,
    OrderCancelledError,
    PaymentInProgressError,
    ValidationError,
)
from shop4me.models import Order, OrderStatus, PaymentStatus, StatusActor, StatusChannel, utcnow
from shop4me.money import to_minor_units, to_money
from shop4me.phone import normalize_msisdn
from shop4me.providers.base import PushPaymentProvider, StkPushRequest
from shop4me.services.order_store import OrderStore
from shop4me.services.state_machine import OrderStatusMachine

logger = logging.getLogger(__name__)


@dataclass
class PaymentInitiationResult:
    """Outcome of an initiation request.

    ``ok`` is False for provider rejections and transport failures; the
    order is left untouched in that case.
    """

    ok: bool
    order_id: UUID
    merchant_request_id: str | None = None
    checkout_request_id: str | None = None
    customer_message: str | None = None
    error_code: str | None = None
    message: str | None = None


class PaymentService:
    """Initiates push payments and records accepted requests.

    The provider is called outside any row lock. Acceptance is persisted
    in one transaction: attempt row, correlation ids, deadline, status
    and audit entry.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: PushPaymentProvider,
        *,
        mpesa_config: MpesaConfig | None = None,
        policy: PaymentPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.provider = provider
        self.mpesa_config = mpesa_config or MpesaConfig(environment="stub")
        self.policy = policy or PaymentPolicy()
        self.clock = clock
        self.store = OrderStore(session, clock)
        self.machine = OrderStatusMachine(self.store)

    async def initiate_payment(
        self,
        order_id: UUID,
        phone: str,
        amount: Decimal | int | str | None = None,
        *,
        actor: StatusActor = StatusActor.CUSTOMER,
        actor_user_id: UUID | None = None,
        channel: StatusChannel = StatusChannel.WEB,
    ) -> PaymentInitiationResult:
        """Send an STK push for an order.

        Args:
            order_id: Order to charge.
            phone: Payer phone in any accepted local/international format.
            amount: Optional amount; must match the order total within the
                reconciliation tolerance when the order has one.

        Raises:
            PhoneNumberError: Phone cannot be normalized.
            OrderNotFoundError: Unknown order.
            OrderAlreadyPaidError / OrderCancelledError / PaymentInProgressError
            ValidationError: Amount mismatch or nothing to charge.
        """
        normalized_phone = normalize_msisdn(phone, self.mpesa_config.country_code)

        order = await self.store.require(order_id)
        self._check_payable(order)
        charge = self._charge_amount(order, amount)
        amount_minor = to_minor_units(charge)
        if amount_minor <= 0:
            raise ValidationError("Amount must be greater than zero", {"amount": "Must be positive"})

        request = StkPushRequest(
            order_id=str(order.id),
            phone=normalized_phone,
            amount_minor=amount_minor,
            account_reference=f"{self.mpesa_config.account_reference_prefix}-{order.id}",
            transaction_desc=f"Shop4Me Order {order.id}",
        )
        result = await self.provider.request_payment(request)

        if not result.accepted:
            logger.warning(
                "STK push for order %s not accepted: %s %s",
                order.id,
                result.error_code,
                result.error_message,
            )
            return PaymentInitiationResult(
                ok=False,
                order_id=order.id,
                error_code=result.error_code,
                message=result.error_message or "Failed to initiate payment",
            )

        async with atomic(self.session):
            # Re-check under the row lock: another request may have won meanwhile
            order = await self.store.require(order_id, for_update=True)
            try:
                self._check_payable(order)
            except (OrderAlreadyPaidError, OrderCancelledError, PaymentInProgressError):
                logger.warning(
                    "Order %s changed while STK push %s was in flight; discarding it",
                    order.id,
                    result.checkout_request_id,
                )
                raise

            await self.store.record_attempt(
                order.id,
                merchant_request_id=result.merchant_request_id,
                checkout_request_id=result.checkout_request_id,
                phone=normalized_phone,
                amount_minor=amount_minor,
            )
            values = {
                "merchant_request_id": result.merchant_request_id,
                "checkout_request_id": result.checkout_request_id,
                "payment_status": PaymentStatus.PENDING,
                "payment_due_at": self.clock() + self.policy.payment_window,
            }
            note = (
                f"STK Push sent (MerchantRequestID: {result.merchant_request_id}, "
                f"CheckoutRequestID: {result.checkout_request_id})"
            )
            if order.order_status == OrderStatus.DRAFT:
                await self.machine.transition(
                    order,
                    OrderStatus.PENDING_PAYMENT,
                    actor=actor,
                    note=note,
                    actor_user_id=actor_user_id,
                    channel=channel,
                    payment_values=values,
                )
            else:
                await self.machine.record_change(
                    order,
                    values,
                    actor=actor,
                    note=note,
                    actor_user_id=actor_user_id,
                    channel=channel,
                )

        logger.info("STK push accepted for order %s: %s", order.id, result.checkout_request_id)
        return PaymentInitiationResult(
            ok=True,
            order_id=order.id,
            merchant_request_id=result.merchant_request_id,
            checkout_request_id=result.checkout_request_id,
            customer_message=result.customer_message,
        )

    def _check_payable(self, order: Order) -> None:
        if order.payment_status == PaymentStatus.PAID:
            raise OrderAlreadyPaidError()
        if order.order_status == OrderStatus.CANCELLED:
            raise OrderCancelledError()
        if order.has_unresolved_payment_request():
            elapsed = self.clock() - order.updated_at
            if elapsed < self.policy.retry_cooldown:
                raise PaymentInProgressError()

    def _charge_amount(self, order: Order, amount: Decimal | int | str | None) -> Decimal:
        """Amount to charge: the order total, or the requested amount if it has none."""
        if amount is None:
            if order.total_estimate is None:
                raise ValidationError(
                    "Order has no amount to charge", {"amount": "Amount is required"}
                )
            return order.total_estimate

        try:
            requested = to_money(amount)
        except ValueError as e:
            raise ValidationError("Invalid amount", {"amount": "Must be a number"}) from e

        if order.total_estimate is None:
            return requested
        if abs(requested - order.total_estimate) > self.policy.reconciliation_tolerance:
            raise ValidationError(
                "Amount does not match the order total",
                {"amount": f"Expected {order.total_estimate}"},
            )
        return order.total_estimate
