"""Idempotent application of M-Pesa STK callbacks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.database import atomic
from shop4me.models import (
    AttemptStatus,
    Order,
    OrderStatus,
    PaymentAttempt,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
    utcnow,
)
from shop4me.money import from_minor_units
from shop4me.providers.base import StkCallback
from shop4me.providers.mpesa import parse_stk_callback
from shop4me.services.order_store import OrderStore
from shop4me.services.state_machine import OrderStateMachine, OrderStatusMachine

logger = logging.getLogger(__name__)


@dataclass
class CallbackResult:
    """What a callback did to the order.

    ``processed`` is False only when the callback could not be applied
    (unknown request id, success without a receipt).
    """

    processed: bool
    message: str
    order_id: UUID | None = None
    already_processed: bool = False


class CallbackProcessor:
    """Applies provider callbacks exactly once.

    The payment attempt row is claimed with a conditional UPDATE, so a
    duplicate delivery finds nothing to claim and changes nothing. All
    writes of one callback share one transaction.
    """

    def __init__(self, session: AsyncSession, *, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.store = OrderStore(session, clock)
        self.machine = OrderStatusMachine(self.store)

    async def process_callback(self, payload: Any) -> CallbackResult:
        """Parse and apply a raw callback body.

        Raises:
            CallbackPayloadError: Envelope is structurally invalid.
        """
        callback = parse_stk_callback(payload)
        return await self.apply(callback)

    async def apply(self, callback: StkCallback) -> CallbackResult:
        async with atomic(self.session):
            attempt = await self.store.get_attempt(callback.checkout_request_id)
            order = await self.store.get_by_checkout_request_id(
                callback.checkout_request_id, for_update=True
            )
            if order is None and attempt is not None:
                # Superseded attempt: the order has moved on to a newer request
                order = await self.store.get(attempt.order_id, for_update=True)

            if order is None:
                logger.warning(
                    "Callback for unknown CheckoutRequestID %s (MerchantRequestID %s)",
                    callback.checkout_request_id,
                    callback.merchant_request_id,
                )
                return CallbackResult(processed=False, message="Order not found")

            if order.is_paid:
                return await self._apply_to_paid_order(order, attempt, callback)

            if callback.succeeded:
                return await self._apply_success(order, attempt, callback)
            return await self._apply_failure(order, attempt, callback)

    async def _apply_success(
        self, order: Order, attempt: PaymentAttempt | None, callback: StkCallback
    ) -> CallbackResult:
        receipt = callback.receipt_number
        if receipt is None:
            logger.error(
                "Successful callback %s for order %s has no MpesaReceiptNumber",
                callback.checkout_request_id,
                order.id,
            )
            return CallbackResult(
                processed=False, message="Missing receipt number", order_id=order.id
            )

        if not await self._claim(attempt, callback, AttemptStatus.PAID, receipt):
            return self._duplicate(order)

        values: dict[str, Any] = {
            "payment_status": PaymentStatus.PAID,
            "mpesa_receipt": receipt,
            "amount_collected": self._collected_amount(callback, order),
            "payment_due_at": None,
        }
        expected = {"payment_status": order.payment_status}
        note = f"Payment received. M-Pesa Receipt: {receipt}"

        if order.order_status in (OrderStatus.DRAFT, OrderStatus.PENDING_PAYMENT):
            await self.machine.transition(
                order,
                OrderStatus.PROCESSING,
                actor=StatusActor.SYSTEM,
                note=note,
                payment_values=values,
                expected=expected,
            )
        elif order.order_status == OrderStatus.CANCELLED:
            # Money arrived for an order that is no longer active
            values["reconciliation_status"] = ReconciliationStatus.DISCREPANCY
            await self.machine.record_change(
                order,
                values,
                actor=StatusActor.SYSTEM,
                note=f"{note}. Order was already cancelled; refund or reactivation required",
                expected=expected,
            )
            logger.warning("Payment %s received for cancelled order %s", receipt, order.id)
        else:
            await self.machine.record_change(
                order, values, actor=StatusActor.SYSTEM, note=note, expected=expected
            )

        logger.info("Payment successful for order %s: %s", order.id, receipt)
        return CallbackResult(processed=True, message="Payment recorded", order_id=order.id)

    async def _apply_to_paid_order(
        self, order: Order, attempt: PaymentAttempt | None, callback: StkCallback
    ) -> CallbackResult:
        """Resolve a late attempt on an order that is already paid.

        A success carrying a different receipt is a second real charge: the
        attempt keeps its own receipt and the order is flagged for refund.
        """
        if attempt is None or attempt.status != AttemptStatus.PENDING:
            return self._duplicate(order)

        if not callback.succeeded:
            if not await self._claim(attempt, callback, AttemptStatus.FAILED, None):
                return self._duplicate(order)
            return CallbackResult(
                processed=True, message="Superseded payment request resolved", order_id=order.id
            )

        receipt = callback.receipt_number
        if receipt is None or receipt == order.mpesa_receipt:
            return self._duplicate(order)
        if not await self._claim(attempt, callback, AttemptStatus.PAID, receipt):
            return self._duplicate(order)

        await self.machine.record_change(
            order,
            {"reconciliation_status": ReconciliationStatus.DISCREPANCY},
            actor=StatusActor.SYSTEM,
            note=(
                f"Second payment received. M-Pesa Receipt: {receipt}. "
                f"Order was already paid with {order.mpesa_receipt}; refund required"
            ),
            expected={"payment_status": PaymentStatus.PAID},
        )
        logger.warning(
            "Second payment %s received for already paid order %s (receipt %s)",
            receipt,
            order.id,
            order.mpesa_receipt,
        )
        return CallbackResult(
            processed=True, message="Second payment flagged for refund", order_id=order.id
        )

    async def _apply_failure(
        self, order: Order, attempt: PaymentAttempt | None, callback: StkCallback
    ) -> CallbackResult:
        if not await self._claim(attempt, callback, AttemptStatus.FAILED, None):
            return self._duplicate(order)

        if order.checkout_request_id != callback.checkout_request_id:
            logger.info(
                "Failure for superseded request %s on order %s; order left unchanged",
                callback.checkout_request_id,
                order.id,
            )
            return CallbackResult(
                processed=True, message="Superseded payment request resolved", order_id=order.id
            )

        if order.payment_status != PaymentStatus.PENDING:
            return self._duplicate(order)

        reason = f"Payment failed: {callback.result_desc}"
        values: dict[str, Any] = {
            "payment_status": PaymentStatus.FAILED,
            "payment_due_at": None,
        }
        expected = {"payment_status": PaymentStatus.PENDING}

        if OrderStateMachine.allows(StatusActor.SYSTEM, order.order_status, OrderStatus.CANCELLED):
            values["cancellation_reason"] = reason
            await self.machine.transition(
                order,
                OrderStatus.CANCELLED,
                actor=StatusActor.SYSTEM,
                note=reason,
                payment_values=values,
                expected=expected,
            )
        else:
            await self.machine.record_change(
                order, values, actor=StatusActor.SYSTEM, note=reason, expected=expected
            )

        logger.info("Payment failed for order %s: %s", order.id, callback.result_desc)
        return CallbackResult(processed=True, message="Payment failure recorded", order_id=order.id)

    async def _claim(
        self,
        attempt: PaymentAttempt | None,
        callback: StkCallback,
        status: AttemptStatus,
        receipt: str | None,
    ) -> bool:
        """Resolve the attempt row; False if another delivery already did."""
        if attempt is None:
            # Requests issued before attempts were recorded rely on the order guards
            return True
        return await self.store.resolve_attempt(
            callback.checkout_request_id,
            status,
            result_code=callback.result_code,
            result_desc=callback.result_desc,
            mpesa_receipt=receipt,
        )

    def _duplicate(self, order: Order) -> CallbackResult:
        logger.info("Duplicate callback for order %s ignored", order.id)
        return CallbackResult(
            processed=True, message="Already processed", order_id=order.id, already_processed=True
        )

    def _collected_amount(self, callback: StkCallback, order: Order) -> Decimal | None:
        if callback.amount_minor is None:
            logger.warning("Callback for order %s has no Amount", order.id)
            return None
        try:
            return from_minor_units(callback.amount_minor)
        except ValueError:
            logger.warning(
                "Callback for order %s has unreadable Amount %r", order.id, callback.amount_minor
            )
            return None
