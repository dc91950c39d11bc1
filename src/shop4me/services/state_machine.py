"""Order status state machine with transition validation.

Every change to ``order_status`` or ``payment_status`` goes through
``OrderStatusMachine`` so it is paired with exactly one StatusLog entry in
the caller's transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from shop4me.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    OverrideRequiredError,
)
from shop4me.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    StatusActor,
    StatusChannel,
    StatusLog,
)
from shop4me.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class OrderStateMachine:
    """Transition rules for the fulfillment axis.

    Allowed transitions:
    - DRAFT → PENDING_PAYMENT → PROCESSING → SHOPPING → OUT_FOR_DELIVERY → DELIVERED
    - DRAFT → PROCESSING (payment confirmed before the order was submitted)
    - any non-terminal status → CANCELLED

    CANCELLED and DELIVERED are terminal. An admin may leave them only with
    a confirmed override.
    """

    VALID_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
        OrderStatus.DRAFT: [
            OrderStatus.PENDING_PAYMENT,
            OrderStatus.PROCESSING,
            OrderStatus.CANCELLED,
        ],
        OrderStatus.PENDING_PAYMENT: [OrderStatus.PROCESSING, OrderStatus.CANCELLED],
        OrderStatus.PROCESSING: [OrderStatus.SHOPPING, OrderStatus.CANCELLED],
        OrderStatus.SHOPPING: [OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED],
        OrderStatus.OUT_FOR_DELIVERY: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
        OrderStatus.DELIVERED: [],  # Terminal state
        OrderStatus.CANCELLED: [],  # Terminal state
    }

    TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    # Payment-driven edges; cancellation of any non-terminal order is added in allows()
    SYSTEM_TRANSITIONS = {
        (OrderStatus.DRAFT, OrderStatus.PENDING_PAYMENT),
        (OrderStatus.PENDING_PAYMENT, OrderStatus.PROCESSING),
        (OrderStatus.DRAFT, OrderStatus.PROCESSING),
    }

    CUSTOMER_TRANSITIONS = {
        (OrderStatus.DRAFT, OrderStatus.PENDING_PAYMENT),
    }

    # Advancing into these while payment is pending is allowed but flagged
    PAYMENT_SENSITIVE = {
        OrderStatus.SHOPPING,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
    }

    @classmethod
    def can_transition(cls, from_status: OrderStatus, to_status: OrderStatus) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def is_terminal(cls, status: OrderStatus) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def allows(cls, actor: StatusActor, from_status: OrderStatus, to_status: OrderStatus) -> bool:
        """Check whether ``actor`` may perform a (valid) transition."""
        if actor == StatusActor.ADMIN:
            return True
        if actor == StatusActor.SYSTEM:
            if to_status == OrderStatus.CANCELLED:
                return not cls.is_terminal(from_status)
            return (from_status, to_status) in cls.SYSTEM_TRANSITIONS
        return (from_status, to_status) in cls.CUSTOMER_TRANSITIONS

    @classmethod
    def override_warning(cls, from_status: OrderStatus) -> str | None:
        """Warning shown before leaving a terminal status."""
        if from_status == OrderStatus.DELIVERED:
            return "This order is already marked as delivered. Are you sure you want to change it?"
        if from_status == OrderStatus.CANCELLED:
            return "This order was cancelled. Are you sure you want to reactivate it?"
        return None

    @classmethod
    def validate_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
        actor: StatusActor,
        *,
        confirm_override: bool = False,
    ) -> None:
        """Validate a transition for an actor.

        Raises:
            InvalidTransitionError: Edge is not in the lifecycle.
            OverrideRequiredError: Admin leaving a terminal status without confirmation.
            AuthorizationError: Actor may not perform this edge.
        """
        if from_status == to_status:
            raise InvalidTransitionError(from_status.value, to_status.value, "status unchanged")

        if cls.is_terminal(from_status):
            if actor != StatusActor.ADMIN:
                raise InvalidTransitionError(
                    from_status.value, to_status.value, "order is in a terminal status"
                )
            if not confirm_override:
                raise OverrideRequiredError(
                    from_status.value, to_status.value, cls.override_warning(from_status) or ""
                )
            return

        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status.value, to_status.value)

        if not cls.allows(actor, from_status, to_status):
            raise AuthorizationError(
                f"{actor.value.lower()} may not move an order from "
                f"{from_status.value} to {to_status.value}"
            )

    @classmethod
    def advisory_warnings(cls, order: Order, to_status: OrderStatus) -> list[str]:
        """Non-blocking warnings for an admin status change."""
        warnings: list[str] = []
        if order.payment_status == PaymentStatus.PENDING and to_status in cls.PAYMENT_SENSITIVE:
            warnings.append("Payment is still pending. Consider waiting for payment confirmation.")
        override = cls.override_warning(order.order_status)
        if override and to_status != order.order_status:
            warnings.append(override)
        return warnings

    @classmethod
    def get_next_statuses(cls, current_status: OrderStatus) -> list[OrderStatus]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])


@dataclass
class TransitionResult:
    """Outcome of a status change."""

    order_id: UUID
    from_status: OrderStatus
    to_status: OrderStatus
    log: StatusLog
    warnings: list[str] = field(default_factory=list)


class OrderStatusMachine:
    """Applies validated status changes and writes the matching audit entry.

    Runs inside the caller's transaction; it never commits.
    """

    def __init__(self, store: OrderStore):
        self.store = store

    async def transition(
        self,
        order: Order,
        to_status: OrderStatus,
        *,
        actor: StatusActor,
        note: str | None = None,
        actor_user_id: UUID | None = None,
        channel: StatusChannel = StatusChannel.WEB,
        confirm_override: bool = False,
        payment_values: dict[str, Any] | None = None,
        expected: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Move ``order`` to ``to_status`` together with any payment fields.

        The UPDATE is predicated on the status the caller observed, so a
        concurrent change surfaces as ConflictError instead of being
        overwritten.
        """
        from_status = order.order_status
        OrderStateMachine.validate_transition(
            from_status, to_status, actor, confirm_override=confirm_override
        )
        warnings = OrderStateMachine.advisory_warnings(order, to_status)

        values = {"order_status": to_status, **(payment_values or {})}
        updated = await self.store.update_order(
            order.id,
            values,
            expected={"order_status": from_status, **(expected or {})},
        )
        if not updated:
            raise ConflictError("Order was modified by another request. Please retry.")

        log = await self.store.append_status_log(
            order.id,
            to_status,
            actor=actor,
            note=note,
            actor_user_id=actor_user_id,
            channel=channel,
        )
        logger.info(
            "Order %s: %s -> %s by %s", order.id, from_status.value, to_status.value, actor.value
        )
        return TransitionResult(order.id, from_status, to_status, log, warnings)

    async def record_change(
        self,
        order: Order,
        values: dict[str, Any],
        *,
        actor: StatusActor,
        note: str,
        actor_user_id: UUID | None = None,
        channel: StatusChannel = StatusChannel.WEB,
        expected: dict[str, Any] | None = None,
    ) -> StatusLog:
        """Write payment/reconciliation fields without moving ``order_status``.

        The audit entry repeats the current order status.
        """
        updated = await self.store.update_order(
            order.id,
            values,
            expected={"order_status": order.order_status, **(expected or {})},
        )
        if not updated:
            raise ConflictError("Order was modified by another request. Please retry.")

        return await self.store.append_status_log(
            order.id,
            order.order_status,
            actor=actor,
            note=note,
            actor_user_id=actor_user_id,
            channel=channel,
        )
