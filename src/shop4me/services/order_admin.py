"""Admin operations on orders: status updates, expenses, financials."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.database import atomic
from shop4me.errors import ValidationError
from shop4me.models import Expense, Order, OrderStatus, StatusActor, StatusChannel, utcnow
from shop4me.money import CURRENCY, sum_money, to_money
from shop4me.services.order_store import OrderStore
from shop4me.services.principals import Principal, require_admin
from shop4me.services.state_machine import OrderStatusMachine

logger = logging.getLogger(__name__)


@dataclass
class StatusUpdateResult:
    """Updated order plus advisory warnings for the admin."""

    order: Order
    warnings: list[str] = field(default_factory=list)


@dataclass
class OrderFinancials:
    """Per-order money summary."""

    order_id: UUID
    items_subtotal: Decimal
    service_fee: Decimal
    total_estimate: Decimal | None
    amount_collected: Decimal | None
    expenses_total: Decimal
    realized_profit: Decimal
    currency: str = CURRENCY


class OrderAdminService:
    """Admin-only order actions. Every method checks the principal's role."""

    def __init__(self, session: AsyncSession, *, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.store = OrderStore(session, clock)
        self.machine = OrderStatusMachine(self.store)

    async def update_status(
        self,
        order_id: UUID,
        status: OrderStatus,
        principal: Principal | None,
        *,
        note: str | None = None,
        confirm_override: bool = False,
        channel: StatusChannel = StatusChannel.ADMIN_PORTAL,
    ) -> StatusUpdateResult:
        """Move an order through the fulfillment lifecycle.

        Raises:
            AuthorizationError: Principal is not an admin.
            InvalidTransitionError: Edge not allowed (including no-op updates).
            OverrideRequiredError: Leaving DELIVERED/CANCELLED without confirmation.
        """
        admin = require_admin(principal)
        note = (note or "").strip() or None

        async with atomic(self.session):
            order = await self.store.require(order_id, for_update=True)
            values = {}
            if status == OrderStatus.CANCELLED:
                values["cancellation_reason"] = note or "Cancelled by admin"
            transition = await self.machine.transition(
                order,
                status,
                actor=StatusActor.ADMIN,
                note=note,
                actor_user_id=admin.user_id,
                channel=channel,
                confirm_override=confirm_override,
                payment_values=values,
            )

        return StatusUpdateResult(
            order=await self.store.require(order_id), warnings=transition.warnings
        )

    async def add_expense(
        self,
        order_id: UUID,
        principal: Principal | None,
        *,
        cost: Decimal | int | str | None = None,
        delivery_fee: Decimal | int | str | None = None,
        note: str | None = None,
        evidence_url: str | None = None,
    ) -> Expense:
        """Record a fulfillment cost. A delivery fee also becomes the order's actual fee."""
        admin = require_admin(principal)

        field_errors: dict[str, str] = {}
        cost_value = self._optional_amount(cost, "cost", field_errors) or Decimal("0.00")
        fee_value = self._optional_amount(delivery_fee, "delivery_fee", field_errors)
        if field_errors:
            raise ValidationError("Invalid expense", field_errors)
        if cost_value <= 0 and (fee_value is None or fee_value <= 0):
            raise ValidationError(
                "At least one expense amount must be greater than 0",
                {"cost": "Enter a cost or a delivery fee"},
            )

        async with atomic(self.session):
            order = await self.store.require(order_id, for_update=True)
            expense = await self.store.add_expense(
                Expense(
                    order_id=order.id,
                    cost=cost_value,
                    delivery_fee=fee_value,
                    currency=CURRENCY,
                    note=(note or "").strip() or None,
                    evidence_url=(evidence_url or "").strip() or None,
                    entered_by_id=admin.user_id,
                    created_at=self.clock(),
                    updated_at=self.clock(),
                )
            )
            if fee_value is not None:
                await self.store.update_order(order.id, {"delivery_fee_actual": fee_value})

        logger.info("Expense %s recorded on order %s", expense.id, order_id)
        return expense

    async def order_financials(
        self, order_id: UUID, principal: Principal | None
    ) -> OrderFinancials:
        """Items subtotal, expenses and realized profit for one order."""
        require_admin(principal)
        order = await self.store.require(order_id)
        expenses = await self.store.list_expenses(order_id)

        items_subtotal = sum_money([item.unit_price * item.quantity for item in order.items])
        expenses_total = sum_money(
            [e.cost for e in expenses] + [e.delivery_fee for e in expenses]
        )
        collected = order.amount_collected
        return OrderFinancials(
            order_id=order.id,
            items_subtotal=items_subtotal,
            service_fee=order.service_fee or Decimal("0.00"),
            total_estimate=order.total_estimate,
            amount_collected=collected,
            expenses_total=expenses_total,
            realized_profit=to_money((collected or Decimal("0")) - expenses_total),
        )

    @staticmethod
    def _optional_amount(
        raw: Decimal | int | str | None, name: str, field_errors: dict[str, str]
    ) -> Decimal | None:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return None
        try:
            value = to_money(raw)
        except ValueError:
            field_errors[name] = "Must be a number"
            return None
        if value < 0:
            field_errors[name] = "Cannot be negative"
            return None
        return value
