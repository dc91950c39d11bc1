"""Persistence access for the order aggregate.

Order rows are changed only through narrowly scoped conditional UPDATEs
(``update_order``) so concurrent writers never overwrite each other's
columns. Loads always refresh the identity map, which keeps instances
current after those UPDATEs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.errors import OrderNotFoundError
from shop4me.models import (
    AttemptStatus,
    Expense,
    Order,
    OrderStatus,
    PaymentAttempt,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
    StatusChannel,
    StatusLog,
    utcnow,
)


class OrderStore:
    """Reads and writes orders, status logs, payment attempts and expenses."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    # Orders

    async def get(self, order_id: UUID, *, for_update: bool = False) -> Order | None:
        """Load an order (with items), optionally locking its row."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, order_id: UUID, *, for_update: bool = False) -> Order:
        """Load an order or raise OrderNotFoundError."""
        order = await self.get(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_by_checkout_request_id(
        self, checkout_request_id: str, *, for_update: bool = False
    ) -> Order | None:
        """Find the order whose current push request has this id."""
        stmt = (
            select(Order)
            .where(Order.checkout_request_id == checkout_request_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_order(self, order: Order) -> Order:
        """Insert a new order together with its items."""
        self.session.add(order)
        await self.session.flush()
        return order

    async def update_order(
        self,
        order_id: UUID,
        values: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> bool:
        """Update the given columns if the row still matches ``expected``.

        Returns False when no row matched (missing order or state changed
        underneath the caller). ``updated_at`` is set from the store clock
        unless supplied.
        """
        stmt = update(Order).where(Order.id == order_id)
        for name, value in (expected or {}).items():
            column = getattr(Order, name)
            stmt = stmt.where(column.is_(None) if value is None else column == value)

        values = dict(values)
        values.setdefault("updated_at", self.clock())
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_expired_payment_ids(self, cutoff: datetime) -> list[UUID]:
        """Orders still waiting on a push request whose deadline is at or before ``cutoff``."""
        result = await self.session.execute(
            select(Order.id)
            .where(
                Order.payment_status == PaymentStatus.PENDING,
                Order.payment_due_at.is_not(None),
                Order.payment_due_at <= cutoff,
                Order.order_status != OrderStatus.CANCELLED,
            )
            .order_by(Order.payment_due_at)
        )
        return list(result.scalars().all())

    async def find_unreconciled_paid_ids(self) -> list[UUID]:
        """Paid orders that have not been through reconciliation yet."""
        result = await self.session.execute(
            select(Order.id)
            .where(
                Order.payment_status == PaymentStatus.PAID,
                Order.reconciliation_status == ReconciliationStatus.NOT_REQUIRED,
            )
            .order_by(Order.created_at)
        )
        return list(result.scalars().all())

    # Status log

    async def append_status_log(
        self,
        order_id: UUID,
        status: OrderStatus,
        *,
        actor: StatusActor,
        note: str | None = None,
        actor_user_id: UUID | None = None,
        channel: StatusChannel = StatusChannel.WEB,
    ) -> StatusLog:
        """Append the next audit entry for an order."""
        last = await self.session.execute(
            select(func.coalesce(func.max(StatusLog.sequence), 0)).where(
                StatusLog.order_id == order_id
            )
        )
        entry = StatusLog(
            order_id=order_id,
            sequence=int(last.scalar_one()) + 1,
            status=status,
            actor=actor,
            actor_user_id=actor_user_id,
            channel=channel,
            note=note,
            created_at=self.clock(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_status_logs(self, order_id: UUID) -> list[StatusLog]:
        """Audit trail of an order, oldest first."""
        result = await self.session.execute(
            select(StatusLog)
            .where(StatusLog.order_id == order_id)
            .order_by(StatusLog.sequence)
        )
        return list(result.scalars().all())

    # Payment attempts

    async def record_attempt(
        self,
        order_id: UUID,
        *,
        merchant_request_id: str,
        checkout_request_id: str,
        phone: str,
        amount_minor: int,
    ) -> PaymentAttempt:
        """Insert a row for an accepted push request."""
        attempt = PaymentAttempt(
            order_id=order_id,
            merchant_request_id=merchant_request_id,
            checkout_request_id=checkout_request_id,
            phone=phone,
            amount_minor=amount_minor,
            status=AttemptStatus.PENDING,
            created_at=self.clock(),
        )
        self.session.add(attempt)
        await self.session.flush()
        return attempt

    async def get_attempt(self, checkout_request_id: str) -> PaymentAttempt | None:
        result = await self.session.execute(
            select(PaymentAttempt)
            .where(PaymentAttempt.checkout_request_id == checkout_request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def resolve_attempt(
        self,
        checkout_request_id: str,
        status: AttemptStatus,
        *,
        result_code: int,
        result_desc: str | None,
        mpesa_receipt: str | None = None,
    ) -> bool:
        """Claim an unresolved attempt. Only the first caller gets True."""
        result = await self.session.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.checkout_request_id == checkout_request_id,
                PaymentAttempt.status == AttemptStatus.PENDING,
            )
            .values(
                status=status,
                result_code=result_code,
                result_desc=result_desc,
                mpesa_receipt=mpesa_receipt,
                resolved_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_attempts(self, order_id: UUID) -> list[PaymentAttempt]:
        result = await self.session.execute(
            select(PaymentAttempt)
            .where(PaymentAttempt.order_id == order_id)
            .order_by(PaymentAttempt.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # Expenses

    async def add_expense(self, expense: Expense) -> Expense:
        self.session.add(expense)
        await self.session.flush()
        return expense

    async def list_expenses(self, order_id: UUID) -> list[Expense]:
        result = await self.session.execute(
            select(Expense).where(Expense.order_id == order_id).order_by(Expense.created_at)
        )
        return list(result.scalars().all())
