"""Reconciliation sweep.

Two passes, run from an external scheduler:
1. Expire push requests whose deadline has long passed (cancel the order).
2. Check paid orders: flag discrepancies, mark the rest reconciled.

Candidate ids are snapshotted first; each order is then handled in its own
transaction so one failure never blocks the rest of the sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.config import PaymentPolicy
from shop4me.database import atomic
from shop4me.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
    utcnow,
)
from shop4me.services.order_store import OrderStore
from shop4me.services.state_machine import OrderStateMachine, OrderStatusMachine

logger = logging.getLogger(__name__)

EXPIRY_REASON = "Payment timeout - no response from M-Pesa"
EXPIRY_NOTE = "Payment expired - order cancelled automatically"


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    processed: int = 0
    expired: int = 0
    discrepancies: int = 0
    completed: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the sweep completed without errors."""
        return self.errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "expired": self.expired,
            "discrepancies": self.discrepancies,
            "completed": self.completed,
            "errors": self.errors,
            "error_details": list(self.error_details),
        }


class ReconciliationService:
    """Expires stale payments and reconciles paid orders."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        policy: PaymentPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.policy = policy or PaymentPolicy()
        self.clock = clock
        self.store = OrderStore(session, clock)
        self.machine = OrderStatusMachine(self.store)

    async def run_reconciliation(self) -> ReconciliationResult:
        """Run both passes and return counters."""
        result = ReconciliationResult()
        cutoff = self.clock() - self.policy.expiry_threshold

        async with atomic(self.session):
            expired_ids = await self.store.find_expired_payment_ids(cutoff)
        for order_id in expired_ids:
            result.processed += 1
            await self._run_one(order_id, result, self._expire, cutoff)

        async with atomic(self.session):
            paid_ids = await self.store.find_unreconciled_paid_ids()
        for order_id in paid_ids:
            result.processed += 1
            await self._run_one(order_id, result, self._reconcile)

        logger.info(
            "Reconciliation finished: processed=%d expired=%d discrepancies=%d "
            "completed=%d errors=%d",
            result.processed,
            result.expired,
            result.discrepancies,
            result.completed,
            result.errors,
        )
        return result

    async def _run_one(
        self,
        order_id: UUID,
        result: ReconciliationResult,
        step: Callable[..., Any],
        *args: Any,
    ) -> None:
        try:
            async with atomic(self.session):
                await step(order_id, result, *args)
        except Exception as e:
            logger.exception("Reconciliation failed for order %s", order_id)
            result.errors += 1
            result.error_details.append({"order_id": str(order_id), "error": str(e)})

    async def _expire(
        self, order_id: UUID, result: ReconciliationResult, cutoff: datetime
    ) -> None:
        order = await self.store.get(order_id, for_update=True)
        # Re-check: a callback may have landed after the snapshot
        if order is None or not self._is_expired(order, cutoff):
            return

        values = {
            "payment_status": PaymentStatus.FAILED,
            "payment_due_at": None,
            "reconciliation_status": ReconciliationStatus.COMPLETED,
        }
        expected = {"payment_status": PaymentStatus.PENDING}

        if OrderStateMachine.allows(StatusActor.SYSTEM, order.order_status, OrderStatus.CANCELLED):
            values["cancellation_reason"] = EXPIRY_REASON
            await self.machine.transition(
                order,
                OrderStatus.CANCELLED,
                actor=StatusActor.SYSTEM,
                note=EXPIRY_NOTE,
                payment_values=values,
                expected=expected,
            )
        else:
            # Delivered orders keep their status; only the payment expires
            await self.machine.record_change(
                order,
                values,
                actor=StatusActor.SYSTEM,
                note="Payment expired - no response from M-Pesa",
                expected=expected,
            )

        result.expired += 1
        logger.info("Expired pending payment for order %s", order.id)

    @staticmethod
    def _is_expired(order: Order, cutoff: datetime) -> bool:
        return (
            order.payment_status == PaymentStatus.PENDING
            and order.payment_due_at is not None
            and order.payment_due_at <= cutoff
            and order.order_status != OrderStatus.CANCELLED
        )

    async def _reconcile(self, order_id: UUID, result: ReconciliationResult) -> None:
        order = await self.store.get(order_id, for_update=True)
        if (
            order is None
            or order.payment_status != PaymentStatus.PAID
            or order.reconciliation_status != ReconciliationStatus.NOT_REQUIRED
        ):
            return

        expected = {
            "payment_status": PaymentStatus.PAID,
            "reconciliation_status": ReconciliationStatus.NOT_REQUIRED,
        }
        problems = self.find_discrepancies(order)
        if problems:
            await self.machine.record_change(
                order,
                {"reconciliation_status": ReconciliationStatus.DISCREPANCY},
                actor=StatusActor.SYSTEM,
                note="Reconciliation discrepancy: " + "; ".join(problems),
                expected=expected,
            )
            result.discrepancies += 1
            logger.warning("Order %s flagged: %s", order.id, "; ".join(problems))
            return

        updated = await self.store.update_order(
            order.id,
            {
                "reconciliation_status": ReconciliationStatus.COMPLETED,
                "amount_reconciled": order.amount_collected,
            },
            expected=expected,
        )
        if updated:
            result.completed += 1

    def find_discrepancies(self, order: Order) -> list[str]:
        """Reasons a paid order cannot be reconciled automatically."""
        problems: list[str] = []
        if not order.mpesa_receipt:
            problems.append("Missing M-Pesa receipt")
        if order.amount_collected is None:
            problems.append("Missing collected amount")
        elif order.total_estimate is None:
            problems.append("Order has no total to compare against")
        else:
            difference = abs(order.amount_collected - order.total_estimate)
            if difference > self.policy.reconciliation_tolerance:
                problems.append(
                    f"Amount mismatch: collected {order.amount_collected}, "
                    f"expected {order.total_estimate}"
                )
        return problems
