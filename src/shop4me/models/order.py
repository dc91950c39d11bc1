"""Order aggregate models: order, items, status log, expenses, payment attempts."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shop4me.models.base import Base, TimestampMixin, UTCDateTime, utcnow
from shop4me.models.enums import (
    AttemptStatus,
    OrderStatus,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
    StatusChannel,
)

if TYPE_CHECKING:
    from shop4me.models.user import User


def status_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    """Non-native enum column type: VARCHAR plus a CHECK constraint."""
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        validate_strings=True,
    )


class Order(Base, TimestampMixin):
    """Customer order. Never deleted; cancellation is a status."""

    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    delivery_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    landmark: Mapped[str | None] = mapped_column(String, nullable=True)
    plus_code: Mapped[str | None] = mapped_column(String, nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)
    preferred_delivery_slot: Mapped[str | None] = mapped_column(String, nullable=True)

    service_fee: Mapped[Decimal | None] = mapped_column(nullable=True)
    delivery_fee_estimated: Mapped[Decimal | None] = mapped_column(nullable=True)
    delivery_fee_actual: Mapped[Decimal | None] = mapped_column(nullable=True)
    amount_collected: Mapped[Decimal | None] = mapped_column(nullable=True)
    amount_reconciled: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_estimate: Mapped[Decimal | None] = mapped_column(nullable=True)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        status_enum(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    order_status: Mapped[OrderStatus] = mapped_column(
        status_enum(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.DRAFT,
    )
    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        status_enum(ReconciliationStatus, "reconciliation_status"),
        nullable=False,
        default=ReconciliationStatus.NOT_REQUIRED,
    )

    mpesa_receipt: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    merchant_request_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    checkout_request_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_due_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("orders_user_id_idx", "user_id"),
        Index("orders_payment_sweep_idx", "payment_status", "payment_due_at"),
    )

    # Relationships
    user: Mapped[User | None] = relationship(lazy="raise")
    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order", lazy="selectin", order_by="OrderItem.position"
    )
    status_logs: Mapped[list[StatusLog]] = relationship(
        back_populates="order", lazy="raise", order_by="StatusLog.sequence"
    )
    expenses: Mapped[list[Expense]] = relationship(back_populates="order", lazy="raise")
    payment_attempts: Mapped[list[PaymentAttempt]] = relationship(
        back_populates="order", lazy="raise"
    )

    @property
    def is_paid(self) -> bool:
        """Payment confirmed with a receipt."""
        return self.payment_status == PaymentStatus.PAID and self.mpesa_receipt is not None

    def has_unresolved_payment_request(self) -> bool:
        """A push request was issued and no outcome has been recorded."""
        return (
            self.checkout_request_id is not None
            and self.payment_status == PaymentStatus.PENDING
        )


class OrderItem(Base, TimestampMixin):
    """Order line item. Product binding is fixed at creation."""

    __tablename__ = "order_items"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str | None] = mapped_column(String, nullable=True)
    name_override: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    estimated_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="order_items_quantity_check"),
        CheckConstraint("unit_price >= 0", name="order_items_unit_price_check"),
        Index("order_items_order_id_idx", "order_id"),
    )

    # Relationships
    order: Mapped[Order] = relationship(back_populates="items")


class StatusLog(Base):
    """Append-only audit entry for an order/payment status change."""

    __tablename__ = "status_logs"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[OrderStatus] = mapped_column(
        status_enum(OrderStatus, "status_log_status"), nullable=False
    )
    actor: Mapped[StatusActor] = mapped_column(
        status_enum(StatusActor, "status_actor"),
        nullable=False,
        default=StatusActor.SYSTEM,
    )
    actor_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    channel: Mapped[StatusChannel] = mapped_column(
        status_enum(StatusChannel, "status_channel"),
        nullable=False,
        default=StatusChannel.WEB,
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("status_logs_order_id_idx", "order_id", "sequence"),)

    # Relationships
    order: Mapped[Order] = relationship(back_populates="status_logs")


class Expense(Base, TimestampMixin):
    """Admin-entered fulfillment cost used to compute realized profit."""

    __tablename__ = "expenses"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    delivery_fee: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_url: Mapped[str | None] = mapped_column(String, nullable=True)
    entered_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        CheckConstraint("cost >= 0", name="expenses_cost_check"),
        Index("expenses_order_id_idx", "order_id"),
    )

    # Relationships
    order: Mapped[Order] = relationship(back_populates="expenses")


class PaymentAttempt(Base):
    """One accepted push-payment request.

    The order carries the identifiers of its latest attempt; this table keeps
    every attempt so a retry never loses earlier correlation ids.
    """

    __tablename__ = "payment_attempts"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    merchant_request_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    checkout_request_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String, nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AttemptStatus] = mapped_column(
        status_enum(AttemptStatus, "attempt_status"),
        nullable=False,
        default=AttemptStatus.PENDING,
    )
    result_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result_desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    mpesa_receipt: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="payment_attempts_amount_check"),
        Index("payment_attempts_order_id_idx", "order_id"),
    )

    # Relationships
    order: Mapped[Order] = relationship(back_populates="payment_attempts")
