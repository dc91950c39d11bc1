"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shop4me.models import (
    OrderStatus,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
    StatusChannel,
)


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers."""

    detail: str
    code: str
    field_errors: dict[str, str] | None = None


# ============================================================================
# Checkout
# ============================================================================


class CheckoutItemIn(BaseModel):
    """Cart line."""

    name: str
    price: Decimal
    quantity: Decimal = Decimal("1")
    product_id: str | None = None
    notes: str | None = None


class CheckoutIn(BaseModel):
    """Checkout form plus cart."""

    customer_name: str
    customer_phone: str
    items: list[CheckoutItemIn]
    service_fee: Decimal = Decimal("0")
    total: Decimal | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    delivery_notes: str | None = None
    landmark: str | None = None
    plus_code: str | None = None
    latitude: Decimal | None = Field(default=None, ge=-90, le=90)
    longitude: Decimal | None = Field(default=None, ge=-180, le=180)
    preferred_delivery_slot: str | None = None
    delivery_fee_estimated: Decimal | None = None


# ============================================================================
# Orders
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: str | None = None
    name_override: str | None = None
    quantity: int
    unit_price: Decimal
    estimated_price: Decimal | None = None
    notes: str | None = None


class StatusLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    status: OrderStatus
    actor: StatusActor
    channel: StatusChannel
    note: str | None = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Schema for order response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    delivery_notes: str | None = None
    landmark: str | None = None
    plus_code: str | None = None
    preferred_delivery_slot: str | None = None
    service_fee: Decimal | None = None
    delivery_fee_estimated: Decimal | None = None
    delivery_fee_actual: Decimal | None = None
    total_estimate: Decimal | None = None
    amount_collected: Decimal | None = None
    amount_reconciled: Decimal | None = None
    payment_status: PaymentStatus
    order_status: OrderStatus
    reconciliation_status: ReconciliationStatus
    mpesa_receipt: str | None = None
    checkout_request_id: str | None = None
    cancellation_reason: str | None = None
    payment_due_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = []


class OrderDetailResponse(OrderResponse):
    """Order with its audit trail."""

    status_logs: list[StatusLogResponse] = []


class OrderStatusResponse(BaseModel):
    """Polling payload for the payment status page."""

    model_config = ConfigDict(populate_by_name=True)

    payment_status: PaymentStatus = Field(alias="paymentStatus")
    order_status: OrderStatus = Field(alias="orderStatus")
    mpesa_receipt: str | None = Field(default=None, alias="mpesaReceipt")
    checkout_request_id: str | None = Field(default=None, alias="checkoutRequestId")
    last_updated: datetime = Field(alias="lastUpdated")


# ============================================================================
# Payments
# ============================================================================


class PaymentInitiateIn(BaseModel):
    phone: str = Field(min_length=1)
    amount: Decimal | None = None


class PaymentInitiateResponse(BaseModel):
    ok: bool = True
    order_id: UUID
    merchant_request_id: str | None = None
    checkout_request_id: str | None = None
    customer_message: str | None = None


class CallbackAck(BaseModel):
    ok: bool
    message: str


# ============================================================================
# Admin
# ============================================================================


class AdminStatusIn(BaseModel):
    status: OrderStatus
    note: str | None = None
    confirm_override: bool = False


class AdminStatusResponse(BaseModel):
    order: OrderResponse
    warnings: list[str] = []


class ExpenseIn(BaseModel):
    cost: Decimal | None = None
    delivery_fee: Decimal | None = None
    note: str | None = None
    evidence_url: str | None = None


class ExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    cost: Decimal
    delivery_fee: Decimal | None = None
    currency: str
    note: str | None = None
    evidence_url: str | None = None
    entered_by_id: UUID | None = None
    created_at: datetime


class FinancialsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: UUID
    items_subtotal: Decimal
    service_fee: Decimal
    total_estimate: Decimal | None = None
    amount_collected: Decimal | None = None
    expenses_total: Decimal
    realized_profit: Decimal
    currency: str


# ============================================================================
# Reconciliation
# ============================================================================


class ReconciliationResponse(BaseModel):
    success: bool
    processed: int
    expired: int
    discrepancies: int
    completed: int
    errors: int
    error_details: list[dict[str, Any]] = []
    timestamp: datetime
