"""Checkout: validated creation of draft orders."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from shop4me.config import PaymentPolicy
from shop4me.database import atomic
from shop4me.errors import PhoneNumberError, ValidationError
from shop4me.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    StatusActor,
    StatusChannel,
    utcnow,
)
from shop4me.money import to_money
from shop4me.phone import normalize_msisdn
from shop4me.services.order_store import OrderStore
from shop4me.services.principals import Principal

logger = logging.getLogger(__name__)


@dataclass
class CheckoutItem:
    """Cart line as submitted by the client."""

    name: str
    price: Decimal | int | float | str
    quantity: Decimal | int | float | str = 1
    product_id: str | None = None
    notes: str | None = None


@dataclass
class CheckoutRequest:
    """Checkout form plus cart."""

    customer_name: str
    customer_phone: str
    items: list[CheckoutItem] = field(default_factory=list)
    service_fee: Decimal | int | float | str = Decimal("0")
    client_total: Decimal | int | float | str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    delivery_notes: str | None = None
    landmark: str | None = None
    plus_code: str | None = None
    latitude: Decimal | float | None = None
    longitude: Decimal | float | None = None
    preferred_delivery_slot: str | None = None
    delivery_fee_estimated: Decimal | int | float | str | None = None


@dataclass
class _ValidLine:
    name: str
    price: Decimal
    quantity: int
    product_id: str | None
    notes: str | None


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


class CheckoutService:
    """Creates DRAFT orders with their items and first audit entry."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        policy: PaymentPolicy | None = None,
        country_code: str = "254",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.policy = policy or PaymentPolicy()
        self.country_code = country_code
        self.clock = clock
        self.store = OrderStore(session, clock)

    async def create_order(
        self,
        request: CheckoutRequest,
        *,
        principal: Principal | None = None,
        channel: StatusChannel = StatusChannel.WEB,
    ) -> Order:
        """Validate the cart and persist a DRAFT order.

        Raises:
            ValidationError: With field errors keyed by input name.
        """
        field_errors: dict[str, str] = {}

        customer_name = _clean(request.customer_name)
        if not customer_name:
            field_errors["customer_name"] = "Name is required"

        customer_phone = self._phone(request.customer_phone, "customer_phone", field_errors)
        if not _clean(request.customer_phone):
            field_errors["customer_phone"] = "Phone number is required"
        contact_phone = (
            self._phone(request.contact_phone, "contact_phone", field_errors)
            if _clean(request.contact_phone)
            else None
        )

        lines = self._validate_items(request.items, field_errors)
        service_fee = self._amount(request.service_fee, "service_fee", field_errors)
        delivery_fee = (
            self._amount(request.delivery_fee_estimated, "delivery_fee_estimated", field_errors)
            if request.delivery_fee_estimated is not None
            else None
        )

        total = None
        if lines and service_fee is not None:
            subtotal = sum((line.price * line.quantity for line in lines), Decimal("0"))
            total = to_money(subtotal + service_fee)
            if request.client_total is not None:
                client_total = self._amount(request.client_total, "cart", field_errors)
                if (
                    client_total is not None
                    and abs(total - client_total) > self.policy.checkout_total_tolerance
                ):
                    field_errors["cart"] = "Cart total mismatch. Refresh and try again."

        if field_errors:
            raise ValidationError("Please correct the highlighted fields", field_errors)

        order = Order(
            user_id=principal.user_id if principal else None,
            customer_name=customer_name,
            customer_phone=customer_phone,
            contact_name=_clean(request.contact_name),
            contact_phone=contact_phone,
            delivery_notes=_clean(request.delivery_notes),
            landmark=_clean(request.landmark),
            plus_code=_clean(request.plus_code),
            latitude=request.latitude,
            longitude=request.longitude,
            preferred_delivery_slot=_clean(request.preferred_delivery_slot),
            service_fee=service_fee,
            delivery_fee_estimated=delivery_fee,
            total_estimate=total,
            order_status=OrderStatus.DRAFT,
            payment_status=PaymentStatus.PENDING,
            created_at=self.clock(),
            updated_at=self.clock(),
            items=[
                OrderItem(
                    position=position,
                    product_id=line.product_id,
                    name_override=line.name,
                    quantity=line.quantity,
                    unit_price=line.price,
                    estimated_price=to_money(line.price * line.quantity),
                    notes=line.notes,
                )
                for position, line in enumerate(lines)
            ],
        )

        async with atomic(self.session):
            await self.store.add_order(order)
            await self.store.append_status_log(
                order.id,
                OrderStatus.DRAFT,
                actor=StatusActor.CUSTOMER,
                note="Order created",
                actor_user_id=principal.user_id if principal else None,
                channel=channel,
            )

        logger.info("Created order %s with %d item(s), total %s", order.id, len(lines), total)
        return await self.store.require(order.id)

    def _phone(self, raw: str | None, name: str, field_errors: dict[str, str]) -> str | None:
        if not _clean(raw):
            return None
        try:
            return normalize_msisdn(raw, self.country_code, field=name)
        except PhoneNumberError as e:
            field_errors.update(e.field_errors)
            return None

    def _amount(
        self, raw: Decimal | int | float | str | None, name: str, field_errors: dict[str, str]
    ) -> Decimal | None:
        try:
            value = to_money(raw)
        except ValueError:
            field_errors[name] = "Must be a number"
            return None
        if value < 0:
            field_errors[name] = "Cannot be negative"
            return None
        return value

    def _validate_items(
        self, items: list[CheckoutItem], field_errors: dict[str, str]
    ) -> list[_ValidLine]:
        if not items:
            field_errors["cart"] = "Add at least one item to your cart before checkout."
            return []

        lines: list[_ValidLine] = []
        for item in items:
            name = _clean(item.name)
            try:
                price = to_money(item.price)
                quantity = Decimal(str(item.quantity))
            except (ValueError, InvalidOperation):
                price = quantity = None
            if (
                not name
                or price is None
                or quantity is None
                or not quantity.is_finite()
                or price < 0
            ):
                field_errors["cart"] = "Invalid item detected. Remove and add it again."
                return []
            lines.append(
                _ValidLine(
                    name=name,
                    price=price,
                    quantity=max(1, int(quantity.to_integral_value(rounding=ROUND_HALF_UP))),
                    product_id=_clean(item.product_id),
                    notes=_clean(item.notes),
                )
            )
        return lines
