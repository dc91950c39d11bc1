"""Customer order endpoints: checkout, detail, status polling, payment."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status
from fastapi.responses import JSONResponse

from shop4me.api.dependencies import AppSettings, Clock, CurrentPrincipal, DbSession, Provider
from shop4me.api.schemas import (
    CheckoutIn,
    ErrorResponse,
    OrderDetailResponse,
    OrderResponse,
    OrderStatusResponse,
    PaymentInitiateIn,
    PaymentInitiateResponse,
    StatusLogResponse,
)
from shop4me.errors import AuthorizationError
from shop4me.models import Order
from shop4me.services.checkout import CheckoutItem, CheckoutRequest, CheckoutService
from shop4me.services.order_store import OrderStore
from shop4me.services.payment_service import PaymentService
from shop4me.services.principals import Principal

router = APIRouter(prefix="/orders", tags=["orders"])


def _check_access(order: Order, principal: Principal) -> None:
    if principal.is_admin:
        return
    if order.user_id is not None and order.user_id != principal.user_id:
        raise AuthorizationError("You do not have access to this order")


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_order(
    db: DbSession,
    settings: AppSettings,
    clock: Clock,
    principal: CurrentPrincipal,
    payload: CheckoutIn,
) -> OrderResponse:
    """Create a DRAFT order from the cart."""
    service = CheckoutService(
        db,
        policy=settings.policy,
        country_code=settings.mpesa.country_code,
        clock=clock,
    )
    order = await service.create_order(
        CheckoutRequest(
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            items=[
                CheckoutItem(
                    name=item.name,
                    price=item.price,
                    quantity=item.quantity,
                    product_id=item.product_id,
                    notes=item.notes,
                )
                for item in payload.items
            ],
            service_fee=payload.service_fee,
            client_total=payload.total,
            contact_name=payload.contact_name,
            contact_phone=payload.contact_phone,
            delivery_notes=payload.delivery_notes,
            landmark=payload.landmark,
            plus_code=payload.plus_code,
            latitude=payload.latitude,
            longitude=payload.longitude,
            preferred_delivery_slot=payload.preferred_delivery_slot,
            delivery_fee_estimated=payload.delivery_fee_estimated,
        ),
        principal=principal,
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_order(
    db: DbSession,
    principal: CurrentPrincipal,
    order_id: Annotated[UUID, Path()],
) -> OrderDetailResponse:
    """Order with items and status history."""
    store = OrderStore(db)
    order = await store.require(order_id)
    _check_access(order, principal)
    logs = await store.list_status_logs(order_id)
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        status_logs=[StatusLogResponse.model_validate(log) for log in logs],
    )


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_order_status(
    db: DbSession,
    order_id: Annotated[UUID, Path()],
) -> OrderStatusResponse:
    """Lightweight status for payment polling."""
    order = await OrderStore(db).require(order_id)
    return OrderStatusResponse(
        payment_status=order.payment_status,
        order_status=order.order_status,
        mpesa_receipt=order.mpesa_receipt,
        checkout_request_id=order.checkout_request_id,
        last_updated=order.updated_at,
    )


@router.post(
    "/{order_id}/payments",
    response_model=PaymentInitiateResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def initiate_payment(
    db: DbSession,
    settings: AppSettings,
    clock: Clock,
    provider: Provider,
    principal: CurrentPrincipal,
    order_id: Annotated[UUID, Path()],
    payload: PaymentInitiateIn,
) -> PaymentInitiateResponse | JSONResponse:
    """Send an M-Pesa STK push to the payer's phone."""
    order = await OrderStore(db).require(order_id)
    _check_access(order, principal)

    service = PaymentService(
        db,
        provider,
        mpesa_config=settings.mpesa,
        policy=settings.policy,
        clock=clock,
    )
    result = await service.initiate_payment(
        order_id,
        payload.phone,
        payload.amount,
        actor_user_id=principal.user_id,
    )
    if not result.ok:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": result.message or "Failed to initiate payment",
                "code": result.error_code or "PROVIDER_ERROR",
            },
        )
    return PaymentInitiateResponse(
        order_id=result.order_id,
        merchant_request_id=result.merchant_request_id,
        checkout_request_id=result.checkout_request_id,
        customer_message=result.customer_message,
    )
