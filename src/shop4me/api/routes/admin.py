"""Admin order endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from shop4me.api.dependencies import AdminPrincipal, Clock, DbSession
from shop4me.api.schemas import (
    AdminStatusIn,
    AdminStatusResponse,
    ErrorResponse,
    ExpenseIn,
    ExpenseResponse,
    FinancialsResponse,
    OrderResponse,
)
from shop4me.services.order_admin import OrderAdminService

router = APIRouter(
    prefix="/admin/orders",
    tags=["admin"],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)


@router.post(
    "/{order_id}/status",
    response_model=AdminStatusResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_order_status(
    db: DbSession,
    clock: Clock,
    admin: AdminPrincipal,
    order_id: Annotated[UUID, Path()],
    payload: AdminStatusIn,
) -> AdminStatusResponse:
    """Move an order through fulfillment.

    Leaving DELIVERED or CANCELLED needs ``confirm_override``; without it
    the response is 409 carrying the warning to show the admin.
    """
    result = await OrderAdminService(db, clock=clock).update_status(
        order_id,
        payload.status,
        admin,
        note=payload.note,
        confirm_override=payload.confirm_override,
    )
    return AdminStatusResponse(
        order=OrderResponse.model_validate(result.order), warnings=result.warnings
    )


@router.post(
    "/{order_id}/expenses",
    response_model=ExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def add_expense(
    db: DbSession,
    clock: Clock,
    admin: AdminPrincipal,
    order_id: Annotated[UUID, Path()],
    payload: ExpenseIn,
) -> ExpenseResponse:
    expense = await OrderAdminService(db, clock=clock).add_expense(
        order_id,
        admin,
        cost=payload.cost,
        delivery_fee=payload.delivery_fee,
        note=payload.note,
        evidence_url=payload.evidence_url,
    )
    return ExpenseResponse.model_validate(expense)


@router.get(
    "/{order_id}/financials",
    response_model=FinancialsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def order_financials(
    db: DbSession,
    admin: AdminPrincipal,
    order_id: Annotated[UUID, Path()],
) -> FinancialsResponse:
    financials = await OrderAdminService(db).order_financials(order_id, admin)
    return FinancialsResponse.model_validate(financials)
