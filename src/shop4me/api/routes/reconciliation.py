"""Reconciliation trigger for an external scheduler."""

import secrets
from typing import Annotated

from fastapi import APIRouter, Header, status

from shop4me.api.dependencies import AppSettings, Clock, DbSession
from shop4me.api.schemas import ErrorResponse, ReconciliationResponse
from shop4me.errors import AuthenticationError
from shop4me.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/cron", tags=["reconciliation"])


@router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    status_code=status.HTTP_200_OK,
    responses={401: {"model": ErrorResponse}},
)
async def run_reconciliation(
    db: DbSession,
    settings: AppSettings,
    clock: Clock,
    authorization: Annotated[str | None, Header()] = None,
) -> ReconciliationResponse:
    """Expire stale payments and reconcile paid orders."""
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise AuthenticationError("Unauthorized")

    result = await ReconciliationService(db, policy=settings.policy, clock=clock).run_reconciliation()
    return ReconciliationResponse(
        success=result.success,
        timestamp=clock(),
        **result.to_dict(),
    )


@router.get("/reconcile", status_code=status.HTTP_200_OK)
async def reconciliation_usage() -> dict[str, str]:
    """Usage hint for operators."""
    return {
        "message": "M-Pesa reconciliation endpoint",
        "usage": "POST with Authorization: Bearer <CRON_SECRET>",
        "description": "Expires overdue pending payments and flags payment discrepancies",
    }
