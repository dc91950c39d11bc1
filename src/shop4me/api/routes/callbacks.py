"""M-Pesa callback endpoint.

Safaricom does not act on our response, so every structurally valid
callback is acknowledged with 200, including ones we could not apply.
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from shop4me.api.dependencies import Clock, DbSession
from shop4me.api.schemas import CallbackAck
from shop4me.errors import CallbackPayloadError
from shop4me.services.callback_processor import CallbackProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mpesa", tags=["mpesa"])


@router.post(
    "/callback",
    response_model=CallbackAck,
    responses={400: {"model": CallbackAck}},
)
async def mpesa_callback(request: Request, db: DbSession, clock: Clock) -> CallbackAck | JSONResponse:
    """Apply an STK push result."""
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"ok": False, "message": "Invalid callback structure"},
        )

    try:
        result = await CallbackProcessor(db, clock=clock).process_callback(payload)
    except CallbackPayloadError as e:
        logger.warning("Rejected M-Pesa callback: %s", e.message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"ok": False, "message": e.message},
        )
    except Exception:
        logger.exception("Error processing M-Pesa callback")
        return CallbackAck(ok=False, message="Internal server error")

    if not result.processed:
        logger.error("Failed to process callback: %s", result.message)
    return CallbackAck(ok=result.processed, message=result.message)
