"""GoHighLevel webhook endpoint.

WHAT:
    Receives CRM workflow webhooks, records them in the event log and
    updates the contact's funnel timestamps.

WHY:
    CRM workflows post from their own servers, and test calls from the
    workflow builder come from the browser, so the route answers CORS
    preflights with a wildcard origin (see WebhookCORSMiddleware in main.py).

REFERENCES:
    - funnelboard/services/ghl_webhook_service.py
"""

import json
import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnelboard.database import get_db
from funnelboard.deps import Settings, get_settings
from funnelboard.schemas import WebhookResponse
from funnelboard.services.ghl_webhook_service import WebhookValidationError, process_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

WEBHOOK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Max-Age": "86400",
}


def _error(status_code: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


@router.options("/gohighlevel")
async def gohighlevel_preflight():
    """Handle CORS preflight for the webhook."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=WEBHOOK_CORS_HEADERS)


@router.post("/gohighlevel")
async def receive_gohighlevel_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Record one CRM event and update the contact funnel.

    RESPONSES:
        200: Event stored (warnings list any out-of-order events applied)
        400: Invalid JSON, or no contact id / event type
        409: Out-of-order event rejected (FUNNEL_ORDER_POLICY=reject);
             the event row is still stored
        500: Storage failure, nothing stored
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.error(f"[GHL_WEBHOOK] Failed to parse JSON: {e}")
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON payload", str(e))

    try:
        result = process_webhook(db, payload, policy=settings.FUNNEL_ORDER_POLICY)
    except WebhookValidationError as e:
        logger.warning(f"[GHL_WEBHOOK] Rejected payload: {e}")
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid webhook payload", str(e))
    except SQLAlchemyError as e:
        logger.exception("[GHL_WEBHOOK] Failed to store webhook")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to store webhook", str(e))

    if result.rejected is not None:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=jsonable_encoder({
                "error": "Funnel order violation",
                "details": str(result.rejected),
                "violations": result.rejected.violations,
                "event_id": str(result.event_id),
            }),
        )

    return JSONResponse(status_code=status.HTTP_200_OK, content=jsonable_encoder(WebhookResponse(**result.to_response())))
