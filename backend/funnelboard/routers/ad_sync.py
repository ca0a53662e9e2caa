"""Facebook ad spend sync and import endpoints.

WHAT:
    Thin HTTP wrappers for services/ad_spend_service.py:
    - /sync/facebook-ads: recent window (default last 7 days), called by
      the scheduler or by hand
    - /import/facebook-ads: historical backfill of up to 365 days

WHY:
    - Routers handle request parsing and error mapping only
    - The ARQ worker calls the same service functions directly
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from funnelboard.database import get_db
from funnelboard.deps import Settings, get_meta_client, get_settings
from funnelboard.schemas import AdImportRequest, AdImportResponse, AdSyncRequest, AdSyncResponse
from funnelboard.services.ad_spend_service import (
    AdImportValidationError,
    import_facebook_ads,
    sync_facebook_ads,
)
from funnelboard.services.meta_graph_client import MetaGraphAPIError, MetaGraphClient
from funnelboard.utils.dates import parse_iso_date

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ad Spend"])

IMPORT_EXAMPLE = AdImportRequest.model_config["json_schema_extra"]["example"]


def _optional_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name}: {value!r}. Use YYYY-MM-DD",
        )


def _run_sync(db: Session, client: MetaGraphClient, settings: Settings, request: AdSyncRequest):
    start = _optional_date(request.start_date, "start_date")
    end = _optional_date(request.end_date, "end_date")
    if start and end and start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be on or before end_date",
        )

    logger.info("[AD_SYNC] HTTP sync requested: start=%s end=%s log_id=%s", start, end, request.log_id)
    try:
        return sync_facebook_ads(
            db,
            client,
            settings.FACEBOOK_AD_ACCOUNT_ID,
            start_date=start,
            end_date=end,
            log_id=request.log_id,
        )
    except MetaGraphAPIError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Sync failed", "details": str(e), "log_id": request.log_id},
        )
    except Exception as e:
        logger.exception("[AD_SYNC] Sync failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Sync failed", "details": str(e), "log_id": request.log_id},
        )


@router.options("/sync/facebook-ads", include_in_schema=False)
@router.options("/import/facebook-ads", include_in_schema=False)
async def ad_spend_preflight():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/sync/facebook-ads", response_model=AdSyncResponse)
def sync_facebook_ads_get(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    log_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    client: MetaGraphClient = Depends(get_meta_client),
    settings: Settings = Depends(get_settings),
):
    """Sync recent ad insights (query-string variant for cron callers)."""
    return _run_sync(db, client, settings, AdSyncRequest(start_date=start_date, end_date=end_date, log_id=log_id))


@router.post("/sync/facebook-ads", response_model=AdSyncResponse)
def sync_facebook_ads_post(
    payload: Optional[AdSyncRequest] = Body(None),
    db: Session = Depends(get_db),
    client: MetaGraphClient = Depends(get_meta_client),
    settings: Settings = Depends(get_settings),
):
    """Sync recent ad insights (JSON body variant)."""
    return _run_sync(db, client, settings, payload or AdSyncRequest())


@router.post("/import/facebook-ads", response_model=AdImportResponse)
def import_facebook_ads_post(
    payload: AdImportRequest,
    db: Session = Depends(get_db),
    client: MetaGraphClient = Depends(get_meta_client),
    settings: Settings = Depends(get_settings),
):
    """Backfill historical ad insights.

    RESPONSES:
        400: Missing or malformed dates, inverted range, or more than 365 days
        502: Graph API failure
    """
    logger.info(
        "[AD_IMPORT] HTTP import requested: %s to %s (campaigns=%s)",
        payload.start_date,
        payload.end_date,
        payload.campaign_ids,
    )
    try:
        return import_facebook_ads(
            db,
            client,
            settings.FACEBOOK_AD_ACCOUNT_ID,
            payload.start_date,
            payload.end_date,
            campaign_ids=payload.campaign_ids,
            include_inactive=payload.include_inactive,
        )
    except AdImportValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(e), "example": IMPORT_EXAMPLE},
        )
    except MetaGraphAPIError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Import failed", "details": str(e)},
        )
