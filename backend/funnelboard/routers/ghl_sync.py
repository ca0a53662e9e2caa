"""GoHighLevel contact sync endpoint.

WHAT:
    Pulls cash collected / deal value custom fields from the CRM into
    Contact rows. Three modes, chosen by the payload:
    - contact_id: sync one contact and return all of its custom fields
    - scan_revenue: list every contact that carries revenue data
    - default: paginated sync of up to max_contacts contacts

REFERENCES:
    - funnelboard/services/ghl_contact_sync_service.py
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from funnelboard.database import get_db
from funnelboard.deps import Settings, get_ghl_client, get_settings
from funnelboard.schemas import GHLSyncRequest
from funnelboard.services.ghl_client import GHLAPIError, GHLClient, GHLNotFoundError
from funnelboard.services.ghl_contact_sync_service import (
    scan_revenue_contacts,
    sync_contacts,
    sync_single_contact,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["CRM Sync"])


def _run_sync(db: Session, client: GHLClient, settings: Settings, request: GHLSyncRequest):
    try:
        if request.contact_id:
            logger.info("[GHL_SYNC] HTTP single contact sync: %s", request.contact_id)
            return sync_single_contact(db, client, request.contact_id)

        if request.scan_revenue:
            logger.info("[GHL_SYNC] HTTP revenue scan requested")
            return scan_revenue_contacts(db, client, settings.GHL_LOCATION_ID, batch_size=request.batch_size)

        logger.info(
            "[GHL_SYNC] HTTP sync requested: batch_size=%s max_contacts=%s",
            request.batch_size,
            request.max_contacts,
        )
        result = sync_contacts(
            db,
            client,
            settings.GHL_LOCATION_ID,
            batch_size=request.batch_size,
            max_contacts=request.max_contacts,
        )
        return {"success": not result["errors"], **result}
    except GHLNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except GHLAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.options("/ghl-contacts", include_in_schema=False)
async def ghl_contacts_preflight():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/ghl-contacts")
def sync_ghl_contacts_get(
    batch_size: int = Query(100, ge=1, le=100),
    max_contacts: int = Query(10000, ge=1),
    contact_id: Optional[str] = Query(None),
    scan_revenue: bool = Query(False),
    db: Session = Depends(get_db),
    client: GHLClient = Depends(get_ghl_client),
    settings: Settings = Depends(get_settings),
):
    """Sync CRM revenue fields (query-string variant)."""
    request = GHLSyncRequest(
        batch_size=batch_size,
        max_contacts=max_contacts,
        contact_id=contact_id,
        scan_revenue=scan_revenue,
    )
    return _run_sync(db, client, settings, request)


@router.post("/ghl-contacts")
def sync_ghl_contacts_post(
    payload: Optional[GHLSyncRequest] = Body(None),
    db: Session = Depends(get_db),
    client: GHLClient = Depends(get_ghl_client),
    settings: Settings = Depends(get_settings),
):
    """Sync CRM revenue fields (JSON body, snake_case or camelCase keys).

    RESPONSES:
        404: contact_id not found in the CRM
        502: CRM API failure
    """
    return _run_sync(db, client, settings, payload or GHLSyncRequest())
