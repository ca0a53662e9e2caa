"""Dashboard read endpoints.

WHAT:
    Date-windowed KPIs, trends, breakdowns, per-ad funnels and contact
    lists. Every endpoint takes start_date and end_date (YYYY-MM-DD,
    inclusive).

WHY:
    All arithmetic lives in services/funnel_metrics.py; these routes only
    parse parameters and map ValueError to 400.

REFERENCES:
    - funnelboard/services/dashboard_service.py
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from funnelboard.database import get_db
from funnelboard.models import FunnelStageEnum
from funnelboard.services import dashboard_service
from funnelboard.utils.dates import parse_iso_date

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


def parse_date_param(value: str, name: str) -> date:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name}: {value!r}. Use YYYY-MM-DD",
        )


class DateWindow:
    """Required start_date/end_date query parameters."""

    def __init__(
        self,
        start_date: str = Query(..., description="YYYY-MM-DD (inclusive)"),
        end_date: str = Query(..., description="YYYY-MM-DD (inclusive)"),
    ):
        self.start = parse_date_param(start_date, "start_date")
        self.end = parse_date_param(end_date, "end_date")


def _bad_request(e: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/kpis")
def get_kpis(
    window: DateWindow = Depends(),
    compare: bool = Query(False, description="Include the previous period of equal length"),
    db: Session = Depends(get_db),
):
    """Headline KPIs, optionally with period-over-period changes in percent."""
    return dashboard_service.get_kpis(db, window.start, window.end, compare=compare)


@router.get("/trends")
def get_trends(window: DateWindow = Depends(), db: Session = Depends(get_db)):
    """Daily leads, funnel counts, spend and rates."""
    return {"trends": dashboard_service.get_trends(db, window.start, window.end)}


@router.get("/sources")
def get_sources(
    window: DateWindow = Depends(),
    level: str = Query("campaign", description="campaign | adset | ad"),
    db: Session = Depends(get_db),
):
    try:
        rows = dashboard_service.get_sources(db, window.start, window.end, level)
    except ValueError as e:
        raise _bad_request(e)
    return {"level": level, "sources": rows}


@router.get("/ads")
def get_ads(window: DateWindow = Depends(), db: Session = Depends(get_db)):
    """Per-ad funnel joined with spend, highest spend first."""
    return {"ads": dashboard_service.get_ads(db, window.start, window.end)}


@router.get("/ads/top")
def get_top_ads(
    window: DateWindow = Depends(),
    metric: str = Query("total_leads"),
    limit: int = Query(10, ge=1, le=100),
    order: Optional[str] = Query(None, description="asc | desc (cost metrics default to asc)"),
    db: Session = Depends(get_db),
):
    if order not in (None, "asc", "desc"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="order must be 'asc' or 'desc'")
    ascending = None if order is None else order == "asc"
    try:
        rows = dashboard_service.get_top_ads(db, window.start, window.end, metric, limit, ascending)
    except ValueError as e:
        raise _bad_request(e)
    return {"metric": metric, "ads": rows}


@router.get("/contacts")
def get_contacts(
    window: DateWindow = Depends(),
    ad_id: Optional[str] = Query(None),
    funnel_stage: Optional[str] = Query(None, description="lead | booked | qualified | disqualified | showed | no_show | closed"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    if funnel_stage is not None and funnel_stage not in {s.value for s in FunnelStageEnum}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown funnel_stage: {funnel_stage}")
    return dashboard_service.get_contacts(db, window.start, window.end, ad_id, funnel_stage, limit, offset)


@router.get("/contacts/stage-counts")
def get_stage_counts(window: DateWindow = Depends(), db: Session = Depends(get_db)):
    return dashboard_service.get_stage_counts(db, window.start, window.end)


@router.get("/leads-breakdown")
def get_leads_breakdown(window: DateWindow = Depends(), db: Session = Depends(get_db)):
    """Applicant quality from application form answers."""
    return dashboard_service.get_leads_breakdown(db, window.start, window.end)
