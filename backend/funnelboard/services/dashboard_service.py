"""Dashboard data loading.

WHAT:
    Loads ad spend and contact rows for a date window and hands them to
    the pure functions in funnel_metrics. One function per dashboard
    endpoint.

WHY:
    Ads filter on their calendar `date`; contacts filter on the instant
    of `form_submitted_at`, inclusive of the whole end day. A start date
    after the end date is an empty window, not an error.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from funnelboard.models import AdSpendRecord, Contact
from funnelboard.services import funnel_metrics
from funnelboard.utils.dates import day_bounds, previous_period

logger = logging.getLogger(__name__)


def load_ads(db: Session, start: date, end: date) -> List[AdSpendRecord]:
    if start > end:
        return []
    return (
        db.query(AdSpendRecord)
        .filter(AdSpendRecord.date >= start, AdSpendRecord.date <= end)
        .all()
    )


def load_contacts(db: Session, start: date, end: date) -> List[Contact]:
    if start > end:
        return []
    lower, upper = day_bounds(start, end)
    return (
        db.query(Contact)
        .filter(Contact.form_submitted_at >= lower, Contact.form_submitted_at <= upper)
        .all()
    )


def get_kpis(db: Session, start: date, end: date, compare: bool = False) -> Dict[str, Any]:
    kpis = funnel_metrics.compute_marketing_kpis(load_ads(db, start, end), load_contacts(db, start, end))
    result: Dict[str, Any] = {"start_date": start, "end_date": end, "kpis": kpis}

    if compare and start <= end:
        prev_start, prev_end = previous_period(start, end)
        previous = funnel_metrics.compute_marketing_kpis(
            load_ads(db, prev_start, prev_end), load_contacts(db, prev_start, prev_end)
        )
        result["previous"] = {"start_date": prev_start, "end_date": prev_end, "kpis": previous}
        result["changes"] = funnel_metrics.compare_periods(kpis, previous)

    logger.info(f"[DASHBOARD] KPIs {start}..{end}: spend={kpis['total_spend']} leads={kpis['total_leads']}")
    return result


def get_trends(db: Session, start: date, end: date) -> List[Dict[str, Any]]:
    return funnel_metrics.compute_daily_trends(load_ads(db, start, end), load_contacts(db, start, end))


def get_sources(db: Session, start: date, end: date, level: str = "campaign") -> List[Dict[str, Any]]:
    """Raises ValueError for an unknown level."""
    return funnel_metrics.compute_source_breakdown(
        load_ads(db, start, end), load_contacts(db, start, end), level
    )


def get_ads(db: Session, start: date, end: date) -> List[Dict[str, Any]]:
    return funnel_metrics.compute_ad_metrics_with_spend(load_ads(db, start, end), load_contacts(db, start, end))


def get_top_ads(
    db: Session,
    start: date,
    end: date,
    metric: str,
    limit: int = 10,
    ascending: Optional[bool] = None,
) -> List[Dict[str, Any]]:
    """Raises ValueError for an unknown metric."""
    return funnel_metrics.top_ads_by_metric(get_ads(db, start, end), metric, limit, ascending)


def get_contacts(
    db: Session,
    start: date,
    end: date,
    ad_id: Optional[str] = None,
    funnel_stage: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    contacts = load_contacts(db, start, end)
    rows, total = funnel_metrics.contact_funnel_page(contacts, ad_id, funnel_stage, limit, offset)
    return {"contacts": rows, "total": total, "limit": limit, "offset": offset}


def get_stage_counts(db: Session, start: date, end: date) -> Dict[str, int]:
    return funnel_metrics.count_contacts_by_stage(load_contacts(db, start, end))


def get_leads_breakdown(db: Session, start: date, end: date) -> Dict[str, Any]:
    return funnel_metrics.compute_leads_breakdown(load_contacts(db, start, end))
