"""Ad spend sync and historical import.

WHAT:
    Turns Graph API insight rows into AdSpendRecord rows:
    - flatten_insight(): action arrays -> scalar columns, strings -> numbers
    - upsert_ad_records(): chunked ON CONFLICT (ad_id, date) upserts
    - sync_facebook_ads(): recurring sync of a recent window, with sync log
    - import_facebook_ads(): validated backfill of up to 365 days

WHY:
    Re-syncing the same day must overwrite, never duplicate, so dashboards
    can sum spend across rows without double counting. One failing chunk
    does not stop the others; its error is reported per batch.

REFERENCES:
    - funnelboard/services/meta_graph_client.py (fetch layer)
    - funnelboard/routers/ad_sync.py (HTTP triggers)
    - funnelboard/workers/arq_worker.py (daily scheduled sync)
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnelboard.database import upsert_rows
from funnelboard.models import AdSpendRecord, FacebookAdsSyncLog, SyncStatusEnum
from funnelboard.services.funnel_metrics import safe_divide
from funnelboard.services.meta_graph_client import (
    IMPORT_INSIGHT_FIELDS,
    SYNC_INSIGHT_FIELDS,
    MetaGraphClient,
)
from funnelboard.telemetry import capture_exception
from funnelboard.utils.dates import default_sync_window, format_date, parse_iso_date, utcnow
from funnelboard.utils.numbers import to_float, to_int

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
MAX_IMPORT_DAYS = 365
SYNC_PAGE_DELAY_SECONDS = 0.1

METRICS_SYNCED = [
    "spend", "impressions", "clicks", "reach", "frequency",
    "cpm", "cpc", "ctr", "cpp",
    "outbound_clicks", "outbound_ctr", "cost_per_outbound_click",
    "video_plays", "video_thru_plays",
    "video_p25_watched", "video_p50_watched", "video_p75_watched",
    "video_p95_watched", "video_p100_watched", "video_avg_watch_time",
    "hook_rate", "hold_rate",
    "leads", "purchases",
]

LEAD_ACTION_TYPES = ("lead", "onsite_conversion.lead_grouped")
PURCHASE_ACTION_TYPES = ("purchase", "omni_purchase")


class AdImportValidationError(ValueError):
    """Import request rejected before any upstream call."""


# =============================================================================
# FLATTENING
# =============================================================================

def _action_value(actions: Any, action_types: Iterable[str]) -> float:
    """Value of the first action whose type matches, trying types in order.

    Missing arrays and missing types yield 0, never None.
    """
    if not isinstance(actions, list):
        return 0.0
    for action_type in action_types:
        for action in actions:
            if isinstance(action, dict) and action.get("action_type") == action_type:
                return to_float(action.get("value"))
    return 0.0


def flatten_insight(row: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten one Graph insight row into AdSpendRecord columns.

    Example:
        >>> flatten_insight({"ad_id": "A1", "date_start": "2024-01-01", "spend": "12.50",
        ...                  "actions": [{"action_type": "lead", "value": "3"}]})["leads"]
        3
    """
    video_plays = to_int(_action_value(row.get("video_play_actions"), ("video_view",)))
    thru_plays = to_int(_action_value(row.get("video_thruplay_watched_actions"), ("video_view",)))
    p25 = to_int(_action_value(row.get("video_p25_watched_actions"), ("video_view",)))

    return {
        "ad_id": str(row.get("ad_id") or ""),
        "ad_name": row.get("ad_name"),
        "campaign_id": row.get("campaign_id"),
        "campaign_name": row.get("campaign_name"),
        "adset_id": row.get("adset_id") or "",
        "adset_name": row.get("adset_name") or "",
        "date": parse_iso_date(row.get("date_start") or ""),
        "spend": to_float(row.get("spend")),
        "impressions": to_int(row.get("impressions")),
        "clicks": to_int(row.get("clicks")),
        "reach": to_int(row.get("reach")),
        "frequency": to_float(row.get("frequency")),
        "cpm": to_float(row.get("cpm")),
        "cpc": to_float(row.get("cpc")),
        "ctr": to_float(row.get("ctr")),
        "cpp": to_float(row.get("cpp")),
        "outbound_clicks": to_int(_action_value(row.get("outbound_clicks"), ("outbound_click",))),
        "outbound_ctr": _action_value(row.get("outbound_clicks_ctr"), ("outbound_click",)),
        "cost_per_outbound_click": _action_value(row.get("cost_per_outbound_click"), ("outbound_click",)),
        "video_plays": video_plays,
        "video_thru_plays": thru_plays,
        "video_p25_watched": p25,
        "video_p50_watched": to_int(_action_value(row.get("video_p50_watched_actions"), ("video_view",))),
        "video_p75_watched": to_int(_action_value(row.get("video_p75_watched_actions"), ("video_view",))),
        "video_p95_watched": to_int(_action_value(row.get("video_p95_watched_actions"), ("video_view",))),
        "video_p100_watched": to_int(_action_value(row.get("video_p100_watched_actions"), ("video_view",))),
        "video_avg_watch_time": _action_value(row.get("video_avg_time_watched_actions"), ("video_view",)),
        "hook_rate": safe_divide(p25, video_plays) * 100,
        "hold_rate": safe_divide(thru_plays, video_plays) * 100,
        "leads": to_int(_action_value(row.get("actions"), LEAD_ACTION_TYPES)),
        "purchases": to_int(_action_value(row.get("actions"), PURCHASE_ACTION_TYPES)),
    }


# =============================================================================
# UPSERT
# =============================================================================

def upsert_ad_records(
    db: Session,
    records: Sequence[Dict[str, Any]],
    batch_size: int = BATCH_SIZE,
) -> Tuple[int, List[str]]:
    """Upsert flattened records in chunks keyed on (ad_id, date).

    WHAT:
        Duplicate keys inside the input collapse to the last occurrence
        (last write wins), then each chunk is upserted and committed.

    Returns:
        (upserted_count, errors) where each error reads "Batch N: <message>"
    """
    deduped: Dict[Tuple[str, date], Dict[str, Any]] = {}
    for record in records:
        deduped[(record["ad_id"], record["date"])] = record
    rows = list(deduped.values())

    upserted = 0
    errors: List[str] = []
    for batch_number, offset in enumerate(range(0, len(rows), batch_size), start=1):
        now = utcnow()
        chunk = [
            {**record, "id": uuid.uuid4(), "created_at": now, "updated_at": now}
            for record in rows[offset:offset + batch_size]
        ]
        try:
            upsert_rows(
                db,
                AdSpendRecord,
                chunk,
                conflict_columns=("ad_id", "date"),
                exclude_from_update=("created_at",),
            )
            db.commit()
            upserted += len(chunk)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[AD_SYNC] Batch {batch_number} failed: {e}")
            errors.append(f"Batch {batch_number}: {e}")

    return upserted, errors


# =============================================================================
# SYNC LOG
# =============================================================================

def _update_sync_log(db: Session, log_id: Optional[int], **fields: Any) -> None:
    """Best-effort sync log update; failures are logged, never raised."""
    if log_id is None:
        return
    try:
        log = db.get(FacebookAdsSyncLog, log_id)
        if not log:
            logger.warning(f"[AD_SYNC] Sync log {log_id} not found")
            return
        for key, value in fields.items():
            setattr(log, key, value)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[AD_SYNC] Failed to update sync log {log_id}: {e}")
        capture_exception(e, extra={"log_id": log_id})


def create_sync_log(db: Session, start_date: date, end_date: date) -> FacebookAdsSyncLog:
    log = FacebookAdsSyncLog(
        status=SyncStatusEnum.pending,
        start_date=start_date,
        end_date=end_date,
        sync_started_at=utcnow(),
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


# =============================================================================
# OPERATIONS
# =============================================================================

def sync_facebook_ads(
    db: Session,
    client: MetaGraphClient,
    account_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    log_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Sync ad-level daily insights for a recent window.

    WHAT:
        Defaults to the last seven days. Fetches the full metric set,
        flattens and upserts it, and marks the sync log success/failed.

    Raises:
        MetaGraphAPIError: Upstream failure (the sync log is marked failed first)
    """
    default_start, default_end = default_sync_window()
    start_date = start_date or default_start
    end_date = end_date or default_end
    date_range = {"start": format_date(start_date), "end": format_date(end_date)}

    logger.info(f"[AD_SYNC] Syncing {date_range['start']} to {date_range['end']} (log_id={log_id})")
    _update_sync_log(db, log_id, status=SyncStatusEnum.running)

    try:
        rows = client.fetch_ad_insights(
            account_id,
            date_range["start"],
            date_range["end"],
            fields=SYNC_INSIGHT_FIELDS,
            page_delay=SYNC_PAGE_DELAY_SECONDS,
        )
        records = [flatten_insight(row) for row in rows]
    except Exception as e:
        _update_sync_log(
            db,
            log_id,
            status=SyncStatusEnum.failed,
            error_message=str(e),
            sync_completed_at=utcnow(),
        )
        raise

    if not records:
        _update_sync_log(
            db,
            log_id,
            status=SyncStatusEnum.success,
            records_synced=0,
            sync_completed_at=utcnow(),
        )
        return {
            "success": True,
            "message": "No ad data found for the specified date range",
            "synced_count": 0,
            "date_range": date_range,
            "log_id": log_id,
            "metrics_synced": METRICS_SYNCED,
            "sample": [],
            "errors": [],
        }

    synced_count, errors = upsert_ad_records(db, records)

    if errors:
        _update_sync_log(
            db,
            log_id,
            status=SyncStatusEnum.failed,
            records_synced=synced_count,
            error_message="; ".join(errors),
            sync_completed_at=utcnow(),
        )
    else:
        _update_sync_log(
            db,
            log_id,
            status=SyncStatusEnum.success,
            records_synced=synced_count,
            sync_completed_at=utcnow(),
        )

    logger.info(f"[AD_SYNC] Synced {synced_count}/{len(records)} records ({len(errors)} batch errors)")
    return {
        "success": not errors,
        "synced_count": synced_count,
        "date_range": date_range,
        "log_id": log_id,
        "metrics_synced": METRICS_SYNCED,
        "sample": records[:2],
        "errors": errors,
    }


def validate_import_range(start_date: Optional[str], end_date: Optional[str]) -> Tuple[date, date]:
    """Validate importer dates.

    Raises:
        AdImportValidationError: Missing, malformed, inverted or > 365-day range
    """
    if not start_date or not end_date:
        raise AdImportValidationError("start_date and end_date are required")
    try:
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
    except ValueError:
        raise AdImportValidationError("Invalid date format. Use YYYY-MM-DD")
    if start > end:
        raise AdImportValidationError("start_date must be on or before end_date")
    if (end - start).days > MAX_IMPORT_DAYS:
        raise AdImportValidationError(f"Date range cannot exceed {MAX_IMPORT_DAYS} days")
    return start, end


def import_facebook_ads(
    db: Session,
    client: MetaGraphClient,
    account_id: str,
    start_date: Optional[str],
    end_date: Optional[str],
    campaign_ids: Optional[Sequence[str]] = None,
    include_inactive: bool = False,
) -> Dict[str, Any]:
    """Backfill historical ad insights.

    Raises:
        AdImportValidationError: Invalid range, before any upstream call
        MetaGraphAPIError: Upstream failure
    """
    start, end = validate_import_range(start_date, end_date)
    logger.info(
        f"[AD_IMPORT] Importing {start} to {end} "
        f"(campaigns={list(campaign_ids or [])}, include_inactive={include_inactive})"
    )

    rows = client.fetch_ad_insights(
        account_id,
        format_date(start),
        format_date(end),
        fields=IMPORT_INSIGHT_FIELDS,
        campaign_ids=campaign_ids,
        include_inactive=include_inactive,
    )
    records = [flatten_insight(row) for row in rows]
    imported_count, errors = upsert_ad_records(db, records)

    logger.info(f"[AD_IMPORT] Imported {imported_count}/{len(rows)} rows")
    return {
        "success": not errors,
        "imported_count": imported_count,
        "total_fetched": len(rows),
        "date_range": {"start": format_date(start), "end": format_date(end)},
        "errors": errors,
    }
