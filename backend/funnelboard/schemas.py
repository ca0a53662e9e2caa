"""Pydantic schemas for request/response payloads."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok"
            }
        }
    }


class DateRange(BaseModel):
    start: str = Field(description="Inclusive start date (YYYY-MM-DD)")
    end: str = Field(description="Inclusive end date (YYYY-MM-DD)")


# =============================================================================
# AD SPEND
# =============================================================================

class AdSyncRequest(BaseModel):
    """Payload for a recent-window ad spend sync.

    Both dates default to the last seven days when omitted.
    """

    start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD, defaults to today - 7 days")
    end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD, defaults to today")
    log_id: Optional[int] = Field(default=None, description="Sync log row to mark success/failed")

    model_config = {
        "json_schema_extra": {
            "example": {
                "start_date": "2024-01-01",
                "end_date": "2024-01-07",
                "log_id": 42
            }
        }
    }


class AdSyncResponse(BaseModel):
    """Result of an ad spend sync."""

    success: bool
    message: Optional[str] = None
    synced_count: int = Field(description="Rows upserted into ads")
    date_range: DateRange
    log_id: Optional[int] = None
    metrics_synced: List[str] = Field(default_factory=list)
    sample: List[Dict[str, Any]] = Field(default_factory=list, description="First two flattened rows")
    errors: List[str] = Field(default_factory=list, description="Per-batch upsert errors")


class AdImportRequest(BaseModel):
    """Payload for a historical ad spend import (max 365 days)."""

    start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD (required)")
    end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD (required)")
    campaign_ids: Optional[List[str]] = Field(default=None, description="Restrict to these campaigns")
    include_inactive: bool = Field(default=False, description="Include ads that are no longer delivering")

    model_config = {
        "json_schema_extra": {
            "example": {
                "start_date": "2024-01-01",
                "end_date": "2024-03-31",
                "campaign_ids": ["120200000000000001"],
                "include_inactive": True
            }
        }
    }


class AdImportResponse(BaseModel):
    success: bool
    imported_count: int
    total_fetched: int
    date_range: DateRange
    errors: List[str] = Field(default_factory=list)


# =============================================================================
# CRM
# =============================================================================

class GHLSyncRequest(BaseModel):
    """Payload for the CRM contact sync.

    Accepts snake_case and camelCase keys. contact_id syncs a single
    contact, scan_revenue lists every contact with revenue data; otherwise
    a paginated sync runs.
    """

    batch_size: int = Field(default=100, alias="batchSize", ge=1, le=100)
    max_contacts: int = Field(default=10000, alias="maxContacts", ge=1)
    contact_id: Optional[str] = Field(default=None, alias="contactId")
    scan_revenue: bool = Field(default=False, alias="scanRevenue")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "batch_size": 100,
                "max_contacts": 500
            }
        },
    )


class WebhookResponse(BaseModel):
    """Acknowledgement for a CRM webhook."""

    success: bool
    event_type: str = Field(description="Event type as stored in the event log")
    contact_id: str
    contact: Optional[Dict[str, Any]] = Field(default=None, description="Contact funnel state after the update")
    event_id: str
    warnings: List[str] = Field(default_factory=list, description="Out-of-order funnel events that were applied")


# =============================================================================
# TRANSCRIPTS
# =============================================================================

class TranscriptGenerateRequest(BaseModel):
    ad_id: Optional[str] = Field(default=None, description="Facebook ad id (required)")
    force_regenerate: bool = Field(default=False, description="Ignore a cached completed/pending row")

    model_config = {
        "json_schema_extra": {
            "example": {
                "ad_id": "120200000000000042",
                "force_regenerate": False
            }
        }
    }


class TranscriptSegment(BaseModel):
    start: str = Field(description="MM:SS")
    end: str = Field(description="MM:SS")
    text: str


class TranscriptResponse(BaseModel):
    success: bool = True
    cached: bool
    id: Optional[str] = None
    ad_id: str
    creative_id: Optional[str] = None
    media_type: Optional[str] = None
    status: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    image_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    transcript: Optional[str] = None
    transcript_json: Optional[List[TranscriptSegment]] = None
    ad_copy: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    generated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
