"""SQLAlchemy ORM models and enums.

This module defines the attribution schema: daily ad spend rows keyed by
(ad_id, date), the append-only CRM event log, the per-contact funnel state
derived from those events, ad transcripts, and the ad sync audit log.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Date, Enum, Integer, Numeric, JSON, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base


# Single Base used by the entire application
Base = declarative_base()


def _money():
    # Floats out, so arithmetic in the metrics layer never mixes Decimal and float
    return Numeric(18, 4, asdecimal=False)


# Enums ---------------------------------------------------------

class TranscriptStatusEnum(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class MediaTypeEnum(str, enum.Enum):
    video = "video"
    image = "image"
    carousel = "carousel"


class CalendarTypeEnum(str, enum.Enum):
    qualified = "Qualified"
    dq = "DQ"


class SyncStatusEnum(str, enum.Enum):
    pending = "pending"
    running = "running"
    success = "success"
    failed = "failed"


class FunnelStageEnum(str, enum.Enum):
    """Furthest point a contact has reached, derived from funnel timestamps.

    Never stored; see services/funnel_metrics.get_funnel_stage for precedence.
    """
    lead = "lead"
    booked = "booked"
    qualified = "qualified"
    disqualified = "disqualified"
    showed = "showed"
    no_show = "no_show"
    closed = "closed"


# Ad spend -------------------------------------------------------

class AdSpendRecord(Base):
    """One ad's Graph API insights for one calendar day.

    (ad_id, date) is unique: a re-sync of the same day overwrites the
    previous values instead of adding a second row. Aggregations sum
    across dates explicitly.
    """
    __tablename__ = "ads"
    __table_args__ = (
        UniqueConstraint("ad_id", "date", name="uq_ads_ad_id_date"),
        Index("ix_ads_date", "date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Identity
    ad_id = Column(String, nullable=False)
    ad_name = Column(String, nullable=True)
    campaign_id = Column(String, nullable=True)
    campaign_name = Column(String, nullable=True)
    adset_id = Column(String, nullable=False, default="")
    adset_name = Column(String, nullable=False, default="")
    date = Column(Date, nullable=False)

    # Core delivery metrics
    spend = Column(_money(), nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    reach = Column(Integer, nullable=False, default=0)
    frequency = Column(_money(), nullable=False, default=0)

    # Cost metrics as reported by the platform
    cpm = Column(_money(), nullable=False, default=0)
    cpc = Column(_money(), nullable=False, default=0)
    ctr = Column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    cpp = Column(_money(), nullable=False, default=0)

    # Outbound
    outbound_clicks = Column(Integer, nullable=False, default=0)
    outbound_ctr = Column(Numeric(18, 6, asdecimal=False), nullable=False, default=0)
    cost_per_outbound_click = Column(_money(), nullable=False, default=0)

    # Video
    video_plays = Column(Integer, nullable=False, default=0)
    video_thru_plays = Column(Integer, nullable=False, default=0)
    video_p25_watched = Column(Integer, nullable=False, default=0)
    video_p50_watched = Column(Integer, nullable=False, default=0)
    video_p75_watched = Column(Integer, nullable=False, default=0)
    video_p95_watched = Column(Integer, nullable=False, default=0)
    video_p100_watched = Column(Integer, nullable=False, default=0)
    video_avg_watch_time = Column(_money(), nullable=False, default=0)

    # Calculated at ingest: p25 / plays and thruplays / plays, as percentages
    hook_rate = Column(_money(), nullable=False, default=0)
    hold_rate = Column(_money(), nullable=False, default=0)

    # Conversions
    leads = Column(Integer, nullable=False, default=0)
    purchases = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __str__(self):
        return f"{self.ad_name or self.ad_id} ({self.date})"


class FacebookAdsSyncLog(Base):
    """Audit row for one ad spend sync run.

    Created by the caller (scheduler or operator) and passed to the sync
    endpoint as log_id; the sync marks it success or failed.
    """
    __tablename__ = "facebook_ads_sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(Enum(SyncStatusEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False, default=SyncStatusEnum.pending)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    sync_started_at = Column(DateTime, default=datetime.utcnow)
    sync_completed_at = Column(DateTime, nullable=True)
    records_synced = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    def __str__(self):
        return f"Sync #{self.id} ({self.status})"


# CRM --------------------------------------------------------------

class ConversionEvent(Base):
    """Append-only log of CRM webhook calls.

    One row per webhook, written even when the event type is unknown.
    raw_payload keeps the verbatim body; contact state lives in Contact.
    """
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_contact_id", "contact_id"),
        Index("ix_events_created_at", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = Column(String, nullable=False)  # GoHighLevel contact id
    event_type = Column(String, nullable=False)
    ad_id = Column(String, nullable=True)
    cash_collected = Column(_money(), nullable=True)
    calendar_type = Column(Enum(CalendarTypeEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=True)
    revenue = Column(Text, nullable=True)
    investment_ability = Column(Text, nullable=True)
    raw_payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.event_type} for {self.contact_id}"


class Contact(Base):
    """A CRM contact and its funnel timestamps.

    Each funnel timestamp is written at most once; later events never
    clear or move it. The current stage is derived from which timestamps
    are set, so it is not stored.
    """
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("ghl_contact_id", name="uq_contacts_ghl_contact_id"),
        Index("ix_contacts_form_submitted_at", "form_submitted_at"),
        Index("ix_contacts_ad_id", "ad_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ghl_contact_id = Column(String, nullable=False)

    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    # Attribution
    ad_id = Column(String, nullable=True)
    ad_name = Column(String, nullable=True)
    campaign_id = Column(String, nullable=True)
    campaign_name = Column(String, nullable=True)
    adset_id = Column(String, nullable=True)
    adset_name = Column(String, nullable=True)
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    utm_content = Column(String, nullable=True)
    utm_term = Column(String, nullable=True)
    fbclid = Column(String, nullable=True)

    # Custom fields
    revenue = Column(_money(), nullable=True)
    investment_ability = Column(_money(), nullable=True)
    deal_value = Column(_money(), nullable=True)
    cash_collected = Column(_money(), nullable=True)
    scaling_challenge = Column(Text, nullable=True)
    form_responses = Column(JSON, nullable=True)

    # Pipeline
    current_pipeline = Column(String, nullable=True)
    current_stage = Column(String, nullable=True)
    pipeline_stage_history = Column(JSON, nullable=True)  # [{pipeline, stage, timestamp}]

    # Calendar
    calendar_id = Column(String, nullable=True)
    calendar_name = Column(String, nullable=True)
    is_qualified = Column(Boolean, nullable=True)

    # Funnel timestamps
    form_submitted_at = Column(DateTime, nullable=True)
    call_booked_at = Column(DateTime, nullable=True)
    call_scheduled_for = Column(DateTime, nullable=True)
    showed_up_at = Column(DateTime, nullable=True)
    no_show_at = Column(DateTime, nullable=True)
    qualified_at = Column(DateTime, nullable=True)
    disqualified_at = Column(DateTime, nullable=True)
    deal_closed_at = Column(DateTime, nullable=True)
    final_deal_value = Column(_money(), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or "Unknown"

    # This is used to display the model in the admin interface.
    def __str__(self):
        return f"{self.full_name} ({self.ghl_contact_id})"


# Transcripts -----------------------------------------------------

class AdTranscript(Base):
    """Transcript or copy of one ad's creative.

    Status moves pending -> processing -> completed/failed. Only a forced
    regeneration moves a completed row back to processing.
    """
    __tablename__ = "ad_transcripts"
    __table_args__ = (
        UniqueConstraint("ad_id", name="uq_ad_transcripts_ad_id"),
        Index("ix_ad_transcripts_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ad_id = Column(String, nullable=False)
    creative_id = Column(String, nullable=True)
    media_type = Column(Enum(MediaTypeEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=True)
    status = Column(Enum(TranscriptStatusEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False, default=TranscriptStatusEnum.pending)

    video_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    transcript = Column(Text, nullable=True)
    transcript_json = Column(JSON, nullable=True)  # [{start, end, text}] with MM:SS stamps
    ad_copy = Column(JSON, nullable=True)  # {headline, body, description, cta}

    error_message = Column(Text, nullable=True)
    generated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __str__(self):
        return f"Transcript {self.ad_id} ({self.status})"
