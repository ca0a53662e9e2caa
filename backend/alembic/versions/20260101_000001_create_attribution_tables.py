"""Create attribution tables (ads, events, contacts, ad_transcripts, sync log).

Revision ID: 20260101_000001
Revises:
Create Date: 2026-01-01 00:00:00.000000

WHAT:
    Creates the full attribution schema:
    - ads: daily ad insights, unique per (ad_id, date)
    - facebook_ads_sync_log: audit row per ad spend sync
    - events: append-only CRM webhook log with the raw payload
    - contacts: per-contact attribution and funnel timestamps
    - ad_transcripts: creative transcripts and copy, unique per ad_id

WHY:
    The unique constraints are what make re-syncs and repeated transcript
    requests idempotent (ON CONFLICT targets).
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20260101_000001'
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(18, 4)
RATIO = sa.Numeric(18, 6)

sync_status = sa.Enum('pending', 'running', 'success', 'failed', name='syncstatusenum')
calendar_type = sa.Enum('Qualified', 'DQ', name='calendartypeenum')
media_type = sa.Enum('video', 'image', 'carousel', name='mediatypeenum')
transcript_status = sa.Enum('pending', 'processing', 'completed', 'failed', name='transcriptstatusenum')


def _metric(name, type_=sa.Integer()):
    return sa.Column(name, type_, nullable=False, server_default='0')


def upgrade() -> None:
    # =========================================================================
    # AD SPEND
    # =========================================================================
    op.create_table(
        'ads',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('ad_id', sa.String(), nullable=False),
        sa.Column('ad_name', sa.String(), nullable=True),
        sa.Column('campaign_id', sa.String(), nullable=True),
        sa.Column('campaign_name', sa.String(), nullable=True),
        sa.Column('adset_id', sa.String(), nullable=False, server_default=''),
        sa.Column('adset_name', sa.String(), nullable=False, server_default=''),
        sa.Column('date', sa.Date(), nullable=False),
        _metric('spend', MONEY),
        _metric('impressions'),
        _metric('clicks'),
        _metric('reach'),
        _metric('frequency', MONEY),
        _metric('cpm', MONEY),
        _metric('cpc', MONEY),
        _metric('ctr', RATIO),
        _metric('cpp', MONEY),
        _metric('outbound_clicks'),
        _metric('outbound_ctr', RATIO),
        _metric('cost_per_outbound_click', MONEY),
        _metric('video_plays'),
        _metric('video_thru_plays'),
        _metric('video_p25_watched'),
        _metric('video_p50_watched'),
        _metric('video_p75_watched'),
        _metric('video_p95_watched'),
        _metric('video_p100_watched'),
        _metric('video_avg_watch_time', MONEY),
        _metric('hook_rate', MONEY),
        _metric('hold_rate', MONEY),
        _metric('leads'),
        _metric('purchases'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('ad_id', 'date', name='uq_ads_ad_id_date'),
    )
    op.create_index('ix_ads_date', 'ads', ['date'])

    op.create_table(
        'facebook_ads_sync_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('status', sync_status, nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('sync_started_at', sa.DateTime(), nullable=True),
        sa.Column('sync_completed_at', sa.DateTime(), nullable=True),
        sa.Column('records_synced', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
    )

    # =========================================================================
    # CRM
    # =========================================================================
    op.create_table(
        'events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('contact_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('ad_id', sa.String(), nullable=True),
        sa.Column('cash_collected', MONEY, nullable=True),
        sa.Column('calendar_type', calendar_type, nullable=True),
        sa.Column('revenue', sa.Text(), nullable=True),
        sa.Column('investment_ability', sa.Text(), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_events_contact_id', 'events', ['contact_id'])
    op.create_index('ix_events_created_at', 'events', ['created_at'])

    op.create_table(
        'contacts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('ghl_contact_id', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        # Attribution
        sa.Column('ad_id', sa.String(), nullable=True),
        sa.Column('ad_name', sa.String(), nullable=True),
        sa.Column('campaign_id', sa.String(), nullable=True),
        sa.Column('campaign_name', sa.String(), nullable=True),
        sa.Column('adset_id', sa.String(), nullable=True),
        sa.Column('adset_name', sa.String(), nullable=True),
        sa.Column('utm_source', sa.String(), nullable=True),
        sa.Column('utm_medium', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),
        sa.Column('utm_content', sa.String(), nullable=True),
        sa.Column('utm_term', sa.String(), nullable=True),
        sa.Column('fbclid', sa.String(), nullable=True),
        # Custom fields
        sa.Column('revenue', MONEY, nullable=True),
        sa.Column('investment_ability', MONEY, nullable=True),
        sa.Column('deal_value', MONEY, nullable=True),
        sa.Column('cash_collected', MONEY, nullable=True),
        sa.Column('scaling_challenge', sa.Text(), nullable=True),
        sa.Column('form_responses', sa.JSON(), nullable=True),
        # Pipeline
        sa.Column('current_pipeline', sa.String(), nullable=True),
        sa.Column('current_stage', sa.String(), nullable=True),
        sa.Column('pipeline_stage_history', sa.JSON(), nullable=True),
        # Calendar
        sa.Column('calendar_id', sa.String(), nullable=True),
        sa.Column('calendar_name', sa.String(), nullable=True),
        sa.Column('is_qualified', sa.Boolean(), nullable=True),
        # Funnel timestamps
        sa.Column('form_submitted_at', sa.DateTime(), nullable=True),
        sa.Column('call_booked_at', sa.DateTime(), nullable=True),
        sa.Column('call_scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('showed_up_at', sa.DateTime(), nullable=True),
        sa.Column('no_show_at', sa.DateTime(), nullable=True),
        sa.Column('qualified_at', sa.DateTime(), nullable=True),
        sa.Column('disqualified_at', sa.DateTime(), nullable=True),
        sa.Column('deal_closed_at', sa.DateTime(), nullable=True),
        sa.Column('final_deal_value', MONEY, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('ghl_contact_id', name='uq_contacts_ghl_contact_id'),
    )
    op.create_index('ix_contacts_form_submitted_at', 'contacts', ['form_submitted_at'])
    op.create_index('ix_contacts_ad_id', 'contacts', ['ad_id'])

    # =========================================================================
    # TRANSCRIPTS
    # =========================================================================
    op.create_table(
        'ad_transcripts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('ad_id', sa.String(), nullable=False),
        sa.Column('creative_id', sa.String(), nullable=True),
        sa.Column('media_type', media_type, nullable=True),
        sa.Column('status', transcript_status, nullable=False),
        sa.Column('video_url', sa.Text(), nullable=True),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('transcript_json', sa.JSON(), nullable=True),
        sa.Column('ad_copy', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('ad_id', name='uq_ad_transcripts_ad_id'),
    )
    op.create_index('ix_ad_transcripts_status', 'ad_transcripts', ['status'])


def downgrade() -> None:
    op.drop_index('ix_ad_transcripts_status', table_name='ad_transcripts')
    op.drop_table('ad_transcripts')
    op.drop_index('ix_contacts_ad_id', table_name='contacts')
    op.drop_index('ix_contacts_form_submitted_at', table_name='contacts')
    op.drop_table('contacts')
    op.drop_index('ix_events_created_at', table_name='events')
    op.drop_index('ix_events_contact_id', table_name='events')
    op.drop_table('events')
    op.drop_table('facebook_ads_sync_log')
    op.drop_index('ix_ads_date', table_name='ads')
    op.drop_table('ads')

    bind = op.get_bind()
    for enum in (transcript_status, media_type, calendar_type, sync_status):
        enum.drop(bind, checkfirst=True)
