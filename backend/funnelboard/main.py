"""FastAPI application entrypoint.

Validates configuration, builds the upstream clients, configures CORS,
includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqladmin import Admin, ModelView
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .database import engine
from .deps import Settings, get_settings
from .routers import ad_sync as ad_sync_router
from .routers import ad_transcripts as ad_transcripts_router
from .routers import dashboard as dashboard_router
from .routers import ghl_sync as ghl_sync_router
from .routers import ghl_webhooks as ghl_webhooks_router
from .routers.ghl_webhooks import WEBHOOK_CORS_HEADERS
from .services.deepgram_client import DeepgramClient
from .services.ghl_client import GHLClient
from .services.meta_graph_client import MetaGraphClient
from .services.transcription import MediaDownloader
from .telemetry import init_sentry
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401


# SQLAdmin ModelView classes (read-only)
# This is used to display the models in the admin interface; see the __str__ methods in models.py.

class ContactAdmin(ModelView, model=models.Contact):
    column_list = [
        models.Contact.ghl_contact_id,
        models.Contact.first_name,
        models.Contact.last_name,
        models.Contact.email,
        models.Contact.ad_name,
        models.Contact.form_submitted_at,
        models.Contact.call_booked_at,
        models.Contact.showed_up_at,
        models.Contact.deal_closed_at,
    ]
    column_searchable_list = ["ghl_contact_id", "email", "first_name", "last_name"]
    column_sortable_list = ["form_submitted_at", "call_booked_at", "deal_closed_at"]
    can_create = False
    can_edit = False
    can_delete = False
    name = "Contact"
    name_plural = "Contacts"
    icon = "fa-solid fa-user"


class ConversionEventAdmin(ModelView, model=models.ConversionEvent):
    """Event log. Rows are immutable, so the view is list/detail only."""
    column_list = [
        models.ConversionEvent.created_at,
        models.ConversionEvent.contact_id,
        models.ConversionEvent.event_type,
        models.ConversionEvent.ad_id,
        models.ConversionEvent.calendar_type,
        models.ConversionEvent.cash_collected,
    ]
    column_searchable_list = ["contact_id", "event_type"]
    column_sortable_list = ["created_at", "event_type"]
    can_create = False
    can_edit = False
    can_delete = False
    name = "Event"
    name_plural = "Events"
    icon = "fa-solid fa-bolt"


class AdSpendAdmin(ModelView, model=models.AdSpendRecord):
    column_list = [
        models.AdSpendRecord.date,
        models.AdSpendRecord.ad_id,
        models.AdSpendRecord.ad_name,
        models.AdSpendRecord.campaign_name,
        models.AdSpendRecord.spend,
        models.AdSpendRecord.impressions,
        models.AdSpendRecord.clicks,
        models.AdSpendRecord.leads,
    ]
    column_searchable_list = ["ad_id", "ad_name", "campaign_name"]
    column_sortable_list = ["date", "spend", "clicks"]
    can_create = False
    can_edit = False
    can_delete = False
    name = "Ad Spend"
    name_plural = "Ad Spend"
    icon = "fa-solid fa-dollar-sign"


class AdTranscriptAdmin(ModelView, model=models.AdTranscript):
    column_list = [
        models.AdTranscript.ad_id,
        models.AdTranscript.media_type,
        models.AdTranscript.status,
        models.AdTranscript.duration_seconds,
        models.AdTranscript.generated_at,
        models.AdTranscript.error_message,
    ]
    column_searchable_list = ["ad_id"]
    column_sortable_list = ["status", "generated_at"]
    can_create = False
    can_edit = False
    can_delete = False
    name = "Ad Transcript"
    name_plural = "Ad Transcripts"
    icon = "fa-solid fa-closed-captioning"


class SyncLogAdmin(ModelView, model=models.FacebookAdsSyncLog):
    column_list = [
        models.FacebookAdsSyncLog.id,
        models.FacebookAdsSyncLog.status,
        models.FacebookAdsSyncLog.start_date,
        models.FacebookAdsSyncLog.end_date,
        models.FacebookAdsSyncLog.records_synced,
        models.FacebookAdsSyncLog.sync_completed_at,
    ]
    column_sortable_list = ["id", "sync_started_at", "status"]
    can_create = False
    can_edit = False
    can_delete = False
    name = "Ad Sync Log"
    name_plural = "Ad Sync Logs"
    icon = "fa-solid fa-rotate"


class WebhookCORSMiddleware(BaseHTTPMiddleware):
    """Wildcard CORS for the CRM webhook.

    WHY: Workflow test calls come from arbitrary CRM origins and carry no
    credentials, so the allow-list in CORSMiddleware does not apply.
    """
    async def dispatch(self, request, call_next):
        if request.url.path.startswith("/webhooks/"):
            if request.method == "OPTIONS":
                return StarletteResponse(status_code=204, headers=WEBHOOK_CORS_HEADERS)

            response = await call_next(request)
            for key, value in WEBHOOK_CORS_HEADERS.items():
                response.headers[key] = value
            return response

        return await call_next(request)


def build_clients(app: FastAPI, settings: Settings) -> None:
    """Create the upstream clients once per process and park them on app.state."""
    app.state.meta_client = MetaGraphClient(
        access_token=settings.FACEBOOK_ACCESS_TOKEN,
        api_version=settings.FACEBOOK_API_VERSION,
    )
    app.state.ghl_client = GHLClient(api_key=settings.GHL_API_KEY)
    app.state.deepgram_client = DeepgramClient(api_key=settings.DEEPGRAM_API_KEY)
    app.state.media_downloader = MediaDownloader(max_bytes=settings.TRANSCRIPT_MAX_BYTES)


def create_app() -> FastAPI:
    settings = get_settings()
    # Fail before any I/O when a credential is missing
    settings.ensure_required()
    init_sentry(settings.SENTRY_DSN, settings.ENVIRONMENT)

    app = FastAPI(
        title="Funnelboard API",
        description="""
        Marketing attribution backend.

        This API provides endpoints for:
        - GoHighLevel webhooks (lead, booking, show and close events)
        - Facebook ad spend sync and historical import
        - CRM revenue field sync
        - Ad creative transcripts
        - Dashboard KPIs, trends, breakdowns and contact lists
        """,
        version="1.0.0",
    )

    build_clients(app, settings)

    logger.info(f"[CORS] Allowed origins: {settings.cors_origin_list}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Must be added AFTER CORSMiddleware so it runs first
    app.add_middleware(WebhookCORSMiddleware)

    app.include_router(ghl_webhooks_router.router)
    app.include_router(ad_sync_router.router)
    app.include_router(ghl_sync_router.router)
    app.include_router(ad_transcripts_router.router)
    app.include_router(dashboard_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("shutdown")
    def close_clients():
        """Release pooled HTTP connections."""
        app.state.ghl_client.close()
        app.state.deepgram_client.close()
        app.state.media_downloader.close()

    if settings.ADMIN_ENABLED:
        admin = Admin(app, engine, title="Funnelboard Admin")
        admin.add_view(ContactAdmin)
        admin.add_view(ConversionEventAdmin)
        admin.add_view(AdSpendAdmin)
        admin.add_view(AdTranscriptAdmin)
        admin.add_view(SyncLogAdmin)

    return app


app = create_app()
