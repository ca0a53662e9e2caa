"""Ad transcript endpoint.

WHAT:
    Resolves an ad's creative and returns its transcript row. Video ads
    are queued for the transcript worker (or transcribed inline when
    TRANSCRIPT_MODE=sync); image ads return their copy immediately.

REFERENCES:
    - funnelboard/services/transcript_service.py
    - funnelboard/workers/transcript_worker.py
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from funnelboard.database import get_db
from funnelboard.deps import (
    Settings,
    get_deepgram_client,
    get_media_downloader,
    get_meta_client,
    get_settings,
)
from funnelboard.schemas import TranscriptGenerateRequest, TranscriptResponse
from funnelboard.services.meta_graph_client import MetaGraphAPIError
from funnelboard.services.transcript_service import InvalidTranscriptTransition, generate_ad_transcript

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ad-transcripts", tags=["Ad Transcripts"])


def _generate(db, meta_client, deepgram, downloader, settings: Settings, request: TranscriptGenerateRequest):
    if not request.ad_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="ad_id is required")

    logger.info("[TRANSCRIPT] HTTP generate: ad_id=%s force=%s", request.ad_id, request.force_regenerate)
    try:
        return generate_ad_transcript(
            db,
            meta_client,
            request.ad_id,
            force_regenerate=request.force_regenerate,
            mode=settings.TRANSCRIPT_MODE,
            downloader=downloader,
            deepgram=deepgram,
            temp_dir=settings.TRANSCRIPT_TEMP_DIR,
        )
    except MetaGraphAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except InvalidTranscriptTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.options("/generate", include_in_schema=False)
async def generate_preflight():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/generate", response_model=TranscriptResponse)
def generate_transcript_get(
    ad_id: Optional[str] = Query(None),
    force_regenerate: bool = Query(False),
    db: Session = Depends(get_db),
    meta_client=Depends(get_meta_client),
    deepgram=Depends(get_deepgram_client),
    downloader=Depends(get_media_downloader),
    settings: Settings = Depends(get_settings),
):
    request = TranscriptGenerateRequest(ad_id=ad_id, force_regenerate=force_regenerate)
    return _generate(db, meta_client, deepgram, downloader, settings, request)


@router.post("/generate", response_model=TranscriptResponse)
def generate_transcript_post(
    payload: Optional[TranscriptGenerateRequest] = Body(None),
    db: Session = Depends(get_db),
    meta_client=Depends(get_meta_client),
    deepgram=Depends(get_deepgram_client),
    downloader=Depends(get_media_downloader),
    settings: Settings = Depends(get_settings),
):
    """Generate (or return the cached) transcript for an ad.

    RESPONSES:
        400: ad_id missing
        502: Graph API failure fetching the creative
    """
    return _generate(db, meta_client, deepgram, downloader, settings, payload or TranscriptGenerateRequest())
