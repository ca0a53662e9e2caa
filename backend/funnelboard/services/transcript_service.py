"""Ad transcript generation.

WHAT:
    generate_ad_transcript() resolves an ad's creative and stores an
    AdTranscript row:
    - video ads: media urls and ad copy, then either status=pending for the
      background worker (TRANSCRIPT_MODE=deferred) or an immediate
      transcription (TRANSCRIPT_MODE=sync)
    - image ads: image url and ad copy, status=completed straight away

WHY:
    Transcription takes minutes for long videos. Deferred mode keeps the
    request fast; sync mode exists for single-process deployments without
    a worker.

REFERENCES:
    - funnelboard/services/transcription.py (download + Deepgram + segments)
    - funnelboard/workers/transcript_worker.py (deferred processing)
    - funnelboard/routers/ad_transcripts.py
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from funnelboard.models import AdTranscript, MediaTypeEnum, TranscriptStatusEnum
from funnelboard.services.meta_graph_client import MetaGraphAPIError, MetaGraphClient
from funnelboard.services.transcription import TranscriptGenerationError, transcribe_video
from funnelboard.utils.dates import utcnow

logger = logging.getLogger(__name__)

# Forced regeneration is the only way out of completed
ALLOWED_TRANSITIONS = {
    None: {
        TranscriptStatusEnum.pending,
        TranscriptStatusEnum.processing,
        TranscriptStatusEnum.completed,
        TranscriptStatusEnum.failed,
    },
    TranscriptStatusEnum.pending: {TranscriptStatusEnum.processing, TranscriptStatusEnum.failed},
    TranscriptStatusEnum.processing: {
        TranscriptStatusEnum.processing,
        TranscriptStatusEnum.pending,
        TranscriptStatusEnum.completed,
        TranscriptStatusEnum.failed,
    },
    TranscriptStatusEnum.failed: {TranscriptStatusEnum.processing},
    TranscriptStatusEnum.completed: set(),
}

CACHEABLE_STATUSES = (TranscriptStatusEnum.completed, TranscriptStatusEnum.pending)


class InvalidTranscriptTransition(Exception):
    """A status change that would move a transcript backwards."""


def set_status(row: AdTranscript, status: TranscriptStatusEnum, force: bool = False) -> None:
    """Move row to status, enforcing the one-directional lifecycle.

    Raises:
        InvalidTranscriptTransition: Illegal move (completed -> processing
            is allowed only with force)
    """
    current = TranscriptStatusEnum(row.status) if row.status is not None else None
    allowed = ALLOWED_TRANSITIONS[current]
    if status not in allowed and not (force and status == TranscriptStatusEnum.processing):
        raise InvalidTranscriptTransition(
            f"Cannot move transcript {row.ad_id} from {current.value if current else None} to {status.value}"
        )
    row.status = status


def transcript_to_dict(row: AdTranscript) -> Dict[str, Any]:
    return {
        "id": str(row.id) if row.id else None,
        "ad_id": row.ad_id,
        "creative_id": row.creative_id,
        "media_type": row.media_type.value if row.media_type else None,
        "status": row.status.value if row.status else None,
        "video_url": row.video_url,
        "thumbnail_url": row.thumbnail_url,
        "image_url": row.image_url,
        "duration_seconds": row.duration_seconds,
        "transcript": row.transcript,
        "transcript_json": row.transcript_json,
        "ad_copy": row.ad_copy,
        "error_message": row.error_message,
        "generated_at": row.generated_at,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def _cta(spec: Dict[str, Any]) -> Optional[str]:
    cta_type = (spec.get("call_to_action") or {}).get("type")
    return cta_type.replace("_", " ") if cta_type else None


def _reset(row: AdTranscript) -> None:
    for attr in (
        "creative_id", "media_type", "video_url", "thumbnail_url", "image_url",
        "duration_seconds", "transcript", "transcript_json", "ad_copy",
        "error_message", "generated_at",
    ):
        setattr(row, attr, None)


def _apply_video(
    row: AdTranscript,
    creative: Dict[str, Any],
    video_id: str,
    meta_client: MetaGraphClient,
) -> None:
    row.media_type = MediaTypeEnum.video
    try:
        video = meta_client.get_video_details(video_id)
    except MetaGraphAPIError as e:
        logger.error(f"[TRANSCRIPT] Video details failed for ad {row.ad_id}: {e}")
        row.thumbnail_url = creative.get("thumbnail_url")
        row.error_message = str(e) or "Failed to fetch video"
        set_status(row, TranscriptStatusEnum.failed)
        return

    row.video_url = video.get("source")
    row.thumbnail_url = video.get("picture") or creative.get("thumbnail_url")
    if video.get("length"):
        row.duration_seconds = int(round(float(video["length"])))

    video_data = (creative.get("object_story_spec") or {}).get("video_data")
    if video_data:
        row.ad_copy = {
            "headline": video_data.get("title"),
            "body": video_data.get("message"),
            "cta": _cta(video_data),
        }
    set_status(row, TranscriptStatusEnum.pending)


def _apply_image(row: AdTranscript, creative: Dict[str, Any]) -> None:
    link_data = (creative.get("object_story_spec") or {}).get("link_data") or {}
    row.media_type = MediaTypeEnum.image
    row.image_url = creative.get("image_url") or link_data.get("picture")
    row.thumbnail_url = creative.get("thumbnail_url")
    if link_data:
        row.ad_copy = {
            "headline": link_data.get("name"),
            "body": link_data.get("message"),
            "description": link_data.get("description"),
            "cta": _cta(link_data),
        }
    set_status(row, TranscriptStatusEnum.completed)


def complete_transcription(row: AdTranscript, downloader, deepgram, temp_dir: Optional[str] = None) -> None:
    """Transcribe a processing video row in place; completed or failed afterwards.

    Does not commit.
    """
    try:
        text, segments = transcribe_video(row.ad_id, row.video_url, downloader, deepgram, temp_dir)
    except TranscriptGenerationError as e:
        logger.error(f"[TRANSCRIPT] Ad {row.ad_id} failed: {e}")
        row.error_message = str(e)
        set_status(row, TranscriptStatusEnum.failed)
        return

    row.transcript = text
    row.transcript_json = segments
    row.error_message = None
    row.generated_at = utcnow()
    set_status(row, TranscriptStatusEnum.completed)


def generate_ad_transcript(
    db: Session,
    meta_client: MetaGraphClient,
    ad_id: str,
    force_regenerate: bool = False,
    mode: str = "deferred",
    downloader=None,
    deepgram=None,
    temp_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """Create or refresh the transcript row for one ad.

    Returns:
        The row as a dict plus `cached` (True when an existing completed
        or pending row was returned untouched)

    Raises:
        MetaGraphAPIError: The creative could not be fetched; the row is
            marked failed first
    """
    row = db.query(AdTranscript).filter(AdTranscript.ad_id == ad_id).first()
    if row is not None and row.status in CACHEABLE_STATUSES and not force_regenerate:
        logger.info(f"[TRANSCRIPT] Cache hit for ad {ad_id} ({row.status.value})")
        return {**transcript_to_dict(row), "cached": True}

    if row is None:
        row = AdTranscript(ad_id=ad_id)
        db.add(row)
    set_status(row, TranscriptStatusEnum.processing, force=force_regenerate)
    _reset(row)
    db.commit()

    try:
        creative = meta_client.get_ad_creative(ad_id)
    except MetaGraphAPIError as e:
        row.error_message = str(e)
        set_status(row, TranscriptStatusEnum.failed)
        db.commit()
        raise

    row.creative_id = creative.get("id")
    story = creative.get("object_story_spec") or {}
    video_id = creative.get("video_id") or (story.get("video_data") or {}).get("video_id")

    if video_id:
        _apply_video(row, creative, video_id, meta_client)
        if mode == "sync" and row.status == TranscriptStatusEnum.pending:
            set_status(row, TranscriptStatusEnum.processing)
            complete_transcription(row, downloader, deepgram, temp_dir)
    else:
        _apply_image(row, creative)

    db.commit()
    db.refresh(row)
    logger.info(f"[TRANSCRIPT] Ad {ad_id} stored as {row.media_type.value} ({row.status.value})")
    return {**transcript_to_dict(row), "cached": False}
