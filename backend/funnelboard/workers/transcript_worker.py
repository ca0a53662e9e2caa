#!/usr/bin/env python3
"""Transcript worker - turns pending video ads into transcripts.

WHAT:
    Polls ad_transcripts for pending video rows and processes them one at
    a time: mark processing, download the video, transcribe with Deepgram,
    store segments, mark completed (or failed with the error message).

WHY:
    Transcription of a long video takes minutes; the API only queues the
    row (TRANSCRIPT_MODE=deferred) and this worker does the slow part.

USAGE:
    # Standalone polling loop
    python -m funnelboard.workers.transcript_worker

    # Or as an ARQ cron job (every 30s), see workers/arq_worker.py

REFERENCES:
    - funnelboard/services/transcript_service.py
    - funnelboard/services/transcription.py
"""

import logging
import sys
import time
from typing import Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from funnelboard.deps import Settings, get_settings
from funnelboard.models import AdTranscript, MediaTypeEnum, TranscriptStatusEnum
from funnelboard.services.deepgram_client import DeepgramClient
from funnelboard.services.transcript_service import complete_transcription, set_status
from funnelboard.services.transcription import MediaDownloader
from funnelboard.telemetry import capture_exception, init_sentry
from funnelboard.utils.env import load_env_file

logger = logging.getLogger(__name__)


def fetch_pending(db: Session, limit: int) -> List[AdTranscript]:
    """Oldest pending video rows that have a video URL."""
    return (
        db.query(AdTranscript)
        .filter(
            AdTranscript.status == TranscriptStatusEnum.pending,
            AdTranscript.media_type == MediaTypeEnum.video,
            AdTranscript.video_url.isnot(None),
        )
        .order_by(AdTranscript.created_at.asc())
        .limit(limit)
        .all()
    )


def build_worker_downloader(
    settings: Settings,
    transport: Optional[httpx.BaseTransport] = None,
) -> MediaDownloader:
    """Downloader for background jobs, capped only by TRANSCRIPT_WORKER_MAX_BYTES.

    The request-path cap (TRANSCRIPT_MAX_BYTES) does not apply here.
    """
    return MediaDownloader(transport=transport, max_bytes=settings.TRANSCRIPT_WORKER_MAX_BYTES)


def process_transcript(
    db: Session,
    row: AdTranscript,
    downloader: MediaDownloader,
    deepgram: DeepgramClient,
    temp_dir: Optional[str] = None,
) -> bool:
    """Process one pending row. Returns True when it ended completed."""
    logger.info(f"[TRANSCRIPT_WORKER] Processing ad {row.ad_id}")
    try:
        set_status(row, TranscriptStatusEnum.processing)
        db.commit()
        complete_transcription(row, downloader, deepgram, temp_dir)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception(f"[TRANSCRIPT_WORKER] Ad {row.ad_id} failed")
        capture_exception(e, extra={"operation": "process_transcript", "ad_id": row.ad_id})
        row.status = TranscriptStatusEnum.failed
        row.error_message = str(e)
        db.commit()
        return False

    return row.status == TranscriptStatusEnum.completed


def process_pending_batch(
    session_factory: Callable[[], Session],
    downloader: MediaDownloader,
    deepgram: DeepgramClient,
    batch_size: int = 5,
    temp_dir: Optional[str] = None,
) -> Dict[str, int]:
    """Process up to batch_size pending rows sequentially."""
    db = session_factory()
    try:
        rows = fetch_pending(db, batch_size)
        if not rows:
            return {"processed": 0, "completed": 0, "failed": 0}

        logger.info(f"[TRANSCRIPT_WORKER] Found {len(rows)} pending transcript(s)")
        completed = 0
        for row in rows:
            if process_transcript(db, row, downloader, deepgram, temp_dir):
                completed += 1
        return {"processed": len(rows), "completed": completed, "failed": len(rows) - completed}
    finally:
        db.close()


def run_polling_loop(
    settings: Settings,
    session_factory: Callable[[], Session],
    downloader: MediaDownloader,
    deepgram: DeepgramClient,
    sleep: Callable[[float], None] = time.sleep,
    max_iterations: Optional[int] = None,
) -> None:
    """Poll forever (or max_iterations times), sleeping between batches."""
    iterations = 0
    while max_iterations is None or iterations < max_iterations:
        try:
            process_pending_batch(
                session_factory,
                downloader,
                deepgram,
                batch_size=settings.TRANSCRIPT_BATCH_SIZE,
                temp_dir=settings.TRANSCRIPT_TEMP_DIR,
            )
        except Exception as e:
            # A database outage must not kill the loop
            logger.exception("[TRANSCRIPT_WORKER] Batch failed")
            capture_exception(e, extra={"operation": "process_pending_batch"})
        iterations += 1
        if max_iterations is None or iterations < max_iterations:
            sleep(settings.TRANSCRIPT_POLL_INTERVAL_SECONDS)


def main():
    """Start the standalone polling loop."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    load_env_file()
    settings = get_settings()
    settings.ensure_required()
    init_sentry(settings.SENTRY_DSN, settings.ENVIRONMENT)

    from funnelboard.database import SessionLocal

    deepgram = DeepgramClient(api_key=settings.DEEPGRAM_API_KEY)
    downloader = build_worker_downloader(settings)

    logger.info("=" * 60)
    logger.info("[TRANSCRIPT_WORKER] Starting")
    logger.info(f"[TRANSCRIPT_WORKER] Poll interval: {settings.TRANSCRIPT_POLL_INTERVAL_SECONDS}s")
    logger.info(f"[TRANSCRIPT_WORKER] Batch size: {settings.TRANSCRIPT_BATCH_SIZE}")
    logger.info("=" * 60)

    try:
        run_polling_loop(settings, SessionLocal, downloader, deepgram)
    except KeyboardInterrupt:
        logger.info("[TRANSCRIPT_WORKER] Stopped by user")
    finally:
        deepgram.close()
        downloader.close()


if __name__ == "__main__":
    main()
