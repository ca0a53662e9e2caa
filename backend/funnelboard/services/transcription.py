"""Video download and transcript segmentation.

WHAT:
    - MediaDownloader: streams an ad video to a temp file, following one
      redirect and enforcing a size cap
    - build_segments(): turns a Deepgram response into [{start, end, text}]
      with MM:SS timestamps
    - transcribe_video(): download -> Deepgram -> segments, always
      deleting the temp file

WHY:
    Shared by the synchronous transcript mode (services/transcript_service.py)
    and the background worker (workers/transcript_worker.py), so both
    produce identical transcript_json.
"""

from __future__ import annotations

import logging
import os
import tempfile
from typing import Any, Dict, List, Optional, Tuple

import httpx

from funnelboard.services.deepgram_client import DeepgramClient

logger = logging.getLogger(__name__)

SEGMENT_SECONDS = 10
DEFAULT_TEMP_DIR = os.path.join(tempfile.gettempdir(), "ad-transcripts")


class TranscriptDownloadError(Exception):
    """The video could not be downloaded."""


class TranscriptGenerationError(Exception):
    """Download or transcription failed for one ad."""


def format_timestamp(seconds: float) -> str:
    """Seconds -> MM:SS, e.g. 75.4 -> "01:15"."""
    total = int(seconds or 0)
    return f"{total // 60:02d}:{total % 60:02d}"


def build_segments(result: Dict[str, Any]) -> Tuple[str, List[Dict[str, str]]]:
    """Extract full text and timed segments from a Deepgram response.

    Utterances are preferred. Without them, words of the first
    alternative are grouped into windows starting every 10+ seconds.
    Without word timings, the whole text becomes one 00:00 segment.

    Returns:
        (full_text, segments)
    """
    results = result.get("results") or {}

    utterances = results.get("utterances") or []
    if utterances:
        segments = [
            {
                "start": format_timestamp(u.get("start")),
                "end": format_timestamp(u.get("end")),
                "text": u.get("transcript", ""),
            }
            for u in utterances
        ]
        return " ".join(s["text"] for s in segments), segments

    channels = results.get("channels") or []
    alternatives = (channels[0].get("alternatives") or []) if channels else []
    if not alternatives:
        return "", []

    alternative = alternatives[0]
    text = alternative.get("transcript") or ""
    words = alternative.get("words") or []
    if not words:
        return text, ([{"start": "00:00", "end": "00:00", "text": text}] if text else [])

    segments = []
    current: Optional[Dict[str, Any]] = None
    for word in words:
        if current is None:
            current = {"start": word["start"], "end": word["end"], "words": [word["word"]]}
        elif word["start"] - current["start"] > SEGMENT_SECONDS:
            segments.append(current)
            current = {"start": word["start"], "end": word["end"], "words": [word["word"]]}
        else:
            current["end"] = word["end"]
            current["words"].append(word["word"])
    segments.append(current)

    return text, [
        {
            "start": format_timestamp(s["start"]),
            "end": format_timestamp(s["end"]),
            "text": " ".join(s["words"]),
        }
        for s in segments
    ]


class MediaDownloader:
    """Downloads ad videos to local temp files.

    Usage:
        downloader = MediaDownloader(max_bytes=25 * 1024 * 1024)
        path = downloader.download("https://video.xx.fbcdn.net/...", "/tmp/123.mp4")
    """

    def __init__(
        self,
        transport: Optional[httpx.BaseTransport] = None,
        max_bytes: Optional[int] = None,
        timeout: float = 120.0,
    ):
        self.max_bytes = max_bytes
        # Redirects are followed by hand so only one hop is allowed
        self._client = httpx.Client(transport=transport, timeout=timeout, follow_redirects=False)

    def close(self) -> None:
        self._client.close()

    def download(self, url: str, dest_path: str, redirects_left: int = 1) -> str:
        """Stream url to dest_path.

        Raises:
            TranscriptDownloadError: Non-200 status, transport failure or
                file larger than max_bytes; a partial file is removed
        """
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code in (301, 302) and redirects_left > 0:
                    location = response.headers.get("location")
                    if location:
                        return self.download(location, dest_path, redirects_left - 1)
                if response.status_code != 200:
                    raise TranscriptDownloadError(f"Failed to download: HTTP {response.status_code}")

                written = 0
                with open(dest_path, "wb") as out:
                    for chunk in response.iter_bytes():
                        written += len(chunk)
                        if self.max_bytes is not None and written > self.max_bytes:
                            raise TranscriptDownloadError(
                                f"Video exceeds maximum size of {self.max_bytes} bytes"
                            )
                        out.write(chunk)
        except httpx.RequestError as e:
            _remove(dest_path)
            raise TranscriptDownloadError(f"Failed to download: {e}")
        except TranscriptDownloadError:
            _remove(dest_path)
            raise

        logger.info(f"[TRANSCRIPT] Downloaded {written} bytes to {dest_path}")
        return dest_path


def _remove(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)


def transcribe_video(
    ad_id: str,
    video_url: str,
    downloader: MediaDownloader,
    deepgram: DeepgramClient,
    temp_dir: Optional[str] = None,
) -> Tuple[str, List[Dict[str, str]]]:
    """Download one ad video, transcribe it and build segments.

    Raises:
        TranscriptGenerationError: Any failure, with the cause's message
    """
    temp_dir = temp_dir or DEFAULT_TEMP_DIR
    os.makedirs(temp_dir, exist_ok=True)
    video_path = os.path.join(temp_dir, f"{ad_id}.mp4")

    try:
        downloader.download(video_url, video_path)
        text, segments = build_segments(deepgram.transcribe_file(video_path))
        logger.info(f"[TRANSCRIPT] Ad {ad_id}: {len(segments)} segments, {len(text)} chars")
        return text, segments
    except Exception as e:
        raise TranscriptGenerationError(f"Transcript generation failed: {e}") from e
    finally:
        _remove(video_path)
