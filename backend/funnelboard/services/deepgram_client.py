"""Deepgram prerecorded transcription client.

WHAT:
    Posts a local audio/video file to Deepgram's /v1/listen endpoint and
    returns the raw JSON response.

WHY:
    Segment building lives in services/transcription.py; this client only
    knows the wire contract, so tests can feed it canned responses through
    an httpx.MockTransport.

REFERENCES:
    - https://developers.deepgram.com/reference/listen-file
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEEPGRAM_BASE_URL = "https://api.deepgram.com"
DEEPGRAM_MODEL = "nova-2"

LISTEN_OPTIONS = {
    "model": DEEPGRAM_MODEL,
    "smart_format": "true",
    "punctuate": "true",
    "paragraphs": "true",
    "utterances": "true",
}


class DeepgramAPIError(Exception):
    """Custom exception for Deepgram API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DeepgramClient:
    """Prerecorded transcription client.

    Usage:
        client = DeepgramClient(api_key="...")
        result = client.transcribe_file("/tmp/ad-transcripts/123.mp4")
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEEPGRAM_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 300.0,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Token {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def transcribe_file(self, path: str, mimetype: str = "video/mp4") -> Dict[str, Any]:
        """Transcribe one file.

        Raises:
            DeepgramAPIError: Transport failure or non-2xx response
        """
        size = os.path.getsize(path)
        logger.info(f"[DEEPGRAM] Transcribing {path} ({size} bytes)")
        # Streamed from disk with an explicit length
        try:
            with open(path, "rb") as media:
                response = self._client.post(
                    "/v1/listen",
                    params=LISTEN_OPTIONS,
                    content=media,
                    headers={"Content-Type": mimetype, "Content-Length": str(size)},
                )
        except httpx.RequestError as e:
            raise DeepgramAPIError(f"Deepgram request failed: {e}")

        if response.status_code >= 400:
            logger.error(f"[DEEPGRAM] HTTP {response.status_code}: {response.text[:500]}")
            raise DeepgramAPIError(
                f"Deepgram API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response.json()
