"""Tests for ad transcript generation and the transcript worker.

WHAT:
    - Segment building and MM:SS formatting from Deepgram responses
    - MediaDownloader redirect, status and size handling
    - DeepgramClient wire contract
    - generate_ad_transcript() for image, deferred video and sync video ads
    - Worker batch processing and the status lifecycle

REFERENCES:
    - funnelboard/services/transcription.py
    - funnelboard/services/deepgram_client.py
    - funnelboard/services/transcript_service.py
    - funnelboard/workers/transcript_worker.py
"""

import os

import httpx
import pytest

from funnelboard.deps import Settings, get_meta_client
from funnelboard.models import AdTranscript, MediaTypeEnum, TranscriptStatusEnum
from funnelboard.services.deepgram_client import DeepgramAPIError, DeepgramClient
from funnelboard.services.meta_graph_client import MetaGraphAPIError
from funnelboard.services.transcript_service import (
    InvalidTranscriptTransition,
    generate_ad_transcript,
    set_status,
)
from funnelboard.services.transcription import (
    MediaDownloader,
    TranscriptDownloadError,
    build_segments,
    format_timestamp,
)
from funnelboard.workers.transcript_worker import build_worker_downloader, process_pending_batch

UTTERANCE_RESPONSE = {
    "results": {
        "utterances": [
            {"start": 0.2, "end": 4.9, "transcript": "Want more booked calls?"},
            {"start": 65.0, "end": 75.4, "transcript": "Apply below."},
        ]
    }
}

VIDEO_CREATIVE = {
    "id": "cr-1",
    "video_id": "v-1",
    "thumbnail_url": "https://cdn.example/thumb.jpg",
    "object_story_spec": {
        "video_data": {
            "title": "Scale to 50k",
            "message": "Book a call",
            "call_to_action": {"type": "LEARN_MORE"},
        }
    },
}

IMAGE_CREATIVE = {
    "id": "cr-2",
    "image_url": "https://cdn.example/ad.jpg",
    "object_story_spec": {
        "link_data": {"name": "Free training", "message": "Watch now", "description": "60 min"}
    },
}


class _FakeMetaClient:
    def __init__(self, creative=None, video=None, creative_error=None, video_error=None):
        self.creative = creative
        self.video = video or {"source": "https://cdn.example/v-1.mp4", "length": 61.6, "picture": "https://cdn.example/pic.jpg"}
        self.creative_error = creative_error
        self.video_error = video_error
        self.creative_calls = 0

    def get_ad_creative(self, ad_id):
        self.creative_calls += 1
        if self.creative_error:
            raise self.creative_error
        return self.creative

    def get_video_details(self, video_id):
        if self.video_error:
            raise self.video_error
        return self.video


class _FakeDownloader:
    def __init__(self, error=None):
        self.error = error
        self.paths = []

    def download(self, url, dest_path, redirects_left=1):
        if self.error:
            raise self.error
        self.paths.append(dest_path)
        with open(dest_path, "wb") as out:
            out.write(b"fake-video")
        return dest_path


class _FakeDeepgram:
    def __init__(self, response=None, error=None):
        self.response = response or UTTERANCE_RESPONSE
        self.error = error

    def transcribe_file(self, path, mimetype="video/mp4"):
        assert os.path.exists(path)
        if self.error:
            raise self.error
        return self.response


class TestSegments:

    @pytest.mark.parametrize("seconds, expected", [(0, "00:00"), (9.99, "00:09"), (75.4, "01:15"), (None, "00:00")])
    def test_format_timestamp(self, seconds, expected):
        assert format_timestamp(seconds) == expected

    def test_utterances_preferred(self):
        text, segments = build_segments(UTTERANCE_RESPONSE)

        assert text == "Want more booked calls? Apply below."
        assert segments == [
            {"start": "00:00", "end": "00:04", "text": "Want more booked calls?"},
            {"start": "01:05", "end": "01:15", "text": "Apply below."},
        ]

    def test_words_grouped_into_windows(self):
        """WHAT: Without utterances, a new segment starts once a word is 10s+
        after the segment start.
        """
        words = [
            {"word": "hello", "start": 0.0, "end": 0.5},
            {"word": "there", "start": 9.0, "end": 9.5},
            {"word": "again", "start": 12.0, "end": 12.4},
        ]
        response = {"results": {"channels": [{"alternatives": [{"transcript": "hello there again", "words": words}]}]}}

        text, segments = build_segments(response)

        assert text == "hello there again"
        assert segments == [
            {"start": "00:00", "end": "00:09", "text": "hello there"},
            {"start": "00:12", "end": "00:12", "text": "again"},
        ]

    def test_text_without_words_is_single_segment(self):
        response = {"results": {"channels": [{"alternatives": [{"transcript": "just text"}]}]}}

        assert build_segments(response) == ("just text", [{"start": "00:00", "end": "00:00", "text": "just text"}])

    def test_empty_response(self):
        assert build_segments({}) == ("", [])


class TestMediaDownloader:

    def test_follows_one_redirect(self, tmp_path):
        def handler(request):
            if request.url.host == "origin.example":
                return httpx.Response(302, headers={"location": "https://cdn.example/v.mp4"})
            return httpx.Response(200, content=b"video-bytes")

        dest = str(tmp_path / "v.mp4")
        MediaDownloader(transport=httpx.MockTransport(handler)).download("https://origin.example/v.mp4", dest)

        with open(dest, "rb") as f:
            assert f.read() == b"video-bytes"

    def test_non_200_raises(self, tmp_path):
        downloader = MediaDownloader(transport=httpx.MockTransport(lambda r: httpx.Response(404)))

        with pytest.raises(TranscriptDownloadError, match="HTTP 404"):
            downloader.download("https://cdn.example/v.mp4", str(tmp_path / "v.mp4"))

    def test_size_cap_removes_partial_file(self, tmp_path):
        downloader = MediaDownloader(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"x" * 100)),
            max_bytes=10,
        )
        dest = tmp_path / "v.mp4"

        with pytest.raises(TranscriptDownloadError, match="maximum size"):
            downloader.download("https://cdn.example/v.mp4", str(dest))

        assert not dest.exists()


class TestDeepgramClient:

    def test_posts_file_with_options(self, tmp_path):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["params"] = dict(request.url.params)
            seen["body"] = request.content
            return httpx.Response(200, json=UTTERANCE_RESPONSE)

        media = tmp_path / "ad.mp4"
        media.write_bytes(b"abc")
        client = DeepgramClient(api_key="dg-key", transport=httpx.MockTransport(handler))

        assert client.transcribe_file(str(media)) == UTTERANCE_RESPONSE
        assert seen["auth"] == "Token dg-key"
        assert seen["params"]["model"] == "nova-2"
        assert seen["params"]["utterances"] == "true"
        assert seen["body"] == b"abc"

    def test_file_is_streamed_with_explicit_length(self, tmp_path):
        """WHAT: The upload body is the open file, sent with its size.
        WHY: Ad videos can be large; the file must not be read into memory first.
        """
        seen = {}

        def handler(request):
            seen["length"] = request.headers.get("Content-Length")
            seen["chunked"] = "Transfer-Encoding" in request.headers
            seen["body"] = request.content
            return httpx.Response(200, json=UTTERANCE_RESPONSE)

        media = tmp_path / "ad.mp4"
        media.write_bytes(b"x" * 200_000)
        client = DeepgramClient(api_key="dg-key", transport=httpx.MockTransport(handler))

        client.transcribe_file(str(media))

        assert seen["length"] == "200000"
        assert seen["chunked"] is False
        assert seen["body"] == b"x" * 200_000

    def test_error_status_raises(self, tmp_path):
        media = tmp_path / "ad.mp4"
        media.write_bytes(b"abc")
        client = DeepgramClient(api_key="bad", transport=httpx.MockTransport(lambda r: httpx.Response(401, text="nope")))

        with pytest.raises(DeepgramAPIError) as exc_info:
            client.transcribe_file(str(media))

        assert exc_info.value.status_code == 401


class TestStatusLifecycle:

    def test_completed_cannot_go_back_without_force(self):
        row = AdTranscript(ad_id="a1", status=TranscriptStatusEnum.completed)

        with pytest.raises(InvalidTranscriptTransition):
            set_status(row, TranscriptStatusEnum.processing)

        set_status(row, TranscriptStatusEnum.processing, force=True)
        assert row.status == TranscriptStatusEnum.processing

    def test_pending_cannot_complete_directly(self):
        row = AdTranscript(ad_id="a1", status=TranscriptStatusEnum.pending)

        with pytest.raises(InvalidTranscriptTransition):
            set_status(row, TranscriptStatusEnum.completed)


class TestGenerateAdTranscript:

    def test_image_ad_completes_immediately(self, test_db_session):
        result = generate_ad_transcript(test_db_session, _FakeMetaClient(IMAGE_CREATIVE), "ad-img")

        assert result["cached"] is False
        assert result["media_type"] == "image"
        assert result["status"] == "completed"
        assert result["image_url"] == "https://cdn.example/ad.jpg"
        assert result["transcript"] is None
        assert result["ad_copy"]["headline"] == "Free training"

    def test_video_ad_deferred_is_pending(self, test_db_session):
        """WHAT: In deferred mode a video row is stored pending with its media URLs.
        WHY: The worker does the slow download and transcription.
        """
        result = generate_ad_transcript(test_db_session, _FakeMetaClient(VIDEO_CREATIVE), "ad-vid")

        assert result["status"] == "pending"
        assert result["media_type"] == "video"
        assert result["video_url"] == "https://cdn.example/v-1.mp4"
        assert result["duration_seconds"] == 62
        assert result["ad_copy"] == {"headline": "Scale to 50k", "body": "Book a call", "cta": "LEARN MORE"}

    def test_existing_row_is_returned_from_cache(self, test_db_session):
        meta = _FakeMetaClient(IMAGE_CREATIVE)
        generate_ad_transcript(test_db_session, meta, "ad-img")

        result = generate_ad_transcript(test_db_session, meta, "ad-img")

        assert result["cached"] is True
        assert meta.creative_calls == 1
        assert test_db_session.query(AdTranscript).count() == 1

    def test_force_regenerate_refetches(self, test_db_session):
        meta = _FakeMetaClient(IMAGE_CREATIVE)
        generate_ad_transcript(test_db_session, meta, "ad-img")

        result = generate_ad_transcript(test_db_session, meta, "ad-img", force_regenerate=True)

        assert result["cached"] is False
        assert meta.creative_calls == 2

    def test_creative_error_marks_row_failed(self, test_db_session):
        meta = _FakeMetaClient(creative_error=MetaGraphAPIError("No creative found for this ad"))

        with pytest.raises(MetaGraphAPIError):
            generate_ad_transcript(test_db_session, meta, "ad-x")

        row = test_db_session.query(AdTranscript).one()
        assert row.status == TranscriptStatusEnum.failed
        assert row.error_message == "No creative found for this ad"

    def test_video_details_error_marks_row_failed(self, test_db_session):
        meta = _FakeMetaClient(VIDEO_CREATIVE, video_error=MetaGraphAPIError("Unsupported get request"))

        result = generate_ad_transcript(test_db_session, meta, "ad-vid")

        assert result["status"] == "failed"
        assert result["thumbnail_url"] == "https://cdn.example/thumb.jpg"

    def test_failed_row_is_retried_without_force(self, test_db_session):
        meta = _FakeMetaClient(creative_error=MetaGraphAPIError("temporary"))
        with pytest.raises(MetaGraphAPIError):
            generate_ad_transcript(test_db_session, meta, "ad-img")

        meta.creative_error = None
        meta.creative = IMAGE_CREATIVE
        result = generate_ad_transcript(test_db_session, meta, "ad-img")

        assert result["status"] == "completed"

    def test_sync_mode_transcribes_inline(self, test_db_session, tmp_path):
        downloader = _FakeDownloader()

        result = generate_ad_transcript(
            test_db_session,
            _FakeMetaClient(VIDEO_CREATIVE),
            "ad-vid",
            mode="sync",
            downloader=downloader,
            deepgram=_FakeDeepgram(),
            temp_dir=str(tmp_path),
        )

        assert result["status"] == "completed"
        assert result["transcript"] == "Want more booked calls? Apply below."
        assert result["transcript_json"][1] == {"start": "01:05", "end": "01:15", "text": "Apply below."}
        assert result["generated_at"] is not None
        # temp file is always removed
        assert not os.path.exists(downloader.paths[0])


class TestTranscriptWorker:

    def _pending_row(self, db, ad_id):
        row = AdTranscript(
            ad_id=ad_id,
            media_type=MediaTypeEnum.video,
            status=TranscriptStatusEnum.pending,
            video_url=f"https://cdn.example/{ad_id}.mp4",
        )
        db.add(row)
        db.commit()

    def test_batch_completes_pending_rows(self, test_db_session, session_factory, tmp_path):
        self._pending_row(test_db_session, "ad-1")
        self._pending_row(test_db_session, "ad-2")

        result = process_pending_batch(session_factory, _FakeDownloader(), _FakeDeepgram(), temp_dir=str(tmp_path))

        assert result == {"processed": 2, "completed": 2, "failed": 0}
        test_db_session.expire_all()
        rows = test_db_session.query(AdTranscript).all()
        assert {r.status for r in rows} == {TranscriptStatusEnum.completed}
        assert all(r.transcript_json for r in rows)

    def test_failure_is_stored_on_row(self, test_db_session, session_factory, tmp_path):
        self._pending_row(test_db_session, "ad-1")
        downloader = _FakeDownloader(error=TranscriptDownloadError("Failed to download: HTTP 403"))

        result = process_pending_batch(session_factory, downloader, _FakeDeepgram(), temp_dir=str(tmp_path))

        assert result == {"processed": 1, "completed": 0, "failed": 1}
        test_db_session.expire_all()
        row = test_db_session.query(AdTranscript).one()
        assert row.status == TranscriptStatusEnum.failed
        assert row.error_message == "Transcript generation failed: Failed to download: HTTP 403"

    def test_respects_batch_size(self, test_db_session, session_factory, tmp_path):
        for i in range(3):
            self._pending_row(test_db_session, f"ad-{i}")

        result = process_pending_batch(
            session_factory, _FakeDownloader(), _FakeDeepgram(), batch_size=2, temp_dir=str(tmp_path)
        )

        assert result["processed"] == 2

    def test_worker_downloads_past_request_size_cap(self, test_db_session, session_factory, tmp_path):
        """WHAT: A video larger than TRANSCRIPT_MAX_BYTES still completes in the worker.
        WHY: The request cap only guards inline generation; background jobs have no time budget.
        """
        settings = Settings()
        body = b"\0" * (settings.TRANSCRIPT_MAX_BYTES + 1024)
        downloader = build_worker_downloader(
            settings, transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body))
        )
        self._pending_row(test_db_session, "ad-big")

        result = process_pending_batch(session_factory, downloader, _FakeDeepgram(), temp_dir=str(tmp_path))

        assert result == {"processed": 1, "completed": 1, "failed": 0}
        test_db_session.expire_all()
        assert test_db_session.query(AdTranscript).one().status == TranscriptStatusEnum.completed

    def test_worker_cap_is_configurable(self, test_db_session, session_factory, tmp_path):
        settings = Settings(TRANSCRIPT_WORKER_MAX_BYTES=10)
        downloader = build_worker_downloader(
            settings, transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"x" * 100))
        )
        self._pending_row(test_db_session, "ad-1")

        result = process_pending_batch(session_factory, downloader, _FakeDeepgram(), temp_dir=str(tmp_path))

        assert result["failed"] == 1
        test_db_session.expire_all()
        assert "exceeds maximum size of 10 bytes" in test_db_session.query(AdTranscript).one().error_message

    def test_empty_queue(self, session_factory):
        assert process_pending_batch(session_factory, _FakeDownloader(), _FakeDeepgram()) == {
            "processed": 0, "completed": 0, "failed": 0,
        }


class TestTranscriptEndpoint:

    def test_missing_ad_id_is_400(self, client):
        response = client.post("/ad-transcripts/generate", json={})

        assert response.status_code == 400
        assert response.json()["detail"] == "ad_id is required"

    def test_generate_image_ad(self, app, client):
        app.dependency_overrides[get_meta_client] = lambda: _FakeMetaClient(IMAGE_CREATIVE)

        response = client.get("/ad-transcripts/generate", params={"ad_id": "ad-img"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["cached"] is False
        assert body["status"] == "completed"

    def test_creative_error_is_502(self, app, client):
        app.dependency_overrides[get_meta_client] = lambda: _FakeMetaClient(
            creative_error=MetaGraphAPIError("Facebook API error: Invalid OAuth access token")
        )

        response = client.post("/ad-transcripts/generate", json={"ad_id": "ad-1"})

        assert response.status_code == 502
        assert "Invalid OAuth" in response.json()["detail"]
