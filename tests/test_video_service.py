"""
Tests for VideoRecordManager: upload submission and provider callbacks.
"""
import json

import httpx
import pytest
from sqlalchemy import func, select

from critech.core.config import get_settings
from critech.core.errors import UnsupportedNotification, UploadRejected, ValidationError
from critech.models.models import ProviderNotification, ReviewStatus, TranscriptStatus, VideoStatus
from critech.services.media.media_store import MediaStoreAdapter
from critech.services.reviews.review_service import review_manager
from critech.services.videos.video_service import VideoRecordManager, merge_metadata, metadata_from_provider

DELIVERY_URL = "https://res.cloudinary.com/demo/video/upload/v17/reviews/clip.mov"


def provider_response(asset_id="asset-1", **extra):
    body = {
        "asset_id": asset_id,
        "public_id": f"reviews/{asset_id}",
        "secure_url": DELIVERY_URL,
        "duration": 12.4,
        "width": 1920,
        "height": 1080,
        "format": "mov",
        "video": {"codec": "h264", "bit_rate": "5000000", "dar": "16:9"},
        "audio": {"codec": "aac", "frequency": 48000},
        "frame_rate": 30.0,
    }
    body.update(extra)
    return body


def eager_notification(asset_id="asset-1", **extra):
    body = {
        "notification_type": "eager",
        "asset_id": asset_id,
        "public_id": f"reviews/{asset_id}",
        "secure_url": DELIVERY_URL,
        "eager": [{"transformation": "q_auto,f_mp4", "secure_url": DELIVERY_URL}],
    }
    body.update(extra)
    return body


def upload_notification(asset_id="asset-1", **extra):
    body = provider_response(asset_id, **extra)
    body["notification_type"] = "upload"
    return body


@pytest.fixture
def uploads():
    return []


@pytest.fixture
def manager(uploads):
    def handler(request: httpx.Request):
        uploads.append(request)
        return httpx.Response(200, json=provider_response())

    store = MediaStoreAdapter(settings=get_settings(), transport=httpx.MockTransport(handler))
    return VideoRecordManager(store=store, reviews=review_manager)


# ============================================================================
# Metadata
# ============================================================================

def test_metadata_from_provider_response():
    meta = metadata_from_provider(provider_response())
    assert meta.codec == "h264"
    assert meta.bit_rate == 5000000
    assert meta.aspect_ratio == "16:9"
    assert meta.audio_frequency == 48000
    assert meta.fps == 30.0


def test_merge_metadata_never_blanks_known_values():
    existing = {"codec": "h264", "width": 1920}
    merged = merge_metadata(existing, metadata_from_provider({"width": 1280}))
    assert merged["codec"] == "h264"
    assert merged["width"] == 1280


# ============================================================================
# Upload submission
# ============================================================================

async def test_upload_creates_video_and_placeholder_review(db, manager, uploads):
    video, review = await manager.create_from_upload_submission(db, b"\x00" * 64, "clip.mov", "u1")

    assert len(uploads) == 1
    assert video.status == VideoStatus.PROCESSING
    assert video.transcript_status == TranscriptStatus.PENDING
    assert video.provider_asset_id == "asset-1"
    assert video.duration == 12
    assert video.video_url == DELIVERY_URL
    assert review.video_id == video.id
    assert review.owner_id == "u1"
    assert review.status == ReviewStatus.VIDEO_UPLOADED
    assert [e["status"] for e in review.status_history] == ["video_uploaded"]
    assert review.is_video_ready is False


async def test_upload_rejects_oversized_file_before_calling_provider(db, manager, uploads):
    too_big = b"\x00" * (get_settings().max_upload_bytes + 1)
    with pytest.raises(UploadRejected) as exc:
        await manager.create_from_upload_submission(db, too_big, "clip.mp4", "u1")
    assert exc.value.status_code == 413
    assert uploads == []


@pytest.mark.parametrize("file_bytes,filename", [(b"", "clip.mp4"), (b"\x00", "notes.txt"), (b"\x00", None)])
async def test_upload_rejects_bad_input(db, manager, uploads, file_bytes, filename):
    with pytest.raises(UploadRejected) as exc:
        await manager.create_from_upload_submission(db, file_bytes, filename, "u1")
    assert exc.value.status_code == 400
    assert uploads == []


async def test_upload_after_early_callback_reuses_the_video(db, manager):
    early = await manager.apply_provider_callback(db, upload_notification())
    video, review = await manager.create_from_upload_submission(db, b"\x00" * 8, "clip.mov", "u1")

    assert video.id == early.video.id
    assert review.video_id == video.id


# ============================================================================
# Provider callbacks
# ============================================================================

async def test_eager_marks_video_and_review_ready(db, manager):
    video, review = await manager.create_from_upload_submission(db, b"\x00" * 8, "clip.mov", "u1")
    result = await manager.apply_provider_callback(db, eager_notification())

    assert result.applied is True
    assert result.ready_for_transcription is True
    assert result.video.status == VideoStatus.READY
    assert result.video.thumbnail_url.endswith("/clip.jpg")

    fresh = await review_manager.get(db, review.id)
    assert fresh.is_video_ready is True
    assert fresh.status == ReviewStatus.VIDEO_UPLOADED


async def test_duplicate_notification_is_a_noop(db, manager):
    await manager.create_from_upload_submission(db, b"\x00" * 8, "clip.mov", "u1")
    first = await manager.apply_provider_callback(db, eager_notification())
    snapshot = (first.video.status, first.video.video_url, first.video.thumbnail_url, dict(first.video.metadata_json))

    second = await manager.apply_provider_callback(db, eager_notification(secure_url="https://elsewhere/x.mp4"))

    assert second.applied is False
    assert second.ready_for_transcription is False
    video = second.video
    assert (video.status, video.video_url, video.thumbnail_url, dict(video.metadata_json)) == snapshot

    count = await db.execute(select(func.count(ProviderNotification.id)))
    assert count.scalar_one() == 1


async def test_eager_before_upload_creates_ready_video(db, manager):
    result = await manager.apply_provider_callback(db, eager_notification("asset-9"))
    assert result.video.status == VideoStatus.READY

    late = await manager.apply_provider_callback(db, upload_notification("asset-9"))
    assert late.applied is True
    assert late.video.status == VideoStatus.READY


async def test_eager_url_falls_back_to_first_rendition(db, manager):
    result = await manager.apply_provider_callback(
        db, eager_notification("asset-7", secure_url=None, eager=[{"transformation": "q_auto", "secure_url": DELIVERY_URL}]),
    )
    assert result.video.video_url == DELIVERY_URL
    assert result.video.thumbnail_url.endswith("/clip.jpg")
    assert result.ready_for_transcription is True

    late = await manager.apply_provider_callback(db, upload_notification("asset-7"))
    assert late.ready_for_transcription is False


async def test_eager_without_url_defers_transcription_to_upload(db, manager):
    early = await manager.apply_provider_callback(
        db, eager_notification("asset-8", secure_url=None, eager=[{"transformation": "q_auto"}]),
    )
    assert early.video.status == VideoStatus.READY
    assert early.video.video_url is None
    assert early.ready_for_transcription is False

    late = await manager.apply_provider_callback(db, upload_notification("asset-8"))
    assert late.ready_for_transcription is True
    assert late.video.status == VideoStatus.READY
    assert late.video.video_url == DELIVERY_URL
    assert late.video.thumbnail_url.endswith("/clip.jpg")


async def test_failed_eager_sets_error(db, manager):
    await manager.create_from_upload_submission(db, b"\x00" * 8, "clip.mov", "u1")
    result = await manager.apply_provider_callback(
        db, eager_notification(status="failed", error={"message": "transcode failed"}),
    )
    assert result.video.status == VideoStatus.ERROR
    assert result.ready_for_transcription is False


async def test_unsupported_notification_type(db, manager):
    with pytest.raises(UnsupportedNotification):
        await manager.apply_provider_callback(db, {"notification_type": "delete", "asset_id": "a"})


@pytest.mark.parametrize("kind", [["eager"], {"type": "eager"}, None, 7])
async def test_non_string_notification_type_is_unsupported(db, manager, kind):
    with pytest.raises(UnsupportedNotification) as exc:
        await manager.apply_provider_callback(db, {"notification_type": kind, "asset_id": "a"})
    assert exc.value.status_code == 400


async def test_malformed_notification(db, manager):
    with pytest.raises(ValidationError):
        await manager.apply_provider_callback(db, {"notification_type": "eager", "asset_id": ""})


# ============================================================================
# Reads
# ============================================================================

async def test_status_overall_completed_only_when_both_done(db, manager, make_video):
    video = await make_video(status=VideoStatus.READY, transcript_status=TranscriptStatus.COMPLETED)
    status = await manager.get_status(db, video.id)
    assert status["status"]["overall"] == "completed"

    pending = await make_video(asset_id="asset-2", status=VideoStatus.READY)
    status = await manager.get_status(db, pending.id)
    assert status["status"]["overall"] == "processing"


async def test_upload_request_is_signed(db, manager, uploads):
    await manager.create_from_upload_submission(db, b"\x00" * 8, "clip.mov", "u1")
    body = uploads[0].content.decode("latin-1")
    assert 'name="signature"' in body
    assert 'name="api_key"' in body
    assert json.dumps("clip.mov") in body
