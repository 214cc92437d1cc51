"""
Critech API — Video routes.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from critech.core.config import get_settings
from critech.core.database import get_db
from critech.core.errors import AuthenticationFailed, Forbidden, ValidationError
from critech.core.security import AuthenticatedUser, get_current_user
from critech.models.models import VideoStatus
from critech.schemas.schemas import (
    ReviewSchema, TranscriptSchema, TranscriptionRetryResponse, UploadCredentials,
    UploadResponse, VideoSchema, VideoStatusSchema, WebhookAck,
)
from critech.services.media.media_store import media_store
from critech.services.reviews.review_service import review_manager
from critech.services.videos.video_service import video_manager
from critech.workers.tasks import transcribe_video_task

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/videos", tags=["Videos"])


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_video(
    video: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Forward a direct upload to the media provider and create its placeholder review."""
    # One byte past the limit is enough to know it is too big
    file_bytes = await video.read(settings.max_upload_bytes + 1)
    record, review = await video_manager.create_from_upload_submission(
        db, file_bytes, video.filename, user.id,
    )
    return UploadResponse(video=VideoSchema.from_model(record), review=ReviewSchema.model_validate(review))


@router.get("/signature", response_model=UploadCredentials)
async def get_upload_signature(user: AuthenticatedUser = Depends(get_current_user)):
    """Signed parameters for a client-direct upload."""
    return media_store.get_upload_credentials()


@router.post("/webhook", response_model=WebhookAck)
async def provider_webhook(
    request: Request,
    x_cld_signature: Optional[str] = Header(None),
    x_cld_timestamp: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Provider notification endpoint (upload / eager completion)."""
    raw = await request.body()
    try:
        payload = json.loads(raw or b"{}")
    except ValueError:
        raise ValidationError("Notification body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Notification body must be a JSON object")

    if not media_store.verify_callback_signature(x_cld_signature, x_cld_timestamp, payload):
        logger.warning(f"Rejected webhook with bad signature (asset={payload.get('asset_id')})")
        raise AuthenticationFailed("Invalid signature")

    result = await video_manager.apply_provider_callback(db, payload)
    if result.ready_for_transcription:
        try:
            transcribe_video_task.delay(result.video.id)
        except Exception:
            # Video state is already committed; POST /videos/{id}/transcript/retry recovers
            logger.exception(f"Could not enqueue transcription for video {result.video.id}")
    return WebhookAck()


@router.get("/{video_id}", response_model=VideoSchema)
async def get_video(video_id: int, db: AsyncSession = Depends(get_db)):
    video = await video_manager.get_by_id(db, video_id)
    return VideoSchema.from_model(video)


@router.get("/{video_id}/status", response_model=VideoStatusSchema)
async def get_video_status(video_id: int, db: AsyncSession = Depends(get_db)):
    """Provider and transcription progress in one poll."""
    return VideoStatusSchema.model_validate(await video_manager.get_status(db, video_id))


@router.get("/{video_id}/transcript", response_model=TranscriptSchema)
async def get_transcript(video_id: int, db: AsyncSession = Depends(get_db)):
    return TranscriptSchema.model_validate(await video_manager.get_transcript(db, video_id))


@router.post("/{video_id}/transcript/retry", response_model=TranscriptionRetryResponse, status_code=202)
async def retry_transcription(
    video_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Re-queue transcription for a ready video the caller's review owns."""
    video = await video_manager.get_by_id(db, video_id)
    review = await review_manager.get_for_video(db, video_id)
    if review is None or review.owner_id != user.id:
        raise Forbidden("You do not have permission to modify this video")
    if video.status != VideoStatus.READY:
        raise ValidationError("Video is not ready yet", details={"status": video.status.value})

    transcribe_video_task.delay(video_id)
    logger.info(f"Transcription re-queued for video {video_id} by {user.id}")
    return TranscriptionRetryResponse(video_id=video_id)
