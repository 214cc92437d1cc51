"""
Critech Video Record Manager.

Owns the Video entity through its two provider-driven phases:

  upload submission / "upload" callback  →  status=processing
  "eager" (processing-complete) callback →  status=ready | error

Provider callbacks carry no sequence number, so idempotence is keyed on
``(asset_id, notification_type)``: the first application writes a ledger
row in the same transaction as the Video change, any later delivery of the
same pair is a no-op. Deliveries may also arrive out of order (an "eager"
before its "upload"); merges never regress a ready Video.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from critech.core.config import get_settings
from critech.core.errors import ConflictError, NotFound, UnsupportedNotification, UploadRejected, ValidationError
from critech.core.metrics import provider_callbacks_total
from critech.models.models import (
    NotificationType, ProviderNotification, Review, TranscriptStatus, Video, VideoStatus,
)
from critech.schemas.schemas import ProviderNotificationPayload, VideoMetadata
from critech.services.media.media_store import MediaStoreAdapter, media_store
from critech.services.reviews.review_service import ReviewLifecycleManager, review_manager

logger = logging.getLogger(__name__)
settings = get_settings()

FAILED_PROVIDER_STATES = {"failed", "error"}


@dataclass
class CallbackResult:
    video: Optional[Video]
    applied: bool
    ready_for_transcription: bool = False


def metadata_from_provider(payload: Mapping[str, Any]) -> VideoMetadata:
    """Whatever media facts a provider response or notification carries."""
    video_info = payload.get("video") if isinstance(payload.get("video"), dict) else {}
    audio_info = payload.get("audio") if isinstance(payload.get("audio"), dict) else {}
    width, height = payload.get("width"), payload.get("height")

    aspect_ratio = video_info.get("dar")
    if not aspect_ratio and width and height:
        aspect_ratio = f"{width}:{height}"

    bit_rate = payload.get("bit_rate") or video_info.get("bit_rate")
    return VideoMetadata(
        format=payload.get("format"),
        codec=video_info.get("codec"),
        bit_rate=int(bit_rate) if bit_rate else None,
        width=width,
        height=height,
        fps=payload.get("frame_rate"),
        audio_codec=audio_info.get("codec"),
        audio_frequency=audio_info.get("frequency"),
        aspect_ratio=aspect_ratio,
        rotation=payload.get("rotation"),
        quality=payload.get("quality_score"),
    )


def merge_metadata(existing: Optional[Dict[str, Any]], incoming: VideoMetadata) -> Dict[str, Any]:
    """Field-wise merge; a null never blanks a known value."""
    merged = dict(existing or {})
    for key, value in incoming.model_dump().items():
        if value is not None:
            merged[key] = value
        else:
            merged.setdefault(key, None)
    return merged


class VideoRecordManager:
    """Creates and updates Video rows from uploads and provider callbacks."""

    def __init__(
        self,
        store: Optional[MediaStoreAdapter] = None,
        reviews: Optional[ReviewLifecycleManager] = None,
    ):
        self.store = store or media_store
        self.reviews = reviews or review_manager

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_by_id(self, db: AsyncSession, video_id: int) -> Video:
        video = await db.get(Video, video_id)
        if video is None:
            raise NotFound("Video not found")
        return video

    async def get_by_provider_asset_id(self, db: AsyncSession, asset_id: str) -> Optional[Video]:
        result = await db.execute(
            select(Video)
            .where(Video.provider_asset_id == asset_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_status(self, db: AsyncSession, video_id: int) -> Dict[str, Any]:
        video = await self.get_by_id(db, video_id)
        done = (
            video.status == VideoStatus.READY
            and video.transcript_status == TranscriptStatus.COMPLETED
        )
        return {
            "status": {
                "video": video.status,
                "transcription": video.transcript_status,
                "overall": "completed" if done else "processing",
            },
            "urls": {"video": video.video_url, "thumbnail": video.thumbnail_url},
        }

    async def get_transcript(self, db: AsyncSession, video_id: int) -> Dict[str, Any]:
        video = await self.get_by_id(db, video_id)
        return {
            "transcript": video.transcript,
            "summary": video.summary,
            "status": video.transcript_status,
        }

    # ── Upload submission ────────────────────────────────────────────────

    def _check_upload(self, file_bytes: bytes, filename: Optional[str]):
        if not file_bytes:
            raise UploadRejected("No video file provided")
        if len(file_bytes) > settings.max_upload_bytes:
            raise UploadRejected(
                "Video exceeds the upload size limit",
                details={"maxBytes": settings.max_upload_bytes},
                status_code=413,
            )
        if not self.store.is_allowed_filename(filename):
            raise UploadRejected(
                "Unsupported video format",
                details={"allowedFormats": settings.allowed_video_formats},
            )

    async def create_from_upload_submission(
        self,
        db: AsyncSession,
        file_bytes: bytes,
        filename: str,
        owner_id: str,
    ) -> Tuple[Video, Review]:
        """Forward an upload to the provider; create the Video and its placeholder Review."""
        self._check_upload(file_bytes, filename)
        provisioned = await self.store.upload(file_bytes, filename)
        asset_id = provisioned["asset_id"]

        for attempt in range(2):
            # The "upload" callback can beat the provider response back here
            video = await self.get_by_provider_asset_id(db, asset_id)
            if video is None:
                video = Video(
                    provider_asset_id=asset_id,
                    provider_public_id=provisioned["public_id"],
                    status=VideoStatus.PROCESSING,
                    transcript_status=TranscriptStatus.PENDING,
                )
                db.add(video)
            self._merge_playback(video, provisioned)
            await db.flush()

            review = await self.reviews.get_for_video(db, video.id)
            if review is None:
                review = self.reviews.new_placeholder(video, owner_id)
                db.add(review)
            elif review.owner_id != owner_id:
                raise ValidationError("Video is already attached to another review")

            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning(f"Concurrent insert for asset {asset_id}, retrying (attempt {attempt + 1})")
                continue

            logger.info(f"Video {video.id} created from upload (asset={asset_id}, owner={owner_id})")
            return video, review

        raise ConflictError()

    @staticmethod
    def _delivery_url(payload: Mapping[str, Any]) -> Optional[str]:
        """Top-level delivery URL, else the first eager rendition's."""
        url = payload.get("secure_url") or payload.get("url")
        if url:
            return url
        for variant in payload.get("eager") or []:
            if isinstance(variant, dict) and (variant.get("secure_url") or variant.get("url")):
                return variant.get("secure_url") or variant.get("url")
        return None

    def _merge_playback(self, video: Video, payload: Mapping[str, Any]):
        secure_url = self._delivery_url(payload)
        if secure_url and not video.video_url:
            video.video_url = secure_url
        duration = payload.get("duration")
        if duration and not video.duration:
            video.duration = int(round(float(duration)))
        video.metadata_json = merge_metadata(video.metadata_json, metadata_from_provider(payload))

    # ── Provider callbacks ───────────────────────────────────────────────

    async def _already_applied(self, db: AsyncSession, asset_id: str, kind: str) -> bool:
        result = await db.execute(
            select(ProviderNotification.id).where(
                ProviderNotification.asset_id == asset_id,
                ProviderNotification.notification_type == kind,
            )
        )
        return result.first() is not None

    def _apply_upload(self, db: AsyncSession, video: Optional[Video], payload: Dict[str, Any]) -> Video:
        if video is None:
            video = Video(
                provider_asset_id=payload["asset_id"],
                provider_public_id=payload.get("public_id") or payload["asset_id"],
                status=VideoStatus.PROCESSING,
                transcript_status=TranscriptStatus.PENDING,
            )
            db.add(video)
        self._merge_playback(video, payload)
        if video.status == VideoStatus.READY and not video.thumbnail_url:
            # eager got here first without a delivery URL
            video.thumbnail_url = self.store.thumbnail_url_for(video.video_url)
        return video

    async def _apply_eager(self, db: AsyncSession, video: Optional[Video], payload: Dict[str, Any]) -> Video:
        failed = bool(payload.get("error")) or str(payload.get("status") or "").lower() in FAILED_PROVIDER_STATES
        if video is None:
            video = Video(
                provider_asset_id=payload["asset_id"],
                provider_public_id=payload.get("public_id") or payload["asset_id"],
                transcript_status=TranscriptStatus.PENDING,
            )
            db.add(video)
        self._merge_playback(video, payload)

        if failed:
            if video.status != VideoStatus.READY:
                video.status = VideoStatus.ERROR
            logger.warning(f"Provider processing failed for asset {payload['asset_id']}: {payload.get('error')}")
            return video

        video.status = VideoStatus.READY
        if not video.thumbnail_url:
            video.thumbnail_url = self.store.thumbnail_url_for(video.video_url)
        await db.flush()
        await self.reviews.mark_video_ready(db, video.id)
        return video

    async def apply_provider_callback(self, db: AsyncSession, notification: Mapping[str, Any]) -> CallbackResult:
        """Idempotently apply one provider notification.

        Raises:
            UnsupportedNotification: the notification kind is not handled.
            ValidationError: the payload is malformed.
        """
        kind = notification.get("notification_type")
        if not isinstance(kind, str) or kind not in {t.value for t in NotificationType}:
            provider_callbacks_total.labels(notification_type=str(kind), outcome="unsupported").inc()
            raise UnsupportedNotification(details={"notificationType": kind})

        try:
            payload = ProviderNotificationPayload.model_validate(dict(notification)).model_dump()
        except ValueError as e:
            raise ValidationError("Malformed notification", details={"reason": str(e)})
        asset_id = payload["asset_id"]

        for attempt in range(1, settings.review_update_max_attempts + 1):
            if await self._already_applied(db, asset_id, kind):
                provider_callbacks_total.labels(notification_type=kind, outcome="duplicate").inc()
                logger.info(f"Duplicate {kind} notification for asset {asset_id} ignored")
                return CallbackResult(await self.get_by_provider_asset_id(db, asset_id), applied=False)

            video = await self.get_by_provider_asset_id(db, asset_id)
            was_playable = (
                video is not None
                and video.status == VideoStatus.READY
                and bool(video.video_url)
            )

            if kind == NotificationType.UPLOAD.value:
                video = self._apply_upload(db, video, payload)
            else:
                video = await self._apply_eager(db, video, payload)

            db.add(ProviderNotification(asset_id=asset_id, notification_type=kind, payload=dict(notification)))
            try:
                await db.commit()
            except (IntegrityError, StaleDataError):
                # Either a concurrent duplicate won the ledger insert or the
                # owning review moved under us; re-evaluate from scratch
                await db.rollback()
                logger.warning(f"Conflict applying {kind} for asset {asset_id} (attempt {attempt})")
                continue

            # Ready and playable for the first time, in whichever order the callbacks came
            ready_for_transcription = (
                not was_playable
                and video.status == VideoStatus.READY
                and bool(video.video_url)
                and video.transcript_status == TranscriptStatus.PENDING
            )
            provider_callbacks_total.labels(notification_type=kind, outcome="applied").inc()
            logger.info(f"Applied {kind} notification for asset {asset_id} (video={video.id}, status={video.status.value})")
            return CallbackResult(video, applied=True, ready_for_transcription=ready_for_transcription)

        raise ConflictError()


video_manager = VideoRecordManager()
