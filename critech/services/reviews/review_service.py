"""
Critech Review Lifecycle Manager.

Owns the Review entity: creation next to a Video, owner edits, soft
deletes and the system-driven ``isVideoReady`` mirror. Status changes are
computed by the pure state machine in ``lifecycle``; this service persists
them together with the status-history delta.

Read-modify-write on a Review is guarded by the ``version`` column. A lost
race surfaces as ``StaleDataError`` on commit; the edit is then re-applied
to a fresh copy of the row, up to ``review_update_max_attempts`` times.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from critech.core.config import get_settings
from critech.core.errors import ConflictError, Forbidden, NotFound, ValidationError
from critech.models.models import Review, ReviewStatus, Topic, Video, VideoStatus
from critech.schemas.schemas import ReviewUpdate
from critech.services.reviews.lifecycle import ReviewState, apply_delete, apply_edit, initial_history

logger = logging.getLogger(__name__)
settings = get_settings()

CONTENT_FIELDS = ("title", "description", "pros", "cons", "alt_links", "tags", "topic_id")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReviewLifecycleManager:
    """Creates, edits and soft-deletes Reviews."""

    def __init__(self, max_attempts: Optional[int] = None):
        self.max_attempts = max_attempts or settings.review_update_max_attempts

    # ── Reads ────────────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, review_id: int) -> Review:
        result = await db.execute(
            select(Review)
            .where(Review.id == review_id)
            .execution_options(populate_existing=True)
        )
        review = result.scalars().first()
        if review is None:
            raise NotFound("Review not found")
        return review

    async def get(self, db: AsyncSession, review_id: int) -> Review:
        return await self._load(db, review_id)

    async def get_for_video(self, db: AsyncSession, video_id: int) -> Optional[Review]:
        result = await db.execute(select(Review).where(Review.video_id == video_id))
        return result.scalars().first()

    async def list_reviews(self, db: AsyncSession, owner_id: Optional[str] = None) -> List[Review]:
        """All non-deleted reviews, newest first."""
        query = select(Review).where(Review.status != ReviewStatus.DELETED)
        if owner_id:
            query = query.where(Review.owner_id == owner_id)
        result = await db.execute(query.order_by(Review.id.desc()))
        return list(result.scalars().all())

    # ── Creation ─────────────────────────────────────────────────────────

    def new_placeholder(self, video: Video, owner_id: str) -> Review:
        """A fresh ``video_uploaded`` Review for ``video`` (not yet added to a session)."""
        now = _now()
        return Review(
            video_id=video.id,
            owner_id=owner_id,
            pros=[],
            cons=[],
            alt_links=[],
            tags=[],
            status=ReviewStatus.VIDEO_UPLOADED,
            status_history=initial_history(ReviewStatus.VIDEO_UPLOADED, now),
            is_video_ready=video.status == VideoStatus.READY,
        )

    async def create_from_video(self, db: AsyncSession, video_id: int, owner_id: str) -> Review:
        """Attach a new Review to an existing Video.

        Repeating the call for the same owner returns the existing Review.
        """
        video = await db.get(Video, video_id)
        if video is None:
            raise NotFound("Video not found")

        existing = await self.get_for_video(db, video_id)
        if existing is not None:
            if existing.owner_id != owner_id:
                raise Forbidden("Video already belongs to another review")
            return existing

        review = self.new_placeholder(video, owner_id)
        db.add(review)
        try:
            await db.commit()
        except IntegrityError:
            # Lost the race on the unique video_id; the winner's row decides
            await db.rollback()
            existing = await self.get_for_video(db, video_id)
            if existing is None or existing.owner_id != owner_id:
                raise Forbidden("Video already belongs to another review")
            return existing
        logger.info(f"Created review {review.id} for video {video_id} (owner={owner_id})")
        return review

    # ── Owner edits ──────────────────────────────────────────────────────

    async def _validate_topic(self, db: AsyncSession, fields: Dict[str, Any]):
        topic_id = fields.get("topic_id")
        if topic_id is not None and await db.get(Topic, topic_id) is None:
            raise ValidationError("Unknown topic", details={"topicId": topic_id})

    def _apply_patch(self, review: Review, fields: Dict[str, Any], now: datetime):
        state, history = apply_edit(ReviewState.of(review), fields, now)

        for name in CONTENT_FIELDS:
            if name in fields:
                setattr(review, name, fields[name])

        review.status = state.status
        review.published_at = state.published_at
        review.archived_at = state.archived_at
        if history:
            # Reassign, never mutate in place: JSON columns do not track mutation
            review.status_history = [*(review.status_history or []), *(e.to_dict() for e in history)]

    @staticmethod
    def _authorize(review: Review, caller_id: str):
        if review.owner_id != caller_id:
            raise Forbidden("You do not have permission to access this review")

    async def update(self, db: AsyncSession, review_id: int, patch: ReviewUpdate, caller_id: str) -> Review:
        """Apply an owner patch and return the full updated Review."""
        fields = patch.model_dump(mode="json", exclude_unset=True)
        if "status" in fields:
            fields["status"] = ReviewStatus(fields["status"])

        for attempt in range(1, self.max_attempts + 1):
            review = await self._load(db, review_id)
            self._authorize(review, caller_id)
            await self._validate_topic(db, fields)
            self._apply_patch(review, fields, _now())
            try:
                await db.commit()
            except StaleDataError:
                await db.rollback()
                logger.warning(f"Review {review_id} changed concurrently (attempt {attempt}/{self.max_attempts})")
                continue
            return review

        raise ConflictError()

    async def delete(self, db: AsyncSession, review_id: int, caller_id: str) -> Review:
        """Soft delete; returns the Review rather than a flag."""
        for attempt in range(1, self.max_attempts + 1):
            review = await self._load(db, review_id)
            self._authorize(review, caller_id)
            state, history = apply_delete(ReviewState.of(review), _now())
            if not history:
                return review

            review.status = state.status
            review.status_history = [*(review.status_history or []), *(e.to_dict() for e in history)]
            try:
                await db.commit()
            except StaleDataError:
                await db.rollback()
                logger.warning(f"Review {review_id} changed concurrently during delete (attempt {attempt})")
                continue
            logger.info(f"Review {review_id} soft-deleted by {caller_id}")
            return review

        raise ConflictError()

    # ── System transitions ───────────────────────────────────────────────

    async def mark_video_ready(self, db: AsyncSession, video_id: int) -> Optional[Review]:
        """Mirror provider readiness onto the owning Review. Caller commits."""
        review = await self.get_for_video(db, video_id)
        if review is not None and not review.is_video_ready:
            review.is_video_ready = True
        return review


review_manager = ReviewLifecycleManager()
