"""
Critech Feed Pagination Service: keyset pagination over visible Reviews.

Visible means not deleted, not archived, and carrying a non-empty title.
The cursor is the smallest id of the previous page; rows inserted while a
client pages may push items across a page boundary, so clients
de-duplicate by id.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from critech.core.config import get_settings
from critech.models.models import Review, ReviewStatus
from critech.schemas.schemas import FeedItem, FeedVideo, ReviewSchema

logger = logging.getLogger(__name__)
settings = get_settings()

HIDDEN_STATUSES = (ReviewStatus.DELETED, ReviewStatus.ARCHIVED)


def _visible(query, owner_id: Optional[str]):
    query = query.where(
        Review.status.notin_(HIDDEN_STATUSES),
        Review.title.is_not(None),
        Review.title != "",
    )
    if owner_id:
        query = query.where(Review.owner_id == owner_id)
    return query


def to_feed_item(review: Review) -> FeedItem:
    base = ReviewSchema.model_validate(review).model_dump()
    video = review.video
    feed_video = None
    if video is not None and video.video_url:
        feed_video = FeedVideo(video_url=video.video_url, thumbnail_url=video.thumbnail_url)
    return FeedItem(**base, video=feed_video)


class FeedPaginationService:

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        if page_size is None:
            return settings.feed_default_page_size
        return max(1, min(page_size, settings.feed_max_page_size))

    async def count(self, db: AsyncSession, owner_id: Optional[str] = None) -> int:
        result = await db.execute(_visible(select(func.count(Review.id)), owner_id))
        return int(result.scalar_one())

    async def page(
        self,
        db: AsyncSession,
        page_size: Optional[int] = None,
        last_seen_id: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> List[FeedItem]:
        limit = self.clamp_page_size(page_size)
        query = _visible(select(Review), owner_id)
        if last_seen_id is not None:
            query = query.where(Review.id < last_seen_id)
        result = await db.execute(query.order_by(Review.id.desc()).limit(limit))
        return [to_feed_item(review) for review in result.scalars().all()]


feed_service = FeedPaginationService()
