"""
Critech Topic Catalogue: named groups of Reviews plus an LLM-generated
market summary per Topic.
"""
from __future__ import annotations

import json
import logging
from typing import List, Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from critech.core.errors import NotFound, ProviderError, ValidationError
from critech.models.models import Review, ReviewStatus, Topic, utcnow
from critech.schemas.schemas import MarketSummary, TopicCreate, TopicUpdate
from critech.services.transcription.providers import OpenAIProvider, openai_provider

logger = logging.getLogger(__name__)

MARKET_SUMMARY_SYSTEM_PROMPT = (
    "You are a product market analyst. Given a set of product reviews on one "
    "topic, produce a JSON object with the keys: summary (string), "
    "overallPros (array of strings), overallCons (array of strings), "
    "marketTrends (array of objects with trend and description), "
    "recommendedAudience (array of strings). Respond with JSON only."
)


def _review_digest(review: Review) -> dict:
    return {
        "title": review.title,
        "description": review.description,
        "pros": review.pros or [],
        "cons": review.cons or [],
        "tags": review.tags or [],
        "transcriptSummary": review.video.summary if review.video is not None else None,
    }


class TopicCatalogue:

    def __init__(self, provider: Optional[OpenAIProvider] = None):
        self.provider = provider or openai_provider

    async def list(self, db: AsyncSession) -> List[Topic]:
        result = await db.execute(select(Topic).order_by(Topic.name))
        return list(result.scalars().all())

    async def get(self, db: AsyncSession, topic_id: int) -> Topic:
        topic = await db.get(Topic, topic_id)
        if topic is None:
            raise NotFound("Topic not found")
        return topic

    async def get_by_name(self, db: AsyncSession, name: str) -> Optional[Topic]:
        result = await db.execute(select(Topic).where(Topic.name == name))
        return result.scalars().first()

    async def _ensure_unique_name(self, db: AsyncSession, name: str, topic_id: Optional[int] = None):
        existing = await self.get_by_name(db, name)
        if existing is not None and existing.id != topic_id:
            raise ValidationError("Topic name already exists", details={"name": name})

    async def _commit(self, db: AsyncSession, name: str):
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ValidationError("Topic name already exists", details={"name": name})

    async def create(self, db: AsyncSession, data: TopicCreate) -> Topic:
        await self._ensure_unique_name(db, data.name)
        topic = Topic(name=data.name, description=data.description)
        db.add(topic)
        await self._commit(db, data.name)
        logger.info(f"Created topic {topic.id} ({topic.name!r})")
        return topic

    async def update(self, db: AsyncSession, topic_id: int, patch: TopicUpdate) -> Topic:
        topic = await self.get(db, topic_id)
        fields = patch.model_dump(exclude_unset=True)
        if "name" in fields:
            await self._ensure_unique_name(db, fields["name"], topic_id)
        for name, value in fields.items():
            setattr(topic, name, value)
        await self._commit(db, topic.name)
        return topic

    async def delete(self, db: AsyncSession, topic_id: int) -> Topic:
        """Hard delete. Reviews keep their (now dangling) topic id."""
        topic = await self.get(db, topic_id)
        await db.delete(topic)
        await db.commit()
        logger.info(f"Deleted topic {topic_id}")
        return topic

    async def initialize_from_tags(self, db: AsyncSession) -> List[Topic]:
        """Create a Topic for every distinct review tag that is not one yet."""
        result = await db.execute(select(Review.tags).where(Review.status != ReviewStatus.DELETED))
        known = {topic.name for topic in await self.list(db)}

        created: List[Topic] = []
        for tags in result.scalars().all():
            for tag in tags or []:
                name = tag.strip() if isinstance(tag, str) else ""
                if not name or name in known:
                    continue
                topic = Topic(name=name, description="")
                db.add(topic)
                created.append(topic)
                known.add(name)

        if created:
            await self._commit(db, ", ".join(t.name for t in created))
        logger.info(f"Initialized {len(created)} topics from review tags")
        return created

    async def regenerate_market_summary(self, db: AsyncSession, topic_id: int) -> Topic:
        topic = await self.get(db, topic_id)
        result = await db.execute(
            select(Review)
            .where(Review.topic_id == topic_id, Review.status != ReviewStatus.DELETED)
            .order_by(Review.id.desc())
        )
        reviews = list(result.scalars().all())
        if not reviews:
            raise ValidationError("Topic has no reviews to summarize", details={"topicId": topic_id})

        user_prompt = (
            f"Topic: {topic.name}\n"
            f"Description: {topic.description or ''}\n\n"
            f"Reviews:\n{json.dumps([_review_digest(r) for r in reviews], indent=2)}"
        )
        raw = await self.provider.complete_json(MARKET_SUMMARY_SYSTEM_PROMPT, user_prompt)
        try:
            summary = MarketSummary.model_validate(raw)
        except SchemaValidationError as e:
            raise ProviderError("Market summary had an unexpected shape", details={"reason": str(e)}, retryable=False)

        summary.last_updated = utcnow()
        topic.market_summary = summary.model_dump(mode="json", by_alias=True)
        await db.commit()
        logger.info(f"Regenerated market summary for topic {topic_id} from {len(reviews)} reviews")
        return topic


topic_catalogue = TopicCatalogue()
