"""
Critech API — Topic routes.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from critech.core.database import get_db
from critech.core.security import AuthenticatedUser, get_current_user
from critech.schemas.schemas import TopicCreate, TopicInitializeResponse, TopicSchema, TopicUpdate
from critech.services.topics.topic_service import topic_catalogue

router = APIRouter(prefix="/topics", tags=["Topics"])


@router.get("", response_model=List[TopicSchema])
async def list_topics(db: AsyncSession = Depends(get_db)):
    return await topic_catalogue.list(db)


@router.post("", response_model=TopicSchema, status_code=201)
async def create_topic(
    body: TopicCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await topic_catalogue.create(db, body)


@router.post("/initialize", response_model=TopicInitializeResponse, status_code=201)
async def initialize_topics(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Backfill a topic for every review tag that is not one yet."""
    created = await topic_catalogue.initialize_from_tags(db)
    return TopicInitializeResponse(
        message="Topics initialized successfully",
        created_topics=[TopicSchema.model_validate(t) for t in created],
        count=len(created),
    )


@router.get("/{topic_id}", response_model=TopicSchema)
async def get_topic(topic_id: int, db: AsyncSession = Depends(get_db)):
    return await topic_catalogue.get(db, topic_id)


@router.put("/{topic_id}", response_model=TopicSchema)
async def update_topic(
    topic_id: int,
    patch: TopicUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await topic_catalogue.update(db, topic_id, patch)


@router.delete("/{topic_id}", response_model=TopicSchema)
async def delete_topic(
    topic_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await topic_catalogue.delete(db, topic_id)


@router.post("/{topic_id}/summary", response_model=TopicSchema)
async def regenerate_market_summary(
    topic_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Ask the LLM for a fresh market summary over the topic's reviews."""
    return await topic_catalogue.regenerate_market_summary(db, topic_id)
