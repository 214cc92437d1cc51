"""
Critech API — Review routes.
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from critech.core.database import get_db
from critech.core.security import AuthenticatedUser, get_current_user, get_optional_user, require_owner_scope
from critech.schemas.schemas import CountResponse, FeedItem, ReviewCreateFromVideo, ReviewSchema, ReviewUpdate
from critech.services.reviews.feed_service import feed_service
from critech.services.reviews.review_service import review_manager

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("/from-video", response_model=ReviewSchema, status_code=201)
async def create_review_from_video(
    body: ReviewCreateFromVideo,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await review_manager.create_from_video(db, body.video_id, user.id)


@router.get("", response_model=List[ReviewSchema])
async def list_reviews(
    owner: Optional[str] = Query(None),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Unpaginated listing of non-deleted reviews, newest first."""
    require_owner_scope(owner, user)
    return await review_manager.list_reviews(db, owner_id=owner)


# /page and /count must stay ahead of /{review_id}

@router.get("/page", response_model=List[FeedItem])
async def get_feed_page(
    page_size: Optional[int] = Query(None, alias="pageSize"),
    last_id: Optional[int] = Query(None, alias="lastId"),
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Keyset-paginated feed; pass the last id of the previous page as ``lastId``."""
    require_owner_scope(owner_id, user)
    items = await feed_service.page(db, page_size=page_size, last_seen_id=last_id, owner_id=owner_id)
    return JSONResponse(content=[item.to_payload() for item in items])


@router.get("/count", response_model=CountResponse)
async def count_reviews(
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    require_owner_scope(owner_id, user)
    return CountResponse(count=await feed_service.count(db, owner_id=owner_id))


@router.get("/{review_id}", response_model=ReviewSchema)
async def get_review(review_id: int, db: AsyncSession = Depends(get_db)):
    return await review_manager.get(db, review_id)


@router.put("/{review_id}", response_model=ReviewSchema)
async def update_review(
    review_id: int,
    patch: ReviewUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await review_manager.update(db, review_id, patch, user.id)


@router.delete("/{review_id}", response_model=ReviewSchema)
async def delete_review(
    review_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; the review is returned with ``status=deleted``."""
    return await review_manager.delete(db, review_id, user.id)
