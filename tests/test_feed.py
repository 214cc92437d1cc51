"""
Tests for keyset feed pagination and counting.
"""
import pytest

from critech.models.models import ReviewStatus
from critech.schemas.schemas import ReviewUpdate
from critech.services.reviews.feed_service import FeedPaginationService, feed_service
from critech.services.reviews.review_service import review_manager


@pytest.fixture
async def feed_rows(make_review):
    """Five visible reviews for u1/u2 plus archived, deleted and untitled rows."""
    rows = {
        "a": await make_review(owner_id="u1", title="A", description="d", status=ReviewStatus.PUBLISHED),
        "b": await make_review(owner_id="u1", title="B", description="d", status=ReviewStatus.DRAFT),
        "c": await make_review(owner_id="u2", title="C", description="d", status=ReviewStatus.IN_REVIEW),
        "archived": await make_review(owner_id="u1", title="X", description="d", status=ReviewStatus.ARCHIVED),
        "deleted": await make_review(owner_id="u1", title="Y", description="d", status=ReviewStatus.DELETED),
        "untitled": await make_review(owner_id="u1"),
        "empty_title": await make_review(owner_id="u1", title=""),
        "d": await make_review(owner_id="u1", title="D", description="d", status=ReviewStatus.PUBLISHED, video_url=None),
        "e": await make_review(owner_id="u2", title="E", description="d", status=ReviewStatus.PUBLISHED),
    }
    return rows


@pytest.mark.parametrize("requested,expected", [(None, 10), (0, 1), (-5, 1), (7, 7), (500, 20)])
def test_clamp_page_size(requested, expected):
    assert FeedPaginationService().clamp_page_size(requested) == expected


async def test_count_excludes_hidden_rows(db, feed_rows):
    assert await feed_service.count(db) == 5
    assert await feed_service.count(db, owner_id="u1") == 3
    assert await feed_service.count(db, owner_id="u2") == 2


async def test_pages_are_disjoint_and_newest_first(db, feed_rows):
    first = await feed_service.page(db, page_size=2)
    second = await feed_service.page(db, page_size=2, last_seen_id=first[-1].id)
    third = await feed_service.page(db, page_size=2, last_seen_id=second[-1].id)

    ids = [item.id for item in first + second + third]
    assert ids == sorted(ids, reverse=True)
    assert len(ids) == len(set(ids)) == 5
    assert [item.title for item in first] == ["E", "D"]


async def test_page_filters_by_owner(db, feed_rows):
    items = await feed_service.page(db, page_size=20, owner_id="u2")
    assert [item.title for item in items] == ["E", "C"]


async def test_video_key_omitted_without_playback_url(db, feed_rows):
    items = {item.title: item for item in await feed_service.page(db, page_size=20)}

    with_video = items["E"].to_payload()
    assert with_video["video"]["videoUrl"].endswith("clip.mp4")
    assert "thumbnailUrl" in with_video["video"]

    without_video = items["D"].to_payload()
    assert "video" not in without_video
    assert without_video["ownerId"] == "u1"


async def test_archiving_removes_from_feed(db, feed_rows):
    before = await feed_service.count(db)
    await review_manager.update(db, feed_rows["a"].id, ReviewUpdate(status="archived"), "u1")
    assert await feed_service.count(db) == before - 1
