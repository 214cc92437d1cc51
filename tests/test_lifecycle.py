"""
Tests for the pure review state machine.
"""
from datetime import datetime, timezone

import pytest

from critech.core.errors import InvalidTransition
from critech.models.models import ReviewStatus
from critech.services.reviews.lifecycle import ReviewState, apply_delete, apply_edit, initial_history

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def state(status, title=None, description=None, **kw):
    return ReviewState(status=status, title=title, description=description, **kw)


def test_initial_history_has_one_entry():
    history = initial_history(ReviewStatus.VIDEO_UPLOADED, NOW)
    assert history == [{"status": "video_uploaded", "timestamp": NOW.isoformat()}]


def test_title_alone_does_not_promote():
    new, history = apply_edit(state(ReviewStatus.VIDEO_UPLOADED), {"title": "A"}, NOW)
    assert new.status == ReviewStatus.VIDEO_UPLOADED
    assert new.title == "A"
    assert history == []


def test_title_and_description_promote_to_draft():
    new, history = apply_edit(state(ReviewStatus.VIDEO_UPLOADED, title="A"), {"description": "B"}, NOW)
    assert new.status == ReviewStatus.DRAFT
    assert [e.status for e in history] == [ReviewStatus.DRAFT]


def test_empty_strings_do_not_count_as_content():
    new, history = apply_edit(state(ReviewStatus.VIDEO_UPLOADED), {"title": "A", "description": ""}, NOW)
    assert new.status == ReviewStatus.VIDEO_UPLOADED
    assert history == []


def test_implicit_draft_then_explicit_in_review_in_one_patch():
    new, history = apply_edit(
        state(ReviewStatus.VIDEO_UPLOADED),
        {"title": "A", "description": "B", "status": ReviewStatus.IN_REVIEW},
        NOW,
    )
    assert new.status == ReviewStatus.IN_REVIEW
    assert [e.status for e in history] == [ReviewStatus.DRAFT, ReviewStatus.IN_REVIEW]


def test_publish_sets_published_at_once():
    earlier = datetime(2023, 1, 1, tzinfo=timezone.utc)
    new, _ = apply_edit(state(ReviewStatus.IN_REVIEW, "A", "B"), {"status": ReviewStatus.PUBLISHED}, NOW)
    assert new.published_at == NOW

    again, _ = apply_edit(
        state(ReviewStatus.IN_REVIEW, "A", "B", published_at=earlier), {"status": ReviewStatus.PUBLISHED}, NOW,
    )
    assert again.published_at == earlier


def test_archive_from_video_uploaded_is_allowed():
    new, history = apply_edit(state(ReviewStatus.VIDEO_UPLOADED), {"status": ReviewStatus.ARCHIVED}, NOW)
    assert new.status == ReviewStatus.ARCHIVED
    assert new.archived_at == NOW
    assert len(history) == 1


def test_requesting_current_status_is_a_noop():
    new, history = apply_edit(state(ReviewStatus.DRAFT, "A", "B"), {"status": ReviewStatus.DRAFT}, NOW)
    assert new.status == ReviewStatus.DRAFT
    assert history == []


@pytest.mark.parametrize("current,target", [
    (ReviewStatus.DRAFT, ReviewStatus.PUBLISHED),
    (ReviewStatus.PUBLISHED, ReviewStatus.DRAFT),
    (ReviewStatus.ARCHIVED, ReviewStatus.PUBLISHED),
    (ReviewStatus.IN_REVIEW, ReviewStatus.VIDEO_UPLOADED),
])
def test_disallowed_transitions_raise(current, target):
    with pytest.raises(InvalidTransition) as exc:
        apply_edit(state(current, "A", "B"), {"status": target}, NOW)
    assert exc.value.details == {"from": current.value, "to": target.value}
    assert exc.value.status_code == 400


def test_explicit_draft_without_content_explains_why():
    with pytest.raises(InvalidTransition) as exc:
        apply_edit(state(ReviewStatus.VIDEO_UPLOADED, title="A"), {"status": ReviewStatus.DRAFT}, NOW)
    assert "required" in exc.value.message


def test_status_deleted_is_not_an_edit():
    with pytest.raises(InvalidTransition):
        apply_edit(state(ReviewStatus.DRAFT, "A", "B"), {"status": ReviewStatus.DELETED}, NOW)


def test_deleted_reviews_cannot_be_edited():
    with pytest.raises(InvalidTransition):
        apply_edit(state(ReviewStatus.DELETED, "A", "B"), {"title": "C"}, NOW)


@pytest.mark.parametrize("patch", [{"title": "C"}, {"tags": ["x"]}, {"title": "C", "status": ReviewStatus.ARCHIVED}])
def test_archived_reviews_reject_content_edits(patch):
    with pytest.raises(InvalidTransition) as exc:
        apply_edit(state(ReviewStatus.ARCHIVED, "A", "B"), patch, NOW)
    assert exc.value.details == {"status": "archived"}


def test_rearchiving_an_archived_review_is_a_noop():
    current = state(ReviewStatus.ARCHIVED, "A", "B", archived_at=NOW)
    new, history = apply_edit(current, {"status": ReviewStatus.ARCHIVED}, NOW)
    assert new == current
    assert history == []


def test_delete_is_idempotent():
    deleted, history = apply_delete(state(ReviewStatus.PUBLISHED, "A", "B"), NOW)
    assert deleted.status == ReviewStatus.DELETED
    assert len(history) == 1

    again, history = apply_delete(deleted, NOW)
    assert again == deleted
    assert history == []
