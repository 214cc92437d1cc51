"""
Critech Review state machine.

    video_uploaded ──(title + description)──▶ draft ──▶ in_review ──▶ published
          │                                    │           │             │
          └──────────────┬─────────────────────┴───────────┴─────────────┘
                         ▼
                      archived                     (any non-terminal) ──▶ deleted

``apply_edit`` is the single transition function for owner edits and
``apply_delete`` the one for soft deletes. Both are pure: they take the
current state and return the new state plus the history entries to append,
so persistence and concurrency live elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from critech.core.errors import InvalidTransition
from critech.models.models import ReviewStatus

TERMINAL_STATUSES: FrozenSet[ReviewStatus] = frozenset({ReviewStatus.DELETED})

# Transitions an owner may request explicitly via ``status``
EXPLICIT_TRANSITIONS: Dict[ReviewStatus, FrozenSet[ReviewStatus]] = {
    ReviewStatus.VIDEO_UPLOADED: frozenset({ReviewStatus.ARCHIVED}),
    ReviewStatus.DRAFT: frozenset({ReviewStatus.IN_REVIEW, ReviewStatus.ARCHIVED}),
    ReviewStatus.IN_REVIEW: frozenset({ReviewStatus.PUBLISHED, ReviewStatus.ARCHIVED}),
    ReviewStatus.PUBLISHED: frozenset({ReviewStatus.ARCHIVED}),
    ReviewStatus.ARCHIVED: frozenset(),
    ReviewStatus.DELETED: frozenset(),
}


@dataclass(frozen=True)
class HistoryEntry:
    status: ReviewStatus
    timestamp: datetime

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status.value, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class ReviewState:
    status: ReviewStatus
    title: Optional[str] = None
    description: Optional[str] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @classmethod
    def of(cls, review) -> "ReviewState":
        return cls(
            status=ReviewStatus(review.status),
            title=review.title,
            description=review.description,
            published_at=review.published_at,
            archived_at=review.archived_at,
        )

    @property
    def has_content(self) -> bool:
        return bool(self.title) and bool(self.description)


def initial_history(status: ReviewStatus, now: datetime) -> List[Dict[str, str]]:
    return [HistoryEntry(status, now).to_dict()]


def _enter(state: ReviewState, target: ReviewStatus, now: datetime) -> Tuple[ReviewState, HistoryEntry]:
    changes: Dict[str, Any] = {"status": target}
    if target == ReviewStatus.PUBLISHED and state.published_at is None:
        changes["published_at"] = now
    if target == ReviewStatus.ARCHIVED and state.archived_at is None:
        changes["archived_at"] = now
    return replace(state, **changes), HistoryEntry(target, now)


def apply_edit(
    current: ReviewState,
    patch: Mapping[str, Any],
    now: datetime,
) -> Tuple[ReviewState, List[HistoryEntry]]:
    """Apply an owner patch (``title``/``description``/``status`` keys) to ``current``.

    The implicit ``video_uploaded → draft`` step is taken first, then any
    explicitly requested status is applied from the resulting state.
    Requesting the status the review already has is a no-op.

    Raises:
        InvalidTransition: the review is deleted, content is edited on an
            archived review, or the requested status is not reachable from
            the current one.
    """
    if current.status in TERMINAL_STATUSES:
        raise InvalidTransition("Deleted reviews cannot be edited", details={"status": current.status.value})
    if current.status == ReviewStatus.ARCHIVED and any(key != "status" for key in patch):
        raise InvalidTransition("Archived reviews cannot be edited", details={"status": current.status.value})

    state = current
    if "title" in patch:
        state = replace(state, title=patch["title"])
    if "description" in patch:
        state = replace(state, description=patch["description"])

    history: List[HistoryEntry] = []

    if state.status == ReviewStatus.VIDEO_UPLOADED and state.has_content:
        state, entry = _enter(state, ReviewStatus.DRAFT, now)
        history.append(entry)

    requested = patch.get("status")
    if requested is None:
        return state, history

    requested = ReviewStatus(requested)
    if requested == state.status:
        return state, history

    if requested == ReviewStatus.DELETED:
        raise InvalidTransition("Use the delete action to delete a review")

    if requested not in EXPLICIT_TRANSITIONS[state.status]:
        message = "Invalid status transition"
        if requested == ReviewStatus.DRAFT and state.status == ReviewStatus.VIDEO_UPLOADED:
            message = "Title and description are required before drafting"
        raise InvalidTransition(message, details={"from": state.status.value, "to": requested.value})

    state, entry = _enter(state, requested, now)
    history.append(entry)
    return state, history


def apply_delete(current: ReviewState, now: datetime) -> Tuple[ReviewState, List[HistoryEntry]]:
    """Soft delete. Deleting an already deleted review changes nothing."""
    if current.status == ReviewStatus.DELETED:
        return current, []
    state, entry = _enter(current, ReviewStatus.DELETED, now)
    return state, [entry]
