"""
Critech ORM Models.

Videos are provider-backed media assets, Reviews are the editorial
documents attached to them one-to-one, Topics group Reviews for market
summaries. JSON columns are validated by the pydantic schemas before they
are written here.
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from critech.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ═══════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════

class VideoStatus(str, enum.Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class TranscriptStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewStatus(str, enum.Enum):
    VIDEO_UPLOADED = "video_uploaded"
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class NotificationType(str, enum.Enum):
    UPLOAD = "upload"
    EAGER = "eager"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ═══════════════════════════════════════════════════════════════════════
# Media
# ═══════════════════════════════════════════════════════════════════════

class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (
        Index("ix_videos_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_asset_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    provider_public_id: Mapped[str] = mapped_column(String(512))

    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[VideoStatus] = mapped_column(
        Enum(VideoStatus, native_enum=False, values_callable=_enum_values, length=32),
        default=VideoStatus.PROCESSING,
    )
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    # Transcription pipeline (independent of provider status)
    transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transcript_status: Mapped[TranscriptStatus] = mapped_column(
        Enum(TranscriptStatus, native_enum=False, values_callable=_enum_values, length=32),
        default=TranscriptStatus.PENDING,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ProviderNotification(Base):
    """Ledger of applied provider callbacks, one row per (asset, kind)."""
    __tablename__ = "provider_notifications"
    __table_args__ = (
        UniqueConstraint("asset_id", "notification_type", name="uq_provider_notifications_asset_kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(String(128), index=True)
    notification_type: Mapped[str] = mapped_column(String(32))
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ═══════════════════════════════════════════════════════════════════════
# Editorial
# ═══════════════════════════════════════════════════════════════════════

class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        Index("ix_reviews_owner_status", "owner_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id"), unique=True)
    owner_id: Mapped[str] = mapped_column(String(128), index=True)
    # No FK: deleting a topic leaves this dangling on purpose
    topic_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pros: Mapped[list] = mapped_column(JSONType, default=list)
    cons: Mapped[list] = mapped_column(JSONType, default=list)
    alt_links: Mapped[list] = mapped_column(JSONType, default=list)
    tags: Mapped[list] = mapped_column(JSONType, default=list)

    status: Mapped[ReviewStatus] = mapped_column(
        Enum(ReviewStatus, native_enum=False, values_callable=_enum_values, length=32),
        default=ReviewStatus.VIDEO_UPLOADED,
    )
    status_history: Mapped[list] = mapped_column(JSONType, default=list)
    is_video_ready: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    video: Mapped["Video"] = relationship("Video", lazy="joined")

    __mapper_args__ = {"version_id_col": version}


class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    market_summary: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
