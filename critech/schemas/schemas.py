"""
Critech API Schemas: Pydantic v2 models for request/response validation.

Wire format is camelCase; Python attribute names stay snake_case. The
provider webhook payload is the one exception and keeps the provider's own
snake_case keys.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from critech.models.models import ReviewStatus, TranscriptStatus, VideoStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _clean_strings(values: Optional[List[str]], dedupe: bool = False) -> Optional[List[str]]:
    if values is None:
        return None
    cleaned: List[str] = []
    for value in values:
        value = value.strip()
        if not value or (dedupe and value in cleaned):
            continue
        cleaned.append(value)
    return cleaned


# ═══════════════════════════════════════════════════════════════════════
# Video
# ═══════════════════════════════════════════════════════════════════════

class VideoMetadata(CamelModel):
    """Provider-reported media facts; every field arrives independently."""
    format: Optional[str] = None
    codec: Optional[str] = None
    bit_rate: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    audio_codec: Optional[str] = None
    audio_frequency: Optional[int] = None
    aspect_ratio: Optional[str] = None
    rotation: Optional[int] = None
    quality: Optional[float] = None


class VideoSchema(CamelModel):
    id: int
    provider_asset_id: str
    provider_public_id: str
    duration: Optional[int] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    status: VideoStatus
    metadata: Optional[VideoMetadata] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    transcript_status: TranscriptStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, video) -> "VideoSchema":
        # ``metadata`` is shadowed by the declarative MetaData on the ORM side
        return cls(
            id=video.id,
            provider_asset_id=video.provider_asset_id,
            provider_public_id=video.provider_public_id,
            duration=video.duration,
            video_url=video.video_url,
            thumbnail_url=video.thumbnail_url,
            status=video.status,
            metadata=VideoMetadata.model_validate(video.metadata_json) if video.metadata_json else None,
            transcript=video.transcript,
            summary=video.summary,
            transcript_status=video.transcript_status,
            created_at=video.created_at,
            updated_at=video.updated_at,
        )


class TranscriptSchema(CamelModel):
    transcript: Optional[str] = None
    summary: Optional[str] = None
    status: TranscriptStatus


class VideoStatusDetail(CamelModel):
    video: VideoStatus
    transcription: TranscriptStatus
    overall: str


class VideoUrls(CamelModel):
    video: Optional[str] = None
    thumbnail: Optional[str] = None


class VideoStatusSchema(CamelModel):
    status: VideoStatusDetail
    urls: VideoUrls


class UploadDestination(CamelModel):
    cloud_name: str
    api_key: str
    folder: str
    upload_url: str


class UploadCredentials(CamelModel):
    timestamp: int
    signature: str
    destination: UploadDestination
    upload_preset: str


class WebhookAck(CamelModel):
    received: bool = True


class TranscriptionRetryResponse(CamelModel):
    video_id: int
    status: str = "queued"


class EagerVariant(BaseModel):
    model_config = ConfigDict(extra="allow")

    transformation: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    bytes: Optional[int] = None
    format: Optional[str] = None
    url: Optional[str] = None
    secure_url: Optional[str] = None


class ProviderNotificationPayload(BaseModel):
    """Inbound provider callback body, in the provider's own key style."""
    model_config = ConfigDict(extra="allow")

    notification_type: str
    asset_id: str = Field(..., min_length=1)
    public_id: Optional[str] = None
    version: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    resource_type: Optional[str] = None
    duration: Optional[float] = None
    bytes: Optional[int] = None
    url: Optional[str] = None
    secure_url: Optional[str] = None
    eager: Optional[List[EagerVariant]] = None
    status: Optional[str] = None
    error: Optional[Any] = None


# ═══════════════════════════════════════════════════════════════════════
# Review
# ═══════════════════════════════════════════════════════════════════════

class AltLink(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=2048)


class StatusHistoryEntry(CamelModel):
    status: ReviewStatus
    timestamp: datetime


class ReviewSchema(CamelModel):
    id: int
    video_id: int
    owner_id: str
    topic_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    pros: List[str] = []
    cons: List[str] = []
    alt_links: List[AltLink] = []
    tags: List[str] = []
    status: ReviewStatus
    status_history: List[StatusHistoryEntry] = []
    is_video_ready: bool = False
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReviewCreateFromVideo(CamelModel):
    video_id: int = Field(..., ge=1)


class ReviewUpdate(CamelModel):
    """Owner patch. Only keys present in the request body are applied."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    pros: Optional[List[str]] = None
    cons: Optional[List[str]] = None
    alt_links: Optional[List[AltLink]] = None
    tags: Optional[List[str]] = None
    status: Optional[ReviewStatus] = None
    topic_id: Optional[int] = None

    @field_validator("title", "description")
    @classmethod
    def _strip_text(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else None

    @field_validator("pros", "cons")
    @classmethod
    def _clean_lists(cls, values: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_strings(values)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, values: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_strings(values, dedupe=True)

    @model_validator(mode="after")
    def _no_null_collections(self) -> "ReviewUpdate":
        for name in ("pros", "cons", "alt_links", "tags", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} may not be null")
        return self


class FeedVideo(CamelModel):
    video_url: str
    thumbnail_url: Optional[str] = None


class FeedItem(ReviewSchema):
    video: Optional[FeedVideo] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the feed; ``video`` is left out, not nulled, when there is no playback URL."""
        exclude = {"video"} if self.video is None else None
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


class CountResponse(CamelModel):
    count: int


class UploadResponse(CamelModel):
    video: VideoSchema
    review: ReviewSchema


# ═══════════════════════════════════════════════════════════════════════
# Topic
# ═══════════════════════════════════════════════════════════════════════

class MarketTrend(CamelModel):
    trend: str
    description: str = ""


class MarketSummary(CamelModel):
    summary: str
    overall_pros: List[str] = []
    overall_cons: List[str] = []
    market_trends: List[MarketTrend] = []
    recommended_audience: List[str] = []
    last_updated: Optional[datetime] = None


class TopicCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name may not be blank")
        return value


class TopicUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("name may not be null")
        value = value.strip()
        if not value:
            raise ValueError("name may not be blank")
        return value


class TopicSchema(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    market_summary: Optional[MarketSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TopicInitializeResponse(CamelModel):
    message: str
    created_topics: List[TopicSchema]
    count: int
