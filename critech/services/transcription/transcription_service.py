"""
Critech Transcription Worker.

Pipeline for one ready Video:
  1. transcriptStatus → processing (committed on its own)
  2. derive the audio-only rendition URL
  3. download + transcribe
  4. summarize
  5. transcript, summary and transcriptStatus=completed in one UPDATE

Steps 2-4 share one overall timeout. Any failure leaves a persisted
``failed`` status behind; the worker itself never raises, it reports an
outcome that the Celery task uses to decide on a retry.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from critech.core.config import get_settings
from critech.core.database import create_session_factory
from critech.core.errors import NotFound, ProviderError
from critech.core.metrics import transcriptions_total
from critech.models.models import TranscriptStatus, Video, VideoStatus, utcnow
from critech.services.media.media_store import MediaStoreAdapter, media_store
from critech.services.transcription.providers import OpenAIProvider, openai_provider

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class TranscriptionOutcome:
    video_id: int
    status: str
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class TranscriptionWorker:
    """Runs the transcription pipeline against its own sessions."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        provider: Optional[OpenAIProvider] = None,
        store: Optional[MediaStoreAdapter] = None,
        timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.provider = provider or openai_provider
        self.store = store or media_store
        self.timeout = timeout or settings.transcription_timeout_seconds

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            # Each Celery job runs on a fresh event loop; pooled connections cannot follow
            self._session_factory = create_session_factory(poolclass=NullPool)
        return self._session_factory

    async def _set_status(self, video_id: int, status: TranscriptStatus, **values):
        async with self.session_factory() as db:
            await db.execute(
                update(Video)
                .where(Video.id == video_id)
                .values(transcript_status=status, updated_at=utcnow(), **values)
            )
            await db.commit()

    async def _start(self, video_id: int) -> str:
        async with self.session_factory() as db:
            video = await db.get(Video, video_id)
            if video is None:
                raise NotFound("Video not found")
            if video.status != VideoStatus.READY or not video.video_url:
                raise ProviderError(
                    "Video is not ready for transcription",
                    details={"videoId": video_id, "status": video.status.value},
                    retryable=False,
                )
            video.transcript_status = TranscriptStatus.PROCESSING
            await db.commit()
            return video.video_url

    async def _transcribe_and_summarize(self, video_url: str) -> Tuple[str, str]:
        audio_url = self.store.audio_url_for(video_url)
        transcript = await self.provider.transcribe(audio_url)
        if not transcript:
            return "", ""
        summary = await self.provider.summarize(transcript)
        return transcript, summary

    async def _mark_failed(self, video_id: int):
        try:
            await self._set_status(video_id, TranscriptStatus.FAILED)
        except Exception:
            logger.exception(f"Could not persist failed transcription for video {video_id}")

    async def run(self, video_id: int) -> TranscriptionOutcome:
        try:
            video_url = await self._start(video_id)
        except NotFound:
            logger.warning(f"Transcription requested for missing video {video_id}")
            transcriptions_total.labels(status="missing").inc()
            return TranscriptionOutcome(video_id, "failed", error="Video not found")
        except ProviderError as e:
            logger.warning(f"Transcription skipped for video {video_id}: {e.message}")
            transcriptions_total.labels(status="skipped").inc()
            return TranscriptionOutcome(video_id, "failed", error=e.message, retryable=False)

        logger.info(f"Transcribing video {video_id}")
        try:
            transcript, summary = await asyncio.wait_for(
                self._transcribe_and_summarize(video_url), timeout=self.timeout,
            )
            await self._set_status(
                video_id, TranscriptStatus.COMPLETED, transcript=transcript, summary=summary,
            )
        except asyncio.TimeoutError:
            logger.error(f"Transcription timed out for video {video_id} after {self.timeout}s")
            await self._mark_failed(video_id)
            transcriptions_total.labels(status="timeout").inc()
            return TranscriptionOutcome(video_id, "failed", error="Transcription timed out", retryable=True)
        except ProviderError as e:
            logger.error(f"Transcription failed for video {video_id}: {e.message} {e.details}")
            await self._mark_failed(video_id)
            transcriptions_total.labels(status="failed").inc()
            return TranscriptionOutcome(video_id, "failed", error=e.message, retryable=e.retryable)
        except Exception as e:
            logger.exception(f"Unexpected transcription failure for video {video_id}")
            await self._mark_failed(video_id)
            transcriptions_total.labels(status="failed").inc()
            return TranscriptionOutcome(video_id, "failed", error=str(e), retryable=False)

        transcriptions_total.labels(status="completed").inc()
        logger.info(f"Transcription completed for video {video_id} ({len(transcript)} chars)")
        return TranscriptionOutcome(video_id, "completed")


transcription_worker = TranscriptionWorker()
