"""
Critech Celery Worker Tasks

Asynchronous task definitions for:
- Video transcription + summary
"""
from __future__ import annotations

import asyncio
import logging

from celery import Celery

from critech.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# ── Celery App ───────────────────────────────────────────────────────────

celery_app = Celery(
    "critech",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=int(settings.transcription_timeout_seconds) + 60,
    task_time_limit=int(settings.transcription_timeout_seconds) + 120,
    task_default_queue="default",
    task_routes={
        "critech.workers.tasks.transcribe_video_task": {"queue": "transcription"},
    },
)


# ── Helpers ──────────────────────────────────────────────────────────────

def run_async(coro):
    """Run an async coroutine from sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def retry_countdown(retries: int) -> int:
    return settings.transcription_retry_base_delay * (2 ** retries)


# ── Tasks ────────────────────────────────────────────────────────────────

@celery_app.task(
    name="critech.workers.tasks.transcribe_video_task",
    bind=True,
    max_retries=settings.transcription_max_retries,
    acks_late=True,
)
def transcribe_video_task(self, video_id: int):
    """Transcribe and summarize one ready video."""
    from critech.services.transcription.transcription_service import transcription_worker

    logger.info(f"Transcription task for video {video_id} (attempt {self.request.retries + 1})")
    outcome = run_async(transcription_worker.run(video_id))

    if outcome.status != "completed" and outcome.retryable and self.request.retries < self.max_retries:
        countdown = retry_countdown(self.request.retries)
        logger.warning(f"Retrying transcription for video {video_id} in {countdown}s: {outcome.error}")
        raise self.retry(countdown=countdown)

    logger.info(f"Transcription task for video {video_id} finished: {outcome.status}")
    return outcome.to_dict()
