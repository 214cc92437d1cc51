"""
Shared fixtures: a throwaway SQLite database per test, fake identity and
fake LLM provider, and a TestClient bound to the test database.
"""
import os

os.environ.setdefault("CRITECH_DB_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("CRITECH_CLOUDINARY_API_SECRET", "test-secret")
os.environ.setdefault("CRITECH_CLOUDINARY_API_KEY", "test-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from critech.core import security
from critech.core.database import Base, create_session_factory, get_db
from critech.core.errors import AuthenticationFailed
from critech.core.security import AuthenticatedUser
from critech.models import models  # noqa: F401
from critech.models.models import Review, ReviewStatus, TranscriptStatus, Video, VideoStatus


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "critech.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def session_factory(db_path):
    return create_session_factory(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Fakes
# ============================================================================

class FakeIdentityProvider:
    """Accepts tokens of the form ``user:<id>``."""

    async def verify_token(self, token):
        if not token.startswith("user:"):
            raise AuthenticationFailed("Invalid token")
        return AuthenticatedUser(id=token.split(":", 1)[1])


class FakeLLMProvider:
    def __init__(self, transcript="great phone, long battery", summary="A short summary.", market=None):
        self.transcript = transcript
        self.summary = summary
        self.market = market or {
            "summary": "Strong market.",
            "overallPros": ["battery"],
            "overallCons": ["price"],
            "marketTrends": [{"trend": "foldables", "description": "growing"}],
            "recommendedAudience": ["commuters"],
        }
        self.transcribed = []
        self.summarized = []
        self.prompts = []

    async def transcribe(self, audio_url):
        self.transcribed.append(audio_url)
        return self.transcript

    async def summarize(self, transcript):
        self.summarized.append(transcript)
        return self.summary

    async def complete_json(self, system, user, max_tokens=None):
        self.prompts.append(user)
        return self.market


class FakeTask:
    def __init__(self):
        self.queued = []

    def delay(self, *args):
        self.queued.append(args)


@pytest.fixture
def fake_llm():
    return FakeLLMProvider()


@pytest.fixture(autouse=True)
def fake_identity(monkeypatch):
    monkeypatch.setattr(security, "identity_provider", FakeIdentityProvider())


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_video(session_factory):
    async def _make(asset_id="asset-1", status=VideoStatus.READY, video_url=None, **extra):
        async with session_factory() as session:
            video = Video(
                provider_asset_id=asset_id,
                provider_public_id=f"reviews/{asset_id}",
                status=status,
                video_url=video_url,
                transcript_status=extra.pop("transcript_status", TranscriptStatus.PENDING),
                **extra,
            )
            session.add(video)
            await session.commit()
            return video
    return _make


@pytest.fixture
def make_review(session_factory, make_video):
    counter = {"n": 0}

    async def _make(owner_id="u1", title=None, description=None, status=ReviewStatus.VIDEO_UPLOADED,
                    video_url="https://res.cloudinary.com/demo/video/upload/v1/reviews/clip.mp4", **extra):
        counter["n"] += 1
        video = await make_video(asset_id=f"asset-r{counter['n']}", video_url=video_url)
        async with session_factory() as session:
            review = Review(
                video_id=video.id,
                owner_id=owner_id,
                title=title,
                description=description,
                pros=[], cons=[], alt_links=[], tags=extra.pop("tags", []),
                status=status,
                status_history=[{"status": status.value, "timestamp": "2024-01-01T00:00:00+00:00"}],
                is_video_ready=True,
                **extra,
            )
            session.add(review)
            await session.commit()
            return review

    return _make


# ============================================================================
# API client
# ============================================================================

@pytest.fixture
def client(session_factory, monkeypatch):
    from critech.api.routes import videos as video_routes
    from critech.main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    monkeypatch.setattr(video_routes, "transcribe_video_task", FakeTask())
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
