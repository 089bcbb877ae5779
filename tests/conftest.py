"""Shared fixtures for the Voice DNA test suite."""

import os
from datetime import datetime, timedelta, timezone

import pytest

from voice_dna.config import Settings, reset_settings
from voice_dna.database import MemoryDocumentStore, VoiceDNARepository, reset_store
from voice_dna.generation.backends import TemplateBackend
from voice_dna.generation.engine import GenerationEngine
from voice_dna.ingest.extractor import extract_posts
from voice_dna.logging import EventLogger, reset_event_logger
from voice_dna.service import VoiceDNAService


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Clear API keys and VOICE_DNA_* overrides, reset all singletons."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ANTHROPIC_API_KEY",
    ]
    keys.extend(k for k in os.environ if k.startswith("VOICE_DNA_"))
    for key in keys:
        monkeypatch.delenv(key, raising=False)

    reset_settings()
    reset_store()
    reset_event_logger()
    EventLogger.clear_context()
    yield
    reset_settings()
    reset_store()
    reset_event_logger()


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Raw posts
# ---------------------------------------------------------------------------
def make_raw_post(index, taken_at, caption=None, likes=None, comments=None):
    """One Instagram scraper node."""
    text = caption if caption is not None else (
        f"Morning coffee ritual day {index + 1}: love this amazing roast!\n"
        "Tell me your favorite brew?\n"
        "Link in bio #coffee #morning" + (" #latteart" if index % 3 == 0 else "")
    )
    return {
        "pk": str(1000 + index),
        "code": f"C{index:03d}",
        "taken_at": int(taken_at.timestamp()),
        "caption": {"text": text},
        "like_count": 100 + 10 * index if likes is None else likes,
        "comment_count": 5 + index if comments is None else comments,
        "image_versions2": {
            "candidates": [
                {"url": f"https://cdn.example.com/{index}.jpg", "width": 1080, "height": 1080},
            ]
        },
    }


@pytest.fixture
def raw_posts():
    """Twelve Instagram posts spread over about four weeks."""
    start = datetime(2025, 5, 16, 8, 0, 0, tzinfo=timezone.utc)
    return [make_raw_post(i, start + timedelta(hours=60 * i)) for i in range(12)]


@pytest.fixture
def posts(raw_posts):
    """The raw posts, normalized for user ``u1``."""
    return extract_posts("u1", "instagram", raw_posts).posts


# ---------------------------------------------------------------------------
# Store / service
# ---------------------------------------------------------------------------
@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def repository(store):
    return VoiceDNARepository(store)


@pytest.fixture
def engine(settings):
    return GenerationEngine(TemplateBackend(), settings)


@pytest.fixture
def service(repository, engine, settings):
    return VoiceDNAService(repository, engine=engine, settings=settings)
