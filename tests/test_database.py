"""Tests for the voice_dna.database module.

Covers:
- SupabaseConfig construction and environment-based creation.
- validate_not_empty and validate_positive helper functions.
- WriteOp validation.
- MemoryDocumentStore semantics (create conflicts, atomic batches, merge,
  filtered and ordered queries).
- SupabaseDocumentStore request building and error translation.
- VoiceDNARepository posts, profile versions, history and feedback.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from voice_dna.database import (
    FEEDBACK,
    POSTS,
    PROFILE_HISTORY,
    MemoryDocumentStore,
    SupabaseConfig,
    SupabaseDocumentStore,
    WriteOp,
    _json_path,
    _filter_value,
    get_store,
    reset_store,
    validate_not_empty,
    validate_positive,
)
from voice_dna.exceptions import (
    ConflictError,
    DatabaseError,
    InvalidArgumentError,
)
from voice_dna.models import Platform, Rating, TriggerType
from voice_dna.profile.models import default_profile_for
from voice_dna.profile.synthesizer import VoiceProfileSynthesizer


# =============================================================================
# SupabaseConfig tests
# =============================================================================


class TestSupabaseConfig:
    """Tests for the SupabaseConfig dataclass."""

    def test_create_with_url_and_key(self):
        """SupabaseConfig can be created with explicit url and key."""
        config = SupabaseConfig(url="https://example.supabase.co", key="test-key-123")
        assert config.url == "https://example.supabase.co"
        assert config.key == "test-key-123"

    def test_from_env_raises_when_vars_missing(self):
        """The autouse fixture clears both variables."""
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"):
            SupabaseConfig.from_env()

    def test_from_env_raises_when_key_missing(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")

        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"):
            SupabaseConfig.from_env()

    def test_from_env_succeeds_when_vars_set(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")

        config = SupabaseConfig.from_env()

        assert config.url == "https://test-project.supabase.co"
        assert config.key == "service-key"


# =============================================================================
# Validation helpers
# =============================================================================


class TestValidateNotEmpty:
    """Tests for the validate_not_empty helper."""

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_raises(self, value):
        with pytest.raises(InvalidArgumentError, match="user_id"):
            validate_not_empty(value, "user_id")

    @pytest.mark.parametrize("value", ["abc", 0, [], False])
    def test_passes(self, value):
        validate_not_empty(value, "field")


class TestValidatePositive:
    """Tests for the validate_positive helper."""

    @pytest.mark.parametrize("value", [0, -1, -0.5])
    def test_raises_for_non_positive(self, value):
        with pytest.raises(InvalidArgumentError, match="must be positive"):
            validate_positive(value, "limit")

    def test_raises_for_none(self):
        with pytest.raises(InvalidArgumentError, match="cannot be None"):
            validate_positive(None, "limit")

    @pytest.mark.parametrize("value", [1, 0.01])
    def test_passes(self, value):
        validate_positive(value, "limit")


class TestWriteOp:
    def test_unknown_kind(self):
        with pytest.raises(InvalidArgumentError, match="kind"):
            WriteOp("delete", POSTS, "k")

    def test_unknown_collection(self):
        with pytest.raises(InvalidArgumentError, match="Unknown collection"):
            WriteOp("set", "users", "k")

    def test_blank_key(self):
        with pytest.raises(InvalidArgumentError):
            WriteOp("set", POSTS, " ")


# =============================================================================
# MemoryDocumentStore
# =============================================================================


class TestMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_set_and_get_are_copies(self, store):
        document = {"user_id": "u1", "tags": ["#a"]}
        await store.set(POSTS, "p1", document)
        document["tags"].append("#b")

        loaded = await store.get(POSTS, "p1")
        assert loaded == {"user_id": "u1", "tags": ["#a"]}
        loaded["tags"].append("#c")
        assert (await store.get(POSTS, "p1"))["tags"] == ["#a"]

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get(POSTS, "nope") is None

    @pytest.mark.asyncio
    async def test_create_conflict(self, store):
        await store.create(FEEDBACK, "f1", {"n": 1})
        with pytest.raises(ConflictError) as exc_info:
            await store.create(FEEDBACK, "f1", {"n": 2})
        assert exc_info.value.key == "f1"
        assert (await store.get(FEEDBACK, "f1")) == {"n": 1}

    @pytest.mark.asyncio
    async def test_batch_is_all_or_nothing(self, store):
        await store.create(FEEDBACK, "taken", {"n": 1})
        ops = [
            WriteOp("set", POSTS, "p1", {"n": 1}),
            WriteOp("create", FEEDBACK, "taken", {"n": 2}),
        ]
        with pytest.raises(ConflictError):
            await store.batch(ops)
        assert await store.get(POSTS, "p1") is None

    @pytest.mark.asyncio
    async def test_duplicate_create_within_batch(self, store):
        ops = [
            WriteOp("create", FEEDBACK, "f1", {"n": 1}),
            WriteOp("create", FEEDBACK, "f1", {"n": 2}),
        ]
        with pytest.raises(ConflictError):
            await store.batch(ops)
        assert await store.get(FEEDBACK, "f1") is None

    @pytest.mark.asyncio
    async def test_merge_is_shallow_and_upserts(self, store):
        await store.merge(FEEDBACK, "f1", {"a": 1})
        await store.merge(FEEDBACK, "f1", {"b": {"x": 1}})
        await store.merge(FEEDBACK, "f1", {"b": {"y": 2}})
        assert await store.get(FEEDBACK, "f1") == {"a": 1, "b": {"y": 2}}

    @pytest.mark.asyncio
    async def test_query_filters_order_limit(self, store):
        await store.set(FEEDBACK, "f1", {"user_id": "u1", "created_at": "2025-06-02",
                                         "learning_data": {"processed": True}})
        await store.set(FEEDBACK, "f2", {"user_id": "u1", "created_at": "2025-06-01",
                                         "learning_data": {"processed": False}})
        await store.set(FEEDBACK, "f3", {"user_id": "u2", "created_at": "2025-06-03"})

        rows = await store.query(FEEDBACK, {"user_id": "u1"}, order_by="created_at")
        assert [r["created_at"] for r in rows] == ["2025-06-01", "2025-06-02"]

        rows = await store.query(FEEDBACK, {"learning_data.processed": False})
        assert len(rows) == 1

        rows = await store.query(FEEDBACK, order_by="created_at", desc=True, limit=1)
        assert rows[0]["user_id"] == "u2"

    @pytest.mark.asyncio
    async def test_query_rejects_bad_limit(self, store):
        with pytest.raises(InvalidArgumentError):
            await store.query(FEEDBACK, limit=0)

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store):
        with pytest.raises(InvalidArgumentError):
            await store.get("users", "u1")


class TestGlobalStore:
    @pytest.mark.asyncio
    async def test_memory_backend_singleton(self):
        first = await get_store()
        assert isinstance(first, MemoryDocumentStore)
        assert await get_store() is first
        reset_store()
        assert await get_store() is not first


# =============================================================================
# SupabaseDocumentStore
# =============================================================================


def _api_error(code, message="boom"):
    return APIError({"message": message, "code": code, "hint": None, "details": None})


@pytest.fixture
def supabase_client():
    """MagicMock client whose query builder chains back to itself."""
    builder = MagicMock()
    for method in ("select", "eq", "order", "limit", "upsert", "insert"):
        getattr(builder, method).return_value = builder
    builder.execute = AsyncMock(return_value=MagicMock(data=[{"data": {"id": "f1"}}]))

    client = MagicMock()
    client.table.return_value = builder
    client.rpc.return_value = MagicMock(execute=AsyncMock(return_value=MagicMock(data=None)))
    client.builder = builder
    return client


class TestSupabaseHelpers:
    def test_json_path(self):
        assert _json_path("user_id") == "data->>user_id"
        assert _json_path("learning_data.processed") == "data->learning_data->>processed"
        assert _json_path("a.b", as_text=False) == "data->a->b"

    @pytest.mark.parametrize("value, expected", [
        (True, "true"),
        (False, "false"),
        (Platform.TWITTER, "twitter"),
        (3, "3"),
    ])
    def test_filter_value(self, value, expected):
        assert _filter_value(value) == expected


class TestSupabaseDocumentStore:
    @pytest.mark.asyncio
    async def test_get(self, supabase_client):
        store = SupabaseDocumentStore(supabase_client)
        assert await store.get(FEEDBACK, "f1") == {"id": "f1"}
        supabase_client.table.assert_called_with(FEEDBACK)
        supabase_client.builder.eq.assert_called_with("key", "f1")

    @pytest.mark.asyncio
    async def test_query_builds_json_filters(self, supabase_client):
        store = SupabaseDocumentStore(supabase_client)
        rows = await store.query(
            FEEDBACK,
            {"user_id": "u1", "learning_data.processed": False},
            order_by="created_at",
            desc=True,
            limit=5,
        )
        assert rows == [{"id": "f1"}]
        builder = supabase_client.builder
        builder.eq.assert_any_call("data->>user_id", "u1")
        builder.eq.assert_any_call("data->learning_data->>processed", "false")
        builder.order.assert_called_with("data->>created_at", desc=True)
        builder.limit.assert_called_with(5)

    @pytest.mark.asyncio
    async def test_batch_uses_rpc(self, supabase_client):
        store = SupabaseDocumentStore(supabase_client)
        await store.batch([
            WriteOp("create", FEEDBACK, "f1", {"n": 1}),
            WriteOp("merge", FEEDBACK, "f2", {"n": 2}),
        ])
        name, params = supabase_client.rpc.call_args.args
        assert name == "apply_document_batch"
        assert [op["kind"] for op in params["ops"]] == ["create", "merge"]

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, supabase_client):
        await SupabaseDocumentStore(supabase_client).batch([])
        supabase_client.rpc.assert_not_called()

    @pytest.mark.asyncio
    async def test_unique_violation_becomes_conflict(self, supabase_client):
        supabase_client.builder.execute.side_effect = _api_error("23505")
        store = SupabaseDocumentStore(supabase_client)
        with pytest.raises(ConflictError) as exc_info:
            await store.create(FEEDBACK, "f1", {})
        assert exc_info.value.key == "f1"

    @pytest.mark.asyncio
    async def test_other_api_error_becomes_database_error(self, supabase_client):
        supabase_client.builder.execute.side_effect = _api_error("42P01", "relation missing")
        store = SupabaseDocumentStore(supabase_client)
        with pytest.raises(DatabaseError, match="relation missing"):
            await store.get(FEEDBACK, "f1")

    @pytest.mark.asyncio
    async def test_transport_error_becomes_database_error(self, supabase_client):
        supabase_client.builder.execute.side_effect = httpx.ConnectError("refused")
        store = SupabaseDocumentStore(supabase_client)
        with pytest.raises(DatabaseError, match="refused"):
            await store.set(FEEDBACK, "f1", {})


# =============================================================================
# VoiceDNARepository
# =============================================================================


@pytest.fixture
def profile(settings, posts, sample_utc_now):
    return VoiceProfileSynthesizer(settings).synthesize(
        "u1", "instagram", posts, now=sample_utc_now
    )


class TestRepositoryPosts:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, repository, posts):
        assert await repository.upsert_posts(posts) == 12
        await repository.upsert_posts(posts)
        stored = await repository.get_posts("u1", "instagram")
        assert len(stored) == 12
        assert stored == sorted(posts, key=lambda p: p.created_at)

    @pytest.mark.asyncio
    async def test_empty_upsert(self, repository):
        assert await repository.upsert_posts([]) == 0

    @pytest.mark.asyncio
    async def test_raw_scrape_audit(self, repository, store):
        scrape_id = await repository.save_raw_scrape("u1", "twitter", "jane", {"edges": []})
        document = await store.get("raw_scrapes", scrape_id)
        assert document["platform"] == "twitter"
        assert document["error"] is None


class TestRepositoryProfiles:
    @pytest.mark.asyncio
    async def test_first_version(self, repository, profile):
        await repository.save_profile_version(profile, None, TriggerType.INITIAL)

        assert await repository.get_head_version("u1", Platform.INSTAGRAM) == "1.0.0"
        assert await repository.get_profile("u1", Platform.INSTAGRAM) == profile
        (entry,) = await repository.get_profile_history("u1", Platform.INSTAGRAM)
        assert entry["previous_version"] is None
        assert entry["trigger_type"] == "initial"

    @pytest.mark.asyncio
    async def test_stale_base_rejected(self, repository, profile):
        await repository.save_profile_version(profile, None, TriggerType.INITIAL)
        newer = default_profile_for("u1", "instagram", version="1.1.0")
        with pytest.raises(ConflictError) as exc_info:
            await repository.save_profile_version(newer, None, TriggerType.RESYNTHESIS)
        assert exc_info.value.base_version is None

    @pytest.mark.asyncio
    async def test_one_winner_per_base(self, repository, store, profile):
        """A history marker already taken for the base blocks a second writer."""
        await repository.save_profile_version(profile, None, TriggerType.INITIAL)
        await store.create(PROFILE_HISTORY, "u1:instagram:from:1.0.0", {"version": "1.1.0"})

        loser = default_profile_for("u1", "instagram", version="1.1.0")
        with pytest.raises(ConflictError, match="Concurrent synthesis"):
            await repository.save_profile_version(loser, "1.0.0", TriggerType.RESYNTHESIS)
        assert await repository.get_head_version("u1", "instagram") == "1.0.0"
        assert await repository.get_profile_version("u1", "instagram", "1.1.0") is None

    @pytest.mark.asyncio
    async def test_missing_profile(self, repository):
        assert await repository.get_profile("u1", Platform.INSTAGRAM) is None


class TestRepositoryFeedback:
    @pytest.mark.asyncio
    async def test_processed_filter(self, repository, store):
        await store.set(FEEDBACK, "f1", {
            "user_id": "u1",
            "platform": "instagram",
            "generated_content_id": "c1",
            "content": {"caption": "hi"},
            "rating": "thumbs_up",
            "generation_context": {"profile_version": "1.0.0", "prompt": "p"},
            "created_at": "2025-06-01T00:00:00+00:00",
            "learning_data": {"processed": True},
            "id": "f1",
        })
        assert await repository.list_feedback("u1", "instagram", processed=False) == []
        (record,) = await repository.list_feedback("u1", "instagram", processed=True)
        assert record.rating is Rating.THUMBS_UP
        assert record.learning_data.processed is True

    @pytest.mark.asyncio
    async def test_get_feedback_requires_id(self, repository):
        with pytest.raises(InvalidArgumentError):
            await repository.get_feedback("")
