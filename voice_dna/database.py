"""
Document persistence for the Voice DNA system.

ALL storage goes through a ``DocumentStore`` and the domain-level
``VoiceDNARepository`` defined here.  No direct Supabase calls should
appear anywhere else in the codebase.

Two stores implement the protocol:

    - ``SupabaseDocumentStore``: one table per collection
      (``key text primary key, data jsonb``); atomic batches and merges go
      through the SQL functions in ``database/schema.sql``.
    - ``MemoryDocumentStore``: in-process dicts guarded by an
      ``asyncio.Lock``; used by tests and the ``memory`` store backend.

Usage::

    from voice_dna.database import VoiceDNARepository, get_store

    repo = VoiceDNARepository(await get_store())
    profile = await repo.get_profile(user_id, Platform.INSTAGRAM)
"""

import asyncio
import copy
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, create_async_client

from voice_dna.config import get_settings
from voice_dna.exceptions import (
    ConflictError,
    DatabaseError,
    InvalidArgumentError,
)
from voice_dna.models import (
    Feedback,
    GeneratedContent,
    LearningMetrics,
    Platform,
    Post,
    ResynthesisRequest,
    TriggerType,
    from_document,
    to_document,
)
from voice_dna.profile.models import (
    VoiceProfile,
    profile_document_key,
    profile_head_key,
)
from voice_dna.utils import generate_id, utc_now

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


# =============================================================================
# COLLECTIONS
# =============================================================================

POSTS = "posts"
RAW_SCRAPES = "raw_scrapes"
PROFILES = "profiles"
PROFILE_HEADS = "profile_heads"
PROFILE_HISTORY = "profile_history"
GENERATED_CONTENT = "generated_content"
FEEDBACK = "feedback"
LEARNING_METRICS = "learning_metrics"
RESYNTHESIS_QUEUE = "resynthesis_queue"
EVENT_LOGS = "event_logs"

COLLECTIONS = (
    POSTS,
    RAW_SCRAPES,
    PROFILES,
    PROFILE_HEADS,
    PROFILE_HISTORY,
    GENERATED_CONTENT,
    FEEDBACK,
    LEARNING_METRICS,
    RESYNTHESIS_QUEUE,
    EVENT_LOGS,
)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        InvalidArgumentError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise InvalidArgumentError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise InvalidArgumentError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        InvalidArgumentError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise InvalidArgumentError(f"{name} cannot be None")
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be positive, got {value}")


def _validate_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise InvalidArgumentError(
            f"Unknown collection '{collection}'. Valid: {list(COLLECTIONS)}"
        )


# =============================================================================
# STORE PROTOCOL
# =============================================================================


@dataclass
class WriteOp:
    """One write inside an atomic batch.

    Attributes:
        kind: ``"set"`` (replace), ``"merge"`` (shallow update, creating
            the document if absent) or ``"create"`` (fails if the key
            exists).
    """

    kind: str
    collection: str
    key: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in ("set", "merge", "create"):
            raise InvalidArgumentError(f"Unknown write op kind '{self.kind}'")
        _validate_collection(self.collection)
        validate_not_empty(self.key, "key")


@runtime_checkable
class DocumentStore(Protocol):
    """Keyed JSON documents grouped in collections."""

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def set(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        ...

    async def merge(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        ...

    async def create(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        """Insert a new document; ``ConflictError`` if *key* exists."""
        ...

    async def batch(self, ops: Sequence[WriteOp]) -> None:
        """Apply all *ops* or none of them."""
        ...

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Equality filters on (dotted) fields, optional order and limit."""
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


def _lookup(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class MemoryDocumentStore:
    """Process-local ``DocumentStore``.  Documents are deep-copied in and out."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {c: {} for c in COLLECTIONS}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        _validate_collection(collection)
        document = self._data[collection].get(key)
        return copy.deepcopy(document) if document is not None else None

    async def set(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        await self.batch([WriteOp("set", collection, key, data)])

    async def merge(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        await self.batch([WriteOp("merge", collection, key, data)])

    async def create(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        await self.batch([WriteOp("create", collection, key, data)])

    async def batch(self, ops: Sequence[WriteOp]) -> None:
        async with self._lock:
            pending_creates = set()
            for op in ops:
                if op.kind != "create":
                    continue
                target = (op.collection, op.key)
                if op.key in self._data[op.collection] or target in pending_creates:
                    raise ConflictError(
                        f"Document {op.collection}/{op.key} already exists",
                        key=op.key,
                    )
                pending_creates.add(target)

            for op in ops:
                bucket = self._data[op.collection]
                if op.kind == "merge" and op.key in bucket:
                    bucket[op.key].update(copy.deepcopy(op.data))
                else:
                    bucket[op.key] = copy.deepcopy(op.data)

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        _validate_collection(collection)
        filters = filters or {}
        rows = [
            document
            for document in self._data[collection].values()
            if all(_lookup(document, path) == value for path, value in filters.items())
        ]
        if order_by:
            rows.sort(
                key=lambda d: (_lookup(d, order_by) is None, _lookup(d, order_by) or ""),
                reverse=desc,
            )
        if limit is not None:
            validate_positive(limit, "limit")
            rows = rows[:limit]
        return copy.deepcopy(rows)


# =============================================================================
# SUPABASE STORE
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key for full server-side access

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


def _json_path(path: str, as_text: bool = True) -> str:
    """``"learning_data.processed"`` -> ``"data->learning_data->>processed"``."""
    parts = path.split(".")
    head = "".join(f"->{p}" for p in parts[:-1])
    arrow = "->>" if as_text else "->"
    return f"data{head}{arrow}{parts[-1]}"


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


class SupabaseDocumentStore:
    """``DocumentStore`` backed by Supabase (PostgREST + SQL functions).

    **Important:** Use the :meth:`create_store` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create_store` factory method."""
        self.client = client

    @classmethod
    async def create_store(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDocumentStore":
        """Factory method to create an async store.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    async def _execute(self, request: Any, operation: str, key: Optional[str] = None) -> Any:
        """Run a PostgREST request, translating driver errors."""
        try:
            return await request.execute()
        except APIError as exc:
            if exc.code == UNIQUE_VIOLATION:
                raise ConflictError(
                    f"{operation}: document already exists", key=key
                ) from exc
            logger.error("[DB] %s failed: %s", operation, exc.message)
            raise DatabaseError(f"{operation} failed: {exc.message}") from exc
        except httpx.HTTPError as exc:
            logger.error("[DB] %s failed: %s", operation, exc)
            raise DatabaseError(f"{operation} failed: {exc}") from exc

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        _validate_collection(collection)
        result = await self._execute(
            self.client.table(collection).select("data").eq("key", key).limit(1),
            f"get {collection}/{key}",
        )
        return result.data[0]["data"] if result.data else None

    async def set(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        _validate_collection(collection)
        await self._execute(
            self.client.table(collection).upsert(
                {"key": key, "data": data, "updated_at": utc_now().isoformat()},
                on_conflict="key",
            ),
            f"set {collection}/{key}",
        )

    async def merge(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        await self.batch([WriteOp("merge", collection, key, data)])

    async def create(self, collection: str, key: str, data: Dict[str, Any]) -> None:
        _validate_collection(collection)
        await self._execute(
            self.client.table(collection).insert({"key": key, "data": data}),
            f"create {collection}/{key}",
            key=key,
        )

    async def batch(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        payload = [
            {"kind": op.kind, "collection": op.collection, "key": op.key, "data": op.data}
            for op in ops
        ]
        await self._execute(
            self.client.rpc("apply_document_batch", {"ops": payload}),
            f"batch of {len(ops)} ops",
            key=next((op.key for op in ops if op.kind == "create"), None),
        )

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        _validate_collection(collection)
        request = self.client.table(collection).select("data")
        for path, value in (filters or {}).items():
            request = request.eq(_json_path(path), _filter_value(value))
        if order_by:
            request = request.order(_json_path(order_by), desc=desc)
        if limit is not None:
            validate_positive(limit, "limit")
            request = request.limit(limit)
        result = await self._execute(request, f"query {collection}")
        return [row["data"] for row in result.data or []]


# =============================================================================
# DOMAIN REPOSITORY
# =============================================================================


class VoiceDNARepository:
    """Domain-level persistence for posts, profiles, content and feedback.

    Args:
        store: Any ``DocumentStore`` implementation.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    # -----------------------------------------------------------------
    # POSTS
    # -----------------------------------------------------------------

    async def upsert_posts(self, posts: Sequence[Post]) -> int:
        """Upsert posts keyed by ``(user_id, platform, post_id)``.

        Returns:
            Number of posts written.
        """
        if not posts:
            return 0
        ops = [WriteOp("set", POSTS, p.key, to_document(p)) for p in posts]
        await self.store.batch(ops)
        logger.info("[DB] Upserted %d posts", len(ops))
        return len(ops)

    async def get_posts(self, user_id: str, platform: Platform) -> List[Post]:
        validate_not_empty(user_id, "user_id")
        rows = await self.store.query(
            POSTS,
            {"user_id": user_id, "platform": Platform.parse(platform).value},
            order_by="created_at",
        )
        return [from_document(Post, row) for row in rows]

    async def save_raw_scrape(
        self,
        user_id: str,
        platform: Platform,
        username: str,
        payload: Any,
        error: Optional[str] = None,
    ) -> str:
        """Append one scraper response to the audit log."""
        scrape_id = generate_id()
        await self.store.create(RAW_SCRAPES, scrape_id, {
            "id": scrape_id,
            "user_id": user_id,
            "platform": Platform.parse(platform).value,
            "username": username,
            "payload": payload,
            "error": error,
            "scraped_at": utc_now().isoformat(),
        })
        return scrape_id

    # -----------------------------------------------------------------
    # PROFILES
    # -----------------------------------------------------------------

    async def get_head_version(self, user_id: str, platform: Platform) -> Optional[str]:
        head = await self.store.get(PROFILE_HEADS, profile_head_key(user_id, platform))
        return head["version"] if head else None

    async def get_profile(self, user_id: str, platform: Platform) -> Optional[VoiceProfile]:
        """Current (head) profile, or ``None`` when none was synthesized."""
        validate_not_empty(user_id, "user_id")
        version = await self.get_head_version(user_id, platform)
        if version is None:
            return None
        return await self.get_profile_version(user_id, platform, version)

    async def get_profile_version(
        self, user_id: str, platform: Platform, version: str
    ) -> Optional[VoiceProfile]:
        document = await self.store.get(
            PROFILES, profile_document_key(user_id, platform, version)
        )
        return from_document(VoiceProfile, document) if document else None

    async def save_profile_version(
        self,
        profile: VoiceProfile,
        base_version: Optional[str],
        trigger: TriggerType,
        extra_ops: Sequence[WriteOp] = (),
    ) -> None:
        """Persist *profile* as the new head, retiring *base_version*.

        Writes, in one atomic batch: the immutable version document
        (create-only), the history entry for the ``base -> new``
        transition (create-only, so only one writer can leave a given
        base), the head pointer, and any *extra_ops*.

        Raises:
            ConflictError: If the head moved away from *base_version* or
                another writer already produced a version from it.
        """
        user_id, platform = profile.user_id, profile.platform
        current = await self.get_head_version(user_id, platform)
        if current != base_version:
            raise ConflictError(
                f"Profile {user_id}/{platform.value} is at version {current}, "
                f"not {base_version}",
                key=profile.head_key,
                base_version=base_version,
            )

        transition_key = f"{profile.head_key}:from:{base_version or 'none'}"
        ops = [
            WriteOp("create", PROFILES, profile.id, to_document(profile)),
            WriteOp("create", PROFILE_HISTORY, transition_key, {
                "user_id": user_id,
                "platform": platform.value,
                "version": profile.version,
                "previous_version": base_version,
                "trigger_type": trigger.value,
                "confidence": profile.confidence.overall,
                "created_at": profile.created_at.isoformat(),
            }),
            WriteOp("set", PROFILE_HEADS, profile.head_key, {
                "user_id": user_id,
                "platform": platform.value,
                "version": profile.version,
                "profile_key": profile.id,
                "updated_at": profile.updated_at.isoformat(),
            }),
            *extra_ops,
        ]
        try:
            await self.store.batch(ops)
        except ConflictError as exc:
            raise ConflictError(
                f"Concurrent synthesis already advanced {user_id}/{platform.value} "
                f"from version {base_version}",
                key=exc.key,
                base_version=base_version,
            ) from exc

        logger.info(
            "[DB] Profile %s/%s %s -> %s (%s)",
            user_id,
            platform.value,
            base_version,
            profile.version,
            trigger.value,
        )

    async def get_profile_history(
        self, user_id: str, platform: Platform, limit: int = 50
    ) -> List[Dict[str, Any]]:
        validate_not_empty(user_id, "user_id")
        return await self.store.query(
            PROFILE_HISTORY,
            {"user_id": user_id, "platform": Platform.parse(platform).value},
            order_by="created_at",
            desc=True,
            limit=limit,
        )

    # -----------------------------------------------------------------
    # GENERATED CONTENT
    # -----------------------------------------------------------------

    async def save_generated_content(self, items: Sequence[GeneratedContent]) -> None:
        if not items:
            return
        await self.store.batch([
            WriteOp("create", GENERATED_CONTENT, item.id, to_document(item))
            for item in items
        ])

    async def get_generated_content(self, content_id: str) -> Optional[GeneratedContent]:
        validate_not_empty(content_id, "content_id")
        document = await self.store.get(GENERATED_CONTENT, content_id)
        return from_document(GeneratedContent, document) if document else None

    async def list_generated_content(
        self, user_id: str, platform: Platform
    ) -> List[GeneratedContent]:
        rows = await self.store.query(
            GENERATED_CONTENT,
            {"user_id": user_id, "platform": Platform.parse(platform).value},
            order_by="created_at",
        )
        return [from_document(GeneratedContent, row) for row in rows]

    # -----------------------------------------------------------------
    # FEEDBACK
    # -----------------------------------------------------------------

    async def save_feedback(self, feedback: Feedback) -> str:
        await self.store.create(FEEDBACK, feedback.id, to_document(feedback))
        return feedback.id

    async def get_feedback(self, feedback_id: str) -> Optional[Feedback]:
        validate_not_empty(feedback_id, "feedback_id")
        document = await self.store.get(FEEDBACK, feedback_id)
        return from_document(Feedback, document) if document else None

    async def list_feedback(
        self,
        user_id: str,
        platform: Platform,
        processed: Optional[bool] = None,
    ) -> List[Feedback]:
        filters: Dict[str, Any] = {
            "user_id": user_id,
            "platform": Platform.parse(platform).value,
        }
        if processed is not None:
            filters["learning_data.processed"] = processed
        rows = await self.store.query(FEEDBACK, filters, order_by="created_at")
        return [from_document(Feedback, row) for row in rows]

    @staticmethod
    def learning_data_op(feedback: Feedback) -> WriteOp:
        """Merge op rewriting only ``learning_data`` of one feedback record."""
        return WriteOp(
            "merge",
            FEEDBACK,
            feedback.id,
            {"learning_data": to_document(feedback.learning_data)},
        )

    # -----------------------------------------------------------------
    # LEARNING
    # -----------------------------------------------------------------

    async def get_learning_metrics(
        self, user_id: str, platform: Platform
    ) -> Optional[LearningMetrics]:
        document = await self.store.get(
            LEARNING_METRICS, profile_head_key(user_id, platform)
        )
        return from_document(LearningMetrics, document) if document else None

    @staticmethod
    def learning_metrics_op(metrics: LearningMetrics) -> WriteOp:
        return WriteOp(
            "set",
            LEARNING_METRICS,
            profile_head_key(metrics.user_id, metrics.platform),
            to_document(metrics),
        )

    @staticmethod
    def resynthesis_op(request: ResynthesisRequest) -> WriteOp:
        document = to_document(request)
        document["status"] = "pending"
        return WriteOp("set", RESYNTHESIS_QUEUE, request.id, document)

    async def get_pending_resynthesis(
        self, user_id: str, platform: Platform
    ) -> List[ResynthesisRequest]:
        rows = await self.store.query(
            RESYNTHESIS_QUEUE,
            {
                "user_id": user_id,
                "platform": Platform.parse(platform).value,
                "status": "pending",
            },
            order_by="created_at",
        )
        return [from_document(ResynthesisRequest, row) for row in rows]

    @staticmethod
    def consume_resynthesis_op(request: ResynthesisRequest) -> WriteOp:
        return WriteOp(
            "merge",
            RESYNTHESIS_QUEUE,
            request.id,
            {"status": "consumed", "consumed_at": utc_now().isoformat()},
        )

    async def apply(self, ops: Sequence[WriteOp]) -> None:
        await self.store.batch(ops)


# =============================================================================
# GLOBAL STORE INSTANCE (Singleton)
# =============================================================================

_store_instance: Optional[DocumentStore] = None
_store_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_store() -> DocumentStore:
    """Get the global document store selected by ``Settings.store_backend``.

    Thread-safe **and** async-safe.  The first call creates the store;
    subsequent calls return the same instance.
    """
    global _store_instance, _store_lock

    if _store_lock is None:
        with _init_lock:
            if _store_lock is None:
                _store_lock = asyncio.Lock()

    if _store_instance is None:
        async with _store_lock:
            if _store_instance is None:
                if get_settings().store_backend == "supabase":
                    _store_instance = await SupabaseDocumentStore.create_store()
                else:
                    _store_instance = MemoryDocumentStore()

    return _store_instance


def reset_store() -> None:
    """Drop the cached store (used by tests)."""
    global _store_instance, _store_lock
    _store_instance = None
    _store_lock = None


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "COLLECTIONS",
    "POSTS",
    "RAW_SCRAPES",
    "PROFILES",
    "PROFILE_HEADS",
    "PROFILE_HISTORY",
    "GENERATED_CONTENT",
    "FEEDBACK",
    "LEARNING_METRICS",
    "RESYNTHESIS_QUEUE",
    "EVENT_LOGS",
    "validate_not_empty",
    "validate_positive",
    "WriteOp",
    "DocumentStore",
    "MemoryDocumentStore",
    "SupabaseConfig",
    "SupabaseDocumentStore",
    "VoiceDNARepository",
    "get_store",
    "reset_store",
]
