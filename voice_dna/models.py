"""
Shared data types for the Voice DNA system.

Hierarchy of types
------------------
- **Enums**: ``Platform``, ``MediaType``, ``ContentType``, ``Rating``,
  ``TriggerType``
- **Post store models**: ``EngagementMetrics``, ``VisualAnalysis``, ``Post``
- **Generation models**: ``GeneratedContent``
- **Feedback models**: ``FeedbackContent``, ``GenerationContext``,
  ``LearningData``, ``Feedback``
- **Learning models**: ``TrendPoint``, ``AspectImprovement``,
  ``Improvement``, ``UsagePatterns``, ``LearningMetrics``,
  ``ResynthesisRequest``
- **Document helpers**: ``to_document`` / ``from_document`` convert any of
  the dataclasses here (and in ``voice_dna.profile.models``) to and from
  JSON-compatible dicts for the document store.
"""

from __future__ import annotations

import dataclasses
import typing
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from voice_dna.exceptions import InternalError, InvalidArgumentError
from voice_dna.utils import generate_id, parse_timestamp, utc_now

T = TypeVar("T")


# =============================================================================
# ENUMS
# =============================================================================


class Platform(str, Enum):
    """Platforms a voice profile can be synthesized for."""

    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"

    @classmethod
    def parse(cls, value: Any) -> "Platform":
        """Coerce *value* to a ``Platform``.

        Raises:
            InvalidArgumentError: If *value* is empty or not a supported
                platform.  ``"threads"`` is rejected explicitly: it is a
                display-only platform with no profile of its own.
        """
        if isinstance(value, cls):
            return value
        if not value:
            raise InvalidArgumentError("platform is required")
        normalized = str(value).strip().lower()
        if normalized == "threads":
            raise InvalidArgumentError(
                "platform 'threads' is not supported for voice profiles"
            )
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidArgumentError(
                f"Unknown platform '{value}'. "
                f"Valid platforms: {[p.value for p in cls]}"
            ) from None


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    CAROUSEL = "carousel"


class ContentType(str, Enum):
    """What a generation request produces."""

    CAPTION = "caption"
    HASHTAGS = "hashtags"
    FULL = "full"

    @classmethod
    def parse(cls, value: Any) -> "ContentType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid content type '{value}'. "
                f"Valid types: {[c.value for c in cls]}"
            ) from None


class Rating(str, Enum):
    THUMBS_UP = "thumbs_up"
    THUMBS_DOWN = "thumbs_down"

    @classmethod
    def parse(cls, value: Any) -> "Rating":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgumentError(
                "Invalid rating. Must be thumbs_up or thumbs_down"
            ) from None


class TriggerType(str, Enum):
    """Why a profile version was written (recorded in profile history)."""

    INITIAL = "initial"
    RESYNTHESIS = "resynthesis"
    FEEDBACK = "feedback"
    ROLLBACK = "rollback"


# =============================================================================
# POST STORE MODELS
# =============================================================================


@dataclass
class EngagementMetrics:
    likes: int = 0
    comments: int = 0
    view_count: Optional[int] = None
    shares: Optional[int] = None

    @property
    def total(self) -> int:
        """Interactions used for ranking posts (likes + comments)."""
        return self.likes + self.comments


@dataclass
class VisualAnalysis:
    """Optional visual tags attached to a post by an upstream vision step."""

    dominant_colors: List[str] = field(default_factory=list)
    detected_objects: List[str] = field(default_factory=list)
    scene_type: str = ""
    mood: str = ""
    composition: str = ""
    visual_themes: List[str] = field(default_factory=list)
    text_in_image: List[str] = field(default_factory=list)


@dataclass
class Post:
    """A normalized social-media post.

    ``(user_id, platform, post_id)`` identifies a post; ``id`` is derived
    from that triple so re-extracting the same raw record yields an
    identical ``Post``.
    """

    user_id: str
    platform: Platform
    post_id: str
    created_at: datetime
    post_url: str = ""
    media_urls: List[str] = field(default_factory=list)
    media_type: MediaType = MediaType.IMAGE
    caption: str = ""
    hashtags: List[str] = field(default_factory=list)
    engagement: EngagementMetrics = field(default_factory=EngagementMetrics)
    visual_analysis: Optional[VisualAnalysis] = None
    last_analyzed: Optional[datetime] = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = post_document_key(self.user_id, self.platform, self.post_id)

    @property
    def key(self) -> str:
        return post_document_key(self.user_id, self.platform, self.post_id)

    @property
    def is_complete(self) -> bool:
        """Carries both caption text and at least one media URL."""
        return bool(self.caption.strip()) and bool(self.media_urls)


def post_document_key(user_id: str, platform: Platform, post_id: str) -> str:
    return f"{user_id}:{Platform.parse(platform).value}:{post_id}"


# =============================================================================
# GENERATION MODELS
# =============================================================================


@dataclass(frozen=True)
class GeneratedContent:
    """One generated variation.  Immutable once created."""

    user_id: str
    platform: Platform
    prompt: str
    text: str
    hashtags: Tuple[str, ...]
    engagement_score: float
    suggested_post_time: datetime
    character_count: int
    provider: str
    profile_version: str
    confidence_score: float
    content_type: ContentType = ContentType.CAPTION
    variation_index: int = 0
    published: bool = False
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.character_count != len(self.text):
            raise InternalError(
                f"character_count {self.character_count} does not match "
                f"text length {len(self.text)}"
            )
        if not 0 <= self.engagement_score <= 100:
            raise InternalError(
                f"engagement_score {self.engagement_score} outside [0, 100]"
            )


# =============================================================================
# FEEDBACK MODELS
# =============================================================================


@dataclass
class FeedbackContent:
    """The content the user actually rated (possibly their edited version)."""

    caption: str = ""
    hashtags: List[str] = field(default_factory=list)
    visual_guidelines: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationContext:
    """Provenance of the rated content at generation time."""

    profile_version: str
    prompt: str
    confidence_score: float = 0.0
    visual_context: Optional[str] = None


@dataclass
class LearningData:
    processed: bool = False
    applied_to_profile: bool = False
    impact_score: float = 0.0
    processed_at: Optional[datetime] = None


@dataclass
class Feedback:
    """A rating on one generated content item.

    Created once by ``FeedbackLoop.record_feedback``; afterwards only
    ``learning_data`` changes, once when processed and once when applied.
    """

    user_id: str
    platform: Platform
    generated_content_id: str
    content: FeedbackContent
    rating: Rating
    generation_context: GenerationContext
    specific_issues: List[str] = field(default_factory=list)
    edited_version: Optional[str] = None
    used_in_post: bool = False
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utc_now)
    learning_data: LearningData = field(default_factory=LearningData)


# =============================================================================
# LEARNING MODELS
# =============================================================================


@dataclass
class TrendPoint:
    week: str  # ISO date of the week's Monday
    satisfaction_rate: float
    count: int = 0


@dataclass
class AspectImprovement:
    aspect: str
    before_score: float
    after_score: float


@dataclass
class Improvement:
    initial_satisfaction_rate: float = 0.0
    current_satisfaction_rate: float = 0.0
    improvement_percentage: float = 0.0
    improved_aspects: List[AspectImprovement] = field(default_factory=list)


@dataclass
class UsagePatterns:
    generations_per_week: float = 0.0
    most_generated_content_type: str = ""
    peak_usage_times: List[str] = field(default_factory=list)
    actual_post_usage_rate: float = 0.0


@dataclass
class LearningMetrics:
    """Per user x platform rollup, recomputed in full on every learning pass."""

    user_id: str
    platform: Platform
    total_generated: int = 0
    thumbs_up: int = 0
    thumbs_down: int = 0
    satisfaction_rate: float = 0.0
    weekly_trend: List[TrendPoint] = field(default_factory=list)
    improvement: Improvement = field(default_factory=Improvement)
    usage_patterns: UsagePatterns = field(default_factory=UsagePatterns)
    pending_resynthesis: bool = False
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class ResynthesisRequest:
    """Feedback signal queued for the next synthesis pass."""

    user_id: str
    platform: Platform
    feedback_ids: List[str]
    edited_texts: List[str] = field(default_factory=list)
    issue_tags: List[str] = field(default_factory=list)
    base_version: Optional[str] = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utc_now)


# =============================================================================
# DOCUMENT HELPERS
# =============================================================================


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _encode(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _encode(v) for k, v in value.items()}
    return value


def to_document(obj: Any) -> Dict[str, Any]:
    """Convert a model dataclass into a JSON-compatible dict."""
    if not dataclasses.is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"to_document expects a dataclass instance, got {type(obj)!r}")
    return _encode(obj)


def _decode(tp: Any, value: Any) -> Any:
    if value is None:
        return None
    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is typing.Union:
        inner = [a for a in args if a is not type(None)]
        return _decode(inner[0], value) if len(inner) == 1 else value
    if origin in (list, List):
        return [_decode(args[0], v) for v in value] if args else list(value)
    if origin in (tuple, Tuple):
        return tuple(_decode(args[0], v) for v in value) if args else tuple(value)
    if origin in (dict, Dict):
        if len(args) == 2:
            return {k: _decode(args[1], v) for k, v in value.items()}
        return dict(value)
    if tp is datetime:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"Unparseable timestamp: {value!r}")
        return parsed
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return from_document(tp, value)
    if tp is float and isinstance(value, int):
        return float(value)
    return value


def from_document(cls: Type[T], data: Dict[str, Any]) -> T:
    """Build a model dataclass from a stored document.

    Unknown keys are ignored; missing keys fall back to the dataclass
    defaults.

    Raises:
        InternalError: If the document cannot be decoded into *cls*.
    """
    hints = typing.get_type_hints(cls)
    kwargs: Dict[str, Any] = {}
    try:
        for f in dataclasses.fields(cls):  # type: ignore[arg-type]
            if f.name in data:
                kwargs[f.name] = _decode(hints[f.name], data[f.name])
        return cls(**kwargs)
    except (TypeError, ValueError, KeyError) as exc:
        raise InternalError(f"Corrupt {cls.__name__} document: {exc}") from exc


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "Platform",
    "MediaType",
    "ContentType",
    "Rating",
    "TriggerType",
    "EngagementMetrics",
    "VisualAnalysis",
    "Post",
    "post_document_key",
    "GeneratedContent",
    "FeedbackContent",
    "GenerationContext",
    "LearningData",
    "Feedback",
    "TrendPoint",
    "AspectImprovement",
    "Improvement",
    "UsagePatterns",
    "LearningMetrics",
    "ResynthesisRequest",
    "to_document",
    "from_document",
]
