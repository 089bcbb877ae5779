"""
Voice profile (Voice DNA) data models.

A ``VoiceProfile`` is an immutable, versioned snapshot describing one user's
style on one platform.  Each synthesis writes a new version; the "current"
profile is whatever the head pointer names.

The neutral baseline used when no posts exist is the module-level constant
``DEFAULT_VOICE_PROFILE``.  ``default_profile_for`` hands out per-user
copies of it so every consumer sees identical neutral behavior.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from voice_dna.exceptions import InternalError
from voice_dna.models import Platform
from voice_dna.utils import utc_now

INITIAL_VERSION = "1.0.0"

_SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


# =============================================================================
# CORE IDENTITY
# =============================================================================


@dataclass
class ContentPillar:
    pillar: str
    weight: float
    keywords: List[str] = field(default_factory=list)


@dataclass
class UniqueSignature:
    catchphrases: List[str] = field(default_factory=list)
    writing_quirks: List[str] = field(default_factory=list)
    visual_signature: str = ""


@dataclass
class CoreIdentity:
    primary_tone: str = "neutral"
    personality_traits: List[str] = field(default_factory=list)
    communication_style: str = "balanced"
    content_pillars: List[ContentPillar] = field(default_factory=list)
    unique_signature: UniqueSignature = field(default_factory=UniqueSignature)


# =============================================================================
# WRITING DNA
# =============================================================================


@dataclass
class StructureTemplates:
    opening: str = "direct statement"
    body: str = "single paragraph"
    closing: str = "plain ending"
    cta: str = "none"


@dataclass
class WritingDNA:
    sentence_rhythm: str = "moderate"
    vocabulary_level: str = "conversational"
    emotional_range: List[str] = field(default_factory=list)
    punctuation_personality: str = "standard"
    structure: StructureTemplates = field(default_factory=StructureTemplates)
    favorite_words: List[str] = field(default_factory=list)
    phrase_templates: List[str] = field(default_factory=list)
    tone_distribution: Dict[str, float] = field(default_factory=dict)
    metaphor_style: str = "literal"
    storytelling_approach: str = "informational"


# =============================================================================
# VISUAL DNA
# =============================================================================


@dataclass
class ColorIdentity:
    palette: List[str] = field(default_factory=list)
    mood: str = "neutral"
    consistency: float = 0.0


@dataclass
class CompositionStyle:
    framing: str = "unknown"
    perspective: str = "unknown"
    lighting: str = "unknown"


@dataclass
class ContentMix:
    primary_type: str = "image"
    secondary_types: List[str] = field(default_factory=list)
    variety: float = 0.0


@dataclass
class VisualNarrative:
    storytelling: str = "unknown"
    emotional_impact: str = "neutral"
    branding_elements: List[str] = field(default_factory=list)


@dataclass
class VisualDNA:
    color_identity: ColorIdentity = field(default_factory=ColorIdentity)
    composition: CompositionStyle = field(default_factory=CompositionStyle)
    content_mix: ContentMix = field(default_factory=ContentMix)
    narrative: VisualNarrative = field(default_factory=VisualNarrative)


# =============================================================================
# STRATEGY DNA
# =============================================================================


@dataclass
class HashtagPattern:
    context: str
    hashtags: List[str]
    expected_engagement: float


@dataclass
class WinningCombination:
    visual_style: str
    caption_approach: str  # "detailed" | "concise"
    hashtags: List[str]
    timing: str
    expected_performance: float


@dataclass
class StrategyDNA:
    optimal_hashtag_count: int = 5
    category_mix: List[str] = field(default_factory=list)
    effective_patterns: List[HashtagPattern] = field(default_factory=list)
    winning_combinations: List[WinningCombination] = field(default_factory=list)
    top_triggers: List[str] = field(default_factory=list)
    audience_preferences: List[str] = field(default_factory=list)
    content_gaps: List[str] = field(default_factory=list)


# =============================================================================
# BEHAVIORAL DNA
# =============================================================================


@dataclass
class StyleShift:
    period: str
    change: str


@dataclass
class BehavioralDNA:
    posting_frequency: str = "unknown"
    consistency: float = 0.0
    optimal_timing: List[str] = field(default_factory=list)  # "HH:00-HH:00" UTC
    content_evolution: str = "insufficient history"
    style_shifts: List[StyleShift] = field(default_factory=list)


# =============================================================================
# GENERATION TEMPLATES
# =============================================================================


@dataclass
class CaptionTemplate:
    template: str
    context: str
    variables: List[str] = field(default_factory=list)
    example_output: str = ""


@dataclass
class HashtagSet:
    name: str
    tags: List[str]
    use_case: str


@dataclass
class VisualGuidelines:
    color_schemes: List[List[str]] = field(default_factory=list)
    composition_rules: List[str] = field(default_factory=list)
    content_types: List[str] = field(default_factory=list)


@dataclass
class GenerationTemplates:
    caption_templates: List[CaptionTemplate] = field(default_factory=list)
    hashtag_sets: List[HashtagSet] = field(default_factory=list)
    visual_guidelines: VisualGuidelines = field(default_factory=VisualGuidelines)


# =============================================================================
# CONFIDENCE
# =============================================================================


@dataclass
class DataQuality:
    sample_size: int = 0
    date_range_days: float = 0.0
    completeness: float = 0.0
    complete_posts: int = 0


@dataclass
class AnalysisDepth:
    textual: float = 0.0
    visual: float = 0.0
    correlation: float = 0.0


@dataclass
class ConfidenceScores:
    overall: float = 0.0
    data_quality: DataQuality = field(default_factory=DataQuality)
    analysis_depth: AnalysisDepth = field(default_factory=AnalysisDepth)

    def __post_init__(self) -> None:
        self.overall = max(0.0, min(100.0, float(self.overall)))


# =============================================================================
# FEEDBACK SIGNAL
# =============================================================================


@dataclass
class FeedbackSignal:
    """Learning-loop signal folded into a synthesis pass."""

    edited_texts: List[str] = field(default_factory=list)
    issue_tags: List[str] = field(default_factory=list)
    feedback_ids: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.edited_texts or self.issue_tags)


# =============================================================================
# VERSIONING
# =============================================================================


def parse_version(version: str) -> tuple:
    """Parse ``MAJOR.MINOR.PATCH`` into an int tuple.

    Raises:
        InternalError: If *version* is not a valid semantic version.
    """
    match = _SEMVER_RE.match(version or "")
    if not match:
        raise InternalError(f"Invalid profile version '{version}'")
    return tuple(int(part) for part in match.groups())


def next_version(base_version: Optional[str], major: bool = False) -> str:
    """Version that follows *base_version*.

    ``None`` means no live version exists and yields ``1.0.0``.  A regular
    (re)synthesis bumps the minor component; a rollback bumps major.
    """
    if base_version is None:
        return INITIAL_VERSION
    maj, minor, _ = parse_version(base_version)
    if major:
        return f"{maj + 1}.0.0"
    return f"{maj}.{minor + 1}.0"


# =============================================================================
# VOICE PROFILE
# =============================================================================


@dataclass
class VoiceProfile:
    """Versioned, multi-section description of a user's style on a platform."""

    user_id: str
    platform: Platform
    version: str = INITIAL_VERSION
    core_identity: CoreIdentity = field(default_factory=CoreIdentity)
    writing_dna: WritingDNA = field(default_factory=WritingDNA)
    visual_dna: VisualDNA = field(default_factory=VisualDNA)
    strategy_dna: StrategyDNA = field(default_factory=StrategyDNA)
    behavioral_dna: BehavioralDNA = field(default_factory=BehavioralDNA)
    generation_templates: GenerationTemplates = field(default_factory=GenerationTemplates)
    confidence: ConfidenceScores = field(default_factory=ConfidenceScores)
    insufficient_data: bool = False
    feedback_signal: FeedbackSignal = field(default_factory=FeedbackSignal)
    id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        parse_version(self.version)
        if not self.id:
            self.id = profile_document_key(self.user_id, self.platform, self.version)

    @property
    def head_key(self) -> str:
        return profile_head_key(self.user_id, self.platform)


def profile_head_key(user_id: str, platform: Platform) -> str:
    return f"{user_id}:{Platform.parse(platform).value}"


def profile_document_key(user_id: str, platform: Platform, version: str) -> str:
    return f"{profile_head_key(user_id, platform)}:{version}"


# ---------------------------------------------------------------------------
# Global neutral default.  Never mutate; use default_profile_for().
# ---------------------------------------------------------------------------
DEFAULT_VOICE_PROFILE = VoiceProfile(
    user_id="",
    platform=Platform.INSTAGRAM,
    version=INITIAL_VERSION,
    writing_dna=WritingDNA(tone_distribution={"neutral": 1.0}),
    generation_templates=GenerationTemplates(
        caption_templates=[
            CaptionTemplate(
                template="{context}",
                context="default",
                variables=["context"],
                example_output="Sharing something new today.",
            ),
        ],
    ),
    insufficient_data=True,
    id="default",
)


def default_profile_for(
    user_id: str,
    platform: Platform,
    version: str = INITIAL_VERSION,
    now: Optional[datetime] = None,
) -> VoiceProfile:
    """Return a fresh copy of the neutral default for one user x platform."""
    profile = copy.deepcopy(DEFAULT_VOICE_PROFILE)
    profile.user_id = user_id
    profile.platform = Platform.parse(platform)
    profile.version = version
    profile.id = profile_document_key(user_id, profile.platform, version)
    stamp = now or utc_now()
    profile.created_at = stamp
    profile.updated_at = stamp
    return profile


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "INITIAL_VERSION",
    "ContentPillar",
    "UniqueSignature",
    "CoreIdentity",
    "StructureTemplates",
    "WritingDNA",
    "ColorIdentity",
    "CompositionStyle",
    "ContentMix",
    "VisualNarrative",
    "VisualDNA",
    "HashtagPattern",
    "WinningCombination",
    "StrategyDNA",
    "StyleShift",
    "BehavioralDNA",
    "CaptionTemplate",
    "HashtagSet",
    "VisualGuidelines",
    "GenerationTemplates",
    "DataQuality",
    "AnalysisDepth",
    "ConfidenceScores",
    "FeedbackSignal",
    "VoiceProfile",
    "DEFAULT_VOICE_PROFILE",
    "default_profile_for",
    "profile_head_key",
    "profile_document_key",
    "parse_version",
    "next_version",
]
