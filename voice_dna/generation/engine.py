"""
Generation Engine for the Voice DNA system.

Turns a voice profile plus free-form context into ``GeneratedContent``
variations.  The engine owns everything except the body text itself:

    - request validation and the neutral-default fallback
    - instruction building (platform, context, trend, tone, things to avoid)
    - concurrent variation fan-out with a per-variation timeout
    - hashtag selection, engagement estimate, suggested post time

A failing variation (backend error, retry exhaustion, timeout) is recorded
in ``GenerationBatch.errors``; the other variations still succeed.

Usage::

    engine = GenerationEngine()
    batch = await engine.generate(profile, "instagram", "product launch",
                                  content_type="caption", variation_count=3)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Union

from voice_dna.config import Settings, get_settings
from voice_dna.exceptions import (
    BackendError,
    InvalidArgumentError,
    NotFoundError,
    RetryExhaustedError,
    UpstreamUnavailableError,
)
from voice_dna.generation.backends import (
    GenerationBackend,
    GenerationRequest,
    TrendContext,
    build_backend,
)
from voice_dna.ingest.extractor import extract_hashtags, normalize_hashtag
from voice_dna.models import ContentType, GeneratedContent, Platform
from voice_dna.profile.analysis import (
    CTA_PHRASES,
    EMOJI_RE,
    NEUTRAL_TONE,
    STOPWORDS,
    tokenize,
)
from voice_dna.profile.models import VoiceProfile, default_profile_for
from voice_dna.utils import utc_now

logger = logging.getLogger("GenerationEngine")

ToneAdjustment = Union[str, Dict[str, float], None]

PLATFORM_CHARACTER_LIMITS: Dict[Platform, int] = {
    Platform.INSTAGRAM: 2200,
    Platform.TWITTER: 280,
    Platform.LINKEDIN: 3000,
}

# Body text kept in FULL content before any hashtag is dropped.
MIN_BODY_CHARS = 40

# Caption lengths that historically perform well per platform.
IDEAL_LENGTHS: Dict[Platform, tuple] = {
    Platform.INSTAGRAM: (100, 400),
    Platform.TWITTER: (70, 240),
    Platform.LINKEDIN: (150, 1300),
}


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class VariationError:
    variation_index: int
    error: str
    transient: bool = True


@dataclass
class GenerationBatch:
    """Mixed per-variation outcome of one ``generate`` call."""

    items: List[GeneratedContent] = field(default_factory=list)
    errors: List[VariationError] = field(default_factory=list)
    profile_version: str = ""
    used_default_profile: bool = False

    @property
    def success(self) -> bool:
        return bool(self.items)


# =============================================================================
# PURE HELPERS
# =============================================================================


def effective_tone_distribution(
    distribution: Dict[str, float], adjustment: ToneAdjustment = None
) -> Dict[str, float]:
    """Apply a manual tone adjustment and renormalise to sum 1.

    A string boosts that tone by 0.5; a dict adds per-tone deltas.  Negative
    weights are clipped to 0.
    """
    weights = dict(distribution) or {NEUTRAL_TONE: 1.0}
    if isinstance(adjustment, str) and adjustment.strip():
        tone = adjustment.strip().lower()
        weights[tone] = weights.get(tone, 0.0) + 0.5
    elif isinstance(adjustment, dict):
        for tone, delta in adjustment.items():
            weights[tone.lower()] = weights.get(tone.lower(), 0.0) + float(delta)
    elif adjustment is not None and not isinstance(adjustment, str):
        raise InvalidArgumentError("tone_adjustment must be a tone name or a tone->delta mapping")

    weights = {tone: max(0.0, w) for tone, w in weights.items()}
    total = sum(weights.values())
    if total <= 0:
        return {NEUTRAL_TONE: 1.0}
    return {tone: round(w / total, 3) for tone, w in sorted(weights.items()) if w > 0}


def dominant_tone(distribution: Dict[str, float]) -> str:
    if not distribution:
        return NEUTRAL_TONE
    return min(distribution.items(), key=lambda kv: (-kv[1], kv[0]))[0]


def build_instruction(
    profile: VoiceProfile,
    platform: Platform,
    context: str,
    content_type: ContentType,
    tones: Dict[str, float],
    trend: Optional[TrendContext] = None,
) -> str:
    """Assemble the generation instruction handed to the backend."""
    writing = profile.writing_dna
    identity = profile.core_identity
    tone_text = ", ".join(f"{tone} {weight:.0%}" for tone, weight in
                          sorted(tones.items(), key=lambda kv: (-kv[1], kv[0])))

    lines = [
        f"Platform: {platform.value} (max {PLATFORM_CHARACTER_LIMITS[platform]} characters)",
        f"Content type: {content_type.value}",
        f"Context: {context}",
        f"Tone mix: {tone_text}",
        f"Communication style: {identity.communication_style}",
        f"Sentence rhythm: {writing.sentence_rhythm}; vocabulary: {writing.vocabulary_level}",
        f"Punctuation: {writing.punctuation_personality}",
        f"Structure: {writing.structure.opening}, {writing.structure.body}, "
        f"{writing.structure.closing}",
    ]
    if writing.structure.cta != "none":
        lines.append(f"Call to action: {writing.structure.cta}")
    if writing.favorite_words:
        lines.append("Favorite words: " + ", ".join(writing.favorite_words[:10]))
    if writing.phrase_templates:
        lines.append("Typical openings: " + " | ".join(writing.phrase_templates))
    if identity.unique_signature.catchphrases:
        lines.append("Catchphrases: " + " | ".join(identity.unique_signature.catchphrases))
    if trend:
        lines.append(f"Trending topic: {trend.title}")
        if trend.summary:
            lines.append(f"Trend summary: {trend.summary}")
        for point in trend.key_points:
            lines.append(f"- {point}")
    if profile.feedback_signal.issue_tags:
        lines.append("Avoid: " + ", ".join(profile.feedback_signal.issue_tags))
    for sample in profile.feedback_signal.edited_texts[-2:]:
        lines.append(f"Preferred phrasing example: {sample}")
    return "\n".join(lines)


def context_hashtags(context: str, limit: int = 3) -> List[str]:
    seen: Dict[str, None] = {}
    for word in tokenize(context):
        if word not in STOPWORDS and len(word) > 2:
            seen.setdefault(normalize_hashtag(word), None)
    return list(seen)[:limit]


def select_hashtags(
    profile: VoiceProfile,
    text: str,
    context: str,
    trend: Optional[TrendContext] = None,
    limit: Optional[int] = None,
) -> List[str]:
    """Pick hashtags in priority order, skipping tags already in *text*.

    Sources: StrategyDNA category mix, effective patterns, hashtag sets,
    trend hashtags, then keywords from *context* as a last resort.
    """
    strategy = profile.strategy_dna
    cap = limit if limit is not None else max(1, strategy.optimal_hashtag_count)

    pool: List[str] = list(strategy.category_mix)
    for pattern in strategy.effective_patterns:
        pool.extend(pattern.hashtags)
    for hashtag_set in profile.generation_templates.hashtag_sets:
        pool.extend(hashtag_set.tags)
    if trend:
        pool.extend(trend.hashtags)
    pool.extend(context_hashtags(context))

    present = set(extract_hashtags(text))
    selected: List[str] = []
    for tag in pool:
        tag = normalize_hashtag(tag)
        if tag and tag not in present and tag not in selected:
            selected.append(tag)
        if len(selected) >= cap:
            break
    return selected


def estimate_engagement(
    profile: VoiceProfile, platform: Platform, text: str, hashtags: Sequence[str]
) -> float:
    """Bounded heuristic in ``[0, 100]``; an estimate, never a measurement."""
    score = 20.0
    score += 0.3 * profile.confidence.overall

    low, high = IDEAL_LENGTHS[platform]
    length = len(text)
    if low <= length <= high:
        score += 20
    elif length < low:
        score += 20 * length / low
    else:
        score += 10

    optimal = max(1, profile.strategy_dna.optimal_hashtag_count)
    score += 15 * max(0.0, 1 - abs(len(hashtags) - optimal) / optimal)

    lowered = text.lower()
    present = {
        "question prompts": "?" in text,
        "calls to action": any(phrase in lowered for phrase in CTA_PHRASES),
        "emoji": bool(EMOJI_RE.search(text)),
        "long captions": length > 100,
    }
    hits = sum(1 for trigger in profile.strategy_dna.top_triggers if present.get(trigger))
    score += min(15, 5 * hits)

    return round(max(0.0, min(100.0, score)), 1)


def suggest_post_time(profile: VoiceProfile, now: datetime) -> datetime:
    """Start of the next optimal posting window, else ``now + 1 day``."""
    candidates = []
    for window in profile.behavioral_dna.optimal_timing:
        try:
            hour = int(window.split(":", 1)[0])
        except ValueError:
            continue
        if not 0 <= hour <= 23:
            continue
        slot = now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if slot <= now:
            slot += timedelta(days=1)
        candidates.append(slot)
    return min(candidates) if candidates else now + timedelta(days=1)


def fit_to_limit(text: str, limit: int) -> str:
    """Trim *text* to *limit* characters at a word boundary."""
    if len(text) <= limit:
        return text
    cut = text[: max(0, limit - 3)]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip() + "..."


def fit_hashtags(hashtags: Sequence[str], limit: int) -> List[str]:
    """Leading *hashtags* whose space-joined line fits in *limit* characters."""
    kept: List[str] = []
    length = -1
    for tag in hashtags:
        if length + 1 + len(tag) > limit:
            break
        kept.append(tag)
        length += 1 + len(tag)
    return kept


# =============================================================================
# ENGINE
# =============================================================================


class GenerationEngine:
    """Produces content variations from a voice profile.

    Args:
        backend: Text backend; defaults to the one named in settings.
        settings: Application settings; defaults to ``get_settings()``.
    """

    def __init__(
        self,
        backend: Optional[GenerationBackend] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        cfg = self.settings.generation
        self.backend = backend or build_backend(cfg.backend, cfg.model, cfg.max_tokens)

    async def generate(
        self,
        profile: Optional[VoiceProfile],
        platform: Union[str, Platform],
        context: str,
        content_type: Union[str, ContentType] = ContentType.CAPTION,
        variation_count: int = 1,
        trend: Optional[TrendContext] = None,
        tone_adjustment: ToneAdjustment = None,
        user_id: Optional[str] = None,
        strict: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> GenerationBatch:
        """Generate *variation_count* independent variations.

        Args:
            profile: The user's current profile, or ``None`` if none exists.
            platform: Target platform.
            context: Free-text prompt, e.g. ``"product launch"``.
            content_type: ``caption``, ``hashtags`` or ``full``.
            variation_count: Between 1 and ``GenerationConfig.max_variations``.
            trend: Optional trending topic.
            tone_adjustment: Tone name or ``{tone: delta}`` mapping.
            user_id: Owner, required when *profile* is ``None``.
            strict: Fail instead of falling back to the neutral default;
                defaults to ``GenerationConfig.strict_profile``.
            now: Clock override for suggested post times.

        Raises:
            InvalidArgumentError: Missing platform/context, bad content
                type or variation count, or a profile for another platform.
            NotFoundError: No profile and strict mode.
        """
        cfg = self.settings.generation
        platform = Platform.parse(platform)
        if not isinstance(context, str) or not context.strip():
            raise InvalidArgumentError("context is required")
        context = context.strip()
        content_type = ContentType.parse(content_type)
        if (
            isinstance(variation_count, bool)
            or not isinstance(variation_count, int)
            or not 1 <= variation_count <= cfg.max_variations
        ):
            raise InvalidArgumentError(
                f"variation_count must be between 1 and {cfg.max_variations}, "
                f"got {variation_count!r}"
            )

        strict = cfg.strict_profile if strict is None else strict
        used_default = False
        if profile is None:
            if strict:
                raise NotFoundError(
                    f"No voice profile for user {user_id} on {platform.value}"
                )
            if not user_id:
                raise InvalidArgumentError("user_id is required when no profile is given")
            profile = default_profile_for(user_id, platform)
            used_default = True
        elif profile.platform is not platform:
            raise InvalidArgumentError(
                f"Profile is for {profile.platform.value}, not {platform.value}"
            )

        now = now or utc_now()
        tones = effective_tone_distribution(
            profile.writing_dna.tone_distribution, tone_adjustment
        )
        instruction = build_instruction(profile, platform, context, content_type, tones, trend)
        requests = [
            GenerationRequest(
                instruction=f"{instruction}\nVariation: {i + 1} of {variation_count}",
                profile=profile,
                platform=platform,
                context=context,
                content_type=content_type,
                variation_index=i,
                trend=trend,
                tone=dominant_tone(tones),
            )
            for i in range(variation_count)
        ]

        outcomes = await asyncio.gather(
            *(self._run_variation(request, now) for request in requests)
        )

        batch = GenerationBatch(
            profile_version=profile.version, used_default_profile=used_default
        )
        for outcome in outcomes:
            if isinstance(outcome, VariationError):
                batch.errors.append(outcome)
            else:
                batch.items.append(outcome)

        logger.info(
            "[GEN] %s/%s %s x%d via %s: %d ok, %d failed (profile v%s%s)",
            profile.user_id,
            platform.value,
            content_type.value,
            variation_count,
            self.backend.name,
            len(batch.items),
            len(batch.errors),
            profile.version,
            ", default" if used_default else "",
        )
        return batch

    # ------------------------------------------------------------------
    # PRIVATE HELPERS
    # ------------------------------------------------------------------

    async def _body_text(self, request: GenerationRequest) -> str:
        if request.content_type is ContentType.HASHTAGS:
            return ""
        text = await asyncio.wait_for(
            self.backend.complete(request),
            timeout=self.settings.generation.backend_timeout_seconds,
        )
        if not isinstance(text, str) or not text.strip():
            raise BackendError("Backend returned empty text", transient=True)
        return text.strip()

    async def _run_variation(
        self, request: GenerationRequest, now: datetime
    ):
        index = request.variation_index
        try:
            body = await self._body_text(request)
            return self._assemble(request, body, now)
        except asyncio.TimeoutError:
            logger.warning("[GEN] Variation %d timed out", index)
            return VariationError(index, "Generation backend timed out", transient=True)
        except (UpstreamUnavailableError, RetryExhaustedError) as exc:
            logger.warning("[GEN] Variation %d failed: %s", index, exc)
            transient = getattr(exc, "transient", True)
            return VariationError(index, str(exc), transient=transient)

    def _assemble(
        self, request: GenerationRequest, body: str, now: datetime
    ) -> GeneratedContent:
        profile, platform = request.profile, request.platform
        limit = PLATFORM_CHARACTER_LIMITS[platform]

        if request.content_type is ContentType.HASHTAGS:
            pool = select_hashtags(
                profile, "", request.context, request.trend,
                limit=max(1, profile.strategy_dna.optimal_hashtag_count) + request.variation_index,
            )
            hashtags = pool[request.variation_index:] or pool
            hashtags = hashtags[: max(1, profile.strategy_dna.optimal_hashtag_count)]
            hashtags = fit_hashtags(hashtags, limit)
            if not hashtags:
                raise BackendError("No hashtags could be selected", transient=False)
            text = " ".join(hashtags)
        else:
            body = fit_to_limit(body, limit)
            hashtags = select_hashtags(profile, body, request.context, request.trend)
            text = body
            if request.content_type is ContentType.FULL and hashtags:
                # Tags that do not fit whole are dropped, never cut
                hashtags = fit_hashtags(hashtags, limit - 2 - min(len(body), MIN_BODY_CHARS))
                if hashtags:
                    tag_line = " ".join(hashtags)
                    body = fit_to_limit(body, limit - 2 - len(tag_line))
                    text = f"{body}\n\n{tag_line}"

        return GeneratedContent(
            user_id=profile.user_id,
            platform=platform,
            prompt=request.context,
            text=text,
            hashtags=tuple(hashtags),
            engagement_score=estimate_engagement(profile, platform, text, hashtags),
            suggested_post_time=suggest_post_time(profile, now),
            character_count=len(text),
            provider=self.backend.name,
            profile_version=profile.version,
            confidence_score=profile.confidence.overall,
            content_type=request.content_type,
            variation_index=request.variation_index,
            created_at=now,
        )


__all__ = [
    "PLATFORM_CHARACTER_LIMITS",
    "VariationError",
    "GenerationBatch",
    "effective_tone_distribution",
    "dominant_tone",
    "build_instruction",
    "select_hashtags",
    "estimate_engagement",
    "suggest_post_time",
    "fit_to_limit",
    "fit_hashtags",
    "GenerationEngine",
]
