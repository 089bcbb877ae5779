"""
Voice Profile Synthesizer for the Voice DNA system.

Aggregates a user's normalized posts into a versioned, multi-section
``VoiceProfile`` with confidence scores.

Workflow:
    1. Drop malformed posts (wrong owner/platform, missing timestamp) with
       a warning.  A bad post never aborts synthesis.
    2. Sort by ``(created_at, post_id)`` so windowed selections are stable.
    3. Derive WritingDNA, CoreIdentity, VisualDNA, StrategyDNA,
       BehavioralDNA and GenerationTemplates (``voice_dna.profile.analysis``).
    4. Score confidence (``voice_dna.profile.confidence``).
    5. Stamp the version that follows ``base_version``.

The synthesizer is pure: it never touches storage.  Persisting the result
(and retiring the previous version) is ``VoiceDNARepository``'s job.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

from voice_dna.config import Settings, get_settings
from voice_dna.ingest.extractor import clean_caption
from voice_dna.models import Platform, Post
from voice_dna.profile import analysis
from voice_dna.profile.confidence import analysis_depth, score_confidence
from voice_dna.profile.models import (
    FeedbackSignal,
    VoiceProfile,
    default_profile_for,
    next_version,
)
from voice_dna.utils import utc_now

logger = logging.getLogger("VoiceProfileSynthesizer")


class VoiceProfileSynthesizer:
    """Builds voice profiles from posts.

    Args:
        settings: Application settings; defaults to ``get_settings()``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # SYNTHESIS
    # ------------------------------------------------------------------

    def synthesize(
        self,
        user_id: str,
        platform: Any,
        posts: Sequence[Post],
        base_version: Optional[str] = None,
        feedback: Optional[FeedbackSignal] = None,
        now: Optional[datetime] = None,
    ) -> VoiceProfile:
        """Synthesize a profile version from *posts*.

        Args:
            user_id: Owner of the profile.
            platform: Target platform.
            posts: Normalized posts; order does not matter.
            base_version: Current live version, or ``None`` for the first.
            feedback: Learning-loop signal (edited texts, issue tags).
            now: Timestamp for ``created_at``/``updated_at``.

        Returns:
            A new ``VoiceProfile``.  With no usable posts this is the
            neutral default (confidence 0, ``insufficient_data``).
        """
        platform = Platform.parse(platform)
        now = now or utc_now()
        version = next_version(base_version)
        signal = feedback or FeedbackSignal()

        usable = self._usable_posts(user_id, platform, posts)
        if not usable:
            logger.info(
                "[SYNTH] No usable posts for %s/%s, returning neutral default v%s",
                user_id,
                platform.value,
                version,
            )
            profile = default_profile_for(user_id, platform, version=version, now=now)
            profile.feedback_signal = signal
            return profile

        cfg = self.settings.synthesis
        texts: List[str] = [clean_caption(p.caption) for p in usable if p.caption.strip()]
        recent: List[str] = [
            clean_caption(p.caption) for p in usable[-cfg.recent_window:] if p.caption.strip()
        ]
        # Edited versions are the user's own words: treat them as the newest samples
        texts.extend(signal.edited_texts)
        recent.extend(signal.edited_texts)

        writing = analysis.analyze_writing(
            texts, recent, cfg.min_word_support, cfg.max_favorite_words
        )
        visual, visual_posts = analysis.analyze_visual(usable)
        identity = analysis.analyze_identity(
            usable,
            texts,
            writing,
            analysis.visual_signature(visual),
            cfg.min_word_support,
        )
        strategy = analysis.analyze_strategy(
            usable,
            cfg.max_hashtags_tracked,
            self.settings.generation.default_hashtag_count,
        )
        behavior = analysis.analyze_behavior(usable)
        templates = analysis.analyze_templates(usable, writing, visual)

        depth = analysis_depth(
            usable,
            visual_posts,
            analysis.correlated_posts(usable),
            self.settings.confidence,
        )
        confidence = score_confidence(usable, depth, self.settings.confidence)

        profile = VoiceProfile(
            user_id=user_id,
            platform=platform,
            version=version,
            core_identity=identity,
            writing_dna=writing,
            visual_dna=visual,
            strategy_dna=strategy,
            behavioral_dna=behavior,
            generation_templates=templates,
            confidence=confidence,
            insufficient_data=False,
            feedback_signal=signal,
            created_at=now,
            updated_at=now,
        )

        logger.info(
            "[SYNTH] %s/%s v%s from %d posts: tone=%s confidence=%.2f",
            user_id,
            platform.value,
            version,
            len(usable),
            identity.primary_tone,
            confidence.overall,
        )
        return profile

    # ------------------------------------------------------------------
    # PRIVATE HELPERS
    # ------------------------------------------------------------------

    def _usable_posts(
        self, user_id: str, platform: Platform, posts: Sequence[Post]
    ) -> List[Post]:
        """Valid posts for this user x platform, sorted and de-duplicated."""
        valid: List[Post] = []
        skipped = 0
        for post in posts:
            if (
                not isinstance(post, Post)
                or post.user_id != user_id
                or post.platform is not platform
                or not isinstance(post.created_at, datetime)
            ):
                skipped += 1
                continue
            valid.append(post)

        if skipped:
            logger.warning(
                "[SYNTH] Skipped %d malformed posts for %s/%s",
                skipped,
                user_id,
                platform.value,
            )
        valid.sort(key=lambda p: (p.created_at, p.post_id))

        usable: List[Post] = []
        seen = set()
        for post in valid:
            if post.post_id not in seen:
                seen.add(post.post_id)
                usable.append(post)
        return usable


__all__ = [
    "VoiceProfileSynthesizer",
]
