"""
VoiceDNAService: the operations exposed to callers.

Every operation acts on behalf of an already-authenticated ``user_id``
(see :meth:`VoiceDNAService.authenticate`).  The service is stateless
between calls; all state lives in the ``VoiceDNARepository``.

Operations:
    - ``ingest``                     raw records -> upserted posts
    - ``synthesize_profile``         posts -> new profile version
    - ``get_profile``                current profile
    - ``generate_content``           profile + context -> stored variations
    - ``submit_feedback``            rating on one generated item
    - ``run_learning_pass``          metrics + resynthesis queue
    - ``apply_pending_resynthesis``  fold queued feedback into a new version
    - ``get_learning_metrics``       last computed metrics
    - ``analyze_accounts``           scrape -> audit -> ingest -> synthesize
    - ``get_profile_history``        version transitions, newest first
    - ``rollback_profile``           republish an old version as a new major
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from voice_dna.config import Settings, get_settings
from voice_dna.database import VoiceDNARepository, WriteOp, get_store
from voice_dna.exceptions import (
    ConfigurationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    UnauthorizedError,
    VoiceDNAError,
    error_payload,
)
from voice_dna.generation.backends import TrendContext, build_backend
from voice_dna.generation.engine import GenerationBatch, GenerationEngine, ToneAdjustment
from voice_dna.identity import IdentityVerifier, SupabaseIdentityVerifier
from voice_dna.ingest.extractor import (
    ExtractionReport,
    extract_posts,
    parse_scrape_payload,
)
from voice_dna.ingest.scraper import ScrapeResult, Scraper, ScrapeTarget, clamp_limit
from voice_dna.learning.loop import FeedbackLoop
from voice_dna.logging import ComponentLogger, EventLogger, LogComponent
from voice_dna.models import (
    ContentType,
    Feedback,
    FeedbackContent,
    GenerationContext,
    LearningMetrics,
    Platform,
    Rating,
    TriggerType,
)
from voice_dna.profile.models import (
    FeedbackSignal,
    VoiceProfile,
    next_version,
    profile_document_key,
)
from voice_dna.profile.synthesizer import VoiceProfileSynthesizer
from voice_dna.utils import utc_now

logger = logging.getLogger("VoiceDNAService")


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class PlatformAnalysis:
    """Outcome of ``analyze_accounts`` for one platform."""

    platform: Platform
    username: str
    success: bool = False
    posts_ingested: int = 0
    skipped: int = 0
    profile_version: Optional[str] = None
    confidence: Optional[float] = None
    error: Optional[str] = None


@dataclass
class AnalysisReport:
    user_id: str
    results: Dict[str, PlatformAnalysis] = field(default_factory=dict)

    @property
    def synthesized(self) -> List[str]:
        return [p for p, r in self.results.items() if r.profile_version]


def merge_signals(
    *signals: Optional[FeedbackSignal], limit: Optional[int] = None
) -> FeedbackSignal:
    """Union of feedback signals, first-seen order, no duplicates.

    With *limit*, each list keeps only its newest *limit* entries.
    """
    merged = FeedbackSignal()
    for signal in signals:
        if signal is None:
            continue
        for source, target in (
            (signal.edited_texts, merged.edited_texts),
            (signal.issue_tags, merged.issue_tags),
            (signal.feedback_ids, merged.feedback_ids),
        ):
            for value in source:
                if value not in target:
                    target.append(value)
    if limit is not None:
        merged.edited_texts = merged.edited_texts[-limit:]
        merged.issue_tags = merged.issue_tags[-limit:]
        merged.feedback_ids = merged.feedback_ids[-limit:]
    return merged


# =============================================================================
# SERVICE
# =============================================================================


class VoiceDNAService:
    """Facade over ingestion, synthesis, generation and learning.

    Args:
        repository: Domain persistence.
        engine: Generation engine; built from settings when omitted.
        synthesizer: Profile synthesizer; built from settings when omitted.
        identity: Token verifier used by :meth:`authenticate`.
        scraper: Scraping collaborator used by :meth:`analyze_accounts`.
        settings: Application settings; defaults to ``get_settings()``.
    """

    def __init__(
        self,
        repository: VoiceDNARepository,
        engine: Optional[GenerationEngine] = None,
        synthesizer: Optional[VoiceProfileSynthesizer] = None,
        identity: Optional[IdentityVerifier] = None,
        scraper: Optional[Scraper] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.repository = repository
        self.engine = engine or GenerationEngine(settings=self.settings)
        self.synthesizer = synthesizer or VoiceProfileSynthesizer(self.settings)
        self.feedback_loop = FeedbackLoop(repository, self.settings)
        self.identity = identity
        self.scraper = scraper
        self.log = ComponentLogger(LogComponent.SERVICE)

    @classmethod
    async def create(
        cls,
        settings: Optional[Settings] = None,
        scraper: Optional[Scraper] = None,
    ) -> "VoiceDNAService":
        """Build a service wired to the configured store and backend."""
        settings = settings or get_settings()
        repository = VoiceDNARepository(await get_store())
        identity = None
        if settings.store_backend == "supabase":
            identity = await SupabaseIdentityVerifier.create_verifier()
        cfg = settings.generation
        engine = GenerationEngine(
            build_backend(cfg.backend, cfg.model, cfg.max_tokens), settings
        )
        return cls(
            repository,
            engine=engine,
            identity=identity,
            scraper=scraper,
            settings=settings,
        )

    # ------------------------------------------------------------------
    # IDENTITY
    # ------------------------------------------------------------------

    async def authenticate(self, token: str) -> str:
        """Resolve a bearer token to the caller's user id.

        Raises:
            ConfigurationError: No identity verifier is configured.
            UnauthenticatedError: The token is invalid.
        """
        if self.identity is None:
            raise ConfigurationError("No identity verifier configured")
        user_id = await self.identity.verify(token)
        EventLogger.set_context(user_id=user_id)
        return user_id

    # ------------------------------------------------------------------
    # INGESTION
    # ------------------------------------------------------------------

    async def ingest(
        self,
        user_id: str,
        platform: Union[str, Platform],
        raw_posts: Any,
    ) -> ExtractionReport:
        """Normalize and upsert raw posts.

        Args:
            raw_posts: A list of raw records or a scraper payload
                (``{result: {edges}}`` and friends).

        Returns:
            The extraction report; ``report.posts`` were persisted.
        """
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        platform = Platform.parse(platform)
        EventLogger.set_context(user_id=user_id, platform=platform)

        if isinstance(raw_posts, list):
            records = [r.get("node", r) if isinstance(r, dict) else r for r in raw_posts]
        else:
            records = parse_scrape_payload(raw_posts)

        report = extract_posts(user_id, platform, records)
        written = await self.repository.upsert_posts(report.posts)
        await self.log.info(
            f"Ingested {written} {platform.value} posts",
            data={"skipped": report.skipped, "duplicates": report.duplicates},
        )
        return report

    # ------------------------------------------------------------------
    # PROFILES
    # ------------------------------------------------------------------

    async def synthesize_profile(
        self,
        user_id: str,
        platform: Union[str, Platform],
        feedback: Optional[FeedbackSignal] = None,
        trigger: Optional[TriggerType] = None,
        extra_ops: Sequence[WriteOp] = (),
        now: Optional[datetime] = None,
    ) -> VoiceProfile:
        """Synthesize and persist the next profile version.

        The previous version's feedback signal carries forward, merged with
        *feedback*.  A version conflict is retried against the new head up
        to ``RetryConfig.conflict_retries`` times.

        Raises:
            ConflictError: Still losing the race after all retries.
        """
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        platform = Platform.parse(platform)
        EventLogger.set_context(user_id=user_id, platform=platform)
        attempts = self.settings.retry.conflict_retries + 1

        async with self.log.timed(f"Synthesizing {platform.value} profile"):
            for attempt in range(1, attempts + 1):
                current = await self.repository.get_profile(user_id, platform)
                base = current.version if current else None
                posts = await self.repository.get_posts(user_id, platform)
                signal = merge_signals(
                    current.feedback_signal if current else None,
                    feedback,
                    limit=self.settings.synthesis.max_feedback_signal,
                )

                profile = self.synthesizer.synthesize(
                    user_id, platform, posts,
                    base_version=base, feedback=signal, now=now,
                )
                kind = trigger or (TriggerType.INITIAL if base is None else TriggerType.RESYNTHESIS)
                try:
                    await self.repository.save_profile_version(profile, base, kind, extra_ops)
                    return profile
                except ConflictError as exc:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        "[SYNTH] Version conflict for %s/%s from %s (attempt %d/%d): %s",
                        user_id, platform.value, base, attempt, attempts, exc,
                    )

    async def get_profile(self, user_id: str, platform: Union[str, Platform]) -> VoiceProfile:
        """Current profile.

        Raises:
            NotFoundError: No profile was synthesized yet.
        """
        platform = Platform.parse(platform)
        profile = await self.repository.get_profile(user_id, platform)
        if profile is None:
            raise NotFoundError(f"No voice profile for {user_id} on {platform.value}")
        return profile

    async def get_profile_history(
        self, user_id: str, platform: Union[str, Platform], limit: int = 50
    ) -> List[Dict[str, Any]]:
        return await self.repository.get_profile_history(user_id, Platform.parse(platform), limit)

    async def rollback_profile(
        self,
        user_id: str,
        platform: Union[str, Platform],
        version: str,
        now: Optional[datetime] = None,
    ) -> VoiceProfile:
        """Republish *version* as a new major version.

        Raises:
            NotFoundError: *version* does not exist.
            ConflictError: The head moved during the rollback.
        """
        platform = Platform.parse(platform)
        target = await self.repository.get_profile_version(user_id, platform, version)
        if target is None:
            raise NotFoundError(f"Profile version {version} not found for {user_id}/{platform.value}")

        base = await self.repository.get_head_version(user_id, platform)
        now = now or utc_now()
        restored = copy.deepcopy(target)
        restored.version = next_version(base, major=True)
        restored.id = profile_document_key(user_id, platform, restored.version)
        restored.created_at = now
        restored.updated_at = now

        await self.repository.save_profile_version(restored, base, TriggerType.ROLLBACK)
        await self.log.info(
            f"Rolled back {platform.value} profile to {version} as {restored.version}"
        )
        return restored

    # ------------------------------------------------------------------
    # GENERATION
    # ------------------------------------------------------------------

    async def generate_content(
        self,
        user_id: str,
        platform: Union[str, Platform],
        context: str,
        content_type: Union[str, ContentType] = ContentType.CAPTION,
        variation_count: int = 1,
        trend: Optional[TrendContext] = None,
        tone_adjustment: ToneAdjustment = None,
        strict: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> GenerationBatch:
        """Generate variations and store the successful ones."""
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        platform = Platform.parse(platform)
        EventLogger.set_context(user_id=user_id, platform=platform)

        profile = await self.repository.get_profile(user_id, platform)
        async with self.log.timed(f"Generating {variation_count} variation(s)"):
            batch = await self.engine.generate(
                profile,
                platform,
                context,
                content_type=content_type,
                variation_count=variation_count,
                trend=trend,
                tone_adjustment=tone_adjustment,
                user_id=user_id,
                strict=strict,
                now=now,
            )
        await self.repository.save_generated_content(batch.items)
        for error in batch.errors:
            await self.log.warning(
                f"Variation {error.variation_index} failed: {error.error}",
                data={"transient": error.transient},
            )
        return batch

    # ------------------------------------------------------------------
    # FEEDBACK & LEARNING
    # ------------------------------------------------------------------

    async def submit_feedback(
        self,
        user_id: str,
        generated_content_id: str,
        rating: Union[str, Rating],
        edited_version: Optional[str] = None,
        specific_issues: Optional[List[str]] = None,
        used_in_post: bool = False,
        content: Optional[FeedbackContent] = None,
        visual_context: Optional[str] = None,
    ) -> str:
        """Record a rating on one generated item.

        Content and generation context default to what was generated.

        Raises:
            InvalidArgumentError: Bad rating or missing ids.
            NotFoundError: Unknown generated content.
            UnauthorizedError: Content belongs to another user.
        """
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        if not generated_content_id:
            raise InvalidArgumentError("generated_content_id is required")
        rating = Rating.parse(rating)

        generated = await self.repository.get_generated_content(generated_content_id)
        if generated is None:
            raise NotFoundError(f"Generated content {generated_content_id} not found")
        if generated.user_id != user_id:
            raise UnauthorizedError("Cannot rate content generated for another user")
        EventLogger.set_context(user_id=user_id, platform=generated.platform)

        feedback = Feedback(
            user_id=user_id,
            platform=generated.platform,
            generated_content_id=generated.id,
            content=content or FeedbackContent(
                caption=edited_version or generated.text,
                hashtags=list(generated.hashtags),
            ),
            rating=rating,
            generation_context=GenerationContext(
                profile_version=generated.profile_version,
                prompt=generated.prompt,
                confidence_score=generated.confidence_score,
                visual_context=visual_context,
            ),
            specific_issues=list(specific_issues or []),
            edited_version=edited_version,
            used_in_post=used_in_post,
        )
        return await self.feedback_loop.record_feedback(feedback)

    async def run_learning_pass(
        self, user_id: str, platform: Union[str, Platform], now: Optional[datetime] = None
    ) -> LearningMetrics:
        platform = Platform.parse(platform)
        EventLogger.set_context(user_id=user_id, platform=platform)
        async with self.log.timed("Learning pass"):
            return await self.feedback_loop.run_learning_pass(user_id, platform, now=now)

    async def get_learning_metrics(
        self, user_id: str, platform: Union[str, Platform]
    ) -> LearningMetrics:
        """Last computed metrics, or an empty rollup if no pass ran yet."""
        platform = Platform.parse(platform)
        metrics = await self.repository.get_learning_metrics(user_id, platform)
        return metrics or LearningMetrics(user_id=user_id, platform=platform)

    async def apply_pending_resynthesis(
        self,
        user_id: str,
        platform: Union[str, Platform],
        now: Optional[datetime] = None,
    ) -> Optional[VoiceProfile]:
        """Fold queued feedback into a new profile version.

        The new version, the ``applied_to_profile`` marks and the consumed
        queue entries are written in one batch.

        Returns:
            The new profile, or ``None`` when nothing is queued.
        """
        platform = Platform.parse(platform)
        requests = await self.repository.get_pending_resynthesis(user_id, platform)
        if not requests:
            return None

        signal = merge_signals(*(
            FeedbackSignal(
                edited_texts=r.edited_texts,
                issue_tags=r.issue_tags,
                feedback_ids=r.feedback_ids,
            )
            for r in requests
        ))

        ops: List[WriteOp] = []
        for feedback_id in signal.feedback_ids:
            item = await self.repository.get_feedback(feedback_id)
            if item is None:
                logger.warning("[LEARN] Queued feedback %s no longer exists", feedback_id)
                continue
            item.learning_data.applied_to_profile = True
            ops.append(VoiceDNARepository.learning_data_op(item))
        ops.extend(VoiceDNARepository.consume_resynthesis_op(r) for r in requests)

        profile = await self.synthesize_profile(
            user_id,
            platform,
            feedback=signal,
            trigger=TriggerType.FEEDBACK,
            extra_ops=ops,
            now=now,
        )
        await self.log.info(
            f"Applied {len(signal.feedback_ids)} feedback records as v{profile.version}",
            data={"edited_texts": len(signal.edited_texts), "issues": signal.issue_tags},
        )
        return profile

    # ------------------------------------------------------------------
    # MULTI-PLATFORM ANALYSIS
    # ------------------------------------------------------------------

    async def analyze_accounts(
        self,
        user_id: str,
        accounts: Dict[str, str],
        limit: Optional[int] = None,
    ) -> AnalysisReport:
        """Scrape, audit, ingest and synthesize each requested platform.

        A platform is synthesized only when it has at least
        ``SynthesisConfig.min_posts_for_synthesis`` stored posts.  One
        platform failing never fails the others.

        Args:
            accounts: ``{platform: username}``.
            limit: Posts per account, clamped to ``[10, 100]`` (default 50).

        Raises:
            ConfigurationError: No scraper is configured.
            InvalidArgumentError: No accounts, unknown platform or blank
                username.
        """
        if self.scraper is None:
            raise ConfigurationError("No scraper configured")
        if not user_id:
            raise InvalidArgumentError("user_id is required")
        if not accounts:
            raise InvalidArgumentError("At least one account is required")

        targets = []
        for name, username in accounts.items():
            if not username or not str(username).strip():
                raise InvalidArgumentError(f"username for {name} is required")
            targets.append(ScrapeTarget(Platform.parse(name), str(username).strip().lstrip("@")))

        report = AnalysisReport(user_id=user_id)
        async with self.log.timed(f"Analyzing {len(targets)} account(s)"):
            results = await self.scraper.scrape(targets, clamp_limit(limit))

        min_posts = self.settings.synthesis.min_posts_for_synthesis
        for result in results:
            outcome = PlatformAnalysis(platform=result.platform, username=result.username)
            report.results[result.platform.value] = outcome
            try:
                await self._analyze_platform(user_id, result, outcome, min_posts)
            except VoiceDNAError as exc:
                outcome.success = False
                outcome.error = error_payload(exc)["message"]
                logger.warning(
                    "[INGEST] Analysis of %s for %s failed: %s",
                    result.platform.value, user_id, exc,
                )

        logger.info(
            "[INGEST] Analysis for %s: %d platform(s), synthesized %s",
            user_id, len(report.results), report.synthesized,
        )
        return report

    async def _analyze_platform(
        self,
        user_id: str,
        result: ScrapeResult,
        outcome: PlatformAnalysis,
        min_posts: int,
    ) -> None:
        await self.repository.save_raw_scrape(
            user_id, result.platform, result.username,
            result.raw_payload if result.raw_payload is not None else result.posts,
            error=result.error,
        )
        if not result.success:
            outcome.error = result.error
            return

        extraction = await self.ingest(user_id, result.platform, result.posts)
        outcome.posts_ingested = len(extraction.posts)
        outcome.skipped = extraction.skipped
        outcome.success = True

        stored = await self.repository.get_posts(user_id, result.platform)
        if len(stored) < min_posts:
            outcome.error = (
                f"Only {len(stored)} posts available; "
                f"{min_posts} needed for synthesis"
            )
            return
        profile = await self.synthesize_profile(user_id, result.platform)
        outcome.profile_version = profile.version
        outcome.confidence = profile.confidence.overall


__all__ = [
    "PlatformAnalysis",
    "AnalysisReport",
    "merge_signals",
    "VoiceDNAService",
]
