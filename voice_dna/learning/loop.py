"""
Feedback & Learning Loop.

Two separate steps keep "signal collected" apart from "model updated":

1. ``record_feedback`` validates and persists one immutable ``Feedback``
   record with fresh ``learning_data``.
2. ``run_learning_pass`` (scheduled or manual, idempotent) recomputes
   ``LearningMetrics`` over all feedback, scores and marks unprocessed
   records, and queues a ``ResynthesisRequest`` when enough signal has
   accumulated.  It never touches the profile or generated content.

A pending resynthesis is queued when the processed-but-unapplied feedback
not yet covered by a queued request reaches
``LearningConfig.resynthesis_threshold``, or when any of it carries an
edited version (the user's own words are always worth a resynthesis).
Applying the request is ``VoiceDNAService.apply_pending_resynthesis``.
"""

import logging
from datetime import datetime
from typing import List, Optional

from voice_dna.config import Settings, get_settings
from voice_dna.database import VoiceDNARepository, WriteOp
from voice_dna.exceptions import InvalidArgumentError, NotFoundError, UnauthorizedError
from voice_dna.learning.metrics import compute_metrics, impact_score
from voice_dna.models import (
    Feedback,
    LearningData,
    LearningMetrics,
    Platform,
    Rating,
    ResynthesisRequest,
)
from voice_dna.utils import utc_now

logger = logging.getLogger("FeedbackLoop")


def normalize_issues(issues: Optional[List[str]]) -> List[str]:
    seen = {}
    for issue in issues or []:
        if isinstance(issue, str) and issue.strip():
            seen.setdefault(issue.strip().lower(), None)
    return list(seen)


class FeedbackLoop:
    """Records feedback and runs learning passes.

    Args:
        repository: Persistence for feedback, content and metrics.
        settings: Application settings; defaults to ``get_settings()``.
    """

    def __init__(
        self,
        repository: VoiceDNARepository,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # FEEDBACK
    # ------------------------------------------------------------------

    async def record_feedback(self, feedback: Feedback) -> str:
        """Validate and persist *feedback*.

        Returns:
            The new feedback id.

        Raises:
            InvalidArgumentError: Missing required fields or bad rating.
            NotFoundError: The rated content does not exist.
            UnauthorizedError: The rated content belongs to another user.
        """
        if not feedback.user_id:
            raise InvalidArgumentError("user_id is required")
        if not feedback.generated_content_id:
            raise InvalidArgumentError("generated_content_id is required")
        if feedback.content is None or feedback.generation_context is None:
            raise InvalidArgumentError("content and generation_context are required")
        if not feedback.generation_context.profile_version:
            raise InvalidArgumentError("generation_context.profile_version is required")
        feedback.platform = Platform.parse(feedback.platform)
        feedback.rating = Rating.parse(feedback.rating)

        content = await self.repository.get_generated_content(feedback.generated_content_id)
        if content is None:
            raise NotFoundError(
                f"Generated content {feedback.generated_content_id} not found"
            )
        if content.user_id != feedback.user_id:
            raise UnauthorizedError("Cannot rate content generated for another user")

        feedback.specific_issues = normalize_issues(feedback.specific_issues)
        edited = (feedback.edited_version or "").strip()
        feedback.edited_version = edited or None
        feedback.learning_data = LearningData()

        feedback_id = await self.repository.save_feedback(feedback)
        logger.info(
            "[LEARN] Feedback %s recorded for %s/%s: %s%s",
            feedback_id,
            feedback.user_id,
            feedback.platform.value,
            feedback.rating.value,
            " (edited)" if feedback.edited_version else "",
        )
        return feedback_id

    # ------------------------------------------------------------------
    # LEARNING PASS
    # ------------------------------------------------------------------

    async def run_learning_pass(
        self,
        user_id: str,
        platform: Platform,
        now: Optional[datetime] = None,
    ) -> LearningMetrics:
        """Recompute metrics, process new feedback, queue resynthesis.

        Running it again with no new feedback changes nothing but
        ``updated_at``.
        """
        platform = Platform.parse(platform)
        now = now or utc_now()
        cfg = self.settings.learning

        feedback = await self.repository.list_feedback(user_id, platform)
        generated = await self.repository.list_generated_content(user_id, platform)

        ops: List[WriteOp] = []
        newly_processed = 0
        for item in feedback:
            if item.learning_data.processed:
                continue
            item.learning_data.processed = True
            item.learning_data.impact_score = impact_score(item, cfg)
            item.learning_data.processed_at = now
            ops.append(VoiceDNARepository.learning_data_op(item))
            newly_processed += 1

        pending_requests = await self.repository.get_pending_resynthesis(user_id, platform)
        covered = {fid for request in pending_requests for fid in request.feedback_ids}
        uncovered = [
            f for f in feedback
            if f.learning_data.processed
            and not f.learning_data.applied_to_profile
            and f.id not in covered
        ]

        request = None
        if uncovered and (
            len(uncovered) >= cfg.resynthesis_threshold
            or any(f.edited_version for f in uncovered)
        ):
            head = await self.repository.get_head_version(user_id, platform)
            request = ResynthesisRequest(
                user_id=user_id,
                platform=platform,
                feedback_ids=[f.id for f in uncovered],
                edited_texts=[f.edited_version for f in uncovered if f.edited_version],
                issue_tags=sorted({i for f in uncovered for i in f.specific_issues}),
                base_version=head,
                created_at=now,
            )
            ops.append(VoiceDNARepository.resynthesis_op(request))

        metrics = compute_metrics(
            user_id,
            platform,
            generated,
            feedback,
            cfg,
            pending_resynthesis=bool(pending_requests or request),
            now=now,
        )
        ops.append(VoiceDNARepository.learning_metrics_op(metrics))
        await self.repository.apply(ops)

        logger.info(
            "[LEARN] %s/%s pass: %d feedback, %d newly processed, "
            "satisfaction=%.1f%%%s",
            user_id,
            platform.value,
            len(feedback),
            newly_processed,
            metrics.satisfaction_rate,
            f", queued resynthesis of {len(request.feedback_ids)}" if request else "",
        )
        return metrics


__all__ = [
    "normalize_issues",
    "FeedbackLoop",
]
