"""
Learning metrics: pure functions over feedback and generated content.

Every value is recomputed from the full record set, never patched
incrementally, so running a learning pass twice over the same records
yields the same metrics.  Windows are anchored to the newest record (not
the wall clock) for the same reason.

Rates are percentages in ``[0, 100]``.
"""

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from voice_dna.config import LearningConfig
from voice_dna.models import (
    AspectImprovement,
    Feedback,
    GeneratedContent,
    Improvement,
    LearningMetrics,
    Platform,
    Rating,
    TrendPoint,
    UsagePatterns,
)
from voice_dna.profile.analysis import hour_window
from voice_dna.utils import utc_now


def impact_score(feedback: Feedback, cfg: Optional[LearningConfig] = None) -> float:
    """Signed influence of one feedback record on the next resynthesis.

    Positive for thumbs up, negative for thumbs down.  An edited version
    and actual posting both add magnitude.  Bounded to ``[-1, 1]``.
    """
    cfg = cfg or LearningConfig()
    if feedback.rating is Rating.THUMBS_UP:
        sign, magnitude = 1.0, cfg.thumbs_up_impact
    else:
        sign, magnitude = -1.0, cfg.thumbs_down_impact
    if feedback.edited_version:
        magnitude += cfg.edited_bonus
    if feedback.used_in_post:
        magnitude += cfg.posted_bonus
    return round(sign * min(1.0, magnitude), 3)


def satisfaction_rate(feedback: Sequence[Feedback]) -> float:
    if not feedback:
        return 0.0
    ups = sum(1 for f in feedback if f.rating is Rating.THUMBS_UP)
    return round(100.0 * ups / len(feedback), 2)


def week_start(moment: datetime) -> date:
    day = moment.date()
    return day - timedelta(days=day.weekday())


def weekly_trend(feedback: Sequence[Feedback], weeks: int = 8) -> List[TrendPoint]:
    """Satisfaction per ISO week for the *weeks* weeks ending at the newest record."""
    if not feedback:
        return []
    by_week: Dict[date, List[Feedback]] = defaultdict(list)
    for item in feedback:
        by_week[week_start(item.created_at)].append(item)

    latest = max(by_week)
    earliest = latest - timedelta(weeks=weeks - 1)
    return [
        TrendPoint(
            week=week.isoformat(),
            satisfaction_rate=satisfaction_rate(items),
            count=len(items),
        )
        for week, items in sorted(by_week.items())
        if week >= earliest
    ]


def _issue_free_score(feedback: Sequence[Feedback], issue: str) -> float:
    if not feedback:
        return 100.0
    hits = sum(1 for f in feedback if issue in f.specific_issues)
    return round(100.0 * (1 - hits / len(feedback)), 2)


def improvement(feedback: Sequence[Feedback]) -> Improvement:
    """Compare the older half of the feedback with the newer half.

    Per-aspect scores are the share of feedback *not* flagging that issue.
    """
    if not feedback:
        return Improvement()
    ordered = sorted(feedback, key=lambda f: (f.created_at, f.id))
    middle = max(1, len(ordered) // 2)
    before, after = ordered[:middle], ordered[middle:] or ordered[:middle]

    initial = satisfaction_rate(before)
    current = satisfaction_rate(after)

    issues = sorted({issue for f in ordered for issue in f.specific_issues})
    aspects = []
    for issue in issues:
        old, new = _issue_free_score(before, issue), _issue_free_score(after, issue)
        if new > old:
            aspects.append(AspectImprovement(aspect=issue, before_score=old, after_score=new))

    return Improvement(
        initial_satisfaction_rate=initial,
        current_satisfaction_rate=current,
        improvement_percentage=round(current - initial, 2),
        improved_aspects=aspects,
    )


def usage_patterns(
    generated: Sequence[GeneratedContent], feedback: Sequence[Feedback]
) -> UsagePatterns:
    if not generated:
        return UsagePatterns()

    stamps = [g.created_at for g in generated]
    span_weeks = max(1.0, (max(stamps) - min(stamps)).days / 7)

    types = Counter(g.content_type.value for g in generated)
    top_type = min(types.items(), key=lambda kv: (-kv[1], kv[0]))[0]

    hours = Counter(g.created_at.hour for g in generated)
    peaks = [
        hour_window(hour)
        for hour, _ in sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))[:3]
    ]

    generated_ids = {g.id for g in generated}
    posted = {g.id for g in generated if g.published}
    posted |= {f.generated_content_id for f in feedback if f.used_in_post} & generated_ids

    return UsagePatterns(
        generations_per_week=round(len(generated) / span_weeks, 2),
        most_generated_content_type=top_type,
        peak_usage_times=peaks,
        actual_post_usage_rate=round(100.0 * len(posted) / len(generated), 2),
    )


def compute_metrics(
    user_id: str,
    platform: Platform,
    generated: Sequence[GeneratedContent],
    feedback: Sequence[Feedback],
    cfg: Optional[LearningConfig] = None,
    pending_resynthesis: bool = False,
    now: Optional[datetime] = None,
) -> LearningMetrics:
    """Full rollup for one user x platform."""
    cfg = cfg or LearningConfig()
    return LearningMetrics(
        user_id=user_id,
        platform=platform,
        total_generated=len(generated),
        thumbs_up=sum(1 for f in feedback if f.rating is Rating.THUMBS_UP),
        thumbs_down=sum(1 for f in feedback if f.rating is Rating.THUMBS_DOWN),
        satisfaction_rate=satisfaction_rate(feedback),
        weekly_trend=weekly_trend(feedback, cfg.trend_weeks),
        improvement=improvement(feedback),
        usage_patterns=usage_patterns(generated, feedback),
        pending_resynthesis=pending_resynthesis,
        updated_at=now or utc_now(),
    )


__all__ = [
    "impact_score",
    "satisfaction_rate",
    "week_start",
    "weekly_trend",
    "improvement",
    "usage_patterns",
    "compute_metrics",
]
