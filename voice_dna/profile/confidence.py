"""
Confidence scoring for voice profiles.

The overall score is the weighted mean of four components, each in
``[0, 1]``, scaled to ``[0, 100]``:

    sample_size   min(n / ideal_sample_size, 1)
    date_range    min(days / ideal_date_range_days, 1)
    completeness  min(complete posts / ideal_sample_size, 1)
    analysis      mean of the textual / visual / correlation depths

Every component is a capped count, and each analysis depth is
``min(posts with real input / ideal_sample_size, 1)``.  Adding posts or
widening the covered period therefore never lowers the score.  Weights come
from ``ConfidenceWeights`` (``config/settings.yaml`` -> ``confidence``).

``DataQuality.completeness`` is still reported as the fraction of complete
posts; only the score uses the count.
"""

from __future__ import annotations

from typing import Optional, Sequence

from voice_dna.config import ConfidenceWeights
from voice_dna.models import Post
from voice_dna.profile.models import AnalysisDepth, ConfidenceScores, DataQuality


def saturation(count: int, ideal: int) -> float:
    """``count / ideal`` capped at 1."""
    if count <= 0:
        return 0.0
    return round(min(count / ideal, 1.0), 3)


def date_range_days(posts: Sequence[Post]) -> float:
    """Days between the oldest and newest post (0 for one post or none)."""
    if len(posts) <= 1:
        return 0.0
    stamps = [p.created_at for p in posts]
    return round((max(stamps) - min(stamps)).total_seconds() / 86400, 2)


def complete_posts(posts: Sequence[Post]) -> int:
    return sum(1 for p in posts if p.is_complete)


def completeness(posts: Sequence[Post]) -> float:
    if not posts:
        return 0.0
    return round(complete_posts(posts) / len(posts), 3)


def captioned_posts(posts: Sequence[Post]) -> int:
    return sum(1 for p in posts if p.caption.strip())


def textual_depth(posts: Sequence[Post], ideal: int) -> float:
    return saturation(captioned_posts(posts), ideal)


def data_quality(posts: Sequence[Post]) -> DataQuality:
    return DataQuality(
        sample_size=len(posts),
        date_range_days=date_range_days(posts),
        completeness=completeness(posts),
        complete_posts=complete_posts(posts),
    )


def analysis_depth(
    posts: Sequence[Post],
    visual_posts: int,
    correlated_posts: int,
    weights: Optional[ConfidenceWeights] = None,
) -> AnalysisDepth:
    """Depths from the number of posts that fed each derivation."""
    ideal = (weights or ConfidenceWeights()).ideal_sample_size
    return AnalysisDepth(
        textual=textual_depth(posts, ideal),
        visual=saturation(visual_posts, ideal),
        correlation=saturation(correlated_posts, ideal),
    )


def overall_confidence(
    quality: DataQuality,
    depth: AnalysisDepth,
    weights: Optional[ConfidenceWeights] = None,
) -> float:
    """Weighted, capped confidence in ``[0, 100]`` (0 for no posts)."""
    weights = weights or ConfidenceWeights()
    if quality.sample_size == 0:
        return 0.0

    sample_score = saturation(quality.sample_size, weights.ideal_sample_size)
    date_score = min(quality.date_range_days / weights.ideal_date_range_days, 1.0)
    complete_score = saturation(quality.complete_posts, weights.ideal_sample_size)
    analysis_score = (depth.textual + depth.visual + depth.correlation) / 3

    weighted = (
        weights.sample_size * sample_score
        + weights.date_range * date_score
        + weights.completeness * complete_score
        + weights.analysis * analysis_score
    ) / weights.total
    return round(max(0.0, min(100.0, weighted * 100)), 2)


def score_confidence(
    posts: Sequence[Post],
    depth: AnalysisDepth,
    weights: Optional[ConfidenceWeights] = None,
) -> ConfidenceScores:
    quality = data_quality(posts)
    return ConfidenceScores(
        overall=overall_confidence(quality, depth, weights),
        data_quality=quality,
        analysis_depth=depth,
    )


__all__ = [
    "saturation",
    "date_range_days",
    "complete_posts",
    "completeness",
    "captioned_posts",
    "textual_depth",
    "data_quality",
    "analysis_depth",
    "overall_confidence",
    "score_confidence",
]
