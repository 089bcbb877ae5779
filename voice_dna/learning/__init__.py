"""Feedback collection and learning metrics."""
from voice_dna.learning.loop import FeedbackLoop
from voice_dna.learning.metrics import compute_metrics, impact_score, satisfaction_rate

__all__ = [
    "FeedbackLoop",
    "compute_metrics",
    "impact_score",
    "satisfaction_rate",
]
