"""Content generation: engine and pluggable text backends."""
from voice_dna.generation.backends import (
    ClaudeBackend,
    GenerationBackend,
    GenerationRequest,
    TemplateBackend,
    TrendContext,
    build_backend,
)
from voice_dna.generation.engine import GenerationBatch, GenerationEngine, VariationError

__all__ = [
    "ClaudeBackend",
    "GenerationBackend",
    "GenerationRequest",
    "TemplateBackend",
    "TrendContext",
    "build_backend",
    "GenerationBatch",
    "GenerationEngine",
    "VariationError",
]
