"""
Centralized configuration loader for the Voice DNA system.

Loads settings from YAML files and environment variables, providing
sensible defaults when configuration files are absent.

Provides:
    - ConfidenceWeights: Named, tunable weights of the confidence function
    - SynthesisConfig: Thresholds used while deriving a voice profile
    - GenerationConfig: Backend selection and variation limits
    - LearningConfig: Resynthesis threshold and impact-score weights
    - RetryConfig: Backoff and version-conflict retry settings
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from voice_dna.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of voice_dna/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _apply_env_overrides(target: Any, overrides: Dict[str, tuple]) -> None:
    """Set attributes on *target* from env vars, failing fast on bad values."""
    for env_key, (attr_name, cast_fn) in overrides.items():
        env_val = os.environ.get(env_key)
        if env_val is None:
            continue
        try:
            setattr(target, attr_name, cast_fn(env_val))
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(
                f"Invalid value for env var {env_key}='{env_val}': {exc}"
            ) from exc


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _from_section(cls: type, section: Optional[Dict[str, Any]]) -> Any:
    """Build a config dataclass from a YAML section, ignoring unknown keys."""
    section = section or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, unknown)
    return cls(**{k: v for k, v in section.items() if k in known})


# ===========================================================================
# CONFIDENCE WEIGHTS
# ===========================================================================


@dataclass
class ConfidenceWeights:
    """
    Relative weights of the confidence function components.

    Each component is a score in ``[0, 1]``; the overall confidence is the
    weighted mean scaled to ``[0, 100]``.  Sample size and date range are
    capped at their ideal values, so more data never lowers confidence.
    """

    sample_size: float = 1.0
    date_range: float = 1.0
    completeness: float = 1.0
    analysis: float = 1.0

    # Saturation points of the capped components
    ideal_sample_size: int = 50
    ideal_date_range_days: int = 90

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VOICE_DNA_WEIGHT_SAMPLE_SIZE": ("sample_size", float),
            "VOICE_DNA_WEIGHT_DATE_RANGE": ("date_range", float),
            "VOICE_DNA_WEIGHT_COMPLETENESS": ("completeness", float),
            "VOICE_DNA_WEIGHT_ANALYSIS": ("analysis", float),
        })
        weights = (self.sample_size, self.date_range, self.completeness, self.analysis)
        if any(w < 0 for w in weights):
            raise ConfigurationError(f"Confidence weights must be >= 0, got {weights}")
        if sum(weights) <= 0:
            raise ConfigurationError("At least one confidence weight must be positive")
        if self.ideal_sample_size < 1 or self.ideal_date_range_days < 1:
            raise ConfigurationError(
                "ideal_sample_size and ideal_date_range_days must be >= 1"
            )

    @property
    def total(self) -> float:
        return self.sample_size + self.date_range + self.completeness + self.analysis


# ===========================================================================
# COMPONENT CONFIGURATION
# ===========================================================================


@dataclass
class SynthesisConfig:
    """Thresholds for deriving a voice profile from posts."""

    min_word_support: int = 3  # Occurrences before a word counts as "favorite"
    max_favorite_words: int = 15
    recent_window: int = 20  # Most recent N posts used for phrase templates
    max_hashtags_tracked: int = 30
    min_posts_for_synthesis: int = 5
    max_feedback_signal: int = 50  # Newest edited texts, issues and ids carried per version

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VOICE_DNA_MIN_WORD_SUPPORT": ("min_word_support", int),
            "VOICE_DNA_MIN_POSTS": ("min_posts_for_synthesis", int),
        })
        if self.min_word_support < 1:
            raise ConfigurationError("min_word_support must be >= 1")
        if self.max_feedback_signal < 1:
            raise ConfigurationError("max_feedback_signal must be >= 1")


@dataclass
class GenerationConfig:
    """Backend selection and variation limits for the generation engine."""

    backend: str = "template"  # "template" | "claude"
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 1024
    max_variations: int = 5
    backend_timeout_seconds: float = 30.0
    default_hashtag_count: int = 5
    strict_profile: bool = False

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VOICE_DNA_BACKEND": ("backend", str),
            "VOICE_DNA_MODEL": ("model", str),
            "VOICE_DNA_MAX_VARIATIONS": ("max_variations", int),
            "VOICE_DNA_BACKEND_TIMEOUT": ("backend_timeout_seconds", float),
            "VOICE_DNA_STRICT_PROFILE": ("strict_profile", _parse_bool),
        })
        if self.backend not in ("template", "claude"):
            raise ConfigurationError(
                f"Unknown generation backend '{self.backend}'. "
                "Valid backends: ['template', 'claude']"
            )
        if self.max_variations < 1:
            raise ConfigurationError("max_variations must be >= 1")


@dataclass
class LearningConfig:
    """Resynthesis threshold and impact-score weights of the learning loop."""

    resynthesis_threshold: int = 5
    thumbs_up_impact: float = 0.3
    thumbs_down_impact: float = 0.5
    edited_bonus: float = 0.4
    posted_bonus: float = 0.3
    trend_weeks: int = 8

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VOICE_DNA_RESYNTHESIS_THRESHOLD": ("resynthesis_threshold", int),
        })
        if self.resynthesis_threshold < 1:
            raise ConfigurationError("resynthesis_threshold must be >= 1")


@dataclass
class RetryConfig:
    """Backoff for transient upstream failures and version-conflict retries."""

    max_attempts: int = 3
    base_delay: float = 1.0
    conflict_retries: int = 1

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VOICE_DNA_RETRY_ATTEMPTS": ("max_attempts", int),
            "VOICE_DNA_CONFLICT_RETRIES": ("conflict_retries", int),
        })
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1")


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    secrets and deployment-specific configuration.
    """

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Persistence: "memory" | "supabase"
    store_backend: str = "memory"

    confidence: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VOICE_DNA_LOG_LEVEL": ("log_level", str),
            "VOICE_DNA_LOG_DIR": ("log_dir", str),
            "VOICE_DNA_STORE": ("store_backend", str),
        })
        if self.store_backend not in ("memory", "supabase"):
            raise ConfigurationError(
                f"Unknown store backend '{self.store_backend}'. "
                "Valid backends: ['memory', 'supabase']"
            )

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed
                or holds an invalid value.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings YAML at {path} must be a mapping")

        try:
            return cls(
                log_level=data.get("log_level", "INFO"),
                log_dir=data.get("log_dir", "logs"),
                store_backend=data.get("store_backend", "memory"),
                confidence=_from_section(ConfidenceWeights, data.get("confidence")),
                synthesis=_from_section(SynthesisConfig, data.get("synthesis")),
                generation=_from_section(GenerationConfig, data.get("generation")),
                learning=_from_section(LearningConfig, data.get("learning")),
                retry=_from_section(RetryConfig, data.get("retry")),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton (used by tests)."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

SUPABASE_ENV_VARS: List[str] = ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]
CLAUDE_ENV_VARS: List[str] = ["ANTHROPIC_API_KEY"]


def required_env_vars(settings: Optional[Settings] = None) -> List[str]:
    """Environment variables needed by the configured store and backend."""
    settings = settings or get_settings()
    required: List[str] = []
    if settings.store_backend == "supabase":
        required.extend(SUPABASE_ENV_VARS)
    if settings.generation.backend == "claude":
        required.extend(CLAUDE_ENV_VARS)
    return required


def validate_env(
    strict: bool = True, settings: Optional[Settings] = None
) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.
        settings: Settings deciding which collaborators are in use.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in required_env_vars(settings):
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    if missing:
        logger.warning("Missing environment variables: %s", ", ".join(missing))
    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    "ConfidenceWeights",
    "SynthesisConfig",
    "GenerationConfig",
    "LearningConfig",
    "RetryConfig",
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "required_env_vars",
    "SUPABASE_ENV_VARS",
    "CLAUDE_ENV_VARS",
    "PROJECT_ROOT",
]
