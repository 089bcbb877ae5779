"""
Text-generation backends.

A backend turns one ``GenerationRequest`` (the built instruction plus the
structured inputs it was built from) into body text.  Hashtags, scoring
and timing are the engine's job, not the backend's.

Backends:
    - ``TemplateBackend``: deterministic, offline.  Fills the profile's
      caption templates; the same request always yields the same text.
    - ``ClaudeBackend``: Anthropic Messages API via ``AsyncAnthropic``, with
      ``@with_retry`` for transient failures and fence-tolerant JSON
      parsing.

Failures surface as ``BackendError``; ``transient`` tells the retry layer
whether another attempt may succeed.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import anthropic
from anthropic import AsyncAnthropic

from voice_dna.exceptions import BackendError, ConfigurationError
from voice_dna.ingest.extractor import normalize_hashtag
from voice_dna.models import ContentType, Platform
from voice_dna.profile.models import DEFAULT_VOICE_PROFILE, VoiceProfile
from voice_dna.utils import with_retry

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST / PROTOCOL
# =============================================================================


@dataclass
class TrendContext:
    """Optional trending topic folded into the instruction."""

    title: str
    summary: str = ""
    key_points: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.key_points = list(self.key_points)
        self.hashtags = [normalize_hashtag(h) for h in self.hashtags if h.strip("# ")]


@dataclass
class GenerationRequest:
    instruction: str
    profile: VoiceProfile
    platform: Platform
    context: str
    content_type: ContentType
    variation_index: int = 0
    trend: Optional[TrendContext] = None
    tone: str = "neutral"


@runtime_checkable
class GenerationBackend(Protocol):
    """Instruction in, body text out."""

    name: str

    async def complete(self, request: GenerationRequest) -> str:
        ...


# =============================================================================
# TEMPLATE BACKEND
# =============================================================================

_HOOKS: Dict[str, List[str]] = {
    "question hook": [
        "Ever wondered what goes into {context}?",
        "What would you do with {context}?",
        "Ready for {context}?",
    ],
    "number-led hook": [
        "3 things to know about {context}.",
        "5 reasons {context} matters.",
        "1 idea, 1 goal: {context}.",
    ],
    "statement hook": [
        "{Context}.",
        "Let's talk about {context}.",
        "Here's the story behind {context}.",
    ],
}

_TONE_LINES: Dict[str, str] = {
    "enthusiastic": "Honestly so excited to share this one!",
    "inspirational": "Every step of this journey was worth it.",
    "professional": "Here is what it means for you.",
    "humorous": "No, this is not a drill (ok maybe a little).",
    "casual": "Just wanted to share this with you all.",
    "reflective": "Looking back, there is a lesson in this.",
    "neutral": "",
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


class TemplateBackend:
    """Fills profile caption templates; no network, fully deterministic."""

    name = "template"

    async def complete(self, request: GenerationRequest) -> str:
        profile = request.profile
        templates = (
            profile.generation_templates.caption_templates
            or DEFAULT_VOICE_PROFILE.generation_templates.caption_templates
        )
        i = request.variation_index
        template = templates[i % len(templates)]
        writing = profile.writing_dna
        context = request.context.strip()

        hooks = _HOOKS.get(writing.structure.opening, _HOOKS["statement hook"])
        hook = hooks[i % len(hooks)].format(
            context=context, Context=context[:1].upper() + context[1:]
        )
        if writing.phrase_templates:
            opener = writing.phrase_templates[i % len(writing.phrase_templates)]
            hook = f"{opener.rstrip('. ').capitalize()}: {context}."

        body_parts = [_TONE_LINES.get(request.tone, "")]
        if request.trend:
            body_parts.append(request.trend.summary or request.trend.title)
            body_parts.extend(f"- {point}" for point in request.trend.key_points[:3])
        if writing.favorite_words:
            words = writing.favorite_words[i:i + 3] or writing.favorite_words[:3]
            body_parts.append("Think " + ", ".join(words) + ".")
        body = "\n".join(part for part in body_parts if part)

        cta = writing.structure.cta
        values = _Blank(
            context=context,
            hook=hook,
            body=body,
            cta=cta.capitalize() + "!" if cta != "none" else "",
        )
        text = template.template.format_map(values)
        if writing.structure.closing == "emoji sign-off":
            text = text.rstrip() + " \u2728"
        return re.sub(r"\n{3,}", "\n\n", text).strip() or context


# =============================================================================
# CLAUDE BACKEND
# =============================================================================

_SYSTEM_PROMPT = (
    "You are a social media ghostwriter. You replicate a creator's exact "
    "voice, tone and structure from their Voice DNA profile. Never invent "
    "facts about the creator."
)


def parse_json_response(raw: str) -> Any:
    """Parse JSON from a model response, tolerating markdown fences and chatter.

    Raises:
        ValueError: If no JSON object or array can be found.
    """
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip(), flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*```\s*$", "", cleaned).strip()

    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    if not starts:
        raise ValueError("No JSON found in response")
    start = min(starts)
    end = cleaned.rfind("]" if cleaned[start] == "[" else "}")
    if end == -1:
        raise ValueError("Malformed JSON in response")
    return json.loads(cleaned[start:end + 1])


def classify_anthropic_error(exc: anthropic.APIError) -> BackendError:
    """Map an SDK error to ``BackendError`` with the right ``transient`` flag."""
    transient = isinstance(
        exc,
        (
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        ),
    )
    return BackendError(f"Claude request failed: {exc}", transient=transient)


class ClaudeBackend:
    """Async Claude backend.

    Args:
        api_key: Anthropic API key.  Falls back to ``ANTHROPIC_API_KEY``.
        model: Model identifier.
        max_tokens: Response token budget.
        client: Pre-built ``AsyncAnthropic`` (tests inject a mock).

    Raises:
        ConfigurationError: If no API key is available.
    """

    name = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5",
        max_tokens: int = 1024,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        if client is None:
            key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not key:
                raise ConfigurationError("ANTHROPIC_API_KEY must be set for the claude backend")
            client = AsyncAnthropic(api_key=key)
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

    async def complete(self, request: GenerationRequest) -> str:
        prompt = (
            f"{request.instruction}\n\n"
            'Return ONLY valid JSON: {"caption": "..."}. '
            "Do not include hashtags in the caption."
        )
        return await self._complete(prompt)

    @with_retry(
        max_attempts=3,
        base_delay=1.0,
        retryable_exceptions=(BackendError,),
        operation_name="claude_complete",
    )
    async def _complete(self, prompt: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=0.8,
            )
        except anthropic.APIError as exc:
            raise classify_anthropic_error(exc) from exc

        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens
        logger.debug(
            "[GEN] Claude complete: in=%d out=%d tokens",
            response.usage.input_tokens,
            response.usage.output_tokens,
        )

        if not response.content or not getattr(response.content[0], "text", ""):
            raise BackendError("Claude returned an empty response", transient=True)

        try:
            data = parse_json_response(response.content[0].text)
        except ValueError as exc:
            raise BackendError(f"Unparseable Claude response: {exc}", transient=True) from exc

        caption = data.get("caption", "") if isinstance(data, dict) else ""
        if not isinstance(caption, str) or not caption.strip():
            raise BackendError("Claude response has no caption", transient=True)
        return caption.strip()

    @property
    def usage_stats(self) -> Dict[str, int]:
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
        }


# =============================================================================
# FACTORY
# =============================================================================


def build_backend(name: str, model: str = "claude-sonnet-4-5", max_tokens: int = 1024) -> GenerationBackend:
    """Create the backend named in ``GenerationConfig.backend``."""
    if name == "template":
        return TemplateBackend()
    if name == "claude":
        return ClaudeBackend(model=model, max_tokens=max_tokens)
    raise ConfigurationError(f"Unknown generation backend '{name}'")


__all__ = [
    "TrendContext",
    "GenerationRequest",
    "GenerationBackend",
    "TemplateBackend",
    "ClaudeBackend",
    "parse_json_response",
    "classify_anthropic_error",
    "build_backend",
]
