"""
Scraping collaborator interface.

The scraping mechanics live outside this package.  A ``Scraper`` receives
``{platform, username}`` targets and a post limit and returns one
``ScrapeResult`` per target: either the raw post records or an error for
that platform alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from voice_dna.models import Platform

MIN_SCRAPE_LIMIT = 10
MAX_SCRAPE_LIMIT = 100


@dataclass
class ScrapeTarget:
    platform: Platform
    username: str


@dataclass
class ScrapeResult:
    """Per-platform outcome of a scrape.

    Attributes:
        platform: Platform scraped.
        username: Account scraped.
        posts: Raw post records (scraper-node or flattened shape).
        raw_payload: The untouched response, kept for the audit log.
        error: Failure message; ``None`` on success.
    """

    platform: Platform
    username: str
    posts: List[Dict[str, Any]] = field(default_factory=list)
    raw_payload: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@runtime_checkable
class Scraper(Protocol):
    """Fetches raw posts for a set of accounts."""

    async def scrape(
        self, targets: Sequence[ScrapeTarget], limit: int
    ) -> List[ScrapeResult]:
        """Return one result per target, never raising for a single platform."""
        ...


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a requested post limit into ``[10, 100]`` (default 50)."""
    if limit is None:
        return 50
    return max(MIN_SCRAPE_LIMIT, min(MAX_SCRAPE_LIMIT, int(limit)))


__all__ = [
    "MIN_SCRAPE_LIMIT",
    "MAX_SCRAPE_LIMIT",
    "ScrapeTarget",
    "ScrapeResult",
    "Scraper",
    "clamp_limit",
]
