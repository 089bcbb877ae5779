"""Raw post ingestion: scraper interface and feature extraction."""
from voice_dna.ingest.extractor import (
    ExtractionReport,
    extract_post,
    extract_posts,
    parse_scrape_payload,
)
from voice_dna.ingest.scraper import ScrapeResult, ScrapeTarget, Scraper, clamp_limit

__all__ = [
    "ExtractionReport",
    "extract_post",
    "extract_posts",
    "parse_scrape_payload",
    "ScrapeResult",
    "ScrapeTarget",
    "Scraper",
    "clamp_limit",
]
