"""
Import raw social posts from a JSON file and build a voice profile.

Usage::

    # Ingest + synthesize:
    python import_posts.py data/posts.json --user u123 --platform instagram

    # Ingest only:
    python import_posts.py data/posts.json --user u123 --posts-only

    # Also generate sample captions from the new profile:
    python import_posts.py data/posts.json --user u123 --sample "product launch" --variations 3

The JSON file may hold a bare array of post records or a scraper payload
(``{"result": {"edges": [...]}}``, ``{"data": {"edges": [...]}}``).
"""

import argparse
import asyncio
import json
import logging
import sys

import aiofiles
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("import_posts")


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Import social posts and build a Voice DNA profile"
    )
    parser.add_argument("json_file", metavar="FILE", help="Raw posts JSON file")
    parser.add_argument("--user", required=True, help="Owner user id")
    parser.add_argument(
        "--platform",
        default="instagram",
        help="instagram, twitter or linkedin (default: instagram)",
    )
    parser.add_argument(
        "--posts-only",
        action="store_true",
        help="Only ingest posts, skip profile synthesis",
    )
    parser.add_argument(
        "--sample",
        metavar="CONTEXT",
        help="Generate sample captions for this context after synthesis",
    )
    parser.add_argument(
        "--variations",
        type=int,
        default=1,
        help="Number of sample variations (default: 1)",
    )
    args = parser.parse_args()

    from voice_dna.config import get_settings
    from voice_dna.exceptions import VoiceDNAError, error_payload
    from voice_dna.logging import init_event_logger
    from voice_dna.service import VoiceDNAService

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    event_logger = init_event_logger(settings.log_dir)

    async with aiofiles.open(args.json_file, "r", encoding="utf-8") as f:
        payload = json.loads(await f.read())

    service = await VoiceDNAService.create(settings)
    try:
        report = await service.ingest(args.user, args.platform, payload)
        logger.info(
            "Ingested %d posts (%d skipped, %d duplicates)",
            len(report.posts),
            report.skipped,
            report.duplicates,
        )
        for error in report.errors[:10]:
            logger.warning("  %s", error)

        if not report.posts:
            logger.error("No posts imported. Nothing to do.")
            sys.exit(1)

        if args.posts_only:
            logger.info("--posts-only: skipping profile synthesis")
            return

        profile = await service.synthesize_profile(args.user, args.platform)
        logger.info(
            "Voice profile v%s saved (confidence=%.1f, tone=%s, %d favorite words)",
            profile.version,
            profile.confidence.overall,
            profile.core_identity.primary_tone,
            len(profile.writing_dna.favorite_words),
        )

        if args.sample:
            batch = await service.generate_content(
                args.user,
                args.platform,
                args.sample,
                variation_count=args.variations,
            )
            for item in batch.items:
                print(f"\n--- Variation {item.variation_index + 1} "
                      f"(engagement {item.engagement_score:.0f}/100, "
                      f"post at {item.suggested_post_time:%Y-%m-%d %H:%M} UTC) ---")
                print(item.text)
                if item.hashtags:
                    print(" ".join(item.hashtags))
            for error in batch.errors:
                logger.warning("Variation %d failed: %s", error.variation_index + 1, error.error)
    except VoiceDNAError as exc:
        logger.error("Import failed: %s", error_payload(exc)["message"])
        sys.exit(1)
    finally:
        await event_logger.flush()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
