"""
Feature extraction: raw scraped post records -> normalized ``Post``.

Two raw shapes are accepted:

    - **Scraper node** (Instagram private-API style): ``pk``/``id``/``code``,
      ``caption: {text, created_at}``, ``taken_at``, ``like_count``,
      ``comment_count``, ``video_versions``, ``image_versions2.candidates``,
      ``carousel_media``.
    - **Flattened record**: ``id``, ``text``, ``likes``, ``comments``,
      ISO ``timestamp``, ``mediaType``, ``mediaUrl``, ``url``.

Extraction is pure: the same raw record always yields an identical
``Post``.  Missing optional fields default to empty/zero; a record without
an identifier or a creation timestamp is malformed and rejected with
``InvalidArgumentError``.  ``extract_posts`` absorbs those per-record
failures and counts them in an ``ExtractionReport``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from voice_dna.exceptions import InvalidArgumentError
from voice_dna.models import EngagementMetrics, MediaType, Platform, Post, VisualAnalysis
from voice_dna.utils import parse_timestamp

logger = logging.getLogger("FeatureExtractor")

# '#' + word characters.  Python's \w excludes Devanagari combining marks,
# so the block is listed explicitly.
HASHTAG_RE = re.compile(r"#[\w\u0900-\u097F]+")
_FILLER_DOTS_RE = re.compile(r"(\.\s*){3,}")
_REPEATED_NEWLINES_RE = re.compile(r"\n{2,}")

_INSTAGRAM_POST_URL = "https://www.instagram.com/p/{code}/"

# Instagram media_type codes
_IG_VIDEO = 2
_IG_CAROUSEL = 8


# =============================================================================
# TEXT HELPERS
# =============================================================================


def extract_hashtags(text: str) -> List[str]:
    """Lower-cased hashtags in first-seen order, without duplicates.

    >>> extract_hashtags("Love #AI and #ai and #growth")
    ['#ai', '#growth']
    """
    if not text:
        return []
    seen: Dict[str, None] = {}
    for match in HASHTAG_RE.findall(text):
        seen.setdefault(match.lower(), None)
    return list(seen)


def normalize_hashtag(tag: str) -> str:
    tag = tag.strip().lower()
    if not tag:
        return ""
    return tag if tag.startswith("#") else f"#{tag}"


def clean_caption(caption: str) -> str:
    """Strip hashtags and filler dots, collapse repeated newlines."""
    if not caption:
        return ""
    text = HASHTAG_RE.sub("", caption)
    text = _FILLER_DOTS_RE.sub(" ", text)
    text = _REPEATED_NEWLINES_RE.sub("\n", text)
    return text.strip()


# =============================================================================
# MEDIA HELPERS
# =============================================================================


def determine_media_type(raw: Dict[str, Any]) -> MediaType:
    """Carousel media present -> carousel; else video fields -> video; else image."""
    if raw.get("carousel_media") or raw.get("carouselMedia"):
        return MediaType.CAROUSEL
    if raw.get("video_versions") or raw.get("video_url") or raw.get("videoUrl"):
        return MediaType.VIDEO

    media_code = raw.get("media_type")
    product_type = raw.get("product_type")
    if media_code == _IG_CAROUSEL or product_type == "carousel_container":
        return MediaType.CAROUSEL
    if media_code == _IG_VIDEO or product_type == "clips":
        return MediaType.VIDEO

    declared = raw.get("mediaType")
    if isinstance(declared, str):
        try:
            return MediaType(declared.lower())
        except ValueError:
            logger.debug("Unknown mediaType '%s', defaulting to image", declared)
    return MediaType.IMAGE


def _candidates(node: Dict[str, Any]) -> List[Dict[str, Any]]:
    versions = node.get("image_versions2") or {}
    if not isinstance(versions, dict):
        return []
    return [c for c in versions.get("candidates") or [] if isinstance(c, dict)]


def _first_url(items: Iterable[Any]) -> str:
    for item in items:
        if isinstance(item, dict) and item.get("url"):
            return str(item["url"])
    return ""


def extract_media_urls(raw: Dict[str, Any]) -> List[str]:
    """Media URLs in preference order.

    First video variant URL, else first image candidate URL, else the first
    image candidate of every carousel child.  Flattened records contribute
    ``mediaUrl`` and their ``carouselMedia`` URLs.
    """
    video_url = _first_url(raw.get("video_versions") or [])
    if video_url:
        return [video_url]

    image_url = _first_url(_candidates(raw))
    if image_url:
        return [image_url]

    urls: List[str] = []
    for child in raw.get("carousel_media") or []:
        if isinstance(child, dict):
            child_url = _first_url(_candidates(child))
            if child_url:
                urls.append(child_url)
    if urls:
        return urls

    flat_url = raw.get("mediaUrl") or raw.get("media_url") or raw.get("video_url")
    if flat_url:
        urls.append(str(flat_url))
    for child in raw.get("carouselMedia") or []:
        if isinstance(child, dict) and child.get("url") and child["url"] not in urls:
            urls.append(str(child["url"]))
    return urls


def select_best_video_url(versions: Optional[List[Dict[str, Any]]]) -> str:
    """Prefer the 720x1280 rendition, else the first one."""
    if not versions:
        return ""
    for version in versions:
        if version.get("width") == 720 and version.get("height") == 1280 and version.get("url"):
            return str(version["url"])
    return str(versions[0].get("url") or "")


def select_best_image_url(candidates: Optional[List[Dict[str, Any]]]) -> str:
    """Prefer a 1080-wide portrait or square image, else the highest resolution."""
    if not candidates:
        return ""
    for candidate in candidates:
        if (
            candidate.get("width") == 1080
            and candidate.get("height") in (1080, 1440)
            and candidate.get("url")
        ):
            return str(candidate["url"])
    best = max(
        candidates,
        key=lambda c: (c.get("width") or 0) * (c.get("height") or 0),
    )
    return str(best.get("url") or "")


# =============================================================================
# SCRAPE PAYLOADS
# =============================================================================


def parse_scrape_payload(payload: Any) -> List[Dict[str, Any]]:
    """Unwrap a scraper response into a list of raw post nodes.

    Accepted shapes: ``{result: {edges}}``, ``{data: {edges}}``,
    ``{edges}`` and bare arrays of ``{node}`` (or flat) records.
    """
    edges: List[Any] = []
    if isinstance(payload, list):
        edges = payload
    elif isinstance(payload, dict):
        for wrapper in ("result", "data"):
            inner = payload.get(wrapper)
            if isinstance(inner, dict) and isinstance(inner.get("edges"), list):
                edges = inner["edges"]
                break
        else:
            if isinstance(payload.get("edges"), list):
                edges = payload["edges"]

    nodes: List[Dict[str, Any]] = []
    for edge in edges:
        node = edge.get("node", edge) if isinstance(edge, dict) else None
        if isinstance(node, dict):
            nodes.append(node)
    return nodes


def flatten_instagram_node(node: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten one Instagram node, keeping the best rendition of each media.

    Carousel children keep one URL each (video or image, best rendition).
    """
    media_type = determine_media_type(node)
    if media_type is MediaType.VIDEO:
        media_url = select_best_video_url(node.get("video_versions"))
    else:
        media_url = select_best_image_url(_candidates(node))

    caption = node.get("caption")
    text = caption.get("text", "") if isinstance(caption, dict) else (caption or "")
    code = node.get("code") or ""

    flat: Dict[str, Any] = {
        "id": str(node.get("pk") or node.get("id") or ""),
        "code": code,
        "url": _INSTAGRAM_POST_URL.format(code=code) if code else "",
        "text": text,
        "timestamp": node.get("taken_at") or (
            caption.get("created_at") if isinstance(caption, dict) else None
        ),
        "mediaType": media_type.value,
        "mediaUrl": media_url,
        "likes": node.get("like_count") or 0,
        "comments": node.get("comment_count") or 0,
    }
    if media_type is MediaType.CAROUSEL:
        children = []
        for child in node.get("carousel_media") or []:
            if not isinstance(child, dict):
                continue
            is_video = child.get("media_type") == _IG_VIDEO or bool(child.get("video_versions"))
            url = (
                select_best_video_url(child.get("video_versions"))
                if is_video
                else select_best_image_url(_candidates(child))
            )
            if url:
                children.append({"type": "video" if is_video else "image", "url": url})
        flat["carouselMedia"] = children
    return flat


# =============================================================================
# POST EXTRACTION
# =============================================================================


def _first_present(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _optional_int(value: Any) -> Optional[int]:
    return None if value in (None, "") else _as_int(value)


def _caption_text(raw: Dict[str, Any]) -> str:
    caption = raw.get("caption")
    if isinstance(caption, dict):
        return str(caption.get("text") or "")
    if isinstance(caption, str) and caption:
        return caption
    return str(_first_present(raw, "text", "content", "body") or "")


def _visual_analysis(raw: Dict[str, Any]) -> Optional[VisualAnalysis]:
    data = raw.get("visual_analysis") or raw.get("visualAnalysis")
    if not isinstance(data, dict):
        return None

    def _list(*keys: str) -> List[str]:
        return [str(v) for v in (_first_present(data, *keys) or [])]

    return VisualAnalysis(
        dominant_colors=[c.lower() for c in _list("dominant_colors", "dominantColors")],
        detected_objects=_list("detected_objects", "detectedObjects"),
        scene_type=str(_first_present(data, "scene_type", "sceneType") or ""),
        mood=str(data.get("mood") or ""),
        composition=str(data.get("composition") or ""),
        visual_themes=_list("visual_themes", "visualThemes"),
        text_in_image=_list("text_in_image", "textInImage"),
    )


def extract_post(user_id: str, platform: Any, raw: Dict[str, Any]) -> Post:
    """Normalize one raw scraped record.

    Args:
        user_id: Owner of the post.
        platform: Platform the record was scraped from.
        raw: Raw record in scraper-node or flattened shape.

    Returns:
        The normalized ``Post``.

    Raises:
        InvalidArgumentError: If *raw* is not a mapping, or carries no post
            identifier or no usable creation timestamp.
    """
    platform = Platform.parse(platform)
    if not user_id:
        raise InvalidArgumentError("user_id is required")
    if not isinstance(raw, dict):
        raise InvalidArgumentError(f"raw post must be an object, got {type(raw).__name__}")

    post_id = _first_present(raw, "pk", "id", "post_id", "postId", "code")
    if post_id is None:
        raise InvalidArgumentError("raw post has no identifier (pk/id/code)")

    caption_obj = raw.get("caption")
    created_at = parse_timestamp(
        _first_present(raw, "taken_at", "timestamp", "created_at", "createdAt", "date")
        or (caption_obj.get("created_at") if isinstance(caption_obj, dict) else None)
    )
    if created_at is None:
        raise InvalidArgumentError(f"raw post {post_id} has no usable timestamp")

    caption = _caption_text(raw)
    hashtags = extract_hashtags(caption)
    for tag in raw.get("hashtags") or []:
        normalized = normalize_hashtag(str(tag))
        if normalized and normalized not in hashtags:
            hashtags.append(normalized)

    code = raw.get("code")
    post_url = str(_first_present(raw, "url", "postUrl", "post_url", "permalink") or "")
    if not post_url and code and platform is Platform.INSTAGRAM:
        post_url = _INSTAGRAM_POST_URL.format(code=code)

    engagement = EngagementMetrics(
        likes=_as_int(_first_present(raw, "like_count", "likes", "likeCount", "reactions")),
        comments=_as_int(_first_present(raw, "comment_count", "comments", "commentCount")),
        view_count=_optional_int(
            _first_present(raw, "view_count", "play_count", "video_view_count", "viewCount")
        ),
        shares=_optional_int(_first_present(raw, "share_count", "shares", "reshare_count")),
    )

    return Post(
        user_id=user_id,
        platform=platform,
        post_id=str(post_id),
        created_at=created_at,
        post_url=post_url,
        media_urls=extract_media_urls(raw),
        media_type=determine_media_type(raw),
        caption=caption,
        hashtags=hashtags,
        engagement=engagement,
        visual_analysis=_visual_analysis(raw),
    )


@dataclass
class ExtractionReport:
    """Outcome of a batch extraction.

    Attributes:
        posts: Successfully normalized posts, first occurrence per post id.
        skipped: Number of malformed records.
        duplicates: Number of records repeating an earlier post id.
        errors: One ``"index N: reason"`` entry per malformed record.
    """

    posts: List[Post] = field(default_factory=list)
    skipped: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)


def extract_posts(
    user_id: str, platform: Any, raws: Iterable[Any]
) -> ExtractionReport:
    """Normalize a batch of raw records, skipping and counting malformed ones."""
    platform = Platform.parse(platform)
    report = ExtractionReport()
    seen: set = set()

    for index, raw in enumerate(raws):
        try:
            post = extract_post(user_id, platform, raw)
        except InvalidArgumentError as exc:
            report.skipped += 1
            report.errors.append(f"index {index}: {exc}")
            continue
        if post.post_id in seen:
            report.duplicates += 1
            continue
        seen.add(post.post_id)
        report.posts.append(post)

    if report.skipped:
        logger.warning(
            "[INGEST] Skipped %d malformed %s records for user %s (kept %d)",
            report.skipped,
            platform.value,
            user_id,
            len(report.posts),
        )
    return report


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "HASHTAG_RE",
    "extract_hashtags",
    "normalize_hashtag",
    "clean_caption",
    "determine_media_type",
    "extract_media_urls",
    "select_best_video_url",
    "select_best_image_url",
    "parse_scrape_payload",
    "flatten_instagram_node",
    "extract_post",
    "ExtractionReport",
    "extract_posts",
]
