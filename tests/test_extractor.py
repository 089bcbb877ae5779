"""
Tests for voice_dna.ingest -- raw scraped records to normalized posts.

Covers:
    - hashtag extraction and caption cleaning
    - media type detection and media URL selection
    - scraper payload unwrapping and node flattening
    - extract_post on both raw shapes, and its rejections
    - extract_posts batch accounting (skipped, duplicates)
    - clamp_limit for scrape requests
"""

from datetime import datetime, timezone

import pytest

from voice_dna.exceptions import InvalidArgumentError
from voice_dna.ingest.extractor import (
    clean_caption,
    determine_media_type,
    extract_hashtags,
    extract_media_urls,
    extract_post,
    extract_posts,
    flatten_instagram_node,
    normalize_hashtag,
    parse_scrape_payload,
    select_best_image_url,
    select_best_video_url,
)
from voice_dna.ingest.scraper import ScrapeResult, clamp_limit
from voice_dna.models import MediaType, Platform


# ===========================================================================
# Text helpers
# ===========================================================================


class TestHashtags:
    def test_lowercased_in_first_seen_order(self):
        assert extract_hashtags("Love #AI and #ai and #Growth") == ["#ai", "#growth"]

    def test_devanagari_tags(self):
        tag = "#\u0926\u093f\u0935\u093e\u0932\u0940"
        assert extract_hashtags(f"Diwali vibes {tag}") == [tag]

    def test_empty_text(self):
        assert extract_hashtags("") == []

    @pytest.mark.parametrize("raw, expected", [
        ("Coffee", "#coffee"),
        ("#Coffee", "#coffee"),
        ("  ", ""),
    ])
    def test_normalize_hashtag(self, raw, expected):
        assert normalize_hashtag(raw) == expected


class TestCleanCaption:
    def test_strips_hashtags_and_filler(self):
        caption = "New drop today\n.\n.\n.\n#fashion #style"
        assert clean_caption(caption) == "New drop today"

    def test_collapses_blank_lines(self):
        assert clean_caption("one\n\n\ntwo") == "one\ntwo"


# ===========================================================================
# Media helpers
# ===========================================================================


class TestMedia:
    def test_carousel_wins(self):
        raw = {"carousel_media": [{}], "video_versions": [{"url": "v"}]}
        assert determine_media_type(raw) is MediaType.CAROUSEL

    def test_video_from_versions(self):
        assert determine_media_type({"video_versions": [{"url": "v"}]}) is MediaType.VIDEO

    def test_video_from_media_code(self):
        assert determine_media_type({"media_type": 2}) is MediaType.VIDEO

    def test_flat_declared_type(self):
        assert determine_media_type({"mediaType": "Carousel"}) is MediaType.CAROUSEL

    def test_default_image(self):
        assert determine_media_type({}) is MediaType.IMAGE

    def test_video_url_preferred(self):
        raw = {
            "video_versions": [{"url": "https://cdn/v.mp4"}],
            "image_versions2": {"candidates": [{"url": "https://cdn/i.jpg"}]},
        }
        assert extract_media_urls(raw) == ["https://cdn/v.mp4"]

    def test_carousel_children_urls(self):
        raw = {
            "carousel_media": [
                {"image_versions2": {"candidates": [{"url": "https://cdn/1.jpg"}]}},
                {"image_versions2": {"candidates": [{"url": "https://cdn/2.jpg"}]}},
            ]
        }
        assert extract_media_urls(raw) == ["https://cdn/1.jpg", "https://cdn/2.jpg"]

    def test_flat_media_url(self):
        assert extract_media_urls({"mediaUrl": "https://cdn/x.jpg"}) == ["https://cdn/x.jpg"]

    def test_best_video_prefers_720p(self):
        versions = [
            {"url": "low", "width": 480, "height": 854},
            {"url": "hd", "width": 720, "height": 1280},
        ]
        assert select_best_video_url(versions) == "hd"

    def test_best_image_prefers_1080(self):
        candidates = [
            {"url": "huge", "width": 2000, "height": 2000},
            {"url": "square", "width": 1080, "height": 1080},
        ]
        assert select_best_image_url(candidates) == "square"

    def test_best_image_falls_back_to_largest(self):
        candidates = [
            {"url": "small", "width": 320, "height": 320},
            {"url": "big", "width": 640, "height": 640},
        ]
        assert select_best_image_url(candidates) == "big"


# ===========================================================================
# Scraper payloads
# ===========================================================================


class TestScrapePayload:
    NODE = {"pk": "1", "taken_at": 1717243200}

    @pytest.mark.parametrize("payload", [
        {"result": {"edges": [{"node": NODE}]}},
        {"data": {"edges": [{"node": NODE}]}},
        {"edges": [{"node": NODE}]},
        [{"node": NODE}],
        [NODE],
    ])
    def test_accepted_shapes(self, payload):
        assert parse_scrape_payload(payload) == [self.NODE]

    def test_unknown_shape_is_empty(self):
        assert parse_scrape_payload({"items": []}) == []
        assert parse_scrape_payload("nope") == []

    def test_flatten_node(self):
        node = {
            "pk": 42,
            "code": "ABC",
            "taken_at": 1717243200,
            "caption": {"text": "hello #world"},
            "like_count": 10,
            "comment_count": 2,
            "image_versions2": {"candidates": [{"url": "https://cdn/a.jpg", "width": 1080, "height": 1350}]},
        }
        flat = flatten_instagram_node(node)
        assert flat["id"] == "42"
        assert flat["url"] == "https://www.instagram.com/p/ABC/"
        assert flat["text"] == "hello #world"
        assert flat["mediaType"] == "image"
        assert flat["mediaUrl"] == "https://cdn/a.jpg"
        assert flat["likes"] == 10
        assert "carouselMedia" not in flat

    def test_flatten_carousel_keeps_children(self):
        node = {
            "pk": 7,
            "carousel_media": [
                {"media_type": 2, "video_versions": [{"url": "v1", "width": 720, "height": 1280}]},
                {"image_versions2": {"candidates": [{"url": "i1", "width": 1080, "height": 1080}]}},
            ],
        }
        flat = flatten_instagram_node(node)
        assert flat["mediaType"] == "carousel"
        assert flat["carouselMedia"] == [
            {"type": "video", "url": "v1"},
            {"type": "image", "url": "i1"},
        ]


# ===========================================================================
# extract_post / extract_posts
# ===========================================================================


class TestExtractPost:
    def test_scraper_node(self, raw_posts):
        post = extract_post("u1", "instagram", raw_posts[0])
        assert post.post_id == "1000"
        assert post.platform is Platform.INSTAGRAM
        assert post.created_at == datetime(2025, 5, 16, 8, 0, tzinfo=timezone.utc)
        assert post.post_url == "https://www.instagram.com/p/C000/"
        assert post.hashtags == ["#coffee", "#morning", "#latteart"]
        assert post.engagement.likes == 100
        assert post.engagement.comments == 5
        assert post.media_urls == ["https://cdn.example.com/0.jpg"]
        assert post.is_complete
        assert post.id == "u1:instagram:1000"

    def test_flattened_record(self):
        raw = {
            "id": "tw-1",
            "text": "Shipping today #buildinpublic",
            "timestamp": "2025-06-01T09:00:00Z",
            "likes": "12",
            "comments": None,
            "hashtags": ["launch"],
        }
        post = extract_post("u1", "twitter", raw)
        assert post.caption == "Shipping today #buildinpublic"
        assert post.hashtags == ["#buildinpublic", "#launch"]
        assert post.engagement.likes == 12
        assert post.engagement.comments == 0
        assert post.engagement.view_count is None
        assert post.media_type is MediaType.IMAGE
        assert post.media_urls == []

    def test_visual_analysis(self):
        raw = {
            "id": "v1",
            "timestamp": 1717243200,
            "visualAnalysis": {"dominantColors": ["#FFAA00"], "mood": "warm", "sceneType": "cafe"},
        }
        post = extract_post("u1", "instagram", raw)
        assert post.visual_analysis.dominant_colors == ["#ffaa00"]
        assert post.visual_analysis.mood == "warm"
        assert post.visual_analysis.scene_type == "cafe"

    def test_deterministic(self, raw_posts):
        assert extract_post("u1", "instagram", raw_posts[3]) == extract_post(
            "u1", "instagram", raw_posts[3]
        )

    def test_missing_id_rejected(self):
        with pytest.raises(InvalidArgumentError, match="identifier"):
            extract_post("u1", "instagram", {"taken_at": 1717243200})

    def test_missing_timestamp_rejected(self):
        with pytest.raises(InvalidArgumentError, match="timestamp"):
            extract_post("u1", "instagram", {"pk": "1"})

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidArgumentError):
            extract_post("u1", "instagram", ["not", "a", "post"])

    def test_threads_rejected(self):
        with pytest.raises(InvalidArgumentError, match="threads"):
            extract_post("u1", "threads", {"pk": "1", "taken_at": 1717243200})


class TestExtractPosts:
    def test_malformed_records_are_counted(self, raw_posts):
        raws = raw_posts[:3] + [{"pk": "no-time"}, {"caption": "no id"}, "garbage"]
        report = extract_posts("u1", "instagram", raws)
        assert len(report.posts) == 3
        assert report.skipped == 3
        assert len(report.errors) == 3
        assert report.errors[0].startswith("index 3:")

    def test_duplicates_keep_first(self, raw_posts):
        duplicate = dict(raw_posts[0], like_count=999)
        report = extract_posts("u1", "instagram", [raw_posts[0], duplicate])
        assert len(report.posts) == 1
        assert report.duplicates == 1
        assert report.posts[0].engagement.likes == 100


# ===========================================================================
# Scraper helpers
# ===========================================================================


class TestScraperHelpers:
    @pytest.mark.parametrize("requested, expected", [
        (None, 50),
        (5, 10),
        (30, 30),
        (500, 100),
    ])
    def test_clamp_limit(self, requested, expected):
        assert clamp_limit(requested) == expected

    def test_scrape_result_success(self):
        assert ScrapeResult(Platform.TWITTER, "jane").success
        assert not ScrapeResult(Platform.TWITTER, "jane", error="rate limited").success
