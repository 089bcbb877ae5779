"""
Tests for the voice profile synthesizer and its analysis helpers.

Covers:
    - neutral default for users without usable posts
    - WritingDNA / CoreIdentity / StrategyDNA / BehavioralDNA on the
      fixture posts
    - determinism and order independence
    - feedback signal folding (edited texts as the newest samples)
    - versioning helpers
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from voice_dna.exceptions import InternalError
from voice_dna.models import Platform, VisualAnalysis
from voice_dna.profile import analysis
from voice_dna.profile.models import (
    DEFAULT_VOICE_PROFILE,
    FeedbackSignal,
    default_profile_for,
    next_version,
    parse_version,
)
from voice_dna.profile.synthesizer import VoiceProfileSynthesizer


@pytest.fixture
def synthesizer(settings):
    return VoiceProfileSynthesizer(settings)


@pytest.fixture
def profile(synthesizer, posts, sample_utc_now):
    return synthesizer.synthesize("u1", "instagram", posts, now=sample_utc_now)


# ===========================================================================
# Neutral default
# ===========================================================================


class TestNeutralDefault:
    def test_no_posts(self, synthesizer, sample_utc_now):
        profile = synthesizer.synthesize("u1", "instagram", [], now=sample_utc_now)
        assert profile.insufficient_data is True
        assert profile.confidence.overall == 0.0
        assert profile.version == "1.0.0"
        assert profile.user_id == "u1"
        assert profile.writing_dna.tone_distribution == {"neutral": 1.0}

    def test_posts_of_other_users_ignored(self, synthesizer, posts):
        profile = synthesizer.synthesize("someone-else", "instagram", posts)
        assert profile.insufficient_data is True

    def test_posts_of_other_platform_ignored(self, synthesizer, posts):
        profile = synthesizer.synthesize("u1", Platform.TWITTER, posts)
        assert profile.insufficient_data is True

    def test_global_default_not_mutated(self):
        copy = default_profile_for("u9", "linkedin")
        copy.writing_dna.favorite_words.append("mutated")
        assert DEFAULT_VOICE_PROFILE.writing_dna.favorite_words == []
        assert DEFAULT_VOICE_PROFILE.user_id == ""


# ===========================================================================
# Synthesized sections
# ===========================================================================


class TestSynthesizedProfile:
    def test_identity(self, profile):
        assert profile.version == "1.0.0"
        assert profile.insufficient_data is False
        assert profile.id == "u1:instagram:1.0.0"
        assert profile.core_identity.primary_tone == "enthusiastic"
        assert profile.core_identity.personality_traits == ["energetic"]

    def test_writing_dna(self, profile):
        writing = profile.writing_dna
        assert writing.tone_distribution == {"enthusiastic": 1.0}
        assert {"coffee", "morning", "roast", "ritual"} <= set(writing.favorite_words)
        assert "this" not in writing.favorite_words
        assert writing.phrase_templates == ["morning coffee ritual ..."]
        assert writing.structure.opening == "statement hook"
        assert writing.structure.body == "multi-paragraph"
        assert writing.structure.closing == "plain ending"
        assert writing.structure.cta == "link in bio"

    def test_strategy_dna(self, profile):
        strategy = profile.strategy_dna
        assert strategy.category_mix == ["#coffee", "#morning", "#latteart"]
        # Two-tag posts out-engage three-tag posts in the fixture
        assert strategy.optimal_hashtag_count == 2
        assert strategy.winning_combinations[0].expected_performance == 226.0
        assert len(strategy.winning_combinations) == 5

    def test_behavioral_dna(self, profile):
        behavior = profile.behavioral_dna
        assert behavior.optimal_timing == ["20:00-21:00", "08:00-09:00"]
        assert behavior.consistency == 1.0
        assert behavior.posting_frequency == "3.1x/week"
        assert behavior.content_evolution == "stable"

    def test_confidence(self, profile):
        confidence = profile.confidence
        assert confidence.data_quality.sample_size == 12
        assert confidence.data_quality.date_range_days == 27.5
        assert confidence.analysis_depth.visual == 0.0
        assert 0 < confidence.overall < 100

    def test_generation_templates(self, profile):
        templates = profile.generation_templates
        assert len(templates.caption_templates) == 3
        assert "{cta}" in templates.caption_templates[0].template
        assert templates.hashtag_sets[0].name == "core"

    def test_timestamps_use_now(self, profile, sample_utc_now):
        assert profile.created_at == sample_utc_now
        assert profile.updated_at == sample_utc_now


class TestDeterminism:
    def test_order_independent(self, synthesizer, posts, sample_utc_now):
        forward = synthesizer.synthesize("u1", "instagram", posts, now=sample_utc_now)
        backward = synthesizer.synthesize("u1", "instagram", posts[::-1], now=sample_utc_now)
        assert forward == backward

    def test_duplicate_posts_collapse(self, synthesizer, posts, sample_utc_now):
        once = synthesizer.synthesize("u1", "instagram", posts, now=sample_utc_now)
        twice = synthesizer.synthesize("u1", "instagram", posts + posts, now=sample_utc_now)
        assert once == twice


# ===========================================================================
# Feedback folding and versioning
# ===========================================================================


class TestFeedbackSignal:
    def test_edited_texts_feed_writing_dna(self, synthesizer, posts):
        signal = FeedbackSignal(
            edited_texts=[
                "Espresso tasting tonight",
                "Espresso flight for the team",
                "Espresso is my love language",
            ],
            issue_tags=["too long"],
        )
        profile = synthesizer.synthesize(
            "u1", "instagram", posts, base_version="1.0.0", feedback=signal
        )
        assert "espresso" in profile.writing_dna.favorite_words
        assert profile.feedback_signal == signal
        assert profile.version == "1.1.0"

    def test_signal_kept_on_default_profile(self, synthesizer):
        signal = FeedbackSignal(issue_tags=["too salesy"])
        profile = synthesizer.synthesize("u1", "instagram", [], feedback=signal)
        assert profile.feedback_signal.issue_tags == ["too salesy"]


class TestVersioning:
    @pytest.mark.parametrize("base, major, expected", [
        (None, False, "1.0.0"),
        ("1.0.0", False, "1.1.0"),
        ("1.4.0", False, "1.5.0"),
        ("1.4.0", True, "2.0.0"),
    ])
    def test_next_version(self, base, major, expected):
        assert next_version(base, major=major) == expected

    def test_invalid_version(self):
        with pytest.raises(InternalError):
            parse_version("v1")

    def test_global_default_built_at_import(self):
        """The module-level default is constructed through the version check."""
        assert parse_version(DEFAULT_VOICE_PROFILE.version) == (1, 0, 0)
        assert DEFAULT_VOICE_PROFILE.id == "default"
        assert DEFAULT_VOICE_PROFILE.insufficient_data is True


# ===========================================================================
# Analysis helpers
# ===========================================================================


class TestAnalysisHelpers:
    def test_tone_neutral_without_cues(self):
        assert analysis.tone_distribution(["The report is attached"]) == {"neutral": 1.0}

    def test_tone_shares(self):
        distribution = analysis.tone_distribution(["love this strategy", "amazing results"])
        assert distribution == {"enthusiastic": 0.5, "professional": 0.5}
        # Ties break alphabetically
        assert analysis.primary_tone(distribution) == "enthusiastic"

    def test_hour_window_wraps(self):
        assert analysis.hour_window(23) == "23:00-00:00"

    def test_branding_consistency(self):
        assert analysis.branding_consistency(["#fff", "#fff", "#000", "#fff"]) == 0.5
        assert analysis.branding_consistency([]) == 0.0

    def test_visual_dna_from_analysis(self, posts):
        tagged = [
            replace(
                p,
                visual_analysis=VisualAnalysis(
                    dominant_colors=["#f5e6d3", "#3b2f2f"],
                    mood="warm",
                    composition="flat lay",
                    detected_objects=["cup"],
                ),
            )
            for p in posts[:6]
        ] + posts[6:]
        visual, analyzed = analysis.analyze_visual(tagged)
        assert analyzed == 6
        assert visual.color_identity.mood == "warm"
        assert visual.color_identity.palette == ["#3b2f2f", "#f5e6d3"]
        assert visual.composition.framing == "flat lay"
        assert visual.narrative.branding_elements == ["cup"]

    def test_catchphrases_need_two_posts(self):
        texts = ["you got this friend", "you got this today", "nothing shared"]
        assert "you got this" in analysis.catchphrases(texts, min_support=2)

    def test_style_shift_between_months(self, posts):
        shifted = [
            replace(p, caption="Quarterly strategy results for the team",
                    created_at=p.created_at + timedelta(days=60))
            for p in posts[:3]
        ]
        shifts = analysis.style_shifts(posts + shifted)
        assert shifts[-1].change == "enthusiastic -> professional"

    def test_engagement_triggers(self, posts):
        assert "question prompts" not in analysis.engagement_triggers(posts)
