"""
Tests for VoiceDNAService -- the operations exposed to callers.

Covers:
    - ingest -> synthesize -> generate -> feedback -> learning pass ->
      apply_pending_resynthesis, end to end on the memory store
    - version conflicts retried against the new head
    - rollback as a new major version
    - analyze_accounts with a fake scraper (partial failures)
    - authenticate with fake and Supabase verifiers
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from supabase import AuthError

from voice_dna.config import RetryConfig, Settings, SynthesisConfig
from voice_dna.exceptions import (
    ConfigurationError,
    ConflictError,
    DatabaseError,
    InvalidArgumentError,
    NotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
)
from voice_dna.identity import SupabaseIdentityVerifier
from voice_dna.ingest.scraper import ScrapeResult
from voice_dna.models import Platform, Rating, TriggerType
from voice_dna.profile.models import FeedbackSignal
from voice_dna.service import VoiceDNAService, merge_signals


class FakeScraper:
    """Returns canned results per platform and records each call."""

    def __init__(self, posts_by_platform, errors=None):
        self.posts_by_platform = posts_by_platform
        self.errors = errors or {}
        self.calls = []

    async def scrape(self, targets, limit):
        self.calls.append((list(targets), limit))
        results = []
        for target in targets:
            error = self.errors.get(target.platform)
            results.append(ScrapeResult(
                platform=target.platform,
                username=target.username,
                posts=[] if error else self.posts_by_platform.get(target.platform, []),
                error=error,
            ))
        return results


class FakeVerifier:
    async def verify(self, token):
        if token != "good-token":
            raise UnauthenticatedError("Invalid or expired token")
        return "u1"


@pytest.fixture
async def seeded(service, raw_posts, sample_utc_now):
    """Service with ingested posts and a first profile version."""
    await service.ingest("u1", "instagram", raw_posts)
    await service.synthesize_profile("u1", "instagram", now=sample_utc_now)
    return service


# ===========================================================================
# Ingestion and profiles
# ===========================================================================


class TestIngest:
    @pytest.mark.asyncio
    async def test_list_of_nodes(self, service, repository, raw_posts):
        report = await service.ingest("u1", "instagram", raw_posts + [{"pk": "bad"}])
        assert len(report.posts) == 12
        assert report.skipped == 1
        assert len(await repository.get_posts("u1", "instagram")) == 12

    @pytest.mark.asyncio
    async def test_scraper_payload(self, service, raw_posts):
        payload = {"result": {"edges": [{"node": raw} for raw in raw_posts[:4]]}}
        report = await service.ingest("u1", "instagram", payload)
        assert len(report.posts) == 4

    @pytest.mark.asyncio
    async def test_reingest_does_not_duplicate(self, service, repository, raw_posts):
        await service.ingest("u1", "instagram", raw_posts)
        await service.ingest("u1", "instagram", raw_posts)
        assert len(await repository.get_posts("u1", "instagram")) == 12

    @pytest.mark.asyncio
    async def test_requires_user(self, service, raw_posts):
        with pytest.raises(InvalidArgumentError):
            await service.ingest("", "instagram", raw_posts)


class TestProfiles:
    @pytest.mark.asyncio
    async def test_synthesize_and_get(self, seeded, sample_utc_now):
        profile = await seeded.get_profile("u1", "instagram")
        assert profile.version == "1.0.0"
        assert profile.created_at == sample_utc_now
        assert profile.writing_dna.tone_distribution == {"enthusiastic": 1.0}

    @pytest.mark.asyncio
    async def test_resynthesis_bumps_minor(self, seeded):
        profile = await seeded.synthesize_profile("u1", "instagram")
        assert profile.version == "1.1.0"
        history = await seeded.get_profile_history("u1", "instagram")
        assert [h["trigger_type"] for h in history] == ["resynthesis", "initial"]

    @pytest.mark.asyncio
    async def test_missing_profile(self, service):
        with pytest.raises(NotFoundError):
            await service.get_profile("u1", "instagram")

    @pytest.mark.asyncio
    async def test_no_posts_gives_neutral_profile(self, service):
        profile = await service.synthesize_profile("u1", "linkedin")
        assert profile.insufficient_data is True
        assert profile.version == "1.0.0"

    @pytest.mark.asyncio
    async def test_rollback_is_new_major(self, seeded, sample_utc_now):
        original = await seeded.get_profile("u1", "instagram")
        await seeded.synthesize_profile(
            "u1", "instagram", now=sample_utc_now + timedelta(hours=1)
        )

        later = sample_utc_now + timedelta(days=1)
        restored = await seeded.rollback_profile("u1", "instagram", "1.0.0", now=later)

        assert restored.version == "2.0.0"
        assert restored.id == "u1:instagram:2.0.0"
        assert restored.writing_dna == original.writing_dna
        assert restored.created_at == later
        assert (await seeded.get_profile("u1", "instagram")).version == "2.0.0"
        history = await seeded.get_profile_history("u1", "instagram")
        assert history[0]["trigger_type"] == "rollback"
        assert history[0]["previous_version"] == "1.1.0"

    @pytest.mark.asyncio
    async def test_rollback_unknown_version(self, seeded):
        with pytest.raises(NotFoundError):
            await seeded.rollback_profile("u1", "instagram", "9.0.0")


class TestConflicts:
    @pytest.mark.asyncio
    async def test_conflict_retried_against_new_head(self, seeded, repository, monkeypatch):
        real_save = repository.save_profile_version
        calls = []

        async def racing_save(profile, base, trigger, extra_ops=()):
            calls.append(base)
            if len(calls) == 1:
                # Another writer advances the head from the same base first.
                rival = await repository.get_profile("u1", Platform.INSTAGRAM)
                rival.version = "1.1.0"
                rival.id = "u1:instagram:1.1.0"
                await real_save(rival, base, TriggerType.RESYNTHESIS)
                raise ConflictError("race", base_version=base)
            return await real_save(profile, base, trigger, extra_ops)

        monkeypatch.setattr(repository, "save_profile_version", racing_save)

        profile = await seeded.synthesize_profile("u1", "instagram")
        assert calls == ["1.0.0", "1.1.0"]
        assert profile.version == "1.2.0"

    @pytest.mark.asyncio
    async def test_conflict_gives_up(self, repository, engine, raw_posts, monkeypatch):
        settings = Settings(retry=RetryConfig(conflict_retries=0))
        service = VoiceDNAService(repository, engine=engine, settings=settings)
        await service.ingest("u1", "instagram", raw_posts)
        monkeypatch.setattr(
            repository, "save_profile_version", AsyncMock(side_effect=ConflictError("race"))
        )
        with pytest.raises(ConflictError):
            await service.synthesize_profile("u1", "instagram")
        assert repository.save_profile_version.await_count == 1


# ===========================================================================
# Generation, feedback and learning
# ===========================================================================


class TestGenerateContent:
    @pytest.mark.asyncio
    async def test_items_are_stored(self, seeded, repository, sample_utc_now):
        batch = await seeded.generate_content(
            "u1", "instagram", "product launch", variation_count=2, now=sample_utc_now
        )
        assert len(batch.items) == 2
        for item in batch.items:
            stored = await repository.get_generated_content(item.id)
            assert stored == item
            assert stored.profile_version == "1.0.0"

    @pytest.mark.asyncio
    async def test_default_profile_when_none(self, service):
        batch = await service.generate_content("u1", "twitter", "launch day")
        assert batch.used_default_profile is True

    @pytest.mark.asyncio
    async def test_strict_requires_profile(self, service):
        with pytest.raises(NotFoundError):
            await service.generate_content("u1", "twitter", "launch day", strict=True)


class TestFeedbackFlow:
    @pytest.mark.asyncio
    async def test_end_to_end(self, seeded, repository, sample_utc_now):
        batch = await seeded.generate_content(
            "u1", "instagram", "product launch", now=sample_utc_now
        )
        item = batch.items[0]

        feedback_id = await seeded.submit_feedback(
            "u1",
            item.id,
            "thumbs_down",
            edited_version="Espresso launch tonight, come taste it",
            specific_issues=["Too long"],
        )
        stored = await repository.get_feedback(feedback_id)
        assert stored.content.caption == "Espresso launch tonight, come taste it"
        assert stored.generation_context.profile_version == "1.0.0"
        assert stored.generation_context.prompt == "product launch"
        assert stored.specific_issues == ["too long"]

        metrics = await seeded.run_learning_pass("u1", "instagram", now=sample_utc_now)
        assert metrics.thumbs_down == 1
        assert metrics.pending_resynthesis is True
        assert (await seeded.get_learning_metrics("u1", "instagram")) == metrics

        profile = await seeded.apply_pending_resynthesis(
            "u1", "instagram", now=sample_utc_now + timedelta(hours=1)
        )
        assert profile.version == "1.1.0"
        assert profile.feedback_signal.edited_texts == ["Espresso launch tonight, come taste it"]
        assert profile.feedback_signal.issue_tags == ["too long"]
        assert feedback_id in profile.feedback_signal.feedback_ids

        applied = await repository.get_feedback(feedback_id)
        assert applied.learning_data.processed is True
        assert applied.learning_data.applied_to_profile is True
        assert await repository.get_pending_resynthesis("u1", "instagram") == []
        history = await seeded.get_profile_history("u1", "instagram")
        assert history[0]["trigger_type"] == "feedback"

        # Nothing left to apply; signal carries into the next plain resynthesis
        assert await seeded.apply_pending_resynthesis("u1", "instagram") is None
        nxt = await seeded.synthesize_profile("u1", "instagram")
        assert nxt.feedback_signal.issue_tags == ["too long"]

        batch = await seeded.generate_content("u1", "instagram", "weekend special")
        assert batch.items[0].profile_version == nxt.version

    @pytest.mark.asyncio
    async def test_metrics_before_any_pass(self, service):
        metrics = await service.get_learning_metrics("u1", "instagram")
        assert metrics.total_generated == 0
        assert metrics.pending_resynthesis is False

    @pytest.mark.asyncio
    async def test_feedback_on_unknown_content(self, service):
        with pytest.raises(NotFoundError):
            await service.submit_feedback("u1", "missing", Rating.THUMBS_UP)

    @pytest.mark.asyncio
    async def test_feedback_on_other_users_content(self, seeded):
        batch = await seeded.generate_content("u1", "instagram", "launch")
        with pytest.raises(UnauthorizedError):
            await seeded.submit_feedback("u2", batch.items[0].id, "thumbs_up")

    @pytest.mark.asyncio
    async def test_bad_rating(self, seeded):
        batch = await seeded.generate_content("u1", "instagram", "launch")
        with pytest.raises(InvalidArgumentError, match="thumbs_up or thumbs_down"):
            await seeded.submit_feedback("u1", batch.items[0].id, "five stars")


def test_merge_signals():
    merged = merge_signals(
        FeedbackSignal(edited_texts=["a"], issue_tags=["x"], feedback_ids=["1"]),
        None,
        FeedbackSignal(edited_texts=["a", "b"], issue_tags=["y"], feedback_ids=["1", "2"]),
    )
    assert merged == FeedbackSignal(
        edited_texts=["a", "b"], issue_tags=["x", "y"], feedback_ids=["1", "2"]
    )


def test_merge_signals_keeps_newest():
    merged = merge_signals(
        FeedbackSignal(edited_texts=["a", "b"], feedback_ids=["1", "2"]),
        FeedbackSignal(edited_texts=["c"], issue_tags=["x"], feedback_ids=["3"]),
        limit=2,
    )
    assert merged == FeedbackSignal(
        edited_texts=["b", "c"], issue_tags=["x"], feedback_ids=["2", "3"]
    )


@pytest.mark.asyncio
async def test_feedback_signal_is_capped_across_versions(
    repository, engine, raw_posts, sample_utc_now
):
    settings = Settings(synthesis=SynthesisConfig(max_feedback_signal=2))
    service = VoiceDNAService(repository, engine=engine, settings=settings)
    await service.ingest("u1", "instagram", raw_posts)

    for n in range(4):
        await service.synthesize_profile(
            "u1", "instagram",
            feedback=FeedbackSignal(edited_texts=[f"edit {n}"], feedback_ids=[f"f{n}"]),
            now=sample_utc_now + timedelta(hours=n),
        )

    profile = await service.get_profile("u1", "instagram")
    assert profile.version == "1.3.0"
    assert profile.feedback_signal.edited_texts == ["edit 2", "edit 3"]
    assert profile.feedback_signal.feedback_ids == ["f2", "f3"]


# ===========================================================================
# Multi-platform analysis
# ===========================================================================


class TestAnalyzeAccounts:
    @pytest.mark.asyncio
    async def test_partial_failure(self, repository, engine, settings, raw_posts, store):
        scraper = FakeScraper(
            {Platform.INSTAGRAM: raw_posts, Platform.LINKEDIN: raw_posts[:3]},
            errors={Platform.TWITTER: "rate limited"},
        )
        service = VoiceDNAService(repository, engine=engine, scraper=scraper, settings=settings)

        report = await service.analyze_accounts(
            "u1", {"instagram": "@coffee.jane", "twitter": "jane", "linkedin": "jane-doe"}
        )

        (targets, limit), = scraper.calls
        assert limit == 50
        assert targets[0].username == "coffee.jane"

        instagram = report.results["instagram"]
        assert instagram.success is True
        assert instagram.posts_ingested == 12
        assert instagram.profile_version == "1.0.0"
        assert instagram.confidence > 0

        twitter = report.results["twitter"]
        assert twitter.success is False
        assert twitter.error == "rate limited"

        linkedin = report.results["linkedin"]
        assert linkedin.success is True
        assert linkedin.profile_version is None
        assert linkedin.error.startswith("Only 3 posts available")

        assert report.synthesized == ["instagram"]
        assert len(await store.query("raw_scrapes", {"user_id": "u1"})) == 3

    @pytest.mark.asyncio
    async def test_synthesis_failure_is_per_platform(
        self, repository, engine, settings, raw_posts, monkeypatch
    ):
        scraper = FakeScraper({Platform.INSTAGRAM: raw_posts, Platform.LINKEDIN: raw_posts})
        service = VoiceDNAService(repository, engine=engine, scraper=scraper, settings=settings)
        real_synthesize = service.synthesize_profile

        async def racing_synthesize(user_id, platform, **kwargs):
            if platform is Platform.INSTAGRAM:
                raise ConflictError("race")
            return await real_synthesize(user_id, platform, **kwargs)

        monkeypatch.setattr(service, "synthesize_profile", racing_synthesize)

        report = await service.analyze_accounts(
            "u1", {"instagram": "jane", "linkedin": "jane-doe"}
        )

        instagram = report.results["instagram"]
        assert instagram.success is False
        assert instagram.posts_ingested == 12
        assert instagram.error == "race"
        assert report.results["linkedin"].profile_version == "1.0.0"
        assert report.synthesized == ["linkedin"]

    @pytest.mark.asyncio
    async def test_store_failure_is_per_platform(
        self, repository, engine, settings, raw_posts, monkeypatch
    ):
        scraper = FakeScraper({Platform.INSTAGRAM: raw_posts, Platform.TWITTER: raw_posts})
        service = VoiceDNAService(repository, engine=engine, scraper=scraper, settings=settings)
        real_ingest = service.ingest

        async def broken_ingest(user_id, platform, raw):
            if platform is Platform.INSTAGRAM:
                raise DatabaseError("connection reset")
            return await real_ingest(user_id, platform, raw)

        monkeypatch.setattr(service, "ingest", broken_ingest)

        report = await service.analyze_accounts("u1", {"instagram": "jane", "twitter": "jane"})

        instagram = report.results["instagram"]
        assert instagram.success is False
        assert "connection reset" not in instagram.error
        assert report.results["twitter"].posts_ingested == 12
        assert report.synthesized == ["twitter"]

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, repository, settings):
        scraper = FakeScraper({})
        service = VoiceDNAService(repository, scraper=scraper, settings=settings)
        await service.analyze_accounts("u1", {"twitter": "jane"}, limit=500)
        assert scraper.calls[0][1] == 100

    @pytest.mark.asyncio
    async def test_requires_scraper(self, service):
        with pytest.raises(ConfigurationError):
            await service.analyze_accounts("u1", {"twitter": "jane"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("accounts", [{}, {"twitter": " "}, {"myspace": "jane"}])
    async def test_invalid_accounts(self, repository, settings, accounts):
        service = VoiceDNAService(repository, scraper=FakeScraper({}), settings=settings)
        with pytest.raises(InvalidArgumentError):
            await service.analyze_accounts("u1", accounts)


# ===========================================================================
# Identity
# ===========================================================================


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_fake_verifier(self, repository, settings):
        service = VoiceDNAService(repository, identity=FakeVerifier(), settings=settings)
        assert await service.authenticate("good-token") == "u1"
        with pytest.raises(UnauthenticatedError):
            await service.authenticate("forged")

    @pytest.mark.asyncio
    async def test_no_verifier(self, service):
        with pytest.raises(ConfigurationError):
            await service.authenticate("good-token")


class TestSupabaseIdentityVerifier:
    @pytest.mark.asyncio
    async def test_bearer_prefix_stripped(self):
        client = MagicMock()
        client.auth.get_user = AsyncMock(return_value=MagicMock(user=MagicMock(id="u1")))
        verifier = SupabaseIdentityVerifier(client)

        assert await verifier.verify("Bearer abc.def") == "u1"
        client.auth.get_user.assert_awaited_once_with("abc.def")

    @pytest.mark.asyncio
    async def test_missing_token(self):
        with pytest.raises(UnauthenticatedError, match="Missing"):
            await SupabaseIdentityVerifier(MagicMock()).verify("  ")

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        client = MagicMock()
        client.auth.get_user = AsyncMock(side_effect=AuthError("invalid JWT", None))
        with pytest.raises(UnauthenticatedError, match="Invalid or expired"):
            await SupabaseIdentityVerifier(client).verify("forged")

    @pytest.mark.asyncio
    async def test_no_user_in_response(self):
        client = MagicMock()
        client.auth.get_user = AsyncMock(return_value=None)
        with pytest.raises(UnauthenticatedError):
            await SupabaseIdentityVerifier(client).verify("expired")
