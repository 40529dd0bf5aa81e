"""
Tests for the WorkoutComposer state machine.

Covers the three end-to-end scenarios (generated, cache hit, fallback),
the retry budget, timeout routing, single-flight coalescing, cancellation
of one waiter, usage limits, history and feedback.
"""
import asyncio
import logging
from dataclasses import replace

import pytest

from services.workout_composition.catalog import InMemoryExerciseCatalog
from services.workout_composition.composer import (
    ComposerConfig,
    CompositionState,
    RetryPolicy,
    WorkoutComposer,
)
from services.workout_composition.composition_cache import CompositionCache, InMemoryCacheStore
from services.workout_composition.constants import (
    DailyFocus,
    FeedbackRating,
    PhaseKind,
    PlanProvenance,
    WorkoutIntensity,
)
from services.workout_composition.errors import (
    ClientError,
    ComposerError,
    ComposerErrorCode,
    ResponseValidationError,
    ValidationErrorCode,
)
from services.workout_composition.history import InMemoryHistoryRepository

from conftest import ScriptedClient, bench_press_reply


def _composer(catalog, client=None, history=None, **config):
    return WorkoutComposer(
        catalog=catalog,
        cache=CompositionCache(InMemoryCacheStore()),
        client=client,
        history=history,
        config=ComposerConfig(**config),
    )


class SlowSecondReadStore(InMemoryCacheStore):
    """Second read returns what it saw, but only after a delay."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay
        self.reads = 0

    async def get(self, key):
        self.reads += 1
        value = await super().get(key)
        if self.reads == 2:
            await asyncio.sleep(self.delay)
        return value


class BrokenHistory:
    async def list_recent(self, limit):
        raise RuntimeError("database is down")

    async def list_recent_completed_plans(self, limit):
        raise RuntimeError("database is down")

    async def list_recent_ratings(self, limit):
        raise RuntimeError("database is down")


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------

class TestScenarios:

    @pytest.mark.asyncio
    async def test_scenario_a_generated_plan(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply())
        composer = _composer(catalog, client)

        result = await composer.compose(hypertrophy_profile, upper_check_in)

        assert result.blueprint.phase_kinds == [
            PhaseKind.WARMUP, PhaseKind.STRENGTH, PhaseKind.ACCESSORY, PhaseKind.COOLDOWN,
        ]
        assert result.plan.title == "Upper Body Strength"
        assert result.provenance == PlanProvenance.GENERATED
        assert result.plan.exercise_names() == ["Bench Press"]
        assert result.from_cache is False
        assert result.attempts == 1
        assert result.states == [
            CompositionState.CACHE_CHECK,
            CompositionState.GENERATE,
            CompositionState.VALIDATE,
            CompositionState.DONE,
        ]

        _, user_text = client.requests[0]
        assert "Goal: hypertrophy" in user_text
        assert "Allowed equipment: barbell, dumbbell, machine" in user_text

    @pytest.mark.asyncio
    async def test_scenario_b_cache_hit(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply())
        composer = _composer(catalog, client)

        first = await composer.compose(hypertrophy_profile, upper_check_in)
        second = await composer.compose(hypertrophy_profile, upper_check_in)

        assert client.calls == 1
        assert second.from_cache is True
        assert second.plan == first.plan
        assert second.cache_key == first.cache_key
        assert second.states == [CompositionState.CACHE_CHECK, CompositionState.DONE]

    @pytest.mark.asyncio
    async def test_scenario_c_fallback_after_http_500(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(ClientError.http_error(500, "internal error"))
        composer = _composer(catalog, client)

        result = await composer.compose(hypertrophy_profile, upper_check_in)

        assert client.calls == 3  # first attempt + 2 retries
        assert result.provenance == PlanProvenance.FALLBACK
        assert result.plan.provenance == PlanProvenance.FALLBACK
        assert result.plan.exercise_names()
        assert result.errors == ["http_error"] * 3
        assert result.states[-2:] == [CompositionState.FALLBACK, CompositionState.DONE]


# ---------------------------------------------------------------------------
# Retry budget
# ---------------------------------------------------------------------------

class TestRetries:

    @pytest.mark.asyncio
    async def test_invalid_replies_are_retried_with_the_same_prompt(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient("not json at all", '{"phases": []}', bench_press_reply())
        composer = _composer(catalog, client)

        result = await composer.compose(hypertrophy_profile, upper_check_in)

        assert result.provenance == PlanProvenance.GENERATED
        assert result.attempts == 3
        assert result.errors == ["invalid_json", "missing_phases"]
        assert len({request for request in client.requests}) == 1
        assert result.states.count(CompositionState.RETRY) == 2

    @pytest.mark.asyncio
    async def test_retry_budget_is_configurable(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient("garbage")
        composer = _composer(catalog, client, max_retries=0)

        result = await composer.compose(hypertrophy_profile, upper_check_in)

        assert client.calls == 1
        assert result.provenance == PlanProvenance.FALLBACK

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ClientError.http_error(401, "bad key"),
        ClientError.http_error(400, "bad request"),
        ClientError.missing_credential(),
    ])
    async def test_non_retryable_errors_go_straight_to_fallback(
        self, catalog, hypertrophy_profile, upper_check_in, error
    ):
        client = ScriptedClient(error)
        result = await _composer(catalog, client).compose(hypertrophy_profile, upper_check_in)

        assert client.calls == 1
        assert result.provenance == PlanProvenance.FALLBACK

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(ClientError.http_error(429, "slow down"), bench_press_reply())
        result = await _composer(catalog, client).compose(hypertrophy_profile, upper_check_in)

        assert client.calls == 2
        assert result.provenance == PlanProvenance.GENERATED

    @pytest.mark.asyncio
    async def test_unexpected_client_exception_is_contained(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(RuntimeError("sdk bug"))
        result = await _composer(catalog, client).compose(hypertrophy_profile, upper_check_in)

        assert client.calls == 3
        assert result.provenance == PlanProvenance.FALLBACK
        assert result.errors == ["unexpected_error"] * 3

    def test_retry_policy(self):
        policy = RetryPolicy(max_retries=2)
        invalid = ResponseValidationError(ValidationErrorCode.INVALID_JSON)

        assert policy.should_retry(1, invalid)
        assert policy.should_retry(2, invalid)
        assert not policy.should_retry(3, invalid)
        assert not policy.should_retry(1, ClientError.http_error(403, "forbidden"))
        assert policy.should_retry(1, ClientError.http_error(0, "connection refused"))


# ---------------------------------------------------------------------------
# Timeout
# ---------------------------------------------------------------------------

class TestTimeout:

    @pytest.mark.asyncio
    async def test_timeout_routes_to_fallback(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply(), delay=0.5)
        composer = _composer(catalog, client, timeout_s=0.05)

        result = await composer.compose(hypertrophy_profile, upper_check_in)

        assert result.provenance == PlanProvenance.FALLBACK
        assert "timeout" in result.errors
        assert client.calls == 1


# ---------------------------------------------------------------------------
# Single-flight
# ---------------------------------------------------------------------------

class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_generation(
        self, catalog, hypertrophy_profile, upper_check_in
    ):
        client = ScriptedClient(bench_press_reply(), delay=0.05)
        composer = _composer(catalog, client)

        results = await asyncio.gather(*[
            composer.compose(hypertrophy_profile, upper_check_in) for _ in range(5)
        ])

        assert client.calls == 1
        assert all(r.plan == results[0].plan for r in results)
        assert composer.in_flight() == 0

    @pytest.mark.asyncio
    async def test_different_keys_do_not_coalesce(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply(), delay=0.02)
        composer = _composer(catalog, client)
        other_user = replace(hypertrophy_profile, user_id="user-2")

        await asyncio.gather(
            composer.compose(hypertrophy_profile, upper_check_in),
            composer.compose(other_user, upper_check_in),
        )
        assert client.calls == 2

    @pytest.mark.asyncio
    async def test_cancelling_one_waiter_keeps_the_shared_build(
        self, catalog, hypertrophy_profile, upper_check_in
    ):
        client = ScriptedClient(bench_press_reply(), delay=0.05)
        composer = _composer(catalog, client)

        first = asyncio.ensure_future(composer.compose(hypertrophy_profile, upper_check_in))
        second = asyncio.ensure_future(composer.compose(hypertrophy_profile, upper_check_in))
        await asyncio.sleep(0.01)
        first.cancel()

        result = await second
        with pytest.raises(asyncio.CancelledError):
            await first

        assert result.provenance == PlanProvenance.GENERATED
        assert client.calls == 1

        cached = await composer.compose(hypertrophy_profile, upper_check_in)
        assert cached.from_cache is True

    @pytest.mark.asyncio
    async def test_cancelling_the_only_waiter_still_caches(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply(), delay=0.02)
        composer = _composer(catalog, client)

        waiter = asyncio.ensure_future(composer.compose(hypertrophy_profile, upper_check_in))
        await asyncio.sleep(0.005)
        waiter.cancel()
        await asyncio.sleep(0.05)

        result = await composer.compose(hypertrophy_profile, upper_check_in)
        assert result.from_cache is True
        assert client.calls == 1

    @pytest.mark.asyncio
    async def test_caller_with_a_slow_cache_read_joins_the_finished_build(
        self, catalog, hypertrophy_profile, upper_check_in
    ):
        store = SlowSecondReadStore(delay=0.1)
        client = ScriptedClient(bench_press_reply(), delay=0.05)
        composer = WorkoutComposer(catalog=catalog, cache=CompositionCache(store), client=client)

        first, second = await asyncio.gather(
            composer.compose(hypertrophy_profile, upper_check_in),
            composer.compose(hypertrophy_profile, upper_check_in),
        )

        assert client.calls == 1
        assert first.provenance == PlanProvenance.GENERATED
        assert second.from_cache is True
        assert second.plan == first.plan
        assert composer.in_flight() == 0


# ---------------------------------------------------------------------------
# Fallback policy and terminal errors
# ---------------------------------------------------------------------------

class TestFallbackPolicy:

    @pytest.mark.asyncio
    async def test_fallback_plans_are_cached_briefly(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(ClientError.http_error(503, "unavailable"))
        composer = _composer(catalog, client)

        await composer.compose(hypertrophy_profile, upper_check_in)
        again = await composer.compose(hypertrophy_profile, upper_check_in)

        assert again.from_cache is True
        assert again.provenance == PlanProvenance.FALLBACK
        assert client.calls == 3

    @pytest.mark.asyncio
    async def test_fallback_caching_can_be_disabled(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(ClientError.http_error(503, "unavailable"))
        composer = _composer(catalog, client, cache_fallback_plans=False)

        await composer.compose(hypertrophy_profile, upper_check_in)
        again = await composer.compose(hypertrophy_profile, upper_check_in)

        assert again.from_cache is False
        assert client.calls == 6

    @pytest.mark.asyncio
    async def test_generation_not_allowed_composes_locally(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply())
        composer = _composer(catalog, client)

        result = await composer.compose(hypertrophy_profile, upper_check_in, allow_generation=False)
        again = await composer.compose(hypertrophy_profile, upper_check_in, allow_generation=False)

        assert client.calls == 0
        assert result.provenance == PlanProvenance.LOCAL
        assert again.from_cache is False
        assert result.states == [
            CompositionState.CACHE_CHECK, CompositionState.FALLBACK, CompositionState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_no_client_composes_locally(self, catalog, hypertrophy_profile, upper_check_in):
        result = await _composer(catalog, None).compose(hypertrophy_profile, upper_check_in)
        assert result.provenance == PlanProvenance.LOCAL

    @pytest.mark.asyncio
    async def test_remote_and_local_failure_raise_composer_error(self, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(ClientError.http_error(500, "boom"))
        composer = _composer(InMemoryExerciseCatalog([]), client)

        with pytest.raises(ComposerError) as excinfo:
            await composer.compose(hypertrophy_profile, upper_check_in)

        assert excinfo.value.code == ComposerErrorCode.NO_COMPATIBLE_BLOCKS
        assert composer.in_flight() == 0

    @pytest.mark.asyncio
    async def test_disabled_fallback_raises_all_attempts_exhausted(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient("garbage")
        composer = _composer(catalog, client, fallback_enabled=False)

        with pytest.raises(ComposerError) as excinfo:
            await composer.compose(hypertrophy_profile, upper_check_in)

        assert excinfo.value.code == ComposerErrorCode.ALL_ATTEMPTS_EXHAUSTED


# ---------------------------------------------------------------------------
# Usage limit, history and feedback
# ---------------------------------------------------------------------------

class TestUsageLimit:

    @pytest.mark.asyncio
    async def test_over_the_daily_limit_composes_locally(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply())
        composer = _composer(catalog, client, daily_generation_limit=1)

        first = await composer.compose(hypertrophy_profile, upper_check_in)
        lower = replace(upper_check_in, focus=DailyFocus.LOWER)
        second = await composer.compose(hypertrophy_profile, lower)

        assert first.provenance == PlanProvenance.GENERATED
        assert second.provenance == PlanProvenance.LOCAL
        assert client.calls == 1

    @pytest.mark.asyncio
    async def test_retries_count_as_one_generation(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient("garbage", bench_press_reply())
        composer = _composer(catalog, client, daily_generation_limit=2)

        await composer.compose(hypertrophy_profile, upper_check_in)
        assert await composer.usage_limiter.used(hypertrophy_profile.user_id, upper_check_in.day) == 1


class TestHistory:

    @pytest.mark.asyncio
    async def test_recent_exercises_are_prohibited_and_scored(self, catalog, hypertrophy_profile, upper_check_in):
        seeded = await _composer(catalog, ScriptedClient(bench_press_reply())).compose(
            hypertrophy_profile, upper_check_in
        )
        history = InMemoryHistoryRepository(plans=[seeded.plan])
        client = ScriptedClient(bench_press_reply())

        result = await _composer(catalog, client, history=history).compose(hypertrophy_profile, upper_check_in)

        _, user_text = client.requests[0]
        assert "## PROHIBITED EXERCISES" in user_text
        assert "- Bench Press" in user_text
        assert result.diversity == 0.0

    @pytest.mark.asyncio
    async def test_per_call_history_overrides_the_default(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply())
        composer = _composer(catalog, client, history=BrokenHistory())

        result = await composer.compose(hypertrophy_profile, upper_check_in, history=InMemoryHistoryRepository())
        assert result.provenance == PlanProvenance.GENERATED
        assert result.diversity == 1.0

    @pytest.mark.asyncio
    async def test_broken_history_does_not_break_composition(self, catalog, hypertrophy_profile, upper_check_in):
        client = ScriptedClient(bench_press_reply())
        result = await _composer(catalog, client, history=BrokenHistory()).compose(hypertrophy_profile, upper_check_in)
        assert result.provenance == PlanProvenance.GENERATED


class TestFeedback:

    @pytest.mark.asyncio
    async def test_too_hard_majority_lowers_intensity(self, catalog, hypertrophy_profile, upper_check_in):
        baseline = await _composer(catalog).compose(hypertrophy_profile, upper_check_in)
        plans = [baseline.plan] * 3
        history = InMemoryHistoryRepository(plans=plans, ratings=[FeedbackRating.TOO_HARD] * 3)

        result = await _composer(catalog, history=history).compose(hypertrophy_profile, upper_check_in)

        assert baseline.blueprint.intensity == WorkoutIntensity.HIGH
        assert result.blueprint.intensity == WorkoutIntensity.MODERATE
        assert result.plan.intensity == WorkoutIntensity.MODERATE
        assert result.cache_key != baseline.cache_key

    @pytest.mark.asyncio
    async def test_mixed_ratings_change_nothing(self, catalog, hypertrophy_profile, upper_check_in):
        baseline = await _composer(catalog).compose(hypertrophy_profile, upper_check_in)
        ratings = [FeedbackRating.TOO_HARD, FeedbackRating.TOO_EASY, FeedbackRating.JUST_RIGHT]
        history = InMemoryHistoryRepository(plans=[baseline.plan] * 3, ratings=ratings)

        result = await _composer(catalog, history=history).compose(hypertrophy_profile, upper_check_in)
        assert result.cache_key == baseline.cache_key


class TestConfig:

    def test_from_settings(self):
        from core.config import Settings

        settings = Settings(
            COMPOSITION_RETRY_ATTEMPTS=1,
            COMPOSITION_TIMEOUT_S=30.0,
            FALLBACK_CACHE_TTL_S=600,
            DAILY_GENERATION_LIMIT=5,
            GENERATION_ENABLED=False,
        )
        config = ComposerConfig.from_settings(settings)

        assert config.max_retries == 1
        assert config.timeout_s == 30.0
        assert config.fallback_cache_ttl_s == 600
        assert config.daily_generation_limit == 5
        assert config.generation_enabled is False

    def test_defaults(self):
        config = ComposerConfig()
        assert config.max_retries == 2
        assert config.cache_ttl_s == 86400
        assert config.fallback_cache_ttl_s == 1800


# ---------------------------------------------------------------------------
# Structured log fields
# ---------------------------------------------------------------------------

class TestStructuredLogging:

    @pytest.mark.asyncio
    async def test_cache_hit_carries_composition_fields(self, caplog, catalog, hypertrophy_profile, upper_check_in):
        composer = _composer(catalog, ScriptedClient(bench_press_reply()))
        first = await composer.compose(hypertrophy_profile, upper_check_in)

        with caplog.at_level(logging.INFO, logger="services.workout_composition.composer"):
            await composer.compose(hypertrophy_profile, upper_check_in)

        hit = next(r for r in caplog.records if r.getMessage() == "Composition cache hit")
        assert hit.extra_fields == {
            "cache_key": first.cache_key[:12],
            "state": "cache_check",
            "provenance": "generated",
            "attempts": 0,
        }

    @pytest.mark.asyncio
    async def test_failed_attempts_and_fallback_carry_fields(self, caplog, catalog, hypertrophy_profile, upper_check_in):
        composer = _composer(catalog, ScriptedClient("not json"), max_retries=0)

        with caplog.at_level(logging.INFO, logger="services.workout_composition.composer"):
            result = await composer.compose(hypertrophy_profile, upper_check_in)

        fields = [r.extra_fields for r in caplog.records if hasattr(r, "extra_fields")]
        rejected = next(f for f in fields if f.get("error_code"))
        assert rejected["state"] == "validate"
        assert rejected["attempts"] == 1
        assert fields[-1] == {
            "cache_key": result.cache_key[:12],
            "state": "fallback",
            "provenance": "fallback",
            "attempts": 1,
        }
