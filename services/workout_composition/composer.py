"""
Workout Composer

Orchestrates one composition request as an explicit state machine:

    CACHE_CHECK -> GENERATE -> VALIDATE -> DONE
                      ^           |
                      |        (failure)
                      +-- RETRY <-+
                            |
                     (budget spent / not retryable / timeout)
                            v
                         FALLBACK -> DONE

- A live cache entry ends the request at CACHE_CHECK.
- Retries are sequential and bounded by ComposerConfig.max_retries.
- The whole generation phase runs under ComposerConfig.timeout_s; hitting
  it goes straight to FALLBACK.
- Concurrent requests with the same cache key share one build. A caller
  that is cancelled only detaches itself; the shared build keeps running
  for the other waiters. A build re-reads the cache before generating, so a
  caller that missed the cache just as another build finished reuses it.

Client and validation errors never escape. The only error a caller can see
is ComposerError, when the local composer cannot fill the primary block
after generation failed or was unavailable.

Usage:
    composer = WorkoutComposer(catalog=catalog, cache=cache, client=client, config=config)
    result = await composer.compose(profile, check_in)
    result.plan, result.provenance, result.from_cache
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from core.logging import log_fields
from services.workout_composition.blueprint_engine import BlueprintEngine, step_intensity, with_intensity
from services.workout_composition.catalog import ExerciseCatalog
from services.workout_composition.composition_cache import (
    CACHE_TTL_S,
    CompositionCache,
    FALLBACK_CACHE_TTL_S,
)
from services.workout_composition.constants import FeedbackRating, PlanProvenance
from services.workout_composition.errors import (
    ClientError,
    ComposerError,
    ComposerErrorCode,
    ResponseValidationError,
)
from services.workout_composition.fallback_composer import LocalFallbackComposer
from services.workout_composition.feedback import FeedbackAnalyzer, diversity_score
from services.workout_composition.generative_client import GenerativeClient
from services.workout_composition.history import HistoryRepository
from services.workout_composition.models import (
    Blueprint,
    CacheEntry,
    CatalogExercise,
    DailyCheckIn,
    UserProfile,
    WorkoutPlan,
)
from services.workout_composition.prompt_assembler import PromptAssembler, WorkoutPrompt, compute_cache_key
from services.workout_composition.response_validator import ResponseValidator, ValidationPolicy
from services.workout_composition.usage_limiter import UsageLimiter

logger = logging.getLogger(__name__)


class CompositionState(str, Enum):
    CACHE_CHECK = "cache_check"
    GENERATE = "generate"
    VALIDATE = "validate"
    RETRY = "retry"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass(frozen=True)
class ComposerConfig:
    """Everything the composer needs to know about policy. Built once at startup."""
    max_retries: int = 2  # additional attempts after the first
    timeout_s: float = 90.0
    cache_ttl_s: int = CACHE_TTL_S
    fallback_cache_ttl_s: int = FALLBACK_CACHE_TTL_S
    cache_fallback_plans: bool = True
    history_limit: int = 7
    prohibited_plan_limit: int = 3
    exercise_count_slack: int = 2
    generation_enabled: bool = True
    fallback_enabled: bool = True
    daily_generation_limit: Optional[int] = None  # None = unlimited

    @classmethod
    def from_settings(cls, settings: Any) -> "ComposerConfig":
        return cls(
            max_retries=settings.COMPOSITION_RETRY_ATTEMPTS,
            timeout_s=settings.COMPOSITION_TIMEOUT_S,
            cache_ttl_s=settings.COMPOSITION_CACHE_TTL_S,
            fallback_cache_ttl_s=settings.FALLBACK_CACHE_TTL_S,
            cache_fallback_plans=settings.CACHE_FALLBACK_PLANS,
            history_limit=settings.HISTORY_LIMIT,
            prohibited_plan_limit=settings.PROHIBITED_PLAN_LIMIT,
            exercise_count_slack=settings.EXERCISE_COUNT_SLACK,
            generation_enabled=settings.GENERATION_ENABLED,
            daily_generation_limit=settings.DAILY_GENERATION_LIMIT,
        )


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int

    def should_retry(self, attempts: int, error: Optional[Exception]) -> bool:
        """`attempts` counts every generation call made so far, the first included."""
        if attempts > self.max_retries:
            return False
        return getattr(error, "retryable", True)


@dataclass
class GenerationTrace:
    """What happened during GENERATE/VALIDATE/RETRY; survives a timeout."""
    attempts: int = 0
    states: List[CompositionState] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class CompositionResult:
    plan: WorkoutPlan
    cache_key: str
    provenance: PlanProvenance
    blueprint: Blueprint
    from_cache: bool = False
    attempts: int = 0
    errors: List[str] = field(default_factory=list)
    states: List[CompositionState] = field(default_factory=list)
    diversity: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "cache_key": self.cache_key,
            "provenance": self.provenance.value,
            "from_cache": self.from_cache,
            "attempts": self.attempts,
            "errors": list(self.errors),
            "states": [s.value for s in self.states],
            "diversity": self.diversity,
        }


class WorkoutComposer:

    def __init__(
        self,
        catalog: ExerciseCatalog,
        cache: CompositionCache,
        client: Optional[GenerativeClient] = None,
        history: Optional[HistoryRepository] = None,
        config: Optional[ComposerConfig] = None,
        engine: Optional[BlueprintEngine] = None,
        assembler: Optional[PromptAssembler] = None,
        validator: Optional[ResponseValidator] = None,
        fallback: Optional[LocalFallbackComposer] = None,
        usage_limiter: Optional[UsageLimiter] = None,
        feedback_analyzer: Optional[FeedbackAnalyzer] = None,
    ):
        self.config = config or ComposerConfig()
        self.catalog = catalog
        self.cache = cache
        self.client = client
        self.history = history
        self.engine = engine or BlueprintEngine()
        self.assembler = assembler or PromptAssembler(prohibited_plan_limit=self.config.prohibited_plan_limit)
        self.validator = validator or ResponseValidator(
            ValidationPolicy(exercise_count_slack=self.config.exercise_count_slack)
        )
        self.fallback = fallback or LocalFallbackComposer()
        self.usage_limiter = usage_limiter
        if self.usage_limiter is None and self.config.daily_generation_limit is not None:
            self.usage_limiter = UsageLimiter(self.config.daily_generation_limit)
        self.feedback_analyzer = feedback_analyzer or FeedbackAnalyzer()
        self.retry_policy = RetryPolicy(self.config.max_retries)
        self._inflight: Dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def compose(
        self,
        profile: UserProfile,
        check_in: DailyCheckIn,
        seed: Optional[int] = None,
        history: Optional[HistoryRepository] = None,
        allow_generation: bool = True,
    ) -> CompositionResult:
        blueprint = self.engine.generate_blueprint(profile, check_in, seed)
        recent_plans, ratings = await self._load_history(history if history is not None else self.history)
        blueprint = self._apply_feedback(blueprint, ratings)
        cache_key = compute_cache_key(profile, check_in, blueprint)

        # CACHE_CHECK
        entry = await self.cache.get(cache_key)
        if entry is not None:
            return self._cached_result(entry, cache_key, blueprint)

        # No await between this lookup and registration
        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(
                self._build(cache_key, profile, check_in, blueprint, recent_plans, allow_generation)
            )
            self._inflight[cache_key] = task
            task.add_done_callback(partial(self._on_build_done, cache_key))
        else:
            logger.info(
                "Joining in-flight composition",
                extra=log_fields(cache_key=cache_key, state=CompositionState.CACHE_CHECK, user_id=profile.user_id),
            )

        return await asyncio.shield(task)

    def in_flight(self) -> int:
        return len(self._inflight)

    # ------------------------------------------------------------------
    # Build (runs once per cache key at a time)
    # ------------------------------------------------------------------

    def _cached_result(self, entry: CacheEntry, cache_key: str, blueprint: Blueprint) -> CompositionResult:
        logger.info(
            "Composition cache hit",
            extra=log_fields(
                cache_key=cache_key,
                state=CompositionState.CACHE_CHECK,
                provenance=entry.provenance,
                attempts=0,
            ),
        )
        return CompositionResult(
            plan=entry.plan,
            cache_key=cache_key,
            provenance=entry.provenance,
            blueprint=blueprint,
            from_cache=True,
            states=[CompositionState.CACHE_CHECK, CompositionState.DONE],
        )

    def _on_build_done(self, cache_key: str, task: asyncio.Future) -> None:
        if self._inflight.get(cache_key) is task:
            del self._inflight[cache_key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Composition failed: {task.exception()}",
                extra=log_fields(cache_key=cache_key),
            )

    async def _build(
        self,
        cache_key: str,
        profile: UserProfile,
        check_in: DailyCheckIn,
        blueprint: Blueprint,
        recent_plans: List[WorkoutPlan],
        allow_generation: bool,
    ) -> CompositionResult:
        # A build for this key may have finished while the caller was reading the cache
        entry = await self.cache.get(cache_key)
        if entry is not None:
            return self._cached_result(entry, cache_key, blueprint)

        catalog = self.catalog.list_exercises(profile.structure, blueprint.equipment_constraints, profile.level)
        trace = GenerationTrace(states=[CompositionState.CACHE_CHECK])

        generate = await self._generation_allowed(profile, check_in, allow_generation)
        if generate:
            prompt = self.assembler.assemble(blueprint, catalog, profile, check_in, recent_plans)
            plan = await self._generate_with_timeout(prompt, blueprint, catalog, trace)
            if self.usage_limiter is not None and trace.attempts:
                await self.usage_limiter.record_generation(profile.user_id, check_in.day)
            if plan is not None:
                trace.states.append(CompositionState.DONE)
                await self.cache.put(cache_key, plan, blueprint=blueprint, ttl_seconds=self.config.cache_ttl_s)
                diversity = diversity_score(plan, recent_plans)
                logger.info(
                    f"Composed via generation, diversity={diversity:.2f}",
                    extra=log_fields(
                        cache_key=cache_key,
                        state=CompositionState.DONE,
                        provenance=PlanProvenance.GENERATED,
                        attempts=trace.attempts,
                    ),
                )
                return CompositionResult(
                    plan=plan,
                    cache_key=cache_key,
                    provenance=PlanProvenance.GENERATED,
                    blueprint=blueprint,
                    attempts=trace.attempts,
                    errors=trace.errors,
                    states=trace.states,
                    diversity=diversity,
                )
            if not self.config.fallback_enabled:
                raise ComposerError(
                    ComposerErrorCode.ALL_ATTEMPTS_EXHAUSTED,
                    f"{trace.attempts} attempt(s) failed: {', '.join(trace.errors)}",
                )
            provenance = PlanProvenance.FALLBACK
        else:
            provenance = PlanProvenance.LOCAL

        # FALLBACK
        trace.states.append(CompositionState.FALLBACK)
        try:
            plan = self.fallback.compose(catalog, profile, check_in, blueprint, provenance=provenance)
        except ComposerError as e:
            logger.error(
                f"Local composer could not build a plan: {e}",
                extra=log_fields(
                    cache_key=cache_key,
                    state=CompositionState.FALLBACK,
                    provenance=provenance,
                    attempts=trace.attempts,
                ),
            )
            raise

        if provenance == PlanProvenance.FALLBACK and self.config.cache_fallback_plans:
            await self.cache.put(cache_key, plan, blueprint=blueprint, ttl_seconds=self.config.fallback_cache_ttl_s)

        trace.states.append(CompositionState.DONE)
        logger.info(
            f"Composed locally after errors={trace.errors}",
            extra=log_fields(
                cache_key=cache_key,
                state=CompositionState.FALLBACK,
                provenance=provenance,
                attempts=trace.attempts,
            ),
        )
        return CompositionResult(
            plan=plan,
            cache_key=cache_key,
            provenance=provenance,
            blueprint=blueprint,
            attempts=trace.attempts,
            errors=trace.errors,
            states=trace.states,
            diversity=diversity_score(plan, recent_plans),
        )

    async def _generation_allowed(self, profile: UserProfile, check_in: DailyCheckIn, allow_generation: bool) -> bool:
        if not (allow_generation and self.config.generation_enabled and self.client is not None):
            return False
        if self.usage_limiter is not None and not await self.usage_limiter.can_generate(profile.user_id, check_in.day):
            logger.info(f"Daily generation limit reached for user {profile.user_id}")
            return False
        return True

    async def _generate_with_timeout(
        self,
        prompt: WorkoutPrompt,
        blueprint: Blueprint,
        catalog: List[CatalogExercise],
        trace: GenerationTrace,
    ) -> Optional[WorkoutPlan]:
        try:
            return await asyncio.wait_for(
                self._generate(prompt, blueprint, catalog, trace),
                timeout=self.config.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Generation timed out after {self.config.timeout_s}s",
                extra=log_fields(
                    cache_key=prompt.cache_key,
                    state=trace.states[-1] if trace.states else CompositionState.GENERATE,
                    attempts=trace.attempts,
                ),
            )
            trace.errors.append("timeout")
            return None

    async def _generate(
        self,
        prompt: WorkoutPrompt,
        blueprint: Blueprint,
        catalog: List[CatalogExercise],
        trace: GenerationTrace,
    ) -> Optional[WorkoutPlan]:
        """GENERATE / VALIDATE / RETRY loop. Returns None when the retry budget is spent."""
        state = CompositionState.GENERATE
        raw = None
        last_error: Optional[Exception] = None

        while True:
            trace.states.append(state)

            if state == CompositionState.GENERATE:
                trace.attempts += 1
                try:
                    raw = await self.client.generate(prompt.system_text, prompt.user_text)
                    state = CompositionState.VALIDATE
                except ClientError as e:
                    last_error = e
                    trace.errors.append(e.code.value)
                    logger.warning(
                        f"Generation attempt failed: {e}",
                        extra=log_fields(cache_key=prompt.cache_key, state=state, attempts=trace.attempts),
                    )
                    state = CompositionState.RETRY
                except Exception as e:
                    last_error = e
                    trace.errors.append("unexpected_error")
                    logger.exception(
                        f"Generation attempt raised unexpectedly: {e}",
                        extra=log_fields(cache_key=prompt.cache_key, state=state, attempts=trace.attempts),
                    )
                    state = CompositionState.RETRY

            elif state == CompositionState.VALIDATE:
                try:
                    return self.validator.validate(raw, blueprint, catalog)
                except ResponseValidationError as e:
                    last_error = e
                    trace.errors.append(e.code.value)
                    logger.warning(
                        f"Generated reply rejected: {e}",
                        extra=log_fields(
                            cache_key=prompt.cache_key,
                            state=state,
                            attempts=trace.attempts,
                            error_code=e.code,
                        ),
                    )
                    state = CompositionState.RETRY

            elif state == CompositionState.RETRY:
                if not self.retry_policy.should_retry(trace.attempts, last_error):
                    return None
                state = CompositionState.GENERATE

    # ------------------------------------------------------------------
    # History and feedback
    # ------------------------------------------------------------------

    async def _load_history(
        self, history: Optional[HistoryRepository]
    ) -> Tuple[List[WorkoutPlan], List[FeedbackRating]]:
        if history is None:
            return [], []
        try:
            plans, ratings = await history.list_recent(self.config.history_limit)
        except Exception as e:
            logger.warning(f"History unavailable, composing without it: {e}")
            return [], []
        return list(plans), list(ratings)

    def _apply_feedback(self, blueprint: Blueprint, ratings: List[FeedbackRating]) -> Blueprint:
        if not ratings:
            return blueprint
        adjustment = self.feedback_analyzer.analyze(ratings)
        if adjustment.intensity_steps == 0:
            return blueprint
        if adjustment.intensity_steps > 0 and blueprint.recovery_mode:
            return blueprint
        adjusted = step_intensity(blueprint.intensity, adjustment.intensity_steps)
        if adjusted != blueprint.intensity:
            logger.info(f"Feedback adjusted intensity {blueprint.intensity.value} -> {adjusted.value}: {adjustment.reason}")
        return with_intensity(blueprint, adjusted)
