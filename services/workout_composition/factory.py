"""
Composer wiring.

Turns Settings into a ready WorkoutComposer: picks the generative provider,
the exercise catalog and the cache store. Nothing here runs at import time;
main.py calls create_workout_composer() from the app lifespan.
"""

import logging
from typing import Any, Optional

from services.workout_composition.catalog import YamlExerciseCatalog
from services.workout_composition.composer import ComposerConfig, WorkoutComposer
from services.workout_composition.composition_cache import (
    CompositionCache,
    InMemoryCacheStore,
    RedisCacheStore,
)
from services.workout_composition.generative_client import (
    GeminiGenerativeClient,
    GenerativeClient,
    OpenAIGenerativeClient,
)
from services.workout_composition.usage_limiter import UsageLimiter

logger = logging.getLogger(__name__)


def build_generative_client(settings: Any) -> Optional[GenerativeClient]:
    """
    Client for settings.GENERATIVE_PROVIDER, or None when generation is off.

    A missing API key is not checked here: the first call raises
    ClientError(missing_credential), which the composer treats as
    non-retryable and answers with the local composer.
    """
    if not settings.GENERATION_ENABLED:
        logger.info("Generation disabled; composing locally")
        return None

    provider = (settings.GENERATIVE_PROVIDER or "").strip().lower()
    if provider == "openai":
        return OpenAIGenerativeClient(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            base_url=settings.OPENAI_BASE_URL,
            timeout_s=settings.GENERATION_TIMEOUT_S,
            max_tokens=settings.GENERATION_MAX_TOKENS,
            temperature=settings.GENERATION_TEMPERATURE,
        )
    if provider == "gemini":
        return GeminiGenerativeClient(
            api_key=settings.GOOGLE_AI_API_KEY,
            model=settings.GEMINI_MODEL,
            timeout_s=settings.GENERATION_TIMEOUT_S,
            max_tokens=settings.GENERATION_MAX_TOKENS,
            temperature=settings.GENERATION_TEMPERATURE,
        )

    logger.warning(f"Unknown GENERATIVE_PROVIDER {settings.GENERATIVE_PROVIDER!r}; composing locally")
    return None


def create_workout_composer(settings: Any, redis_client=None, client: Optional[GenerativeClient] = None) -> WorkoutComposer:
    config = ComposerConfig.from_settings(settings)

    if redis_client is not None:
        store = RedisCacheStore(redis_client)
    else:
        logger.info("No Redis client; plan cache is in-process")
        store = InMemoryCacheStore()

    cache = CompositionCache(
        store,
        ttl_seconds=config.cache_ttl_s,
        fallback_ttl_seconds=config.fallback_cache_ttl_s,
    )

    usage_limiter = None
    if config.daily_generation_limit is not None:
        usage_limiter = UsageLimiter(config.daily_generation_limit, redis=redis_client)

    return WorkoutComposer(
        catalog=YamlExerciseCatalog.from_path(settings.EXERCISE_CATALOG_PATH),
        cache=cache,
        client=client if client is not None else build_generative_client(settings),
        config=config,
        usage_limiter=usage_limiter,
    )
