# Workout Composition
#
# Builds one personalized strength workout per user per day.
#
# Architecture:
# - Blueprint engine: deterministic structure from profile + check-in
# - Prompt assembler: blueprint + filtered catalog -> generation prompt
# - Generative clients: OpenAI / Gemini adapters, no SDK retries
# - Response validator: extracts and checks the reply against the blueprint
# - Local fallback composer: catalog-only plan when generation is unavailable
# - Composition cache: content-addressed, TTL-evicted, Redis-backed
# - Composer: state machine tying the above together

from .constants import (
    DailyFocus,
    FitnessGoal,
    PlanProvenance,
    SorenessLevel,
    TrainingLevel,
    TrainingStructure,
    WorkoutIntensity,
)
from .models import Blueprint, DailyCheckIn, UserProfile, WorkoutPlan
from .blueprint_engine import BlueprintEngine
from .catalog import InMemoryExerciseCatalog, YamlExerciseCatalog
from .prompt_assembler import PromptAssembler, compute_cache_key
from .response_validator import ResponseValidator
from .fallback_composer import LocalFallbackComposer
from .composition_cache import CompositionCache, InMemoryCacheStore, RedisCacheStore
from .errors import ClientError, ComposerError, ResponseValidationError
from .composer import ComposerConfig, CompositionResult, WorkoutComposer
from .factory import build_generative_client, create_workout_composer

__all__ = [
    # Inputs and outputs
    'UserProfile',
    'DailyCheckIn',
    'Blueprint',
    'WorkoutPlan',

    # Components
    'BlueprintEngine',
    'InMemoryExerciseCatalog',
    'YamlExerciseCatalog',
    'PromptAssembler',
    'compute_cache_key',
    'ResponseValidator',
    'LocalFallbackComposer',
    'CompositionCache',
    'InMemoryCacheStore',
    'RedisCacheStore',

    # Orchestration
    'WorkoutComposer',
    'ComposerConfig',
    'CompositionResult',
    'build_generative_client',
    'create_workout_composer',

    # Errors
    'ClientError',
    'ComposerError',
    'ResponseValidationError',

    # Constants
    'FitnessGoal',
    'TrainingStructure',
    'TrainingLevel',
    'DailyFocus',
    'SorenessLevel',
    'WorkoutIntensity',
    'PlanProvenance',
]
