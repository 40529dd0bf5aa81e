"""
Free-text to enum lookup tables.

Check-ins arrive from chat, forms and older clients with many spellings for
the same value ("very sore", "severe", "3"). Each table is exhaustive and
explicit; anything unrecognized maps to the table's documented default.

Usage:
    parse_soreness("Very Sore")   # SorenessLevel.STRONG
    parse_focus("legs")           # DailyFocus.LOWER
    parse_intensity("easy")       # WorkoutIntensity.LOW
"""

import re
from typing import Dict, Optional

from services.workout_composition.constants import (
    DailyFocus,
    FitnessGoal,
    SorenessLevel,
    WorkoutIntensity,
)


def normalize_token(text: Optional[str]) -> str:
    """Lowercase, trim and collapse '_', '-' and runs of whitespace to one space."""
    if text is None:
        return ""
    return re.sub(r"[\s_\-]+", " ", str(text).strip().lower()).strip()


# Unrecognized soreness means "no information": treated as not sore.
DEFAULT_SORENESS = SorenessLevel.NONE

SORENESS_SYNONYMS: Dict[str, SorenessLevel] = {
    "none": SorenessLevel.NONE,
    "no": SorenessLevel.NONE,
    "not sore": SorenessLevel.NONE,
    "fresh": SorenessLevel.NONE,
    "0": SorenessLevel.NONE,
    "light": SorenessLevel.LIGHT,
    "mild": SorenessLevel.LIGHT,
    "slight": SorenessLevel.LIGHT,
    "a little": SorenessLevel.LIGHT,
    "low": SorenessLevel.LIGHT,
    "1": SorenessLevel.LIGHT,
    "moderate": SorenessLevel.MODERATE,
    "medium": SorenessLevel.MODERATE,
    "some": SorenessLevel.MODERATE,
    "sore": SorenessLevel.MODERATE,
    "2": SorenessLevel.MODERATE,
    "strong": SorenessLevel.STRONG,
    "severe": SorenessLevel.STRONG,
    "high": SorenessLevel.STRONG,
    "very sore": SorenessLevel.STRONG,
    "intense": SorenessLevel.STRONG,
    "extreme": SorenessLevel.STRONG,
    "3": SorenessLevel.STRONG,
}

# Unrecognized focus lets the blueprint engine pick from the seed.
DEFAULT_FOCUS = DailyFocus.SURPRISE

FOCUS_SYNONYMS: Dict[str, DailyFocus] = {
    "upper": DailyFocus.UPPER,
    "upper body": DailyFocus.UPPER,
    "upperbody": DailyFocus.UPPER,
    "arms": DailyFocus.UPPER,
    "push": DailyFocus.UPPER,
    "pull": DailyFocus.UPPER,
    "lower": DailyFocus.LOWER,
    "lower body": DailyFocus.LOWER,
    "lowerbody": DailyFocus.LOWER,
    "legs": DailyFocus.LOWER,
    "leg day": DailyFocus.LOWER,
    "full body": DailyFocus.FULL_BODY,
    "fullbody": DailyFocus.FULL_BODY,
    "full": DailyFocus.FULL_BODY,
    "total body": DailyFocus.FULL_BODY,
    "cardio": DailyFocus.CARDIO,
    "conditioning": DailyFocus.CARDIO,
    "run": DailyFocus.CARDIO,
    "core": DailyFocus.CORE,
    "abs": DailyFocus.CORE,
    "surprise": DailyFocus.SURPRISE,
    "surprise me": DailyFocus.SURPRISE,
    "any": DailyFocus.SURPRISE,
    "random": DailyFocus.SURPRISE,
}

DEFAULT_INTENSITY = WorkoutIntensity.MODERATE

INTENSITY_SYNONYMS: Dict[str, WorkoutIntensity] = {
    "low": WorkoutIntensity.LOW,
    "light": WorkoutIntensity.LOW,
    "easy": WorkoutIntensity.LOW,
    "gentle": WorkoutIntensity.LOW,
    "moderate": WorkoutIntensity.MODERATE,
    "medium": WorkoutIntensity.MODERATE,
    "normal": WorkoutIntensity.MODERATE,
    "high": WorkoutIntensity.HIGH,
    "hard": WorkoutIntensity.HIGH,
    "intense": WorkoutIntensity.HIGH,
    "heavy": WorkoutIntensity.HIGH,
}

# Goal has no safe default: an unknown goal is a bad request, not a guess.
GOAL_SYNONYMS: Dict[str, FitnessGoal] = {
    "hypertrophy": FitnessGoal.HYPERTROPHY,
    "muscle": FitnessGoal.HYPERTROPHY,
    "build muscle": FitnessGoal.HYPERTROPHY,
    "strength": FitnessGoal.HYPERTROPHY,
    "weight loss": FitnessGoal.WEIGHT_LOSS,
    "weightloss": FitnessGoal.WEIGHT_LOSS,
    "fat loss": FitnessGoal.WEIGHT_LOSS,
    "lose weight": FitnessGoal.WEIGHT_LOSS,
    "endurance": FitnessGoal.ENDURANCE,
    "stamina": FitnessGoal.ENDURANCE,
    "conditioning": FitnessGoal.CONDITIONING,
    "fitness": FitnessGoal.CONDITIONING,
    "performance": FitnessGoal.PERFORMANCE,
    "athletic": FitnessGoal.PERFORMANCE,
    "power": FitnessGoal.PERFORMANCE,
}


def parse_soreness(text: Optional[str]) -> SorenessLevel:
    return SORENESS_SYNONYMS.get(normalize_token(text), DEFAULT_SORENESS)


def parse_focus(text: Optional[str]) -> DailyFocus:
    return FOCUS_SYNONYMS.get(normalize_token(text), DEFAULT_FOCUS)


def parse_intensity(text: Optional[str]) -> WorkoutIntensity:
    return INTENSITY_SYNONYMS.get(normalize_token(text), DEFAULT_INTENSITY)


def parse_goal(text: Optional[str]) -> FitnessGoal:
    """Raises ValueError for an unrecognized goal."""
    token = normalize_token(text)
    if token not in GOAL_SYNONYMS:
        raise ValueError(f"Unknown fitness goal: {text!r}")
    return GOAL_SYNONYMS[token]
