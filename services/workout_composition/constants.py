"""
Workout Composition Constants

Enums and lookup tables shared by the blueprint engine, prompt assembler,
validator and fallback composer.
"""

from enum import Enum
from typing import Dict, FrozenSet, List


class FitnessGoal(str, Enum):
    """Primary training goal from the user's profile."""
    HYPERTROPHY = "hypertrophy"
    WEIGHT_LOSS = "weight_loss"
    ENDURANCE = "endurance"
    CONDITIONING = "conditioning"
    PERFORMANCE = "performance"


class TrainingStructure(str, Enum):
    """Where the user trains; drives the allowed equipment."""
    FULL_GYM = "full_gym"
    BASIC_GYM = "basic_gym"
    HOME_DUMBBELLS = "home_dumbbells"
    BODYWEIGHT = "bodyweight"


class TrainingMethod(str, Enum):
    TRADITIONAL = "traditional"
    CIRCUIT = "circuit"
    HIIT = "hiit"
    MIXED = "mixed"


class TrainingLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class HealthCondition(str, Enum):
    NONE = "none"
    LOWER_BACK_PAIN = "lower_back_pain"
    KNEE = "knee"
    SHOULDER = "shoulder"
    OTHER = "other"


class DailyFocus(str, Enum):
    """What the user wants to train today."""
    UPPER = "upper"
    LOWER = "lower"
    FULL_BODY = "full_body"
    CARDIO = "cardio"
    CORE = "core"
    SURPRISE = "surprise"  # resolved to a concrete focus from the seed


class SorenessLevel(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    STRONG = "strong"


class MuscleGroup(str, Enum):
    CHEST = "chest"
    BACK = "back"
    SHOULDERS = "shoulders"
    BICEPS = "biceps"
    TRICEPS = "triceps"
    QUADS = "quads"
    GLUTES = "glutes"
    HAMSTRINGS = "hamstrings"
    CALVES = "calves"
    CORE = "core"
    FULL_BODY = "full_body"
    CARDIO = "cardio"


class EquipmentType(str, Enum):
    BARBELL = "barbell"
    DUMBBELL = "dumbbell"
    MACHINE = "machine"
    KETTLEBELL = "kettlebell"
    BODYWEIGHT = "bodyweight"
    RESISTANCE_BAND = "resistance_band"
    CARDIO_MACHINE = "cardio_machine"
    CABLE = "cable"
    PULLUP_BAR = "pullup_bar"


class PhaseKind(str, Enum):
    WARMUP = "warmup"
    STRENGTH = "strength"
    ACCESSORY = "accessory"
    CONDITIONING = "conditioning"
    AEROBIC = "aerobic"
    FINISHER = "finisher"
    COOLDOWN = "cooldown"


class ActivityKind(str, Enum):
    """Guided (time-based) activities used instead of exercise lists."""
    MOBILITY = "mobility"
    AEROBIC_ZONE2 = "aerobic_zone2"
    AEROBIC_INTERVALS = "aerobic_intervals"
    BREATHING = "breathing"
    COOLDOWN = "cooldown"


class WorkoutIntensity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class PlanProvenance(str, Enum):
    """Which path produced a plan."""
    GENERATED = "generated"  # remote generation, validated
    FALLBACK = "fallback"    # local composer after generation failed
    LOCAL = "local"          # local composer, generation not attempted


class FeedbackRating(str, Enum):
    TOO_EASY = "too_easy"
    JUST_RIGHT = "just_right"
    TOO_HARD = "too_hard"


# Bump when blueprint shape rules change; folded into every cache key.
BLUEPRINT_SCHEMA_VERSION = "1.0.0"

LEVEL_RANK: Dict[TrainingLevel, int] = {
    TrainingLevel.BEGINNER: 0,
    TrainingLevel.INTERMEDIATE: 1,
    TrainingLevel.ADVANCED: 2,
}

INTENSITY_ORDER: List[WorkoutIntensity] = [
    WorkoutIntensity.LOW,
    WorkoutIntensity.MODERATE,
    WorkoutIntensity.HIGH,
]

EQUIPMENT_BY_STRUCTURE: Dict[TrainingStructure, FrozenSet[EquipmentType]] = {
    TrainingStructure.BODYWEIGHT: frozenset({EquipmentType.BODYWEIGHT}),
    TrainingStructure.HOME_DUMBBELLS: frozenset({
        EquipmentType.DUMBBELL,
        EquipmentType.BODYWEIGHT,
        EquipmentType.KETTLEBELL,
        EquipmentType.RESISTANCE_BAND,
    }),
    TrainingStructure.BASIC_GYM: frozenset({
        EquipmentType.MACHINE,
        EquipmentType.DUMBBELL,
        EquipmentType.CABLE,
        EquipmentType.BODYWEIGHT,
        EquipmentType.PULLUP_BAR,
    }),
    TrainingStructure.FULL_GYM: frozenset(EquipmentType),
}

# Phases whose exercise count is the heart of the session.
PRIMARY_PHASE_KINDS: FrozenSet[PhaseKind] = frozenset({PhaseKind.STRENGTH, PhaseKind.CONDITIONING})

# (primary, secondary) muscles per focus
FOCUS_MUSCLES: Dict[DailyFocus, tuple] = {
    DailyFocus.UPPER: (
        (MuscleGroup.CHEST, MuscleGroup.BACK, MuscleGroup.SHOULDERS),
        (MuscleGroup.BICEPS, MuscleGroup.TRICEPS),
    ),
    DailyFocus.LOWER: (
        (MuscleGroup.QUADS, MuscleGroup.GLUTES, MuscleGroup.HAMSTRINGS),
        (MuscleGroup.CALVES, MuscleGroup.CORE),
    ),
    DailyFocus.FULL_BODY: (
        (MuscleGroup.QUADS, MuscleGroup.CHEST, MuscleGroup.BACK),
        (MuscleGroup.GLUTES, MuscleGroup.SHOULDERS, MuscleGroup.CORE),
    ),
    DailyFocus.CARDIO: (
        (MuscleGroup.CARDIO, MuscleGroup.FULL_BODY),
        (MuscleGroup.CORE,),
    ),
    DailyFocus.CORE: (
        (MuscleGroup.CORE,),
        (MuscleGroup.GLUTES, MuscleGroup.BACK),
    ),
}

FOCUS_LABELS: Dict[DailyFocus, str] = {
    DailyFocus.UPPER: "Upper Body",
    DailyFocus.LOWER: "Lower Body",
    DailyFocus.FULL_BODY: "Full Body",
    DailyFocus.CARDIO: "Cardio",
    DailyFocus.CORE: "Core",
    DailyFocus.SURPRISE: "Mixed",
}

GOAL_TITLE_SUFFIX: Dict[FitnessGoal, str] = {
    FitnessGoal.HYPERTROPHY: "Strength",
    FitnessGoal.WEIGHT_LOSS: "Burn",
    FitnessGoal.ENDURANCE: "Endurance",
    FitnessGoal.CONDITIONING: "Conditioning",
    FitnessGoal.PERFORMANCE: "Power",
}

# Concrete focuses a "surprise" check-in can resolve to.
SURPRISE_FOCUS_CHOICES: List[DailyFocus] = [
    DailyFocus.UPPER,
    DailyFocus.LOWER,
    DailyFocus.FULL_BODY,
    DailyFocus.CORE,
]

# Session length before level/soreness/guided adjustments (minutes)
BASE_DURATION_BY_STRUCTURE: Dict[TrainingStructure, int] = {
    TrainingStructure.BODYWEIGHT: 30,
    TrainingStructure.HOME_DUMBBELLS: 35,
    TrainingStructure.BASIC_GYM: 45,
    TrainingStructure.FULL_GYM: 55,
}

MIN_DURATION_MINUTES = 20
