"""
Blueprint Engine

Turns a profile and today's check-in into the structural contract for one
workout: which phases, how many exercises, which set/rep/rest ranges and
which equipment. No exercise is chosen here.

The engine is pure. The same (profile, check-in, seed) always yields an
identical Blueprint, and the function never raises: unsupported inputs get
a default full-body template.

Usage:
    engine = BlueprintEngine()
    blueprint = engine.generate_blueprint(profile, check_in)
"""

import hashlib
import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from services.workout_composition.constants import (
    ActivityKind,
    BASE_DURATION_BY_STRUCTURE,
    BLUEPRINT_SCHEMA_VERSION,
    DailyFocus,
    EQUIPMENT_BY_STRUCTURE,
    EquipmentType,
    FitnessGoal,
    FOCUS_LABELS,
    FOCUS_MUSCLES,
    GOAL_TITLE_SUFFIX,
    INTENSITY_ORDER,
    LEVEL_RANK,
    MIN_DURATION_MINUTES,
    MuscleGroup,
    PhaseKind,
    SorenessLevel,
    SURPRISE_FOCUS_CHOICES,
    TrainingLevel,
    TrainingStructure,
    WorkoutIntensity,
)
from services.workout_composition.models import (
    BlockBlueprint,
    Blueprint,
    DailyCheckIn,
    GuidedActivity,
    IntRange,
    UserProfile,
)

logger = logging.getLogger(__name__)

RECOVERY_COUNT_FACTOR = 0.6


@dataclass(frozen=True)
class SorenessAdjustment:
    volume_multiplier: float
    extra_rest_seconds: int
    avoid_failure: bool


SORENESS_ADJUSTMENTS = {
    SorenessLevel.NONE: SorenessAdjustment(1.0, 0, False),
    SorenessLevel.LIGHT: SorenessAdjustment(1.0, 0, False),
    SorenessLevel.MODERATE: SorenessAdjustment(0.9, 15, True),
    SorenessLevel.STRONG: SorenessAdjustment(0.7, 30, True),
}


@dataclass(frozen=True)
class _BlockSpec:
    """Per-level block recipe. Tuples are indexed by level rank (beginner, intermediate, advanced)."""
    kind: PhaseKind
    title: str
    counts: Tuple[int, int, int]
    sets: Tuple[Tuple[int, int], ...]
    reps: Tuple[Tuple[int, int], ...]
    rest: Tuple[int, int, int]
    rpe: Tuple[int, int, int]
    muscles: str = "primary"  # primary | secondary | all
    activity: Optional[Tuple[ActivityKind, str, Tuple[int, int, int]]] = None


_WARMUP = _BlockSpec(
    PhaseKind.WARMUP, "Warm-up", (0, 0, 0),
    sets=((1, 2),) * 3, reps=((8, 15),) * 3, rest=(30, 30, 30), rpe=(3, 3, 3),
    activity=(ActivityKind.MOBILITY, "Dynamic Mobility", (6, 8, 8)),
)

_COOLDOWN = _BlockSpec(
    PhaseKind.COOLDOWN, "Cool-down", (0, 0, 0),
    sets=((1, 2),) * 3, reps=((5, 12),) * 3, rest=(20, 20, 20), rpe=(2, 2, 2),
    activity=(ActivityKind.COOLDOWN, "Stretch & Cool-down", (5, 5, 5)),
)

_GOAL_TEMPLATES = {
    FitnessGoal.HYPERTROPHY: [
        _BlockSpec(
            PhaseKind.STRENGTH, "Main Strength", (4, 5, 6),
            sets=((3, 4), (3, 5), (4, 6)), reps=((8, 12), (5, 10), (4, 8)),
            rest=(90, 120, 150), rpe=(7, 8, 8),
        ),
        _BlockSpec(
            PhaseKind.ACCESSORY, "Accessory Work", (2, 3, 3),
            sets=((2, 3), (3, 4), (3, 4)), reps=((10, 15), (10, 15), (8, 12)),
            rest=(60, 60, 60), rpe=(7, 7, 8), muscles="secondary",
        ),
    ],
    FitnessGoal.WEIGHT_LOSS: [
        _BlockSpec(
            PhaseKind.CONDITIONING, "Metabolic Circuit", (5, 6, 7),
            sets=((2, 3), (3, 4), (3, 4)), reps=((12, 18),) * 3,
            rest=(30, 30, 30), rpe=(7, 8, 8), muscles="all",
        ),
    ],
    FitnessGoal.PERFORMANCE: [
        _BlockSpec(
            PhaseKind.STRENGTH, "Explosive Strength", (3, 4, 5),
            sets=((3, 4), (3, 5), (4, 6)), reps=((3, 6), (3, 6), (2, 5)),
            rest=(120, 150, 180), rpe=(7, 8, 9),
        ),
        _BlockSpec(
            PhaseKind.CONDITIONING, "Functional Conditioning", (3, 4, 4),
            sets=((2, 3), (3, 4), (3, 4)), reps=((8, 12),) * 3,
            rest=(45, 45, 45), rpe=(7, 8, 8), muscles="all",
        ),
    ],
    FitnessGoal.CONDITIONING: [
        _BlockSpec(
            PhaseKind.CONDITIONING, "Conditioning Intervals", (4, 5, 6),
            sets=((2, 3), (3, 4), (3, 5)), reps=((10, 15),) * 3,
            rest=(45, 40, 30), rpe=(7, 8, 8), muscles="all",
        ),
        _BlockSpec(
            PhaseKind.FINISHER, "Finisher", (1, 2, 2),
            sets=((1, 2), (2, 3), (2, 3)), reps=((15, 20),) * 3,
            rest=(30, 30, 30), rpe=(8, 8, 9), muscles="all",
        ),
    ],
    FitnessGoal.ENDURANCE: [
        _BlockSpec(
            PhaseKind.STRENGTH, "Strength Endurance", (3, 4, 5),
            sets=((2, 3), (3, 4), (3, 4)), reps=((12, 15), (12, 20), (15, 20)),
            rest=(45, 45, 45), rpe=(6, 7, 7), muscles="all",
        ),
        _BlockSpec(
            PhaseKind.AEROBIC, "Aerobic Base", (0, 0, 0),
            sets=((1, 1),) * 3, reps=((1, 1),) * 3, rest=(0, 0, 0), rpe=(5, 6, 6),
            activity=(ActivityKind.AEROBIC_ZONE2, "Zone 2 Steady State", (15, 20, 25)),
        ),
    ],
}

# Cardio focus swaps every goal's main work for conditioning plus a guided aerobic block.
_CARDIO_TEMPLATE = [
    _BlockSpec(
        PhaseKind.CONDITIONING, "Cardio Conditioning", (3, 4, 5),
        sets=((2, 3), (3, 4), (3, 4)), reps=((12, 20),) * 3,
        rest=(40, 30, 30), rpe=(7, 7, 8), muscles="all",
    ),
    _BlockSpec(
        PhaseKind.AEROBIC, "Aerobic Block", (0, 0, 0),
        sets=((1, 1),) * 3, reps=((1, 1),) * 3, rest=(0, 0, 0), rpe=(6, 6, 7),
        activity=(ActivityKind.AEROBIC_ZONE2, "Zone 2 Steady State", (12, 15, 20)),
    ),
]

_DEFAULT_TEMPLATE = [
    _BlockSpec(
        PhaseKind.STRENGTH, "Full Body Strength", (4, 4, 4),
        sets=((3, 4),) * 3, reps=((8, 12),) * 3,
        rest=(90, 90, 90), rpe=(7, 7, 7), muscles="all",
    ),
    _BlockSpec(
        PhaseKind.CONDITIONING, "Conditioning", (3, 3, 3),
        sets=((2, 3),) * 3, reps=((12, 15),) * 3,
        rest=(45, 45, 45), rpe=(7, 7, 7), muscles="all",
    ),
]


def derive_seed(profile: UserProfile, check_in: DailyCheckIn) -> int:
    """
    Seed stable for one user and one calendar day.

    Folds in identity, goal, structure, level, focus, soreness and the day,
    so repeated requests on the same day agree and the next day differs.
    """
    material = "|".join([
        profile.user_id,
        getattr(profile.goal, "value", str(profile.goal)),
        getattr(profile.structure, "value", str(profile.structure)),
        getattr(profile.level, "value", str(profile.level)),
        getattr(check_in.focus, "value", str(check_in.focus)),
        getattr(check_in.soreness, "value", str(check_in.soreness)),
        check_in.day.isoformat(),
    ])
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def apply_volume_adjustment(value_range: Tuple[int, int], multiplier: float) -> IntRange:
    lower = max(1, int(value_range[0] * multiplier))
    upper = max(lower, int(value_range[1] * multiplier))
    return IntRange(lower, upper)


def step_intensity(intensity: WorkoutIntensity, steps: int) -> WorkoutIntensity:
    index = INTENSITY_ORDER.index(intensity) + steps
    index = max(0, min(len(INTENSITY_ORDER) - 1, index))
    return INTENSITY_ORDER[index]


class BlueprintEngine:
    """Deterministic blueprint generator."""

    def generate_blueprint(
        self,
        profile: UserProfile,
        check_in: DailyCheckIn,
        seed: Optional[int] = None,
    ) -> Blueprint:
        if seed is None:
            seed = derive_seed(profile, check_in)

        focus = self._resolve_focus(check_in.focus, seed)
        supported = (
            profile.goal in _GOAL_TEMPLATES
            and profile.structure in EQUIPMENT_BY_STRUCTURE
            and profile.level in LEVEL_RANK
            and focus in FOCUS_MUSCLES
        )
        if not supported:
            logger.info(
                f"Unsupported blueprint inputs goal={profile.goal} structure={profile.structure} "
                f"level={profile.level} focus={check_in.focus}; using default template"
            )
            return self._default_blueprint(profile, check_in, seed)

        level_index = LEVEL_RANK[profile.level]
        adjustment = SORENESS_ADJUSTMENTS.get(check_in.soreness, SORENESS_ADJUSTMENTS[SorenessLevel.NONE])
        recovery_mode = self._is_recovery_mode(check_in, focus)
        intensity = self._select_intensity(profile, check_in, recovery_mode)
        avoid = self._avoided_muscles(check_in)

        if focus == DailyFocus.CARDIO:
            main_specs = _CARDIO_TEMPLATE
        else:
            main_specs = _GOAL_TEMPLATES[profile.goal]

        specs = [_WARMUP] + list(main_specs) + [_COOLDOWN]
        blocks = tuple(
            self._build_block(spec, focus, level_index, adjustment, recovery_mode, intensity, avoid)
            for spec in specs
        )

        suffix = GOAL_TITLE_SUFFIX[profile.goal]
        title = f"{FOCUS_LABELS[focus]} {suffix}"
        if recovery_mode:
            title += " (Recovery)"

        return Blueprint(
            title=title,
            focus=focus,
            goal=profile.goal,
            structure=profile.structure,
            level=profile.level,
            intensity=intensity,
            estimated_duration_minutes=self._estimate_duration(profile, check_in, blocks),
            seed=seed,
            recovery_mode=recovery_mode,
            version=BLUEPRINT_SCHEMA_VERSION,
            blocks=blocks,
            equipment_constraints=equipment_constraints(profile.structure),
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_focus(focus: DailyFocus, seed: int) -> DailyFocus:
        if focus == DailyFocus.SURPRISE:
            return SURPRISE_FOCUS_CHOICES[seed % len(SURPRISE_FOCUS_CHOICES)]
        return focus

    @staticmethod
    def _is_recovery_mode(check_in: DailyCheckIn, focus: DailyFocus) -> bool:
        """Strong soreness on the muscles today's focus would load."""
        if check_in.soreness != SorenessLevel.STRONG:
            return False
        if not check_in.sore_areas:
            return True
        primary, secondary = FOCUS_MUSCLES.get(focus, ((), ()))
        focus_muscles = set(primary) | set(secondary)
        if MuscleGroup.FULL_BODY in check_in.sore_areas:
            return True
        return bool(focus_muscles & set(check_in.sore_areas)) or focus == DailyFocus.FULL_BODY

    @staticmethod
    def _avoided_muscles(check_in: DailyCheckIn) -> Tuple[MuscleGroup, ...]:
        if check_in.soreness not in (SorenessLevel.MODERATE, SorenessLevel.STRONG):
            return ()
        return tuple(m for m in MuscleGroup if m in check_in.sore_areas)

    @staticmethod
    def _select_intensity(profile: UserProfile, check_in: DailyCheckIn, recovery_mode: bool) -> WorkoutIntensity:
        if recovery_mode or check_in.soreness in (SorenessLevel.STRONG, SorenessLevel.MODERATE):
            intensity = WorkoutIntensity.LOW
        elif profile.level == TrainingLevel.ADVANCED and profile.goal in (FitnessGoal.HYPERTROPHY, FitnessGoal.PERFORMANCE):
            intensity = WorkoutIntensity.HIGH
        elif profile.goal == FitnessGoal.HYPERTROPHY:
            intensity = WorkoutIntensity.MODERATE if profile.level == TrainingLevel.BEGINNER else WorkoutIntensity.HIGH
        else:
            intensity = WorkoutIntensity.MODERATE

        if check_in.energy <= 3:
            intensity = step_intensity(intensity, -1)
        elif (
            check_in.energy >= 8
            and check_in.soreness in (SorenessLevel.NONE, SorenessLevel.LIGHT)
            and profile.level != TrainingLevel.BEGINNER
        ):
            intensity = step_intensity(intensity, 1)

        if profile.has_health_restrictions and intensity == WorkoutIntensity.HIGH:
            intensity = WorkoutIntensity.MODERATE
        return intensity

    def _build_block(
        self,
        spec: _BlockSpec,
        focus: DailyFocus,
        level_index: int,
        adjustment: SorenessAdjustment,
        recovery_mode: bool,
        intensity: WorkoutIntensity,
        avoid: Tuple[MuscleGroup, ...],
    ) -> BlockBlueprint:
        primary, secondary = FOCUS_MUSCLES[focus]
        if spec.muscles == "secondary":
            targets = tuple(secondary)
        elif spec.muscles == "all":
            targets = tuple(primary) + tuple(m for m in secondary if m not in primary)
        else:
            targets = tuple(primary)

        activity = None
        if spec.activity is not None:
            kind, activity_title, minutes = spec.activity
            duration = minutes[level_index]
            if spec.kind == PhaseKind.WARMUP and recovery_mode:
                duration = minutes[0]
            if spec.kind == PhaseKind.AEROBIC:
                if intensity == WorkoutIntensity.HIGH and not recovery_mode:
                    kind, activity_title = ActivityKind.AEROBIC_INTERVALS, "Aerobic Intervals"
                duration = max(10, int(duration * adjustment.volume_multiplier))
            if spec.kind == PhaseKind.COOLDOWN and recovery_mode:
                kind, activity_title = ActivityKind.BREATHING, "Breathing & Stretch"
            activity = GuidedActivity(kind=kind, title=activity_title, duration_minutes=duration)

        count = spec.counts[level_index]
        if recovery_mode and count > 0:
            count = max(1, int(count * RECOVERY_COUNT_FACTOR))

        rpe = spec.rpe[level_index]
        if recovery_mode:
            rpe -= 2
        elif intensity == WorkoutIntensity.LOW:
            rpe -= 1

        return BlockBlueprint(
            phase_kind=spec.kind,
            title=spec.title,
            exercise_count=count,
            target_muscles=targets,
            avoid_muscles=avoid,
            sets=apply_volume_adjustment(spec.sets[level_index], adjustment.volume_multiplier),
            reps=apply_volume_adjustment(spec.reps[level_index], adjustment.volume_multiplier),
            rest_seconds=spec.rest[level_index] + (adjustment.extra_rest_seconds if count else 0),
            rpe_target=max(1, rpe),
            activity=activity,
        )

    @staticmethod
    def _estimate_duration(profile: UserProfile, check_in: DailyCheckIn, blocks) -> int:
        minutes = BASE_DURATION_BY_STRUCTURE[profile.structure]
        minutes += (-5, 0, 5)[LEVEL_RANK[profile.level]]
        minutes += sum(
            b.activity.duration_minutes for b in blocks
            if b.activity is not None and b.phase_kind == PhaseKind.AEROBIC
        )
        if check_in.soreness == SorenessLevel.STRONG:
            minutes -= 10
        if check_in.energy <= 3:
            minutes -= 5
        return max(MIN_DURATION_MINUTES, minutes)

    def _default_blueprint(self, profile: UserProfile, check_in: DailyCheckIn, seed: int) -> Blueprint:
        """Full-body, moderate, four-phase fallback for inputs the rule tables do not cover."""
        adjustment = SORENESS_ADJUSTMENTS[SorenessLevel.NONE]
        avoid = self._avoided_muscles(check_in)
        specs = [_WARMUP] + _DEFAULT_TEMPLATE + [_COOLDOWN]
        blocks = tuple(
            self._build_block(spec, DailyFocus.FULL_BODY, 1, adjustment, False, WorkoutIntensity.MODERATE, avoid)
            for spec in specs
        )
        return Blueprint(
            title="Full Body Workout",
            focus=DailyFocus.FULL_BODY,
            goal=profile.goal,
            structure=profile.structure,
            level=profile.level,
            intensity=WorkoutIntensity.MODERATE,
            estimated_duration_minutes=BASE_DURATION_BY_STRUCTURE.get(profile.structure, 40),
            seed=seed,
            recovery_mode=False,
            version=BLUEPRINT_SCHEMA_VERSION,
            blocks=blocks,
            equipment_constraints=equipment_constraints(profile.structure),
        )


def equipment_constraints(structure: TrainingStructure) -> Tuple[EquipmentType, ...]:
    """Allowed equipment, in enum order. Unknown structures get bodyweight only."""
    allowed = EQUIPMENT_BY_STRUCTURE.get(structure, frozenset({EquipmentType.BODYWEIGHT}))
    return tuple(e for e in EquipmentType if e in allowed)


def with_intensity(blueprint: Blueprint, intensity: WorkoutIntensity) -> Blueprint:
    """Copy of the blueprint at a different intensity (feedback adjustments)."""
    return replace(blueprint, intensity=intensity)
