"""
Local Fallback Composer

Builds a blueprint-compliant plan straight from the catalog, with no
network. Used when generation fails, times out, is over its daily limit or
is disabled for the account.

Selection per exercise block:
- catalog entries whose equipment the blueprint allows and whose level the
  user has reached;
- matching the block's target muscles, never its avoided muscles;
- not already used earlier in the same plan;
- spread round-robin across target muscles, starting at a seed-dependent
  offset so consecutive days differ.

A block with nothing eligible is left out of the plan. Composition only
fails when the primary block cannot be filled from anything compatible.
"""

import logging
from typing import Dict, List, Sequence, Set

from services.workout_composition.constants import (
    LEVEL_RANK,
    MuscleGroup,
    PlanProvenance,
    TrainingLevel,
)
from services.workout_composition.errors import ComposerError, ComposerErrorCode
from services.workout_composition.models import (
    ActivityPrescription,
    BlockBlueprint,
    Blueprint,
    CatalogExercise,
    DailyCheckIn,
    ExercisePrescription,
    IntRange,
    UserProfile,
    WorkoutPlan,
    WorkoutPlanPhase,
)

logger = logging.getLogger(__name__)


def pick_from_range(value_range: IntRange, level: TrainingLevel) -> int:
    """Beginner -> lower bound, advanced -> upper bound, intermediate -> midpoint."""
    rank = LEVEL_RANK.get(level, 1)
    if rank <= 0:
        return value_range.minimum
    if rank >= 2:
        return value_range.maximum
    return (value_range.minimum + value_range.maximum) // 2


class LocalFallbackComposer:

    def compose(
        self,
        catalog: Sequence[CatalogExercise],
        profile: UserProfile,
        check_in: DailyCheckIn,
        blueprint: Blueprint,
        provenance: PlanProvenance = PlanProvenance.FALLBACK,
    ) -> WorkoutPlan:
        eligible = self._eligible(catalog, profile, blueprint)
        primary = blueprint.primary_block
        used: Set[str] = set()
        phases: List[WorkoutPlanPhase] = []

        for block in blueprint.blocks:
            if block.is_guided:
                phases.append(self._guided_phase(block))
                continue

            chosen = self._select(block, eligible, used, blueprint.seed)
            if not chosen and block is primary:
                chosen = self._select_any(block, eligible, used)
                if not chosen:
                    raise ComposerError(
                        ComposerErrorCode.NO_COMPATIBLE_BLOCKS,
                        f"no compatible exercises for {block.phase_kind.value} "
                        f"(structure={getattr(blueprint.structure, 'value', blueprint.structure)})",
                    )
                logger.info(f"Primary block {block.title!r} filled outside its target muscles")
            if not chosen:
                logger.info(f"Omitting block {block.title!r}: no eligible catalog exercises")
                continue

            used.update(e.name for e in chosen)
            phases.append(self._exercise_phase(block, chosen, profile.level))

        return WorkoutPlan(
            title=blueprint.title,
            focus=blueprint.focus,
            estimated_duration_minutes=blueprint.estimated_duration_minutes,
            intensity=blueprint.intensity,
            phases=tuple(phases),
            provenance=provenance,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _eligible(catalog: Sequence[CatalogExercise], profile: UserProfile, blueprint: Blueprint) -> List[CatalogExercise]:
        allowed = set(blueprint.equipment_constraints)
        user_rank = LEVEL_RANK.get(profile.level, 1)
        unique: Dict[str, CatalogExercise] = {}
        for exercise in catalog:
            if exercise.equipment in allowed and LEVEL_RANK.get(exercise.level, 0) <= user_rank:
                unique.setdefault(exercise.name, exercise)
        return [unique[name] for name in sorted(unique)]

    @staticmethod
    def _select(
        block: BlockBlueprint,
        eligible: List[CatalogExercise],
        used: Set[str],
        seed: int,
    ) -> List[CatalogExercise]:
        avoid = set(block.avoid_muscles)
        buckets: Dict[MuscleGroup, List[CatalogExercise]] = {}
        for muscle in block.target_muscles:
            if muscle in avoid:
                continue
            options = [e for e in eligible if e.muscle_group == muscle and e.name not in used]
            if options:
                offset = seed % len(options)
                buckets[muscle] = options[offset:] + options[:offset]

        chosen: List[CatalogExercise] = []
        while len(chosen) < block.exercise_count and any(buckets.values()):
            for muscle in list(buckets):
                if buckets[muscle] and len(chosen) < block.exercise_count:
                    chosen.append(buckets[muscle].pop(0))
        return chosen

    @staticmethod
    def _select_any(block: BlockBlueprint, eligible: List[CatalogExercise], used: Set[str]) -> List[CatalogExercise]:
        avoid = set(block.avoid_muscles)
        options = [e for e in eligible if e.muscle_group not in avoid and e.name not in used]
        if not options:
            options = [e for e in eligible if e.muscle_group not in avoid]
        return options[: block.exercise_count]

    @staticmethod
    def _exercise_phase(block: BlockBlueprint, chosen: List[CatalogExercise], level: TrainingLevel) -> WorkoutPlanPhase:
        sets = pick_from_range(block.sets, level)
        reps = IntRange.single(pick_from_range(block.reps, level))
        prescriptions = tuple(
            ExercisePrescription(
                exercise=exercise,
                sets=sets,
                reps=reps,
                rest_seconds=block.rest_seconds,
                tip=exercise.instructions[0] if exercise.instructions else None,
            )
            for exercise in chosen
        )
        return WorkoutPlanPhase(
            kind=block.phase_kind,
            title=block.title,
            rpe_target=block.rpe_target,
            exercises=prescriptions,
        )

    @staticmethod
    def _guided_phase(block: BlockBlueprint) -> WorkoutPlanPhase:
        return WorkoutPlanPhase(
            kind=block.phase_kind,
            title=block.title,
            rpe_target=block.rpe_target,
            activity=ActivityPrescription(
                kind=block.activity.kind,
                title=block.activity.title,
                duration_minutes=block.activity.duration_minutes,
            ),
        )
