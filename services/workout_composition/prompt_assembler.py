"""
Prompt Assembler

Builds the two-part generation request (system + user text) for one
blueprint, plus the content-addressed cache key for the request.

Properties the composer relies on:
- Identical inputs produce byte-identical system text, user text and key.
- Changing only the seed reshuffles/resamples the catalog shown to the
  model; the phase list is blueprint shape and does not move.
- The cache key covers profile, check-in, blueprint version, seed and
  intensity. It never covers catalog content or wall-clock time.

Usage:
    prompt = PromptAssembler().assemble(blueprint, catalog, profile, check_in, recent_plans)
    raw = await client.generate(prompt.system_text, prompt.user_text)
"""

import hashlib
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from services.workout_composition.constants import (
    FitnessGoal,
    HealthCondition,
    MuscleGroup,
)
from services.workout_composition.models import (
    BlockBlueprint,
    Blueprint,
    CatalogExercise,
    DailyCheckIn,
    UserProfile,
    WorkoutPlan,
)

logger = logging.getLogger(__name__)

MAX_EXERCISES_PER_GROUP = 12
DEFAULT_PROHIBITED_PLAN_LIMIT = 3

PERSONA = (
    "You are an experienced strength and conditioning coach. "
    "You turn a fixed workout structure into a concrete session by choosing "
    "exercises from the catalog you are given."
)

GOAL_GUIDELINES: Dict[FitnessGoal, str] = {
    FitnessGoal.HYPERTROPHY: (
        "Goal: hypertrophy. Prioritise compound lifts first, then isolation work. "
        "Controlled tempo, last sets close to failure unless told otherwise."
    ),
    FitnessGoal.WEIGHT_LOSS: (
        "Goal: weight loss. Keep the heart rate up with short rests and "
        "large-muscle movements. Favour density over load."
    ),
    FitnessGoal.ENDURANCE: (
        "Goal: endurance. Higher repetitions, short rests, steady breathing. "
        "Respect the aerobic block duration exactly."
    ),
    FitnessGoal.CONDITIONING: (
        "Goal: conditioning. Mix strength and cardio stations, keep transitions "
        "short and finish with a demanding but safe finisher."
    ),
    FitnessGoal.PERFORMANCE: (
        "Goal: performance. Explosive intent on every repetition, full recovery "
        "between heavy sets, then functional movement patterns."
    ),
}

GENERIC_GUIDELINE = "Goal: general fitness. Balanced full-body work at a moderate effort."

HEALTH_CAUTIONS: Dict[HealthCondition, str] = {
    HealthCondition.LOWER_BACK_PAIN: "lower back pain: avoid loaded spinal flexion and heavy hinging",
    HealthCondition.KNEE: "knee issues: avoid deep loaded knee flexion and jumping",
    HealthCondition.SHOULDER: "shoulder issues: avoid heavy overhead pressing",
    HealthCondition.OTHER: "other condition: choose conservative variations",
}

RESPONSE_FORMAT = """Respond with JSON only, no commentary, in exactly this shape:
{
  "title": "string",
  "phases": [
    {
      "kind": "warmup|strength|accessory|conditioning|aerobic|finisher|cooldown",
      "exercises": [
        {"name": "string", "muscleGroup": "string", "equipment": "string",
         "sets": 3, "reps": "8-12", "restSeconds": 90, "notes": "string"}
      ],
      "activity": {"kind": "mobility|aerobic_zone2|aerobic_intervals|breathing|cooldown",
                   "title": "string", "durationMinutes": 10, "notes": "string"}
    }
  ],
  "notes": "string"
}
Use "exercises" for exercise phases and "activity" for guided phases."""


@dataclass(frozen=True)
class PromptMetadata:
    goal: str
    structure: str
    level: str
    focus: str
    seed: int
    blueprint_version: str
    catalog_exercise_count: int
    prohibited_exercise_count: int
    recovery_mode: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal": self.goal,
            "structure": self.structure,
            "level": self.level,
            "focus": self.focus,
            "seed": self.seed,
            "blueprint_version": self.blueprint_version,
            "catalog_exercise_count": self.catalog_exercise_count,
            "prohibited_exercise_count": self.prohibited_exercise_count,
            "recovery_mode": self.recovery_mode,
        }


@dataclass(frozen=True)
class WorkoutPrompt:
    system_text: str
    user_text: str
    cache_key: str
    metadata: PromptMetadata


def _value(item: Any) -> str:
    return str(getattr(item, "value", item))


def compute_cache_key(profile: UserProfile, check_in: DailyCheckIn, blueprint: Blueprint) -> str:
    """SHA-256 over the normalized request identity."""
    material = "\n".join([
        profile.signature(),
        check_in.signature(),
        blueprint.version,
        str(blueprint.seed),
        blueprint.intensity.value,
    ])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def prohibited_exercise_names(recent_plans: Sequence[WorkoutPlan], limit: int = DEFAULT_PROHIBITED_PLAN_LIMIT) -> List[str]:
    """Sorted, case-insensitively unique exercise names from the most recent plans."""
    names: Dict[str, str] = {}
    for plan in list(recent_plans)[:limit]:
        for name in plan.exercise_names():
            names.setdefault(name.strip().lower(), name.strip())
    return sorted(names.values(), key=str.lower)


class PromptAssembler:
    """Deterministic prompt builder."""

    def __init__(
        self,
        max_exercises_per_group: int = MAX_EXERCISES_PER_GROUP,
        prohibited_plan_limit: int = DEFAULT_PROHIBITED_PLAN_LIMIT,
    ):
        self.max_exercises_per_group = max_exercises_per_group
        self.prohibited_plan_limit = prohibited_plan_limit

    def assemble(
        self,
        blueprint: Blueprint,
        catalog: Sequence[CatalogExercise],
        profile: UserProfile,
        check_in: DailyCheckIn,
        recent_plans: Sequence[WorkoutPlan] = (),
    ) -> WorkoutPrompt:
        prohibited = prohibited_exercise_names(recent_plans, self.prohibited_plan_limit)
        groups = self.presented_catalog(blueprint, catalog)

        system_text = self._system_text(blueprint, profile, bool(prohibited))
        user_text = self._user_text(blueprint, groups, profile, check_in, prohibited)

        metadata = PromptMetadata(
            goal=_value(blueprint.goal),
            structure=_value(blueprint.structure),
            level=_value(blueprint.level),
            focus=_value(blueprint.focus),
            seed=blueprint.seed,
            blueprint_version=blueprint.version,
            catalog_exercise_count=sum(len(items) for _, items in groups),
            prohibited_exercise_count=len(prohibited),
            recovery_mode=blueprint.recovery_mode,
        )
        return WorkoutPrompt(
            system_text=system_text,
            user_text=user_text,
            cache_key=compute_cache_key(profile, check_in, blueprint),
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Catalog presentation
    # ------------------------------------------------------------------

    def presented_catalog(
        self,
        blueprint: Blueprint,
        catalog: Sequence[CatalogExercise],
    ) -> List[Tuple[MuscleGroup, List[CatalogExercise]]]:
        """
        Equipment-filtered catalog grouped by muscle.

        Targeted muscles come first (blueprint order), then the rest in
        enum order. Within a group the entries are seed-shuffled and capped,
        which is where day-to-day variety comes from. Muscles avoided by
        every exercise block are left out entirely.
        """
        allowed = set(blueprint.equipment_constraints)
        exercise_blocks = [b for b in blueprint.blocks if not b.is_guided]
        avoided_everywhere = set(MuscleGroup)
        for block in exercise_blocks:
            avoided_everywhere &= set(block.avoid_muscles)
        if not exercise_blocks:
            avoided_everywhere = set()

        by_muscle: Dict[MuscleGroup, Dict[str, CatalogExercise]] = {}
        for exercise in catalog:
            if exercise.equipment not in allowed or exercise.muscle_group in avoided_everywhere:
                continue
            by_muscle.setdefault(exercise.muscle_group, {}).setdefault(exercise.name, exercise)

        ordered_muscles: List[MuscleGroup] = []
        for block in blueprint.blocks:
            for muscle in block.target_muscles:
                if muscle not in ordered_muscles:
                    ordered_muscles.append(muscle)
        ordered_muscles += [m for m in MuscleGroup if m not in ordered_muscles]

        rng = random.Random(blueprint.seed)
        groups = []
        for muscle in ordered_muscles:
            entries = by_muscle.get(muscle)
            if not entries:
                continue
            items = [entries[name] for name in sorted(entries)]
            rng.shuffle(items)
            groups.append((muscle, items[: self.max_exercises_per_group]))
        return groups

    # ------------------------------------------------------------------
    # Text builders
    # ------------------------------------------------------------------

    def _system_text(self, blueprint: Blueprint, profile: UserProfile, has_history: bool) -> str:
        equipment = ", ".join(e.value for e in blueprint.equipment_constraints)
        lines = [
            PERSONA,
            "",
            GOAL_GUIDELINES.get(blueprint.goal, GENERIC_GUIDELINE),
            "",
            "Rules:",
            f"- Only use exercises whose equipment is one of: {equipment}.",
            "- Use exercise names exactly as written in the catalog. Do not invent exercises.",
            "- Follow the structure exactly: same phases, same order, the requested number of exercises.",
            "- Keep sets, reps and rest inside the ranges given for each phase.",
        ]
        if blueprint.recovery_mode:
            lines.append("- This is a recovery session: never program sets to failure.")
        if profile.has_health_restrictions:
            cautions = "; ".join(
                HEALTH_CAUTIONS[c] for c in sorted(profile.health_conditions, key=_value)
                if c in HEALTH_CAUTIONS
            )
            lines.append(f"- Health considerations: {cautions}.")
        if has_history:
            lines.append(
                "- The user trained recently. Do not repeat any exercise listed under "
                "PROHIBITED EXERCISES; pick different movements for the same muscles."
            )
        lines += ["", RESPONSE_FORMAT]
        return "\n".join(lines)

    def _user_text(
        self,
        blueprint: Blueprint,
        groups: List[Tuple[MuscleGroup, List[CatalogExercise]]],
        profile: UserProfile,
        check_in: DailyCheckIn,
        prohibited: List[str],
    ) -> str:
        lines = [
            "## USER",
            f"Goal: {_value(profile.goal)}",
            f"Level: {_value(profile.level)}",
            f"Training structure: {_value(profile.structure)}",
            f"Preferred method: {_value(profile.method)}",
            f"Sessions per week: {profile.weekly_frequency}",
            "",
            "## TODAY",
            f"Focus: {_value(blueprint.focus)}",
            f"Soreness: {_value(check_in.soreness)}",
        ]
        if check_in.sore_areas:
            areas = ", ".join(sorted(_value(a) for a in check_in.sore_areas))
            lines.append(f"Sore areas: {areas}")
        lines += [
            f"Energy: {check_in.energy}/10",
            "",
            "## WORKOUT STRUCTURE",
            f"Title: {blueprint.title}",
            f"Intensity: {blueprint.intensity.value}",
            f"Estimated duration: {blueprint.estimated_duration_minutes} minutes",
            f"Recovery mode: {'yes' if blueprint.recovery_mode else 'no'}",
            f"Allowed equipment: {', '.join(e.value for e in blueprint.equipment_constraints)}",
            "",
        ]
        for index, block in enumerate(blueprint.blocks, start=1):
            lines += self._block_lines(index, block)

        lines += ["## EXERCISE CATALOG"]
        for muscle, items in groups:
            lines.append(f"### {muscle.value}")
            for exercise in items:
                lines.append(f"- {exercise.name} ({exercise.equipment.value})")
        lines.append("")

        if prohibited:
            lines += [
                "## PROHIBITED EXERCISES",
                "These were used in the last workouts. Do not repeat them:",
            ]
            lines += [f"- {name}" for name in prohibited]
            lines.append("")

        lines.append("Build today's workout now.")
        return "\n".join(lines)

    @staticmethod
    def _block_lines(index: int, block: BlockBlueprint) -> List[str]:
        lines = [f"Phase {index}: {block.phase_kind.value} - {block.title}"]
        if block.is_guided:
            activity = block.activity
            lines.append(
                f"  Guided activity: {activity.kind.value} \"{activity.title}\" for {activity.duration_minutes} minutes"
            )
        else:
            lines += [
                f"  Exercises: {block.exercise_count}",
                f"  Target muscles: {', '.join(m.value for m in block.target_muscles)}",
                f"  Sets: {block.sets}  Reps: {block.reps}  Rest: {block.rest_seconds}s  RPE: {block.rpe_target}",
            ]
        if block.avoid_muscles:
            lines.append(f"  Avoid muscles: {', '.join(m.value for m in block.avoid_muscles)}")
        lines.append("")
        return lines
