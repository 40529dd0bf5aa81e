"""
Response Validator

Parses the generative service's reply and checks it against the blueprint
that produced the prompt. Either the whole reply becomes a WorkoutPlan or
a ResponseValidationError is raised; nothing is partially accepted.

Checks run in a fixed order, each over the whole reply:
    1. JSON can be extracted                    -> invalid_json
    2. phases present and non-empty             -> missing_phases
    3. every phase kind is recognized           -> unknown_phase_kind
    4. phases map in order onto blueprint blocks -> phase_count_mismatch
    5. exercise counts within bounds            -> exercise_count_out_of_bounds
    6. sets / reps / rest within block ranges   -> rep_range_violation
    7. names not in the catalog are dropped; a phase left too short fails
       with exercise_count_out_of_bounds
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from services.workout_composition.constants import (
    ActivityKind,
    EquipmentType,
    MuscleGroup,
    PhaseKind,
    PlanProvenance,
)
from services.workout_composition.errors import ResponseValidationError, ValidationErrorCode
from services.workout_composition.models import (
    ActivityPrescription,
    BlockBlueprint,
    Blueprint,
    CatalogExercise,
    ExercisePrescription,
    IntRange,
    WorkoutPlan,
    WorkoutPlanPhase,
)

logger = logging.getLogger(__name__)

DEFAULT_EXERCISE_COUNT_SLACK = 2

_FENCED_BLOCK_RE = re.compile(r"```[A-Za-z]*[ \t]*\n?(.*?)```", re.DOTALL)
_REPS_RE = re.compile(r"^\s*(\d+)(?:\s*(?:-|–|—|to)\s*(\d+))?", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Reply schema
# ---------------------------------------------------------------------------

class ReplyExercise(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    muscle_group: str = Field(default="", alias="muscleGroup")
    equipment: str = ""
    sets: int
    reps: str
    rest_seconds: int = Field(alias="restSeconds")
    notes: Optional[str] = None

    @field_validator("reps", mode="before")
    @classmethod
    def _reps_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value


class ReplyActivity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: str
    title: str = ""
    duration_minutes: int = Field(alias="durationMinutes")
    notes: Optional[str] = None


class ReplyPhase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: str
    exercises: Optional[List[ReplyExercise]] = None
    activity: Optional[ReplyActivity] = None


class WorkoutReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    phases: List[ReplyPhase]
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _first_balanced_object(text: str) -> Optional[str]:
    """First {...} span with balanced braces, ignoring braces inside strings."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def extract_json(text: Union[str, bytes]) -> Dict[str, Any]:
    """
    Pull a JSON object out of a reply that may be wrapped in prose.

    Stage 1 parses the whole text, stage 2 the fenced code blocks, stage 3
    the first balanced brace span. Each stage falls through to the next.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ResponseValidationError(ValidationErrorCode.INVALID_JSON, f"reply is not UTF-8: {e}")
    if not text or not text.strip():
        raise ResponseValidationError(ValidationErrorCode.INVALID_JSON, "reply is empty")

    data = _loads_object(text.strip())
    if data is not None:
        return data

    for match in _FENCED_BLOCK_RE.finditer(text):
        data = _loads_object(match.group(1).strip())
        if data is not None:
            return data

    span = _first_balanced_object(text)
    if span is not None:
        data = _loads_object(span)
        if data is not None:
            return data

    raise ResponseValidationError(ValidationErrorCode.INVALID_JSON, "no JSON object found in reply")


def parse_reps(text: str) -> Optional[IntRange]:
    """'8-12', '8–12', '8 to 12', '10', '30s', '12 each side' -> IntRange; None if no number."""
    match = _REPS_RE.match(text or "")
    if not match:
        return None
    low = int(match.group(1))
    high = int(match.group(2)) if match.group(2) else low
    if high < low:
        return None
    return IntRange(low, high)


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationPolicy:
    """
    exercise_count_slack: how far above the blueprint's target a phase may go.
    min_exercises_per_phase: floor for exercise phases (short phases are accepted).
    """
    exercise_count_slack: int = DEFAULT_EXERCISE_COUNT_SLACK
    min_exercises_per_phase: int = 1


class ResponseValidator:

    def __init__(self, policy: Optional[ValidationPolicy] = None):
        self.policy = policy or ValidationPolicy()

    def validate(
        self,
        raw: Union[str, bytes],
        blueprint: Blueprint,
        catalog: Optional[Sequence[CatalogExercise]] = None,
    ) -> WorkoutPlan:
        data = extract_json(raw)

        phases = data.get("phases")
        if not isinstance(phases, list) or not phases:
            raise ResponseValidationError(ValidationErrorCode.MISSING_PHASES, "reply has no phases")

        try:
            reply = WorkoutReply.model_validate(data)
        except PydanticValidationError as e:
            raise ResponseValidationError(
                ValidationErrorCode.INVALID_JSON,
                f"reply does not match the workout schema: {e.error_count()} error(s)",
            )

        kinds = self._phase_kinds(reply)
        blocks = self._match_blocks(kinds, blueprint)
        self._check_counts(reply, blocks)
        self._check_ranges(reply, blocks)
        exercises_by_phase = self._resolve_exercises(reply, blocks, catalog)

        plan_phases = []
        for reply_phase, block, exercises in zip(reply.phases, blocks, exercises_by_phase):
            plan_phases.append(WorkoutPlanPhase(
                kind=block.phase_kind,
                title=block.title,
                rpe_target=block.rpe_target,
                exercises=tuple(exercises),
                activity=self._activity(reply_phase, block),
            ))

        return WorkoutPlan(
            title=(reply.title or "").strip() or blueprint.title,
            focus=blueprint.focus,
            estimated_duration_minutes=blueprint.estimated_duration_minutes,
            intensity=blueprint.intensity,
            phases=tuple(plan_phases),
            provenance=PlanProvenance.GENERATED,
            notes=reply.notes,
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @staticmethod
    def _phase_kinds(reply: WorkoutReply) -> List[PhaseKind]:
        kinds = []
        for phase in reply.phases:
            try:
                kinds.append(PhaseKind(phase.kind.strip().lower()))
            except ValueError:
                raise ResponseValidationError(
                    ValidationErrorCode.UNKNOWN_PHASE_KIND, f"unknown phase kind {phase.kind!r}"
                )
        return kinds

    @staticmethod
    def _match_blocks(kinds: List[PhaseKind], blueprint: Blueprint) -> List[BlockBlueprint]:
        """
        Reply phases must be the blueprint's phases, in order. Secondary phases
        may be omitted; the primary exercise block may not.
        """
        expected = blueprint.phase_kinds
        if len(kinds) > len(expected):
            raise ResponseValidationError(
                ValidationErrorCode.PHASE_COUNT_MISMATCH,
                f"expected at most {len(expected)} phases, got {len(kinds)}",
            )
        matched = []
        cursor = 0
        for kind in kinds:
            while cursor < len(expected) and expected[cursor] != kind:
                cursor += 1
            if cursor == len(expected):
                raise ResponseValidationError(
                    ValidationErrorCode.PHASE_COUNT_MISMATCH,
                    f"phase sequence {[k.value for k in kinds]} does not follow "
                    f"blueprint {[k.value for k in expected]}",
                )
            matched.append(blueprint.blocks[cursor])
            cursor += 1

        primary = blueprint.primary_block
        if primary is not None and not any(block is primary for block in matched):
            raise ResponseValidationError(
                ValidationErrorCode.PHASE_COUNT_MISMATCH,
                f"reply is missing the {primary.phase_kind.value} phase",
            )
        return matched

    def _count_bounds(self, block: BlockBlueprint) -> IntRange:
        return IntRange(
            self.policy.min_exercises_per_phase,
            max(self.policy.min_exercises_per_phase, block.exercise_count + self.policy.exercise_count_slack),
        )

    def _check_counts(self, reply: WorkoutReply, blocks: List[BlockBlueprint]) -> None:
        for phase, block in zip(reply.phases, blocks):
            if block.is_guided:
                continue
            count = len(phase.exercises or [])
            bounds = self._count_bounds(block)
            if not bounds.contains(count):
                raise ResponseValidationError(
                    ValidationErrorCode.EXERCISE_COUNT_OUT_OF_BOUNDS,
                    f"{block.phase_kind.value}: {count} exercises, allowed {bounds}",
                )

    @staticmethod
    def _check_ranges(reply: WorkoutReply, blocks: List[BlockBlueprint]) -> None:
        for phase, block in zip(reply.phases, blocks):
            for exercise in phase.exercises or []:
                where = f"{block.phase_kind.value}/{exercise.name}"
                if not block.sets.contains(exercise.sets):
                    raise ResponseValidationError(
                        ValidationErrorCode.REP_RANGE_VIOLATION,
                        f"{where}: sets {exercise.sets} outside {block.sets}",
                    )
                reps = parse_reps(exercise.reps)
                if reps is None or not block.reps.covers(reps):
                    raise ResponseValidationError(
                        ValidationErrorCode.REP_RANGE_VIOLATION,
                        f"{where}: reps {exercise.reps!r} outside {block.reps}",
                    )
                if not block.rest_window.contains(exercise.rest_seconds):
                    raise ResponseValidationError(
                        ValidationErrorCode.REP_RANGE_VIOLATION,
                        f"{where}: rest {exercise.rest_seconds}s outside {block.rest_window}",
                    )

    def _resolve_exercises(
        self,
        reply: WorkoutReply,
        blocks: List[BlockBlueprint],
        catalog: Optional[Sequence[CatalogExercise]],
    ) -> List[List[ExercisePrescription]]:
        by_name = None
        if catalog is not None:
            by_name = {}
            for entry in catalog:
                by_name.setdefault(entry.name.strip().lower(), entry)

        resolved = []
        for phase, block in zip(reply.phases, blocks):
            prescriptions = []
            for exercise in phase.exercises or []:
                if by_name is None:
                    reference = self._reference_from_reply(exercise, block)
                else:
                    reference = by_name.get(exercise.name.strip().lower())
                    if reference is None:
                        logger.info(f"Dropping exercise not in catalog: {exercise.name!r}")
                        continue
                prescriptions.append(ExercisePrescription(
                    exercise=reference,
                    sets=exercise.sets,
                    reps=parse_reps(exercise.reps),
                    rest_seconds=exercise.rest_seconds,
                    tip=exercise.notes,
                ))
            if not block.is_guided and len(prescriptions) < self.policy.min_exercises_per_phase:
                raise ResponseValidationError(
                    ValidationErrorCode.EXERCISE_COUNT_OUT_OF_BOUNDS,
                    f"{block.phase_kind.value}: no catalog exercises left after dropping unknown names",
                )
            resolved.append(prescriptions)
        return resolved

    @staticmethod
    def _reference_from_reply(exercise: ReplyExercise, block: BlockBlueprint) -> CatalogExercise:
        try:
            muscle = MuscleGroup(exercise.muscle_group.strip().lower())
        except ValueError:
            muscle = block.target_muscles[0] if block.target_muscles else MuscleGroup.FULL_BODY
        try:
            equipment = EquipmentType(exercise.equipment.strip().lower())
        except ValueError:
            equipment = EquipmentType.BODYWEIGHT
        return CatalogExercise(name=exercise.name.strip(), muscle_group=muscle, equipment=equipment)

    @staticmethod
    def _activity(phase: ReplyPhase, block: BlockBlueprint) -> Optional[ActivityPrescription]:
        if phase.activity is not None:
            try:
                kind = ActivityKind(phase.activity.kind.strip().lower())
            except ValueError:
                kind = None
            if kind is not None and phase.activity.duration_minutes > 0:
                return ActivityPrescription(
                    kind=kind,
                    title=phase.activity.title or (block.activity.title if block.activity else kind.value),
                    duration_minutes=phase.activity.duration_minutes,
                    notes=phase.activity.notes,
                )
        if block.activity is not None:
            return ActivityPrescription(
                kind=block.activity.kind,
                title=block.activity.title,
                duration_minutes=block.activity.duration_minutes,
            )
        return None
