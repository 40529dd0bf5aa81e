"""
Workout Composition Data Models

Plain dataclasses passed between the composition stages. Request inputs and
blueprints are frozen; plans are built once and never mutated afterwards.
Every persisted type round-trips through to_dict()/from_dict() so it can be
stored as JSON in the cache and the history table.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from services.workout_composition.constants import (
    ActivityKind,
    DailyFocus,
    EquipmentType,
    FitnessGoal,
    HealthCondition,
    MuscleGroup,
    PhaseKind,
    PlanProvenance,
    PRIMARY_PHASE_KINDS,
    SorenessLevel,
    TrainingLevel,
    TrainingMethod,
    TrainingStructure,
    WorkoutIntensity,
)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


@dataclass(frozen=True)
class IntRange:
    """Inclusive integer range, e.g. reps 8-12."""
    minimum: int
    maximum: int

    @classmethod
    def single(cls, value: int) -> "IntRange":
        return cls(value, value)

    def contains(self, value: int) -> bool:
        return self.minimum <= value <= self.maximum

    def covers(self, other: "IntRange") -> bool:
        return self.minimum <= other.minimum and other.maximum <= self.maximum

    def __str__(self) -> str:
        if self.minimum == self.maximum:
            return str(self.minimum)
        return f"{self.minimum}-{self.maximum}"

    def to_dict(self) -> Dict[str, int]:
        return {"min": self.minimum, "max": self.maximum}

    @classmethod
    def from_dict(cls, data: Dict[str, int]) -> "IntRange":
        return cls(int(data["min"]), int(data["max"]))


# ---------------------------------------------------------------------------
# Request inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserProfile:
    user_id: str
    goal: FitnessGoal
    structure: TrainingStructure
    method: TrainingMethod = TrainingMethod.TRADITIONAL
    level: TrainingLevel = TrainingLevel.INTERMEDIATE
    health_conditions: FrozenSet[HealthCondition] = frozenset()
    weekly_frequency: int = 3

    @property
    def has_health_restrictions(self) -> bool:
        return any(c != HealthCondition.NONE for c in self.health_conditions)

    def signature(self) -> str:
        """Stable, normalized identity of the profile for cache keys."""
        conditions = ",".join(sorted(_enum_value(c) for c in self.health_conditions)) or "none"
        return "|".join([
            self.user_id,
            _enum_value(self.goal),
            _enum_value(self.structure),
            _enum_value(self.method),
            _enum_value(self.level),
            conditions,
            str(self.weekly_frequency),
        ])


@dataclass(frozen=True)
class DailyCheckIn:
    focus: DailyFocus
    soreness: SorenessLevel = SorenessLevel.NONE
    sore_areas: FrozenSet[MuscleGroup] = frozenset()
    energy: int = 5  # 1-10
    day: date = field(default_factory=date.today)

    def signature(self) -> str:
        """Check-in identity for cache keys. The calendar day is left out: it only reaches the key via the seed."""
        areas = ",".join(sorted(_enum_value(a) for a in self.sore_areas)) or "none"
        return "|".join([
            _enum_value(self.focus),
            _enum_value(self.soreness),
            areas,
            str(self.energy),
        ])


# ---------------------------------------------------------------------------
# Blueprint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GuidedActivity:
    kind: ActivityKind
    title: str
    duration_minutes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "duration_minutes": self.duration_minutes,
        }


@dataclass(frozen=True)
class BlockBlueprint:
    phase_kind: PhaseKind
    title: str
    exercise_count: int  # 0 only for guided blocks
    target_muscles: Tuple[MuscleGroup, ...]
    avoid_muscles: Tuple[MuscleGroup, ...]
    sets: IntRange
    reps: IntRange
    rest_seconds: int
    rpe_target: int
    activity: Optional[GuidedActivity] = None

    @property
    def is_guided(self) -> bool:
        return self.activity is not None and self.exercise_count == 0

    @property
    def rest_window(self) -> IntRange:
        """Rest a prescription may use: half to one-and-a-half times the target."""
        return IntRange(self.rest_seconds // 2, (self.rest_seconds * 3) // 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase_kind": self.phase_kind.value,
            "title": self.title,
            "exercise_count": self.exercise_count,
            "target_muscles": [m.value for m in self.target_muscles],
            "avoid_muscles": [m.value for m in self.avoid_muscles],
            "sets": self.sets.to_dict(),
            "reps": self.reps.to_dict(),
            "rest_seconds": self.rest_seconds,
            "rpe_target": self.rpe_target,
            "activity": self.activity.to_dict() if self.activity else None,
        }


@dataclass(frozen=True)
class Blueprint:
    title: str
    focus: DailyFocus
    goal: Any  # FitnessGoal, or the raw value for an unsupported goal
    structure: TrainingStructure
    level: TrainingLevel
    intensity: WorkoutIntensity
    estimated_duration_minutes: int
    seed: int
    recovery_mode: bool
    version: str
    blocks: Tuple[BlockBlueprint, ...]
    equipment_constraints: Tuple[EquipmentType, ...]

    @property
    def phase_kinds(self) -> List[PhaseKind]:
        return [b.phase_kind for b in self.blocks]

    @property
    def primary_block(self) -> Optional[BlockBlueprint]:
        """The main strength/conditioning block; the first exercise block if none."""
        for block in self.blocks:
            if block.phase_kind in PRIMARY_PHASE_KINDS and not block.is_guided:
                return block
        for block in self.blocks:
            if not block.is_guided:
                return block
        return None

    def block_for(self, kind: PhaseKind) -> Optional[BlockBlueprint]:
        for block in self.blocks:
            if block.phase_kind == kind:
                return block
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "focus": self.focus.value,
            "goal": _enum_value(self.goal),
            "structure": _enum_value(self.structure),
            "level": _enum_value(self.level),
            "intensity": self.intensity.value,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "seed": self.seed,
            "recovery_mode": self.recovery_mode,
            "version": self.version,
            "blocks": [b.to_dict() for b in self.blocks],
            "equipment_constraints": [e.value for e in self.equipment_constraints],
        }


# ---------------------------------------------------------------------------
# Catalog and plans
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogExercise:
    name: str
    muscle_group: MuscleGroup
    equipment: EquipmentType
    level: TrainingLevel = TrainingLevel.BEGINNER  # minimum level required
    instructions: Tuple[str, ...] = ()
    media_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "muscle_group": self.muscle_group.value,
            "equipment": self.equipment.value,
            "level": self.level.value,
            "instructions": list(self.instructions),
            "media_url": self.media_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogExercise":
        return cls(
            name=data["name"],
            muscle_group=MuscleGroup(data["muscle_group"]),
            equipment=EquipmentType(data["equipment"]),
            level=TrainingLevel(data.get("level", TrainingLevel.BEGINNER.value)),
            instructions=tuple(data.get("instructions") or ()),
            media_url=data.get("media_url"),
        )


@dataclass(frozen=True)
class ExercisePrescription:
    exercise: CatalogExercise
    sets: int
    reps: IntRange
    rest_seconds: int
    tip: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exercise": self.exercise.to_dict(),
            "sets": self.sets,
            "reps": self.reps.to_dict(),
            "rest_seconds": self.rest_seconds,
            "tip": self.tip,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExercisePrescription":
        return cls(
            exercise=CatalogExercise.from_dict(data["exercise"]),
            sets=int(data["sets"]),
            reps=IntRange.from_dict(data["reps"]),
            rest_seconds=int(data["rest_seconds"]),
            tip=data.get("tip"),
        )


@dataclass(frozen=True)
class ActivityPrescription:
    kind: ActivityKind
    title: str
    duration_minutes: int
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "duration_minutes": self.duration_minutes,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityPrescription":
        return cls(
            kind=ActivityKind(data["kind"]),
            title=data["title"],
            duration_minutes=int(data["duration_minutes"]),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class WorkoutPlanPhase:
    kind: PhaseKind
    title: str
    rpe_target: int
    exercises: Tuple[ExercisePrescription, ...] = ()
    activity: Optional[ActivityPrescription] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "rpe_target": self.rpe_target,
            "exercises": [e.to_dict() for e in self.exercises],
            "activity": self.activity.to_dict() if self.activity else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkoutPlanPhase":
        activity = data.get("activity")
        return cls(
            kind=PhaseKind(data["kind"]),
            title=data["title"],
            rpe_target=int(data["rpe_target"]),
            exercises=tuple(ExercisePrescription.from_dict(e) for e in data.get("exercises") or ()),
            activity=ActivityPrescription.from_dict(activity) if activity else None,
        )


@dataclass(frozen=True)
class WorkoutPlan:
    title: str
    focus: DailyFocus
    estimated_duration_minutes: int
    intensity: WorkoutIntensity
    phases: Tuple[WorkoutPlanPhase, ...]
    provenance: PlanProvenance = PlanProvenance.GENERATED
    notes: Optional[str] = None

    def exercise_names(self) -> List[str]:
        return [p.exercise.name for phase in self.phases for p in phase.exercises]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "focus": self.focus.value,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "intensity": self.intensity.value,
            "phases": [p.to_dict() for p in self.phases],
            "provenance": self.provenance.value,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkoutPlan":
        return cls(
            title=data["title"],
            focus=DailyFocus(data["focus"]),
            estimated_duration_minutes=int(data["estimated_duration_minutes"]),
            intensity=WorkoutIntensity(data["intensity"]),
            phases=tuple(WorkoutPlanPhase.from_dict(p) for p in data["phases"]),
            provenance=PlanProvenance(data.get("provenance", PlanProvenance.GENERATED.value)),
            notes=data.get("notes"),
        )


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheEntry:
    key: str
    plan: WorkoutPlan
    created_at: datetime
    expires_at: datetime
    # Audit-only; never part of the lookup key
    goal: Optional[str] = None
    structure: Optional[str] = None
    focus: Optional[str] = None
    seed: Optional[int] = None
    version: Optional[str] = None

    @property
    def provenance(self) -> PlanProvenance:
        return self.plan.provenance

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "plan": self.plan.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "goal": self.goal,
            "structure": self.structure,
            "focus": self.focus,
            "seed": self.seed,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            plan=WorkoutPlan.from_dict(data["plan"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            goal=data.get("goal"),
            structure=data.get("structure"),
            focus=data.get("focus"),
            seed=data.get("seed"),
            version=data.get("version"),
        )
