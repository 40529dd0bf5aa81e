"""
Workout Composition API Router

One workout per user per day, built from the profile and today's check-in.
Free-text check-in fields (focus, soreness, intensity words) go through the
synonym tables, so "sore", "a bit tight" or "legs" are all accepted.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import ValidationError, WorkoutUnavailableError
from services.workout_composition.composer import WorkoutComposer
from services.workout_composition.constants import (
    FeedbackRating,
    HealthCondition,
    MuscleGroup,
    TrainingLevel,
    TrainingMethod,
    TrainingStructure,
)
from services.workout_composition.errors import ComposerError
from services.workout_composition.history import SqlWorkoutHistoryRepository
from services.workout_composition.models import DailyCheckIn, UserProfile, WorkoutPlan
from services.workout_composition.synonyms import normalize_token, parse_focus, parse_goal, parse_soreness

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/workouts", tags=["Workout Composition"])


class ProfileIn(BaseModel):
    user_id: str = Field(min_length=1)
    goal: str
    structure: str
    method: str = "traditional"
    level: str = "intermediate"
    health_conditions: List[str] = Field(default_factory=list)
    weekly_frequency: int = Field(default=3, ge=1, le=7)


class CheckInIn(BaseModel):
    focus: Optional[str] = None  # "upper", "legs", "surprise me", ...
    soreness: Optional[str] = None  # "none", "a little", "very sore", ...
    sore_areas: List[str] = Field(default_factory=list)
    energy: int = Field(default=5, ge=1, le=10)
    day: Optional[date] = None


class ComposeRequest(BaseModel):
    profile: ProfileIn
    check_in: CheckInIn
    seed: Optional[int] = None
    allow_generation: bool = True
    use_history: bool = True


class BlueprintRequest(BaseModel):
    profile: ProfileIn
    check_in: CheckInIn
    seed: Optional[int] = None


class CompletedWorkoutIn(BaseModel):
    user_id: str = Field(min_length=1)
    plan: Dict[str, Any]
    rating: Optional[str] = None  # too_easy | just_right | too_hard
    completed_at: Optional[datetime] = None


class CompletedWorkoutResponse(BaseModel):
    id: int
    user_id: str
    title: str
    rating: Optional[str] = None
    completed_at: datetime


# ---------------------------------------------------------------------------
# Request conversion
# ---------------------------------------------------------------------------

def _enum_or_token(enum_cls: Type[Enum], text: str) -> Union[Enum, str]:
    """Enum member when recognized; otherwise the normalized token (default template path)."""
    token = normalize_token(text).replace(" ", "_")
    try:
        return enum_cls(token)
    except ValueError:
        return token


def _health_conditions(values: List[str]) -> frozenset:
    conditions = set()
    for value in values:
        condition = _enum_or_token(HealthCondition, value)
        conditions.add(condition if isinstance(condition, HealthCondition) else HealthCondition.OTHER)
    return frozenset(conditions)


def _sore_areas(values: List[str]) -> frozenset:
    areas = set()
    for value in values:
        area = _enum_or_token(MuscleGroup, value)
        if not isinstance(area, MuscleGroup):
            raise ValidationError(f"Unknown muscle group: {value!r}", field="sore_areas")
        areas.add(area)
    return frozenset(areas)


def to_user_profile(data: ProfileIn) -> UserProfile:
    try:
        goal = parse_goal(data.goal)
    except ValueError:
        goal = normalize_token(data.goal)
    return UserProfile(
        user_id=data.user_id,
        goal=goal,
        structure=_enum_or_token(TrainingStructure, data.structure),
        method=_enum_or_token(TrainingMethod, data.method),
        level=_enum_or_token(TrainingLevel, data.level),
        health_conditions=_health_conditions(data.health_conditions),
        weekly_frequency=data.weekly_frequency,
    )


def to_daily_check_in(data: CheckInIn) -> DailyCheckIn:
    return DailyCheckIn(
        focus=parse_focus(data.focus),
        soreness=parse_soreness(data.soreness),
        sore_areas=_sore_areas(data.sore_areas),
        energy=data.energy,
        day=data.day or date.today(),
    )


def get_workout_composer(request: Request) -> WorkoutComposer:
    return request.app.state.workout_composer


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/compose")
async def compose_workout(
    body: ComposeRequest,
    db: Session = Depends(get_db),
    composer: WorkoutComposer = Depends(get_workout_composer),
):
    """
    Today's workout.

    Served from cache when the same request was answered before; otherwise
    generated, or built locally when generation is unavailable. Responds 503
    only when no compatible exercises exist at all.
    """
    profile = to_user_profile(body.profile)
    check_in = to_daily_check_in(body.check_in)
    history = SqlWorkoutHistoryRepository(db, profile.user_id) if body.use_history else None

    try:
        result = await composer.compose(
            profile,
            check_in,
            seed=body.seed,
            history=history,
            allow_generation=body.allow_generation,
        )
    except ComposerError as e:
        logger.error(f"Workout composition failed for user {profile.user_id}: {e}")
        raise WorkoutUnavailableError(str(e))

    return result.to_dict()


@router.post("/blueprint")
async def preview_blueprint(
    body: BlueprintRequest,
    composer: WorkoutComposer = Depends(get_workout_composer),
):
    """Blueprint only: no generation, no cache, no history."""
    profile = to_user_profile(body.profile)
    check_in = to_daily_check_in(body.check_in)
    return composer.engine.generate_blueprint(profile, check_in, body.seed).to_dict()


@router.post("/history", response_model=CompletedWorkoutResponse, status_code=status.HTTP_201_CREATED)
async def record_completed_workout(
    body: CompletedWorkoutIn,
    db: Session = Depends(get_db),
):
    """Record a finished workout. Feeds anti-repetition and feedback-driven intensity."""
    try:
        plan = WorkoutPlan.from_dict(body.plan)
    except (KeyError, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid plan: {e}", field="plan")

    rating = None
    if body.rating:
        try:
            rating = FeedbackRating(normalize_token(body.rating).replace(" ", "_"))
        except ValueError:
            raise ValidationError(f"Unknown rating: {body.rating!r}", field="rating")

    row = SqlWorkoutHistoryRepository(db, body.user_id).record_completed(plan, rating, body.completed_at)
    db.commit()
    db.refresh(row)
    return CompletedWorkoutResponse(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        rating=row.rating,
        completed_at=row.completed_at,
    )
