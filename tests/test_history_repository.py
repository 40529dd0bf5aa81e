"""
Tests for workout history repositories.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event

from models import CompletedWorkout
from services.workout_composition.constants import (
    DailyFocus,
    EquipmentType,
    FeedbackRating,
    MuscleGroup,
    PhaseKind,
    PlanProvenance,
    WorkoutIntensity,
)
from services.workout_composition.history import InMemoryHistoryRepository, SqlWorkoutHistoryRepository
from services.workout_composition.models import (
    CatalogExercise,
    ExercisePrescription,
    IntRange,
    WorkoutPlan,
    WorkoutPlanPhase,
)

START = datetime(2026, 3, 1, 7, 0, tzinfo=timezone.utc)


def _plan(title, exercise="Goblet Squat"):
    return WorkoutPlan(
        title=title,
        focus=DailyFocus.LOWER,
        estimated_duration_minutes=40,
        intensity=WorkoutIntensity.MODERATE,
        phases=(WorkoutPlanPhase(
            kind=PhaseKind.STRENGTH,
            title="Main",
            rpe_target=7,
            exercises=(ExercisePrescription(
                exercise=CatalogExercise(exercise, MuscleGroup.QUADS, EquipmentType.DUMBBELL),
                sets=3,
                reps=IntRange(8, 12),
                rest_seconds=90,
            ),),
        ),),
        provenance=PlanProvenance.FALLBACK,
    )


class TestSqlWorkoutHistoryRepository:

    @pytest.mark.asyncio
    async def test_lists_newest_first(self, db_session):
        repo = SqlWorkoutHistoryRepository(db_session, "user-1")
        repo.record_completed(_plan("Day 1"), FeedbackRating.TOO_EASY, START)
        repo.record_completed(_plan("Day 3"), FeedbackRating.TOO_HARD, START + timedelta(days=2))
        repo.record_completed(_plan("Day 2"), None, START + timedelta(days=1))
        db_session.commit()

        plans = await repo.list_recent_completed_plans(limit=2)
        assert [p.title for p in plans] == ["Day 3", "Day 2"]
        assert plans[0].provenance == PlanProvenance.FALLBACK
        assert plans[0].exercise_names() == ["Goblet Squat"]

        ratings = await repo.list_recent_ratings(limit=10)
        assert ratings == [FeedbackRating.TOO_HARD, FeedbackRating.TOO_EASY]

    @pytest.mark.asyncio
    async def test_scoped_to_one_user(self, db_session):
        SqlWorkoutHistoryRepository(db_session, "other").record_completed(_plan("Theirs"), None, START)
        db_session.commit()

        repo = SqlWorkoutHistoryRepository(db_session, "user-1")
        assert await repo.list_recent_completed_plans(limit=5) == []

    def test_record_stores_plan_json(self, db_session):
        row = SqlWorkoutHistoryRepository(db_session, "user-1").record_completed(
            _plan("Leg Day"), FeedbackRating.JUST_RIGHT, START,
        )
        assert row.id is not None
        assert row.focus == "lower"
        assert row.provenance == "fallback"
        assert row.rating == "just_right"
        assert row.plan_json["title"] == "Leg Day"

    @pytest.mark.asyncio
    async def test_skips_undecodable_rows_and_unknown_ratings(self, db_session):
        repo = SqlWorkoutHistoryRepository(db_session, "user-1")
        repo.record_completed(_plan("Good"), FeedbackRating.TOO_EASY, START)
        db_session.add(CompletedWorkout(
            user_id="user-1",
            completed_at=START + timedelta(days=1),
            title="Broken",
            plan_json={"title": "Broken"},
            rating="meh",
        ))
        db_session.commit()

        plans = await repo.list_recent_completed_plans(limit=5)
        ratings = await repo.list_recent_ratings(limit=5)

        assert [p.title for p in plans] == ["Good"]
        assert ratings == [FeedbackRating.TOO_EASY]


    @pytest.mark.asyncio
    async def test_list_recent_reads_the_table_once(self, db_session):
        repo = SqlWorkoutHistoryRepository(db_session, "user-1")
        repo.record_completed(_plan("Day 1"), FeedbackRating.TOO_EASY, START)
        repo.record_completed(_plan("Day 2"), None, START + timedelta(days=1))
        db_session.commit()

        selects = []

        def count_selects(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                selects.append(statement)

        engine = db_session.get_bind()
        event.listen(engine, "before_cursor_execute", count_selects)
        try:
            plans, ratings = await repo.list_recent(limit=5)
        finally:
            event.remove(engine, "before_cursor_execute", count_selects)

        assert len(selects) == 1
        assert [p.title for p in plans] == ["Day 2", "Day 1"]
        assert ratings == [FeedbackRating.TOO_EASY]


class TestInMemoryHistoryRepository:

    @pytest.mark.asyncio
    async def test_record_puts_newest_first(self):
        repo = InMemoryHistoryRepository([_plan("Old")], [FeedbackRating.TOO_HARD])
        repo.record(_plan("New"))

        plans = await repo.list_recent_completed_plans(limit=5)
        assert [p.title for p in plans] == ["New", "Old"]
        assert await repo.list_recent_ratings(limit=5) == [FeedbackRating.TOO_HARD]
        assert await repo.list_recent_ratings(limit=1) == []
