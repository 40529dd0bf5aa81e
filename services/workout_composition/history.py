"""
Workout History

Completed plans (and their ratings) for one user, newest first. The
composer reads them for anti-repetition and feedback-driven intensity.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Tuple

from sqlalchemy.orm import Session

from models import CompletedWorkout
from services.workout_composition.constants import FeedbackRating
from services.workout_composition.models import WorkoutPlan

logger = logging.getLogger(__name__)


class HistoryRepository(Protocol):
    async def list_recent(self, limit: int) -> Tuple[List[WorkoutPlan], List[FeedbackRating]]:
        """Recent plans and the ratings among them, read together."""
        ...

    async def list_recent_completed_plans(self, limit: int) -> List[WorkoutPlan]:
        ...

    async def list_recent_ratings(self, limit: int) -> List[FeedbackRating]:
        ...


class InMemoryHistoryRepository:
    """History held in a list; index 0 is the most recent."""

    def __init__(self, plans: Optional[List[WorkoutPlan]] = None, ratings: Optional[List[FeedbackRating]] = None):
        self._items: List[Tuple[WorkoutPlan, Optional[FeedbackRating]]] = []
        ratings = list(ratings or [])
        for index, plan in enumerate(plans or []):
            self._items.append((plan, ratings[index] if index < len(ratings) else None))

    def record(self, plan: WorkoutPlan, rating: Optional[FeedbackRating] = None) -> None:
        self._items.insert(0, (plan, rating))

    async def list_recent(self, limit: int) -> Tuple[List[WorkoutPlan], List[FeedbackRating]]:
        return await self.list_recent_completed_plans(limit), await self.list_recent_ratings(limit)

    async def list_recent_completed_plans(self, limit: int) -> List[WorkoutPlan]:
        return [plan for plan, _ in self._items[:limit]]

    async def list_recent_ratings(self, limit: int) -> List[FeedbackRating]:
        return [rating for _, rating in self._items[:limit] if rating is not None]


class SqlWorkoutHistoryRepository:
    """History for one user backed by the completed_workout table."""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def _recent_rows(self, limit: int) -> List[CompletedWorkout]:
        return (
            self.db.query(CompletedWorkout)
            .filter(CompletedWorkout.user_id == self.user_id)
            .order_by(CompletedWorkout.completed_at.desc(), CompletedWorkout.id.desc())
            .limit(limit)
            .all()
        )

    async def list_recent(self, limit: int) -> Tuple[List[WorkoutPlan], List[FeedbackRating]]:
        rows = self._recent_rows(limit)
        return self._plans(rows), self._ratings(rows)

    async def list_recent_completed_plans(self, limit: int) -> List[WorkoutPlan]:
        return self._plans(self._recent_rows(limit))

    async def list_recent_ratings(self, limit: int) -> List[FeedbackRating]:
        return self._ratings(self._recent_rows(limit))

    def _plans(self, rows: List[CompletedWorkout]) -> List[WorkoutPlan]:
        plans = []
        for row in rows:
            try:
                plans.append(WorkoutPlan.from_dict(row.plan_json))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping undecodable history row {row.id} for user {self.user_id}: {e}")
        return plans

    def _ratings(self, rows: List[CompletedWorkout]) -> List[FeedbackRating]:
        ratings = []
        for row in rows:
            if not row.rating:
                continue
            try:
                ratings.append(FeedbackRating(row.rating))
            except ValueError:
                logger.warning(f"Ignoring unknown rating {row.rating!r} on history row {row.id}")
        return ratings

    def record_completed(
        self,
        plan: WorkoutPlan,
        rating: Optional[FeedbackRating] = None,
        completed_at: Optional[datetime] = None,
    ) -> CompletedWorkout:
        row = CompletedWorkout(
            user_id=self.user_id,
            completed_at=completed_at or datetime.now(timezone.utc),
            title=plan.title,
            focus=plan.focus.value,
            provenance=plan.provenance.value,
            plan_json=plan.to_dict(),
            rating=rating.value if rating else None,
        )
        self.db.add(row)
        self.db.flush()
        return row
