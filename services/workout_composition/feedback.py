"""
Feedback and Diversity

FeedbackAnalyzer turns recent "too easy / too hard" ratings into a one-step
intensity adjustment. diversity_score measures how much of a new plan is
fresh compared with recent plans, using loose name matching so "Dumbbell
Bench Press" and "Bench Press" count as the same movement.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from services.workout_composition.constants import FeedbackRating
from services.workout_composition.models import WorkoutPlan

logger = logging.getLogger(__name__)

MIN_RATINGS = 3
MAJORITY_SHARE = 0.6
MIN_SUBSTRING_LENGTH = 4
MIN_SHARED_WORDS = 2


@dataclass(frozen=True)
class FeedbackAdjustment:
    intensity_steps: int  # -1, 0 or +1
    reason: str


class FeedbackAnalyzer:

    def __init__(self, min_ratings: int = MIN_RATINGS, majority_share: float = MAJORITY_SHARE):
        self.min_ratings = min_ratings
        self.majority_share = majority_share

    def analyze(self, ratings: Sequence[FeedbackRating]) -> FeedbackAdjustment:
        ratings = list(ratings)
        if len(ratings) < self.min_ratings:
            return FeedbackAdjustment(0, f"only {len(ratings)} rated workouts")

        too_easy = sum(1 for r in ratings if r == FeedbackRating.TOO_EASY)
        too_hard = sum(1 for r in ratings if r == FeedbackRating.TOO_HARD)
        if too_easy / len(ratings) >= self.majority_share:
            return FeedbackAdjustment(1, f"{too_easy}/{len(ratings)} rated too easy")
        if too_hard / len(ratings) >= self.majority_share:
            return FeedbackAdjustment(-1, f"{too_hard}/{len(ratings)} rated too hard")
        return FeedbackAdjustment(0, "ratings mixed")


def _words(name: str) -> set:
    return {w for w in name.lower().replace("-", " ").split() if len(w) > 2}


def names_match(a: str, b: str) -> bool:
    """Same movement: equal, one contains the other (shorter >= 4 chars), or >= 2 shared words."""
    left, right = a.strip().lower(), b.strip().lower()
    if left == right:
        return True
    shorter, longer = sorted((left, right), key=len)
    if len(shorter) >= MIN_SUBSTRING_LENGTH and shorter in longer:
        return True
    return len(_words(left) & _words(right)) >= MIN_SHARED_WORDS


def diversity_score(plan: WorkoutPlan, recent_plans: Sequence[WorkoutPlan]) -> float:
    """Share of the plan's exercises with no match in recent plans. 1.0 when there is nothing to compare."""
    names = plan.exercise_names()
    previous: List[str] = [n for p in recent_plans for n in p.exercise_names()]
    if not names or not previous:
        return 1.0
    fresh = sum(1 for name in names if not any(names_match(name, old) for old in previous))
    return fresh / len(names)
