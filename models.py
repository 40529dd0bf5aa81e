from sqlalchemy import Column, Integer, DateTime, Text, String, Index, JSON
from sqlalchemy.sql import func
from core.database import Base


class CompletedWorkout(Base):
    """A workout the user finished. Feeds anti-repetition and feedback analysis."""
    __tablename__ = "completed_workout"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    title = Column(Text, nullable=False)
    focus = Column(Text, nullable=True)
    provenance = Column(Text, nullable=True)  # generated | fallback | local
    plan_json = Column(JSON, nullable=False)  # WorkoutPlan.to_dict()
    rating = Column(Text, nullable=True)  # too_easy | just_right | too_hard

    __table_args__ = (
        Index("ix_completed_workout_user_completed", "user_id", "completed_at"),
    )
