"""Achievement and UserAchievement entities."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from flockcount.core.timezone import utcnow_aware


class AchievementType(str, Enum):
    """Aggregate statistic an achievement is measured against."""

    TOTAL_COUNTS = "total_counts"
    UNIQUE_BREEDS = "unique_breeds"
    SINGLE_COUNT = "single_count"
    UNIQUE_DAYS = "unique_days"
    CONSECUTIVE_DAYS = "consecutive_days"


class Achievement(SQLModel, table=True):
    """Achievement definition: earned once its statistic reaches `requirement`."""

    __tablename__ = "achievements"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: str
    icon: str
    requirement: int
    type: str  # One of AchievementType values


class UserAchievement(SQLModel, table=True):
    """Join row recording when a user earned an achievement.

    `earned_at` is set once on insert and never updated. A user holds at
    most one row per achievement.
    """

    __tablename__ = "user_achievements"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="user_achievements_user_achievement_unique"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    achievement_id: int = Field(index=True)
    earned_at: Optional[datetime] = Field(default_factory=utcnow_aware, sa_column=Column(DateTime(timezone=True)))
