"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from flockcount.models.achievement import Achievement, AchievementType, UserAchievement
from flockcount.models.count import GUEST_USER_ID, Count
from flockcount.models.user import User, UserSettings

__all__ = [
    "Achievement",
    "AchievementType",
    "Count",
    "GUEST_USER_ID",
    "User",
    "UserAchievement",
    "UserSettings",
]
