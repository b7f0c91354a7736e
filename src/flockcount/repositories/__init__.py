"""Repository layer for FlockCount backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from flockcount.repositories.achievement import AchievementRepository
from flockcount.repositories.count import CountRepository
from flockcount.repositories.user import UserRepository

__all__ = [
    "AchievementRepository",
    "CountRepository",
    "UserRepository",
]
