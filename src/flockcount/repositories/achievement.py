"""Achievement repository for FlockCount backend.

Provides access to achievement definitions and per-user grants.
"""

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from flockcount.core.timezone import utcnow_aware
from flockcount.models.achievement import Achievement, UserAchievement


class AchievementRepository:
    """Repository for Achievement and UserAchievement entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def count_definitions(self) -> int:
        """Number of achievement definitions in the table."""
        result = await self.session.execute(select(func.count(Achievement.id)))  # type: ignore[arg-type]
        return int(result.scalar_one())

    async def add_definitions(self, achievements: Iterable[Achievement]) -> list[Achievement]:
        """Persist several achievement definitions at once."""
        items = list(achievements)
        self.session.add_all(items)
        await self.session.flush()
        return items

    async def list_definitions(self) -> list[Achievement]:
        """All achievement definitions ordered by id."""
        result = await self.session.execute(select(Achievement).order_by(Achievement.id.asc()))  # type: ignore[union-attr]
        return list(result.scalars().all())

    async def get_earned_ids(self, user_id: int) -> set[int]:
        """Ids of achievements the user has already earned."""
        result = await self.session.execute(
            select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)  # type: ignore[arg-type]
        )
        return {row[0] for row in result.all()}

    async def grant(self, user_id: int, achievement_id: int) -> bool:
        """Record that a user earned an achievement (idempotent).

        Query explanation:
        - INSERT: Try to insert the grant row
        - ON CONFLICT (user_id, achievement_id) DO NOTHING: another
          transaction already granted it

        Returns:
            True if this call inserted the grant, False if it already existed
        """
        dialect = postgresql if self.session.bind.dialect.name == "postgresql" else sqlite
        stmt = (
            dialect.insert(UserAchievement.__table__)  # type: ignore[attr-defined]
            .values(user_id=user_id, achievement_id=achievement_id, earned_at=utcnow_aware())
            .on_conflict_do_nothing(index_elements=["user_id", "achievement_id"])
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def list_earned(self, user_id: int) -> list[tuple[Achievement, UserAchievement]]:
        """Earned achievements of a user with their grant rows, oldest grant first."""
        result = await self.session.execute(
            select(Achievement, UserAchievement)
            .join(UserAchievement, UserAchievement.achievement_id == Achievement.id)  # type: ignore[arg-type]
            .where(UserAchievement.user_id == user_id)  # type: ignore[arg-type]
            .order_by(UserAchievement.earned_at.asc(), UserAchievement.id.asc())  # type: ignore[union-attr]
        )
        return [(row[0], row[1]) for row in result.all()]
