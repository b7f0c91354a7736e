"""Count repository for FlockCount backend.

Provides per-user access to the count log. Every query is scoped by user_id;
there is no method that reads or deletes another user's rows.
"""

from collections.abc import Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from flockcount.models.count import Count


class CountRepository:
    """Repository for Count entities.

    Methods:
    - add: Persist a new count (id and timestamp assigned on insert)
    - list_for_user: All counts of a user, oldest first
    - delete_for_user: Bulk delete by id set, silently ignoring unowned ids
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, count: Count) -> Count:
        """Persist new count to database.

        Args:
            count: Count entity to persist

        Returns:
            Persisted count with generated ID
        """
        self.session.add(count)
        await self.session.flush()
        await self.session.refresh(count)
        return count

    async def get_by_id(self, count_id: int) -> Count | None:
        """Retrieve count by primary key."""
        result = await self.session.execute(select(Count).where(Count.id == count_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: int) -> list[Count]:
        """Retrieve all counts of a user ordered by timestamp (oldest first).

        Clients re-sort for display; the stored order is ascending.

        Args:
            user_id: Owner's identifier

        Returns:
            List of counts ordered by timestamp ascending, then id
        """
        result = await self.session.execute(
            select(Count)
            .where(Count.user_id == user_id)  # type: ignore[arg-type]
            .order_by(Count.timestamp.asc(), Count.id.asc())  # type: ignore[union-attr,attr-defined]
        )
        return list(result.scalars().all())

    async def delete_for_user(self, user_id: int, count_ids: Iterable[int]) -> int:
        """Delete the caller's counts whose id is in `count_ids`.

        Ids that do not exist or belong to another user are filtered out by
        the WHERE clause; no error is raised and nothing about them is revealed.

        Args:
            user_id: Authenticated caller
            count_ids: Ids requested for deletion

        Returns:
            Number of rows actually deleted
        """
        ids = list(set(count_ids))
        if not ids:
            return 0

        result = await self.session.execute(
            delete(Count).where(
                Count.user_id == user_id,  # type: ignore[arg-type]
                Count.id.in_(ids),  # type: ignore[union-attr]
            )
        )
        return result.rowcount  # type: ignore[attr-defined]
