"""User repository for FlockCount backend.

Provides lookups used by the authentication dependency.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flockcount.models.user import User


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, user_id: int) -> User | None:
        """Retrieve user by primary key.

        Args:
            user_id: User's integer identifier

        Returns:
            User if found, None otherwise
        """
        result = await self.session.execute(select(User).where(User.id == user_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> User | None:
        """Retrieve user by unique username."""
        result = await self.session.execute(select(User).where(User.username == username))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        """Persist new user to database.

        Args:
            user: User entity to persist

        Returns:
            Persisted user with generated ID
        """
        self.session.add(user)
        await self.session.flush()
        return user
