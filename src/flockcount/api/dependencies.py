"""FastAPI dependencies for request context and authentication.

Session/cookie authentication is handled by middleware outside this package;
it places the authenticated user id on `request.state.user_id`.
"""

from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from flockcount.core.config import Settings
from flockcount.models.user import User
from flockcount.services.vision.analyzer import ImageAnalyzer
from flockcount.uow import UnitOfWork


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.counts.list_for_user(user_id)
    """
    return request.app.state.uow_factory


def get_analyzer(request: Request) -> ImageAnalyzer:
    """Get the configured ImageAnalyzer from app state."""
    return request.app.state.analyzer


def get_optional_user_id(request: Request) -> int | None:
    """User id set by the authentication middleware, or None for guests."""
    return getattr(request.state, "user_id", None)


async def require_user(
    user_id: int | None = Depends(get_optional_user_id),
    uow_factory=Depends(get_uow_factory),
) -> User:
    """Load the authenticated, active user or answer 401.

    Raises:
        HTTPException: 401 if unauthenticated, unknown or deactivated
    """
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    async with await uow_factory() as uow:
        user = await uow.users.get_by_id(user_id)

    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    return user


async def get_optional_user(
    user_id: int | None = Depends(get_optional_user_id),
    uow_factory=Depends(get_uow_factory),
) -> User | None:
    """Authenticated user if the request carries one, None for guests.

    A session pointing at a deleted or deactivated account is rejected
    rather than silently downgraded to guest mode.
    """
    if user_id is None:
        return None
    return await require_user(user_id, uow_factory)
