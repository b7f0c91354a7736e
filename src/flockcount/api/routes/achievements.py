"""Achievement API endpoint.

- GET /api/achievements - Earned and still-available achievements of the caller
"""

from fastapi import APIRouter, Depends

from flockcount.api.dependencies import get_uow_factory, require_user
from flockcount.api.schemas import AchievementDTO, CamelModel
from flockcount.models.user import User
from flockcount.services.achievements import achievement_service

router = APIRouter(prefix="/api/achievements", tags=["achievements"])


class UserAchievementsDTO(CamelModel):
    achievements: list[AchievementDTO]
    available_achievements: list[AchievementDTO]


class AchievementsResponse(CamelModel):
    achievements: UserAchievementsDTO


@router.get("", response_model=AchievementsResponse)
async def get_achievements(
    user: User = Depends(require_user),
    uow_factory=Depends(get_uow_factory),
) -> AchievementsResponse:
    """Return `{achievements: {achievements: [...earned], availableAchievements: [...]}}`."""
    async with await uow_factory() as uow:
        earned, available = await achievement_service.get_user_achievements(uow, user.id)  # type: ignore[arg-type]

    return AchievementsResponse(
        achievements=UserAchievementsDTO(
            achievements=[AchievementDTO.from_entity(a, earned_at) for a, earned_at in earned],
            available_achievements=[AchievementDTO.from_entity(a) for a in available],
        )
    )
