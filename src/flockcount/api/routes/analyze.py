"""Image analysis endpoint.

POST /api/analyze accepts `{"image": "data:image/...;base64,..."}` from both
guests and signed-in users:

- Signed-in: the result is stored as a count, achievements are evaluated in
  the same transaction, and newly earned achievements are returned so the
  client can show them without a second request.
- Guest: nothing is stored; the result carries an opaque `guest-...` id,
  `userId` 0 and a `guest-mode` label.

Error mapping:
- 400: image is not a base64 data URL
- 422: vision provider rejected the request
- 503: vision provider unavailable or returned unusable output (retryable)
"""

import asyncio
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from flockcount.api.dependencies import get_analyzer, get_optional_user, get_settings, get_uow_factory
from flockcount.api.schemas import AchievementDTO, CamelModel, CountDTO
from flockcount.core.config import Settings
from flockcount.core.timezone import utcnow_aware
from flockcount.models.count import GUEST_USER_ID, Count
from flockcount.models.user import User
from flockcount.services.achievements import achievement_service
from flockcount.services.exceptions import (
    InvalidImageError,
    PermanentError,
    TransientError,
)
from flockcount.services.vision.analyzer import (
    AnalysisResult,
    ImageAnalyzer,
    validate_image_data_url,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["analyze"])

GUEST_MODE_LABEL = "guest-mode"


class AnalyzeRequest(BaseModel):
    """Request model for image analysis."""

    image: str


class AnalyzeResponse(CamelModel):
    """Response model for image analysis."""

    count: CountDTO
    new_achievements: list[AchievementDTO] = []


async def _run_analysis(analyzer: ImageAnalyzer, image: str, timeout: float) -> AnalysisResult:
    try:
        return await asyncio.wait_for(analyzer.analyze(image), timeout=timeout)
    except asyncio.TimeoutError:
        raise TransientError(f"Vision analysis timed out after {timeout}s")


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_image(
    request: AnalyzeRequest,
    user: User | None = Depends(get_optional_user),
    analyzer: ImageAnalyzer = Depends(get_analyzer),
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
) -> AnalyzeResponse:
    """Analyze one image and, for signed-in users, store the result."""
    try:
        image = validate_image_data_url(request.image)
        result = await _run_analysis(analyzer, image, settings.analyze_timeout_seconds)
    except InvalidImageError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransientError as e:
        logger.warning("analyze.transient_failure", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except PermanentError as e:
        logger.error("analyze.rejected", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    if user is None:
        guest_count = CountDTO(
            id=f"guest-{uuid4().hex}",
            user_id=GUEST_USER_ID,
            count=result.count,
            image_url=image,
            timestamp=utcnow_aware(),
            breed=result.breed,
            confidence=result.confidence,
            labels=[*result.labels, GUEST_MODE_LABEL],
        )
        logger.info("analyze.guest_completed", count=result.count)
        return AnalyzeResponse(count=guest_count)

    async with await uow_factory() as uow:
        count = await uow.counts.add(
            Count(
                user_id=user.id,  # type: ignore[arg-type]
                count=result.count,
                image_url=image,
                breed=result.breed,
                confidence=result.confidence,
                labels=result.labels,
            )
        )
        new_achievements = await achievement_service.check_achievements(uow, user.id)  # type: ignore[arg-type]
        response = AnalyzeResponse(
            count=CountDTO.from_entity(count),
            new_achievements=[AchievementDTO.from_entity(a) for a in new_achievements],
        )

    logger.info(
        "analyze.completed",
        user_id=user.id,
        count_id=count.id,
        count=count.count,
        new_achievements=len(new_achievements),
    )
    return response
