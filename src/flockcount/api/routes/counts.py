"""Count history API endpoints.

- GET /api/counts - List the caller's counts (oldest first)
- DELETE /api/counts - Bulk delete by id set, scoped to the caller

Ids in a delete request that the caller does not own are silently ignored:
the request succeeds, only the caller's rows are removed, and the response
does not reveal whether the other ids exist.
"""

import structlog
from fastapi import APIRouter, Depends, Response, status
from pydantic import Field

from flockcount.api.dependencies import get_uow_factory, require_user
from flockcount.api.schemas import CamelModel, CountDTO
from flockcount.models.user import User

logger = structlog.get_logger()
router = APIRouter(prefix="/api/counts", tags=["counts"])


class CountsResponse(CamelModel):
    """Response model for the count list."""

    counts: list[CountDTO]


class DeleteCountsRequest(CamelModel):
    """Request body for bulk delete."""

    count_ids: list[int] = Field(..., description="Ids of the counts to delete")


@router.get("", response_model=CountsResponse)
async def list_counts(
    user: User = Depends(require_user),
    uow_factory=Depends(get_uow_factory),
) -> CountsResponse:
    """Return every count of the authenticated user, ordered by timestamp ascending."""
    async with await uow_factory() as uow:
        counts = await uow.counts.list_for_user(user.id)  # type: ignore[arg-type]

    logger.debug("counts.listed", user_id=user.id, total=len(counts))
    return CountsResponse(counts=[CountDTO.from_entity(c) for c in counts])


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_counts(
    request: DeleteCountsRequest,
    user: User = Depends(require_user),
    uow_factory=Depends(get_uow_factory),
) -> Response:
    """Delete the caller's counts listed in `countIds`."""
    async with await uow_factory() as uow:
        deleted = await uow.counts.delete_for_user(user.id, request.count_ids)  # type: ignore[arg-type]

    logger.info(
        "counts.deleted",
        user_id=user.id,
        requested=len(request.count_ids),
        deleted=deleted,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
