"""Wire models shared by the API routes.

JSON keys are camelCase (`userId`, `imageUrl`, `earnedAt`) to match the
browser client; Python attributes stay snake_case.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flockcount.models.achievement import Achievement
from flockcount.models.count import Count


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CountDTO(CamelModel):
    """Count record as returned to clients.

    `id` is an integer for persisted records and an opaque string for guest
    results that were never stored.
    """

    id: int | str
    user_id: int
    count: int = Field(..., ge=0)
    image_url: str | None = None
    timestamp: datetime | None = None
    breed: str | None = None
    confidence: int | None = None
    labels: list[str] | None = None

    @classmethod
    def from_entity(cls, count: Count) -> "CountDTO":
        return cls(
            id=count.id,  # type: ignore[arg-type]
            user_id=count.user_id,
            count=count.count,
            image_url=count.image_url,
            timestamp=count.timestamp,
            breed=count.breed,
            confidence=count.confidence,
            labels=count.labels,
        )


class AchievementDTO(CamelModel):
    """Achievement definition, with `earnedAt` when returned as earned."""

    id: int
    name: str
    description: str
    icon: str
    requirement: int
    type: str
    earned_at: datetime | None = None

    @classmethod
    def from_entity(cls, achievement: Achievement, earned_at: datetime | None = None):
        return cls(
            id=achievement.id,  # type: ignore[arg-type]
            name=achievement.name,
            description=achievement.description,
            icon=achievement.icon,
            requirement=achievement.requirement,
            type=achievement.type,
            earned_at=earned_at,
        )
