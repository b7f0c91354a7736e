"""Count entity - one analyzed image attributed to a user."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from flockcount.core.timezone import utcnow_aware

# Reserved user id for records that were never attributed to an account
GUEST_USER_ID = 0


class Count(SQLModel, table=True):
    """Count is an append-mostly log entry produced by image analysis.

    `id` and `timestamp` are assigned on insert and never change afterwards.
    """

    __tablename__ = "counts"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    count: int = Field(ge=0)
    image_url: Optional[str] = Field(default=None)
    timestamp: Optional[datetime] = Field(
        default_factory=utcnow_aware, sa_column=Column(DateTime(timezone=True), index=True)
    )
    breed: Optional[str] = Field(default=None)
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    labels: Optional[list[str]] = Field(default=None, sa_column=Column(JSON))
