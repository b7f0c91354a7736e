"""Client-side state models.

All models are pydantic so the whole store snapshot can be persisted as one
JSON document and validated on load.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from flockcount.client.identifiers import LocalId, WireCountId
from flockcount.client.retry import RetryPolicy
from flockcount.core.timezone import as_aware_utc, utcnow_aware

GUEST_USER_ID = 0

GUEST_MODE_LABEL = "guest-mode"
AI_FAILED_LABEL = "ai-failed"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InvalidStateTransition(Exception):
    """Raised when a pending upload is moved to a state it cannot reach."""

    pass


class WireModel(BaseModel):
    """camelCase on the wire and in storage, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CountRecord(WireModel):
    """One analyzed image, local or server-side."""

    id: WireCountId
    user_id: int = GUEST_USER_ID
    count: int = Field(default=0, ge=0)
    image_url: str | None = None
    timestamp: datetime | None = None
    breed: str | None = None
    confidence: int | None = Field(default=None, ge=0, le=100)
    labels: list[str] | None = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_aware_utc(value) if value is not None else None

    @property
    def sort_key(self) -> datetime:
        """Timestamp used for display ordering; missing sorts as epoch."""
        return self.timestamp or EPOCH

    @classmethod
    def local(cls, **fields: Any) -> "CountRecord":
        """Create a record with a fresh LocalId stamped now."""
        fields.setdefault("timestamp", utcnow_aware())
        return cls(id=LocalId.new(), **fields)


class UploadStatus(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    DEAD = "dead"


class PendingUpload(WireModel):
    """An image captured while it could not be analyzed.

    Lifecycle:
        queued -> in_flight -> (removed on success | queued | dead)
        in_flight -> queued via release() (no attempt charged)
        dead -> queued only via revive()

    `retry_count` only ever grows.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    image: str
    timestamp: datetime = Field(default_factory=utcnow_aware)
    retry_count: int = Field(default=0, ge=0)
    status: UploadStatus = UploadStatus.QUEUED
    next_attempt_at: datetime | None = None
    last_error: str | None = None

    @field_validator("timestamp", "next_attempt_at")
    @classmethod
    def normalize_datetimes(cls, value: datetime | None) -> datetime | None:
        return as_aware_utc(value) if value is not None else None

    def is_due(self, now: datetime) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def _require(self, *allowed: UploadStatus) -> None:
        if self.status not in allowed:
            raise InvalidStateTransition(
                f"Upload {self.id} is {self.status.value}, expected "
                + " or ".join(s.value for s in allowed)
            )

    def start(self) -> "PendingUpload":
        """queued -> in_flight."""
        self._require(UploadStatus.QUEUED)
        return self.model_copy(update={"status": UploadStatus.IN_FLIGHT})

    def fail(self, error: str, policy: RetryPolicy, now: datetime) -> "PendingUpload":
        """in_flight -> queued with backoff, or dead once attempts run out."""
        self._require(UploadStatus.IN_FLIGHT)
        retry_count = self.retry_count + 1
        if policy.is_exhausted(retry_count):
            return self.model_copy(
                update={
                    "status": UploadStatus.DEAD,
                    "retry_count": retry_count,
                    "next_attempt_at": None,
                    "last_error": error,
                }
            )
        return self.model_copy(
            update={
                "status": UploadStatus.QUEUED,
                "retry_count": retry_count,
                "next_attempt_at": now + policy.delay_for(retry_count),
                "last_error": error,
            }
        )

    def reject(self, error: str) -> "PendingUpload":
        """in_flight -> dead; the server will never accept this image."""
        self._require(UploadStatus.IN_FLIGHT)
        return self.model_copy(
            update={
                "status": UploadStatus.DEAD,
                "retry_count": self.retry_count + 1,
                "next_attempt_at": None,
                "last_error": error,
            }
        )

    def release(self) -> "PendingUpload":
        """in_flight -> queued without charging an attempt."""
        self._require(UploadStatus.IN_FLIGHT)
        return self.model_copy(update={"status": UploadStatus.QUEUED})

    def revive(self) -> "PendingUpload":
        """dead -> queued, due immediately."""
        self._require(UploadStatus.DEAD)
        return self.model_copy(update={"status": UploadStatus.QUEUED, "next_attempt_at": None})


class ConnectionState(WireModel):
    """Three monotone reachability signals.

    database connected implies server reachable implies online.
    """

    model_config = ConfigDict(frozen=True)

    is_online: bool = False
    is_server_reachable: bool = False
    is_database_connected: bool = False
    last_error: str | None = None
    checked_at: datetime | None = None

    @model_validator(mode="after")
    def check_monotone(self) -> "ConnectionState":
        if self.is_database_connected and not self.is_server_reachable:
            raise ValueError("Database cannot be connected while the server is unreachable")
        if self.is_server_reachable and not self.is_online:
            raise ValueError("Server cannot be reachable while offline")
        return self

    @classmethod
    def offline(cls, error: str | None = None) -> "ConnectionState":
        return cls(last_error=error, checked_at=utcnow_aware())

    @classmethod
    def from_health(cls, health: "HealthStatus") -> "ConnectionState":
        """State after a health probe; a probe only runs when the network is up."""
        return cls(
            is_online=True,
            is_server_reachable=health.server_reachable,
            is_database_connected=health.server_reachable and health.database_connected,
            last_error=health.error,
            checked_at=utcnow_aware(),
        )


class HealthStatus(BaseModel):
    """Outcome of one health probe."""

    server_reachable: bool
    database_connected: bool = False
    error: str | None = None


class StoreSnapshot(WireModel):
    """Everything the client persists under one storage key."""

    counts: list[CountRecord] = Field(default_factory=list)
    pending_uploads: list[PendingUpload] = Field(default_factory=list)
    connection: ConnectionState = Field(default_factory=ConnectionState)
