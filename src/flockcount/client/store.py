"""Client record store.

Holds the local count records, the pending upload queue and the last known
connection state, and persists them through a PersistenceAdapter.

Every mutation changes in-memory state synchronously before its first await,
so concurrent tasks never overwrite each other's changes. Persistence runs
behind a lock and always writes the newest state; a failed write is logged
and the in-memory state stays authoritative.
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import structlog

from flockcount.client.identifiers import CountId, parse_count_id
from flockcount.client.models import (
    ConnectionState,
    CountRecord,
    PendingUpload,
    StoreSnapshot,
    UploadStatus,
)
from flockcount.client.retry import RetryPolicy
from flockcount.client.storage import PersistenceAdapter

logger = structlog.get_logger()

StoreListener = Callable[["RecordStore"], None]

IMMUTABLE_FIELDS = {"id", "user_id"}


def merge_records(
    local: Iterable[CountRecord], server: Iterable[CountRecord] = ()
) -> list[CountRecord]:
    """Union of local and server records for display.

    Keyed by tagged id (the server copy wins), sorted newest first. Records
    without a timestamp sort last.
    """
    by_id: dict[CountId, CountRecord] = {}
    for record in local:
        by_id[record.id] = record
    for record in server:
        by_id[record.id] = record
    return sorted(by_id.values(), key=lambda r: r.sort_key, reverse=True)


class RecordStore:
    """Single source of truth for client-side state.

    Example:
        store = RecordStore(PersistenceAdapter(FileStorage(state_dir)))
        await store.load()
        upload = await store.queue_for_upload(image)
    """

    def __init__(self, persistence: PersistenceAdapter):
        self.persistence = persistence
        self.counts: list[CountRecord] = []
        self.pending_uploads: list[PendingUpload] = []
        self.connection = ConnectionState()
        self.hydrated = asyncio.Event()
        self._listeners: list[StoreListener] = []
        self._save_lock = asyncio.Lock()
        self._version = 0
        self._saved_version = 0

    # Lifecycle and persistence

    async def load(self) -> None:
        """Restore persisted state; a missing or corrupt snapshot leaves the store empty."""
        snapshot = await self.persistence.load_state()
        if snapshot is None:
            logger.info("store.loaded_empty")
        else:
            self.counts = snapshot.counts
            self.pending_uploads = snapshot.pending_uploads
            self.connection = snapshot.connection
            logger.info(
                "store.loaded",
                counts=len(self.counts),
                pending_uploads=len(self.pending_uploads),
            )
        self.hydrated.set()
        self._notify()

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            counts=list(self.counts),
            pending_uploads=list(self.pending_uploads),
            connection=self.connection,
        )

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener called after every commit; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(
                    "store.listener_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    async def _commit(self) -> None:
        """Publish the current in-memory state and persist it."""
        self._version += 1
        self._notify()
        await self._persist()

    async def _persist(self) -> None:
        async with self._save_lock:
            # A later commit may already have written a newer state
            if self._saved_version >= self._version:
                return
            version = self._version
            if await self.persistence.save_state(self.snapshot()):
                self._saved_version = version

    # Count records

    async def add_count(self, record: CountRecord) -> CountRecord:
        self.counts.insert(0, record)
        await self._commit()
        return record

    async def import_counts(self, records: Iterable[CountRecord]) -> None:
        """Replace all local records with `records` (first occurrence of an id wins)."""
        seen: set[CountId] = set()
        imported = []
        for record in records:
            if record.id not in seen:
                seen.add(record.id)
                imported.append(record)
        self.counts = imported
        await self._commit()

    def find_count(self, count_id: Any) -> CountRecord | None:
        target = parse_count_id(count_id)
        for record in self.counts:
            if record.id == target:
                return record
        return None

    async def update_count(self, count_id: Any, **changes: Any) -> CountRecord | None:
        """Shallow-merge `changes` into the record with `count_id`.

        Returns:
            Updated record, or None if no record has that id

        Raises:
            ValueError: If `id` or `user_id` is among the changes
        """
        forbidden = IMMUTABLE_FIELDS & changes.keys()
        if forbidden:
            raise ValueError(f"Cannot change {', '.join(sorted(forbidden))} of a count record")

        target = parse_count_id(count_id)
        for index, record in enumerate(self.counts):
            if record.id == target:
                updated = CountRecord.model_validate({**record.model_dump(), **changes})
                self.counts[index] = updated
                await self._commit()
                return updated
        return None

    async def delete_counts(self, ids: Iterable[Any]) -> int:
        """Remove every record whose id is in `ids`; unknown ids are ignored."""
        targets = {parse_count_id(count_id) for count_id in ids}
        remaining = [record for record in self.counts if record.id not in targets]
        removed = len(self.counts) - len(remaining)
        if removed:
            self.counts = remaining
            await self._commit()
        return removed

    async def keep_counts_of(self, user_id: int) -> int:
        """Drop every record not owned by `user_id`; returns how many were dropped."""
        remaining = [record for record in self.counts if record.user_id == user_id]
        dropped = len(self.counts) - len(remaining)
        if dropped:
            self.counts = remaining
            await self._commit()
        return dropped

    async def clear_counts(self) -> None:
        """Drop all records and the pending queue (sign-out)."""
        self.counts = []
        self.pending_uploads = []
        await self._commit()

    def visible_counts(self, server_records: Iterable[CountRecord] = ()) -> list[CountRecord]:
        return merge_records(self.counts, server_records)

    # Pending upload queue

    async def queue_for_upload(self, image: str) -> PendingUpload:
        upload = PendingUpload(image=image)
        self.pending_uploads.append(upload)
        await self._commit()
        logger.info("upload.queued", upload_id=upload.id, pending=len(self.pending_uploads))
        return upload

    async def remove_pending_upload(self, upload_id: str) -> bool:
        remaining = [u for u in self.pending_uploads if u.id != upload_id]
        if len(remaining) == len(self.pending_uploads):
            return False
        self.pending_uploads = remaining
        await self._commit()
        return True

    def get_upload(self, upload_id: str) -> PendingUpload | None:
        for upload in self.pending_uploads:
            if upload.id == upload_id:
                return upload
        return None

    def due_uploads(self, now: datetime, respect_backoff: bool = True) -> list[PendingUpload]:
        """Queued uploads eligible for a sync pass."""
        return [
            u
            for u in self.pending_uploads
            if u.status == UploadStatus.QUEUED and (not respect_backoff or u.is_due(now))
        ]

    def count_by_status(self) -> dict[UploadStatus, int]:
        counts = {status: 0 for status in UploadStatus}
        for upload in self.pending_uploads:
            counts[upload.status] += 1
        return counts

    def _transition(
        self, upload_id: str, change: Callable[[PendingUpload], PendingUpload]
    ) -> PendingUpload | None:
        for index, upload in enumerate(self.pending_uploads):
            if upload.id == upload_id:
                updated = change(upload)
                self.pending_uploads[index] = updated
                return updated
        # Removed meanwhile (e.g. sign-out cleared the queue)
        return None

    async def begin_uploads(self, upload_ids: Iterable[str]) -> list[PendingUpload]:
        """Mark queued uploads in flight in one commit; returns those started."""
        wanted = set(upload_ids)
        started = []
        for index, upload in enumerate(self.pending_uploads):
            if upload.id in wanted and upload.status == UploadStatus.QUEUED:
                self.pending_uploads[index] = upload.start()
                started.append(self.pending_uploads[index])
        if started:
            await self._commit()
        return started

    async def complete_upload(self, upload_id: str, record: CountRecord) -> bool:
        """Add the analyzed record and drop the upload in one commit.

        Returns:
            False if the upload is no longer queued (sign-out cleared it);
            the record is discarded in that case
        """
        remaining = [u for u in self.pending_uploads if u.id != upload_id]
        if len(remaining) == len(self.pending_uploads):
            return False
        self.pending_uploads = remaining
        self.counts.insert(0, record)
        await self._commit()
        return True

    async def fail_upload(
        self, upload_id: str, error: str, policy: RetryPolicy, now: datetime
    ) -> PendingUpload | None:
        updated = self._transition(upload_id, lambda u: u.fail(error, policy, now))
        if updated is not None:
            await self._commit()
        return updated

    async def reject_upload(self, upload_id: str, error: str) -> PendingUpload | None:
        updated = self._transition(upload_id, lambda u: u.reject(error))
        if updated is not None:
            await self._commit()
        return updated

    async def release_upload(self, upload_id: str) -> PendingUpload | None:
        updated = self._transition(upload_id, lambda u: u.release())
        if updated is not None:
            await self._commit()
        return updated

    async def release_in_flight(self, upload_ids: Iterable[str]) -> int:
        """Return any of `upload_ids` still in flight to the queue."""
        wanted = set(upload_ids)
        released = 0
        for index, upload in enumerate(self.pending_uploads):
            if upload.id in wanted and upload.status == UploadStatus.IN_FLIGHT:
                self.pending_uploads[index] = upload.release()
                released += 1
        if released:
            await self._commit()
        return released

    async def revive_dead_uploads(self) -> int:
        """Put every dead upload back in the queue, due immediately."""
        revived = 0
        for index, upload in enumerate(self.pending_uploads):
            if upload.status == UploadStatus.DEAD:
                self.pending_uploads[index] = upload.revive()
                revived += 1
        if revived:
            await self._commit()
            logger.info("upload.revived", count=revived)
        return revived

    # Connection

    async def set_connection(self, state: ConnectionState) -> None:
        self.connection = state
        await self._commit()
