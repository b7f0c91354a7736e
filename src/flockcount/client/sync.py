"""Sync engine: drains the pending upload queue when the server is reachable.

Each pass:
1. Snapshots eligible uploads (queued, and due unless backoff is ignored)
2. Marks them in flight in one commit
3. Sends every analyze request concurrently, each bounded by a timeout
4. Commits each outcome as soon as it arrives

Outcome handling:
- Success: record added, upload removed
- TransientError (network, timeout, 429, 5xx, malformed body): retry_count+1,
  re-queued with backoff, or dead once the retry policy is exhausted
- PermanentError (server rejected the image): dead immediately
- AuthorizationError (401/403): released unchanged; the user must sign in
- Queue cleared while in flight (sign-out): the result is discarded
- Anything else: logged with traceback and treated as transient
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

import structlog

from flockcount.client.api_client import FlockCountClient
from flockcount.client.models import CountRecord, PendingUpload, UploadStatus
from flockcount.client.retry import RetryPolicy
from flockcount.client.store import RecordStore
from flockcount.core.timezone import utcnow_aware
from flockcount.services.exceptions import AuthorizationError, PermanentError, TransientError

logger = structlog.get_logger()

# Outcome of an upload released for re-authentication
AUTH_REQUIRED = "auth_required"
# Outcome of an upload whose queue was cleared while it was in flight
DISCARDED = "discarded"


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    succeeded: int = 0
    failed: int = 0
    dead: int = 0
    discarded: int = 0
    auth_required: bool = False
    total_counted: int = 0
    records: list[CountRecord] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed + self.dead

    def summary(self) -> str:
        """Human readable summary, e.g. "2 succeeded, 1 failed"."""
        parts = [f"{self.succeeded} succeeded"]
        if self.failed:
            parts.append(f"{self.failed} failed")
        if self.dead:
            parts.append(f"{self.dead} gave up")
        if self.succeeded:
            parts.append(f"{self.total_counted} chickens counted")
        if self.auth_required:
            parts.append("sign in again to continue")
        return ", ".join(parts)


class Notifier(Protocol):
    """User-facing notification sink (toast equivalent)."""

    def notify(self, title: str, message: str, error: bool = False) -> None: ...


class LogNotifier:
    """Notifier that writes notifications to the structured log."""

    def notify(self, title: str, message: str, error: bool = False) -> None:
        log = logger.warning if error else logger.info
        log("notification", title=title, message=message)


class SyncEngine:
    """Uploads queued images and folds the results into the store.

    Only one pass runs at a time; a trigger that arrives while a pass is
    running is dropped.
    """

    def __init__(
        self,
        store: RecordStore,
        api: FlockCountClient,
        policy: RetryPolicy | None = None,
        notifier: Notifier | None = None,
        analyze_timeout: float = 60.0,
        clock: Callable[[], datetime] = utcnow_aware,
    ):
        self.store = store
        self.api = api
        self.policy = policy or RetryPolicy()
        self.notifier = notifier or LogNotifier()
        self.analyze_timeout = analyze_timeout
        self.clock = clock
        self.running = False

    async def sync_pending_uploads(self, respect_backoff: bool = True) -> SyncReport | None:
        """Run one pass over the queue.

        Args:
            respect_backoff: Skip uploads whose next attempt is in the future

        Returns:
            SyncReport, or None when skipped (pass already running, or the
            server/database is unreachable)
        """
        if self.running:
            logger.debug("sync.skipped", reason="in_progress")
            return None
        if not self.store.connection.is_database_connected:
            logger.debug("sync.skipped", reason="offline")
            return None

        self.running = True
        started: list[PendingUpload] = []
        try:
            eligible = self.store.due_uploads(self.clock(), respect_backoff=respect_backoff)
            if not eligible:
                return SyncReport()

            started = await self.store.begin_uploads([u.id for u in eligible])
            logger.info("sync.started", uploads=len(started), respect_backoff=respect_backoff)

            results = await asyncio.gather(
                *(self._process_upload(upload) for upload in started),
                return_exceptions=True,
            )

            report = SyncReport()
            for upload, result in zip(started, results):
                if isinstance(result, BaseException):
                    # _process_upload handles its own errors; only store bugs land here
                    logger.error(
                        "sync.upload_crashed",
                        upload_id=upload.id,
                        error=str(result),
                        error_type=type(result).__name__,
                    )
                    report.failed += 1
                elif isinstance(result, CountRecord):
                    report.succeeded += 1
                    report.total_counted += result.count
                    report.records.append(result)
                elif result == AUTH_REQUIRED:
                    report.auth_required = True
                elif result == DISCARDED:
                    report.discarded += 1
                elif result == UploadStatus.DEAD:
                    report.dead += 1
                else:
                    report.failed += 1

            logger.info(
                "sync.completed",
                succeeded=report.succeeded,
                failed=report.failed,
                dead=report.dead,
                discarded=report.discarded,
                auth_required=report.auth_required,
                total_counted=report.total_counted,
            )
            self._notify(report)
            return report
        finally:
            if started:
                await self.store.release_in_flight([u.id for u in started])
            self.running = False

    async def retry_now(self) -> SyncReport | None:
        """Manual retry: revive dead uploads and ignore backoff."""
        await self.store.revive_dead_uploads()
        return await self.sync_pending_uploads(respect_backoff=False)

    async def _process_upload(self, upload: PendingUpload) -> CountRecord | UploadStatus | str:
        """Send one upload and commit its outcome.

        Returns:
            The new record on success, AUTH_REQUIRED when released for sign-in,
            DISCARDED when the queue was cleared meanwhile,
            otherwise the upload's resulting status
        """
        try:
            result = await asyncio.wait_for(self.api.analyze(upload.image), timeout=self.analyze_timeout)
        except AuthorizationError as e:
            await self.store.release_upload(upload.id)
            logger.warning("sync.upload_unauthorized", upload_id=upload.id, error=str(e))
            return AUTH_REQUIRED
        except PermanentError as e:
            await self.store.reject_upload(upload.id, str(e))
            logger.error(
                "sync.upload_rejected",
                upload_id=upload.id,
                error=str(e),
                retry_count=upload.retry_count + 1,
            )
            return UploadStatus.DEAD
        except (TransientError, asyncio.TimeoutError) as e:
            error = str(e) or f"Analyze timed out after {self.analyze_timeout}s"
            return await self._retry_later(upload, error)
        except Exception as e:
            logger.error(
                "sync.upload_unexpected_error",
                upload_id=upload.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return await self._retry_later(upload, f"{type(e).__name__}: {e}")

        record = result.count
        if not await self.store.complete_upload(upload.id, record):
            logger.info("sync.upload_discarded", upload_id=upload.id, count_id=str(record.id))
            return DISCARDED

        logger.info(
            "sync.upload_succeeded",
            upload_id=upload.id,
            count_id=str(record.id),
            count=record.count,
        )
        return record

    async def _retry_later(self, upload: PendingUpload, error: str) -> UploadStatus:
        updated = await self.store.fail_upload(upload.id, error, self.policy, self.clock())
        if updated is None:
            return UploadStatus.QUEUED

        if updated.status == UploadStatus.DEAD:
            logger.error(
                "sync.upload_exhausted",
                upload_id=upload.id,
                retry_count=updated.retry_count,
                error=error,
            )
        else:
            logger.warning(
                "sync.upload_failed",
                upload_id=upload.id,
                retry_count=updated.retry_count,
                next_attempt_at=updated.next_attempt_at.isoformat() if updated.next_attempt_at else None,
                error=error,
            )
        return updated.status

    def _notify(self, report: SyncReport) -> None:
        if report.attempted == 0 and not report.auth_required:
            return
        problem = report.failed > 0 or report.dead > 0 or report.auth_required
        title = "Sync incomplete" if problem else "Sync complete"
        self.notifier.notify(title, report.summary(), error=problem)
