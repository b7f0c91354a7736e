"""Client application root.

Wires the record store, connectivity monitor, sync engine and API client
together and implements the capture flow:

- Guest, offline: local placeholder record (count 0, `ai-failed`)
- Guest, online: analyzed by the server, kept locally with `guest-mode`
- Signed in, offline: image queued for upload
- Signed in, online: analyzed and stored; retryable failures are queued
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from flockcount.client.api_client import AchievementInfo, FlockCountClient
from flockcount.client.connectivity import ConnectivityMonitor, HealthProbe
from flockcount.client.identifiers import LocalId, RemoteId, parse_count_id
from flockcount.client.models import (
    AI_FAILED_LABEL,
    GUEST_MODE_LABEL,
    GUEST_USER_ID,
    ConnectionState,
    CountRecord,
)
from flockcount.client.retry import RetryPolicy
from flockcount.client.storage import FileStorage, PersistenceAdapter
from flockcount.client.store import RecordStore
from flockcount.client.sync import DISCARDED, LogNotifier, Notifier, SyncEngine, SyncReport
from flockcount.core.config import ClientSettings
from flockcount.core.timezone import utcnow_aware
from flockcount.services.exceptions import AuthorizationError, PermanentError, ServiceError, TransientError

logger = structlog.get_logger()


@dataclass
class CaptureReport:
    """Outcome of analyzing a batch of captured images."""

    records: list[CountRecord] = field(default_factory=list)
    queued: int = 0
    failed: int = 0
    discarded: int = 0
    new_achievements: list[AchievementInfo] = field(default_factory=list)

    @property
    def total_chickens(self) -> int:
        return sum(record.count for record in self.records)

    @property
    def analysis_failed(self) -> bool:
        return any(AI_FAILED_LABEL in (record.labels or []) for record in self.records)


def _with_label(labels: list[str] | None, label: str) -> list[str]:
    labels = list(labels or [])
    if label not in labels:
        labels.append(label)
    return labels


class ClientApp:
    """Offline-first client.

    Example:
        app = ClientApp.from_settings(ClientSettings(), user_id=7)
        await app.start()
        report = await app.analyze_images([data_url])
        await app.stop()
    """

    def __init__(
        self,
        store: RecordStore,
        monitor: ConnectivityMonitor,
        engine: SyncEngine,
        api: FlockCountClient,
        notifier: Notifier | None = None,
        user_id: int | None = None,
    ):
        self.store = store
        self.monitor = monitor
        self.engine = engine
        self.api = api
        self.notifier = notifier or LogNotifier()
        self.user_id = user_id
        self.auth_required = False
        self._unsubscribe = None
        self._monitor_task: asyncio.Task | None = None
        self._sync_task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        user_id: int | None = None,
        cookies: dict[str, str] | None = None,
    ) -> "ClientApp":
        """Build a client persisting to `settings.state_dir`."""
        notifier = LogNotifier()
        store = RecordStore(PersistenceAdapter(FileStorage(Path(settings.state_dir))))
        api = FlockCountClient(settings.server_url, timeout=settings.analyze_timeout_seconds, cookies=cookies)
        monitor = ConnectivityMonitor(
            HealthProbe(settings.server_url, timeout=settings.health_timeout_seconds),
            interval=settings.health_interval_seconds,
        )
        engine = SyncEngine(
            store,
            api,
            policy=RetryPolicy.from_settings(settings),
            notifier=notifier,
            analyze_timeout=settings.analyze_timeout_seconds,
        )
        return cls(store, monitor, engine, api, notifier=notifier, user_id=user_id)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_connected(self) -> bool:
        return self.store.connection.is_database_connected

    # Lifecycle

    async def start(self, poll: bool = True) -> None:
        """Load persisted state and start watching connectivity.

        Args:
            poll: Run the periodic health probe loop in the background
        """
        await self.store.load()
        self._unsubscribe = self.monitor.subscribe(self._on_connection_change)
        if poll:
            self._monitor_task = asyncio.create_task(self.monitor.run())
        logger.info("client.started", authenticated=self.is_authenticated, polling=poll)

    async def stop(self) -> None:
        for task in (self._monitor_task, self._sync_task):
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._monitor_task = None
        self._sync_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.info("client.stopped")

    async def _on_connection_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        await self.store.set_connection(current)

        if self.monitor.reconnected(previous, current):
            logger.info("client.reconnected", pending=len(self.store.pending_uploads))
            self._schedule_sync(respect_backoff=False)
        elif current.is_database_connected and self.store.due_uploads(utcnow_aware()):
            self._schedule_sync(respect_backoff=True)

    def _schedule_sync(self, respect_backoff: bool) -> asyncio.Task:
        """Run a sync pass in the background; the monitor never waits on it.

        A trigger arriving while a pass is running joins that pass.
        """
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.create_task(self.sync(respect_backoff=respect_backoff))
            self._sync_task.add_done_callback(self._on_sync_done)
        return self._sync_task

    def _on_sync_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.error("client.sync_failed", error=str(error), error_type=type(error).__name__)

    async def wait_for_sync(self) -> SyncReport | None:
        """Wait for the background sync pass, if one is running."""
        if self._sync_task is None:
            return None
        results = await asyncio.gather(self._sync_task, return_exceptions=True)
        report = results[0]
        return report if isinstance(report, SyncReport) else None

    # Sync

    async def sync(self, respect_backoff: bool = True) -> SyncReport | None:
        """Drain the queue; refresh server counts after any success."""
        report = await self.engine.sync_pending_uploads(respect_backoff=respect_backoff)
        if report is None:
            return None
        if report.auth_required:
            self._require_auth()
        if report.succeeded and self.is_authenticated:
            await self.refresh_counts()
        return report

    async def retry_now(self) -> SyncReport | None:
        report = await self.engine.retry_now()
        if report is not None and report.succeeded and self.is_authenticated:
            await self.refresh_counts()
        return report

    # Capture flow

    async def analyze_images(self, images: Iterable[str]) -> CaptureReport:
        """Analyze captured images concurrently according to mode and connectivity."""
        images = list(images)
        results = await asyncio.gather(
            *(self._capture(image) for image in images),
            return_exceptions=True,
        )

        report = CaptureReport()
        for result in results:
            if isinstance(result, BaseException):
                logger.error(
                    "capture.failed",
                    error=str(result),
                    error_type=type(result).__name__,
                )
                report.failed += 1
            elif result is None:
                report.queued += 1
            elif result == DISCARDED:
                report.discarded += 1
            else:
                record, achievements = result
                report.records.append(record)
                report.new_achievements.extend(achievements)

        self._notify_capture(report)
        return report

    async def _capture(self, image: str) -> tuple[CountRecord, list[AchievementInfo]] | str | None:
        """Handle one image.

        Returns:
            (record, newly earned achievements), None when queued, or DISCARDED
            when the signed-in user changed while the image was analyzed

        Raises:
            PermanentError: Signed-in analysis rejected by the server
        """
        if not self.is_authenticated:
            record = await self._capture_as_guest(image)
            return DISCARDED if record is None else (record, [])

        if not self.is_connected:
            await self.store.queue_for_upload(image)
            return None

        user_id = self.user_id
        try:
            result = await asyncio.wait_for(self.api.analyze(image), timeout=self.engine.analyze_timeout)
        except AuthorizationError as e:
            logger.warning("capture.unauthorized", error=str(e))
            self._require_auth()
            await self.store.queue_for_upload(image)
            return None
        except (TransientError, asyncio.TimeoutError) as e:
            logger.warning("capture.deferred", error=str(e) or "timeout")
            await self.store.queue_for_upload(image)
            return None

        if self.user_id != user_id:
            logger.info("capture.discarded", user_id=user_id, count_id=str(result.count.id))
            return DISCARDED
        await self.store.add_count(result.count)
        return result.count, result.new_achievements

    async def _capture_as_guest(self, image: str) -> CountRecord | None:
        """Store a guest record; None if someone signed in during analysis."""
        if self.is_connected:
            try:
                result = await asyncio.wait_for(self.api.analyze(image), timeout=self.engine.analyze_timeout)
            except (ServiceError, asyncio.TimeoutError) as e:
                logger.warning("capture.guest_analysis_failed", error=str(e) or "timeout")
            else:
                record = result.count.model_copy(
                    update={
                        "id": LocalId.new(),
                        "user_id": GUEST_USER_ID,
                        "labels": _with_label(result.count.labels, GUEST_MODE_LABEL),
                    }
                )
                if self.is_authenticated:
                    return None
                return await self.store.add_count(record)

        if self.is_authenticated:
            return None
        placeholder = CountRecord.local(
            user_id=GUEST_USER_ID,
            count=0,
            image_url=image,
            labels=[GUEST_MODE_LABEL, AI_FAILED_LABEL],
        )
        return await self.store.add_count(placeholder)

    def _notify_capture(self, report: CaptureReport) -> None:
        if not (report.records or report.queued or report.failed):
            return
        if not self.is_authenticated:
            if report.analysis_failed:
                self.notifier.notify(
                    "Guest Mode",
                    "Some images couldn't be analyzed. Try again or sign in for better results.",
                    error=True,
                )
            else:
                self.notifier.notify(
                    "Guest Mode",
                    f"Added {len(report.records)} images with {report.total_chickens} chickens to local storage.",
                )
            return

        if report.records:
            self.notifier.notify(
                "Success",
                f"Analyzed {len(report.records)} images. Found {report.total_chickens} chickens in total.",
            )
        if report.queued:
            self.notifier.notify(
                "Offline Mode",
                f"{report.queued} images will be analyzed when you're back online.",
            )
        if report.failed:
            self.notifier.notify("Error", f"{report.failed} images could not be analyzed.", error=True)
        for achievement in report.new_achievements:
            self.notifier.notify("Achievement Unlocked!", f"{achievement.name}: {achievement.description}")

    # Session

    def _require_auth(self) -> None:
        if not self.auth_required:
            self.auth_required = True
            self.notifier.notify("Session expired", "Please sign in again.", error=True)

    async def sign_in(self, user_id: int, cookies: dict[str, str] | None = None) -> None:
        """Switch to `user_id`.

        Guest records are dropped. Signing in as a different user also drops
        the previous user's records and queue.
        """
        previous = self.user_id
        self.user_id = user_id
        self.auth_required = False
        if cookies is not None:
            self.api.cookies = cookies
        if previous is not None and previous != user_id:
            await self.store.clear_counts()
        dropped = await self.store.keep_counts_of(user_id)
        logger.info("client.signed_in", user_id=user_id, dropped_counts=dropped)
        if self.is_connected:
            await self.refresh_counts()
            await self.sync(respect_backoff=False)

    async def sign_out(self) -> None:
        """Forget the user and clear local records and the queue."""
        logger.info("client.signed_out", user_id=self.user_id)
        self.user_id = None
        self.auth_required = False
        self.api.cookies = {}
        await self.store.clear_counts()

    # Count history

    async def refresh_counts(self) -> bool:
        """Replace server-backed records with the server's current set.

        The user's local-only records are kept; guest records are not.
        Returns False when skipped, failed, or the user changed meanwhile.
        """
        if not self.is_authenticated or not self.is_connected:
            return False
        user_id = self.user_id
        try:
            server_records = await self.api.list_counts()
        except AuthorizationError:
            self._require_auth()
            return False
        except ServiceError as e:
            logger.warning("counts.refresh_failed", error=str(e))
            return False

        if self.user_id != user_id:
            logger.info("counts.refresh_discarded", user_id=user_id)
            return False

        local_only = [r for r in self.store.counts if isinstance(r.id, LocalId) and r.user_id == user_id]
        await self.store.import_counts([*server_records, *local_only])
        logger.info("counts.refreshed", server=len(server_records), local=len(local_only))
        return True

    def visible_counts(self) -> list[CountRecord]:
        """Records of the current user (guest records when signed out), newest first."""
        owner = self.user_id if self.is_authenticated else GUEST_USER_ID
        return [record for record in self.store.visible_counts() if record.user_id == owner]

    async def delete_counts(self, ids: Iterable[Any]) -> int:
        """Delete locally, then on the server for server-backed ids.

        Server failures are logged; the next refresh restores anything the
        server still has.
        """
        targets = [parse_count_id(count_id) for count_id in ids]
        removed = await self.store.delete_counts(targets)

        remote_ids = [t for t in targets if isinstance(t, RemoteId)]
        if remote_ids and self.is_authenticated and self.is_connected:
            try:
                await self.api.delete_counts(remote_ids)
            except AuthorizationError:
                self._require_auth()
            except (TransientError, PermanentError) as e:
                logger.warning("counts.remote_delete_failed", ids=len(remote_ids), error=str(e))
        return removed

    # Tutorial

    async def should_show_tutorial(self) -> bool:
        return not await self.store.persistence.load_tutorial_completed()

    async def complete_tutorial(self) -> None:
        await self.store.persistence.save_tutorial_completed(True)

    async def reset_tutorial(self) -> None:
        await self.store.persistence.save_tutorial_completed(False)
