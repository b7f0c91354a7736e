"""Client application tests: capture flow, reconnect sync, history and tutorial."""

import asyncio
from datetime import datetime, timezone

import pytest

from flockcount.client.api_client import AchievementInfo, AnalyzeResult
from flockcount.client.app import ClientApp
from flockcount.client.connectivity import ConnectivityMonitor
from flockcount.client.identifiers import LocalId, RemoteId
from flockcount.client.models import ConnectionState, CountRecord, HealthStatus
from flockcount.client.retry import RetryPolicy
from flockcount.client.storage import MemoryStorage, PersistenceAdapter
from flockcount.client.store import RecordStore
from flockcount.client.sync import SyncEngine
from flockcount.services.exceptions import AuthorizationError, PermanentError, TransientError

IMAGE = "data:image/png;base64,AA=="
T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
HEALTHY = HealthStatus(server_reachable=True, database_connected=True)
CONNECTED = ConnectionState.from_health(HEALTHY)


class StubSource:
    def __init__(self, status: HealthStatus = HEALTHY):
        self.status = status

    async def check(self) -> HealthStatus:
        return self.status


class FakeApi:
    """In-memory stand-in for the server API."""

    def __init__(self):
        self.analyze_error: Exception | None = None
        self.list_error: Exception | None = None
        self.server_counts: list[CountRecord] = []
        self.analyze_calls: list[str] = []
        self.deleted: list[list[RemoteId]] = []
        self.cookies: dict[str, str] = {}
        self.achievements: list[AchievementInfo] = []
        self.user_id = 1
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def analyze(self, image: str) -> AnalyzeResult:
        self.analyze_calls.append(image)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.analyze_error is not None:
            raise self.analyze_error
        record = CountRecord(
            id=RemoteId(len(self.server_counts) + 1),
            user_id=self.user_id,
            count=6,
            image_url=image,
            timestamp=T0,
            labels=["hens"],
        )
        self.server_counts.append(record)
        return AnalyzeResult(count=record, new_achievements=self.achievements)

    async def list_counts(self) -> list[CountRecord]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.server_counts)

    async def delete_counts(self, ids) -> None:
        ids = list(ids)
        self.deleted.append(ids)
        self.server_counts = [c for c in self.server_counts if c.id not in ids]


class RecordingNotifier:
    def __init__(self):
        self.messages: list[tuple[str, str, bool]] = []

    def notify(self, title: str, message: str, error: bool = False) -> None:
        self.messages.append((title, message, error))


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def build_app(storage, api, notifier, user_id=None, status=HEALTHY) -> ClientApp:
    store = RecordStore(PersistenceAdapter(storage))
    monitor = ConnectivityMonitor(StubSource(status), interval=60)
    engine = SyncEngine(store, api, policy=RetryPolicy(max_attempts=3), notifier=notifier)
    return ClientApp(store, monitor, engine, api, notifier=notifier, user_id=user_id)


@pytest.mark.asyncio
class TestGuestCapture:
    async def test_offline_guest_creates_local_placeholder(self, storage, api, notifier):
        """Guest offline analysis makes no server call and stores an ai-failed record."""
        app = build_app(storage, api, notifier)
        await app.start(poll=False)

        report = await app.analyze_images([IMAGE])

        assert api.analyze_calls == []
        assert len(report.records) == 1
        record = report.records[0]
        assert isinstance(record.id, LocalId)
        assert record.user_id == 0
        assert record.count == 0
        assert record.image_url == IMAGE
        assert record.labels == ["guest-mode", "ai-failed"]
        assert app.visible_counts() == [record]
        assert notifier.messages[-1][2] is True

    async def test_online_guest_keeps_result_locally(self, storage, api, notifier):
        app = build_app(storage, api, notifier)
        await app.store.set_connection(CONNECTED)

        report = await app.analyze_images([IMAGE])

        record = report.records[0]
        assert isinstance(record.id, LocalId)
        assert record.user_id == 0
        assert record.count == 6
        assert record.labels == ["hens", "guest-mode"]
        assert report.total_chickens == 6

    async def test_online_guest_analysis_failure_becomes_placeholder(self, storage, api, notifier):
        app = build_app(storage, api, notifier)
        await app.store.set_connection(CONNECTED)
        api.analyze_error = TransientError("503")

        report = await app.analyze_images([IMAGE])

        assert report.records[0].labels == ["guest-mode", "ai-failed"]
        assert report.analysis_failed


@pytest.mark.asyncio
class TestAuthenticatedCapture:
    async def test_offline_capture_is_queued(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)

        report = await app.analyze_images([IMAGE, IMAGE])

        assert report.queued == 2
        assert len(app.store.pending_uploads) == 2
        assert api.analyze_calls == []

    async def test_online_capture_adds_record_and_achievements(self, storage, api, notifier):
        api.achievements = [
            AchievementInfo(
                id=1,
                name="Novice Counter",
                description="Count your first flock of chickens",
                icon="Target",
                requirement=1,
                type="total_counts",
            )
        ]
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)

        report = await app.analyze_images([IMAGE])

        assert [r.id for r in report.records] == [RemoteId(1)]
        assert [a.name for a in report.new_achievements] == ["Novice Counter"]
        assert [r.id for r in app.store.counts] == [RemoteId(1)]
        assert ("Achievement Unlocked!", "Novice Counter: Count your first flock of chickens", False) in notifier.messages

    async def test_transient_failure_is_queued(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        api.analyze_error = TransientError("429")

        report = await app.analyze_images([IMAGE])

        assert report.queued == 1
        assert app.store.pending_uploads[0].image == IMAGE

    async def test_authorization_failure_is_queued_and_prompts_sign_in(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        api.analyze_error = AuthorizationError("401")

        report = await app.analyze_images([IMAGE])

        assert report.queued == 1
        assert app.auth_required is True

    async def test_permanent_failure_is_reported(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        api.analyze_error = PermanentError("400 bad image")

        report = await app.analyze_images([IMAGE])

        assert report.failed == 1
        assert app.store.pending_uploads == []
        assert app.store.counts == []


@pytest.mark.asyncio
class TestReconnect:
    async def test_reconnect_drains_queue_and_refreshes(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.start(poll=False)
        await app.analyze_images([IMAGE, IMAGE])
        assert len(app.store.pending_uploads) == 2

        await app.monitor.probe()
        report = await app.wait_for_sync()

        assert report.succeeded == 2
        assert app.store.connection.is_database_connected
        assert app.store.pending_uploads == []
        assert sorted(str(r.id) for r in app.store.counts) == ["1", "2"]
        assert all(isinstance(r.id, RemoteId) for r in app.store.counts)
        await app.stop()

    async def test_queue_survives_restart(self, storage, api, notifier):
        first = build_app(storage, api, notifier, user_id=1)
        await first.start(poll=False)
        await first.analyze_images([IMAGE])

        second = build_app(storage, api, notifier, user_id=1)
        await second.start(poll=False)

        assert [u.image for u in second.store.pending_uploads] == [IMAGE]

    async def test_forced_offline_keeps_queue(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.start(poll=False)
        await app.monitor.force_offline(True)
        await app.analyze_images([IMAGE])

        await app.monitor.probe()

        assert len(app.store.pending_uploads) == 1
        await app.monitor.force_offline(False)
        await app.wait_for_sync()
        assert app.store.pending_uploads == []
        await app.stop()

    async def test_health_check_does_not_wait_for_sync(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.start(poll=False)
        await app.analyze_images([IMAGE])
        api.gate = asyncio.Event()

        await asyncio.wait_for(app.monitor.probe(), timeout=1)
        await asyncio.wait_for(api.started.wait(), timeout=1)

        assert app.engine.running is True
        assert len(app.store.pending_uploads) == 1
        api.gate.set()
        await app.wait_for_sync()
        assert app.store.pending_uploads == []
        await app.stop()

    async def test_stop_cancels_running_sync(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.start(poll=False)
        await app.analyze_images([IMAGE])
        api.gate = asyncio.Event()
        await app.monitor.probe()
        await asyncio.wait_for(api.started.wait(), timeout=1)

        await app.stop()

        assert app.engine.running is False
        assert [u.status.value for u in app.store.pending_uploads] == ["queued"]


@pytest.mark.asyncio
class TestHistory:
    async def test_refresh_replaces_server_records_and_keeps_local(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        await app.store.add_count(CountRecord(id=RemoteId(99), user_id=1, count=1, timestamp=T0))
        local = await app.store.add_count(CountRecord.local(user_id=1, count=2))
        await app.store.add_count(CountRecord.local(count=0, labels=["guest-mode"]))
        api.server_counts = [CountRecord(id=RemoteId(5), user_id=1, count=3, timestamp=T0)]

        assert await app.refresh_counts() is True

        assert {r.id for r in app.store.counts} == {RemoteId(5), local.id}

    async def test_refresh_authorization_failure_keeps_local_data(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        await app.store.add_count(CountRecord(id=RemoteId(1), user_id=1, count=1))
        api.list_error = AuthorizationError("401")

        assert await app.refresh_counts() is False

        assert app.auth_required is True
        assert [r.id for r in app.store.counts] == [RemoteId(1)]

    async def test_delete_sends_only_server_ids(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        await app.store.add_count(CountRecord(id=RemoteId(7), user_id=1, count=1))
        local = await app.store.add_count(CountRecord.local(count=2))

        removed = await app.delete_counts([RemoteId(7), local.id])

        assert removed == 2
        assert app.store.counts == []
        assert api.deleted == [[RemoteId(7)]]

    async def test_sign_out_clears_records_and_queue(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.analyze_images([IMAGE])
        await app.store.add_count(CountRecord(id=RemoteId(1), user_id=1, count=1))

        await app.sign_out()

        assert app.store.counts == [] and app.store.pending_uploads == []
        assert app.is_authenticated is False


@pytest.mark.asyncio
class TestSessionIsolation:
    async def test_guest_records_are_dropped_on_sign_in(self, storage, api, notifier):
        """A guest record never shows up in a signed-in user's history."""
        app = build_app(storage, api, notifier)
        await app.start(poll=False)
        await app.analyze_images([IMAGE])
        await app.monitor.probe()
        await app.wait_for_sync()

        await app.sign_in(1)

        assert 0 not in {r.user_id for r in app.visible_counts()}
        assert all(r.user_id == 1 for r in app.store.counts)
        await app.stop()

    async def test_guest_records_are_dropped_on_offline_sign_in(self, storage, api, notifier):
        app = build_app(storage, api, notifier)
        await app.analyze_images([IMAGE])

        await app.sign_in(1)

        assert app.store.counts == []
        assert app.visible_counts() == []

    async def test_visible_counts_shows_only_current_owner(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        guest = await app.store.add_count(CountRecord.local(count=1))
        mine = await app.store.add_count(CountRecord(id=RemoteId(3), user_id=1, count=2, timestamp=T0))

        assert app.visible_counts() == [mine]
        app.user_id = None
        assert app.visible_counts() == [guest]

    async def test_switching_user_drops_previous_queue(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.analyze_images([IMAGE])
        await app.store.add_count(CountRecord(id=RemoteId(3), user_id=1, count=2))

        await app.sign_in(2)

        assert app.store.counts == [] and app.store.pending_uploads == []

    async def test_sign_out_during_sync_discards_result(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.analyze_images([IMAGE])
        await app.store.set_connection(CONNECTED)
        api.gate = asyncio.Event()

        task = asyncio.create_task(app.sync())
        await asyncio.wait_for(api.started.wait(), timeout=1)
        await app.sign_out()
        api.gate.set()
        report = await task

        assert (report.succeeded, report.discarded) == (0, 1)
        assert app.store.counts == [] and app.store.pending_uploads == []

    async def test_sign_out_during_capture_discards_result(self, storage, api, notifier):
        app = build_app(storage, api, notifier, user_id=1)
        await app.store.set_connection(CONNECTED)
        api.gate = asyncio.Event()

        task = asyncio.create_task(app.analyze_images([IMAGE]))
        await asyncio.wait_for(api.started.wait(), timeout=1)
        await app.sign_out()
        api.gate.set()
        report = await task

        assert report.discarded == 1 and report.records == []
        assert app.store.counts == []

    async def test_sign_in_during_guest_capture_discards_guest_record(self, storage, api, notifier):
        app = build_app(storage, api, notifier)
        await app.store.set_connection(CONNECTED)
        api.gate = asyncio.Event()

        task = asyncio.create_task(app.analyze_images([IMAGE]))
        await asyncio.wait_for(api.started.wait(), timeout=1)
        await app.sign_in(1)
        api.gate.set()
        report = await task

        assert report.discarded == 1
        assert all(r.user_id == 1 for r in app.store.counts)


@pytest.mark.asyncio
class TestTutorial:
    async def test_tutorial_flag_round_trips(self, storage, api, notifier):
        app = build_app(storage, api, notifier)
        assert await app.should_show_tutorial() is True

        await app.complete_tutorial()
        assert await build_app(storage, api, notifier).should_show_tutorial() is False

        await app.reset_tutorial()
        assert await app.should_show_tutorial() is True
