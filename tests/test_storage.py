"""Persistence adapter and storage backend tests."""

import json

import pytest

from flockcount.client.identifiers import RemoteId
from flockcount.client.models import CountRecord, PendingUpload, StoreSnapshot, UploadStatus
from flockcount.client.storage import (
    STATE_KEY,
    TUTORIAL_KEY,
    FileStorage,
    MemoryStorage,
    PersistenceAdapter,
)


@pytest.mark.asyncio
class TestFileStorage:
    async def test_set_get_remove(self, tmp_path):
        storage = FileStorage(tmp_path / "state")

        assert await storage.get("missing") is None
        await storage.set("flock-counter-storage", {"counts": [1, 2]})
        assert await storage.get("flock-counter-storage") == {"counts": [1, 2]}

        await storage.remove("flock-counter-storage")
        assert await storage.get("flock-counter-storage") is None
        await storage.remove("flock-counter-storage")

    async def test_overwrite_leaves_no_temp_files(self, tmp_path):
        storage = FileStorage(tmp_path)
        await storage.set("key", 1)
        await storage.set("key", 2)

        assert await storage.get("key") == 2
        assert [p.name for p in tmp_path.iterdir()] == ["key.json"]


@pytest.mark.asyncio
class TestPersistenceAdapter:
    async def test_snapshot_round_trip_uses_camel_case(self):
        storage = MemoryStorage()
        adapter = PersistenceAdapter(storage)
        snapshot = StoreSnapshot(
            counts=[CountRecord(id=RemoteId(3), user_id=1, count=4, image_url="data:image/png;base64,AA==")],
            pending_uploads=[PendingUpload(image="data:image/png;base64,AA==")],
        )

        assert await adapter.save_state(snapshot) is True

        raw = json.loads(storage.data[STATE_KEY])
        assert raw["counts"][0]["imageUrl"] == "data:image/png;base64,AA=="
        assert raw["pendingUploads"][0]["retryCount"] == 0
        loaded = await adapter.load_state()
        assert loaded.counts[0].id == RemoteId(3)
        assert loaded.pending_uploads[0].id == snapshot.pending_uploads[0].id

    async def test_in_flight_uploads_are_requeued_on_load(self):
        storage = MemoryStorage()
        adapter = PersistenceAdapter(storage)
        upload = PendingUpload(image="data:image/png;base64,AA==", retry_count=2).start()
        await adapter.save_state(StoreSnapshot(pending_uploads=[upload]))

        loaded = await adapter.load_state()

        recovered = loaded.pending_uploads[0]
        assert recovered.status == UploadStatus.QUEUED
        assert recovered.retry_count == 2

    async def test_missing_and_unreadable_state(self, tmp_path):
        storage = FileStorage(tmp_path)
        adapter = PersistenceAdapter(storage)
        assert await adapter.load_state() is None

        (tmp_path / f"{STATE_KEY}.json").write_text("{not json", encoding="utf-8")
        assert await adapter.load_state() is None

    async def test_tutorial_flag(self):
        storage = MemoryStorage()
        adapter = PersistenceAdapter(storage)

        assert await adapter.load_tutorial_completed() is False
        await adapter.save_tutorial_completed(True)
        assert await adapter.load_tutorial_completed() is True
        assert json.loads(storage.data[TUTORIAL_KEY]) is True
        await adapter.save_tutorial_completed(False)
        assert await adapter.load_tutorial_completed() is False
