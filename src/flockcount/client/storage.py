"""Durable key-value storage for the client.

`Storage` is the minimal async contract (browser IndexedDB equivalent);
`PersistenceAdapter` maps the client's state onto it under fixed keys.
Storage failures never propagate: in-memory state stays authoritative and
the failure is logged.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import structlog
from pydantic import ValidationError

from flockcount.client.models import StoreSnapshot, UploadStatus

logger = structlog.get_logger()

STATE_KEY = "flock-counter-storage"
TUTORIAL_KEY = "flock-counter-tutorial-shown"


class Storage(Protocol):
    """Async key-value store holding JSON-compatible values."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage, for tests and ephemeral sessions."""

    def __init__(self):
        self.data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self.data.get(key)
        # Round-trip through JSON so callers never share mutable state
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage:
    """One JSON file per key inside a directory.

    Writes go to a temporary file that atomically replaces the target, so a
    crash mid-write leaves the previous value intact. File I/O runs in a
    worker thread to keep the event loop free.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, key: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)


class PersistenceAdapter:
    """Loads and saves client state through a Storage backend."""

    def __init__(self, storage: Storage):
        self.storage = storage

    async def load_state(self) -> StoreSnapshot | None:
        """Restore the persisted snapshot.

        Uploads that were in flight when the process stopped are reset to
        queued without charging an attempt.

        Returns:
            Snapshot, or None when nothing (valid) is stored
        """
        try:
            raw = await self.storage.get(STATE_KEY)
        except Exception as e:
            logger.error("storage.load_failed", key=STATE_KEY, error=str(e), error_type=type(e).__name__)
            return None

        if raw is None:
            return None

        try:
            snapshot = StoreSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.error("storage.corrupt_snapshot", key=STATE_KEY, errors=e.error_count())
            return None

        recovered = 0
        uploads = []
        for upload in snapshot.pending_uploads:
            if upload.status == UploadStatus.IN_FLIGHT:
                upload = upload.release()
                recovered += 1
            uploads.append(upload)
        if recovered:
            logger.info("storage.orphaned_uploads_recovered", count=recovered)

        return snapshot.model_copy(update={"pending_uploads": uploads})

    async def save_state(self, snapshot: StoreSnapshot) -> bool:
        """Persist a snapshot. Returns False (and logs) on failure."""
        try:
            await self.storage.set(STATE_KEY, snapshot.model_dump(mode="json", by_alias=True))
            return True
        except Exception as e:
            logger.error("storage.save_failed", key=STATE_KEY, error=str(e), error_type=type(e).__name__)
            return False

    async def clear_state(self) -> None:
        try:
            await self.storage.remove(STATE_KEY)
        except Exception as e:
            logger.error("storage.clear_failed", key=STATE_KEY, error=str(e), error_type=type(e).__name__)

    async def load_tutorial_completed(self) -> bool:
        """Whether the first-run tutorial was completed (missing means no)."""
        try:
            value = await self.storage.get(TUTORIAL_KEY)
        except Exception as e:
            logger.error("storage.load_failed", key=TUTORIAL_KEY, error=str(e), error_type=type(e).__name__)
            return False
        return value is True

    async def save_tutorial_completed(self, completed: bool) -> None:
        try:
            await self.storage.set(TUTORIAL_KEY, completed)
        except Exception as e:
            logger.error("storage.save_failed", key=TUTORIAL_KEY, error=str(e), error_type=type(e).__name__)
