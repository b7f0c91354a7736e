"""Offline-first FlockCount client library."""

from flockcount.client.api_client import FlockCountClient
from flockcount.client.app import CaptureReport, ClientApp
from flockcount.client.connectivity import ConnectivityMonitor, HealthProbe
from flockcount.client.identifiers import LocalId, RemoteId, parse_count_id
from flockcount.client.models import (
    ConnectionState,
    CountRecord,
    InvalidStateTransition,
    PendingUpload,
    UploadStatus,
)
from flockcount.client.retry import RetryPolicy
from flockcount.client.storage import FileStorage, MemoryStorage, PersistenceAdapter
from flockcount.client.store import RecordStore, merge_records
from flockcount.client.sync import SyncEngine, SyncReport

__all__ = [
    "CaptureReport",
    "ClientApp",
    "ConnectionState",
    "ConnectivityMonitor",
    "CountRecord",
    "FileStorage",
    "FlockCountClient",
    "HealthProbe",
    "InvalidStateTransition",
    "LocalId",
    "MemoryStorage",
    "PendingUpload",
    "PersistenceAdapter",
    "RecordStore",
    "RemoteId",
    "RetryPolicy",
    "SyncEngine",
    "SyncReport",
    "UploadStatus",
    "merge_records",
    "parse_count_id",
]
