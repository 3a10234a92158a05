"""Core sync engine components for View Sync."""

from view_sync.core.changes import (
    ChangeFeed,
    ChangeKey,
    ChangeSet,
    SQLiteChangeFeed,
    install_change_tracking,
    uninstall_change_tracking,
)
from view_sync.core.engine import SyncEngine, SyncPhase, SyncStats
from view_sync.core.integrity import IntegrityChecker, VerificationResult
from view_sync.core.merger import MergeAction, TargetMerger
from view_sync.core.slicer import SliceFetched, ViewSliceFetcher
from view_sync.core.state import (
    JsonVersionStore,
    MemoryVersionStore,
    SQLiteVersionStore,
    VersionStore,
)

__all__ = [
    "ChangeFeed",
    "ChangeKey",
    "ChangeSet",
    "SQLiteChangeFeed",
    "install_change_tracking",
    "uninstall_change_tracking",
    "SyncEngine",
    "SyncPhase",
    "SyncStats",
    "IntegrityChecker",
    "VerificationResult",
    "MergeAction",
    "TargetMerger",
    "SliceFetched",
    "ViewSliceFetcher",
    "JsonVersionStore",
    "MemoryVersionStore",
    "SQLiteVersionStore",
    "VersionStore",
]
