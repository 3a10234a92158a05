"""
Sync Engine - incremental materialization of a view into a table.

One execute() call:
1. reads the last committed watermark
2. asks the change feed for keys changed since then (and the current version);
   if the version went backwards the log was rebuilt, so it rescans from 0
3. resolves and validates the target primary key
4. re-fetches each changed key from the view and merges it into the target
5. commits the new watermark, only if every key merged

A failure anywhere before step 5 leaves the watermark untouched, so the next
run sees the same keys again. Merges are idempotent, which makes that safe.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from view_sync.config import MissingSlicePolicy, Settings, StateBackend
from view_sync.connectors.sqlite import SQLiteConnector
from view_sync.core.changes import ChangeFeed, SQLiteChangeFeed
from view_sync.core.integrity import IntegrityChecker, VerificationResult
from view_sync.core.merger import MergeAction, TargetMerger
from view_sync.core.slicer import SliceFetched, SliceHook, ViewSliceFetcher
from view_sync.core.state import (
    JsonVersionStore,
    MemoryVersionStore,
    SQLiteVersionStore,
    VersionStore,
)
from view_sync.errors import SchemaError

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Phases of one execute() call."""

    IDLE = "idle"
    RESOLVING_WATERMARK = "resolving_watermark"
    FETCHING_CHANGES = "fetching_changes"
    RESOLVING_KEY_COLUMNS = "resolving_key_columns"
    VALIDATING_KEY_COLUMNS = "validating_key_columns"
    PER_KEY_LOOP = "per_key_loop"
    COMMITTING_WATERMARK = "committing_watermark"


@dataclass
class SyncStats:
    """Statistics for one sync run."""

    target: str
    previous_version: int = 0
    current_version: int = 0
    committed_version: int | None = None
    first_run: bool = False
    probe_failed: bool = False
    history_reset: bool = False
    dry_run: bool = False
    keys_total: int = 0
    keys_processed: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    start_time: float = 0.0
    end_time: float = 0.0

    def record(self, action: MergeAction) -> None:
        self.keys_processed += 1
        if action == MergeAction.INSERTED:
            self.inserted += 1
        elif action == MergeAction.UPDATED:
            self.updated += 1
        elif action == MergeAction.UNCHANGED:
            self.unchanged += 1
        elif action == MergeAction.DELETED:
            self.deleted += 1
        else:
            self.skipped += 1

    @property
    def committed(self) -> bool:
        return self.committed_version is not None

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0

    @property
    def keys_per_second(self) -> float:
        """Processing rate."""
        duration = self.duration_seconds
        if duration > 0:
            return self.keys_processed / duration
        return 0.0


ProgressCallback = Callable[[SyncStats], None]


def create_version_store(settings: Settings, connector: SQLiteConnector) -> VersionStore:
    """Build the configured watermark store."""
    backend = settings.state.backend
    if backend == StateBackend.JSON:
        return JsonVersionStore(settings.state.file)
    if backend == StateBackend.MEMORY:
        return MemoryVersionStore()
    return SQLiteVersionStore(connector, settings.state.table)


class SyncEngine:
    """
    Materializes `source_view` into `target_table` from a change feed.

    Example:
        with SQLiteConnector("reports.db") as db:
            engine = SyncEngine(
                db,
                source_view="sales_pivot",
                target_table="rpt_sales_pivot",
                feed=SQLiteChangeFeed(db, "sales_changes"),
                store=SQLiteVersionStore(db),
            )
            stats = engine.execute()

    Runs against the same target must be serialized by the caller.
    """

    def __init__(
        self,
        connector: SQLiteConnector,
        source_view: str,
        target_table: str,
        feed: ChangeFeed,
        store: VersionStore,
        state_key: str | None = None,
        on_missing: MissingSlicePolicy = MissingSlicePolicy.DELETE,
        dry_run: bool = False,
        on_slice_fetched: SliceHook | None = None,
        checksum_algorithm: str = "md5",
    ) -> None:
        self.connector = connector
        self.source_view = source_view
        self.target_table = target_table
        self.feed = feed
        self.store = store
        self.state_key = state_key or f"{target_table}:last_sync_version"
        self.on_missing = MissingSlicePolicy(on_missing)
        self.dry_run = dry_run
        self.on_slice_fetched = on_slice_fetched
        self.integrity = IntegrityChecker(checksum_algorithm)
        self.phase = SyncPhase.IDLE

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        connector: SQLiteConnector,
        store: VersionStore | None = None,
        on_slice_fetched: SliceHook | None = None,
    ) -> "SyncEngine":
        """Wire an engine from settings."""
        feed = SQLiteChangeFeed(
            connector,
            settings.changes_table,
            version_column=settings.version_column,
            version_query=settings.version_query,
        )
        return cls(
            connector,
            source_view=settings.source_view,
            target_table=settings.target_table,
            feed=feed,
            store=store or create_version_store(settings, connector),
            state_key=settings.state_key,
            on_missing=settings.sync.on_missing,
            dry_run=settings.sync.dry_run,
            on_slice_fetched=on_slice_fetched,
            checksum_algorithm=settings.sync.checksum_algorithm,
        )

    def _enter(self, phase: SyncPhase) -> None:
        logger.debug("%s: %s -> %s", self.target_table, self.phase.value, phase.value)
        self.phase = phase

    def _notify(self, event: SliceFetched | None) -> None:
        """Invoke the slice hook; its failures are logged, never raised."""
        if event is None:
            return
        logger.debug(
            "Fetched %s from %s in %.2fms (found=%s)",
            event.key,
            self.source_view,
            event.duration * 1000,
            event.found,
        )
        if self.on_slice_fetched is None:
            return
        try:
            self.on_slice_fetched(event)
        except Exception:
            logger.exception("Slice hook failed for key %s", event.key)

    def execute(self, on_progress: ProgressCallback | None = None) -> SyncStats:
        """
        Run one incremental sync.

        Args:
            on_progress: Optional callback invoked after every merged key

        Returns:
            SyncStats with run results

        Raises:
            SchemaError, SchemaMismatchError: before any row is touched
            SliceIntegrityError, TransientStoreError: mid-run; watermark unchanged
        """
        stats = SyncStats(target=self.target_table, dry_run=self.dry_run)
        stats.start_time = time.time()

        try:
            self._enter(SyncPhase.RESOLVING_WATERMARK)
            last = self.store.get(self.state_key)
            stats.first_run = last is None
            stats.previous_version = last or 0

            self._enter(SyncPhase.FETCHING_CHANGES)
            changes = self.feed.get_changes(stats.previous_version)
            stats.current_version = changes.current_version
            stats.probe_failed = changes.probe_failed

            if not changes.probe_failed and changes.current_version < stats.previous_version:
                # Log was rebuilt or truncated; replay everything it still holds
                logger.warning(
                    "Change version of %s went backwards (%d < %d); "
                    "rescanning the change history from 0",
                    self.target_table,
                    changes.current_version,
                    stats.previous_version,
                )
                stats.history_reset = True
                changes = self.feed.get_changes(0)
                stats.current_version = changes.current_version
                stats.probe_failed = changes.probe_failed

            stats.keys_total = len(changes.keys)

            self._enter(SyncPhase.RESOLVING_KEY_COLUMNS)
            key_columns = self.connector.get_primary_key(self.target_table)
            merger = TargetMerger(
                self.connector,
                self.target_table,
                key_columns,
                on_missing=self.on_missing,
                dry_run=self.dry_run,
            )

            self._enter(SyncPhase.VALIDATING_KEY_COLUMNS)
            merger.validate(changes.columns, changes_table=getattr(self.feed, "changes_table", None))

            logger.info(
                "Syncing %d changed keys from %s into %s (version %d -> %d)",
                stats.keys_total,
                self.source_view,
                self.target_table,
                stats.previous_version,
                stats.current_version,
            )

            self._enter(SyncPhase.PER_KEY_LOOP)
            fetcher = ViewSliceFetcher(self.connector, self.source_view)
            for key in changes.keys:
                row = fetcher.fetch(key)
                self._notify(fetcher.last_event)
                stats.record(merger.merge(key, row))
                if on_progress:
                    on_progress(stats)

            self._enter(SyncPhase.COMMITTING_WATERMARK)
            self._commit(stats)

        except Exception:
            logger.error(
                "Sync of %s failed during %s; watermark left at %d",
                self.target_table,
                self.phase.value,
                stats.previous_version,
            )
            raise
        finally:
            self._enter(SyncPhase.IDLE)
            stats.end_time = time.time()

        return stats

    def _commit(self, stats: SyncStats) -> None:
        if self.dry_run:
            logger.info("Dry run: watermark for %s not committed", self.target_table)
            return

        if stats.probe_failed:
            logger.warning(
                "Committing watermark 0 for %s after a failed version probe; "
                "the next run will resync every key",
                self.target_table,
            )
            version = 0
        else:
            version = stats.current_version

        self.store.set(self.state_key, version)
        stats.committed_version = version
        logger.info(
            "%s synced: %d inserted, %d updated, %d deleted; watermark %d",
            self.target_table,
            stats.inserted,
            stats.updated,
            stats.deleted,
            version,
        )

    def verify(self) -> VerificationResult:
        """Compare the whole source view with the target table."""
        key_columns = self.connector.get_primary_key(self.target_table)
        view_columns = {c.lower() for c in self.connector.get_columns(self.source_view)}
        missing = [k for k in key_columns if k.lower() not in view_columns]
        if missing:
            raise SchemaError(
                f"Source view {self.source_view} lacks key columns {missing}",
                table=self.source_view,
            )

        result = self.integrity.verify(
            self.connector, self.source_view, self.target_table, key_columns
        )
        log = logger.info if result.match else logger.warning
        log(result.message)
        return result
