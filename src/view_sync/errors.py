"""
Sync error hierarchy.

Fatal errors (schema problems, duplicate slices) stop a run before or during
the per-key loop. TransientStoreError wraps database failures; the watermark is
never committed when one is raised, so the caller can simply run again.
"""

from __future__ import annotations

from typing import Any, Sequence


class ViewSyncError(Exception):
    """Base exception for all sync errors."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class SchemaError(ViewSyncError):
    """Raised when a table is missing or has no primary key."""

    pass


class SchemaMismatchError(ViewSyncError):
    """Raised when the change feed columns differ from the target primary key."""

    def __init__(
        self,
        change_columns: Sequence[str],
        key_columns: Sequence[str],
        changes_table: str | None = None,
        target_table: str | None = None,
    ) -> None:
        self.change_columns = list(change_columns)
        self.key_columns = list(key_columns)
        self.changes_table = changes_table
        message = (
            f"Change feed {changes_table or '<feed>'} returns columns "
            f"{_fmt(self.change_columns)} but primary key of "
            f"{target_table or '<target>'} is {_fmt(self.key_columns)}"
        )
        super().__init__(message, table=target_table)


class SliceIntegrityError(ViewSyncError):
    """Raised when the source view returns more than one row for a key."""

    def __init__(self, view: str, key: Any) -> None:
        self.key = key
        super().__init__(
            f"Source view {view} returned more than one row for key {key}",
            table=view,
        )


class TransientStoreError(ViewSyncError):
    """Raised when a database call fails mid-run. Safe to retry."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"{operation} failed: {cause} (sync not committed, safe to retry)"
        )


def _fmt(columns: Sequence[str]) -> str:
    return "{" + ", ".join(columns) + "}"
