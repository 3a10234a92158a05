"""
Target Merger - insert-or-update of one view slice into the target table.

The merger is the only component that writes the target table. Every value is
bound as a parameter; only quoted identifiers are placed in the SQL text.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Sequence

from view_sync.config import MissingSlicePolicy
from view_sync.connectors.sqlite import (
    SQLiteConnector,
    quote_identifier,
    translate_store_errors,
)
from view_sync.core.changes import ChangeKey
from view_sync.core.slicer import ViewSlice, key_predicate
from view_sync.errors import SchemaMismatchError

logger = logging.getLogger(__name__)


class MergeAction(str, Enum):
    """What a merge did to the target table."""

    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"


class TargetMerger:
    """
    Reconciles view slices into the target table.

    Example:
        merger = TargetMerger(db, "rpt_sales", key_columns=["region_id", "item_id"])
        merger.validate(changes.columns)
        action = merger.merge(key, slice_row)
    """

    def __init__(
        self,
        connector: SQLiteConnector,
        table: str,
        key_columns: Sequence[str],
        on_missing: MissingSlicePolicy = MissingSlicePolicy.DELETE,
        dry_run: bool = False,
    ) -> None:
        """
        Args:
            connector: Database connector
            table: Target table name
            key_columns: Target primary key, in index order
            on_missing: Action when the view no longer has a row for a key
            dry_run: Decide actions without writing
        """
        self.connector = connector
        self.table = table
        self.key_columns = list(key_columns)
        self.on_missing = MissingSlicePolicy(on_missing)
        self.dry_run = dry_run
        self._key_names = {c.lower() for c in self.key_columns}

    def validate(self, change_columns: Sequence[str], changes_table: str | None = None) -> None:
        """
        Check the change-feed columns against the target primary key.

        Names are compared case-insensitively and without regard to order.

        Raises:
            SchemaMismatchError: if the column sets differ
        """
        if {c.lower() for c in change_columns} != self._key_names:
            raise SchemaMismatchError(
                change_columns,
                self.key_columns,
                changes_table=changes_table,
                target_table=self.table,
            )

    def exists(self, key: ChangeKey) -> bool:
        """Whether the target already holds a row for `key`."""
        sql = (
            f"SELECT 1 FROM {quote_identifier(self.table)} "
            f"WHERE {key_predicate(key.columns)} LIMIT 1"
        )
        with translate_store_errors(f"Checking {key} in {self.table}"):
            return self.connector.fetch_value(sql, key.values) is not None

    def merge(self, key: ChangeKey, row: ViewSlice | None) -> MergeAction:
        """
        Apply one slice to the target table.

        Raises:
            TransientStoreError: if a statement fails
        """
        found = self.exists(key)

        if row is None:
            if not found or self.on_missing == MissingSlicePolicy.KEEP:
                return MergeAction.SKIPPED
            if not self.dry_run:
                self._delete(key)
            return MergeAction.DELETED

        if found:
            values = {c: v for c, v in row.items() if c.lower() not in self._key_names}
            if not values:
                return MergeAction.UNCHANGED
            if not self.dry_run:
                self._update(key, values)
            return MergeAction.UPDATED

        if not self.dry_run:
            self._insert(row)
        return MergeAction.INSERTED

    def _insert(self, row: ViewSlice) -> None:
        col_str = ", ".join(quote_identifier(c) for c in row)
        placeholders = ", ".join("?" for _ in row)
        sql = f"INSERT INTO {quote_identifier(self.table)} ({col_str}) VALUES ({placeholders})"
        with translate_store_errors(f"Inserting into {self.table}"):
            self.connector.execute_sql(sql, tuple(row.values()))

    def _update(self, key: ChangeKey, values: ViewSlice) -> None:
        set_clause = ", ".join(f"{quote_identifier(c)} = ?" for c in values)
        sql = (
            f"UPDATE {quote_identifier(self.table)} SET {set_clause} "
            f"WHERE {key_predicate(key.columns)}"
        )
        with translate_store_errors(f"Updating {key} in {self.table}"):
            self.connector.execute_sql(sql, (*values.values(), *key.values))

    def _delete(self, key: ChangeKey) -> None:
        sql = f"DELETE FROM {quote_identifier(self.table)} WHERE {key_predicate(key.columns)}"
        with translate_store_errors(f"Deleting {key} from {self.table}"):
            self.connector.execute_sql(sql, key.values)
