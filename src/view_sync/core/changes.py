"""
Change Feed - which primary keys changed since a watermark.

SQLite has no built-in change tracking, so changes are read from a log
relation holding the key columns plus a monotonically increasing version
column. install_change_tracking() creates such a log and the triggers that
fill it for a base table.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol, Sequence

from view_sync.connectors.sqlite import (
    SQLiteConnector,
    quote_identifier,
    translate_store_errors,
)
from view_sync.errors import SchemaError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeKey:
    """Primary key of one changed row, as ordered (column, value) pairs."""

    columns: tuple[str, ...]
    values: tuple[Any, ...]

    def __post_init__(self) -> None:
        if len(self.columns) != len(self.values):
            raise ValueError(
                f"ChangeKey has {len(self.columns)} columns but {len(self.values)} values"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeKey":
        return cls(tuple(data), tuple(data.values()))

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self.columns, self.values))

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        return iter(zip(self.columns, self.values))

    def __str__(self) -> str:
        pairs = ", ".join(f"{c}={v!r}" for c, v in self)
        return "{" + pairs + "}"


@dataclass
class ChangeSet:
    """Result of one change-feed scan."""

    columns: list[str]
    keys: list[ChangeKey] = field(default_factory=list)
    current_version: int = 0
    probe_failed: bool = False

    def __len__(self) -> int:
        return len(self.keys)


class ChangeFeed(Protocol):
    """Anything that can list changed keys since a watermark."""

    def get_changes(self, since: int) -> ChangeSet: ...


class SQLiteChangeFeed:
    """
    Change feed over a SQLite log relation.

    The current version is probed first and used as the scan ceiling, so every
    reported key has version <= current_version and changes written during the
    run are left for the next one.

    Example:
        feed = SQLiteChangeFeed(db, "sales_changes")
        changes = feed.get_changes(since=10)
        for key in changes.keys:
            ...
    """

    def __init__(
        self,
        connector: SQLiteConnector,
        changes_table: str,
        version_column: str = "version",
        version_query: str | None = None,
        key_columns: Sequence[str] | None = None,
    ) -> None:
        """
        Args:
            connector: Database connector
            changes_table: Log table or view with key columns and a version column
            version_column: Name of the version column
            version_query: Custom SQL returning the current version
            key_columns: Key columns to read (default: every other column)
        """
        self.connector = connector
        self.changes_table = changes_table
        self.version_column = version_column
        self.version_query = version_query
        self._key_columns = list(key_columns) if key_columns else None

    @property
    def key_columns(self) -> list[str]:
        if self._key_columns is None:
            with translate_store_errors(f"Reading columns of {self.changes_table}"):
                columns = self.connector.get_columns(self.changes_table)
            self._key_columns = [
                c for c in columns if c.lower() != self.version_column.lower()
            ]
            if len(self._key_columns) == len(columns):
                raise SchemaError(
                    f"Changes relation {self.changes_table} has no "
                    f"{self.version_column!r} column",
                    table=self.changes_table,
                )
        return self._key_columns

    def probe_version(self) -> int | None:
        """
        Current change version, or None if the probe failed.

        An empty log reports 0.
        """
        sql = self.version_query or (
            f"SELECT MAX({quote_identifier(self.version_column)}) "
            f"FROM {quote_identifier(self.changes_table)}"
        )
        try:
            value = self.connector.fetch_value(sql)
        except sqlite3.Error as e:
            logger.warning(
                "Change version probe failed on %s: %s. Watermark will be reset "
                "to 0 and the next run will rescan the full change history.",
                self.changes_table,
                e,
            )
            return None
        return int(value) if value is not None else 0

    def get_changes(self, since: int) -> ChangeSet:
        """
        Keys changed strictly after `since`, ordered by first change.

        Raises:
            TransientStoreError: if the key scan fails
        """
        columns = self.key_columns
        current = self.probe_version()

        col_str = ", ".join(quote_identifier(c) for c in columns)
        version = quote_identifier(self.version_column)
        sql = (
            f"SELECT {col_str} FROM {quote_identifier(self.changes_table)} "
            f"WHERE {version} > ?"
        )
        params: list[Any] = [since]
        if current is not None:
            sql += f" AND {version} <= ?"
            params.append(current)
        sql += f" GROUP BY {col_str} ORDER BY MIN({version})"

        with translate_store_errors(f"Scanning changes in {self.changes_table}"):
            names, rows = self.connector.fetch_rows(sql, params)

        keys = [ChangeKey(tuple(names), tuple(row)) for row in rows]
        logger.debug(
            "%d changed keys in %s since version %d", len(keys), self.changes_table, since
        )
        return ChangeSet(
            columns=names,
            keys=keys,
            current_version=current if current is not None else 0,
            probe_failed=current is None,
        )


def _trigger_names(changes_table: str) -> tuple[str, str, str]:
    return (
        f"{changes_table}_ai",
        f"{changes_table}_au",
        f"{changes_table}_ad",
    )


def install_change_tracking(
    connector: SQLiteConnector,
    table: str,
    changes_table: str | None = None,
    key_columns: Sequence[str] | None = None,
    version_column: str = "version",
) -> str:
    """
    Create a change log for `table` and the triggers that populate it.

    Inserts and deletes log the row's key; updates log both the old and the
    new key so a key change is seen on both sides. Safe to call twice.

    Args:
        connector: Database connector
        table: Base table to track (unqualified name)
        changes_table: Log table name (default: "<table>_changes")
        key_columns: Columns to log (default: the table's primary key)
        version_column: Name of the version column

    Returns:
        Name of the log table
    """
    changes_table = changes_table or f"{table}_changes"
    columns = list(key_columns) if key_columns else connector.get_primary_key(table)

    log = quote_identifier(changes_table)
    col_str = ", ".join(quote_identifier(c) for c in columns)
    new_values = ", ".join(f"NEW.{quote_identifier(c)}" for c in columns)
    old_values = ", ".join(f"OLD.{quote_identifier(c)}" for c in columns)
    ins, upd, dele = (quote_identifier(n) for n in _trigger_names(changes_table))
    source = quote_identifier(table)

    script = f"""
        CREATE TABLE IF NOT EXISTS {log} (
            {quote_identifier(version_column)} INTEGER PRIMARY KEY AUTOINCREMENT,
            {col_str}
        );
        CREATE TRIGGER IF NOT EXISTS {ins} AFTER INSERT ON {source}
        BEGIN
            INSERT INTO {log} ({col_str}) VALUES ({new_values});
        END;
        CREATE TRIGGER IF NOT EXISTS {upd} AFTER UPDATE ON {source}
        BEGIN
            INSERT INTO {log} ({col_str}) VALUES ({old_values});
            INSERT INTO {log} ({col_str}) VALUES ({new_values});
        END;
        CREATE TRIGGER IF NOT EXISTS {dele} AFTER DELETE ON {source}
        BEGIN
            INSERT INTO {log} ({col_str}) VALUES ({old_values});
        END;
    """
    connector.execute_script(script)
    logger.info("Change tracking installed on %s -> %s", table, changes_table)
    return changes_table


def uninstall_change_tracking(
    connector: SQLiteConnector,
    table: str,
    changes_table: str | None = None,
    drop_log: bool = False,
) -> None:
    """Drop the tracking triggers of `table`, and optionally its log table."""
    changes_table = changes_table or f"{table}_changes"
    statements = [
        f"DROP TRIGGER IF EXISTS {quote_identifier(name)};"
        for name in _trigger_names(changes_table)
    ]
    if drop_log:
        statements.append(f"DROP TABLE IF EXISTS {quote_identifier(changes_table)};")
    connector.execute_script("\n".join(statements))
    logger.info("Change tracking removed from %s", table)
