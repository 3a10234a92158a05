"""
View Slice Fetcher - point queries against the source view.

The view is never read without a key predicate. The SQL text is built once per
key-column tuple, so sqlite3's statement cache serves the same prepared
statement for every key in a batch.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from view_sync.connectors.sqlite import (
    SQLiteConnector,
    quote_identifier,
    translate_store_errors,
)
from view_sync.core.changes import ChangeKey
from view_sync.errors import SliceIntegrityError

ViewSlice = dict[str, Any]


@dataclass
class SliceFetched:
    """Instrumentation event emitted after every slice fetch."""

    key: ChangeKey
    sql: str
    duration: float
    found: bool


SliceHook = Callable[[SliceFetched], None]


def key_predicate(columns: tuple[str, ...]) -> str:
    """
    Equality predicate over the key columns, one placeholder per column.

    IS is used instead of = so a NULL key part still matches its row.
    """
    return " AND ".join(f"{quote_identifier(c)} IS ?" for c in columns)


class ViewSliceFetcher:
    """
    Fetches the current source-view row for one changed key.

    Example:
        fetcher = ViewSliceFetcher(db, "sales_pivot")
        row = fetcher.fetch(key)   # dict or None
    """

    def __init__(self, connector: SQLiteConnector, view: str) -> None:
        self.connector = connector
        self.view = view
        self._sql_cache: dict[tuple[str, ...], str] = {}
        self.last_event: SliceFetched | None = None

    def slice_sql(self, columns: tuple[str, ...]) -> str:
        """SELECT statement for a key-column tuple (cached)."""
        sql = self._sql_cache.get(columns)
        if sql is None:
            sql = (
                f"SELECT * FROM {quote_identifier(self.view)} "
                f"WHERE {key_predicate(columns)}"
            )
            self._sql_cache[columns] = sql
        return sql

    def fetch(self, key: ChangeKey) -> ViewSlice | None:
        """
        Current view row for `key`, or None if the view has no such row.

        Raises:
            SliceIntegrityError: if the view returns more than one row
            TransientStoreError: if the query fails
        """
        sql = self.slice_sql(key.columns)
        started = time.perf_counter()

        with translate_store_errors(f"Fetching slice {key} from {self.view}"):
            names, rows = self.connector.fetch_rows(sql, key.values, limit=2)

        self.last_event = SliceFetched(
            key=key,
            sql=sql,
            duration=time.perf_counter() - started,
            found=bool(rows),
        )

        if len(rows) > 1:
            raise SliceIntegrityError(self.view, key)
        if not rows:
            return None
        return dict(zip(names, rows[0]))
