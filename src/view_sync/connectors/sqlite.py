"""
SQLite Database Connector.

Thin access layer over sqlite3 used by every sync component:
- Connection management (WAL, row factory, read-only mode)
- Schema introspection (columns, ordered primary key)
- Parameterized queries and writes
- Translation of driver errors into TransientStoreError
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generator, Sequence

from view_sync.errors import SchemaError, TransientStoreError


@dataclass
class ColumnInfo:
    """Information about a table column."""

    name: str
    type: str
    notnull: bool
    default_value: Any
    pk_position: int

    @property
    def is_primary_key(self) -> bool:
        return self.pk_position > 0


@dataclass
class TableInfo:
    """Information about a table or view."""

    name: str
    kind: str
    columns: list[ColumnInfo] = field(default_factory=list)

    @property
    def primary_key(self) -> list[str]:
        pk = sorted(
            (c for c in self.columns if c.is_primary_key),
            key=lambda c: c.pk_position,
        )
        return [c.name for c in pk]


def quote_identifier(name: str) -> str:
    """
    Quote a possibly schema-qualified identifier.

    "main.sales" becomes "main"."sales"; embedded double quotes are doubled.
    """
    return ".".join(
        '"' + part.replace('"', '""') + '"' for part in name.split(".")
    )


def _split_name(name: str) -> tuple[str | None, str]:
    if "." in name:
        schema, _, table = name.partition(".")
        return schema, table
    return None, name


@contextmanager
def translate_store_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise sqlite3 errors as TransientStoreError for the given operation."""
    try:
        yield
    except sqlite3.Error as e:
        raise TransientStoreError(operation, e) from e


class SQLiteConnector:
    """
    Connector for SQLite databases.

    Example:
        with SQLiteConnector(Path("reports.db")) as db:
            keys = db.get_primary_key("rpt_sales")
            columns, rows = db.fetch_rows('SELECT * FROM "sales" WHERE "id" = ?', (1,))
    """

    def __init__(
        self,
        path: Path | str,
        readonly: bool = False,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize SQLite connector.

        Args:
            path: Path to SQLite database file
            readonly: Open in read-only mode
            timeout: Seconds to wait for a locked database
        """
        self.path = Path(path)
        self.readonly = readonly
        self.timeout = timeout
        self._connection: sqlite3.Connection | None = None

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection, rolling back on error."""
        if self._connection is None:
            self._connection = self._create_connection()

        try:
            yield self._connection
        except Exception:
            self._connection.rollback()
            raise

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection."""
        if not self.path.exists():
            raise FileNotFoundError(f"Database not found: {self.path}")

        uri = f"file:{self.path}"
        if self.readonly:
            uri += "?mode=ro"

        conn = sqlite3.connect(
            uri,
            uri=True,
            check_same_thread=False,
            timeout=self.timeout,
        )

        conn.row_factory = sqlite3.Row
        if not self.readonly:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA temp_store=MEMORY")

        return conn

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "SQLiteConnector":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get_table(self, name: str) -> TableInfo | None:
        """Get information about a table or view, None if it does not exist."""
        schema, table = _split_name(name)
        master = f"{quote_identifier(schema)}.sqlite_master" if schema else "sqlite_master"

        with self.connection() as conn:
            row = conn.execute(
                f"SELECT type FROM {master} WHERE name = ? AND type IN ('table', 'view')",
                (table,),
            ).fetchone()
            if row is None:
                return None
            return TableInfo(
                name=name,
                kind=row["type"],
                columns=self._get_column_info(conn, name),
            )

    def _get_column_info(
        self, conn: sqlite3.Connection, name: str
    ) -> list[ColumnInfo]:
        """Get column information for a table or view."""
        schema, table = _split_name(name)
        pragma = f"PRAGMA {quote_identifier(schema)}.table_info" if schema else "PRAGMA table_info"
        cursor = conn.execute(f"{pragma}({quote_identifier(table)})")

        return [
            ColumnInfo(
                name=row["name"],
                type=row["type"],
                notnull=bool(row["notnull"]),
                default_value=row["dflt_value"],
                pk_position=row["pk"],
            )
            for row in cursor
        ]

    def table_exists(self, name: str) -> bool:
        """Check whether a table or view exists."""
        return self.get_table(name) is not None

    def get_columns(self, name: str) -> list[str]:
        """Column names of a table or view in declaration order."""
        table = self.get_table(name)
        if table is None:
            raise SchemaError(f"Table or view not found: {name}", table=name)
        return [c.name for c in table.columns]

    def get_primary_key(self, name: str) -> list[str]:
        """
        Ordered primary-key columns of a table.

        Raises:
            SchemaError: if the table is missing or declares no primary key
        """
        with translate_store_errors(f"Resolving primary key of {name}"):
            table = self.get_table(name)

        if table is None:
            raise SchemaError(f"Table not found: {name}", table=name)
        key = table.primary_key
        if not key:
            raise SchemaError(
                f"Table {name} has no primary key; cannot match rows", table=name
            )
        return key

    def fetch_rows(
        self,
        sql: str,
        params: Sequence[Any] = (),
        limit: int | None = None,
    ) -> tuple[list[str], list[tuple[Any, ...]]]:
        """
        Run a query and return (column names, rows).

        Args:
            sql: SELECT statement
            params: Query parameters
            limit: Read at most this many rows from the cursor
        """
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            columns = [d[0] for d in cursor.description or ()]
            if limit is None:
                rows = cursor.fetchall()
            else:
                rows = cursor.fetchmany(limit)
            cursor.close()
            return columns, [tuple(r) for r in rows]

    def fetch_value(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Return the first column of the first row, or None."""
        _, rows = self.fetch_rows(sql, params, limit=1)
        return rows[0][0] if rows else None

    def execute_sql(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Execute a SQL statement, commit, and return affected row count.

        Args:
            sql: SQL statement
            params: Query parameters

        Returns:
            Number of affected rows
        """
        if self.readonly:
            raise RuntimeError("Cannot execute write operations in read-only mode")

        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount

    def execute_script(self, script: str) -> None:
        """Execute several statements at once (DDL)."""
        if self.readonly:
            raise RuntimeError("Cannot execute write operations in read-only mode")

        with self.connection() as conn:
            conn.executescript(script)
            conn.commit()
