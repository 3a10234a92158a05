"""Shared fixtures: a small sales database with a tracked base table."""

import sqlite3
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from view_sync.connectors.sqlite import SQLiteConnector
from view_sync.core.changes import SQLiteChangeFeed, install_change_tracking
from view_sync.core.engine import SyncEngine
from view_sync.core.state import MemoryVersionStore

KEY = ["RegionId", "ItemId", "Date"]


@pytest.fixture
def sales_path(tmp_path: Path) -> Path:
    """Create the sales database: base table, pivot view, empty target."""
    db_path = tmp_path / "sales.db"
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE sales (
            Id INTEGER PRIMARY KEY,
            RegionId INTEGER NOT NULL,
            ItemId INTEGER NOT NULL,
            Date TEXT NOT NULL,
            Quantity INTEGER NOT NULL
        );

        CREATE VIEW sales_pivot AS
            SELECT RegionId, ItemId, Date, SUM(Quantity) AS Quantity
            FROM sales
            GROUP BY RegionId, ItemId, Date;

        CREATE TABLE rpt_sales (
            RegionId INTEGER NOT NULL,
            ItemId INTEGER NOT NULL,
            Date TEXT NOT NULL,
            Quantity INTEGER,
            PRIMARY KEY (RegionId, ItemId, Date)
        );
    """)
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def db(sales_path: Path) -> Iterator[SQLiteConnector]:
    """Connector with change tracking installed on sales."""
    with SQLiteConnector(sales_path) as conn:
        install_change_tracking(conn, "sales", key_columns=KEY)
        yield conn


@pytest.fixture
def store() -> MemoryVersionStore:
    return MemoryVersionStore()


@pytest.fixture
def make_engine(
    db: SQLiteConnector, store: MemoryVersionStore
) -> Callable[..., SyncEngine]:
    """Factory for an engine over sales_pivot -> rpt_sales."""

    def factory(**kwargs: Any) -> SyncEngine:
        feed = kwargs.pop("feed", None) or SQLiteChangeFeed(db, "sales_changes")
        return SyncEngine(
            db,
            source_view="sales_pivot",
            target_table="rpt_sales",
            feed=feed,
            store=kwargs.pop("store", store),
            **kwargs,
        )

    return factory


def add_sale(
    db: SQLiteConnector, region: int, item: int, date: str, quantity: int
) -> None:
    db.execute_sql(
        "INSERT INTO sales (RegionId, ItemId, Date, Quantity) VALUES (?, ?, ?, ?)",
        (region, item, date, quantity),
    )


def target_rows(db: SQLiteConnector) -> list[tuple[Any, ...]]:
    _, rows = db.fetch_rows(
        "SELECT RegionId, ItemId, Date, Quantity FROM rpt_sales "
        "ORDER BY RegionId, ItemId, Date"
    )
    return rows
