"""Tests for change keys, change tracking triggers and the SQLite change feed."""

import logging

import pytest

from conftest import KEY, add_sale
from view_sync.connectors.sqlite import SQLiteConnector
from view_sync.core.changes import (
    ChangeKey,
    SQLiteChangeFeed,
    install_change_tracking,
    uninstall_change_tracking,
)
from view_sync.errors import SchemaError


class TestChangeKey:
    """Tests for ChangeKey."""

    def test_from_dict_keeps_order(self) -> None:
        key = ChangeKey.from_dict({"RegionId": 1, "ItemId": 7})
        assert key.columns == ("RegionId", "ItemId")
        assert key.values == (1, 7)
        assert key.as_dict() == {"RegionId": 1, "ItemId": 7}
        assert list(key) == [("RegionId", 1), ("ItemId", 7)]

    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            ChangeKey(("a", "b"), (1,))

    def test_hashable_and_str(self) -> None:
        a = ChangeKey(("id",), (1,))
        assert a == ChangeKey(("id",), (1,))
        assert len({a, ChangeKey(("id",), (1,))}) == 1
        assert str(a) == "{id=1}"


class TestChangeTracking:
    """Tests for the trigger-based change log."""

    def test_install_creates_log(self, db: SQLiteConnector) -> None:
        """Test the log table has the version column and the key columns."""
        assert db.get_columns("sales_changes") == ["version", *KEY]

    def test_install_is_idempotent(self, db: SQLiteConnector) -> None:
        assert install_change_tracking(db, "sales", key_columns=KEY) == "sales_changes"
        add_sale(db, 1, 1, "2020-01-01", 5)
        assert db.fetch_value("SELECT COUNT(*) FROM sales_changes") == 1

    def test_default_key_is_primary_key(self, db: SQLiteConnector) -> None:
        log = install_change_tracking(db, "sales", changes_table="sales_by_id")
        assert db.get_columns(log) == ["version", "Id"]

    def test_insert_update_delete_logged(self, db: SQLiteConnector) -> None:
        add_sale(db, 1, 7, "2020-01-01", 42)
        db.execute_sql("UPDATE sales SET ItemId = 8 WHERE ItemId = 7")
        db.execute_sql("DELETE FROM sales")

        _, rows = db.fetch_rows(
            "SELECT version, RegionId, ItemId, Date FROM sales_changes ORDER BY version"
        )
        assert rows == [
            (1, 1, 7, "2020-01-01"),   # insert
            (2, 1, 7, "2020-01-01"),   # update, old key
            (3, 1, 8, "2020-01-01"),   # update, new key
            (4, 1, 8, "2020-01-01"),   # delete
        ]

    def test_uninstall(self, db: SQLiteConnector) -> None:
        uninstall_change_tracking(db, "sales")
        add_sale(db, 1, 1, "2020-01-01", 5)
        assert db.fetch_value("SELECT COUNT(*) FROM sales_changes") == 0

        uninstall_change_tracking(db, "sales", drop_log=True)
        assert not db.table_exists("sales_changes")


class TestSQLiteChangeFeed:
    """Tests for SQLiteChangeFeed."""

    def test_empty_log(self, db: SQLiteConnector) -> None:
        changes = SQLiteChangeFeed(db, "sales_changes").get_changes(0)
        assert changes.columns == KEY
        assert changes.keys == []
        assert changes.current_version == 0
        assert not changes.probe_failed

    def test_changes_since(self, db: SQLiteConnector) -> None:
        add_sale(db, 1, 1, "2020-01-01", 5)
        add_sale(db, 1, 2, "2020-01-01", 5)
        add_sale(db, 1, 3, "2020-01-01", 5)

        feed = SQLiteChangeFeed(db, "sales_changes")
        changes = feed.get_changes(1)

        assert changes.current_version == 3
        assert [k.values for k in changes.keys] == [
            (1, 2, "2020-01-01"),
            (1, 3, "2020-01-01"),
        ]
        assert changes.keys[0].columns == tuple(KEY)

    def test_duplicates_collapsed_in_first_change_order(self, db: SQLiteConnector) -> None:
        add_sale(db, 1, 2, "2020-01-01", 5)
        add_sale(db, 1, 1, "2020-01-01", 5)
        add_sale(db, 1, 2, "2020-01-01", 1)

        changes = SQLiteChangeFeed(db, "sales_changes").get_changes(0)
        assert [k.values[1] for k in changes.keys] == [2, 1]

    def test_nothing_after_current(self, db: SQLiteConnector) -> None:
        add_sale(db, 1, 1, "2020-01-01", 5)
        changes = SQLiteChangeFeed(db, "sales_changes").get_changes(1)
        assert len(changes) == 0
        assert changes.current_version == 1

    def test_scan_bounded_by_probe(self, db: SQLiteConnector) -> None:
        """Test changes newer than the probed version are left for later."""
        add_sale(db, 1, 1, "2020-01-01", 5)
        add_sale(db, 1, 2, "2020-01-01", 5)

        feed = SQLiteChangeFeed(
            db,
            "sales_changes",
            version_query="SELECT 1",
        )
        changes = feed.get_changes(0)
        assert changes.current_version == 1
        assert [k.values[1] for k in changes.keys] == [1]

    def test_probe_failure_soft_fails(
        self, db: SQLiteConnector, caplog: pytest.LogCaptureFixture
    ) -> None:
        add_sale(db, 1, 1, "2020-01-01", 5)
        add_sale(db, 1, 2, "2020-01-01", 5)

        feed = SQLiteChangeFeed(
            db,
            "sales_changes",
            version_query="SELECT MAX(version) FROM missing_counter",
        )
        with caplog.at_level(logging.WARNING, logger="view_sync"):
            changes = feed.get_changes(1)

        assert changes.probe_failed
        assert changes.current_version == 0
        # No ceiling: the scan still sees everything after `since`
        assert [k.values[1] for k in changes.keys] == [2]
        assert "full change history" in caplog.text

    def test_explicit_key_columns(self, db: SQLiteConnector) -> None:
        add_sale(db, 1, 1, "2020-01-01", 5)
        add_sale(db, 1, 1, "2020-01-02", 5)

        feed = SQLiteChangeFeed(db, "sales_changes", key_columns=["RegionId", "ItemId"])
        changes = feed.get_changes(0)
        assert changes.columns == ["RegionId", "ItemId"]
        assert [k.values for k in changes.keys] == [(1, 1)]

    def test_missing_changes_table(
        self, db: SQLiteConnector, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a missing log fails on schema without announcing a watermark reset."""
        feed = SQLiteChangeFeed(db, "no_such_changes")
        with caplog.at_level(logging.WARNING, logger="view_sync"):
            with pytest.raises(SchemaError, match="no_such_changes"):
                feed.get_changes(0)
        assert "full change history" not in caplog.text

    def test_missing_version_column(self, db: SQLiteConnector) -> None:
        db.execute_sql("CREATE VIEW keys_only AS SELECT RegionId, ItemId, Date FROM sales")
        feed = SQLiteChangeFeed(db, "keys_only")
        with pytest.raises(SchemaError, match="no 'version' column"):
            feed.get_changes(0)
