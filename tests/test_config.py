"""Tests for configuration module."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from view_sync.config import (
    MissingSlicePolicy,
    Settings,
    StateBackend,
    load_settings,
)


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Test default settings creation."""
        settings = Settings()
        assert settings.database_path is None
        assert settings.version_column == "version"
        assert settings.version_query is None
        assert settings.state.backend == StateBackend.SQLITE
        assert settings.state.table == "sync_state"

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test settings loading from environment variables."""
        monkeypatch.setenv("VIEW_SYNC_DATABASE_PATH", "reports.db")
        monkeypatch.setenv("VIEW_SYNC_SOURCE_VIEW", "sales_pivot")
        monkeypatch.setenv("VIEW_SYNC_STATE__BACKEND", "json")
        monkeypatch.setenv("VIEW_SYNC_SYNC__ON_MISSING", "keep")

        settings = Settings()
        assert settings.database_path == Path("reports.db")
        assert settings.source_view == "sales_pivot"
        assert settings.state.backend == StateBackend.JSON
        assert settings.sync.on_missing == MissingSlicePolicy.KEEP

    def test_state_key(self) -> None:
        """Test watermark key derivation."""
        settings = Settings(target_table="rpt_sales")
        assert settings.state_key == "rpt_sales:last_sync_version"

        settings.state.key = "custom"
        assert settings.state_key == "custom"

    def test_validate_targets_missing(self) -> None:
        """Test validation with missing identifiers."""
        errors = Settings().validate_targets()
        assert len(errors) == 4
        assert any("changes_table" in e for e in errors)

    def test_validate_targets_complete(self, tmp_path: Path) -> None:
        """Test validation with all identifiers."""
        db_path = tmp_path / "reports.db"
        db_path.touch()
        settings = Settings(
            database_path=db_path,
            source_view="sales_pivot",
            target_table="rpt_sales",
            changes_table="sales_changes",
        )
        assert settings.validate_targets() == []

    def test_validate_targets_missing_database(self, tmp_path: Path) -> None:
        """Test a configured database file that does not exist."""
        settings = Settings(
            database_path=tmp_path / "nope.db",
            source_view="sales_pivot",
            target_table="rpt_sales",
            changes_table="sales_changes",
        )
        errors = settings.validate_targets()
        assert len(errors) == 1
        assert "database not found" in errors[0]

    def test_settings_to_file_toml(self, tmp_path: Path) -> None:
        """Test TOML round trip."""
        settings = Settings(
            database_path="reports.db",
            source_view="sales_pivot",
            target_table="rpt_sales",
            changes_table="sales_changes",
        )
        settings.sync.on_missing = MissingSlicePolicy.KEEP

        output_path = tmp_path / "view-sync.toml"
        settings.to_file(output_path)

        loaded = Settings.from_file(output_path)
        assert loaded.database_path == Path("reports.db")
        assert loaded.target_table == "rpt_sales"
        assert loaded.sync.on_missing == MissingSlicePolicy.KEEP
        assert loaded.logging.level == "INFO"

    def test_settings_to_file_json(self, tmp_path: Path) -> None:
        """Test saving settings to JSON file."""
        settings = Settings(source_view="sales_pivot")
        output_path = tmp_path / "config.json"
        settings.to_file(output_path)

        data = json.loads(output_path.read_text())
        assert data["source_view"] == "sales_pivot"
        assert data["state"]["backend"] == "sqlite"
        assert "database_path" not in data

    def test_from_file_unsupported(self, tmp_path: Path) -> None:
        """Test unknown config extension."""
        path = tmp_path / "config.yaml"
        path.write_text("source_view: x")
        with pytest.raises(ValueError, match="Unsupported"):
            Settings.from_file(path)

    def test_from_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_file(tmp_path / "nope.toml")

    def test_load_settings_overrides(self, tmp_path: Path) -> None:
        """Test overrides win over the config file."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"source_view": "a", "target_table": "t"}))

        settings = load_settings(path, source_view="b")
        assert settings.source_view == "b"
        assert settings.target_table == "t"


class TestSyncOptions:
    """Test SyncOptions class."""

    def test_default_sync_options(self) -> None:
        """Test default sync options."""
        settings = Settings()
        assert settings.sync.dry_run is False
        assert settings.sync.on_missing == MissingSlicePolicy.DELETE
        assert settings.sync.verify_after_sync is False
        assert settings.sync.checksum_algorithm == "md5"

    def test_invalid_checksum_algorithm(self) -> None:
        with pytest.raises(ValidationError):
            Settings(sync={"checksum_algorithm": "crc32"})
