"""
View Sync Configuration System.

Type-safe settings built on Pydantic. Settings can be loaded from:
1. Environment variables (prefixed with VIEW_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from view_sync.config import Settings

    # Load from environment
    settings = Settings()

    # Or with explicit values
    settings = Settings(
        database_path="reports.db",
        source_view="sales_pivot",
        target_table="rpt_sales_pivot",
        changes_table="sales_changes",
    )
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StateBackend(str, Enum):
    """Where the last committed watermark is kept."""

    SQLITE = "sqlite"
    JSON = "json"
    MEMORY = "memory"


class MissingSlicePolicy(str, Enum):
    """What to do with a changed key the source view no longer returns."""

    DELETE = "delete"
    KEEP = "keep"


class StateConfig(BaseModel):
    """Watermark store configuration."""

    backend: StateBackend = Field(
        default=StateBackend.SQLITE,
        description="Watermark store backend",
    )
    table: str = Field(
        default="sync_state",
        description="State table name (sqlite backend)",
    )
    file: Path = Field(
        default=Path(".view-sync-state.json"),
        description="State file path (json backend)",
    )
    key: str | None = Field(
        default=None,
        description="Watermark key (default: '<target_table>:last_sync_version')",
    )


class SyncOptions(BaseModel):
    """Options controlling sync behavior."""

    dry_run: bool = Field(
        default=False,
        description="Decide inserts/updates without writing or committing",
    )
    on_missing: MissingSlicePolicy = Field(
        default=MissingSlicePolicy.DELETE,
        description="Action when the source view has no row for a changed key",
    )
    verify_after_sync: bool = Field(
        default=False,
        description="Compare the whole view with the target after the run",
    )
    checksum_algorithm: str = Field(
        default="md5",
        pattern="^(md5|sha256)$",
        description="Algorithm for row checksums",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for View Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (VIEW_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        export VIEW_SYNC_DATABASE_PATH="reports.db"
        export VIEW_SYNC_SYNC__ON_MISSING="keep"
        settings = Settings()

        settings = Settings.from_file("view-sync.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="VIEW_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_path: Path | None = Field(
        default=None,
        description="SQLite database holding the view, target and change log",
    )
    source_view: str = Field(
        default="",
        description="View (or table) to materialize",
    )
    target_table: str = Field(
        default="",
        description="Physical table receiving the materialized rows",
    )
    changes_table: str = Field(
        default="",
        description="Relation listing changed primary keys with a version column",
    )
    version_column: str = Field(
        default="version",
        description="Monotonic version column in the changes relation",
    )
    version_query: str | None = Field(
        default=None,
        description="Custom SQL returning the current change version",
    )

    state: StateConfig = Field(default_factory=StateConfig)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def state_key(self) -> str:
        """Watermark key for the configured target table."""
        return self.state.key or f"{self.target_table}:last_sync_version"

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
            import tomllib

            data = tomllib.loads(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save current settings to a config file."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        if path.suffix in (".toml", ".tml"):
            # Scalars first, TOML tables must come after them
            lines = []
            tables = []
            for key, value in data.items():
                if isinstance(value, dict):
                    tables.append(f"\n[{key}]")
                    for k, v in value.items():
                        tables.append(f"{k} = {json.dumps(v)}")
                else:
                    lines.append(f"{key} = {json.dumps(value)}")
            path.write_text("\n".join(lines + tables) + "\n")
        else:
            path.write_text(json.dumps(data, indent=2))

    def validate_targets(self) -> list[str]:
        """Check that the identifiers a run needs are present. Returns list of errors."""
        errors = []
        if self.database_path is None:
            errors.append("database_path is required")
        elif not self.database_path.is_file():
            errors.append(f"database not found: {self.database_path}")
        if not self.source_view:
            errors.append("source_view is required")
        if not self.target_table:
            errors.append("target_table is required")
        if not self.changes_table:
            errors.append("changes_table is required")
        return errors


def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump()
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
