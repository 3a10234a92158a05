"""
Version Stores - durable watermark persistence.

A version store maps a key (one per target table) to the last committed
change version. The engine reads it once at the start of a run and writes it
once, after every changed key has been merged.

Backends:
- SQLiteVersionStore: a small state table next to the data
- JsonVersionStore: a JSON state file
- MemoryVersionStore: process-local, for tests and embedding
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from view_sync.connectors.sqlite import (
    SQLiteConnector,
    quote_identifier,
    translate_store_errors,
)

logger = logging.getLogger(__name__)


@dataclass
class WatermarkEntry:
    """One stored watermark."""

    key: str
    version: int
    updated_at: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class VersionStore:
    """Interface of a watermark store."""

    def get(self, key: str) -> int | None:
        """Last committed version for `key`, None if never committed."""
        raise NotImplementedError

    def set(self, key: str, version: int) -> None:
        """Commit `version` for `key`."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Forget `key`; the next run starts from the beginning of history."""
        raise NotImplementedError

    def entries(self) -> list[WatermarkEntry]:
        """All stored watermarks."""
        raise NotImplementedError


class MemoryVersionStore(VersionStore):
    """In-memory store."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._entries: dict[str, WatermarkEntry] = {}
        for key, version in (initial or {}).items():
            self.set(key, version)

    def get(self, key: str) -> int | None:
        entry = self._entries.get(key)
        return entry.version if entry else None

    def set(self, key: str, version: int) -> None:
        self._entries[key] = WatermarkEntry(key, int(version), _now())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def entries(self) -> list[WatermarkEntry]:
        return list(self._entries.values())


class JsonVersionStore(VersionStore):
    """
    Watermarks in a JSON file.

    The file is rewritten in full on every set; it is read on every get so
    several processes see each other's commits.

    Example:
        store = JsonVersionStore(Path(".view-sync-state.json"))
        store.set("rpt_sales:last_sync_version", 11)
    """

    def __init__(self, state_file: Path | str) -> None:
        self.state_file = Path(state_file)

    def _load(self) -> dict[str, WatermarkEntry]:
        if not self.state_file.exists():
            return {}
        try:
            data = json.loads(self.state_file.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupted state file {self.state_file}: {e}") from e
        return {
            key: WatermarkEntry(key=key, **value)
            for key, value in data.get("watermarks", {}).items()
        }

    def _save(self, entries: dict[str, WatermarkEntry]) -> None:
        data: dict[str, Any] = {
            "watermarks": {
                key: {"version": e.version, "updated_at": e.updated_at}
                for key, e in entries.items()
            }
        }
        tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self.state_file)

    def get(self, key: str) -> int | None:
        entry = self._load().get(key)
        return entry.version if entry else None

    def set(self, key: str, version: int) -> None:
        entries = self._load()
        entries[key] = WatermarkEntry(key, int(version), _now())
        self._save(entries)

    def delete(self, key: str) -> None:
        entries = self._load()
        if entries.pop(key, None) is not None:
            self._save(entries)

    def entries(self) -> list[WatermarkEntry]:
        return list(self._load().values())


class SQLiteVersionStore(VersionStore):
    """
    Watermarks in a table of the synced database.

    The table is created on first use:
        sync_state(key TEXT PRIMARY KEY, version INTEGER, updated_at TEXT)
    """

    def __init__(self, connector: SQLiteConnector, table: str = "sync_state") -> None:
        self.connector = connector
        self.table = table
        self._ready = False

    def _ensure_table(self) -> None:
        if self._ready:
            return
        with translate_store_errors(f"Creating state table {self.table}"):
            self.connector.execute_sql(
                f"CREATE TABLE IF NOT EXISTS {quote_identifier(self.table)} ("
                '"key" TEXT PRIMARY KEY, '
                '"version" INTEGER NOT NULL, '
                '"updated_at" TEXT NOT NULL)'
            )
        self._ready = True

    def get(self, key: str) -> int | None:
        # Reads never create the table
        with translate_store_errors(f"Reading watermark {key}"):
            if not self._ready and not self.connector.table_exists(self.table):
                return None
            value = self.connector.fetch_value(
                f'SELECT "version" FROM {quote_identifier(self.table)} WHERE "key" = ?',
                (key,),
            )
        return int(value) if value is not None else None

    def set(self, key: str, version: int) -> None:
        self._ensure_table()
        with translate_store_errors(f"Committing watermark {key}"):
            self.connector.execute_sql(
                f'INSERT INTO {quote_identifier(self.table)} ("key", "version", "updated_at") '
                "VALUES (?, ?, ?) "
                'ON CONFLICT ("key") DO UPDATE SET '
                '"version" = excluded."version", "updated_at" = excluded."updated_at"',
                (key, int(version), _now()),
            )
        logger.debug("Watermark %s committed at %d", key, version)

    def delete(self, key: str) -> None:
        self._ensure_table()
        with translate_store_errors(f"Deleting watermark {key}"):
            self.connector.execute_sql(
                f'DELETE FROM {quote_identifier(self.table)} WHERE "key" = ?', (key,)
            )

    def entries(self) -> list[WatermarkEntry]:
        if not self.connector.table_exists(self.table):
            return []
        with translate_store_errors(f"Reading state table {self.table}"):
            _, rows = self.connector.fetch_rows(
                f'SELECT "key", "version", "updated_at" FROM {quote_identifier(self.table)} '
                'ORDER BY "key"'
            )
        return [WatermarkEntry(key=k, version=v, updated_at=u) for k, v, u in rows]
