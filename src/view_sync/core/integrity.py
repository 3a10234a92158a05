"""
Data Integrity Checker.

Compares the source view with the materialized target table:
- Row-level checksums over the view's columns
- Rows missing from, or extra in, the target
- Rows whose values differ
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Sequence

from view_sync.connectors.sqlite import (
    SQLiteConnector,
    quote_identifier,
    translate_store_errors,
)


@dataclass
class VerificationResult:
    """Result of comparing a view with its target table."""

    view: str
    table: str
    source_count: int
    dest_count: int
    mismatches: list[dict[str, Any]] = field(default_factory=list)

    @property
    def match(self) -> bool:
        return not self.mismatches

    @property
    def message(self) -> str:
        if self.match:
            return f"{self.table} matches {self.view} ({self.source_count} rows)"
        return (
            f"{len(self.mismatches)} differences between {self.view} "
            f"({self.source_count} rows) and {self.table} ({self.dest_count} rows)"
        )


class IntegrityChecker:
    """
    Data integrity verification.

    Example:
        checker = IntegrityChecker("md5")
        result = checker.verify(db, "sales_pivot", "rpt_sales_pivot", ["region_id"])
        if not result.match:
            print(result.mismatches)
    """

    def __init__(self, algorithm: str = "md5") -> None:
        """
        Args:
            algorithm: Hash algorithm ("md5" or "sha256")
        """
        if algorithm not in ("md5", "sha256"):
            raise ValueError(f"Unsupported algorithm: {algorithm}")
        self.algorithm = algorithm

    def _get_hasher(self) -> "hashlib._Hash":
        if self.algorithm == "sha256":
            return hashlib.sha256()
        return hashlib.md5()

    def row_checksum(self, values: Sequence[Any]) -> str:
        """
        Checksum of a single row.

        Values are converted to a canonical string representation and hashed.
        """
        hasher = self._get_hasher()

        parts = []
        for val in values:
            if val is None:
                parts.append("\\N")  # NULL marker
            elif isinstance(val, bytes):
                parts.append(val.hex())
            elif isinstance(val, bool):
                parts.append("1" if val else "0")
            else:
                parts.append(str(val))

        hasher.update("|".join(parts).encode("utf-8"))
        return hasher.hexdigest()

    def find_mismatches(
        self,
        source_rows: dict[tuple[Any, ...], Sequence[Any]],
        dest_rows: dict[tuple[Any, ...], Sequence[Any]],
    ) -> list[dict[str, Any]]:
        """
        Rows that differ between source and destination, both keyed by primary key.
        """
        mismatches: list[dict[str, Any]] = []
        remaining = dict(dest_rows)

        for key, row in source_rows.items():
            src_checksum = self.row_checksum(row)
            if key not in remaining:
                mismatches.append({
                    "type": "missing_in_dest",
                    "key": key,
                    "source_checksum": src_checksum,
                })
                continue

            dest_checksum = self.row_checksum(remaining.pop(key))
            if src_checksum != dest_checksum:
                mismatches.append({
                    "type": "checksum_mismatch",
                    "key": key,
                    "source_checksum": src_checksum,
                    "dest_checksum": dest_checksum,
                })

        for key, row in remaining.items():
            mismatches.append({
                "type": "extra_in_dest",
                "key": key,
                "dest_checksum": self.row_checksum(row),
            })

        return mismatches

    def verify(
        self,
        connector: SQLiteConnector,
        view: str,
        table: str,
        key_columns: Sequence[str],
    ) -> VerificationResult:
        """
        Compare the whole view with the target on the view's columns.

        This reads the full view; use it for audits, not on every run.
        """
        columns = connector.get_columns(view)
        col_str = ", ".join(quote_identifier(c) for c in columns)
        lowered = [c.lower() for c in columns]
        key_idx = [lowered.index(k.lower()) for k in key_columns]

        with translate_store_errors(f"Reading {view}"):
            _, view_rows = connector.fetch_rows(f"SELECT {col_str} FROM {quote_identifier(view)}")
        with translate_store_errors(f"Reading {table}"):
            _, table_rows = connector.fetch_rows(f"SELECT {col_str} FROM {quote_identifier(table)}")

        def by_key(rows: list[tuple[Any, ...]]) -> dict[tuple[Any, ...], tuple[Any, ...]]:
            return {tuple(r[i] for i in key_idx): r for r in rows}

        return VerificationResult(
            view=view,
            table=table,
            source_count=len(view_rows),
            dest_count=len(table_rows),
            mismatches=self.find_mismatches(by_key(view_rows), by_key(table_rows)),
        )
