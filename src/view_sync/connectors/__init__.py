"""Database connectors for View Sync."""

from view_sync.connectors.sqlite import SQLiteConnector, quote_identifier

__all__ = ["SQLiteConnector", "quote_identifier"]
