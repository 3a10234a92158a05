"""View Sync - incremental materialization of SQLite views into tables."""

__version__ = "1.0.0"
__author__ = "View Sync Contributors"

from view_sync.config import Settings

__all__ = ["Settings", "__version__"]
