"""Utility modules for View Sync."""

from view_sync.utils.logger import setup_logging
from view_sync.utils.display import ProgressDisplay

__all__ = ["setup_logging", "ProgressDisplay"]
