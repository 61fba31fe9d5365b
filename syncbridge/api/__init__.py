"""API routes"""

from syncbridge.api import adapters, dashboard, sync

__all__ = ["adapters", "sync", "dashboard"]
