"""Entity shapes and database models"""

from syncbridge.models.base import Base
from syncbridge.models.entities import (
    ChangeType,
    Comment,
    SyncChange,
    SyncEntity,
    SyncResult,
    WorkItem,
)
from syncbridge.models.sync_checkpoint import SyncCheckpoint
from syncbridge.models.sync_log import SyncLog

__all__ = [
    "Base",
    "ChangeType",
    "Comment",
    "SyncChange",
    "SyncEntity",
    "SyncResult",
    "WorkItem",
    "SyncCheckpoint",
    "SyncLog",
]
