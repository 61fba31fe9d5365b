"""Shared entity shapes every adapter produces and accepts"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    """UTC 'now' as a tz-aware datetime."""
    return datetime.now(timezone.utc)


def normalize_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to tz-aware UTC (naive values are assumed to be UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class SyncEntity:
    """Base shape for anything that can be synchronized"""

    # Unique within the system that owns the record
    id: str = ""
    # "<system>:<id>" back-reference to the counterpart record, if any
    external_id: Optional[str] = None
    last_modified: datetime = field(default_factory=utcnow)
    # Set by the adapter that produced or most recently wrote the record
    source: str = ""


@dataclass
class Comment(SyncEntity):
    """A comment on a work item"""

    text: str = ""
    author: str = ""
    created_date: datetime = field(default_factory=utcnow)
    work_item_id: str = ""


@dataclass
class WorkItem(SyncEntity):
    """A ticket, issue, task, lead..."""

    title: str = ""
    description: str = ""
    state: str = ""
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    # e.g. Bug, Task, Request. Required by adapters that need a type to create records.
    type: str = ""
    # Chronological
    comments: List[Comment] = field(default_factory=list)
    # Passthrough, never inspected by the engine
    custom_fields: Dict[str, Any] = field(default_factory=dict)


class ChangeType(str, enum.Enum):
    """Kind of change reported by an adapter"""

    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"


@dataclass
class SyncChange:
    """A change detected by an adapter's change query"""

    entity: SyncEntity
    change_type: ChangeType = ChangeType.UPDATED
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync pass between two systems"""

    success: bool
    source_system: str
    target_system: str
    items_synced: int
    errors: Tuple[str, ...]
    start_time: datetime
    end_time: datetime
    cancelled: bool = False

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "source_system": self.source_system,
            "target_system": self.target_system,
            "items_synced": self.items_synced,
            "errors": list(self.errors),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": self.duration.total_seconds(),
            "cancelled": self.cancelled,
        }
