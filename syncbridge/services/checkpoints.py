"""Checkpoint storage for the sync engine"""

import enum
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from syncbridge.models.entities import normalize_utc
from syncbridge.models.sync_checkpoint import SyncCheckpoint

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str]


class CheckpointPolicy(str, enum.Enum):
    """When a pass is allowed to move its checkpoints forward"""

    # Advance after every pass that wasn't aborted, even if some items failed.
    ADVANCE_ALWAYS = "advance_always"
    # Advance only when every item applied; failed items are re-scanned next tick.
    ADVANCE_ON_SUCCESS = "advance_on_success"


class CheckpointStore(ABC):
    """Key-value store of (source system, target system) -> last scan time"""

    @abstractmethod
    def get(self, source_system: str, target_system: str) -> Optional[datetime]:
        """Stored checkpoint for a direction, or None when it was never set."""

    @abstractmethod
    def set(self, source_system: str, target_system: str, value: datetime) -> None:
        """Store the checkpoint for a direction (normalized to UTC)."""

    @abstractmethod
    def snapshot(self) -> Dict[PairKey, datetime]:
        """Copy of every stored checkpoint."""


class InMemoryCheckpointStore(CheckpointStore):
    """Process-lifetime checkpoints; a restart re-scans the initial look-back window."""

    def __init__(self, initial: Optional[Dict[PairKey, datetime]] = None):
        self._lock = threading.Lock()
        self._values: Dict[PairKey, datetime] = dict(initial or {})

    def get(self, source_system: str, target_system: str) -> Optional[datetime]:
        with self._lock:
            return self._values.get((source_system, target_system))

    def set(self, source_system: str, target_system: str, value: datetime) -> None:
        with self._lock:
            self._values[(source_system, target_system)] = normalize_utc(value)

    def snapshot(self) -> Dict[PairKey, datetime]:
        with self._lock:
            return dict(self._values)


class SqlCheckpointStore(CheckpointStore):
    """Checkpoints kept in the sync_checkpoints table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, source_system: str, target_system: str) -> Optional[datetime]:
        db = self._session_factory()
        try:
            row = (
                db.query(SyncCheckpoint)
                .filter(
                    SyncCheckpoint.source_system == source_system,
                    SyncCheckpoint.target_system == target_system,
                )
                .first()
            )
            # SQLite drops tzinfo; stored values are always UTC.
            return normalize_utc(row.last_sync_at) if row else None
        finally:
            db.close()

    def set(self, source_system: str, target_system: str, value: datetime) -> None:
        db = self._session_factory()
        try:
            row = (
                db.query(SyncCheckpoint)
                .filter(
                    SyncCheckpoint.source_system == source_system,
                    SyncCheckpoint.target_system == target_system,
                )
                .first()
            )
            if row is None:
                row = SyncCheckpoint(source_system=source_system, target_system=target_system)
                db.add(row)
            row.last_sync_at = normalize_utc(value)
            try:
                db.commit()
            except IntegrityError:
                # Another writer created the row first; update theirs.
                db.rollback()
                row = (
                    db.query(SyncCheckpoint)
                    .filter(
                        SyncCheckpoint.source_system == source_system,
                        SyncCheckpoint.target_system == target_system,
                    )
                    .one()
                )
                row.last_sync_at = normalize_utc(value)
                db.commit()
        finally:
            db.close()

    def snapshot(self) -> Dict[PairKey, datetime]:
        db = self._session_factory()
        try:
            return {
                (row.source_system, row.target_system): normalize_utc(row.last_sync_at)
                for row in db.query(SyncCheckpoint).all()
            }
        finally:
            db.close()
