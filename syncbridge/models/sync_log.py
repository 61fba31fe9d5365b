"""Sync log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
import enum
from syncbridge.models.base import Base
from syncbridge.models.entities import utcnow


class SyncStatus(str, enum.Enum):
    """Sync status enumeration"""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class SyncLog(Base):
    """Log of sync passes"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    # System pair
    source_system = Column(String, nullable=False, index=True)
    target_system = Column(String, nullable=False, index=True)

    # Sync details
    status = Column(Enum(SyncStatus), nullable=False)
    items_synced = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    message = Column(Text, nullable=True)
    details = Column(Text, nullable=True)  # JSON list of error messages

    # Pass timing
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamp
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        return f"<SyncLog({self.source_system}->{self.target_system}, status={self.status})>"
