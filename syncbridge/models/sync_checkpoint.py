"""Sync checkpoint model"""
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from syncbridge.models.base import Base
from syncbridge.models.entities import utcnow


class SyncCheckpoint(Base):
    """Last successful scan time for one direction of a system pair"""

    __tablename__ = "sync_checkpoints"
    __table_args__ = (
        UniqueConstraint("source_system", "target_system", name="uq_sync_checkpoints_pair"),
    )

    id = Column(Integer, primary_key=True, index=True)
    source_system = Column(String, nullable=False, index=True)
    target_system = Column(String, nullable=False, index=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return (
            f"<SyncCheckpoint({self.source_system}->{self.target_system}, "
            f"last_sync_at={self.last_sync_at})>"
        )
