"""Sync management endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from syncbridge.models.base import get_db
from syncbridge.models import SyncLog
from syncbridge.scheduler import get_orchestrator
from syncbridge.services.orchestrator import SyncOrchestrator

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncResultResponse(BaseModel):
    success: bool
    source_system: str
    target_system: str
    items_synced: int
    errors: List[str]
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    cancelled: bool = False


class SyncLogResponse(BaseModel):
    id: int
    source_system: str
    target_system: str
    status: str
    items_synced: int
    error_count: int
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CheckpointResponse(BaseModel):
    source_system: str
    target_system: str
    last_sync_at: datetime


@router.post("/trigger", response_model=List[SyncResultResponse])
def trigger_cycle(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Run a sync cycle over every configured mapping now"""
    try:
        results = orchestrator.run_cycle()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [r.to_dict() for r in results]


@router.post("/pairs/{source_system}/{target_system}/trigger", response_model=SyncResultResponse)
def trigger_pair(
    source_system: str,
    target_system: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Manually trigger one pass between two systems"""
    try:
        result = orchestrator.sync_mapping(source_system, target_system)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=e.args[0] if e.args else str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return result.to_dict()


@router.get("/logs", response_model=List[SyncLogResponse])
def list_sync_logs(
    limit: int = 100,
    source_system: str = None,
    db: Session = Depends(get_db)
):
    """List sync logs"""
    query = db.query(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
    if source_system:
        query = query.filter(SyncLog.source_system == source_system)
    logs = query.limit(limit).all()
    return logs


@router.get("/checkpoints", response_model=List[CheckpointResponse])
def list_checkpoints(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Current checkpoint per sync direction"""
    snapshot = orchestrator.engine.checkpoints()
    return [
        {"source_system": source, "target_system": target, "last_sync_at": value}
        for (source, target), value in sorted(snapshot.items())
    ]
