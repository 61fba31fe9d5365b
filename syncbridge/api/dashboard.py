"""Dashboard and statistics endpoints"""

from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import desc
from sqlalchemy.orm import Session

from syncbridge.models import SyncLog
from syncbridge.models.base import get_db
from syncbridge.models.entities import utcnow
from syncbridge.models.sync_log import SyncStatus
from syncbridge.scheduler import get_orchestrator
from syncbridge.services.orchestrator import SyncOrchestrator

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_dashboard_stats(
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Get dashboard statistics"""
    # Recent sync activity (last 24 hours)
    last_24h = utcnow() - timedelta(hours=24)
    recent_syncs = db.query(SyncLog).filter(SyncLog.created_at >= last_24h).count()
    recent_successes = (
        db.query(SyncLog)
        .filter(SyncLog.created_at >= last_24h, SyncLog.status == SyncStatus.SUCCESS)
        .count()
    )
    recent_failures = (
        db.query(SyncLog)
        .filter(SyncLog.created_at >= last_24h, SyncLog.status == SyncStatus.FAILED)
        .count()
    )

    checkpoints = orchestrator.engine.checkpoints()

    # Per mapping stats
    pair_stats = []
    for mapping in orchestrator.mappings:
        last_log = (
            db.query(SyncLog)
            .filter(
                SyncLog.source_system == mapping.source_system,
                SyncLog.target_system == mapping.target_system,
            )
            .order_by(desc(SyncLog.created_at), desc(SyncLog.id))
            .first()
        )

        pair_stats.append(
            {
                "source_system": mapping.source_system,
                "target_system": mapping.target_system,
                "last_sync_at": checkpoints.get((mapping.source_system, mapping.target_system)),
                "last_status": last_log.status if last_log else None,
                "last_message": last_log.message if last_log else None,
                "last_items_synced": last_log.items_synced if last_log else None,
            }
        )

    return {
        "total_adapters": len(orchestrator.registry),
        "initialized_adapters": sum(1 for a in orchestrator.registry if a.initialized),
        "total_mappings": len(orchestrator.mappings),
        "recent_syncs": recent_syncs,
        "recent_successes": recent_successes,
        "recent_failures": recent_failures,
        "pairs": pair_stats,
    }
