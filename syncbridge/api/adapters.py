"""Adapter inspection endpoints"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from syncbridge.adapters.base import SyncAdapter
from syncbridge.models.entities import WorkItem, utcnow
from syncbridge.scheduler import get_orchestrator
from syncbridge.services.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/adapters", tags=["adapters"])


class AdapterResponse(BaseModel):
    name: str
    initialized: bool
    batch_size: int


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


class CommentResponse(BaseModel):
    id: str
    external_id: Optional[str] = None
    text: str
    author: str
    created_date: datetime

    class Config:
        from_attributes = True


class WorkItemResponse(BaseModel):
    id: str
    external_id: Optional[str] = None
    source: str
    last_modified: datetime
    title: str
    description: str
    state: str
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    type: str
    comments: List[CommentResponse] = []
    custom_fields: Dict[str, Any] = {}

    class Config:
        from_attributes = True


def _get_adapter(name: str, orchestrator: SyncOrchestrator) -> SyncAdapter:
    adapter = orchestrator.registry.get(name)
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Adapter {name} not found")
    return adapter


def _ensure_initialized(adapter: SyncAdapter):
    if adapter.initialized:
        return
    try:
        adapter.initialize()
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("", response_model=List[AdapterResponse])
def list_adapters(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """List registered adapters"""
    return [
        {"name": a.system_name, "initialized": a.initialized, "batch_size": a.batch_size}
        for a in orchestrator.registry
    ]


@router.post("/{name}/test", response_model=ConnectionTestResponse)
def test_adapter(name: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Test connection to an external system"""
    adapter = _get_adapter(name, orchestrator)
    try:
        adapter.initialize()
    except Exception as e:
        logger.warning(f"Connection test failed for {name}: {e}")
        return {"success": False, "message": f"Connection failed: {e}"}
    return {"success": True, "message": f"Connected to {name}"}


@router.get("/{name}/items", response_model=List[WorkItemResponse])
def list_items(
    name: str,
    days: int = 7,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Work items changed in the last `days` days"""
    adapter = _get_adapter(name, orchestrator)
    _ensure_initialized(adapter)
    try:
        changes = adapter.get_changes(utcnow() - timedelta(days=days))
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [c.entity for c in changes if isinstance(c.entity, WorkItem)]


@router.get("/{name}/items/{item_id}", response_model=WorkItemResponse)
def get_item(
    name: str,
    item_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Look up a single work item"""
    adapter = _get_adapter(name, orchestrator)
    _ensure_initialized(adapter)
    try:
        item = adapter.get_by_id(item_id)
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))
    if item is None or not isinstance(item, WorkItem):
        raise HTTPException(status_code=404, detail="Item not found")
    return item


class WorkItemCreate(BaseModel):
    title: str
    description: str = ""
    state: str = ""
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    type: str = ""
    custom_fields: Dict[str, Any] = {}
    # Adapters that should receive a copy right away instead of waiting for the next cycle
    push_to: List[str] = []


class WorkItemCreatedResponse(BaseModel):
    item: WorkItemResponse
    pushed: List[WorkItemResponse] = []


class CommentCreate(BaseModel):
    text: str
    author: str = ""


@router.post("/{name}/items", response_model=WorkItemCreatedResponse, status_code=201)
def create_item(
    name: str,
    payload: WorkItemCreate,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Create a work item in an external system, optionally pushing it to others"""
    adapter = _get_adapter(name, orchestrator)
    targets = [_get_adapter(target, orchestrator) for target in payload.push_to]
    if adapter in targets:
        raise HTTPException(status_code=400, detail=f"Cannot push {name} to itself")
    _ensure_initialized(adapter)
    for target in targets:
        _ensure_initialized(target)

    fields = payload.model_dump(exclude={"push_to"})
    try:
        created = adapter.upsert(WorkItem(source=adapter.system_name, **fields))
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))
    logger.info(f"Created {name} item {created.id} through the API")

    pushed = []
    for target in targets:
        try:
            pushed.append(
                orchestrator.engine.push_entity(created, target, orchestrator.sync_comments)
            )
        except Exception as e:
            raise HTTPException(
                status_code=502,
                detail=f"Created {name} item {created.id} but push to {target.system_name} failed: {e}",
            )
    return {"item": created, "pushed": pushed}


@router.post(
    "/{name}/items/{item_id}/comments", response_model=CommentResponse, status_code=201
)
def add_comment(
    name: str,
    item_id: str,
    payload: CommentCreate,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Add a comment to a work item"""
    adapter = _get_adapter(name, orchestrator)
    _ensure_initialized(adapter)
    try:
        return adapter.add_comment(item_id, payload.text, payload.author)
    except LookupError:
        raise HTTPException(status_code=404, detail="Item not found")
    except NotImplementedError as e:
        raise HTTPException(status_code=501, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/{name}/items/{item_id}/sync", response_model=WorkItemResponse)
def sync_item(
    name: str,
    item_id: str,
    target: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Copy one work item to `target` now; returns the record stored there"""
    adapter = _get_adapter(name, orchestrator)
    target_adapter = _get_adapter(target, orchestrator)
    if target_adapter is adapter:
        raise HTTPException(status_code=400, detail=f"Cannot sync {name} to itself")
    _ensure_initialized(adapter)
    _ensure_initialized(target_adapter)

    try:
        item = adapter.get_by_id(item_id)
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))
    if item is None or not isinstance(item, WorkItem):
        raise HTTPException(status_code=404, detail="Item not found")

    try:
        return orchestrator.engine.push_entity(item, target_adapter, orchestrator.sync_comments)
    except Exception as e:
        raise HTTPException(status_code=502, detail=str(e))
