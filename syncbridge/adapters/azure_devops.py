"""Adapter for Azure DevOps work items"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from syncbridge.adapters.base import AdapterConnectionError, AdapterRequestError
from syncbridge.adapters.http import (
    HttpSyncAdapter,
    comment_marker,
    extract_comment_marker,
    strip_comment_marker,
)
from syncbridge.cancellation import CancellationToken, OperationCancelled
from syncbridge.models.entities import (
    ChangeType,
    Comment,
    SyncChange,
    SyncEntity,
    WorkItem,
    normalize_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

API_VERSION = "7.0"
COMMENTS_API_VERSION = "7.0-preview.3"
EXTERNAL_ID_TAG_PREFIX = "ExternalId:"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse Azure DevOps ISO8601 timestamps into tz-aware UTC datetimes."""
    if not value:
        return None
    return normalize_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class AzureDevOpsAdapter(HttpSyncAdapter):
    """Work item tracking through the Azure DevOps REST API"""

    def __init__(
        self,
        organization_url: str,
        personal_access_token: str,
        project: str,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.organization_url = (organization_url or "").rstrip("/")
        self.project = project
        self.session.auth = ("", personal_access_token)

    @property
    def system_name(self) -> str:
        return "AzureDevOps"

    @property
    def _project_url(self) -> str:
        return f"{self.organization_url}/{quote(self.project, safe='')}"

    def initialize(self, cancellation: Optional[CancellationToken] = None) -> None:
        if self._initialized:
            return
        logger.info(f"Initializing Azure DevOps adapter for {self.organization_url}/{self.project}")
        try:
            self._request(
                "GET",
                f"{self.organization_url}/_apis/projects/{quote(self.project, safe='')}",
                cancellation,
                params={"api-version": API_VERSION},
            )
        except OperationCancelled:
            raise
        except Exception as e:
            raise AdapterConnectionError(f"Azure DevOps connection failed: {e}") from e
        self._initialized = True
        logger.info("Azure DevOps adapter initialized successfully")

    def get_changes(
        self, since: datetime, cancellation: Optional[CancellationToken] = None
    ) -> List[SyncChange]:
        self._require_initialized()
        since = normalize_utc(since)
        logger.debug(f"Getting changes from Azure DevOps since {since}")

        # ChangedDate comparisons only accept a date literal; narrow down afterwards.
        query = (
            "SELECT [System.Id], [System.ChangedDate] FROM WorkItems "
            f"WHERE [System.TeamProject] = '{self._escape(self.project)}' "
            f"AND [System.ChangedDate] >= '{since:%Y-%m-%d}' "
            "ORDER BY [System.ChangedDate] DESC"
        )
        ids = self._query_ids(query, cancellation, top=self.batch_size)

        changes = []
        for raw in self._get_work_items(ids, cancellation):
            item = self._convert(raw, cancellation)
            if item.last_modified < since:
                continue
            changes.append(
                SyncChange(entity=item, change_type=ChangeType.UPDATED, timestamp=item.last_modified)
            )

        logger.info(f"Found {len(changes)} changes in Azure DevOps")
        return changes

    def get_by_id(
        self, id: str, cancellation: Optional[CancellationToken] = None
    ) -> Optional[SyncEntity]:
        self._require_initialized()
        try:
            numeric_id = int(id)
        except (TypeError, ValueError):
            return None
        response = self._request(
            "GET",
            f"{self._project_url}/_apis/wit/workitems/{numeric_id}",
            cancellation,
            params={"$expand": "all", "api-version": API_VERSION},
            allow_statuses=(404,),
        )
        if response.status_code == 404:
            return None
        return self._convert(response.json(), cancellation)

    def upsert(
        self, entity: SyncEntity, cancellation: Optional[CancellationToken] = None
    ) -> SyncEntity:
        self._require_initialized()
        if not isinstance(entity, WorkItem):
            raise TypeError("Entity must be a WorkItem")

        local_id, handle = self.resolve_counterpart(entity)
        id_to_update: Optional[int] = None
        if handle:
            id_to_update = self._find_by_external_id(handle, cancellation)
        if id_to_update is None and local_id:
            try:
                id_to_update = int(local_id)
            except ValueError:
                id_to_update = None

        if id_to_update is not None:
            logger.debug(f"Updating Azure DevOps work item {id_to_update}")
            response = self._request(
                "PATCH",
                f"{self._project_url}/_apis/wit/workitems/{id_to_update}",
                cancellation,
                params={"api-version": API_VERSION},
                json=self._patch_document(entity, handle, is_update=True),
                headers={"Content-Type": "application/json-patch+json"},
            )
        else:
            work_item_type = entity.type or "Task"
            logger.debug(f"Creating new Azure DevOps work item of type {work_item_type}")
            response = self._request(
                "POST",
                f"{self._project_url}/_apis/wit/workitems/${quote(work_item_type, safe='')}",
                cancellation,
                params={"api-version": API_VERSION},
                json=self._patch_document(entity, handle, is_update=False),
                headers={"Content-Type": "application/json-patch+json"},
            )

        written = response.json()
        self._sync_comments(int(written["id"]), entity, cancellation)
        return self._convert(written, cancellation)

    def add_comment(
        self,
        item_id: str,
        text: str,
        author: str = "",
        cancellation: Optional[CancellationToken] = None,
    ) -> Comment:
        self._require_initialized()
        try:
            work_item_id = int(item_id)
        except (TypeError, ValueError):
            raise LookupError(f"Work item {item_id} not found")
        body = f"{text}\n\n_Added by {author}_" if author else text
        response = self._request(
            "POST",
            f"{self._project_url}/_apis/wit/workItems/{work_item_id}/comments",
            cancellation,
            params={"api-version": COMMENTS_API_VERSION},
            json={"text": body},
            allow_statuses=(404,),
        )
        if response.status_code == 404:
            raise LookupError(f"Work item {item_id} not found")
        raw = response.json()
        created = _parse_datetime(raw.get("createdDate")) or utcnow()
        logger.info(f"Comment added to Azure DevOps work item {work_item_id}")
        return Comment(
            id=str(raw.get("id", "")),
            text=text,
            author=(raw.get("createdBy") or {}).get("displayName") or author or "Unknown",
            created_date=created,
            last_modified=created,
            source=self.system_name,
            work_item_id=str(work_item_id),
        )

    # Internals

    @staticmethod
    def _escape(value: str) -> str:
        return (value or "").replace("'", "''")

    def _query_ids(
        self, query: str, cancellation: Optional[CancellationToken], top: Optional[int] = None
    ) -> List[int]:
        params: Dict[str, Any] = {"api-version": API_VERSION}
        if top:
            params["$top"] = top
        response = self._request(
            "POST",
            f"{self._project_url}/_apis/wit/wiql",
            cancellation,
            params=params,
            json={"query": query},
        )
        return [int(row["id"]) for row in response.json().get("workItems", [])]

    def _get_work_items(
        self, ids: List[int], cancellation: Optional[CancellationToken]
    ) -> List[Dict[str, Any]]:
        if not ids:
            return []
        response = self._request(
            "GET",
            f"{self._project_url}/_apis/wit/workitems",
            cancellation,
            params={
                "ids": ",".join(str(i) for i in ids),
                "$expand": "all",
                "api-version": API_VERSION,
            },
        )
        return response.json().get("value", [])

    def _find_by_external_id(
        self, handle: str, cancellation: Optional[CancellationToken]
    ) -> Optional[int]:
        query = (
            "SELECT [System.Id] FROM WorkItems "
            f"WHERE [System.TeamProject] = '{self._escape(self.project)}' "
            f"AND [System.Tags] CONTAINS '{self._escape(EXTERNAL_ID_TAG_PREFIX + handle)}'"
        )
        ids = self._query_ids(query, cancellation, top=1)
        return ids[0] if ids else None

    @staticmethod
    def _patch_document(
        item: WorkItem, handle: Optional[str], *, is_update: bool
    ) -> List[Dict[str, Any]]:
        ops = [
            {"op": "add", "path": "/fields/System.Title", "value": item.title},
            {"op": "add", "path": "/fields/System.Description", "value": item.description},
        ]
        # State transitions are validated per work item type; only set state on create.
        if not is_update and item.state:
            ops.append({"op": "add", "path": "/fields/System.State", "value": item.state})
        if item.priority:
            ops.append(
                {"op": "add", "path": "/fields/Microsoft.VSTS.Common.Priority", "value": item.priority}
            )
        if item.assigned_to:
            ops.append({"op": "add", "path": "/fields/System.AssignedTo", "value": item.assigned_to})
        if handle:
            ops.append(
                {"op": "add", "path": "/fields/System.Tags", "value": EXTERNAL_ID_TAG_PREFIX + handle}
            )
        return ops

    def _get_comments(
        self, work_item_id: int, cancellation: Optional[CancellationToken]
    ) -> List[Dict[str, Any]]:
        response = self._request(
            "GET",
            f"{self._project_url}/_apis/wit/workItems/{work_item_id}/comments",
            cancellation,
            params={"api-version": COMMENTS_API_VERSION},
        )
        return response.json().get("comments", [])

    def _sync_comments(
        self, work_item_id: int, item: WorkItem, cancellation: Optional[CancellationToken]
    ) -> None:
        if not item.comments:
            return
        existing = {
            extract_comment_marker(c.get("text"))
            for c in self._get_comments(work_item_id, cancellation)
        }
        existing.discard(None)

        for handle, comment in self.comments_to_create(item.comments, item.source, existing):
            text = (
                f"{comment.text}\n\n"
                f"_Added by {comment.author or 'Unknown'} on {comment.created_date:%Y-%m-%d %H:%M}_\n"
                f"{comment_marker(handle)}"
            )
            try:
                self._request(
                    "POST",
                    f"{self._project_url}/_apis/wit/workItems/{work_item_id}/comments",
                    cancellation,
                    params={"api-version": COMMENTS_API_VERSION},
                    json={"text": text},
                )
                logger.info(f"Comment added to Azure DevOps work item {work_item_id}")
            except AdapterRequestError as e:
                logger.warning(f"Failed to sync comment for work item {work_item_id}: {e}")

    def _convert(
        self, raw: Dict[str, Any], cancellation: Optional[CancellationToken] = None
    ) -> WorkItem:
        fields = raw.get("fields") or {}
        item_id = str(raw.get("id", ""))

        assigned = fields.get("System.AssignedTo")
        if isinstance(assigned, dict):
            assigned = assigned.get("uniqueName") or assigned.get("displayName")

        priority = fields.get("Microsoft.VSTS.Common.Priority")

        item = WorkItem(
            id=item_id,
            source=self.system_name,
            title=fields.get("System.Title") or "",
            description=fields.get("System.Description") or "",
            state=fields.get("System.State") or "",
            priority=str(priority) if priority is not None else None,
            assigned_to=assigned,
            type=fields.get("System.WorkItemType") or "Task",
            last_modified=_parse_datetime(fields.get("System.ChangedDate")) or utcnow(),
        )

        tags = fields.get("System.Tags") or ""
        for tag in tags.split(";"):
            tag = tag.strip()
            if tag.startswith(EXTERNAL_ID_TAG_PREFIX):
                item.external_id = tag[len(EXTERNAL_ID_TAG_PREFIX):].strip()
                break

        if item_id:
            try:
                for c in self._get_comments(int(item_id), cancellation):
                    created = _parse_datetime(c.get("createdDate")) or item.last_modified
                    item.comments.append(
                        Comment(
                            id=str(c.get("id", "")),
                            external_id=extract_comment_marker(c.get("text")),
                            text=strip_comment_marker(c.get("text")),
                            author=(c.get("createdBy") or {}).get("displayName") or "Unknown",
                            created_date=created,
                            last_modified=_parse_datetime(c.get("modifiedDate")) or created,
                            source=self.system_name,
                            work_item_id=item_id,
                        )
                    )
            except AdapterRequestError as e:
                logger.warning(f"Failed to load comments for work item {item_id}: {e}")

        return item
