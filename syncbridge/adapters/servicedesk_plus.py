"""Adapter for ManageEngine ServiceDesk Plus requests"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

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

EXTERNAL_ID_FIELD = "udf_char1"


def _to_epoch_ms(dt: datetime) -> int:
    return int(normalize_utc(dt).timestamp() * 1000)


def _from_time_field(value: Any) -> Optional[datetime]:
    """SDP time fields look like {"value": "1700000000000", "display_value": "..."}."""
    if isinstance(value, dict):
        value = value.get("value")
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name")
    return value


class ServiceDeskPlusAdapter(HttpSyncAdapter):
    """Requests and request notes through the ServiceDesk Plus v3 API"""

    def __init__(self, base_url: str, technician_key: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or "").rstrip("/")
        self.session.headers.update(
            {"technician_key": technician_key, "Accept": "application/vnd.manageengine.sdp.v3+json"}
        )

    @property
    def system_name(self) -> str:
        return "ServiceDeskPlus"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v3/{path.lstrip('/')}"

    def initialize(self, cancellation: Optional[CancellationToken] = None) -> None:
        if self._initialized:
            return
        logger.info(f"Initializing ServiceDesk Plus adapter for {self.base_url}")
        try:
            self._request(
                "GET",
                self._url("requests"),
                cancellation,
                params={"input_data": json.dumps({"list_info": {"row_count": 1}})},
            )
        except OperationCancelled:
            raise
        except Exception as e:
            raise AdapterConnectionError(f"ServiceDesk Plus connection failed: {e}") from e
        self._initialized = True
        logger.info("ServiceDesk Plus adapter initialized successfully")

    def get_changes(
        self, since: datetime, cancellation: Optional[CancellationToken] = None
    ) -> List[SyncChange]:
        self._require_initialized()
        since = normalize_utc(since)
        logger.debug(f"Getting changes from ServiceDesk Plus since {since}")

        # "greater than" is strict; step back one millisecond to include `since` itself.
        requests_data = self._search(
            {
                "field": "last_updated_time",
                "condition": "greater than",
                "value": str(_to_epoch_ms(since) - 1),
            },
            cancellation,
            row_count=self.batch_size,
        )

        changes = []
        for raw in requests_data:
            item = self._convert(raw, cancellation)
            changes.append(
                SyncChange(entity=item, change_type=ChangeType.UPDATED, timestamp=item.last_modified)
            )

        logger.info(f"Found {len(changes)} changes in ServiceDesk Plus")
        return changes

    def get_by_id(
        self, id: str, cancellation: Optional[CancellationToken] = None
    ) -> Optional[SyncEntity]:
        self._require_initialized()
        response = self._request(
            "GET", self._url(f"requests/{id}"), cancellation, allow_statuses=(404,)
        )
        if response.status_code == 404:
            return None
        raw = response.json().get("request")
        return self._convert(raw, cancellation) if raw else None

    def upsert(
        self, entity: SyncEntity, cancellation: Optional[CancellationToken] = None
    ) -> SyncEntity:
        self._require_initialized()
        if not isinstance(entity, WorkItem):
            raise TypeError("Entity must be a WorkItem")

        local_id, handle = self.resolve_counterpart(entity)
        request_id = local_id
        if handle:
            request_id = self._find_by_external_id(handle, cancellation) or request_id

        payload = {"input_data": json.dumps({"request": self._request_data(entity, handle)})}
        if request_id:
            logger.debug(f"Updating ServiceDesk Plus request {request_id}")
            response = self._request(
                "PUT", self._url(f"requests/{request_id}"), cancellation, data=payload
            )
        else:
            logger.debug("Creating new ServiceDesk Plus request")
            response = self._request("POST", self._url("requests"), cancellation, data=payload)

        raw = response.json().get("request") or {}
        written_id = str(raw.get("id") or request_id or "")
        if not written_id:
            raise AdapterRequestError("ServiceDesk Plus: response did not include a request id")
        self._sync_comments(written_id, entity, cancellation)
        return self.get_by_id(written_id, cancellation) or self._convert(raw, cancellation)

    def add_comment(
        self,
        item_id: str,
        text: str,
        author: str = "",
        cancellation: Optional[CancellationToken] = None,
    ) -> Comment:
        self._require_initialized()
        description = f"{text}\n\nAdded by {author}" if author else text
        note = {"request_note": {"description": description, "show_to_requester": True}}
        response = self._request(
            "POST",
            self._url(f"requests/{item_id}/notes"),
            cancellation,
            data={"input_data": json.dumps(note)},
            allow_statuses=(404,),
        )
        if response.status_code == 404:
            raise LookupError(f"Request {item_id} not found")
        raw = response.json().get("request_note") or {}
        created = _from_time_field(raw.get("created_time")) or utcnow()
        logger.info(f"Note added to ServiceDesk Plus request {item_id}")
        return Comment(
            id=str(raw.get("id", "")),
            text=text,
            author=_name_of(raw.get("created_by")) or author or "Unknown",
            created_date=created,
            last_modified=created,
            source=self.system_name,
            work_item_id=str(item_id),
        )

    # Internals

    def _search(
        self,
        criteria: Dict[str, Any],
        cancellation: Optional[CancellationToken],
        row_count: int,
    ) -> List[Dict[str, Any]]:
        input_data = {
            "list_info": {
                "row_count": row_count,
                "start_index": 1,
                "sort_field": "last_updated_time",
                "sort_order": "desc",
                "search_criteria": criteria,
            }
        }
        response = self._request(
            "GET",
            self._url("requests"),
            cancellation,
            params={"input_data": json.dumps(input_data)},
        )
        return response.json().get("requests", [])

    def _find_by_external_id(
        self, handle: str, cancellation: Optional[CancellationToken]
    ) -> Optional[str]:
        found = self._search(
            {"field": f"udf_fields.{EXTERNAL_ID_FIELD}", "condition": "is", "value": handle},
            cancellation,
            row_count=1,
        )
        return str(found[0]["id"]) if found else None

    @staticmethod
    def _request_data(item: WorkItem, handle: Optional[str]) -> Dict[str, Any]:
        data: Dict[str, Any] = {"subject": item.title, "description": item.description}
        if item.state:
            data["status"] = {"name": item.state}
        if item.priority:
            data["priority"] = {"name": item.priority}
        if item.assigned_to:
            data["technician"] = {"name": item.assigned_to}
        if handle:
            data["udf_fields"] = {EXTERNAL_ID_FIELD: handle}
        return data

    def _get_notes(
        self, request_id: str, cancellation: Optional[CancellationToken]
    ) -> List[Dict[str, Any]]:
        response = self._request("GET", self._url(f"requests/{request_id}/notes"), cancellation)
        return response.json().get("notes", [])

    def _sync_comments(
        self, request_id: str, item: WorkItem, cancellation: Optional[CancellationToken]
    ) -> None:
        if not item.comments:
            return
        existing = {
            extract_comment_marker(n.get("description"))
            for n in self._get_notes(request_id, cancellation)
        }
        existing.discard(None)

        for handle, comment in self.comments_to_create(item.comments, item.source, existing):
            note = {
                "request_note": {
                    "description": f"{comment.text}\n{comment_marker(handle)}",
                    "show_to_requester": True,
                }
            }
            try:
                self._request(
                    "POST",
                    self._url(f"requests/{request_id}/notes"),
                    cancellation,
                    data={"input_data": json.dumps(note)},
                )
            except AdapterRequestError as e:
                logger.warning(f"Failed to sync comment for request {request_id}: {e}")

    def _convert(
        self, raw: Dict[str, Any], cancellation: Optional[CancellationToken] = None
    ) -> WorkItem:
        item_id = str(raw.get("id", ""))
        udf_fields = raw.get("udf_fields") or {}
        item = WorkItem(
            id=item_id,
            source=self.system_name,
            title=raw.get("subject") or "",
            description=raw.get("description") or "",
            state=_name_of(raw.get("status")) or "",
            priority=_name_of(raw.get("priority")),
            assigned_to=_name_of(raw.get("technician")),
            type="Request",
            external_id=udf_fields.get(EXTERNAL_ID_FIELD) or None,
            last_modified=_from_time_field(raw.get("last_updated_time")) or utcnow(),
        )

        if item_id:
            try:
                for n in self._get_notes(item_id, cancellation):
                    created = _from_time_field(n.get("created_time")) or item.last_modified
                    item.comments.append(
                        Comment(
                            id=str(n.get("id", "")),
                            external_id=extract_comment_marker(n.get("description")),
                            text=strip_comment_marker(n.get("description")),
                            author=_name_of(n.get("created_by")) or "Unknown",
                            created_date=created,
                            last_modified=created,
                            source=self.system_name,
                            work_item_id=item_id,
                        )
                    )
            except AdapterRequestError as e:
                logger.warning(f"Failed to load notes for request {item_id}: {e}")

        return item
