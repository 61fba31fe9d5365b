"""In-memory adapter for tests, demos and local development"""

import copy
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from syncbridge.adapters.base import AdapterConnectionError, AdapterRequestError, SyncAdapter
from syncbridge.cancellation import CancellationToken, ensure_token
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


class MockAdapter(SyncAdapter):
    """Work item store kept in a dictionary.

    Records written through `upsert` from another system count as integration writes: like a
    real tracker filtering on the integration account, `get_changes` does not report them again
    until they are edited locally (`edit`). Records are always copied in and out, so callers
    never share state with the store.
    """

    def __init__(
        self,
        system_name: str = "MockCRM",
        *,
        seed: bool = False,
        batch_size: int = 100,
        fail_initialize: bool = False,
        fail_upsert_ids: Optional[Iterable[str]] = None,
    ):
        super().__init__(batch_size=batch_size)
        self._system_name = system_name
        self._lock = threading.RLock()
        self._items: Dict[str, WorkItem] = {}
        # ids whose latest write came from the sync engine rather than a local edit
        self._integration_writes: set = set()
        self._next_id = 1
        self._next_comment_id = 1
        self.fail_initialize = fail_initialize
        self.fail_upsert_ids = set(fail_upsert_ids or [])
        self.initialize_calls = 0
        self.upsert_calls: List[SyncEntity] = []
        if seed:
            self._seed()

    @property
    def system_name(self) -> str:
        return self._system_name

    def initialize(self, cancellation: Optional[CancellationToken] = None) -> None:
        ensure_token(cancellation).raise_if_cancelled()
        self.initialize_calls += 1
        if self.fail_initialize:
            raise AdapterConnectionError(f"{self.system_name}: connection refused")
        if not self._initialized:
            logger.info(f"Mock adapter {self.system_name} initialized with {len(self._items)} items")
        self._initialized = True

    def get_changes(
        self, since: datetime, cancellation: Optional[CancellationToken] = None
    ) -> List[SyncChange]:
        ensure_token(cancellation).raise_if_cancelled()
        self._require_initialized()
        since = normalize_utc(since)
        with self._lock:
            changed = [
                item
                for item_id, item in self._items.items()
                if item.last_modified >= since and item_id not in self._integration_writes
            ]
            changed.sort(key=lambda item: item.last_modified)
            # Copy while locked: upsert and edit mutate stored records in place.
            changes = [
                SyncChange(
                    entity=copy.deepcopy(item),
                    change_type=ChangeType.UPDATED,
                    timestamp=item.last_modified,
                )
                for item in changed[: self.batch_size]
            ]
        logger.info(f"Found {len(changes)} changes in {self.system_name}")
        return changes

    def get_by_id(
        self, id: str, cancellation: Optional[CancellationToken] = None
    ) -> Optional[SyncEntity]:
        ensure_token(cancellation).raise_if_cancelled()
        with self._lock:
            item = self._items.get(id)
            return copy.deepcopy(item) if item is not None else None

    def upsert(
        self, entity: SyncEntity, cancellation: Optional[CancellationToken] = None
    ) -> SyncEntity:
        ensure_token(cancellation).raise_if_cancelled()
        self._require_initialized()
        if not isinstance(entity, WorkItem):
            raise TypeError("Entity must be a WorkItem")
        self.upsert_calls.append(entity)
        if entity.id in self.fail_upsert_ids:
            raise AdapterRequestError(f"{self.system_name} rejected item {entity.id}", 500)

        local_id, handle = self.resolve_counterpart(entity)
        with self._lock:
            existing = self._items.get(local_id) if local_id else None
            if existing is None and handle:
                existing = self._find_by_external_id(handle)

            if existing is not None:
                stored = self._apply_fields(existing, entity)
                logger.debug(f"Updated {self.system_name} item {stored.id}")
            else:
                stored = copy.deepcopy(entity)
                stored.id = self._allocate_id()
                stored.external_id = handle
                stored.comments = []
                logger.debug(f"Created {self.system_name} item {stored.id}")

            stored.source = self.system_name
            stored.last_modified = utcnow()
            self._merge_comments(stored, entity)
            self._items[stored.id] = stored
            if entity.source != self.system_name:
                self._integration_writes.add(stored.id)
            else:
                self._integration_writes.discard(stored.id)
            return copy.deepcopy(stored)

    # Local activity (what a user of this system would do)

    def add_item(self, item: WorkItem) -> WorkItem:
        """Create a record as if a local user did it."""
        with self._lock:
            stored = copy.deepcopy(item)
            if not stored.id:
                stored.id = self._allocate_id()
            stored.source = self.system_name
            stored.last_modified = normalize_utc(stored.last_modified)
            for comment in stored.comments:
                if not comment.id:
                    comment.id = self._allocate_comment_id()
                comment.source = comment.source or self.system_name
                comment.work_item_id = stored.id
            self._items[stored.id] = stored
            self._integration_writes.discard(stored.id)
            return copy.deepcopy(stored)

    def edit(self, item_id: str, **fields) -> WorkItem:
        """Change fields of a record as a local edit; it will be reported by get_changes."""
        with self._lock:
            item = self._items[item_id]
            for key, value in fields.items():
                setattr(item, key, value)
            item.source = self.system_name
            item.last_modified = utcnow()
            self._integration_writes.discard(item_id)
            return copy.deepcopy(item)

    def add_comment(
        self,
        item_id: str,
        text: str,
        author: str = "",
        cancellation: Optional[CancellationToken] = None,
    ) -> Comment:
        """Add a comment as a local user."""
        ensure_token(cancellation).raise_if_cancelled()
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise LookupError(f"{self.system_name} item {item_id} not found")
            now = utcnow()
            comment = Comment(
                id=self._allocate_comment_id(),
                text=text,
                author=author,
                created_date=now,
                last_modified=now,
                source=self.system_name,
                work_item_id=item_id,
            )
            item.comments.append(comment)
            item.last_modified = now
            self._integration_writes.discard(item_id)
            return copy.deepcopy(comment)

    def all_items(self) -> List[WorkItem]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._items.values()]

    # Internals

    def _allocate_id(self) -> str:
        while str(self._next_id) in self._items:
            self._next_id += 1
        value = str(self._next_id)
        self._next_id += 1
        return value

    def _allocate_comment_id(self) -> str:
        value = f"c{self._next_comment_id}"
        self._next_comment_id += 1
        return value

    def _find_by_external_id(self, handle: str) -> Optional[WorkItem]:
        for item in self._items.values():
            if item.external_id == handle:
                return item
        return None

    @staticmethod
    def _apply_fields(existing: WorkItem, incoming: WorkItem) -> WorkItem:
        # The stored record keeps its own id, external id and comments.
        existing.title = incoming.title
        existing.description = incoming.description
        existing.state = incoming.state
        existing.priority = incoming.priority
        existing.assigned_to = incoming.assigned_to
        existing.type = incoming.type or existing.type
        existing.custom_fields = copy.deepcopy(incoming.custom_fields)
        return existing

    def _merge_comments(self, stored: WorkItem, incoming: WorkItem) -> None:
        existing_handles = {c.external_id for c in stored.comments if c.external_id}
        for handle, comment in self.comments_to_create(
            incoming.comments, incoming.source, existing_handles
        ):
            stored.comments.append(
                Comment(
                    id=self._allocate_comment_id(),
                    external_id=handle,
                    text=comment.text,
                    author=comment.author,
                    created_date=comment.created_date,
                    last_modified=utcnow(),
                    source=self.system_name,
                    work_item_id=stored.id,
                )
            )

    def _seed(self) -> None:
        now = utcnow()
        self.add_item(
            WorkItem(
                title="Sample CRM Lead 1",
                description="This is a sample lead from CRM",
                state="Open",
                priority="High",
                type="Lead",
                last_modified=now - timedelta(days=2),
            )
        )
        self.add_item(
            WorkItem(
                title="Sample CRM Opportunity 1",
                description="This is a sample opportunity from CRM",
                state="Qualified",
                priority="Medium",
                type="Opportunity",
                last_modified=now - timedelta(days=1),
            )
        )
        self.add_item(
            WorkItem(
                title="Sample CRM Case 1",
                description="This is a sample case from CRM",
                state="Active",
                priority="Low",
                assigned_to="John Doe",
                type="Case",
                last_modified=now - timedelta(hours=12),
                comments=[
                    Comment(
                        text="Initial investigation started",
                        author="Jane Smith",
                        created_date=now - timedelta(hours=11),
                        last_modified=now - timedelta(hours=11),
                    )
                ],
            )
        )
