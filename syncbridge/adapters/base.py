"""Adapter capability contract shared by every system integration"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from syncbridge.cancellation import CancellationToken
from syncbridge.models.entities import Comment, SyncChange, SyncEntity
from syncbridge.services.external_id import create_external_id, get_item_id, is_from_system

logger = logging.getLogger(__name__)


class AdapterConnectionError(ConnectionError):
    """An adapter could not establish its session (auth, unreachable host...)."""


class AdapterRequestError(RuntimeError):
    """A request against the external system failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncAdapter(ABC):
    """Interface the sync engine drives.

    Adapters convert native records to and from the shared entity shapes. They decide on
    their own whether an upsert creates or updates, tag written records with the external id
    of their counterpart, and reconcile work item comments as part of the write.
    """

    def __init__(self, batch_size: int = 100):
        self.batch_size = batch_size
        self._initialized = False

    @property
    @abstractmethod
    def system_name(self) -> str:
        """Stable name used for routing and as checkpoint key component."""

    @property
    def initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    def initialize(self, cancellation: Optional[CancellationToken] = None) -> None:
        """Establish session state. Idempotent; raises AdapterConnectionError."""

    @abstractmethod
    def get_changes(
        self, since: datetime, cancellation: Optional[CancellationToken] = None
    ) -> List[SyncChange]:
        """Entities modified at or after `since`, at most `batch_size` of them."""

    @abstractmethod
    def get_by_id(
        self, id: str, cancellation: Optional[CancellationToken] = None
    ) -> Optional[SyncEntity]:
        """Point lookup; None when the record does not exist."""

    @abstractmethod
    def upsert(
        self, entity: SyncEntity, cancellation: Optional[CancellationToken] = None
    ) -> SyncEntity:
        """Create or update `entity`, returning the stored canonical record."""

    def add_comment(
        self,
        item_id: str,
        text: str,
        author: str = "",
        cancellation: Optional[CancellationToken] = None,
    ) -> Comment:
        """Post a comment authored in this system on work item `item_id`.

        Raises LookupError when the item does not exist.
        """
        raise NotImplementedError(f"{self.system_name} does not support adding comments")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(f"Adapter {self.system_name} not initialized")

    def resolve_counterpart(self, entity: SyncEntity) -> Tuple[Optional[str], Optional[str]]:
        """Work out where an incoming entity lives in this system.

        Returns ``(local_id, handle)``:
        - `local_id` is set when the entity is known to be one of our records, either because
          it is ours (same source) or because its external id points back at us;
        - `handle` is the external id to search for / stamp on a mirrored record. It is None
          when the entity is one of our own records.
        """
        if is_from_system(entity.external_id, self.system_name):
            return get_item_id(entity.external_id), None
        if entity.source == self.system_name:
            return (entity.id or None), None
        if not entity.id:
            return None, entity.external_id
        return None, create_external_id(entity.source, entity.id)

    def comment_handle(self, comment: Comment, item_source: str) -> str:
        """External id identifying a comment across systems."""
        if comment.external_id:
            return comment.external_id
        return create_external_id(comment.source or item_source, comment.id)

    def comments_to_create(
        self, comments: List[Comment], item_source: str, existing_handles: set
    ) -> List[Tuple[str, Comment]]:
        """Comments that are neither ours nor already present, paired with their handle."""
        pending = []
        for comment in comments:
            handle = self.comment_handle(comment, item_source)
            if is_from_system(handle, self.system_name):
                continue
            if handle in existing_handles:
                continue
            existing_handles.add(handle)
            pending.append((handle, comment))
        return pending


class AdapterRegistry:
    """System name -> adapter lookup"""

    def __init__(self, adapters: Optional[List[SyncAdapter]] = None):
        self._adapters: Dict[str, SyncAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SyncAdapter) -> SyncAdapter:
        name = adapter.system_name
        if name in self._adapters:
            raise ValueError(f"Adapter '{name}' already registered")
        self._adapters[name] = adapter
        logger.info(f"Registered adapter: {name}")
        return adapter

    def get(self, system_name: str) -> Optional[SyncAdapter]:
        return self._adapters.get(system_name)

    def names(self) -> List[str]:
        return list(self._adapters)

    def __contains__(self, system_name: str) -> bool:
        return system_name in self._adapters

    def __iter__(self) -> Iterator[SyncAdapter]:
        return iter(list(self._adapters.values()))

    def __len__(self) -> int:
        return len(self._adapters)
