"""Bidirectional synchronization engine"""

import dataclasses
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from syncbridge.adapters.base import SyncAdapter
from syncbridge.cancellation import CancellationToken, OperationCancelled, ensure_token
from syncbridge.models.entities import (
    ChangeType,
    SyncChange,
    SyncEntity,
    SyncResult,
    WorkItem,
    utcnow,
)
from syncbridge.services.checkpoints import (
    CheckpointPolicy,
    CheckpointStore,
    InMemoryCheckpointStore,
    PairKey,
)

logger = logging.getLogger(__name__)


class SyncEngine:
    """Runs sync passes between two adapters and tracks per-direction checkpoints.

    A pass (`sync_pair`) has a forward phase (source -> target) and a backward phase
    (target -> source). Each phase reads the changes since that direction's checkpoint and
    upserts them on the other side. Item failures are collected and never abort the pass;
    failures of the change query itself (or a cancellation) abort it without moving any
    checkpoint.
    """

    def __init__(
        self,
        checkpoint_store: Optional[CheckpointStore] = None,
        policy: CheckpointPolicy = CheckpointPolicy.ADVANCE_ALWAYS,
        lookback_days: int = 30,
    ):
        self.checkpoint_store = checkpoint_store or InMemoryCheckpointStore()
        self.policy = CheckpointPolicy(policy)
        self.lookback = timedelta(days=lookback_days)
        self._locks_guard = threading.Lock()
        self._pair_locks: Dict[frozenset, threading.Lock] = {}

    def _pair_lock(self, first: str, second: str) -> threading.Lock:
        # Both directions of a pair share their checkpoint entries, so they share a lock.
        key = frozenset((first, second))
        with self._locks_guard:
            lock = self._pair_locks.get(key)
            if lock is None:
                lock = self._pair_locks[key] = threading.Lock()
            return lock

    def get_checkpoint(self, source_system: str, target_system: str) -> datetime:
        """Last scan time for a direction, defaulting to the look-back window."""
        value = self.checkpoint_store.get(source_system, target_system)
        if value is None:
            return utcnow() - self.lookback
        return value

    def checkpoints(self) -> Dict[PairKey, datetime]:
        return self.checkpoint_store.snapshot()

    def sync_pair(
        self,
        source_adapter: SyncAdapter,
        target_adapter: SyncAdapter,
        sync_comments: bool = True,
        cancellation: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """Perform one bidirectional pass between two adapters"""
        cancellation = ensure_token(cancellation)
        source_name = source_adapter.system_name
        target_name = target_adapter.system_name

        with self._pair_lock(source_name, target_name):
            start_time = utcnow()
            errors: List[str] = []
            # Ids of written entities, kept as items land so an aborted pass still reports them.
            written: List[str] = []
            cancelled = False

            try:
                logger.info(f"Starting bidirectional sync between {source_name} and {target_name}")

                forward_since = self.get_checkpoint(source_name, target_name)
                forward_changes = source_adapter.get_changes(forward_since, cancellation)
                self._apply_changes(
                    forward_changes,
                    from_adapter=source_adapter,
                    to_adapter=target_adapter,
                    sync_comments=sync_comments,
                    errors=errors,
                    written=written,
                    cancellation=cancellation,
                )

                backward_since = self.get_checkpoint(target_name, source_name)
                backward_changes = target_adapter.get_changes(backward_since, cancellation)
                self._apply_changes(
                    backward_changes,
                    from_adapter=target_adapter,
                    to_adapter=source_adapter,
                    sync_comments=sync_comments,
                    errors=errors,
                    written=written,
                    cancellation=cancellation,
                    skip_source=source_name,
                )

                if errors and self.policy == CheckpointPolicy.ADVANCE_ON_SUCCESS:
                    logger.warning(
                        f"Not advancing checkpoints for {source_name} <-> {target_name}: "
                        f"{len(errors)} item(s) failed"
                    )
                else:
                    now = utcnow()
                    self.checkpoint_store.set(source_name, target_name, now)
                    self.checkpoint_store.set(target_name, source_name, now)

                logger.info(
                    f"Sync completed: {len(written)} items synced, {len(errors)} errors"
                )

            except OperationCancelled as e:
                logger.warning(f"Sync between {source_name} and {target_name} cancelled: {e}")
                cancelled = True
                errors.append(f"Cancelled: {e}")

            except Exception as e:
                logger.exception(f"Fatal error during sync between {source_name} and {target_name}")
                errors.append(f"Fatal error: {e}")

            return SyncResult(
                success=not errors,
                source_system=source_name,
                target_system=target_name,
                items_synced=len(written),
                errors=tuple(errors),
                start_time=start_time,
                end_time=utcnow(),
                cancelled=cancelled,
            )

    def _apply_changes(
        self,
        changes: Iterable[SyncChange],
        from_adapter: SyncAdapter,
        to_adapter: SyncAdapter,
        sync_comments: bool,
        errors: List[str],
        written: List[str],
        cancellation: CancellationToken,
        skip_source: Optional[str] = None,
    ) -> None:
        """Apply one phase's changes, recording each written entity id in `written`."""
        for change in changes:
            cancellation.raise_if_cancelled()
            entity = change.entity

            # Never echo a record back to the system it originated from.
            if skip_source is not None and entity.source == skip_source:
                logger.debug(
                    f"Skipping {entity.id} from {from_adapter.system_name}: originated at {skip_source}"
                )
                continue

            try:
                if self._sync_change(change, to_adapter, sync_comments, cancellation):
                    written.append(entity.id)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to sync change {entity.id} from {from_adapter.system_name} "
                    f"to {to_adapter.system_name}: {e}"
                )
                errors.append(f"Failed to sync {entity.id}: {e}")

    def _sync_change(
        self,
        change: SyncChange,
        target_adapter: SyncAdapter,
        sync_comments: bool,
        cancellation: CancellationToken,
    ) -> bool:
        """Apply a single change; returns False when nothing was written."""
        if change.change_type == ChangeType.DELETED:
            logger.warning(f"Delete synchronization not yet implemented for {change.entity.id}")
            return False

        entity = self._outgoing_entity(change.entity, sync_comments)
        target_adapter.upsert(entity, cancellation)
        return True

    def push_entity(
        self,
        entity: SyncEntity,
        to_adapter: SyncAdapter,
        sync_comments: bool = True,
        cancellation: Optional[CancellationToken] = None,
    ) -> SyncEntity:
        """Write one entity to `to_adapter` outside a pass; checkpoints are untouched."""
        stored = to_adapter.upsert(
            self._outgoing_entity(entity, sync_comments), ensure_token(cancellation)
        )
        logger.info(f"Pushed {entity.source} item {entity.id} to {to_adapter.system_name}")
        return stored

    @staticmethod
    def _outgoing_entity(entity: SyncEntity, sync_comments: bool) -> SyncEntity:
        if not isinstance(entity, WorkItem) or not entity.comments:
            return entity
        if not sync_comments:
            # Copy rather than mutate: the change's entity belongs to the adapter.
            return dataclasses.replace(entity, comments=[])
        logger.debug(f"Syncing work item {entity.id} with {len(entity.comments)} comments")
        return entity
