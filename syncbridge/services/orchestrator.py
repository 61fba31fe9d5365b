"""Sync cycle orchestration over the configured system pairs"""

import json
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from syncbridge.adapters.base import AdapterRegistry, SyncAdapter
from syncbridge.cancellation import CancellationToken, OperationCancelled, ensure_token
from syncbridge.config import Settings, SyncMapping
from syncbridge.models.entities import SyncResult, utcnow
from syncbridge.models.sync_log import SyncLog, SyncStatus
from syncbridge.services.checkpoints import CheckpointPolicy, SqlCheckpointStore
from syncbridge.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs one sync pass per configured mapping per cycle"""

    def __init__(
        self,
        engine: SyncEngine,
        registry: AdapterRegistry,
        mappings: List[SyncMapping],
        sync_comments: bool = True,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.engine = engine
        self.registry = registry
        self.mappings = list(mappings)
        self.sync_comments = sync_comments
        self.session_factory = session_factory

    def _mapped_adapters(self) -> List[SyncAdapter]:
        seen: Dict[str, SyncAdapter] = {}
        for mapping in self.mappings:
            for name in (mapping.source_system, mapping.target_system):
                adapter = self.registry.get(name)
                if adapter is not None and name not in seen:
                    seen[name] = adapter
        return list(seen.values())

    def initialize_adapters(
        self, cancellation: Optional[CancellationToken] = None
    ) -> Dict[str, bool]:
        """Initialize every mapped adapter; returns name -> success"""
        cancellation = ensure_token(cancellation)
        status: Dict[str, bool] = {}
        for adapter in self._mapped_adapters():
            try:
                adapter.initialize(cancellation)
                status[adapter.system_name] = True
                logger.debug(f"Initialized adapter: {adapter.system_name}")
            except OperationCancelled:
                raise
            except Exception as e:
                status[adapter.system_name] = False
                logger.error(f"Failed to initialize adapter {adapter.system_name}: {e}")
        return status

    def run_cycle(self, cancellation: Optional[CancellationToken] = None) -> List[SyncResult]:
        """Sync every configured pair once"""
        cancellation = ensure_token(cancellation)
        logger.info("Starting sync cycle...")
        results: List[SyncResult] = []

        try:
            init_status = self.initialize_adapters(cancellation)
        except OperationCancelled as e:
            logger.warning(f"Sync cycle cancelled during adapter initialization: {e}")
            return results

        for mapping in self.mappings:
            if cancellation.cancelled:
                logger.warning("Sync cycle cancelled")
                break

            source = self.registry.get(mapping.source_system)
            target = self.registry.get(mapping.target_system)

            if source is None:
                logger.warning(f"Source adapter not found: {mapping.source_system}")
                self._record_skip(mapping, f"Source adapter not found: {mapping.source_system}")
                continue
            if target is None:
                logger.warning(f"Target adapter not found: {mapping.target_system}")
                self._record_skip(mapping, f"Target adapter not found: {mapping.target_system}")
                continue

            unavailable = [
                name
                for name in (mapping.source_system, mapping.target_system)
                if not init_status.get(name, False)
            ]
            if unavailable:
                logger.warning(
                    f"Skipping {mapping.source_system} <-> {mapping.target_system}: "
                    f"adapter(s) unavailable: {', '.join(unavailable)}"
                )
                self._record_skip(mapping, f"Adapter(s) unavailable: {', '.join(unavailable)}")
                continue

            try:
                result = self.engine.sync_pair(source, target, self.sync_comments, cancellation)
            except Exception as e:
                logger.error(
                    f"Failed to sync {mapping.source_system} <-> {mapping.target_system}: {e}"
                )
                continue

            self._report(result)
            results.append(result)

        logger.info("Sync cycle completed")
        return results

    def sync_mapping(
        self,
        source_system: str,
        target_system: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """Run a single pass on demand; unknown adapters raise KeyError"""
        source = self.registry.get(source_system)
        if source is None:
            raise KeyError(f"Adapter {source_system} not found")
        target = self.registry.get(target_system)
        if target is None:
            raise KeyError(f"Adapter {target_system} not found")

        cancellation = ensure_token(cancellation)
        for adapter in (source, target):
            # Initialization failures surface as the fatal error of this pass.
            try:
                adapter.initialize(cancellation)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.error(f"Failed to initialize adapter {adapter.system_name}: {e}")

        result = self.engine.sync_pair(source, target, self.sync_comments, cancellation)
        self._report(result)
        return result

    def _report(self, result: SyncResult):
        if result.success:
            logger.info(
                f"Sync completed: {result.source_system} <-> {result.target_system}, "
                f"{result.items_synced} items synced in {result.duration}"
            )
        elif result.cancelled:
            logger.warning(
                f"Sync cancelled: {result.source_system} <-> {result.target_system}"
            )
        else:
            logger.warning(
                f"Sync completed with errors: {result.source_system} <-> {result.target_system}, "
                f"{len(result.errors)} errors"
            )

        if result.success:
            status = SyncStatus.SUCCESS
        elif result.cancelled:
            status = SyncStatus.CANCELLED
        else:
            status = SyncStatus.FAILED
        self._log_sync(
            source_system=result.source_system,
            target_system=result.target_system,
            status=status,
            message=(
                f"{result.items_synced} items synced, {len(result.errors)} errors"
                if not result.cancelled
                else "Sync cancelled"
            ),
            result=result,
        )

    def _record_skip(self, mapping: SyncMapping, message: str):
        self._log_sync(
            source_system=mapping.source_system,
            target_system=mapping.target_system,
            status=SyncStatus.SKIPPED,
            message=message,
        )

    def _log_sync(
        self,
        source_system: str,
        target_system: str,
        status: SyncStatus,
        message: str,
        result: Optional[SyncResult] = None,
    ):
        """Persist a SyncLog row when a database is configured"""
        if self.session_factory is None:
            return
        log = SyncLog(
            source_system=source_system,
            target_system=target_system,
            status=status,
            items_synced=result.items_synced if result else 0,
            error_count=len(result.errors) if result else 0,
            message=message,
            details=json.dumps(list(result.errors)) if result and result.errors else None,
            started_at=result.start_time if result else utcnow(),
            finished_at=result.end_time if result else utcnow(),
        )
        db = self.session_factory()
        try:
            db.add(log)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to persist sync log ({source_system} -> {target_system}): {e}")
        finally:
            db.close()


def build_orchestrator(settings: Settings, session_factory=None) -> SyncOrchestrator:
    """Wire engine, adapters and mappings from settings"""
    from syncbridge.adapters import build_registry

    if session_factory is None:
        from syncbridge.models.base import SessionLocal

        session_factory = SessionLocal

    checkpoint_store = None
    if settings.checkpoint_store == "database":
        checkpoint_store = SqlCheckpointStore(session_factory)
    elif settings.checkpoint_store != "memory":
        raise ValueError(f"Unknown checkpoint store '{settings.checkpoint_store}'")

    engine = SyncEngine(
        checkpoint_store=checkpoint_store,
        policy=CheckpointPolicy(settings.checkpoint_policy),
        lookback_days=settings.initial_lookback_days,
    )
    return SyncOrchestrator(
        engine=engine,
        registry=build_registry(settings),
        mappings=settings.parsed_sync_mappings(),
        sync_comments=settings.sync_comments,
        session_factory=session_factory,
    )
