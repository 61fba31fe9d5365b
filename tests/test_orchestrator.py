import unittest
from types import SimpleNamespace
from unittest.mock import Mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _session_factory():
    from syncbridge.models.base import init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class SyncOrchestratorTests(unittest.TestCase):
    def _build(self, mappings, adapters, session_factory=None):
        from syncbridge.adapters.base import AdapterRegistry
        from syncbridge.config import parse_sync_mappings
        from syncbridge.services.orchestrator import SyncOrchestrator
        from syncbridge.services.sync_engine import SyncEngine

        return SyncOrchestrator(
            engine=SyncEngine(),
            registry=AdapterRegistry(adapters),
            mappings=parse_sync_mappings(mappings),
            session_factory=session_factory,
        )

    def _adapters(self):
        from syncbridge.adapters.mock import MockAdapter
        from syncbridge.models.entities import WorkItem

        sys_a = MockAdapter("SysA")
        sys_a.add_item(WorkItem(title="Bug in login", state="Open", type="Bug"))
        sys_b = MockAdapter("SysB")
        flaky = MockAdapter("Flaky", fail_initialize=True)
        return sys_a, sys_b, flaky

    def test_failed_adapter_skips_only_its_pairs(self):
        sys_a, sys_b, flaky = self._adapters()
        orchestrator = self._build("SysA>Flaky,SysA>SysB,Flaky>SysB", [sys_a, sys_b, flaky])

        results = orchestrator.run_cycle()

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].source_system, "SysA")
        self.assertEqual(results[0].target_system, "SysB")
        self.assertTrue(results[0].success)
        self.assertEqual(results[0].items_synced, 1)
        self.assertEqual(flaky.upsert_calls, [])
        self.assertEqual(len(sys_b.all_items()), 1)

    def test_initialize_adapters_reports_status(self):
        sys_a, sys_b, flaky = self._adapters()
        orchestrator = self._build("SysA>SysB,SysA>Flaky", [sys_a, sys_b, flaky])

        status = orchestrator.initialize_adapters()

        self.assertEqual(status, {"SysA": True, "SysB": True, "Flaky": False})

    def test_unmapped_adapters_are_not_initialized(self):
        sys_a, sys_b, flaky = self._adapters()
        orchestrator = self._build("SysA>SysB", [sys_a, sys_b, flaky])

        orchestrator.initialize_adapters()

        self.assertEqual(flaky.initialize_calls, 0)

    def test_missing_adapter_is_skipped(self):
        sys_a, sys_b, _ = self._adapters()
        orchestrator = self._build("SysA>Nowhere,SysA>SysB", [sys_a, sys_b])

        results = orchestrator.run_cycle()

        self.assertEqual([(r.source_system, r.target_system) for r in results], [("SysA", "SysB")])

    def test_exception_in_one_pair_does_not_stop_the_cycle(self):
        sys_a, sys_b, _ = self._adapters()
        from syncbridge.adapters.mock import MockAdapter

        sys_c = MockAdapter("SysC")
        orchestrator = self._build("SysA>SysB,SysA>SysC", [sys_a, sys_b, sys_c])
        real_sync_pair = orchestrator.engine.sync_pair

        def sync_pair(source, target, *args):
            if target.system_name == "SysB":
                raise RuntimeError("unexpected")
            return real_sync_pair(source, target, *args)

        orchestrator.engine.sync_pair = Mock(side_effect=sync_pair)

        results = orchestrator.run_cycle()

        self.assertEqual(orchestrator.engine.sync_pair.call_count, 2)
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].target_system, "SysC")
        self.assertTrue(results[0].success)

    def test_cancelled_cycle_stops_before_next_pair(self):
        from syncbridge.cancellation import CancellationToken

        sys_a, sys_b, _ = self._adapters()
        orchestrator = self._build("SysA>SysB", [sys_a, sys_b])
        token = CancellationToken()
        token.cancel()

        self.assertEqual(orchestrator.run_cycle(token), [])
        self.assertEqual(sys_b.all_items(), [])

    def test_sync_mapping_unknown_adapter_raises_key_error(self):
        sys_a, sys_b, _ = self._adapters()
        orchestrator = self._build("SysA>SysB", [sys_a, sys_b])

        with self.assertRaises(KeyError):
            orchestrator.sync_mapping("SysA", "Unknown")

    def test_sync_mapping_runs_single_pass(self):
        sys_a, sys_b, _ = self._adapters()
        orchestrator = self._build("", [sys_a, sys_b])

        result = orchestrator.sync_mapping("SysA", "SysB")

        self.assertTrue(result.success)
        self.assertEqual(result.items_synced, 1)

    def test_sync_mapping_with_unreachable_adapter_reports_fatal_error(self):
        sys_a, _, flaky = self._adapters()
        orchestrator = self._build("", [sys_a, flaky])

        result = orchestrator.sync_mapping("SysA", "Flaky")

        self.assertFalse(result.success)
        self.assertTrue(result.errors[0].startswith("Fatal error:"))


class SyncOrchestratorLoggingTests(unittest.TestCase):
    def test_results_and_skips_are_recorded(self):
        from syncbridge.adapters.base import AdapterRegistry
        from syncbridge.adapters.mock import MockAdapter
        from syncbridge.config import parse_sync_mappings
        from syncbridge.models import SyncLog
        from syncbridge.models.entities import WorkItem
        from syncbridge.models.sync_log import SyncStatus
        from syncbridge.services.orchestrator import SyncOrchestrator
        from syncbridge.services.sync_engine import SyncEngine

        session_factory = _session_factory()
        sys_a = MockAdapter("SysA")
        sys_a.add_item(WorkItem(title="One"))
        sys_b = MockAdapter("SysB", fail_upsert_ids=["1"])
        flaky = MockAdapter("Flaky", fail_initialize=True)
        orchestrator = SyncOrchestrator(
            engine=SyncEngine(),
            registry=AdapterRegistry([sys_a, sys_b, flaky]),
            mappings=parse_sync_mappings("SysA>SysB,SysA>Flaky"),
            session_factory=session_factory,
        )

        orchestrator.run_cycle()

        db = session_factory()
        try:
            logs = db.query(SyncLog).order_by(SyncLog.id).all()
            self.assertEqual(len(logs), 2)
            self.assertEqual(logs[0].status, SyncStatus.FAILED)
            self.assertEqual(logs[0].error_count, 1)
            self.assertIn("Failed to sync 1", logs[0].details)
            self.assertEqual(logs[1].status, SyncStatus.SKIPPED)
            self.assertEqual(logs[1].target_system, "Flaky")
        finally:
            db.close()


class BuildOrchestratorTests(unittest.TestCase):
    def _settings(self, **overrides):
        values = dict(
            checkpoint_store="memory",
            checkpoint_policy="advance_on_success",
            initial_lookback_days=10,
            sync_mappings="MockCRM>MockCRM2",
            sync_comments=False,
            batch_size=50,
            request_timeout_seconds=5.0,
            mock_crm_enabled=True,
            mock_crm_seed=False,
            azure_devops_organization_url=None,
            azure_devops_personal_access_token=None,
            azure_devops_project=None,
            servicedesk_plus_base_url=None,
            servicedesk_plus_technician_key=None,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_builds_from_settings(self):
        from syncbridge.services.checkpoints import CheckpointPolicy, InMemoryCheckpointStore
        from syncbridge.services.orchestrator import build_orchestrator

        orchestrator = build_orchestrator(self._settings(), session_factory=_session_factory())

        self.assertEqual(orchestrator.engine.policy, CheckpointPolicy.ADVANCE_ON_SUCCESS)
        self.assertIsInstance(orchestrator.engine.checkpoint_store, InMemoryCheckpointStore)
        self.assertEqual(orchestrator.engine.lookback.days, 10)
        self.assertFalse(orchestrator.sync_comments)
        self.assertEqual(orchestrator.registry.names(), ["MockCRM"])
        self.assertEqual(orchestrator.registry.get("MockCRM").batch_size, 50)
        self.assertEqual(
            [(m.source_system, m.target_system) for m in orchestrator.mappings],
            [("MockCRM", "MockCRM2")],
        )

    def test_database_checkpoint_store(self):
        from syncbridge.services.checkpoints import SqlCheckpointStore
        from syncbridge.services.orchestrator import build_orchestrator

        orchestrator = build_orchestrator(
            self._settings(checkpoint_store="database"), session_factory=_session_factory()
        )

        self.assertIsInstance(orchestrator.engine.checkpoint_store, SqlCheckpointStore)

    def test_unknown_checkpoint_store(self):
        from syncbridge.services.orchestrator import build_orchestrator

        with self.assertRaises(ValueError):
            build_orchestrator(self._settings(checkpoint_store="redis"), session_factory=object)

    def test_http_adapters_registered_when_configured(self):
        from syncbridge.services.orchestrator import build_orchestrator

        orchestrator = build_orchestrator(
            self._settings(
                mock_crm_enabled=False,
                azure_devops_organization_url="https://dev.azure.com/acme",
                azure_devops_personal_access_token="pat",
                azure_devops_project="Support",
                servicedesk_plus_base_url="https://sdp.example.com",
                servicedesk_plus_technician_key="key",
            ),
            session_factory=_session_factory(),
        )

        self.assertEqual(orchestrator.registry.names(), ["AzureDevOps", "ServiceDeskPlus"])
        self.assertEqual(orchestrator.registry.get("AzureDevOps").timeout, 5.0)


if __name__ == "__main__":
    unittest.main()
