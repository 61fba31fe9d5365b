import os
import unittest
from unittest.mock import patch


class SyncMappingParsingTests(unittest.TestCase):
    def test_parse_pairs_in_order(self):
        from syncbridge.config import SyncMapping, parse_sync_mappings

        mappings = parse_sync_mappings(" MockCRM>AzureDevOps , AzureDevOps>ServiceDeskPlus ,")

        self.assertEqual(
            mappings,
            [
                SyncMapping("MockCRM", "AzureDevOps"),
                SyncMapping("AzureDevOps", "ServiceDeskPlus"),
            ],
        )

    def test_empty_values(self):
        from syncbridge.config import parse_sync_mappings

        self.assertEqual(parse_sync_mappings(None), [])
        self.assertEqual(parse_sync_mappings(""), [])
        self.assertEqual(parse_sync_mappings(" , "), [])

    def test_invalid_entries_raise(self):
        from syncbridge.config import parse_sync_mappings

        for value in ("MockCRM", "MockCRM>", ">AzureDevOps", "A>B>C"):
            with self.assertRaises(ValueError):
                parse_sync_mappings(value)


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        from syncbridge.config import Settings

        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=None)

        self.assertEqual(s.poll_interval_seconds, 60)
        self.assertEqual(s.batch_size, 100)
        self.assertTrue(s.sync_comments)
        self.assertEqual(s.checkpoint_store, "memory")
        self.assertEqual(s.checkpoint_policy, "advance_always")
        self.assertEqual(s.initial_lookback_days, 30)
        self.assertFalse(s.auth_enabled)
        self.assertEqual(s.parsed_sync_mappings(), [])

    def test_environment_overrides(self):
        from syncbridge.config import Settings

        env = {
            "POLL_INTERVAL_SECONDS": "15",
            "SYNC_COMMENTS": "false",
            "SYNC_MAPPINGS": "MockCRM>AzureDevOps",
            "AZURE_DEVOPS_PROJECT": "Support",
        }
        with patch.dict(os.environ, env, clear=True):
            s = Settings(_env_file=None)

        self.assertEqual(s.poll_interval_seconds, 15)
        self.assertFalse(s.sync_comments)
        self.assertEqual(s.azure_devops_project, "Support")
        self.assertEqual(len(s.parsed_sync_mappings()), 1)


if __name__ == "__main__":
    unittest.main()
