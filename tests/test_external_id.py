import unittest


class ExternalIdTests(unittest.TestCase):
    def test_create_and_split_round_trip(self):
        from syncbridge.services.external_id import (
            create_external_id,
            get_item_id,
            get_system_name,
        )

        for system, item_id in [
            ("AzureDevOps", "42"),
            ("MockCRM", "lead:2024:17"),
            ("ServiceDeskPlus", ""),
            ("Sys", "a::b"),
        ]:
            external_id = create_external_id(system, item_id)
            self.assertEqual(get_system_name(external_id), system)
            self.assertEqual(get_item_id(external_id), item_id)

    def test_create_external_id_format(self):
        from syncbridge.services.external_id import create_external_id

        self.assertEqual(create_external_id("MockCRM", "12"), "MockCRM:12")

    def test_split_on_first_colon_only(self):
        from syncbridge.services.external_id import get_item_id, get_system_name

        self.assertEqual(get_system_name("A:b:c"), "A")
        self.assertEqual(get_item_id("A:b:c"), "b:c")

    def test_absent_values_do_not_raise(self):
        from syncbridge.services.external_id import get_item_id, get_system_name, is_from_system

        for value in (None, ""):
            self.assertIsNone(get_system_name(value))
            self.assertIsNone(get_item_id(value))
            self.assertFalse(is_from_system(value, "AzureDevOps"))

    def test_malformed_value_without_colon(self):
        from syncbridge.services.external_id import get_item_id, get_system_name, is_from_system

        self.assertIsNone(get_system_name("AzureDevOps"))
        self.assertIsNone(get_item_id("AzureDevOps"))
        self.assertFalse(is_from_system("AzureDevOps", "AzureDevOps"))

    def test_is_from_system_is_case_insensitive(self):
        from syncbridge.services.external_id import is_from_system

        self.assertTrue(is_from_system("azuredevops:7", "AzureDevOps"))
        self.assertTrue(is_from_system("AzureDevOps:7", "AZUREDEVOPS"))
        self.assertFalse(is_from_system("AzureDevOpsX:7", "AzureDevOps"))
        self.assertFalse(is_from_system("MockCRM:7", "AzureDevOps"))


if __name__ == "__main__":
    unittest.main()
