import json
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock


BASE_URL = "https://sdp.example.com"


def _response(status_code=200, payload=None, reason="OK"):
    return SimpleNamespace(
        status_code=status_code,
        ok=status_code < 400,
        reason=reason,
        text="",
        json=lambda: payload if payload is not None else {},
    )


def _raw_request(request_id, updated_ms=1740909600000, external_id=None):
    raw = {
        "id": str(request_id),
        "subject": f"Printer {request_id} jammed",
        "description": "Paper stuck in tray 2",
        "status": {"name": "Open"},
        "priority": {"name": "High"},
        "technician": {"name": "Sam"},
        "last_updated_time": {"value": str(updated_ms), "display_value": "Mar 2, 2025"},
        "udf_fields": {},
    }
    if external_id:
        raw["udf_fields"]["udf_char1"] = external_id
    return raw


def _adapter(handler):
    from syncbridge.adapters.servicedesk_plus import ServiceDeskPlusAdapter

    session = Mock()
    session.headers = {}
    session.request.side_effect = handler
    adapter = ServiceDeskPlusAdapter(BASE_URL, "tech-key", session=session, base_delay_s=0)
    adapter._initialized = True
    return adapter, session


class ServiceDeskPlusAdapterTests(unittest.TestCase):
    def test_headers_and_initialize(self):
        adapter, session = _adapter(lambda method, url, **kw: _response(200, {"requests": []}))
        adapter._initialized = False

        adapter.initialize()

        self.assertTrue(adapter.initialized)
        self.assertEqual(session.headers["technician_key"], "tech-key")
        method, url = session.request.call_args[0]
        self.assertEqual((method, url), ("GET", f"{BASE_URL}/api/v3/requests"))

    def test_get_changes_searches_by_last_updated_time(self):
        calls = []

        def handler(method, url, **kwargs):
            calls.append((method, url, kwargs))
            if url.endswith("/notes"):
                return _response(200, {"notes": []})
            return _response(200, {"requests": [_raw_request(101, external_id="AzureDevOps:7")]})

        adapter, _ = _adapter(handler)
        since = datetime(2025, 3, 1, tzinfo=timezone.utc)

        changes = adapter.get_changes(since)

        self.assertEqual(len(changes), 1)
        item = changes[0].entity
        self.assertEqual(item.id, "101")
        self.assertEqual(item.source, "ServiceDeskPlus")
        self.assertEqual(item.title, "Printer 101 jammed")
        self.assertEqual(item.state, "Open")
        self.assertEqual(item.priority, "High")
        self.assertEqual(item.assigned_to, "Sam")
        self.assertEqual(item.type, "Request")
        self.assertEqual(item.external_id, "AzureDevOps:7")
        self.assertEqual(item.last_modified, datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc))

        input_data = json.loads(calls[0][2]["params"]["input_data"])
        criteria = input_data["list_info"]["search_criteria"]
        self.assertEqual(criteria["field"], "last_updated_time")
        self.assertEqual(criteria["condition"], "greater than")
        self.assertEqual(criteria["value"], str(int(since.timestamp() * 1000) - 1))
        self.assertEqual(input_data["list_info"]["row_count"], 100)

    def test_create_stores_handle_and_posts_notes(self):
        from syncbridge.models.entities import Comment, WorkItem

        calls = []

        def handler(method, url, **kwargs):
            calls.append((method, url, kwargs))
            if url.endswith("/notes"):
                return _response(200, {"notes": []})
            if method == "GET" and url.endswith("/requests"):
                return _response(200, {"requests": []})
            if method == "POST" and url.endswith("/requests"):
                return _response(200, {"request": _raw_request(202, external_id="AzureDevOps:7")})
            if method == "GET" and url.endswith("/requests/202"):
                return _response(200, {"request": _raw_request(202, external_id="AzureDevOps:7")})
            raise AssertionError(f"Unexpected request {method} {url}")

        adapter, _ = _adapter(handler)
        entity = WorkItem(
            id="7",
            source="AzureDevOps",
            title="VPN down",
            description="Cannot connect",
            state="Active",
            comments=[Comment(id="31", source="AzureDevOps", text="Checked the gateway")],
        )

        stored = adapter.upsert(entity)

        self.assertEqual(stored.id, "202")
        self.assertEqual(stored.external_id, "AzureDevOps:7")

        search = json.loads(calls[0][2]["params"]["input_data"])["list_info"]["search_criteria"]
        self.assertEqual(
            search, {"field": "udf_fields.udf_char1", "condition": "is", "value": "AzureDevOps:7"}
        )

        create = [c for c in calls if c[0] == "POST" and c[1].endswith("/requests")][0]
        request_data = json.loads(create[2]["data"]["input_data"])["request"]
        self.assertEqual(request_data["subject"], "VPN down")
        self.assertEqual(request_data["status"], {"name": "Active"})
        self.assertEqual(request_data["udf_fields"], {"udf_char1": "AzureDevOps:7"})

        note_posts = [c for c in calls if c[0] == "POST" and c[1].endswith("/requests/202/notes")]
        self.assertEqual(len(note_posts), 1)
        note = json.loads(note_posts[0][2]["data"]["input_data"])["request_note"]
        self.assertIn("Checked the gateway", note["description"])
        self.assertIn("<!-- syncbridge-comment:AzureDevOps:31 -->", note["description"])

    def test_update_existing_counterpart_uses_put(self):
        from syncbridge.models.entities import WorkItem

        calls = []

        def handler(method, url, **kwargs):
            calls.append((method, url, kwargs))
            if url.endswith("/notes"):
                return _response(200, {"notes": []})
            if method == "GET" and url.endswith("/requests"):
                return _response(200, {"requests": [_raw_request(303)]})
            if url.endswith("/requests/303"):
                return _response(200, {"request": _raw_request(303)})
            raise AssertionError(f"Unexpected request {method} {url}")

        adapter, _ = _adapter(handler)

        adapter.upsert(WorkItem(id="7", source="AzureDevOps", title="VPN down"))

        self.assertEqual([c[0] for c in calls if c[1].endswith("/requests/303")], ["PUT", "GET"])

    def test_get_by_id_missing_returns_none(self):
        adapter, _ = _adapter(lambda method, url, **kw: _response(404, reason="Not Found"))

        self.assertIsNone(adapter.get_by_id("999"))

    def test_notes_markers_become_comment_external_ids(self):
        def handler(method, url, **kwargs):
            if url.endswith("/notes"):
                return _response(
                    200,
                    {
                        "notes": [
                            {
                                "id": "n1",
                                "description": "From Azure\n<!-- syncbridge-comment:AzureDevOps:31 -->",
                                "created_by": {"name": "Integration"},
                                "created_time": {"value": "1740909600000"},
                            }
                        ]
                    },
                )
            return _response(200, {"request": _raw_request(404)})

        adapter, _ = _adapter(handler)

        item = adapter.get_by_id("404")

        self.assertEqual(len(item.comments), 1)
        self.assertEqual(item.comments[0].text, "From Azure")
        self.assertEqual(item.comments[0].external_id, "AzureDevOps:31")
        self.assertEqual(item.comments[0].author, "Integration")

    def test_add_comment_posts_a_note(self):
        calls = []

        def handler(method, url, **kwargs):
            calls.append((method, url, kwargs))
            return _response(
                200,
                {"request_note": {"id": "n9", "created_time": {"value": "1740909600000"}}},
            )

        adapter, _ = _adapter(handler)

        comment = adapter.add_comment("101", "Replaced the toner", author="Sam")

        self.assertEqual(comment.id, "n9")
        self.assertEqual(comment.text, "Replaced the toner")
        self.assertEqual(comment.author, "Sam")
        self.assertEqual(comment.source, "ServiceDeskPlus")
        self.assertEqual(comment.created_date, datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc))
        method, url, kwargs = calls[0]
        self.assertEqual((method, url), ("POST", f"{BASE_URL}/api/v3/requests/101/notes"))
        note = json.loads(kwargs["data"]["input_data"])["request_note"]
        self.assertEqual(note["description"], "Replaced the toner\n\nAdded by Sam")

    def test_add_comment_to_missing_request_raises_lookup_error(self):
        adapter, _ = _adapter(lambda method, url, **kw: _response(404, reason="Not Found"))

        with self.assertRaises(LookupError):
            adapter.add_comment("999", "Hello")


if __name__ == "__main__":
    unittest.main()
