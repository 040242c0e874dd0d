import asyncio
import io
import unittest
from datetime import timedelta

from werkzeug.http import parse_options_header

from backoffice import create_app
from backoffice.config import Config
from backoffice.db import close_db, connect_database
from backoffice.domain.models import User, format_timestamp, utc_now
from backoffice.infrastructure.repositories import SqlProcurementRepository
from backoffice.observability import reset_metrics_for_tests
from backoffice.ui_strings import error_message
from tests.helpers.fakes import RecordingSender
from tests.helpers.temp_db import TempDbSandbox


def _seed_users(db_path: str, tenant_id: str, *user_ids: str) -> None:
    async def _save() -> None:
        db = connect_database(db_path)
        try:
            repo = SqlProcurementRepository(db)
            for user_id in user_ids:
                await repo.save_user(
                    tenant_id, User(id=user_id, tenant_id=tenant_id, email=f"{user_id}@example.com", first_name=user_id.title())
                )
        finally:
            db.close()

    asyncio.run(_save())


def _in(**kwargs) -> str:
    return format_timestamp(utc_now() + timedelta(**kwargs))


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="api_routes")
        TempConfig = self._temp_db.make_config(
            Config,
            TESTING=True,
            AUTH_ENABLED=True,
            ALLOW_HEADER_IDENTITY=True,
            ELEVATED_ROLES="admin",
            REMINDER_TENANT_IDS="tenant-a",
        )
        self.app = create_app(TempConfig)
        self.sender = RecordingSender()
        self.app.extensions["notification_sender"] = self.sender
        self.client = self.app.test_client()
        _seed_users(self._temp_db.db_path, "tenant-a", "creator", "alice", "bob")

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def headers(self, user_id: str = "creator", role: str = "buyer", tenant_id: str = "tenant-a") -> dict:
        return {"X-Tenant-Id": tenant_id, "X-User-Id": user_id, "X-User-Role": role}

    def create_tender(self, **overrides) -> dict:
        payload = {
            "title": "Runway lights",
            "deadline": _in(days=3),
            "tasks": [{"title": "Technical offer", "assignee_id": "alice", "due_date": _in(hours=10)}],
        }
        payload.update(overrides)
        response = self.client.post("/api/tenders", json=payload, headers=self.headers())
        self.assertEqual(response.status_code, 201, msg=response.get_data(as_text=True))
        return response.get_json()


class AuthAndErrorHandlingTest(ApiTestCase):
    def test_identity_headers_are_ignored_unless_allowed(self) -> None:
        self.app.config["ALLOW_HEADER_IDENTITY"] = False

        response = self.client.get("/api/tenders", headers=self.headers(user_id="mallory", role="admin"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json().get("error"), "auth_required")

        trigger = self.client.post(
            "/api/admin/reminders/imminent/run", json={}, headers=self.headers(user_id="mallory", role="admin")
        )
        self.assertEqual(trigger.status_code, 401)

    def test_unauthenticated_api_call_is_rejected(self) -> None:
        response = self.client.get("/api/tenders", headers={"X-Tenant-Id": "tenant-a"})

        self.assertEqual(response.status_code, 401)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_health_is_public_and_reports_metrics(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["status"], "ok")
        self.assertIn("sweeps", payload["metrics"])
        self.assertEqual(payload["scheduler"]["tenant_ids"], ["tenant-a"])
        self.assertTrue(response.headers.get("X-Request-Id"))

    def test_validation_error_payload(self) -> None:
        response = self.client.post("/api/tenders", json={"deadline": _in(days=1)}, headers=self.headers())

        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload["error"], "validation_error")
        self.assertEqual(payload["message"], error_message("tender_fields_required"))
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_bad_timestamp_is_reported(self) -> None:
        response = self.client.post("/api/tenders", json={"title": "X", "deadline": "soon"}, headers=self.headers())
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "timestamp_invalid")

    def test_request_id_is_echoed(self) -> None:
        response = self.client.get("/api/tenders", headers={**self.headers(), "X-Request-Id": "req-123"})
        self.assertEqual(response.headers.get("X-Request-Id"), "req-123")


class TenderApiTest(ApiTestCase):
    def test_create_list_and_get(self) -> None:
        created = self.create_tender()

        self.assertEqual(created["status"], "active")
        self.assertEqual(len(created["tasks"]), 1)
        self.assertEqual(self.sender.subjects(), ["Tender Created: Runway lights"])

        listing = self.client.get("/api/tenders", headers=self.headers("alice")).get_json()
        self.assertEqual([row["id"] for row in listing["items"]], [created["id"]])

        detail = self.client.get(f"/api/tenders/{created['id']}", headers=self.headers("alice"))
        self.assertEqual(detail.status_code, 200)

        forbidden = self.client.get(f"/api/tenders/{created['id']}", headers=self.headers("bob"))
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.get_json()["error"], "permission_denied")

    def test_other_tenant_cannot_see_tender(self) -> None:
        created = self.create_tender()
        response = self.client.get(f"/api/tenders/{created['id']}", headers=self.headers(tenant_id="tenant-b"))
        self.assertEqual(response.status_code, 404)

    def test_invalid_assignee_is_rejected(self) -> None:
        response = self.client.post(
            "/api/tenders",
            json={"title": "X", "deadline": _in(days=1), "tasks": [{"title": "T", "assignee_id": "stranger"}]},
            headers=self.headers(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "invalid_assignee")

    def test_resolve_after_deadline_is_rejected(self) -> None:
        created = self.create_tender(deadline=_in(hours=-1), tasks=[])

        response = self.client.post(f"/api/tenders/{created['id']}/resolve", json={"resolved": True}, headers=self.headers())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "resolve_after_deadline")

    def test_task_file_upload_download_and_clear(self) -> None:
        created = self.create_tender()
        task_id = created["tasks"][0]["id"]

        upload = self.client.post(
            f"/api/tenders/tasks/{task_id}/file",
            data={"file": (io.BytesIO(b"%PDF-1.4 offer"), "offer.pdf", "application/pdf")},
            content_type="multipart/form-data",
            headers=self.headers("alice"),
        )
        self.assertEqual(upload.status_code, 200, msg=upload.get_data(as_text=True))
        self.assertEqual(upload.get_json()["status"], "submitted")

        download = self.client.get(f"/api/tenders/tasks/{task_id}/file", headers=self.headers("creator"))
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.data, b"%PDF-1.4 offer")
        self.assertEqual(download.mimetype, "application/pdf")

        cleared = self.client.delete(f"/api/tenders/tasks/{task_id}/file", headers=self.headers("alice"))
        self.assertEqual(cleared.get_json()["status"], "pending")

    def test_download_name_with_quotes_is_escaped(self) -> None:
        created = self.create_tender()
        task_id = created["tasks"][0]["id"]
        upload = self.client.post(
            f"/api/tenders/tasks/{task_id}/file",
            data={"file": (io.BytesIO(b"%PDF-1.4 offer"), "offer.pdf", "application/pdf")},
            content_type="multipart/form-data",
            headers=self.headers("alice"),
        )
        self.assertEqual(upload.status_code, 200)
        stored_name = 'offer "final"; v2.pdf'
        db = connect_database(self._temp_db.db_path)
        try:
            db.execute("UPDATE tender_tasks SET file_name = ? WHERE id = ?", (stored_name, task_id))
            db.commit()
        finally:
            db.close()

        download = self.client.get(f"/api/tenders/tasks/{task_id}/file", headers=self.headers("creator"))

        self.assertEqual(download.status_code, 200)
        disposition, options = parse_options_header(download.headers["Content-Disposition"])
        self.assertEqual(disposition, "attachment")
        self.assertEqual(options.get("filename"), stored_name)

    def test_upload_rejects_wrong_type(self) -> None:
        created = self.create_tender()
        task_id = created["tasks"][0]["id"]

        response = self.client.post(
            f"/api/tenders/tasks/{task_id}/file",
            data={"file": (io.BytesIO(b"#!/bin/sh"), "run.sh", "text/x-shellscript")},
            content_type="multipart/form-data",
            headers=self.headers("alice"),
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "file_type_invalid")

    def test_task_crud_and_tender_delete(self) -> None:
        created = self.create_tender(tasks=[])
        task = self.client.post(
            f"/api/tenders/{created['id']}/tasks", json={"title": "Drawings", "assignee_id": "bob"}, headers=self.headers()
        )
        self.assertEqual(task.status_code, 201)
        task_id = task.get_json()["id"]

        updated = self.client.put(f"/api/tenders/tasks/{task_id}", json={"title": "Drawings v2"}, headers=self.headers())
        self.assertEqual(updated.get_json()["title"], "Drawings v2")

        self.assertEqual(self.client.delete(f"/api/tenders/tasks/{task_id}", headers=self.headers()).status_code, 200)
        self.assertEqual(self.client.delete(f"/api/tenders/{created['id']}", headers=self.headers()).status_code, 200)
        self.assertEqual(self.client.get(f"/api/tenders/{created['id']}", headers=self.headers()).status_code, 404)


class RfqApiTest(ApiTestCase):
    def test_create_update_and_resolve(self) -> None:
        response = self.client.post(
            "/api/rfqs",
            json={
                "subject": "Cable drums",
                "senderAddress": "buyer@example.com",
                "open_date": _in(hours=-1),
                "close_date": _in(days=2),
                "items": [{"description": "Drum", "quantity": 3}],
                "assignee_ids": ["alice"],
            },
            headers=self.headers(),
        )
        self.assertEqual(response.status_code, 201, msg=response.get_data(as_text=True))
        rfq_id = response.get_json()["id"]

        updated = self.client.put(f"/api/rfqs/{rfq_id}", json={"assignees": ["bob"]}, headers=self.headers())
        self.assertEqual([row["assignee_id"] for row in updated.get_json()["assignments"]], ["bob"])

        resolved = self.client.post(f"/api/rfqs/{rfq_id}/resolve", json={}, headers=self.headers())
        self.assertEqual(resolved.get_json()["status"], "sent")

        listing = self.client.get("/api/rfqs?status=sent", headers=self.headers("bob")).get_json()
        self.assertEqual(listing["count"], 1)

    def test_missing_items_is_rejected(self) -> None:
        response = self.client.post(
            "/api/rfqs",
            json={"subject": "X", "sender_address": "a@b.c", "open_date": _in(hours=-1), "close_date": _in(days=1)},
            headers=self.headers(),
        )
        self.assertEqual(response.status_code, 400)


class AdminReminderApiTest(ApiTestCase):
    def test_requires_elevated_role(self) -> None:
        response = self.client.post("/api/admin/reminders/imminent/run", json={}, headers=self.headers())
        self.assertEqual(response.status_code, 403)

    def test_runs_requested_sweep(self) -> None:
        self.create_tender()
        self.sender.sent.clear()

        response = self.client.post(
            "/api/admin/reminders/imminent/run", json={"tenant_id": "tenant-a"}, headers=self.headers("root", role="admin")
        )

        self.assertEqual(response.status_code, 200, msg=response.get_data(as_text=True))
        reports = response.get_json()["reports"]
        self.assertEqual(reports[0]["matched"], 1)
        self.assertEqual(reports[0]["sent"], 1)
        self.assertEqual(self.sender.subjects(), ["Pending tender task reminder"])

        metrics = self.client.get("/api/admin/reminders/metrics", headers=self.headers("root", role="admin")).get_json()
        self.assertEqual(metrics["imminent"]["runs"], 1)

    def test_cannot_run_sweep_for_another_tenant(self) -> None:
        _seed_users(self._temp_db.db_path, "tenant-b", "creator", "carol")
        created = self.client.post(
            "/api/tenders",
            json={
                "title": "Other tenant",
                "deadline": _in(days=3),
                "tasks": [{"title": "Offer", "assignee_id": "carol", "due_date": _in(hours=10)}],
            },
            headers=self.headers(tenant_id="tenant-b"),
        )
        self.assertEqual(created.status_code, 201, msg=created.get_data(as_text=True))
        self.sender.sent.clear()

        for body in ({"tenant_id": "tenant-b"}, {"tenant_ids": ["tenant-a", "tenant-b"]}):
            response = self.client.post(
                "/api/admin/reminders/imminent/run", json=body, headers=self.headers("root", role="admin")
            )
            self.assertEqual(response.status_code, 403, msg=body)
            self.assertEqual(response.get_json()["error"], "permission_denied")
        self.assertEqual(self.sender.sent, [])

        scoped = self.client.post(
            "/api/admin/reminders/imminent/run", json={}, headers=self.headers("root", role="admin")
        )
        self.assertEqual(scoped.status_code, 200)
        self.assertEqual([report["tenant_id"] for report in scoped.get_json()["reports"]], ["tenant-a"])
        self.assertEqual(self.sender.sent, [])

    def test_activity_log_lists_changes_with_request_origin(self) -> None:
        created = self.client.post(
            "/api/tenders",
            json={"title": "Runway lights", "deadline": _in(days=3), "tasks": []},
            headers={**self.headers(), "User-Agent": "backoffice-ui/2.1"},
        )
        self.assertEqual(created.status_code, 201)
        tender_id = created.get_json()["id"]

        forbidden = self.client.get("/api/admin/activity", headers=self.headers())
        self.assertEqual(forbidden.status_code, 403)

        response = self.client.get(
            f"/api/admin/activity?entity_type=tender&entity_id={tender_id}", headers=self.headers("root", role="admin")
        )
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["count"], 1)
        entry = payload["items"][0]
        self.assertEqual((entry["action"], entry["user_id"]), ("create", "creator"))
        self.assertEqual(entry["new_values"]["title"], "Runway lights")
        self.assertEqual(entry["user_agent"], "backoffice-ui/2.1")
        self.assertEqual(entry["ip_address"], "127.0.0.1")

        other_tenant = self.client.get("/api/admin/activity", headers=self.headers("root", role="admin", tenant_id="tenant-b"))
        self.assertEqual(other_tenant.get_json()["count"], 0)

    def test_unknown_job(self) -> None:
        response = self.client.post("/api/admin/reminders/hourly/run", json={}, headers=self.headers("root", role="admin"))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "sweep_unknown")
