import unittest
from datetime import timedelta

from backoffice.application.factory import build_services
from backoffice.application.rfq_service import normalize_items
from backoffice.domain.contracts import RfqInput
from backoffice.domain.models import RFQ_ACTIVE, RFQ_CLOSED, RFQ_SENT
from backoffice.errors import ForbiddenError, InvalidAssigneeError, InvalidTransitionError, ValidationError
from tests.helpers.fakes import BASE_NOW, FixedClock, MemoryFileStore, MemoryProcurementRepository, RecordingSender, principal


class RfqServiceTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.repo = MemoryProcurementRepository()
        self.repo.add_user("creator", first_name="Rita")
        self.repo.add_user("alice", first_name="Alice")
        self.repo.add_user("bob", first_name="Bob")
        self.sender = RecordingSender()
        self.clock = FixedClock()
        self.services = build_services(
            {},
            sender=self.sender,
            file_store=MemoryFileStore(),
            repository=self.repo,
            clock=self.clock,
        )
        self.rfqs = self.services.rfqs
        self.creator = principal("creator")

    async def _create(self, **overrides):
        data = RfqInput(
            subject=overrides.pop("subject", "Hydraulic pumps"),
            sender_address=overrides.pop("sender_address", "buyer@example.com"),
            open_date=overrides.pop("open_date", BASE_NOW),
            close_date=overrides.pop("close_date", BASE_NOW + timedelta(days=4)),
            items=overrides.pop("items", [{"description": "Pump", "quantity": "2", "partNumber": "HP-1"}]),
            assignee_ids=overrides.pop("assignee_ids", ["alice"]),
        )
        return await self.rfqs.create_rfq("tenant-a", data, self.creator)

    async def test_create_rfq_normalizes_items_and_notifies(self) -> None:
        view = await self._create()

        self.assertEqual(view.rfq.status, RFQ_ACTIVE)
        self.assertEqual(view.rfq.items, [{"description": "Pump", "quantity": 2.0, "part_number": "HP-1"}])
        self.assertEqual(view.assignee_ids, ["alice"])
        self.assertEqual(self.sender.subjects(), ["New RFQ Assigned"])
        _tenant, message = self.sender.sent[0]
        self.assertIn("Item 1: Pump, Qty: 2.0, Part: HP-1", message.body)

    async def test_create_validation(self) -> None:
        with self.assertRaises(ValidationError):
            await self._create(items=[{"description": "  "}])
        with self.assertRaises(ValidationError):
            await self._create(close_date=BASE_NOW - timedelta(days=1))
        with self.assertRaises(InvalidAssigneeError):
            await self._create(assignee_ids=["nobody"])
        self.assertEqual(self.repo.rfqs, {})

    async def test_update_syncs_assignments_and_notifies_current_assignees(self) -> None:
        view = await self._create()
        self.sender.sent.clear()

        updated = await self.rfqs.update_rfq(
            "tenant-a", view.rfq.id, {"assignee_ids": ["bob"], "subject": "Hydraulic pumps (rev)"}, self.creator
        )

        self.assertEqual(updated.assignee_ids, ["bob"])
        self.assertEqual(updated.rfq.subject, "Hydraulic pumps (rev)")
        self.assertEqual([message.recipient for _t, message in self.sender.sent], ["bob@example.com"])
        self.assertEqual(self.sender.subjects(), ["RFQ Updated"])

    async def test_mutations_are_creator_only(self) -> None:
        view = await self._create()
        with self.assertRaises(ForbiddenError):
            await self.rfqs.update_rfq("tenant-a", view.rfq.id, {"subject": "x"}, principal("alice"))
        with self.assertRaises(ForbiddenError):
            await self.rfqs.delete_rfq("tenant-a", view.rfq.id, principal("alice"))
        seen = await self.rfqs.get_rfq("tenant-a", view.rfq.id, principal("alice"))
        self.assertEqual(seen.rfq.id, view.rfq.id)
        with self.assertRaises(ForbiddenError):
            await self.rfqs.get_rfq("tenant-a", view.rfq.id, principal("bob"))

    async def test_resolve_marks_sent_until_close_date(self) -> None:
        view = await self._create()
        sent = await self.rfqs.resolve_rfq("tenant-a", view.rfq.id, True, self.creator)
        self.assertEqual(sent.status, RFQ_SENT)
        reopened = await self.rfqs.resolve_rfq("tenant-a", view.rfq.id, False, self.creator)
        self.assertEqual(reopened.status, RFQ_ACTIVE)

        self.clock.advance(days=5)
        with self.assertRaises(InvalidTransitionError):
            await self.rfqs.resolve_rfq("tenant-a", view.rfq.id, True, self.creator)
        with self.assertRaises(InvalidTransitionError):
            await self.rfqs.update_rfq("tenant-a", view.rfq.id, {"status": "sent"}, self.creator)

    async def test_update_cannot_mark_sent_with_a_past_close_date_in_the_same_request(self) -> None:
        view = await self._create()
        fields = {
            "open_date": (BASE_NOW - timedelta(days=5)).isoformat(),
            "close_date": (BASE_NOW - timedelta(days=1)).isoformat(),
            "status": "sent",
        }

        with self.assertRaises(InvalidTransitionError):
            await self.rfqs.update_rfq("tenant-a", view.rfq.id, fields, self.creator)

        stored = self.repo.rfqs[view.rfq.id]
        self.assertEqual(stored.status, RFQ_ACTIVE)
        self.assertEqual(stored.close_date, BASE_NOW + timedelta(days=4))

    async def test_list_heals_expired_rfqs(self) -> None:
        view = await self._create()
        self.clock.advance(days=5)

        rows = await self.rfqs.list_rfqs("tenant-a", principal("alice"))

        self.assertEqual([(row.id, row.status) for row in rows], [(view.rfq.id, RFQ_CLOSED)])
        self.assertEqual(await self.rfqs.list_rfqs("tenant-a", principal("bob")), [])

    async def test_delete_removes_assignments(self) -> None:
        view = await self._create(assignee_ids=["alice", "bob"])
        await self.rfqs.delete_rfq("tenant-a", view.rfq.id, self.creator)
        self.assertEqual(self.repo.rfqs, {})
        self.assertEqual(self.repo.assignments, {})

    async def test_rfq_changes_are_recorded_in_activity_log(self) -> None:
        view = await self._create()
        await self.rfqs.update_rfq("tenant-a", view.rfq.id, {"assignee_ids": ["bob"], "subject": "Pumps (rev)"}, self.creator)
        await self.rfqs.resolve_rfq("tenant-a", view.rfq.id, True, self.creator)
        with self.assertRaises(ForbiddenError):
            await self.rfqs.delete_rfq("tenant-a", view.rfq.id, principal("alice"))
        await self.rfqs.delete_rfq("tenant-a", view.rfq.id, self.creator)

        self.assertEqual(
            self.repo.actions("rfq"), [("rfq", "create"), ("rfq", "update"), ("rfq", "resolve"), ("rfq", "delete")]
        )
        created, updated, resolved, deleted = self.repo.activity
        self.assertEqual(created.new_values["assignee_ids"], ["alice"])
        self.assertEqual(created.new_values["items"][0]["part_number"], "HP-1")
        self.assertEqual(updated.previous_values["subject"], "Hydraulic pumps")
        self.assertEqual(updated.new_values["subject"], "Pumps (rev)")
        self.assertEqual(updated.new_values["assignee_ids"], ["bob"])
        self.assertEqual(resolved.new_values, {"status": RFQ_SENT})
        self.assertEqual(deleted.previous_values["id"], view.rfq.id)
        self.assertTrue(all(entry.user_id == "creator" for entry in self.repo.activity))


class NormalizeItemsTest(unittest.TestCase):
    def test_drops_blank_rows_and_rejects_bad_quantity(self) -> None:
        rows = normalize_items([{"description": "Hose", "serialNumber": "S-1"}, {"description": ""}, "junk"])
        self.assertEqual(rows, [{"description": "Hose", "serial_number": "S-1"}])
        with self.assertRaises(ValidationError):
            normalize_items([{"description": "Hose", "quantity": "many"}])
        with self.assertRaises(ValidationError):
            normalize_items("Hose")
