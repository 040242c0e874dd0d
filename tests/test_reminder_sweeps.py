import unittest
from datetime import timedelta

from backoffice.application.reminder_service import (
    JOB_DAILY,
    TIER_IMMINENT,
    TIER_LONG_RANGE,
    TIER_UPCOMING,
    ReminderService,
    build_tiers,
)
from backoffice.domain.models import RFQ_CLOSED, TASK_SUBMITTED, TENDER_CLOSED, TENDER_DRAFT
from tests.helpers.fakes import BASE_NOW, FixedClock, MemoryProcurementRepository, RecordingSender, rfq, task, tender


class ReminderTierTest(unittest.TestCase):
    def test_windows_are_half_open_and_adjacent(self) -> None:
        tiers = build_tiers()
        edge = BASE_NOW + timedelta(hours=24)
        self.assertTrue(tiers[TIER_IMMINENT].contains(edge, BASE_NOW))
        self.assertFalse(tiers[TIER_UPCOMING].contains(edge, BASE_NOW))
        self.assertTrue(tiers[TIER_UPCOMING].contains(edge + timedelta(seconds=1), BASE_NOW))
        self.assertFalse(tiers[TIER_IMMINENT].contains(BASE_NOW, BASE_NOW))
        self.assertTrue(tiers[TIER_LONG_RANGE].contains(BASE_NOW + timedelta(days=400), BASE_NOW))
        self.assertFalse(tiers[TIER_LONG_RANGE].contains(BASE_NOW + timedelta(days=7), BASE_NOW))
        self.assertFalse(tiers[TIER_IMMINENT].contains(None, BASE_NOW))


class ReminderSweepTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.repo = MemoryProcurementRepository()
        self.repo.add_user("creator", first_name="Carla", last_name="Reyes")
        self.repo.add_user("U1", first_name="Uma")
        self.repo.add_user("U2", first_name="Ugo")
        self.sender = RecordingSender()
        self.clock = FixedClock()
        self.service = ReminderService(self.repo, self.sender, clock=self.clock)

    async def test_imminent_task_is_picked_by_one_tier_only(self) -> None:
        await self.repo.save_tender("tenant-a", tender("T1", deadline=BASE_NOW + timedelta(days=2)))
        await self.repo.save_task("tenant-a", task("K1", "T1", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=12)))

        imminent = await self.service.sweep_imminent("tenant-a")
        upcoming = await self.service.sweep_upcoming("tenant-a")

        self.assertEqual((imminent.matched, imminent.sent), (1, 1))
        self.assertEqual((upcoming.matched, upcoming.sent), (0, 0))
        _tenant, message = self.sender.sent[0]
        self.assertEqual(message.recipient, "U1@example.com")
        self.assertEqual(message.sender_name, "Carla Reyes")

    async def test_tasks_are_grouped_into_one_digest_per_assignee_and_tender(self) -> None:
        await self.repo.save_tender("tenant-a", tender("T1", title="Bridge"))
        for index, hours in enumerate((30, 50, 70), start=1):
            await self.repo.save_task(
                "tenant-a", task(f"K{index}", "T1", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=hours))
            )

        report = await self.service.sweep_upcoming("tenant-a")

        self.assertEqual((report.matched, report.digests, report.sent), (3, 1, 1))
        _tenant, message = self.sender.sent[0]
        self.assertEqual(message.subject, "Pending tender task reminder")
        lines = [line for line in message.body.splitlines() if line.startswith("- ")]
        self.assertEqual(
            lines,
            [
                "- Task K1 (Tender: Bridge, Due: 2026-03-03)",
                "- Task K2 (Tender: Bridge, Due: 2026-03-04)",
                "- Task K3 (Tender: Bridge, Due: 2026-03-05)",
            ],
        )
        self.assertTrue(message.body.startswith("Hello Uma,"))

    async def test_separate_tenders_produce_separate_digests(self) -> None:
        await self.repo.save_tender("tenant-a", tender("T1"))
        await self.repo.save_tender("tenant-a", tender("T2"))
        await self.repo.save_task("tenant-a", task("K1", "T1", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=3)))
        await self.repo.save_task("tenant-a", task("K2", "T2", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=4)))

        report = await self.service.sweep_imminent("tenant-a")

        self.assertEqual(report.sent, 2)

    async def test_skips_submitted_tasks_and_inactive_or_expired_tenders(self) -> None:
        await self.repo.save_tender("tenant-a", tender("T-draft", status=TENDER_DRAFT))
        await self.repo.save_tender("tenant-a", tender("T-late", deadline=BASE_NOW - timedelta(minutes=1)))
        await self.repo.save_tender("tenant-a", tender("T-ok"))
        due = BASE_NOW + timedelta(hours=2)
        await self.repo.save_task("tenant-a", task("K1", "T-draft", assignee_id="U1", due_date=due))
        await self.repo.save_task("tenant-a", task("K2", "T-late", assignee_id="U1", due_date=due))
        await self.repo.save_task(
            "tenant-a",
            task("K3", "T-ok", assignee_id="U1", due_date=due, status=TASK_SUBMITTED, file_path="x/y.pdf", submitted_at=BASE_NOW),
        )

        report = await self.service.sweep_imminent("tenant-a")

        self.assertEqual((report.matched, report.sent), (0, 0))
        self.assertEqual(self.sender.sent, [])

    async def test_missing_credential_skips_before_any_query(self) -> None:
        self.sender.credential = False
        await self.repo.save_tender("tenant-a", tender("T1"))
        await self.repo.save_task("tenant-a", task("K1", "T1", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=2)))
        self.repo.calls.clear()

        report = await self.service.sweep_imminent("tenant-a")

        self.assertEqual(report.skipped_reason, "sender_missing")
        self.assertEqual(self.repo.calls, [])
        self.assertEqual(self.sender.attempts, [])

    async def test_delivery_failure_is_isolated(self) -> None:
        self.sender.fail_for = {"u1@example.com"}
        await self.repo.save_tender("tenant-a", tender("T1"))
        await self.repo.save_task("tenant-a", task("K1", "T1", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=2)))
        await self.repo.save_task("tenant-a", task("K2", "T1", assignee_id="U2", due_date=BASE_NOW + timedelta(hours=2)))

        report = await self.service.sweep_imminent("tenant-a")

        self.assertEqual((report.sent, report.failed), (1, 1))
        self.assertEqual([message.recipient for _t, message in self.sender.sent], ["U2@example.com"])

    async def test_unexpected_sender_error_does_not_abort_remaining_digests(self) -> None:
        self.sender.crash_for = {"u1@example.com"}
        await self.repo.save_tender("tenant-a", tender("T1"))
        await self.repo.save_task("tenant-a", task("K1", "T1", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=2)))
        await self.repo.save_task("tenant-a", task("K2", "T1", assignee_id="U2", due_date=BASE_NOW + timedelta(hours=2)))

        with self.assertLogs("backoffice.reminders", level="WARNING"):
            report = await self.service.sweep_imminent("tenant-a")

        self.assertEqual((report.sent, report.failed), (1, 1))
        self.assertEqual(sorted(address.lower() for address in self.sender.attempts), ["u1@example.com", "u2@example.com"])

    async def test_other_tenants_are_untouched(self) -> None:
        await self.repo.save_tender("tenant-b", tender("T9", tenant_id="tenant-b"))
        await self.repo.save_task(
            "tenant-b", task("K9", "T9", tenant_id="tenant-b", assignee_id="U1", due_date=BASE_NOW + timedelta(hours=2))
        )

        report = await self.service.sweep_imminent("tenant-a")

        self.assertEqual(report.matched, 0)

    async def test_deadline_reminder_goes_to_creator(self) -> None:
        await self.repo.save_tender("tenant-a", tender("T1", title="Roads", deadline=BASE_NOW + timedelta(hours=6)))
        await self.repo.save_tender("tenant-a", tender("T2", deadline=BASE_NOW + timedelta(days=6)))

        report = await self.service.send_deadline_reminders("tenant-a")

        self.assertEqual((report.matched, report.sent), (1, 1))
        self.assertEqual(self.sender.subjects(), ["Tender Deadline Reminder: Roads"])

    async def test_force_close_heals_tenders_and_rfqs(self) -> None:
        await self.repo.save_tender("tenant-a", tender("T2", deadline=BASE_NOW - timedelta(hours=1)))
        await self.repo.save_tender("tenant-a", tender("T3"))
        await self.repo.save_rfq(
            "tenant-a", rfq("R1", open_date=BASE_NOW - timedelta(days=3), close_date=BASE_NOW - timedelta(days=1))
        )

        report = await self.service.force_close("tenant-a")

        self.assertEqual(report.closed, 2)
        self.assertEqual(self.repo.tenders["T2"].status, TENDER_CLOSED)
        self.assertEqual(self.repo.tenders["T2"].updated_at, BASE_NOW)
        self.assertNotEqual(self.repo.tenders["T3"].status, TENDER_CLOSED)
        self.assertEqual(self.repo.rfqs["R1"].status, RFQ_CLOSED)

    async def test_daily_job_runs_long_range_deadline_and_force_close(self) -> None:
        reports = await self.service.run_job(JOB_DAILY, "tenant-a")
        self.assertEqual([report.job for report in reports], ["long_range", "deadline", "force_close"])
        with self.assertRaises(KeyError):
            await self.service.run_job("hourly", "tenant-a")
