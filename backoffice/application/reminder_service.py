from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Tuple

from backoffice.application.notifications import compose_deadline_reminder, compose_task_digest
from backoffice.domain.contracts import NotificationSender, OutboundMessage, ProcurementRepository
from backoffice.domain.lifecycle import heal, is_stale
from backoffice.domain.models import RFQ_ACTIVE, TASK_PENDING, TENDER_ACTIVE, TenderTask, User, utc_now
from backoffice.errors import ConfigurationMissingError, DeliveryError


logger = logging.getLogger("backoffice.reminders")

TIER_IMMINENT = "imminent"
TIER_UPCOMING = "upcoming"
TIER_LONG_RANGE = "long_range"
JOB_DEADLINE = "deadline"
JOB_FORCE_CLOSE = "force_close"
JOB_DAILY = "daily"

SWEEP_JOBS = (TIER_IMMINENT, TIER_UPCOMING, TIER_LONG_RANGE, JOB_DEADLINE, JOB_FORCE_CLOSE, JOB_DAILY)


@dataclass(frozen=True)
class ReminderTier:
    """Due-date window relative to now: ``(now + lower, now + upper]``; no upper edge when ``upper`` is None."""

    name: str
    lower: timedelta
    upper: timedelta | None

    def bounds(self, now: datetime) -> Tuple[datetime, datetime | None]:
        return now + self.lower, (now + self.upper if self.upper is not None else None)

    def contains(self, due_date: datetime | None, now: datetime) -> bool:
        if due_date is None:
            return False
        lower, upper = self.bounds(now)
        return due_date > lower and (upper is None or due_date <= upper)


def build_tiers(*, imminent_hours: int = 24, upcoming_days: int = 7) -> Dict[str, ReminderTier]:
    imminent_edge = timedelta(hours=imminent_hours)
    upcoming_edge = timedelta(days=upcoming_days)
    return {
        TIER_IMMINENT: ReminderTier(TIER_IMMINENT, timedelta(0), imminent_edge),
        TIER_UPCOMING: ReminderTier(TIER_UPCOMING, imminent_edge, upcoming_edge),
        TIER_LONG_RANGE: ReminderTier(TIER_LONG_RANGE, upcoming_edge, None),
    }


@dataclass
class SweepReport:
    job: str
    tenant_id: str
    matched: int = 0
    digests: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    closed: int = 0
    skipped_reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    def counters(self) -> Dict[str, int]:
        return {
            "matched": self.matched,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "closed": self.closed,
        }


class ReminderService:
    """Bodies of the scheduled sweeps: task digests per tier, deadline reminders and force close."""

    def __init__(
        self,
        repository: ProcurementRepository,
        sender: NotificationSender,
        *,
        clock: Callable[[], datetime] = utc_now,
        tiers: Dict[str, ReminderTier] | None = None,
        deadline_lookback: timedelta = timedelta(days=7),
        deadline_lookahead: timedelta = timedelta(hours=24),
    ) -> None:
        self.repository = repository
        self.sender = sender
        self.clock = clock
        self.tiers = tiers or build_tiers()
        self.deadline_lookback = deadline_lookback
        self.deadline_lookahead = deadline_lookahead

    async def _require_sender(self, tenant_id: str) -> None:
        if not await self.sender.has_credential(tenant_id):
            raise ConfigurationMissingError(details=f"no notification sender for tenant {tenant_id}")

    async def _sender_ready(self, report: SweepReport) -> bool:
        try:
            await self._require_sender(report.tenant_id)
        except ConfigurationMissingError as exc:
            report.skipped_reason = exc.code
            logger.warning(
                "reminder_sender_missing",
                extra={"job": report.job, "tenant_id": report.tenant_id, "reason": exc.details},
            )
            return False
        return True

    async def _deliver(self, report: SweepReport, message: OutboundMessage) -> None:
        try:
            await self.sender.send(report.tenant_id, message)
            report.sent += 1
        except DeliveryError as exc:
            report.failed += 1
            logger.warning(
                "reminder_delivery_failed",
                extra={
                    "job": report.job,
                    "tenant_id": report.tenant_id,
                    "recipient": message.recipient,
                    "reason": exc.details or exc.code,
                },
            )
        except Exception:  # noqa: BLE001
            report.failed += 1
            logger.warning(
                "reminder_delivery_failed",
                extra={"job": report.job, "tenant_id": report.tenant_id, "recipient": message.recipient},
                exc_info=True,
            )

    def _finish(self, report: SweepReport) -> SweepReport:
        logger.info("reminder_sweep_completed", extra=report.to_dict())
        return report

    async def sweep_tier(self, tenant_id: str, tier_name: str) -> SweepReport:
        tier = self.tiers[tier_name]
        report = SweepReport(job=tier.name, tenant_id=tenant_id)
        if not await self._sender_ready(report):
            return self._finish(report)

        now = self.clock()
        tenders = await self.repository.find_tenders(
            tenant_id,
            status=TENDER_ACTIVE,
            predicate=lambda tender: tender.deadline is None or tender.deadline >= now,
        )
        tenders_by_id = {tender.id: tender for tender in tenders}
        if not tenders_by_id:
            return self._finish(report)

        tasks = await self.repository.find_tasks(
            tenant_id,
            tender_id=list(tenders_by_id),
            status=TASK_PENDING,
            predicate=lambda task: tier.contains(task.due_date, now),
        )
        report.matched = len(tasks)
        if not tasks:
            return self._finish(report)

        user_ids = {task.assignee_id for task in tasks} | {tender.created_by for tender in tenders}
        users = await self.repository.find_users(tenant_id, user_ids)

        groups: Dict[Tuple[str, str], List[TenderTask]] = {}
        recipients: Dict[Tuple[str, str], User] = {}
        for task in tasks:
            assignee = users.get(task.assignee_id)
            if assignee is None or not assignee.email:
                report.skipped += 1
                continue
            key = (assignee.email.lower(), task.tender_id)
            groups.setdefault(key, []).append(task)
            recipients.setdefault(key, assignee)

        for key, grouped in groups.items():
            tender = tenders_by_id[key[1]]
            creator = users.get(tender.created_by)
            entries = [(task, tender) for task in sorted(grouped, key=lambda task: (task.due_date, task.title))]
            message = compose_task_digest(
                recipients[key],
                entries,
                sender_name=creator.display_name("Tender Creator") if creator else None,
            )
            report.digests += 1
            await self._deliver(report, message)
        return self._finish(report)

    async def sweep_imminent(self, tenant_id: str) -> SweepReport:
        return await self.sweep_tier(tenant_id, TIER_IMMINENT)

    async def sweep_upcoming(self, tenant_id: str) -> SweepReport:
        return await self.sweep_tier(tenant_id, TIER_UPCOMING)

    async def sweep_long_range(self, tenant_id: str) -> SweepReport:
        return await self.sweep_tier(tenant_id, TIER_LONG_RANGE)

    async def send_deadline_reminders(self, tenant_id: str) -> SweepReport:
        report = SweepReport(job=JOB_DEADLINE, tenant_id=tenant_id)
        if not await self._sender_ready(report):
            return self._finish(report)

        now = self.clock()
        earliest = now - self.deadline_lookback
        latest = now + self.deadline_lookahead
        tenders = await self.repository.find_tenders(
            tenant_id,
            status=TENDER_ACTIVE,
            predicate=lambda tender: tender.deadline is not None and earliest <= tender.deadline <= latest,
        )
        report.matched = len(tenders)
        creators = await self.repository.find_users(tenant_id, {tender.created_by for tender in tenders})
        for tender in tenders:
            creator = creators.get(tender.created_by)
            if creator is None or not creator.email:
                report.skipped += 1
                continue
            report.digests += 1
            await self._deliver(report, compose_deadline_reminder(tender, creator))
        return self._finish(report)

    async def force_close(self, tenant_id: str) -> SweepReport:
        report = SweepReport(job=JOB_FORCE_CLOSE, tenant_id=tenant_id)
        now = self.clock()
        tenders = await self.repository.find_tenders(
            tenant_id, status=TENDER_ACTIVE, predicate=lambda tender: is_stale(tender, now)
        )
        rfqs = await self.repository.find_rfqs(tenant_id, status=RFQ_ACTIVE, predicate=lambda rfq: is_stale(rfq, now))
        report.matched = len(tenders) + len(rfqs)
        for tender in tenders:
            await self.repository.save_tender(tenant_id, heal(tender, now))
            report.closed += 1
        for rfq in rfqs:
            await self.repository.save_rfq(tenant_id, heal(rfq, now))
            report.closed += 1
        return self._finish(report)

    async def run_daily(self, tenant_id: str) -> List[SweepReport]:
        return [
            await self.sweep_long_range(tenant_id),
            await self.send_deadline_reminders(tenant_id),
            await self.force_close(tenant_id),
        ]

    async def run_job(self, job: str, tenant_id: str) -> List[SweepReport]:
        if job in self.tiers:
            return [await self.sweep_tier(tenant_id, job)]
        if job == JOB_DEADLINE:
            return [await self.send_deadline_reminders(tenant_id)]
        if job == JOB_FORCE_CLOSE:
            return [await self.force_close(tenant_id)]
        if job == JOB_DAILY:
            return await self.run_daily(tenant_id)
        raise KeyError(job)

