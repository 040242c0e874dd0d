from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from backoffice.application.notifications import NotificationHandlers
from backoffice.application.reminder_service import ReminderService, build_tiers
from backoffice.application.rfq_service import RfqService
from backoffice.application.task_service import DEFAULT_MAX_FILE_BYTES, TaskAssignmentEngine
from backoffice.application.tender_service import TenderService
from backoffice.core.event_bus import EventBus
from backoffice.domain.authorization import AuthorizationGuard
from backoffice.domain.contracts import FileStore, NotificationSender, ProcurementRepository
from backoffice.domain.models import utc_now
from backoffice.infrastructure.repositories import SqlProcurementRepository


@dataclass(frozen=True)
class Services:
    repository: ProcurementRepository
    guard: AuthorizationGuard
    event_bus: EventBus
    tasks: TaskAssignmentEngine
    tenders: TenderService
    rfqs: RfqService
    reminders: ReminderService


def _positive(config: Mapping[str, Any], key: str, default: int) -> int:
    try:
        value = int(config.get(key, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def build_reminder_service(
    config: Mapping[str, Any],
    repository: ProcurementRepository,
    sender: NotificationSender,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> ReminderService:
    return ReminderService(
        repository,
        sender,
        clock=clock,
        tiers=build_tiers(
            imminent_hours=_positive(config, "REMINDER_IMMINENT_WINDOW_HOURS", 24),
            upcoming_days=_positive(config, "REMINDER_UPCOMING_WINDOW_DAYS", 7),
        ),
        deadline_lookback=timedelta(days=_positive(config, "DEADLINE_REMINDER_LOOKBACK_DAYS", 7)),
        deadline_lookahead=timedelta(hours=_positive(config, "DEADLINE_REMINDER_LOOKAHEAD_HOURS", 24)),
    )


def build_services(
    config: Mapping[str, Any],
    *,
    sender: NotificationSender,
    file_store: FileStore,
    db=None,
    repository: ProcurementRepository | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Services:
    if repository is None:
        repository = SqlProcurementRepository(db)
    guard = AuthorizationGuard(config.get("ELEVATED_ROLES"))
    event_bus = EventBus()
    NotificationHandlers(repository, sender).register(event_bus)
    tasks = TaskAssignmentEngine(
        repository,
        file_store=file_store,
        guard=guard,
        event_bus=event_bus,
        clock=clock,
        max_file_bytes=_positive(config, "TASK_FILE_MAX_BYTES", DEFAULT_MAX_FILE_BYTES),
    )
    return Services(
        repository=repository,
        guard=guard,
        event_bus=event_bus,
        tasks=tasks,
        tenders=TenderService(repository, task_engine=tasks, guard=guard, event_bus=event_bus, clock=clock),
        rfqs=RfqService(repository, guard=guard, event_bus=event_bus, clock=clock),
        reminders=build_reminder_service(config, repository, sender, clock=clock),
    )
