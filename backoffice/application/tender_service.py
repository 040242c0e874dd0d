from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, List, Mapping

from backoffice.application.activity import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_RESOLVE,
    ACTION_UPDATE,
    ENTITY_TENDER,
    record_activity,
)
from backoffice.application.task_service import TaskAssignmentEngine, parse_optional_timestamp
from backoffice.core.event_bus import EventBus, TenderCreated
from backoffice.domain.authorization import AuthorizationGuard
from backoffice.domain.contracts import ProcurementRepository, TenderCreateInput
from backoffice.domain.lifecycle import ensure_resolvable, heal
from backoffice.domain.models import (
    TENDER_ACTIVE,
    TENDER_CLOSED,
    TENDER_STATUSES,
    Principal,
    Tender,
    TenderTask,
    utc_now,
)
from backoffice.errors import InvalidTransitionError, NotFoundError, ValidationError


logger = logging.getLogger("backoffice.tenders")


@dataclass(frozen=True)
class TenderView:
    tender: Tender
    tasks: List[TenderTask]

    def to_dict(self) -> dict:
        payload = self.tender.to_dict()
        payload["tasks"] = [task.to_dict() for task in self.tasks]
        return payload


def _validate_status(status: Any) -> str:
    value = str(status or "").strip().lower()
    if value not in TENDER_STATUSES:
        raise ValidationError(code="status_invalid", message_key="status_invalid", details=f"tender status {status!r}")
    return value


class TenderService:
    def __init__(
        self,
        repository: ProcurementRepository,
        *,
        task_engine: TaskAssignmentEngine,
        guard: AuthorizationGuard | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.task_engine = task_engine
        self.guard = guard or AuthorizationGuard()
        self.event_bus = event_bus or EventBus()
        self.clock = clock

    async def _heal(self, tenant_id: str, tender: Tender, now: datetime) -> Tender:
        healed = heal(tender, now)
        if healed is not tender:
            await self.repository.save_tender(tenant_id, healed)
            logger.info(
                "tender_status_self_healed",
                extra={"tenant_id": tenant_id, "tender_id": tender.id, "from_status": tender.status, "to_status": healed.status},
            )
        return healed

    async def _load(self, tenant_id: str, tender_id: str) -> Tender:
        tender = await self.repository.get_tender(tenant_id, tender_id)
        if tender is None:
            raise NotFoundError(message_key="tender_not_found", details=f"tender {tender_id}")
        return tender

    async def list_tenders(
        self,
        tenant_id: str,
        actor: Principal,
        *,
        status: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> List[Tender]:
        now = self.clock()
        if status is not None:
            status = _validate_status(status)
        tenders = [await self._heal(tenant_id, tender, now) for tender in await self.repository.find_tenders(tenant_id)]
        if not self.guard.is_elevated(actor):
            assigned = await self.repository.find_tasks(tenant_id, assignee_id=actor.user_id)
            assigned_tender_ids = {task.tender_id for task in assigned}
            tenders = [
                tender
                for tender in tenders
                if tender.created_by == actor.user_id or tender.id in assigned_tender_ids
            ]
        if status is not None:
            tenders = [tender for tender in tenders if tender.status == status]
        start = max(0, int(offset or 0))
        end = start + int(limit) if limit is not None else None
        return tenders[start:end]

    async def get_tender(self, tenant_id: str, tender_id: str, actor: Principal) -> TenderView:
        tender = await self._load(tenant_id, tender_id)
        tasks = await self.repository.find_tasks(tenant_id, tender_id=tender.id)
        self.guard.require_view(tender, actor, tasks)
        tender = await self._heal(tenant_id, tender, self.clock())
        return TenderView(tender=tender, tasks=self.guard.visible_tasks(tender, actor, tasks))

    async def create_tender(self, tenant_id: str, data: TenderCreateInput, actor: Principal) -> TenderView:
        title = (data.title or "").strip()
        if not title or data.deadline is None:
            raise ValidationError(message_key="tender_fields_required", details="title and deadline are required")
        status = _validate_status(data.status) if data.status else TENDER_ACTIVE
        now = self.clock()
        tender = Tender(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            title=title,
            description=(data.description or "").strip() or None,
            deadline=data.deadline,
            status=status,
            created_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        tasks = [self.task_engine.build_task(tenant_id, tender, task_input) for task_input in data.tasks]
        for task in tasks:
            await self.task_engine.validate_assignee(tenant_id, task.assignee_id)

        await self.repository.save_tender(tenant_id, tender)
        for task in tasks:
            await self.repository.save_task(tenant_id, task)
        logger.info(
            "tender_created",
            extra={"tenant_id": tenant_id, "tender_id": tender.id, "status": tender.status, "tasks": len(tasks)},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_CREATE,
            ENTITY_TENDER,
            tender.id,
            description=f"Created tender: {tender.title}",
            new=TenderView(tender=tender, tasks=tasks).to_dict(),
            now=now,
        )
        await self.event_bus.publish(
            TenderCreated(
                tenant_id=tenant_id,
                tender_id=tender.id,
                title=tender.title,
                created_by=actor.user_id,
                task_ids=tuple(task.id for task in tasks),
            )
        )
        return TenderView(tender=tender, tasks=tasks)

    async def update_tender(self, tenant_id: str, tender_id: str, fields: Mapping[str, Any], actor: Principal) -> Tender:
        tender = await self._load(tenant_id, tender_id)
        self.guard.require_mutate(tender, actor)
        now = self.clock()

        changes: dict[str, Any] = {}
        if "title" in fields:
            title = str(fields.get("title") or "").strip()
            if not title:
                raise ValidationError(message_key="tender_fields_required", details="title cannot be empty")
            changes["title"] = title
        if "description" in fields:
            changes["description"] = str(fields.get("description") or "").strip() or None
        if "deadline" in fields:
            deadline = parse_optional_timestamp(fields.get("deadline"), "deadline")
            if deadline is None:
                raise ValidationError(message_key="tender_fields_required", details="deadline cannot be cleared")
            changes["deadline"] = deadline

        candidate = replace(tender, **changes)
        if fields.get("status") is not None:
            status = _validate_status(fields.get("status"))
            if status == TENDER_CLOSED and tender.status != TENDER_CLOSED:
                ensure_resolvable(candidate, now)
            changes["status"] = status
        elif "deadline" in changes and changes["deadline"] > now:
            changes["status"] = TENDER_ACTIVE

        updated = heal(replace(tender, updated_at=now, **changes), now)
        await self.repository.save_tender(tenant_id, updated)
        logger.info(
            "tender_updated",
            extra={"tenant_id": tenant_id, "tender_id": tender.id, "fields": sorted(changes), "status": updated.status},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_UPDATE,
            ENTITY_TENDER,
            tender.id,
            description=f"Updated tender: {updated.title}",
            previous=tender.to_dict(),
            new=updated.to_dict(),
            now=now,
        )
        return updated

    async def resolve_tender(self, tenant_id: str, tender_id: str, resolved: bool, actor: Principal) -> Tender:
        tender = await self._load(tenant_id, tender_id)
        self.guard.require_mutate(tender, actor)
        now = self.clock()
        if resolved:
            ensure_resolvable(tender, now)
            if tender.status not in (TENDER_ACTIVE, TENDER_CLOSED):
                raise InvalidTransitionError(details=f"tender {tender.id} is {tender.status}")
            target = TENDER_CLOSED
        else:
            if tender.status not in (TENDER_ACTIVE, TENDER_CLOSED):
                raise InvalidTransitionError(details=f"tender {tender.id} is {tender.status}")
            target = TENDER_ACTIVE
        if tender.status == target:
            return tender
        updated = replace(tender, status=target, updated_at=now)
        await self.repository.save_tender(tenant_id, updated)
        logger.info(
            "tender_resolution_changed",
            extra={"tenant_id": tenant_id, "tender_id": tender.id, "resolved": bool(resolved), "status": target},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_RESOLVE,
            ENTITY_TENDER,
            tender.id,
            description=f"Tender {tender.title} marked {target}",
            previous={"status": tender.status},
            new={"status": target},
            now=now,
        )
        return updated

    async def delete_tender(self, tenant_id: str, tender_id: str, actor: Principal) -> None:
        tender = await self._load(tenant_id, tender_id)
        self.guard.require_mutate(tender, actor)
        tasks = await self.repository.find_tasks(tenant_id, tender_id=tender.id)
        for task in tasks:
            if task.file_path:
                await self.task_engine.discard_file(tenant_id, task.file_path)
        await self.repository.delete_tender(tenant_id, tender.id)
        logger.info("tender_deleted", extra={"tenant_id": tenant_id, "tender_id": tender.id, "tasks": len(tasks)})
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_DELETE,
            ENTITY_TENDER,
            tender.id,
            description=f"Deleted tender: {tender.title}",
            previous=TenderView(tender=tender, tasks=tasks).to_dict(),
            now=self.clock(),
        )
