from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping

from backoffice.application.activity import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_RESOLVE,
    ACTION_UPDATE,
    ENTITY_RFQ,
    record_activity,
)
from backoffice.application.task_service import parse_optional_timestamp
from backoffice.core.event_bus import EventBus, RfqCreated, RfqUpdated
from backoffice.domain.authorization import AuthorizationGuard
from backoffice.domain.contracts import ProcurementRepository, RfqInput
from backoffice.domain.lifecycle import ensure_resolvable, heal
from backoffice.domain.models import RFQ_ACTIVE, RFQ_SENT, RFQ_STATUSES, Principal, Rfq, RfqAssignment, utc_now
from backoffice.errors import InvalidAssigneeError, NotFoundError, ValidationError


logger = logging.getLogger("backoffice.rfqs")

_ITEM_KEYS = {
    "description": "description",
    "quantity": "quantity",
    "part_number": "part_number",
    "partNumber": "part_number",
    "serial_number": "serial_number",
    "serialNumber": "serial_number",
}


@dataclass(frozen=True)
class RfqView:
    rfq: Rfq
    assignments: List[RfqAssignment]

    @property
    def assignee_ids(self) -> List[str]:
        return [row.assignee_id for row in self.assignments]

    def to_dict(self) -> dict:
        payload = self.rfq.to_dict()
        payload["assignments"] = [row.to_dict() for row in self.assignments]
        return payload


def normalize_items(items: Any) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        raise ValidationError(message_key="rfq_fields_required", details="items must be a list")
    normalized: List[Dict[str, Any]] = []
    for raw in items:
        if not isinstance(raw, Mapping):
            continue
        item = {target: raw[source] for source, target in _ITEM_KEYS.items() if raw.get(source) is not None}
        if not str(item.get("description") or "").strip():
            continue
        if "quantity" in item:
            try:
                item["quantity"] = float(item["quantity"])
            except (TypeError, ValueError) as exc:
                raise ValidationError(details=f"quantity {item['quantity']!r} is not a number") from exc
        normalized.append(item)
    return normalized


def _dedupe(ids: Iterable[Any]) -> List[str]:
    seen: List[str] = []
    for value in ids:
        user_id = str(value or "").strip()
        if user_id and user_id not in seen:
            seen.append(user_id)
    return seen


class RfqService:
    def __init__(
        self,
        repository: ProcurementRepository,
        *,
        guard: AuthorizationGuard | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.guard = guard or AuthorizationGuard()
        self.event_bus = event_bus or EventBus()
        self.clock = clock

    async def _heal(self, tenant_id: str, rfq: Rfq, now: datetime) -> Rfq:
        healed = heal(rfq, now)
        if healed is not rfq:
            await self.repository.save_rfq(tenant_id, healed)
            logger.info(
                "rfq_status_self_healed",
                extra={"tenant_id": tenant_id, "rfq_id": rfq.id, "from_status": rfq.status, "to_status": healed.status},
            )
        return healed

    async def _load(self, tenant_id: str, rfq_id: str) -> Rfq:
        rfq = await self.repository.get_rfq(tenant_id, rfq_id)
        if rfq is None:
            raise NotFoundError(message_key="rfq_not_found", details=f"rfq {rfq_id}")
        return rfq

    async def _validate_assignees(self, tenant_id: str, assignee_ids: List[str]) -> None:
        users = await self.repository.find_users(tenant_id, assignee_ids)
        missing = [user_id for user_id in assignee_ids if user_id not in users or not users[user_id].is_active]
        if missing:
            raise InvalidAssigneeError(details=f"unknown assignees: {', '.join(missing)}")

    async def list_rfqs(
        self,
        tenant_id: str,
        actor: Principal,
        *,
        status: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> List[Rfq]:
        if status is not None and status not in RFQ_STATUSES:
            raise ValidationError(code="status_invalid", message_key="status_invalid", details=f"rfq status {status!r}")
        now = self.clock()
        rfqs = [await self._heal(tenant_id, rfq, now) for rfq in await self.repository.find_rfqs(tenant_id)]
        if not self.guard.is_elevated(actor):
            assigned = await self.repository.find_assignments(tenant_id, assignee_id=actor.user_id)
            assigned_ids = {row.rfq_id for row in assigned}
            rfqs = [rfq for rfq in rfqs if rfq.created_by == actor.user_id or rfq.id in assigned_ids]
        if status is not None:
            rfqs = [rfq for rfq in rfqs if rfq.status == status]
        start = max(0, int(offset or 0))
        end = start + int(limit) if limit is not None else None
        return rfqs[start:end]

    async def get_rfq(self, tenant_id: str, rfq_id: str, actor: Principal) -> RfqView:
        rfq = await self._load(tenant_id, rfq_id)
        assignments = await self.repository.find_assignments(tenant_id, rfq_id=rfq.id)
        self.guard.require_view(rfq, actor, assignments)
        rfq = await self._heal(tenant_id, rfq, self.clock())
        return RfqView(rfq=rfq, assignments=assignments)

    async def create_rfq(self, tenant_id: str, data: RfqInput, actor: Principal) -> RfqView:
        subject = (data.subject or "").strip()
        sender_address = (data.sender_address or "").strip()
        items = normalize_items(data.items)
        if not subject or not sender_address or data.open_date is None or data.close_date is None or not items:
            raise ValidationError(message_key="rfq_fields_required", details="subject, sender, dates and items are required")
        if data.close_date < data.open_date:
            raise ValidationError(details="close_date precedes open_date")
        assignee_ids = _dedupe(data.assignee_ids)
        await self._validate_assignees(tenant_id, assignee_ids)

        now = self.clock()
        rfq = Rfq(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            subject=subject,
            sender_address=sender_address,
            items=items,
            open_date=data.open_date,
            close_date=data.close_date,
            status=RFQ_ACTIVE,
            created_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        await self.repository.save_rfq(tenant_id, rfq)
        await self.repository.replace_assignments(tenant_id, rfq.id, assignee_ids)
        logger.info(
            "rfq_created",
            extra={"tenant_id": tenant_id, "rfq_id": rfq.id, "items": len(items), "assignees": len(assignee_ids)},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_CREATE,
            ENTITY_RFQ,
            rfq.id,
            description=f"Created RFQ: {rfq.subject}",
            new={**rfq.to_dict(), "assignee_ids": assignee_ids},
            now=now,
        )
        await self.event_bus.publish(
            RfqCreated(tenant_id=tenant_id, rfq_id=rfq.id, subject=rfq.subject, created_by=actor.user_id, assignee_ids=tuple(assignee_ids))
        )
        return RfqView(rfq=rfq, assignments=await self.repository.find_assignments(tenant_id, rfq_id=rfq.id))

    async def update_rfq(self, tenant_id: str, rfq_id: str, fields: Mapping[str, Any], actor: Principal) -> RfqView:
        rfq = await self._load(tenant_id, rfq_id)
        self.guard.require_mutate(rfq, actor)
        now = self.clock()

        changes: Dict[str, Any] = {}
        for name in ("subject", "sender_address"):
            if fields.get(name):
                changes[name] = str(fields[name]).strip()
        if fields.get("items") is not None:
            items = normalize_items(fields["items"])
            if not items:
                raise ValidationError(message_key="rfq_fields_required", details="at least one item is required")
            changes["items"] = items
        for name in ("open_date", "close_date"):
            if fields.get(name):
                changes[name] = parse_optional_timestamp(fields[name], name)
        status = fields.get("status")
        if status:
            if status not in RFQ_STATUSES:
                raise ValidationError(code="status_invalid", message_key="status_invalid", details=f"rfq status {status!r}")
            if status == RFQ_SENT:
                ensure_resolvable(replace(rfq, **changes), now)
            changes["status"] = status

        assignee_ids = None
        if fields.get("assignee_ids") is not None:
            assignee_ids = _dedupe(fields["assignee_ids"])
            await self._validate_assignees(tenant_id, assignee_ids)

        updated = heal(replace(rfq, updated_at=now, **changes), now)
        if updated.close_date < updated.open_date:
            raise ValidationError(details="close_date precedes open_date")
        await self.repository.save_rfq(tenant_id, updated)
        if assignee_ids is not None:
            added, removed = await self.repository.replace_assignments(tenant_id, rfq.id, assignee_ids)
            logger.info(
                "rfq_assignments_synced",
                extra={"tenant_id": tenant_id, "rfq_id": rfq.id, "added": added, "removed": removed},
            )
        assignments = await self.repository.find_assignments(tenant_id, rfq_id=rfq.id)
        logger.info("rfq_updated", extra={"tenant_id": tenant_id, "rfq_id": rfq.id, "fields": sorted(changes)})
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_UPDATE,
            ENTITY_RFQ,
            rfq.id,
            description=f"Updated RFQ: {updated.subject}",
            previous=rfq.to_dict(),
            new={**updated.to_dict(), "assignee_ids": [row.assignee_id for row in assignments]},
            now=now,
        )
        await self.event_bus.publish(
            RfqUpdated(
                tenant_id=tenant_id,
                rfq_id=rfq.id,
                subject=updated.subject,
                updated_by=actor.user_id,
                assignee_ids=tuple(row.assignee_id for row in assignments),
            )
        )
        return RfqView(rfq=updated, assignments=assignments)

    async def resolve_rfq(self, tenant_id: str, rfq_id: str, resolved: bool, actor: Principal) -> Rfq:
        rfq = await self._load(tenant_id, rfq_id)
        self.guard.require_mutate(rfq, actor)
        now = self.clock()
        if resolved:
            ensure_resolvable(rfq, now)
        target = RFQ_SENT if resolved else RFQ_ACTIVE
        if rfq.status == target:
            return rfq
        updated = replace(rfq, status=target, updated_at=now)
        await self.repository.save_rfq(tenant_id, updated)
        logger.info("rfq_resolution_changed", extra={"tenant_id": tenant_id, "rfq_id": rfq.id, "status": target})
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_RESOLVE,
            ENTITY_RFQ,
            rfq.id,
            description=f"RFQ {rfq.subject} marked {target}",
            previous={"status": rfq.status},
            new={"status": target},
            now=now,
        )
        return updated

    async def delete_rfq(self, tenant_id: str, rfq_id: str, actor: Principal) -> Rfq:
        rfq = await self._load(tenant_id, rfq_id)
        self.guard.require_mutate(rfq, actor)
        await self.repository.delete_rfq(tenant_id, rfq.id)
        logger.info("rfq_deleted", extra={"tenant_id": tenant_id, "rfq_id": rfq.id})
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_DELETE,
            ENTITY_RFQ,
            rfq.id,
            description=f"Deleted RFQ: {rfq.subject}",
            previous=rfq.to_dict(),
            now=self.clock(),
        )
        return rfq
