from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from backoffice.domain.contracts import RfqPredicate, TaskPredicate, TenderPredicate
from backoffice.domain.models import (
    ActivityEntry,
    Rfq,
    RfqAssignment,
    Tender,
    TenderTask,
    User,
    as_utc,
    parse_timestamp,
    utc_now,
)
from backoffice.infrastructure.repositories.base import BaseRepository, TenantScopeRequiredError, require_tenant


_TENDER_COLUMNS = ("id", "tenant_id", "title", "description", "deadline", "status", "created_by", "created_at", "updated_at")
_TASK_COLUMNS = (
    "id",
    "tenant_id",
    "tender_id",
    "title",
    "description",
    "assignee_id",
    "status",
    "file_name",
    "file_path",
    "file_type",
    "due_date",
    "submitted_at",
    "created_at",
    "updated_at",
)
_RFQ_COLUMNS = (
    "id",
    "tenant_id",
    "subject",
    "sender_address",
    "items_json",
    "open_date",
    "close_date",
    "status",
    "created_by",
    "created_at",
    "updated_at",
)
_ACTIVITY_COLUMNS = (
    "id",
    "tenant_id",
    "user_id",
    "action",
    "entity_type",
    "entity_id",
    "description",
    "previous_values",
    "new_values",
    "ip_address",
    "user_agent",
    "created_at",
)


def to_db_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _upsert_sql(table: str, columns: Sequence[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{column} = excluded.{column}" for column in columns if column not in ("id", "tenant_id"))
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT (id) DO UPDATE SET {updates} WHERE {table}.tenant_id = excluded.tenant_id"
    )


def _status_values(status: str | Sequence[str] | None) -> Tuple[str, ...]:
    if status is None:
        return ()
    if isinstance(status, str):
        return (status,)
    return tuple(status)


def _id_values(value: str | Iterable[str] | None) -> Tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _tender_from_row(row: Dict[str, Any]) -> Tender:
    return Tender(
        id=row["id"],
        tenant_id=row["tenant_id"],
        title=row["title"],
        description=row.get("description"),
        deadline=parse_timestamp(row["deadline"]),
        status=row["status"],
        created_by=row["created_by"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _task_from_row(row: Dict[str, Any]) -> TenderTask:
    return TenderTask(
        id=row["id"],
        tenant_id=row["tenant_id"],
        tender_id=row["tender_id"],
        title=row["title"],
        description=row.get("description"),
        assignee_id=row["assignee_id"],
        status=row["status"],
        file_name=row.get("file_name"),
        file_path=row.get("file_path"),
        file_type=row.get("file_type"),
        due_date=parse_timestamp(row.get("due_date")),
        submitted_at=parse_timestamp(row.get("submitted_at")),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _rfq_from_row(row: Dict[str, Any]) -> Rfq:
    return Rfq(
        id=row["id"],
        tenant_id=row["tenant_id"],
        subject=row["subject"],
        sender_address=row["sender_address"],
        items=json.loads(row.get("items_json") or "[]"),
        open_date=parse_timestamp(row["open_date"]),
        close_date=parse_timestamp(row["close_date"]),
        status=row["status"],
        created_by=row["created_by"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _assignment_from_row(row: Dict[str, Any]) -> RfqAssignment:
    return RfqAssignment(
        id=row["id"],
        tenant_id=row["tenant_id"],
        rfq_id=row["rfq_id"],
        assignee_id=row["assignee_id"],
        assigned_at=parse_timestamp(row["assigned_at"]),
    )


def _user_from_row(row: Dict[str, Any]) -> User:
    return User(
        id=row["id"],
        tenant_id=row["tenant_id"],
        email=row.get("email"),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        role=row.get("role") or "viewer",
        is_active=bool(row.get("is_active", 1)),
    )


def _json_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=True, default=str)


def _activity_from_row(row: Dict[str, Any]) -> ActivityEntry:
    return ActivityEntry(
        id=row["id"],
        tenant_id=row["tenant_id"],
        user_id=row["user_id"],
        action=row["action"],
        entity_type=row["entity_type"],
        entity_id=row.get("entity_id"),
        description=row.get("description"),
        previous_values=json.loads(row["previous_values"]) if row.get("previous_values") else None,
        new_values=json.loads(row["new_values"]) if row.get("new_values") else None,
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
        created_at=parse_timestamp(row["created_at"]),
    )


def _ensure_owned(scope: str, entity) -> None:
    if entity.tenant_id != scope:
        raise TenantScopeRequiredError(f"{type(entity).__name__} {entity.id} does not belong to tenant {scope}")


class SqlProcurementRepository(BaseRepository):
    """Tenant-scoped store for tenders, tasks, RFQs and users on sqlite or Postgres."""

    # tenders

    async def find_tenders(
        self,
        tenant_id: str,
        *,
        status: str | Sequence[str] | None = None,
        predicate: TenderPredicate | None = None,
    ) -> List[Tender]:
        scope = require_tenant(tenant_id)
        clauses = [self.build_tenant_clause()]
        params: List[Any] = [scope]
        statuses = _status_values(status)
        if statuses:
            clause, values = self.build_in_clause("status", statuses)
            clauses.append(clause)
            params.extend(values)
        sql = f"SELECT * FROM tenders WHERE {' AND '.join(clauses)} ORDER BY created_at DESC, id"
        rows = await self.run(self.fetch_all, sql, params)
        tenders = [_tender_from_row(row) for row in rows]
        if predicate is not None:
            tenders = [tender for tender in tenders if predicate(tender)]
        return tenders

    async def get_tender(self, tenant_id: str, tender_id: str) -> Tender | None:
        scope = require_tenant(tenant_id)
        row = await self.run(self.fetch_one, "SELECT * FROM tenders WHERE tenant_id = ? AND id = ?", (scope, tender_id))
        return _tender_from_row(row) if row else None

    async def save_tender(self, tenant_id: str, tender: Tender) -> Tender:
        scope = require_tenant(tenant_id)
        _ensure_owned(scope, tender)
        values = (
            tender.id,
            scope,
            tender.title,
            tender.description,
            to_db_timestamp(tender.deadline),
            tender.status,
            tender.created_by,
            to_db_timestamp(tender.created_at),
            to_db_timestamp(tender.updated_at),
        )
        await self.run(self.write, [(_upsert_sql("tenders", _TENDER_COLUMNS), values)])
        return tender

    async def delete_tender(self, tenant_id: str, tender_id: str) -> None:
        scope = require_tenant(tenant_id)
        await self.run(
            self.write,
            [
                ("DELETE FROM tender_tasks WHERE tenant_id = ? AND tender_id = ?", (scope, tender_id)),
                ("DELETE FROM tenders WHERE tenant_id = ? AND id = ?", (scope, tender_id)),
            ],
        )

    # tasks

    async def find_tasks(
        self,
        tenant_id: str,
        *,
        tender_id: str | Iterable[str] | None = None,
        assignee_id: str | None = None,
        status: str | Sequence[str] | None = None,
        predicate: TaskPredicate | None = None,
    ) -> List[TenderTask]:
        scope = require_tenant(tenant_id)
        clauses = [self.build_tenant_clause()]
        params: List[Any] = [scope]
        tender_ids = _id_values(tender_id)
        if tender_ids is not None:
            clause, values = self.build_in_clause("tender_id", tender_ids)
            clauses.append(clause)
            params.extend(values)
        if assignee_id is not None:
            clauses.append("assignee_id = ?")
            params.append(assignee_id)
        statuses = _status_values(status)
        if statuses:
            clause, values = self.build_in_clause("status", statuses)
            clauses.append(clause)
            params.extend(values)
        sql = f"SELECT * FROM tender_tasks WHERE {' AND '.join(clauses)} ORDER BY created_at, id"
        rows = await self.run(self.fetch_all, sql, params)
        tasks = [_task_from_row(row) for row in rows]
        if predicate is not None:
            tasks = [task for task in tasks if predicate(task)]
        return tasks

    async def get_task(self, tenant_id: str, task_id: str) -> TenderTask | None:
        scope = require_tenant(tenant_id)
        row = await self.run(self.fetch_one, "SELECT * FROM tender_tasks WHERE tenant_id = ? AND id = ?", (scope, task_id))
        return _task_from_row(row) if row else None

    async def save_task(self, tenant_id: str, task: TenderTask) -> TenderTask:
        scope = require_tenant(tenant_id)
        _ensure_owned(scope, task)
        values = (
            task.id,
            scope,
            task.tender_id,
            task.title,
            task.description,
            task.assignee_id,
            task.status,
            task.file_name,
            task.file_path,
            task.file_type,
            to_db_timestamp(task.due_date),
            to_db_timestamp(task.submitted_at),
            to_db_timestamp(task.created_at),
            to_db_timestamp(task.updated_at),
        )
        await self.run(self.write, [(_upsert_sql("tender_tasks", _TASK_COLUMNS), values)])
        return task

    async def delete_task(self, tenant_id: str, task_id: str) -> None:
        scope = require_tenant(tenant_id)
        await self.run(self.write, [("DELETE FROM tender_tasks WHERE tenant_id = ? AND id = ?", (scope, task_id))])

    # rfqs

    async def find_rfqs(
        self,
        tenant_id: str,
        *,
        status: str | Sequence[str] | None = None,
        predicate: RfqPredicate | None = None,
    ) -> List[Rfq]:
        scope = require_tenant(tenant_id)
        clauses = [self.build_tenant_clause()]
        params: List[Any] = [scope]
        statuses = _status_values(status)
        if statuses:
            clause, values = self.build_in_clause("status", statuses)
            clauses.append(clause)
            params.extend(values)
        sql = f"SELECT * FROM rfqs WHERE {' AND '.join(clauses)} ORDER BY created_at DESC, id"
        rows = await self.run(self.fetch_all, sql, params)
        rfqs = [_rfq_from_row(row) for row in rows]
        if predicate is not None:
            rfqs = [rfq for rfq in rfqs if predicate(rfq)]
        return rfqs

    async def get_rfq(self, tenant_id: str, rfq_id: str) -> Rfq | None:
        scope = require_tenant(tenant_id)
        row = await self.run(self.fetch_one, "SELECT * FROM rfqs WHERE tenant_id = ? AND id = ?", (scope, rfq_id))
        return _rfq_from_row(row) if row else None

    async def save_rfq(self, tenant_id: str, rfq: Rfq) -> Rfq:
        scope = require_tenant(tenant_id)
        _ensure_owned(scope, rfq)
        values = (
            rfq.id,
            scope,
            rfq.subject,
            rfq.sender_address,
            json.dumps(rfq.items, ensure_ascii=True),
            to_db_timestamp(rfq.open_date),
            to_db_timestamp(rfq.close_date),
            rfq.status,
            rfq.created_by,
            to_db_timestamp(rfq.created_at),
            to_db_timestamp(rfq.updated_at),
        )
        await self.run(self.write, [(_upsert_sql("rfqs", _RFQ_COLUMNS), values)])
        return rfq

    async def delete_rfq(self, tenant_id: str, rfq_id: str) -> None:
        scope = require_tenant(tenant_id)
        await self.run(
            self.write,
            [
                ("DELETE FROM rfq_assignments WHERE tenant_id = ? AND rfq_id = ?", (scope, rfq_id)),
                ("DELETE FROM rfqs WHERE tenant_id = ? AND id = ?", (scope, rfq_id)),
            ],
        )

    async def find_assignments(
        self,
        tenant_id: str,
        *,
        rfq_id: str | Iterable[str] | None = None,
        assignee_id: str | None = None,
    ) -> List[RfqAssignment]:
        scope = require_tenant(tenant_id)
        clauses = [self.build_tenant_clause()]
        params: List[Any] = [scope]
        rfq_ids = _id_values(rfq_id)
        if rfq_ids is not None:
            clause, values = self.build_in_clause("rfq_id", rfq_ids)
            clauses.append(clause)
            params.extend(values)
        if assignee_id is not None:
            clauses.append("assignee_id = ?")
            params.append(assignee_id)
        sql = f"SELECT * FROM rfq_assignments WHERE {' AND '.join(clauses)} ORDER BY assigned_at, id"
        rows = await self.run(self.fetch_all, sql, params)
        return [_assignment_from_row(row) for row in rows]

    async def replace_assignments(
        self, tenant_id: str, rfq_id: str, assignee_ids: Iterable[str]
    ) -> Tuple[List[str], List[str]]:
        scope = require_tenant(tenant_id)
        current = [row.assignee_id for row in await self.find_assignments(scope, rfq_id=rfq_id)]
        wanted: List[str] = []
        for assignee_id in assignee_ids:
            if assignee_id and assignee_id not in wanted:
                wanted.append(assignee_id)
        added = [assignee_id for assignee_id in wanted if assignee_id not in current]
        removed = [assignee_id for assignee_id in current if assignee_id not in wanted]

        statements: List[tuple[str, Iterable[Any]]] = []
        for assignee_id in removed:
            statements.append(
                (
                    "DELETE FROM rfq_assignments WHERE tenant_id = ? AND rfq_id = ? AND assignee_id = ?",
                    (scope, rfq_id, assignee_id),
                )
            )
        assigned_at = to_db_timestamp(utc_now())
        for assignee_id in added:
            statements.append(
                (
                    "INSERT INTO rfq_assignments (id, tenant_id, rfq_id, assignee_id, assigned_at) VALUES (?, ?, ?, ?, ?)",
                    (uuid.uuid4().hex, scope, rfq_id, assignee_id, assigned_at),
                )
            )
        if statements:
            await self.run(self.write, statements)
        return added, removed

    # users

    async def get_user(self, tenant_id: str, user_id: str) -> User | None:
        scope = require_tenant(tenant_id)
        row = await self.run(self.fetch_one, "SELECT * FROM users WHERE tenant_id = ? AND id = ?", (scope, user_id))
        return _user_from_row(row) if row else None

    async def find_users(self, tenant_id: str, user_ids: Iterable[str]) -> Dict[str, User]:
        scope = require_tenant(tenant_id)
        ids = tuple(dict.fromkeys(user_id for user_id in user_ids if user_id))
        if not ids:
            return {}
        clause, values = self.build_in_clause("id", ids)
        rows = await self.run(self.fetch_all, f"SELECT * FROM users WHERE tenant_id = ? AND {clause}", (scope, *values))
        return {row["id"]: _user_from_row(row) for row in rows}

    async def save_user(self, tenant_id: str, user: User) -> User:
        scope = require_tenant(tenant_id)
        _ensure_owned(scope, user)
        columns = ("id", "tenant_id", "email", "first_name", "last_name", "role", "is_active")
        values = (user.id, scope, user.email, user.first_name, user.last_name, user.role, 1 if user.is_active else 0)
        await self.run(self.write, [(_upsert_sql("users", columns), values)])
        return user

    # activity log

    async def record_activity(self, tenant_id: str, entry: ActivityEntry) -> ActivityEntry:
        scope = require_tenant(tenant_id)
        _ensure_owned(scope, entry)
        values = (
            entry.id,
            scope,
            entry.user_id,
            entry.action,
            entry.entity_type,
            entry.entity_id,
            entry.description,
            _json_or_none(entry.previous_values),
            _json_or_none(entry.new_values),
            entry.ip_address,
            entry.user_agent,
            to_db_timestamp(entry.created_at),
        )
        placeholders = ", ".join("?" for _ in _ACTIVITY_COLUMNS)
        await self.run(
            self.write,
            [(f"INSERT INTO activity_logs ({', '.join(_ACTIVITY_COLUMNS)}) VALUES ({placeholders})", values)],
        )
        return entry

    async def find_activity(
        self,
        tenant_id: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> List[ActivityEntry]:
        scope = require_tenant(tenant_id)
        clauses = [self.build_tenant_clause()]
        params: List[Any] = [scope]
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        sql = f"SELECT * FROM activity_logs WHERE {' AND '.join(clauses)} ORDER BY created_at DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))
        rows = await self.run(self.fetch_all, sql, params)
        return [_activity_from_row(row) for row in rows]
