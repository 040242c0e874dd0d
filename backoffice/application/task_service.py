from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping

from werkzeug.utils import secure_filename

from backoffice.application.activity import (
    ACTION_CLEAR_FILE,
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_SUBMIT,
    ACTION_UPDATE,
    ENTITY_TASK,
    record_activity,
)
from backoffice.core.event_bus import EventBus, TaskAssigned, TaskSubmitted
from backoffice.domain.authorization import AuthorizationGuard
from backoffice.domain.contracts import FileStore, ProcurementRepository, StoredFile, TaskInput
from backoffice.domain.models import (
    TASK_DELETED,
    TASK_PENDING,
    TASK_SUBMITTED,
    FileUpload,
    Principal,
    Tender,
    TenderTask,
    User,
    parse_timestamp,
    utc_now,
)
from backoffice.errors import InvalidAssigneeError, InvalidTransitionError, NotFoundError, ValidationError


logger = logging.getLogger("backoffice.tasks")

ALLOWED_FILE_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/zip",
    "application/x-zip-compressed",
}
DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024


def parse_optional_timestamp(value: Any, field_name: str) -> datetime | None:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            code="timestamp_invalid",
            message_key="timestamp_invalid",
            details=f"{field_name}: {value!r}",
        ) from exc


def task_storage_prefix(tender_id: str, task_id: str) -> str:
    return f"tender-{tender_id}-task-{task_id}"


class TaskAssignmentEngine:
    """Creates and edits tender tasks and drives the submitted-file transition."""

    def __init__(
        self,
        repository: ProcurementRepository,
        *,
        file_store: FileStore,
        guard: AuthorizationGuard | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> None:
        self.repository = repository
        self.file_store = file_store
        self.guard = guard or AuthorizationGuard()
        self.event_bus = event_bus or EventBus()
        self.clock = clock
        self.max_file_bytes = int(max_file_bytes)

    async def validate_assignee(self, tenant_id: str, assignee_id: str | None) -> User:
        user = await self.repository.get_user(tenant_id, assignee_id) if assignee_id else None
        if user is None or not user.is_active:
            raise InvalidAssigneeError(details=f"assignee {assignee_id!r} is not an active user of tenant {tenant_id}")
        return user

    async def _load_tender(self, tenant_id: str, tender_id: str) -> Tender:
        tender = await self.repository.get_tender(tenant_id, tender_id)
        if tender is None:
            raise NotFoundError(message_key="tender_not_found", details=f"tender {tender_id}")
        return tender

    async def _load_task(self, tenant_id: str, task_id: str) -> tuple[TenderTask, Tender]:
        task = await self.repository.get_task(tenant_id, task_id)
        if task is None:
            raise NotFoundError(message_key="task_not_found", details=f"task {task_id}")
        tender = await self._load_tender(tenant_id, task.tender_id)
        return task, tender

    async def discard_file(self, tenant_id: str, path: str | None) -> None:
        if not path:
            return
        try:
            await self.file_store.delete(tenant_id, path)
        except Exception:  # noqa: BLE001
            logger.warning("task_file_discard_failed", extra={"tenant_id": tenant_id, "file_path": path}, exc_info=True)

    async def _announce_assignment(self, tenant_id: str, task: TenderTask, tender: Tender, actor: Principal) -> None:
        await self.event_bus.publish(
            TaskAssigned(
                tenant_id=tenant_id,
                task_id=task.id,
                tender_id=tender.id,
                assignee_id=task.assignee_id,
                task_title=task.title,
                tender_title=tender.title,
                assigned_by=actor.user_id,
                due_date=task.due_date,
                tender_deadline=tender.deadline,
            )
        )

    def build_task(self, tenant_id: str, tender: Tender, task_input: TaskInput) -> TenderTask:
        title = (task_input.title or "").strip()
        if not title or not task_input.assignee_id:
            raise ValidationError(message_key="task_fields_required", details="title and assignee_id are required")
        now = self.clock()
        return TenderTask(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            tender_id=tender.id,
            title=title,
            description=(task_input.description or "").strip() or None,
            assignee_id=task_input.assignee_id,
            due_date=task_input.due_date,
            created_at=now,
            updated_at=now,
        )

    async def create_task(
        self,
        tenant_id: str,
        tender_id: str,
        task_input: TaskInput,
        actor: Principal,
        *,
        notify: bool = True,
    ) -> TenderTask:
        tender = await self._load_tender(tenant_id, tender_id)
        self.guard.require_mutate(tender, actor)
        task = self.build_task(tenant_id, tender, task_input)
        await self.validate_assignee(tenant_id, task.assignee_id)
        await self.repository.save_task(tenant_id, task)
        logger.info(
            "tender_task_created",
            extra={"tenant_id": tenant_id, "tender_id": tender.id, "task_id": task.id, "assignee_id": task.assignee_id},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_CREATE,
            ENTITY_TASK,
            task.id,
            description=f"Created task for tender: {tender.title}",
            new=task.to_dict(),
            now=task.created_at,
        )
        if notify:
            await self._announce_assignment(tenant_id, task, tender, actor)
        return task

    async def update_task(self, tenant_id: str, task_id: str, fields: Mapping[str, Any], actor: Principal) -> TenderTask:
        task, tender = await self._load_task(tenant_id, task_id)
        self.guard.require_mutate(tender, actor)

        changes: Dict[str, Any] = {}
        if "title" in fields:
            title = str(fields.get("title") or "").strip()
            if not title:
                raise ValidationError(message_key="task_fields_required", details="title cannot be empty")
            changes["title"] = title
        if "description" in fields:
            changes["description"] = str(fields.get("description") or "").strip() or None
        if "due_date" in fields:
            changes["due_date"] = parse_optional_timestamp(fields.get("due_date"), "due_date")
        assignee_changed = False
        if "assignee_id" in fields:
            assignee_id = str(fields.get("assignee_id") or "").strip()
            if assignee_id != task.assignee_id:
                await self.validate_assignee(tenant_id, assignee_id)
                changes["assignee_id"] = assignee_id
                assignee_changed = True

        if not changes:
            return task
        updated = replace(task, updated_at=self.clock(), **changes)
        await self.repository.save_task(tenant_id, updated)
        logger.info(
            "tender_task_updated",
            extra={"tenant_id": tenant_id, "task_id": task.id, "fields": sorted(changes)},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_UPDATE,
            ENTITY_TASK,
            task.id,
            description=f"Updated tender task: {updated.title}",
            previous=task.to_dict(),
            new=updated.to_dict(),
            now=updated.updated_at,
        )
        if assignee_changed:
            await self._announce_assignment(tenant_id, updated, tender, actor)
        return updated

    def _validate_upload(self, upload: FileUpload | None) -> FileUpload:
        if upload is None or not upload.data:
            raise ValidationError(code="file_required", message_key="file_required")
        if upload.content_type not in ALLOWED_FILE_TYPES:
            raise ValidationError(
                code="file_type_invalid",
                message_key="file_type_invalid",
                details=f"content type {upload.content_type!r} not allowed",
            )
        if upload.size > self.max_file_bytes:
            raise ValidationError(
                code="file_too_large",
                message_key="file_too_large",
                details=f"{upload.size} bytes exceeds {self.max_file_bytes}",
            )
        return upload

    async def submit_task_file(
        self, tenant_id: str, task_id: str, upload: FileUpload | None, actor: Principal
    ) -> TenderTask:
        task, tender = await self._load_task(tenant_id, task_id)
        self.guard.require_file_access(task, tender, actor)
        upload = self._validate_upload(upload)
        if task.status == TASK_DELETED:
            raise InvalidTransitionError(details=f"task {task.id} is deleted")

        now = self.clock()
        file_name = secure_filename(upload.filename) or "upload"
        path = f"{task_storage_prefix(tender.id, task.id)}/{now.strftime('%Y%m%d%H%M%S%f')}-{file_name}"
        stored_path = await self.file_store.put(tenant_id, path, upload.data, upload.content_type)

        submitted = replace(
            task,
            status=TASK_SUBMITTED,
            file_name=upload.filename,
            file_path=stored_path,
            file_type=upload.content_type,
            submitted_at=now,
            updated_at=now,
        )
        await self.repository.save_task(tenant_id, submitted)
        await self.discard_file(tenant_id, task.file_path)
        logger.info(
            "tender_task_submitted",
            extra={"tenant_id": tenant_id, "task_id": task.id, "file_path": stored_path, "size": upload.size},
        )
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_SUBMIT,
            ENTITY_TASK,
            task.id,
            description=f"Submitted file {upload.filename} for task: {task.title}",
            previous=task.to_dict(),
            new=submitted.to_dict(),
            now=now,
        )

        tender_tasks = await self.repository.find_tasks(tenant_id, tender_id=tender.id)
        recipients: List[str] = []
        for user_id in [row.assignee_id for row in tender_tasks] + [tender.created_by]:
            if user_id and user_id not in recipients:
                recipients.append(user_id)
        await self.event_bus.publish(
            TaskSubmitted(
                tenant_id=tenant_id,
                task_id=task.id,
                tender_id=tender.id,
                task_title=task.title,
                tender_title=tender.title,
                submitted_by=actor.user_id,
                file_name=upload.filename,
                recipient_ids=tuple(recipients),
            )
        )
        return submitted

    async def clear_task_file(self, tenant_id: str, task_id: str, actor: Principal) -> TenderTask:
        task, tender = await self._load_task(tenant_id, task_id)
        self.guard.require_file_access(task, tender, actor)
        await self.discard_file(tenant_id, task.file_path)
        cleared = replace(
            task,
            status=TASK_PENDING if task.status == TASK_SUBMITTED else task.status,
            file_name=None,
            file_path=None,
            file_type=None,
            submitted_at=None,
            updated_at=self.clock(),
        )
        await self.repository.save_task(tenant_id, cleared)
        logger.info("tender_task_file_cleared", extra={"tenant_id": tenant_id, "task_id": task.id})
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_CLEAR_FILE,
            ENTITY_TASK,
            task.id,
            description=f"Cleared file for task: {task.title}",
            previous=task.to_dict(),
            new=cleared.to_dict(),
            now=cleared.updated_at,
        )
        return cleared

    async def delete_task(self, tenant_id: str, task_id: str, actor: Principal) -> None:
        task, tender = await self._load_task(tenant_id, task_id)
        self.guard.require_mutate(tender, actor)
        await self.discard_file(tenant_id, task.file_path)
        await self.repository.delete_task(tenant_id, task.id)
        logger.info("tender_task_deleted", extra={"tenant_id": tenant_id, "task_id": task.id})
        await record_activity(
            self.repository,
            tenant_id,
            actor,
            ACTION_DELETE,
            ENTITY_TASK,
            task.id,
            description=f"Deleted tender task: {task.title}",
            previous=task.to_dict(),
            now=self.clock(),
        )

    async def get_task_file(self, tenant_id: str, task_id: str, actor: Principal) -> StoredFile:
        task, tender = await self._load_task(tenant_id, task_id)
        self.guard.require_file_access(task, tender, actor)
        if not task.file_path:
            raise NotFoundError(code="file_not_found", message_key="file_not_found", details=f"task {task.id} has no file")
        data = await self.file_store.get(tenant_id, task.file_path)
        return StoredFile(path=task.file_path, data=data, file_name=task.file_name, content_type=task.file_type)
