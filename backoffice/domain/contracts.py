from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Protocol, Sequence, Tuple

from backoffice.domain.models import ActivityEntry, Rfq, RfqAssignment, Tender, TenderTask, User


TenderPredicate = Callable[[Tender], bool]
TaskPredicate = Callable[[TenderTask], bool]
RfqPredicate = Callable[[Rfq], bool]


@dataclass(frozen=True)
class OutboundMessage:
    recipient: str
    subject: str
    body: str
    sender_name: str | None = None
    attachments: Tuple[Tuple[str, bytes, str], ...] = ()


@dataclass(frozen=True)
class StoredFile:
    path: str
    data: bytes
    file_name: str | None = None
    content_type: str | None = None


@dataclass(frozen=True)
class TaskInput:
    title: str
    assignee_id: str
    description: str | None = None
    due_date: datetime | None = None


@dataclass(frozen=True)
class TenderCreateInput:
    title: str
    deadline: datetime
    description: str | None = None
    status: str | None = None
    tasks: List[TaskInput] = field(default_factory=list)


@dataclass(frozen=True)
class RfqInput:
    subject: str
    sender_address: str
    open_date: datetime
    close_date: datetime
    items: List[Dict[str, Any]] = field(default_factory=list)
    assignee_ids: List[str] = field(default_factory=list)


class ProcurementRepository(Protocol):
    async def find_tenders(
        self,
        tenant_id: str,
        *,
        status: str | Sequence[str] | None = None,
        predicate: TenderPredicate | None = None,
    ) -> List[Tender]: ...

    async def get_tender(self, tenant_id: str, tender_id: str) -> Tender | None: ...

    async def save_tender(self, tenant_id: str, tender: Tender) -> Tender: ...

    async def delete_tender(self, tenant_id: str, tender_id: str) -> None: ...

    async def find_tasks(
        self,
        tenant_id: str,
        *,
        tender_id: str | Iterable[str] | None = None,
        assignee_id: str | None = None,
        status: str | Sequence[str] | None = None,
        predicate: TaskPredicate | None = None,
    ) -> List[TenderTask]: ...

    async def get_task(self, tenant_id: str, task_id: str) -> TenderTask | None: ...

    async def save_task(self, tenant_id: str, task: TenderTask) -> TenderTask: ...

    async def delete_task(self, tenant_id: str, task_id: str) -> None: ...

    async def find_rfqs(
        self,
        tenant_id: str,
        *,
        status: str | Sequence[str] | None = None,
        predicate: RfqPredicate | None = None,
    ) -> List[Rfq]: ...

    async def get_rfq(self, tenant_id: str, rfq_id: str) -> Rfq | None: ...

    async def save_rfq(self, tenant_id: str, rfq: Rfq) -> Rfq: ...

    async def delete_rfq(self, tenant_id: str, rfq_id: str) -> None: ...

    async def find_assignments(
        self,
        tenant_id: str,
        *,
        rfq_id: str | Iterable[str] | None = None,
        assignee_id: str | None = None,
    ) -> List[RfqAssignment]: ...

    async def replace_assignments(
        self, tenant_id: str, rfq_id: str, assignee_ids: Iterable[str]
    ) -> Tuple[List[str], List[str]]:
        """Sync the RFQ's assignees; returns ``(added_ids, removed_ids)``."""
        ...

    async def get_user(self, tenant_id: str, user_id: str) -> User | None: ...

    async def find_users(self, tenant_id: str, user_ids: Iterable[str]) -> Dict[str, User]: ...

    async def record_activity(self, tenant_id: str, entry: ActivityEntry) -> ActivityEntry: ...

    async def find_activity(
        self,
        tenant_id: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> List[ActivityEntry]:
        """Newest first."""
        ...


class NotificationSender(Protocol):
    async def has_credential(self, tenant_id: str) -> bool: ...

    async def send(self, tenant_id: str, message: OutboundMessage) -> None:
        """Deliver `message` or raise ``DeliveryError``."""
        ...


class FileStore(Protocol):
    async def put(self, tenant_id: str, path: str, data: bytes, content_type: str) -> str: ...

    async def get(self, tenant_id: str, path: str) -> bytes: ...

    async def delete(self, tenant_id: str, path: str) -> None: ...
