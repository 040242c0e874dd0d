from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List


TENDER_DRAFT = "draft"
TENDER_ACTIVE = "active"
TENDER_CLOSED = "closed"
TENDER_CANCELLED = "cancelled"
TENDER_STATUSES = (TENDER_DRAFT, TENDER_ACTIVE, TENDER_CLOSED, TENDER_CANCELLED)

TASK_PENDING = "pending"
TASK_SUBMITTED = "submitted"
TASK_DELETED = "deleted"
TASK_STATUSES = (TASK_PENDING, TASK_SUBMITTED, TASK_DELETED)

RFQ_ACTIVE = "active"
RFQ_SENT = "sent"
RFQ_CLOSED = "closed"
RFQ_STATUSES = (RFQ_ACTIVE, RFQ_SENT, RFQ_CLOSED)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Accepts datetimes, dates and ISO-8601 strings; naive values are read as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(raw))


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat().replace("+00:00", "Z")


def _normalize_timestamp(instance: object, name: str) -> None:
    value = getattr(instance, name)
    if value is not None:
        object.__setattr__(instance, name, parse_timestamp(value))


@dataclass(frozen=True)
class User:
    id: str
    tenant_id: str
    email: str | None
    first_name: str = ""
    last_name: str = ""
    role: str = "viewer"
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    def display_name(self, default: str = "User") -> str:
        return self.full_name or default


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    tenant_id: str
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class FileUpload:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data or b"")


@dataclass(frozen=True)
class Tender:
    id: str
    tenant_id: str
    title: str
    deadline: datetime
    created_by: str
    status: str = TENDER_ACTIVE
    description: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.status not in TENDER_STATUSES:
            raise ValueError(f"unknown tender status: {self.status}")
        for name in ("deadline", "created_at", "updated_at"):
            _normalize_timestamp(self, name)

    @property
    def closes_at(self) -> datetime | None:
        return self.deadline

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "deadline": format_timestamp(self.deadline),
            "status": self.status,
            "created_by": self.created_by,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class TenderTask:
    id: str
    tenant_id: str
    tender_id: str
    title: str
    assignee_id: str
    description: str | None = None
    status: str = TASK_PENDING
    file_name: str | None = None
    file_path: str | None = None
    file_type: str | None = None
    due_date: datetime | None = None
    submitted_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.status not in TASK_STATUSES:
            raise ValueError(f"unknown task status: {self.status}")
        for name in ("due_date", "submitted_at", "created_at", "updated_at"):
            _normalize_timestamp(self, name)
        if self.status == TASK_SUBMITTED and (not self.file_path or self.submitted_at is None):
            raise ValueError("submitted task requires a file and a submission time")
        if self.status == TASK_PENDING and self.submitted_at is not None:
            raise ValueError("pending task cannot carry a submission time")

    @property
    def file_ref(self) -> str | None:
        return self.file_path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "title": self.title,
            "description": self.description,
            "assignee_id": self.assignee_id,
            "status": self.status,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_type": self.file_type,
            "due_date": format_timestamp(self.due_date),
            "submitted_at": format_timestamp(self.submitted_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class Rfq:
    id: str
    tenant_id: str
    subject: str
    sender_address: str
    open_date: datetime
    close_date: datetime
    created_by: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    status: str = RFQ_ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.status not in RFQ_STATUSES:
            raise ValueError(f"unknown rfq status: {self.status}")
        for name in ("open_date", "close_date", "created_at", "updated_at"):
            _normalize_timestamp(self, name)
        object.__setattr__(self, "items", [dict(item) for item in (self.items or [])])

    @property
    def closes_at(self) -> datetime | None:
        return self.close_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "sender_address": self.sender_address,
            "items": [dict(item) for item in self.items],
            "open_date": format_timestamp(self.open_date),
            "close_date": format_timestamp(self.close_date),
            "status": self.status,
            "created_by": self.created_by,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class RfqAssignment:
    id: str
    tenant_id: str
    rfq_id: str
    assignee_id: str
    assigned_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _normalize_timestamp(self, "assigned_at")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rfq_id": self.rfq_id,
            "assignee_id": self.assignee_id,
            "assigned_at": format_timestamp(self.assigned_at),
        }


@dataclass(frozen=True)
class ActivityEntry:
    """One audit row: who did what to which entity, with before/after snapshots."""

    id: str
    tenant_id: str
    user_id: str
    action: str
    entity_type: str
    entity_id: str | None = None
    description: str | None = None
    previous_values: Dict[str, Any] | None = None
    new_values: Dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _normalize_timestamp(self, "created_at")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "previous_values": self.previous_values,
            "new_values": self.new_values,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": format_timestamp(self.created_at),
        }
