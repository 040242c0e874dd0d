from __future__ import annotations

import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Awaitable, Callable, Dict, List, Tuple, Type, Union


EventHandler = Callable[["DomainEvent"], Union[None, Awaitable[None]]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    tenant_id: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))
        object.__setattr__(self, "tenant_id", str(self.tenant_id or "").strip() or "unknown")


@dataclass(frozen=True, kw_only=True)
class TenderCreated(DomainEvent):
    tender_id: str
    title: str
    created_by: str
    task_ids: Tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class TaskAssigned(DomainEvent):
    task_id: str
    tender_id: str
    assignee_id: str
    task_title: str
    tender_title: str
    assigned_by: str
    due_date: datetime | None = None
    tender_deadline: datetime | None = None


@dataclass(frozen=True, kw_only=True)
class TaskSubmitted(DomainEvent):
    task_id: str
    tender_id: str
    task_title: str
    tender_title: str
    submitted_by: str
    file_name: str
    recipient_ids: Tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class RfqCreated(DomainEvent):
    rfq_id: str
    subject: str
    created_by: str
    assignee_ids: Tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class RfqUpdated(DomainEvent):
    rfq_id: str
    subject: str
    updated_by: str
    assignee_ids: Tuple[str, ...] = ()


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("backoffice.events")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    async def publish(self, event: DomainEvent) -> None:
        """Run every handler for `event`; a failing handler is logged and never propagates."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": type(event).__name__,
                        "event_id": event.event_id,
                        "tenant_id": event.tenant_id,
                    },
                )
