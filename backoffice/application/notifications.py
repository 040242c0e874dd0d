from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

from backoffice.core.event_bus import EventBus, RfqCreated, RfqUpdated, TaskAssigned, TaskSubmitted, TenderCreated
from backoffice.domain.contracts import NotificationSender, OutboundMessage, ProcurementRepository
from backoffice.domain.models import Rfq, Tender, TenderTask, User, format_timestamp
from backoffice.errors import DeliveryError


logger = logging.getLogger("backoffice.notifications")

DIGEST_SUBJECT = "Pending tender task reminder"
SIGN_OFF = "Please log in to the procurement system to review and complete them."


def _day(value: datetime | None, default: str = "No due date") -> str:
    return value.strftime("%Y-%m-%d") if value is not None else default


def compose_task_digest(
    recipient: User,
    entries: Sequence[tuple[TenderTask, Tender]],
    sender_name: str | None,
) -> OutboundMessage:
    lines = [
        f"- {task.title} (Tender: {tender.title}, Due: {_day(task.due_date)})"
        for task, tender in entries
    ]
    body = "\n".join(
        [
            f"Hello {recipient.display_name('there')},",
            "",
            "This is a reminder for your pending tender tasks:",
            *lines,
            "",
            SIGN_OFF,
        ]
    )
    return OutboundMessage(recipient=recipient.email or "", subject=DIGEST_SUBJECT, body=body, sender_name=sender_name)


def compose_deadline_reminder(tender: Tender, creator: User) -> OutboundMessage:
    body = "\n".join(
        [
            f"Hello {creator.display_name('there')},",
            "",
            f'The tender "{tender.title}" reaches its deadline on {format_timestamp(tender.deadline)}.',
            "Please review the submitted tasks before the tender closes.",
        ]
    )
    return OutboundMessage(
        recipient=creator.email or "",
        subject=f"Tender Deadline Reminder: {tender.title}",
        body=body,
        sender_name=None,
    )


def compose_task_assigned(event: TaskAssigned, assignee: User, sender_name: str | None) -> OutboundMessage:
    body = "\n".join(
        [
            f"Hello {assignee.display_name('Member')},",
            "",
            "You have been assigned a new task.",
            f"Task Title: {event.task_title}",
            f"Task Due Date: {_day(event.due_date)}",
            f"Tender Title: {event.tender_title}",
            f"Tender Deadline: {_day(event.tender_deadline, 'No deadline')}",
            "",
            "Please log in to the system to view more details.",
        ]
    )
    return OutboundMessage(
        recipient=assignee.email or "",
        subject=f"New Task Assigned: {event.task_title}",
        body=body,
        sender_name=sender_name,
    )


def compose_tender_created(tender_title: str, assignee: User, tasks: Iterable[TenderTask], sender_name: str | None) -> OutboundMessage:
    lines = [f"- {task.title} (Due: {_day(task.due_date)})" for task in tasks]
    body = "\n".join(
        [
            f"Hello {assignee.display_name('Member')},",
            "",
            f'A new tender "{tender_title}" has been created.',
            "You have been assigned the following task(s):",
            *lines,
        ]
    )
    return OutboundMessage(
        recipient=assignee.email or "",
        subject=f"Tender Created: {tender_title}",
        body=body,
        sender_name=sender_name,
    )


def compose_task_submitted(event: TaskSubmitted, recipient: User, submitted_by: str, sender_name: str | None) -> OutboundMessage:
    body = "\n".join(
        [
            "Hello,",
            "",
            "A task has been submitted.",
            f"Task Title: {event.task_title}",
            f"Tender Title: {event.tender_title}",
            f"Submitted By: {submitted_by}",
            f"Submitted At: {format_timestamp(event.occurred_at)}",
            f"File: {event.file_name}",
            "",
            "Please review the submission and proceed with the next steps as appropriate.",
        ]
    )
    return OutboundMessage(
        recipient=recipient.email or "",
        subject=f"Task Submitted: {event.task_title}",
        body=body,
        sender_name=sender_name,
    )


def compose_rfq_message(rfq: Rfq, assignee: User, *, updated: bool, sender_name: str | None) -> OutboundMessage:
    intro = (
        "A Request for Quotation (RFQ) assigned to you has been updated."
        if updated
        else "You have been assigned to a new Request for Quotation (RFQ)."
    )
    lines = [
        f"Hello {assignee.display_name('Member')},",
        "",
        intro,
        f"Subject: {rfq.subject}",
        f"Sender Address: {rfq.sender_address}",
        f"Open Date: {_day(rfq.open_date)}",
        f"Closing Date: {_day(rfq.close_date)}",
        f"Status: {rfq.status}",
        f"Items Count: {len(rfq.items)}",
    ]
    for index, item in enumerate(rfq.items[:5], start=1):
        details = [str(item.get("description") or "")]
        if item.get("quantity") is not None:
            details.append(f"Qty: {item['quantity']}")
        refs = " | ".join(
            part
            for part in (
                f"Part: {item['part_number']}" if item.get("part_number") else "",
                f"Serial: {item['serial_number']}" if item.get("serial_number") else "",
            )
            if part
        )
        if refs:
            details.append(refs)
        lines.append(f"Item {index}: " + ", ".join(detail for detail in details if detail))
    lines.extend(["", "Review the RFQ details, then proceed in the system to work on it."])
    return OutboundMessage(
        recipient=assignee.email or "",
        subject="RFQ Updated" if updated else "New RFQ Assigned",
        body="\n".join(lines),
        sender_name=sender_name,
    )


async def deliver_best_effort(
    sender: NotificationSender,
    tenant_id: str,
    messages: Iterable[OutboundMessage],
    *,
    context: str,
) -> tuple[int, int]:
    """Send each message independently; returns ``(sent, failed)``."""
    sent = 0
    failed = 0
    for message in messages:
        if not message.recipient:
            continue
        try:
            await sender.send(tenant_id, message)
            sent += 1
        except DeliveryError as exc:
            failed += 1
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "tenant_id": tenant_id,
                    "context": context,
                    "recipient": message.recipient,
                    "subject": message.subject,
                    "reason": exc.details or exc.code,
                },
            )
        except Exception:  # noqa: BLE001
            failed += 1
            logger.warning(
                "notification_delivery_failed",
                extra={"tenant_id": tenant_id, "context": context, "recipient": message.recipient, "subject": message.subject},
                exc_info=True,
            )
    return sent, failed


class NotificationHandlers:
    """Turns lifecycle events into outbound messages."""

    def __init__(self, repository: ProcurementRepository, sender: NotificationSender) -> None:
        self.repository = repository
        self.sender = sender

    def register(self, bus: EventBus) -> None:
        bus.subscribe(TenderCreated, self.on_tender_created)
        bus.subscribe(TaskAssigned, self.on_task_assigned)
        bus.subscribe(TaskSubmitted, self.on_task_submitted)
        bus.subscribe(RfqCreated, self.on_rfq_created)
        bus.subscribe(RfqUpdated, self.on_rfq_updated)

    async def _can_send(self, tenant_id: str, event_name: str) -> bool:
        if await self.sender.has_credential(tenant_id):
            return True
        logger.warning("notification_sender_missing", extra={"tenant_id": tenant_id, "event_type": event_name})
        return False

    async def _sender_name(self, tenant_id: str, user_id: str, default: str) -> str:
        user = await self.repository.get_user(tenant_id, user_id)
        return user.display_name(default) if user else default

    async def on_tender_created(self, event: TenderCreated) -> None:
        if not event.task_ids or not await self._can_send(event.tenant_id, "TenderCreated"):
            return
        tasks = await self.repository.find_tasks(
            event.tenant_id, tender_id=event.tender_id, predicate=lambda task: task.id in event.task_ids
        )
        by_assignee: Dict[str, List[TenderTask]] = {}
        for task in tasks:
            by_assignee.setdefault(task.assignee_id, []).append(task)
        users = await self.repository.find_users(event.tenant_id, by_assignee)
        sender_name = await self._sender_name(event.tenant_id, event.created_by, "Tender Creator")
        messages = [
            compose_tender_created(event.title, users[assignee_id], assigned, sender_name)
            for assignee_id, assigned in by_assignee.items()
            if assignee_id in users
        ]
        await deliver_best_effort(self.sender, event.tenant_id, messages, context="tender_created")

    async def on_task_assigned(self, event: TaskAssigned) -> None:
        if not await self._can_send(event.tenant_id, "TaskAssigned"):
            return
        assignee = await self.repository.get_user(event.tenant_id, event.assignee_id)
        if assignee is None or not assignee.email:
            return
        sender_name = await self._sender_name(event.tenant_id, event.assigned_by, "Tender Creator")
        message = compose_task_assigned(event, assignee, sender_name)
        await deliver_best_effort(self.sender, event.tenant_id, [message], context="task_assigned")

    async def on_task_submitted(self, event: TaskSubmitted) -> None:
        if not await self._can_send(event.tenant_id, "TaskSubmitted"):
            return
        users = await self.repository.find_users(event.tenant_id, event.recipient_ids)
        submitted_by = await self._sender_name(event.tenant_id, event.submitted_by, "Assignee")
        seen: set[str] = set()
        messages = []
        for user_id in event.recipient_ids:
            user = users.get(user_id)
            if user is None or not user.email or user.email.lower() in seen:
                continue
            seen.add(user.email.lower())
            messages.append(compose_task_submitted(event, user, submitted_by, submitted_by))
        await deliver_best_effort(self.sender, event.tenant_id, messages, context="task_submitted")

    async def _notify_rfq(self, event: RfqCreated | RfqUpdated, *, updated: bool, actor_id: str) -> None:
        if not event.assignee_ids or not await self._can_send(event.tenant_id, type(event).__name__):
            return
        rfq = await self.repository.get_rfq(event.tenant_id, event.rfq_id)
        if rfq is None:
            return
        users = await self.repository.find_users(event.tenant_id, event.assignee_ids)
        sender_name = await self._sender_name(event.tenant_id, actor_id, "RFQ Creator")
        messages = [
            compose_rfq_message(rfq, users[user_id], updated=updated, sender_name=sender_name)
            for user_id in event.assignee_ids
            if user_id in users
        ]
        await deliver_best_effort(self.sender, event.tenant_id, messages, context="rfq_updated" if updated else "rfq_created")

    async def on_rfq_created(self, event: RfqCreated) -> None:
        await self._notify_rfq(event, updated=False, actor_id=event.created_by)

    async def on_rfq_updated(self, event: RfqUpdated) -> None:
        await self._notify_rfq(event, updated=True, actor_id=event.updated_by)
