from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Dict, List, Mapping

import aiosmtplib

from backoffice.domain.contracts import OutboundMessage
from backoffice.errors import DeliveryError
from backoffice.tenant import normalize_tenant_id


logger = logging.getLogger("backoffice.notifications")


@dataclass(frozen=True)
class SenderIdentity:
    address: str
    display_name: str | None = None


def parse_sender_identities(value: object) -> Dict[str, SenderIdentity]:
    """Parse ``tenant:address[:display name]`` entries separated by commas."""
    if isinstance(value, Mapping):
        return {str(key): item if isinstance(item, SenderIdentity) else SenderIdentity(str(item)) for key, item in value.items()}
    identities: Dict[str, SenderIdentity] = {}
    for entry in str(value or "").split(","):
        parts = [part.strip() for part in entry.split(":", 2)]
        if len(parts) < 2:
            continue
        tenant_id = normalize_tenant_id(parts[0])
        address = parts[1]
        if not tenant_id or "@" not in address:
            continue
        display_name = parts[2] if len(parts) > 2 and parts[2] else None
        identities[tenant_id] = SenderIdentity(address=address, display_name=display_name)
    return identities


def build_email(identity: SenderIdentity, message: OutboundMessage) -> EmailMessage:
    email = EmailMessage()
    email["From"] = formataddr((message.sender_name or identity.display_name or "", identity.address))
    email["To"] = message.recipient
    email["Subject"] = message.subject
    email.set_content(message.body)
    for file_name, data, content_type in message.attachments:
        maintype, _, subtype = (content_type or "application/octet-stream").partition("/")
        email.add_attachment(data, maintype=maintype, subtype=subtype or "octet-stream", filename=file_name)
    return email


class SmtpNotificationSender:
    """Delivers messages over SMTP with the sender identity configured for each tenant."""

    def __init__(
        self,
        *,
        hostname: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        start_tls: bool = True,
        timeout: float = 20,
        identities: Mapping[str, SenderIdentity] | None = None,
    ) -> None:
        self.hostname = (hostname or "").strip() or None
        self.port = int(port)
        self.username = username
        self.password = password
        self.start_tls = bool(start_tls)
        self.timeout = float(timeout)
        self.identities = dict(identities or {})

    async def has_credential(self, tenant_id: str) -> bool:
        return bool(self.hostname) and tenant_id in self.identities

    async def send(self, tenant_id: str, message: OutboundMessage) -> None:
        identity = self.identities.get(tenant_id)
        if identity is None or not self.hostname:
            raise DeliveryError(details=f"no sender configured for tenant {tenant_id}")
        try:
            email = build_email(identity, message)
        except ValueError as exc:
            raise DeliveryError(details=f"message to {message.recipient!r} is malformed: {exc}") from exc
        try:
            await aiosmtplib.send(
                email,
                hostname=self.hostname,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            raise DeliveryError(details=f"smtp delivery to {message.recipient} failed: {exc}") from exc


class LogNotificationSender:
    """Writes messages to the log instead of sending them; used in development."""

    def __init__(self, identities: Mapping[str, SenderIdentity] | None = None) -> None:
        self.identities = dict(identities or {})
        self.sent: List[Dict[str, Any]] = []

    async def has_credential(self, tenant_id: str) -> bool:
        return not self.identities or tenant_id in self.identities

    async def send(self, tenant_id: str, message: OutboundMessage) -> None:
        self.sent.append({"tenant_id": tenant_id, "message": message})
        logger.info(
            "notification_logged",
            extra={
                "tenant_id": tenant_id,
                "recipient": message.recipient,
                "subject": message.subject,
                "sender_name": message.sender_name,
                "attachments": len(message.attachments),
            },
        )


def build_notification_sender(config: Mapping[str, Any]):
    identities = parse_sender_identities(config.get("NOTIFICATION_SENDERS"))
    backend = str(config.get("NOTIFICATION_BACKEND") or "smtp").strip().lower()
    if backend == "log":
        return LogNotificationSender(identities)
    if backend != "smtp":
        raise RuntimeError(f"Unsupported NOTIFICATION_BACKEND: {backend}")
    return SmtpNotificationSender(
        hostname=config.get("SMTP_HOST"),
        port=int(config.get("SMTP_PORT") or 587),
        username=config.get("SMTP_USERNAME"),
        password=config.get("SMTP_PASSWORD"),
        start_tls=bool(config.get("SMTP_USE_TLS", True)),
        timeout=float(config.get("SMTP_TIMEOUT_SECONDS") or 20),
        identities=identities,
    )
