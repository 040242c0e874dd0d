from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict

from backoffice.domain.contracts import ProcurementRepository
from backoffice.domain.models import ActivityEntry, Principal, utc_now


logger = logging.getLogger("backoffice.activity")

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTION_RESOLVE = "resolve"
ACTION_SUBMIT = "submit"
ACTION_CLEAR_FILE = "clear_file"

ENTITY_TENDER = "tender"
ENTITY_TASK = "tender_task"
ENTITY_RFQ = "rfq"


async def record_activity(
    repository: ProcurementRepository,
    tenant_id: str,
    actor: Principal,
    action: str,
    entity_type: str,
    entity_id: str | None,
    *,
    description: str | None = None,
    previous: Dict[str, Any] | None = None,
    new: Dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ActivityEntry | None:
    """Append an audit row; a failed write is logged and never reaches the caller."""
    try:
        entry = ActivityEntry(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            user_id=actor.user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            previous_values=previous,
            new_values=new,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            created_at=now or utc_now(),
        )
        return await repository.record_activity(tenant_id, entry)
    except Exception:  # noqa: BLE001
        logger.warning(
            "activity_log_failed",
            extra={
                "tenant_id": tenant_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "user_id": actor.user_id,
            },
            exc_info=True,
        )
        return None
