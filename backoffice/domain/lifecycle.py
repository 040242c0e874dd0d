from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import TypeVar

from backoffice.domain.models import TENDER_ACTIVE, TENDER_CLOSED, as_utc
from backoffice.errors import InvalidTransitionError


# tenders and RFQs share the "active" and "closed" spellings
Closable = TypeVar("Closable")


def is_past(moment: datetime | None, now: datetime) -> bool:
    return moment is not None and as_utc(moment) < as_utc(now)


def effective_status(entity, now: datetime) -> str:
    """Status a tender or RFQ should have at `now`.

    Only ``active`` entities whose deadline (or closing date) lies strictly in
    the past move to ``closed``; every other status is returned unchanged.
    """
    if entity.status == TENDER_ACTIVE and is_past(entity.closes_at, now):
        return TENDER_CLOSED
    return entity.status


def is_stale(entity, now: datetime) -> bool:
    return effective_status(entity, now) != entity.status


def heal(entity: Closable, now: datetime) -> Closable:
    """Copy of `entity` carrying its effective status, or `entity` itself when current."""
    status = effective_status(entity, now)
    if status == entity.status:
        return entity
    return replace(entity, status=status, updated_at=now)


def ensure_resolvable(entity, now: datetime) -> None:
    if is_past(entity.closes_at, now):
        raise InvalidTransitionError(
            code="resolve_after_deadline",
            message_key="resolve_after_deadline",
            details=f"deadline {entity.closes_at.isoformat()} already passed",
        )
