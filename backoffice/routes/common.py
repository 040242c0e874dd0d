from __future__ import annotations

from typing import Any, Dict

from flask import current_app, request

from backoffice.application.factory import Services, build_services
from backoffice.application.task_service import parse_optional_timestamp
from backoffice.auth import require_principal
from backoffice.db import get_db
from backoffice.domain.models import Principal, utc_now
from backoffice.tenant import scoped_tenant_id
from backoffice.ui_strings import status_label


def request_services() -> Services:
    return build_services(
        current_app.config,
        sender=current_app.extensions["notification_sender"],
        file_store=current_app.extensions["file_store"],
        db=get_db(),
        clock=current_app.extensions.get("clock", utc_now),
    )


def request_context() -> tuple[Services, str, Principal]:
    principal = require_principal()
    return request_services(), scoped_tenant_id(), principal


def json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def parse_int(value: str | None, default: int, min_value: int, max_value: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(min_value, min(parsed, max_value))


def parse_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def timestamp_field(payload: Dict[str, Any], name: str):
    return parse_optional_timestamp(payload.get(name), name)


def page_args() -> tuple[int | None, int]:
    limit = request.args.get("limit")
    return (
        parse_int(limit, 50, 1, 500) if limit is not None else None,
        parse_int(request.args.get("offset"), 0, 0, 1_000_000),
    )


def labelled(group: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    payload["status_label"] = status_label(group, payload.get("status"))
    return payload
