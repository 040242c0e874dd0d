from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from backoffice.auth import require_principal
from backoffice.domain.authorization import AuthorizationGuard
from backoffice.errors import ForbiddenError
from backoffice.observability import sweep_metrics_snapshot
from backoffice.routes.common import json_payload, parse_int, request_services
from backoffice.tenant import parse_tenant_ids


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _require_elevated():
    principal = require_principal()
    if not AuthorizationGuard(current_app.config.get("ELEVATED_ROLES")).is_elevated(principal):
        raise ForbiddenError(details=f"role {principal.role} cannot trigger reminder jobs")
    return principal


@admin_bp.route("/reminders/<job>/run", methods=["POST"])
async def run_reminder_job(job: str):
    principal = _require_elevated()
    payload = json_payload()
    requested = parse_tenant_ids(payload.get("tenant_ids") or payload.get("tenant_id"))
    foreign = [tenant_id for tenant_id in requested if tenant_id != principal.tenant_id]
    if foreign:
        raise ForbiddenError(details=f"cannot run reminder jobs for tenant {foreign[0]}")
    scheduler = current_app.extensions["reminder_scheduler"]
    reports = await scheduler.run_job(job, (principal.tenant_id,))
    return jsonify({"job": job, "reports": [report.to_dict() for report in reports]})


@admin_bp.route("/reminders/metrics", methods=["GET"])
def reminder_metrics():
    _require_elevated()
    return jsonify(sweep_metrics_snapshot())


@admin_bp.route("/activity", methods=["GET"])
async def list_activity():
    principal = _require_elevated()
    entries = await request_services().repository.find_activity(
        principal.tenant_id,
        entity_type=(request.args.get("entity_type") or "").strip() or None,
        entity_id=(request.args.get("entity_id") or "").strip() or None,
        limit=parse_int(request.args.get("limit"), 100, 1, 500),
    )
    return jsonify({"items": [entry.to_dict() for entry in entries], "count": len(entries)})
