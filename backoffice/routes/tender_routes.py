from __future__ import annotations

import io
from typing import Any, List

from flask import Blueprint, jsonify, request, send_file

from backoffice.domain.contracts import TaskInput, TenderCreateInput
from backoffice.domain.models import FileUpload
from backoffice.errors import ValidationError
from backoffice.routes.common import json_payload, labelled, page_args, parse_bool, request_context, timestamp_field


tender_bp = Blueprint("tenders", __name__, url_prefix="/api/tenders")


def _task_input(raw: Any) -> TaskInput:
    if not isinstance(raw, dict):
        raise ValidationError(message_key="task_fields_required", details="task must be an object")
    return TaskInput(
        title=str(raw.get("title") or ""),
        assignee_id=str(raw.get("assignee_id") or "").strip(),
        description=raw.get("description"),
        due_date=timestamp_field(raw, "due_date"),
    )


def _task_inputs(raw: Any) -> List[TaskInput]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(message_key="task_fields_required", details="tasks must be a list")
    return [_task_input(item) for item in raw]


@tender_bp.route("", methods=["GET"])
async def list_tenders():
    services, tenant_id, principal = request_context()
    limit, offset = page_args()
    tenders = await services.tenders.list_tenders(
        tenant_id,
        principal,
        status=(request.args.get("status") or "").strip() or None,
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [labelled("tender", tender.to_dict()) for tender in tenders], "count": len(tenders)})


@tender_bp.route("", methods=["POST"])
async def create_tender():
    services, tenant_id, principal = request_context()
    payload = json_payload()
    data = TenderCreateInput(
        title=str(payload.get("title") or ""),
        deadline=timestamp_field(payload, "deadline"),
        description=payload.get("description"),
        status=payload.get("status"),
        tasks=_task_inputs(payload.get("tasks")),
    )
    view = await services.tenders.create_tender(tenant_id, data, principal)
    return jsonify(labelled("tender", view.to_dict())), 201


@tender_bp.route("/<tender_id>", methods=["GET"])
async def get_tender(tender_id: str):
    services, tenant_id, principal = request_context()
    view = await services.tenders.get_tender(tenant_id, tender_id, principal)
    return jsonify(labelled("tender", view.to_dict()))


@tender_bp.route("/<tender_id>", methods=["PUT", "PATCH"])
async def update_tender(tender_id: str):
    services, tenant_id, principal = request_context()
    tender = await services.tenders.update_tender(tenant_id, tender_id, json_payload(), principal)
    return jsonify(labelled("tender", tender.to_dict()))


@tender_bp.route("/<tender_id>", methods=["DELETE"])
async def delete_tender(tender_id: str):
    services, tenant_id, principal = request_context()
    await services.tenders.delete_tender(tenant_id, tender_id, principal)
    return jsonify({"deleted": True, "id": tender_id})


@tender_bp.route("/<tender_id>/resolve", methods=["POST"])
async def resolve_tender(tender_id: str):
    services, tenant_id, principal = request_context()
    resolved = parse_bool(json_payload().get("resolved"), default=True)
    tender = await services.tenders.resolve_tender(tenant_id, tender_id, resolved, principal)
    return jsonify(labelled("tender", tender.to_dict()))


@tender_bp.route("/<tender_id>/tasks", methods=["POST"])
async def create_task(tender_id: str):
    services, tenant_id, principal = request_context()
    task = await services.tasks.create_task(tenant_id, tender_id, _task_input(json_payload()), principal)
    return jsonify(labelled("tender_task", task.to_dict())), 201


@tender_bp.route("/tasks/<task_id>", methods=["PUT", "PATCH"])
async def update_task(task_id: str):
    services, tenant_id, principal = request_context()
    task = await services.tasks.update_task(tenant_id, task_id, json_payload(), principal)
    return jsonify(labelled("tender_task", task.to_dict()))


@tender_bp.route("/tasks/<task_id>", methods=["DELETE"])
async def delete_task(task_id: str):
    services, tenant_id, principal = request_context()
    await services.tasks.delete_task(tenant_id, task_id, principal)
    return jsonify({"deleted": True, "id": task_id})


@tender_bp.route("/tasks/<task_id>/file", methods=["POST"])
async def upload_task_file(task_id: str):
    services, tenant_id, principal = request_context()
    storage = request.files.get("file")
    upload = None
    if storage is not None and storage.filename:
        upload = FileUpload(
            filename=storage.filename,
            content_type=storage.mimetype or "application/octet-stream",
            data=storage.read(),
        )
    task = await services.tasks.submit_task_file(tenant_id, task_id, upload, principal)
    return jsonify(labelled("tender_task", task.to_dict()))


@tender_bp.route("/tasks/<task_id>/file", methods=["GET"])
async def download_task_file(task_id: str):
    services, tenant_id, principal = request_context()
    stored = await services.tasks.get_task_file(tenant_id, task_id, principal)
    return send_file(
        io.BytesIO(stored.data),
        mimetype=stored.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=stored.file_name or stored.path.rsplit("/", 1)[-1],
    )


@tender_bp.route("/tasks/<task_id>/file", methods=["DELETE"])
async def clear_task_file(task_id: str):
    services, tenant_id, principal = request_context()
    task = await services.tasks.clear_task_file(tenant_id, task_id, principal)
    return jsonify(labelled("tender_task", task.to_dict()))
