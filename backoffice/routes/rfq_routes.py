from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from backoffice.domain.contracts import RfqInput
from backoffice.routes.common import json_payload, labelled, page_args, parse_bool, request_context, timestamp_field


rfq_bp = Blueprint("rfqs", __name__, url_prefix="/api/rfqs")


def _update_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(payload)
    # Accept the camelCase names the browser client sends.
    for source, target in (("senderAddress", "sender_address"), ("assignees", "assignee_ids")):
        if source in fields and target not in fields:
            fields[target] = fields.pop(source)
    return fields


@rfq_bp.route("", methods=["GET"])
async def list_rfqs():
    services, tenant_id, principal = request_context()
    limit, offset = page_args()
    rfqs = await services.rfqs.list_rfqs(
        tenant_id,
        principal,
        status=(request.args.get("status") or "").strip() or None,
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [labelled("rfq", rfq.to_dict()) for rfq in rfqs], "count": len(rfqs)})


@rfq_bp.route("", methods=["POST"])
async def create_rfq():
    services, tenant_id, principal = request_context()
    payload = _update_fields(json_payload())
    data = RfqInput(
        subject=str(payload.get("subject") or ""),
        sender_address=str(payload.get("sender_address") or ""),
        open_date=timestamp_field(payload, "open_date"),
        close_date=timestamp_field(payload, "close_date"),
        items=payload.get("items") if payload.get("items") is not None else [],
        assignee_ids=list(payload.get("assignee_ids") or []),
    )
    view = await services.rfqs.create_rfq(tenant_id, data, principal)
    return jsonify(labelled("rfq", view.to_dict())), 201


@rfq_bp.route("/<rfq_id>", methods=["GET"])
async def get_rfq(rfq_id: str):
    services, tenant_id, principal = request_context()
    view = await services.rfqs.get_rfq(tenant_id, rfq_id, principal)
    return jsonify(labelled("rfq", view.to_dict()))


@rfq_bp.route("/<rfq_id>", methods=["PUT", "PATCH"])
async def update_rfq(rfq_id: str):
    services, tenant_id, principal = request_context()
    view = await services.rfqs.update_rfq(tenant_id, rfq_id, _update_fields(json_payload()), principal)
    return jsonify(labelled("rfq", view.to_dict()))


@rfq_bp.route("/<rfq_id>", methods=["DELETE"])
async def delete_rfq(rfq_id: str):
    services, tenant_id, principal = request_context()
    await services.rfqs.delete_rfq(tenant_id, rfq_id, principal)
    return jsonify({"deleted": True, "id": rfq_id})


@rfq_bp.route("/<rfq_id>/resolve", methods=["POST"])
async def resolve_rfq(rfq_id: str):
    services, tenant_id, principal = request_context()
    resolved = parse_bool(json_payload().get("resolved"), default=True)
    rfq = await services.rfqs.resolve_rfq(tenant_id, rfq_id, resolved, principal)
    return jsonify(labelled("rfq", rfq.to_dict()))
