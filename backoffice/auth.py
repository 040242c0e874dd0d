from __future__ import annotations

from flask import current_app, g, jsonify, request, session

from backoffice.domain.models import Principal
from backoffice.errors import AuthRequiredError
from backoffice.observability import current_request_id
from backoffice.policies import normalize_role
from backoffice.tenant import scoped_tenant_id
from backoffice.ui_strings import error_message


PUBLIC_PATHS = {"/health"}


def register_auth(app) -> None:
    @app.before_request
    def _load_principal():
        g.principal = _resolve_principal()
        if not app.config.get("AUTH_ENABLED", True):
            return None
        path = request.path or "/"
        if path in PUBLIC_PATHS or not path.startswith("/api/"):
            return None
        if g.principal is not None:
            return None
        return (
            jsonify(
                {
                    "error": "auth_required",
                    "message": error_message("auth_required", "Authentication required."),
                    "request_id": current_request_id(default="n/a"),
                }
            ),
            401,
        )


def _resolve_principal() -> Principal | None:
    user_id = str(session.get("user_id") or "").strip()
    role = session.get("user_role")
    if not user_id and current_app.config.get("ALLOW_HEADER_IDENTITY", False):
        user_id = str(request.headers.get("X-User-Id") or "").strip()
        role = request.headers.get("X-User-Role")
    if not user_id:
        return None
    return Principal(
        user_id=user_id,
        role=normalize_role(role),
        tenant_id=scoped_tenant_id(),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


def current_principal() -> Principal | None:
    return getattr(g, "principal", None)


def require_principal() -> Principal:
    principal = current_principal()
    if principal is None:
        raise AuthRequiredError()
    return principal
