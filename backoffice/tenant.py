from flask import current_app, g, has_app_context, session


DEFAULT_TENANT_ID = "tenant-demo"


def current_tenant_id() -> str | None:
    return normalize_tenant_id(session.get("tenant_id")) or normalize_tenant_id(getattr(g, "tenant_id", None))


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def default_tenant_id() -> str:
    if has_app_context():
        configured = normalize_tenant_id(current_app.config.get("DEFAULT_TENANT_ID"))
        if configured:
            return configured
    return DEFAULT_TENANT_ID


def scoped_tenant_id(value: str | None = None) -> str:
    return normalize_tenant_id(value) or current_tenant_id() or default_tenant_id()


def parse_tenant_ids(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.replace(";", ",").split(",")
    elif isinstance(value, (list, tuple, set)):
        items = [str(item) for item in value]
    else:
        return ()
    seen: list[str] = []
    for item in items:
        tenant_id = normalize_tenant_id(item)
        if tenant_id and tenant_id not in seen:
            seen.append(tenant_id)
    return tuple(seen)
