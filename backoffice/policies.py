from __future__ import annotations

from typing import Iterable, Set


VALID_ROLES: Set[str] = {"admin", "procurement_officer", "manager", "buyer", "viewer"}
DEFAULT_ELEVATED_ROLES: Set[str] = {"admin", "procurement_officer"}


def normalize_role(role: str | None, default: str = "viewer") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str] | str | None) -> Set[str]:
    if roles is None:
        return set()
    if isinstance(roles, str):
        roles = roles.split(",")
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role, default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def is_elevated(role: str | None, elevated_roles: Iterable[str] | str | None = None) -> bool:
    allowed = normalize_allowed_roles(elevated_roles) or DEFAULT_ELEVATED_ROLES
    return normalize_role(role) in allowed

