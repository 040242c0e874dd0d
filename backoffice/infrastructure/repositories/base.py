from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, TypeVar


T = TypeVar("T")


class TenantScopeRequiredError(ValueError):
    """Raised when a repository call is made without tenant scope."""


def require_tenant(tenant_id: str | None) -> str:
    scope = str(tenant_id or "").strip()
    if not scope:
        raise TenantScopeRequiredError("tenant_id is required for repository access")
    return scope


class BaseRepository:
    def __init__(self, db) -> None:
        self.db = db

    @staticmethod
    def build_tenant_clause(*, table_alias: str | None = None, column_name: str = "tenant_id") -> str:
        prefix = f"{table_alias.strip()}." if table_alias and str(table_alias).strip() else ""
        return f"{prefix}{column_name} = ?"

    @staticmethod
    def build_in_clause(column: str, values: Iterable[Any]) -> tuple[str, tuple[Any, ...]]:
        items = tuple(values)
        if not items:
            return "1 = 0", ()
        placeholders = ", ".join("?" for _ in items)
        return f"{column} IN ({placeholders})", items

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        # blocking driver calls stay off the event loop
        return await asyncio.to_thread(fn, *args)

    def fetch_all(self, sql: str, params: Iterable[Any] = ()) -> list[dict]:
        return self.rows_to_dicts(self.db.execute(sql, tuple(params)).fetchall())

    def fetch_one(self, sql: str, params: Iterable[Any] = ()) -> dict | None:
        row = self.db.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def write(self, statements: Iterable[tuple[str, Iterable[Any]]]) -> None:
        for sql, params in statements:
            self.db.execute(sql, tuple(params))
        self.db.commit()

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]
