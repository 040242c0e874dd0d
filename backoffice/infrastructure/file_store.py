from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath

from backoffice.errors import NotFoundError
from backoffice.infrastructure.repositories.base import require_tenant


class LocalFileStore:
    """Stores uploaded files on disk under ``<root>/<tenant>/<path>``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, tenant_id: str, path: str) -> Path:
        scope = require_tenant(tenant_id)
        relative = PurePosixPath(str(path or "").lstrip("/"))
        if not relative.parts or ".." in relative.parts:
            raise ValueError(f"invalid storage path: {path!r}")
        return self.root / scope / Path(*relative.parts)

    async def put(self, tenant_id: str, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(tenant_id, path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        return path

    async def get(self, tenant_id: str, path: str) -> bytes:
        target = self._resolve(tenant_id, path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(message_key="file_not_found", details=f"stored file {path} missing") from exc

    async def delete(self, tenant_id: str, path: str) -> None:
        target = self._resolve(tenant_id, path)
        await asyncio.to_thread(target.unlink, True)
