import unittest

from backoffice.errors import NotFoundError
from backoffice.infrastructure.file_store import LocalFileStore
from tests.helpers.temp_db import TempDbSandbox


class LocalFileStoreTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="file_store")
        self.store = LocalFileStore(self._temp_db.storage_dir)

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    async def test_put_get_delete(self) -> None:
        path = await self.store.put("tenant-a", "tender-1-task-2/offer.pdf", b"data", "application/pdf")

        self.assertEqual(await self.store.get("tenant-a", path), b"data")
        with self.assertRaises(NotFoundError):
            await self.store.get("tenant-b", path)

        await self.store.delete("tenant-a", path)
        await self.store.delete("tenant-a", path)
        with self.assertRaises(NotFoundError):
            await self.store.get("tenant-a", path)

    async def test_rejects_traversal(self) -> None:
        with self.assertRaises(ValueError):
            await self.store.put("tenant-a", "../escape.pdf", b"x", "application/pdf")
        with self.assertRaises(ValueError):
            await self.store.get("", "a.pdf")
