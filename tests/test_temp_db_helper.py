import os
import sqlite3
import tempfile
import unittest

from backoffice.config import Config
from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path


class TempDbHelperTest(unittest.TestCase):
    def test_sandbox_creates_and_removes_its_folder(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        db_path = sandbox.db_path
        temp_dir = sandbox.temp_dir

        self.assertTrue(os.path.exists(temp_dir))
        self.assertTrue(db_path.startswith(os.path.realpath(tempfile.gettempdir())))

        conn = sqlite3.connect(db_path)
        try:
            conn.execute("CREATE TABLE IF NOT EXISTS sanity (id INTEGER PRIMARY KEY, value TEXT)")
            conn.execute("INSERT INTO sanity (value) VALUES ('ok')")
            row = conn.execute("SELECT COUNT(*) FROM sanity").fetchone()
            self.assertEqual(int(row[0]), 1)
        finally:
            conn.close()

        sandbox.cleanup()
        self.assertFalse(os.path.exists(db_path))
        self.assertFalse(os.path.exists(temp_dir))

    def test_make_config_points_storage_into_sandbox(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_config")
        try:
            TempConfig = sandbox.make_config(Config, TESTING=True)
            self.assertEqual(TempConfig.DB_PATH, sandbox.db_path)
            self.assertTrue(TempConfig.FILE_STORAGE_DIR.startswith(sandbox.temp_dir))
            self.assertFalse(TempConfig.REMINDERS_ENABLED)
        finally:
            sandbox.cleanup()

    def test_disallow_workspace_paths(self) -> None:
        workspace_db = os.path.join(os.getcwd(), "backoffice_test.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)


if __name__ == "__main__":
    unittest.main()
