import os
import unittest
from unittest import mock

from backoffice import create_app
from backoffice.config import Config
from tests.helpers.temp_db import TempDbSandbox


class ConfigProductionGuardTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="config_guard")

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def test_production_without_database_url_refuses_to_start(self) -> None:
        TempConfig = self._temp_db.make_config(Config, DATABASE_URL=None)
        with mock.patch.dict(os.environ, {"FLASK_ENV": "production"}):
            with self.assertRaises(RuntimeError):
                create_app(TempConfig)

    def test_production_with_dev_secret_refuses_to_start(self) -> None:
        TempConfig = self._temp_db.make_config(
            Config, DATABASE_URL="postgresql://backoffice@db/backoffice", SECRET_KEY="dev-secret-backoffice"
        )
        with mock.patch.dict(os.environ, {"FLASK_ENV": "production"}):
            with self.assertRaises(RuntimeError):
                create_app(TempConfig)

    def test_development_accepts_defaults(self) -> None:
        TempConfig = self._temp_db.make_config(Config, TESTING=True)
        with mock.patch.dict(os.environ, {"FLASK_ENV": "development"}):
            app = create_app(TempConfig)
        self.assertEqual(app.config["DB_PATH"], self._temp_db.db_path)
        self.assertFalse(app.config["REMINDERS_ENABLED"])


if __name__ == "__main__":
    unittest.main()
