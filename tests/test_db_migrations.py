import os
import sqlite3
import unittest

from backoffice import create_app
from backoffice.config import Config
from backoffice.db import close_db
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="migrations")
        self.db_path = self._temp_db.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        TempConfig = self._temp_db.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init)
        return create_app(TempConfig)

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "tenders"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        for table in ("users", "tenders", "tender_tasks", "rfqs", "rfq_assignments", "activity_logs"):
            self.assertTrue(_table_exists(self.db_path, table), msg=table)

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "tender_tasks"))
        self.assertTrue(_table_exists(self.db_path, "activity_logs"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "tender_tasks"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "tender_tasks"))

    def test_stamp_marks_auto_initialised_schema_as_baseline(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        runner = app.test_cli_runner()

        stamp_result = runner.invoke(args=["db", "stamp"])
        self.assertEqual(stamp_result.exit_code, 0, msg=stamp_result.output)
        self.assertTrue(_table_exists(self.db_path, "alembic_version"))

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)

    def test_downgrade_one_step_drops_only_activity_log(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        self.assertEqual(runner.invoke(args=["db", "upgrade"]).exit_code, 0)
        result = runner.invoke(args=["db", "downgrade"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertFalse(_table_exists(self.db_path, "activity_logs"))
        self.assertTrue(_table_exists(self.db_path, "tenders"))


if __name__ == "__main__":
    unittest.main()
