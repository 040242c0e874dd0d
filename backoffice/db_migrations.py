from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask


PROJECT_ROOT = Path(__file__).resolve().parents[1]
BASELINE_REVISION = "20261017_000001"
_SQLALCHEMY_PREFIXES = ("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")


def to_sqlalchemy_url(db_path: str | None) -> str:
    """Turn ``DB_PATH``/``DATABASE_URL`` into a SQLAlchemy URL; bare paths are sqlite files."""
    raw = str(db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(_SQLALCHEMY_PREFIXES):
        return raw
    return "sqlite:///" + Path(raw).expanduser().resolve().as_posix()


def build_alembic_config(app: Flask) -> AlembicConfig:
    ini_path = PROJECT_ROOT / "alembic.ini"
    if not ini_path.exists():
        raise RuntimeError(f"alembic.ini not found in {PROJECT_ROOT}.")

    alembic_cfg = AlembicConfig(str(ini_path))
    alembic_cfg.set_main_option("script_location", (PROJECT_ROOT / "migrations").as_posix())
    alembic_cfg.attributes["database_url"] = app.config["DB_PATH"]
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Tender back office schema migrations."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        click.echo(f"Schema upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Schema downgraded to {revision}.")

    @db_group.command("stamp")
    @click.argument("revision", required=False, default=BASELINE_REVISION)
    def db_stamp(revision: str) -> None:
        """Mark a database created by DB_AUTO_INIT as already at the baseline."""
        command.stamp(build_alembic_config(app), revision)
        click.echo(f"Schema stamped at {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)
