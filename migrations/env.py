from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from backoffice.db_migrations import to_sqlalchemy_url


config = context.config

# The Flask CLI has already configured JSON logging for the app.
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = None


def _database_url() -> str:
    explicit = config.attributes.get("database_url")
    if explicit:
        return to_sqlalchemy_url(explicit)
    env_url = os.environ.get("DATABASE_URL") or os.environ.get("DB_PATH")
    return to_sqlalchemy_url(env_url or config.get_main_option("sqlalchemy.url"))


def _configure(url: str, **kwargs) -> None:
    # SQLite cannot ALTER most constraints in place.
    context.configure(
        target_metadata=target_metadata,
        render_as_batch=url.startswith("sqlite"),
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    url = _database_url()
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = url
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool, future=True)

    with engine.connect() as connection:
        _configure(url, connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
