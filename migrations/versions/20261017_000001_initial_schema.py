"""Initial tender, task and RFQ schema

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

from backoffice.db import SCHEMA_SQL, SCHEMA_TABLES, _split_sql_statements


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    for statement in _split_sql_statements(SCHEMA_SQL):
        if statement.strip():
            op.execute(statement)


def downgrade() -> None:
    for table in reversed(SCHEMA_TABLES):
        op.execute(f"DROP TABLE IF EXISTS {table}")
