"""Activity log for tender, task and RFQ changes

Revision ID: 20261017_000002
Revises: 20261017_000001
Create Date: 2026-10-17 00:00:02
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

from backoffice.db import ACTIVITY_SCHEMA_SQL, ACTIVITY_SCHEMA_TABLES, _split_sql_statements


# revision identifiers, used by Alembic.
revision: str = "20261017_000002"
down_revision: Union[str, Sequence[str], None] = "20261017_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    for statement in _split_sql_statements(ACTIVITY_SCHEMA_SQL):
        if statement.strip():
            op.execute(statement)


def downgrade() -> None:
    for table in reversed(ACTIVITY_SCHEMA_TABLES):
        op.execute(f"DROP TABLE IF EXISTS {table}")
