import os
import sqlite3
from typing import Iterable, List

import psycopg2
import psycopg2.extras
from flask import current_app, g


# Timestamps are stored as fixed-width UTC ISO text so range filters compare
# lexicographically on both backends.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    email TEXT,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL DEFAULT 'viewer',
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_users_tenant ON users (tenant_id);

CREATE TABLE IF NOT EXISTS tenders (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    deadline TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('draft', 'active', 'closed', 'cancelled')),
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tenders_tenant_status ON tenders (tenant_id, status, deadline);

CREATE TABLE IF NOT EXISTS tender_tasks (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    tender_id TEXT NOT NULL REFERENCES tenders (id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    assignee_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'submitted', 'deleted')),
    file_name TEXT,
    file_path TEXT,
    file_type TEXT,
    due_date TEXT,
    submitted_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tender_tasks_tenant_tender ON tender_tasks (tenant_id, tender_id);
CREATE INDEX IF NOT EXISTS idx_tender_tasks_tenant_status_due ON tender_tasks (tenant_id, status, due_date);

CREATE TABLE IF NOT EXISTS rfqs (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    subject TEXT NOT NULL,
    sender_address TEXT NOT NULL,
    items_json TEXT NOT NULL DEFAULT '[]',
    open_date TEXT NOT NULL,
    close_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'sent', 'closed')),
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rfqs_tenant_status ON rfqs (tenant_id, status, close_date);

CREATE TABLE IF NOT EXISTS rfq_assignments (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    rfq_id TEXT NOT NULL REFERENCES rfqs (id) ON DELETE CASCADE,
    assignee_id TEXT NOT NULL,
    assigned_at TEXT NOT NULL,
    UNIQUE (tenant_id, rfq_id, assignee_id)
);

CREATE INDEX IF NOT EXISTS idx_rfq_assignments_tenant_rfq ON rfq_assignments (tenant_id, rfq_id);
"""

SCHEMA_TABLES = ("users", "tenders", "tender_tasks", "rfqs", "rfq_assignments")

# Added by revision 20261017_000002; kept apart from SCHEMA_SQL so the baseline
# revision stays as it shipped.
ACTIVITY_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS activity_logs (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT,
    description TEXT,
    previous_values TEXT,
    new_values TEXT,
    ip_address TEXT,
    user_agent TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_activity_logs_tenant_entity ON activity_logs (tenant_id, entity_type, entity_id, created_at);
"""

ACTIVITY_SCHEMA_TABLES = ("activity_logs",)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    for ch in sql:
        if ch == "'":
            in_single = not in_single
        elif ch == ";" and not in_single:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    # repository calls are off-loaded to worker threads
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    create_schema(get_db())


def create_schema(db: Database) -> None:
    db.executescript(SCHEMA_SQL)
    db.executescript(ACTIVITY_SCHEMA_SQL)
    db.commit()
