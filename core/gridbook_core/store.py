"""
store.py — SQLite document store for Gridbook (pure stdlib)

Tables are stored as documents holding their ordered field list as JSON;
entries are stored as documents holding their attribute map as JSON.
Connections run in autocommit mode; every multi-statement write goes
through ``transaction()`` so that it either applies fully or not at all.
"""

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "gridbook.db"

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS tables (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        fields_json TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_tables_name
        ON tables(name COLLATE NOCASE);

    CREATE TABLE IF NOT EXISTS entries (
        id TEXT PRIMARY KEY,
        table_id TEXT NOT NULL,
        data_json TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (table_id) REFERENCES tables(id) DEFERRABLE INITIALLY DEFERRED
    );
    CREATE INDEX IF NOT EXISTS idx_entries_table_id
        ON entries(table_id);
"""

# Set by tests (and the --db-path launcher flag) to bypass the environment.
_db_path_override = None


class StoreError(Exception):
    """Base exception for store operations."""


def _set_paths_for_testing(db_path):
    """Point the store at an explicit database file."""
    global _db_path_override
    _db_path_override = db_path


def _reset_paths():
    """Forget any explicit database path."""
    global _db_path_override
    _db_path_override = None


def get_db_path():
    """Resolve the database path.

    Priority: explicit override, GRIDBOOK_DB_PATH env var, then
    ``gridbook.db`` in the current working directory.
    """
    if _db_path_override:
        return _db_path_override
    env_path = os.environ.get("GRIDBOOK_DB_PATH", "").strip()
    if env_path:
        return env_path
    return os.path.join(os.getcwd(), DEFAULT_DB_NAME)


def ensure_schema(conn):
    """Create the store tables if they do not exist yet."""
    conn.executescript(SCHEMA_SQL)


def get_db(db_path=None):
    """Open a connection to the document store.

    Rows come back as ``sqlite3.Row``; foreign keys are enforced.
    """
    path = db_path or get_db_path()
    conn = sqlite3.connect(path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    ensure_schema(conn)
    return conn


@contextmanager
def transaction(conn):
    """Run a block of writes atomically.

    Takes the write lock up front (BEGIN IMMEDIATE). Any exception inside
    the block rolls everything back and is re-raised.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def new_id():
    """Generate a document identifier."""
    return str(uuid.uuid4())


def is_valid_id(value):
    """True if ``value`` is a canonical document identifier."""
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def utc_now():
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def dump_json(value):
    return json.dumps(value, ensure_ascii=False)


def load_json(text, default=None):
    """Parse a stored JSON column, falling back to ``default`` when empty."""
    if not text:
        return default
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise StoreError(f"Corrupt JSON document: {e}") from e
