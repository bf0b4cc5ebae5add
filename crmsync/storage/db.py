"""
SQLite database module for the contact sync engine.

Owns the connection handling and schema for every table the engine touches:
OAuth tokens, internal contacts, contact links, sync jobs and the job event log.
Table-specific operations live in the sibling repository modules.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from typing import Optional

# Seconds a connection waits on a locked database before raising
DEFAULT_BUSY_TIMEOUT = 30.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS user_integrations (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    access_token TEXT,
    refresh_token TEXT,
    token_expiry TEXT,
    last_sync_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(user_id)
);

CREATE TABLE IF NOT EXISTS app_contacts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    display_name TEXT NOT NULL,
    given_name TEXT,
    family_name TEXT,
    emails TEXT,
    phones TEXT,
    label TEXT,
    birthday TEXT,
    google_resource_name TEXT,
    google_etag TEXT,
    source_preference TEXT,
    notes TEXT,
    cadence_days INTEGER,
    conversation_context TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_app_contacts_user ON app_contacts(user_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_app_contacts_google_resource
    ON app_contacts(user_id, google_resource_name)
    WHERE google_resource_name IS NOT NULL;

CREATE TABLE IF NOT EXISTS contact_links (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    app_contact_id TEXT NOT NULL REFERENCES app_contacts(id) ON DELETE CASCADE,
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    external_etag TEXT,
    sync_enabled INTEGER NOT NULL DEFAULT 1,
    last_pulled_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(user_id, source, external_id),
    UNIQUE(app_contact_id, source)
);

CREATE INDEX IF NOT EXISTS idx_contact_links_contact ON contact_links(app_contact_id);

CREATE TABLE IF NOT EXISTS sync_jobs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL,
    progress_done INTEGER NOT NULL DEFAULT 0,
    progress_total_estimate INTEGER,
    error_message TEXT,
    checkpoint TEXT,
    job_params TEXT,
    lease_owner TEXT,
    lease_expires_at TEXT,
    started_at TEXT,
    finished_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_jobs_one_active
    ON sync_jobs(user_id, job_type)
    WHERE status IN ('queued', 'running');
CREATE INDEX IF NOT EXISTS idx_sync_jobs_status_created
    ON sync_jobs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_sync_jobs_user ON sync_jobs(user_id);

CREATE TABLE IF NOT EXISTS sync_job_items (
    id INTEGER PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES sync_jobs(id) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    payload TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_job_items_job ON sync_job_items(job_id);
"""


class SyncDatabase:
    """
    SQLite database manager for the sync engine.

    Usage:
        db = SyncDatabase('/path/to/crmsync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
            busy_timeout: Seconds to wait for a lock held by another process
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _connect(self, target: str) -> sqlite3.Connection:
        # The shared in-memory connection may be used from server worker threads
        conn = sqlite3.connect(
            target, timeout=self.busy_timeout, check_same_thread=target != ":memory:"
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        In-memory databases share one connection so the schema persists
        across operations. File databases get a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = self._connect(":memory:")
            return self._shared_connection
        return self._connect(self.db_path)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Everything executed inside one block commits or rolls back together.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM sync_jobs")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None

    def __repr__(self) -> str:
        return f"SyncDatabase(db_path={self.db_path!r})"
