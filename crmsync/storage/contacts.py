"""
Contact repository for internal contacts and their external links.

The contact store is shared with the rest of the application, so the sync
only ever writes through upserts keyed by stable external identity and only
touches the columns it owns.
"""

import json
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from crmsync.storage.db import SyncDatabase
from crmsync.sync.contact import ExternalContact
from crmsync.sync.job import SOURCE_GOOGLE
from crmsync.utils.timeutil import format_timestamp, utcnow

# Columns the application's users edit by hand; the sync never writes them
USER_AUTHORED_FIELDS = ("notes", "cadence_days", "conversation_context")

# Columns holding JSON lists
_JSON_FIELDS = ("emails", "phones")


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of reconciling one external record."""

    app_contact_id: str
    created: bool
    matched_by: Optional[str] = None  # "resource_name", "link" or None if created


class ContactRepository:
    """
    Repository for app_contacts and contact_links.

    Usage:
        repo = ContactRepository(db)
        outcome = repo.upsert_by_source_id('user-1', external_contact)
        link = repo.find_link_by_source_id('user-1', 'google', 'people/c1')
    """

    def __init__(self, db: SyncDatabase):
        self.db = db

    # =========================================================================
    # Link Operations
    # =========================================================================

    def find_link_by_source_id(
        self, user_id: str, source: str, external_id: str
    ) -> Optional[dict[str, Any]]:
        """
        Look up the link for an external record.

        Returns:
            Link row as a dictionary, or None if the record was never linked
        """
        with self.db.connection() as conn:
            return self._find_link(conn, user_id, source, external_id)

    def create_link(
        self,
        user_id: str,
        app_contact_id: str,
        source: str,
        external_id: str,
        external_etag: Optional[str] = None,
    ) -> None:
        """
        Link an internal contact to an external record.

        Raises:
            sqlite3.IntegrityError: If the external record or the contact is
                already linked for this source
        """
        with self.db.connection() as conn:
            self._insert_link(
                conn, user_id, app_contact_id, source, external_id, external_etag
            )

    def get_links_for_contact(self, app_contact_id: str) -> list[dict[str, Any]]:
        """Return every link of an internal contact."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM contact_links WHERE app_contact_id = ? ORDER BY source",
                (app_contact_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def count_links(self, user_id: str, source: str = SOURCE_GOOGLE) -> int:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM contact_links WHERE user_id = ? AND source = ?",
                (user_id, source),
            )
            result: int = cursor.fetchone()[0]
            return result

    # =========================================================================
    # Contact Operations
    # =========================================================================

    def upsert_by_source_id(
        self,
        user_id: str,
        contact: ExternalContact,
        source: str = SOURCE_GOOGLE,
    ) -> UpsertOutcome:
        """
        Insert or update the internal contact for an external record.

        Resolution order:
            1. app_contacts.google_resource_name match
            2. contact_links(source, external_id) match
            3. otherwise insert a new contact and its link

        Contact and link are written in one transaction, so a failure leaves
        neither behind. Running this twice for the same record is a no-op
        apart from refreshed timestamps.

        Args:
            user_id: Owner of the contact store
            contact: Parsed external record
            source: External source name

        Returns:
            UpsertOutcome describing what happened
        """
        now = format_timestamp(utcnow())
        fields = _encode(contact.synced_fields())

        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT id FROM app_contacts
                WHERE user_id = ? AND google_resource_name = ?
                """,
                (user_id, contact.resource_name),
            ).fetchone()
            matched_by = "resource_name" if row else None

            if row is None:
                link = self._find_link(conn, user_id, source, contact.resource_name)
                if link is not None:
                    row = {"id": link["app_contact_id"]}
                    matched_by = "link"

            if row is not None:
                contact_id = row["id"]
                assignments = ", ".join(f"{name} = ?" for name in fields)
                conn.execute(
                    f"UPDATE app_contacts SET {assignments}, updated_at = ? "  # nosec B608
                    "WHERE id = ?",
                    (*fields.values(), now, contact_id),
                )
                self._touch_link(
                    conn, user_id, contact_id, source, contact.resource_name,
                    contact.etag, now,
                )
                return UpsertOutcome(contact_id, created=False, matched_by=matched_by)

            contact_id = str(uuid.uuid4())
            columns = ", ".join(fields)
            placeholders = ", ".join("?" for _ in fields)
            conn.execute(
                f"INSERT INTO app_contacts (id, user_id, {columns}, "  # nosec B608
                "source_preference, created_at, updated_at) "
                f"VALUES (?, ?, {placeholders}, ?, ?, ?)",
                (contact_id, user_id, *fields.values(), source, now, now),
            )
            self._insert_link(
                conn, user_id, contact_id, source, contact.resource_name,
                contact.etag, now,
            )
            return UpsertOutcome(contact_id, created=True)

    def get_contact(self, contact_id: str) -> Optional[dict[str, Any]]:
        """Return a contact with JSON columns decoded, or None."""
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM app_contacts WHERE id = ?", (contact_id,)
            ).fetchone()
        return _decode(dict(row)) if row else None

    def list_contacts(self, user_id: str) -> list[dict[str, Any]]:
        """Return all contacts of a user ordered by display name."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM app_contacts WHERE user_id = ? "
                "ORDER BY display_name, id",
                (user_id,),
            )
            return [_decode(dict(row)) for row in cursor.fetchall()]

    def count_contacts(self, user_id: str) -> int:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM app_contacts WHERE user_id = ?", (user_id,)
            )
            result: int = cursor.fetchone()[0]
            return result

    def update_user_fields(self, contact_id: str, **values: Any) -> bool:
        """
        Apply a manual edit to user-authored columns.

        Raises:
            ValueError: If a column outside USER_AUTHORED_FIELDS is given
        """
        unknown = set(values) - set(USER_AUTHORED_FIELDS)
        if unknown:
            raise ValueError(
                f"Not user-editable: {', '.join(sorted(unknown))}"
            )
        if not values:
            return False

        assignments = ", ".join(f"{name} = ?" for name in values)
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE app_contacts SET {assignments}, updated_at = ? "  # nosec B608
                "WHERE id = ?",
                (*values.values(), format_timestamp(utcnow()), contact_id),
            )
            return cursor.rowcount > 0

    # =========================================================================
    # Internal helpers (operate on an open connection)
    # =========================================================================

    @staticmethod
    def _find_link(
        conn: sqlite3.Connection, user_id: str, source: str, external_id: str
    ) -> Optional[dict[str, Any]]:
        row = conn.execute(
            """
            SELECT app_contact_id, user_id, source, external_id, external_etag,
                   sync_enabled, last_pulled_at, created_at, updated_at
            FROM contact_links
            WHERE user_id = ? AND source = ? AND external_id = ?
            """,
            (user_id, source, external_id),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def _insert_link(
        conn: sqlite3.Connection,
        user_id: str,
        app_contact_id: str,
        source: str,
        external_id: str,
        external_etag: Optional[str],
        now: Optional[str] = None,
    ) -> None:
        now = now or format_timestamp(utcnow())
        conn.execute(
            """
            INSERT INTO contact_links (
                user_id, app_contact_id, source, external_id, external_etag,
                sync_enabled, last_pulled_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (user_id, app_contact_id, source, external_id, external_etag, now, now, now),
        )

    @staticmethod
    def _touch_link(
        conn: sqlite3.Connection,
        user_id: str,
        app_contact_id: str,
        source: str,
        external_id: str,
        external_etag: Optional[str],
        now: str,
    ) -> None:
        """Refresh the link after an update, creating it if it went missing."""
        cursor = conn.execute(
            """
            UPDATE contact_links
            SET external_etag = ?, last_pulled_at = ?, updated_at = ?
            WHERE user_id = ? AND source = ? AND external_id = ?
            """,
            (external_etag, now, now, user_id, source, external_id),
        )
        if cursor.rowcount == 0:
            conn.execute(
                """
                INSERT OR IGNORE INTO contact_links (
                    user_id, app_contact_id, source, external_id, external_etag,
                    sync_enabled, last_pulled_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                """,
                (
                    user_id, app_contact_id, source, external_id, external_etag,
                    now, now, now,
                ),
            )


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    encoded = dict(fields)
    for name in _JSON_FIELDS:
        if name in encoded:
            encoded[name] = json.dumps(encoded[name] or [])
    return encoded


def _decode(row: dict[str, Any]) -> dict[str, Any]:
    for name in _JSON_FIELDS:
        if row.get(name):
            row[name] = json.loads(row[name])
        else:
            row[name] = []
    return row
