"""
Token store for per-user Google OAuth tokens.

Backed by the user_integrations table. The refresh token is written when the
user connects their account; the worker only replaces the access token and
its expiry after a refresh.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from crmsync.storage.db import SyncDatabase
from crmsync.utils.timeutil import format_timestamp, parse_timestamp, utcnow


@dataclass(frozen=True)
class TokenState:
    """Snapshot of a user's stored OAuth tokens."""

    user_id: str
    refresh_token: str | None
    access_token: str | None = None
    expiry: datetime | None = None
    last_sync_at: datetime | None = None

    @property
    def is_connected(self) -> bool:
        """True when a refresh token is available."""
        return bool(self.refresh_token)

    def needs_refresh(self, buffer_seconds: float, now: datetime | None = None) -> bool:
        """
        Check whether the access token must be refreshed before use.

        A token that is missing, has no known expiry, or expires within
        buffer_seconds of now needs a refresh.
        """
        if not self.access_token or self.expiry is None:
            return True
        now = now or utcnow()
        return self.expiry - timedelta(seconds=buffer_seconds) <= now


class TokenStore:
    """
    Persistent store of OAuth tokens keyed by user.

    Usage:
        store = TokenStore(db)
        store.connect('user-1', refresh_token='1//abc')
        state = store.get('user-1')
        store.set('user-1', 'ya29.new', expiry)
    """

    def __init__(self, db: SyncDatabase):
        self.db = db

    def get(self, user_id: str) -> TokenState | None:
        """Return the stored token state, or None if the user never connected."""
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT user_id, access_token, refresh_token, token_expiry, last_sync_at
                FROM user_integrations
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()

        if row is None:
            return None

        return TokenState(
            user_id=row["user_id"],
            refresh_token=row["refresh_token"],
            access_token=row["access_token"],
            expiry=parse_timestamp(row["token_expiry"]),
            last_sync_at=parse_timestamp(row["last_sync_at"]),
        )

    def set(self, user_id: str, access_token: str, expiry: datetime) -> None:
        """
        Store a freshly issued access token and its expiry.

        The refresh token is left untouched.
        """
        now = format_timestamp(utcnow())
        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE user_integrations
                SET access_token = ?, token_expiry = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (access_token, format_timestamp(expiry), now, user_id),
            )

    def rotate_refresh_token(self, user_id: str, refresh_token: str) -> None:
        """Replace the refresh token when the provider issues a new one."""
        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE user_integrations
                SET refresh_token = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (refresh_token, format_timestamp(utcnow()), user_id),
            )

    def connect(
        self,
        user_id: str,
        refresh_token: str,
        access_token: str | None = None,
        expiry: datetime | None = None,
    ) -> None:
        """Insert or replace a user's tokens after they connect Google Contacts."""
        now = format_timestamp(utcnow())
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO user_integrations (
                    user_id, access_token, refresh_token, token_expiry,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    token_expiry = excluded.token_expiry,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    access_token,
                    refresh_token,
                    format_timestamp(expiry),
                    now,
                    now,
                ),
            )

    def disconnect(self, user_id: str) -> bool:
        """
        Forget a user's tokens.

        Returns:
            True if tokens were removed, False if none were stored
        """
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE user_integrations
                SET access_token = NULL, refresh_token = NULL,
                    token_expiry = NULL, updated_at = ?
                WHERE user_id = ? AND refresh_token IS NOT NULL
                """,
                (format_timestamp(utcnow()), user_id),
            )
            return cursor.rowcount > 0

    def mark_synced(self, user_id: str, when: datetime | None = None) -> None:
        """Record the time of the user's last completed import."""
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE user_integrations SET last_sync_at = ? WHERE user_id = ?",
                (format_timestamp(when or utcnow()), user_id),
            )
