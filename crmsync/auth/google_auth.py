"""
OAuth2 token lifecycle for the Google Contacts import.

Provides:
- Loading the OAuth client id/secret from credentials.json or the environment
- Exchanging a stored refresh token for a new access token
- Handing the worker a usable access token, refreshing it when it is about
  to expire

Obtaining the initial refresh token (the consent flow) is handled by the
application; the CLI `connect` command stores one that was issued elsewhere.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from crmsync.storage.tokens import TokenStore
from crmsync.utils.timeutil import utcnow

# OAuth2 scope required for reading contacts
SCOPES = ["https://www.googleapis.com/auth/contacts.readonly"]

# Google's OAuth token endpoint
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"  # nosec B105

# Refresh the access token when it expires within this many seconds
DEFAULT_EXPIRY_BUFFER = 300

# Lifetime assumed when the token endpoint does not report one
DEFAULT_TOKEN_LIFETIME = 3600

# Environment variables for the OAuth client
CLIENT_ID_ENV_VAR = "GOOGLE_CLIENT_ID"
CLIENT_SECRET_ENV_VAR = "GOOGLE_CLIENT_SECRET"  # nosec B105

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails or credentials are invalid."""

    pass


class ReauthorizationRequiredError(AuthenticationError):
    """Raised when the user must reconnect their Google account."""

    pass


@dataclass(frozen=True)
class ClientConfig:
    """OAuth client registered with Google."""

    client_id: str
    client_secret: str
    token_uri: str = DEFAULT_TOKEN_URI


@dataclass(frozen=True)
class RefreshedToken:
    """Result of a successful refresh."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None


def load_client_config(
    config_dir: Optional[Path] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    token_uri: Optional[str] = None,
) -> ClientConfig:
    """
    Resolve the OAuth client configuration.

    Precedence: explicit arguments, then GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET,
    then credentials.json in config_dir (Google client-secrets format with an
    "installed" or "web" section).

    Raises:
        AuthenticationError: If no complete client configuration is found
    """
    client_id = client_id or os.environ.get(CLIENT_ID_ENV_VAR)
    client_secret = client_secret or os.environ.get(CLIENT_SECRET_ENV_VAR)

    if not (client_id and client_secret) and config_dir is not None:
        credentials_path = Path(config_dir) / "credentials.json"
        if credentials_path.exists():
            try:
                data = json.loads(credentials_path.read_text())
            except json.JSONDecodeError as e:
                raise AuthenticationError(
                    f"Invalid credentials file {credentials_path}: {e}"
                ) from e
            section = data.get("installed") or data.get("web") or data
            client_id = client_id or section.get("client_id")
            client_secret = client_secret or section.get("client_secret")
            token_uri = token_uri or section.get("token_uri")
            logger.debug(f"Loaded OAuth client from {credentials_path}")

    if not (client_id and client_secret):
        raise AuthenticationError(
            "Google OAuth client is not configured. Set google_client_id and "
            "google_client_secret in config.yaml, export "
            f"{CLIENT_ID_ENV_VAR}/{CLIENT_SECRET_ENV_VAR}, or place "
            "credentials.json in the config directory."
        )

    return ClientConfig(
        client_id=client_id,
        client_secret=client_secret,
        token_uri=token_uri or DEFAULT_TOKEN_URI,
    )


class GoogleTokenRefresher:
    """
    Exchanges refresh tokens for access tokens using google-auth.

    Usage:
        refresher = GoogleTokenRefresher(load_client_config(config_dir))
        token = refresher.refresh_access_token(refresh_token)
    """

    def __init__(self, client: ClientConfig, timeout: int = 10):
        """
        Initialize the refresher.

        Args:
            client: OAuth client configuration
            timeout: Timeout in seconds for the token request
        """
        self.client = client
        self.timeout = timeout

    def refresh_access_token(self, refresh_token: str) -> RefreshedToken:
        """
        Obtain a new access token.

        Args:
            refresh_token: Refresh token stored for the user

        Returns:
            RefreshedToken with the new access token, its lifetime and the
            rotated refresh token if Google issued one

        Raises:
            ReauthorizationRequiredError: If the refresh token is revoked or invalid
            AuthenticationError: If the token endpoint could not be reached
        """
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=self.client.client_id,
            client_secret=self.client.client_secret,
            token_uri=self.client.token_uri,
            scopes=SCOPES,
        )

        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning(f"Failed to refresh credentials: {e}")
            raise ReauthorizationRequiredError(
                f"Refresh token rejected: {e}"
            ) from e
        except TransportError as e:
            logger.warning(f"Token endpoint unreachable: {e}")
            raise AuthenticationError(f"Token refresh failed: {e}") from e

        if not creds.token:
            raise ReauthorizationRequiredError("Token endpoint returned no access token")

        expires_in = DEFAULT_TOKEN_LIFETIME
        if creds.expiry is not None:
            # google-auth reports expiry as naive UTC
            expiry = creds.expiry.replace(tzinfo=timezone.utc)
            expires_in = max(int((expiry - utcnow()).total_seconds()), 0)

        new_refresh = creds.refresh_token
        logger.debug("Successfully refreshed credentials")
        return RefreshedToken(
            access_token=creds.token,
            expires_in=expires_in,
            refresh_token=new_refresh if new_refresh != refresh_token else None,
        )


class TokenManager:
    """
    Supplies valid access tokens to the worker.

    Attributes:
        token_store: Persistent per-user token store
        refresher: Refresh-token exchanger
        expiry_buffer: Seconds before expiry at which a token is refreshed

    Usage:
        manager = TokenManager(TokenStore(db), refresher)
        access_token = manager.ensure_access_token('user-1')
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresher: GoogleTokenRefresher,
        expiry_buffer: int = DEFAULT_EXPIRY_BUFFER,
    ):
        self.token_store = token_store
        self.refresher = refresher
        self.expiry_buffer = expiry_buffer

    def is_connected(self, user_id: str) -> bool:
        state = self.token_store.get(user_id)
        return state is not None and state.is_connected

    def ensure_access_token(
        self, user_id: str, now: Optional[datetime] = None
    ) -> str:
        """
        Return an access token valid for at least expiry_buffer seconds.

        Refreshes and persists a new token when the stored one is missing or
        about to expire.

        Raises:
            ReauthorizationRequiredError: If the user is not connected or the
                refresh token is rejected
            AuthenticationError: If the refresh could not be performed
        """
        state = self.token_store.get(user_id)
        refresh_token = state.refresh_token if state else None
        if state is None or not refresh_token:
            raise ReauthorizationRequiredError("Google Contacts not connected")

        now = now or utcnow()
        if state.access_token and not state.needs_refresh(self.expiry_buffer, now=now):
            return state.access_token

        logger.info(f"Refreshing Google access token for {user_id}")
        refreshed = self.refresher.refresh_access_token(refresh_token)

        expiry = now + timedelta(seconds=refreshed.expires_in)
        self.token_store.set(user_id, refreshed.access_token, expiry)
        if refreshed.refresh_token:
            self.token_store.rotate_refresh_token(user_id, refreshed.refresh_token)
            logger.debug(f"Stored rotated refresh token for {user_id}")

        return refreshed.access_token
