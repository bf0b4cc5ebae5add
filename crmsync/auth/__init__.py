"""
crmsync.auth - OAuth token lifecycle

Client configuration, refresh-token exchange and access-token supply.
"""

from crmsync.auth.google_auth import (
    DEFAULT_EXPIRY_BUFFER,
    AuthenticationError,
    ClientConfig,
    GoogleTokenRefresher,
    ReauthorizationRequiredError,
    RefreshedToken,
    TokenManager,
    load_client_config,
)

__all__ = [
    "DEFAULT_EXPIRY_BUFFER",
    "AuthenticationError",
    "ClientConfig",
    "GoogleTokenRefresher",
    "ReauthorizationRequiredError",
    "RefreshedToken",
    "TokenManager",
    "load_client_config",
]
