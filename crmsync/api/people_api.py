"""
Google People API adapter for the contact import.

Provides one operation, fetching a single page of the authenticated user's
connections. Errors are mapped onto two outcomes the worker cares about:
- ReauthorizationRequiredError when Google rejects the access token (401)
- PeopleAPIError for everything else

There is no retry here; a failed page fails the job and the user restarts it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from crmsync.auth.google_auth import ReauthorizationRequiredError
from crmsync.sync.checkpoint import DEFAULT_PAGE_SIZE

# Person fields requested for every connection
PERSON_FIELDS = ",".join(
    [
        "names",
        "emailAddresses",
        "phoneNumbers",
        "organizations",
        "biographies",
        "addresses",
        "urls",
        "birthdays",
        "photos",
        "memberships",
    ]
)

# The API rejects larger pages
MAX_PAGE_SIZE = 1000

# Socket timeout for a single page request (seconds)
DEFAULT_API_TIMEOUT = 30

logger = logging.getLogger(__name__)


class PeopleAPIError(Exception):
    """Raised when a People API request fails for a reason other than auth."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Page:
    """
    One page of connections.

    Attributes:
        records: Raw person resources as returned by the API
        next_page_token: Token for the following page, None on the last page
        total_estimate: totalPeople reported by the API, if any
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None
    total_estimate: Optional[int] = None

    @property
    def is_last(self) -> bool:
        return not self.next_page_token

    @property
    def last_external_id(self) -> Optional[str]:
        """resourceName of the last record on the page."""
        for person in reversed(self.records):
            if isinstance(person, dict) and person.get("resourceName"):
                return str(person["resourceName"])
        return None


class PeopleAPI:
    """
    Page-at-a-time reader for people.connections.list.

    Attributes:
        page_size: Default number of connections per page
        timeout: Socket timeout for each request

    Usage:
        api = PeopleAPI(page_size=200)
        page = api.fetch_page(access_token)
        while not page.is_last:
            page = api.fetch_page(access_token, page.next_page_token)
    """

    def __init__(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: int = DEFAULT_API_TIMEOUT,
    ):
        """
        Initialize the adapter.

        Args:
            page_size: Connections per page (capped at the API maximum)
            timeout: Socket timeout in seconds for each request
        """
        self.page_size = min(page_size, MAX_PAGE_SIZE)
        self.timeout = timeout

    def _build_service(self, access_token: str) -> Any:
        """
        Create a People API service bound to a bare access token.

        Raises:
            PeopleAPIError: If the service cannot be created
        """
        credentials = Credentials(token=access_token)
        http = google_auth_httplib2.AuthorizedHttp(
            credentials, http=httplib2.Http(timeout=self.timeout)
        )
        try:
            return build("people", "v1", http=http, cache_discovery=False)
        except Exception as e:
            logger.error(f"Failed to create People API service: {e}")
            raise PeopleAPIError(f"Failed to create API service: {e}") from e

    def fetch_page(
        self,
        access_token: str,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> Page:
        """
        Fetch one page of the user's connections.

        Args:
            access_token: Valid OAuth access token
            page_token: Token from the previous page, None for the first page
            page_size: Override for the default page size

        Returns:
            Page of raw person resources

        Raises:
            ReauthorizationRequiredError: If Google rejects the token (401)
            PeopleAPIError: For any other failure, including malformed responses
        """
        params: dict[str, Any] = {
            "resourceName": "people/me",
            "personFields": PERSON_FIELDS,
            "pageSize": min(page_size or self.page_size, MAX_PAGE_SIZE),
        }
        if page_token:
            params["pageToken"] = page_token

        logger.debug(f"Fetching connections page (page_token={bool(page_token)})")

        service = self._build_service(access_token)
        try:
            response = service.people().connections().list(**params).execute()
        except HttpError as e:
            status_code = e.resp.status
            if status_code == 401:
                logger.warning("People API rejected the access token (401)")
                raise ReauthorizationRequiredError(
                    "Google authentication expired"
                ) from e
            logger.error(f"list_connections failed with status {status_code}: {e}")
            raise PeopleAPIError(
                f"list_connections failed: {e}", status_code=status_code
            ) from e
        except Exception as e:
            logger.error(f"list_connections failed: {e}")
            raise PeopleAPIError(f"list_connections failed: {e}") from e

        return self._parse_response(response)

    @staticmethod
    def _parse_response(response: Any) -> Page:
        if not isinstance(response, dict):
            raise PeopleAPIError(
                f"Malformed connections response: {type(response).__name__}"
            )

        records = response.get("connections") or []
        if not isinstance(records, list):
            raise PeopleAPIError("Malformed connections response: connections")

        total = response.get("totalPeople", response.get("totalItems"))
        page = Page(
            records=records,
            next_page_token=response.get("nextPageToken") or None,
            total_estimate=int(total) if total is not None else None,
        )
        logger.debug(
            f"Fetched {len(records)} connections (more={not page.is_last})"
        )
        return page
