"""
Unit tests for the People API module.

Tests PeopleAPI.fetch_page with mocked Google API responses.
"""

from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from crmsync.api.people_api import (
    MAX_PAGE_SIZE,
    PERSON_FIELDS,
    Page,
    PeopleAPI,
    PeopleAPIError,
)
from crmsync.auth.google_auth import ReauthorizationRequiredError


def _http_error(status, content=b"error"):
    mock_resp = MagicMock()
    mock_resp.status = status
    return HttpError(mock_resp, content)


@pytest.fixture
def mock_build():
    with patch("crmsync.api.people_api.build") as mock:
        yield mock


@pytest.fixture
def list_call(mock_build):
    """The mocked connections().list callable."""
    service = MagicMock()
    mock_build.return_value = service
    return service.people.return_value.connections.return_value.list


class TestPeopleAPIInitialization:
    """Tests for PeopleAPI initialization."""

    def test_defaults(self):
        api = PeopleAPI()
        assert api.page_size == 200
        assert api.timeout == 30

    def test_page_size_capped(self):
        """Test that page size is capped at 1000."""
        assert PeopleAPI(page_size=5000).page_size == MAX_PAGE_SIZE

    def test_person_fields(self):
        for name in ("names", "emailAddresses", "phoneNumbers", "birthdays", "memberships"):
            assert name in PERSON_FIELDS.split(",")


class TestFetchPage:
    """Tests for fetch_page."""

    def test_first_page_request(self, mock_build, list_call):
        list_call.return_value.execute.return_value = {
            "connections": [{"resourceName": "people/c1"}],
            "nextPageToken": "tok-2",
            "totalPeople": 42,
        }

        page = PeopleAPI(page_size=100).fetch_page("access-token")

        list_call.assert_called_once_with(
            resourceName="people/me",
            personFields=PERSON_FIELDS,
            pageSize=100,
        )
        assert mock_build.call_args[0] == ("people", "v1")
        assert mock_build.call_args[1]["cache_discovery"] is False
        assert page.records == [{"resourceName": "people/c1"}]
        assert page.next_page_token == "tok-2"
        assert page.total_estimate == 42
        assert page.is_last is False

    def test_page_token_and_override(self, list_call):
        list_call.return_value.execute.return_value = {"connections": []}

        PeopleAPI().fetch_page("access-token", page_token="tok-2", page_size=50)

        kwargs = list_call.call_args[1]
        assert kwargs["pageToken"] == "tok-2"
        assert kwargs["pageSize"] == 50

    def test_last_page(self, list_call):
        list_call.return_value.execute.return_value = {
            "connections": [{"resourceName": "people/c9"}]
        }

        page = PeopleAPI().fetch_page("access-token", page_token="tok-2")

        assert page.is_last is True
        assert page.next_page_token is None
        assert page.total_estimate is None

    def test_empty_response(self, list_call):
        """A user with no contacts gets an empty, final page."""
        list_call.return_value.execute.return_value = {}

        page = PeopleAPI().fetch_page("access-token")

        assert page.records == []
        assert page.is_last

    def test_total_items_fallback(self, list_call):
        list_call.return_value.execute.return_value = {"totalItems": 7}
        assert PeopleAPI().fetch_page("t").total_estimate == 7

    def test_unauthorized_requires_reauthorization(self, list_call):
        list_call.return_value.execute.side_effect = _http_error(401)

        with pytest.raises(ReauthorizationRequiredError, match="expired"):
            PeopleAPI().fetch_page("stale-token")

    def test_server_error(self, list_call):
        list_call.return_value.execute.side_effect = _http_error(500)

        with pytest.raises(PeopleAPIError) as exc_info:
            PeopleAPI().fetch_page("access-token")

        assert exc_info.value.status_code == 500

    def test_forbidden_is_api_error(self, list_call):
        list_call.return_value.execute.side_effect = _http_error(403)

        with pytest.raises(PeopleAPIError) as exc_info:
            PeopleAPI().fetch_page("access-token")

        assert not isinstance(exc_info.value, ReauthorizationRequiredError)
        assert exc_info.value.status_code == 403

    def test_network_error(self, list_call):
        list_call.return_value.execute.side_effect = OSError("connection reset")

        with pytest.raises(PeopleAPIError, match="connection reset") as exc_info:
            PeopleAPI().fetch_page("access-token")

        assert exc_info.value.status_code is None

    def test_build_failure(self, mock_build):
        mock_build.side_effect = RuntimeError("discovery failed")

        with pytest.raises(PeopleAPIError, match="Failed to create API service"):
            PeopleAPI().fetch_page("access-token")

    def test_malformed_response(self, list_call):
        list_call.return_value.execute.return_value = ["not", "a", "dict"]

        with pytest.raises(PeopleAPIError, match="Malformed"):
            PeopleAPI().fetch_page("access-token")

    def test_malformed_connections(self, list_call):
        list_call.return_value.execute.return_value = {"connections": "oops"}

        with pytest.raises(PeopleAPIError, match="Malformed"):
            PeopleAPI().fetch_page("access-token")


class TestPage:
    """Tests for the Page container."""

    def test_last_external_id(self):
        page = Page(records=[{"resourceName": "people/a"}, {"resourceName": "people/b"}])
        assert page.last_external_id == "people/b"

    def test_last_external_id_skips_malformed_records(self):
        page = Page(records=[{"resourceName": "people/a"}, {"names": []}])
        assert page.last_external_id == "people/a"

    def test_last_external_id_empty(self):
        assert Page().last_external_id is None
