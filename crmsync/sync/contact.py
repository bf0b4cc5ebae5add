"""
External contact model for the Google Contacts import.

Provides a normalized ExternalContact representation with methods for:
- Parsing Google People API person resources
- Checking whether a record is importable under a sync mode
- Producing the externally sourced column values for the contact store
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from crmsync.sync.job import SyncMode

# Group membership every Google contact has; never used as a label
DEFAULT_GROUP_ID = "myContacts"

# Year stored when Google returns a birthday without one
DEFAULT_BIRTHDAY_YEAR = 1900

# Type recorded for emails/phones that come back without one
DEFAULT_VALUE_TYPE = "other"


@dataclass
class ExternalContact:
    """
    A contact as read from the external source.

    Attributes:
        resource_name: Google's unique ID (e.g., "people/c12345")
        etag: Opaque change marker from Google
        display_name: Full display name of the contact
        given_name: First name
        family_name: Last name
        emails: Email entries as {"value", "type"} dicts
        phones: Phone entries as {"value", "type"} dicts
        label: First user contact-group id the contact belongs to
        birthday: ISO date string (YYYY-MM-DD)

    Usage:
        contact = ExternalContact.from_api_response(person)
        if contact.is_valid() and contact.matches_sync_mode(SyncMode.ALL):
            repo.upsert_by_source_id(user_id, contact)
    """

    resource_name: str
    etag: Optional[str]
    display_name: str

    given_name: Optional[str] = None
    family_name: Optional[str] = None
    emails: list[dict[str, str]] = field(default_factory=list)
    phones: list[dict[str, str]] = field(default_factory=list)
    label: Optional[str] = None
    birthday: Optional[str] = None

    @classmethod
    def from_api_response(cls, person: dict[str, Any]) -> "ExternalContact":
        """
        Create an ExternalContact from a Google People API person.

        Args:
            person: Dictionary from the connections.list response

        Returns:
            ExternalContact populated from the API response

        Raises:
            ValueError: If the person has no resourceName or a field it reads
                has the wrong JSON type

        Example API response structure::

            {
                'resourceName': 'people/c12345',
                'etag': '%EgUBAi43PRoEAQIFByIMR0xCc0FHT1JiWUk9',
                'names': [{'displayName': 'John Doe', 'givenName': 'John'}],
                'emailAddresses': [{'value': 'john@example.com', 'type': 'home'}],
                'phoneNumbers': [{'value': '+1 555 0100', 'type': 'mobile'}],
                'birthdays': [{'date': {'month': 4, 'day': 2}}],
                'memberships': [
                    {'contactGroupMembership': {
                        'contactGroupResourceName': 'contactGroups/friends'}}
                ]
            }
        """
        if not isinstance(person, dict):
            raise ValueError(f"Expected a person object, got {type(person).__name__}")

        resource_name = person.get("resourceName")
        if not resource_name or not isinstance(resource_name, str):
            raise ValueError("Person is missing resourceName")

        name = _primary_name(_list_field(person, "names"))
        display_name = _optional_str(name.get("displayName"), "displayName")
        given_name = _optional_str(name.get("givenName"), "givenName")
        family_name = _optional_str(name.get("familyName"), "familyName")

        return cls(
            resource_name=resource_name,
            etag=_optional_str(person.get("etag"), "etag"),
            display_name=(display_name or "").strip(),
            given_name=given_name or None,
            family_name=family_name or None,
            emails=_typed_values(_list_field(person, "emailAddresses"), "emailAddresses"),
            phones=_typed_values(_list_field(person, "phoneNumbers"), "phoneNumbers"),
            label=_extract_label(_list_field(person, "memberships")),
            birthday=_extract_birthday(_list_field(person, "birthdays")),
        )

    def is_valid(self) -> bool:
        """A contact can be imported only if it has a display name."""
        return bool(self.display_name)

    @property
    def has_phone(self) -> bool:
        return bool(self.phones)

    @property
    def has_email(self) -> bool:
        return bool(self.emails)

    def matches_sync_mode(self, mode: SyncMode) -> bool:
        """
        Check the job's import filter.

        Args:
            mode: Filter captured in the job parameters

        Returns:
            True if the contact should be imported
        """
        if mode == SyncMode.PHONE_ONLY:
            return self.has_phone
        if mode == SyncMode.PHONE_OR_EMAIL:
            return self.has_phone or self.has_email
        return True

    def synced_fields(self) -> dict[str, Any]:
        """
        Column values owned by the sync.

        User-authored columns (notes, cadence, conversation context) are
        deliberately absent so an update can never overwrite them.
        """
        return {
            "display_name": self.display_name,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "emails": self.emails,
            "phones": self.phones,
            "label": self.label,
            "birthday": self.birthday,
            "google_resource_name": self.resource_name,
            "google_etag": self.etag,
        }

    def __repr__(self) -> str:
        return (
            f"ExternalContact(resource_name={self.resource_name!r}, "
            f"display_name={self.display_name!r})"
        )


def _list_field(person: dict[str, Any], key: str) -> list[Any]:
    """A repeated field of the person; absent or null reads as empty."""
    value = person.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list, got {type(value).__name__}")
    return value


def _optional_str(value: Any, key: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _optional_dict(value: Any, key: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be an object, got {type(value).__name__}")
    return value


def _primary_name(names: list[Any]) -> dict[str, Any]:
    if not names:
        return {}
    return _optional_dict(names[0], "names[0]")


def _typed_values(entries: list[Any], key: str) -> list[dict[str, str]]:
    """Keep entries that carry a value, defaulting their type."""
    values = []
    for entry in entries:
        entry = _optional_dict(entry, key)
        value = _optional_str(entry.get("value"), f"{key}.value")
        if not value:
            continue
        values.append(
            {
                "value": value,
                "type": _optional_str(entry.get("type"), f"{key}.type")
                or DEFAULT_VALUE_TYPE,
            }
        )
    return values


def _extract_label(memberships: list[Any]) -> Optional[str]:
    """Return the id of the first contact group other than myContacts."""
    for membership in memberships:
        membership = _optional_dict(membership, "memberships")
        group_membership = _optional_dict(
            membership.get("contactGroupMembership"), "contactGroupMembership"
        )
        group = _optional_str(
            group_membership.get("contactGroupResourceName"),
            "contactGroupResourceName",
        )
        if not group:
            continue
        group_id = group.split("/")[-1]
        if group_id and group_id != DEFAULT_GROUP_ID:
            return group_id
    return None


def _extract_birthday(birthdays: list[Any]) -> Optional[str]:
    """Format the first birthday as YYYY-MM-DD; month and day are required."""
    if not birthdays:
        return None
    birthday = _optional_dict(birthdays[0], "birthdays[0]")
    date = _optional_dict(birthday.get("date"), "birthdays[0].date")
    month = _date_part(date, "month")
    day = _date_part(date, "day")
    if not month or not day:
        return None
    year = _date_part(date, "year") or DEFAULT_BIRTHDAY_YEAR
    return f"{year:04d}-{month:02d}-{day:02d}"


def _date_part(date: dict[str, Any], key: str) -> Optional[int]:
    value = date.get(key)
    if value is None:
        return None
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"date.{key} must be an integer, got {type(value).__name__}")
    return value
