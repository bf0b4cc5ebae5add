"""
crmsync.api - External API adapters

Google People API page reader.
"""

from crmsync.api.people_api import PERSON_FIELDS, Page, PeopleAPI, PeopleAPIError

__all__ = ["PERSON_FIELDS", "Page", "PeopleAPI", "PeopleAPIError"]
