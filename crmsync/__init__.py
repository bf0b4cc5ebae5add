"""
crmsync - Google Contacts import engine for a personal CRM.

Pulls contacts from the Google People API into the application's contact
store using resumable, bounded worker ticks.
"""

__version__ = "0.1.0"
