"""
Domain exceptions for the club sync layer.

HTTP status mapping is done by the exception handlers in app.main; services
raise these and never build HTTP responses themselves.
"""
from typing import Optional


class ClubSyncError(Exception):
    """Base class for club link/sync failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClubNotFoundError(ClubSyncError):
    """No club with the given id."""

    status_code = 404

    def __init__(self, club_id: str):
        super().__init__(f"Club '{club_id}' not found")
        self.club_id = club_id


class ClubNotLinkedError(ClubSyncError):
    """Sync requested for a club that is not linked to Strava."""

    status_code = 400

    def __init__(self, club_id: str):
        super().__init__("Club not linked to Strava")
        self.club_id = club_id


class InvalidSlugFormat(ClubSyncError):
    """Strava slug does not end with a numeric club id."""

    status_code = 400

    def __init__(self, slug: Optional[str], message: str = "Invalid slug format (expected: club-name-123456)"):
        super().__init__(message)
        self.slug = slug


class ReconciliationError(ClubSyncError):
    """The fetched Strava data cannot be merged into local state."""

    status_code = 500


class PersistenceError(ClubSyncError):
    """A store-level failure while applying link/sync changes."""

    status_code = 500
