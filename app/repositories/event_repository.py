"""
Event repository.

Events with a non-null strava_event_id were imported from Strava; everything
else is admin-authored and never touched by sync or unlink.
"""
from datetime import datetime
from typing import List, Dict, Any

from sqlalchemy.orm import Session

from app.models import Event
from app.repositories.base import BaseRepository


class EventRepository(BaseRepository[Event]):
    """Data access for club events."""

    def __init__(self, db: Session):
        super().__init__(Event, db)

    def find_synced_by_club(self, club_id: str) -> List[Event]:
        """Strava-sourced events of a club."""
        return self.where(Event.club_id == club_id, Event.strava_event_id.isnot(None))

    def create_from_strava(self, club_id: str, fields: Dict[str, Any]) -> Event:
        """Insert an event imported from Strava; `fields` must carry strava_event_id."""
        now = datetime.utcnow()
        return self.create(club_id=club_id, created_at=now, updated_at=now, **fields)

    def apply_changes(self, event_id: str, changes: Dict[str, Any]) -> bool:
        """
        Update content columns of one event in place.

        Returns:
            True if the event still exists and was updated
        """
        values = dict(changes)
        values["updated_at"] = datetime.utcnow()
        updated = self.query().filter(Event.id == event_id).update(values, synchronize_session=False)
        return updated == 1

    def delete_synced_for_club(self, club_id: str) -> int:
        """Delete every Strava-sourced event of a club; returns the count."""
        return self.query().filter(
            Event.club_id == club_id,
            Event.strava_event_id.isnot(None)
        ).delete(synchronize_session=False)

    def detach_synced_for_club(self, club_id: str) -> int:
        """Turn Strava-sourced events into manual ones (content kept); returns the count."""
        return self.query().filter(
            Event.club_id == club_id,
            Event.strava_event_id.isnot(None)
        ).update(
            {"strava_event_id": None, "updated_at": datetime.utcnow()},
            synchronize_session=False
        )
