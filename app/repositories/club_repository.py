"""
Club repository: link state transitions and guarded sync bookkeeping writes.

Every write the sync orchestrator makes goes through `_guarded()`, a
compare-and-set on (is_manual = false, strava_club_id, link_version). If the
club was unlinked, or unlinked and relinked, after the sync started, the
UPDATE matches zero rows and the caller discards its work.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.orm import Query, Session

from app.models import Club, SyncStatus
from app.repositories.base import BaseRepository


@dataclass(frozen=True)
class LinkToken:
    """Identity of one Strava link of a club, captured when a sync starts."""
    club_id: str
    strava_club_id: str
    link_version: int

    @classmethod
    def from_club(cls, club: Club) -> "LinkToken":
        return cls(
            club_id=club.id,
            strava_club_id=club.strava_club_id,
            link_version=club.link_version or 0,
        )

    def matches(self, club: Optional[Club]) -> bool:
        """True if the club is still linked exactly as captured."""
        return (
            club is not None
            and club.is_linked
            and club.strava_club_id == self.strava_club_id
            and (club.link_version or 0) == self.link_version
        )


class ClubRepository(BaseRepository[Club]):
    """Data access for clubs."""

    def __init__(self, db: Session):
        super().__init__(Club, db)

    def find_for_update(self, club_id: str) -> Optional[Club]:
        """Load a club and lock its row for the rest of the transaction (no-op on SQLite)."""
        return self.query().filter(Club.id == club_id).with_for_update().first()

    # ========================================================================
    # Link lifecycle
    # ========================================================================

    def link(self, club: Club, strava_slug: str, strava_club_id: str) -> Club:
        """Bind a club to a Strava club. Previous sync bookkeeping is cleared."""
        return self.update_fields(club, {
            "is_manual": False,
            "strava_slug": strava_slug,
            "strava_club_id": strava_club_id,
            "link_version": (club.link_version or 0) + 1,
            "last_synced": None,
            "last_sync_attempt": None,
            "last_sync_status": None,
            "last_sync_error": None,
        })

    def reset_to_manual(self, club: Club) -> Club:
        """Drop the Strava binding, overrides and all sync bookkeeping."""
        return self.update_fields(club, {
            "is_manual": True,
            "strava_slug": None,
            "strava_club_id": None,
            "link_version": (club.link_version or 0) + 1,
            "manual_overrides": [],
            "last_synced": None,
            "last_sync_attempt": None,
            "last_sync_status": None,
            "last_sync_error": None,
        })

    # ========================================================================
    # Guarded sync writes (compare-and-set on the link token)
    # ========================================================================

    def _guarded(self, token: LinkToken) -> Query:
        return self.query().filter(
            Club.id == token.club_id,
            Club.is_manual.is_(False),
            Club.strava_club_id == token.strava_club_id,
            Club.link_version == token.link_version,
        )

    def guarded_update(self, token: LinkToken, values: Dict[str, Any]) -> bool:
        """
        Apply `values` only if the club is still linked as described by `token`.

        Returns:
            True if the row was updated, False if the link changed underneath us
        """
        values = dict(values)
        values.setdefault("updated_at", datetime.utcnow())
        updated = self._guarded(token).update(values, synchronize_session=False)
        return updated == 1

    def mark_sync_started(self, token: LinkToken, started_at: datetime) -> bool:
        return self.guarded_update(token, {
            "last_sync_attempt": started_at,
            "last_sync_status": SyncStatus.IN_PROGRESS,
        })

    def claim_for_sync(self, token: LinkToken) -> bool:
        """Touch the row inside the event-write transaction; takes the row lock on PostgreSQL."""
        return self.guarded_update(token, {})

    def record_sync_failure(self, token: LinkToken, message: str) -> bool:
        return self.guarded_update(token, {
            "last_sync_status": SyncStatus.FAILED,
            "last_sync_error": message,
        })

    def complete_sync(self, token: LinkToken, club_updates: Dict[str, Any], synced_at: datetime) -> bool:
        """Write synced club fields and advance the success bookkeeping. Idempotent."""
        values = dict(club_updates)
        values.update({
            "last_synced": synced_at,
            "last_sync_status": SyncStatus.SUCCESS,
            "last_sync_error": None,
        })
        return self.guarded_update(token, values)
