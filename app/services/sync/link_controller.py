"""Link/unlink lifecycle of a club's Strava binding.

- link: parse the slug, bind the club, optionally import right away
- unlink: in a single transaction, remove (or convert to manual) every
  Strava-sourced event and reset the club to manual
- preview: fetch a Strava club without persisting anything

A failed import during link does not undo the link; the failure is recorded
on the club and returned to the caller as sync_error.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ClubNotFoundError, PersistenceError
from app.core.metrics import record_link_transition
from app.models import Club
from app.repositories import ClubRepository, EventRepository
from app.services.sync.adapters.strava_adapter import StravaAdapter
from app.services.sync.adapters.strava_types import StravaActivity, StravaClub
from app.services.sync.orchestrator import ClubSyncOrchestrator, SyncOutcome
from app.services.sync.utils.slug_parser import parse_strava_slug

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    club: Club
    events_imported: int = 0
    fields_updated: List[str] = field(default_factory=list)
    sync_error: Optional[str] = None


@dataclass
class UnlinkResult:
    club: Club
    events_deleted: int = 0
    events_converted: int = 0


@dataclass
class StravaPreview:
    club: StravaClub
    upcoming_events: List[StravaActivity] = field(default_factory=list)


class StravaLinkController:
    """
    Admin-facing link lifecycle.

    Args:
        db: SQLAlchemy database session
        orchestrator: Used for the import on link (defaults to one sharing db and adapter)
        adapter: Strava adapter for previews and imports
    """

    def __init__(
        self,
        db: Session,
        orchestrator: Optional[ClubSyncOrchestrator] = None,
        adapter: Optional[StravaAdapter] = None,
    ):
        self.db = db
        self.clubs = ClubRepository(db)
        self.events = EventRepository(db)
        self._adapter = adapter
        self.orchestrator = orchestrator or ClubSyncOrchestrator(db, adapter=adapter)

    @property
    def adapter(self) -> StravaAdapter:
        if self._adapter is None:
            self._adapter = self.orchestrator.adapter
        return self._adapter

    async def link(self, club_id: str, strava_slug: str, import_events: bool = True) -> LinkResult:
        """
        Bind a club to a Strava club.

        Args:
            club_id: Local club id
            strava_slug: Slug (or club URL) ending in the numeric Strava id
            import_events: Run a sync immediately after linking

        Returns:
            LinkResult with the import summary (zero when not importing)

        Raises:
            InvalidSlugFormat: slug has no numeric suffix
            ClubNotFoundError: unknown club
            PersistenceError: the store rejected a write
        """
        parsed = parse_strava_slug(strava_slug)
        strava_club_id = parsed.unwrap()

        try:
            club = self.clubs.find_for_update(club_id)
            if club is None:
                raise ClubNotFoundError(club_id)

            self.clubs.link(club, parsed.slug, strava_club_id)
            self.clubs.save()
        except SQLAlchemyError as e:
            self.clubs.rollback()
            logger.error(f"Failed to link club {club_id}: {e}")
            raise PersistenceError("Failed to link club") from e

        record_link_transition("linked")
        logger.info(f"Linked club {club_id} to Strava club {strava_club_id} ({parsed.slug})")

        result = LinkResult(club=club)
        if import_events:
            outcome = await self.orchestrator.sync_club(club_id)
            self._fold_outcome(result, outcome)

        self.clubs.refresh(club)
        return result

    def _fold_outcome(self, result: LinkResult, outcome: SyncOutcome) -> None:
        if outcome.success:
            result.events_imported = outcome.summary.events_added
            result.fields_updated = list(outcome.summary.fields_updated)
        else:
            result.sync_error = outcome.error
            logger.warning(f"Import after linking club {result.club.id} did not complete: {outcome.error}")

    def unlink(self, club_id: str, delete_events: bool = True) -> UnlinkResult:
        """
        Return a club to manual management.

        Args:
            club_id: Local club id
            delete_events: Delete Strava-sourced events; when False they are
                kept as manual events (strava_event_id cleared)

        Raises:
            ClubNotFoundError: unknown club
            PersistenceError: the store rejected a write
        """
        try:
            club = self.clubs.find_for_update(club_id)
            if club is None:
                raise ClubNotFoundError(club_id)

            result = UnlinkResult(club=club)
            if delete_events:
                result.events_deleted = self.events.delete_synced_for_club(club_id)
            else:
                result.events_converted = self.events.detach_synced_for_club(club_id)

            self.clubs.reset_to_manual(club)
            self.clubs.save()
        except SQLAlchemyError as e:
            self.clubs.rollback()
            logger.error(f"Failed to unlink club {club_id}: {e}")
            raise PersistenceError("Failed to unlink club") from e

        record_link_transition("unlinked")
        logger.info(
            f"Unlinked club {club_id}: {result.events_deleted} events deleted, "
            f"{result.events_converted} converted to manual"
        )

        self.clubs.refresh(club)
        return result

    async def preview(self, strava_slug: str, limit: Optional[int] = None) -> StravaPreview:
        """
        Fetch a Strava club and its next events without touching the store.

        Raises:
            InvalidSlugFormat: slug has no numeric suffix
            StravaError: Strava could not be read
        """
        strava_club_id = parse_strava_slug(strava_slug).unwrap()
        limit = settings.PREVIEW_EVENT_LIMIT if limit is None else limit

        data = await self.adapter.fetch_club_data(strava_club_id)
        upcoming = [a for a in data.activities if a.next_occurrence is not None]
        return StravaPreview(club=data.club, upcoming_events=upcoming[:max(limit, 0)])
