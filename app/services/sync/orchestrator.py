"""Sync orchestrator for pulling a linked club's data from Strava.

One sync run:
1. Load the club and capture its LinkToken (strava_club_id, link_version)
2. Stamp last_sync_attempt / in_progress and commit
3. Fetch club metadata and group events from Strava
4. Re-read the club (fresh manual overrides) and build a MergePlan
5. Phase 1: claim the club row, upsert events, commit
   Phase 2: write club fields and success bookkeeping, commit

Every club write is a compare-and-set on the LinkToken. If the club was
unlinked (or relinked) while Strava was being fetched, the write matches no
row and the run is reported as discarded instead of resurrecting the link.

Strava failures are recorded on the club and returned as a failed outcome;
only store failures propagate (as PersistenceError).
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ClubNotFoundError,
    ClubNotLinkedError,
    PersistenceError,
    ReconciliationError,
)
from app.core.metrics import record_sync_outcome
from app.models import SyncStatus
from app.repositories import ClubRepository, EventRepository, LinkToken
from app.services.sync.adapters.strava_adapter import StravaAdapter, StravaError
from app.services.sync.reconciler import ClubState, LocalEvent, MergePlan, Reconciler

logger = logging.getLogger(__name__)

DISCARDED = "discarded"
DISCARDED_MESSAGE = "Club link changed during sync; results discarded"
UNEXPECTED_ERROR = "Unexpected error during Strava sync"


@dataclass
class SyncSummary:
    """Counts reported back to the admin."""
    events_added: int = 0
    events_updated: int = 0
    fields_updated: List[str] = field(default_factory=list)
    events_skipped: int = 0

    @classmethod
    def from_plan(cls, plan: MergePlan) -> "SyncSummary":
        return cls(
            events_added=plan.events_added,
            events_updated=plan.events_updated,
            fields_updated=list(plan.fields_updated),
            events_skipped=len(plan.skipped_activity_ids),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventsAdded": self.events_added,
            "eventsUpdated": self.events_updated,
            "fieldsUpdated": list(self.fields_updated),
            "eventsSkipped": self.events_skipped,
        }


@dataclass
class SyncOutcome:
    """Result of one sync run: success, failed or discarded."""
    status: str
    summary: SyncSummary = field(default_factory=SyncSummary)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @classmethod
    def discarded(cls) -> "SyncOutcome":
        return cls(status=DISCARDED, error=DISCARDED_MESSAGE)


class ClubSyncOrchestrator:
    """
    Coordinates one Strava sync of one club.

    This is the only writer of synced club fields and Strava-sourced events.
    Transaction boundaries live here; repositories never commit.
    """

    def __init__(
        self,
        db: Session,
        adapter: Optional[StravaAdapter] = None,
        reconciler: Optional[Reconciler] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the sync orchestrator.

        Args:
            db: SQLAlchemy database session
            adapter: Strava adapter (defaults to one built from settings)
            reconciler: Merge planner (defaults to sync-owned events)
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.clubs = ClubRepository(db)
        self.events = EventRepository(db)
        self.reconciler = reconciler or Reconciler()
        self._clock = clock or datetime.utcnow

        # Lazy load adapter (needs the access token)
        self._adapter = adapter

    @property
    def adapter(self) -> StravaAdapter:
        """Lazy load Strava adapter."""
        if self._adapter is None:
            self._adapter = StravaAdapter()
        return self._adapter

    async def sync_club(self, club_id: str) -> SyncOutcome:
        """
        Pull the club's Strava data and merge it into the store.

        Args:
            club_id: Local club id

        Returns:
            SyncOutcome; status is "failed" for Strava or reconciliation
            errors and "discarded" if the link changed mid-run

        Raises:
            ClubNotFoundError: unknown club
            ClubNotLinkedError: club is manual
            PersistenceError: the store rejected a write
        """
        started = time.monotonic()
        token = self._start(club_id)
        if token is None:
            return self._finish(SyncOutcome.discarded(), started)

        logger.info(f"Starting Strava sync for club {club_id} (strava club {token.strava_club_id})")

        try:
            data = await self.adapter.fetch_club_data(token.strava_club_id)
        except StravaError as e:
            logger.warning(f"Strava fetch failed for club {club_id}: {e.message}")
            self._record_failure(token, e.message)
            return self._finish(SyncOutcome(status=SyncStatus.FAILED, error=e.message), started)
        except Exception as e:
            logger.error(f"Unexpected error fetching Strava data for club {club_id}: {e}")
            self._record_failure(token, UNEXPECTED_ERROR)
            raise

        try:
            plan = self._plan(token, data)
        except ReconciliationError as e:
            logger.error(f"Could not reconcile club {club_id}: {e.message}")
            self._record_failure(token, e.message)
            return self._finish(SyncOutcome(status=SyncStatus.FAILED, error=e.message), started)
        except SQLAlchemyError as e:
            self.clubs.rollback()
            logger.error(f"Failed to load club {club_id} for reconciliation: {e}")
            raise PersistenceError("Failed to load club state") from e
        except Exception as e:
            logger.error(f"Unexpected error reconciling club {club_id}: {e}")
            self._record_failure(token, UNEXPECTED_ERROR)
            raise

        if plan is None:
            return self._finish(SyncOutcome.discarded(), started)

        if not self._apply(token, plan):
            return self._finish(SyncOutcome.discarded(), started)

        summary = SyncSummary.from_plan(plan)
        logger.info(
            f"Strava sync complete for club {club_id}: "
            f"{summary.events_added} added, {summary.events_updated} updated, "
            f"fields {summary.fields_updated or '[]'}"
        )
        return self._finish(SyncOutcome(status=SyncStatus.SUCCESS, summary=summary), started)

    # ========================================================================
    # Steps
    # ========================================================================

    def _start(self, club_id: str) -> Optional[LinkToken]:
        """Validate the club and stamp the attempt. None means the link moved already."""
        try:
            club = self.clubs.find_by_id(club_id)
            if club is None:
                raise ClubNotFoundError(club_id)
            if not club.is_linked:
                raise ClubNotLinkedError(club_id)

            token = LinkToken.from_club(club)
            if not self.clubs.mark_sync_started(token, self._clock()):
                self.clubs.rollback()
                return None
            self.clubs.save()
            return token
        except SQLAlchemyError as e:
            self.clubs.rollback()
            logger.error(f"Failed to start sync for club {club_id}: {e}")
            raise PersistenceError("Failed to record sync attempt") from e

    def _plan(self, token: LinkToken, data) -> Optional[MergePlan]:
        """Build the merge plan from the club as it is now, or None if unlinked."""
        # Previous commit expired the session, so this re-reads overrides
        club = self.clubs.find_by_id(token.club_id)
        if not token.matches(club):
            logger.info(f"Club {token.club_id} link changed during fetch; discarding")
            return None

        local_events = [LocalEvent.from_model(e) for e in self.events.find_synced_by_club(club.id)]
        return self.reconciler.build_plan(ClubState.from_model(club), local_events, data)

    def _apply(self, token: LinkToken, plan: MergePlan) -> bool:
        """Write the plan in two phases. False if a compare-and-set missed."""
        try:
            # Phase 1: events
            if not self.clubs.claim_for_sync(token):
                self.clubs.rollback()
                logger.info(f"Club {token.club_id} unlinked before events were written; discarding")
                return False

            for fields in plan.events_to_create:
                self.events.create_from_strava(token.club_id, fields)
            for update in plan.events_to_update:
                if not self.events.apply_changes(update.event_id, update.changes):
                    logger.warning(f"Event {update.event_id} vanished during sync of club {token.club_id}")
            self.clubs.save()

            # Phase 2: club fields + bookkeeping (idempotent)
            if not self.clubs.complete_sync(token, plan.club_updates, self._clock()):
                self.clubs.rollback()
                logger.info(f"Club {token.club_id} unlinked before completion; discarding")
                return False
            self.clubs.save()
            return True

        except SQLAlchemyError as e:
            self.clubs.rollback()
            logger.error(f"Failed to persist Strava sync for club {token.club_id}: {e}")
            self._record_failure(token, "Failed to save synced data")
            raise PersistenceError("Failed to save synced data") from e

    def _record_failure(self, token: LinkToken, message: str) -> None:
        """Best-effort failure stamp; the caller still sees the first error."""
        try:
            self.clubs.record_sync_failure(token, message)
            self.clubs.save()
        except SQLAlchemyError as e:
            self.clubs.rollback()
            logger.error(f"Could not record sync failure for club {token.club_id}: {e}")

    def _finish(self, outcome: SyncOutcome, started: float) -> SyncOutcome:
        record_sync_outcome(
            outcome.status,
            time.monotonic() - started,
            events_added=outcome.summary.events_added,
            events_updated=outcome.summary.events_updated,
        )
        return outcome
