"""Integration tests for ClubSyncOrchestrator.

Test Strategy:
1. Test sync_club() imports events and updates club fields
2. Test re-sync is idempotent and respects manual overrides
3. Test upstream and reconciliation failures are recorded, not raised
4. Test compare-and-set discards runs when the link changes mid-sync,
   including between the event phase and the club phase
5. Test store failures after events are written (PersistenceError)

Each test follows the pattern:
- Given: Database with a club and a mocked Strava adapter
- When: sync_club() is called
- Then: Correct outcome and database state
"""
from datetime import datetime
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import ClubNotFoundError, ClubNotLinkedError, PersistenceError
from app.models import Club, Event, SyncStatus
from app.repositories import ClubRepository
from app.services.sync.adapters.strava_adapter import StravaAdapter, StravaNotFoundError, StravaRateLimitError
from app.services.sync.link_controller import StravaLinkController
from app.services.sync.orchestrator import ClubSyncOrchestrator, DISCARDED, UNEXPECTED_ERROR
from app.services.sync.utils.rate_limiter import TokenBucket

SYNC_TIME = datetime(2025, 11, 30, 12, 0)


def events_of(db: Session, club_id: str):
    return db.query(Event).filter(Event.club_id == club_id).order_by(Event.date).all()


@pytest.fixture
def orchestrator(db_session, mock_adapter):
    return ClubSyncOrchestrator(db_session, adapter=mock_adapter, clock=lambda: SYNC_TIME)


class TestSyncClub:
    """Successful sync runs."""

    @pytest.mark.asyncio
    async def test_imports_events_and_club_fields(self, db_session, linked_club, orchestrator, mock_adapter):
        """Should create all events and mark the club synced."""
        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.success
        assert outcome.summary.events_added == 3
        assert outcome.summary.events_updated == 0
        assert outcome.summary.fields_updated == ["name", "description", "website", "member_count"]
        mock_adapter.fetch_club_data.assert_awaited_once_with("123456")

        db_session.refresh(linked_club)
        assert linked_club.name == "Club de course du Vieux-Québec"
        assert linked_club.website == "https://www.strava.com/clubs/vieux-quebec-runners"
        assert linked_club.member_count == 42
        assert linked_club.last_sync_status == SyncStatus.SUCCESS
        assert linked_club.last_synced == SYNC_TIME
        assert linked_club.last_sync_attempt == SYNC_TIME
        assert linked_club.last_sync_error is None

        events = events_of(db_session, linked_club.id)
        assert [e.strava_event_id for e in events] == ["9001", "9002", "9003"]
        assert events[0].time == "23:30"
        assert events[2].distance == "21.1 km"

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, db_session, linked_club, orchestrator):
        """Should report no changes and create no duplicates on an unchanged feed."""
        await orchestrator.sync_club(linked_club.id)
        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.success
        assert outcome.summary.events_added == 0
        assert outcome.summary.events_updated == 0
        assert outcome.summary.fields_updated == []
        assert len(events_of(db_session, linked_club.id)) == 3

    @pytest.mark.asyncio
    async def test_manual_override_protects_name(self, db_session, linked_club, orchestrator):
        linked_club.manual_overrides = ["name"]
        db_session.commit()

        outcome = await orchestrator.sync_club(linked_club.id)

        db_session.refresh(linked_club)
        assert linked_club.name == "Coureurs de Limoilou"
        assert "name" not in outcome.summary.fields_updated
        assert "member_count" in outcome.summary.fields_updated

    @pytest.mark.asyncio
    async def test_updates_changed_event_and_keeps_pace(
        self, db_session, linked_club, orchestrator, mock_adapter, add_event, make_activity, make_club_data
    ):
        """Should update synced content but never touch admin-only pace."""
        add_event(
            linked_club, title="Ancien titre", strava_event_id="9001",
            date=datetime(2025, 12, 2, 23, 30), time="23:30", pace="5:30/km",
        )
        mock_adapter.fetch_club_data.return_value = make_club_data(
            activities=[make_activity("9001", title="Nouveau titre")]
        )

        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.summary.events_updated == 1
        assert outcome.summary.events_added == 0
        event = events_of(db_session, linked_club.id)[0]
        db_session.refresh(event)
        assert event.title == "Nouveau titre"
        assert event.pace == "5:30/km"

    @pytest.mark.asyncio
    async def test_leaves_manual_and_vanished_events(
        self, db_session, linked_club, orchestrator, add_event
    ):
        """Should not delete events missing from the feed or admin-authored ones."""
        add_event(linked_club, title="Sortie admin")
        add_event(linked_club, title="Événement retiré", strava_event_id="8000")

        await orchestrator.sync_club(linked_club.id)

        titles = {e.title for e in events_of(db_session, linked_club.id)}
        assert {"Sortie admin", "Événement retiré"} <= titles
        assert len(titles) == 5

    @pytest.mark.asyncio
    async def test_reports_skipped_activities(
        self, db_session, linked_club, orchestrator, mock_adapter, make_activity, make_club_data
    ):
        mock_adapter.fetch_club_data.return_value = make_club_data(
            activities=[make_activity("9001"), make_activity("9002", start=None)]
        )

        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.summary.events_added == 1
        assert outcome.summary.events_skipped == 1


class TestSyncClubRejections:

    @pytest.mark.asyncio
    async def test_unknown_club(self, orchestrator):
        with pytest.raises(ClubNotFoundError):
            await orchestrator.sync_club("missing-club")

    @pytest.mark.asyncio
    async def test_manual_club(self, db_session, manual_club, orchestrator, mock_adapter):
        with pytest.raises(ClubNotLinkedError):
            await orchestrator.sync_club(manual_club.id)

        mock_adapter.fetch_club_data.assert_not_awaited()
        db_session.refresh(manual_club)
        assert manual_club.last_sync_attempt is None


class TestSyncClubFailures:

    @pytest.mark.asyncio
    async def test_upstream_not_found_is_recorded(self, db_session, linked_club, orchestrator, mock_adapter):
        """Should return a failed outcome and stamp the club, writing no events."""
        mock_adapter.fetch_club_data.side_effect = StravaNotFoundError()

        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == SyncStatus.FAILED
        assert outcome.error == "Club not found or private"
        db_session.refresh(linked_club)
        assert linked_club.last_sync_status == SyncStatus.FAILED
        assert linked_club.last_sync_error == "Club not found or private"
        assert linked_club.last_sync_attempt == SYNC_TIME
        assert linked_club.last_synced is None
        assert events_of(db_session, linked_club.id) == []

    @pytest.mark.asyncio
    async def test_rate_limit_is_recorded(self, db_session, linked_club, orchestrator, mock_adapter):
        mock_adapter.fetch_club_data.side_effect = StravaRateLimitError()

        outcome = await orchestrator.sync_club(linked_club.id)

        assert not outcome.success
        db_session.refresh(linked_club)
        assert linked_club.last_sync_error == "Rate limit exceeded, retry in 15 minutes"

    @pytest.mark.asyncio
    async def test_failure_then_success_clears_error(self, db_session, linked_club, orchestrator, mock_adapter, make_club_data):
        mock_adapter.fetch_club_data.side_effect = StravaNotFoundError()
        await orchestrator.sync_club(linked_club.id)

        mock_adapter.fetch_club_data.side_effect = None
        mock_adapter.fetch_club_data.return_value = make_club_data()
        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.success
        db_session.refresh(linked_club)
        assert linked_club.last_sync_status == SyncStatus.SUCCESS
        assert linked_club.last_sync_error is None

    @pytest.mark.asyncio
    async def test_reconciliation_error_is_recorded(
        self, db_session, linked_club, orchestrator, mock_adapter, make_activity, make_club_data
    ):
        mock_adapter.fetch_club_data.return_value = make_club_data(activities=[make_activity("")])

        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == SyncStatus.FAILED
        db_session.refresh(linked_club)
        assert linked_club.last_sync_status == SyncStatus.FAILED
        assert events_of(db_session, linked_club.id) == []

    @pytest.mark.asyncio
    async def test_malformed_payload_is_recorded(self, db_session, linked_club):
        """Should turn an unparseable Strava body into a recorded failure."""
        def handler(request):
            if request.url.path.endswith("/group_events"):
                return httpx.Response(200, json=[])
            return httpx.Response(200, content=b'{"id": 123456, "name": "Club", "member_count": Infinity}')

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = StravaAdapter(
                access_token="strava-token",
                base_url="https://strava.test/api/v3",
                rate_limiter=TokenBucket(capacity=10, refill_per_second=10),
                client=client,
            )
            orchestrator = ClubSyncOrchestrator(db_session, adapter=adapter, clock=lambda: SYNC_TIME)
            outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == SyncStatus.FAILED
        db_session.refresh(linked_club)
        assert linked_club.last_sync_status == SyncStatus.FAILED
        assert linked_club.last_sync_error.startswith("Malformed club payload")
        assert linked_club.name == "Coureurs de Limoilou"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_and_raised(self, db_session, linked_club, orchestrator, mock_adapter):
        """Should not leave the club in progress when something unforeseen breaks."""
        mock_adapter.fetch_club_data.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await orchestrator.sync_club(linked_club.id)

        db_session.refresh(linked_club)
        assert linked_club.last_sync_status == SyncStatus.FAILED
        assert linked_club.last_sync_error == UNEXPECTED_ERROR
        assert events_of(db_session, linked_club.id) == []

    @pytest.mark.asyncio
    async def test_store_failure_after_events_written(self, db_session, linked_club, orchestrator):
        """Should keep phase-one events, not advance success bookkeeping, and raise."""
        with patch.object(orchestrator.clubs, "complete_sync", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(PersistenceError):
                await orchestrator.sync_club(linked_club.id)

        assert len(events_of(db_session, linked_club.id)) == 3
        db_session.refresh(linked_club)
        assert linked_club.last_synced is None
        assert linked_club.last_sync_status == SyncStatus.FAILED
        assert linked_club.name == "Coureurs de Limoilou"

        # A re-run converges without duplicating events
        outcome = await orchestrator.sync_club(linked_club.id)
        assert outcome.success
        assert outcome.summary.events_added == 0
        assert len(events_of(db_session, linked_club.id)) == 3


class TestSyncUnlinkRace:
    """Compare-and-set on the link token."""

    @pytest.mark.asyncio
    async def test_unlink_during_fetch_discards_results(
        self, db_session, linked_club, orchestrator, mock_adapter, make_club_data
    ):
        """Should not write events or resurrect the link after an unlink."""
        data = make_club_data()

        async def unlink_then_return(strava_club_id):
            StravaLinkController(db_session, adapter=mock_adapter).unlink(linked_club.id)
            return data

        mock_adapter.fetch_club_data.side_effect = unlink_then_return

        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == DISCARDED
        assert not outcome.success
        club = db_session.get(Club, linked_club.id)
        db_session.refresh(club)
        assert club.is_manual is True
        assert club.strava_club_id is None
        assert club.last_sync_status is None
        assert club.last_sync_attempt is None
        assert events_of(db_session, linked_club.id) == []

    @pytest.mark.asyncio
    async def test_relink_during_fetch_discards_results(
        self, db_session, linked_club, orchestrator, mock_adapter, make_club_data
    ):
        """Should discard a run whose Strava club was replaced meanwhile."""
        data = make_club_data()

        async def relink_then_return(strava_club_id):
            controller = StravaLinkController(db_session, adapter=mock_adapter)
            controller.unlink(linked_club.id)
            await controller.link(linked_club.id, "autre-club-999", import_events=False)
            return data

        mock_adapter.fetch_club_data.side_effect = relink_then_return

        outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == DISCARDED
        club = db_session.get(Club, linked_club.id)
        db_session.refresh(club)
        assert club.strava_club_id == "999"
        assert club.last_sync_status is None
        assert events_of(db_session, linked_club.id) == []

    @pytest.mark.asyncio
    async def test_unlink_before_event_writes_discards_results(
        self, db_session, linked_club, orchestrator, mock_adapter
    ):
        """Should write no events when the unlink lands after planning."""
        real_claim = orchestrator.clubs.claim_for_sync

        def unlink_then_claim(token):
            StravaLinkController(db_session, adapter=mock_adapter).unlink(linked_club.id)
            return real_claim(token)

        with patch.object(orchestrator.clubs, "claim_for_sync", side_effect=unlink_then_claim):
            outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == DISCARDED
        club = db_session.get(Club, linked_club.id)
        db_session.refresh(club)
        assert club.is_manual is True
        assert club.last_sync_status is None
        assert events_of(db_session, linked_club.id) == []

    @pytest.mark.asyncio
    async def test_unlink_between_phases_skips_success_stamp(
        self, db_session, linked_club, orchestrator, mock_adapter
    ):
        """Should not mark success or write club fields once events were committed and the club unlinked."""
        real_complete = orchestrator.clubs.complete_sync

        def unlink_then_complete(token, club_updates, synced_at):
            assert len(events_of(db_session, linked_club.id)) == 3
            StravaLinkController(db_session, adapter=mock_adapter).unlink(linked_club.id, delete_events=False)
            return real_complete(token, club_updates, synced_at)

        with patch.object(orchestrator.clubs, "complete_sync", side_effect=unlink_then_complete):
            outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == DISCARDED
        assert not outcome.success
        club = db_session.get(Club, linked_club.id)
        db_session.refresh(club)
        assert club.is_manual is True
        assert club.name == "Coureurs de Limoilou"
        assert club.last_synced is None
        assert club.last_sync_status is None
        events = events_of(db_session, linked_club.id)
        for event in events:
            db_session.refresh(event)
        assert len(events) == 3
        assert all(e.strava_event_id is None for e in events)

    @pytest.mark.asyncio
    async def test_relink_between_phases_leaves_new_link_untouched(
        self, db_session, linked_club, orchestrator, mock_adapter
    ):
        """Should not stamp the old run's success on a club relinked to another Strava club."""
        real_complete = orchestrator.clubs.complete_sync

        def relink_then_complete(token, club_updates, synced_at):
            StravaLinkController(db_session, adapter=mock_adapter).unlink(linked_club.id)
            clubs = ClubRepository(db_session)
            clubs.link(clubs.find_by_id(linked_club.id), "autre-club-999", "999")
            clubs.save()
            return real_complete(token, club_updates, synced_at)

        with patch.object(orchestrator.clubs, "complete_sync", side_effect=relink_then_complete):
            outcome = await orchestrator.sync_club(linked_club.id)

        assert outcome.status == DISCARDED
        club = db_session.get(Club, linked_club.id)
        db_session.refresh(club)
        assert club.strava_club_id == "999"
        assert club.last_synced is None
        assert club.last_sync_status is None
        assert club.name == "Coureurs de Limoilou"
