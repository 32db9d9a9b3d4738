"""Reconciliation of local club state against a Strava snapshot.

The reconciler is pure: it reads plain snapshots (ClubState, LocalEvent,
StravaClubData) and returns a MergePlan describing what to write. It never
touches the session, so the orchestrator decides when and how the plan is
applied.

Rules:
- Club fields in SYNCABLE_CLUB_FIELDS are overwritten when Strava's value
  differs, unless the field is listed in the club's manual_overrides.
- Events are keyed by strava_event_id. New ids are created, known ids are
  updated field by field, and local events missing from the feed are left
  alone.
- Admin-authored events (no strava_event_id) are never considered.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from app.core.exceptions import ReconciliationError
from app.services.sync.adapters.strava_types import StravaClubData
from app.services.sync.mappers import map_activity_fields, map_club_fields

# Order matters: fields_updated is reported in this order
SYNCABLE_CLUB_FIELDS = ("name", "description", "website", "member_count")

# `pace` is admin-only and deliberately absent
EVENT_CONTENT_FIELDS = ("title", "date", "time", "address", "description", "distance")


@dataclass(frozen=True)
class ClubState:
    """Snapshot of the club columns the reconciler reads."""
    id: str
    fields: Dict[str, Any]
    manual_overrides: FrozenSet[str] = frozenset()

    @classmethod
    def from_model(cls, club) -> "ClubState":
        return cls(
            id=club.id,
            fields={name: getattr(club, name) for name in SYNCABLE_CLUB_FIELDS},
            manual_overrides=frozenset(club.manual_overrides or []),
        )


@dataclass(frozen=True)
class LocalEvent:
    """Snapshot of one stored event."""
    id: str
    strava_event_id: Optional[str]
    fields: Dict[str, Any]

    @classmethod
    def from_model(cls, event) -> "LocalEvent":
        return cls(
            id=event.id,
            strava_event_id=event.strava_event_id,
            fields={name: getattr(event, name) for name in EVENT_CONTENT_FIELDS},
        )


@dataclass(frozen=True)
class EventUpdate:
    """Changed columns for one existing event."""
    event_id: str
    strava_event_id: str
    changes: Dict[str, Any]


@dataclass
class MergePlan:
    """Everything one sync will write."""
    club_updates: Dict[str, Any] = field(default_factory=dict)
    fields_updated: List[str] = field(default_factory=list)
    events_to_create: List[Dict[str, Any]] = field(default_factory=list)
    events_to_update: List[EventUpdate] = field(default_factory=list)
    skipped_activity_ids: List[str] = field(default_factory=list)

    @property
    def events_added(self) -> int:
        return len(self.events_to_create)

    @property
    def events_updated(self) -> int:
        return len(self.events_to_update)

    @property
    def is_empty(self) -> bool:
        return not (self.club_updates or self.events_to_create or self.events_to_update)


class EventOverridePolicy(ABC):
    """Decides which content fields of a synced event sync must not overwrite."""

    @abstractmethod
    def protected_fields(self, event: LocalEvent) -> FrozenSet[str]:
        ...


class SyncOwnedEventPolicy(EventOverridePolicy):
    """Strava owns every content field of imported events."""

    def protected_fields(self, event: LocalEvent) -> FrozenSet[str]:
        return frozenset()


class Reconciler:
    """
    Builds merge plans.

    Args:
        event_policy: Per-event override policy (defaults to SyncOwnedEventPolicy)
    """

    def __init__(self, event_policy: Optional[EventOverridePolicy] = None):
        self.event_policy = event_policy or SyncOwnedEventPolicy()

    def build_plan(
        self,
        club: ClubState,
        local_events: List[LocalEvent],
        external: StravaClubData,
    ) -> MergePlan:
        """
        Compute the writes that bring local state in line with Strava.

        Args:
            club: Current club snapshot (with its manual overrides)
            local_events: Events currently stored for the club
            external: Fetched Strava club and group events

        Returns:
            MergePlan; empty when local state already matches

        Raises:
            ReconciliationError: if a Strava event has no id
        """
        plan = MergePlan()
        self._plan_club_fields(club, external, plan)
        self._plan_events(local_events, external, plan)
        return plan

    def _plan_club_fields(self, club: ClubState, external: StravaClubData, plan: MergePlan) -> None:
        incoming = map_club_fields(external.club)

        for name in SYNCABLE_CLUB_FIELDS:
            if name in club.manual_overrides:
                continue
            value = incoming[name]
            if club.fields.get(name) != value:
                plan.club_updates[name] = value
                plan.fields_updated.append(name)

    def _plan_events(self, local_events: List[LocalEvent], external: StravaClubData, plan: MergePlan) -> None:
        by_strava_id = {
            event.strava_event_id: event
            for event in local_events
            if event.strava_event_id is not None
        }
        seen = set()

        for activity in external.activities:
            if not activity.id:
                raise ReconciliationError(
                    f"Strava club {external.club.id} returned a group event without an id"
                )
            if activity.id in seen:
                continue
            seen.add(activity.id)

            incoming = map_activity_fields(activity)
            if incoming is None:
                plan.skipped_activity_ids.append(activity.id)
                continue

            existing = by_strava_id.get(activity.id)
            if existing is None:
                plan.events_to_create.append({"strava_event_id": activity.id, **incoming})
                continue

            protected = self.event_policy.protected_fields(existing)
            changes = {
                name: value
                for name, value in incoming.items()
                if name not in protected and existing.fields.get(name) != value
            }
            if changes:
                plan.events_to_update.append(
                    EventUpdate(event_id=existing.id, strava_event_id=activity.id, changes=changes)
                )
