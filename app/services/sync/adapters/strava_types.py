"""Typed views over Strava API payloads.

Only the fields the sync layer uses are kept. Timestamps are converted to
naive UTC datetimes, matching how the events table stores dates.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


def parse_strava_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 Strava timestamp into a naive UTC datetime.

    Examples:
        >>> parse_strava_timestamp("2025-12-01T08:30:00Z")
        datetime.datetime(2025, 12, 1, 8, 30)
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class StravaClub:
    """Strava club metadata (GET /clubs/{id})."""
    id: int
    name: str
    description: Optional[str] = None
    sport_type: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    member_count: Optional[int] = None
    url: Optional[str] = None
    profile: Optional[str] = None
    cover_photo: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "StravaClub":
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"club name missing or blank: {name!r}")

        member_count = payload.get("member_count")
        return cls(
            id=int(payload["id"]),
            name=name,
            description=payload.get("description"),
            sport_type=payload.get("sport_type"),
            city=payload.get("city"),
            country=payload.get("country"),
            member_count=int(member_count) if member_count is not None else None,
            url=payload.get("url"),
            profile=payload.get("profile"),
            cover_photo=payload.get("cover_photo"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sportType": self.sport_type,
            "city": self.city,
            "country": self.country,
            "memberCount": self.member_count,
            "url": self.url,
            "profile": self.profile,
            "coverPhoto": self.cover_photo,
        }


@dataclass(frozen=True)
class StravaActivity:
    """Strava club group event (GET /clubs/{id}/group_events)."""
    id: str
    title: str
    description: Optional[str] = None
    address: Optional[str] = None
    occurrences: Tuple[datetime, ...] = ()
    distance_meters: Optional[float] = None
    club_id: Optional[int] = None

    @property
    def next_occurrence(self) -> Optional[datetime]:
        """Earliest upcoming occurrence, or None for events with no schedule."""
        return min(self.occurrences) if self.occurrences else None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "StravaActivity":
        occurrences = tuple(
            parse_strava_timestamp(item["start_date"])
            for item in payload.get("upcoming_occurrences") or []
            if item and item.get("start_date")
        )

        route = payload.get("route") or {}
        distance = route.get("distance")
        if distance is not None:
            distance = float(distance)
            if not math.isfinite(distance):
                raise ValueError(f"non-finite route distance: {distance}")

        raw_id = payload.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else "",
            title=str(payload.get("title") or ""),
            description=payload.get("description"),
            address=payload.get("address"),
            occurrences=occurrences,
            distance_meters=distance,
            club_id=payload.get("club_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        next_occurrence = self.next_occurrence
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "address": self.address,
            "nextOccurrence": next_occurrence.isoformat() if next_occurrence else None,
            "distanceMeters": self.distance_meters,
        }


@dataclass(frozen=True)
class StravaClubData:
    """Everything one sync needs from Strava: club metadata plus its group events."""
    club: StravaClub
    activities: List[StravaActivity] = field(default_factory=list)
