"""Strava payload → local column mapping.

Pure functions; the reconciler decides what actually gets written.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from app.services.sync.adapters.strava_types import StravaActivity, StravaClub

STRAVA_CLUB_URL = "https://www.strava.com/clubs/"


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def strava_website(url: Optional[str]) -> Optional[str]:
    """
    Website for a Strava club.

    Strava's `url` is the club's vanity slug; full URLs are kept as-is.

    Examples:
        >>> strava_website("quebec-runners")
        'https://www.strava.com/clubs/quebec-runners'
    """
    url = _blank_to_none(url)
    if url is None:
        return None
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"{STRAVA_CLUB_URL}{url}"


def format_distance(meters: Optional[float]) -> Optional[str]:
    """
    Human distance in kilometres with one decimal.

    Examples:
        >>> format_distance(5000)
        '5.0 km'
        >>> format_distance(None) is None
        True
    """
    if not meters or meters <= 0:
        return None
    return f"{meters / 1000:.1f} km"


def format_time(moment: datetime) -> str:
    """HH:MM of a naive UTC datetime."""
    return moment.strftime("%H:%M")


def map_club_fields(club: StravaClub) -> Dict[str, Any]:
    """Syncable club columns from Strava club metadata."""
    return {
        "name": club.name,
        "description": _blank_to_none(club.description),
        "website": strava_website(club.url),
        "member_count": club.member_count,
    }


def map_activity_fields(activity: StravaActivity) -> Optional[Dict[str, Any]]:
    """
    Event content columns from a Strava group event.

    Returns:
        Column dict, or None when the activity has no scheduled occurrence
    """
    start = activity.next_occurrence
    if start is None:
        return None

    return {
        "title": activity.title,
        "date": start,
        "time": format_time(start),
        "address": _blank_to_none(activity.address),
        "description": _blank_to_none(activity.description),
        "distance": format_distance(activity.distance_meters),
    }
