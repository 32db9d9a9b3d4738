"""External source adapters for the club sync layer.

Available adapters:
- strava_adapter: Strava clubs and group events (read-only)
"""
from app.services.sync.adapters.strava_adapter import (
    StravaAdapter,
    StravaAuthError,
    StravaError,
    StravaNotFoundError,
    StravaRateLimitError,
    StravaResponseError,
    StravaUnavailableError,
    build_rate_limiter,
)
from app.services.sync.adapters.strava_types import (
    StravaActivity,
    StravaClub,
    StravaClubData,
    parse_strava_timestamp,
)

__all__ = [
    "StravaAdapter",
    "StravaAuthError",
    "StravaError",
    "StravaNotFoundError",
    "StravaRateLimitError",
    "StravaResponseError",
    "StravaUnavailableError",
    "build_rate_limiter",
    "StravaActivity",
    "StravaClub",
    "StravaClubData",
    "parse_strava_timestamp",
]
