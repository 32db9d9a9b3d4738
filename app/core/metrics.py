"""
Prometheus metrics for the club sync API.

Metrics exposed:
- Strava API request outcomes
- Club sync outcomes, durations and imported event counts
- Link/unlink lifecycle transitions
"""
from prometheus_client import Counter, Histogram

# External API Metrics
strava_api_requests_total = Counter(
    "strava_api_requests_total",
    "Total Strava API requests by endpoint and outcome",
    ["endpoint", "outcome"]
)

# Sync Metrics
club_sync_total = Counter(
    "club_sync_total",
    "Club sync runs by final status (success, failed, discarded)",
    ["status"]
)

club_sync_duration_seconds = Histogram(
    "club_sync_duration_seconds",
    "Wall-clock duration of a club sync run"
)

club_sync_events_added_total = Counter(
    "club_sync_events_added_total",
    "Events created from the Strava feed"
)

club_sync_events_updated_total = Counter(
    "club_sync_events_updated_total",
    "Events updated in place from the Strava feed"
)

# Link lifecycle
club_link_transitions_total = Counter(
    "club_link_transitions_total",
    "Club link state transitions",
    ["transition"]  # linked, unlinked
)


def record_strava_request(endpoint: str, outcome: str = "success"):
    """Record one Strava API request outcome (success, not_found, rate_limited, ...)."""
    strava_api_requests_total.labels(endpoint=endpoint, outcome=outcome).inc()


def record_sync_outcome(status: str, duration_seconds: float, events_added: int = 0, events_updated: int = 0):
    """Record the result of a club sync run."""
    club_sync_total.labels(status=status).inc()
    club_sync_duration_seconds.observe(duration_seconds)
    if events_added:
        club_sync_events_added_total.inc(events_added)
    if events_updated:
        club_sync_events_updated_total.inc(events_updated)


def record_link_transition(transition: str):
    """Record a club link/unlink transition."""
    club_link_transitions_total.labels(transition=transition).inc()
