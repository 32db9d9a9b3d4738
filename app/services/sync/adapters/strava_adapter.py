"""Strava API adapter.

Read-only client for the two Strava endpoints the club sync needs:
- GET /clubs/{id}               → StravaClub
- GET /clubs/{id}/group_events  → List[StravaActivity]

Failures are raised as StravaError subclasses so the orchestrator can record
them on the club. There are no retries here; a failed sync is re-run by an
admin.

Every outbound request first takes a token from the adapter's TokenBucket.
If no token is available within STRAVA_RATE_LIMIT_MAX_WAIT seconds the
adapter fails fast with StravaRateLimitError instead of blocking the request.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.metrics import record_strava_request
from app.services.sync.adapters.strava_types import (
    StravaActivity,
    StravaClub,
    StravaClubData,
)
from app.services.sync.utils.rate_limiter import RateLimitExceeded, TokenBucket

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class StravaError(Exception):
    """Base class for Strava API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StravaNotFoundError(StravaError):
    """The club does not exist or is private."""

    def __init__(self, message: str = "Club not found or private"):
        super().__init__(message, status_code=404)


class StravaUnavailableError(StravaError):
    """Strava could not answer usefully (network, 5xx, throttling, credentials)."""


class StravaRateLimitError(StravaUnavailableError):
    def __init__(self, message: str = "Rate limit exceeded, retry in 15 minutes"):
        super().__init__(message, status_code=429)


class StravaAuthError(StravaUnavailableError):
    def __init__(self, message: str = "Invalid API credentials"):
        super().__init__(message, status_code=401)


class StravaResponseError(StravaUnavailableError):
    """Strava answered 2xx with a body we cannot interpret."""


# ============================================================================
# Adapter
# ============================================================================

def build_rate_limiter() -> TokenBucket:
    """Token bucket sized from settings."""
    return TokenBucket(
        capacity=settings.STRAVA_RATE_LIMIT_BURST,
        refill_per_second=settings.STRAVA_RATE_LIMIT_PER_SECOND,
    )


class StravaAdapter:
    """
    Async Strava API client.

    Args:
        access_token: Bearer token (defaults to settings)
        base_url: API root (defaults to settings)
        timeout: Per-request timeout in seconds (defaults to settings)
        rate_limiter: Outbound token bucket (defaults to one sized from settings)
        client: Pre-built httpx client; the adapter will not close it
        max_wait: Longest acceptable wait for a rate limit token, in seconds
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_wait: Optional[float] = None,
    ):
        self.access_token = access_token if access_token is not None else settings.STRAVA_ACCESS_TOKEN
        self.base_url = (base_url or settings.STRAVA_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.STRAVA_TIMEOUT
        self.rate_limiter = rate_limiter or build_rate_limiter()
        self.max_wait = max_wait if max_wait is not None else settings.STRAVA_RATE_LIMIT_MAX_WAIT

        self._client = client
        self._owns_client = client is None

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
        return self._client

    async def close(self):
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, endpoint: str) -> Any:
        """
        GET a Strava resource and return its decoded JSON body.

        Args:
            path: Path below the API root, e.g. "/clubs/123"
            endpoint: Metric label for this call

        Raises:
            StravaError: on any non-2xx status, transport failure or bad JSON
        """
        try:
            await self.rate_limiter.acquire(max_wait=self.max_wait)
        except RateLimitExceeded as e:
            record_strava_request(endpoint, "throttled")
            logger.warning(f"Strava request {endpoint} throttled locally: {e}")
            raise StravaRateLimitError() from e

        client = await self._get_client()
        url = f"{self.base_url}{path}"

        try:
            response = await client.get(url, headers=self._get_headers(), timeout=self.timeout)
        except httpx.TimeoutException as e:
            record_strava_request(endpoint, "timeout")
            logger.error(f"Strava request {endpoint} timed out after {self.timeout}s")
            raise StravaUnavailableError("Strava API timed out") from e
        except httpx.HTTPError as e:
            record_strava_request(endpoint, "transport_error")
            logger.error(f"Strava request {endpoint} failed: {e}")
            raise StravaUnavailableError(f"Strava API unreachable: {e}") from e

        status_code = response.status_code
        if status_code == 404:
            record_strava_request(endpoint, "not_found")
            raise StravaNotFoundError()
        if status_code == 429:
            record_strava_request(endpoint, "rate_limited")
            logger.warning(f"Strava rate limit hit on {endpoint}")
            raise StravaRateLimitError()
        if status_code == 401:
            record_strava_request(endpoint, "unauthorized")
            logger.error("Strava rejected the configured access token")
            raise StravaAuthError()
        if status_code >= 400:
            record_strava_request(endpoint, "error")
            logger.error(f"Strava request {endpoint} returned {status_code}")
            raise StravaUnavailableError(
                f"Strava API error: {status_code} {response.reason_phrase}",
                status_code=status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            record_strava_request(endpoint, "malformed")
            raise StravaResponseError("Strava API returned invalid JSON", status_code=status_code) from e

        record_strava_request(endpoint, "success")
        return data

    async def fetch_club(self, strava_club_id: str) -> StravaClub:
        """
        Fetch club metadata.

        Raises:
            StravaNotFoundError: unknown or private club
            StravaUnavailableError: any other failure
        """
        payload = await self._get(f"/clubs/{strava_club_id}", "club")
        try:
            return StravaClub.from_api(payload)
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
            record_strava_request("club", "malformed")
            raise StravaResponseError(f"Malformed club payload for {strava_club_id}: {e}") from e

    async def fetch_events(self, strava_club_id: str) -> List[StravaActivity]:
        """
        Fetch the club's group events, in feed order.

        Raises:
            StravaNotFoundError: unknown or private club
            StravaUnavailableError: any other failure
        """
        payload = await self._get(f"/clubs/{strava_club_id}/group_events", "group_events")
        if not isinstance(payload, list):
            record_strava_request("group_events", "malformed")
            raise StravaResponseError(f"Expected a list of group events for {strava_club_id}")

        try:
            activities = [StravaActivity.from_api(item) for item in payload]
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
            record_strava_request("group_events", "malformed")
            raise StravaResponseError(f"Malformed group event payload for {strava_club_id}: {e}") from e

        logger.info(f"Fetched {len(activities)} group events for Strava club {strava_club_id}")
        return activities

    async def fetch_club_data(self, strava_club_id: str) -> StravaClubData:
        """
        Fetch club metadata and group events concurrently.

        If either request fails, the other is cancelled and awaited before
        the error propagates.
        """
        tasks = [
            asyncio.ensure_future(self.fetch_club(strava_club_id)),
            asyncio.ensure_future(self.fetch_events(strava_club_id)),
        ]
        try:
            club, activities = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return StravaClubData(club=club, activities=activities)
