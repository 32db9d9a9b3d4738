"""
Admin routes for a club's Strava binding.

Provides endpoints for:
- Linking a club to a Strava club (with optional immediate import)
- Re-syncing a linked club
- Unlinking a club (deleting or keeping its imported events)
- Previewing a Strava club before linking

Every route requires the admin token; the check runs as a router-level
dependency, before the database session or Strava client is created.
"""
import logging
from functools import lru_cache
from typing import AsyncGenerator, Dict, List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from app.core.auth import require_admin
from app.core.database import get_db
from app.core.exceptions import PersistenceError
from app.core.rate_limit import STRAVA_PREVIEW_LIMIT, STRAVA_WRITE_LIMIT, limiter
from app.models import Club
from app.services.sync.adapters.strava_adapter import (
    StravaAdapter,
    StravaError,
    StravaNotFoundError,
    StravaRateLimitError,
    build_rate_limiter,
)
from app.services.sync.link_controller import StravaLinkController
from app.services.sync.orchestrator import ClubSyncOrchestrator
from app.services.sync.utils.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clubs", tags=["admin-strava"], dependencies=[Depends(require_admin)])
preview_router = APIRouter(prefix="/strava", tags=["admin-strava"], dependencies=[Depends(require_admin)])


# ============================================================================
# Schemas
# ============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LinkStravaRequest(CamelModel):
    """Request body for linking a club."""
    strava_slug: str = Field(..., min_length=1, description="Strava club slug, e.g. club-name-123456")
    import_events: StrictBool = True


class UnlinkStravaRequest(CamelModel):
    """Request body for unlinking a club."""
    delete_events: StrictBool = True


class ClubResponse(CamelModel):
    """Club as returned by the admin API."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    name: str
    description: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    instagram: Optional[str] = None
    member_count: Optional[int] = None
    is_manual: bool
    strava_slug: Optional[str] = None
    strava_club_id: Optional[str] = None
    manual_overrides: List[str] = []
    last_synced: Optional[datetime] = None
    last_sync_attempt: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    updated_at: Optional[datetime] = None


def serialize_club(club: Club) -> Dict:
    return ClubResponse.model_validate(club).model_dump(by_alias=True, mode="json")


# ============================================================================
# Dependencies
# ============================================================================

@lru_cache(maxsize=1)
def get_strava_rate_limiter() -> TokenBucket:
    """Process-wide outbound bucket shared by every request's adapter."""
    return build_rate_limiter()


async def get_strava_adapter() -> AsyncGenerator[StravaAdapter, None]:
    """Dependency to get a Strava adapter, closed when the request ends."""
    adapter = StravaAdapter(rate_limiter=get_strava_rate_limiter())
    try:
        yield adapter
    finally:
        await adapter.close()


def get_link_controller(
    db: Session = Depends(get_db),
    adapter: StravaAdapter = Depends(get_strava_adapter)
) -> StravaLinkController:
    """Dependency to get link controller instance."""
    return StravaLinkController(db, adapter=adapter)


def get_orchestrator(
    db: Session = Depends(get_db),
    adapter: StravaAdapter = Depends(get_strava_adapter)
) -> ClubSyncOrchestrator:
    """Dependency to get sync orchestrator instance."""
    return ClubSyncOrchestrator(db, adapter=adapter)


# ============================================================================
# Routes
# ============================================================================

@router.post("/{club_id}/link-strava")
@limiter.limit(STRAVA_WRITE_LIMIT)
async def link_strava(
    request: Request,
    club_id: str,
    body: LinkStravaRequest,
    controller: StravaLinkController = Depends(get_link_controller)
) -> Dict:
    """
    Link a club to a Strava club.

    The club stays linked even if the immediate import fails; in that case
    the response carries `syncError` and the club records the failure.
    """
    result = await controller.link(club_id, body.strava_slug, import_events=body.import_events)

    response = {
        "club": serialize_club(result.club),
        "summary": {
            "eventsImported": result.events_imported,
            "fieldsUpdated": result.fields_updated,
        },
    }
    if result.sync_error:
        response["syncError"] = result.sync_error
    return response


@router.post("/{club_id}/sync-strava")
@limiter.limit(STRAVA_WRITE_LIMIT)
async def sync_strava(
    request: Request,
    club_id: str,
    orchestrator: ClubSyncOrchestrator = Depends(get_orchestrator)
):
    """
    Re-sync a linked club from Strava.

    A sync that ran but failed upstream (or was discarded because the club was
    unlinked meanwhile) answers 200 with `success: false`; a store failure
    answers 500.
    """
    try:
        outcome = await orchestrator.sync_club(club_id)
    except PersistenceError as e:
        return JSONResponse(status_code=500, content={"success": False, "error": e.message})

    if not outcome.success:
        return {"success": False, "status": outcome.status, "error": outcome.error}

    return {"success": True, "summary": outcome.summary.to_dict()}


@router.post("/{club_id}/unlink-strava")
@limiter.limit(STRAVA_WRITE_LIMIT)
async def unlink_strava(
    request: Request,
    club_id: str,
    body: Optional[UnlinkStravaRequest] = None,
    controller: StravaLinkController = Depends(get_link_controller)
) -> Dict:
    """Return a club to manual management."""
    delete_events = body.delete_events if body is not None else True
    result = controller.unlink(club_id, delete_events=delete_events)

    return {
        "club": serialize_club(result.club),
        "eventsDeleted": result.events_deleted,
        "eventsConverted": result.events_converted,
    }


@preview_router.get("/preview")
@limiter.limit(STRAVA_PREVIEW_LIMIT)
async def preview_strava_club(
    request: Request,
    slug: str = Query(..., min_length=1, description="Strava club slug or URL"),
    controller: StravaLinkController = Depends(get_link_controller)
) -> Dict:
    """Show a Strava club and its next events before linking it."""
    try:
        preview = await controller.preview(slug)
    except StravaNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except StravaRateLimitError as e:
        raise HTTPException(status_code=429, detail=e.message)
    except StravaError as e:
        logger.error(f"Strava preview failed for {slug}: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)

    return {
        "club": preview.club.to_dict(),
        "upcomingEvents": [activity.to_dict() for activity in preview.upcoming_events],
    }
