"""Shared pytest fixtures for the club sync API tests."""
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock

# Settings are read at import time; configure the test environment first
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["STRAVA_ACCESS_TOKEN"] = "test-strava-token"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

ADMIN_TOKEN = "test-admin-token"
STRAVA_CLUB_ID = "123456"
STRAVA_SLUG = f"club-de-course-vieux-quebec-{STRAVA_CLUB_ID}"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    from app.models import Base

    # A single shared connection so the TestClient thread sees the same data
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


# =============================================================================
# Clubs and events
# =============================================================================

@pytest.fixture
def manual_club(db_session: Session):
    """Admin-authored club with no Strava binding."""
    from app.models import Club

    now = datetime.utcnow()
    club = Club(
        id=str(uuid.uuid4()),
        slug="club-de-course-vieux-quebec",
        name="Club de course du Vieux-Québec",
        description="Sorties du mardi soir",
        website="https://vieuxquebec.run",
        member_count=12,
        is_manual=True,
        link_version=0,
        manual_overrides=[],
        created_at=now,
        updated_at=now
    )
    db_session.add(club)
    db_session.commit()
    return club


@pytest.fixture
def linked_club(db_session: Session):
    """Club already bound to Strava club 123456, never synced."""
    from app.models import Club

    now = datetime.utcnow()
    club = Club(
        id=str(uuid.uuid4()),
        slug="coureurs-de-limoilou",
        name="Coureurs de Limoilou",
        is_manual=False,
        strava_slug=STRAVA_SLUG,
        strava_club_id=STRAVA_CLUB_ID,
        link_version=1,
        manual_overrides=[],
        created_at=now,
        updated_at=now
    )
    db_session.add(club)
    db_session.commit()
    return club


@pytest.fixture
def add_event(db_session: Session):
    """Factory inserting an event for a club."""
    from app.models import Event

    def _add(club, title="Sortie longue", strava_event_id=None, date=None, **fields):
        now = datetime.utcnow()
        event = Event(
            id=str(uuid.uuid4()),
            club_id=club.id,
            strava_event_id=strava_event_id,
            title=title,
            date=date or datetime(2025, 12, 6, 9, 0),
            created_at=now,
            updated_at=now,
            **fields
        )
        db_session.add(event)
        db_session.commit()
        return event

    return _add


# =============================================================================
# Strava data
# =============================================================================

@pytest.fixture
def make_strava_club():
    """Factory for StravaClub snapshots."""
    from app.services.sync.adapters.strava_types import StravaClub

    def _make(**overrides):
        values = dict(
            id=int(STRAVA_CLUB_ID),
            name="Club de course du Vieux-Québec",
            description="Courses hebdomadaires dans le Vieux-Québec",
            sport_type="running",
            city="Québec",
            country="Canada",
            member_count=42,
            url="vieux-quebec-runners",
        )
        values.update(overrides)
        return StravaClub(**values)

    return _make


@pytest.fixture
def make_activity():
    """Factory for StravaActivity snapshots."""
    from app.services.sync.adapters.strava_types import StravaActivity

    def _make(activity_id, title=None, start=datetime(2025, 12, 2, 23, 30), distance=5000.0, **overrides):
        values = dict(
            id=str(activity_id),
            title=title or f"Course {activity_id}",
            description="Départ au parc",
            address="Parc des Champs-de-Bataille, Québec",
            occurrences=(start,) if start else (),
            distance_meters=distance,
        )
        values.update(overrides)
        return StravaActivity(**values)

    return _make


@pytest.fixture
def make_club_data(make_strava_club, make_activity):
    """Factory for StravaClubData; defaults to three upcoming events."""
    from app.services.sync.adapters.strava_types import StravaClubData

    def _make(activities=None, **club_overrides):
        if activities is None:
            activities = [
                make_activity("9001", start=datetime(2025, 12, 2, 23, 30)),
                make_activity("9002", start=datetime(2025, 12, 4, 11, 0), distance=10000.0),
                make_activity("9003", start=datetime(2025, 12, 6, 13, 0), distance=21097.5),
            ]
        return StravaClubData(club=make_strava_club(**club_overrides), activities=activities)

    return _make


@pytest.fixture
def mock_adapter(make_club_data):
    """Strava adapter double returning the default club data."""
    from app.services.sync.adapters.strava_adapter import StravaAdapter

    adapter = AsyncMock(spec=StravaAdapter)
    adapter.fetch_club_data.return_value = make_club_data()
    return adapter


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def test_client(db_session: Session, mock_adapter):
    """TestClient with the test session and Strava adapter double injected."""
    from fastapi.testclient import TestClient
    from app.main import app
    from app.core.database import get_db
    from app.api.routes.admin.strava import get_strava_adapter

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_strava_adapter] = lambda: mock_adapter

    yield TestClient(app)

    app.dependency_overrides.clear()
