"""
Repository layer for data access.

Usage:
    from app.repositories import ClubRepository, EventRepository
    from app.core.database import get_session_factory

    db = get_session_factory()()
    club_repo = ClubRepository(db)
    club = club_repo.find_by_id(club_id)
    db.close()
"""

from app.repositories.base import BaseRepository
from app.repositories.club_repository import ClubRepository, LinkToken
from app.repositories.event_repository import EventRepository

__all__ = [
    "BaseRepository",
    "ClubRepository",
    "EventRepository",
    "LinkToken",
]
