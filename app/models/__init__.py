"""
Database models.

Usage:
    from app.models import Club, Event
"""
from app.models.models import Base, Club, Event, SyncStatus

__all__ = [
    "Base",
    "Club",
    "Event",
    "SyncStatus",
]
