"""
Database models for the run-club directory.

Only the columns the Strava sync core reads or writes are modelled here; the
rest of the directory (users, consent records, geocoding caches) is owned by
other services sharing the same database.
"""
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Boolean, Text, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


class SyncStatus:
    """Values stored in Club.last_sync_status."""
    SUCCESS = "success"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


class Club(Base):
    """Running club, either admin-authored (manual) or bound to a Strava club."""
    __tablename__ = "clubs"

    id = Column(String(36), primary_key=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)

    # Content (name/description/website/member_count are Strava-syncable)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String(500), nullable=True)
    website = Column(String(500), nullable=True)
    instagram = Column(String(255), nullable=True)
    member_count = Column(Integer, nullable=True)

    # Link state
    is_manual = Column(Boolean, nullable=False, default=True)
    strava_slug = Column(String(255), nullable=True)
    strava_club_id = Column(String(32), nullable=True, index=True)
    # Bumped on every link/unlink; sync writes are conditioned on it
    link_version = Column(Integer, nullable=False, default=0)

    # Field names hand-edited by an admin since linking; sync never overwrites them
    manual_overrides = Column(JSON, nullable=False, default=list)

    # Sync bookkeeping (single most recent attempt only)
    last_synced = Column(DateTime, nullable=True)
    last_sync_attempt = Column(DateTime, nullable=True)
    last_sync_status = Column(String(16), nullable=True, index=True)  # success, failed, in_progress
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    events = relationship("Event", back_populates="club", cascade="all, delete-orphan")

    @property
    def is_linked(self) -> bool:
        """True when the club is bound to a Strava club."""
        return not self.is_manual and self.strava_club_id is not None

    def link_state_errors(self) -> list[str]:
        """Violations of the manual/linked invariants (empty when consistent)."""
        errors = []
        if self.is_manual:
            if self.strava_slug or self.strava_club_id:
                errors.append("manual club has a Strava binding")
            if self.manual_overrides:
                errors.append("manual club has manual overrides")
            if any([self.last_synced, self.last_sync_attempt, self.last_sync_status, self.last_sync_error]):
                errors.append("manual club has sync bookkeeping")
        elif not self.strava_club_id:
            errors.append("linked club has no Strava club id")
        return errors


class Event(Base):
    """Club run/event. strava_event_id is set for events imported from Strava."""
    __tablename__ = "events"

    id = Column(String(36), primary_key=True)
    club_id = Column(String(36), ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True)
    strava_event_id = Column(String(32), nullable=True)  # None = admin-authored

    title = Column(String(255), nullable=False)
    date = Column(DateTime, nullable=False, index=True)  # UTC, naive
    time = Column(String(5), nullable=True)  # HH:MM
    address = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    distance = Column(String(50), nullable=True)  # e.g. "5.0 km"
    pace = Column(String(100), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    club = relationship("Club", back_populates="events")

    __table_args__ = (
        UniqueConstraint('club_id', 'strava_event_id', name='uq_events_club_strava_event'),
        Index('ix_events_strava_event_id', 'strava_event_id'),
    )
