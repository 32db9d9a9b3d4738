"""
Base repository class for data access layer.

The repository pattern provides:
1. Separation of data access logic from sync logic
2. Single place for query logic (easier to maintain)
3. Easier testing (can mock repositories)
4. Consistent interface for data operations

Repositories never commit on their own; the orchestrator and link controller
own transaction boundaries and call save()/rollback().

Example:
    class ClubRepository(BaseRepository[Club]):
        def find_linked(self) -> List[Club]:
            return self.where(Club.is_manual.is_(False))
"""
import uuid
from abc import ABC
from typing import TypeVar, Generic, Type, Optional, List, Any, Dict
from datetime import datetime
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Base repository class providing common data access methods.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # CRUD Operations
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by ID."""
        return self.db.query(self.model_type).filter(self.model_type.id == id).first()

    def create(self, **kwargs) -> T:
        """
        Create a new record with a generated id.

        Returns:
            The created record (not yet committed to database)
        """
        kwargs.setdefault("id", str(uuid.uuid4()))
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def update_fields(self, instance: T, changes: Dict[str, Any]) -> T:
        """Apply column changes to a loaded instance and bump updated_at."""
        for key, value in changes.items():
            setattr(instance, key, value)
        instance.updated_at = datetime.utcnow()
        return instance

    # ========================================================================
    # Query Builders
    # ========================================================================

    def query(self) -> Query:
        """Get a new query object for this model."""
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        """Filter records using SQLAlchemy expressions."""
        return self.db.query(self.model_type).filter(*criterion).all()

    # ========================================================================
    # Transaction helpers
    # ========================================================================

    def save(self) -> None:
        """Commit pending changes to the database."""
        self.db.commit()

    def refresh(self, instance: T) -> T:
        """Refresh an instance from the database."""
        self.db.refresh(instance)
        return instance

    def rollback(self) -> None:
        """Rollback pending changes."""
        self.db.rollback()
