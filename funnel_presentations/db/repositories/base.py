"""Generic base repository for SQLAlchemy models."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Generic base repository for lookups scoped by owner or project.

    Repositories never commit; the service layer owns transaction boundaries.
    Repositories never raise HTTPException. They return None or raise domain exceptions.
    """

    model: type[T]

    def __init__(self, db: Session) -> None:
        self.db = db

    # --- Retrieval ---

    def get(self, id_: Any) -> T | None:
        """Get entity by primary key."""
        return self.db.get(self.model, id_)

    def get_with_filter(self, id_: Any, **filters: Any) -> T | None:
        """Get by PK with additional filters (e.g., ownership check)."""
        stmt = select(self.model).where(self.model.id == id_)
        for key, value in filters.items():
            stmt = stmt.where(getattr(self.model, key) == value)
        return self.db.scalar(stmt)

    def first_by(self, **filters: Any) -> T | None:
        """First entity matching filters, or None."""
        stmt = select(self.model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(self.model, key) == value)
        return self.db.scalars(stmt.limit(1)).first()

    # --- Persistence (never commit) ---

    def add(self, obj: T) -> T:
        """Add entity to session."""
        self.db.add(obj)
        return obj
