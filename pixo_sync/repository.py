"""Generic repository pattern for type-safe SQLModel access.

This module provides a Generic Repository[T] used by the local override
store, giving typed CRUD operations over a SQLModel session.

Example:
    >>> from pixo_sync.repository import Repository
    >>> from pixo_sync.models import OverrideRow
    >>> from sqlmodel import Session
    >>>
    >>> repo = Repository[OverrideRow](session, OverrideRow)
    >>> row = repo.get("liked_mock_notes_u1")
    >>> if row:
    ...     print(row.value)
"""

from collections.abc import Sequence
from typing import Generic, TypeVar

from sqlmodel import Session, SQLModel, col, select

T = TypeVar("T", bound=SQLModel)


class Repository(Generic[T]):
    """Generic repository implementation for SQLModel entities.

    Type Parameter:
        T: SQLModel entity type (e.g. OverrideRow)

    Args:
        session: SQLModel Session instance
        model: SQLModel class
    """

    def __init__(self, session: Session, model: type[T]):
        self.session = session
        self.model = model

    def get(self, entity_id: str) -> T | None:
        """Get entity by primary key, or None if absent."""
        return self.session.get(self.model, entity_id)

    def save(self, entity: T) -> T:
        """Insert or update an entity and commit.

        The session is rolled back if the commit fails, then the error is
        re-raised to the caller.
        """
        merged = self.session.merge(entity)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(merged)
        return merged

    def delete(self, entity_id: str) -> bool:
        """Delete entity by ID.

        Returns:
            True if deleted, False if not found
        """
        entity = self.get(entity_id)
        if entity is None:
            return False
        self.session.delete(entity)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return True

    def find_prefix(self, column: str, prefix: str) -> Sequence[T]:
        """Find entities whose string ``column`` starts with ``prefix``."""
        stmt = select(self.model).where(
            col(getattr(self.model, column)).startswith(prefix, autoescape=True)
        )
        return self.session.exec(stmt).all()


__all__ = ["Repository"]
