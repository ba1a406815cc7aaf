"""
Entity Store - generic persistence over the ORM session

get / put / delete / query-by-field / count, plus a nestable unit of work.
"""
from contextlib import contextmanager
from typing import Any, Iterator, Type, TypeVar

from sqlalchemy.orm import Session

from bookingcrm.infrastructure.db.session import Base

M = TypeVar("M", bound=Base)

_DEPTH_KEY = "atomic_depth"


class EntityStore:
    """
    Repository shared by all application services

    Services never commit on their own: every write runs inside atomic(),
    and only the outermost atomic() block commits. A failure anywhere inside
    rolls the whole block back, so a booking transition and its side effects
    land together or not at all.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, model: Type[M], entity_id: Any) -> M | None:
        """
        Get an entity by primary key

        Returns:
            The entity or None if it does not exist
        """
        return self.db.get(model, entity_id)

    def put(self, entity: M) -> M:
        """Insert or update an entity and flush it (no commit)."""
        self.db.add(entity)
        self.db.flush()
        return entity

    def delete(self, entity: M) -> None:
        self.db.delete(entity)
        self.db.flush()

    def query(self, model: Type[M], field: str, value: Any) -> list[M]:
        """
        All entities whose `field` equals `value`

        Example:
            >>> store.query(BookingPaymentModel, "booking_id", booking.id)
        """
        column = getattr(model, field)
        return self.db.query(model).filter(column == value).all()

    def first(self, model: Type[M], field: str, value: Any) -> M | None:
        column = getattr(model, field)
        return self.db.query(model).filter(column == value).first()

    def count(self, model: Type[M], field: str | None = None, value: Any = None) -> int:
        query = self.db.query(model)
        if field is not None:
            query = query.filter(getattr(model, field) == value)
        return query.count()

    def all(self, model: Type[M]) -> list[M]:
        return self.db.query(model).all()

    def delete_where(self, model: Type[M], field: str, value: Any) -> int:
        """Bulk delete by field; returns the number of rows removed."""
        column = getattr(model, field)
        deleted = self.db.query(model).filter(column == value).delete(synchronize_session="fetch")
        self.db.flush()
        return deleted

    @contextmanager
    def atomic(self) -> Iterator["EntityStore"]:
        """
        Unit of work

        Nested blocks share the outer transaction; the outermost block
        commits on success and rolls back on any exception.
        """
        depth = self.db.info.get(_DEPTH_KEY, 0)
        self.db.info[_DEPTH_KEY] = depth + 1
        try:
            yield self
            if depth == 0:
                self.db.commit()
        except Exception:
            if depth == 0:
                self.db.rollback()
            raise
        finally:
            self.db.info[_DEPTH_KEY] = depth
