"""
Base Repository - shared data access for tenant-owned tables

Repositories of tables with an owner_id scope reads with owned(). Writes go
through _write(), which logs and rolls back a failed statement before the
error reaches the service.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Any, Dict, TypeVar, Generic, Iterator, List, Optional, Sequence, Type
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Query, Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT')

_UPSERT_DIALECTS = {
    'postgresql': postgresql_insert,
    'sqlite': sqlite_insert,
}


class BaseRepository(ABC, Generic[ModelT]):
    """
    Writes flush but never commit. Services commit each unit of work through
    commit() before making the next external call.
    """

    def __init__(self, session: Session, model_class: Type[ModelT]):
        self.session = session
        self.model_class = model_class

    @property
    def model_name(self) -> str:
        return self.model_class.__name__

    @contextmanager
    def _write(self, action: str) -> Iterator[None]:
        try:
            yield
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"{self.model_name} {action} failed: {e}")
            self.session.rollback()
            raise

    # Queries

    def owned(self, owner_id: str, *criteria) -> Query:
        """Query of rows belonging to owner_id, narrowed by extra criteria."""
        return self.session.query(self.model_class).filter(
            self.model_class.owner_id == owner_id, *criteria
        )

    def _matching(self, **filters) -> Query:
        query = self.session.query(self.model_class)
        for column, value in filters.items():
            query = query.filter(getattr(self.model_class, column) == value)
        return query

    def get_by_id(self, entity_id: int) -> Optional[ModelT]:
        return self.session.get(self.model_class, entity_id)

    def find_by(self, **filters) -> List[ModelT]:
        return self._matching(**filters).all()

    def find_one_by(self, **filters) -> Optional[ModelT]:
        return self._matching(**filters).first()

    def count(self, **filters) -> int:
        return self._matching(**filters).count()

    # Writes

    def create(self, **attributes) -> ModelT:
        """Add and flush a new row so its id is available before commit."""
        entity = self.model_class(**attributes)
        with self._write('create'):
            self.session.add(entity)
        logger.debug(f"Created {self.model_name} {entity.id}")
        return entity

    def update(self, entity: ModelT, **changes) -> ModelT:
        with self._write('update'):
            for column, value in changes.items():
                setattr(entity, column, value)
        return entity

    def update_by_id(self, entity_id: int, **changes) -> Optional[ModelT]:
        entity = self.get_by_id(entity_id)
        return self.update(entity, **changes) if entity is not None else None

    def _upsert(self, conflict_columns: Sequence[str], **values) -> None:
        """
        Insert a row, or update the row sharing its conflict_columns values.

        Uses INSERT .. ON CONFLICT DO UPDATE where the dialect supports it and
        a lookup followed by an insert or update elsewhere.
        """
        with self._write('upsert'):
            insert = _UPSERT_DIALECTS.get(self.session.get_bind().dialect.name)
            if insert is None:
                self._upsert_by_lookup(conflict_columns, values)
                return
            statement = insert(self.model_class.__table__).values(**values)
            statement = statement.on_conflict_do_update(
                index_elements=list(conflict_columns),
                set_={column: statement.excluded[column]
                      for column in values if column not in conflict_columns}
            )
            self.session.execute(statement)

    def _upsert_by_lookup(self, conflict_columns: Sequence[str], values: Dict[str, Any]) -> None:
        keys = {column: values[column] for column in conflict_columns}
        existing = self.find_one_by(**keys)
        if existing is None:
            try:
                with self.session.begin_nested():
                    self.session.add(self.model_class(**values))
                return
            except IntegrityError:
                # Lost an insert race, update the winner's row instead
                existing = self.find_one_by(**keys)
                if existing is None:
                    raise
        for column, value in values.items():
            setattr(existing, column, value)

    # Unit of work

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Commit failed after {self.model_name} changes: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    def flush(self) -> None:
        self.session.flush()
