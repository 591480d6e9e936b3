import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFoundError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class Repository:
    """Storage interface the engines depend on.

    Wraps one SQLAlchemy Session. Writes are flushed immediately so
    constraint violations surface inside the caller's transaction block;
    nothing is committed outside transaction().
    """

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    def get(self, model: Type[ModelT], entity_id: Any, for_update: bool = False) -> Optional[ModelT]:
        if entity_id is None:
            return None
        if for_update:
            return self.session.get(model, entity_id, with_for_update=True, populate_existing=True)
        return self.session.get(model, entity_id)

    def require(self, model: Type[ModelT], entity_id: Any, for_update: bool = False) -> ModelT:
        obj = self.get(model, entity_id, for_update=for_update)
        if obj is None:
            raise NotFoundError(model.__name__, str(entity_id))
        return obj

    def list(self, model: Type[ModelT], *criteria, order_by=None, limit: Optional[int] = None) -> List[ModelT]:
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def first(self, model: Type[ModelT], *criteria) -> Optional[ModelT]:
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return self.session.scalars(stmt.limit(1)).first()

    def create(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        self.session.flush()
        return obj

    def update(self, obj: ModelT, **fields) -> ModelT:
        for key, value in fields.items():
            setattr(obj, key, value)
        self.session.flush()
        return obj

    def delete(self, obj: Base) -> None:
        self.session.delete(obj)
        self.session.flush()

    def execute(self, stmt):
        return self.session.execute(stmt)

    @contextmanager
    def transaction(self) -> Iterator["Repository"]:
        # Nested calls join the outermost unit; only it commits or rolls back
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth = 0
