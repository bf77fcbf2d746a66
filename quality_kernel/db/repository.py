"""
Module: quality_kernel.db.repository
Responsibility: Record Store Gateway.  A thin generic wrapper over a
    SQLAlchemy Session exposing the four operations the services need:
    create, read, query and upsert.
Architecture position: Kernel > DB.  Imported by services/ only.

Invariants enforced:
    - ``read`` always repopulates the identity-mapped object from the
      database, so a read-modify-write starts from the committed version.
    - ``upsert`` flushes immediately: a stale ``version`` surfaces as
      StaleDataError at the call site, not at some later commit.
    - The gateway never commits.  Transaction boundaries belong to the
      service method.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from quality_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class RecordStore(Generic[ModelType]):
    """Create/read/query/upsert access to one model class."""

    def __init__(self, session: Session, model: type[ModelType]):
        self.session = session
        self.model = model

    def create(self, record: ModelType) -> ModelType:
        self.session.add(record)
        self.session.flush()
        return record

    def read(self, record_id: str) -> ModelType | None:
        return self.session.get(
            self.model, record_id, populate_existing=True,
        )

    def query(self, *criteria: Any, order_by: Any = None) -> list[ModelType]:
        """Return every row matching all ``criteria`` (SQL expressions)."""
        stmt = select(self.model)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return list(self.session.scalars(stmt))

    def upsert(self, record: ModelType) -> ModelType:
        """Insert or update ``record`` and flush.

        Updates of versioned models are conditional on the version the
        record was read at; a mismatch raises StaleDataError.
        """
        if record not in self.session:
            record = self.session.merge(record)
        self.session.flush()
        return record
