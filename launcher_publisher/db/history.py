"""
Capped append-only history tables.

A ``CappedLog`` wraps one ORM model and keeps at most ``max_rows`` rows per
logical collection (optionally partitioned by a column such as
``profile_id``). Eviction happens in the same transaction as the insert, so a
reader never sees more than ``max_rows`` rows nor a window where the new row
is missing.

Usage:
    builds_log = CappedLog(BuildModel, BuildModel.created_at, 50,
                           partition_column=BuildModel.profile_id)
    builds_log.append(db, build)
"""

import logging
from typing import Any, List, Optional, Type

from sqlalchemy import delete, desc, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from .base import Base

logger = logging.getLogger(__name__)


class CappedLog:
    """Append-only log that evicts its oldest rows past a fixed size."""

    def __init__(
        self,
        model: Type[Base],
        order_column: InstrumentedAttribute,
        max_rows: int,
        partition_column: Optional[InstrumentedAttribute] = None,
    ):
        """Initialize the log.

        Args:
            model: ORM model backing the table
            order_column: Timestamp column; larger values are newer
            max_rows: Rows retained per partition (at least 1)
            partition_column: Optional column that splits the table into
                independently capped collections
        """
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")
        self.model = model
        self.order_column = order_column
        self.max_rows = max_rows
        self.partition_column = partition_column
        self._pk = inspect(model).primary_key[0]

    def append(self, db: Session, record: Any, commit: bool = True) -> int:
        """Insert ``record`` and trim the oldest rows of its collection.

        With ``commit=False`` the caller owns the transaction; the insert and
        the trim are flushed but not committed.

        Returns:
            Number of evicted rows
        """
        try:
            db.add(record)
            db.flush()
            evicted = self._trim(
                db,
                keep_id=getattr(record, self._pk.key),
                partition_value=self._partition_value(record),
            )
            if commit:
                db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

        if commit:
            db.refresh(record)
        if evicted:
            logger.debug(
                f"Evicted {evicted} row(s) from {self.model.__tablename__} "
                f"(max_rows={self.max_rows})"
            )
        return evicted

    def recent(
        self,
        db: Session,
        limit: int,
        partition_value: Any = None,
        offset: int = 0,
    ) -> List[Any]:
        """Return up to ``limit`` rows, newest first."""
        query = self._scoped(select(self.model), partition_value)
        query = (
            query.order_by(desc(self.order_column), desc(self._pk))
            .offset(offset)
            .limit(limit)
        )
        return list(db.scalars(query).all())

    def count(self, db: Session, partition_value: Any = None) -> int:
        """Count rows in a collection."""
        query = self._scoped(select(func.count()).select_from(self.model), partition_value)
        return int(db.scalar(query) or 0)

    def clear(self, db: Session, partition_value: Any = None) -> int:
        """Delete every row of a collection and return how many were removed."""
        statement = delete(self.model)
        if self.partition_column is not None and partition_value is not None:
            statement = statement.where(self.partition_column == partition_value)
        try:
            result = db.execute(statement)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        return result.rowcount or 0

    def _partition_value(self, record: Any) -> Any:
        if self.partition_column is None:
            return None
        return getattr(record, self.partition_column.key)

    def _scoped(self, query, partition_value: Any):
        if self.partition_column is not None and partition_value is not None:
            query = query.where(self.partition_column == partition_value)
        return query

    def _trim(self, db: Session, keep_id: Any, partition_value: Any) -> int:
        # The new row occupies one slot; keep the newest max_rows - 1 others
        query = self._scoped(select(self._pk).where(self._pk != keep_id), partition_value)
        query = query.order_by(desc(self.order_column), desc(self._pk)).offset(
            self.max_rows - 1
        )
        stale_ids = list(db.scalars(query).all())
        if not stale_ids:
            return 0

        db.execute(
            delete(self.model)
            .where(self._pk.in_(stale_ids))
            .execution_options(synchronize_session="fetch")
        )
        return len(stale_ids)
