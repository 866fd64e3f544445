"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Shared plumbing for the lifecycle repositories:
- Session injection
- SQLAlchemy error wrapping
- Commit/rollback with TransactionError
- Per-repository loggers ("repository.<Name>")

All public mutating methods of subclasses commit their own
single-row change; there are no multi-row transactions.

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    TransactionError,
)


T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for all repositories.

    Usage:
        class PolicyRepository(BaseRepository[PolicyModel]):
            def __init__(self, session: Session):
                super().__init__(session, PolicyModel, "PolicyRepository")
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        return self._session

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Roll back and re-raise a database error as a repository exception.

        Raises:
            RepositoryException: Always
        """
        self._logger.error(f"Database error in {operation}: {error} {context or {}}")
        try:
            self._session.rollback()
        except SQLAlchemyError as rollback_error:
            self._logger.error(f"Rollback after {operation} failed: {rollback_error}")

        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            error_str = str(error).lower()
            if "unique" in error_str or "duplicate" in error_str:
                raise DuplicateRecordError(
                    repository_name=self._repository_name,
                    constraint_field=(context or {}).get("field", "unknown"),
                    value=(context or {}).get("value", "unknown"),
                ) from error
            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                message=str(error)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error)
        ) from error

    def _get_by_id(self, record_id: int) -> Optional[T]:
        try:
            return self._session.get(self._model_class, record_id, populate_existing=True)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id", {"id": record_id})
            raise

    def _get_by_id_or_raise(self, record_id: int, id_field: str = "id") -> T:
        """
        Get an entity by primary key.

        Raises:
            RecordNotFoundError: If entity does not exist
        """
        entity = self._get_by_id(record_id)
        if entity is None:
            raise RecordNotFoundError(
                repository_name=self._repository_name,
                record_id=record_id,
                id_field=id_field
            )
        return entity

    def _execute_query(self, stmt: Any) -> List[T]:
        try:
            result = self._session.execute(stmt.execution_options(populate_existing=True))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query")
            raise

    def _execute_scalar(self, stmt: Any) -> Optional[T]:
        try:
            result = self._session.execute(stmt.execution_options(populate_existing=True))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_scalar")
            raise

    def _execute_update(self, stmt: Any, operation: str) -> int:
        """
        Execute an UPDATE/DELETE and commit; returns affected row count.

        Used for compare-and-set transitions: a rowcount of 0 means
        another worker got there first.
        """
        try:
            result = self._session.execute(
                stmt.execution_options(synchronize_session=False)
            )
            self._commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _save(self, entity: T, operation: str, context: Optional[dict] = None) -> T:
        """Add (or re-add) an entity, commit, and return it."""
        try:
            self._session.add(entity)
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, context)
            raise
        self._commit()
        return entity

    def _commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            TransactionError: If commit fails
        """
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise TransactionError(
                repository_name=self._repository_name,
                phase="commit",
                original_error=str(e)
            ) from e
