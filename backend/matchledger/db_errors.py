"""Helpers for classifying database/SQLAlchemy errors raised during commits."""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_UNIQUE_VIOLATION_SQLSTATES = {"23505"}


def _sqlstate(exc: BaseException) -> str | None:
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: SQLAlchemyError) -> bool:
    """Return ``True`` if ``exc`` is a primary key / unique constraint clash."""

    if not isinstance(exc, IntegrityError):
        return False
    if _sqlstate(exc) in _UNIQUE_VIOLATION_SQLSTATES:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "unique" in message or "duplicate key" in message


def is_conflict_error(exc: BaseException) -> bool:
    """Return ``True`` if ``exc`` signals a concurrent modification.

    Conflicts are the optimistic-concurrency failures a transaction can be
    retried from scratch for:

    - a versioned row changed underneath us (``StaleDataError``)
    - two writers lazily created the same document (unique violation)
    - the server aborted a serializable transaction or picked us as a
      deadlock victim
    - SQLite reported the database as locked by another writer
    """

    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, SQLAlchemyError):
        return False
    if is_unique_violation(exc):
        return True
    if isinstance(exc, DBAPIError):
        if _sqlstate(exc) in _RETRYABLE_SQLSTATES:
            return True
        message = str(getattr(exc, "orig", exc)).lower()
        if "database is locked" in message or "could not serialize" in message:
            return True
    return False
