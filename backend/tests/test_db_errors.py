import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm.exc import StaleDataError

from matchledger.db_errors import is_conflict_error, is_unique_violation


class _PgError(Exception):
    def __init__(self, message: str, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


def test_stale_rows_are_conflicts() -> None:
    assert is_conflict_error(StaleDataError("version mismatch"))


@pytest.mark.parametrize(
    "orig",
    [
        Exception("UNIQUE constraint failed: player_stats.player_id"),
        _PgError("duplicate key value violates unique constraint", "23505"),
    ],
)
def test_unique_violations_are_conflicts(orig) -> None:
    exc = IntegrityError("INSERT", {}, orig)
    assert is_unique_violation(exc)
    assert is_conflict_error(exc)


def test_other_integrity_errors_are_not() -> None:
    exc = IntegrityError("INSERT", {}, _PgError("null value in column", "23502"))
    assert not is_unique_violation(exc)
    assert not is_conflict_error(exc)


@pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
def test_serialization_failures_and_deadlocks(sqlstate) -> None:
    exc = OperationalError("UPDATE", {}, _PgError("could not serialize access", sqlstate))
    assert is_conflict_error(exc)


def test_sqlite_lock() -> None:
    assert is_conflict_error(OperationalError("UPDATE", {}, Exception("database is locked")))


def test_unrelated_errors() -> None:
    assert not is_conflict_error(ProgrammingError("SELECT", {}, Exception("syntax error")))
    assert not is_conflict_error(ValueError("nope"))
