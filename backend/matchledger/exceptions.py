from fastapi import HTTPException
from pydantic import BaseModel
from typing import Any, Optional


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code


class PlayerNotFound(DomainException):
    def __init__(self, player_ids: list[str]) -> None:
        missing = ", ".join(player_ids)
        super().__init__(
            status_code=404,
            title="Player not found",
            detail=f"could not find all requested players; missing: {missing}",
            code="player_not_found",
        )
        self.player_ids = list(player_ids)


class MatchNotFound(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Match not found",
            detail=f"match '{match_id}' not found",
            code="match_not_found",
        )
        self.match_id = match_id


class TransientStoreError(DomainException):
    """The store kept reporting conflicts after the retry budget was spent."""

    def __init__(self, operation: str, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(
            status_code=503,
            title="Temporarily unavailable",
            detail=f"{operation} failed after {attempts} attempt(s) due to concurrent updates",
            code="store_conflict",
        )
        self.operation = operation
        self.attempts = attempts
        self.cause = cause


class ConsistencyError(Exception):
    """A document the transaction relied on was not where the read phase put it."""

    def __init__(self, player_id: str, key: Any) -> None:
        super().__init__(f"snapshot missing for player {player_id}: {key!r}")
        self.player_id = player_id
        self.key = key


def http_problem(
    status_code: int,
    detail: str,
    code: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Create an HTTPException with an attached problem code."""

    exc = HTTPException(status_code=status_code, detail=detail, headers=headers)
    setattr(exc, "code", code)
    return exc
