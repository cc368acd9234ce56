from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response

from ..cache import PlayerLookupCache
from ..db import get_session_factory
from ..exceptions import http_problem
from ..models import Match
from ..schemas import MatchCreate, MatchOut, MatchPageOut, PlayerRefOut
from ..services.ledger import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, LedgerService
from ..services.validation import MatchValidationError, ValidationError
from ..time_utils import isoformat_utc

# Resource-only prefix; versioning is added in main.py
router = APIRouter(prefix="/matches", tags=["matches"])


def get_ledger() -> LedgerService:
    return LedgerService(get_session_factory())


def match_to_out(m: Match) -> MatchOut:
    return MatchOut(
        id=m.id,
        matchDate=isoformat_utc(m.match_date),
        creationDate=isoformat_utc(m.creation_date),
        homeTeamIds=list(m.home_team_ids or []),
        awayTeamIds=list(m.away_team_ids or []),
        homeTeam=[PlayerRefOut(**p) for p in (m.home_team or [])],
        awayTeam=[PlayerRefOut(**p) for p in (m.away_team or [])],
        finalScore=list(m.final_score or []),
        toto=m.toto,
    )


# GET /api/v0/matches?playerId=...&from=...&to=...
@router.get("", response_model=MatchPageOut)
async def list_matches(
    player_id: Optional[str] = Query(None, alias="playerId"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    order: Literal["asc", "desc"] = "desc",
    cursor: Optional[str] = None,
    ledger: LedgerService = Depends(get_ledger),
) -> MatchPageOut:
    try:
        page = await ledger.list_matches(
            player_id=player_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            order=order,
            cursor=cursor,
        )
    except ValueError as exc:
        raise http_problem(status_code=400, detail=str(exc), code="match_query_invalid")
    return MatchPageOut(
        items=[match_to_out(m) for m in page.items],
        nextCursor=page.next_cursor,
    )


@router.post("", response_model=MatchOut)
async def create_match(
    body: MatchCreate,
    ledger: LedgerService = Depends(get_ledger),
) -> MatchOut:
    try:
        match = await ledger.add_match(
            body.homeTeamIds,
            body.awayTeamIds,
            body.finalScore,
            body.matchDate,
            players=PlayerLookupCache(),
        )
    except MatchValidationError as exc:
        raise http_problem(status_code=422, detail=exc.detail, code=exc.reason.value)
    except ValidationError as exc:
        raise http_problem(status_code=422, detail=exc.detail, code="match_invalid")
    return match_to_out(match)


@router.get("/{mid}", response_model=MatchOut)
async def get_match(mid: str, ledger: LedgerService = Depends(get_ledger)) -> MatchOut:
    return match_to_out(await ledger.get_match(mid))


@router.delete("/{mid}", status_code=204)
async def delete_match(mid: str, ledger: LedgerService = Depends(get_ledger)) -> Response:
    # Deleting an unknown match is a no-op, so the response is the same.
    await ledger.delete_match(mid)
    return Response(status_code=204)
