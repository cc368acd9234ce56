from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..schemas import LeaderboardEntryOut, LeaderboardOut
from ..services.leaderboards import (
    ALL_TIME,
    LeaderboardEntry,
    all_time_leaderboard,
    period_leaderboard,
)

# Resource-only prefix; no /api or /api/v0 here
router = APIRouter(prefix="/leaderboards", tags=["leaderboards"])


def _to_out(period_type: str, period_id: str, entries: list[LeaderboardEntry]) -> LeaderboardOut:
    leaders = [
        LeaderboardEntryOut(
            rank=i + 1,
            playerId=e.player_id,
            displayName=e.display_name,
            avatarUrl=e.avatar_url,
            periodType=e.period_type,
            periodId=e.period_id,
            matchesPlayed=e.matches_played,
            wins=e.wins,
            losses=e.losses,
            goalsFor=e.goals_for,
            goalsAgainst=e.goals_against,
            goalDifference=e.goal_difference,
            winPercentage=e.win_percentage,
            humiliationsInflicted=e.humiliations_inflicted,
            humiliationsSuffered=e.humiliations_suffered,
            suckerPunchesDealt=e.sucker_punches_dealt,
            suckerPunchesReceived=e.sucker_punches_received,
        )
        for i, e in enumerate(entries)
    ]
    return LeaderboardOut(
        periodType=period_type,
        periodId=period_id,
        leaders=leaders,
        total=len(leaders),
    )


# GET /api/v0/leaderboards/all-time
@router.get("/all-time", response_model=LeaderboardOut)
async def all_time(session: AsyncSession = Depends(get_session)) -> LeaderboardOut:
    entries = await all_time_leaderboard(session)
    return _to_out(ALL_TIME, ALL_TIME, entries)


# GET /api/v0/leaderboards/weekly?periodId=2025-W10
@router.get("/{period_type}", response_model=LeaderboardOut)
async def by_period(
    period_type: Literal["daily", "weekly"],
    period_id: Optional[str] = Query(
        None, alias="periodId", description="e.g. '2025-03-04' or '2025-W10'; defaults to current"
    ),
    session: AsyncSession = Depends(get_session),
) -> LeaderboardOut:
    record_id, entries = await period_leaderboard(session, period_type, period_id)
    return _to_out(period_type, record_id, entries)
