"""Leaderboards built from the materialized stats rows.

Nothing here touches the match log; entries are read straight from
``player_stats`` (all-time) or ``player_period_stats`` (daily/weekly).
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import PERIOD_TYPES, Player, PlayerPeriodStats, PlayerStats
from .periods import current_periods

logger = logging.getLogger(__name__)

ALL_TIME = "all-time"


@dataclass
class LeaderboardEntry:
    player_id: str
    display_name: str
    avatar_url: str | None
    period_type: str
    period_id: str
    matches_played: int
    wins: int
    losses: int
    goals_for: int
    goals_against: int
    humiliations_inflicted: int
    humiliations_suffered: int
    sucker_punches_dealt: int
    sucker_punches_received: int

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    @property
    def win_percentage(self) -> int:
        if self.matches_played <= 0:
            return 0
        # half-up, so 2 of 3 is 67 and 1 of 8 is 13
        return math.floor(self.wins * 100 / self.matches_played + 0.5)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["goal_difference"] = self.goal_difference
        data["win_percentage"] = self.win_percentage
        return data


def rank_entries(entries: list[LeaderboardEntry]) -> list[LeaderboardEntry]:
    """Drop inactive players and order the rest best first."""

    active = [e for e in entries if e.matches_played > 0]
    active.sort(
        key=lambda e: (
            -e.wins,
            -e.win_percentage,
            -e.goal_difference,
            -e.matches_played,
            e.display_name.casefold(),
        )
    )
    return active


async def all_time_leaderboard(session: AsyncSession) -> list[LeaderboardEntry]:
    rows = (
        await session.execute(
            select(Player, PlayerStats).join(PlayerStats, PlayerStats.player_id == Player.id)
        )
    ).all()
    entries = [
        LeaderboardEntry(
            player_id=player.id,
            display_name=player.name,
            avatar_url=player.avatar,
            period_type=ALL_TIME,
            period_id=ALL_TIME,
            matches_played=stats.total_matches or 0,
            wins=stats.total_wins or 0,
            losses=stats.total_losses or 0,
            goals_for=stats.total_goals_for or 0,
            goals_against=stats.total_goals_against or 0,
            humiliations_inflicted=stats.total_flawless_victories or 0,
            humiliations_suffered=stats.total_humiliations or 0,
            sucker_punches_dealt=stats.total_suckerpunches or 0,
            sucker_punches_received=stats.total_knockouts or 0,
        )
        for player, stats in rows
    ]
    ranked = rank_entries(entries)
    logger.info("All-time leaderboard generated with %d active entries.", len(ranked))
    return ranked


async def period_leaderboard(
    session: AsyncSession, period_type: str, period_id: str | None = None
) -> tuple[str, list[LeaderboardEntry]]:
    """Return ``(period_id, entries)``; ``period_id`` defaults to the current one."""

    if period_type not in PERIOD_TYPES:
        raise ValueError(f"unknown period type: {period_type!r}")
    record_id = period_id or current_periods().for_type(period_type)
    logger.info("Generating %s leaderboard for period: %s", period_type, record_id)

    rows = (
        await session.execute(
            select(Player, PlayerPeriodStats)
            .join(PlayerPeriodStats, PlayerPeriodStats.player_id == Player.id)
            .where(
                PlayerPeriodStats.period_type == period_type,
                PlayerPeriodStats.period_id == record_id,
            )
        )
    ).all()
    entries = [
        LeaderboardEntry(
            player_id=player.id,
            display_name=player.name,
            avatar_url=player.avatar,
            period_type=period_type,
            period_id=record_id,
            matches_played=stats.matches_played,
            wins=stats.wins,
            losses=stats.losses,
            goals_for=stats.goals_for,
            goals_against=stats.goals_against,
            humiliations_inflicted=stats.humiliations_inflicted,
            humiliations_suffered=stats.humiliations_suffered,
            sucker_punches_dealt=stats.sucker_punches_dealt,
            sucker_punches_received=stats.sucker_punches_received,
        )
        for player, stats in rows
    ]
    return record_id, rank_entries(entries)
