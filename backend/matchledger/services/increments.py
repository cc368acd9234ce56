"""Turn one recorded match into per-player counter deltas.

Every delta is linear in ``multiplier`` so applying a match with ``-1``
exactly undoes applying it with ``+1``. Streak columns are the exception:
a win or loss resets the opposite streak to zero, which cannot be undone.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Sequence

from ..config import COUNT_DRAWS_IN_PERIODS, MAX_GOALS, WINNING_SCORE


class Outcome(int, Enum):
    DRAW = 0
    HOME_WON = 1
    AWAY_WON = 2


def outcome_for_score(score: Sequence[int]) -> Outcome:
    home, away = score[0], score[1]
    if home > away:
        return Outcome.HOME_WON
    if away > home:
        return Outcome.AWAY_WON
    return Outcome.DRAW


def is_flawless_victory(score: Sequence[int]) -> bool:
    """Loser scored nothing while the winner reached 10 or 11."""

    return min(score) == 0 and max(score) in (WINNING_SCORE, MAX_GOALS)


def is_sucker_punch(score: Sequence[int]) -> bool:
    """The winning side finished on exactly 11."""

    return max(score) == MAX_GOALS and score[0] != score[1]


@dataclass(frozen=True)
class MatchFacts:
    """The parts of a match record the calculator needs."""

    home_team_ids: tuple[str, ...]
    away_team_ids: tuple[str, ...]
    final_score: tuple[int, int]
    match_date: datetime | None = None

    @classmethod
    def from_match(cls, match) -> "MatchFacts":
        score = match.final_score or [0, 0]
        return cls(
            home_team_ids=tuple(match.home_team_ids or ()),
            away_team_ids=tuple(match.away_team_ids or ()),
            final_score=(_goal_value(score, 0), _goal_value(score, 1)),
            match_date=match.match_date,
        )

    @property
    def participants(self) -> list[str]:
        return [*self.home_team_ids, *self.away_team_ids]

    @property
    def outcome(self) -> Outcome:
        return outcome_for_score(self.final_score)


def _goal_value(score: Sequence, index: int) -> int:
    try:
        value = score[index]
    except (IndexError, TypeError):
        return 0
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


@dataclass
class LifetimeDelta:
    total_matches: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_goals_for: int = 0
    total_goals_against: int = 0
    total_flawless_victories: int = 0
    total_humiliations: int = 0
    total_suckerpunches: int = 0
    total_knockouts: int = 0
    # Signed change of the streak that continues; the other one resets to 0.
    win_streak: int = 0
    lose_streak: int = 0
    reset_win_streak: bool = False
    reset_lose_streak: bool = False

    def counters(self) -> dict[str, int]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name.startswith("total_")
        }


@dataclass
class PeriodDelta:
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    humiliations_inflicted: int = 0
    humiliations_suffered: int = 0
    sucker_punches_dealt: int = 0
    sucker_punches_received: int = 0

    def counters(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def add(self, other: "PeriodDelta") -> None:
        for name, value in other.counters().items():
            setattr(self, name, getattr(self, name) + value)


@dataclass
class Increment:
    player_id: str
    multiplier: int
    did_win: bool
    did_lose: bool
    has_humiliation: bool
    has_sucker_punch: bool
    suffered_sucker_punch: bool
    lifetime: LifetimeDelta = field(default_factory=LifetimeDelta)
    period: PeriodDelta = field(default_factory=PeriodDelta)

    @property
    def is_draw(self) -> bool:
        return not self.did_win and not self.did_lose


def compute_increments(
    match: MatchFacts,
    player_id: str,
    multiplier: int = 1,
    *,
    count_draws: bool = COUNT_DRAWS_IN_PERIODS,
) -> Increment:
    """Compute lifetime and period deltas for ``player_id`` in ``match``."""

    if multiplier not in (1, -1):
        raise ValueError(f"multiplier must be +1 or -1, got {multiplier!r}")
    if player_id in match.home_team_ids:
        team_index = 0
    elif player_id in match.away_team_ids:
        team_index = 1
    else:
        raise ValueError(f"player {player_id!r} did not take part in this match")

    goals_for = match.final_score[team_index]
    goals_against = match.final_score[1 - team_index]
    outcome = match.outcome
    did_win = outcome != Outcome.DRAW and outcome.value == team_index + 1
    did_lose = outcome != Outcome.DRAW and not did_win
    humiliation = is_flawless_victory(match.final_score)
    sucker_punch = is_sucker_punch(match.final_score)
    m = multiplier

    lifetime = LifetimeDelta(
        total_matches=m,
        total_goals_for=goals_for * m,
        total_goals_against=goals_against * m,
    )
    period = PeriodDelta(
        matches_played=m if (did_win or did_lose or count_draws) else 0,
        goals_for=goals_for * m,
        goals_against=goals_against * m,
    )

    if did_win:
        lifetime.total_wins = m
        lifetime.win_streak = m
        lifetime.reset_lose_streak = True
        period.wins = m
        if humiliation:
            lifetime.total_flawless_victories = m
            period.humiliations_inflicted = m
        if sucker_punch:
            lifetime.total_suckerpunches = m
            period.sucker_punches_dealt = m
    elif did_lose:
        lifetime.total_losses = m
        lifetime.lose_streak = m
        lifetime.reset_win_streak = True
        period.losses = m
        if humiliation:
            lifetime.total_humiliations = m
            period.humiliations_suffered = m
        if sucker_punch:
            lifetime.total_knockouts = m
            period.sucker_punches_received = m
    else:
        lifetime.reset_win_streak = True
        lifetime.reset_lose_streak = True

    return Increment(
        player_id=player_id,
        multiplier=m,
        did_win=did_win,
        did_lose=did_lose,
        has_humiliation=humiliation,
        has_sucker_punch=did_win and sucker_punch,
        suffered_sucker_punch=did_lose and sucker_punch,
        lifetime=lifetime,
        period=period,
    )
