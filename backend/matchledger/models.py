from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Index,
)
from sqlalchemy.sql import func
from .db import Base


PERIOD_TYPES = ("daily", "weekly")

# Counter columns shared by bucket documents and increments.
PERIOD_COUNTER_FIELDS = (
    "matches_played",
    "wins",
    "losses",
    "goals_for",
    "goals_against",
    "humiliations_inflicted",
    "humiliations_suffered",
    "sucker_punches_dealt",
    "sucker_punches_received",
)

LIFETIME_COUNTER_FIELDS = (
    "total_matches",
    "total_wins",
    "total_losses",
    "total_goals_for",
    "total_goals_against",
    "total_flawless_victories",
    "total_humiliations",
    "total_suckerpunches",
    "total_knockouts",
)


class Player(Base):
    __tablename__ = "player"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    avatar = Column(String, nullable=True)


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    match_date = Column(DateTime(timezone=True), nullable=False)
    creation_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    home_team_ids = Column(JSON, nullable=False)
    away_team_ids = Column(JSON, nullable=False)
    home_team = Column(JSON, nullable=False, default=list)
    away_team = Column(JSON, nullable=False, default=list)
    final_score = Column(JSON, nullable=False)
    # 1 = home won, 2 = away won, 0 = draw
    toto = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_match_match_date_id", "match_date", "id"),
    )


class MatchMember(Base):
    """One row per participant so matches can be looked up by player."""

    __tablename__ = "match_member"
    match_id = Column(String, ForeignKey("match.id", ondelete="CASCADE"), primary_key=True)
    player_id = Column(String, ForeignKey("player.id"), primary_key=True)

    __table_args__ = (
        Index("ix_match_member_player_id", "player_id"),
    )


class PlayerStats(Base):
    """Lifetime counters for a player.

    Counter and current-streak columns are only ever changed with relative
    ``UPDATE`` statements so concurrent matches never overwrite each other.
    """

    __tablename__ = "player_stats"
    player_id = Column(String, ForeignKey("player.id"), primary_key=True)

    total_matches = Column(Integer, nullable=False, default=0, server_default="0")
    total_wins = Column(Integer, nullable=False, default=0, server_default="0")
    total_losses = Column(Integer, nullable=False, default=0, server_default="0")
    total_goals_for = Column(Integer, nullable=False, default=0, server_default="0")
    total_goals_against = Column(Integer, nullable=False, default=0, server_default="0")
    total_flawless_victories = Column(Integer, nullable=False, default=0, server_default="0")
    total_humiliations = Column(Integer, nullable=False, default=0, server_default="0")
    total_suckerpunches = Column(Integer, nullable=False, default=0, server_default="0")
    total_knockouts = Column(Integer, nullable=False, default=0, server_default="0")

    win_streak = Column(Integer, nullable=False, default=0, server_default="0")
    lose_streak = Column(Integer, nullable=False, default=0, server_default="0")
    highest_win_streak = Column(Integer, nullable=False, default=0, server_default="0")
    highest_lose_streak = Column(Integer, nullable=False, default=0, server_default="0")

    date_last_match = Column(DateTime(timezone=True), nullable=True)
    date_last_win = Column(DateTime(timezone=True), nullable=True)
    date_last_lose = Column(DateTime(timezone=True), nullable=True)
    date_last_flawless_victory = Column(DateTime(timezone=True), nullable=True)
    date_last_humiliation = Column(DateTime(timezone=True), nullable=True)
    modification_date = Column(DateTime(timezone=True), nullable=True)


class PlayerPeriodStats(Base):
    """Daily or weekly rollup for one player."""

    __tablename__ = "player_period_stats"
    player_id = Column(String, ForeignKey("player.id"), primary_key=True)
    period_type = Column(String(10), primary_key=True)  # "daily" | "weekly"
    period_id = Column(String(16), primary_key=True)  # "2025-03-04" | "2025-W10"

    matches_played = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    goals_for = Column(Integer, nullable=False, default=0)
    goals_against = Column(Integer, nullable=False, default=0)
    humiliations_inflicted = Column(Integer, nullable=False, default=0)
    humiliations_suffered = Column(Integer, nullable=False, default=0)
    sucker_punches_dealt = Column(Integer, nullable=False, default=0)
    sucker_punches_received = Column(Integer, nullable=False, default=0)

    first_activity_at = Column(DateTime(timezone=True), nullable=False)
    last_updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_player_period_stats_period", "period_type", "period_id"),
    )
