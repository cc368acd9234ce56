from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlayerRefOut(BaseModel):
    id: str
    name: str
    avatar: Optional[str] = None


class MatchCreate(BaseModel):
    homeTeamIds: List[str]
    awayTeamIds: List[str]
    # Element checks (integers, range, booleans) happen in the match validator
    # so rejections carry a reason code.
    finalScore: List[Any] = Field(..., min_length=2, max_length=2)
    matchDate: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("homeTeamIds", "awayTeamIds", mode="before")
    @classmethod
    def _strip_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [v.strip() if isinstance(v, str) else v for v in value]
        return value

    @field_validator("matchDate", mode="before")
    @classmethod
    def _blank_date(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class MatchOut(BaseModel):
    id: str
    matchDate: str
    creationDate: Optional[str] = None
    homeTeamIds: List[str]
    awayTeamIds: List[str]
    homeTeam: List[PlayerRefOut]
    awayTeam: List[PlayerRefOut]
    finalScore: List[int]
    toto: Literal[0, 1, 2]


class MatchPageOut(BaseModel):
    items: List[MatchOut]
    nextCursor: Optional[str] = None


class LeaderboardEntryOut(BaseModel):
    rank: int
    playerId: str
    displayName: str
    avatarUrl: Optional[str] = None
    periodType: str
    periodId: str
    matchesPlayed: int
    wins: int
    losses: int
    goalsFor: int
    goalsAgainst: int
    goalDifference: int
    winPercentage: int
    humiliationsInflicted: int
    humiliationsSuffered: int
    suckerPunchesDealt: int
    suckerPunchesReceived: int


class LeaderboardOut(BaseModel):
    periodType: str
    periodId: str
    leaders: List[LeaderboardEntryOut]
    total: int


class BackfillOut(BaseModel):
    message: str
    startDate: str
    endDate: str
    matchesProcessed: int
    matchesSkipped: int
    dailyDocuments: int
    weeklyDocuments: int
    lifetimeDocuments: int
    documentsWritten: int
    completed: bool
    cancelled: bool
