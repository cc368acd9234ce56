import logging
from enum import Enum
from typing import Any, List, Optional, Sequence

from ..config import ALLOW_ELEVEN_TEN, MAX_GOALS, WINNING_SCORE
from ..time_utils import parse_timestamp

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when submitted match input is invalid."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class RejectionReason(str, Enum):
    TEAM_SIZE = "team_size"
    SCORE_FORMAT = "score_format"
    SCORE_RANGE = "score_range"
    DUPLICATE_PLAYER = "duplicate_player"
    SCORE_ILLEGAL = "score_illegal"
    MATCH_DATE = "match_date"


class MatchValidationError(ValidationError):
    """A proposed match outcome broke one of the admission rules."""

    def __init__(self, reason: RejectionReason, detail: str, **values: Any) -> None:
        super().__init__(detail)
        self.reason = reason
        self.values = values


def _validate_teams(home_ids: Sequence[str], away_ids: Sequence[str]) -> None:
    for label, team in (("Home", home_ids), ("Away", away_ids)):
        if isinstance(team, (str, bytes)) or not isinstance(team, Sequence) or len(team) == 0:
            raise MatchValidationError(
                RejectionReason.TEAM_SIZE,
                f"{label} team cannot be empty and must be a list of player ids.",
                home=home_ids,
                away=away_ids,
            )
    if len(home_ids) != len(away_ids) or len(home_ids) not in (1, 2):
        raise MatchValidationError(
            RejectionReason.TEAM_SIZE,
            f"Invalid team sizes. Home: {len(home_ids)}, Away: {len(away_ids)}."
            " Only 1v1 or 2v2 supported.",
            home=len(home_ids),
            away=len(away_ids),
        )


def _normalize_score(score: Sequence[Any]) -> tuple[int, int]:
    if (
        isinstance(score, (str, bytes))
        or not isinstance(score, Sequence)
        or len(score) != 2
    ):
        raise MatchValidationError(
            RejectionReason.SCORE_FORMAT,
            "Final score must be a pair of integers.",
            score=score,
        )
    # Reject booleans explicitly (bool is a subclass of int in Python)
    if any(isinstance(v, bool) or not isinstance(v, int) for v in score):
        raise MatchValidationError(
            RejectionReason.SCORE_FORMAT,
            f"Final score values must be integers. Score: {list(score)}",
            score=list(score),
        )
    home, away = int(score[0]), int(score[1])
    if home < 0 or away < 0:
        raise MatchValidationError(
            RejectionReason.SCORE_FORMAT,
            f"Final score cannot contain negative values. Score: [{home}, {away}]",
            score=[home, away],
        )
    if home > MAX_GOALS or away > MAX_GOALS:
        raise MatchValidationError(
            RejectionReason.SCORE_RANGE,
            f"Scores cannot exceed {MAX_GOALS}. Score: [{home}, {away}]",
            score=[home, away],
        )
    return home, away


def _validate_unique_players(home_ids: Sequence[str], away_ids: Sequence[str]) -> None:
    seen: set[str] = set()
    for pid in [*home_ids, *away_ids]:
        if pid in seen:
            raise MatchValidationError(
                RejectionReason.DUPLICATE_PLAYER,
                "Duplicate player entry found. A player cannot appear twice in a match.",
                player_id=pid,
            )
        seen.add(pid)


def check_score_legality(
    home: int, away: int, *, allow_eleven_ten: bool = ALLOW_ELEVEN_TEN
) -> Optional[str]:
    """Return a warning for suspicious scores, raise for illegal ones.

    A match is decided by the first side to 10 goals. 11 goals are only
    possible as a sucker-punch finish; whether 11-10 counts is controlled by
    ``allow_eleven_ten``.
    """

    high, low = max(home, away), min(home, away)
    score = [home, away]
    if high < WINNING_SCORE:
        if high == 0:
            return None
        return f"Neither team reached {WINNING_SCORE}. Score: {score}"
    if high == low:
        raise MatchValidationError(
            RejectionReason.SCORE_ILLEGAL,
            f"Invalid final score: cannot tie at {high}-{low}. Score: {score}",
            score=score,
        )
    if high == WINNING_SCORE and low >= WINNING_SCORE:
        raise MatchValidationError(
            RejectionReason.SCORE_ILLEGAL,
            f"If one team scores {WINNING_SCORE}, the other must have less. Score: {score}",
            score=score,
        )
    if high == MAX_GOALS and low >= WINNING_SCORE and not allow_eleven_ten:
        raise MatchValidationError(
            RejectionReason.SCORE_ILLEGAL,
            f"If one team scores {MAX_GOALS}, the other must have less than {WINNING_SCORE}."
            f" Score: {score}",
            score=score,
        )
    return None


def validate_match_input(
    home_ids: Sequence[str],
    away_ids: Sequence[str],
    score: Sequence[Any],
    match_date: Any = None,
    *,
    allow_eleven_ten: bool = ALLOW_ELEVEN_TEN,
) -> List[str]:
    """Validate a proposed match before it is admitted to the ledger.

    Rules are checked in order and the first failure wins:

    1. both teams non-empty, equal size, 1v1 or 2v2
    2. score is a pair of non-negative integers no larger than 11
    3. no player id appears twice
    4. score legality (see :func:`check_score_legality`)
    5. a supplied ``match_date`` parses as an ISO-8601 timestamp

    Returns the list of non-fatal warnings.
    """

    _validate_teams(home_ids, away_ids)
    home, away = _normalize_score(score)
    _validate_unique_players(home_ids, away_ids)

    warnings: List[str] = []
    warning = check_score_legality(home, away, allow_eleven_ten=allow_eleven_ten)
    if warning:
        logger.warning("Potential invalid score: %s", warning)
        warnings.append(warning)

    if match_date is not None and match_date != "":
        try:
            parse_timestamp(match_date)
        except (TypeError, ValueError):
            raise MatchValidationError(
                RejectionReason.MATCH_DATE,
                f"Invalid matchDate format or value: {match_date}. Please use ISO 8601 format.",
                match_date=match_date,
            )

    return warnings
