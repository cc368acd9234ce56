"""Owns the match log and keeps derived stats in step with it."""

from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..cache import PlayerLookupCache
from ..exceptions import MatchNotFound
from ..models import Match, MatchMember
from ..time_utils import coerce_utc, parse_timestamp, utcnow
from .aggregation import AggregationEngine, run_in_transaction
from .increments import MatchFacts, outcome_for_score
from .streaks import StreakMaintainer
from .validation import validate_match_input

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 500


@dataclass
class MatchPage:
    items: list[Match] = field(default_factory=list)
    next_cursor: Optional[str] = None


def encode_cursor(match: Match) -> str:
    raw = f"{coerce_utc(match.match_date).isoformat()}|{match.id}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        stamp, match_id = raw.split("|", 1)
        return parse_timestamp(stamp), match_id
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError(f"invalid cursor: {cursor!r}") from exc


def match_query(
    *,
    player_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    inclusive_end: bool = False,
    order: str = "desc",
    after: tuple[datetime, str] | None = None,
    limit: int = DEFAULT_PAGE_LIMIT,
):
    """Build a keyset-paginated ``SELECT`` over the match log.

    Results are ordered by ``(match_date, id)``; ``after`` is the position of
    the last row of the previous page.
    """

    if order not in ("asc", "desc"):
        raise ValueError("order must be 'asc' or 'desc'")
    stmt = select(Match)
    if player_id:
        stmt = stmt.join(MatchMember, MatchMember.match_id == Match.id).where(
            MatchMember.player_id == player_id
        )
    if date_from is not None:
        stmt = stmt.where(Match.match_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(
            Match.match_date <= date_to if inclusive_end else Match.match_date < date_to
        )
    if after is not None:
        after_date, after_id = after
        if order == "asc":
            stmt = stmt.where(
                or_(
                    Match.match_date > after_date,
                    and_(Match.match_date == after_date, Match.id > after_id),
                )
            )
        else:
            stmt = stmt.where(
                or_(
                    Match.match_date < after_date,
                    and_(Match.match_date == after_date, Match.id < after_id),
                )
            )
    if order == "asc":
        stmt = stmt.order_by(Match.match_date.asc(), Match.id.asc())
    else:
        stmt = stmt.order_by(Match.match_date.desc(), Match.id.desc())
    return stmt.limit(limit)


class LedgerService:
    """Create, read and delete match records.

    Creating or deleting a match stages the stat increments and the record
    change in a single transaction, then promotes streak maxima once that
    transaction has committed.
    """

    def __init__(
        self,
        session_factory,
        *,
        engine: AggregationEngine | None = None,
        streaks: StreakMaintainer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.engine = engine or AggregationEngine(session_factory, clock=clock)
        self.streaks = streaks or StreakMaintainer(session_factory)

    async def add_match(
        self,
        home_ids: Sequence[str],
        away_ids: Sequence[str],
        score: Sequence[Any],
        match_date: str | datetime | None = None,
        *,
        players: PlayerLookupCache | None = None,
    ) -> Match:
        validate_match_input(home_ids, away_ids, score, match_date)
        home_ids, away_ids = list(home_ids), list(away_ids)
        final_score = [int(score[0]), int(score[1])]
        now = self._clock()
        played_at = parse_timestamp(match_date) if match_date else now
        lookup = players if players is not None else PlayerLookupCache()

        async with self._session_factory() as session:
            home_team = await lookup.resolve(session, home_ids)
            away_team = await lookup.resolve(session, away_ids)

        match_id = uuid.uuid4().hex
        members = sorted({*home_ids, *away_ids})
        record = {
            "id": match_id,
            "match_date": played_at,
            "creation_date": now,
            "home_team_ids": home_ids,
            "away_team_ids": away_ids,
            "home_team": home_team,
            "away_team": away_team,
            "final_score": final_score,
            "toto": outcome_for_score(final_score).value,
        }
        facts = MatchFacts(
            home_team_ids=tuple(home_ids),
            away_team_ids=tuple(away_ids),
            final_score=(final_score[0], final_score[1]),
            match_date=played_at,
        )

        async def work(session: AsyncSession) -> Match:
            await self.engine.stage(session, facts, 1, now)
            match = Match(**record)
            session.add(match)
            session.add_all(MatchMember(match_id=match_id, player_id=pid) for pid in members)
            return match

        match, attempts = await run_in_transaction(
            self._session_factory,
            work,
            operation=f"add match {match_id}",
            max_attempts=self.engine.max_attempts,
            backoff=self.engine.backoff,
        )
        logger.info(
            "Match %s created and stats updated within transaction (attempts=%d).",
            match_id,
            attempts,
        )

        await self._promote_streaks(members)
        return match

    async def delete_match(self, match_id: str) -> bool:
        """Delete a match and reverse its stats.

        Returns ``False`` without touching anything when the match does not
        exist (deleting twice is harmless).
        """

        async with self._session_factory() as session:
            preliminary = await session.get(Match, match_id)
        if preliminary is None:
            logger.warning("Attempted to delete non-existent match: %s", match_id)
            return False

        now = self._clock()

        async def work(session: AsyncSession) -> list[str] | None:
            match = await session.get(Match, match_id)
            if match is None:
                logger.warning("Match %s was deleted concurrently before delete transaction.", match_id)
                return None
            facts = MatchFacts.from_match(match)
            await self.engine.stage(session, facts, -1, now)
            await session.execute(delete(MatchMember).where(MatchMember.match_id == match_id))
            result = await session.execute(delete(Match).where(Match.id == match_id))
            if result.rowcount != 1:
                raise StaleDataError(f"match {match_id} was deleted by another transaction")
            return sorted(set(facts.participants))

        participants, _ = await run_in_transaction(
            self._session_factory,
            work,
            operation=f"delete match {match_id}",
            max_attempts=self.engine.max_attempts,
            backoff=self.engine.backoff,
        )
        if participants is None:
            return False
        logger.info("Match %s deleted and stats reversed within transaction.", match_id)

        await self._promote_streaks(participants)
        return True

    async def get_match(self, match_id: str) -> Match:
        async with self._session_factory() as session:
            match = await session.get(Match, match_id)
        if match is None:
            raise MatchNotFound(match_id)
        return match

    async def list_matches(
        self,
        *,
        player_id: str | None = None,
        date_from: str | datetime | None = None,
        date_to: str | datetime | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        order: str = "desc",
        cursor: str | None = None,
    ) -> MatchPage:
        limit = max(1, min(int(limit), MAX_PAGE_LIMIT))
        stmt = match_query(
            player_id=player_id,
            date_from=parse_timestamp(date_from) if date_from else None,
            date_to=parse_timestamp(date_to) if date_to else None,
            order=order,
            after=decode_cursor(cursor) if cursor else None,
            limit=limit + 1,
        )
        async with self._session_factory() as session:
            rows = list((await session.execute(stmt)).scalars().all())

        page = MatchPage(items=rows[:limit])
        if len(rows) > limit:
            page.next_cursor = encode_cursor(page.items[-1])
        return page

    async def _promote_streaks(self, player_ids: Sequence[str]) -> None:
        try:
            await self.streaks.promote_maxima(player_ids)
        except Exception:
            logger.exception("Streak promotion failed for players: %s", ", ".join(player_ids))
