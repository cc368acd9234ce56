"""Apply a match's increments to lifetime and period stats in one transaction.

Every stat change for a match happens in two phases on the same session:

1. read phase: one multi-row ``SELECT`` loads every daily/weekly bucket the
   match touches. Lifetime rows are not read; they only receive relative
   updates.
2. write phase: lifetime rows get ``col = col + delta`` updates (inserted
   when missing) and bucket rows are created or merged.

No read is issued once the first write has been staged. Conflicting
concurrent writers are detected at flush/commit time (row version for
buckets, primary key for lazily created rows) and the whole unit of work is
retried by :func:`run_in_transaction`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, TypeVar

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import AGGREGATION_MAX_ATTEMPTS, AGGREGATION_RETRY_BACKOFF
from ..db_errors import is_conflict_error
from ..exceptions import ConsistencyError, TransientStoreError
from ..models import PERIOD_TYPES, PlayerPeriodStats, PlayerStats
from ..time_utils import utcnow
from .increments import Increment, MatchFacts, PeriodDelta, compute_increments
from .periods import resolve_periods

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BucketKey:
    player_id: str
    period_type: str
    period_id: str


@dataclass
class StageResult:
    players: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class ApplyResult(StageResult):
    attempts: int = 1


async def run_in_transaction(
    session_factory,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int = AGGREGATION_MAX_ATTEMPTS,
    backoff: float = AGGREGATION_RETRY_BACKOFF,
) -> tuple[T, int]:
    """Run ``work`` on a fresh session and commit, retrying on conflicts.

    Returns ``(result, attempts)``. Non-conflict errors propagate untouched;
    once ``max_attempts`` conflicting attempts have been made a
    :class:`TransientStoreError` is raised.
    """

    last_exc: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        async with session_factory() as session:
            try:
                result = await work(session)
                await session.commit()
                return result, attempt
            except Exception as exc:
                await session.rollback()
                if not is_conflict_error(exc):
                    raise
                last_exc = exc
                logger.warning(
                    "%s hit a conflicting update (attempt %d/%d): %s",
                    operation,
                    attempt,
                    max_attempts,
                    exc,
                )
        if attempt < max_attempts and backoff > 0:
            await asyncio.sleep(backoff * attempt)
    raise TransientStoreError(operation, max_attempts, last_exc)


def _streak_value(column, delta: int, reset: bool):
    if reset:
        return 0
    return case((column + delta < 0, 0), else_=column + delta)


class AggregationEngine:
    """Keeps lifetime and period stats in step with the match ledger."""

    def __init__(
        self,
        session_factory=None,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = AGGREGATION_MAX_ATTEMPTS,
        backoff: float = AGGREGATION_RETRY_BACKOFF,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.max_attempts = max_attempts
        self.backoff = backoff

    async def apply(self, match, multiplier: int) -> ApplyResult:
        """Apply (``+1``) or reverse (``-1``) ``match`` in its own transaction."""

        if self._session_factory is None:
            raise RuntimeError("AggregationEngine.apply needs a session factory")
        facts = match if isinstance(match, MatchFacts) else MatchFacts.from_match(match)

        async def work(session: AsyncSession) -> StageResult:
            return await self.stage(session, facts, multiplier)

        staged, attempts = await run_in_transaction(
            self._session_factory,
            work,
            operation="stats aggregation",
            max_attempts=self.max_attempts,
            backoff=self.backoff,
        )
        return ApplyResult(players=staged.players, skipped=staged.skipped, attempts=attempts)

    async def stage(
        self,
        session: AsyncSession,
        match: MatchFacts,
        multiplier: int,
        now: datetime | None = None,
    ) -> StageResult:
        """Stage all stat writes for ``match`` on ``session`` without committing."""

        now = now or self._clock()
        participants = list(dict.fromkeys(match.participants))
        if not participants:
            return StageResult()
        periods = resolve_periods(match.match_date or now)
        increments = {
            pid: compute_increments(match, pid, multiplier) for pid in participants
        }
        keys = {
            pid: [BucketKey(pid, ptype, periods.for_type(ptype)) for ptype in PERIOD_TYPES]
            for pid in participants
        }

        # --- read phase ---
        snapshots = await self._read_buckets(
            session, [key for player_keys in keys.values() for key in player_keys]
        )

        # --- write phase ---
        result = StageResult()
        for pid in participants:
            try:
                player_snapshots = [(key, self._snapshot(snapshots, key)) for key in keys[pid]]
            except ConsistencyError as exc:
                logger.error("Skipping stats for player %s: %s", pid, exc)
                result.skipped.append(pid)
                continue
            inc = increments[pid]
            await self._merge_lifetime(session, inc, now)
            for key, row in player_snapshots:
                self._merge_bucket(session, key, row, inc.period, now)
            result.players.append(pid)
        return result

    async def _read_buckets(
        self, session: AsyncSession, keys: Iterable[BucketKey]
    ) -> dict[BucketKey, PlayerPeriodStats | None]:
        keys = list(keys)
        snapshots: dict[BucketKey, PlayerPeriodStats | None] = {key: None for key in keys}
        if not keys:
            return snapshots
        rows = (
            await session.execute(
                select(PlayerPeriodStats).where(
                    PlayerPeriodStats.player_id.in_(sorted({k.player_id for k in keys})),
                    PlayerPeriodStats.period_id.in_(sorted({k.period_id for k in keys})),
                )
            )
        ).scalars().all()
        for row in rows:
            key = BucketKey(row.player_id, row.period_type, row.period_id)
            if key in snapshots:
                snapshots[key] = row
        return snapshots

    @staticmethod
    def _snapshot(snapshots, key: BucketKey) -> PlayerPeriodStats | None:
        # the read phase must have seeded every key, even ones with no row
        if key not in snapshots:
            raise ConsistencyError(key.player_id, key)
        return snapshots[key]

    async def _merge_lifetime(self, session: AsyncSession, inc: Increment, now: datetime) -> None:
        delta = inc.lifetime
        values = {
            name: getattr(PlayerStats, name) + value
            for name, value in delta.counters().items()
            if value
        }
        values["win_streak"] = _streak_value(
            PlayerStats.win_streak, delta.win_streak, delta.reset_win_streak
        )
        values["lose_streak"] = _streak_value(
            PlayerStats.lose_streak, delta.lose_streak, delta.reset_lose_streak
        )
        dates = self._activity_dates(inc, now)
        values.update(dates)

        result = await session.execute(
            update(PlayerStats)
            .where(PlayerStats.player_id == inc.player_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return

        session.add(
            PlayerStats(
                player_id=inc.player_id,
                **delta.counters(),
                win_streak=max(delta.win_streak, 0),
                lose_streak=max(delta.lose_streak, 0),
                highest_win_streak=0,
                highest_lose_streak=0,
                **dates,
            )
        )

    @staticmethod
    def _activity_dates(inc: Increment, now: datetime) -> dict[str, datetime]:
        dates = {"modification_date": now}
        if inc.multiplier < 0:
            return dates
        dates["date_last_match"] = now
        if inc.did_win:
            dates["date_last_win"] = now
            if inc.has_humiliation:
                dates["date_last_flawless_victory"] = now
        elif inc.did_lose:
            dates["date_last_lose"] = now
            if inc.has_humiliation:
                dates["date_last_humiliation"] = now
        return dates

    @staticmethod
    def _merge_bucket(
        session: AsyncSession,
        key: BucketKey,
        row: PlayerPeriodStats | None,
        delta: PeriodDelta,
        now: datetime,
    ) -> None:
        if row is None:
            session.add(
                PlayerPeriodStats(
                    player_id=key.player_id,
                    period_type=key.period_type,
                    period_id=key.period_id,
                    **delta.counters(),
                    first_activity_at=now,
                    last_updated_at=now,
                )
            )
            return
        for name, value in delta.counters().items():
            setattr(row, name, (getattr(row, name) or 0) + value)
        row.last_updated_at = now
