"""Rebuild daily/weekly stats from the match log.

The job reads the log page by page, sums increments in memory for the whole
range and then overwrites the affected bucket rows with the totals. Because
rows are overwritten rather than merged, running it twice over the same range
produces the same rows, and a run that was cut short can simply be repeated.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Callable, Iterable, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..config import (
    BACKFILL_BATCH_PAUSE,
    BACKFILL_DEFAULT_START,
    BACKFILL_PAGE_SIZE,
    BACKFILL_TIME_BUDGET,
    BACKFILL_WRITE_BATCH,
)
from ..db import get_session_factory
from ..models import PERIOD_TYPES, Match, PlayerPeriodStats, PlayerStats
from ..time_utils import coerce_utc, utcnow
from .aggregation import BucketKey
from .increments import MatchFacts, PeriodDelta, compute_increments
from .ledger import match_query
from .periods import resolve_periods
from .validation import ValidationError

logger = logging.getLogger(__name__)


class BackfillError(Exception):
    """A batch failed; ``result`` reports what was committed before it."""

    def __init__(self, message: str, result: "BackfillResult") -> None:
        super().__init__(message)
        self.result = result


@dataclass
class BackfillResult:
    start: datetime
    end: datetime
    matches_processed: int = 0
    matches_skipped: int = 0
    daily_documents: int = 0
    weekly_documents: int = 0
    lifetime_documents: int = 0
    completed: bool = False
    cancelled: bool = False

    @property
    def documents_written(self) -> int:
        return self.daily_documents + self.weekly_documents + self.lifetime_documents

    def summary(self) -> str:
        return (
            f"Backfill {'successful' if self.completed else 'stopped early'} for "
            f"{self.start.isoformat()} to {self.end.isoformat()}. Processed "
            f"{self.matches_processed} matches. Updated/created {self.daily_documents} daily "
            f"and {self.weekly_documents} weekly stats documents."
        )


@dataclass
class _BucketTotals:
    delta: PeriodDelta = field(default_factory=PeriodDelta)
    first_activity_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None

    def add(self, delta: PeriodDelta, at: datetime) -> None:
        self.delta.add(delta)
        if self.first_activity_at is None or at < self.first_activity_at:
            self.first_activity_at = at
        if self.last_updated_at is None or at > self.last_updated_at:
            self.last_updated_at = at


@dataclass
class _GoalTotals:
    goals_for: int = 0
    goals_against: int = 0
    last_match: Optional[datetime] = None


def _parse_day(value: str | date, field_name: str) -> date:
    if isinstance(value, datetime):
        return coerce_utc(value).date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}: {value!r}. Use YYYY-MM-DD.")


def resolve_backfill_range(
    start_date: str | date | None,
    end_date: str | date | None,
    *,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Return the UTC ``[start, end]`` window a backfill will rebuild.

    The window is widened to whole ISO weeks (Monday 00:00 to Sunday
    23:59:59.999) so every weekly bucket it overwrites is complete.
    """

    now = coerce_utc(now) if now else utcnow()
    first_day = _parse_day(start_date or BACKFILL_DEFAULT_START, "startDate")
    last_day = _parse_day(end_date, "endDate") if end_date else now.date()
    if last_day < first_day:
        raise ValidationError("End date cannot be before start date.")

    first_day -= timedelta(days=first_day.weekday())
    last_day += timedelta(days=6 - last_day.weekday())
    start = datetime.combine(first_day, dt_time.min, tzinfo=timezone.utc)
    end = datetime.combine(last_day, dt_time(23, 59, 59, 999000), tzinfo=timezone.utc)
    return start, end


def _matches_row(row: PlayerPeriodStats, values: dict) -> bool:
    """True when ``row`` already holds ``values``; its version is then left alone."""

    for name, value in values.items():
        current = getattr(row, name)
        if isinstance(value, datetime):
            current = coerce_utc(current) if current is not None else None
        if current != value:
            return False
    return True


def _batches(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BackfillJob:
    def __init__(
        self,
        session_factory,
        *,
        page_size: int = BACKFILL_PAGE_SIZE,
        write_batch: int = BACKFILL_WRITE_BATCH,
        batch_pause: float = BACKFILL_BATCH_PAUSE,
        time_budget: float = BACKFILL_TIME_BUDGET,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self.page_size = page_size
        self.write_batch = write_batch
        self.batch_pause = batch_pause
        self.time_budget = time_budget
        self._clock = clock
        self._monotonic = monotonic

    async def run(
        self,
        start_date: str | date | None = None,
        end_date: str | date | None = None,
        *,
        rebuild_lifetime_goals: bool = False,
    ) -> BackfillResult:
        """Rebuild the buckets touched by matches in ``[start_date, end_date]``.

        With ``rebuild_lifetime_goals`` the lifetime goal totals are replaced
        by the sums over the same range, so only pass it for a range that
        starts at or before the first recorded match.
        """

        start, end = resolve_backfill_range(start_date, end_date, now=self._clock())
        result = BackfillResult(start=start, end=end)
        deadline = self._monotonic() + self.time_budget if self.time_budget else None
        logger.info("Starting backfill process for range: %s to %s", start.isoformat(), end.isoformat())

        buckets: dict[BucketKey, _BucketTotals] = {}
        goals: dict[str, _GoalTotals] = {}
        after: tuple[datetime, str] | None = None

        while True:
            if self._expired(deadline):
                logger.warning(
                    "Backfill time budget exhausted after reading %d matches; nothing written.",
                    result.matches_processed,
                )
                result.cancelled = True
                return result
            stmt = match_query(
                date_from=start,
                date_to=end,
                inclusive_end=True,
                order="asc",
                after=after,
                limit=self.page_size,
            )
            try:
                async with self._session_factory() as session:
                    page = list((await session.execute(stmt)).scalars().all())
            except SQLAlchemyError as exc:
                logger.exception(
                    "Reading matches failed after %d matches", result.matches_processed
                )
                raise BackfillError(f"Backfill failed: {exc}", result) from exc
            if not page:
                break
            result.matches_processed += len(page)
            after = (page[-1].match_date, page[-1].id)
            logger.info(
                "Fetched %d matches (Total: %d). Aggregating...",
                len(page),
                result.matches_processed,
            )
            for match in page:
                if not self._accumulate(match, buckets, goals):
                    result.matches_skipped += 1
            if len(page) < self.page_size:
                break

        logger.info("Finished processing all %d matches for the range.", result.matches_processed)

        items = sorted(
            buckets.items(),
            key=lambda kv: (kv[0].period_type, kv[0].period_id, kv[0].player_id),
        )
        for batch_no, batch in enumerate(_batches(items, self.write_batch)):
            if batch_no:
                await asyncio.sleep(self.batch_pause)
            if self._expired(deadline):
                logger.warning("Backfill time budget exhausted; stopping before batch %d.", batch_no + 1)
                result.cancelled = True
                return result
            try:
                await self._write_buckets(batch)
            except SQLAlchemyError as exc:
                logger.exception("Backfill batch %d failed", batch_no + 1)
                raise BackfillError(f"Backfill failed: {exc}", result) from exc
            for key, _ in batch:
                if key.period_type == "daily":
                    result.daily_documents += 1
                else:
                    result.weekly_documents += 1
            logger.info("Committed stats batch with %d operations.", len(batch))

        if rebuild_lifetime_goals and goals:
            for batch_no, batch in enumerate(_batches(sorted(goals.items()), self.write_batch)):
                await asyncio.sleep(self.batch_pause)
                if self._expired(deadline):
                    result.cancelled = True
                    return result
                try:
                    await self._write_goals(batch)
                except SQLAlchemyError as exc:
                    logger.exception("Lifetime goals batch %d failed", batch_no + 1)
                    raise BackfillError(f"Backfill failed: {exc}", result) from exc
                result.lifetime_documents += len(batch)

        result.completed = True
        logger.info(result.summary())
        return result

    def _expired(self, deadline: float | None) -> bool:
        return deadline is not None and self._monotonic() >= deadline

    def _accumulate(
        self,
        match: Match,
        buckets: dict[BucketKey, _BucketTotals],
        goals: dict[str, _GoalTotals],
    ) -> bool:
        if (
            match.match_date is None
            or not match.home_team_ids
            or not match.away_team_ids
            or not match.final_score
        ):
            logger.warning("Skipping match %s due to missing data.", match.id)
            return False
        facts = MatchFacts.from_match(match)
        played_at = coerce_utc(match.match_date)
        periods = resolve_periods(played_at)
        for pid in dict.fromkeys(facts.participants):
            inc = compute_increments(facts, pid, 1)
            for period_type in PERIOD_TYPES:
                key = BucketKey(pid, period_type, periods.for_type(period_type))
                buckets.setdefault(key, _BucketTotals()).add(inc.period, played_at)
            totals = goals.setdefault(pid, _GoalTotals())
            totals.goals_for += inc.lifetime.total_goals_for
            totals.goals_against += inc.lifetime.total_goals_against
            if totals.last_match is None or played_at > totals.last_match:
                totals.last_match = played_at
        return True

    async def _write_buckets(self, batch: list[tuple[BucketKey, _BucketTotals]]) -> None:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(PlayerPeriodStats).where(
                        PlayerPeriodStats.player_id.in_(sorted({k.player_id for k, _ in batch})),
                        PlayerPeriodStats.period_id.in_(sorted({k.period_id for k, _ in batch})),
                    )
                )
            ).scalars().all()
            existing = {BucketKey(r.player_id, r.period_type, r.period_id): r for r in rows}
            inserts = []
            for key, totals in batch:
                values = {
                    **totals.delta.counters(),
                    "first_activity_at": totals.first_activity_at,
                    "last_updated_at": totals.last_updated_at,
                }
                row = existing.get(key)
                if row is not None:
                    if _matches_row(row, values):
                        continue
                    await session.execute(
                        update(PlayerPeriodStats)
                        .where(
                            PlayerPeriodStats.player_id == key.player_id,
                            PlayerPeriodStats.period_type == key.period_type,
                            PlayerPeriodStats.period_id == key.period_id,
                        )
                        .values(**values, version=PlayerPeriodStats.version + 1)
                        .execution_options(synchronize_session=False)
                    )
                else:
                    inserts.append(
                        {
                            "player_id": key.player_id,
                            "period_type": key.period_type,
                            "period_id": key.period_id,
                            "version": 1,
                            **values,
                        }
                    )
            if inserts:
                await session.execute(insert(PlayerPeriodStats), inserts)
            await session.commit()

    async def _write_goals(self, batch: list[tuple[str, _GoalTotals]]) -> None:
        async with self._session_factory() as session:
            for player_id, totals in batch:
                values = {
                    "total_goals_for": totals.goals_for,
                    "total_goals_against": totals.goals_against,
                    "date_last_match": totals.last_match,
                }
                res = await session.execute(
                    update(PlayerStats)
                    .where(PlayerStats.player_id == player_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if not res.rowcount:
                    session.add(PlayerStats(player_id=player_id, **values))
            await session.commit()


async def run_backfill(
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    *,
    session_factory=None,
    rebuild_lifetime_goals: bool = False,
    **options,
) -> BackfillResult:
    """Run a backfill with the configured defaults; used by the admin endpoint."""

    job = BackfillJob(session_factory or get_session_factory(), **options)
    return await job.run(start_date, end_date, rebuild_lifetime_goals=rebuild_lifetime_goals)
