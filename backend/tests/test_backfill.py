from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import delete, select, update
from sqlalchemy.exc import OperationalError

from matchledger.models import PERIOD_COUNTER_FIELDS, Match, PlayerPeriodStats, PlayerStats
from matchledger.services.backfill import BackfillError, BackfillJob, resolve_backfill_range, run_backfill
from matchledger.services.ledger import LedgerService
from matchledger.services.validation import ValidationError

BASE = datetime(2025, 3, 3, 9, tzinfo=timezone.utc)


@pytest.fixture
def ledger(session_factory, clock):
    return LedgerService(session_factory, clock=clock)


def _record_history(run, ledger):
    scores = [[10, 3], [0, 10], [11, 4], [10, 0], [6, 10], [10, 9]]
    teams = [(["a"], ["b"]), (["a", "c"], ["b", "d"])]
    for i, score in enumerate(scores):
        home, away = teams[i % 2]
        run(ledger.add_match(home, away, score, BASE + timedelta(days=i, hours=i)))


async def _buckets(factory, *, with_version=False):
    async with factory() as session:
        rows = (
            await session.execute(
                select(PlayerPeriodStats).order_by(
                    PlayerPeriodStats.period_type,
                    PlayerPeriodStats.period_id,
                    PlayerPeriodStats.player_id,
                )
            )
        ).scalars().all()
    docs = {}
    for row in rows:
        doc = {f: getattr(row, f) for f in PERIOD_COUNTER_FIELDS}
        doc["first_activity_at"] = row.first_activity_at
        doc["last_updated_at"] = row.last_updated_at
        if with_version:
            doc["version"] = row.version
        docs[(row.player_id, row.period_type, row.period_id)] = doc
    return docs


async def _wipe_buckets(factory):
    async with factory() as session:
        await session.execute(delete(PlayerPeriodStats))
        await session.commit()


def _counters(docs):
    return {
        key: {f: doc[f] for f in PERIOD_COUNTER_FIELDS} for key, doc in docs.items()
    }


def test_range_is_widened_to_whole_iso_weeks() -> None:
    start, end = resolve_backfill_range("2025-03-05", "2025-03-05")
    assert start == datetime(2025, 3, 3, tzinfo=timezone.utc)
    assert end == datetime(2025, 3, 9, 23, 59, 59, 999000, tzinfo=timezone.utc)


def test_range_defaults(clock) -> None:
    start, end = resolve_backfill_range(None, None, now=clock.now)
    assert start.date().isoformat() == "2024-12-30"
    assert end.date().isoformat() == "2025-03-09"


@pytest.mark.parametrize(
    "start, end",
    [("2025-03-10", "2025-03-01"), ("03/01/2025", None), ("2025-03-01", "soon")],
)
def test_invalid_ranges(start, end) -> None:
    with pytest.raises(ValidationError):
        resolve_backfill_range(start, end)


def test_rebuilds_what_the_live_path_wrote(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    live = run(_buckets(session_factory))

    run(_wipe_buckets(session_factory))
    result = run(BackfillJob(session_factory, batch_pause=0).run("2025-03-01", "2025-03-31"))

    assert result.completed and not result.cancelled
    assert result.matches_processed == 6
    rebuilt = run(_buckets(session_factory))
    assert _counters(rebuilt) == _counters(live)
    assert result.daily_documents == sum(1 for k in rebuilt if k[1] == "daily")
    assert result.weekly_documents == sum(1 for k in rebuilt if k[1] == "weekly")
    assert result.documents_written == len(rebuilt)

    weekly = rebuilt[("a", "weekly", "2025-W10")]
    assert weekly["first_activity_at"].replace(tzinfo=timezone.utc) == BASE
    assert weekly["last_updated_at"].replace(tzinfo=timezone.utc) == BASE + timedelta(days=5, hours=5)


def test_running_twice_gives_identical_documents(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    job = BackfillJob(session_factory, batch_pause=0, page_size=4, write_batch=5)

    run(job.run("2025-03-01", "2025-03-31"))
    first = run(_buckets(session_factory, with_version=True))
    run(job.run("2025-03-01", "2025-03-31"))
    second = run(_buckets(session_factory, with_version=True))

    assert first == second


def test_overwrites_drifted_counters(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    expected = _counters(run(_buckets(session_factory)))

    async def drift():
        async with session_factory() as session:
            await session.execute(update(PlayerPeriodStats).values(wins=PlayerPeriodStats.wins + 7))
            await session.commit()

    run(drift())
    before = run(_buckets(session_factory, with_version=True))
    run(BackfillJob(session_factory, batch_pause=0).run("2025-03-01", "2025-03-31"))
    after = run(_buckets(session_factory, with_version=True))
    assert _counters(after) == expected
    for key, doc in after.items():
        assert doc["version"] == before[key]["version"] + 1


def test_skips_records_with_missing_data(run, session_factory, ledger, players) -> None:
    run(ledger.add_match(["a"], ["b"], [10, 3], BASE))

    async def add_broken():
        async with session_factory() as session:
            session.add(
                Match(
                    id="broken",
                    match_date=BASE + timedelta(hours=1),
                    creation_date=BASE,
                    home_team_ids=[],
                    away_team_ids=["b"],
                    home_team=[],
                    away_team=[],
                    final_score=[10, 3],
                    toto=1,
                )
            )
            await session.commit()

    run(add_broken())
    result = run(BackfillJob(session_factory, batch_pause=0).run("2025-03-01", "2025-03-31"))
    assert result.matches_processed == 2
    assert result.matches_skipped == 1
    assert result.completed


def test_time_budget_cancels_before_writing(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    ticks = iter([0.0, 0.0, 100.0, 100.0, 100.0])
    job = BackfillJob(
        session_factory,
        batch_pause=0,
        page_size=2,
        time_budget=10,
        monotonic=lambda: next(ticks),
    )
    result = run(job.run("2025-03-01", "2025-03-31"))
    assert result.cancelled and not result.completed
    assert result.matches_processed == 2
    assert result.documents_written == 0


def test_time_budget_keeps_committed_batches(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    run(_wipe_buckets(session_factory))
    clock_values = [0.0] * 3 + [50.0] * 10
    ticks = iter(clock_values)
    job = BackfillJob(
        session_factory,
        batch_pause=0,
        write_batch=3,
        time_budget=10,
        monotonic=lambda: next(ticks),
    )
    result = run(job.run("2025-03-01", "2025-03-31"))
    assert result.cancelled
    assert result.documents_written == 3
    assert len(run(_buckets(session_factory))) == 3


def test_rebuild_lifetime_goals(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)

    async def lifetime(pid):
        async with session_factory() as session:
            return await session.get(PlayerStats, pid)

    expected = run(lifetime("a"))

    async def corrupt():
        async with session_factory() as session:
            await session.execute(update(PlayerStats).values(total_goals_for=0, total_goals_against=0))
            await session.commit()

    run(corrupt())
    result = run(
        run_backfill(
            "2025-03-01",
            "2025-03-31",
            session_factory=session_factory,
            batch_pause=0,
            rebuild_lifetime_goals=True,
        )
    )
    assert result.lifetime_documents == 4
    rebuilt = run(lifetime("a"))
    assert rebuilt.total_goals_for == expected.total_goals_for
    assert rebuilt.total_goals_against == expected.total_goals_against


def test_empty_range(run, session_factory) -> None:
    result = run(BackfillJob(session_factory, batch_pause=0).run("2024-01-01", "2024-01-31"))
    assert result.completed
    assert result.matches_processed == 0
    assert result.documents_written == 0


def _fail_on_open(factory, failing_call):
    calls = {"n": 0}

    def open_session():
        calls["n"] += 1
        if calls["n"] == failing_call:
            raise OperationalError("SELECT", {}, Exception("connection lost"))
        return factory()

    return open_session


def test_read_failure_reports_progress(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    job = BackfillJob(_fail_on_open(session_factory, 2), batch_pause=0, page_size=2)

    with pytest.raises(BackfillError) as excinfo:
        run(job.run("2025-03-01", "2025-03-31"))

    result = excinfo.value.result
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert result.matches_processed == 2
    assert result.documents_written == 0
    assert not result.completed and not result.cancelled


def test_write_failure_keeps_committed_batches(run, session_factory, ledger, players) -> None:
    _record_history(run, ledger)
    run(_wipe_buckets(session_factory))
    # first open reads the log, the next two write batches
    job = BackfillJob(_fail_on_open(session_factory, 3), batch_pause=0, write_batch=3)

    with pytest.raises(BackfillError) as excinfo:
        run(job.run("2025-03-01", "2025-03-31"))

    result = excinfo.value.result
    assert result.matches_processed == 6
    assert result.daily_documents == 3
    assert result.weekly_documents == 0
    assert not result.completed
    assert len(run(_buckets(session_factory))) == 3
