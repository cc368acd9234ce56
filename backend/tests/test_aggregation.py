from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from matchledger.exceptions import TransientStoreError
from matchledger.models import (
    LIFETIME_COUNTER_FIELDS,
    PERIOD_COUNTER_FIELDS,
    PlayerPeriodStats,
    PlayerStats,
)
from matchledger.services.aggregation import AggregationEngine, run_in_transaction
from matchledger.services.increments import MatchFacts

PLAYED = datetime(2025, 3, 4, 10, 15, tzinfo=timezone.utc)
STREAKS = ("win_streak", "lose_streak")


def _facts(score, home=("a",), away=("b",), played=PLAYED) -> MatchFacts:
    return MatchFacts(
        home_team_ids=tuple(home),
        away_team_ids=tuple(away),
        final_score=tuple(score),
        match_date=played,
    )


async def _lifetime(factory, pid):
    async with factory() as session:
        return await session.get(PlayerStats, pid)


async def _bucket(factory, pid, period_type, period_id):
    async with factory() as session:
        return await session.get(PlayerPeriodStats, (pid, period_type, period_id))


async def _state(factory):
    """Numeric state of every stats row, keyed by primary key."""

    async with factory() as session:
        lifetime = (await session.execute(select(PlayerStats))).scalars().all()
        buckets = (await session.execute(select(PlayerPeriodStats))).scalars().all()
    state = {}
    for row in lifetime:
        state[row.player_id] = {f: getattr(row, f) for f in LIFETIME_COUNTER_FIELDS + STREAKS}
    for row in buckets:
        key = (row.player_id, row.period_type, row.period_id)
        state[key] = {f: getattr(row, f) for f in PERIOD_COUNTER_FIELDS}
    return state


@pytest.fixture
def engine(session_factory, clock):
    return AggregationEngine(session_factory, clock=clock, backoff=0)


def test_two_nil_record_then_ten_three_and_back(run, session_factory, engine, players) -> None:
    run(engine.apply(_facts([10, 4]), 1))
    run(engine.apply(_facts([10, 6]), 1))
    before = run(_state(session_factory))
    a = before["a"]
    b = before["b"]
    assert (a["total_wins"], a["win_streak"]) == (2, 2)
    assert (b["total_losses"], b["lose_streak"]) == (2, 2)

    match = _facts([10, 3])
    run(engine.apply(match, 1))
    after = run(_state(session_factory))
    assert after["a"]["total_wins"] == a["total_wins"] + 1
    assert after["a"]["win_streak"] == a["win_streak"] + 1
    assert after["a"]["total_goals_for"] == a["total_goals_for"] + 10
    assert after["b"]["total_losses"] == b["total_losses"] + 1
    assert after["b"]["lose_streak"] == b["lose_streak"] + 1

    run(engine.apply(match, -1))
    assert run(_state(session_factory)) == before


@pytest.mark.parametrize(
    "score, home, away",
    [
        ([10, 0], ("a",), ("b",)),
        ([7, 11], ("a",), ("b",)),
        ([10, 9], ("a", "b"), ("c", "d")),
        ([3, 10], ("c", "a"), ("b", "d")),
    ],
)
def test_reversal_restores_counters(run, session_factory, engine, players, score, home, away) -> None:
    run(engine.apply(_facts([10, 2], home=("a", "c"), away=("b", "d")), 1))
    before = run(_state(session_factory))

    match = _facts(score, home=home, away=away)
    run(engine.apply(match, 1))
    run(engine.apply(match, -1))

    after = run(_state(session_factory))
    for key, values in before.items():
        counters = {k: v for k, v in values.items() if k not in STREAKS}
        assert {k: after[key][k] for k in counters} == counters


def test_first_match_creates_lifetime_and_buckets(run, session_factory, engine, clock, players) -> None:
    result = run(engine.apply(_facts([10, 0]), 1))
    assert result.players == ["a", "b"]
    assert result.attempts == 1

    stats = run(_lifetime(session_factory, "a"))
    assert stats.total_flawless_victories == 1
    assert stats.date_last_flawless_victory is not None
    loser = run(_lifetime(session_factory, "b"))
    assert loser.total_humiliations == 1

    daily = run(_bucket(session_factory, "a", "daily", "2025-03-04"))
    weekly = run(_bucket(session_factory, "b", "weekly", "2025-W10"))
    assert daily.wins == 1 and daily.humiliations_inflicted == 1
    assert weekly.losses == 1 and weekly.humiliations_suffered == 1
    assert daily.version == 1


def test_merging_refreshes_last_updated_and_bumps_version(run, session_factory, engine, clock, players) -> None:
    first = clock.now
    run(engine.apply(_facts([10, 3]), 1))
    clock.now = first + timedelta(hours=1)
    run(engine.apply(_facts([10, 5]), 1))

    daily = run(_bucket(session_factory, "a", "daily", "2025-03-04"))
    assert daily.matches_played == 2
    assert daily.goals_for == 20
    assert daily.version == 2
    assert daily.first_activity_at.replace(tzinfo=timezone.utc) == first
    assert daily.last_updated_at.replace(tzinfo=timezone.utc) == clock.now


def test_streak_reset_never_goes_negative(run, session_factory, engine, players) -> None:
    match = _facts([3, 10])
    run(engine.apply(match, 1))
    run(engine.apply(match, -1))
    run(engine.apply(match, -1))
    stats = run(_lifetime(session_factory, "b"))
    assert stats.win_streak == 0
    assert stats.lose_streak == 0


def test_retries_after_a_conflict(run, session_factory, engine, players) -> None:
    calls = []
    original = engine.stage

    async def flaky(session, match, multiplier, now=None):
        calls.append(multiplier)
        result = await original(session, match, multiplier, now)
        if len(calls) == 1:
            raise StaleDataError("bucket changed underneath")
        return result

    engine.stage = flaky
    result = run(engine.apply(_facts([10, 3]), 1))
    assert result.attempts == 2
    assert len(calls) == 2
    # the failed attempt was rolled back, so only one match is counted
    assert run(_lifetime(session_factory, "a")).total_matches == 1


def test_gives_up_after_max_attempts(run, session_factory, clock, players) -> None:
    engine = AggregationEngine(session_factory, clock=clock, max_attempts=3, backoff=0)
    attempts = []

    async def always_conflicts(session, match, multiplier, now=None):
        attempts.append(1)
        raise StaleDataError("conflict")

    engine.stage = always_conflicts
    with pytest.raises(TransientStoreError) as exc:
        run(engine.apply(_facts([10, 3]), 1))
    assert exc.value.attempts == 3
    assert exc.value.status_code == 503
    assert len(attempts) == 3
    assert run(_lifetime(session_factory, "a")) is None


def test_other_errors_are_not_retried(run, session_factory) -> None:
    attempts = []

    async def broken(session):
        attempts.append(1)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        run(run_in_transaction(session_factory, broken, operation="test", max_attempts=5, backoff=0))
    assert attempts == [1]


def test_missing_snapshot_skips_only_that_player(run, session_factory, engine, players) -> None:
    original = engine._read_buckets

    async def lossy(session, keys):
        snapshots = await original(session, keys)
        return {k: v for k, v in snapshots.items() if k.player_id != "b"}

    engine._read_buckets = lossy
    result = run(engine.apply(_facts([10, 3]), 1))
    assert result.players == ["a"]
    assert result.skipped == ["b"]
    assert run(_lifetime(session_factory, "a")).total_wins == 1
    assert run(_lifetime(session_factory, "b")) is None


def test_stage_leaves_commit_to_the_caller(run, session_factory, engine, players) -> None:
    async def staged_then_rolled_back():
        async with session_factory() as session:
            await engine.stage(session, _facts([10, 3]), 1)
            await session.rollback()

    run(staged_then_rolled_back())
    assert run(_state(session_factory)) == {}
