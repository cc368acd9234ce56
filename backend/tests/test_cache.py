import pytest

from matchledger.cache import PlayerLookupCache
from matchledger.config import PLAYER_LOOKUP_CHUNK
from matchledger.exceptions import PlayerNotFound
from matchledger.models import Player


async def _seed(factory, count):
    async with factory() as session:
        session.add_all(Player(id=f"p{i:03d}", name=f"Player {i}") for i in range(count))
        await session.commit()


async def _resolve(factory, cache, ids):
    async with factory() as session:
        return await cache.resolve(session, ids)


def test_resolves_in_requested_order(run, session_factory, players) -> None:
    cache = PlayerLookupCache()
    snapshots = run(_resolve(session_factory, cache, ["c", "a"]))
    assert [s["name"] for s in snapshots] == ["Carol", "Alice"]
    assert cache.get("a") == {"id": "a", "name": "Alice", "avatar": None}


def test_resolves_more_ids_than_one_chunk(run, session_factory) -> None:
    run(_seed(session_factory, PLAYER_LOOKUP_CHUNK + 5))
    ids = [f"p{i:03d}" for i in range(PLAYER_LOOKUP_CHUNK + 5)]
    snapshots = run(_resolve(session_factory, PlayerLookupCache(), ids))
    assert [s["id"] for s in snapshots] == ids


def test_missing_players_raise(run, session_factory, players) -> None:
    with pytest.raises(PlayerNotFound) as exc:
        run(_resolve(session_factory, PlayerLookupCache(), ["a", "x", "y"]))
    assert exc.value.player_ids == ["x", "y"]
    assert exc.value.status_code == 404


def test_entries_expire() -> None:
    now = [100.0]
    cache = PlayerLookupCache(ttl_seconds=5, clock=lambda: now[0])
    cache.set("a", {"id": "a"})
    assert cache.get("a") == {"id": "a"}
    now[0] = 106.0
    assert cache.get("a") is None
    assert len(cache) == 0


def test_zero_ttl_disables_caching() -> None:
    cache = PlayerLookupCache(ttl_seconds=0)
    cache.set("a", {"id": "a"})
    assert cache.get("a") is None


def test_clear_and_invalidate() -> None:
    cache = PlayerLookupCache()
    cache.set("a", {"id": "a"})
    cache.set("b", {"id": "b"})
    cache.invalidate("a")
    assert cache.get("a") is None and len(cache) == 1
    cache.clear()
    assert len(cache) == 0
