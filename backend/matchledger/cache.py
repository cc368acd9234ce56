from __future__ import annotations

from collections.abc import Iterable
import logging
import time
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import PLAYER_CACHE_TTL, PLAYER_LOOKUP_CHUNK
from .exceptions import PlayerNotFound
from .models import Player

logger = logging.getLogger(__name__)


class PlayerLookupCache:
    """Player snapshots resolved while recording matches.

    Create one per request (or per batch of ledger calls) and let it go out
    of scope afterwards; entries also expire after ``ttl_seconds``.
    """

    def __init__(
        self,
        ttl_seconds: float = PLAYER_CACHE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: dict[str, tuple[dict[str, Any], float]] = {}

    def get(self, player_id: str) -> dict[str, Any] | None:
        entry = self._store.get(player_id)
        if not entry:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._store.pop(player_id, None)
            return None
        return value

    def set(self, player_id: str, value: dict[str, Any]) -> None:
        if self._ttl <= 0:
            return
        self._store[player_id] = (value, self._clock() + self._ttl)

    def invalidate(self, player_id: str) -> None:
        self._store.pop(player_id, None)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    async def resolve(self, session: AsyncSession, player_ids: Iterable[str]) -> list[dict[str, Any]]:
        """Return ``{id, name, avatar}`` snapshots in the order requested.

        Raises:
            PlayerNotFound: if any id cannot be found.
        """

        ids = list(player_ids)
        found: dict[str, dict[str, Any]] = {}
        missing: list[str] = []
        for pid in dict.fromkeys(ids):
            cached = self.get(pid)
            if cached is None:
                missing.append(pid)
            else:
                found[pid] = cached

        if missing:
            logger.debug("Fetching missing players: %s", ", ".join(missing))
        for start in range(0, len(missing), PLAYER_LOOKUP_CHUNK):
            chunk = missing[start : start + PLAYER_LOOKUP_CHUNK]
            rows = (
                await session.execute(select(Player).where(Player.id.in_(chunk)))
            ).scalars().all()
            for player in rows:
                snapshot = {"id": player.id, "name": player.name, "avatar": player.avatar}
                self.set(player.id, snapshot)
                found[player.id] = snapshot

        still_missing = [pid for pid in ids if pid not in found]
        if still_missing:
            raise PlayerNotFound(still_missing)
        return [found[pid] for pid in ids]
