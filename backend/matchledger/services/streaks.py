"""Best-effort promotion of current streaks into the all-time maxima.

Runs after the aggregation transaction has committed. Updates are guarded
with ``highest < :value`` so maxima only ever move up; running the pass late,
twice, or not at all never corrupts state (a skipped pass is repaired by the
next one that touches the player, or by :meth:`StreakMaintainer.reconcile_all_maxima`).
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from ..models import PlayerStats

logger = logging.getLogger(__name__)


class StreakMaintainer:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def promote_maxima(self, player_ids: Iterable[str]) -> int:
        """Raise ``highest_*_streak`` to the current streak where it lags.

        Returns the number of players whose maxima changed. Errors are logged
        and swallowed; the maxima are a derived, self-healing field.
        """

        ids = sorted({pid for pid in player_ids if pid})
        if not ids:
            return 0
        try:
            return await self._promote(PlayerStats.player_id.in_(ids))
        except SQLAlchemyError:
            logger.exception("Failed to commit streak updates for players: %s", ", ".join(ids))
            return 0

    async def reconcile_all_maxima(self) -> int:
        """Sweep every lifetime row; used by maintenance jobs."""

        return await self._promote(None)

    async def _promote(self, condition) -> int:
        async with self._session_factory() as session:
            stmt = select(
                PlayerStats.player_id,
                PlayerStats.win_streak,
                PlayerStats.highest_win_streak,
                PlayerStats.lose_streak,
                PlayerStats.highest_lose_streak,
            )
            if condition is not None:
                stmt = stmt.where(condition)
            rows = (await session.execute(stmt)).all()

            changed: set[str] = set()
            for row in rows:
                if (row.win_streak or 0) > (row.highest_win_streak or 0):
                    await session.execute(
                        update(PlayerStats)
                        .where(
                            PlayerStats.player_id == row.player_id,
                            PlayerStats.highest_win_streak < row.win_streak,
                        )
                        .values(highest_win_streak=row.win_streak)
                        .execution_options(synchronize_session=False)
                    )
                    changed.add(row.player_id)
                if (row.lose_streak or 0) > (row.highest_lose_streak or 0):
                    await session.execute(
                        update(PlayerStats)
                        .where(
                            PlayerStats.player_id == row.player_id,
                            PlayerStats.highest_lose_streak < row.lose_streak,
                        )
                        .values(highest_lose_streak=row.lose_streak)
                        .execution_options(synchronize_session=False)
                    )
                    changed.add(row.player_id)

            if changed:
                await session.commit()
                logger.info("Streaks updated for players: %s", ", ".join(sorted(changed)))
            return len(changed)
