"""
Ranking view over the score ledger.

The order is derived fresh from the ledger on every read: score descending,
then the earlier achiever, then player id. Reads never lock the ledger.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.config import Config
from scoreboard.services.base import BaseService
from scoreboard.data_models.leaderboard import RankedEntry, AroundView
from scoreboard.database.models import ScoreEntry
from scoreboard.utils.leaderboard_exceptions import InvalidInputError, PlayerNotFoundError

logger = logging.getLogger(__name__)

RANKING_ORDER = (
    ScoreEntry.score.desc(),
    ScoreEntry.achieved_at.asc(),
    ScoreEntry.player_id.asc(),
)


def _ranked(rows, start: int = 0) -> List[RankedEntry]:
    """Annotate ordered rows with 1-based ranks, starting from index `start`."""
    return [
        RankedEntry(
            rank=start + offset + 1,
            player_id=row.player_id,
            display_name=row.display_name,
            score=row.score
        )
        for offset, row in enumerate(rows)
    ]


class RankingService(BaseService):
    """Service for top-N and around-me leaderboard queries."""

    def __init__(self, session_factory, leaderboard_size: int = None, top_k: int = None, window_radius: int = None):
        super().__init__(session_factory)
        self.leaderboard_size = leaderboard_size or Config.LEADERBOARD_SIZE
        self.top_k = top_k if top_k is not None else Config.AROUND_TOP_K
        self.window_radius = window_radius if window_radius is not None else Config.AROUND_WINDOW_RADIUS

    def _ordered_query(self):
        return select(
            ScoreEntry.player_id,
            ScoreEntry.display_name,
            ScoreEntry.score
        ).order_by(*RANKING_ORDER)

    async def _full_order(self, session: AsyncSession):
        result = await session.execute(self._ordered_query())
        return result.all()

    async def top_n(self, n: int = None) -> List[RankedEntry]:
        """Get the first n players of the leaderboard with their ranks."""
        if n is None:
            n = self.leaderboard_size
        if not isinstance(n, int) or isinstance(n, bool) or n < 1 or n > self.leaderboard_size:
            raise InvalidInputError("limit", f"must be an integer between 1 and {self.leaderboard_size}")

        async with self.get_session("leaderboard query") as session:
            result = await session.execute(self._ordered_query().limit(n))
            return _ranked(result.all())

    async def around(self, player_id: str, top_k: int = None, window_radius: int = None) -> AroundView:
        """
        Get the fixed top of the board plus the player's neighbourhood.

        Players inside the leaderboard get the top entries and no window.
        Players below it also get the entries within `window_radius`
        positions of their own, each with its true global rank.
        """
        top_k = self.top_k if top_k is None else top_k
        window_radius = self.window_radius if window_radius is None else window_radius

        async with self.get_session("around query") as session:
            rows = await self._full_order(session)

        index = next((i for i, row in enumerate(rows) if row.player_id == player_id), None)
        if index is None:
            raise PlayerNotFoundError(player_id)

        top = _ranked(rows[:min(top_k, self.leaderboard_size)])

        if index < self.leaderboard_size:
            return AroundView(top=top, window=None, rank=index + 1)

        start = max(0, index - window_radius)
        end = min(len(rows), index + window_radius + 1)
        return AroundView(top=top, window=_ranked(rows[start:end], start=start), rank=index + 1)

    async def rank_of(self, player_id: str) -> Optional[int]:
        """Get a single player's rank without scanning the whole board."""
        async with self.get_session("rank query") as session:
            entry = await session.scalar(
                select(ScoreEntry).where(ScoreEntry.player_id == player_id)
            )
            if entry is None:
                return None

            ahead = await session.scalar(
                select(func.count(ScoreEntry.id)).where(
                    or_(
                        ScoreEntry.score > entry.score,
                        and_(
                            ScoreEntry.score == entry.score,
                            ScoreEntry.achieved_at < entry.achieved_at
                        ),
                        and_(
                            ScoreEntry.score == entry.score,
                            ScoreEntry.achieved_at == entry.achieved_at,
                            ScoreEntry.player_id < entry.player_id
                        )
                    )
                )
            )
            return ahead + 1
