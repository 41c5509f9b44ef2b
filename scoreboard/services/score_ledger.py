"""
Score Ledger service: the live best score per player.

Submissions are admitted with a single conditional upsert, so two concurrent
submissions for the same player can never overwrite a higher score with a
lower one.
"""

import logging
from typing import Optional

from sqlalchemy import select, func

from scoreboard.services.base import BaseService
from scoreboard.data_models.leaderboard import SubmitResult
from scoreboard.data_models.requests import SubmitScoreRequest
from scoreboard.database.models import ScoreEntry
from scoreboard.utils.auth import SecretChecker

logger = logging.getLogger(__name__)


class ScoreLedgerService(BaseService):
    """Service for admitting score submissions into the ledger."""

    def __init__(self, session_factory, secret_checker: SecretChecker, ranking_service=None, clock=None):
        super().__init__(session_factory, clock)
        self.secret_checker = secret_checker
        self.ranking_service = ranking_service  # Optional, used to report rank after submit

    async def submit(self, request: SubmitScoreRequest) -> SubmitResult:
        """
        Submit a score for a player.

        The stored score is replaced only by a strictly greater one; a lower or
        equal submission is accepted but changes nothing.
        """
        self.secret_checker.check_submit(request.secret, request.player_id)

        now = self.clock()
        async with self.get_session("score submission") as session:
            insert_stmt = self._dialect_insert(session, ScoreEntry).values(
                player_id=request.player_id,
                display_name=request.display_name,
                score=request.score,
                achieved_at=now,
                created_at=now
            )
            upsert_stmt = insert_stmt.on_conflict_do_update(
                index_elements=[ScoreEntry.player_id],
                set_={
                    'score': insert_stmt.excluded.score,
                    'display_name': insert_stmt.excluded.display_name,
                    'achieved_at': insert_stmt.excluded.achieved_at,
                },
                where=insert_stmt.excluded.score > ScoreEntry.score
            )
            result = await session.execute(upsert_stmt)
            improved = result.rowcount > 0

            stored_score = await session.scalar(
                select(ScoreEntry.score).where(ScoreEntry.player_id == request.player_id)
            )

        if improved:
            logger.info(f"Stored score {request.score} for player {request.player_id}")
        else:
            logger.debug(
                f"Kept score {stored_score} for player {request.player_id}, submitted {request.score}"
            )

        rank = None
        if self.ranking_service is not None:
            rank = await self.ranking_service.rank_of(request.player_id)

        return SubmitResult(accepted=True, improved=improved, score=stored_score, rank=rank)

    async def get_entry(self, player_id: str) -> Optional[ScoreEntry]:
        """Get the ledger entry for a player, if any."""
        async with self.get_session("ledger lookup") as session:
            return await session.scalar(
                select(ScoreEntry).where(ScoreEntry.player_id == player_id)
            )

    async def count(self) -> int:
        """Number of players on the live ledger."""
        async with self.get_session("ledger count") as session:
            return await session.scalar(select(func.count(ScoreEntry.id)))
