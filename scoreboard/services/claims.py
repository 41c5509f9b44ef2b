"""
Claim ledger: at most one reward per player per epoch.

Each player moves from never-claimed to claimed-up-to-epoch-k, and only
forward. The forward move is one conditional upsert, so two concurrent claims
in the same epoch cannot both succeed.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.config import Config
from scoreboard.services.base import BaseService
from scoreboard.services.epoch import EPOCH_ROW_ID
from scoreboard.data_models.leaderboard import ClaimResult, ClaimView
from scoreboard.data_models.requests import validate_player_id
from scoreboard.database.models import ClaimRecord, ScoreEntry, ArchiveEntry, EpochState
from scoreboard.utils.leaderboard_exceptions import (
    AlreadyClaimedError, EpochChangedError, NotEligibleError, PlayerNotFoundError
)

logger = logging.getLogger(__name__)


class ClaimService(BaseService):
    """Service for once-per-epoch reward claims."""

    def __init__(self, session_factory, epoch_service, archive_service, policy: str = None, clock=None):
        super().__init__(session_factory, clock)
        self.epoch_service = epoch_service
        self.archive_service = archive_service
        self.policy = policy or Config.CLAIM_POLICY
        if self.policy not in Config.CLAIM_POLICIES:
            raise ValueError(f"Unknown claim policy: {self.policy}")

    async def _is_known(self, session: AsyncSession, player_id: str) -> bool:
        """Whether the player is on the live ledger or in any snapshot."""
        on_ledger = await session.scalar(
            select(ScoreEntry.id).where(ScoreEntry.player_id == player_id)
        )
        if on_ledger is not None:
            return True
        archived = await session.scalar(
            select(ArchiveEntry.id).where(ArchiveEntry.player_id == player_id).limit(1)
        )
        return archived is not None

    async def _check_eligibility(self, session: AsyncSession, player_id: str, epoch: int):
        if not await self._is_known(session, player_id):
            logger.warning(f"Claim rejected: player {player_id} is unknown")
            raise PlayerNotFoundError(player_id)

        if self.policy == 'archive' and not await self.archive_service.is_archived(player_id, session=session):
            logger.warning(f"Claim rejected: player {player_id} not in the latest archive (epoch {epoch})")
            raise NotEligibleError(player_id, epoch)

    async def _eligible_epoch(self, player_id: str) -> int:
        """Read the current epoch and check the player may claim in it."""
        await self.epoch_service.ensure_initialized()
        async with self.get_session("claim eligibility") as session:
            epoch = (await self.epoch_service.load_state(session)).epoch_number
            await self._check_eligibility(session, player_id, epoch)
        return epoch

    async def _record_claim(self, player_id: str, epoch: int):
        """
        Move the player's claim forward to `epoch`.

        The upsert is the session's first statement. The epoch row is then
        re-read under the same write lock; if a reset has moved the epoch since
        eligibility was checked, the claim is rolled back.
        """
        async with self.get_session("reward claim") as session:
            insert_stmt = self._dialect_insert(session, ClaimRecord).values(
                player_id=player_id,
                last_claimed_epoch=epoch,
                claimed_at=self.clock()
            )
            upsert_stmt = insert_stmt.on_conflict_do_update(
                index_elements=[ClaimRecord.player_id],
                set_={
                    'last_claimed_epoch': insert_stmt.excluded.last_claimed_epoch,
                    'claimed_at': insert_stmt.excluded.claimed_at,
                },
                where=ClaimRecord.last_claimed_epoch < insert_stmt.excluded.last_claimed_epoch
            )
            result = await session.execute(upsert_stmt)

            current_epoch = await session.scalar(
                select(EpochState.epoch_number)
                .where(EpochState.id == EPOCH_ROW_ID)
                .with_for_update()
            )
            if current_epoch != epoch:
                logger.warning(
                    f"Claim rejected: epoch moved from {epoch} to {current_epoch} during claim by {player_id}"
                )
                raise EpochChangedError(player_id, epoch, current_epoch)

            if result.rowcount == 0:
                logger.warning(f"Claim rejected: player {player_id} already claimed epoch {epoch}")
                raise AlreadyClaimedError(player_id, epoch)

    async def claim(self, player_id: str) -> ClaimResult:
        """
        Claim the current epoch's reward for a player.

        Raises PlayerNotFoundError for a player seen nowhere, NotEligibleError
        when the archive policy excludes them, AlreadyClaimedError if this
        epoch was already claimed and EpochChangedError if a reset landed
        mid-claim.
        """
        player_id = validate_player_id(player_id)

        epoch = await self._eligible_epoch(player_id)
        await self._record_claim(player_id, epoch)

        logger.info(f"Granted epoch {epoch} reward to player {player_id}")
        return ClaimResult(granted=True, epoch=epoch)

    async def get_claim(self, player_id: str) -> Optional[ClaimView]:
        """Get a player's claim status, or None if they are unknown and never claimed."""
        player_id = validate_player_id(player_id)

        await self.epoch_service.ensure_initialized()
        async with self.get_session("claim lookup") as session:
            epoch = (await self.epoch_service.load_state(session)).epoch_number
            last_claimed = await session.scalar(
                select(ClaimRecord.last_claimed_epoch).where(ClaimRecord.player_id == player_id)
            )
            if last_claimed is None and not await self._is_known(session, player_id):
                return None

        return ClaimView(player_id=player_id, last_claimed_epoch=last_claimed, current_epoch=epoch)
