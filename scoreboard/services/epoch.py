"""
Epoch controller: the numbered reward period.

The epoch lives in a single database row rather than process memory, so every
worker sees the same value and tests can inject both the clock and the
baseline.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.config import Config
from scoreboard.services.base import BaseService
from scoreboard.data_models.leaderboard import EpochView
from scoreboard.database.models import EpochState

logger = logging.getLogger(__name__)

EPOCH_ROW_ID = 1


class EpochService(BaseService):
    """Service for reading and advancing the current epoch."""

    def __init__(self, session_factory, baseline: int = None, clock=None):
        super().__init__(session_factory, clock)
        self.baseline = Config.EPOCH_BASELINE if baseline is None else baseline
        self._initialized = False

    async def current_epoch(self) -> int:
        """Get the current epoch, creating it at the baseline on first use."""
        state = await self.get_state()
        return state.epoch

    async def get_state(self) -> EpochView:
        await self.ensure_initialized()
        async with self.get_session("epoch lookup") as session:
            state = await self.load_state(session)
            return EpochView(epoch=state.epoch_number, started_at=state.started_at)

    async def ensure_initialized(self):
        """
        Create the epoch row at the baseline if it does not exist yet.

        Runs in its own session whose first statement is the insert. On SQLite
        a session that has already read cannot upgrade to a write while another
        reader holds its lock, so read-only sessions call this before they open.
        """
        if self._initialized:
            return
        async with self.get_session("epoch initialization") as session:
            await self._insert_baseline(session)
        self._initialized = True

    async def _insert_baseline(self, session: AsyncSession):
        # Concurrent first callers race here; only one insert wins
        insert_stmt = self._dialect_insert(session, EpochState).values(
            id=EPOCH_ROW_ID,
            epoch_number=self.baseline,
            started_at=self.clock()
        ).on_conflict_do_nothing(index_elements=[EpochState.id])
        result = await session.execute(insert_stmt)
        if result.rowcount:
            logger.info(f"Initialized epoch counter at {self.baseline}")

    async def load_state(self, session: AsyncSession) -> EpochState:
        """
        Load the epoch row inside the caller's session.

        The row is inserted in place only when absent, which is safe in a
        session that already holds the write lock (reset, developer reset).
        """
        state = await session.get(EpochState, EPOCH_ROW_ID)
        if state is not None:
            return state

        await self._insert_baseline(session)
        return await session.get(EpochState, EPOCH_ROW_ID)

    async def advance_epoch(self, session: AsyncSession) -> int:
        """
        Increment the epoch inside the caller's reset transaction.

        The increment happens in SQL, so it cannot lose a concurrent update.
        Returns the new epoch number.
        """
        await self.load_state(session)
        await session.execute(
            update(EpochState)
            .where(EpochState.id == EPOCH_ROW_ID)
            .values(epoch_number=EpochState.epoch_number + 1, started_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        new_epoch = await session.scalar(
            select(EpochState.epoch_number).where(EpochState.id == EPOCH_ROW_ID)
        )
        logger.info(f"Advanced epoch to {new_epoch}")
        return new_epoch

    async def rewind(self, session: AsyncSession) -> int:
        """Set the epoch back to the baseline. Developer reset only."""
        await self.load_state(session)
        await session.execute(
            update(EpochState)
            .where(EpochState.id == EPOCH_ROW_ID)
            .values(epoch_number=self.baseline, started_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        logger.warning(f"Epoch rewound to baseline {self.baseline}")
        return self.baseline
