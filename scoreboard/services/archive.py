"""
Archive store and the epoch reset transaction.

A reset closes the current epoch: it writes an immutable snapshot of the top
of the leaderboard, clears the live ledger and advances the epoch, all in one
transaction. The snapshot is the durable record of who was eligible for that
epoch's reward, so claims keep working after the live board has moved on.

Steps run in the order archive, clear, advance. If the storage could not
commit them together, the worst leftover is an archive for an epoch that is
still current, which check_integrity() reports.
"""

import asyncio
import logging
from typing import List, Optional

import pytz
from sqlalchemy import select, delete, update, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from scoreboard.config import Config
from scoreboard.services.base import BaseService
from scoreboard.services.epoch import EPOCH_ROW_ID
from scoreboard.services.ranking import RANKING_ORDER
from scoreboard.data_models.leaderboard import (
    ArchiveSummary, ArchiveView, RankedEntry, ResetResult, DeveloperResetResult, IntegrityReport
)
from scoreboard.database.models import ScoreEntry, EpochState, ArchiveSnapshot, ArchiveEntry, ClaimRecord
from scoreboard.utils.leaderboard_exceptions import ArchiveNotFoundError, ResetError, UnauthorizedError

logger = logging.getLogger(__name__)


def _summary(snapshot: ArchiveSnapshot) -> ArchiveSummary:
    return ArchiveSummary(
        epoch=snapshot.epoch_number,
        period_label=snapshot.period_label,
        label_policy=snapshot.label_policy,
        player_count=snapshot.player_count,
        created_at=snapshot.created_at
    )


def _view(snapshot: ArchiveSnapshot) -> ArchiveView:
    return ArchiveView(
        summary=_summary(snapshot),
        top_players=[
            RankedEntry(
                rank=entry.rank,
                player_id=entry.player_id,
                display_name=entry.display_name,
                score=entry.score
            )
            for entry in snapshot.entries
        ]
    )


class ArchiveService(BaseService):
    """Service for epoch resets and archive snapshot queries."""

    def __init__(self, session_factory, epoch_service, archive_size: int = None,
                 label_policy: str = None, timezone_name: str = None,
                 allow_developer_reset: bool = None, clock=None):
        super().__init__(session_factory, clock)
        self.epoch_service = epoch_service
        self.archive_size = archive_size or Config.LEADERBOARD_SIZE
        self.label_policy = label_policy or Config.ARCHIVE_LABEL_POLICY
        self.timezone = pytz.timezone(timezone_name or Config.TIMEZONE)
        self.allow_developer_reset = (
            Config.ALLOW_DEVELOPER_RESET if allow_developer_reset is None else allow_developer_reset
        )
        if self.label_policy not in Config.ARCHIVE_LABEL_POLICIES:
            raise ValueError(f"Unknown archive label policy: {self.label_policy}")
        self._reset_lock = asyncio.Lock()

    def _period_label(self, closing_epoch: int, now) -> str:
        if self.label_policy == 'month':
            return now.astimezone(self.timezone).strftime('%Y-%m')
        return str(closing_epoch)

    async def _lock_ledger(self, session: AsyncSession):
        """Take the write lock before reading the board so no submission lands between archive and clear."""
        dialect = session.bind.dialect.name

        if dialect == 'postgresql':
            await session.execute(
                text(f"LOCK TABLE {ScoreEntry.__tablename__} IN SHARE ROW EXCLUSIVE MODE")
            )
        else:
            # SQLite locks the whole database on the first write of a transaction
            await session.execute(
                update(EpochState)
                .where(EpochState.id == EPOCH_ROW_ID)
                .values(epoch_number=EpochState.epoch_number)
                .execution_options(synchronize_session=False)
            )

    async def reset(self) -> ResetResult:
        """
        Close the current epoch.

        1. Snapshot the top of the leaderboard under the closing epoch
        2. Delete every ledger entry
        3. Advance the epoch

        Raises ResetError naming the stage if storage fails; the transaction
        is rolled back and nothing is retried.
        """
        async with self._reset_lock:
            stage = "lock"
            session = self.session_factory()
            try:
                await self._lock_ledger(session)
                closing_epoch = (await self.epoch_service.load_state(session)).epoch_number

                stage = "archive"
                now = self.clock()
                result = await session.execute(
                    select(
                        ScoreEntry.player_id,
                        ScoreEntry.display_name,
                        ScoreEntry.score
                    ).order_by(*RANKING_ORDER).limit(self.archive_size)
                )
                top_rows = result.all()

                period_label = self._period_label(closing_epoch, now)
                snapshot = ArchiveSnapshot(
                    epoch_number=closing_epoch,
                    period_label=period_label,
                    label_policy=self.label_policy,
                    player_count=len(top_rows),
                    created_at=now,
                    entries=[
                        ArchiveEntry(
                            rank=position + 1,
                            player_id=row.player_id,
                            display_name=row.display_name,
                            score=row.score
                        )
                        for position, row in enumerate(top_rows)
                    ]
                )
                session.add(snapshot)
                await session.flush()

                stage = "clear ledger"
                cleared = await session.execute(
                    delete(ScoreEntry).execution_options(synchronize_session=False)
                )

                stage = "advance epoch"
                new_epoch = await self.epoch_service.advance_epoch(session)

                stage = "commit"
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Reset failed during {stage}: {e}", exc_info=True)
                raise ResetError(stage, str(e)) from e
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

        logger.info(
            f"Reset complete: archived {len(top_rows)} players for epoch {closing_epoch} "
            f"as '{period_label}', cleared {cleared.rowcount} entries, now epoch {new_epoch}"
        )
        return ResetResult(
            period_label=period_label,
            archived_count=len(top_rows),
            archived_epoch=closing_epoch,
            new_epoch=new_epoch
        )

    async def developer_reset(self) -> DeveloperResetResult:
        """
        Wipe the ledger, every snapshot and every claim, and rewind the epoch.

        Irreversible. Refused unless developer resets are enabled.
        """
        if not self.allow_developer_reset:
            logger.warning("Developer reset refused: ALLOW_DEVELOPER_RESET is off")
            raise UnauthorizedError("developer reset")

        async with self._reset_lock:
            async with self.get_session("developer reset") as session:
                await self._lock_ledger(session)
                entries = await session.execute(delete(ScoreEntry).execution_options(synchronize_session=False))
                await session.execute(delete(ArchiveEntry).execution_options(synchronize_session=False))
                snapshots = await session.execute(delete(ArchiveSnapshot).execution_options(synchronize_session=False))
                claims = await session.execute(delete(ClaimRecord).execution_options(synchronize_session=False))
                epoch = await self.epoch_service.rewind(session)

        logger.warning(
            f"Developer reset: deleted {entries.rowcount} entries, {snapshots.rowcount} snapshots, "
            f"{claims.rowcount} claims; epoch back to {epoch}"
        )
        return DeveloperResetResult(
            epoch=epoch,
            deleted_entries=entries.rowcount,
            deleted_snapshots=snapshots.rowcount,
            deleted_claims=claims.rowcount
        )

    async def latest_snapshot(self) -> Optional[ArchiveView]:
        """Get the most recent snapshot, or None before the first reset."""
        async with self.get_session("archive lookup") as session:
            snapshot = await session.scalar(
                select(ArchiveSnapshot)
                .options(selectinload(ArchiveSnapshot.entries))
                .order_by(ArchiveSnapshot.epoch_number.desc())
                .limit(1)
            )
            return _view(snapshot) if snapshot else None

    async def get_snapshot(self, epoch: int) -> ArchiveView:
        async with self.get_session("archive lookup") as session:
            snapshot = await session.scalar(
                select(ArchiveSnapshot)
                .options(selectinload(ArchiveSnapshot.entries))
                .where(ArchiveSnapshot.epoch_number == epoch)
            )
            if snapshot is None:
                raise ArchiveNotFoundError(epoch)
            return _view(snapshot)

    async def list_snapshots(self) -> List[ArchiveSummary]:
        async with self.get_session("archive listing") as session:
            result = await session.execute(
                select(ArchiveSnapshot).order_by(ArchiveSnapshot.epoch_number.desc())
            )
            return [_summary(snapshot) for snapshot in result.scalars()]

    async def latest_archived_epoch(self, session: AsyncSession) -> Optional[int]:
        return await session.scalar(select(func.max(ArchiveSnapshot.epoch_number)))

    async def is_archived(self, player_id: str, epoch: int = None, session: AsyncSession = None) -> bool:
        """Whether the player is in the snapshot for `epoch` (latest snapshot by default)."""
        if session is None:
            async with self.get_session("archive membership") as own_session:
                return await self.is_archived(player_id, epoch, own_session)

        if epoch is None:
            epoch = await self.latest_archived_epoch(session)
            if epoch is None:
                return False

        entry_id = await session.scalar(
            select(ArchiveEntry.id)
            .join(ArchiveSnapshot)
            .where(
                ArchiveSnapshot.epoch_number == epoch,
                ArchiveEntry.player_id == player_id
            )
        )
        return entry_id is not None

    async def check_integrity(self) -> IntegrityReport:
        """
        Detect a reset that did not complete.

        After every completed reset the latest snapshot belongs to the epoch
        just before the current one. Before the first reset there is none.
        """
        await self.epoch_service.ensure_initialized()
        async with self.get_session("integrity check") as session:
            current_epoch = (await self.epoch_service.load_state(session)).epoch_number
            latest = await self.latest_archived_epoch(session)

        if latest is None:
            consistent = current_epoch == self.epoch_service.baseline
            detail = "no snapshots yet" if consistent else (
                f"epoch is {current_epoch} but no snapshot exists"
            )
        elif latest == current_epoch - 1:
            consistent = True
            detail = f"latest snapshot closes epoch {latest}"
        elif latest >= current_epoch:
            consistent = False
            detail = (
                f"snapshot for epoch {latest} exists but the epoch was not advanced past it; "
                "ledger may not have been cleared"
            )
        else:
            consistent = False
            detail = f"epoch advanced to {current_epoch} but the latest snapshot is for epoch {latest}"

        if not consistent:
            logger.error(f"Archive integrity check failed: {detail}")

        return IntegrityReport(
            consistent=consistent,
            current_epoch=current_epoch,
            latest_archived_epoch=latest,
            detail=detail
        )
