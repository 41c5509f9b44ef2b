from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, event
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class ScoreEntry(Base):
    """
    Live best score per player for the current epoch.

    A row is created on a player's first submission and only ever replaced by a
    strictly higher score. All rows are deleted when the epoch is reset.
    """
    __tablename__ = 'score_entries'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    score = Column(Integer, nullable=False)

    # When the stored score was reached; earlier wins ties
    achieved_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())

    __table_args__ = (
        CheckConstraint('score >= 0', name='ck_score_entries_score_non_negative'),
        Index('ix_score_entries_ranking', 'score', 'achieved_at'),
    )

    def __repr__(self):
        return f"<ScoreEntry(player_id='{self.player_id}', score={self.score})>"

class EpochState(Base):
    """
    Singleton row holding the current reward epoch.

    Only the reset transaction advances it; only the developer reset rewinds it.
    """
    __tablename__ = 'epoch_state'

    id = Column(Integer, primary_key=True)  # always 1
    epoch_number = Column(Integer, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<EpochState(epoch_number={self.epoch_number}, started_at={self.started_at})>"

class ArchiveSnapshot(Base):
    """
    Immutable record of the top players at the moment an epoch ended.

    Keyed by the epoch that was closed. The period label is either the epoch
    number or the calendar month, depending on the configured label policy.
    """
    __tablename__ = 'archive_snapshots'

    id = Column(Integer, primary_key=True)
    epoch_number = Column(Integer, nullable=False, unique=True)
    period_label = Column(String(20), nullable=False, index=True)
    label_policy = Column(String(10), nullable=False)
    player_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)

    entries = relationship(
        "ArchiveEntry",
        back_populates="snapshot",
        order_by="ArchiveEntry.rank",
        cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<ArchiveSnapshot(epoch_number={self.epoch_number}, period_label='{self.period_label}', players={self.player_count})>"

class ArchiveEntry(Base):
    """One ranked player inside an archive snapshot."""
    __tablename__ = 'archive_entries'

    id = Column(Integer, primary_key=True)
    snapshot_id = Column(Integer, ForeignKey('archive_snapshots.id', ondelete='CASCADE'), nullable=False)
    rank = Column(Integer, nullable=False)
    player_id = Column(String(100), nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    score = Column(Integer, nullable=False)

    snapshot = relationship("ArchiveSnapshot", back_populates="entries")

    __table_args__ = (
        UniqueConstraint('snapshot_id', 'player_id', name='uq_archive_entry_player'),
        UniqueConstraint('snapshot_id', 'rank', name='uq_archive_entry_rank'),
    )

    def __repr__(self):
        return f"<ArchiveEntry(rank={self.rank}, player_id='{self.player_id}', score={self.score})>"

class ClaimRecord(Base):
    """
    Highest epoch for which a player has been granted a reward.

    last_claimed_epoch only moves forward; a claim for epoch E succeeds only
    while last_claimed_epoch < E.
    """
    __tablename__ = 'claim_records'

    id = Column(Integer, primary_key=True)
    player_id = Column(String(100), nullable=False, unique=True)
    last_claimed_epoch = Column(Integer, nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<ClaimRecord(player_id='{self.player_id}', last_claimed_epoch={self.last_claimed_epoch})>"

# ============================================================================
# SQLAlchemy Event Listeners for Archive Immutability
# ============================================================================

class ImmutableArchiveError(Exception):
    """Raised when code tries to modify a written archive row."""

@event.listens_for(ArchiveSnapshot, "before_update")
@event.listens_for(ArchiveEntry, "before_update")
def _reject_archive_update(mapper, connection, target):
    """Archive rows are write-once"""
    raise ImmutableArchiveError(f"{target!r} is immutable once archived")
