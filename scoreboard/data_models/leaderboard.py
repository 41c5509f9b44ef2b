"""
Leaderboard data models for the ranking and epoch-claim engine.

Provides immutable data transfer objects returned by the service layer.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class RankedEntry:
    """Single leaderboard row."""
    rank: int
    player_id: str
    display_name: str
    score: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AroundView:
    """Fixed top of the board plus, for players outside it, their neighbourhood."""
    top: List[RankedEntry]
    window: Optional[List[RankedEntry]]
    rank: int

    def to_dict(self) -> dict:
        return {
            'top': [entry.to_dict() for entry in self.top],
            'window': [entry.to_dict() for entry in self.window] if self.window is not None else None,
            'rank': self.rank,
        }


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    improved: bool
    score: int
    rank: Optional[int]


@dataclass(frozen=True)
class EpochView:
    epoch: int
    started_at: datetime


@dataclass(frozen=True)
class ArchiveSummary:
    epoch: int
    period_label: str
    label_policy: str
    player_count: int
    created_at: datetime


@dataclass(frozen=True)
class ArchiveView:
    """An archive snapshot with its ranked players."""
    summary: ArchiveSummary
    top_players: List[RankedEntry]


@dataclass(frozen=True)
class ResetResult:
    period_label: str
    archived_count: int
    archived_epoch: int
    new_epoch: int


@dataclass(frozen=True)
class DeveloperResetResult:
    epoch: int
    deleted_entries: int
    deleted_snapshots: int
    deleted_claims: int


@dataclass(frozen=True)
class IntegrityReport:
    consistent: bool
    current_epoch: int
    latest_archived_epoch: Optional[int]
    detail: str


@dataclass(frozen=True)
class ClaimResult:
    granted: bool
    epoch: int


@dataclass(frozen=True)
class ClaimView:
    player_id: str
    last_claimed_epoch: Optional[int]
    current_epoch: int

    @property
    def claimed_this_epoch(self) -> bool:
        return self.last_claimed_epoch is not None and self.last_claimed_epoch >= self.current_epoch
