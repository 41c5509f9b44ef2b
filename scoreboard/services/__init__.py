"""
Services package for the scoreboard engine.
"""

from .base import BaseService
from .score_ledger import ScoreLedgerService
from .ranking import RankingService
from .epoch import EpochService
from .archive import ArchiveService
from .claims import ClaimService

__all__ = [
    'BaseService',
    'ScoreLedgerService',
    'RankingService',
    'EpochService',
    'ArchiveService',
    'ClaimService',
]
