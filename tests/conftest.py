"""Shared fixtures: a fresh SQLite database per test and fully wired services."""

import os
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

os.environ.setdefault('LOG_DIR', os.path.join(tempfile.gettempdir(), 'scoreboard-test-logs'))

import pytest
import pytest_asyncio
import pytz

from scoreboard.database.database import Database
from scoreboard.database.models import ScoreEntry
from scoreboard.data_models.requests import SubmitScoreRequest
from scoreboard.services.archive import ArchiveService
from scoreboard.services.claims import ClaimService
from scoreboard.services.epoch import EpochService
from scoreboard.services.ranking import RankingService
from scoreboard.services.score_ledger import ScoreLedgerService
from scoreboard.utils.auth import SecretChecker

SUBMIT_SECRET = "submit-secret"
ADMIN_SECRET = "admin-secret"


class FakeClock:
    """Deterministic clock that moves forward one millisecond per reading."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=pytz.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now


def build_services(database, clock, claim_policy="archive", label_policy="epoch",
                   timezone_name="UTC", leaderboard_size=100, allow_developer_reset=True):
    session_factory = database.session_factory
    secrets = SecretChecker(SUBMIT_SECRET, ADMIN_SECRET)
    ranking = RankingService(session_factory, leaderboard_size=leaderboard_size, top_k=10, window_radius=5)
    ledger = ScoreLedgerService(session_factory, secrets, ranking_service=ranking, clock=clock)
    epoch = EpochService(session_factory, baseline=1, clock=clock)
    archive = ArchiveService(
        session_factory,
        epoch,
        archive_size=leaderboard_size,
        label_policy=label_policy,
        timezone_name=timezone_name,
        allow_developer_reset=allow_developer_reset,
        clock=clock
    )
    claims = ClaimService(session_factory, epoch, archive, policy=claim_policy, clock=clock)
    return SimpleNamespace(
        database=database,
        clock=clock,
        secrets=secrets,
        ranking=ranking,
        ledger=ledger,
        epoch=epoch,
        archive=archive,
        claims=claims,
    )


def submission(player_id: str, score: int, name: str = None, secret: str = SUBMIT_SECRET) -> SubmitScoreRequest:
    return SubmitScoreRequest(
        player_id=player_id,
        display_name=name or player_id.upper(),
        score=score,
        secret=secret
    )


async def seed_scores(database, clock, scores):
    """Insert ledger rows directly; `scores` is an iterable of (player_id, score)."""
    async with database.transaction() as session:
        for player_id, score in scores:
            now = clock()
            session.add(ScoreEntry(
                player_id=player_id,
                display_name=player_id.upper(),
                score=score,
                achieved_at=now,
                created_at=now
            ))


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'scoreboard.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(database, clock):
    return build_services(database, clock)
