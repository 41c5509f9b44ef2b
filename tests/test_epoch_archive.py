import asyncio
from datetime import datetime

import pytest
import pytz
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from scoreboard.database.models import ArchiveEntry, ArchiveSnapshot
from scoreboard.database.models import ImmutableArchiveError
from scoreboard.utils.leaderboard_exceptions import (
    ArchiveNotFoundError, ResetError, UnauthorizedError
)
from tests.conftest import FakeClock, build_services, seed_scores, submission


class TestEpoch:
    @pytest.mark.asyncio
    async def test_lazily_starts_at_baseline(self, services):
        assert await services.epoch.current_epoch() == 1
        assert await services.epoch.current_epoch() == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_reads_on_fresh_database(self, database, clock):
        services = [build_services(database, clock) for _ in range(8)]

        results = await asyncio.gather(
            *(s.epoch.current_epoch() for s in services),
            *(s.claims.get_claim("nobody") for s in services),
            *(s.archive.check_integrity() for s in services)
        )

        assert results[:8] == [1] * 8
        assert results[8:16] == [None] * 8
        assert all(report.consistent for report in results[16:])

    @pytest.mark.asyncio
    async def test_state_records_start_time(self, services):
        state = await services.epoch.get_state()
        assert state.epoch == 1
        assert state.started_at is not None

    @pytest.mark.asyncio
    async def test_advance_only_inside_transaction(self, services):
        async with services.database.transaction() as session:
            assert await services.epoch.advance_epoch(session) == 2
            assert await services.epoch.advance_epoch(session) == 3

        assert await services.epoch.current_epoch() == 3


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_archives_clears_and_advances(self, services):
        await seed_scores(services.database, services.clock, [(f"s{n}", n) for n in range(1, 151)])
        expected_top = await services.ranking.top_n(100)

        result = await services.archive.reset()

        assert result.archived_count == 100
        assert result.archived_epoch == 1
        assert result.new_epoch == 2
        assert result.period_label == "1"

        assert await services.ledger.count() == 0
        assert await services.ranking.top_n() == []
        assert await services.epoch.current_epoch() == 2

        snapshot = await services.archive.latest_snapshot()
        assert snapshot.summary.epoch == 1
        assert snapshot.top_players == expected_top

        summaries = await services.archive.list_snapshots()
        assert len(summaries) == 1

    @pytest.mark.asyncio
    async def test_reset_on_empty_board(self, services):
        result = await services.archive.reset()

        assert result.archived_count == 0
        assert result.new_epoch == 2
        snapshot = await services.archive.get_snapshot(1)
        assert snapshot.top_players == []

    @pytest.mark.asyncio
    async def test_each_reset_adds_one_snapshot(self, services):
        await services.ledger.submit(submission("p1", 10))
        await services.archive.reset()
        await services.ledger.submit(submission("p2", 20))
        result = await services.archive.reset()

        assert result.archived_epoch == 2
        assert result.new_epoch == 3
        assert [s.epoch for s in await services.archive.list_snapshots()] == [2, 1]

        first = await services.archive.get_snapshot(1)
        second = await services.archive.get_snapshot(2)
        assert [e.player_id for e in first.top_players] == ["p1"]
        assert [e.player_id for e in second.top_players] == ["p2"]

    @pytest.mark.asyncio
    async def test_scores_start_fresh_after_reset(self, services):
        await services.ledger.submit(submission("p1", 90))
        await services.archive.reset()

        result = await services.ledger.submit(submission("p1", 10))

        assert result.improved is True
        assert result.score == 10

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, services):
        assert await services.archive.latest_snapshot() is None
        with pytest.raises(ArchiveNotFoundError):
            await services.archive.get_snapshot(7)

    @pytest.mark.asyncio
    async def test_month_label_policy(self, database):
        clock = FakeClock(datetime(2026, 2, 1, 2, 0, tzinfo=pytz.utc))
        services = build_services(database, clock, label_policy="month", timezone_name="America/New_York")

        result = await services.archive.reset()

        # 02:00 UTC on Feb 1 is still January in New York
        assert result.period_label == "2026-01"
        assert result.new_epoch == 2
        snapshot = await services.archive.latest_snapshot()
        assert snapshot.summary.label_policy == "month"

    @pytest.mark.asyncio
    async def test_failed_reset_rolls_back(self, services, monkeypatch):
        await services.ledger.submit(submission("p1", 10))

        async def broken_advance(session):
            raise OperationalError("UPDATE epoch_state", {}, Exception("disk I/O error"))

        monkeypatch.setattr(services.epoch, "advance_epoch", broken_advance)

        with pytest.raises(ResetError) as exc_info:
            await services.archive.reset()

        assert exc_info.value.stage == "advance epoch"
        assert await services.ledger.count() == 1
        assert await services.archive.latest_snapshot() is None
        assert await services.epoch.current_epoch() == 1

    @pytest.mark.asyncio
    async def test_archive_rows_are_immutable(self, services):
        await services.ledger.submit(submission("p1", 10))
        await services.archive.reset()

        with pytest.raises(ImmutableArchiveError):
            async with services.database.transaction() as session:
                entry = await session.scalar(select(ArchiveEntry))
                entry.score = 99999

        snapshot = await services.archive.get_snapshot(1)
        assert snapshot.top_players[0].score == 10


class TestDeveloperReset:
    @pytest.mark.asyncio
    async def test_wipes_everything(self, services):
        await services.ledger.submit(submission("p1", 10))
        await services.archive.reset()
        await services.claims.claim("p1")
        await services.ledger.submit(submission("p2", 20))

        result = await services.archive.developer_reset()

        assert result.epoch == 1
        assert result.deleted_entries == 1
        assert result.deleted_snapshots == 1
        assert result.deleted_claims == 1
        assert await services.epoch.current_epoch() == 1
        assert await services.ledger.count() == 0
        assert await services.archive.list_snapshots() == []
        assert await services.claims.get_claim("p1") is None

        report = await services.archive.check_integrity()
        assert report.consistent is True

    @pytest.mark.asyncio
    async def test_refused_when_disabled(self, database, clock):
        services = build_services(database, clock, allow_developer_reset=False)
        await services.ledger.submit(submission("p1", 10))

        with pytest.raises(UnauthorizedError):
            await services.archive.developer_reset()

        assert await services.ledger.count() == 1


class TestIntegrity:
    @pytest.mark.asyncio
    async def test_consistent_before_and_after_resets(self, services):
        assert (await services.archive.check_integrity()).consistent is True

        await services.archive.reset()
        report = await services.archive.check_integrity()

        assert report.consistent is True
        assert report.current_epoch == 2
        assert report.latest_archived_epoch == 1

    @pytest.mark.asyncio
    async def test_detects_archive_without_epoch_advance(self, services, clock):
        await services.epoch.current_epoch()
        async with services.database.transaction() as session:
            session.add(ArchiveSnapshot(
                epoch_number=1,
                period_label="1",
                label_policy="epoch",
                player_count=0,
                created_at=clock()
            ))

        report = await services.archive.check_integrity()

        assert report.consistent is False
        assert report.latest_archived_epoch == 1
        assert "not advanced" in report.detail

    @pytest.mark.asyncio
    async def test_detects_epoch_advance_without_archive(self, services):
        async with services.database.transaction() as session:
            await services.epoch.advance_epoch(session)

        report = await services.archive.check_integrity()

        assert report.consistent is False
        assert report.latest_archived_epoch is None
