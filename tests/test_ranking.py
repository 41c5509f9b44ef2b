import pytest

from scoreboard.utils.leaderboard_exceptions import InvalidInputError, PlayerNotFoundError
from tests.conftest import seed_scores, submission


async def seed_150(services):
    """150 players, player sN holding score N."""
    await seed_scores(services.database, services.clock, [(f"s{n}", n) for n in range(1, 151)])


class TestTopN:
    @pytest.mark.asyncio
    async def test_empty_board(self, services):
        assert await services.ranking.top_n() == []

    @pytest.mark.asyncio
    async def test_top_100_of_150(self, services):
        await seed_150(services)

        top = await services.ranking.top_n(100)

        assert len(top) == 100
        assert [entry.score for entry in top] == list(range(150, 50, -1))
        assert [entry.rank for entry in top] == list(range(1, 101))
        assert top[0].player_id == "s150"
        assert top[0].display_name == "S150"

    @pytest.mark.asyncio
    async def test_length_bounded_by_entries(self, services):
        await seed_scores(services.database, services.clock, [("a", 1), ("b", 2)])

        top = await services.ranking.top_n(100)
        assert [entry.player_id for entry in top] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_ties_go_to_earlier_achiever(self, services):
        await services.ledger.submit(submission("late", 10))
        await services.ledger.submit(submission("early", 50))
        await services.ledger.submit(submission("late", 50))

        top = await services.ranking.top_n()
        assert [entry.player_id for entry in top] == ["early", "late"]
        assert await services.ranking.rank_of("early") == 1
        assert await services.ranking.rank_of("late") == 2

    @pytest.mark.asyncio
    async def test_invalid_limit(self, services):
        with pytest.raises(InvalidInputError):
            await services.ranking.top_n(0)

    @pytest.mark.asyncio
    async def test_limit_above_leaderboard_size(self, services):
        await seed_150(services)

        with pytest.raises(InvalidInputError):
            await services.ranking.top_n(101)
        assert len(await services.ranking.top_n(100)) == 100


class TestAround:
    @pytest.mark.asyncio
    async def test_player_inside_top_has_no_window(self, services):
        await seed_150(services)

        view = await services.ranking.around("s100")

        assert view.rank == 51
        assert view.window is None
        assert [entry.score for entry in view.top] == list(range(150, 140, -1))

    @pytest.mark.asyncio
    async def test_player_at_rank_100_has_no_window(self, services):
        await seed_150(services)

        view = await services.ranking.around("s51")

        assert view.rank == 100
        assert view.window is None

    @pytest.mark.asyncio
    async def test_player_below_top_gets_window(self, services):
        await seed_150(services)

        view = await services.ranking.around("s40")

        assert view.rank == 111
        assert [entry.score for entry in view.window] == list(range(45, 34, -1))
        assert [entry.rank for entry in view.window] == list(range(106, 117))
        assert [entry.rank for entry in view.top] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_window_clamped_at_bottom(self, services):
        await seed_150(services)

        view = await services.ranking.around("s1")

        assert view.rank == 150
        assert [entry.rank for entry in view.window] == list(range(145, 151))

    @pytest.mark.asyncio
    async def test_window_at_rank_101(self, services):
        await seed_150(services)

        view = await services.ranking.around("s50")

        assert view.rank == 101
        assert [entry.rank for entry in view.window] == list(range(96, 107))

    @pytest.mark.asyncio
    async def test_unknown_player(self, services):
        await seed_150(services)

        with pytest.raises(PlayerNotFoundError):
            await services.ranking.around("nobody")

    @pytest.mark.asyncio
    async def test_small_board_top_is_whole_board(self, services):
        await seed_scores(services.database, services.clock, [("a", 5), ("b", 9), ("c", 7)])

        view = await services.ranking.around("a")

        assert view.rank == 3
        assert view.window is None
        assert [entry.player_id for entry in view.top] == ["b", "c", "a"]


class TestRankOf:
    @pytest.mark.asyncio
    async def test_rank_of_matches_full_order(self, services):
        await seed_150(services)

        assert await services.ranking.rank_of("s150") == 1
        assert await services.ranking.rank_of("s40") == 111
        assert await services.ranking.rank_of("missing") is None
