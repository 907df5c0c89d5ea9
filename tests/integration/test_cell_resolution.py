"""Integration tests for resolving a single cell."""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy import select

from chant.models import Cell, CellStatus, Idea, IdeaStatus
from chant.services.cell_resolution import process_cell_results
from tests.factories import cast_ballot, make_cell, seed_deliberation


async def _idea(db, idea_id):
    return await db.get(Idea, idea_id, populate_existing=True)


@pytest_asyncio.fixture
async def tier(db):
    """
    Ten members and eight ideas in two tier-one cells.

    The second cell stays open so resolving the first never completes the tier.
    """
    seed = await seed_deliberation(db, member_count=10, idea_count=8)
    first = await make_cell(db, seed.deliberation, seed.idea_ids[:3], seed.user_ids[:5])
    second = await make_cell(db, seed.deliberation, seed.idea_ids[3:8], seed.user_ids[5:])
    return seed, first, second


class TestProcessCellResults:

    @pytest.mark.asyncio
    async def test_top_idea_advances(self, db, tier):
        seed, cell, _ = tier
        a, b, c = seed.idea_ids[:3]
        await cast_ballot(db, cell.id, seed.user_ids[0], {a: 10})
        await cast_ballot(db, cell.id, seed.user_ids[1], {a: 6, b: 4})

        result = await process_cell_results(db, cell.id)

        assert result.winner_ids == [a]
        assert sorted(result.loser_ids) == sorted([b, c])
        winner = await _idea(db, a)
        assert winner.status == IdeaStatus.ADVANCING
        assert winner.total_points == 16
        loser = await _idea(db, b)
        assert loser.status == IdeaStatus.ELIMINATED
        assert loser.losses == 1
        assert loser.total_points == 4

        resolved = await db.get(Cell, cell.id, populate_existing=True)
        assert resolved.status == CellStatus.COMPLETED
        assert resolved.completed_at is not None
        assert not resolved.completed_by_timeout

    @pytest.mark.asyncio
    async def test_second_resolution_returns_none(self, db, tier):
        seed, cell, _ = tier
        await cast_ballot(db, cell.id, seed.user_ids[0], {seed.idea_ids[0]: 10})

        assert await process_cell_results(db, cell.id) is not None
        assert await process_cell_results(db, cell.id) is None
        assert await process_cell_results(db, cell.id, timed_out=True) is None

        idea = await _idea(db, seed.idea_ids[0])
        assert idea.total_points == 10

    @pytest.mark.asyncio
    async def test_tie_advances_every_tied_idea(self, db, tier):
        seed, cell, _ = tier
        a, b, c = seed.idea_ids[:3]
        await cast_ballot(db, cell.id, seed.user_ids[0], {a: 10})
        await cast_ballot(db, cell.id, seed.user_ids[1], {b: 10})

        result = await process_cell_results(db, cell.id)

        assert sorted(result.winner_ids) == sorted([a, b])
        assert result.loser_ids == [c]

    @pytest.mark.asyncio
    async def test_no_votes_everyone_advances(self, db, tier):
        seed, cell, _ = tier

        result = await process_cell_results(db, cell.id, timed_out=True)

        assert sorted(result.winner_ids) == sorted(seed.idea_ids[:3])
        assert result.loser_ids == []
        resolved = await db.get(Cell, cell.id, populate_existing=True)
        assert resolved.completed_by_timeout

    @pytest.mark.asyncio
    async def test_lone_lukewarm_voter_is_ignored(self, db, tier):
        seed, _, cell = tier
        ideas = seed.idea_ids[3:8]
        await cast_ballot(db, cell.id, seed.user_ids[5], {i: 2 for i in ideas})

        result = await process_cell_results(db, cell.id)

        assert sorted(result.winner_ids) == sorted(ideas)

    @pytest.mark.asyncio
    async def test_showdown_cell_defers_judgement(self, db):
        seed = await seed_deliberation(db, member_count=10, idea_count=3)
        showdown = await make_cell(
            db, seed.deliberation, seed.idea_ids, seed.user_ids[:5], tier=2, is_final_showdown=True
        )
        await make_cell(
            db, seed.deliberation, seed.idea_ids, seed.user_ids[5:], tier=2, is_final_showdown=True
        )
        await cast_ballot(db, showdown.id, seed.user_ids[0], {seed.idea_ids[1]: 10})

        result = await process_cell_results(db, showdown.id)

        assert result.winner_ids == []
        assert result.loser_ids == []
        idea = await _idea(db, seed.idea_ids[1])
        assert idea.status == IdeaStatus.IN_VOTING
        assert idea.total_points == 10


class TestSiblingCells:
    """Cells in one batch share their ideas."""

    @pytest.mark.asyncio
    async def test_win_in_any_sibling_advances(self, db):
        seed = await seed_deliberation(db, member_count=15, idea_count=3)
        a, b, _ = seed.idea_ids
        left = await make_cell(db, seed.deliberation, [a, b], seed.user_ids[:5])
        right = await make_cell(db, seed.deliberation, [a, b], seed.user_ids[5:10])
        await make_cell(db, seed.deliberation, [seed.idea_ids[2]], seed.user_ids[10:], batch=1)

        await cast_ballot(db, left.id, seed.user_ids[0], {b: 10})
        await cast_ballot(db, right.id, seed.user_ids[5], {a: 10})
        await process_cell_results(db, left.id)
        await process_cell_results(db, right.id)

        idea_a = await _idea(db, a)
        assert idea_a.status == IdeaStatus.ADVANCING
        assert idea_a.losses == 0
        assert (await _idea(db, b)).status == IdeaStatus.ADVANCING

    @pytest.mark.asyncio
    async def test_later_loss_does_not_undo_advancement(self, db):
        seed = await seed_deliberation(db, member_count=15, idea_count=3)
        a, b, _ = seed.idea_ids
        left = await make_cell(db, seed.deliberation, [a, b], seed.user_ids[:5])
        right = await make_cell(db, seed.deliberation, [a, b], seed.user_ids[5:10])
        await make_cell(db, seed.deliberation, [seed.idea_ids[2]], seed.user_ids[10:], batch=1)

        await cast_ballot(db, left.id, seed.user_ids[0], {a: 10})
        await cast_ballot(db, right.id, seed.user_ids[5], {b: 10})
        await process_cell_results(db, left.id)
        await process_cell_results(db, right.id)

        assert (await _idea(db, a)).status == IdeaStatus.ADVANCING
        assert (await _idea(db, b)).status == IdeaStatus.ADVANCING


class TestConcurrentResolution:

    @pytest.mark.asyncio
    async def test_exactly_one_caller_resolves(self, db, session_factory, tier):
        seed, cell, _ = tier
        await cast_ballot(db, cell.id, seed.user_ids[0], {seed.idea_ids[0]: 10})

        async def resolve():
            async with session_factory() as session:
                return await process_cell_results(session, cell.id, timed_out=True)

        results = await asyncio.gather(*(resolve() for _ in range(8)))

        assert sum(r is not None for r in results) == 1
        idea = await _idea(db, seed.idea_ids[0])
        assert idea.total_points == 10
        assert idea.status == IdeaStatus.ADVANCING

        losers = await db.execute(
            select(Idea.losses).where(Idea.id.in_(seed.idea_ids[1:3]))
        )
        assert list(losers.scalars().all()) == [1, 1]
