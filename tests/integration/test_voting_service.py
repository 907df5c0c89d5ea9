"""Integration tests for casting weighted ballots."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from chant.config import get_settings
from chant.exceptions import NotACellParticipantError, VoteValidationError, VotingClosedError
from chant.models import Cell, CellStatus, Vote
from chant.schemas import PointAllocation
from chant.services.voting_service import cast_vote
from chant.utils import utcnow
from tests.factories import make_cell, make_user, seed_deliberation


async def _cell(db, cell_id):
    return await db.get(Cell, cell_id, populate_existing=True)


async def _setup(db, voters=3):
    seed = await seed_deliberation(db, member_count=voters + 5, idea_count=4)
    cell = await make_cell(db, seed.deliberation, seed.idea_ids[:2], seed.user_ids[:voters])
    # keep the tier open so resolving this cell never advances it
    await make_cell(db, seed.deliberation, seed.idea_ids[2:], seed.user_ids[voters:], batch=1)
    return seed, cell


class TestCastVote:

    @pytest.mark.asyncio
    async def test_vote_recorded(self, db):
        seed, cell = await _setup(db)
        a, b = seed.idea_ids[:2]

        receipt = await cast_vote(
            db, cell.id, seed.user_ids[0],
            [PointAllocation(idea_id=a, points=7), PointAllocation(idea_id=b, points=3)],
        )

        assert receipt.points_allocated == 10
        assert not receipt.all_voted
        assert not receipt.cell_completed

    @pytest.mark.asyncio
    async def test_recast_replaces_ballot(self, db):
        seed, cell = await _setup(db)
        a, b = seed.idea_ids[:2]
        voter = seed.user_ids[0]

        await cast_vote(db, cell.id, voter, [PointAllocation(idea_id=a, points=10)])
        await cast_vote(db, cell.id, voter, [PointAllocation(idea_id=b, points=10)])

        rows = (
            await db.execute(select(Vote.idea_id, Vote.points).where(Vote.user_id == voter))
        ).all()
        assert rows == [(b, 10)]

    @pytest.mark.asyncio
    async def test_outsider_cannot_vote(self, db):
        seed, cell = await _setup(db)
        outsider = await make_user(db)

        with pytest.raises(NotACellParticipantError):
            await cast_vote(
                db, cell.id, outsider.id, [PointAllocation(idea_id=seed.idea_ids[0], points=10)]
            )

    @pytest.mark.asyncio
    async def test_budget_enforced(self, db):
        seed, cell = await _setup(db)

        with pytest.raises(VoteValidationError):
            await cast_vote(
                db, cell.id, seed.user_ids[0], [PointAllocation(idea_id=seed.idea_ids[0], points=4)]
            )

    @pytest.mark.asyncio
    async def test_last_vote_resolves_cell(self, db):
        seed, cell = await _setup(db, voters=2)
        a = seed.idea_ids[0]

        await cast_vote(db, cell.id, seed.user_ids[0], [PointAllocation(idea_id=a, points=10)])
        receipt = await cast_vote(
            db, cell.id, seed.user_ids[1], [PointAllocation(idea_id=a, points=10)]
        )

        assert receipt.all_voted
        assert receipt.cell_completed
        assert (await _cell(db, cell.id)).status == CellStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_grace_period_schedules_finalization(self, db, monkeypatch):
        monkeypatch.setenv("CHANT_GRACE_PERIOD_SECONDS", "30")
        get_settings.cache_clear()
        seed, cell = await _setup(db, voters=1)

        receipt = await cast_vote(
            db, cell.id, seed.user_ids[0], [PointAllocation(idea_id=seed.idea_ids[0], points=10)]
        )

        assert receipt.all_voted
        assert not receipt.cell_completed
        assert receipt.finalizes_at is not None
        refreshed = await _cell(db, cell.id)
        assert refreshed.status == CellStatus.VOTING
        assert refreshed.finalizes_at is not None

    @pytest.mark.asyncio
    async def test_expired_deadline_closes_cell(self, db):
        seed, cell = await _setup(db)
        await db.execute(
            update(Cell)
            .where(Cell.id == cell.id)
            .values(voting_deadline=utcnow() - timedelta(minutes=1))
        )
        await db.commit()

        with pytest.raises(VotingClosedError):
            await cast_vote(
                db, cell.id, seed.user_ids[0], [PointAllocation(idea_id=seed.idea_ids[0], points=10)]
            )

        closed = await _cell(db, cell.id)
        assert closed.status == CellStatus.COMPLETED
        assert closed.completed_by_timeout

    @pytest.mark.asyncio
    async def test_completed_cell_rejects_votes(self, db):
        seed = await seed_deliberation(db, member_count=5, idea_count=2)
        cell = await make_cell(
            db, seed.deliberation, seed.idea_ids, seed.user_ids, status=CellStatus.COMPLETED
        )

        with pytest.raises(VotingClosedError):
            await cast_vote(
                db, cell.id, seed.user_ids[0], [PointAllocation(idea_id=seed.idea_ids[0], points=10)]
            )
