"""Integration tests for rolling mode: challengers, challenge rounds, defence."""

import random
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from chant.exceptions import ChantServiceError, InvalidPhaseError
from chant.models import (
    Cell,
    CellIdea,
    Deliberation,
    DeliberationMember,
    DeliberationPhase,
    Idea,
    IdeaStatus,
)
from chant.services.accumulation_service import start_challenge_round
from chant.services.cell_resolution import process_cell_results
from chant.services.deliberation_service import submit_idea
from chant.services.lookups import active_participant_ids, cell_idea_ids
from chant.utils import utcnow
from tests.factories import cast_ballot, make_user, seed_deliberation


async def _reigning(db, members=10, challengers=3):
    """An ACCUMULATING deliberation: idea 0 is champion, the rest wait as challengers."""
    seed = await seed_deliberation(
        db,
        member_count=members,
        idea_count=challengers + 1,
        idea_status=IdeaStatus.PENDING,
        phase=DeliberationPhase.ACCUMULATING.value,
        accumulation_enabled=True,
        accumulation_timeout_seconds=3600,
        accumulation_ends_at=utcnow() - timedelta(minutes=1),
        champion_entered_tier=2,
    )
    champion, *rest = seed.ideas
    champion.status = IdeaStatus.WINNER.value
    champion.is_champion = True
    for idea in rest:
        idea.is_new = True
    seed.deliberation.champion_id = champion.id
    await db.commit()
    return seed


async def _deliberation(db, deliberation_id):
    return await db.get(Deliberation, deliberation_id, populate_existing=True)


async def _round_cells(db, deliberation_id, round_, tier):
    result = await db.execute(
        select(Cell).where(
            Cell.deliberation_id == deliberation_id, Cell.round == round_, Cell.tier == tier
        )
    )
    return list(result.scalars().all())


class TestSubmitIdea:

    @pytest.mark.asyncio
    async def test_submission_phase_idea(self, db):
        seed = await seed_deliberation(db, member_count=1)
        author = await make_user(db)

        idea = await submit_idea(db, seed.deliberation.id, author.id, "Picnic")

        assert idea.status == IdeaStatus.SUBMITTED
        assert not idea.is_new
        member = await db.scalar(
            select(DeliberationMember.id).where(DeliberationMember.user_id == author.id)
        )
        assert member is not None

    @pytest.mark.asyncio
    async def test_accumulating_idea_is_a_challenger(self, db):
        seed = await _reigning(db, challengers=0)

        idea = await submit_idea(db, seed.deliberation.id, seed.user_ids[1], "Rooftop")

        assert idea.status == IdeaStatus.PENDING
        assert idea.is_new

    @pytest.mark.asyncio
    async def test_voting_phase_rejects_ideas(self, db):
        seed = await seed_deliberation(
            db, member_count=1, phase=DeliberationPhase.VOTING.value
        )

        with pytest.raises(InvalidPhaseError):
            await submit_idea(db, seed.deliberation.id, seed.user_ids[0], "Too late")


class TestEmptyWindows:

    @pytest.mark.asyncio
    async def test_no_challengers_extends_window(self, db):
        seed = await _reigning(db, challengers=0)

        result = await start_challenge_round(db, seed.deliberation.id)

        assert result.extended
        assert not result.finalized
        deliberation = await _deliberation(db, seed.deliberation.id)
        assert deliberation.empty_accumulation_windows == 1
        assert deliberation.phase == DeliberationPhase.ACCUMULATING

    @pytest.mark.asyncio
    async def test_third_empty_window_finalizes(self, db):
        seed = await _reigning(db, challengers=0)

        results = [await start_challenge_round(db, seed.deliberation.id) for _ in range(3)]

        assert [r.finalized for r in results] == [False, False, True]
        deliberation = await _deliberation(db, seed.deliberation.id)
        assert deliberation.phase == DeliberationPhase.COMPLETED
        assert deliberation.champion_id == seed.ideas[0].id

    @pytest.mark.asyncio
    async def test_requires_accumulating_phase(self, db):
        seed = await seed_deliberation(db, member_count=3, idea_count=2)

        with pytest.raises(InvalidPhaseError):
            await start_challenge_round(db, seed.deliberation.id)

    @pytest.mark.asyncio
    async def test_requires_champion(self, db):
        seed = await seed_deliberation(
            db, member_count=3, phase=DeliberationPhase.ACCUMULATING.value
        )

        with pytest.raises(ChantServiceError) as exc:
            await start_challenge_round(db, seed.deliberation.id)
        assert exc.value.error_type == "no_champion"


class TestChallengeRound:

    @pytest.mark.asyncio
    async def test_round_seats_challengers_and_defender_waits(self, db):
        seed = await _reigning(db)
        champion = seed.ideas[0]

        result = await start_challenge_round(db, seed.deliberation.id, rng=random.Random(5))

        assert not result.extended
        assert result.challenge_round == 1
        assert result.challengers == 3
        deliberation = await _deliberation(db, seed.deliberation.id)
        assert deliberation.phase == DeliberationPhase.VOTING
        assert deliberation.current_tier == 1
        assert deliberation.empty_accumulation_windows == 0

        cells = await _round_cells(db, seed.deliberation.id, 1, 1)
        assert len(cells) == 2
        seated_ideas = await db.execute(
            select(CellIdea.idea_id).where(CellIdea.cell_id.in_([c.id for c in cells]))
        )
        assert set(seated_ideas.scalars().all()) == set(seed.idea_ids[1:])
        refreshed = await db.get(Idea, champion.id, populate_existing=True)
        assert refreshed.status == IdeaStatus.DEFENDING
        assert refreshed.is_champion

    @pytest.mark.asyncio
    async def test_challenger_can_dethrone_champion(self, db):
        seed = await _reigning(db)
        champion = seed.ideas[0]
        await start_challenge_round(db, seed.deliberation.id, rng=random.Random(5))

        # Tier one: a lone decisive voter picks the first idea in every cell.
        for cell in await _round_cells(db, seed.deliberation.id, 1, 1):
            ideas = await cell_idea_ids(db, cell.id)
            voters = await active_participant_ids(db, cell.id)
            await cast_ballot(db, cell.id, voters[0], {ideas[0]: 10})
            await process_cell_results(db, cell.id)

        deliberation = await _deliberation(db, seed.deliberation.id)
        assert deliberation.current_tier == 2
        showdown = await _round_cells(db, seed.deliberation.id, 1, 2)
        assert showdown and all(c.is_final_showdown for c in showdown)
        contenders = set(await cell_idea_ids(db, showdown[0].id))
        assert champion.id in contenders
        challenger = next(i for i in contenders if i != champion.id)

        voters = await active_participant_ids(db, showdown[0].id)
        await cast_ballot(db, showdown[0].id, voters[0], {challenger: 10})
        for cell in showdown:
            await process_cell_results(db, cell.id)

        deliberation = await _deliberation(db, seed.deliberation.id)
        assert deliberation.champion_id == challenger
        assert deliberation.phase == DeliberationPhase.ACCUMULATING
        old = await db.get(Idea, champion.id, populate_existing=True)
        assert old.status == IdeaStatus.ELIMINATED
        assert not old.is_champion
        reigning = await db.scalar(
            select(func.count()).select_from(Idea).where(Idea.is_champion.is_(True))
        )
        assert reigning == 1
