"""Final showdown: runner-up backfill and the cross-cell tally.

When five or fewer ideas survive a tier, every participant votes on the same
idea set. Short fields are topped up from the tier's best eliminated ideas so
the showdown has a real choice, and the winner is whoever collects the most
points summed over every showdown cell.
"""

import random
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.logging_config import get_logger
from chant.models import Cell, CellIdea, Deliberation, Idea, IdeaStatus, Vote
from chant.services.cell_formation import create_tier_cells
from chant.services.champion import declare_champion
from chant.services.lookups import active_member_ids, tier_cells_clause
from chant.utils import utcnow

logger = get_logger(__name__)


def select_backfill(
    ranked: list[tuple[UUID, int]],
    needed: int,
    overflow_allowance: int,
    rng: random.Random,
) -> tuple[list[UUID], bool]:
    """
    Pick ``needed`` runner-ups from ``(idea_id, points)`` pairs.

    Candidates are ranked by points, highest first; equal points keep their
    input order. Everything strictly above the cutoff score is taken. Ideas
    tied at the cutoff are all taken when that overshoots ``needed`` by no
    more than ``overflow_allowance``; otherwise the open slots are sampled
    from the tied group with ``rng``.

    Returns the picked ids and whether sampling happened.
    """
    if needed <= 0 or not ranked:
        return [], False

    ordered = sorted(ranked, key=lambda pair: -pair[1])
    if len(ordered) <= needed:
        return [idea_id for idea_id, _ in ordered], False

    cutoff = ordered[needed - 1][1]
    above = [idea_id for idea_id, pts in ordered if pts > cutoff]
    tied = [idea_id for idea_id, pts in ordered if pts == cutoff]

    if len(above) + len(tied) <= needed + overflow_allowance:
        return above + tied, False

    slots = needed - len(above)
    return above + rng.sample(tied, slots), True


async def tier_points(db: AsyncSession, deliberation: Deliberation, tier: int) -> dict[UUID, int]:
    """Points each idea received across every cell of one tier."""
    result = await db.execute(
        select(Vote.idea_id, func.sum(Vote.points))
        .join(Cell, Cell.id == Vote.cell_id)
        .where(*tier_cells_clause(deliberation, tier))
        .group_by(Vote.idea_id)
    )
    return {idea_id: int(total) for idea_id, total in result.all()}


async def tier_idea_ids(db: AsyncSession, deliberation: Deliberation, tier: int) -> set[UUID]:
    result = await db.execute(
        select(CellIdea.idea_id)
        .join(Cell, Cell.id == CellIdea.cell_id)
        .where(*tier_cells_clause(deliberation, tier))
    )
    return set(result.scalars().all())


async def gather_backfill(
    db: AsyncSession,
    deliberation: Deliberation,
    tier: int,
    needed: int,
) -> list[Idea]:
    """Revive the tier's best eliminated ideas to fill the showdown."""
    settings = get_settings()
    in_tier = await tier_idea_ids(db, deliberation, tier)
    result = await db.execute(
        select(Idea)
        .where(
            Idea.deliberation_id == deliberation.id,
            Idea.status == IdeaStatus.ELIMINATED.value,
            Idea.id.in_(list(in_tier)),
        )
        .order_by(Idea.created_at, Idea.id)
        .execution_options(populate_existing=True)
    )
    eliminated = list(result.scalars().all())
    if not eliminated:
        return []

    points = await tier_points(db, deliberation, tier)
    seed = f"{deliberation.id}:{deliberation.challenge_round}:{tier}"
    picked_ids, sampled = select_backfill(
        [(idea.id, points.get(idea.id, 0)) for idea in eliminated],
        needed,
        settings.final_showdown_max_ideas - settings.final_showdown_target,
        random.Random(seed),
    )
    if sampled:
        logger.info(
            "backfill_sampled",
            deliberation_id=str(deliberation.id),
            tier=tier,
            seed=seed,
            picked=[str(i) for i in picked_ids],
        )

    by_id = {idea.id: idea for idea in eliminated}
    return [by_id[idea_id] for idea_id in picked_ids]


async def start_final_showdown(
    db: AsyncSession,
    deliberation: Deliberation,
    tier: int,
    advancing: list[Idea],
    rng: random.Random,
) -> list[Cell]:
    """Backfill to the showdown target and seat everyone at ``tier + 1``. Does not commit."""
    settings = get_settings()
    needed = settings.final_showdown_target - len(advancing)
    backfill = await gather_backfill(db, deliberation, tier, needed) if needed > 0 else []

    ideas = list(advancing) + backfill
    next_tier = tier + 1
    for idea in ideas:
        idea.status = IdeaStatus.IN_VOTING.value
        idea.tier = next_tier

    member_ids = await active_member_ids(db, deliberation.id)
    rng.shuffle(member_ids)
    now = utcnow()
    cells = create_tier_cells(
        db,
        deliberation,
        tier=next_tier,
        idea_ids=[i.id for i in ideas],
        member_ids=member_ids,
        batch_count=1,
        final_showdown=True,
        now=now,
    )
    deliberation.current_tier = next_tier
    deliberation.current_tier_started_at = now

    logger.info(
        "final_showdown_started",
        deliberation_id=str(deliberation.id),
        tier=next_tier,
        advancing=len(advancing),
        backfilled=len(backfill),
        cells=len(cells),
    )
    return cells


async def resolve_final_showdown(
    db: AsyncSession,
    deliberation: Deliberation,
    tier: int,
) -> Idea:
    """
    Crown the idea with the most points summed across the showdown tier.

    Ties at the top (including a showdown nobody voted in) go to the earliest
    submitted idea. Every other showdown idea is eliminated. Does not commit.
    """
    idea_ids = await tier_idea_ids(db, deliberation, tier)
    points = await tier_points(db, deliberation, tier)
    result = await db.execute(
        select(Idea)
        .where(Idea.id.in_(list(idea_ids)))
        .order_by(Idea.created_at, Idea.id)
        .execution_options(populate_existing=True)
    )
    ideas = list(result.scalars().all())

    top = max(points.get(i.id, 0) for i in ideas)
    leaders = [i for i in ideas if points.get(i.id, 0) == top]
    winner = leaders[0]
    if len(leaders) > 1:
        logger.info(
            "showdown_tie_broken",
            deliberation_id=str(deliberation.id),
            tier=tier,
            points=top,
            tied=[str(i.id) for i in leaders],
            winner_id=str(winner.id),
        )

    for idea in ideas:
        if idea.id == winner.id:
            continue
        idea.status = IdeaStatus.ELIMINATED.value
        idea.losses += 1

    await declare_champion(db, deliberation, winner, tier)
    return winner
