"""Per-cell vote tallying with an at-most-once resolution guarantee."""

from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.logging_config import get_logger
from chant.models import Cell, CellStatus, Idea, IdeaStatus, Vote
from chant.schemas import CellResult
from chant.services.lookups import cell_idea_ids, get_cell
from chant.services.tier_advancement import check_tier_completion
from chant.utils import utcnow

logger = get_logger(__name__)


def decide_cell_outcome(
    idea_ids: list[UUID],
    points: dict[UUID, int],
    voter_count: int,
    single_voter_min_points: int,
) -> tuple[list[UUID], list[UUID]]:
    """
    Split a cell's ideas into winners and losers.

    Every idea tied for the top total wins. No votes at all, or a lone voter
    whose top pick falls below ``single_voter_min_points``, counts as no input
    and every idea advances.
    """
    top = max((points.get(i, 0) for i in idea_ids), default=0)
    if top == 0:
        return list(idea_ids), []
    if voter_count == 1 and top < single_voter_min_points:
        return list(idea_ids), []

    winners = [i for i in idea_ids if points.get(i, 0) == top]
    losers = [i for i in idea_ids if points.get(i, 0) != top]
    return winners, losers


async def tally_cell(db: AsyncSession, cell_id: UUID) -> tuple[dict[UUID, int], int]:
    """Return ``(points per idea, distinct voter count)`` for one cell."""
    result = await db.execute(
        select(Vote.idea_id, func.sum(Vote.points))
        .where(Vote.cell_id == cell_id)
        .group_by(Vote.idea_id)
    )
    points = {idea_id: int(total) for idea_id, total in result.all()}
    voters = await db.scalar(
        select(func.count(func.distinct(Vote.user_id))).where(Vote.cell_id == cell_id)
    )
    return points, voters or 0


async def process_cell_results(
    db: AsyncSession,
    cell_id: UUID,
    timed_out: bool = False,
) -> CellResult | None:
    """
    Resolve a VOTING cell exactly once.

    The VOTING → COMPLETED transition is a single conditional UPDATE; a caller
    that loses the race gets ``None`` and must treat the cell as handled.
    Final showdown cells return empty lists: their ideas are judged by the
    cross-cell tally once the whole tier is done.

    The tier completion check runs after the resolution is committed.
    """
    settings = get_settings()
    cell = await get_cell(db, cell_id)
    now = utcnow()

    claimed = await db.execute(
        update(Cell)
        .where(Cell.id == cell_id, Cell.status == CellStatus.VOTING.value)
        .values(
            status=CellStatus.COMPLETED.value,
            completed_at=now,
            completed_by_timeout=timed_out,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        # The UPDATE matched nothing; end the transaction without expiring loaded objects.
        await db.commit()
        logger.debug("cell_already_resolved", cell_id=str(cell_id))
        return None

    idea_ids = await cell_idea_ids(db, cell_id)
    points, voter_count = await tally_cell(db, cell_id)

    for idea_id, total in points.items():
        await db.execute(
            update(Idea)
            .where(Idea.id == idea_id)
            .values(total_points=Idea.total_points + total)
            .execution_options(synchronize_session=False)
        )

    if cell.is_final_showdown:
        outcome = CellResult()
    else:
        winners, losers = decide_cell_outcome(
            idea_ids, points, voter_count, settings.single_voter_min_points
        )
        outcome = CellResult(winner_ids=winners, loser_ids=losers)

        # Sibling cells in a batch share ideas: an idea advances if it wins
        # in any of them, whichever cell resolves first.
        if losers:
            await db.execute(
                update(Idea)
                .where(Idea.id.in_(losers), Idea.status == IdeaStatus.IN_VOTING.value)
                .values(status=IdeaStatus.ELIMINATED.value, losses=Idea.losses + 1)
                .execution_options(synchronize_session=False)
            )
        if winners:
            await db.execute(
                update(Idea)
                .where(Idea.id.in_(winners), Idea.status != IdeaStatus.ADVANCING.value)
                .values(
                    status=IdeaStatus.ADVANCING.value,
                    tier=cell.tier,
                    losses=case(
                        (Idea.status == IdeaStatus.ELIMINATED.value, Idea.losses - 1),
                        else_=Idea.losses,
                    ),
                )
                .execution_options(synchronize_session=False)
            )

    await db.commit()
    logger.info(
        "cell_resolved",
        cell_id=str(cell_id),
        deliberation_id=str(cell.deliberation_id),
        tier=cell.tier,
        voters=voter_count,
        winners=len(outcome.winner_ids),
        losers=len(outcome.loser_ids),
        final_showdown=cell.is_final_showdown,
        timed_out=timed_out,
    )

    await check_tier_completion(db, cell.deliberation_id, cell.tier)
    return outcome
