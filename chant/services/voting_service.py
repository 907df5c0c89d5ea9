"""Weighted ballots: every voter spreads a fixed budget of points over ideas."""

from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.exceptions import NotACellParticipantError, VoteValidationError, VotingClosedError
from chant.logging_config import get_logger
from chant.models import Cell, CellParticipation, CellStatus, ParticipationStatus, Vote
from chant.schemas import PointAllocation, VoteReceipt
from chant.services.cell_resolution import process_cell_results
from chant.services.lookups import cell_idea_ids, get_cell, get_participation
from chant.utils import is_expired, seconds_from_now, utcnow

logger = get_logger(__name__)


def validate_allocations(
    allocations: list[PointAllocation],
    cell_ideas: list[UUID],
    budget: int,
) -> None:
    """Raise VoteValidationError unless the ballot spends exactly ``budget`` points."""
    if not allocations:
        raise VoteValidationError("Ballot must allocate points to at least one idea")
    idea_ids = [a.idea_id for a in allocations]
    if len(set(idea_ids)) != len(idea_ids):
        raise VoteValidationError("Each idea may appear only once per ballot")
    unknown = set(idea_ids) - set(cell_ideas)
    if unknown:
        raise VoteValidationError(
            f"Ideas not in this cell: {', '.join(sorted(str(i) for i in unknown))}"
        )
    if any(a.points < 1 for a in allocations):
        raise VoteValidationError("Every listed idea needs at least 1 point")
    total = sum(a.points for a in allocations)
    if total != budget:
        raise VoteValidationError(f"Ballot must allocate exactly {budget} points, got {total}")


async def _everyone_voted(db: AsyncSession, cell_id: UUID) -> bool:
    waiting = await db.scalar(
        select(func.count(CellParticipation.id)).where(
            CellParticipation.cell_id == cell_id,
            CellParticipation.status == ParticipationStatus.ACTIVE.value,
        )
    )
    return waiting == 0


async def cast_vote(
    db: AsyncSession,
    cell_id: UUID,
    user_id: UUID,
    allocations: list[PointAllocation],
) -> VoteReceipt:
    """
    Record (or replace) a participant's ballot.

    When the last active participant votes the cell is resolved at once, or,
    with a grace period configured, given a ``finalizes_at`` time for the
    timer sweep. A ballot arriving after the voting deadline force-completes
    the cell and is rejected.
    """
    settings = get_settings()
    cell = await get_cell(db, cell_id)
    participation = await get_participation(db, cell_id, user_id)
    if participation is None or participation.status == ParticipationStatus.LEFT:
        raise NotACellParticipantError(str(user_id), str(cell_id))
    if cell.status != CellStatus.VOTING:
        raise VotingClosedError(f"Cell is {cell.status}, not accepting votes")

    now = utcnow()
    if is_expired(cell.voting_deadline, now):
        await process_cell_results(db, cell_id, timed_out=True)
        raise VotingClosedError("Voting deadline has passed")

    validate_allocations(allocations, await cell_idea_ids(db, cell_id), settings.vote_points_per_voter)

    await db.execute(delete(Vote).where(Vote.cell_id == cell_id, Vote.user_id == user_id))
    db.add_all(
        Vote(cell_id=cell_id, user_id=user_id, idea_id=a.idea_id, points=a.points)
        for a in allocations
    )
    participation.status = ParticipationStatus.VOTED.value
    participation.voted_at = now
    await db.commit()

    logger.info(
        "vote_cast",
        cell_id=str(cell_id),
        user_id=str(user_id),
        ideas=len(allocations),
    )

    all_voted = await _everyone_voted(db, cell_id)
    cell_completed = False
    finalizes_at = cell.finalizes_at
    if all_voted:
        if settings.grace_period_seconds > 0:
            finalizes_at = seconds_from_now(settings.grace_period_seconds, now)
            scheduled = await db.execute(
                update(Cell)
                .where(
                    Cell.id == cell_id,
                    Cell.status == CellStatus.VOTING.value,
                    Cell.finalizes_at.is_(None),
                )
                .values(finalizes_at=finalizes_at)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if scheduled.rowcount == 1:
                logger.info("cell_finalization_scheduled", cell_id=str(cell_id))
            else:
                finalizes_at = (await get_cell(db, cell_id)).finalizes_at
        else:
            cell_completed = await process_cell_results(db, cell_id) is not None

    return VoteReceipt(
        cell_id=cell_id,
        user_id=user_id,
        points_allocated=sum(a.points for a in allocations),
        all_voted=all_voted,
        cell_completed=cell_completed,
        finalizes_at=finalizes_at,
    )
