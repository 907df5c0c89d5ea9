"""Shared loaders for deliberations, cells and memberships."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chant.exceptions import (
    CellNotFoundError,
    DeliberationNotFoundError,
    IdeaNotFoundError,
)
from chant.models import (
    Cell,
    CellIdea,
    CellParticipation,
    Deliberation,
    DeliberationMember,
    Idea,
    MemberRole,
    ParticipationStatus,
)

VOTING_ROLES = (MemberRole.CREATOR.value, MemberRole.PARTICIPANT.value)


async def get_deliberation(db: AsyncSession, deliberation_id: UUID) -> Deliberation:
    deliberation = await db.get(Deliberation, deliberation_id, populate_existing=True)
    if deliberation is None:
        raise DeliberationNotFoundError(str(deliberation_id))
    return deliberation


async def get_cell(db: AsyncSession, cell_id: UUID) -> Cell:
    cell = await db.get(Cell, cell_id, populate_existing=True)
    if cell is None:
        raise CellNotFoundError(str(cell_id))
    return cell


async def get_idea(db: AsyncSession, idea_id: UUID) -> Idea:
    idea = await db.get(Idea, idea_id, populate_existing=True)
    if idea is None:
        raise IdeaNotFoundError(str(idea_id))
    return idea


async def active_member_ids(db: AsyncSession, deliberation_id: UUID) -> list[UUID]:
    """User ids of members eligible to vote, in join order."""
    result = await db.execute(
        select(DeliberationMember.user_id)
        .where(
            DeliberationMember.deliberation_id == deliberation_id,
            DeliberationMember.role.in_(VOTING_ROLES),
        )
        .order_by(DeliberationMember.joined_at, DeliberationMember.id)
    )
    return list(result.scalars().all())


async def cell_idea_ids(db: AsyncSession, cell_id: UUID) -> list[UUID]:
    result = await db.execute(
        select(CellIdea.idea_id).where(CellIdea.cell_id == cell_id).order_by(CellIdea.id)
    )
    return list(result.scalars().all())


async def active_participant_ids(db: AsyncSession, cell_id: UUID) -> list[UUID]:
    """Participants still seated in a cell (anyone who has not left)."""
    result = await db.execute(
        select(CellParticipation.user_id).where(
            CellParticipation.cell_id == cell_id,
            CellParticipation.status != ParticipationStatus.LEFT.value,
        )
    )
    return list(result.scalars().all())


async def get_participation(
    db: AsyncSession, cell_id: UUID, user_id: UUID
) -> CellParticipation | None:
    result = await db.execute(
        select(CellParticipation).where(
            CellParticipation.cell_id == cell_id,
            CellParticipation.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


def tier_cells_clause(deliberation: Deliberation, tier: int) -> tuple:
    """WHERE criteria for the cells of ``tier`` in the deliberation's current round."""
    return (
        Cell.deliberation_id == deliberation.id,
        Cell.round == deliberation.challenge_round,
        Cell.tier == tier,
    )
