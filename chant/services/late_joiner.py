"""Late-joiner admission into the running tier."""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.logging_config import get_logger
from chant.models import (
    Cell,
    CellParticipation,
    CellStatus,
    DeliberationMember,
    DeliberationPhase,
    MemberRole,
    ParticipationStatus,
)
from chant.schemas import LateJoinResult, ReasonCode
from chant.services.lookups import get_deliberation, tier_cells_clause

logger = get_logger(__name__)

OPEN_CELL_STATUSES = (CellStatus.DELIBERATING.value, CellStatus.VOTING.value)


async def _seat_counts(db: AsyncSession, cell_ids: list[UUID]) -> dict[UUID, int]:
    result = await db.execute(
        select(CellParticipation.cell_id, func.count(CellParticipation.id))
        .where(
            CellParticipation.cell_id.in_(cell_ids),
            CellParticipation.status != ParticipationStatus.LEFT.value,
        )
        .group_by(CellParticipation.cell_id)
    )
    counts = dict(result.all())
    return {cell_id: counts.get(cell_id, 0) for cell_id in cell_ids}


async def _current_seat(db: AsyncSession, in_tier: tuple, user_id: UUID) -> UUID | None:
    return await db.scalar(
        select(CellParticipation.cell_id)
        .join(Cell, Cell.id == CellParticipation.cell_id)
        .where(*in_tier, CellParticipation.user_id == user_id)
        .limit(1)
    )


async def add_late_joiner_to_cell(
    db: AsyncSession,
    deliberation_id: UUID,
    user_id: UUID,
) -> LateJoinResult:
    """
    Seat a newcomer in an open cell of the current tier.

    Prefers the least-populated batch, then the smallest cell in it. Cells at
    the hard cap never take more people; when every open cell is full the
    result is ROUND_FULL and the user waits for the next tier.
    """
    settings = get_settings()
    deliberation = await get_deliberation(db, deliberation_id)
    if deliberation.phase != DeliberationPhase.VOTING:
        return LateJoinResult(success=False, reason=ReasonCode.NOT_IN_VOTING_PHASE)

    tier = deliberation.current_tier
    in_tier = tier_cells_clause(deliberation, tier)
    existing = await _current_seat(db, in_tier, user_id)
    if existing is not None:
        return LateJoinResult(success=False, reason=ReasonCode.ALREADY_IN_CELL, cell_id=existing)

    tier_cells = (
        await db.execute(
            select(Cell.id, Cell.batch, Cell.status)
            .where(*in_tier)
            .order_by(Cell.created_at, Cell.id)
        )
    ).all()
    open_cells = [c for c in tier_cells if c.status in OPEN_CELL_STATUSES]
    if not open_cells:
        return LateJoinResult(success=False, reason=ReasonCode.NO_ACTIVE_CELLS)

    counts = await _seat_counts(db, [c.id for c in tier_cells])
    batch_population: dict[int, int] = defaultdict(int)
    for cell in tier_cells:
        batch_population[cell.batch] += counts[cell.id]

    candidate_ids = [
        c.id
        for c in sorted(
            (c for c in open_cells if counts[c.id] < settings.max_cell_size),
            key=lambda c: (batch_population[c.batch], counts[c.id]),
        )
    ]

    for cell_id in candidate_ids:
        # Lock the cell row so concurrent joiners cannot both take the last seat.
        locked = (
            await db.execute(
                select(Cell.id)
                .where(Cell.id == cell_id, Cell.status.in_(OPEN_CELL_STATUSES))
                .with_for_update()
            )
        ).scalar_one_or_none()
        if locked is None:
            continue
        seated = (await _seat_counts(db, [cell_id]))[cell_id]
        if seated >= settings.max_cell_size:
            continue

        member = await db.scalar(
            select(DeliberationMember.id).where(
                DeliberationMember.deliberation_id == deliberation_id,
                DeliberationMember.user_id == user_id,
            )
        )
        if member is None:
            db.add(
                DeliberationMember(
                    deliberation_id=deliberation_id,
                    user_id=user_id,
                    role=MemberRole.PARTICIPANT.value,
                )
            )
        db.add(CellParticipation(cell_id=cell_id, user_id=user_id))
        try:
            await db.commit()
        except IntegrityError:
            # Another request seated this user first.
            await db.rollback()
            logger.info("late_join_conflict", user_id=str(user_id), cell_id=str(cell_id))
            return LateJoinResult(
                success=False,
                reason=ReasonCode.ALREADY_IN_CELL,
                cell_id=await _current_seat(db, in_tier, user_id),
            )

        logger.info(
            "late_joiner_seated",
            deliberation_id=str(deliberation_id),
            user_id=str(user_id),
            cell_id=str(cell_id),
            tier=tier,
            seats=seated + 1,
        )
        return LateJoinResult(success=True, reason=ReasonCode.JOINED, cell_id=cell_id)

    logger.info("late_join_round_full", deliberation_id=str(deliberation_id), tier=tier)
    return LateJoinResult(success=False, reason=ReasonCode.ROUND_FULL)
