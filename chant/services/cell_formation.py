"""Cell formation: turning ideas and members into concrete cells.

Tier one is built by ``start_voting_phase``. The same building blocks are
reused by tier advancement, the final showdown and challenge rounds, so every
tier is laid out by one code path:

* participants are partitioned with ``calculate_cell_sizes``;
* cells are grouped into batches, each batch sharing one idea set split off
  with ``calculate_idea_sizes``;
* authors are moved away from cells holding their own idea when a swap exists.
"""

import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.exceptions import InvalidPhaseError
from chant.logging_config import get_logger
from chant.models import (
    Cell,
    CellIdea,
    CellParticipation,
    CellStatus,
    Deliberation,
    DeliberationPhase,
    Idea,
    IdeaStatus,
)
from chant.schemas import ReasonCode, StartVotingResult
from chant.services.cell_sizing import calculate_cell_sizes, calculate_idea_sizes
from chant.services.champion import declare_champion
from chant.services.lookups import active_member_ids, get_deliberation
from chant.state_machine import validate_phase_transition
from chant.utils import seconds_from_now, utcnow

logger = get_logger(__name__)


@dataclass
class CellPlan:
    batch: int
    idea_ids: list[UUID]
    user_ids: list[UUID] = field(default_factory=list)


def avoid_author_conflicts(
    seats: list[list[UUID]],
    cell_ideas: list[set[UUID]],
    authored: dict[UUID, set[UUID]],
) -> list[list[UUID]]:
    """
    Swap authors out of cells that contain one of their own ideas.

    First-fit: for each conflicted seat, the first seat in another cell whose
    occupant can take the author's place without a new conflict is swapped in.
    Conflicts with no valid swap are kept.
    """
    seats = [list(s) for s in seats]

    def conflicted(user_id: UUID, cell_index: int) -> bool:
        return bool(authored.get(user_id, set()) & cell_ideas[cell_index])

    for i, cell_seats in enumerate(seats):
        for pos, user_id in enumerate(cell_seats):
            if not conflicted(user_id, i):
                continue
            for j, other_seats in enumerate(seats):
                if j == i or conflicted(user_id, j):
                    continue
                swap = next(
                    (k for k, other in enumerate(other_seats) if not conflicted(other, i)),
                    None,
                )
                if swap is not None:
                    cell_seats[pos], other_seats[swap] = other_seats[swap], user_id
                    break
    return seats


def plan_cells(
    idea_ids: list[UUID],
    member_ids: list[UUID],
    batch_count: int,
    final_showdown: bool = False,
) -> list[CellPlan]:
    """
    Lay out one tier.

    Members are split into cells of 3-7. Cells are spread evenly over
    ``batch_count`` batches and the ideas are split evenly over the same
    batches, so every cell in a batch shows the same ideas. With
    ``final_showdown`` every cell gets every idea.
    """
    sizes = calculate_cell_sizes(len(member_ids))
    seats: list[list[UUID]] = []
    start = 0
    for size in sizes:
        seats.append(list(member_ids[start:start + size]))
        start += size

    if final_showdown:
        return [CellPlan(batch=0, idea_ids=list(idea_ids), user_ids=s) for s in seats]

    batch_count = max(1, min(batch_count, len(sizes), len(idea_ids)))
    idea_sizes = calculate_idea_sizes(len(idea_ids), batch_count)
    cells_per_batch = calculate_idea_sizes(len(sizes), batch_count)

    plans: list[CellPlan] = []
    remaining_seats = iter(seats)
    idea_start = 0
    for batch, (idea_count, cell_count) in enumerate(zip(idea_sizes, cells_per_batch)):
        group = list(idea_ids[idea_start:idea_start + idea_count])
        idea_start += idea_count
        for _ in range(cell_count):
            plans.append(CellPlan(batch=batch, idea_ids=group, user_ids=next(remaining_seats)))
    return plans


def tier_one_layout(idea_count: int, cell_count: int) -> tuple[int, bool]:
    """
    Return ``(batch_count, final_showdown)`` for a first tier.

    With at least one idea per cell every cell is its own batch and each idea
    appears exactly once. Fewer ideas than cells would leave cells empty, so
    the ideas are replicated across batches instead; a pool small enough for
    a showdown goes straight to one.
    """
    settings = get_settings()
    if idea_count >= cell_count:
        return cell_count, False
    if idea_count <= settings.final_showdown_target:
        return 1, True
    return math.ceil(idea_count / settings.ideas_per_cell), False


def open_cell_fields(deliberation: Deliberation, now: datetime) -> dict:
    """Initial status and timers for a freshly created cell."""
    if deliberation.discussion_duration_seconds > 0:
        return {
            "status": CellStatus.DELIBERATING.value,
            "discussion_ends_at": seconds_from_now(deliberation.discussion_duration_seconds, now),
        }
    fields: dict = {"status": CellStatus.VOTING.value, "voting_started_at": now}
    if deliberation.voting_timeout_seconds > 0:
        fields["voting_deadline"] = seconds_from_now(deliberation.voting_timeout_seconds, now)
    return fields


def create_tier_cells(
    db: AsyncSession,
    deliberation: Deliberation,
    tier: int,
    idea_ids: list[UUID],
    member_ids: list[UUID],
    batch_count: int,
    final_showdown: bool = False,
    authored: dict[UUID, set[UUID]] | None = None,
    now: datetime | None = None,
) -> list[Cell]:
    """Create the cells, idea links and seats for one tier. Does not commit."""
    now = now or utcnow()
    plans = plan_cells(idea_ids, member_ids, batch_count, final_showdown)
    if authored and not final_showdown and len(plans) > 1:
        seats = avoid_author_conflicts(
            [p.user_ids for p in plans], [set(p.idea_ids) for p in plans], authored
        )
        for plan, cell_seats in zip(plans, seats):
            plan.user_ids = cell_seats

    cells = []
    for plan in plans:
        cell = Cell(
            id=uuid4(),
            deliberation_id=deliberation.id,
            round=deliberation.challenge_round,
            tier=tier,
            batch=plan.batch,
            is_final_showdown=final_showdown,
            **open_cell_fields(deliberation, now),
        )
        db.add(cell)
        db.add_all(CellIdea(cell_id=cell.id, idea_id=idea_id) for idea_id in plan.idea_ids)
        db.add_all(
            CellParticipation(cell_id=cell.id, user_id=user_id, joined_at=now)
            for user_id in plan.user_ids
        )
        cells.append(cell)

    logger.info(
        "tier_cells_created",
        deliberation_id=str(deliberation.id),
        tier=tier,
        cells=len(cells),
        batches=len({p.batch for p in plans}),
        ideas=len(idea_ids),
        participants=len(member_ids),
        final_showdown=final_showdown,
    )
    return cells


def seat_first_tier(
    db: AsyncSession,
    deliberation: Deliberation,
    ideas: list[Idea],
    member_ids: list[UUID],
    rng: random.Random,
    now: datetime,
    defender: Idea | None = None,
) -> list[Cell]:
    """
    Shuffle ideas and members and build tier one. Does not commit.

    A defending champion only enters tier one when the field is small enough
    to go straight to a showdown; otherwise it waits for tier advancement.
    """
    ideas = list(ideas)
    member_ids = list(member_ids)
    rng.shuffle(ideas)
    rng.shuffle(member_ids)

    authored: dict[UUID, set[UUID]] = {}
    for idea in ideas:
        if idea.author_id is not None:
            authored.setdefault(idea.author_id, set()).add(idea.id)

    batch_count, final_showdown = tier_one_layout(
        len(ideas), len(calculate_cell_sizes(len(member_ids)))
    )
    cells = create_tier_cells(
        db,
        deliberation,
        tier=1,
        idea_ids=[i.id for i in ideas],
        member_ids=member_ids,
        batch_count=batch_count,
        final_showdown=final_showdown,
        authored=authored,
        now=now,
    )
    if final_showdown and defender is not None:
        ideas.append(defender)
        for cell in cells:
            db.add(CellIdea(cell_id=cell.id, idea_id=defender.id))
    for idea in ideas:
        idea.status = IdeaStatus.IN_VOTING.value
        idea.tier = 1

    deliberation.current_tier = 1
    deliberation.completed_tier = 0
    deliberation.current_tier_started_at = now
    return cells


async def start_voting_phase(
    db: AsyncSession,
    deliberation_id: UUID,
    rng: random.Random | None = None,
) -> StartVotingResult:
    """
    Close submissions and open tier one.

    Raises InvalidPhaseError unless the deliberation is in SUBMISSION,
    including when a concurrent caller already started voting.
    """
    rng = rng or random.Random()
    deliberation = await get_deliberation(db, deliberation_id)
    if deliberation.phase != DeliberationPhase.SUBMISSION:
        raise InvalidPhaseError(DeliberationPhase.SUBMISSION.value, deliberation.phase)

    result = await db.execute(
        select(Idea)
        .where(
            Idea.deliberation_id == deliberation_id,
            Idea.status == IdeaStatus.SUBMITTED.value,
        )
        .order_by(Idea.created_at, Idea.id)
    )
    ideas = list(result.scalars().all())
    now = utcnow()

    if not ideas:
        validate_phase_transition(deliberation.phase, DeliberationPhase.COMPLETED.value)
        deliberation.phase = DeliberationPhase.COMPLETED.value
        deliberation.completed_at = now
        await db.commit()
        logger.info("deliberation_completed_without_ideas", deliberation_id=str(deliberation_id))
        return StartVotingResult(success=False, reason=ReasonCode.NO_IDEAS)

    if len(ideas) == 1:
        await declare_champion(db, deliberation, ideas[0], tier=0, now=now)
        await db.commit()
        return StartVotingResult(
            success=True,
            reason=ReasonCode.SINGLE_IDEA,
            champion_id=ideas[0].id,
        )

    member_ids = await active_member_ids(db, deliberation_id)
    if not member_ids:
        logger.info("voting_not_started_no_participants", deliberation_id=str(deliberation_id))
        return StartVotingResult(success=False, reason=ReasonCode.INSUFFICIENT_PARTICIPANTS)

    validate_phase_transition(deliberation.phase, DeliberationPhase.VOTING.value)
    claimed = await db.execute(
        update(Deliberation)
        .where(
            Deliberation.id == deliberation_id,
            Deliberation.phase == DeliberationPhase.SUBMISSION.value,
        )
        .values(phase=DeliberationPhase.VOTING.value)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        raise InvalidPhaseError(DeliberationPhase.SUBMISSION.value, DeliberationPhase.VOTING.value)
    deliberation.phase = DeliberationPhase.VOTING.value

    cells = seat_first_tier(db, deliberation, ideas, member_ids, rng, now)
    await db.commit()

    logger.info(
        "voting_phase_started",
        deliberation_id=str(deliberation_id),
        ideas=len(ideas),
        participants=len(member_ids),
        cells=len(cells),
    )
    return StartVotingResult(
        success=True,
        reason=ReasonCode.VOTING_STARTED,
        cells_created=len(cells),
        tier=1,
    )
