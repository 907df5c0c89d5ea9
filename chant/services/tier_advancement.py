"""Tier advancement controller.

``check_tier_completion`` is the barrier every cell resolution ends in. It is
safe to call any number of times from any number of workers: it does nothing
until every cell of the deliberation's current tier is COMPLETED, and the
follow-up work is claimed with a conditional update of
``Deliberation.completed_tier`` so exactly one caller performs it.
"""

import math
import random
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.logging_config import (
    bind_deliberation_context,
    clear_deliberation_context,
    get_logger,
)
from chant.models import (
    Cell,
    CellStatus,
    Deliberation,
    DeliberationPhase,
    Idea,
    IdeaStatus,
)
from chant.services.cell_formation import create_tier_cells
from chant.services.cell_sizing import calculate_cell_sizes
from chant.services.champion import declare_champion
from chant.services.comment_service import promote_top_comments
from chant.services.final_showdown import resolve_final_showdown, start_final_showdown
from chant.services.lookups import active_member_ids, get_deliberation, tier_cells_clause
from chant.utils import utcnow

logger = get_logger(__name__)


async def _claim_tier(db: AsyncSession, deliberation_id: UUID, tier: int) -> bool:
    claimed = await db.execute(
        update(Deliberation)
        .where(
            Deliberation.id == deliberation_id,
            Deliberation.current_tier == tier,
            Deliberation.phase == DeliberationPhase.VOTING.value,
            Deliberation.completed_tier < tier,
        )
        .values(completed_tier=tier)
        .execution_options(synchronize_session=False)
    )
    return claimed.rowcount == 1


async def check_tier_completion(
    db: AsyncSession,
    deliberation_id: UUID,
    tier: int,
    rng: random.Random | None = None,
) -> None:
    """
    Advance the deliberation once every cell of ``tier`` is COMPLETED.

    Outcomes: a single advancing idea is crowned; two to five go to a final
    showdown at ``tier + 1`` (backfilled to five); six or more are batched
    into a normal next tier. A finished showdown tier is decided by the
    cross-cell tally instead.
    """
    deliberation = await get_deliberation(db, deliberation_id)
    if deliberation.current_tier != tier or deliberation.phase != DeliberationPhase.VOTING:
        return

    open_cells = await db.scalar(
        select(func.count())
        .select_from(Cell)
        .where(
            *tier_cells_clause(deliberation, tier),
            Cell.status != CellStatus.COMPLETED.value,
        )
    )
    if open_cells:
        return

    if not await _claim_tier(db, deliberation_id, tier):
        await db.commit()
        return

    bind_deliberation_context(str(deliberation_id), trigger="tier_completion")
    try:
        showdown = await db.scalar(
            select(func.count())
            .select_from(Cell)
            .where(*tier_cells_clause(deliberation, tier), Cell.is_final_showdown.is_(True))
        )
        if showdown:
            await resolve_final_showdown(db, deliberation, tier)
        else:
            await _advance(db, deliberation, tier, rng or random.Random())
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        clear_deliberation_context()


async def _advance(
    db: AsyncSession,
    deliberation: Deliberation,
    tier: int,
    rng: random.Random,
) -> None:
    settings = get_settings()
    result = await db.execute(
        select(Idea)
        .where(
            Idea.deliberation_id == deliberation.id,
            Idea.status == IdeaStatus.ADVANCING.value,
        )
        .order_by(Idea.created_at, Idea.id)
        .execution_options(populate_existing=True)
    )
    advancing = list(result.scalars().all())

    await promote_top_comments(db, deliberation, tier, [i.id for i in advancing])

    # A defending champion skips the early tiers of a challenge round.
    defender = (
        await db.execute(
            select(Idea)
            .where(
                Idea.deliberation_id == deliberation.id,
                Idea.status == IdeaStatus.DEFENDING.value,
            )
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if defender is not None:
        entry_tier = deliberation.champion_entered_tier or settings.min_champion_entry_tier
        if tier + 1 >= entry_tier or len(advancing) <= settings.final_showdown_target:
            advancing.append(defender)
            logger.info("defender_joined", champion_id=str(defender.id), tier=tier + 1)

    if not advancing:
        logger.warning("tier_completed_without_advancing_ideas", tier=tier)
        return

    if len(advancing) == 1:
        await declare_champion(db, deliberation, advancing[0], tier)
        return

    if len(advancing) <= settings.final_showdown_target:
        await start_final_showdown(db, deliberation, tier, advancing, rng)
        return

    member_ids = await active_member_ids(db, deliberation.id)
    rng.shuffle(advancing)
    rng.shuffle(member_ids)

    next_tier = tier + 1
    cell_count = len(calculate_cell_sizes(len(member_ids)))
    batch_count = min(math.ceil(len(advancing) / settings.ideas_per_cell), cell_count)

    authored: dict[UUID, set[UUID]] = {}
    for idea in advancing:
        if idea.author_id is not None:
            authored.setdefault(idea.author_id, set()).add(idea.id)

    now = utcnow()
    cells = create_tier_cells(
        db,
        deliberation,
        tier=next_tier,
        idea_ids=[i.id for i in advancing],
        member_ids=member_ids,
        batch_count=batch_count,
        authored=authored,
        now=now,
    )
    for idea in advancing:
        idea.status = IdeaStatus.IN_VOTING.value
        idea.tier = next_tier
    deliberation.current_tier = next_tier
    deliberation.current_tier_started_at = now

    logger.info(
        "tier_advanced",
        from_tier=tier,
        to_tier=next_tier,
        ideas=len(advancing),
        cells=len(cells),
        batches=batch_count,
    )
