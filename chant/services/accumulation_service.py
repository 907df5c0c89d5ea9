"""Rolling mode: challenge rounds against a reigning champion.

After a champion is crowned with accumulation enabled, new submissions wait
as challengers. When the window closes, ``start_challenge_round`` either
extends the window (no challengers), finalizes the deliberation after too many
empty windows, or seats the challengers in a fresh tier one while the
champion defends from a later tier.
"""

import random
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.exceptions import ChantServiceError, DeliberationNotFoundError, InvalidPhaseError
from chant.logging_config import get_logger
from chant.models import Deliberation, DeliberationPhase, Idea, IdeaStatus
from chant.schemas import ChallengeRoundResult, RetirementPlan
from chant.services.cell_formation import seat_first_tier
from chant.services.lookups import active_member_ids
from chant.state_machine import validate_phase_transition
from chant.utils import seconds_from_now, utcnow

logger = get_logger(__name__)


def min_pool_size(champion_entered_tier: int | None) -> int:
    """Challengers needed before anyone can be retired; higher tiers need more."""
    settings = get_settings()
    tier = champion_entered_tier or settings.min_champion_entry_tier
    return max(settings.min_challenge_pool, tier * 2)


def apply_retirement_logic(
    pending: list[tuple[UUID, int]],
    benched: list[tuple[UUID, int]],
    min_needed: int,
    loss_threshold: int = 2,
) -> RetirementPlan:
    """
    Split ``(idea_id, losses)`` challengers into retire, compete and bench.

    Nobody retires while the pool is at or below ``min_needed``. Otherwise
    ideas with ``loss_threshold`` or more losses retire, most losses first,
    until only ``min_needed`` would remain; the rest of the repeat losers are
    benched for a later round.
    """
    candidates = pending + benched
    if len(candidates) <= min_needed:
        return RetirementPlan(to_compete=[idea_id for idea_id, _ in candidates])

    can_retire = len(candidates) - min_needed
    plan = RetirementPlan()
    for idea_id, losses in sorted(candidates, key=lambda pair: -pair[1]):
        if losses >= loss_threshold and len(plan.to_retire) < can_retire:
            plan.to_retire.append(idea_id)
        elif losses >= loss_threshold:
            plan.to_bench.append(idea_id)
        else:
            plan.to_compete.append(idea_id)
    return plan


def _extend_window(deliberation: Deliberation) -> None:
    deliberation.accumulation_ends_at = seconds_from_now(
        deliberation.accumulation_timeout_seconds
    )


async def start_challenge_round(
    db: AsyncSession,
    deliberation_id: UUID,
    rng: random.Random | None = None,
) -> ChallengeRoundResult:
    settings = get_settings()
    rng = rng or random.Random()

    deliberation = (
        await db.execute(
            select(Deliberation)
            .where(Deliberation.id == deliberation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if deliberation is None:
        raise DeliberationNotFoundError(str(deliberation_id))
    if deliberation.phase != DeliberationPhase.ACCUMULATING:
        raise InvalidPhaseError(DeliberationPhase.ACCUMULATING.value, deliberation.phase)

    champion = (
        await db.get(Idea, deliberation.champion_id, populate_existing=True)
        if deliberation.champion_id
        else None
    )
    if champion is None:
        raise ChantServiceError("No champion found for challenge round", "no_champion")

    result = await db.execute(
        select(Idea)
        .where(
            Idea.deliberation_id == deliberation_id,
            (
                (Idea.status == IdeaStatus.PENDING.value) & Idea.is_new.is_(True)
            )
            | (Idea.status == IdeaStatus.BENCHED.value),
        )
        .order_by(Idea.created_at, Idea.id)
        .execution_options(populate_existing=True)
    )
    challengers = list(result.scalars().all())

    if not challengers:
        deliberation.empty_accumulation_windows += 1
        if deliberation.empty_accumulation_windows >= settings.max_empty_accumulation_windows:
            validate_phase_transition(deliberation.phase, DeliberationPhase.COMPLETED.value)
            deliberation.phase = DeliberationPhase.COMPLETED.value
            deliberation.completed_at = utcnow()
            deliberation.accumulation_ends_at = None
            await db.commit()
            logger.info(
                "deliberation_finalized",
                deliberation_id=str(deliberation_id),
                empty_windows=deliberation.empty_accumulation_windows,
            )
            return ChallengeRoundResult(
                extended=False,
                finalized=True,
                reason="No challengers after repeated accumulation windows",
            )

        _extend_window(deliberation)
        await db.commit()
        logger.info(
            "accumulation_extended",
            deliberation_id=str(deliberation_id),
            empty_windows=deliberation.empty_accumulation_windows,
        )
        return ChallengeRoundResult(extended=True, reason="No challengers")

    by_id = {idea.id: idea for idea in challengers}
    pending = [(i.id, i.losses) for i in challengers if i.status == IdeaStatus.PENDING]
    benched = [(i.id, i.losses) for i in challengers if i.status == IdeaStatus.BENCHED]
    plan = apply_retirement_logic(
        pending,
        benched,
        min_pool_size(deliberation.champion_entered_tier),
        settings.retirement_loss_threshold,
    )
    for idea_id in plan.to_retire:
        by_id[idea_id].status = IdeaStatus.RETIRED.value
    for idea_id in plan.to_bench:
        by_id[idea_id].status = IdeaStatus.BENCHED.value

    member_ids = await active_member_ids(db, deliberation_id)
    if not plan.to_compete or not member_ids:
        _extend_window(deliberation)
        await db.commit()
        reason = (
            "Not enough challengers after retirement"
            if not plan.to_compete
            else "No participants"
        )
        logger.info("accumulation_extended", deliberation_id=str(deliberation_id), reason=reason)
        return ChallengeRoundResult(
            extended=True,
            reason=reason,
            retired=len(plan.to_retire),
            benched=len(plan.to_bench),
        )

    validate_phase_transition(deliberation.phase, DeliberationPhase.VOTING.value)
    deliberation.phase = DeliberationPhase.VOTING.value
    deliberation.challenge_round += 1
    deliberation.empty_accumulation_windows = 0
    deliberation.accumulation_ends_at = None

    champion.status = IdeaStatus.DEFENDING.value
    champion.is_champion = True
    competing = [by_id[idea_id] for idea_id in plan.to_compete]
    for idea in competing:
        idea.is_new = False

    now = utcnow()
    cells = seat_first_tier(db, deliberation, competing, member_ids, rng, now, defender=champion)
    await db.commit()

    logger.info(
        "challenge_round_started",
        deliberation_id=str(deliberation_id),
        challenge_round=deliberation.challenge_round,
        challengers=len(competing),
        retired=len(plan.to_retire),
        benched=len(plan.to_bench),
        cells=len(cells),
    )
    return ChallengeRoundResult(
        extended=False,
        challenge_round=deliberation.challenge_round,
        challengers=len(competing),
        retired=len(plan.to_retire),
        benched=len(plan.to_bench),
    )
