"""Champion declaration shared by tier-one shortcuts and tier advancement."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.logging_config import get_logger
from chant.models import Deliberation, DeliberationPhase, Idea, IdeaStatus
from chant.state_machine import validate_phase_transition
from chant.utils import seconds_from_now, utcnow

logger = get_logger(__name__)


async def declare_champion(
    db: AsyncSession,
    deliberation: Deliberation,
    winner: Idea,
    tier: int,
    now: datetime | None = None,
) -> None:
    """
    Crown ``winner`` and close or roll over the deliberation. Does not commit.

    A previous champion that lost its defence is stripped of the title. With
    accumulation enabled the deliberation moves to ACCUMULATING and collects
    challengers until ``accumulation_ends_at``; otherwise it is COMPLETED.
    """
    settings = get_settings()
    now = now or utcnow()

    previous_id = deliberation.champion_id
    if previous_id is not None and previous_id != winner.id:
        previous = await db.get(Idea, previous_id)
        if previous is not None:
            previous.is_champion = False
            previous.status = IdeaStatus.ELIMINATED.value
            logger.info(
                "champion_dethroned",
                deliberation_id=str(deliberation.id),
                previous_champion_id=str(previous_id),
                challenger_id=str(winner.id),
            )

    winner.status = IdeaStatus.WINNER.value
    winner.is_champion = True
    winner.is_new = False
    deliberation.champion_id = winner.id

    if deliberation.accumulation_enabled:
        validate_phase_transition(deliberation.phase, DeliberationPhase.ACCUMULATING.value)
        deliberation.phase = DeliberationPhase.ACCUMULATING.value
        deliberation.accumulation_ends_at = seconds_from_now(
            deliberation.accumulation_timeout_seconds, now
        )
        deliberation.champion_entered_tier = max(settings.min_champion_entry_tier, tier)
    else:
        validate_phase_transition(deliberation.phase, DeliberationPhase.COMPLETED.value)
        deliberation.phase = DeliberationPhase.COMPLETED.value
        deliberation.completed_at = now

    logger.info(
        "champion_declared",
        deliberation_id=str(deliberation.id),
        champion_id=str(winner.id),
        tier=tier,
        challenge_round=deliberation.challenge_round,
        phase=deliberation.phase,
    )
