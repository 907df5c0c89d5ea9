"""Timer sweeps and the background scheduler.

Deadlines live on the rows themselves (``submission_ends_at``,
``discussion_ends_at``, ``voting_deadline``, ``finalizes_at``,
``accumulation_ends_at``). Each sweep finds what has expired and drives it
through the same idempotent operations a facilitator would call, so running a
sweep twice, or alongside a manual action, is harmless.

Runs as an asyncio task during the application lifespan.
"""

import asyncio
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chant.config import get_settings
from chant.database import get_db_session
from chant.logging_config import get_logger
from chant.models import Cell, CellStatus, Deliberation, DeliberationPhase
from chant.schemas import ReasonCode, TimerSweepResult
from chant.services.accumulation_service import start_challenge_round
from chant.services.cell_formation import start_voting_phase
from chant.services.cell_resolution import process_cell_results
from chant.services.lookups import tier_cells_clause
from chant.utils import ensure_utc, seconds_from_now, utcnow

logger = get_logger(__name__)


async def process_expired_submissions(
    db: AsyncSession, now: datetime | None = None
) -> list[UUID]:
    """Start voting for deliberations whose submission window closed."""
    now = now or utcnow()
    result = await db.execute(
        select(Deliberation.id).where(
            Deliberation.phase == DeliberationPhase.SUBMISSION.value,
            Deliberation.submission_ends_at <= now,
        )
    )
    processed = []
    for deliberation_id in result.scalars().all():
        try:
            outcome = await start_voting_phase(db, deliberation_id)
        except Exception:
            await db.rollback()
            logger.exception("submission_timer_failed", deliberation_id=str(deliberation_id))
            continue
        if outcome.reason == ReasonCode.INSUFFICIENT_PARTICIPANTS:
            # Nobody to seat: stop retrying until someone restarts the window.
            await db.execute(
                update(Deliberation)
                .where(Deliberation.id == deliberation_id)
                .values(submission_ends_at=None)
            )
            await db.commit()
            continue
        processed.append(deliberation_id)
    return processed


async def process_expired_discussions(
    db: AsyncSession, now: datetime | None = None
) -> list[UUID]:
    """Open voting in cells whose discussion period is over."""
    now = now or utcnow()
    result = await db.execute(
        select(Cell.id, Deliberation.voting_timeout_seconds)
        .join(Deliberation, Deliberation.id == Cell.deliberation_id)
        .where(
            Cell.status == CellStatus.DELIBERATING.value,
            Cell.discussion_ends_at <= now,
        )
    )
    processed = []
    for cell_id, timeout in result.all():
        values: dict = {"status": CellStatus.VOTING.value, "voting_started_at": now}
        if timeout > 0:
            values["voting_deadline"] = seconds_from_now(timeout, now)
        opened = await db.execute(
            update(Cell)
            .where(Cell.id == cell_id, Cell.status == CellStatus.DELIBERATING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if opened.rowcount == 1:
            processed.append(cell_id)
    if processed:
        logger.info("discussions_closed", cells=len(processed))
    return processed


async def _resolve_cells(
    db: AsyncSession, cell_ids: list[UUID], timed_out: bool, reason: str
) -> list[UUID]:
    processed = []
    for cell_id in cell_ids:
        try:
            if await process_cell_results(db, cell_id, timed_out=timed_out) is not None:
                processed.append(cell_id)
        except Exception:
            await db.rollback()
            logger.exception("cell_timer_failed", cell_id=str(cell_id), reason=reason)
    return processed


async def _supermajority_stragglers(
    db: AsyncSession, deliberation: Deliberation, now: datetime
) -> list[UUID]:
    """VOTING cells to force-complete once most of the tier has finished."""
    settings = get_settings()
    cells = (
        await db.execute(
            select(Cell.id, Cell.status, Cell.completed_at).where(
                *tier_cells_clause(deliberation, deliberation.current_tier)
            )
        )
    ).all()
    if len(cells) < settings.supermajority_min_cells:
        return []

    voting = [c.id for c in cells if c.status == CellStatus.VOTING]
    completed = [c for c in cells if c.status == CellStatus.COMPLETED]
    if not voting or len(completed) / len(cells) < settings.supermajority_ratio:
        return []

    last_completed = max(
        (ensure_utc(c.completed_at) for c in completed if c.completed_at is not None),
        default=None,
    )
    grace = timedelta(minutes=settings.supermajority_grace_minutes)
    if last_completed is None or now - last_completed < grace:
        return []
    return voting


async def process_expired_tiers(db: AsyncSession, now: datetime | None = None) -> list[UUID]:
    """
    Force-complete cells whose time is up.

    Covers grace periods after the last vote, per-cell voting deadlines and,
    for deliberations without a voting timer, supermajority auto-advance.
    """
    now = now or utcnow()

    grace = await db.execute(
        select(Cell.id).where(
            Cell.status == CellStatus.VOTING.value,
            Cell.finalizes_at <= now,
        )
    )
    processed = await _resolve_cells(db, list(grace.scalars().all()), False, "grace_period")

    deadline = await db.execute(
        select(Cell.id).where(
            Cell.status == CellStatus.VOTING.value,
            Cell.voting_deadline <= now,
        )
    )
    processed += await _resolve_cells(db, list(deadline.scalars().all()), True, "deadline")

    untimed = await db.execute(
        select(Deliberation)
        .where(
            Deliberation.phase == DeliberationPhase.VOTING.value,
            Deliberation.voting_timeout_seconds == 0,
            Deliberation.supermajority_enabled.is_(True),
        )
        .execution_options(populate_existing=True)
    )
    for deliberation in untimed.scalars().all():
        stragglers = await _supermajority_stragglers(db, deliberation, now)
        if stragglers:
            logger.info(
                "supermajority_auto_advance",
                deliberation_id=str(deliberation.id),
                tier=deliberation.current_tier,
                stragglers=len(stragglers),
            )
            processed += await _resolve_cells(db, stragglers, True, "supermajority")
    return processed


async def process_expired_accumulations(
    db: AsyncSession, now: datetime | None = None
) -> list[UUID]:
    """Run a challenge round for deliberations whose accumulation window closed."""
    now = now or utcnow()
    result = await db.execute(
        select(Deliberation.id).where(
            Deliberation.phase == DeliberationPhase.ACCUMULATING.value,
            Deliberation.accumulation_ends_at <= now,
        )
    )
    processed = []
    for deliberation_id in result.scalars().all():
        try:
            await start_challenge_round(db, deliberation_id)
            processed.append(deliberation_id)
        except Exception:
            await db.rollback()
            logger.exception("accumulation_timer_failed", deliberation_id=str(deliberation_id))
    return processed


async def process_all_timers(db: AsyncSession, now: datetime | None = None) -> TimerSweepResult:
    """Single sweep over every timer kind."""
    now = now or utcnow()
    return TimerSweepResult(
        submissions=await process_expired_submissions(db, now),
        discussions=await process_expired_discussions(db, now),
        tiers=await process_expired_tiers(db, now),
        accumulations=await process_expired_accumulations(db, now),
    )


async def run_timer_cycle() -> TimerSweepResult:
    async with get_db_session() as session:
        result = await process_all_timers(session)
    if result.total > 0:
        logger.info(
            "timer_cycle_complete",
            submissions=len(result.submissions),
            discussions=len(result.discussions),
            tiers=len(result.tiers),
            accumulations=len(result.accumulations),
        )
    return result


async def scheduler_loop(stop_event: asyncio.Event):
    """Main scheduler loop. Runs until stop_event is set."""
    interval = get_settings().timer_interval_seconds
    logger.info("scheduler_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            await run_timer_cycle()
        except Exception:
            logger.exception("scheduler_cycle_error")

        # Wait for the interval or until stopped
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
            break  # stop_event was set
        except asyncio.TimeoutError:
            pass  # Interval elapsed, run again

    logger.info("scheduler_stopped")
