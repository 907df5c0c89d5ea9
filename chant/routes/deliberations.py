"""Deliberation lifecycle endpoints: setup, submissions, voting start and rolling mode."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chant.database import get_db
from chant.exceptions import ChantServiceError, raise_http_exception
from chant.logging_config import get_logger
from chant.models import Cell, Idea
from chant.schemas import (
    CellResponse,
    ChallengeRoundResult,
    CreateDeliberationRequest,
    DeliberationResponse,
    IdeaResponse,
    JoinRequest,
    LateJoinResult,
    StartVotingResult,
    SubmitIdeaRequest,
)
from chant.services.accumulation_service import start_challenge_round
from chant.services.cell_formation import start_voting_phase
from chant.services.deliberation_service import (
    create_deliberation,
    join_deliberation,
    submit_idea,
)
from chant.services.late_joiner import add_late_joiner_to_cell
from chant.services.lookups import get_deliberation
from chant.services.tier_advancement import check_tier_completion

logger = get_logger(__name__)
router = APIRouter(prefix="/api/deliberations", tags=["deliberations"])


@router.post("", response_model=DeliberationResponse, status_code=201)
async def open_deliberation(body: CreateDeliberationRequest, db: AsyncSession = Depends(get_db)):
    """Create a deliberation in the SUBMISSION phase."""
    deliberation = await create_deliberation(
        db,
        question=body.question,
        creator_id=body.creator_id,
        description=body.description,
        submission_duration_seconds=body.submission_duration_seconds,
        voting_timeout_seconds=body.voting_timeout_seconds,
        discussion_duration_seconds=body.discussion_duration_seconds,
        supermajority_enabled=body.supermajority_enabled,
        accumulation_enabled=body.accumulation_enabled,
        accumulation_timeout_seconds=body.accumulation_timeout_seconds,
    )
    return DeliberationResponse.model_validate(deliberation)


@router.get("/{deliberation_id}", response_model=DeliberationResponse)
async def get_deliberation_status(deliberation_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        deliberation = await get_deliberation(db, deliberation_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    return DeliberationResponse.model_validate(deliberation)


@router.post("/{deliberation_id}/members", status_code=201)
async def join(deliberation_id: UUID, body: JoinRequest, db: AsyncSession = Depends(get_db)):
    try:
        member = await join_deliberation(db, deliberation_id, body.user_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    return {"deliberation_id": member.deliberation_id, "user_id": member.user_id, "role": member.role}


@router.post("/{deliberation_id}/ideas", response_model=IdeaResponse, status_code=201)
async def submit(
    deliberation_id: UUID, body: SubmitIdeaRequest, db: AsyncSession = Depends(get_db)
):
    """Submit an idea; during accumulation it waits as a challenger."""
    try:
        idea = await submit_idea(db, deliberation_id, body.author_id, body.text)
    except ChantServiceError as e:
        raise_http_exception(e)
    return IdeaResponse.model_validate(idea)


@router.get("/{deliberation_id}/ideas", response_model=list[IdeaResponse])
async def list_ideas(deliberation_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await get_deliberation(db, deliberation_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    result = await db.execute(
        select(Idea)
        .where(Idea.deliberation_id == deliberation_id)
        .order_by(Idea.created_at, Idea.id)
    )
    return [IdeaResponse.model_validate(i) for i in result.scalars().all()]


@router.get("/{deliberation_id}/cells", response_model=list[CellResponse])
async def list_cells(deliberation_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        await get_deliberation(db, deliberation_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    result = await db.execute(
        select(Cell)
        .where(Cell.deliberation_id == deliberation_id)
        .order_by(Cell.round, Cell.tier, Cell.batch, Cell.created_at)
    )
    return [CellResponse.model_validate(c) for c in result.scalars().all()]


@router.post("/{deliberation_id}/start-voting", response_model=StartVotingResult)
async def start_voting(deliberation_id: UUID, db: AsyncSession = Depends(get_db)):
    """Close submissions and seat tier one."""
    try:
        return await start_voting_phase(db, deliberation_id)
    except ChantServiceError as e:
        raise_http_exception(e)


@router.post("/{deliberation_id}/late-join", response_model=LateJoinResult)
async def late_join(deliberation_id: UUID, body: JoinRequest, db: AsyncSession = Depends(get_db)):
    try:
        return await add_late_joiner_to_cell(db, deliberation_id, body.user_id)
    except ChantServiceError as e:
        raise_http_exception(e)


@router.post("/{deliberation_id}/tiers/{tier}/check", response_model=DeliberationResponse)
async def check_tier(deliberation_id: UUID, tier: int, db: AsyncSession = Depends(get_db)):
    """Re-run the tier barrier; a no-op unless every cell of the tier is done."""
    try:
        await check_tier_completion(db, deliberation_id, tier)
        deliberation = await get_deliberation(db, deliberation_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    return DeliberationResponse.model_validate(deliberation)


@router.post("/{deliberation_id}/challenge-round", response_model=ChallengeRoundResult)
async def challenge_round(deliberation_id: UUID, db: AsyncSession = Depends(get_db)):
    """Close the accumulation window now instead of waiting for the timer."""
    try:
        result = await start_challenge_round(db, deliberation_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    logger.info("challenge_round_requested", deliberation_id=str(deliberation_id))
    return result
