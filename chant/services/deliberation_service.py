"""Deliberation setup: users, membership and idea submission."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chant.exceptions import InvalidPhaseError
from chant.logging_config import get_logger
from chant.models import (
    Deliberation,
    DeliberationMember,
    DeliberationPhase,
    Idea,
    IdeaStatus,
    MemberRole,
    User,
)
from chant.services.lookups import get_deliberation
from chant.utils import seconds_from_now

logger = get_logger(__name__)


async def create_user(db: AsyncSession, display_name: str) -> User:
    user = User(display_name=display_name)
    db.add(user)
    await db.commit()
    return user


async def create_deliberation(
    db: AsyncSession,
    question: str,
    creator_id: UUID,
    description: str | None = None,
    submission_duration_seconds: int = 0,
    voting_timeout_seconds: int = 0,
    discussion_duration_seconds: int = 0,
    supermajority_enabled: bool = False,
    accumulation_enabled: bool = False,
    accumulation_timeout_seconds: int = 86400,
) -> Deliberation:
    """Open a deliberation for submissions with its creator as first member."""
    deliberation = Deliberation(
        question=question,
        description=description,
        creator_id=creator_id,
        phase=DeliberationPhase.SUBMISSION.value,
        submission_ends_at=(
            seconds_from_now(submission_duration_seconds)
            if submission_duration_seconds > 0
            else None
        ),
        voting_timeout_seconds=voting_timeout_seconds,
        discussion_duration_seconds=discussion_duration_seconds,
        supermajority_enabled=supermajority_enabled,
        accumulation_enabled=accumulation_enabled,
        accumulation_timeout_seconds=accumulation_timeout_seconds,
    )
    db.add(deliberation)
    await db.flush()
    db.add(
        DeliberationMember(
            deliberation_id=deliberation.id,
            user_id=creator_id,
            role=MemberRole.CREATOR.value,
        )
    )
    await db.commit()

    logger.info(
        "deliberation_created",
        deliberation_id=str(deliberation.id),
        accumulation_enabled=accumulation_enabled,
    )
    return deliberation


async def join_deliberation(
    db: AsyncSession,
    deliberation_id: UUID,
    user_id: UUID,
    role: MemberRole = MemberRole.PARTICIPANT,
) -> DeliberationMember:
    """Add a member. Joining twice returns the existing membership."""
    deliberation = await get_deliberation(db, deliberation_id)
    if deliberation.phase == DeliberationPhase.COMPLETED:
        raise InvalidPhaseError("an active phase", deliberation.phase)

    existing = (
        await db.execute(
            select(DeliberationMember).where(
                DeliberationMember.deliberation_id == deliberation_id,
                DeliberationMember.user_id == user_id,
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    member = DeliberationMember(
        deliberation_id=deliberation_id,
        user_id=user_id,
        role=MemberRole(role).value,
    )
    db.add(member)
    await db.commit()
    logger.info("member_joined", deliberation_id=str(deliberation_id), user_id=str(user_id))
    return member


async def submit_idea(
    db: AsyncSession,
    deliberation_id: UUID,
    author_id: UUID,
    text: str,
) -> Idea:
    """
    Submit an idea.

    During SUBMISSION it joins the first tier. During ACCUMULATING it waits as
    a challenger for the next challenge round. The author becomes a member if
    they were not one already.
    """
    deliberation = await get_deliberation(db, deliberation_id)
    if deliberation.phase == DeliberationPhase.SUBMISSION:
        status, is_new = IdeaStatus.SUBMITTED.value, False
    elif deliberation.phase == DeliberationPhase.ACCUMULATING:
        status, is_new = IdeaStatus.PENDING.value, True
    else:
        raise InvalidPhaseError("SUBMISSION or ACCUMULATING", deliberation.phase)

    is_member = await db.scalar(
        select(DeliberationMember.id).where(
            DeliberationMember.deliberation_id == deliberation_id,
            DeliberationMember.user_id == author_id,
        )
    )
    if is_member is None:
        db.add(
            DeliberationMember(
                deliberation_id=deliberation_id,
                user_id=author_id,
                role=MemberRole.PARTICIPANT.value,
            )
        )

    idea = Idea(
        deliberation_id=deliberation_id,
        author_id=author_id,
        text=text,
        status=status,
        is_new=is_new,
    )
    db.add(idea)
    await db.commit()

    logger.info(
        "idea_submitted",
        deliberation_id=str(deliberation_id),
        idea_id=str(idea.id),
        challenger=is_new,
    )
    return idea
