"""Idea revisions proposed inside a cell and approved by its other members."""

import math
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chant.exceptions import (
    IdeaNotFoundError,
    NotACellParticipantError,
    RevisionError,
    RevisionNotFoundError,
)
from chant.logging_config import get_logger
from chant.models import CellStatus, Idea, IdeaRevision, IdeaRevisionVote, RevisionStatus
from chant.services.lookups import (
    active_participant_ids,
    cell_idea_ids,
    get_cell,
    get_idea,
    get_participation,
)
from chant.utils import utcnow

logger = get_logger(__name__)


def required_approvals(others_count: int) -> int:
    """Majority of the proposer's cell-mates, never fewer than one."""
    return max(1, math.ceil(others_count / 2))


async def propose_revision(
    db: AsyncSession,
    idea_id: UUID,
    cell_id: UUID,
    user_id: UUID,
    text: str,
) -> IdeaRevision:
    """
    Open a revision of an idea for the proposer's cell-mates to approve.

    The idea row is locked for the pending check, and the partial unique
    index on pending revisions rejects a concurrent second proposal.
    """
    idea = (
        await db.execute(
            select(Idea)
            .where(Idea.id == idea_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if idea is None:
        raise IdeaNotFoundError(str(idea_id))
    cell = await get_cell(db, cell_id)
    if idea_id not in await cell_idea_ids(db, cell_id):
        raise IdeaNotFoundError(str(idea_id))
    if cell.status == CellStatus.COMPLETED:
        raise RevisionError("Revisions can only be proposed while the cell is open")
    if await get_participation(db, cell_id, user_id) is None:
        raise NotACellParticipantError(str(user_id), str(cell_id))

    pending = await db.scalar(
        select(IdeaRevision.id).where(
            IdeaRevision.idea_id == idea_id,
            IdeaRevision.status == RevisionStatus.pending.value,
        )
    )
    if pending is not None:
        raise RevisionError("This idea already has a pending revision")

    others = [u for u in await active_participant_ids(db, cell_id) if u != user_id]
    revision = IdeaRevision(
        idea_id=idea_id,
        cell_id=cell_id,
        proposed_by_id=user_id,
        original_text=idea.text,
        proposed_text=text,
        required=required_approvals(len(others)),
    )
    db.add(revision)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise RevisionError("This idea already has a pending revision")

    logger.info(
        "revision_proposed",
        revision_id=str(revision.id),
        idea_id=str(idea_id),
        required=revision.required,
    )
    return revision


async def vote_on_revision(
    db: AsyncSession,
    revision_id: UUID,
    user_id: UUID,
    approve: bool,
) -> IdeaRevision:
    """
    Record one cell-mate's verdict.

    Reaching ``required`` approvals applies the new text to the idea in the
    same transaction. Once enough rejections make approval impossible the
    revision is rejected.
    """
    revision = (
        await db.execute(
            select(IdeaRevision)
            .where(IdeaRevision.id == revision_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if revision is None:
        raise RevisionNotFoundError(str(revision_id))
    if revision.status != RevisionStatus.pending:
        raise RevisionError(f"Revision is already {revision.status}")
    if revision.proposed_by_id == user_id:
        raise RevisionError("The proposer cannot vote on their own revision")
    if await get_participation(db, revision.cell_id, user_id) is None:
        raise NotACellParticipantError(str(user_id), str(revision.cell_id))

    already = await db.scalar(
        select(IdeaRevisionVote.id).where(
            IdeaRevisionVote.revision_id == revision_id,
            IdeaRevisionVote.user_id == user_id,
        )
    )
    if already is not None:
        raise RevisionError("You have already voted on this revision")

    db.add(IdeaRevisionVote(revision_id=revision_id, user_id=user_id, approve=approve))
    if approve:
        revision.approvals += 1
    else:
        revision.rejections += 1

    seated = await active_participant_ids(db, revision.cell_id)
    others = len([u for u in seated if u != revision.proposed_by_id])
    if revision.approvals >= revision.required:
        idea = await get_idea(db, revision.idea_id)
        idea.text = revision.proposed_text
        revision.status = RevisionStatus.approved.value
        revision.resolved_at = utcnow()
    elif others - revision.rejections < revision.required:
        revision.status = RevisionStatus.rejected.value
        revision.resolved_at = utcnow()

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise RevisionError("You have already voted on this revision")

    logger.info(
        "revision_vote_recorded",
        revision_id=str(revision_id),
        approve=approve,
        approvals=revision.approvals,
        rejections=revision.rejections,
        status=revision.status,
    )
    return revision
