"""Comment propagation: viral spread within a tier, promotion across tiers.

Visibility of a spreading comment is a pure function of its id, the viewing
cell's id and its spread count, so every process computes the same answer
without storing per-cell visibility.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chant.exceptions import CommentNotFoundError, IdeaNotFoundError, NotACellParticipantError
from chant.logging_config import get_logger
from chant.models import Cell, CellIdea, Comment, CommentUpvote, Deliberation
from chant.schemas import UpvoteResult
from chant.services.lookups import cell_idea_ids, get_cell, get_participation

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Deterministic visibility
# ---------------------------------------------------------------------------


def stable_hash(value: str) -> int:
    """
    32-bit string hash, ``h = 31 * h + ord(ch)`` with signed wrap-around.

    Returns the absolute value so it can be used directly as a modulus input.
    """
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def should_see_comment(
    comment_id: UUID | str,
    target_cell_id: UUID | str,
    spread_count: int,
    total_cells_sharing_idea: int,
) -> bool:
    """Whether a cell other than the comment's origin cell gets to see it."""
    if spread_count <= 0:
        return False
    if spread_count >= total_cells_sharing_idea:
        return True
    return stable_hash(f"{comment_id}{target_cell_id}") % total_cells_sharing_idea < spread_count


def spread_for(comment: Comment) -> int:
    """Spread earned this tier. Unlinked comments never spread."""
    if comment.idea_id is None:
        return 0
    return comment.tier_upvotes // 2


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


async def create_comment(
    db: AsyncSession,
    cell_id: UUID,
    user_id: UUID,
    text: str,
    idea_id: UUID | None = None,
) -> Comment:
    cell = await get_cell(db, cell_id)
    if await get_participation(db, cell_id, user_id) is None:
        raise NotACellParticipantError(str(user_id), str(cell_id))
    if idea_id is not None and idea_id not in await cell_idea_ids(db, cell_id):
        raise IdeaNotFoundError(str(idea_id))

    comment = Comment(
        cell_id=cell_id,
        user_id=user_id,
        idea_id=idea_id,
        text=text,
        reach_tier=cell.tier,
    )
    db.add(comment)
    await db.commit()

    logger.info(
        "comment_created",
        comment_id=str(comment.id),
        cell_id=str(cell_id),
        idea_linked=idea_id is not None,
    )
    return comment


async def toggle_comment_upvote(
    db: AsyncSession,
    comment_id: UUID,
    user_id: UUID,
) -> UpvoteResult:
    """
    Add the user's upvote, or remove it if already present.

    Spread within a tier only ever grows: removing an upvote lowers the
    counts but keeps cells that already see the comment.
    """
    comment = (
        await db.execute(
            select(Comment)
            .where(Comment.id == comment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if comment is None:
        raise CommentNotFoundError(str(comment_id))

    existing = (
        await db.execute(
            select(CommentUpvote).where(
                CommentUpvote.comment_id == comment_id,
                CommentUpvote.user_id == user_id,
            )
        )
    ).scalar_one_or_none()

    previous_spread = comment.spread_count
    if existing is not None:
        await db.delete(existing)
        comment.upvote_count = max(0, comment.upvote_count - 1)
        comment.tier_upvotes = max(0, comment.tier_upvotes - 1)
        upvoted = False
    else:
        db.add(CommentUpvote(comment_id=comment_id, user_id=user_id))
        comment.upvote_count += 1
        comment.tier_upvotes += 1
        comment.spread_count = max(comment.spread_count, spread_for(comment))
        upvoted = True

    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request from the same user already recorded the upvote.
        await db.rollback()
        logger.info("duplicate_upvote_ignored", comment_id=str(comment_id), user_id=str(user_id))
        comment = await db.get(Comment, comment_id, populate_existing=True)
        return UpvoteResult(
            upvoted=True,
            upvote_count=comment.upvote_count,
            spread_count=comment.spread_count,
        )

    spread_increased = comment.spread_count > previous_spread
    if spread_increased:
        logger.info(
            "comment_spread",
            comment_id=str(comment_id),
            spread_count=comment.spread_count,
        )
    return UpvoteResult(
        upvoted=upvoted,
        upvote_count=comment.upvote_count,
        spread_count=comment.spread_count,
        spread_increased=spread_increased,
    )


async def promote_top_comments(
    db: AsyncSession,
    deliberation: Deliberation,
    tier: int,
    advancing_idea_ids: list[UUID],
) -> list[Comment]:
    """
    Carry the top upvoted comment of each advancing idea into the next tier.

    Only comments that reached ``tier`` and have at least one upvote qualify;
    ties go to the earliest comment. A promoted comment starts a fresh spread
    cycle and keeps its cumulative upvote count. Does not commit.
    """
    promoted = []
    for idea_id in advancing_idea_ids:
        top = (
            await db.execute(
                select(Comment)
                .join(Cell, Cell.id == Comment.cell_id)
                .where(
                    Cell.deliberation_id == deliberation.id,
                    Cell.round == deliberation.challenge_round,
                    Comment.idea_id == idea_id,
                    Comment.reach_tier == tier,
                    Comment.upvote_count >= 1,
                )
                .order_by(Comment.upvote_count.desc(), Comment.created_at, Comment.id)
                .limit(1)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if top is None:
            continue
        top.reach_tier = tier + 1
        top.spread_count = 0
        top.tier_upvotes = 0
        promoted.append(top)

    if promoted:
        logger.info(
            "comments_promoted",
            deliberation_id=str(deliberation.id),
            tier=tier,
            comment_ids=[str(c.id) for c in promoted],
        )
    return promoted


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


async def visible_comments_for_cell(db: AsyncSession, cell_id: UUID) -> list[Comment]:
    """
    Everything a cell's participants can read.

    That is the cell's own comments, comments up-pollinated into this tier on
    one of the cell's ideas, and sibling-cell comments whose spread reaches
    this cell.
    """
    cell = await get_cell(db, cell_id)
    idea_ids = await cell_idea_ids(db, cell_id)

    local = (
        await db.execute(
            select(Comment).where(Comment.cell_id == cell_id).order_by(Comment.created_at)
        )
    ).scalars().all()
    visible: dict[UUID, Comment] = {c.id: c for c in local}
    if not idea_ids:
        return list(visible.values())

    # Linked comments from other cells of this deliberation on the same ideas.
    candidates = (
        await db.execute(
            select(Comment, Cell.tier)
            .join(Cell, Cell.id == Comment.cell_id)
            .where(
                Cell.deliberation_id == cell.deliberation_id,
                Cell.round == cell.round,
                Comment.cell_id != cell_id,
                Comment.idea_id.in_(idea_ids),
            )
            .order_by(Comment.upvote_count.desc(), Comment.created_at)
        )
    ).all()

    sharing = dict(
        (
            await db.execute(
                select(CellIdea.idea_id, func.count(CellIdea.cell_id))
                .join(Cell, Cell.id == CellIdea.cell_id)
                .where(
                    Cell.deliberation_id == cell.deliberation_id,
                    Cell.round == cell.round,
                    Cell.tier == cell.tier,
                    CellIdea.idea_id.in_(idea_ids),
                )
                .group_by(CellIdea.idea_id)
            )
        ).all()
    )

    for comment, origin_tier in candidates:
        if comment.id in visible:
            continue
        if origin_tier < cell.tier and comment.reach_tier >= cell.tier:
            visible[comment.id] = comment
        elif origin_tier == cell.tier and should_see_comment(
            comment.id, cell_id, comment.spread_count, sharing.get(comment.idea_id, 1)
        ):
            visible[comment.id] = comment

    return list(visible.values())
