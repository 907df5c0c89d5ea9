"""Cell endpoints: voting, forced completion and discussion."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chant.database import get_db
from chant.exceptions import ChantServiceError, raise_http_exception
from chant.schemas import (
    CellResponse,
    CellResult,
    CommentResponse,
    CreateCommentRequest,
    VoteReceipt,
    VoteRequest,
)
from chant.services.cell_resolution import process_cell_results
from chant.services.comment_service import create_comment, visible_comments_for_cell
from chant.services.lookups import get_cell
from chant.services.voting_service import cast_vote

router = APIRouter(prefix="/api/cells", tags=["cells"])


@router.get("/{cell_id}", response_model=CellResponse)
async def get_cell_detail(cell_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        cell = await get_cell(db, cell_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    return CellResponse.model_validate(cell)


@router.post("/{cell_id}/votes", response_model=VoteReceipt)
async def vote(cell_id: UUID, body: VoteRequest, db: AsyncSession = Depends(get_db)):
    """
    Allocate the voter's points across the cell's ideas.

    Voting again replaces the previous ballot while the cell is open.
    """
    try:
        return await cast_vote(db, cell_id, body.user_id, body.allocations)
    except ChantServiceError as e:
        raise_http_exception(e)


@router.post("/{cell_id}/complete", response_model=CellResult | None)
async def force_complete(cell_id: UUID, db: AsyncSession = Depends(get_db)):
    """Facilitator override: close the cell as timed out. Null if already closed."""
    try:
        return await process_cell_results(db, cell_id, timed_out=True)
    except ChantServiceError as e:
        raise_http_exception(e)


@router.get("/{cell_id}/comments", response_model=list[CommentResponse])
async def list_comments(cell_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        comments = await visible_comments_for_cell(db, cell_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    return [CommentResponse.model_validate(c) for c in comments]


@router.post("/{cell_id}/comments", response_model=CommentResponse, status_code=201)
async def post_comment(
    cell_id: UUID, body: CreateCommentRequest, db: AsyncSession = Depends(get_db)
):
    try:
        comment = await create_comment(db, cell_id, body.user_id, body.text, body.idea_id)
    except ChantServiceError as e:
        raise_http_exception(e)
    return CommentResponse.model_validate(comment)
