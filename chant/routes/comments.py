"""Comment upvotes."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chant.database import get_db
from chant.exceptions import ChantServiceError, raise_http_exception
from chant.schemas import UpvoteRequest, UpvoteResult
from chant.services.comment_service import toggle_comment_upvote

router = APIRouter(prefix="/api/comments", tags=["comments"])


@router.post("/{comment_id}/upvote", response_model=UpvoteResult)
async def upvote(comment_id: UUID, body: UpvoteRequest, db: AsyncSession = Depends(get_db)):
    """Toggle the user's upvote."""
    try:
        return await toggle_comment_upvote(db, comment_id, body.user_id)
    except ChantServiceError as e:
        raise_http_exception(e)
