"""Idea revision proposals and approvals."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chant.database import get_db
from chant.exceptions import ChantServiceError, raise_http_exception
from chant.schemas import ProposeRevisionRequest, RevisionResponse, RevisionVoteRequest
from chant.services.revision_service import propose_revision, vote_on_revision

router = APIRouter(prefix="/api", tags=["revisions"])


@router.post("/ideas/{idea_id}/revisions", response_model=RevisionResponse, status_code=201)
async def propose(idea_id: UUID, body: ProposeRevisionRequest, db: AsyncSession = Depends(get_db)):
    try:
        revision = await propose_revision(db, idea_id, body.cell_id, body.user_id, body.text)
    except ChantServiceError as e:
        raise_http_exception(e)
    return RevisionResponse.model_validate(revision)


@router.post("/revisions/{revision_id}/votes", response_model=RevisionResponse)
async def vote(revision_id: UUID, body: RevisionVoteRequest, db: AsyncSession = Depends(get_db)):
    try:
        revision = await vote_on_revision(db, revision_id, body.user_id, body.approve)
    except ChantServiceError as e:
        raise_http_exception(e)
    return RevisionResponse.model_validate(revision)
