"""User registration."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chant.database import get_db
from chant.schemas import CreateUserRequest, UserResponse
from chant.services.deliberation_service import create_user

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
async def register_user(body: CreateUserRequest, db: AsyncSession = Depends(get_db)):
    user = await create_user(db, body.display_name)
    return UserResponse.model_validate(user)
