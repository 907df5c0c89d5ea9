"""Manual trigger for the timer sweep."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chant.database import get_db
from chant.schemas import TimerSweepResult
from chant.services.timer_service import process_all_timers

router = APIRouter(prefix="/api/timers", tags=["timers"])


@router.post("/sweep", response_model=TimerSweepResult)
async def sweep(db: AsyncSession = Depends(get_db)):
    """Run every expired-timer handler once, same as a scheduler tick."""
    return await process_all_timers(db)
