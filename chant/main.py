"""Chant tournament engine FastAPI application."""

import asyncio
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chant.database import close_db, init_db
from chant.logging_config import configure_logging_from_env, get_logger
from chant.services.timer_service import scheduler_loop

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: init DB and the timer scheduler, cleanup on shutdown."""
    configure_logging_from_env()

    # Init database
    logger.info("starting_database_init")
    await init_db()

    stop_event = asyncio.Event()
    scheduler_task = None
    if os.getenv("CHANT_SCHEDULER_ENABLED", "true").lower() == "true":
        scheduler_task = asyncio.create_task(scheduler_loop(stop_event))

    logger.info("application_started")
    yield

    # Shutdown
    logger.info("shutting_down")
    stop_event.set()
    if scheduler_task is not None:
        await scheduler_task
    await close_db()
    logger.info("shutdown_complete")


app = FastAPI(
    title="Chant",
    description="Tiered cell-voting tournament engine for large-group deliberation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routers ---
from chant.routes.users import router as users_router  # noqa: E402
from chant.routes.deliberations import router as deliberations_router  # noqa: E402
from chant.routes.cells import router as cells_router  # noqa: E402
from chant.routes.comments import router as comments_router  # noqa: E402
from chant.routes.revisions import router as revisions_router  # noqa: E402
from chant.routes.timers import router as timers_router  # noqa: E402

app.include_router(users_router)
app.include_router(deliberations_router)
app.include_router(cells_router)
app.include_router(comments_router)
app.include_router(revisions_router)
app.include_router(timers_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "chant"}
