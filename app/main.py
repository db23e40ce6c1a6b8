import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import app.models  # noqa: F401

from app.core.app_logger import setup_logging
from app.core.config import settings
from app.core.deps import get_sweeper

# Routers
from app.routers.transactions import router as transactions_router
from app.routers.organizer_transactions import router as organizer_transactions_router
from app.routers.admin_jobs import router as admin_jobs_router

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    task = None
    if settings.SWEEPER_ENABLED:
        task = asyncio.create_task(get_sweeper().run_forever(settings.SWEEP_INTERVAL_SECONDS))
        logger.info("Transaction sweeper scheduled every %ss", settings.SWEEP_INTERVAL_SECONDS)

    yield

    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


app = FastAPI(title="Ticketing Transactions", lifespan=lifespan)

# CORS for the frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Customer
app.include_router(transactions_router)

# Organizer
app.include_router(organizer_transactions_router)

# Admin
app.include_router(admin_jobs_router)
