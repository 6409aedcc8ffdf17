"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import accounts, analytics, dashboard, plaid, transactions
from config import settings
from database import init_db
from logging_config import setup_logging
from services.scheduler_service import get_scheduler

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the background scheduler when enabled."""
    init_db()

    scheduler = None
    if settings.SYNC_SCHEDULER_ENABLED:
        scheduler = get_scheduler()
        scheduler.start_all()
    else:
        logger.info("Background scheduler disabled (SYNC_SCHEDULER_ENABLED=false)")

    yield

    if scheduler is not None:
        scheduler.shutdown()


app = FastAPI(
    title="Finance Dashboard",
    description="Personal finance tracking over Plaid-linked bank accounts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(transactions.router)
app.include_router(plaid.router)
app.include_router(accounts.router)
app.include_router(analytics.router)
app.include_router(dashboard.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
