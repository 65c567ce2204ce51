"""
FastAPI application for finance email ingestion.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from finance_ingest.config import settings
from finance_ingest.core.database import Database
from finance_ingest.core.logging import configure_logging, get_logger
from finance_ingest.routers.finance import router as finance_router
from finance_ingest.scheduler import start_scheduler, stop_scheduler

log = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)
    log.info("application_starting")

    db = Database()
    db.init_schema()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("scheduler_disabled", reason="trigger runs via POST /finance/email-ingest or the CLI")

    yield

    # Shutdown
    if settings.scheduler_enabled:
        stop_scheduler()
    log.info("application_stopped")


app = FastAPI(
    title="Finance Email Ingestion",
    description="Invoice email ingestion and rule evaluation for the finance ledger",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(finance_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}
