"""
Finance ingestion endpoints.

POST /finance/email-ingest: pull invoice emails into the finance ledger
POST /finance/seed: upsert default rules and categories
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from finance_ingest.config import settings
from finance_ingest.core.database import Database
from finance_ingest.core.logging import get_logger
from finance_ingest.processors.ingest import FinanceIngestProcessor
from finance_ingest.services.seed import seed_default_categories, seed_default_rules

log = get_logger(__name__)
router = APIRouter(prefix="/finance", tags=["finance"])


class EmailIngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Clamped to 1..100 by the processor
    max_messages: int | None = Field(default=None, alias="maxMessages")
    folder: str = Field(default_factory=lambda: settings.ingest_default_folder)


def _error_response(error: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"ok": False, "error": str(error)})


@router.post("/email-ingest")
def email_ingest(req: EmailIngestRequest | None = None):
    """Run one ingestion pass and return its counters."""
    req = req or EmailIngestRequest()
    try:
        result = FinanceIngestProcessor().process(
            max_messages=req.max_messages,
            folder=req.folder,
        )
    except Exception as e:
        log.error("finance_ingest_request_failed", error=str(e), error_type=type(e).__name__)
        return _error_response(e)

    return {"ok": True, **result.to_dict()}


@router.post("/seed")
def seed_defaults():
    """Upsert the default categories and rules (idempotent)."""
    try:
        db = Database()
        categories = seed_default_categories(db)
        rules = seed_default_rules(db)
    except Exception as e:
        log.error("finance_seed_failed", error=str(e))
        return _error_response(e)

    return {"ok": True, "categories": categories, "rules": rules}
