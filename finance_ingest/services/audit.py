"""
Audit trail for ingestion runs.
"""

from datetime import datetime, timezone

from finance_ingest.core.database import Database
from finance_ingest.core.logging import get_logger
from finance_ingest.core.models import AuditLogEntry, IngestResult

log = get_logger(__name__)


class AuditRecorder:
    """Writes one append-only audit record per ingestion run."""

    ENTITY_TYPE = "finance_ingest"
    ACTION = "email_ingest_run"
    ACTOR = "system"
    REASON = "scheduled_or_manual_ingest"

    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def build_entry(
        self,
        result: IngestResult,
        folder: str,
        max_messages: int,
        occurred_at: datetime | None = None,
    ) -> AuditLogEntry:
        occurred_at = occurred_at or datetime.now(timezone.utc)
        return AuditLogEntry(
            entity_type=self.ENTITY_TYPE,
            entity_id=f"email:{occurred_at.isoformat()}",
            action=self.ACTION,
            actor_email=self.ACTOR,
            reason=self.REASON,
            before_state={},
            after_state=result.to_dict(),
            metadata={"folder": folder, "maxMessages": max_messages},
            occurred_at=occurred_at,
        )

    def record_run(
        self,
        result: IngestResult,
        folder: str,
        max_messages: int,
        occurred_at: datetime | None = None,
    ) -> int:
        """
        Persist the run summary.

        Args:
            result: Counters and failures of the run
            folder: Folder name the run was asked to scan
            max_messages: Effective (clamped) message limit

        Returns:
            Audit record id
        """
        entry = self.build_entry(result, folder, max_messages, occurred_at)
        audit_id = self.db.add_audit_log(entry)
        log.info("ingest_run_audited", audit_id=audit_id, failures=len(result.failures))
        return audit_id
