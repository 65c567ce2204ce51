"""Unit tests for the audit recorder."""

from datetime import datetime, timezone

from finance_ingest.core.models import IngestResult, MessageOutcome
from finance_ingest.services.audit import AuditRecorder


class TestAuditRecorder:
    """Tests for AuditRecorder.record_run."""

    def test_record_run(self, mock_db):
        """Test the run summary is written as one append-only record."""
        result = IngestResult(scanned=3)
        result.add(MessageOutcome("m1", created_message=True, created_ledger_entry=True))
        result.add(MessageOutcome("m2", error="boom"))
        occurred_at = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)

        mock_db.add_audit_log.return_value = 17
        audit_id = AuditRecorder(mock_db).record_run(result, "Inbox", 30, occurred_at=occurred_at)

        assert audit_id == 17
        entry = mock_db.add_audit_log.call_args.args[0]
        assert entry.entity_type == "finance_ingest"
        assert entry.entity_id == "email:2026-02-01T09:00:00+00:00"
        assert entry.action == "email_ingest_run"
        assert entry.actor_email == "system"
        assert entry.reason == "scheduled_or_manual_ingest"
        assert entry.before_state == {}
        assert entry.after_state == {
            "scanned": 3,
            "createdMessages": 1,
            "createdDocs": 0,
            "createdLedgerEntries": 1,
            "duplicateCandidates": 0,
            "failures": [{"messageId": "m2", "error": "boom"}],
        }
        assert entry.metadata == {"folder": "Inbox", "maxMessages": 30}
        assert entry.occurred_at == occurred_at

    def test_default_timestamp_is_utc(self, mock_db):
        """Test occurred_at defaults to an aware UTC timestamp."""
        entry = AuditRecorder(mock_db).build_entry(IngestResult(), "Inbox", 30)
        assert entry.occurred_at.tzinfo is not None
        assert entry.entity_id == f"email:{entry.occurred_at.isoformat()}"
