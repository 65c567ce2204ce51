"""Unit tests for data models and natural keys."""

from finance_ingest.core.keys import (
    document_key,
    duplicate_key,
    ledger_key,
    message_key,
    storage_uri,
)
from finance_ingest.core.models import (
    IngestResult,
    MailMessage,
    MessageOutcome,
    parse_graph_datetime,
)


class TestKeys:
    """Tests for natural key derivation."""

    def test_key_formats(self):
        """Test message, document, storage and duplicate keys."""
        assert message_key("AAMk1") == "m365:AAMk1"
        assert document_key("AAMk1", "att1") == "m365:AAMk1:att1"
        assert storage_uri("AAMk1", "att1") == "m365://AAMk1/att1"
        assert duplicate_key("billing@acme.com", "INV-4821") == "dup:billing@acme.com:INV-4821"

    def test_ledger_key_stable(self):
        """Test the ledger key depends only on its natural-key fields."""
        first = ledger_key("email_ingest", "Invoice INV-4821", 123.45)
        assert first == ledger_key("email_ingest", "Invoice INV-4821", 123.45)
        assert first.startswith("email_ingest:")

    def test_ledger_key_distinguishes_amounts(self):
        """Test a different, zero or absent amount yields a different key."""
        keys = {
            ledger_key("email_ingest", "Invoice", 10.0),
            ledger_key("email_ingest", "Invoice", 10.5),
            ledger_key("email_ingest", "Invoice", 0.0),
            ledger_key("email_ingest", "Invoice", None),
        }
        assert len(keys) == 4


class TestMailMessage:
    """Tests for MailMessage.from_graph."""

    def test_missing_fields(self):
        """Test a sparse Graph payload yields safe defaults."""
        message = MailMessage.from_graph({"id": "m1"})
        assert message.subject == ""
        assert message.from_address == ""
        assert message.to_addresses == []
        assert message.received_at is None
        assert message.has_attachments is False

    def test_unparseable_date(self):
        """Test a malformed timestamp parses to None."""
        assert parse_graph_datetime("yesterday") is None
        assert parse_graph_datetime(None) is None


class TestIngestResult:
    """Tests for IngestResult aggregation."""

    def test_add_outcomes(self):
        """Test outcomes fold into counters and failures."""
        result = IngestResult(scanned=2)
        result.add(MessageOutcome("m1", created_message=True, created_docs=2, duplicate_candidate=True))
        result.add(MessageOutcome("m2", created_message=True, error="timeout"))

        assert result.created_messages == 2
        assert result.created_docs == 2
        assert result.duplicate_candidates == 1
        assert result.failures == [{"messageId": "m2", "error": "timeout"}]

    def test_to_dict_shape(self):
        """Test camelCase keys for callers."""
        assert set(IngestResult().to_dict()) == {
            "scanned",
            "createdMessages",
            "createdDocs",
            "createdLedgerEntries",
            "duplicateCandidates",
            "failures",
        }
