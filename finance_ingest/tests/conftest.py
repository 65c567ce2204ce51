"""
Shared pytest fixtures for finance_ingest tests.

FakeStore and FakeMailbox stand in for PostgreSQL and Microsoft Graph so the
ingestion pipeline can run end to end in memory.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from finance_ingest.core.models import (
    AuditLogEntry,
    Counterparty,
    DuplicateCandidate,
    FinanceDocument,
    IngestedMessage,
    LedgerEntry,
    MailAttachment,
    MailFolder,
    MailMessage,
)
from finance_ingest.processors.ingest import FinanceIngestProcessor
from finance_ingest.rules.models import FinanceRule, RuleScope
from finance_ingest.services.audit import AuditRecorder


class FakeStore:
    """In-memory implementation of the Database methods used by ingestion."""

    def __init__(self):
        self.messages: dict[str, IngestedMessage] = {}
        self.documents: dict[str, FinanceDocument] = {}
        self.duplicates: dict[str, DuplicateCandidate] = {}
        self.ledger: dict[str, LedgerEntry] = {}
        self.rules: list[FinanceRule] = []
        self.categories: dict[str, int] = {}
        self.counterparties: list[Counterparty] = []
        self.audit_logs: list[AuditLogEntry] = []
        self._next_id = 1

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id - 1

    def get_enabled_rules(self, scope: RuleScope, limit: int = 100) -> list[FinanceRule]:
        rules = [r for r in self.rules if r.scope == scope and r.enabled]
        return sorted(rules, key=lambda r: r.sort_priority)[:limit]

    def get_message_by_key(self, message_key: str) -> IngestedMessage | None:
        return self.messages.get(message_key)

    def insert_message(self, message: IngestedMessage) -> tuple[int, bool]:
        if message.message_key in self.messages:
            return self.messages[message.message_key].id, False
        message.id = self._id()
        self.messages[message.message_key] = message
        return message.id, True

    def update_message_attachments(self, message_id: int, attachment_ids: list[str]) -> None:
        for message in self.messages.values():
            if message.id == message_id:
                message.attachment_ids = list(attachment_ids)

    def document_exists(self, document_key: str) -> bool:
        return document_key in self.documents

    def insert_document(self, document: FinanceDocument) -> bool:
        if document.document_key in self.documents:
            return False
        document.id = self._id()
        self.documents[document.document_key] = document
        return True

    def find_invoice_document(self, invoice_number, supplier_name=None, exclude_source_ref=None):
        for document in sorted(self.documents.values(), key=lambda d: d.id):
            if document.invoice_number != invoice_number:
                continue
            if supplier_name and document.supplier_name != supplier_name:
                continue
            if exclude_source_ref and document.source_ref == exclude_source_ref:
                continue
            return document
        return None

    def duplicate_exists(self, duplicate_key: str) -> bool:
        return duplicate_key in self.duplicates

    def insert_duplicate_candidate(self, candidate: DuplicateCandidate) -> bool:
        if candidate.duplicate_key in self.duplicates:
            return False
        candidate.id = self._id()
        self.duplicates[candidate.duplicate_key] = candidate
        return True

    def ledger_entry_exists(self, created_from, description, gross_amount=None) -> bool:
        return any(
            entry.created_from == created_from
            and entry.description == description
            and (gross_amount is None or entry.gross_amount == gross_amount)
            for entry in self.ledger.values()
        )

    def insert_ledger_entry(self, entry: LedgerEntry) -> bool:
        if entry.ledger_key in self.ledger:
            return False
        entry.id = self._id()
        self.ledger[entry.ledger_key] = entry
        return True

    def get_category_id(self, name: str) -> int | None:
        return self.categories.get(name)

    def find_counterparty(self, address: str) -> Counterparty | None:
        matches = [c for c in self.counterparties if c.name == address or address in c.aliases]
        matches.sort(key=lambda c: not c.trusted_supplier)
        return matches[0] if matches else None

    def add_audit_log(self, entry: AuditLogEntry) -> int:
        entry.id = self._id()
        self.audit_logs.append(entry)
        return entry.id


class FakeMailbox:
    """In-memory Graph mailbox; usable as the processor's mail client."""

    def __init__(self, folders=None, messages=None, attachments=None):
        self.folders: list[MailFolder] = folders if folders is not None else [
            MailFolder(id="folder-inbox", display_name="Inbox"),
        ]
        self.messages: list[MailMessage] = messages or []
        self.attachments: dict[str, list[MailAttachment]] = attachments or {}
        self.failing_attachment_ids: set[str] = set()
        self.requested_folder_ids: list[str] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    def list_folders(self) -> list[MailFolder]:
        return list(self.folders)

    def list_messages(self, folder_id, top, order_by="receivedDateTime desc", select=None):
        self.requested_folder_ids.append(folder_id)
        return list(self.messages[:top])

    def list_attachments(self, message_id, top, select=None):
        if message_id in self.failing_attachment_ids:
            raise RuntimeError(f"attachments unavailable for {message_id}")
        return list(self.attachments.get(message_id, [])[:top])


def make_message(
    message_id: str = "msg-1",
    subject: str = "Invoice INV-4821",
    body_preview: str = "Total £123.45",
    from_address: str = "billing@acme.com",
    has_attachments: bool = False,
) -> MailMessage:
    """Build a Graph message projection for tests."""
    return MailMessage(
        id=message_id,
        subject=subject,
        from_address=from_address,
        to_addresses=["finance@example.co.uk"],
        received_at=datetime(2026, 2, 1, 8, 13, 31, tzinfo=timezone.utc),
        body_preview=body_preview,
        has_attachments=has_attachments,
        internet_message_id=f"<{message_id}@acme.com>",
    )


@pytest.fixture
def store() -> FakeStore:
    """Empty in-memory store."""
    return FakeStore()


@pytest.fixture
def mailbox() -> FakeMailbox:
    """Mailbox with an Inbox folder and no messages."""
    return FakeMailbox()


@pytest.fixture
def token_provider():
    """Token provider that always hands out a fixed token."""
    provider = MagicMock()
    provider.get_access_token.return_value = "test-access-token"
    return provider


@pytest.fixture
def processor(store, mailbox, token_provider) -> FinanceIngestProcessor:
    """Processor wired to the in-memory store and mailbox."""
    return FinanceIngestProcessor(
        db=store,
        token_provider=token_provider,
        mail_client_factory=lambda access_token: mailbox,
        recorder=AuditRecorder(store),
    )


@pytest.fixture
def sample_message() -> MailMessage:
    """Invoice email without attachments."""
    return make_message()


@pytest.fixture
def mock_db():
    """Mock database for testing without real DB connection."""
    db = MagicMock()
    db.get_mailbox_connection.return_value = None
    db.add_audit_log.return_value = 1
    return db


@pytest.fixture
def message_factory():
    """Factory for Graph message projections."""
    return make_message
