"""
Data models for finance email ingestion.

Uses dataclasses for clean, typed data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from finance_ingest.core.logging import get_logger

log = get_logger(__name__)


class LedgerStatus(str, Enum):
    """Approval status of a ledger entry."""

    DRAFT = "draft"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    LOCKED = "locked"


class DuplicateStatus(str, Enum):
    """Review status of a duplicate invoice candidate."""

    PENDING_REVIEW = "pending_review"
    CONFIRMED_DUPLICATE = "confirmed_duplicate"
    FALSE_POSITIVE = "false_positive"


class ConnectionStatus(str, Enum):
    """Microsoft 365 mailbox connection state."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def parse_graph_datetime(value: str | None) -> datetime | None:
    """Parse a Graph timestamp like '2026-02-01T08:13:31Z'."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        log.warning("unparseable_graph_datetime", value=value)
        return None


# Graph payloads


@dataclass
class MailFolder:
    """A mailbox folder as listed by Graph."""

    id: str
    display_name: str = ""

    @classmethod
    def from_graph(cls, data: dict[str, Any]) -> "MailFolder":
        return cls(
            id=str(data.get("id") or ""),
            display_name=str(data.get("displayName") or ""),
        )


@dataclass
class MailMessage:
    """Projection of a Graph message used by ingestion."""

    id: str
    subject: str = ""
    from_address: str = ""
    to_addresses: list[str] = field(default_factory=list)
    received_at: datetime | None = None
    body_preview: str = ""
    has_attachments: bool = False
    internet_message_id: str | None = None

    @classmethod
    def from_graph(cls, data: dict[str, Any]) -> "MailMessage":
        """Create MailMessage from a Graph message resource."""
        sender = (data.get("from") or {}).get("emailAddress") or {}
        recipients = data.get("toRecipients") or []
        to_addresses = [
            str((r.get("emailAddress") or {}).get("address") or "")
            for r in recipients
            if isinstance(r, dict)
        ]
        return cls(
            id=str(data.get("id") or ""),
            subject=str(data.get("subject") or ""),
            from_address=str(sender.get("address") or ""),
            to_addresses=[a for a in to_addresses if a],
            received_at=parse_graph_datetime(data.get("receivedDateTime")),
            body_preview=str(data.get("bodyPreview") or ""),
            has_attachments=bool(data.get("hasAttachments")),
            internet_message_id=data.get("internetMessageId"),
        )


@dataclass
class MailAttachment:
    """A file attachment as listed by Graph (content is base64)."""

    id: str
    name: str = "attachment"
    content_type: str = "application/octet-stream"
    size: int = 0
    content_bytes: str = ""

    @classmethod
    def from_graph(cls, data: dict[str, Any]) -> "MailAttachment":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or "attachment"),
            content_type=str(data.get("contentType") or "application/octet-stream"),
            size=int(data.get("size") or 0),
            content_bytes=str(data.get("contentBytes") or ""),
        )


# Persisted entities


@dataclass
class IngestedMessage:
    """A mailbox message that passed the invoice filter."""

    message_key: str
    m365_message_id: str
    id: int | None = None
    subject: str = ""
    from_address: str | None = None
    to_address: str = ""
    received_at: datetime | None = None
    folder_path: str = ""
    body_excerpt: str = ""
    headers_snapshot: dict[str, Any] = field(default_factory=dict)
    attachment_ids: list[str] = field(default_factory=list)


@dataclass
class FinanceDocument:
    """An invoice attachment captured from email."""

    document_key: str
    id: int | None = None
    type: str = "invoice"
    filename: str = "attachment"
    mime: str = "application/octet-stream"
    file_hash_sha256: str = ""
    storage_uri: str = ""
    captured_at: datetime | None = None
    source: str = "m365_email"
    source_ref: str = ""
    supplier_name: str | None = None
    amount: float | None = None
    invoice_number: str | None = None


@dataclass
class DuplicateCandidate:
    """A suspected duplicate invoice awaiting human review."""

    duplicate_key: str
    invoice_number: str
    id: int | None = None
    supplier_name: str | None = None
    amount: float | None = None
    status: DuplicateStatus = DuplicateStatus.PENDING_REVIEW
    reason: dict[str, Any] = field(default_factory=dict)
    source_document_ref: str = ""
    existing_document_ref: str = ""


@dataclass
class LedgerEntry:
    """An expense posted to the finance ledger."""

    ledger_key: str
    description: str
    gross_amount: float
    id: int | None = None
    entry_date: datetime | None = None
    direction: str = "expense"
    currency: str = "GBP"
    payment_status: str = "unpaid"
    status: LedgerStatus = LedgerStatus.NEEDS_APPROVAL
    created_from: str = "email_ingest"
    linked_document_ids: list[str] = field(default_factory=list)
    category_id: int | None = None


@dataclass
class Counterparty:
    """A supplier known to the finance module."""

    name: str
    id: int | None = None
    aliases: list[str] = field(default_factory=list)
    trusted_supplier: bool = False


@dataclass
class Category:
    """A ledger category."""

    name: str
    id: int | None = None
    direction: str = "both"
    hmrc_bucket_id: str | None = None
    vat_treatment: str = "unknown"
    active: bool = True


@dataclass
class AuditLogEntry:
    """Append-only audit record."""

    entity_type: str
    entity_id: str
    action: str
    id: int | None = None
    actor_email: str = "system"
    reason: str = ""
    before_state: dict[str, Any] = field(default_factory=dict)
    after_state: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.now)


@dataclass
class MailboxConnection:
    """Stored Microsoft 365 connection and OAuth tokens."""

    id: int | None = None
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None


# Run results


@dataclass
class MessageOutcome:
    """What processing a single message produced."""

    message_id: str
    created_message: bool = False
    created_docs: int = 0
    created_ledger_entry: bool = False
    duplicate_candidate: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class IngestResult:
    """Aggregated counters for one ingestion run."""

    scanned: int = 0
    created_messages: int = 0
    created_docs: int = 0
    created_ledger_entries: int = 0
    duplicate_candidates: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    def add(self, outcome: MessageOutcome) -> None:
        """Fold a message outcome into the run totals."""
        self.created_messages += int(outcome.created_message)
        self.created_docs += outcome.created_docs
        self.created_ledger_entries += int(outcome.created_ledger_entry)
        self.duplicate_candidates += int(outcome.duplicate_candidate)
        if outcome.error is not None:
            self.failures.append({"messageId": outcome.message_id, "error": outcome.error})

    def counters(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "createdMessages": self.created_messages,
            "createdDocs": self.created_docs,
            "createdLedgerEntries": self.created_ledger_entries,
            "duplicateCandidates": self.duplicate_candidates,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape returned to callers."""
        return {**self.counters(), "failures": list(self.failures)}
