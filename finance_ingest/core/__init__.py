"""Core modules for finance email ingestion."""

from .logging import bind_context, clear_context, configure_logging, get_logger
from .errors import (
    ConfigurationError,
    FinanceIngestError,
    MailboxError,
    MailboxNotConnectedError,
    TokenRefreshError,
)
from .models import (
    AuditLogEntry,
    DuplicateCandidate,
    FinanceDocument,
    IngestedMessage,
    IngestResult,
    LedgerEntry,
    LedgerStatus,
    MailAttachment,
    MailFolder,
    MailMessage,
)
from .database import Database

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "ConfigurationError",
    "FinanceIngestError",
    "MailboxError",
    "MailboxNotConnectedError",
    "TokenRefreshError",
    "AuditLogEntry",
    "DuplicateCandidate",
    "FinanceDocument",
    "IngestedMessage",
    "IngestResult",
    "LedgerEntry",
    "LedgerStatus",
    "MailAttachment",
    "MailFolder",
    "MailMessage",
    "Database",
]
