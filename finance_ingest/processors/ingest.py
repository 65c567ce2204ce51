"""
Finance email ingestion processor.

Pulls recent messages from a Microsoft 365 folder, keeps the ones that look
like invoices, records messages and attachments under natural keys, flags
suspected duplicate invoices and posts one ledger entry per logical expense.

Every write is guarded by a natural key, so running twice over the same
mailbox produces no new rows. Each message is processed in isolation: a
failure is logged and reported, and the run carries on.
"""

import argparse
import sys
from collections.abc import Callable
from datetime import datetime, timezone

from finance_ingest.config import settings
from finance_ingest.core.database import Database
from finance_ingest.core.errors import FinanceIngestError
from finance_ingest.core.keys import (
    LEDGER_SOURCE_EMAIL,
    document_key,
    duplicate_key,
    ledger_key,
    message_key,
    storage_uri,
)
from finance_ingest.core.logging import bind_context, clear_context, configure_logging, get_logger
from finance_ingest.core.models import (
    DuplicateCandidate,
    FinanceDocument,
    IngestedMessage,
    IngestResult,
    LedgerEntry,
    LedgerStatus,
    MailMessage,
    MessageOutcome,
)
from finance_ingest.extraction import (
    content_fingerprint,
    detect_currency,
    extract_amount,
    extract_invoice_number,
    has_invoice_hint,
)
from finance_ingest.processors.base import BaseProcessor
from finance_ingest.rules import FinanceRule, RuleContext, RuleResult, RuleScope, evaluate_rules
from finance_ingest.services.audit import AuditRecorder
from finance_ingest.services.credentials import TokenProvider
from finance_ingest.services.graph import GraphMailClient
from finance_ingest.services.seed import seed_default_categories, seed_default_rules

log = get_logger(__name__)

MAX_MESSAGES_CAP = 100
RULE_LIMIT = 100


def clamp_max_messages(value: int | None) -> int:
    """0 or None falls back to the default; the result is always within 1..100."""
    return max(1, min(MAX_MESSAGES_CAP, int(value or settings.ingest_default_max_messages)))


class FinanceIngestProcessor(BaseProcessor):
    """
    Ingest invoice emails into the finance ledger.

    The mail client factory receives an access token and returns a context
    manager exposing list_folders, list_messages and list_attachments.
    """

    FALLBACK_FOLDER_ID = "inbox"
    DEFAULT_DESCRIPTION = "Invoice from email"
    RULE_SCOPES = (RuleScope.CATEGORISATION, RuleScope.APPROVAL)

    def __init__(
        self,
        db: Database | None = None,
        token_provider: TokenProvider | None = None,
        mail_client_factory: Callable[[str], GraphMailClient] | None = None,
        recorder: AuditRecorder | None = None,
    ):
        self.db = db or Database()
        self.token_provider = token_provider or TokenProvider(self.db)
        self.mail_client_factory = mail_client_factory or GraphMailClient
        self.recorder = recorder or AuditRecorder(self.db)

    def process(self, max_messages: int | None = None, folder: str | None = None) -> IngestResult:
        """
        Run one ingestion pass.

        Args:
            max_messages: Messages to fetch, clamped to 1..100 (default 30)
            folder: Folder display name; unknown names fall back to the inbox

        Returns:
            IngestResult with counters and per-message failures

        Raises:
            ConfigurationError: Mailbox not connected or token refresh failed
            MailboxError: Folders or messages could not be listed
        """
        max_messages = clamp_max_messages(max_messages)
        folder = folder or settings.ingest_default_folder
        log.info("finance_ingest_started", folder=folder, max_messages=max_messages)

        access_token = self.token_provider.get_access_token()
        result = IngestResult()

        with self.mail_client_factory(access_token) as mailbox:
            folder_id = self._resolve_folder_id(mailbox, folder)
            messages = mailbox.list_messages(folder_id, top=max_messages)
            result.scanned = len(messages)
            rules = self._load_rules()

            for message in messages:
                outcome = MessageOutcome(message_id=message.id)
                try:
                    bind_context(message_id=message.id)
                    self._process_message(mailbox, message, folder, rules, outcome)
                except Exception as e:
                    log.error("finance_ingest_message_error", error=str(e), error_type=type(e).__name__)
                    outcome.error = str(e) or type(e).__name__
                finally:
                    clear_context()
                result.add(outcome)

        self.recorder.record_run(result, folder, max_messages)
        log.info("finance_ingest_complete", failed=len(result.failures), **result.counters())
        return result

    def _resolve_folder_id(self, mailbox, folder: str) -> str:
        """Case-insensitive display-name lookup; the well-known inbox otherwise."""
        wanted = folder.lower()
        for candidate in mailbox.list_folders():
            if candidate.display_name.lower() == wanted and candidate.id:
                return candidate.id
        log.info("folder_not_found_using_inbox", folder=folder)
        return self.FALLBACK_FOLDER_ID

    def _load_rules(self) -> dict[RuleScope, list[FinanceRule]]:
        return {scope: self.db.get_enabled_rules(scope, limit=RULE_LIMIT) for scope in self.RULE_SCOPES}

    def _process_message(
        self,
        mailbox,
        message: MailMessage,
        folder: str,
        rules: dict[RuleScope, list[FinanceRule]],
        outcome: MessageOutcome,
    ) -> None:
        """Ingest a single message, recording what was created on the outcome."""
        subject = message.subject
        body_excerpt = message.body_preview[: settings.ingest_body_excerpt_chars]

        if not message.has_attachments and not has_invoice_hint(subject, body_excerpt):
            return
        if not message.id:
            return

        received_at = message.received_at or datetime.now(timezone.utc)
        record_id, outcome.created_message = self._ensure_message(
            message, subject, body_excerpt, received_at, folder
        )

        attachment_ids: list[str] = []
        if message.has_attachments:
            attachment_ids = self._capture_attachments(mailbox, message, subject, body_excerpt, outcome)
        self.db.update_message_attachments(record_id, attachment_ids)

        invoice_number = extract_invoice_number(subject, body_excerpt)
        amount = extract_amount(subject, body_excerpt)

        if invoice_number:
            existing = self.db.find_invoice_document(
                invoice_number,
                supplier_name=message.from_address or None,
                exclude_source_ref=message.id,
            )
            if existing:
                outcome.duplicate_candidate = self._flag_duplicate(
                    message, invoice_number, amount, existing
                )
                return

        context = RuleContext(
            subject=subject,
            body_excerpt=body_excerpt,
            from_address=message.from_address,
            amount=amount,
        )
        category_matches = evaluate_rules(rules.get(RuleScope.CATEGORISATION, []), context)
        approval_matches = evaluate_rules(rules.get(RuleScope.APPROVAL, []), context)

        outcome.created_ledger_entry = self._post_ledger_entry(
            message,
            subject=subject,
            amount=amount,
            currency=detect_currency(subject, body_excerpt) or settings.default_currency,
            entry_date=received_at,
            attachment_ids=attachment_ids,
            category_matches=category_matches,
            approval_matches=approval_matches,
        )

    def _ensure_message(
        self,
        message: MailMessage,
        subject: str,
        body_excerpt: str,
        received_at: datetime,
        folder: str,
    ) -> tuple[int, bool]:
        """Return (row id, created) for the message, inserting it when new."""
        key = message_key(message.id)
        existing = self.db.get_message_by_key(key)
        if existing and existing.id is not None:
            return existing.id, False

        return self.db.insert_message(IngestedMessage(
            message_key=key,
            m365_message_id=message.id,
            subject=subject,
            from_address=message.from_address or None,
            to_address=", ".join(message.to_addresses),
            received_at=received_at,
            folder_path=folder,
            body_excerpt=body_excerpt,
            headers_snapshot={"internetMessageId": message.internet_message_id},
            attachment_ids=[],
        ))

    def _capture_attachments(
        self,
        mailbox,
        message: MailMessage,
        subject: str,
        body_excerpt: str,
        outcome: MessageOutcome,
    ) -> list[str]:
        """
        Record one document per attachment.

        Each created document is counted on the outcome as soon as it is written.

        Returns:
            Attachment ids seen in this pass
        """
        attachments = mailbox.list_attachments(message.id, top=settings.ingest_attachment_limit)
        invoice_number = extract_invoice_number(subject, body_excerpt)
        amount = extract_amount(subject, body_excerpt)

        attachment_ids: list[str] = []
        for attachment in attachments:
            if not attachment.id:
                continue
            attachment_ids.append(attachment.id)

            key = document_key(message.id, attachment.id)
            if self.db.document_exists(key):
                continue

            document = FinanceDocument(
                document_key=key,
                filename=attachment.name,
                mime=attachment.content_type,
                file_hash_sha256=content_fingerprint(
                    message.id, attachment.id, attachment.name, attachment.content_bytes
                ),
                storage_uri=storage_uri(message.id, attachment.id),
                captured_at=datetime.now(timezone.utc),
                source_ref=message.id,
                supplier_name=message.from_address or None,
                amount=amount,
                invoice_number=invoice_number,
            )
            if self.db.insert_document(document):
                outcome.created_docs += 1

        return attachment_ids

    def _flag_duplicate(
        self,
        message: MailMessage,
        invoice_number: str,
        amount: float | None,
        existing: FinanceDocument,
    ) -> bool:
        """Create a duplicate candidate unless one is already pending. Returns True if created."""
        key = duplicate_key(message.from_address, invoice_number)
        if self.db.duplicate_exists(key):
            log.info("duplicate_candidate_exists", duplicate_key=key)
            return False

        if message.from_address:
            reasons, confidence = ["invoice_number_match", "supplier_match"], 0.98
        else:
            reasons, confidence = ["invoice_number_match", "invoice_number_only"], 0.9

        created = self.db.insert_duplicate_candidate(DuplicateCandidate(
            duplicate_key=key,
            supplier_name=message.from_address or None,
            invoice_number=invoice_number,
            amount=amount,
            reason={"reasons": reasons, "confidence": confidence},
            source_document_ref=message_key(message.id),
            existing_document_ref=existing.source_ref or str(existing.id),
        ))
        log.info(
            "duplicate_invoice_detected",
            invoice_number=invoice_number,
            existing_document_ref=existing.source_ref or str(existing.id),
            created=created,
        )
        return created

    def _post_ledger_entry(
        self,
        message: MailMessage,
        subject: str,
        amount: float | None,
        currency: str,
        entry_date: datetime,
        attachment_ids: list[str],
        category_matches: list[RuleResult],
        approval_matches: list[RuleResult],
    ) -> bool:
        """Create the ledger entry for a message unless it exists. Returns True if created."""
        description = subject or self.DEFAULT_DESCRIPTION
        # A zero or missing amount matches on description alone
        if self.db.ledger_entry_exists(LEDGER_SOURCE_EMAIL, description, amount or None):
            return False

        auto_approve = any(match.actions.auto_approve for match in approval_matches)
        if not auto_approve and message.from_address:
            counterparty = self.db.find_counterparty(message.from_address)
            auto_approve = bool(counterparty and counterparty.trusted_supplier)

        category_id = None
        if category_matches and category_matches[0].actions.set_category_name:
            category_id = self.db.get_category_id(category_matches[0].actions.set_category_name)

        entry = LedgerEntry(
            ledger_key=ledger_key(LEDGER_SOURCE_EMAIL, description, amount),
            description=description,
            gross_amount=amount or 0.0,
            entry_date=entry_date,
            currency=currency,
            status=LedgerStatus.APPROVED if auto_approve else LedgerStatus.NEEDS_APPROVAL,
            created_from=LEDGER_SOURCE_EMAIL,
            linked_document_ids=[document_key(message.id, a) for a in attachment_ids],
            category_id=category_id,
        )
        created = self.db.insert_ledger_entry(entry)
        if created:
            log.info(
                "ledger_entry_created",
                status=entry.status.value,
                gross_amount=entry.gross_amount,
                category_id=category_id,
            )
        return created


def main():
    """CLI entry point for a one-off ingestion run."""
    parser = argparse.ArgumentParser(
        description="Ingest invoice emails from Microsoft 365 into the finance ledger"
    )
    parser.add_argument(
        "--max-messages",
        type=int,
        default=settings.ingest_default_max_messages,
        help="Messages to fetch (1-100, default: %(default)s)",
    )
    parser.add_argument(
        "--folder",
        default=settings.ingest_default_folder,
        help="Mail folder display name (default: %(default)s)",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create database tables before ingesting",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Upsert default rules and categories before ingesting",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()

    configure_logging(log_level=args.log_level, json_output=settings.log_json)

    db = Database()
    if args.init_db:
        db.init_schema()
    if args.seed:
        seed_default_categories(db)
        seed_default_rules(db)

    try:
        result = FinanceIngestProcessor(db=db).process(
            max_messages=args.max_messages,
            folder=args.folder,
        )
    except FinanceIngestError as e:
        log.error("finance_ingest_failed", error=str(e))
        sys.exit(1)

    log.info("finance_ingest_summary", failures=result.failures, **result.counters())


if __name__ == "__main__":
    main()
