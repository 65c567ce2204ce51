"""
Database repository for finance ingestion.

Provides PostgreSQL operations for messages, documents, rules, ledger
entries and the audit trail. Natural keys are backed by UNIQUE constraints;
an insert that hits ON CONFLICT DO NOTHING reports "already exists".
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json, Jsonb

from finance_ingest.config import settings
from finance_ingest.core.logging import get_logger
from finance_ingest.core.models import (
    AuditLogEntry,
    Category,
    ConnectionStatus,
    Counterparty,
    DuplicateCandidate,
    FinanceDocument,
    IngestedMessage,
    LedgerEntry,
    MailboxConnection,
)
from finance_ingest.rules.models import FinanceRule, RuleScope, conditions_to_dict

log = get_logger(__name__)


SCHEMA_SQL = """
-- mailbox_connections: Microsoft 365 connection and OAuth tokens
CREATE TABLE IF NOT EXISTS mailbox_connections (
    id SERIAL PRIMARY KEY,
    status VARCHAR(20) NOT NULL DEFAULT 'disconnected',
    access_token TEXT,
    refresh_token TEXT,
    token_expires_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

-- finance_email_messages: one row per provider message
CREATE TABLE IF NOT EXISTS finance_email_messages (
    id SERIAL PRIMARY KEY,
    message_key VARCHAR(512) UNIQUE NOT NULL,
    m365_message_id VARCHAR(512) NOT NULL,
    subject TEXT,
    from_address VARCHAR(320),
    to_address TEXT,
    received_at TIMESTAMPTZ,
    folder_path VARCHAR(255),
    body_excerpt TEXT,
    headers_snapshot JSONB,
    attachment_ids JSONB NOT NULL DEFAULT '[]',
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- finance_categories: ledger categories
CREATE TABLE IF NOT EXISTS finance_categories (
    id SERIAL PRIMARY KEY,
    name VARCHAR(200) UNIQUE NOT NULL,
    direction VARCHAR(20) NOT NULL DEFAULT 'both',
    hmrc_bucket_id VARCHAR(100),
    vat_treatment VARCHAR(30) NOT NULL DEFAULT 'unknown',
    active BOOLEAN NOT NULL DEFAULT TRUE
);

-- finance_documents: one row per (message, attachment)
CREATE TABLE IF NOT EXISTS finance_documents (
    id SERIAL PRIMARY KEY,
    document_key VARCHAR(1024) UNIQUE NOT NULL,
    type VARCHAR(20) NOT NULL DEFAULT 'invoice',
    filename TEXT,
    mime VARCHAR(255),
    file_hash_sha256 CHAR(64),
    storage_uri TEXT,
    captured_at TIMESTAMPTZ DEFAULT NOW(),
    source VARCHAR(20) NOT NULL DEFAULT 'm365_email',
    source_ref VARCHAR(512),
    supplier_name VARCHAR(320),
    amount DOUBLE PRECISION,
    invoice_number VARCHAR(255)
);

CREATE INDEX IF NOT EXISTS idx_documents_invoice ON finance_documents(invoice_number, supplier_name);

-- finance_rules: ordered categorisation/approval rules
CREATE TABLE IF NOT EXISTS finance_rules (
    id SERIAL PRIMARY KEY,
    name VARCHAR(200) UNIQUE NOT NULL,
    scope VARCHAR(30) NOT NULL,
    priority INTEGER DEFAULT 100,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    conditions JSONB NOT NULL DEFAULT '{}',
    actions JSONB NOT NULL DEFAULT '{}',
    stop_processing BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS idx_rules_scope ON finance_rules(scope, enabled, priority);

-- finance_counterparties: suppliers, trusted ones bypass approval
CREATE TABLE IF NOT EXISTS finance_counterparties (
    id SERIAL PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    aliases JSONB NOT NULL DEFAULT '[]',
    trusted_supplier BOOLEAN NOT NULL DEFAULT FALSE
);

-- finance_duplicate_candidates: suspected duplicate invoices
CREATE TABLE IF NOT EXISTS finance_duplicate_candidates (
    id SERIAL PRIMARY KEY,
    duplicate_key VARCHAR(1024) UNIQUE NOT NULL,
    supplier_name VARCHAR(320),
    invoice_number VARCHAR(255),
    amount DOUBLE PRECISION,
    status VARCHAR(30) NOT NULL DEFAULT 'pending_review',
    reason JSONB,
    source_document_ref VARCHAR(1024),
    existing_document_ref VARCHAR(1024),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- finance_ledger_entries: expenses posted from email
CREATE TABLE IF NOT EXISTS finance_ledger_entries (
    id SERIAL PRIMARY KEY,
    ledger_key VARCHAR(255) UNIQUE NOT NULL,
    entry_date TIMESTAMPTZ,
    direction VARCHAR(10) NOT NULL,
    description TEXT,
    gross_amount DOUBLE PRECISION NOT NULL,
    currency VARCHAR(3) NOT NULL DEFAULT 'GBP',
    payment_status VARCHAR(20) NOT NULL DEFAULT 'unpaid',
    status VARCHAR(20) NOT NULL DEFAULT 'draft',
    created_from VARCHAR(30) NOT NULL DEFAULT 'manual',
    linked_document_ids JSONB NOT NULL DEFAULT '[]',
    category_id INTEGER REFERENCES finance_categories(id),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_ledger_natural ON finance_ledger_entries(created_from, description);

-- finance_audit_logs: append-only audit trail
CREATE TABLE IF NOT EXISTS finance_audit_logs (
    id SERIAL PRIMARY KEY,
    entity_type VARCHAR(50),
    entity_id VARCHAR(255),
    action VARCHAR(50),
    actor_email VARCHAR(320),
    reason TEXT,
    before_state JSONB,
    after_state JSONB,
    metadata JSONB,
    occurred_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_audit_action ON finance_audit_logs(action, occurred_at DESC);
"""


class Database:
    """PostgreSQL operations for the finance ingestion tables."""

    def __init__(self, connection_string: str | None = None):
        """
        Initialize database connection.

        Args:
            connection_string: PostgreSQL connection URL. Uses settings if not provided.
        """
        self.connection_string = connection_string or settings.database_url

    @contextmanager
    def get_connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection as a context manager."""
        conn = psycopg.connect(self.connection_string, row_factory=dict_row)
        try:
            yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Initialize database schema (create tables if not exist)."""
        with self.get_connection() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()
            log.info("database_schema_initialized")

    # Mailbox connection

    def get_mailbox_connection(self) -> MailboxConnection | None:
        """Fetch the (single) mailbox connection row."""
        sql = """
        SELECT id, status, access_token, refresh_token, token_expires_at
        FROM mailbox_connections
        ORDER BY id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql).fetchone()
            if not row:
                return None
            try:
                status = ConnectionStatus(row["status"])
            except ValueError:
                status = ConnectionStatus.DISCONNECTED
            return MailboxConnection(
                id=row["id"],
                status=status,
                access_token=row["access_token"],
                refresh_token=row["refresh_token"],
                token_expires_at=row["token_expires_at"],
            )

    def update_mailbox_tokens(
        self,
        connection_id: int,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> None:
        """Persist refreshed OAuth tokens."""
        sql = """
        UPDATE mailbox_connections
        SET access_token = %s,
            refresh_token = %s,
            token_expires_at = %s,
            updated_at = NOW()
        WHERE id = %s
        """
        with self.get_connection() as conn:
            conn.execute(sql, (access_token, refresh_token, expires_at, connection_id))
            conn.commit()
            log.info("mailbox_tokens_updated", expires_at=expires_at.isoformat())

    # Messages

    def get_message_by_key(self, message_key: str) -> IngestedMessage | None:
        """Fetch an ingested message by its natural key."""
        sql = """
        SELECT id, message_key, m365_message_id, subject, from_address, to_address,
               received_at, folder_path, body_excerpt, headers_snapshot, attachment_ids
        FROM finance_email_messages
        WHERE message_key = %s
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (message_key,)).fetchone()
            if not row:
                return None
            return IngestedMessage(
                id=row["id"],
                message_key=row["message_key"],
                m365_message_id=row["m365_message_id"],
                subject=row["subject"] or "",
                from_address=row["from_address"],
                to_address=row["to_address"] or "",
                received_at=row["received_at"],
                folder_path=row["folder_path"] or "",
                body_excerpt=row["body_excerpt"] or "",
                headers_snapshot=row["headers_snapshot"] or {},
                attachment_ids=row["attachment_ids"] or [],
            )

    def insert_message(self, message: IngestedMessage) -> tuple[int, bool]:
        """
        Insert an ingested message unless its key already exists.

        Returns:
            (message id, True if this call created the row)
        """
        sql = """
        INSERT INTO finance_email_messages (
            message_key, m365_message_id, subject, from_address, to_address,
            received_at, folder_path, body_excerpt, headers_snapshot, attachment_ids
        ) VALUES (
            %(message_key)s, %(m365_message_id)s, %(subject)s, %(from_address)s,
            %(to_address)s, %(received_at)s, %(folder_path)s, %(body_excerpt)s,
            %(headers_snapshot)s, %(attachment_ids)s
        )
        ON CONFLICT (message_key) DO NOTHING
        RETURNING id
        """
        params = {
            "message_key": message.message_key,
            "m365_message_id": message.m365_message_id,
            "subject": message.subject,
            "from_address": message.from_address,
            "to_address": message.to_address,
            "received_at": message.received_at,
            "folder_path": message.folder_path,
            "body_excerpt": message.body_excerpt,
            "headers_snapshot": Json(message.headers_snapshot),
            "attachment_ids": Json(message.attachment_ids),
        }

        with self.get_connection() as conn:
            result = conn.execute(sql, params).fetchone()
            conn.commit()

            if result:
                log.info("message_inserted", message_id=result["id"], message_key=message.message_key)
                return result["id"], True

            # Lost the race to another run, fetch existing ID
            existing = conn.execute(
                "SELECT id FROM finance_email_messages WHERE message_key = %s",
                (message.message_key,),
            ).fetchone()
            if not existing:
                raise RuntimeError(f"Failed to insert or fetch message: {message.message_key}")
            return existing["id"], False

    def update_message_attachments(self, message_id: int, attachment_ids: list[str]) -> None:
        """Replace the attachment id list of a message."""
        with self.get_connection() as conn:
            conn.execute(
                "UPDATE finance_email_messages SET attachment_ids = %s WHERE id = %s",
                (Json(attachment_ids), message_id),
            )
            conn.commit()

    # Documents

    def document_exists(self, document_key: str) -> bool:
        """Check if a document already exists by document_key."""
        with self.get_connection() as conn:
            result = conn.execute(
                "SELECT 1 FROM finance_documents WHERE document_key = %s LIMIT 1",
                (document_key,),
            ).fetchone()
            return result is not None

    def insert_document(self, document: FinanceDocument) -> bool:
        """Insert a finance document. Returns False if the key already existed."""
        sql = """
        INSERT INTO finance_documents (
            document_key, type, filename, mime, file_hash_sha256, storage_uri,
            captured_at, source, source_ref, supplier_name, amount, invoice_number
        ) VALUES (
            %(document_key)s, %(type)s, %(filename)s, %(mime)s, %(file_hash_sha256)s,
            %(storage_uri)s, COALESCE(%(captured_at)s, NOW()), %(source)s, %(source_ref)s,
            %(supplier_name)s, %(amount)s, %(invoice_number)s
        )
        ON CONFLICT (document_key) DO NOTHING
        RETURNING id
        """
        params = {
            "document_key": document.document_key,
            "type": document.type,
            "filename": document.filename,
            "mime": document.mime,
            "file_hash_sha256": document.file_hash_sha256,
            "storage_uri": document.storage_uri,
            "captured_at": document.captured_at,
            "source": document.source,
            "source_ref": document.source_ref,
            "supplier_name": document.supplier_name,
            "amount": document.amount,
            "invoice_number": document.invoice_number,
        }
        with self.get_connection() as conn:
            result = conn.execute(sql, params).fetchone()
            conn.commit()
            if result:
                log.info("document_inserted", document_id=result["id"], document_key=document.document_key)
            return result is not None

    def find_invoice_document(
        self,
        invoice_number: str,
        supplier_name: str | None = None,
        exclude_source_ref: str | None = None,
    ) -> FinanceDocument | None:
        """
        Find an earlier document carrying the same invoice number.

        Args:
            invoice_number: Extracted invoice number
            supplier_name: Narrow to this supplier when given
            exclude_source_ref: Ignore documents captured from this message
        """
        clauses = ["invoice_number = %s"]
        params: list[Any] = [invoice_number]
        if supplier_name:
            clauses.append("supplier_name = %s")
            params.append(supplier_name)
        if exclude_source_ref:
            clauses.append("source_ref IS DISTINCT FROM %s")
            params.append(exclude_source_ref)

        where_sql = " AND ".join(clauses)
        sql = f"""
        SELECT id, document_key, source_ref, supplier_name, amount, invoice_number
        FROM finance_documents
        WHERE {where_sql}
        ORDER BY id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, params).fetchone()
            if not row:
                return None
            return FinanceDocument(
                id=row["id"],
                document_key=row["document_key"],
                source_ref=row["source_ref"] or "",
                supplier_name=row["supplier_name"],
                amount=row["amount"],
                invoice_number=row["invoice_number"],
            )

    # Duplicate candidates

    def duplicate_exists(self, duplicate_key: str) -> bool:
        with self.get_connection() as conn:
            result = conn.execute(
                "SELECT 1 FROM finance_duplicate_candidates WHERE duplicate_key = %s LIMIT 1",
                (duplicate_key,),
            ).fetchone()
            return result is not None

    def insert_duplicate_candidate(self, candidate: DuplicateCandidate) -> bool:
        """Insert a duplicate candidate. Returns False if the key already existed."""
        sql = """
        INSERT INTO finance_duplicate_candidates (
            duplicate_key, supplier_name, invoice_number, amount, status, reason,
            source_document_ref, existing_document_ref
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (duplicate_key) DO NOTHING
        RETURNING id
        """
        with self.get_connection() as conn:
            result = conn.execute(sql, (
                candidate.duplicate_key,
                candidate.supplier_name,
                candidate.invoice_number,
                candidate.amount,
                candidate.status.value,
                Json(candidate.reason),
                candidate.source_document_ref,
                candidate.existing_document_ref,
            )).fetchone()
            conn.commit()
            if result:
                log.info("duplicate_candidate_inserted", duplicate_key=candidate.duplicate_key)
            return result is not None

    # Ledger

    def ledger_entry_exists(
        self,
        created_from: str,
        description: str,
        gross_amount: float | None = None,
    ) -> bool:
        """Look up a ledger entry by its natural key; amount is matched only when given."""
        sql = """
        SELECT 1 FROM finance_ledger_entries
        WHERE created_from = %s AND description = %s
        """
        params: list[Any] = [created_from, description]
        if gross_amount is not None:
            sql += " AND gross_amount = %s"
            params.append(gross_amount)
        sql += " LIMIT 1"

        with self.get_connection() as conn:
            return conn.execute(sql, params).fetchone() is not None

    def insert_ledger_entry(self, entry: LedgerEntry) -> bool:
        """Insert a ledger entry. Returns False if the ledger key already existed."""
        sql = """
        INSERT INTO finance_ledger_entries (
            ledger_key, entry_date, direction, description, gross_amount, currency,
            payment_status, status, created_from, linked_document_ids, category_id
        ) VALUES (
            %(ledger_key)s, COALESCE(%(entry_date)s, NOW()), %(direction)s, %(description)s,
            %(gross_amount)s, %(currency)s, %(payment_status)s, %(status)s,
            %(created_from)s, %(linked_document_ids)s, %(category_id)s
        )
        ON CONFLICT (ledger_key) DO NOTHING
        RETURNING id
        """
        params = {
            "ledger_key": entry.ledger_key,
            "entry_date": entry.entry_date,
            "direction": entry.direction,
            "description": entry.description,
            "gross_amount": entry.gross_amount,
            "currency": entry.currency,
            "payment_status": entry.payment_status,
            "status": entry.status.value,
            "created_from": entry.created_from,
            "linked_document_ids": Json(entry.linked_document_ids),
            "category_id": entry.category_id,
        }
        with self.get_connection() as conn:
            result = conn.execute(sql, params).fetchone()
            conn.commit()
            if result:
                log.info("ledger_entry_inserted", ledger_id=result["id"], status=entry.status.value)
            return result is not None

    # Rules, categories, counterparties

    def get_enabled_rules(self, scope: RuleScope, limit: int = 100) -> list[FinanceRule]:
        """Enabled rules for a scope, lowest priority first."""
        sql = """
        SELECT id, name, scope, priority, enabled, conditions, actions, stop_processing
        FROM finance_rules
        WHERE scope = %s AND enabled = TRUE
        ORDER BY priority ASC NULLS LAST, id ASC
        LIMIT %s
        """
        with self.get_connection() as conn:
            rows = conn.execute(sql, (scope.value, limit)).fetchall()
            return [FinanceRule.from_row(row) for row in rows]

    def upsert_rule(self, rule: FinanceRule) -> bool:
        """
        Create or update a rule by name.

        Returns:
            True if the rule was created, False if an existing one was updated
        """
        sql = """
        INSERT INTO finance_rules (name, scope, priority, enabled, conditions, actions, stop_processing)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (name) DO UPDATE SET
            scope = EXCLUDED.scope,
            priority = EXCLUDED.priority,
            enabled = EXCLUDED.enabled,
            conditions = EXCLUDED.conditions,
            actions = EXCLUDED.actions,
            stop_processing = EXCLUDED.stop_processing
        RETURNING (xmax = 0) AS inserted
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (
                rule.name,
                rule.scope.value,
                rule.priority,
                rule.enabled,
                Json(conditions_to_dict(rule.conditions)),
                Json(rule.actions.to_dict()),
                rule.stop_processing,
            )).fetchone()
            conn.commit()
            return bool(row and row["inserted"])

    def get_category_id(self, name: str) -> int | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT id FROM finance_categories WHERE name = %s LIMIT 1",
                (name,),
            ).fetchone()
            return row["id"] if row else None

    def upsert_category(self, category: Category) -> bool:
        """Create or update a category by name. Returns True if created."""
        sql = """
        INSERT INTO finance_categories (name, direction, hmrc_bucket_id, vat_treatment, active)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (name) DO UPDATE SET
            direction = EXCLUDED.direction,
            hmrc_bucket_id = EXCLUDED.hmrc_bucket_id,
            vat_treatment = EXCLUDED.vat_treatment,
            active = EXCLUDED.active
        RETURNING (xmax = 0) AS inserted
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (
                category.name,
                category.direction,
                category.hmrc_bucket_id,
                category.vat_treatment,
                category.active,
            )).fetchone()
            conn.commit()
            return bool(row and row["inserted"])

    def find_counterparty(self, address: str) -> Counterparty | None:
        """Find a counterparty whose name or aliases match a sender address."""
        sql = """
        SELECT id, name, aliases, trusted_supplier
        FROM finance_counterparties
        WHERE name = %s OR aliases @> %s
        ORDER BY trusted_supplier DESC, id ASC
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (address, Jsonb([address]))).fetchone()
            if not row:
                return None
            return Counterparty(
                id=row["id"],
                name=row["name"],
                aliases=row["aliases"] or [],
                trusted_supplier=row["trusted_supplier"],
            )

    # Audit

    def add_audit_log(self, entry: AuditLogEntry) -> int:
        """Append an audit record."""
        sql = """
        INSERT INTO finance_audit_logs (
            entity_type, entity_id, action, actor_email, reason,
            before_state, after_state, metadata, occurred_at
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """
        with self.get_connection() as conn:
            result = conn.execute(sql, (
                entry.entity_type,
                entry.entity_id,
                entry.action,
                entry.actor_email,
                entry.reason,
                Json(entry.before_state),
                Json(entry.after_state),
                Json(entry.metadata),
                entry.occurred_at,
            )).fetchone()
            conn.commit()
            return result["id"] if result else 0
