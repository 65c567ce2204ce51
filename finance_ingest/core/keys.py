"""
Natural keys for ingested entities.

Each key is derived from stable provider identifiers so repeated runs map
to the same row. The database enforces them with UNIQUE constraints.
"""

import hashlib

KEY_PREFIX = "m365"
LEDGER_SOURCE_EMAIL = "email_ingest"


def message_key(message_id: str) -> str:
    return f"{KEY_PREFIX}:{message_id}"


def document_key(message_id: str, attachment_id: str) -> str:
    return f"{KEY_PREFIX}:{message_id}:{attachment_id}"


def storage_uri(message_id: str, attachment_id: str) -> str:
    return f"{KEY_PREFIX}://{message_id}/{attachment_id}"


def duplicate_key(from_address: str, invoice_number: str) -> str:
    return f"dup:{from_address}:{invoice_number}"


def ledger_key(created_from: str, description: str, gross_amount: float | None) -> str:
    """
    Key for (created_from, description, gross amount).

    The description is hashed so the unique index stays bounded for long
    subjects. An absent amount and an amount of 0 produce different keys.
    """
    amount = "" if gross_amount is None else f"{gross_amount:.2f}"
    digest = hashlib.sha256(f"{description}\x1f{amount}".encode("utf-8")).hexdigest()
    return f"{created_from}:{digest}"
