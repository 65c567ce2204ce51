"""
Regex heuristics for invoice numbers and amounts in email text.

Misses return None; callers treat every extracted field as optional.
"""

import math
import re

INVOICE_HINTS = ("invoice", "receipt", "vat", "statement")

# Keyword may not run into further letters, so "Invoice" never yields "oice"
_INVOICE_NUMBER_RE = re.compile(r"\b(?:invoice|inv)(?![a-z])[\s#:.-]*([A-Z0-9-]{4,})\b", re.IGNORECASE)
_GENERIC_REFERENCE_RE = re.compile(r"\b([A-Z]{2,}-\d{3,})\b")
_AMOUNT_RE = re.compile(r"([£$€])\s?(\d+(?:\.\d{1,2})?)")

CURRENCY_SYMBOLS = {
    "£": "GBP",
    "$": "USD",
    "€": "EUR",
}


def _text(subject: str | None, body_excerpt: str | None) -> str:
    return f"{subject or ''} {body_excerpt or ''}"


def has_invoice_hint(subject: str | None, body_excerpt: str | None) -> bool:
    """True when subject or excerpt mentions an invoice-like keyword."""
    lowered = _text(subject, body_excerpt).lower()
    return any(hint in lowered for hint in INVOICE_HINTS)


def extract_invoice_number(subject: str | None, body_excerpt: str | None) -> str | None:
    """
    Find an invoice number in subject + body.

    Looks for "inv"/"invoice" followed by a token of at least four
    letters, digits or dashes. Falls back to references like "AB-123".
    """
    text = _text(subject, body_excerpt)
    match = _INVOICE_NUMBER_RE.search(text) or _GENERIC_REFERENCE_RE.search(text)
    return match.group(1) if match else None


def extract_amount(subject: str | None, body_excerpt: str | None) -> float | None:
    """First currency-prefixed amount in subject + body, e.g. "£123.45" -> 123.45."""
    match = _AMOUNT_RE.search(_text(subject, body_excerpt))
    if not match:
        return None
    try:
        amount = float(match.group(2))
    except ValueError:
        return None
    return amount if math.isfinite(amount) else None


def detect_currency(subject: str | None, body_excerpt: str | None) -> str | None:
    """ISO code for the symbol of the first amount found, if any."""
    match = _AMOUNT_RE.search(_text(subject, body_excerpt))
    return CURRENCY_SYMBOLS[match.group(1)] if match else None
