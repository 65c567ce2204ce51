"""Field extraction and content fingerprinting for invoice emails."""

from .fields import (
    INVOICE_HINTS,
    detect_currency,
    extract_amount,
    extract_invoice_number,
    has_invoice_hint,
)
from .fingerprint import content_fingerprint

__all__ = [
    "INVOICE_HINTS",
    "content_fingerprint",
    "detect_currency",
    "extract_amount",
    "extract_invoice_number",
    "has_invoice_hint",
]
