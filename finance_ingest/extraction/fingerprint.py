"""
Content fingerprint for email attachments.

The digest feeds FinanceDocument.file_hash_sha256 for change detection.
Document identity is the document key, never this hash.
"""

import hashlib

# Only the head of the base64 payload is hashed
CONTENT_PREFIX_CHARS = 128


def content_fingerprint(
    message_id: str,
    attachment_id: str,
    filename: str,
    content_b64: str,
) -> str:
    """
    SHA-256 hex digest of an attachment.

    Args:
        message_id: Provider message id
        attachment_id: Provider attachment id
        filename: Attachment filename
        content_b64: Base64 content (only the first 128 characters are used)

    Returns:
        64-character lowercase hex digest
    """
    payload = f"{message_id}:{attachment_id}:{filename}:{content_b64[:CONTENT_PREFIX_CHARS]}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
