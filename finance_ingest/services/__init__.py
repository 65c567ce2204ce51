"""External collaborators: Microsoft Graph, OAuth tokens, audit trail, seed data."""

from .audit import AuditRecorder
from .credentials import TokenProvider
from .graph import GraphMailClient
from .seed import seed_default_categories, seed_default_rules

__all__ = [
    "AuditRecorder",
    "GraphMailClient",
    "TokenProvider",
    "seed_default_categories",
    "seed_default_rules",
]
