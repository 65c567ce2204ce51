"""
Abstract base class for mailbox processors.
"""

from abc import ABC, abstractmethod

from finance_ingest.core.models import IngestResult


class BaseProcessor(ABC):
    """Abstract processor interface for mailbox ingestion pipelines."""

    @abstractmethod
    def process(self, max_messages: int | None = None, folder: str | None = None) -> IngestResult:
        """
        Process recent messages from a mailbox folder.

        Args:
            max_messages: Upper bound on messages fetched
            folder: Folder display name

        Returns:
            Run counters and per-message failures
        """
        pass
