"""
Exception hierarchy for the finance ingestion pipeline.
"""


class FinanceIngestError(Exception):
    """Base class for all ingestion errors."""


class ConfigurationError(FinanceIngestError):
    """The run cannot start: mailbox or credentials are not usable."""


class MailboxNotConnectedError(ConfigurationError):
    """No connected Microsoft 365 mailbox is configured."""


class TokenRefreshError(ConfigurationError):
    """The access token is missing or could not be refreshed."""


class MailboxError(FinanceIngestError):
    """A Graph mailbox request failed after retries."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
