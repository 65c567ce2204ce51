"""
Microsoft 365 access token provider.

Hands out a bearer token for the connected mailbox, refreshing it through
the OAuth refresh-token grant when it is missing or about to expire.
"""

from datetime import datetime, timedelta, timezone

import httpx

from finance_ingest.config import settings
from finance_ingest.core.database import Database
from finance_ingest.core.errors import MailboxNotConnectedError, TokenRefreshError
from finance_ingest.core.logging import get_logger
from finance_ingest.core.models import ConnectionStatus, MailboxConnection

log = get_logger(__name__)


class TokenProvider:
    """Supplies a valid Graph access token for ingestion runs."""

    def __init__(
        self,
        db: Database | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        tenant_id: str | None = None,
        refresh_margin_seconds: int | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.db = db or Database()
        self.client_id = client_id or settings.microsoft_client_id
        self.client_secret = client_secret or settings.microsoft_client_secret
        self.tenant_id = tenant_id or settings.microsoft_tenant_id
        self.refresh_margin = timedelta(
            seconds=(
                refresh_margin_seconds
                if refresh_margin_seconds is not None
                else settings.token_refresh_margin_seconds
            )
        )
        self._http = http_client

    @property
    def token_endpoint(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"

    def get_access_token(self) -> str:
        """
        Return a bearer token valid for at least the refresh margin.

        Raises:
            MailboxNotConnectedError: No connected mailbox is configured
            TokenRefreshError: Refresh failed or no token could be obtained
        """
        connection = self.db.get_mailbox_connection()
        if not connection or connection.status != ConnectionStatus.CONNECTED:
            raise MailboxNotConnectedError("Microsoft 365 is not connected")

        access_token = connection.access_token or ""
        if not access_token or self._is_expiring(connection.token_expires_at):
            access_token = self._refresh(connection)

        if not access_token:
            raise TokenRefreshError("Microsoft access token unavailable")
        return access_token

    def _is_expiring(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < datetime.now(timezone.utc) + self.refresh_margin

    def _post_token_request(self, data: dict[str, str]) -> httpx.Response:
        """POST to the token endpoint; a client is opened per request unless one was injected."""
        if self._http is not None:
            return self._http.post(self.token_endpoint, data=data)
        with httpx.Client(timeout=settings.graph_timeout_seconds) as client:
            return client.post(self.token_endpoint, data=data)

    def _refresh(self, connection: MailboxConnection) -> str:
        """Exchange the stored refresh token and persist the new tokens."""
        if not (self.client_id and self.client_secret and self.tenant_id and connection.refresh_token):
            log.error("token_refresh_missing_credentials")
            raise TokenRefreshError(
                "Missing required credentials (MICROSOFT_CLIENT_ID, MICROSOFT_CLIENT_SECRET, "
                "MICROSOFT_TENANT_ID, or stored refresh token)"
            )

        log.info("token_refresh_requested")
        try:
            response = self._post_token_request({
                "grant_type": "refresh_token",
                "refresh_token": connection.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": settings.microsoft_scope,
            })
        except httpx.RequestError as e:
            log.error("token_refresh_request_error", error=str(e))
            raise TokenRefreshError(f"Failed to reach Microsoft token endpoint: {e}") from e

        if response.is_error:
            log.error("token_refresh_failed", status=response.status_code, error=response.text[:500])
            raise TokenRefreshError(
                f"Failed to refresh token: {response.status_code} {response.reason_phrase}"
            )

        try:
            data = response.json()
        except ValueError as e:
            log.error("token_refresh_invalid_json", error=str(e), response_body=response.text[:500])
            raise TokenRefreshError("Invalid JSON from Microsoft token endpoint") from e

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            log.error("token_refresh_no_access_token")
            raise TokenRefreshError("No access token received from Microsoft")

        # Microsoft may rotate the refresh token
        refresh_token = data.get("refresh_token") or connection.refresh_token
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data.get("expires_in") or 0))
        self.db.update_mailbox_tokens(connection.id, access_token, refresh_token, expires_at)

        log.info("token_refreshed", expires_at=expires_at.isoformat())
        return access_token
