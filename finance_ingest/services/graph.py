"""
Microsoft Graph mailbox client.

Thin read-only wrapper over the Graph REST API: folders, messages and
attachments. Throttling (429) and server errors (5xx) are retried a bounded
number of times with exponential backoff and jitter.
"""

import random
import time
from typing import Any

import httpx

from finance_ingest.config import settings
from finance_ingest.core.errors import MailboxError
from finance_ingest.core.logging import get_logger
from finance_ingest.core.models import MailAttachment, MailFolder, MailMessage

log = get_logger(__name__)

MESSAGE_SELECT = (
    "id,subject,from,toRecipients,receivedDateTime,bodyPreview,internetMessageId,hasAttachments"
)
ATTACHMENT_SELECT = "id,name,contentType,size,lastModifiedDateTime,contentBytes"

# Graph pages mailFolders in tens by default
FOLDER_PAGE_SIZE = 100


class GraphMailClient:
    """HTTP client for the signed-in user's Microsoft 365 mailbox."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.graph_base_url).rstrip("/")
        self.max_retries = max(1, max_retries or settings.graph_max_retries)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.graph_retry_base_delay
        )
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout or settings.graph_timeout_seconds,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _retry_delay(self, attempt: int, response: httpx.Response | None = None) -> float:
        """Retry-After when the server sends one, else exponential backoff with jitter."""
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        backoff = self.retry_base_delay * (2 ** attempt)
        return backoff + random.uniform(0, self.retry_base_delay)

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET a Graph resource, retrying throttling, 5xx and transport errors."""
        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = self._client.get(path, params=params)
            except httpx.TransportError as e:
                if last_attempt:
                    log.error("graph_request_error", path=path, error=str(e))
                    raise MailboxError(f"Failed to reach Microsoft Graph: {e}") from e
                delay = self._retry_delay(attempt)
                log.warning("graph_request_retry", path=path, error=str(e), delay=round(delay, 2))
                time.sleep(delay)
                continue

            status = response.status_code
            if (status == 429 or status >= 500) and not last_attempt:
                delay = self._retry_delay(attempt, response)
                log.warning("graph_request_retry", path=path, status=status, delay=round(delay, 2))
                time.sleep(delay)
                continue

            if response.is_error:
                log.error(
                    "graph_http_error",
                    path=path,
                    status=status,
                    response_body=response.text[:500],
                )
                raise MailboxError(f"Graph request failed: {status} {path}", status_code=status)

            try:
                return response.json()
            except ValueError as e:
                log.error("graph_invalid_json", path=path, response_body=response.text[:500])
                raise MailboxError(f"Invalid JSON from Graph: {path}", status_code=status) from e

        raise MailboxError(f"Graph request failed after {self.max_retries} attempts: {path}")

    def list_folders(self) -> list[MailFolder]:
        """List top-level mail folders."""
        data = self._get("/me/mailFolders", params={"$top": FOLDER_PAGE_SIZE})
        return [MailFolder.from_graph(item) for item in data.get("value") or []]

    def list_messages(
        self,
        folder_id: str,
        top: int,
        order_by: str = "receivedDateTime desc",
        select: str = MESSAGE_SELECT,
    ) -> list[MailMessage]:
        """
        List messages in a folder.

        Args:
            folder_id: Graph folder id or well-known name ("inbox")
            top: Maximum number of messages
            order_by: OData $orderby expression
            select: OData $select projection
        """
        data = self._get(
            f"/me/mailFolders/{folder_id}/messages",
            params={"$top": top, "$orderby": order_by, "$select": select},
        )
        messages = data.get("value")
        if not isinstance(messages, list):
            return []
        log.info("graph_messages_listed", folder_id=folder_id, count=len(messages))
        return [MailMessage.from_graph(item) for item in messages]

    def list_attachments(
        self,
        message_id: str,
        top: int,
        select: str = ATTACHMENT_SELECT,
    ) -> list[MailAttachment]:
        """List file attachments (with base64 content) of a message."""
        data = self._get(
            f"/me/messages/{message_id}/attachments",
            params={"$top": top, "$select": select},
        )
        attachments = data.get("value")
        if not isinstance(attachments, list):
            return []
        return [MailAttachment.from_graph(item) for item in attachments]
