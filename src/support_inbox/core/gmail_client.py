"""Gmail API client: unread discovery, message fetch, mark-read and send."""

from __future__ import annotations

import base64
import logging
import random
import time
from email.errors import MessageError
from email.message import EmailMessage
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from support_inbox.core.exceptions import (
    AuthenticationError,
    RateLimitError,
    SendError,
    SupportInboxError,
)
from support_inbox.core.models import Message
from support_inbox.core.parser import GmailParser

logger = logging.getLogger(__name__)


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API 429 rate limit."""
    if isinstance(exc, HttpError) and exc.status_code == 429:
        return True
    error_str = str(exc)
    return "429" in error_str or "rateLimitExceeded" in error_str


def _is_auth_error(exc: Exception) -> bool:
    """Check whether an exception is a 401/403 from the Gmail API."""
    return isinstance(exc, HttpError) and exc.status_code in (401, 403)


class GmailClient:
    """Thin wrapper around the Gmail API acting as the pipeline's mail source and transport."""

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        parser: GmailParser | None = None,
        query: str = "is:unread",
        max_retries: int = 5,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._parser = parser or GmailParser()
        self._query = query
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._num_retries = num_retries

    def _execute_with_retry(self, request: Any, context: str) -> Any:
        """Execute a single API request with exponential backoff on 429 errors.

        Args:
            request: A googleapiclient HttpRequest object.
            context: Description for log messages (e.g. "list messages").

        Returns:
            The API response dict.

        Raises:
            AuthenticationError: On 401/403 responses.
            RateLimitError: When retries are exhausted on 429 errors.
            SupportInboxError: On other API errors.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return request.execute(num_retries=self._num_retries)
            except Exception as e:
                if _is_auth_error(e):
                    raise AuthenticationError(f"Not authorized to {context}: {e}") from e
                if _is_rate_limit_error(e):
                    if attempt >= self._max_retries:
                        raise RateLimitError(
                            f"Rate limited during {context} after "
                            f"{self._max_retries} retries: {e}"
                        ) from e
                    sleep_time = min(backoff, self._max_backoff)
                    jitter = random.uniform(0, sleep_time)
                    logger.warning(
                        "Rate limited during %s (attempt %d/%d), sleeping %.2fs",
                        context, attempt + 1, self._max_retries, jitter,
                    )
                    time.sleep(jitter)
                    backoff = min(backoff * 2, self._max_backoff)
                else:
                    raise SupportInboxError(f"Failed to {context}: {e}") from e

        raise RateLimitError(f"Rate limited during {context} after {self._max_retries} retries")

    def fetch_unread(self, max_results: int = 10) -> list[Message]:
        """Fetch and parse up to max_results messages matching the configured query.

        Messages that fail to download or parse are logged and skipped.

        Raises:
            AuthenticationError: When the mailbox rejects our credentials.
        """
        request = self._service.users().messages().list(
            userId=self._user_id, q=self._query, maxResults=max_results
        )
        response = self._execute_with_retry(request, "list messages")
        stubs = response.get("messages", [])
        logger.info("Found %d messages matching %r", len(stubs), self._query)

        messages: list[Message] = []
        for stub in stubs:
            msg_id = stub["id"]
            try:
                raw = self._execute_with_retry(
                    self._service.users().messages().get(
                        userId=self._user_id, id=msg_id, format="full"
                    ),
                    f"fetch message {msg_id}",
                )
                messages.append(self._parser.parse(raw))
            except AuthenticationError:
                raise
            except SupportInboxError as e:
                logger.error("Skipping message %s: %s", msg_id, e)

        return messages

    def mark_read(self, external_id: str) -> None:
        """Remove the UNREAD label. Best-effort: failures are logged, never raised."""
        try:
            request = self._service.users().messages().modify(
                userId=self._user_id,
                id=external_id,
                body={"removeLabelIds": ["UNREAD"]},
            )
            self._execute_with_retry(request, f"mark {external_id} read")
        except SupportInboxError as e:
            logger.warning("Failed to mark message %s as read: %s", external_id, e)

    def send(self, recipient: str, subject: str, body: str) -> str:
        """Send a plain-text email and return the Gmail id of the sent message.

        Raises:
            SendError: On a header the MIME layer rejects or any transport failure.
        """
        try:
            mime = EmailMessage()
            mime["To"] = recipient
            mime["Subject"] = subject
            mime.set_content(body)
            raw = base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii").rstrip("=")
        except (ValueError, MessageError) as e:
            raise SendError(f"Cannot build email to {recipient!r}: {e}") from e

        try:
            request = self._service.users().messages().send(
                userId=self._user_id, body={"raw": raw}
            )
            response = self._execute_with_retry(request, f"send to {recipient}")
        except SupportInboxError as e:
            raise SendError(f"Failed to send email to {recipient}: {e}") from e

        sent_id = response.get("id", "")
        logger.info("Sent response to %s (id=%s)", recipient, sent_id)
        return sent_id
