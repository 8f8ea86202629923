"""Turns Gmail API `format=full` message dicts into Message objects."""

from __future__ import annotations

import base64
import binascii
import logging
from collections import deque
from datetime import UTC, datetime
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any

from support_inbox.core.converter import BodyConverter
from support_inbox.core.exceptions import ParseError
from support_inbox.core.models import Message

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_WANTED_HEADERS = ("from", "subject", "date")


def decode_base64url(data: str) -> str:
    """Decode Gmail's unpadded base64url body data to text."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _is_attachment(part: dict[str, Any]) -> bool:
    return bool(part.get("filename")) or "attachmentId" in part.get("body", {})


class GmailParser:
    def __init__(self, converter: BodyConverter | None = None) -> None:
        self._converter = converter or BodyConverter()

    def parse(self, raw_message: dict[str, Any]) -> Message:
        """Build a Message from a raw API dict.

        The sender is reduced to its bare address; the body is the text/plain
        part when there is one, else the converted text/html part.

        Raises:
            ParseError: If the dict is missing its id or a body part cannot be decoded.
        """
        msg_id = raw_message.get("id")
        if not msg_id:
            raise ParseError("Message has no id")

        payload = raw_message.get("payload") or {}
        headers = self._headers(payload)

        try:
            plain_text, html = self._bodies(payload)
        except (binascii.Error, ValueError) as e:
            raise ParseError(f"Failed to parse message {msg_id}: {e}") from e

        _, address = parseaddr(headers.get("from", ""))
        return Message(
            external_id=msg_id,
            thread_id=raw_message.get("threadId", ""),
            labels=tuple(raw_message.get("labelIds", [])),
            sender=address or headers.get("from", "").strip(),
            subject=headers.get("subject", ""),
            body=self._converter.convert(plain_text, html),
            received_at=self._received_at(raw_message.get("internalDate"), headers.get("date", "")),
        )

    @staticmethod
    def _headers(payload: dict[str, Any]) -> dict[str, str]:
        """First value of each wanted header, keyed lower-case."""
        found: dict[str, str] = {}
        for header in payload.get("headers", []):
            name = header.get("name", "").lower()
            if name in _WANTED_HEADERS and name not in found:
                found[name] = header.get("value", "")
        return found

    @staticmethod
    def _bodies(payload: dict[str, Any]) -> tuple[str | None, str | None]:
        """Breadth-first search for the first text/plain and text/html parts."""
        plain_text: str | None = None
        html: str | None = None
        queue = deque([payload])

        while queue and (plain_text is None or html is None):
            part = queue.popleft()
            mime_type = part.get("mimeType", "")

            if mime_type.startswith("multipart/"):
                queue.extend(p for p in part.get("parts", []) if not _is_attachment(p))
                continue

            data = part.get("body", {}).get("data")
            if not data:
                continue
            if "html" in mime_type:
                html = html if html is not None else decode_base64url(data)
            elif mime_type.startswith("text/") or part is payload:
                plain_text = plain_text if plain_text is not None else decode_base64url(data)

        return plain_text, html

    @staticmethod
    def _received_at(internal_date: str | None, date_header: str) -> datetime:
        """Gmail's internalDate (epoch ms), else the Date header, else the epoch."""
        if internal_date:
            try:
                return datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
            except (TypeError, ValueError, OverflowError):
                logger.warning("Invalid internalDate: %s", internal_date)
        if date_header:
            try:
                return parsedate_to_datetime(date_header)
            except (TypeError, ValueError):
                logger.warning("Unparseable Date header: %s", date_header)
        return EPOCH
