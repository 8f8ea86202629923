"""Ingestion gate: decides whether an inbound message is new."""

from __future__ import annotations

import dataclasses
import logging
import secrets
import time

from support_inbox.core.models import AlreadyExists, Created, IngestResult, Message
from support_inbox.storage.store import RecordStore

logger = logging.getLogger(__name__)


def synthetic_external_id(source: str) -> str:
    """Build an id for messages the mail source delivered without one."""
    return f"{source}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class IngestionGate:
    """Creates a pending ProcessingRecord for each message seen for the first time.

    Duplicates are a normal outcome under at-least-once delivery and are
    reported as AlreadyExists, never raised. Store failures propagate.
    """

    def __init__(self, store: RecordStore, source: str = "gmail") -> None:
        self._store = store
        self._source = source

    def ingest(self, message: Message) -> IngestResult:
        if not message.external_id:
            message = dataclasses.replace(
                message, external_id=synthetic_external_id(self._source)
            )
            logger.debug("Assigned synthetic id %s", message.external_id)

        record_id = self._store.insert_if_absent(message)
        if record_id is None:
            logger.info("Message %s already ingested, skipping", message.external_id)
            return AlreadyExists(external_id=message.external_id)

        return Created(record_id=record_id, external_id=message.external_id)
