"""Tests for IngestionGate: idempotent creation of processing records."""

from __future__ import annotations

import dataclasses
import re
from unittest.mock import MagicMock

import pytest

from support_inbox.core.exceptions import PersistenceError
from support_inbox.core.models import AlreadyExists, Created, Message
from support_inbox.storage.gate import IngestionGate, synthetic_external_id
from support_inbox.storage.store import RecordStore


class TestIngest:
    def test_first_sighting_creates_record(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        outcome = IngestionGate(store).ingest(sample_message)

        assert isinstance(outcome, Created)
        assert outcome.external_id == "msg_001"
        record = store.get_by_id(outcome.record_id)
        assert record is not None
        assert record.status == "pending"

    def test_second_sighting_is_already_exists(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        gate = IngestionGate(store)
        gate.ingest(sample_message)

        outcome = gate.ingest(sample_message)

        assert outcome == AlreadyExists(external_id="msg_001")
        assert len(store.list_filtered()) == 1

    def test_missing_id_gets_synthetic_id(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        message = dataclasses.replace(sample_message, external_id="")

        outcome = IngestionGate(store, source="gmail").ingest(message)

        assert isinstance(outcome, Created)
        assert outcome.external_id.startswith("gmail_")
        assert store.get_by_external_id(outcome.external_id) is not None

    def test_messages_without_ids_are_never_merged(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        message = dataclasses.replace(sample_message, external_id="")
        gate = IngestionGate(store)

        first = gate.ingest(message)
        second = gate.ingest(message)

        assert isinstance(first, Created)
        assert isinstance(second, Created)
        assert first.external_id != second.external_id

    def test_store_failure_propagates(self, sample_message: Message) -> None:
        store = MagicMock()
        store.insert_if_absent.side_effect = PersistenceError("disk full")

        with pytest.raises(PersistenceError, match="disk full"):
            IngestionGate(store).ingest(sample_message)


class TestSyntheticExternalId:
    def test_format(self) -> None:
        assert re.fullmatch(r"gmail_\d+_[0-9a-f]{8}", synthetic_external_id("gmail"))

    def test_unique(self) -> None:
        assert len({synthetic_external_id("x") for _ in range(50)}) == 50
