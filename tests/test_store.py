"""Tests for RecordStore: SQLite persistence of records and drafts."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from support_inbox.core.exceptions import PersistenceError
from support_inbox.core.models import AnalysisResult, Message
from support_inbox.storage.store import RecordStore


def _message(external_id: str, day: int = 1, **overrides: object) -> Message:
    fields: dict[str, object] = {
        "external_id": external_id,
        "sender": "user@example.com",
        "subject": f"Subject {external_id}",
        "body": "Body",
        "received_at": datetime(2024, 1, day, tzinfo=UTC),
    }
    fields.update(overrides)
    return Message(**fields)  # type: ignore[arg-type]


class TestConnect:
    """RecordStore.connect() initialises the database schema."""

    @pytest.mark.parametrize("table", ["records", "responses", "processing_runs"])
    def test_creates_tables(self, store: RecordStore, table: str) -> None:
        rows = store.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchall()
        assert len(rows) == 1

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        nested = tmp_path / "a" / "b" / "test.db"
        s = RecordStore(nested)
        s.connect()
        s.close()
        assert nested.exists()

    def test_conn_before_connect_raises(self, tmp_db_path: Path) -> None:
        with pytest.raises(RuntimeError):
            _ = RecordStore(tmp_db_path).conn

    def test_context_manager(self, tmp_db_path: Path) -> None:
        with RecordStore(tmp_db_path) as s:
            assert s.conn is not None
        with pytest.raises(RuntimeError):
            _ = s.conn


class TestInsertIfAbsent:
    def test_new_message_creates_pending_record(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        record_id = store.insert_if_absent(sample_message)

        assert record_id is not None
        record = store.get_by_id(record_id)
        assert record is not None
        assert record.status == "pending"
        assert record.message == sample_message
        assert record.analysis is None
        assert record.response is None

    def test_duplicate_returns_none(self, store: RecordStore, sample_message: Message) -> None:
        store.insert_if_absent(sample_message)
        assert store.insert_if_absent(sample_message) is None
        assert store.count_by_status() == {"pending": 1}

    def test_duplicate_with_different_content_is_still_duplicate(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        store.insert_if_absent(sample_message)
        changed = dataclasses.replace(sample_message, body="Different body")
        assert store.insert_if_absent(changed) is None

    def test_received_at_stored_in_utc(self, store: RecordStore) -> None:
        local = datetime(2024, 1, 2, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        record_id = store.insert_if_absent(_message("m1", received_at=local))
        assert record_id is not None

        stored = store.conn.execute(
            "SELECT received_at FROM records WHERE record_id = ?", (record_id,)
        ).fetchone()[0]
        assert stored == "2024-01-01T20:00:00+00:00"

    def test_mixed_offsets_sort_by_instant(self, store: RecordStore) -> None:
        store.insert_if_absent(_message("late", received_at=datetime(2024, 1, 1, 23, tzinfo=UTC)))
        early = datetime(2024, 1, 2, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        store.insert_if_absent(_message("early", received_at=early))

        ids = [r.message.external_id for r in store.list_filtered()]

        assert ids == ["late", "early"]


class TestAnalysisAndSummary:
    def test_update_analysis(self, store: RecordStore, sample_message: Message) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        analysis = AnalysisResult(sentiment="negative", priority="urgent", key_points=("x",))

        store.update_analysis(record_id, analysis)

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.analysis == analysis
        assert record.summary is None

    def test_update_analysis_with_summary(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        store.update_analysis(record_id, AnalysisResult(), summary="Short digest")

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.summary == "Short digest"

    def test_update_summary(self, store: RecordStore, sample_message: Message) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        store.update_summary(record_id, "First")
        store.update_summary(record_id, "Second")

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.summary == "Second"


class TestResponses:
    def test_latest_draft_is_current(self, store: RecordStore, sample_message: Message) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        store.insert_response(record_id, "First draft", "professional")
        second = store.insert_response(record_id, "Second draft", "friendly")

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.response is not None
        assert record.response.text == "Second draft"
        assert record.response.tone == "friendly"
        assert record.response.response_id == second

        history = store.list_responses(record_id)
        assert [d.text for d in history] == ["Second draft", "First draft"]

    def test_mark_sent_flags_latest_and_sets_responded(
        self, store: RecordStore, sample_message: Message
    ) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        store.insert_response(record_id, "Old", "professional")
        store.insert_response(record_id, "New", "professional")

        assert store.mark_sent(record_id) is True

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.status == "responded"
        assert record.response is not None
        assert record.response.sent is True
        assert record.response.sent_at is not None
        history = store.list_responses(record_id)
        assert [d.sent for d in history] == [True, False]

    def test_mark_sent_without_draft(self, store: RecordStore, sample_message: Message) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None

        assert store.mark_sent(record_id) is False

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.status == "pending"

    def test_response_for_unknown_record_fails(self, store: RecordStore) -> None:
        with pytest.raises(PersistenceError):
            store.insert_response(9999, "text", "professional")


class TestStatus:
    def test_update_status(self, store: RecordStore, sample_message: Message) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        store.update_status(record_id, "ignored")

        record = store.get_by_id(record_id)
        assert record is not None
        assert record.status == "ignored"

    def test_invalid_status(self, store: RecordStore, sample_message: Message) -> None:
        record_id = store.insert_if_absent(sample_message)
        assert record_id is not None
        with pytest.raises(ValueError, match="Invalid status"):
            store.update_status(record_id, "archived")


class TestQueries:
    @pytest.fixture
    def populated(self, store: RecordStore) -> RecordStore:
        for i, (sentiment, priority) in enumerate(
            [("negative", "urgent"), ("positive", "normal"), ("neutral", "normal")], start=1
        ):
            record_id = store.insert_if_absent(_message(f"m{i}", day=i))
            assert record_id is not None
            store.update_analysis(record_id, AnalysisResult(sentiment=sentiment, priority=priority))
        return store

    def test_get_by_external_id(self, populated: RecordStore) -> None:
        record = populated.get_by_external_id("m2")
        assert record is not None
        assert record.message.subject == "Subject m2"
        assert populated.get_by_external_id("missing") is None

    def test_get_by_id_missing(self, store: RecordStore) -> None:
        assert store.get_by_id(42) is None

    def test_list_newest_first(self, populated: RecordStore) -> None:
        ids = [r.message.external_id for r in populated.list_filtered()]
        assert ids == ["m3", "m2", "m1"]

    def test_filter_by_priority(self, populated: RecordStore) -> None:
        records = populated.list_filtered(priority="urgent")
        assert [r.message.external_id for r in records] == ["m1"]

    def test_filter_by_sentiment_and_status(self, populated: RecordStore) -> None:
        records = populated.list_filtered(sentiment="positive", status="pending")
        assert [r.message.external_id for r in records] == ["m2"]

    def test_limit_and_offset(self, populated: RecordStore) -> None:
        records = populated.list_filtered(limit=1, offset=1)
        assert [r.message.external_id for r in records] == ["m2"]

    def test_offset_without_limit(self, populated: RecordStore) -> None:
        records = populated.list_filtered(offset=2)
        assert [r.message.external_id for r in records] == ["m1"]

    def test_analytics(self, populated: RecordStore) -> None:
        record = populated.get_by_external_id("m1")
        assert record is not None
        populated.update_status(record.record_id, "resolved")

        analytics = populated.get_analytics()

        assert analytics["total"] == 3
        assert analytics["urgent"] == 1
        assert analytics["processed"] == 1
        assert analytics["sentiment_distribution"] == {"negative": 1, "positive": 1, "neutral": 1}
        assert analytics["priority_distribution"] == {"urgent": 1, "normal": 2}


class TestProcessingRuns:
    def test_start_and_complete_run(self, store: RecordStore) -> None:
        run_id = store.start_run("gmail")
        store.complete_run(
            run_id,
            messages_seen=3,
            messages_processed=2,
            messages_duplicate=1,
            responses_sent=1,
        )
        row = store.conn.execute(
            "SELECT * FROM processing_runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        assert row["source"] == "gmail"
        assert row["completed_at"] is not None
        assert row["messages_processed"] == 2
        assert row["messages_duplicate"] == 1
        assert row["responses_sent"] == 1
        assert row["error_message"] == ""
