"""SQLite-backed persistence for processing records and response drafts."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from support_inbox.core.exceptions import PersistenceError
from support_inbox.core.models import (
    VALID_STATUSES,
    AnalysisResult,
    Message,
    ProcessingRecord,
    ResponseDraft,
)

logger = logging.getLogger(__name__)

_RECORD_SELECT = """
    SELECT r.*,
           resp.response_id AS response_id,
           resp.text AS response_text,
           resp.tone AS response_tone,
           resp.sent AS response_sent,
           resp.sent_at AS response_sent_at,
           resp.created_at AS response_created_at
    FROM records r
    LEFT JOIN responses resp ON resp.response_id = (
        SELECT MAX(response_id) FROM responses WHERE record_id = r.record_id
    )
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unparseable timestamp in store: %s", value)
        return None


class RecordStore:
    """Stores one row per ingested message plus the history of drafted responses.

    Tables:
    - records: message fields, current analysis/summary, status
    - responses: every draft generated for a record (newest is current)
    - processing_runs: audit log of pipeline runs

    All sqlite3 failures surface as PersistenceError.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._create_tables()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open database {self._db_path}: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> RecordStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id TEXT NOT NULL UNIQUE,
                thread_id TEXT NOT NULL DEFAULT '',
                sender TEXT NOT NULL,
                subject TEXT NOT NULL DEFAULT '',
                body TEXT NOT NULL DEFAULT '',
                received_at TEXT NOT NULL,
                labels TEXT NOT NULL DEFAULT '[]',
                sentiment TEXT,
                priority TEXT,
                analysis TEXT,
                summary TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_status ON records(status);
            CREATE INDEX IF NOT EXISTS idx_records_priority ON records(priority);
            CREATE INDEX IF NOT EXISTS idx_records_sentiment ON records(sentiment);
            CREATE INDEX IF NOT EXISTS idx_records_received_at ON records(received_at);

            CREATE TABLE IF NOT EXISTS responses (
                response_id INTEGER PRIMARY KEY AUTOINCREMENT,
                record_id INTEGER NOT NULL,
                text TEXT NOT NULL,
                tone TEXT NOT NULL DEFAULT 'professional',
                sent INTEGER NOT NULL DEFAULT 0,
                sent_at TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (record_id) REFERENCES records(record_id)
            );

            CREATE INDEX IF NOT EXISTS idx_responses_record ON responses(record_id);

            CREATE TABLE IF NOT EXISTS processing_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                messages_seen INTEGER DEFAULT 0,
                messages_processed INTEGER DEFAULT 0,
                messages_duplicate INTEGER DEFAULT 0,
                messages_failed INTEGER DEFAULT 0,
                responses_sent INTEGER DEFAULT 0,
                error_message TEXT DEFAULT ''
            );
        """)

    def _execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        try:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Database error: {e}") from e

    def _query(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error: {e}") from e

    def insert_if_absent(self, message: Message) -> int | None:
        """Insert a message as 'pending' unless its external id is already stored.

        The UNIQUE constraint makes check-and-insert a single atomic statement.

        Returns:
            The new record id, or None if the message already exists.
        """
        now = _now()
        cursor = self._execute(
            """INSERT INTO records
               (external_id, thread_id, sender, subject, body, received_at, labels,
                status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
               ON CONFLICT(external_id) DO NOTHING""",
            (
                message.external_id,
                message.thread_id,
                message.sender,
                message.subject,
                message.body,
                message.received_at.astimezone(UTC).isoformat(),
                json.dumps(list(message.labels)),
                now,
                now,
            ),
        )
        if cursor.rowcount != 1:
            return None
        return cursor.lastrowid

    def update_analysis(
        self, record_id: int, analysis: AnalysisResult, summary: str | None = None
    ) -> None:
        """Replace the analysis (and the summary, when given) of a record."""
        sets = ["sentiment = ?", "priority = ?", "analysis = ?", "updated_at = ?"]
        params: list[Any] = [
            analysis.sentiment,
            analysis.priority,
            json.dumps(analysis.to_dict()),
            _now(),
        ]
        if summary is not None:
            sets.append("summary = ?")
            params.append(summary)

        params.append(record_id)
        self._execute(f"UPDATE records SET {', '.join(sets)} WHERE record_id = ?", params)

    def update_summary(self, record_id: int, summary: str) -> None:
        self._execute(
            "UPDATE records SET summary = ?, updated_at = ? WHERE record_id = ?",
            (summary, _now(), record_id),
        )

    def insert_response(self, record_id: int, text: str, tone: str = "professional") -> int:
        """Append a draft to the record's history. Returns the response id."""
        cursor = self._execute(
            "INSERT INTO responses (record_id, text, tone, created_at) VALUES (?, ?, ?, ?)",
            (record_id, text, tone, _now()),
        )
        return cursor.lastrowid or 0

    def mark_sent(self, record_id: int) -> bool:
        """Flag the current draft as sent and move the record to 'responded'.

        Both updates commit together. Returns False if the record has no draft.
        """
        now = _now()
        try:
            with self.conn:
                cursor = self.conn.execute(
                    """UPDATE responses SET sent = 1, sent_at = ?
                       WHERE response_id = (
                           SELECT MAX(response_id) FROM responses WHERE record_id = ?
                       )""",
                    (now, record_id),
                )
                if cursor.rowcount == 0:
                    return False
                self.conn.execute(
                    "UPDATE records SET status = 'responded', updated_at = ? WHERE record_id = ?",
                    (now, record_id),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to mark record {record_id} sent: {e}") from e
        return True

    def update_status(self, record_id: int, status: str) -> None:
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {status}")
        self._execute(
            "UPDATE records SET status = ?, updated_at = ? WHERE record_id = ?",
            (status, _now(), record_id),
        )

    def get_by_id(self, record_id: int) -> ProcessingRecord | None:
        rows = self._query(f"{_RECORD_SELECT} WHERE r.record_id = ?", (record_id,))
        return self._row_to_record(rows[0]) if rows else None

    def get_by_external_id(self, external_id: str) -> ProcessingRecord | None:
        rows = self._query(f"{_RECORD_SELECT} WHERE r.external_id = ?", (external_id,))
        return self._row_to_record(rows[0]) if rows else None

    def list_filtered(
        self,
        *,
        priority: str | None = None,
        sentiment: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ProcessingRecord]:
        """List records newest first, optionally filtered by priority, sentiment and status."""
        sql = f"{_RECORD_SELECT} WHERE 1=1"
        params: list[Any] = []

        if priority:
            sql += " AND r.priority = ?"
            params.append(priority)
        if sentiment:
            sql += " AND r.sentiment = ?"
            params.append(sentiment)
        if status:
            sql += " AND r.status = ?"
            params.append(status)

        sql += " ORDER BY r.received_at DESC, r.record_id DESC"

        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(offset)

        return [self._row_to_record(row) for row in self._query(sql, params)]

    def list_responses(self, record_id: int) -> list[ResponseDraft]:
        """All drafts for a record, newest first."""
        rows = self._query(
            "SELECT * FROM responses WHERE record_id = ? ORDER BY response_id DESC",
            (record_id,),
        )
        return [
            ResponseDraft(
                text=row["text"],
                tone=row["tone"],
                created_at=_parse_dt(row["created_at"]) or datetime.now(UTC),
                sent=bool(row["sent"]),
                sent_at=_parse_dt(row["sent_at"]),
                response_id=row["response_id"],
            )
            for row in rows
        ]

    def count_by_status(self) -> dict[str, int]:
        rows = self._query("SELECT status, COUNT(*) as cnt FROM records GROUP BY status")
        return {row["status"]: row["cnt"] for row in rows}

    def get_analytics(self) -> dict[str, Any]:
        """Totals and sentiment/priority distributions across all records."""
        total = self._query("SELECT COUNT(*) AS cnt FROM records")[0]["cnt"]
        urgent = self._query(
            "SELECT COUNT(*) AS cnt FROM records WHERE priority = 'urgent'"
        )[0]["cnt"]
        processed = self._query(
            "SELECT COUNT(*) AS cnt FROM records WHERE status != 'pending'"
        )[0]["cnt"]
        sentiment_rows = self._query(
            "SELECT sentiment, COUNT(*) AS cnt FROM records "
            "WHERE sentiment IS NOT NULL GROUP BY sentiment"
        )
        priority_rows = self._query(
            "SELECT priority, COUNT(*) AS cnt FROM records "
            "WHERE priority IS NOT NULL GROUP BY priority"
        )
        return {
            "total": total,
            "urgent": urgent,
            "processed": processed,
            "sentiment_distribution": {row["sentiment"]: row["cnt"] for row in sentiment_rows},
            "priority_distribution": {row["priority"]: row["cnt"] for row in priority_rows},
        }

    def start_run(self, source: str) -> int:
        """Record the start of a processing run. Returns the run_id."""
        cursor = self._execute(
            "INSERT INTO processing_runs (source, started_at) VALUES (?, ?)",
            (source, _now()),
        )
        return cursor.lastrowid or 0

    def complete_run(
        self,
        run_id: int,
        messages_seen: int = 0,
        messages_processed: int = 0,
        messages_duplicate: int = 0,
        messages_failed: int = 0,
        responses_sent: int = 0,
        error_message: str = "",
    ) -> None:
        """Record the completion of a processing run."""
        self._execute(
            """UPDATE processing_runs SET
               completed_at = ?, messages_seen = ?, messages_processed = ?,
               messages_duplicate = ?, messages_failed = ?, responses_sent = ?,
               error_message = ?
               WHERE run_id = ?""",
            (
                _now(),
                messages_seen,
                messages_processed,
                messages_duplicate,
                messages_failed,
                responses_sent,
                error_message,
                run_id,
            ),
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ProcessingRecord:
        message = Message(
            external_id=row["external_id"],
            thread_id=row["thread_id"],
            sender=row["sender"],
            subject=row["subject"],
            body=row["body"],
            received_at=_parse_dt(row["received_at"]) or datetime(1970, 1, 1, tzinfo=UTC),
            labels=tuple(json.loads(row["labels"] or "[]")),
        )

        analysis = None
        if row["analysis"]:
            analysis = AnalysisResult.from_dict(json.loads(row["analysis"]))

        response = None
        if row["response_id"] is not None:
            response = ResponseDraft(
                text=row["response_text"],
                tone=row["response_tone"],
                created_at=_parse_dt(row["response_created_at"]) or datetime.now(UTC),
                sent=bool(row["response_sent"]),
                sent_at=_parse_dt(row["response_sent_at"]),
                response_id=row["response_id"],
            )

        return ProcessingRecord(
            record_id=row["record_id"],
            message=message,
            status=row["status"],
            analysis=analysis,
            summary=row["summary"],
            response=response,
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )
