"""Shared fixtures for Support Inbox tests."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from support_inbox.config.settings import SupportInboxSettings
from support_inbox.core.exceptions import BackendError
from support_inbox.core.models import Message
from support_inbox.storage.store import RecordStore


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for store tests."""
    return tmp_path / "test_support_inbox.db"


@pytest.fixture
def store(tmp_db_path: Path) -> Iterator[RecordStore]:
    """A connected RecordStore on a temporary database."""
    s = RecordStore(tmp_db_path)
    s.connect()
    yield s
    s.close()


@pytest.fixture
def settings(tmp_path: Path) -> SupportInboxSettings:
    """Settings pointing every path into tmp_path, with no inter-message delay."""
    return SupportInboxSettings(
        credentials_path=tmp_path / "credentials" / "client_secret.json",
        token_path=tmp_path / "credentials" / "token.json",
        database_path=tmp_path / "data" / "support_inbox.db",
        knowledge_path=tmp_path / "data" / "knowledge.json",
        openai_api_key="",
        inter_message_delay_seconds=0.0,
    )


@pytest.fixture
def sample_message() -> Message:
    """A plain, non-urgent support question."""
    return Message(
        external_id="msg_001",
        thread_id="thread_001",
        sender="jane.doe@example.com",
        subject="Question about my invoice",
        body="Could you explain the second line on my invoice?",
        received_at=datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
        labels=("INBOX", "UNREAD"),
    )


@pytest.fixture
def urgent_message() -> Message:
    """A message the keyword fallback classifies as urgent."""
    return Message(
        external_id="msg_urgent",
        sender="bob@example.com",
        subject="App broken",
        body="This is urgent, the app is broken, please help asap",
        received_at=datetime(2024, 1, 16, 8, 0, tzinfo=UTC),
    )


@pytest.fixture
def unconfigured_backend() -> MagicMock:
    """A backend with no API key; every component takes its fallback path."""
    backend = MagicMock()
    backend.is_configured = False
    return backend


@pytest.fixture
def failing_backend() -> MagicMock:
    """A configured backend whose every call fails."""
    backend = MagicMock()
    backend.is_configured = True
    backend.complete.side_effect = BackendError("connection refused")
    return backend
