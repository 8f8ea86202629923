"""Dataclasses for the support inbox domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SENTIMENTS = ("positive", "negative", "neutral")
PRIORITIES = ("urgent", "normal", "low")
TONES = ("professional", "friendly", "formal")

# Status state machine: pending → responded | ignored | resolved (operators may move freely)
VALID_STATUSES = {"pending", "responded", "ignored", "resolved"}


@dataclass(frozen=True)
class Message:
    """An inbound support email. Immutable once ingested."""

    external_id: str
    sender: str
    subject: str
    body: str
    received_at: datetime
    thread_id: str = ""
    labels: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AnalysisResult:
    """Structured classification of a message.

    Sentiment and priority are restricted to SENTIMENTS and PRIORITIES;
    construction with any other value raises ValueError.
    """

    sentiment: str = "neutral"
    priority: str = "normal"
    category: str = "general"
    emotion: str = "neutral"
    request_type: str = "request"
    key_points: tuple[str, ...] = field(default_factory=tuple)
    mentioned_products: tuple[str, ...] = field(default_factory=tuple)
    urgency_keywords: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.sentiment not in SENTIMENTS:
            raise ValueError(f"Invalid sentiment: {self.sentiment}")
        if self.priority not in PRIORITIES:
            raise ValueError(f"Invalid priority: {self.priority}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "sentiment": self.sentiment,
            "priority": self.priority,
            "category": self.category,
            "emotion": self.emotion,
            "request_type": self.request_type,
            "key_points": list(self.key_points),
            "mentioned_products": list(self.mentioned_products),
            "urgency_keywords": list(self.urgency_keywords),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        """Rebuild from the dict produced by to_dict()."""
        return cls(
            sentiment=data.get("sentiment", "neutral"),
            priority=data.get("priority", "normal"),
            category=data.get("category", "general"),
            emotion=data.get("emotion", "neutral"),
            request_type=data.get("request_type", "request"),
            key_points=tuple(data.get("key_points", ())),
            mentioned_products=tuple(data.get("mentioned_products", ())),
            urgency_keywords=tuple(data.get("urgency_keywords", ())),
        )


@dataclass(frozen=True)
class ResponseDraft:
    """A generated reply. A record keeps every draft; the newest is current."""

    text: str
    tone: str
    created_at: datetime
    sent: bool = False
    sent_at: datetime | None = None
    response_id: int | None = None


@dataclass(frozen=True)
class ProcessingRecord:
    """Persisted aggregate of one message with its analysis, summary and latest draft."""

    record_id: int
    message: Message
    status: str = "pending"
    analysis: AnalysisResult | None = None
    summary: str | None = None
    response: ResponseDraft | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class KnowledgeEntry:
    """A single knowledge base snippet."""

    category: str
    key: str
    snippet: str


@dataclass(frozen=True)
class Created:
    """Ingestion outcome: a new processing record was stored."""

    record_id: int
    external_id: str


@dataclass(frozen=True)
class AlreadyExists:
    """Ingestion outcome: the message was seen before, nothing was stored."""

    external_id: str


IngestResult = Created | AlreadyExists


@dataclass
class BatchResult:
    """Outcome of one process_batch() call."""

    processed_count: int = 0
    duplicate_count: int = 0
    error_count: int = 0
    sent_count: int = 0
    records: list[ProcessingRecord] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class BatchProgress:
    """Mutable progress tracker for pipeline status reporting."""

    total: int = 0
    messages_processed: int = 0
    messages_duplicate: int = 0
    messages_failed: int = 0
    responses_sent: int = 0
    current_stage: str = "idle"
