"""Support Inbox - Classify, summarize and answer inbound support email."""

from support_inbox.core.models import (
    AlreadyExists,
    AnalysisResult,
    BatchProgress,
    BatchResult,
    Created,
    KnowledgeEntry,
    Message,
    ProcessingRecord,
    ResponseDraft,
)
from support_inbox.pipeline.orchestrator import BatchOrchestrator

__all__ = [
    "AlreadyExists",
    "AnalysisResult",
    "BatchOrchestrator",
    "BatchProgress",
    "BatchResult",
    "Created",
    "KnowledgeEntry",
    "Message",
    "ProcessingRecord",
    "ResponseDraft",
]
