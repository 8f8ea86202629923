"""Pipeline orchestrator: ingest → classify → summarize → respond → auto-dispatch."""

from __future__ import annotations

import dataclasses
import logging
import time
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any

from support_inbox.analysis.classifier import Classifier
from support_inbox.analysis.knowledge import KnowledgeBase
from support_inbox.analysis.responder import ResponseSynthesizer
from support_inbox.analysis.summarizer import Summarizer
from support_inbox.config.settings import SupportInboxSettings
from support_inbox.core.auth import authenticate, build_gmail_service
from support_inbox.core.exceptions import (
    RecordNotFoundError,
    ServiceNotConfiguredError,
    SupportInboxError,
)
from support_inbox.core.gmail_client import GmailClient
from support_inbox.core.models import (
    VALID_STATUSES,
    AlreadyExists,
    AnalysisResult,
    BatchProgress,
    BatchResult,
    Message,
    ProcessingRecord,
    ResponseDraft,
)
from support_inbox.llm.backend import OpenAIBackend
from support_inbox.storage.gate import IngestionGate
from support_inbox.storage.store import RecordStore

logger = logging.getLogger(__name__)


def should_auto_send(auto_send_enabled: bool, analysis: AnalysisResult) -> bool:
    """Urgent messages always wait for a human, whatever the global flag says."""
    return auto_send_enabled and analysis.priority != "urgent"


def reply_subject(subject: str) -> str:
    subject = subject or "Your support request"
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


class BatchOrchestrator:
    """Drives batches of messages through the processing stages one at a time.

    Stage 1 - Ingest:    Dedup gate creates a pending record (duplicates skipped)
    Stage 2 - Analyze:   Classify → summarize → draft a response, persisting each result
    Stage 3 - Dispatch:  Auto-send non-urgent drafts when auto_send_responses is on

    A failure that escapes one message's stages is counted and the batch moves on.
    """

    def __init__(
        self,
        settings: SupportInboxSettings | None = None,
        *,
        store: RecordStore | None = None,
        mail: GmailClient | None = None,
        backend: OpenAIBackend | None = None,
        knowledge: KnowledgeBase | None = None,
        on_progress: Callable[[BatchProgress], None] | None = None,
    ) -> None:
        self._settings = settings or SupportInboxSettings()
        self._on_progress = on_progress
        self._progress = BatchProgress()

        self._backend = backend or OpenAIBackend(
            self._settings.openai_api_key,
            self._settings.openai_model,
            timeout_seconds=self._settings.openai_timeout_seconds,
            max_retries=self._settings.openai_max_retries,
        )
        self._knowledge = knowledge or KnowledgeBase.load(self._settings.knowledge_path)
        self.classifier = Classifier(self._backend)
        self.summarizer = Summarizer(
            self._backend, max_preview_chars=self._settings.summary_preview_chars
        )
        self.responder = ResponseSynthesizer(self._knowledge, self._backend)

        # Store and mail client are initialized lazily
        self._store = store
        self._mail = mail
        self._gate: IngestionGate | None = None

    @property
    def on_progress(self) -> Callable[[BatchProgress], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[BatchProgress], None] | None) -> None:
        self._on_progress = callback

    @property
    def knowledge(self) -> KnowledgeBase:
        return self._knowledge

    def _ensure_store(self) -> tuple[RecordStore, IngestionGate]:
        if self._store is None:
            self._settings.ensure_directories()
            self._store = RecordStore(self._settings.database_path)
            self._store.connect()
        if self._gate is None:
            self._gate = IngestionGate(self._store)
        return self._store, self._gate

    def _ensure_mail(self) -> GmailClient:
        """Authenticate and build the Gmail client on first use.

        Raises:
            AuthenticationError: If the mailbox cannot be authorized.
        """
        if self._mail is None:
            self._settings.ensure_directories()
            creds = authenticate(
                self._settings.credentials_path,
                self._settings.token_path,
                allow_browser=self._settings.allow_browser_auth,
            )
            self._mail = GmailClient(
                build_gmail_service(creds),
                query=self._settings.query,
                max_retries=self._settings.max_retries,
                initial_backoff_seconds=self._settings.initial_backoff_seconds,
                max_backoff_seconds=self._settings.max_backoff_seconds,
                num_retries=self._settings.num_retries,
            )
        return self._mail

    def run_cycle(self, max_results: int | None = None) -> BatchResult:
        """One trigger cycle: fetch unread mail, process it, mark it read.

        Raises:
            AuthenticationError: The cycle is abandoned; the next trigger retries independently.
        """
        store, _ = self._ensure_store()
        run_id = store.start_run("gmail")
        messages: list[Message] = []
        result = BatchResult()
        error_message = ""

        try:
            mail = self._ensure_mail()
            messages = mail.fetch_unread(max_results or self._settings.max_results)
            if not messages:
                logger.info("No new support emails found")
                return result

            result = self.process_batch(messages)

            failed_ids = {external_id for external_id, _ in result.errors}
            for message in messages:
                if message.external_id and message.external_id not in failed_ids:
                    mail.mark_read(message.external_id)

            return result
        except Exception as e:
            error_message = str(e)
            self._progress.current_stage = f"error: {e}"
            self._notify()
            raise
        finally:
            store.complete_run(
                run_id,
                messages_seen=len(messages),
                messages_processed=result.processed_count,
                messages_duplicate=result.duplicate_count,
                messages_failed=result.error_count,
                responses_sent=result.sent_count,
                error_message=error_message,
            )

    def process_batch(self, messages: Sequence[Message]) -> BatchResult:
        """Process messages sequentially, in input order.

        Returns:
            BatchResult with processed, duplicate, error and sent counts. Never
            raises for a failure confined to one message.
        """
        store, gate = self._ensure_store()
        result = BatchResult()
        self._progress = BatchProgress(total=len(messages), current_stage="processing")
        self._notify()

        delay = self._settings.inter_message_delay_seconds
        started = False

        for message in messages:
            label = message.external_id or message.subject or "(no id)"
            try:
                outcome = gate.ingest(message)
                if isinstance(outcome, AlreadyExists):
                    result.duplicate_count += 1
                    self._progress.messages_duplicate += 1
                    self._notify()
                    continue

                if started and delay > 0:
                    time.sleep(delay)
                started = True

                label = outcome.external_id
                if outcome.external_id != message.external_id:
                    message = dataclasses.replace(message, external_id=outcome.external_id)

                record, sent = self._process_one(outcome.record_id, message)

            except Exception as e:
                logger.error("Failed to process message %s: %s", label, e)
                result.error_count += 1
                result.errors.append((label, str(e)))
                self._progress.messages_failed += 1
                self._notify()
                continue

            result.processed_count += 1
            result.records.append(record)
            self._progress.messages_processed += 1
            if sent:
                result.sent_count += 1
                self._progress.responses_sent += 1
            self._notify()

        self._progress.current_stage = "complete"
        self._notify()
        logger.info(
            "Batch complete: %d processed, %d duplicates, %d errors, %d sent",
            result.processed_count, result.duplicate_count, result.error_count, result.sent_count,
        )
        return result

    def _process_one(self, record_id: int, message: Message) -> tuple[ProcessingRecord, bool]:
        """Run the analysis stages for one new record; persist each result as it lands."""
        store, _ = self._ensure_store()
        logger.info("Processing record %d: %s", record_id, message.subject or "No Subject")

        analysis = self.classifier.classify(message.subject, message.body)
        store.update_analysis(record_id, analysis)

        summary = self.summarizer.summarize(message.subject, message.body)
        store.update_summary(record_id, summary)

        draft = self.responder.synthesize(message, analysis, self._settings.default_tone)
        store.insert_response(record_id, draft.text, draft.tone)

        sent = False
        if should_auto_send(self._settings.auto_send_responses, analysis):
            sent = self._auto_dispatch(record_id, message, draft)

        record = store.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} vanished during processing")
        return record, sent

    def _auto_dispatch(self, record_id: int, message: Message, draft: ResponseDraft) -> bool:
        """Send a draft without review. Send failures leave the draft unsent."""
        store, _ = self._ensure_store()
        try:
            mail = self._ensure_mail()
            mail.send(message.sender, reply_subject(message.subject), draft.text)
        except SupportInboxError as e:
            logger.error("Auto-send failed for record %d: %s", record_id, e)
            return False

        store.mark_sent(record_id)
        logger.info("Auto-sent response for record %d", record_id)
        return True

    # ---------- single-record operations ----------

    def get_record(self, record_id: int) -> ProcessingRecord:
        store, _ = self._ensure_store()
        record = store.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return record

    def find_record(self, external_id: str) -> ProcessingRecord:
        """Look a record up by the mail source's message id."""
        store, _ = self._ensure_store()
        record = store.get_by_external_id(external_id)
        if record is None:
            raise RecordNotFoundError(f"No record for message {external_id}")
        return record

    def list_records(self, **criteria: Any) -> list[ProcessingRecord]:
        store, _ = self._ensure_store()
        return store.list_filtered(**criteria)

    def list_drafts(self, record_id: int) -> list[ResponseDraft]:
        """Every draft stored for a record, newest (current) first."""
        self.get_record(record_id)
        return self._store.list_responses(record_id)

    def _require_backend(self) -> None:
        if not self._backend.is_configured:
            raise ServiceNotConfiguredError(
                "OpenAI API key not configured. Set SUPPORT_OPENAI_API_KEY."
            )

    def regenerate_analysis(self, record_id: int) -> AnalysisResult:
        self._require_backend()
        record = self.get_record(record_id)
        analysis = self.classifier.classify(record.message.subject, record.message.body)
        self._store.update_analysis(record_id, analysis)
        return analysis

    def regenerate_summary(self, record_id: int) -> str:
        self._require_backend()
        record = self.get_record(record_id)
        summary = self.summarizer.summarize(record.message.subject, record.message.body)
        self._store.update_summary(record_id, summary)
        return summary

    def regenerate_response(self, record_id: int, tone: str | None = None) -> ResponseDraft:
        """Draft a new reply; earlier drafts stay in the record's history."""
        self._require_backend()
        record = self.get_record(record_id)
        analysis = record.analysis
        if analysis is None:
            analysis = self.classifier.classify(record.message.subject, record.message.body)
            self._store.update_analysis(record_id, analysis)

        draft = self.responder.synthesize(
            record.message, analysis, tone or self._settings.default_tone
        )
        response_id = self._store.insert_response(record_id, draft.text, draft.tone)
        return dataclasses.replace(draft, response_id=response_id)

    def send_response(
        self,
        record_id: int,
        body: str | None = None,
        *,
        recipient: str | None = None,
        subject: str | None = None,
    ) -> str:
        """Send the current draft (or an edited body) and mark the record responded.

        Raises:
            SendError: If the transport fails; the record is left unchanged.
        """
        record = self.get_record(record_id)
        current = record.response
        if body is None:
            if current is None:
                raise ValueError(f"Record {record_id} has no drafted response")
            body = current.text
        elif current is None or current.text != body:
            tone = current.tone if current else self._settings.default_tone
            self._store.insert_response(record_id, body, tone)

        mail = self._ensure_mail()
        sent_id = mail.send(
            recipient or record.message.sender,
            subject or reply_subject(record.message.subject),
            body,
        )
        self._store.mark_sent(record_id)
        return sent_id

    def update_status(self, record_id: int, status: str) -> None:
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {status}")
        self.get_record(record_id)
        self._store.update_status(record_id, status)

    def get_status(self) -> dict[str, int]:
        """Get current record counts by status."""
        store, _ = self._ensure_store()
        return store.count_by_status()

    def get_analytics(self) -> dict[str, Any]:
        store, _ = self._ensure_store()
        return store.get_analytics()

    @staticmethod
    def insights(records: Sequence[ProcessingRecord]) -> dict[str, Any]:
        """Sentiment, priority and category breakdown over analyzed records."""
        sentiment: Counter[str] = Counter({"positive": 0, "negative": 0, "neutral": 0})
        priority: Counter[str] = Counter({"urgent": 0, "normal": 0, "low": 0})
        category: Counter[str] = Counter()

        for record in records:
            if record.analysis is None:
                continue
            sentiment[record.analysis.sentiment] += 1
            priority[record.analysis.priority] += 1
            category[record.analysis.category or "other"] += 1

        return {
            "total": len(records),
            "sentiment_breakdown": dict(sentiment),
            "priority_breakdown": dict(priority),
            "category_breakdown": dict(category),
        }

    def get_knowledge_base(self) -> dict[str, dict[str, str]]:
        return self._knowledge.get()

    def update_knowledge_base(self, category: str, key: str, value: str) -> None:
        self._knowledge.update(category, key, value)
        self._knowledge.save(self._settings.knowledge_path)

    def close(self) -> None:
        """Clean up resources."""
        if self._store:
            self._store.close()

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._progress)
