"""Short digests of inbound messages."""

from __future__ import annotations

import logging
import re

from support_inbox.core.exceptions import BackendError
from support_inbox.llm.backend import OpenAIBackend

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"^summary:?\s*", re.IGNORECASE)

SUMMARY_PROMPT = """
Summarize this customer support email in 2-3 concise sentences. Focus on the main issue, request, or concern.

Subject: {subject}
Body: {body}

Provide a clear, concise summary that captures:
1. The main issue or request
2. Any specific details mentioned
3. The urgency level (if applicable)

Summary:"""


def fallback_summary(subject: str, body: str, max_chars: int = 200) -> str:
    """Truncated preview used when the model cannot summarize."""
    text = f"{subject or ''} {body or ''}"[:max_chars]
    return (
        f"Email from customer regarding: {subject or 'general inquiry'}. "
        f"Content preview: {text}..."
    )


class Summarizer:
    def __init__(self, backend: OpenAIBackend | None = None, *, max_preview_chars: int = 200) -> None:
        self._backend = backend
        self._max_preview_chars = max_preview_chars

    def summarize(self, subject: str, body: str) -> str:
        """Return a 2-3 sentence digest, or the truncated preview if the model fails."""
        if self._backend is not None and self._backend.is_configured:
            prompt = SUMMARY_PROMPT.format(subject=subject or "No Subject", body=body or "No content")
            try:
                summary = _LABEL_RE.sub("", self._backend.complete(prompt, max_tokens=150, temperature=0.3))
                if summary.strip():
                    return summary.strip()
                logger.warning("Model returned an empty summary, using preview fallback")
            except BackendError as e:
                logger.warning("Summary backend unavailable, using preview fallback: %s", e)

        return fallback_summary(subject, body, self._max_preview_chars)
