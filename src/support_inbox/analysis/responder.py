"""Response synthesis grounded in the knowledge base, with a rule-based template fallback."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from email.utils import parseaddr

from support_inbox.analysis.knowledge import KnowledgeBase
from support_inbox.core.exceptions import BackendError
from support_inbox.core.models import AnalysisResult, Message, ResponseDraft
from support_inbox.llm.backend import OpenAIBackend

logger = logging.getLogger(__name__)

SUPPORT_PHONE = "(555) 123-4567"
SUPPORT_EMAIL = "support@yourcompany.com"

SIGNATURES = {
    "formal": f"Sincerely,\nCustomer Support Team\n{SUPPORT_EMAIL}\n{SUPPORT_PHONE}",
    "default": f"Best regards,\nThe Support Team\n{SUPPORT_EMAIL}\nWe're here to help!",
}
FALLBACK_SIGNATURE = f"Best regards,\nCustomer Support Team\nEmail: {SUPPORT_EMAIL}"

TONE_GUIDANCE = {
    "friendly": "warm and friendly",
    "formal": "professional and formal",
}
DEFAULT_TONE_GUIDANCE = "professional but approachable"

_GREETING_RE = re.compile(
    r"\A\s*(?:dear|hello|hi|hey)\b(?:\s+(?:mr|mrs|ms|dr)\.)?"
    r"[^,:;!.?\n]{0,40}?(?:[,:!]|[ \t]*$)[ \t]*\n*",
    re.IGNORECASE | re.MULTILINE,
)
_SUBJECT_RE = re.compile(r"^\s*subject:.*$\n?", re.IGNORECASE | re.MULTILINE)
_SIGNATURE_RE = re.compile(
    r"^\s*(best regards|kind regards|warm regards|regards|sincerely)\b.*\Z",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)

RESPONSE_PROMPT = """
You are an expert customer support representative. Generate a personalized, helpful response to this customer email.

Customer Email:
Subject: {subject}
Body: {body}
From: {sender}

Email Analysis:
- Sentiment: {sentiment}
- Priority: {priority}
- Category: {category}
- Customer Emotion: {emotion}

Knowledge Base Context:
{knowledge}

Response Tone: {tone}

Requirements:
- Be {guidance}
- Address the specific issue mentioned
- Provide actionable solutions or next steps
{conditional}- Include relevant contact information
- Keep response focused and not too long

Generate the response email body:"""


def derive_customer_name(sender: str) -> str:
    """Guess a display name from an email address.

    "jane.doe@example.com" → "Jane Doe", "bob@example.com" → "Bob".
    """
    _, address = parseaddr(sender or "")
    local = (address or sender or "").split("@")[0].strip()
    if not local:
        return "Customer"
    if "." in local:
        return " ".join(p[:1].upper() + p[1:] for p in local.split(".") if p)
    return local[:1].upper() + local[1:]


def greeting_for(tone: str, name: str) -> str:
    return f"Dear {name}," if tone == "formal" else f"Hello {name},"


def clean_model_response(raw: str) -> str:
    """Drop the greeting, restated subject lines and signature the model wrote itself."""
    text, greetings = _GREETING_RE.subn("", raw, count=1)
    text = _SUBJECT_RE.sub("", text)
    text = _SIGNATURE_RE.sub("", text).strip()
    # "Hi Jane, your refund..." leaves a lower-case first word behind
    if greetings:
        text = text[:1].upper() + text[1:]
    return text


def fallback_response(sender: str, analysis: AnalysisResult, tone: str = "professional") -> str:
    """Template reply assembled from the analysis alone."""
    parts = ["Thank you for contacting our support team."]

    if analysis.priority == "urgent":
        parts.append("We understand this is urgent and will prioritize your request.")

    if analysis.sentiment == "negative":
        parts.append("We sincerely apologize for any inconvenience you may have experienced.")
    elif analysis.sentiment == "positive":
        parts.append("We appreciate your positive feedback!")

    parts.append(
        "We are reviewing your message and will get back to you within 24 hours "
        "with a detailed response."
    )

    if analysis.priority == "urgent":
        parts.append(
            f"For immediate assistance, you can also call our support line at {SUPPORT_PHONE}."
        )

    greeting = greeting_for(tone, derive_customer_name(sender))
    return f"{greeting}\n\n{' '.join(parts)}\n\n{FALLBACK_SIGNATURE}"


class ResponseSynthesizer:
    """Drafts replies. synthesize() never raises."""

    def __init__(self, knowledge: KnowledgeBase, backend: OpenAIBackend | None = None) -> None:
        self._knowledge = knowledge
        self._backend = backend

    def synthesize(
        self, message: Message, analysis: AnalysisResult, tone: str = "professional"
    ) -> ResponseDraft:
        text = None
        if self._backend is not None and self._backend.is_configured:
            text = self._model_response(message, analysis, tone)

        if text is None:
            text = fallback_response(message.sender, analysis, tone)

        return ResponseDraft(text=text, tone=tone, created_at=datetime.now(UTC))

    def _model_response(self, message: Message, analysis: AnalysisResult, tone: str) -> str | None:
        conditional = ""
        if analysis.priority == "urgent":
            conditional += "- Acknowledge urgency and prioritize response\n"
        if analysis.sentiment == "negative":
            conditional += "- Show empathy and apologize for any inconvenience\n"
        elif analysis.sentiment == "positive":
            conditional += "- Thank them for positive feedback\n"

        prompt = RESPONSE_PROMPT.format(
            subject=message.subject or "No Subject",
            body=message.body or "No content",
            sender=message.sender or "Customer",
            sentiment=analysis.sentiment,
            priority=analysis.priority,
            category=analysis.category,
            emotion=analysis.emotion,
            knowledge=self._knowledge.build_context(message.subject, message.body),
            tone=tone,
            guidance=TONE_GUIDANCE.get(tone, DEFAULT_TONE_GUIDANCE),
            conditional=conditional,
        )

        try:
            raw = self._backend.complete(prompt, max_tokens=500, temperature=0.7)
        except BackendError as e:
            logger.warning("Response backend unavailable, using template fallback: %s", e)
            return None

        body = clean_model_response(raw)
        if not body:
            logger.warning("Model response was empty after cleanup, using template fallback")
            return None

        greeting = greeting_for(tone, derive_customer_name(message.sender))
        signature = SIGNATURES.get(tone, SIGNATURES["default"])
        return f"{greeting}\n\n{body}\n\n{signature}"
