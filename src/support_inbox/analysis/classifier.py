"""Message classification: model-backed JSON analysis with a keyword fallback."""

from __future__ import annotations

import json
import logging
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from support_inbox.core.exceptions import BackendError, MalformedModelOutput
from support_inbox.core.models import AnalysisResult
from support_inbox.llm.backend import OpenAIBackend

logger = logging.getLogger(__name__)

URGENT_KEYWORDS = (
    "urgent", "emergency", "critical", "asap", "immediately", "broken", "not working",
    "down", "error", "bug", "crash", "help", "refund", "cancel", "dispute",
)
POSITIVE_KEYWORDS = (
    "thank", "great", "excellent", "amazing", "love", "perfect", "wonderful",
    "satisfied", "happy",
)
NEGATIVE_KEYWORDS = (
    "angry", "frustrated", "terrible", "awful", "hate", "worst", "disappointed",
    "useless", "broken", "problem",
)

# First matching rule wins.
CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("billing", ("bill", "payment", "charge")),
    ("account", ("login", "password", "account")),
    ("technical", ("bug", "error", "not working", "broken")),
    ("refund", ("refund", "cancel")),
)

ANALYSIS_PROMPT = """
Analyze this customer support email and provide a JSON response with sentiment, priority, and extracted information.

Subject: {subject}
Body: {body}

Respond with valid JSON only:
{{
    "sentiment": "positive|negative|neutral",
    "priority": "urgent|normal|low",
    "extractedInfo": {{
        "category": "billing|technical|general|complaint|compliment|refund|account",
        "urgencyKeywords": ["list of urgent words found"],
        "customerEmotion": "frustrated|happy|confused|angry|neutral|excited",
        "requestType": "question|complaint|compliment|request|refund|support|other",
        "keyPoints": ["main points mentioned in the email"],
        "mentionedProducts": ["any products or services mentioned"]
    }}
}}

Priority should be "urgent" if the email contains words like: {urgent_words}."""


class ExtractedInfo(BaseModel):
    category: str = "general"
    urgency_keywords: list[str] = Field(default_factory=list, alias="urgencyKeywords")
    customer_emotion: str = Field("neutral", alias="customerEmotion")
    request_type: str = Field("request", alias="requestType")
    key_points: list[str] = Field(default_factory=list, alias="keyPoints")
    mentioned_products: list[str] = Field(default_factory=list, alias="mentionedProducts")


class AnalysisPayload(BaseModel):
    """Schema the model's JSON answer must satisfy."""

    sentiment: Literal["positive", "negative", "neutral"]
    priority: Literal["urgent", "normal", "low"]
    extracted_info: ExtractedInfo = Field(default_factory=ExtractedInfo, alias="extractedInfo")

    @field_validator("sentiment", "priority", mode="before")
    @classmethod
    def normalize_case(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    def to_result(self) -> AnalysisResult:
        info = self.extracted_info
        return AnalysisResult(
            sentiment=self.sentiment,
            priority=self.priority,
            category=info.category.strip().lower() or "general",
            emotion=info.customer_emotion.strip().lower() or "neutral",
            request_type=info.request_type.strip().lower() or "request",
            key_points=tuple(info.key_points),
            mentioned_products=tuple(info.mentioned_products),
            urgency_keywords=tuple(info.urgency_keywords),
        )


def strip_code_fences(raw: str) -> str:
    """Remove ```json ... ``` wrappers that models like to add around JSON."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`").strip()
        if text.lower().startswith("json"):
            text = text[4:].lstrip()
    return text


def parse_analysis(raw: str) -> AnalysisResult:
    """Parse and validate a model answer.

    Raises:
        MalformedModelOutput: If the text is not JSON or violates the schema.
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        raise MalformedModelOutput(f"Analysis is not valid JSON: {e}") from e

    try:
        return AnalysisPayload.model_validate(data).to_result()
    except ValidationError as e:
        raise MalformedModelOutput(f"Analysis failed schema validation: {e}") from e


def fallback_analysis(subject: str, body: str) -> AnalysisResult:
    """Keyword heuristic classification. Pure and deterministic."""
    text = f"{subject or ''} {body or ''}".lower()

    found_urgent = tuple(k for k in URGENT_KEYWORDS if k in text)
    positive_count = sum(1 for k in POSITIVE_KEYWORDS if k in text)
    negative_count = sum(1 for k in NEGATIVE_KEYWORDS if k in text)

    sentiment = "neutral"
    if positive_count > negative_count:
        sentiment = "positive"
    elif negative_count > positive_count:
        sentiment = "negative"

    category = "general"
    for name, words in CATEGORY_RULES:
        if any(w in text for w in words):
            category = name
            break
    else:
        if negative_count > 0:
            category = "complaint"
        elif positive_count > 0:
            category = "compliment"

    if negative_count > 0:
        emotion = "frustrated"
    elif positive_count > 0:
        emotion = "happy"
    else:
        emotion = "neutral"

    if "?" in text:
        request_type = "question"
    elif category == "refund":
        request_type = "refund"
    else:
        request_type = "request"

    return AnalysisResult(
        sentiment=sentiment,
        priority="urgent" if found_urgent else "normal",
        category=category,
        emotion=emotion,
        request_type=request_type,
        key_points=(subject or "No specific points identified",),
        mentioned_products=(),
        urgency_keywords=found_urgent,
    )


class Classifier:
    """Turns a message into an AnalysisResult. classify() never raises."""

    def __init__(self, backend: OpenAIBackend | None = None) -> None:
        self._backend = backend

    def classify(self, subject: str, body: str) -> AnalysisResult:
        if self._backend is None or not self._backend.is_configured:
            return fallback_analysis(subject, body)

        prompt = ANALYSIS_PROMPT.format(
            subject=subject or "No Subject",
            body=body or "No content",
            urgent_words=", ".join(URGENT_KEYWORDS),
        )
        try:
            raw = self._backend.complete(prompt, max_tokens=400, temperature=0.3)
            return parse_analysis(raw)
        except MalformedModelOutput as e:
            logger.warning("Malformed analysis from model, using keyword fallback: %s", e)
        except BackendError as e:
            logger.warning("Analysis backend unavailable, using keyword fallback: %s", e)

        return fallback_analysis(subject, body)
