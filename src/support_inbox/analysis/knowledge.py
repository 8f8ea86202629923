"""Static knowledge base used to ground generated responses."""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterator
from pathlib import Path

from support_inbox.core.models import KnowledgeEntry

logger = logging.getLogger(__name__)

NO_MATCH_CONTEXT = "No specific knowledge base information found for this query."

# Label used for each category when a snippet is quoted into a prompt.
CATEGORY_LABELS = {
    "products": "Product Info",
    "policies": "Policy",
    "common_issues": "Common Issue",
}

_CATEGORY_ALIASES = {"commonIssues": "common_issues"}

DEFAULT_KNOWLEDGE: dict[str, dict[str, str]] = {
    "products": {
        "email-assistant": (
            "AI-powered email management system that automatically processes support "
            "emails, analyzes sentiment, and generates contextual responses."
        ),
        "support": (
            "Our support team is available Monday-Friday 9AM-6PM EST. For urgent issues, "
            'please mark your email as "URGENT" in the subject line.'
        ),
    },
    "policies": {
        "refund": (
            "We offer full refunds within 30 days of purchase. Please provide your order "
            "number and reason for refund."
        ),
        "privacy": "We take privacy seriously and never share customer data with third parties.",
        "response_time": (
            "We aim to respond to all support emails within 24 hours during business days."
        ),
    },
    "common_issues": {
        "login": (
            "For login issues, please try resetting your password first. If that doesn't "
            "work, check if your account is active."
        ),
        "billing": (
            "For billing questions, please provide your account email and we'll review "
            "your account."
        ),
        "technical": (
            "For technical issues, please include browser version, operating system, and "
            "steps to reproduce the problem."
        ),
    },
}


class KnowledgeBase:
    """Category → key → snippet lookup. Read-only while a batch runs."""

    def __init__(self, data: dict[str, dict[str, str]] | None = None) -> None:
        self._data = copy.deepcopy(data if data is not None else DEFAULT_KNOWLEDGE)
        for alias, name in _CATEGORY_ALIASES.items():
            if alias in self._data:
                self._data.setdefault(name, {}).update(self._data.pop(alias))
        for category in CATEGORY_LABELS:
            self._data.setdefault(category, {})

    @classmethod
    def load(cls, path: Path) -> KnowledgeBase:
        """Load from a JSON file, or start from the defaults if it does not exist."""
        if not path.exists():
            return cls()
        return cls(json.loads(path.read_text(encoding="utf-8")))

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        logger.debug("Saved knowledge base to %s", path)

    def get(self) -> dict[str, dict[str, str]]:
        """Return a copy of the whole knowledge base."""
        return copy.deepcopy(self._data)

    def update(self, category: str, key: str, value: str) -> None:
        """Add or replace one snippet.

        Raises:
            ValueError: If the category is unknown.
        """
        category = _CATEGORY_ALIASES.get(category, category)
        if category not in CATEGORY_LABELS:
            raise ValueError(f"Invalid knowledge base category: {category}")
        self._data[category][key] = value
        logger.info("Updated knowledge base: %s.%s", category, key)

    def entries(self) -> Iterator[KnowledgeEntry]:
        for category in CATEGORY_LABELS:
            for key, snippet in self._data[category].items():
                yield KnowledgeEntry(category=category, key=key, snippet=snippet)

    def build_context(self, subject: str, body: str) -> str:
        """Collect snippets whose key occurs in the message text.

        Plain substring containment on the lower-cased text; a key also matches
        with underscores read as spaces ("response_time" matches "response time").
        Short keys also match inside longer words.
        """
        text = f"{subject or ''} {body or ''}".lower()
        lines: list[str] = []

        for entry in self.entries():
            key = entry.key.lower()
            if key in text or key.replace("_", " ") in text:
                lines.append(f"{CATEGORY_LABELS[entry.category]} ({entry.key}): {entry.snippet}")

        return "\n".join(lines) if lines else NO_MATCH_CONTEXT
