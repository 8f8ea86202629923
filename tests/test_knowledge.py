"""Tests for KnowledgeBase lookup, updates and persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from support_inbox.analysis.knowledge import (
    DEFAULT_KNOWLEDGE,
    NO_MATCH_CONTEXT,
    KnowledgeBase,
)


class TestBuildContext:
    """Substring matching of snippet keys against subject and body."""

    def test_matches_key_in_body(self) -> None:
        context = KnowledgeBase().build_context("Help", "I have a billing question")
        assert context == f"Common Issue (billing): {DEFAULT_KNOWLEDGE['common_issues']['billing']}"

    def test_underscore_key_matches_spaced_words(self) -> None:
        context = KnowledgeBase().build_context("What is your response time?", "")
        assert context.startswith("Policy (response_time):")

    def test_multiple_matches_in_category_order(self) -> None:
        context = KnowledgeBase().build_context("Refund", "My login fails and I want a refund")
        lines = context.split("\n")
        assert lines[0].startswith("Policy (refund):")
        assert lines[1].startswith("Common Issue (login):")

    def test_matches_inside_longer_words(self) -> None:
        context = KnowledgeBase().build_context("", "I need technical supporting documents")
        assert "Product Info (support):" in context
        assert "Common Issue (technical):" in context

    def test_case_insensitive(self) -> None:
        context = KnowledgeBase().build_context("PRIVACY concern", "")
        assert context.startswith("Policy (privacy):")

    def test_no_match(self) -> None:
        assert KnowledgeBase().build_context("Hello", "Just saying hi") == NO_MATCH_CONTEXT

    def test_empty_knowledge_base(self) -> None:
        kb = KnowledgeBase({})
        assert kb.build_context("billing", "refund") == NO_MATCH_CONTEXT


class TestUpdate:
    def test_adds_snippet(self) -> None:
        kb = KnowledgeBase()
        kb.update("products", "widget", "The widget does things.")
        assert kb.get()["products"]["widget"] == "The widget does things."
        assert "Product Info (widget)" in kb.build_context("", "my widget")

    def test_replaces_snippet(self) -> None:
        kb = KnowledgeBase()
        kb.update("policies", "refund", "No refunds.")
        assert kb.get()["policies"]["refund"] == "No refunds."

    def test_camel_case_alias(self) -> None:
        kb = KnowledgeBase()
        kb.update("commonIssues", "shipping", "Ships in 3 days.")
        assert kb.get()["common_issues"]["shipping"] == "Ships in 3 days."

    def test_unknown_category(self) -> None:
        with pytest.raises(ValueError, match="Invalid knowledge base category"):
            KnowledgeBase().update("faq", "x", "y")

    def test_get_returns_copy(self) -> None:
        kb = KnowledgeBase()
        kb.get()["products"]["injected"] = "nope"
        assert "injected" not in kb.get()["products"]

    def test_defaults_are_not_mutated(self) -> None:
        KnowledgeBase().update("products", "widget", "x")
        assert "widget" not in DEFAULT_KNOWLEDGE["products"]


class TestEntries:
    def test_yields_every_snippet(self) -> None:
        entries = list(KnowledgeBase().entries())
        assert len(entries) == sum(len(v) for v in DEFAULT_KNOWLEDGE.values())
        assert {e.category for e in entries} == {"products", "policies", "common_issues"}


class TestPersistence:
    def test_load_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        kb = KnowledgeBase.load(tmp_path / "missing.json")
        assert kb.get() == DEFAULT_KNOWLEDGE

    def test_save_then_load(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "knowledge.json"
        kb = KnowledgeBase()
        kb.update("products", "widget", "Widget info")
        kb.save(path)

        reloaded = KnowledgeBase.load(path)
        assert reloaded.get()["products"]["widget"] == "Widget info"

    def test_load_normalizes_camel_case_category(self, tmp_path: Path) -> None:
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps({"commonIssues": {"login": "Reset it."}}))

        kb = KnowledgeBase.load(path)

        data = kb.get()
        assert data["common_issues"] == {"login": "Reset it."}
        assert data["products"] == {}
        assert "commonIssues" not in data
