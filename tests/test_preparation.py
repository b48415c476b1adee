"""Tests for embedding text preparation."""

from __future__ import annotations

from filecatalog.embedding.preparation import (
    CODE_CHARS,
    MAX_CHARS,
    prepare_code_content,
    prepare_content,
    prepare_document_content,
    prepare_text,
    purpose_of,
)
from filecatalog.models import ContentRecord, ContentType


def _record(text: str, language=None, annotations=None) -> ContentRecord:
    return ContentRecord(
        file_id=1,
        content_type=ContentType.RAW,
        text=text,
        language=language,
        annotations=annotations or {},
    )


class TestPurpose:
    """Test content purpose detection."""

    def test_code(self):
        """Test a programming language marks code."""
        assert purpose_of(_record("x", language="ruby")) == "code"

    def test_markdown_is_document(self):
        """Test markdown counts as a document."""
        assert purpose_of(_record("x", language="markdown")) == "document"

    def test_title_annotation_is_document(self):
        """Test a title annotation marks a document."""
        assert purpose_of(_record("x", annotations={"title": "Report"})) == "document"

    def test_generic(self):
        """Test plain content is generic."""
        assert purpose_of(_record("x")) == "generic"


class TestGeneric:
    """Test generic preparation."""

    def test_short_text_stripped(self):
        """Test surrounding whitespace is stripped."""
        assert prepare_content("  hello  ") == "hello"

    def test_truncated_to_budget(self):
        """Test long text is cut to the default budget."""
        prepared = prepare_content("a" * (MAX_CHARS + 500))
        assert prepared == "a" * MAX_CHARS + "..."

    def test_custom_budget(self):
        """Test a custom budget is honoured."""
        assert prepare_content("abcdef", max_chars=3) == "abc..."

    def test_empty(self):
        """Test empty text stays empty."""
        assert prepare_content("") == ""


class TestCode:
    """Test code preparation."""

    def test_appends_structure_summary(self):
        """Test classes and methods are summarised after the code."""
        prepared = prepare_code_content(
            "class A; end", {"classes": ["A", "B"], "methods": ["run", "stop"]}
        )
        assert prepared == "class A; end\n\nClasses: A, B\n\nMethods: run, stop"

    def test_without_annotations(self):
        """Test code without annotations is unchanged."""
        assert prepare_code_content("def f(): pass", {}) == "def f(): pass"

    def test_head_only(self):
        """Test only the head of long code is kept."""
        prepared = prepare_code_content("x" * (CODE_CHARS * 2), {"classes": ["A"]})
        assert prepared.startswith("x" * CODE_CHARS + "\n\nClasses: A")


class TestDocument:
    """Test document preparation."""

    def test_prepends_title_tags_category(self):
        """Test title, tags and category come before the body."""
        prepared = prepare_document_content(
            "Body text", {"title": "Guide", "tags": ["setup", "linux"], "category": "docs"}
        )
        assert prepared == "Title: Guide\n\nTags: setup, linux\n\nCategory: docs\n\nBody text"

    def test_single_tag_string(self):
        """Test a single tag given as a string."""
        assert prepare_document_content("Body", {"tags": "one"}) == "Tags: one\n\nBody"

    def test_body_only(self):
        """Test a document without annotations is just its body."""
        assert prepare_document_content("Body", {}) == "Body"


class TestPrepareText:
    """Test dispatch by purpose."""

    def test_dispatches_code(self):
        """Test code records use code preparation."""
        record = _record("puts 1", language="ruby", annotations={"methods": ["main"]})
        assert prepare_text(record).endswith("Methods: main")

    def test_dispatches_document(self):
        """Test document records use document preparation."""
        record = _record("Body", language="markdown", annotations={"title": "T"})
        assert prepare_text(record).startswith("Title: T")

    def test_dispatches_generic(self):
        """Test other records use generic preparation."""
        record = _record("abcdef")
        assert prepare_text(record, max_chars=2) == "ab..."
