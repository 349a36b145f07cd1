#!/usr/bin/env python3
"""
Unit Tests for Citation Extraction
Tests for permsearch/services/context/citations.py
"""

import pytest

from permsearch.services.context import (
    ContextChunk,
    extract_citation_report,
    extract_citations,
    support_score,
)
from permsearch.services.context.citations import citing_sentence


def chunk(index, content, resource_id=None):
    return ContextChunk(
        chunk_id=f"c{index}",
        resource_id=resource_id or f"D{index}",
        content=content,
        citation_index=index,
        token_count=len(content.split()),
    )


@pytest.fixture
def context():
    return [
        chunk(1, "Quarterly revenue grew twelve percent in the third quarter."),
        chunk(2, "The office relocation is planned for next spring."),
        chunk(3, "Headcount increased by forty engineers this year."),
    ]


class TestMarkers:
    """Test marker parsing"""

    def test_distinct_markers_in_order(self, context):
        """Test [1] and [3] resolve to their chunks"""
        text = "Revenue grew twelve percent [1]. Headcount increased by forty [3]."

        citations = extract_citations(text, context)

        assert [(c.index, c.resource_id) for c in citations] == [(1, "D1"), (3, "D3")]

    def test_grouped_marker(self, context):
        """Test [1, 3] yields two citations"""
        citations = extract_citations("Growth in revenue and headcount [1, 3].", context)
        assert [c.index for c in citations] == [1, 3]

    def test_adjacent_markers(self, context):
        citations = extract_citations("Both happened [3][1].", context, verify=False)
        assert [c.index for c in citations] == [3, 1]

    def test_repeated_marker_cited_once(self, context):
        text = "Revenue grew [1]. It grew twelve percent [1]."
        assert [c.index for c in extract_citations(text, context)] == [1]

    def test_unknown_marker_reported(self, context):
        """Test an index beyond the context is not resolved"""
        report = extract_citation_report("Revenue grew [1]. Profit doubled [7] [7].", context)

        assert [c.index for c in report.citations] == [1]
        assert report.unknown_markers == [7]

    def test_oversized_marker_ignored(self, context):
        """Test a bracketed digit run too long for an index is left as text"""
        text = "Revenue grew [1]. See [" + "9" * 5000 + "] and [1234567]."

        report = extract_citation_report(text, context)

        assert [c.index for c in report.citations] == [1]
        assert report.unknown_markers == []

    def test_no_markers(self, context):
        report = extract_citation_report("No sources cover this.", context)
        assert report.citations == []
        assert report.unknown_markers == []

    def test_snippet_and_metadata(self):
        long = chunk(1, " ".join(["alpha"] * 200))
        citation = extract_citations("Alpha [1].", [long])[0]
        assert citation.snippet.endswith("...")
        assert len(citation.snippet) <= 243
        assert citation.chunk_id == "c1"


class TestSupport:
    """Test lexical support checks"""

    def test_supported_citation(self, context):
        citation = extract_citations("Quarterly revenue grew twelve percent [1].", context)[0]
        assert citation.support_score == pytest.approx(1.0)
        assert citation.weak_support is False

    def test_weak_citation_flagged(self, context):
        """Test a sentence unrelated to the cited chunk is weak"""
        citation = extract_citations("The office moves to Berlin next spring [1].", context)[0]
        assert citation.weak_support is True
        assert citation.support_score < 0.3

    def test_marker_after_punctuation(self, context):
        """Test a trailing marker is scored against the preceding sentence"""
        citation = extract_citations(
            "Headcount increased by forty engineers. [3]", context
        )[0]
        assert citation.weak_support is False

    def test_best_sentence_counts(self, context):
        text = "Unrelated musings about weather [2]. The office relocation is planned [2]."
        citation = extract_citations(text, context)[0]
        assert citation.weak_support is False

    def test_verification_disabled(self, context):
        citation = extract_citations("Nothing alike [2].", context, verify=False)[0]
        assert citation.support_score is None
        assert citation.weak_support is False

    def test_custom_threshold(self, context):
        citation = extract_citations(
            "Revenue and weather both grew [1].", context, threshold=0.99
        )[0]
        assert citation.weak_support is True

    def test_support_score(self):
        assert support_score("revenue grew fast", "Revenue grew slowly") == pytest.approx(2 / 3)
        assert support_score("a an", "anything") is None

    def test_citing_sentence(self):
        text = "First point. Second point [2]."
        assert citing_sentence(text, text.index("[2]")) == "Second point ."
