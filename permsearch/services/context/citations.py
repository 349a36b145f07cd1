"""
Citation Extraction
Resolves bracketed markers in generated text to context chunks and checks
that the citing sentence is supported by the cited chunk
"""

import re
from typing import Dict, List, Optional, Sequence, Set, Tuple

from permsearch.core.config import settings
from permsearch.core.logging import get_logger
from permsearch.monitoring.metrics import citations_total
from permsearch.services.context.models import Citation, CitationReport, ContextChunk

logger = get_logger(__name__)

# [1], [1, 3], [1,3]; adjacent markers like [2][3] match separately.
# Longer digit runs are never a context index and stay plain text.
MARKER_RE = re.compile(r"\[(\d{1,6}(?:\s*,\s*\d{1,6})*)\]")
SENTENCE_END_RE = re.compile(r"[.!?]+(?=\s|$)|\n+")
WORD_RE = re.compile(r"\w+", re.UNICODE)

# Words this short carry little evidence either way
MIN_WORD_LENGTH = 3


def _words(text: str) -> Set[str]:
    return {w for w in WORD_RE.findall(text.lower()) if len(w) >= MIN_WORD_LENGTH}


def _sentence_spans(text: str) -> List[Tuple[int, int]]:
    spans = []
    start = 0
    for match in SENTENCE_END_RE.finditer(text):
        spans.append((start, match.end()))
        start = match.end()
    if start < len(text):
        spans.append((start, len(text)))
    return spans


def citing_sentence(text: str, position: int, spans: Optional[List[Tuple[int, int]]] = None) -> str:
    """
    The sentence a marker at `position` belongs to, markers removed

    A marker placed after the closing punctuation ("... grew. [1]") refers
    to the sentence before it.
    """
    spans = spans or _sentence_spans(text)
    for i, (start, end) in enumerate(spans):
        if start <= position < end:
            sentence = MARKER_RE.sub("", text[start:end]).strip()
            j = i
            while not _words(sentence) and j > 0:
                j -= 1
                prev_start, prev_end = spans[j]
                sentence = MARKER_RE.sub("", text[prev_start:prev_end]).strip()
            return sentence
    return ""


def support_score(sentence: str, content: str) -> Optional[float]:
    """Share of the sentence's words that also occur in the chunk"""
    sentence_words = _words(sentence)
    if not sentence_words:
        return None
    return len(sentence_words & _words(content)) / len(sentence_words)


def _snippet(content: str, max_chars: int) -> str:
    content = " ".join(content.split())
    if len(content) <= max_chars:
        return content
    cut = content[:max_chars].rsplit(" ", 1)[0]
    return f"{cut}..."


def extract_citation_report(
    generated_text: str,
    context_chunks: Sequence[ContextChunk],
    verify: bool = True,
    threshold: Optional[float] = None,
) -> CitationReport:
    """
    Extract citations and report markers that point at no context chunk

    Args:
        generated_text: Text produced by the generator
        context_chunks: Chunks the prompt was built from
        verify: Score each citation against its citing sentences
        threshold: Minimum support score (defaults to CITATION_SUPPORT_THRESHOLD)

    Returns:
        CitationReport with one citation per distinct known index, in order
        of first appearance
    """
    threshold = settings.CITATION_SUPPORT_THRESHOLD if threshold is None else threshold
    by_index: Dict[int, ContextChunk] = {c.citation_index: c for c in context_chunks}
    spans = _sentence_spans(generated_text)

    order: List[int] = []
    sentences: Dict[int, List[str]] = {}
    unknown: List[int] = []

    for match in MARKER_RE.finditer(generated_text):
        for raw in match.group(1).split(","):
            index = int(raw)
            if index not in by_index:
                if index not in unknown:
                    unknown.append(index)
                continue
            if index not in sentences:
                order.append(index)
                sentences[index] = []
            if verify:
                sentences[index].append(citing_sentence(generated_text, match.start(), spans))

    citations = []
    for index in order:
        chunk = by_index[index]
        score = None
        if verify:
            scores = [
                s for s in (support_score(sentence, chunk.content) for sentence in sentences[index])
                if s is not None
            ]
            score = max(scores) if scores else None

        weak = score is not None and score < threshold
        citations_total.labels(result="weak_support" if weak else "valid").inc()
        citations.append(
            Citation(
                index=index,
                resource_id=chunk.resource_id,
                resource_type=chunk.resource_type,
                chunk_id=chunk.chunk_id,
                snippet=_snippet(chunk.content, settings.CITATION_SNIPPET_CHARS),
                location_metadata=chunk.location_metadata,
                support_score=score,
                weak_support=weak,
            )
        )

    if unknown:
        citations_total.labels(result="unknown").inc(len(unknown))
        logger.warning(
            f"Generated text cites unknown sources {unknown}; "
            f"context has {len(context_chunks)} chunks"
        )

    return CitationReport(citations=citations, unknown_markers=unknown)


def extract_citations(
    generated_text: str,
    context_chunks: Sequence[ContextChunk],
    verify: bool = True,
    threshold: Optional[float] = None,
) -> List[Citation]:
    """Citations for each distinct known marker, ordered by first appearance"""
    return extract_citation_report(
        generated_text, context_chunks, verify=verify, threshold=threshold
    ).citations
