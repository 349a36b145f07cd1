"""
Context & Citation Builder
"""

from permsearch.services.context.builder import build_context, format_context
from permsearch.services.context.citations import (
    extract_citation_report,
    extract_citations,
    support_score,
)
from permsearch.services.context.models import (
    Citation,
    CitationReport,
    ContextBuildResult,
    ContextChunk,
)
from permsearch.services.context.tokens import (
    HeuristicTokenEstimator,
    TiktokenEstimator,
    TokenEstimator,
    get_token_estimator,
)

__all__ = [
    "build_context",
    "format_context",
    "extract_citations",
    "extract_citation_report",
    "support_score",
    "Citation",
    "CitationReport",
    "ContextBuildResult",
    "ContextChunk",
    "HeuristicTokenEstimator",
    "TiktokenEstimator",
    "TokenEstimator",
    "get_token_estimator",
]
