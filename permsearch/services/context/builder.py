"""
Context Builder
Packs ranked hits into a token budget and renders them with citation markers
"""

from typing import Iterable, Optional

from permsearch.core.config import settings
from permsearch.core.logging import get_logger
from permsearch.services.context.models import ContextBuildResult, ContextChunk
from permsearch.services.context.tokens import TokenEstimator, get_token_estimator
from permsearch.services.retrieval.models import SearchHit

logger = get_logger(__name__)


def build_context(
    hits: Iterable[SearchHit],
    max_token_budget: Optional[int] = None,
    estimator: Optional[TokenEstimator] = None,
) -> ContextBuildResult:
    """
    Greedily accept hits in rank order while they fit the budget

    A chunk is taken whole or skipped; a skipped chunk does not stop the
    scan, so a later, smaller chunk may still fit. Citation indices are
    1-based positions in the accepted list. Running out of budget is a
    normal stop, not an error.

    Args:
        hits: Permitted hits in rank order
        max_token_budget: Token ceiling (defaults to CONTEXT_MAX_TOKENS)
        estimator: Token estimator (defaults to TOKEN_ESTIMATOR)

    Returns:
        ContextBuildResult whose total_tokens never exceeds the budget
    """
    budget = settings.CONTEXT_MAX_TOKENS if max_token_budget is None else max_token_budget
    budget = max(budget, 0)
    estimator = estimator or get_token_estimator()

    result = ContextBuildResult(max_token_budget=budget)
    seen = set()

    for hit in hits:
        if hit.chunk_id in seen:
            continue
        seen.add(hit.chunk_id)

        if not hit.content.strip():
            continue

        tokens = estimator.count(hit.content)
        if result.total_tokens + tokens > budget:
            result.skipped_chunk_ids.append(hit.chunk_id)
            continue

        result.chunks.append(
            ContextChunk(
                chunk_id=hit.chunk_id,
                resource_id=hit.resource_id,
                resource_type=hit.resource_type,
                content=hit.content,
                citation_index=len(result.chunks) + 1,
                token_count=tokens,
                location_metadata=hit.location_metadata,
            )
        )
        result.total_tokens += tokens

    if result.skipped_chunk_ids:
        logger.debug(
            f"Context budget {budget}: accepted {len(result.chunks)} chunks "
            f"({result.total_tokens} tokens), skipped {len(result.skipped_chunk_ids)}"
        )
    return result


def format_context(context: ContextBuildResult) -> str:
    """Render accepted chunks as numbered sources for the prompt"""
    blocks = []
    for chunk in context.chunks:
        location = ", ".join(f"{k}: {v}" for k, v in sorted(chunk.location_metadata.items()))
        header = f"[{chunk.citation_index}] {chunk.resource_type} {chunk.resource_id}"
        if location:
            header += f" ({location})"
        blocks.append(f"{header}\n{chunk.content.strip()}")
    return "\n\n".join(blocks)
