"""
Answer Pipeline
Coordinates permitted retrieval, context assembly, generation and citation
verification

Each stage is timed; the timings feed the per-stage latency histogram.
"""

import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from permsearch.core.config import settings
from permsearch.core.exceptions import AppException, RAGException
from permsearch.core.logging import get_logger
from permsearch.monitoring.metrics import track_query_latency
from permsearch.services.context import (
    build_context,
    extract_citation_report,
    format_context,
)
from permsearch.services.llm import BaseLLMClient, LLMOptions, Message, get_llm_service
from permsearch.services.rag.models import AnswerOptions, AnswerResult, StageTiming
from permsearch.services.retrieval import ACLFilteredRetriever, RetrievalOptions, get_retriever

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = """You answer questions using only the numbered sources provided.

Rules:
- Cite every statement with the number of its source in brackets, e.g. [1] or [2, 3]
- Only cite numbers that appear in the sources
- If the sources do not contain the answer, say so plainly"""

USER_PROMPT_TEMPLATE = """Sources:
{context}

Question: {query}"""

NO_CONTEXT_ANSWER = "No accessible sources contain information about this question."


class AnswerService:
    """
    Cited answers over the documents a user may read

    Pipeline:
    1. ACL-filtered retrieval
    2. Token-budgeted context assembly
    3. Generation with numbered sources
    4. Citation extraction and verification

    When nothing permitted is retrieved the generator is not called.
    """

    def __init__(
        self,
        retriever: Optional[ACLFilteredRetriever] = None,
        llm: Optional[BaseLLMClient] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        self._retriever = retriever
        self._llm = llm
        self.system_prompt = system_prompt

    @property
    def retriever(self) -> ACLFilteredRetriever:
        if self._retriever is None:
            self._retriever = get_retriever()
        return self._retriever

    @property
    def llm(self) -> BaseLLMClient:
        if self._llm is None:
            self._llm = get_llm_service()
        return self._llm

    @contextmanager
    def _stage(self, name: str, timings: List[StageTiming]) -> Iterator[Dict[str, Any]]:
        """Time a stage; unexpected errors are wrapped with the stage name"""
        metadata: Dict[str, Any] = {}
        start = time.time()
        try:
            yield metadata
        except Exception as e:
            timings.append(
                StageTiming(
                    stage_name=name,
                    duration_ms=(time.time() - start) * 1000,
                    success=False,
                    error=str(e),
                )
            )
            if isinstance(e, AppException):
                raise
            raise RAGException(f"{name} failed: {e}", stage=name) from e
        timings.append(
            StageTiming(stage_name=name, duration_ms=(time.time() - start) * 1000, metadata=metadata)
        )

    @track_query_latency(llm_provider=settings.LLM_PROVIDER)
    async def answer(
        self,
        tenant_id: str,
        user_id: str,
        query: str,
        options: Optional[AnswerOptions] = None,
    ) -> AnswerResult:
        """
        Answer a question from the user's permitted sources

        Args:
            tenant_id: Tenant scope
            user_id: Querying user
            query: Question text
            options: Retrieval, budget and verification options

        Returns:
            AnswerResult with answer text, citations and stage timings

        Raises:
            ValidationException: If the query is empty
            RetrievalException: If search is unavailable
            LLMException: If generation fails
        """
        opts = options or AnswerOptions()
        start_time = time.time()
        query_id = str(uuid.uuid4())
        timings: List[StageTiming] = []

        with self._stage("retrieval", timings) as meta:
            retrieval = await self.retriever.retrieve(
                tenant_id,
                user_id,
                query,
                RetrievalOptions(top_k=opts.top_k, filters=opts.filters),
            )
            meta.update(hits=retrieval.total_results, degraded=retrieval.degraded)

        with self._stage("context_assembly", timings) as meta:
            context = build_context(retrieval.hits, opts.max_context_tokens)
            meta.update(chunks=len(context.chunks), tokens=context.total_tokens)

        if not context.chunks:
            logger.info(f"No permitted context for query {query_id}; skipping generation")
            return self._result(
                query, NO_CONTEXT_ANSWER, query_id, start_time, timings,
                degraded=retrieval.degraded,
            )

        with self._stage("generation", timings) as meta:
            response = await self.llm.chat(
                [
                    Message(role="system", content=self.system_prompt),
                    Message(
                        role="user",
                        content=USER_PROMPT_TEMPLATE.format(
                            context=format_context(context), query=query.strip()
                        ),
                    ),
                ],
                LLMOptions(),
            )
            meta.update(model=response.model, tokens=response.total_tokens)

        with self._stage("citation_extraction", timings) as meta:
            report = extract_citation_report(
                response.content, context.chunks, verify=opts.verify_citations
            )
            meta.update(
                citations=len(report.citations),
                unknown=len(report.unknown_markers),
                weak=len(report.weakly_supported),
            )

        result = self._result(
            query,
            response.content,
            query_id,
            start_time,
            timings,
            degraded=retrieval.degraded,
            citations=report.citations,
            unknown_markers=report.unknown_markers,
            context=[c.model_dump() for c in context.chunks] if opts.include_context else [],
            context_tokens=context.total_tokens,
            llm_model=response.model,
        )
        logger.info(
            f"Answer completed in {result.processing_time_ms:.0f}ms "
            f"(id={query_id}, sources={len(context.chunks)}, citations={len(report.citations)})"
        )
        return result

    @staticmethod
    def _result(
        query: str,
        answer: str,
        query_id: str,
        start_time: float,
        timings: List[StageTiming],
        **fields,
    ) -> AnswerResult:
        return AnswerResult(
            query=query,
            answer=answer,
            query_id=query_id,
            processing_time_ms=round((time.time() - start_time) * 1000, 2),
            stage_timings=timings,
            **fields,
        )


# Global answer service instance
_answer_service: Optional[AnswerService] = None


def get_answer_service() -> AnswerService:
    """Get the global answer service"""
    global _answer_service
    if _answer_service is None:
        _answer_service = AnswerService()
    return _answer_service


async def answer(
    tenant_id: str,
    user_id: str,
    query: str,
    options: Optional[AnswerOptions] = None,
) -> AnswerResult:
    """Convenience function for answer generation"""
    return await get_answer_service().answer(tenant_id, user_id, query, options)
