"""
Answer Services
Cited answers from permission-filtered retrieval
"""

from permsearch.services.rag.models import AnswerOptions, AnswerResult, StageTiming
from permsearch.services.rag.pipeline import AnswerService, answer, get_answer_service

__all__ = [
    "AnswerOptions",
    "AnswerResult",
    "AnswerService",
    "StageTiming",
    "answer",
    "get_answer_service",
]
