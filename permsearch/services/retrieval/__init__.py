"""
Retrieval Services
Keyword and vector search, RRF fusion and ACL filtering
"""

from permsearch.services.retrieval.base import BaseRetriever
from permsearch.services.retrieval.hybrid import HybridSearchFuser, fuse_rankings
from permsearch.services.retrieval.keyword import KeywordRetriever
from permsearch.services.retrieval.models import (
    FusedSearchResult,
    RetrievalOptions,
    RetrievalResult,
    SearchFilters,
    SearchHit,
)
from permsearch.services.retrieval.service import (
    ACLFilteredRetriever,
    build_fuser,
    get_retriever,
    retrieve,
)
from permsearch.services.retrieval.vector import DatabaseVectorRetriever, MilvusVectorRetriever

__all__ = [
    # Main service
    "ACLFilteredRetriever",
    "get_retriever",
    "retrieve",
    "build_fuser",
    # Search branches
    "BaseRetriever",
    "KeywordRetriever",
    "DatabaseVectorRetriever",
    "MilvusVectorRetriever",
    # Fusion
    "HybridSearchFuser",
    "fuse_rankings",
    # Models
    "FusedSearchResult",
    "RetrievalOptions",
    "RetrievalResult",
    "SearchFilters",
    "SearchHit",
]
