"""
Milvus Vector Database Module
Tenant-scoped vector search over chunk embeddings
"""

from permsearch.db.vector.client import (
    INDEX_PARAMS,
    INDEX_TYPE,
    METRIC_TYPE,
    SEARCH_PARAMS,
    build_filter_expr,
    close_milvus,
    get_collection,
    health_check,
    init_milvus,
    search_similar,
)

__all__ = [
    "init_milvus",
    "close_milvus",
    "get_collection",
    "build_filter_expr",
    "search_similar",
    "health_check",
    "INDEX_TYPE",
    "METRIC_TYPE",
    "INDEX_PARAMS",
    "SEARCH_PARAMS",
]
