"""
Milvus Vector Database Client
Tenant-scoped similarity search over chunk embeddings
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, connections, utility
from pymilvus.exceptions import MilvusException

from permsearch.core.config import settings
from permsearch.core.exceptions import RetrievalException, UpstreamUnavailableException
from permsearch.core.logging import get_logger

logger = get_logger(__name__)

_connected = False

# Milvus index configuration
INDEX_TYPE = "HNSW"
METRIC_TYPE = "COSINE"
INDEX_PARAMS = {
    "M": 16,
    "efConstruction": 256,
}
SEARCH_PARAMS = {
    "metric_type": METRIC_TYPE,
    "params": {"ef": 64},
}

OUTPUT_FIELDS = [
    "chunk_id",
    "tenant_id",
    "resource_id",
    "resource_type",
    "content",
    "location_metadata",
]


async def init_milvus() -> None:
    """Initialize Milvus connection and create the collection if missing"""
    global _connected

    loop = asyncio.get_running_loop()

    def _init():
        connections.connect(
            alias="default",
            host=settings.MILVUS_HOST,
            port=settings.MILVUS_PORT,
        )
        if not utility.has_collection(settings.MILVUS_COLLECTION):
            logger.info(f"Creating Milvus collection: {settings.MILVUS_COLLECTION}")
            _create_collection()

    try:
        logger.info(f"Connecting to Milvus at {settings.MILVUS_HOST}:{settings.MILVUS_PORT}")
        await loop.run_in_executor(None, _init)
        _connected = True
        logger.info("Milvus initialized successfully")
    except MilvusException as e:
        logger.error(f"Failed to initialize Milvus: {e}")
        raise UpstreamUnavailableException(
            message="Failed to initialize vector database",
            upstream="milvus",
            details={"error": str(e)},
        ) from e


async def close_milvus() -> None:
    """Close Milvus connection"""
    global _connected

    if _connected:
        connections.disconnect("default")
        _connected = False
        logger.info("Milvus connection closed")


def _create_collection() -> Collection:
    fields = [
        FieldSchema(name="chunk_key", dtype=DataType.VARCHAR, max_length=512, is_primary=True, auto_id=False),
        FieldSchema(name="embedding", dtype=DataType.FLOAT_VECTOR, dim=settings.EMBEDDING_DIMENSION),
        FieldSchema(name="chunk_id", dtype=DataType.VARCHAR, max_length=255),
        FieldSchema(name="tenant_id", dtype=DataType.VARCHAR, max_length=64),
        FieldSchema(name="resource_id", dtype=DataType.VARCHAR, max_length=255),
        FieldSchema(name="resource_type", dtype=DataType.VARCHAR, max_length=20),
        FieldSchema(name="created_at", dtype=DataType.INT64),
        FieldSchema(name="content", dtype=DataType.VARCHAR, max_length=65535),
        FieldSchema(name="location_metadata", dtype=DataType.JSON),
    ]
    schema = CollectionSchema(
        fields=fields,
        description="Tenant-scoped chunks with embeddings for semantic search",
    )
    collection = Collection(name=settings.MILVUS_COLLECTION, schema=schema)
    collection.create_index(
        field_name="embedding",
        index_params={
            "index_type": INDEX_TYPE,
            "metric_type": METRIC_TYPE,
            "params": INDEX_PARAMS,
        },
    )
    logger.info(f"Collection {settings.MILVUS_COLLECTION} created with HNSW index")
    return collection


def get_collection() -> Collection:
    """Get the chunk collection, loaded for search"""
    if not utility.has_collection(settings.MILVUS_COLLECTION):
        raise RetrievalException(
            message=f"Collection {settings.MILVUS_COLLECTION} does not exist",
            retriever="vector",
        )
    collection = Collection(settings.MILVUS_COLLECTION)
    collection.load()
    return collection


def _quote(value: str) -> str:
    return json.dumps(str(value))


def build_filter_expr(
    tenant_id: str,
    resource_types: Optional[Sequence[str]] = None,
    created_from: Optional[int] = None,
    created_to: Optional[int] = None,
    resource_refs: Optional[Sequence[Sequence[str]]] = None,
) -> str:
    """
    Build a Milvus boolean expression

    Values are JSON-quoted so IDs containing quotes cannot alter the
    expression.
    """
    parts = [f"tenant_id == {_quote(tenant_id)}"]
    if resource_types:
        parts.append(f"resource_type in [{', '.join(_quote(t) for t in resource_types)}]")
    if created_from is not None:
        parts.append(f"created_at >= {int(created_from)}")
    if created_to is not None:
        parts.append(f"created_at <= {int(created_to)}")
    if resource_refs is not None:
        if not resource_refs:
            parts.append('chunk_key == ""')
        else:
            by_type: Dict[str, List[str]] = {}
            for resource_type, resource_id in resource_refs:
                by_type.setdefault(resource_type, []).append(resource_id)
            alternatives = [
                f"(resource_type == {_quote(rtype)} and resource_id in "
                f"[{', '.join(_quote(i) for i in ids)}])"
                for rtype, ids in sorted(by_type.items())
            ]
            parts.append("(" + " or ".join(alternatives) + ")")
    return " and ".join(parts)


async def search_similar(
    query_embedding: Sequence[float],
    expr: str,
    limit: int,
) -> List[Dict[str, Any]]:
    """
    Search for similar chunks by vector similarity

    The blocking pymilvus call runs in a worker thread; if the awaiting
    task is cancelled the thread finishes and its result is discarded.

    Returns:
        Chunk dicts in descending similarity order
    """
    loop = asyncio.get_running_loop()

    def _search():
        try:
            collection = get_collection()
            results = collection.search(
                data=[list(query_embedding)],
                anns_field="embedding",
                param=SEARCH_PARAMS,
                limit=limit,
                expr=expr,
                output_fields=OUTPUT_FIELDS,
            )
        except MilvusException as e:
            logger.error(f"Failed to search Milvus: {e}")
            raise RetrievalException(
                message="Failed to search vector database",
                retriever="vector",
                details={"error": str(e)},
            ) from e

        chunks = []
        for hit in results[0]:
            chunks.append({
                "chunk_id": hit.entity.get("chunk_id"),
                "resource_id": hit.entity.get("resource_id"),
                "resource_type": hit.entity.get("resource_type"),
                "content": hit.entity.get("content"),
                "location_metadata": hit.entity.get("location_metadata") or {},
                "score": float(hit.score),
            })
        return chunks

    return await loop.run_in_executor(None, _search)


async def health_check() -> bool:
    """Check Milvus connectivity"""
    if not _connected:
        return False
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(
            None, lambda: utility.has_collection(settings.MILVUS_COLLECTION)
        )
    except MilvusException as e:
        logger.error(f"Milvus health check failed: {e}")
        return False
