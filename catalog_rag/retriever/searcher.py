"""
Searcher

Multi-strategy evidence retrieval against the vector store.

- Standard:   one search per query variant, optionally locked to one product
- Catalog:    wide unfiltered search, at most 3 chunks per product
- Comparison: queries partitioned by product, each partition hard-filtered

Every strategy returns each chunk_id at most once, keeping the first
occurrence in query-processing order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..common.errors import RetrievalError
from .query_expander import CatalogMode, ComparisonMode, DirectMode, ExpandedQuery, StandardMode

logger = logging.getLogger("catalog_rag.retriever.searcher")

CATALOG_CHUNKS_PER_PRODUCT = 3
CATALOG_MIN_LIMIT = 50
CATALOG_MAX_THRESHOLD = 0.4
UNKNOWN_PRODUCT = "general"


@dataclass
class SearchResult:
    """A retrieved chunk"""
    chunk_id: str
    content: str
    score: float
    document_id: str = ""
    filename: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def product_name(self) -> str:
        return (
            self.metadata.get("productName")
            or self.metadata.get("product_name")
            or UNKNOWN_PRODUCT
        )

    @property
    def source_key(self) -> str:
        """Groups chunks from the same document (or product when no document id)"""
        return self.document_id or self.filename or self.product_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunkId": self.chunk_id,
            "documentId": self.document_id,
            "content": self.content,
            "filename": self.filename,
            "score": self.score,
            "metadata": self.metadata,
        }


class Searcher:
    """
    Runs the retrieval strategy selected by the query's mode.

    Embedding or vector store errors are raised as RetrievalError: there is
    no safe default evidence to fall back to.
    """

    def __init__(self, vector_store, embedding_service):
        """
        Args:
            vector_store: search(vector, limit, score_threshold, filter) -> hit dicts
            embedding_service: embed(text) and, optionally, embed_batch(texts)
        """
        self._store = vector_store
        self._embedding = embedding_service

    async def search(
        self,
        expanded: ExpandedQuery,
        retrieval_count: int = 30,
        similarity_threshold: float = 0.5,
    ) -> List[SearchResult]:
        mode = expanded.mode
        queries = list(expanded.search_queries) or [expanded.normalized_query]

        if isinstance(mode, DirectMode):
            return []
        if isinstance(mode, CatalogMode):
            return await self._catalog_search(queries, retrieval_count, similarity_threshold)
        if isinstance(mode, ComparisonMode):
            return await self._comparison_search(queries, list(mode.products), retrieval_count, similarity_threshold)
        if isinstance(mode, StandardMode):
            return await self._standard_search(queries, retrieval_count, similarity_threshold, mode.locked_product)
        raise TypeError(f"Unknown query mode: {mode!r}")

    async def _standard_search(
        self,
        queries: List[str],
        limit: int,
        threshold: float,
        product: Optional[str] = None,
    ) -> List[SearchResult]:
        vectors = await self._embed_all(queries)
        batches = await self._search_all(vectors, limit, threshold, product)
        results = merge_unique(batches)
        logger.info("Standard search: %d queries -> %d unique chunks%s",
                    len(queries), len(results), f" (locked to {product})" if product else "")
        return results

    async def _catalog_search(self, queries: List[str], retrieval_count: int, threshold: float) -> List[SearchResult]:
        limit = max(retrieval_count * 2, CATALOG_MIN_LIMIT)
        threshold = min(threshold, CATALOG_MAX_THRESHOLD)
        vectors = await self._embed_all(queries)
        batches = await self._search_all(vectors, limit, threshold, None)
        results = group_by_product(merge_unique(batches), CATALOG_CHUNKS_PER_PRODUCT)
        logger.info("Catalog search: %d chunks across %d products",
                    len(results), len({r.product_name for r in results}))
        return results

    async def _comparison_search(
        self,
        queries: List[str],
        products: List[str],
        limit: int,
        threshold: float,
    ) -> List[SearchResult]:
        partitions = partition_by_product(queries, products)

        async def for_product(product: str) -> List[SearchResult]:
            product_queries = partitions.get(product) or [product]
            vectors = await self._embed_all(product_queries)
            results = merge_unique(await self._search_all(vectors, limit, threshold, product))
            if not results:
                logger.info("No filtered results for %s, retrying without product filter", product)
                results = merge_unique(await self._search_all(vectors, limit, threshold, None))
            return results

        per_product = await asyncio.gather(*(for_product(p) for p in products))
        results = merge_unique(per_product)
        logger.info("Comparison search: %s -> %d unique chunks",
                    ", ".join(f"{p}={len(r)}" for p, r in zip(products, per_product)), len(results))
        return results

    async def _embed_all(self, texts: List[str]) -> List[List[float]]:
        """One batched call when supported, otherwise concurrent single calls"""
        try:
            if hasattr(self._embedding, "embed_batch"):
                return list(await self._embedding.embed_batch(texts))
            return list(await asyncio.gather(*(self._embedding.embed(t) for t in texts)))
        except Exception as e:
            logger.error("Embedding failed: %s", e, exc_info=True)
            raise RetrievalError(f"embedding failed: {e}") from e

    async def _search_all(
        self,
        vectors: Sequence[List[float]],
        limit: int,
        threshold: float,
        product: Optional[str],
    ) -> List[List[SearchResult]]:
        search_filter = {"product_name": product} if product else None
        try:
            raw_batches = await asyncio.gather(*(
                self._store.search(vector, limit, threshold, search_filter) for vector in vectors
            ))
        except Exception as e:
            logger.error("Vector search failed: %s", e, exc_info=True)
            raise RetrievalError(f"vector search failed: {e}") from e
        return [[self._to_search_result(raw) for raw in batch] for batch in raw_batches]

    def _to_search_result(self, raw: Dict[str, Any]) -> SearchResult:
        """Convert a raw vector store hit to SearchResult"""
        metadata = raw.get("metadata") or {}
        return SearchResult(
            chunk_id=str(raw.get("id", metadata.get("chunkId", "unknown"))),
            content=raw.get("content") or metadata.get("content", ""),
            score=float(raw.get("score", 0.0)),
            document_id=str(raw.get("document_id") or metadata.get("documentId", "")),
            filename=raw.get("filename") or metadata.get("filename", ""),
            metadata=metadata,
        )


def merge_unique(batches: Sequence[Sequence[SearchResult]]) -> List[SearchResult]:
    """Flatten batches keeping the first occurrence of each chunk_id"""
    seen_ids = set()
    merged = []
    for batch in batches:
        for result in batch:
            if result.chunk_id not in seen_ids:
                seen_ids.add(result.chunk_id)
                merged.append(result)
    return merged


def group_by_product(results: List[SearchResult], per_product: int) -> List[SearchResult]:
    """Keep at most ``per_product`` chunks per product, in discovery order"""
    counts: Dict[str, int] = {}
    grouped = []
    for result in results:
        product = result.product_name
        if counts.get(product, 0) < per_product:
            counts[product] = counts.get(product, 0) + 1
            grouped.append(result)
    return grouped


def partition_by_product(queries: List[str], products: List[str]) -> Dict[str, List[str]]:
    """
    Assign each query to the product named in it.

    Longer names are checked first so "Dual Gel Insoles Pro" queries are
    not captured by "Dual Gel Insoles". Queries naming no product are dropped.
    """
    by_length = sorted(products, key=len, reverse=True)
    partitions: Dict[str, List[str]] = {p: [] for p in products}
    for query in queries:
        lower = query.lower()
        for product in by_length:
            if product.lower() in lower:
                partitions[product].append(query)
                break
        else:
            logger.debug("Comparison query names no product, skipping: %s", query)
    return partitions


def _normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def match_product(products: Sequence[str], metadata: Dict[str, Any], filename: str = "") -> Optional[str]:
    """
    Find which of ``products`` a chunk belongs to, or None.

    The chunk's own product name is tried first: an exact match, then
    containment either way. The filename is the last resort. Longer names
    win ties, so a "Dual Gel Insoles Pro" chunk is never filed under
    "Dual Gel Insoles".
    """
    by_length = sorted(products, key=len, reverse=True)
    chunk_product = _normalize_name(str(metadata.get("productName") or metadata.get("product_name") or ""))
    if chunk_product:
        for product in by_length:
            if _normalize_name(product) == chunk_product:
                return product
        for product in by_length:
            name = _normalize_name(product)
            if name in chunk_product or chunk_product in name:
                return product
    lower_filename = _normalize_name(filename)
    if lower_filename:
        for product in by_length:
            if _normalize_name(product) in lower_filename:
                return product
    return None
