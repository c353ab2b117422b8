"""
Vector Store

Similarity search over product document chunks stored in Qdrant.
Returns plain dicts ({id, score, content, filename, metadata}) so the
retriever does not depend on Qdrant types.
"""

import logging
from typing import Any, Dict, List, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchValue

logger = logging.getLogger("catalog_rag.common.vector_store")


class QdrantVectorStore:
    """
    Async Qdrant search wrapper.

    Usage:
        store = QdrantVectorStore(url="http://localhost:6333", collection="product_documents")
        hits = await store.search(vector, limit=30, score_threshold=0.5,
                                  filter={"product_name": "Frido Dual Gel Insoles"})
    """

    def __init__(
        self,
        url: str = "http://localhost:6333",
        collection: str = "product_documents",
        api_key: Optional[str] = None,
        product_field: str = "metadata.productName",
        client: Optional[AsyncQdrantClient] = None,
    ):
        self.collection = collection
        self.product_field = product_field
        self._client = client or AsyncQdrantClient(url=url, api_key=api_key or None)

    @classmethod
    def from_config(cls, vector_store_config) -> "QdrantVectorStore":
        return cls(
            url=vector_store_config.url,
            collection=vector_store_config.collection,
            api_key=vector_store_config.api_key or None,
            product_field=vector_store_config.product_field,
        )

    def _build_filter(self, filter: Optional[Dict[str, Any]]) -> Optional[Filter]:
        if not filter or not filter.get("product_name"):
            return None
        return Filter(must=[
            FieldCondition(key=self.product_field, match=MatchValue(value=filter["product_name"])),
        ])

    async def search(
        self,
        vector: List[float],
        limit: int,
        score_threshold: Optional[float] = None,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run one similarity search.

        Args:
            vector: Query embedding
            limit: Max hits
            score_threshold: Drop hits scoring below this
            filter: Optional {"product_name": name} hard filter

        Returns:
            Hits as dicts, best first
        """
        response = await self._client.query_points(
            collection_name=self.collection,
            query=list(vector),
            limit=limit,
            query_filter=self._build_filter(filter),
            with_payload=True,
            score_threshold=score_threshold,
        )
        return [self._to_hit(point) for point in response.points]

    @staticmethod
    def _to_hit(point) -> Dict[str, Any]:
        payload = point.payload or {}
        metadata = payload.get("metadata") or {}
        content = payload.get("content") or payload.get("text") or payload.get("page_content") or ""
        return {
            "id": str(point.id),
            "score": float(point.score),
            "content": content,
            "filename": payload.get("filename") or metadata.get("filename", ""),
            "document_id": payload.get("document_id") or metadata.get("documentId", ""),
            "metadata": metadata,
        }

    async def close(self) -> None:
        await self._client.close()
