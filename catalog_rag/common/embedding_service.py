"""
Embedding Service

On-device query embedding with fastembed. The model is loaded lazily on
first use; embedding runs in a worker thread so the pipeline's event loop
keeps serving other requests.
"""

import asyncio
import logging
import threading
from typing import List, Optional

import numpy as np

logger = logging.getLogger("catalog_rag.common.embedding_service")


class EmbeddingService:
    """
    Embedding service for query vectors.

    Uses fastembed for on-device embedding generation, so queries never
    leave the process for an external embedding API.
    """

    def __init__(self, model: str = "BAAI/bge-small-en-v1.5", batch_size: int = 32):
        self._model_name = model
        self._batch_size = batch_size
        self._model = None
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self._model_name

    def _get_model(self):
        with self._lock:
            if self._model is None:
                from fastembed import TextEmbedding

                self._model = TextEmbedding(model_name=self._model_name)
                logger.info("Loaded embedding model %s", self._model_name)
        return self._model

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts (blocking).

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors
        """
        if not texts:
            return []
        if any(not t for t in texts):
            raise ValueError("Cannot embed empty text")

        model = self._get_model()
        vectors = list(model.embed(texts, batch_size=self._batch_size))
        return [np.asarray(v, dtype=np.float32).tolist() for v in vectors]

    async def embed(self, text: str) -> List[float]:
        """Embed a single text"""
        vectors = await asyncio.to_thread(self.embed_texts, [text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts in one batched model call"""
        return await asyncio.to_thread(self.embed_texts, list(texts))


_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service(model: str = "BAAI/bge-small-en-v1.5", batch_size: int = 32) -> EmbeddingService:
    """Get or create the process-wide embedding service"""
    global _embedding_service
    if _embedding_service is None or _embedding_service.model_name != model:
        _embedding_service = EmbeddingService(model=model, batch_size=batch_size)
    return _embedding_service
