"""
Catalog RAG Common Module

Shared infrastructure: configuration, error taxonomy, LLM and embedding
clients, vector store access and performance presets.
"""

from .config import RagConfig, load_config
from .errors import (
    CatalogRagError,
    AnalysisError,
    CatalogError,
    PipelineError,
    RetrievalError,
    GenerationError,
    PipelineTimeoutError,
)
from .presets import PerformanceMode, QueryOptions

__all__ = [
    "RagConfig",
    "load_config",
    "CatalogRagError",
    "AnalysisError",
    "CatalogError",
    "PipelineError",
    "RetrievalError",
    "GenerationError",
    "PipelineTimeoutError",
    "PerformanceMode",
    "QueryOptions",
]
