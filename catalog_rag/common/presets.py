"""
Performance presets and per-query options.

A preset trades latency for answer quality by fixing how many chunks are
retrieved, how many query variants are generated and which optional stages
run. Explicit options always win over the preset they were built from.
"""

import re
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional


class PerformanceMode(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    ACCURATE = "accurate"


PERFORMANCE_PRESETS: Dict[PerformanceMode, Dict[str, Any]] = {
    PerformanceMode.FAST: {
        "retrieval_count": 20,
        "max_queries": 3,
        "final_chunk_count": 6,
        "use_reranking": False,
        "use_compression": True,
        "use_multi_query": False,
        "similarity_threshold": 0.5,
        "max_tokens_per_chunk": 300,
    },
    PerformanceMode.BALANCED: {
        "retrieval_count": 30,
        "max_queries": 5,
        "final_chunk_count": 10,
        "use_reranking": True,
        "use_compression": True,
        "use_multi_query": True,
        "similarity_threshold": 0.5,
        "max_tokens_per_chunk": 400,
    },
    PerformanceMode.ACCURATE: {
        "retrieval_count": 50,
        "max_queries": 8,
        "final_chunk_count": 15,
        "use_reranking": True,
        "use_compression": True,
        "use_multi_query": True,
        "similarity_threshold": 0.4,
        "max_tokens_per_chunk": 600,
    },
}


@dataclass
class QueryOptions:
    """Options accepted by RAGPipeline.query()"""
    retrieval_count: int = 30
    similarity_threshold: float = 0.5
    product_name: Optional[str] = None
    use_reranking: bool = True
    use_compression: bool = True
    use_multi_query: bool = True
    max_queries: int = 5
    final_chunk_count: int = 10
    format_as_markdown: bool = True
    max_tokens_per_chunk: int = 400
    aggressive_compression: bool = False
    skip_generation: bool = False
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_preset(cls, mode, **overrides) -> "QueryOptions":
        """Build options from a preset, then apply explicit overrides"""
        preset = PERFORMANCE_PRESETS[PerformanceMode(mode)]
        options = cls(**preset)
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown query options: {sorted(unknown)}")
        explicit = {k: v for k, v in overrides.items() if v is not None}
        return replace(options, **explicit)

    @classmethod
    def from_config(cls, pipeline_config, **overrides) -> "QueryOptions":
        """
        Build options from PipelineConfig, then apply overrides.

        A known ``performance_mode`` replaces the preset-controlled fields;
        any other value ("custom") keeps the configured values as they are.
        """
        base = {
            f.name: getattr(pipeline_config, f.name)
            for f in fields(cls)
            if hasattr(pipeline_config, f.name)
        }
        mode = getattr(pipeline_config, "performance_mode", None)
        if mode in {m.value for m in PerformanceMode}:
            base.update(PERFORMANCE_PRESETS[PerformanceMode(mode)])
        options = cls(**base)
        explicit = {k: v for k, v in overrides.items() if v is not None}
        return replace(options, **explicit)


_COMPLEX_QUERY = re.compile(
    r"\b(compare|comparison|versus|vs\.?|difference|differ|all products|catalog|"
    r"which products|list of|range of)\b",
    re.IGNORECASE,
)
_GREETING = re.compile(r"^\s*(hi|hello|hey|thanks|thank you|ok|okay)\b", re.IGNORECASE)


def recommend_mode(query: str) -> PerformanceMode:
    """Pick a preset from the shape of the question"""
    words = query.split()
    if _GREETING.match(query) and len(words) <= 4:
        return PerformanceMode.FAST
    if _COMPLEX_QUERY.search(query) or len(words) > 25:
        return PerformanceMode.ACCURATE
    return PerformanceMode.BALANCED
