"""
Retriever - Product Question Answering

Answers questions over product documents with a staged RAG pipeline.

Key Components:
- QueryAnalyzer: classifies the query and detects catalog products
- QueryExpander: normalizes the query and plans search variants by mode
- Searcher: standard, catalog and comparison retrieval from the vector store
- Reranker: multi-criteria LLM scoring or fast lexical heuristics
- ContextualCompressor: keeps the most relevant sentences per chunk
- ResponseAssembler: cited answer generation and missing-context detection

Pipeline:
1. Analyze the query (one completion call, conservative fallback)
2. Expand into search queries for the selected mode
3. Retrieve and deduplicate chunks
4. Rerank, keep the best candidates
5. Compress each chunk under a token cap
6. Generate the cited answer
"""

from .analyzer import QueryAnalyzer, QueryAnalysis, QueryType
from .query_expander import QueryExpander, ExpandedQuery, DirectMode, CatalogMode, ComparisonMode, StandardMode
from .searcher import Searcher, SearchResult
from .reranker import Reranker, RankedResult
from .compressor import ContextualCompressor, CompressedChunk
from .citations import CitationParser, UsedChunkCitationParser
from .synthesizer import ResponseAssembler, AssembledResponse, ContextAnalysis, ResponseStyle
from .pipeline import RAGPipeline, PipelineResponse, build_pipeline

__all__ = [
    "QueryAnalyzer",
    "QueryAnalysis",
    "QueryType",
    "QueryExpander",
    "ExpandedQuery",
    "DirectMode",
    "CatalogMode",
    "ComparisonMode",
    "StandardMode",
    "Searcher",
    "SearchResult",
    "Reranker",
    "RankedResult",
    "ContextualCompressor",
    "CompressedChunk",
    "CitationParser",
    "UsedChunkCitationParser",
    "ResponseAssembler",
    "AssembledResponse",
    "ContextAnalysis",
    "ResponseStyle",
    "RAGPipeline",
    "PipelineResponse",
    "build_pipeline",
]
