"""
RAG Pipeline

Runs one question through every stage, strictly in order:

    analysis -> expansion -> retrieval -> reranking -> compression -> generation

Each stage needs the complete output of the previous one, so there is no
overlap between stages. Concurrency happens only inside a stage (embedding
and search fan-out, per-product query generation, rerank batches).

Failure policy:
- analysis/expansion failures are recovered inside those stages
- zero retrieved chunks is not an error: a fixed "no information" answer
- retrieval and generation failures propagate as PipelineError subclasses
- a caller-level timeout wraps the whole run (PipelineTimeoutError)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.errors import PipelineError, PipelineTimeoutError
from ..common.presets import QueryOptions
from .compressor import CompressedChunk, ContextualCompressor, estimate_tokens, truncate
from .query_expander import CatalogMode, ComparisonMode, ExpandedQuery, QueryExpander
from .reranker import RankedResult, Reranker, balance_products, retrieval_order
from .searcher import Searcher
from .synthesizer import (
    NO_EVIDENCE_RESPONSE,
    AnswerMode,
    ContextAnalysis,
    Priority,
    ResponseAssembler,
    ResponseStyle,
    analyze_context,
    detect_response_format,
)

logger = logging.getLogger("catalog_rag.retriever.pipeline")

# Rerank keeps this many candidates per final chunk for the compressor
RERANK_CANDIDATE_FACTOR = 2
LLM_RERANK_MIN_QUERIES = 3


@dataclass
class PipelineResponse:
    """Result of RAGPipeline.query()"""
    query: str
    response: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    context_analysis: ContextAnalysis = field(default_factory=lambda: ContextAnalysis(is_context_missing=False))
    stage_timings_ms: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "response": self.response,
            "sources": self.sources,
            "contextAnalysis": self.context_analysis.to_dict(),
            "performance": {"stageTimingsMs": dict(self.stage_timings_ms)},
            "metadata": self.metadata,
        }


class _StageTimer:
    """Collects per-stage wall time in milliseconds"""

    def __init__(self):
        self._started = time.perf_counter()
        self._mark = self._started
        self.timings: Dict[str, float] = {}

    def lap(self, stage: str) -> None:
        now = time.perf_counter()
        self.timings[stage] = round((now - self._mark) * 1000, 2)
        self._mark = now

    def finish(self) -> Dict[str, float]:
        self.timings["total"] = round((time.perf_counter() - self._started) * 1000, 2)
        return self.timings


class RAGPipeline:
    """
    Question answering over the product documents.

    Usage:
        pipeline = build_pipeline(load_config())
        result = await pipeline.query("price of dual gel insoles pro")
        print(result.response)
    """

    def __init__(
        self,
        analyzer,
        expander: QueryExpander,
        searcher: Searcher,
        reranker: Reranker,
        compressor: ContextualCompressor,
        assembler: ResponseAssembler,
        default_options: Optional[QueryOptions] = None,
        resolver=None,
        vector_store=None,
    ):
        self.analyzer = analyzer
        self.expander = expander
        self.searcher = searcher
        self.reranker = reranker
        self.compressor = compressor
        self.assembler = assembler
        self.default_options = default_options or QueryOptions()
        self.resolver = resolver
        self.vector_store = vector_store

    async def query(self, text: str, options: Optional[QueryOptions] = None) -> PipelineResponse:
        """
        Answer one question.

        Raises:
            RetrievalError: embedding or vector search failed
            GenerationError: the answer could not be generated
            PipelineTimeoutError: options.timeout_seconds expired
        """
        options = options or self.default_options
        timeout = options.timeout_seconds
        try:
            if timeout:
                return await asyncio.wait_for(self._run(text, options), timeout)
            return await self._run(text, options)
        except asyncio.TimeoutError as e:
            logger.error("Query timed out after %.1fs: %r", timeout, text)
            raise PipelineTimeoutError(f"pipeline exceeded {timeout}s") from e
        except PipelineError as e:
            logger.error("Query failed at %s stage: %s", e.stage, e.detail)
            raise

    async def _run(self, text: str, options: QueryOptions) -> PipelineResponse:
        timer = _StageTimer()

        analysis = await self.analyzer.analyze(text, product_hint=options.product_name)
        timer.lap("analysis")

        expanded = await self.expander.expand(
            analysis,
            text,
            use_multi_query=options.use_multi_query,
            max_queries=options.max_queries,
        )
        timer.lap("expansion")

        if not expanded.needs_rag:
            logger.info("Direct response for %s query", expanded.query_type.value)
            return PipelineResponse(
                query=text,
                response=expanded.direct_response or "",
                context_analysis=ContextAnalysis(
                    is_context_missing=False,
                    category=expanded.query_type.value,
                    priority=Priority.LOW,
                ),
                stage_timings_ms=timer.finish(),
                metadata=self._metadata(expanded, 0, 0, 0),
            )

        results = await self.searcher.search(
            expanded,
            retrieval_count=options.retrieval_count,
            similarity_threshold=options.similarity_threshold,
        )
        timer.lap("retrieval")

        if not results:
            logger.info("No evidence found for %r", text)
            return PipelineResponse(
                query=text,
                response=NO_EVIDENCE_RESPONSE,
                context_analysis=analyze_context(text, NO_EVIDENCE_RESPONSE),
                stage_timings_ms=timer.finish(),
                metadata=self._metadata(expanded, 0, 0, 0),
            )

        ranked = await self._rerank(results, expanded, options)
        timer.lap("reranking")

        final = _select_final(ranked, expanded, options.final_chunk_count)
        compressed = await self._compress(final, expanded, options)
        timer.lap("compression")

        if options.skip_generation:
            return PipelineResponse(
                query=text,
                response="",
                sources=[_source(r, c) for r, c in zip(final, compressed)],
                stage_timings_ms=timer.finish(),
                metadata=self._metadata(expanded, len(results), len(ranked), len(final)),
            )

        style = ResponseStyle.TEXT
        if options.format_as_markdown:
            style = await self.assembler.analyze_response_style(text, expanded.is_multi_product_query)

        assembled = await self.assembler.assemble(
            compressed,
            text,
            style=style,
            mode=_answer_mode(expanded),
            products=list(expanded.comparison_products or []),
        )
        timer.lap("generation")

        by_id = dict(zip(self.assembler.chunk_ids(compressed), zip(final, compressed)))
        sources = [_source(*by_id[cid]) for cid in assembled.used_chunk_ids if cid in by_id]

        timings = timer.finish()
        logger.info(
            "Answered %r: %d retrieved, %d reranked, %d final, %d cited in %.0fms",
            text, len(results), len(ranked), len(final), len(sources), timings["total"],
        )

        metadata = self._metadata(expanded, len(results), len(ranked), len(final))
        metadata["responseFormat"] = detect_response_format(assembled.response).value
        return PipelineResponse(
            query=text,
            response=assembled.response,
            sources=sources,
            context_analysis=analyze_context(text, assembled.response),
            stage_timings_ms=timings,
            metadata=metadata,
        )

    async def _rerank(self, results, expanded: ExpandedQuery, options: QueryOptions) -> List[RankedResult]:
        top_k = RERANK_CANDIDATE_FACTOR * options.final_chunk_count
        if not options.use_reranking:
            return retrieval_order(results, top_k)
        use_llm = expanded.is_multi_product_query or len(expanded.search_queries) >= LLM_RERANK_MIN_QUERIES
        return await self.reranker.rerank(results, expanded.normalized_query, top_k, use_llm=use_llm)

    async def _compress(self, final: List[RankedResult], expanded: ExpandedQuery, options: QueryOptions) -> List[CompressedChunk]:
        if options.use_compression:
            return await self.compressor.compress(
                final,
                expanded.normalized_query,
                max_tokens_per_chunk=options.max_tokens_per_chunk,
                aggressive=options.aggressive_compression,
            )

        chunks = []
        for result in final:
            content = truncate(result.content, options.max_tokens_per_chunk)
            chunks.append(CompressedChunk(
                original_chunk_id=result.chunk_id,
                compressed_content=content,
                token_estimate=estimate_tokens(content),
                original_length=len(result.content),
                filename=result.filename,
                rerank_score=result.rerank_score,
                metadata=result.metadata,
            ))
        return chunks

    @staticmethod
    def _metadata(expanded: ExpandedQuery, retrieved: int, reranked: int, final: int) -> Dict[str, Any]:
        return {
            "retrievedChunks": retrieved,
            "rerankedChunks": reranked,
            "finalChunks": final,
            "expandedQuery": expanded.to_dict(),
        }

    async def close(self) -> None:
        if self.vector_store is not None:
            await self.vector_store.close()


def _select_final(ranked: List[RankedResult], expanded: ExpandedQuery, count: int) -> List[RankedResult]:
    """Comparison answers keep a share of chunks for every compared product"""
    if isinstance(expanded.mode, ComparisonMode):
        return balance_products(ranked, list(expanded.mode.products), count)
    return ranked[:count]


def _answer_mode(expanded: ExpandedQuery) -> AnswerMode:
    if isinstance(expanded.mode, ComparisonMode):
        return AnswerMode.COMPARISON
    if isinstance(expanded.mode, CatalogMode):
        return AnswerMode.CATALOG
    return AnswerMode.STANDARD


def _source(result: RankedResult, chunk: CompressedChunk) -> Dict[str, Any]:
    data = result.to_dict()
    data["compressedContent"] = chunk.compressed_content
    data["tokenEstimate"] = chunk.token_estimate
    return data


def build_pipeline(config, default_options: Optional[QueryOptions] = None) -> RAGPipeline:
    """Wire every stage from a RagConfig"""
    from ..catalog.cache import CatalogCache, create_catalog_source
    from ..catalog.resolver import ProductResolver
    from ..common.embedding_service import get_embedding_service
    from ..common.llm_client import LLMClient
    from ..common.vector_store import QdrantVectorStore
    from .analyzer import QueryAnalyzer

    llm_client = LLMClient.from_config(config.llm)
    if not llm_client.is_available:
        logger.warning("LLM client unavailable (%s): answers will fail at generation", config.llm.provider)

    cache = CatalogCache(create_catalog_source(config.catalog), ttl_seconds=config.catalog.ttl_seconds)
    resolver = ProductResolver(cache, load_timeout=config.catalog.load_timeout)
    embedding = get_embedding_service(config.embedding.model, config.embedding.batch_size)
    vector_store = QdrantVectorStore.from_config(config.vector_store)

    pipeline_config = config.pipeline
    options = default_options or QueryOptions.from_config(pipeline_config)

    return RAGPipeline(
        analyzer=QueryAnalyzer(
            llm_client,
            resolver,
            company=config.company,
            hint_threshold=pipeline_config.hint_match_threshold,
            query_threshold=pipeline_config.query_match_threshold,
        ),
        expander=QueryExpander(llm_client, company=config.company),
        searcher=Searcher(vector_store, embedding),
        reranker=Reranker(llm_client),
        compressor=ContextualCompressor(llm_client, use_llm=pipeline_config.llm_compression),
        assembler=ResponseAssembler(llm_client),
        default_options=options,
        resolver=resolver,
        vector_store=vector_store,
    )
