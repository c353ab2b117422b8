"""
Tests for RAGPipeline

Stage order, failure policy and response shape. Analysis, expansion and
search are mocked; reranking, compression and answer assembly run for real
over a scripted completion client.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from catalog_rag.common.errors import GenerationError, PipelineTimeoutError, RetrievalError
from catalog_rag.common.presets import QueryOptions
from catalog_rag.retriever.analyzer import QueryType
from catalog_rag.retriever.compressor import ContextualCompressor
from catalog_rag.retriever.pipeline import RAGPipeline
from catalog_rag.retriever.query_expander import ComparisonMode, DirectMode, ExpandedQuery, StandardMode
from catalog_rag.retriever.reranker import Reranker
from catalog_rag.retriever.searcher import Searcher, SearchResult
from catalog_rag.retriever.synthesizer import NO_EVIDENCE_RESPONSE, ResponseAssembler

PRO = "Frido Dual Gel Insoles Pro"
BASE = "Frido Dual Gel Insoles"

RESULTS = [
    SearchResult(chunk_id="c1", content="The insole is made of medical grade gel.", score=0.8, filename="a.pdf"),
    SearchResult(chunk_id="c2", content="Shipping takes three to five business days.", score=0.7, filename="b.pdf"),
    SearchResult(chunk_id="c3", content="The insole weighs 120 grams per pair.", score=0.6, filename="c.pdf"),
]

TEXT_ONLY = QueryOptions(format_as_markdown=False, use_reranking=False)


def expanded_query(mode=None, queries=("insole weight",), query_type=QueryType.INFORMATIONAL):
    return ExpandedQuery(
        original_query=queries[0],
        normalized_query=queries[0],
        query_type=query_type,
        mode=mode or StandardMode(),
        search_queries=tuple(queries),
    )


def make_pipeline(llm, expanded, results=None, search_side_effect=None, reranker=None, searcher=None):
    analyzer = Mock()
    analyzer.analyze = AsyncMock(return_value=Mock())
    expander = Mock()
    expander.expand = AsyncMock(return_value=expanded)
    if searcher is None:
        searcher = Mock()
        if search_side_effect is not None:
            searcher.search = AsyncMock(side_effect=search_side_effect)
        else:
            searcher.search = AsyncMock(return_value=list(results or []))

    return RAGPipeline(
        analyzer=analyzer,
        expander=expander,
        searcher=searcher,
        reranker=reranker or Reranker(None),
        compressor=ContextualCompressor(),
        assembler=ResponseAssembler(llm),
    )


class TestAnswering:
    @pytest.mark.asyncio
    async def test_sources_are_the_cited_chunks(self, scripted_llm):
        llm = scripted_llm("The insole weighs 120 grams [USED_CHUNK: chunk_2].")
        pipeline = make_pipeline(llm, expanded_query(), RESULTS)

        result = await pipeline.query("how heavy is the insole", TEXT_ONLY)

        assert result.response == "The insole weighs 120 grams ."
        assert [s["chunkId"] for s in result.sources] == ["c3"]
        assert result.sources[0]["compressedContent"]
        assert not result.context_analysis.is_context_missing
        assert result.metadata["retrievedChunks"] == 3
        assert result.metadata["finalChunks"] == 3
        assert result.metadata["responseFormat"] == "text"

    @pytest.mark.asyncio
    async def test_stage_timings(self, scripted_llm):
        pipeline = make_pipeline(scripted_llm("Gel insole [USED_CHUNK: chunk_0]"), expanded_query(), RESULTS)

        result = await pipeline.query("what is it made of", TEXT_ONLY)

        assert set(result.stage_timings_ms) == {
            "analysis", "expansion", "retrieval", "reranking", "compression", "generation", "total",
        }
        assert all(ms >= 0 for ms in result.stage_timings_ms.values())
        assert "stageTimingsMs" in result.to_dict()["performance"]

    @pytest.mark.asyncio
    async def test_final_chunk_count_limits_context(self, scripted_llm):
        llm = scripted_llm("Answer [USED_CHUNK: chunk_0, chunk_2]")
        pipeline = make_pipeline(llm, expanded_query(), RESULTS)
        options = QueryOptions(format_as_markdown=False, use_reranking=False, final_chunk_count=1)

        result = await pipeline.query("q", options)

        assert result.metadata["finalChunks"] == 1
        assert [s["chunkId"] for s in result.sources] == ["c1"]
        assert "[CHUNK_ID: chunk_1]" not in llm.complete.call_args.args[0]

    @pytest.mark.asyncio
    async def test_missing_context_answer_is_flagged(self, scripted_llm):
        llm = scripted_llm("The warranty period is not mentioned in the documents.")
        pipeline = make_pipeline(llm, expanded_query(), RESULTS)

        result = await pipeline.query("what is the warranty", TEXT_ONLY)

        assert result.context_analysis.is_context_missing
        assert result.context_analysis.category == "business"
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_comparison_uses_style_analysis_and_comparison_prompt(self, scripted_llm):
        llm = scripted_llm("table", "| | Base | Pro |\n|---|---|---|\n| Weight | 150 g | 120 g |")
        expanded = expanded_query(ComparisonMode((BASE, PRO)), (f"{BASE} weight", f"{PRO} weight"))
        pipeline = make_pipeline(llm, expanded, RESULTS)

        result = await pipeline.query("compare them", QueryOptions())

        assert llm.complete.await_count == 2
        assert f"{BASE} vs {PRO}" in llm.complete.await_args_list[1].args[0]
        assert result.metadata["responseFormat"] == "table"

    @pytest.mark.asyncio
    async def test_comparison_context_keeps_every_product(self, scripted_llm):
        base_hits = [
            {"id": f"b{i}", "score": 0.9, "content": f"Base insole detail {i}.", "document_id": f"base-{i}",
             "metadata": {"productName": BASE}}
            for i in range(8)
        ]
        pro_hits = [
            {"id": f"p{i}", "score": 0.6, "content": f"Pro insole detail {i}.", "document_id": f"pro-{i}",
             "metadata": {"productName": PRO}}
            for i in range(4)
        ]
        store = Mock()
        store.search = AsyncMock(
            side_effect=lambda vector, limit, threshold, filter: pro_hits if filter["product_name"] == PRO else base_hits
        )
        embedding = Mock()
        embedding.embed_batch = AsyncMock(side_effect=lambda texts: [[0.1]] * len(texts))
        llm = scripted_llm({}, {}, {}, "Both insoles use gel [USED_CHUNK: chunk_0, chunk_2].")
        expanded = expanded_query(ComparisonMode((BASE, PRO)), (f"{BASE} weight", f"{PRO} weight"))
        pipeline = make_pipeline(llm, expanded, searcher=Searcher(store, embedding), reranker=Reranker(llm))

        result = await pipeline.query(
            "compare them", QueryOptions(format_as_markdown=False, use_compression=False, final_chunk_count=4),
        )

        assert llm.complete.await_count == 4
        prompt = llm.complete.await_args_list[-1].args[0]
        assert prompt.count("Base insole detail") == 2
        assert prompt.count("Pro insole detail") == 2
        assert f"=== {BASE} ===" in prompt
        assert f"=== {PRO} ===" in prompt
        assert result.metadata["finalChunks"] == 4

    @pytest.mark.asyncio
    async def test_llm_rerank_for_multi_query_searches(self, scripted_llm):
        reranker = Mock()
        reranker.rerank = AsyncMock(side_effect=Reranker(None).rerank)
        expanded = expanded_query(queries=("q1", "q2", "q3"))
        pipeline = make_pipeline(scripted_llm("Answer"), expanded, RESULTS, reranker=reranker)

        await pipeline.query("q1", QueryOptions(format_as_markdown=False, final_chunk_count=2))

        args, kwargs = reranker.rerank.await_args
        assert args[2] == 4
        assert kwargs["use_llm"] is True

    @pytest.mark.asyncio
    async def test_default_options_are_used(self, scripted_llm):
        pipeline = make_pipeline(scripted_llm("Answer"), expanded_query(), RESULTS)
        pipeline.default_options = TEXT_ONLY

        await pipeline.query("q")

        pipeline.searcher.search.assert_awaited_once()
        assert pipeline.searcher.search.await_args.kwargs["retrieval_count"] == TEXT_ONLY.retrieval_count


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_direct_response_skips_retrieval(self, scripted_llm):
        llm = scripted_llm()
        expanded = expanded_query(DirectMode("Hello! How can I help?"), ("hi",), QueryType.GREETING)
        pipeline = make_pipeline(llm, expanded)

        result = await pipeline.query("hi")

        assert result.response == "Hello! How can I help?"
        assert result.sources == []
        assert result.context_analysis.category == "greeting"
        assert not result.context_analysis.is_context_missing
        pipeline.searcher.search.assert_not_called()
        llm.complete.assert_not_called()
        assert set(result.stage_timings_ms) == {"analysis", "expansion", "total"}

    @pytest.mark.asyncio
    async def test_no_evidence(self, scripted_llm):
        llm = scripted_llm()
        pipeline = make_pipeline(llm, expanded_query(), [])

        result = await pipeline.query("price of the knee pillow")

        assert result.response == NO_EVIDENCE_RESPONSE
        assert result.context_analysis.is_context_missing
        assert result.sources == []
        llm.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_skip_generation_returns_every_final_chunk(self, scripted_llm):
        llm = scripted_llm()
        pipeline = make_pipeline(llm, expanded_query(), RESULTS)
        options = QueryOptions(use_reranking=False, skip_generation=True)

        result = await pipeline.query("insole weight", options)

        assert result.response == ""
        assert [s["chunkId"] for s in result.sources] == ["c1", "c2", "c3"]
        llm.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_without_compression_chunks_are_truncated(self, scripted_llm):
        long_result = SearchResult(chunk_id="long", content="gel " * 500, score=0.9)
        pipeline = make_pipeline(scripted_llm(), expanded_query(), [long_result])
        options = QueryOptions(use_compression=False, skip_generation=True, max_tokens_per_chunk=50)

        result = await pipeline.query("q", options)

        assert len(result.sources[0]["compressedContent"]) <= 200
        assert result.sources[0]["tokenEstimate"] <= 50


class TestFailures:
    @pytest.mark.asyncio
    async def test_retrieval_error_propagates(self, scripted_llm, caplog):
        pipeline = make_pipeline(scripted_llm(), expanded_query(), search_side_effect=RetrievalError("qdrant down"))

        with caplog.at_level(logging.ERROR, logger="catalog_rag.retriever.pipeline"):
            with pytest.raises(RetrievalError) as exc_info:
                await pipeline.query("q")

        assert exc_info.value.to_dict() == {
            "ok": False, "stage": "retrieval", "error": RetrievalError.user_message,
        }
        assert "retrieval stage" in caplog.text

    @pytest.mark.asyncio
    async def test_generation_error_propagates(self, scripted_llm):
        pipeline = make_pipeline(scripted_llm(RuntimeError("overloaded")), expanded_query(), RESULTS)

        with pytest.raises(GenerationError):
            await pipeline.query("q", TEXT_ONLY)

    @pytest.mark.asyncio
    async def test_timeout(self, scripted_llm):
        async def slow_search(*args, **kwargs):
            await asyncio.sleep(5)
            return RESULTS

        pipeline = make_pipeline(scripted_llm(), expanded_query(), search_side_effect=slow_search)
        options = QueryOptions(timeout_seconds=0.05)

        with pytest.raises(PipelineTimeoutError) as exc_info:
            await pipeline.query("q", options)
        assert exc_info.value.stage == "timeout"


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_vector_store(self, scripted_llm):
        pipeline = make_pipeline(scripted_llm(), expanded_query())
        pipeline.vector_store = Mock()
        pipeline.vector_store.close = AsyncMock()

        await pipeline.close()

        pipeline.vector_store.close.assert_awaited_once()
