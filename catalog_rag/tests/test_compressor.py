"""Tests for ContextualCompressor."""

import pytest

from catalog_rag.retriever.compressor import (
    ContextualCompressor,
    estimate_tokens,
    select_sentences,
    split_sentences,
    truncate,
)
from catalog_rag.retriever.reranker import RankedResult
from catalog_rag.retriever.searcher import SearchResult


def ranked(chunk_id, content, score=0.8):
    return RankedResult.from_search_result(
        SearchResult(chunk_id=chunk_id, content=content, score=score, filename=f"{chunk_id}.pdf"),
        score,
    )


LONG_CHUNK = " ".join(
    f"Sentence number {i} describes the pillow weight of {i * 10} grams and its memory foam core."
    for i in range(30)
)


class TestHelpers:
    def test_split_sentences_drops_fragments(self):
        assert split_sentences("Short. This sentence is long enough.\nAnother full line here!") == [
            "This sentence is long enough.",
            "Another full line here!",
        ]

    def test_estimate_tokens(self):
        assert estimate_tokens("x" * 401) == 101

    def test_truncate_respects_budget(self):
        text = "word " * 200
        cut = truncate(text, 10)
        assert 0 < len(cut) <= 40

    def test_select_restores_document_order(self):
        sentences = ["first sentence here", "second sentence here", "third sentence here"]
        kept = select_sentences(sentences, [1.0, 0.0, 3.0], max_tokens=100, floor=0.0)
        assert kept == ["first sentence here", "third sentence here"]


class TestCompress:
    @pytest.mark.asyncio
    async def test_long_chunk_fits_cap(self):
        assert len(LONG_CHUNK) >= 2000

        [chunk] = await ContextualCompressor().compress([ranked("c1", LONG_CHUNK)], "pillow weight", max_tokens_per_chunk=100)

        assert 0 < len(chunk.compressed_content) <= 400
        assert chunk.token_estimate <= 100
        assert chunk.original_chunk_id == "c1"
        assert chunk.compression_ratio < 1.0

    @pytest.mark.asyncio
    async def test_no_scorable_sentence_truncates(self):
        content = "x" * 2000
        [chunk] = await ContextualCompressor().compress([ranked("c1", content)], "pillow", max_tokens_per_chunk=100)

        assert chunk.compressed_content
        assert len(chunk.compressed_content) <= 400

    @pytest.mark.asyncio
    async def test_aggressive_mode_lowers_cap(self):
        [normal] = await ContextualCompressor().compress([ranked("c1", LONG_CHUNK)], "pillow weight", 100)
        [aggressive] = await ContextualCompressor().compress(
            [ranked("c1", LONG_CHUNK)], "pillow weight", 100, aggressive=True,
        )

        assert 0 < len(aggressive.compressed_content) <= 240
        assert len(aggressive.compressed_content) <= len(normal.compressed_content)

    @pytest.mark.asyncio
    async def test_output_order_matches_input(self):
        chunks = [ranked("b", "Second chunk about insole weight in grams."), ranked("a", "First chunk about pillows.")]

        compressed = await ContextualCompressor().compress(chunks, "insole", 50)

        assert [c.original_chunk_id for c in compressed] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_llm_scores_fall_back_on_failure(self, scripted_llm):
        llm = scripted_llm(RuntimeError("down"))
        compressor = ContextualCompressor(llm, use_llm=True)

        [chunk] = await compressor.compress([ranked("c1", LONG_CHUNK)], "pillow weight", 100)

        assert 0 < len(chunk.compressed_content) <= 400
        llm.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_input(self):
        assert await ContextualCompressor().compress([], "q") == []
