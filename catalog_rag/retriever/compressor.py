"""
Contextual Compressor

Shrinks each ranked chunk to its most query-relevant sentences under a
per-chunk token budget. Kept sentences stay in their original order, and a
non-empty chunk never compresses to nothing: when no sentence qualifies the
chunk is truncated instead.
"""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .reranker import RankedResult

logger = logging.getLogger("catalog_rag.retriever.compressor")

TOKENS_PER_CHAR = 0.25
MIN_SENTENCE_CHARS = 10
AGGRESSIVE_CAP_RATIO = 0.6
SCORE_FLOOR = 0.0
AGGRESSIVE_SCORE_FLOOR = 1.0
LLM_SCORE_WEIGHT = 2.0

SPECIFICATION_TERMS = [
    "weight", "gram", "kg", "oz", "lb",
    "dimension", "size", "cm", "inch", "mm",
    "price", "mrp", "cost", "₹", "$", "rs",
    "material", "made of", "composition", "fabric",
    "country", "origin", "manufactured", "manufacturer",
    "model", "sku", "variant", "color", "colour",
]

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n+")


@dataclass
class CompressedChunk:
    """A chunk reduced to its relevant sentences"""
    original_chunk_id: str
    compressed_content: str
    token_estimate: int
    original_length: int = 0
    filename: str = ""
    rerank_score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def compression_ratio(self) -> float:
        if not self.original_length:
            return 1.0
        return len(self.compressed_content) / self.original_length


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) * TOKENS_PER_CHAR)


def split_sentences(text: str) -> List[str]:
    sentences = (s.strip() for s in _SENTENCE_BOUNDARY.split(text))
    return [s for s in sentences if len(s) > MIN_SENTENCE_CHARS]


def score_sentence(sentence: str, query_tokens: List[str]) -> float:
    lower = sentence.lower()
    score = float(sum(1 for token in query_tokens if token in lower))

    # Prefer informative sentences
    if 50 < len(sentence) < 300:
        score += 0.5

    if any(term in lower for term in SPECIFICATION_TERMS):
        score += 2.0

    return score


def truncate(text: str, max_tokens: int) -> str:
    """Cut text to the token budget, on a word boundary when possible"""
    max_chars = max(1, int(max_tokens / TOKENS_PER_CHAR))
    stripped = text.strip()
    if len(stripped) <= max_chars:
        return stripped or text[:max_chars]
    cut = stripped[:max_chars]
    boundary = cut.rfind(" ")
    if boundary > max_chars // 2:
        cut = cut[:boundary]
    return cut.rstrip() or stripped[:max_chars]


def select_sentences(
    sentences: List[str],
    scores: List[float],
    max_tokens: int,
    floor: float,
) -> List[str]:
    """Greedy by score, restored to document order; joined text fits max_tokens"""
    order = sorted(range(len(sentences)), key=lambda i: (-scores[i], i))
    chosen: List[int] = []
    total_chars = 0
    for i in order:
        if scores[i] <= floor:
            break
        added = len(sentences[i]) + (1 if chosen else 0)
        if math.ceil((total_chars + added) * TOKENS_PER_CHAR) <= max_tokens:
            chosen.append(i)
            total_chars += added
    return [sentences[i] for i in sorted(chosen)]


SENTENCE_SCORING_PROMPT = """Rate how useful each numbered sentence is for answering the query (0-1).
Product specifications (weight, dimensions, price, material, origin) are always useful.

Return ONLY JSON: {"scores": [0.9, 0.1, ...]} with one score per sentence, in order."""


class ContextualCompressor:
    """
    Usage:
        compressor = ContextualCompressor()
        chunks = await compressor.compress(ranked, query, max_tokens_per_chunk=400)
    """

    def __init__(self, llm_client=None, use_llm: bool = False):
        self._llm = llm_client
        self._use_llm = use_llm and llm_client is not None

    async def compress(
        self,
        chunks: List[RankedResult],
        query: str,
        max_tokens_per_chunk: int = 400,
        aggressive: bool = False,
    ) -> List[CompressedChunk]:
        if not chunks:
            return []

        cap = max(1, int(max_tokens_per_chunk * AGGRESSIVE_CAP_RATIO) if aggressive else max_tokens_per_chunk)
        floor = AGGRESSIVE_SCORE_FLOOR if aggressive else SCORE_FLOOR
        query_tokens = [t for t in query.lower().split() if len(t) > 3]

        compressed = await asyncio.gather(*(
            self._compress_chunk(chunk, query, query_tokens, cap, floor) for chunk in chunks
        ))

        before = sum(len(c.content) for c in chunks)
        after = sum(len(c.compressed_content) for c in compressed)
        logger.debug("Compressed %d chunks: %d -> %d chars", len(chunks), before, after)
        return list(compressed)

    async def _compress_chunk(
        self,
        chunk: RankedResult,
        query: str,
        query_tokens: List[str],
        cap: int,
        floor: float,
    ) -> CompressedChunk:
        sentences = split_sentences(chunk.content)
        scores = [score_sentence(s, query_tokens) for s in sentences]

        if self._use_llm and sentences:
            llm_scores = await self._llm_sentence_scores(sentences, query)
            if llm_scores:
                scores = [s + LLM_SCORE_WEIGHT * l for s, l in zip(scores, llm_scores)]

        kept = select_sentences(sentences, scores, cap, floor)
        content = " ".join(kept) if kept else truncate(chunk.content, cap)

        return CompressedChunk(
            original_chunk_id=chunk.chunk_id,
            compressed_content=content,
            token_estimate=estimate_tokens(content),
            original_length=len(chunk.content),
            filename=chunk.filename,
            rerank_score=chunk.rerank_score,
            metadata=chunk.metadata,
        )

    async def _llm_sentence_scores(self, sentences: List[str], query: str) -> Optional[List[float]]:
        numbered = "\n".join(f"{i}. {s}" for i, s in enumerate(sentences))
        try:
            data = await self._llm.complete(
                SENTENCE_SCORING_PROMPT,
                f"Query: {json.dumps(query)}\n\nSentences:\n{numbered}",
                temperature=0.0,
                max_tokens=400,
                structured_json=True,
            )
        except Exception as e:
            logger.warning("LLM sentence scoring failed, using lexical scores: %s", e)
            return None

        scores = data.get("scores")
        if not isinstance(scores, list) or len(scores) != len(sentences):
            logger.warning("LLM sentence scoring returned %s scores for %d sentences",
                           len(scores) if isinstance(scores, list) else "no", len(sentences))
            return None
        return [
            max(0.0, min(1.0, float(s))) if isinstance(s, (int, float)) and not isinstance(s, bool) else 0.0
            for s in scores
        ]
