"""
Reranker

Reorders retrieved chunks by relevance to the query.

Two paths:
- multi-criteria: completion-service scores (relevance 50%, completeness 30%,
  specificity 20%), then near-duplicate removal and per-document and
  per-product diversity
- fast: lexical heuristics on top of the retrieval score, no LLM call

Both are deterministic and never raise for a well-formed input; any scoring
failure falls back to the retrieval order.
"""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Sequence

from .searcher import UNKNOWN_PRODUCT, SearchResult, match_product

logger = logging.getLogger("catalog_rag.retriever.reranker")

RELEVANCE_WEIGHT = 0.5
COMPLETENESS_WEIGHT = 0.3
SPECIFICITY_WEIGHT = 0.2
DEFAULT_CRITERION_SCORE = 0.5
BATCH_SIZE = 5
MAX_CHUNK_CHARS = 1000
MAX_PER_SOURCE = 3
MAX_PER_PRODUCT = 4
DUPLICATE_PREFIX_CHARS = 200

SPEC_TERMS = ["weight", "gram", " g ", " kg ", "dimension", "price", "mrp", "₹", "material", "origin", "manufacturer"]
COMPARISON_TERMS = ["compare", "difference", "vs", "versus", "between", "differentiate"]


@dataclass
class RankedResult(SearchResult):
    """SearchResult with its rerank score in [0, 1]"""
    rerank_score: float = 0.0
    relevance_score: Optional[float] = None
    completeness_score: Optional[float] = None
    specificity_score: Optional[float] = None
    reranked_position: int = 0

    @classmethod
    def from_search_result(cls, result: SearchResult, rerank_score: float, **scores) -> "RankedResult":
        base = {f.name: getattr(result, f.name) for f in fields(SearchResult)}
        return cls(**base, rerank_score=_clamp(rerank_score), **scores)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "rerankScore": self.rerank_score,
            "relevanceScore": self.relevance_score,
            "completenessScore": self.completeness_score,
            "specificityScore": self.specificity_score,
            "rerankedPosition": self.reranked_position,
        })
        return data


MULTI_CRITERIA_PROMPT = """You are a relevance assessment expert. Score each chunk on three criteria (0-1):

1. relevance: how relevant the chunk is to the query
   1.0 directly answers it, 0.7-0.9 related, 0.4-0.6 tangential, 0-0.3 not relevant
2. completeness: how completely it answers the question
   Chunks with product specifications (weight, dimensions, price, material, origin, manufacturer) score higher.
3. specificity: how specific and detailed it is
   1.0 exact specifications (weight in grams, exact dimensions), 0.4-0.6 general, 0-0.3 generic

Return ONLY JSON:
{"chunk_0": {"relevance": 0.9, "completeness": 0.8, "specificity": 0.85}, "chunk_1": {...}}"""


class Reranker:
    """
    Usage:
        reranker = Reranker(llm_client)
        ranked = await reranker.rerank(results, query, top_k=20, use_llm=True)
    """

    def __init__(
        self,
        llm_client=None,
        max_per_source: int = MAX_PER_SOURCE,
        max_per_product: int = MAX_PER_PRODUCT,
    ):
        self._llm = llm_client
        self._max_per_source = max_per_source
        self._max_per_product = max_per_product

    async def rerank(
        self,
        results: List[SearchResult],
        query: str,
        top_k: int,
        use_llm: bool = False,
    ) -> List[RankedResult]:
        """
        Args:
            results: Retrieved chunks in retrieval order
            query: Normalized query
            top_k: Number of candidates to keep
            use_llm: Take the multi-criteria path

        Returns:
            RankedResults sorted by descending rerank_score
        """
        if not results:
            return []
        top_k = min(max(top_k, 1), len(results))

        if use_llm and self._llm is not None:
            try:
                return await self._multi_criteria_rerank(results, query, top_k)
            except Exception as e:
                logger.warning("Multi-criteria rerank failed, keeping retrieval order: %s", e)
                return retrieval_order(results, top_k)

        try:
            return fast_rerank(results, query, top_k)
        except Exception as e:
            logger.warning("Heuristic rerank failed, keeping retrieval order: %s", e)
            return retrieval_order(results, top_k)

    async def _multi_criteria_rerank(self, results: List[SearchResult], query: str, top_k: int) -> List[RankedResult]:
        batches = [results[i:i + BATCH_SIZE] for i in range(0, len(results), BATCH_SIZE)]
        scored_batches = await asyncio.gather(*(self._score_batch(b, query) for b in batches))
        scored = [r for batch in scored_batches for r in batch]

        scored = remove_near_duplicates(scored)
        scored.sort(key=lambda r: r.rerank_score, reverse=True)
        ranked = enforce_diversity(scored, top_k, self._max_per_source, self._max_per_product)
        return _assign_positions(ranked)

    async def _score_batch(self, batch: List[SearchResult], query: str) -> List[RankedResult]:
        chunks_text = "\n---\n".join(
            f"[CHUNK {idx}]\nContent: {r.content[:MAX_CHUNK_CHARS]}\nFilename: {r.filename}"
            for idx, r in enumerate(batch)
        )
        scores = await self._llm.complete(
            MULTI_CRITERIA_PROMPT,
            f"Query: {json.dumps(query)}\n\nChunks to score:\n{chunks_text}",
            temperature=0.0,
            max_tokens=1000,
            structured_json=True,
        )

        ranked = []
        for idx, result in enumerate(batch):
            chunk_scores = scores.get(f"chunk_{idx}")
            if not isinstance(chunk_scores, dict):
                chunk_scores = {}
            relevance = _criterion(chunk_scores, "relevance")
            completeness = _criterion(chunk_scores, "completeness")
            specificity = _criterion(chunk_scores, "specificity")
            final = (
                relevance * RELEVANCE_WEIGHT
                + completeness * COMPLETENESS_WEIGHT
                + specificity * SPECIFICITY_WEIGHT
            )
            ranked.append(RankedResult.from_search_result(
                result,
                final,
                relevance_score=relevance,
                completeness_score=completeness,
                specificity_score=specificity,
            ))
        return ranked


def fast_rerank(results: List[SearchResult], query: str, top_k: int) -> List[RankedResult]:
    """Retrieval score plus keyword, position, exact-phrase and specification bonuses"""
    lower_query = query.lower().strip()
    query_tokens = lower_query.split()
    is_comparison = any(term in lower_query for term in COMPARISON_TERMS)

    ranked = []
    for result in results:
        content = result.content.lower()

        keyword_bonus = sum(0.05 for t in query_tokens if len(t) > 3 and t in content)

        positions = [content.find(t) for t in query_tokens]
        positions = [p for p in positions if p >= 0]
        position_bonus = 0.0
        if positions and content:
            position_bonus = (1 - min(min(positions) / len(content), 1)) * 0.1

        exact_phrase_bonus = 0.15 if lower_query and lower_query in content else 0.0

        spec_bonus = 0.0
        if any(term in content for term in SPEC_TERMS):
            spec_bonus = 0.1 if is_comparison else 0.05

        score = min(result.score + keyword_bonus + position_bonus + exact_phrase_bonus + spec_bonus, 1.0)
        ranked.append(RankedResult.from_search_result(result, score))

    ranked.sort(key=lambda r: r.rerank_score, reverse=True)
    return _assign_positions(ranked[:top_k])


def retrieval_order(results: List[SearchResult], top_k: int) -> List[RankedResult]:
    """Fallback ranking: keep the input order, scores clamped into [0, 1]"""
    ranked = [RankedResult.from_search_result(r, r.score) for r in results[:top_k]]
    return _assign_positions(ranked)


def remove_near_duplicates(results: List[RankedResult]) -> List[RankedResult]:
    """Drop chunks whose normalized opening text was already seen"""
    seen = set()
    unique = []
    for result in results:
        key = re.sub(r"\s+", " ", result.content.lower()).strip()[:DUPLICATE_PREFIX_CHARS]
        if key not in seen:
            seen.add(key)
            unique.append(result)
    return unique


def enforce_diversity(
    results: List[RankedResult],
    top_k: int,
    max_per_source: int,
    max_per_product: Optional[int] = None,
) -> List[RankedResult]:
    """
    Cap chunks per document and per product. Chunks with no product name
    only count against their document. When the capped list falls short of
    top_k, the best overflow chunks fill the remaining slots.
    """
    source_counts: Dict[str, int] = {}
    product_counts: Dict[str, int] = {}
    selected = []
    overflow = []
    for result in results:
        source = result.source_key
        product = result.product_name
        product_full = (
            max_per_product is not None
            and product != UNKNOWN_PRODUCT
            and product_counts.get(product, 0) >= max_per_product
        )
        if source_counts.get(source, 0) < max_per_source and not product_full:
            source_counts[source] = source_counts.get(source, 0) + 1
            product_counts[product] = product_counts.get(product, 0) + 1
            selected.append(result)
        else:
            overflow.append(result)
        if len(selected) >= top_k:
            break

    if len(selected) < top_k:
        selected.extend(overflow[:top_k - len(selected)])
        selected.sort(key=lambda r: r.rerank_score, reverse=True)
    return selected


def balance_products(ranked: Sequence[RankedResult], products: Sequence[str], count: int) -> List[RankedResult]:
    """
    Pick ``count`` chunks giving each compared product an equal share.

    Each product keeps up to ceil(count / len(products)) of its best chunks.
    Slots a product cannot fill go to the best remaining chunks, so a
    product with little evidence never leaves the context short. Rank order
    is preserved.
    """
    if not products:
        return list(ranked[:count])

    share = math.ceil(count / len(products))
    taken: Dict[str, int] = {}
    chosen = set()
    for idx, result in enumerate(ranked):
        product = match_product(products, result.metadata, result.filename)
        if product is not None and taken.get(product, 0) < share:
            taken[product] = taken.get(product, 0) + 1
            chosen.add(idx)

    chosen = set(sorted(chosen)[:count])
    for idx in range(len(ranked)):
        if len(chosen) >= count:
            break
        chosen.add(idx)
    return [ranked[i] for i in sorted(chosen)]


def _criterion(scores: Dict[str, Any], name: str) -> float:
    value = scores.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CRITERION_SCORE
    return _clamp(float(value))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _assign_positions(ranked: List[RankedResult]) -> List[RankedResult]:
    for position, result in enumerate(ranked, 1):
        result.reranked_position = position
    return ranked
