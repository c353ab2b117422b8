"""
Query Expander

Turns one analyzed query into normalized text plus the search queries the
retriever will run. The retrieval mode is a tagged variant:

- DirectMode:      small talk, answered without retrieval
- CatalogMode:     "what products do you have", breadth over depth
- ComparisonMode:  two or more products, balanced per-product queries
- StandardMode:    everything else, optionally locked to one product
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from ..catalog.resolver import normalize
from ..common.errors import AnalysisError
from .analyzer import BROAD_QUERY_TYPES, QueryAnalysis, QueryType

logger = logging.getLogger("catalog_rag.retriever.query_expander")

MAX_SEARCH_QUERIES = 8
MAX_COMPARISON_PRODUCTS = 4


@dataclass(frozen=True)
class DirectMode:
    response: str


@dataclass(frozen=True)
class CatalogMode:
    pass


@dataclass(frozen=True)
class ComparisonMode:
    products: Tuple[str, ...]


@dataclass(frozen=True)
class StandardMode:
    locked_product: Optional[str] = None


QueryMode = Union[DirectMode, CatalogMode, ComparisonMode, StandardMode]


@dataclass(frozen=True)
class ExpandedQuery:
    """Search plan for one query"""
    original_query: str
    normalized_query: str
    query_type: QueryType
    mode: QueryMode
    intent: str = ""
    detected_products: Tuple[str, ...] = field(default_factory=tuple)
    search_queries: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def needs_rag(self) -> bool:
        return not isinstance(self.mode, DirectMode)

    @property
    def direct_response(self) -> Optional[str]:
        return self.mode.response if isinstance(self.mode, DirectMode) else None

    @property
    def is_catalog_query(self) -> bool:
        return isinstance(self.mode, CatalogMode)

    @property
    def is_multi_product_query(self) -> bool:
        return isinstance(self.mode, ComparisonMode)

    @property
    def comparison_products(self) -> Optional[Tuple[str, ...]]:
        return self.mode.products if isinstance(self.mode, ComparisonMode) else None

    @property
    def locked_product(self) -> Optional[str]:
        return self.mode.locked_product if isinstance(self.mode, StandardMode) else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalQuery": self.original_query,
            "normalizedQuery": self.normalized_query,
            "detectedProducts": list(self.detected_products),
            "searchQueries": list(self.search_queries),
            "queryType": self.query_type.value,
            "needsRAG": self.needs_rag,
            "isMultiProductQuery": self.is_multi_product_query,
            "comparisonProducts": list(self.comparison_products) if self.comparison_products else None,
            "isCatalogQuery": self.is_catalog_query,
            "lockedProduct": self.locked_product,
        }


# Lexical trigger -> vocabulary appended to search queries
DOMAIN_TERMS = [
    (("pain", "support", "relief"), ["orthopedic", "medical-grade", "therapeutic", "ergonomic"]),
    (("comfort", "soft", "cushion"), ["memory foam", "gel", "breathable", "plush"]),
    (("material", "made of", "fabric"), ["materials", "construction", "fabric", "coating"]),
    (("size", "dimension", "weight"), ["specifications", "dimensions", "measurements", "weight"]),
    (("feature", "benefit", "advantage"), ["features", "benefits", "advantages", "properties"]),
]

COMPARISON_ASPECTS = {
    "price": ["price", "cost", "expensive", "cheaper", "affordable"],
    "features": ["feature", "function", "capability", "what does"],
    "specifications": ["spec", "dimension", "size", "weight", "material"],
    "comfort": ["comfort", "ergonomic", "support", "feel"],
    "design": ["design", "look", "style", "appearance", "aesthetic"],
    "quality": ["quality", "durable", "lasting", "reliable"],
    "performance": ["performance", "effective", "work", "good"],
}

# Brand words that do not distinguish one product from another
BOILERPLATE_WORDS = {"frido", "ultimate"}


STANDARD_QUERIES_PROMPT = """You generate diverse search queries to maximize retrieval recall over {company_name} product documents.
Product categories: {product_categories}{product_context}

Generate {count} different search queries for the user question:
1. The original question
2. A decomposed, simpler sub-question
3. A keyword-focused query
4. A synonym-expanded query
5. A product-specific query (use detected product names explicitly)

Return ONLY JSON: {{"queries": ["query1", "query2"]}}"""

COMPARISON_QUERIES_PROMPT = """You generate search queries for a product comparison over {company_name} product documents.

Product: {product}
Comparison aspect: {aspect}

Generate {count} distinct queries that retrieve this product's information:
- focus on the comparison aspect when one is given
- cover general information (features, specifications, benefits)
- cover details such as materials, dimensions, design and price

Return ONLY JSON: {{"queries": ["query1", "query2"]}}"""

CATALOG_QUERIES_PROMPT = """The user wants an overview of the {company_name} product range.
Product categories: {product_categories}

Generate {count} diverse search queries that together cover as many distinct products and categories
as possible (not just the literal question): product names, categories, use cases, key features.

Return ONLY JSON: {{"queries": ["query1", "query2"]}}"""


class QueryExpander:
    """
    Builds the ExpandedQuery for an analyzed query.

    Completion failures while generating variants are recovered: the
    normalized query (or a deterministic per-product fallback) is used instead.
    """

    def __init__(self, llm_client, company=None):
        self._llm = llm_client
        self._company = company

    async def expand(
        self,
        analysis: QueryAnalysis,
        query: str,
        use_multi_query: bool = True,
        max_queries: int = 5,
    ) -> ExpandedQuery:
        products = list(analysis.detected_products)
        normalized = normalize_product_mentions(query, products)
        mode = select_mode(analysis)

        if isinstance(mode, DirectMode):
            return ExpandedQuery(
                original_query=query,
                normalized_query=normalized,
                query_type=analysis.query_type,
                mode=mode,
                intent=analysis.intent,
                detected_products=tuple(products),
                search_queries=(normalized,),
            )

        limit = max(1, min(max_queries, MAX_SEARCH_QUERIES)) if use_multi_query else 1

        if isinstance(mode, ComparisonMode):
            queries = await self._comparison_queries(normalized, list(mode.products))
        elif isinstance(mode, CatalogMode):
            queries = await self._generated_queries(
                CATALOG_QUERIES_PROMPT, normalized, limit, product_context="",
            )
        else:
            queries = await self._generated_queries(
                STANDARD_QUERIES_PROMPT, normalized, limit,
                product_context=f"\nDetected products: {', '.join(products)}" if products else "",
            )

        search_queries = finalize_queries(queries, normalized, mode)
        logger.debug("Expanded %r into %d queries (%s)", query, len(search_queries), type(mode).__name__)

        return ExpandedQuery(
            original_query=query,
            normalized_query=normalized,
            query_type=analysis.query_type,
            mode=mode,
            intent=analysis.intent,
            detected_products=tuple(products),
            search_queries=tuple(search_queries),
        )

    def _context(self) -> Dict[str, str]:
        return {
            "company_name": getattr(self._company, "name", "") or "our company",
            "product_categories": ", ".join(getattr(self._company, "product_categories", []) or []),
        }

    async def _generated_queries(self, template: str, normalized: str, limit: int, product_context: str) -> List[str]:
        if limit <= 1:
            return [normalized]
        system_prompt = template.format(count=limit, product_context=product_context, **self._context())
        try:
            generated = await self._request_queries(system_prompt, normalized)
            return ([normalized] + generated)[:limit]
        except AnalysisError as e:
            logger.warning("Query generation failed, searching with the normalized query only: %s", e)
            return [normalized]

    async def _comparison_queries(self, normalized: str, products: List[str]) -> List[str]:
        """Per-product queries, generated concurrently; each carries its product name"""
        per_product = 3 if len(products) * 3 <= MAX_SEARCH_QUERIES else 2
        aspect = extract_comparison_aspect(normalized)

        async def for_product(product: str) -> List[str]:
            system_prompt = COMPARISON_QUERIES_PROMPT.format(
                product=product, aspect=aspect, count=per_product, **self._context(),
            )
            try:
                generated = await self._request_queries(
                    system_prompt, f"Product: {product}\nComparison aspect: {aspect}",
                )
            except AnalysisError as e:
                logger.warning("Comparison query generation failed for %s: %s", product, e)
                generated = []
            if not generated:
                generated = [
                    f"{product} {aspect}",
                    f"{product} features specifications benefits",
                    f"{product} materials dimensions price",
                ]
            return [with_product(q, product) for q in generated[:per_product]]

        results = await asyncio.gather(*(for_product(p) for p in products))
        return [q for product_queries in results for q in product_queries]

    async def _request_queries(self, system_prompt: str, user_prompt: str) -> List[str]:
        try:
            data = await self._llm.complete(
                system_prompt,
                user_prompt,
                temperature=0.0,
                max_tokens=600,
                structured_json=True,
            )
        except Exception as e:
            raise AnalysisError(str(e)) from e
        queries = data.get("queries") if isinstance(data, dict) else None
        if not isinstance(queries, list):
            raise AnalysisError("response has no query list")
        return [q.strip() for q in queries if isinstance(q, str) and q.strip()]


def select_mode(analysis: QueryAnalysis) -> QueryMode:
    """Map an analysis onto exactly one retrieval mode"""
    products = list(analysis.detected_products)
    if not analysis.needs_rag:
        return DirectMode(analysis.direct_response or "")
    if analysis.is_catalog_query:
        return CatalogMode()
    if analysis.is_comparison_query and len(products) >= 2:
        return ComparisonMode(tuple(products[:MAX_COMPARISON_PRODUCTS]))
    locked = None
    if (
        len(products) == 1
        and analysis.is_specific_product_query
        and analysis.query_type not in BROAD_QUERY_TYPES
    ):
        locked = products[0]
    return StandardMode(locked_product=locked)


def finalize_queries(queries: List[str], normalized: str, mode: QueryMode) -> List[str]:
    """Dedupe, add domain vocabulary and the locked product name, cap the count"""
    seen = set()
    final = []
    for q in queries or [normalized]:
        key = q.lower().strip()
        if not key or key in seen:
            continue
        seen.add(key)
        expanded = add_domain_terms(q)
        if isinstance(mode, StandardMode) and mode.locked_product:
            expanded = with_product(expanded, mode.locked_product)
        final.append(expanded)
        if len(final) >= MAX_SEARCH_QUERIES:
            break
    return final or [normalized]


def add_domain_terms(query: str) -> str:
    lower = query.lower()
    extra = []
    for triggers, terms in DOMAIN_TERMS:
        if any(t in lower for t in triggers):
            extra.extend(t for t in terms if t not in lower and t not in extra)
    return f"{query} {' '.join(extra)}" if extra else query


def with_product(query: str, product: str) -> str:
    """Append the product name unless the query already mentions it"""
    if product.lower() in query.lower():
        return query
    return f"{query} {product}"


def extract_comparison_aspect(query: str) -> str:
    lower = query.lower()
    for aspect, keywords in COMPARISON_ASPECTS.items():
        if any(k in lower for k in keywords):
            return aspect
    return "general comparison"


def product_mention_pattern(product: str) -> Optional[re.Pattern]:
    """
    Regex matching loose mentions of a product, built from its significant
    words (longer than 3 chars, brand words excluded). Words after the last
    significant word ("Pro", "Max") are required so a variant never captures
    a mention of its base product.
    """
    words = normalize(product).split()
    key_words = [w for w in words if len(w) > 3 and w not in BOILERPLATE_WORDS][:3]
    if len(key_words) < 2:
        return None

    tail = words[words.index(key_words[-1]) + 1:]
    boilerplate = "|".join(sorted(BOILERPLATE_WORDS))
    body = r"\s+(?:\w+\s+)?".join(re.escape(_stem(w)) + r"\w*" for w in key_words)
    suffix = "".join(r"[\s-]+%s\b" % re.escape(w) for w in tail)
    return re.compile(r"\b(?:(?:%s)\s+)*%s%s" % (boilerplate, body, suffix), re.IGNORECASE)


def normalize_product_mentions(query: str, products: List[str]) -> str:
    """
    Rewrite loose product mentions to canonical catalog names.

    Longest names go first and each product rewrites at most one mention.
    Text already claimed by a longer product's rewrite is never matched
    again, so "Dual Gel Insoles" cannot re-match inside "... Insoles Pro".
    """
    normalized = query
    claimed: List[Tuple[int, int]] = []
    for product in sorted(products, key=len, reverse=True):
        pattern = product_mention_pattern(product)
        if pattern is None:
            continue
        for match in pattern.finditer(normalized):
            start, end = match.span()
            if any(start < e and s < end for s, e in claimed):
                continue
            normalized = normalized[:start] + product + normalized[end:]
            shift = len(product) - (end - start)
            claimed = [(s + shift, e + shift) if s >= end else (s, e) for s, e in claimed]
            claimed.append((start, start + len(product)))
            break
    return normalized


def _stem(word: str) -> str:
    """Drop a plural "s" so "insole" and "insoles" both match"""
    return word[:-1] if len(word) > 4 and word.endswith("s") else word
