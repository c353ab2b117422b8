"""
Query Analyzer

Classifies a user query with a single structured completion call:
query type, whether retrieval is needed, a direct reply for small talk,
referenced catalog products, and comparison/catalog intent.

Failures never reach the caller. They come back as a failed AnalysisResult
and degrade to a conservative default (retrieval on, no products, category
query), which produces a broad unlocked search instead of a wrong answer.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..catalog.resolver import MatchType, ProductResolver
from ..common.errors import AnalysisError

logger = logging.getLogger("catalog_rag.retriever.analyzer")


class QueryType(str, Enum):
    GREETING = "greeting"
    CASUAL = "casual"
    INFORMATIONAL = "informational"
    COMPARISON = "comparison"
    SPECIFICATION = "specification"
    RECOMMENDATION = "recommendation"
    CATALOG = "catalog"
    CATEGORY = "category query"
    UNKNOWN = "unknown"


# Query types that ask for a best fit across a category, never locked to one product
BROAD_QUERY_TYPES = {QueryType.RECOMMENDATION, QueryType.CATEGORY, QueryType.CATALOG}


@dataclass(frozen=True)
class QueryAnalysis:
    """Classification of one query. Immutable once produced."""
    query_type: QueryType
    needs_rag: bool
    intent: str
    is_specific_product_query: bool = False
    detected_products: Tuple[str, ...] = field(default_factory=tuple)
    is_comparison_query: bool = False
    is_catalog_query: bool = False
    direct_response: Optional[str] = None

    @classmethod
    def conservative_default(cls) -> "QueryAnalysis":
        return cls(
            query_type=QueryType.CATEGORY,
            needs_rag=True,
            intent="category query",
        )


@dataclass
class AnalysisResult:
    """Outcome of the analysis call: an analysis or the error that prevented it"""
    analysis: Optional[QueryAnalysis] = None
    error: Optional[AnalysisError] = None

    @property
    def ok(self) -> bool:
        return self.analysis is not None

    @classmethod
    def success(cls, analysis: QueryAnalysis) -> "AnalysisResult":
        return cls(analysis=analysis)

    @classmethod
    def failure(cls, error: AnalysisError) -> "AnalysisResult":
        return cls(error=error)

    def or_default(self) -> QueryAnalysis:
        """Unwrap, degrading a failure to the conservative default analysis"""
        if self.analysis is not None:
            return self.analysis
        logger.warning("Query analysis failed, using conservative defaults: %s", self.error)
        return QueryAnalysis.conservative_default()


# Deterministic guard: these phrasings ask for a recommendation across a category
RECOMMENDATION_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\bwhich\b.*\b(is|are|would be)\b.*\bbest\b",
        r"\bwhich\b.*\bshould i\b",
        r"\bbest\b.*\bfor\b",
        r"\brecommend",
        r"\bsuggest",
        r"\bsuitable\b.*\bfor\b",
        r"\blooking for an?\b",
        r"\bwhat should i (buy|get|use|choose)\b",
        r"\b(ideal|good|right) (one |product |choice )?for\b",
        r"\boptions? for\b",
    )
]

COMPARISON_KEYWORDS = re.compile(
    r"\b(difference|compare|comparison|versus|vs\.?|between|which is better|"
    r"better than|differ from|similar to|contrast)\b",
    re.IGNORECASE,
)


ANALYSIS_SYSTEM_PROMPT = """You analyze customer questions for {company_name}.
Company: {company_description}
Product categories: {product_categories}

Known catalog products (use these exact names):
{product_list}

Classify the user query and return ONLY a JSON object:
{{
  "queryType": "greeting|casual|informational|comparison|specification|recommendation|catalog",
  "needsRAG": true,
  "directResponse": "short friendly reply, only when needsRAG is false",
  "intent": "brief description of what the user wants",
  "detectedProducts": ["exact catalog product names mentioned, possibly misspelled in the query"],
  "isSpecificProductQuery": true,
  "isComparisonQuery": false,
  "isCatalogQuery": false
}}

Rules:
- greeting/casual: needsRAG false, give a concise directResponse that mentions {company_name} naturally
- every other type: needsRAG true, no directResponse
- detectedProducts: only names from the list above, never invented names
- isSpecificProductQuery: true only when the question is about exactly one named product
- recommendation questions ("which is best for...", "recommend...", "looking for a...") are NOT specific product queries
- isComparisonQuery: the user compares two or more products
- isCatalogQuery: the user asks what products exist, for a list, or about the whole range"""


class QueryAnalyzer:
    """
    Single-call query classifier.

    Usage:
        analyzer = QueryAnalyzer(llm_client, resolver, company=config.company)
        analysis = await analyzer.analyze("price of dual gel insoles pro")
    """

    def __init__(
        self,
        llm_client,
        resolver: ProductResolver,
        company=None,
        hint_threshold: float = 0.3,
        query_threshold: float = 0.4,
        canonical_threshold: float = 0.6,
    ):
        self._llm = llm_client
        self._resolver = resolver
        self._company = company
        self._hint_threshold = hint_threshold
        self._query_threshold = query_threshold
        self._canonical_threshold = canonical_threshold

    async def analyze(
        self,
        query: str,
        product_hint: Optional[str] = None,
        company_context: Optional[Dict[str, Any]] = None,
    ) -> QueryAnalysis:
        """Analyze a query, never raising"""
        await self._resolver.ensure_fresh()
        result = await self.try_analyze(query, product_hint, company_context)
        return result.or_default()

    async def try_analyze(
        self,
        query: str,
        product_hint: Optional[str] = None,
        company_context: Optional[Dict[str, Any]] = None,
    ) -> AnalysisResult:
        """Run the analysis call and report failure instead of hiding it"""
        system_prompt = self._build_system_prompt(company_context)
        try:
            data = await self._llm.complete(
                system_prompt,
                query,
                temperature=0.0,
                max_tokens=600,
                structured_json=True,
            )
        except Exception as e:
            return AnalysisResult.failure(AnalysisError(f"analysis call failed: {e}"))

        try:
            return AnalysisResult.success(self._build_analysis(query, data, product_hint))
        except (TypeError, ValueError, AttributeError) as e:
            return AnalysisResult.failure(AnalysisError(f"unusable analysis output: {e}"))

    def _build_system_prompt(self, company_context: Optional[Dict[str, Any]]) -> str:
        context = {
            "company_name": getattr(self._company, "name", "") or "our company",
            "company_description": getattr(self._company, "description", ""),
            "product_categories": ", ".join(getattr(self._company, "product_categories", []) or []),
        }
        if company_context:
            for key in ("company_name", "company_description", "product_categories"):
                value = company_context.get(key)
                if value:
                    context[key] = ", ".join(value) if isinstance(value, list) else value

        names = self._resolver.product_names()
        product_list = "\n".join(f"- {n}" for n in names) if names else "(catalog unavailable)"
        return ANALYSIS_SYSTEM_PROMPT.format(product_list=product_list, **context)

    def _build_analysis(self, query: str, data: Dict[str, Any], product_hint: Optional[str]) -> QueryAnalysis:
        if not isinstance(data, dict):
            raise ValueError("analysis output is not an object")

        query_type = _coerce_query_type(data.get("queryType"))
        needs_rag = data.get("needsRAG") is not False
        direct_response = (data.get("directResponse") or "").strip() or None
        if not needs_rag and not direct_response:
            needs_rag = True

        detected = self._detect_products(query, data.get("detectedProducts"), product_hint)

        is_comparison = bool(data.get("isComparisonQuery")) or query_type == QueryType.COMPARISON
        if len(detected) >= 2 and COMPARISON_KEYWORDS.search(query):
            is_comparison = True
        is_catalog = bool(data.get("isCatalogQuery")) or query_type == QueryType.CATALOG

        is_specific = data.get("isSpecificProductQuery")
        if is_specific is None:
            is_specific = len(detected) == 1
        is_specific = bool(is_specific) and bool(detected)
        if is_specific and (query_type in BROAD_QUERY_TYPES or is_recommendation_query(query)):
            logger.debug("Recommendation phrasing, not locking to %s", detected)
            is_specific = False

        return QueryAnalysis(
            query_type=query_type,
            needs_rag=needs_rag,
            intent=str(data.get("intent") or "General query"),
            is_specific_product_query=is_specific,
            detected_products=tuple(detected),
            is_comparison_query=is_comparison,
            is_catalog_query=is_catalog,
            direct_response=None if needs_rag else direct_response,
        )

    def _detect_products(self, query: str, llm_products, product_hint: Optional[str]) -> List[str]:
        """Catalog-exact product names from the hint, the model's answer, or the query text"""
        detected: List[str] = []

        if product_hint:
            detected.extend(m.name for m in self._resolver.match(product_hint, self._hint_threshold, 1))

        if isinstance(llm_products, str):
            llm_products = [llm_products]
        for mention in llm_products or []:
            if not isinstance(mention, str):
                continue
            name = self._resolver.canonical_name(mention, threshold=self._canonical_threshold)
            if name:
                detected.append(name)

        if not detected:
            matches = self._resolver.match(query, self._query_threshold, 3)
            detected.extend(m.name for m in matches[:1] if m.match_type != MatchType.FUZZY)

        return list(dict.fromkeys(detected))


def is_recommendation_query(query: str) -> bool:
    return any(p.search(query) for p in RECOMMENDATION_PATTERNS)


def _coerce_query_type(value) -> QueryType:
    if isinstance(value, str):
        value = value.strip().lower()
        for qt in QueryType:
            if qt.value == value:
                return qt
        if value in ("category", "category_query"):
            return QueryType.CATEGORY
    return QueryType.UNKNOWN
