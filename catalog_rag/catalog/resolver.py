"""
Product Resolver

Fuzzy-matches free text against the product catalog.

Scoring tiers (first tier that matches wins for a product):
1. Exact normalized match              -> 1.0
2. Query contains the full name        -> 0.95
   Name contains the query             -> 0.9
3. Alias containment                   -> 0.6 + up to 0.25 by alias length
4. Fuzzy: max(Levenshtein similarity, token overlap) over name and aliases
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .cache import CatalogCache
from .products import Product

logger = logging.getLogger("catalog_rag.catalog.resolver")


class MatchType(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"


@dataclass
class ProductMatch:
    """A catalog product matched against some text"""
    product: Product
    score: float
    match_type: MatchType

    @property
    def name(self) -> str:
        return self.product.name


# Words that never identify a product on their own
STOP_WORDS = {
    "the", "and", "for", "with", "from", "this", "that", "what", "which",
    "best", "good", "better", "product", "products", "frido", "ultimate",
    "pro", "plus", "max", "mini",
}

MIN_ALIAS_LENGTH = 3
ALIAS_BASE_SCORE = 0.6
ALIAS_MAX_BONUS = 0.25
ALIAS_FULL_BONUS_LENGTH = 20


def normalize(text: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace"""
    text = re.sub(r"[^\w\s]", " ", (text or "").lower())
    return re.sub(r"\s+", " ", text).strip()


def levenshtein_distance(s1: str, s2: str) -> int:
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, 1):
        current = [i]
        for j, c2 in enumerate(s2, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (c1 != c2),
            ))
        previous = current
    return previous[-1]


def string_similarity(s1: str, s2: str) -> float:
    """(max_len - edit_distance) / max_len, 1.0 for two empty strings"""
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(s1, s2)) / longest


def token_overlap(query: str, name: str) -> float:
    """Fraction of query tokens (len > 2) that contain or are contained in a name token"""
    query_tokens = [t for t in query.split() if len(t) > 2]
    if not query_tokens:
        return 0.0
    name_tokens = name.split()
    matched = sum(
        1 for q in query_tokens
        if any(q in n or n in q for n in name_tokens)
    )
    return matched / len(query_tokens)


def _is_stop_phrase(text: str) -> bool:
    tokens = text.split()
    return not tokens or all(t in STOP_WORDS for t in tokens)


def _contains_phrase(haystack: str, needle: str) -> bool:
    return f" {needle} " in f" {haystack} "


class ProductResolver:
    """
    Resolves product mentions against the cached catalog.

    ``match`` works on the cache's current snapshot and never waits for a
    refresh: a catalog that is still loading simply yields no matches.
    """

    def __init__(self, cache: CatalogCache, load_timeout: float = 5.0):
        self._cache = cache
        self._load_timeout = load_timeout

    @property
    def products(self) -> List[Product]:
        return list(self._cache.snapshot())

    def product_names(self) -> List[str]:
        return [p.name for p in self._cache.snapshot()]

    async def ensure_fresh(self, timeout: Optional[float] = None) -> None:
        """Refresh the catalog if stale, waiting at most ``timeout`` seconds"""
        await self._cache.wait_until_fresh(self._load_timeout if timeout is None else timeout)

    def match(self, text: str, threshold: float = 0.3, max_results: int = 5) -> List[ProductMatch]:
        """
        Rank catalog products against free text.

        Args:
            text: Query or product mention
            threshold: Drop matches scoring below this (0-1)
            max_results: Truncate the ranked list to this length

        Returns:
            Matches sorted by descending score
        """
        return match_products(text, self._cache.snapshot(), threshold, max_results)

    def canonical_name(self, text: str, threshold: float = 0.6) -> Optional[str]:
        """Map a product mention to its catalog-exact name, or None"""
        matches = self.match(text, threshold=threshold, max_results=1)
        return matches[0].name if matches else None


def match_products(
    text: str,
    products: Iterable[Product],
    threshold: float = 0.3,
    max_results: int = 5,
) -> List[ProductMatch]:
    query = normalize(text)
    if not query:
        return []

    results = []
    for product in products:
        match = _score_product(query, product)
        if match and match.score >= threshold:
            results.append(match)

    # Stable sort keeps catalog order for equal scores
    results.sort(key=lambda m: m.score, reverse=True)
    return results[:max_results]


def _score_product(query: str, product: Product) -> Optional[ProductMatch]:
    name = normalize(product.name)
    if not name:
        return None

    if query == name:
        return ProductMatch(product, 1.0, MatchType.EXACT)

    if name in query:
        return ProductMatch(product, 0.95, MatchType.EXACT)
    if query in name:
        return ProductMatch(product, 0.9, MatchType.EXACT)

    aliases = [normalize(a) for a in product.aliases]

    best_alias = 0.0
    for alias in aliases:
        if len(alias) < MIN_ALIAS_LENGTH or _is_stop_phrase(alias):
            continue
        hit = _contains_phrase(query, alias) or (
            len(query) >= MIN_ALIAS_LENGTH
            and not _is_stop_phrase(query)
            and _contains_phrase(alias, query)
        )
        if hit:
            bonus = ALIAS_MAX_BONUS * min(1.0, len(alias) / ALIAS_FULL_BONUS_LENGTH)
            best_alias = max(best_alias, ALIAS_BASE_SCORE + bonus)
    if best_alias:
        return ProductMatch(product, best_alias, MatchType.ALIAS)

    fuzzy = 0.0
    for candidate in [name] + [a for a in aliases if a]:
        fuzzy = max(fuzzy, string_similarity(query, candidate), token_overlap(query, candidate))
    return ProductMatch(product, max(0.0, min(1.0, fuzzy)), MatchType.FUZZY)
