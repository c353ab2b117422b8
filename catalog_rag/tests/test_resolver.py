"""
Tests for the product resolver

Scoring tiers, fuzzy matching and behavior on an unloaded catalog.
"""

import asyncio

import pytest

from catalog_rag.catalog.cache import CatalogCache
from catalog_rag.catalog.products import DEFAULT_PRODUCTS
from catalog_rag.catalog.resolver import (
    MatchType,
    ProductResolver,
    levenshtein_distance,
    match_products,
    normalize,
    string_similarity,
    token_overlap,
)


class TestHelpers:
    def test_normalize(self):
        assert normalize("  Frido Dual-Gel   Insoles! ") == "frido dual gel insoles"

    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_string_similarity(self):
        assert string_similarity("sleep", "slep") == pytest.approx(0.8)
        assert string_similarity("", "") == 1.0
        assert string_similarity("abc", "xyz") == 0.0

    def test_token_overlap_ignores_short_tokens(self):
        # "of" is ignored, "slep" matches nothing
        assert token_overlap("pillow of slep", "deep sleep pillow") == pytest.approx(0.5)
        assert token_overlap("a b", "anything") == 0.0


class TestMatchProducts:
    def test_scores_stay_in_unit_interval(self):
        queries = [
            "", "x", "pillow", "frido", "deep slep pillow", "FRIDO DUAL GEL INSOLES PRO!!",
            "which is the best back cushion for car?", "gel " * 50, "ñandú 123",
        ]
        for query in queries:
            for match in match_products(query, DEFAULT_PRODUCTS, threshold=0.0, max_results=100):
                assert 0.0 <= match.score <= 1.0

    def test_exact_normalized_match_scores_one(self, make_products):
        products = make_products("Frido Dual Gel Insoles", "Frido Dual Gel Insoles Pro")

        matches = match_products("frido dual-gel INSOLES", products)

        assert matches[0].name == "Frido Dual Gel Insoles"
        assert matches[0].score == 1.0
        assert matches[0].match_type == MatchType.EXACT

    def test_misspelled_query_matches(self, make_products):
        products = make_products("Frido Ultimate Deep Sleep Pillow")

        matches = match_products("deep slep pillow", products)

        assert matches[0].name == "Frido Ultimate Deep Sleep Pillow"
        assert matches[0].score > 0.5

    def test_misspelled_query_matches_full_catalog(self):
        matches = match_products("deep slep pillow", DEFAULT_PRODUCTS)
        assert matches[0].name == "Frido Ultimate Deep Sleep Pillow"

    def test_pro_variant_beats_base_without_aliases(self, make_products):
        products = make_products("Frido Dual Gel Insoles", "Frido Dual Gel Insoles Pro")

        matches = match_products("price of Dual Gel Insoles Pro", products)

        assert matches[0].name == "Frido Dual Gel Insoles Pro"
        assert matches[0].score > matches[1].score

    def test_pro_variant_beats_base_with_catalog_aliases(self):
        matches = match_products("price of Dual Gel Insoles Pro", DEFAULT_PRODUCTS)
        assert matches[0].name == "Frido Dual Gel Insoles Pro"

    def test_query_containing_name_outranks_name_containing_query(self, make_products):
        products = make_products("Frido Knee Pillow", "Frido Knee Pillow Cover Large")

        matches = match_products("is the frido knee pillow washable", products, threshold=0.0)

        assert matches[0].name == "Frido Knee Pillow"
        assert matches[0].score == 0.95

        matches = match_products("knee pillow cover", products, threshold=0.0)
        assert matches[0].name == "Frido Knee Pillow Cover Large"
        assert matches[0].score == 0.9

    def test_longer_alias_outranks_shorter(self, make_products):
        products = make_products(
            "Frido Gel Heel Cup", "Frido Dual Gel Insoles Pro",
            aliases={"Frido Gel Heel Cup": ["Gel"], "Frido Dual Gel Insoles Pro": ["Gel Insoles Pro"]},
        )

        matches = match_products("gel insoles pro price", products)

        assert matches[0].name == "Frido Dual Gel Insoles Pro"
        assert matches[0].match_type == MatchType.ALIAS
        assert matches[0].score > matches[1].score

    def test_stop_word_aliases_are_skipped(self, make_products):
        products = make_products("Frido Knee Pillow", aliases={"Frido Knee Pillow": ["Pro Max", "xy"]})

        matches = match_products("do you have the pro max version", products, threshold=0.0)

        assert matches[0].match_type == MatchType.FUZZY

    def test_threshold_and_max_results(self):
        matches = match_products("cushion", DEFAULT_PRODUCTS, threshold=0.3, max_results=2)
        assert len(matches) == 2
        assert all(m.score >= 0.3 for m in matches)
        assert matches[0].score >= matches[1].score

    def test_empty_query_matches_nothing(self):
        assert match_products("  ?! ", DEFAULT_PRODUCTS) == []


class TestProductResolver:
    @pytest.mark.asyncio
    async def test_canonical_name(self, resolver):
        await resolver.ensure_fresh()

        assert resolver.canonical_name("dual gel insoles pro") == "Frido Dual Gel Insoles Pro"
        assert resolver.canonical_name("zzzz qqqq") is None

    @pytest.mark.asyncio
    async def test_match_on_loaded_catalog(self, resolver):
        await resolver.ensure_fresh()

        matches = resolver.match("Frido Maternity Pillow")

        assert matches[0].name == "Frido Maternity Pillow"
        assert len(resolver.product_names()) == len(DEFAULT_PRODUCTS)

    @pytest.mark.asyncio
    async def test_still_loading_catalog_returns_no_matches(self):
        release = asyncio.Event()

        class SlowSource:
            async def fetch(self):
                await release.wait()
                return list(DEFAULT_PRODUCTS)

        cache = CatalogCache(SlowSource())
        slow = ProductResolver(cache, load_timeout=0.05)

        await slow.ensure_fresh()
        assert slow.match("Frido Maternity Pillow") == []

        release.set()
        await cache.get_products()
        assert slow.match("Frido Maternity Pillow")[0].name == "Frido Maternity Pillow"
