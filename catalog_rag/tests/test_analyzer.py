"""
Tests for QueryAnalyzer

Classification, product detection, the recommendation guard and the
conservative fallback.
"""

import logging

import pytest

from catalog_rag.common.errors import AnalysisError
from catalog_rag.retriever.analyzer import (
    AnalysisResult,
    QueryAnalysis,
    QueryAnalyzer,
    QueryType,
    is_recommendation_query,
)
from catalog_rag.retriever.query_expander import StandardMode, select_mode


def analysis_json(**overrides):
    data = {
        "queryType": "informational",
        "needsRAG": True,
        "intent": "product information",
        "detectedProducts": [],
        "isSpecificProductQuery": False,
        "isComparisonQuery": False,
        "isCatalogQuery": False,
    }
    data.update(overrides)
    return data


class TestRecommendationGuard:
    @pytest.mark.parametrize("query", [
        "which is the best back cushion for car?",
        "Can you recommend a pillow for neck pain",
        "suggest something for my office chair",
        "is there a cushion suitable for long drives",
        "I am looking for a wedge cushion",
    ])
    def test_recommendation_phrasings(self, query):
        assert is_recommendation_query(query)

    @pytest.mark.parametrize("query", [
        "price of Dual Gel Insoles Pro",
        "how do I wash the knee pillow",
    ])
    def test_specific_phrasings(self, query):
        assert not is_recommendation_query(query)

    @pytest.mark.asyncio
    async def test_best_back_cushion_for_car_is_not_locked(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(
            queryType="specification",
            detectedProducts=["Frido Ultimate Car Backrest Cushion"],
            isSpecificProductQuery=True,
        ))
        analyzer = QueryAnalyzer(llm, resolver)

        analysis = await analyzer.analyze("which is the best back cushion for car?")

        assert analysis.is_specific_product_query is False
        assert analysis.detected_products == ("Frido Ultimate Car Backrest Cushion",)
        mode = select_mode(analysis)
        assert isinstance(mode, StandardMode)
        assert mode.locked_product is None

    @pytest.mark.asyncio
    async def test_recommendation_type_is_never_specific(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(
            queryType="recommendation",
            detectedProducts=["Frido Knee Pillow"],
            isSpecificProductQuery=True,
        ))
        analysis = await QueryAnalyzer(llm, resolver).analyze("knee pillow or something else?")

        assert analysis.query_type == QueryType.RECOMMENDATION
        assert not analysis.is_specific_product_query


class TestProductDetection:
    @pytest.mark.asyncio
    async def test_llm_names_are_mapped_to_catalog_names(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(
            detectedProducts=["frido dual gel insoles pro", "Frido Quantum Blanket"],
        ))
        analysis = await QueryAnalyzer(llm, resolver).analyze("tell me about dual gel insoles pro")

        assert analysis.detected_products == ("Frido Dual Gel Insoles Pro",)

    @pytest.mark.asyncio
    async def test_pro_variant_locked_from_query_text(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(
            queryType="specification",
            detectedProducts=[],
            isSpecificProductQuery=None,
        ))
        analysis = await QueryAnalyzer(llm, resolver).analyze("price of Dual Gel Insoles Pro")

        assert analysis.detected_products == ("Frido Dual Gel Insoles Pro",)
        assert analysis.is_specific_product_query
        assert select_mode(analysis).locked_product == "Frido Dual Gel Insoles Pro"

    @pytest.mark.asyncio
    async def test_product_hint_is_resolved(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(queryType="specification", isSpecificProductQuery=True))
        analysis = await QueryAnalyzer(llm, resolver).analyze("how do I wash it", product_hint="knee pillow")

        assert analysis.detected_products == ("Frido Knee Pillow",)
        assert select_mode(analysis).locked_product == "Frido Knee Pillow"

    @pytest.mark.asyncio
    async def test_two_products_with_comparison_keyword(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(
            detectedProducts=["Frido Dual Gel Insoles", "Frido Dual Gel Insoles Pro"],
            isComparisonQuery=False,
        ))
        analysis = await QueryAnalyzer(llm, resolver).analyze(
            "difference between dual gel insoles and dual gel insoles pro"
        )

        assert analysis.is_comparison_query
        assert len(analysis.detected_products) == 2


class TestClassification:
    @pytest.mark.asyncio
    async def test_greeting_gets_direct_response(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(
            queryType="greeting", needsRAG=False, directResponse="Hi! Ask me anything about Frido products.",
        ))
        analysis = await QueryAnalyzer(llm, resolver).analyze("hello")

        assert analysis.query_type == QueryType.GREETING
        assert analysis.needs_rag is False
        assert analysis.direct_response.startswith("Hi!")

    @pytest.mark.asyncio
    async def test_no_retrieval_without_direct_response_is_overridden(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(queryType="casual", needsRAG=False, directResponse=""))
        analysis = await QueryAnalyzer(llm, resolver).analyze("hmm")

        assert analysis.needs_rag is True
        assert analysis.direct_response is None

    @pytest.mark.asyncio
    async def test_catalog_query(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json(queryType="catalog", isCatalogQuery=False))
        analysis = await QueryAnalyzer(llm, resolver).analyze("what products do you sell?")

        assert analysis.is_catalog_query

    @pytest.mark.asyncio
    async def test_prompt_lists_catalog_products(self, resolver, scripted_llm):
        llm = scripted_llm(analysis_json())
        await QueryAnalyzer(llm, resolver).analyze("anything")

        system_prompt = llm.complete.call_args.args[0]
        assert "- Frido Dual Gel Insoles Pro" in system_prompt
        assert llm.complete.call_args.kwargs["structured_json"] is True
        assert llm.complete.call_args.kwargs["temperature"] == 0.0


class TestFallback:
    @pytest.mark.asyncio
    async def test_completion_error_degrades_to_default(self, resolver, scripted_llm, caplog):
        llm = scripted_llm(RuntimeError("LLM client is not available"))

        with caplog.at_level(logging.WARNING, logger="catalog_rag.retriever.analyzer"):
            analysis = await QueryAnalyzer(llm, resolver).analyze("price of Dual Gel Insoles Pro")

        assert analysis == QueryAnalysis.conservative_default()
        assert analysis.needs_rag is True
        assert analysis.detected_products == ()
        assert analysis.query_type.value == "category query"
        assert "conservative defaults" in caplog.text

    @pytest.mark.asyncio
    async def test_unparsable_output_degrades_to_default(self, resolver, scripted_llm):
        llm = scripted_llm(ValueError("LLM response is not a JSON object"))
        analysis = await QueryAnalyzer(llm, resolver).analyze("anything")

        assert analysis.query_type == QueryType.CATEGORY
        assert not analysis.is_specific_product_query

    @pytest.mark.asyncio
    async def test_try_analyze_reports_the_error(self, resolver, scripted_llm):
        llm = scripted_llm(RuntimeError("boom"))
        await resolver.ensure_fresh()

        result = await QueryAnalyzer(llm, resolver).try_analyze("anything")

        assert not result.ok
        assert isinstance(result.error, AnalysisError)

    def test_result_combinator(self):
        analysis = QueryAnalysis(query_type=QueryType.INFORMATIONAL, needs_rag=True, intent="x")

        assert AnalysisResult.success(analysis).or_default() is analysis
        assert AnalysisResult.failure(AnalysisError("x")).or_default() == QueryAnalysis.conservative_default()
