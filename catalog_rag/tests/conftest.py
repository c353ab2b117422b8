"""Shared fixtures: resolvers over small catalogs and a scripted completion client."""

from unittest.mock import AsyncMock, Mock

import pytest

from catalog_rag.catalog.cache import CatalogCache, StaticCatalogSource
from catalog_rag.catalog.products import DEFAULT_PRODUCTS, Product, product_id
from catalog_rag.catalog.resolver import ProductResolver


def _products(*names, aliases=None):
    aliases = aliases or {}
    return [Product(id=product_id(n), name=n, aliases=tuple(aliases.get(n, ()))) for n in names]


def _resolver(products):
    return ProductResolver(CatalogCache(StaticCatalogSource(products)))


@pytest.fixture
def make_products():
    return _products


@pytest.fixture
def make_resolver():
    """Resolver over the given products; the catalog loads on first ensure_fresh()"""
    return _resolver


@pytest.fixture
def resolver():
    return _resolver(DEFAULT_PRODUCTS)


@pytest.fixture
def scripted_llm():
    """Completion client whose complete() returns (or raises) the given responses in order"""
    def build(*responses):
        llm = Mock()
        llm.complete = AsyncMock(side_effect=list(responses))
        return llm
    return build
