"""
Product Catalog

Known products, where the catalog comes from, the shared TTL cache and the
fuzzy product resolver used by the query analyzer and expander.
"""

from .products import Product, DEFAULT_PRODUCTS
from .cache import (
    CatalogCache,
    StaticCatalogSource,
    JsonFileCatalogSource,
    HttpCatalogSource,
    create_catalog_source,
)
from .resolver import ProductResolver, ProductMatch, MatchType, normalize

__all__ = [
    "Product",
    "DEFAULT_PRODUCTS",
    "CatalogCache",
    "StaticCatalogSource",
    "JsonFileCatalogSource",
    "HttpCatalogSource",
    "create_catalog_source",
    "ProductResolver",
    "ProductMatch",
    "MatchType",
    "normalize",
]
