"""
Catalog sources and the shared TTL cache.

The catalog is the only state shared across requests. CatalogCache keeps an
immutable snapshot, refreshes it when the TTL expires, and collapses
concurrent refreshes into a single in-flight fetch.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import httpx

from ..common.errors import CatalogError
from .products import DEFAULT_PRODUCTS, Product

logger = logging.getLogger("catalog_rag.catalog.cache")


class StaticCatalogSource:
    """Serves a fixed product list (defaults to the built-in catalog)"""

    def __init__(self, products: Optional[List[Product]] = None):
        self._products = list(products if products is not None else DEFAULT_PRODUCTS)

    async def fetch(self) -> List[Product]:
        return list(self._products)


class JsonFileCatalogSource:
    """Reads [{id, name, aliases}] from a JSON file"""

    def __init__(self, path: str):
        self._path = Path(path).expanduser()

    async def fetch(self) -> List[Product]:
        try:
            text = await asyncio.to_thread(self._path.read_text)
            return _parse_products(json.loads(text))
        except (OSError, json.JSONDecodeError, ValueError) as e:
            raise CatalogError(f"Failed to read catalog file {self._path}: {e}") from e


class HttpCatalogSource:
    """Fetches [{id, name, aliases}] (or {"products": [...]}) from an HTTP endpoint"""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._transport = transport

    async def fetch(self) -> List[Product]:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), transport=self._transport) as client:
                response = await client.get(self._url, headers=self._headers)
                response.raise_for_status()
                return _parse_products(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogError(f"Failed to fetch catalog from {self._url}: {e}") from e


def _parse_products(data) -> List[Product]:
    if isinstance(data, dict):
        data = data.get("products", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of products, got {type(data).__name__}")
    return [Product.from_dict(item) for item in data]


def create_catalog_source(catalog_config):
    """Build the catalog source named in CatalogConfig"""
    source = (catalog_config.source or "static").lower()
    if source == "file":
        return JsonFileCatalogSource(catalog_config.path)
    if source == "url":
        return HttpCatalogSource(catalog_config.url, timeout=catalog_config.load_timeout)
    if source != "static":
        logger.warning("Unknown catalog source %r, using the built-in catalog", source)
    return StaticCatalogSource()


class CatalogCache:
    """
    TTL cache around a catalog source.

    - ``snapshot()`` returns whatever is loaded now, never blocks
    - ``get_products()`` refreshes when stale; concurrent callers await
      the same pending fetch
    - a failed refresh keeps the previous snapshot
    """

    def __init__(
        self,
        source,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._ttl = ttl_seconds
        self._clock = clock
        self._products: Tuple[Product, ...] = ()
        self._loaded_at: Optional[float] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded_at is not None

    @property
    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self._ttl

    def snapshot(self) -> Tuple[Product, ...]:
        return self._products

    def invalidate(self) -> None:
        self._loaded_at = None

    async def get_products(self) -> Tuple[Product, ...]:
        """Return the catalog, refreshing it first if the TTL has expired"""
        if not self.is_stale:
            return self._products
        await asyncio.shield(self._refresh_task())
        return self._products

    async def wait_until_fresh(self, timeout: float) -> Tuple[Product, ...]:
        """Like get_products, but give up after ``timeout`` and return the current snapshot"""
        if not self.is_stale:
            return self._products
        try:
            await asyncio.wait_for(asyncio.shield(self._refresh_task()), timeout)
        except asyncio.TimeoutError:
            logger.warning("Catalog refresh still running after %.1fs, using current snapshot", timeout)
        return self._products

    def _refresh_task(self) -> asyncio.Task:
        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._refresh())
        return self._pending

    async def _refresh(self) -> None:
        try:
            products = await self._source.fetch()
        except Exception as e:
            logger.warning("Catalog refresh failed, keeping %d cached products: %s", len(self._products), e)
            return
        self._products = tuple(products)
        self._loaded_at = self._clock()
        logger.info("Catalog refreshed: %d products", len(self._products))
