"""HTTP client for the headless content store.

Products, variants, prices and stock live in the content store and are read
with GROQ queries over its HTTP query API. Every query goes through
``ContentStoreClient.fetch``, which retries with exponential backoff and
returns ``None`` once attempts are exhausted instead of raising.

Lookup queries used for validation are projected into an object so that a
completed lookup never comes back as ``None``: ``{"product": null, ...}``
means "not found", a bare ``None`` means "the lookup failed".
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from storefront.core.config import settings

logger = logging.getLogger(__name__)


VARIANT_PROJECTION = """{
  _id,
  sku,
  price,
  stock,
  "productId": *[_type == "product" && references(^._id)][0]._id,
  "color": color->{ _id, name, hex },
  "size": size->{ _id, name }
}"""

PRODUCT_VARIANT_QUERY = f"""{{
  "product": *[_type == "product" && _id == $productId][0]{{ _id, name }},
  "variant": *[_type == "variant" && _id == $variantId][0]{VARIANT_PROJECTION}
}}"""

VARIANT_QUERY = f"""{{
  "variant": *[_type == "variant" && _id == $variantId][0]{VARIANT_PROJECTION}
}}"""

BATCH_QUERY = """{
  "products": *[_type == "product" && _id in $productIds]{ _id, name },
  "variants": *[_type == "variant" && _id in $variantIds]{
    _id,
    stock,
    price,
    "productId": *[_type == "product" && references(^._id)][0]._id
  }
}"""

PRODUCT_EXISTS_QUERY = """{
  "product": *[_type == "product" && _id == $productId][0]{ _id }
}"""

PRODUCT_PROJECTION = """{
  _id,
  name,
  description,
  "slug": slug.current,
  "image": mainImage.asset->url,
  rating,
  isFeatured,
  category->{ _id, name },
  "variants": variants[]->{
    _id,
    sku,
    price,
    stock,
    "color": color->{ _id, name, hex },
    "size": size->{ _id, name },
    "images": images[].asset->url
  }
}"""

PRODUCT_BY_ID_QUERY = f"""{{
  "product": *[_type == "product" && _id == $productId][0]{PRODUCT_PROJECTION}
}}"""

PRODUCTS_QUERY = f"""*[_type == "product"
  && (!defined($categoryId) || category._ref == $categoryId)
  && (!defined($search) || name match $search || description match $search)
] | order(_createdAt desc) [$start...$end] {PRODUCT_PROJECTION}"""

FEATURED_PRODUCTS_QUERY = f"""*[_type == "product" && isFeatured == true] | order(_createdAt desc) {PRODUCT_PROJECTION}"""

CATEGORIES_QUERY = """*[_type == "category"] | order(name asc) { _id, name, description }"""


class ContentStoreClient:
    def __init__(
        self,
        query_url: str,
        token: str = "",
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.query_url = query_url
        self.token = token
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay
        self.transport = transport

    def _get_async_client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self.transport)

    async def _query(self, query: str, params: Dict[str, Any]) -> Any:
        async with self._get_async_client() as client:
            response = await client.post(self.query_url, json={"query": query, "params": params})
            response.raise_for_status()
            body = response.json()
        if not isinstance(body, dict) or "result" not in body:
            raise ValueError("Content store response has no result")
        return body["result"]

    async def fetch(self, query: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Run a query, retrying with exponential backoff. Returns None on exhaustion."""
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._query(query, params or {})
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning("Content store fetch attempt %s/%s failed: %s", attempt + 1, self.max_retries, e)
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_base_delay * (2 ** attempt))

        logger.error("All content store fetch attempts failed: %s", last_error)
        return None

    async def get_product_variant(self, product_id: str, variant_id: str) -> Optional[Dict[str, Any]]:
        result = await self.fetch(PRODUCT_VARIANT_QUERY, {"productId": product_id, "variantId": variant_id})
        return result if isinstance(result, dict) else None

    async def get_variant(self, variant_id: str) -> Optional[Dict[str, Any]]:
        result = await self.fetch(VARIANT_QUERY, {"variantId": variant_id})
        return result if isinstance(result, dict) else None

    async def get_products_and_variants(self, product_ids: Sequence[str], variant_ids: Sequence[str]) -> Optional[Dict[str, Any]]:
        return await self.fetch(BATCH_QUERY, {"productIds": list(product_ids), "variantIds": list(variant_ids)})

    async def product_exists(self, product_id: str) -> Optional[bool]:
        """True/False when the lookup completed, None when it failed."""
        result = await self.fetch(PRODUCT_EXISTS_QUERY, {"productId": product_id})
        if not isinstance(result, dict):
            return None
        product = result.get("product")
        return bool(product and product.get("_id"))

    # Catalog browsing

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        result = await self.fetch(PRODUCT_BY_ID_QUERY, {"productId": product_id})
        if not isinstance(result, dict):
            return None
        return result.get("product")

    async def list_products(self, start: int = 0, end: int = 24, category_id: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {
            "start": start,
            "end": end,
            "categoryId": category_id,
            "search": f"{search}*" if search else None,
        }
        result = await self.fetch(PRODUCTS_QUERY, params)
        return result if isinstance(result, list) else []

    async def featured_products(self) -> List[Dict[str, Any]]:
        result = await self.fetch(FEATURED_PRODUCTS_QUERY)
        return result if isinstance(result, list) else []

    async def categories(self) -> List[Dict[str, Any]]:
        result = await self.fetch(CATEGORIES_QUERY)
        return result if isinstance(result, list) else []


def get_content_store() -> ContentStoreClient:
    return ContentStoreClient(
        query_url=settings.CONTENT_STORE_QUERY_URL,
        token=settings.CONTENT_STORE_TOKEN,
        timeout=settings.CONTENT_STORE_TIMEOUT,
        max_retries=settings.CONTENT_STORE_MAX_RETRIES,
        retry_base_delay=settings.CONTENT_STORE_RETRY_BASE_DELAY,
    )
