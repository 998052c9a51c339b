import json

import httpx

from storefront.services.content_store import (
    PRODUCT_EXISTS_QUERY,
    PRODUCT_VARIANT_QUERY,
    ContentStoreClient,
)

QUERY_URL = "https://catalog.example.com/v2023-01-01/data/query/production"


def make_client(handler, max_retries=3):
    return ContentStoreClient(
        QUERY_URL,
        token="secret-token",
        max_retries=max_retries,
        retry_base_delay=0,
        transport=httpx.MockTransport(handler),
    )


async def test_fetch_posts_query_and_params():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"result": {"product": {"_id": "prod-tee"}, "variant": None}})

    client = make_client(handler)
    result = await client.get_product_variant("prod-tee", "var-tee-m")

    assert result == {"product": {"_id": "prod-tee"}, "variant": None}
    body = json.loads(seen[0].content)
    assert body["query"] == PRODUCT_VARIANT_QUERY
    assert body["params"] == {"productId": "prod-tee", "variantId": "var-tee-m"}
    assert seen[0].headers["Authorization"] == "Bearer secret-token"


async def test_fetch_retries_transient_failures():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json={"result": [{"_id": "cat-shirts", "name": "Shirts"}]})

    client = make_client(handler)

    assert await client.categories() == [{"_id": "cat-shirts", "name": "Shirts"}]
    assert len(attempts) == 3


async def test_fetch_returns_none_when_attempts_are_exhausted():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, max_retries=3)

    assert await client.fetch(PRODUCT_EXISTS_QUERY, {"productId": "prod-tee"}) is None
    assert len(attempts) == 3
    assert await client.product_exists("prod-tee") is None


async def test_malformed_body_counts_as_failure():
    client = make_client(lambda request: httpx.Response(200, json={"ms": 3}), max_retries=1)
    assert await client.get_product_variant("prod-tee", "var-tee-m") is None


async def test_product_exists_distinguishes_missing_from_failed():
    def handler(request):
        product_id = json.loads(request.content)["params"]["productId"]
        product = {"_id": product_id} if product_id == "prod-tee" else None
        return httpx.Response(200, json={"result": {"product": product}})

    client = make_client(handler)

    assert await client.product_exists("prod-tee") is True
    assert await client.product_exists("prod-missing") is False


async def test_list_products_passes_paging_and_search():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content)["params"])
        return httpx.Response(200, json={"result": [{"_id": "prod-tee"}]})

    client = make_client(handler)

    assert await client.list_products(start=24, end=48, search="tee") == [{"_id": "prod-tee"}]
    assert seen[0] == {"start": 24, "end": 48, "categoryId": None, "search": "tee*"}


async def test_get_product_unwraps_projection():
    client = make_client(lambda request: httpx.Response(200, json={"result": {"product": None}}))
    assert await client.get_product("prod-missing") is None
