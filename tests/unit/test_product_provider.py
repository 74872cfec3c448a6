import httpx
import pytest
from tenacity import wait_none

from channel_sync.services.product_provider import (
    CatalogUnavailable,
    HttpProductSnapshotProvider,
    InMemoryProductProvider,
)

SNAPSHOT = {
    "id": "P-1",
    "sku": "SKU-1",
    "name": "Organic Cotton T-Shirt",
    "price": "29.90",
    "categories": ["apparel"],
    "media": [{"url": "https://cdn.example.com/p1.jpg"}],
    "seo": {"meta_title": "Organic Tee"},
    "attributes": [{"code": "color", "value": "green", "locale": "en_US"}],
}


def _provider(handler, retry_count=3):
    return HttpProductSnapshotProvider(
        base_url="https://catalog.example.com",
        token="t0ken",
        transport=httpx.MockTransport(handler),
        retry_count=retry_count,
        wait=wait_none(),
    )


@pytest.mark.unit
class TestHttpProductSnapshotProvider:
    async def test_fetch_snapshot(self):
        def handler(request: httpx.Request):
            assert request.url.path == "/products/P-1/snapshot"
            assert request.headers["Authorization"] == "Bearer t0ken"
            return httpx.Response(200, json=SNAPSHOT)

        provider = _provider(handler)
        snapshot = await provider.get_product_snapshot("P-1")
        await provider.aclose()

        assert snapshot.id == "P-1"
        assert str(snapshot.price) == "29.90"
        assert snapshot.seo.meta_title == "Organic Tee"
        assert snapshot.attributes[0].locale == "en_US"

    async def test_not_found_returns_none(self):
        provider = _provider(lambda request: httpx.Response(404))
        assert await provider.get_product_snapshot("P-404") is None

    async def test_transient_errors_are_retried(self):
        calls = []

        def handler(request: httpx.Request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=SNAPSHOT)

        snapshot = await _provider(handler).get_product_snapshot("P-1")

        assert snapshot.id == "P-1"
        assert len(calls) == 3

    async def test_gives_up_after_retry_count(self):
        calls = []

        def handler(request: httpx.Request):
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(CatalogUnavailable):
            await _provider(handler, retry_count=2).get_product_snapshot("P-1")
        assert len(calls) == 2

    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request: httpx.Request):
            calls.append(request)
            return httpx.Response(400, json={"error": "bad id"})

        with pytest.raises(httpx.HTTPStatusError):
            await _provider(handler).get_product_snapshot("bad id")
        assert len(calls) == 1


@pytest.mark.unit
class TestInMemoryProductProvider:
    async def test_put_and_remove(self, product_factory):
        provider = InMemoryProductProvider()
        provider.put(product_factory("P-7"))

        assert (await provider.get_product_snapshot("P-7")).sku == "SKU-P-7"
        provider.remove("P-7")
        assert await provider.get_product_snapshot("P-7") is None
