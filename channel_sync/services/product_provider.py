"""
상품 스냅샷 제공자

외부 카탈로그 서비스에서 읽기 전용 ProductSnapshot 을 가져온다.
- HttpProductSnapshotProvider: httpx + tenacity (일시적 오류만 재시도)
- InMemoryProductProvider: 테스트/로컬 실행용
"""
import logging
from typing import Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from channel_sync.schemas.snapshot import ProductSnapshot
from channel_sync.services.retry_policy import classify_exception
from channel_sync.settings import settings

logger = logging.getLogger(__name__)


class CatalogUnavailable(RuntimeError):
    """카탈로그 서비스 일시 장애 (재시도 대상)"""


class ProductSnapshotProvider:
    async def get_product_snapshot(self, product_id: str) -> Optional[ProductSnapshot]:
        raise NotImplementedError


class InMemoryProductProvider(ProductSnapshotProvider):
    def __init__(self, products: Optional[Dict[str, ProductSnapshot]] = None):
        self._products: Dict[str, ProductSnapshot] = dict(products or {})

    def put(self, snapshot: ProductSnapshot):
        self._products[snapshot.id] = snapshot

    def remove(self, product_id: str):
        self._products.pop(product_id, None)

    async def get_product_snapshot(self, product_id: str) -> Optional[ProductSnapshot]:
        return self._products.get(product_id)


class HttpProductSnapshotProvider(ProductSnapshotProvider):
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_count: Optional[int] = None,
        wait=None,
    ):
        headers = {"Accept": "application/json"}
        token = settings.catalog_api_token if token is None else token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.catalog_api_base_url).rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(settings.catalog_api_timeout_seconds, connect=5.0),
            transport=transport,
        )
        self.retry_count = settings.catalog_api_retry_count if retry_count is None else retry_count
        self.wait = wait or wait_exponential(multiplier=1, min=1, max=10)

    async def _fetch(self, product_id: str) -> Optional[ProductSnapshot]:
        try:
            response = await self._client.get(f"/products/{product_id}/snapshot")
        except httpx.HTTPError as e:
            _, transient = classify_exception(e)
            if transient:
                raise CatalogUnavailable(f"catalog request failed: {e}") from e
            raise
        if response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            raise CatalogUnavailable(f"catalog returned HTTP {response.status_code}")
        response.raise_for_status()
        return ProductSnapshot.model_validate(response.json())

    async def get_product_snapshot(self, product_id: str) -> Optional[ProductSnapshot]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.retry_count)),
            wait=self.wait,
            retry=retry_if_exception_type(CatalogUnavailable),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"[CATALOG] 스냅샷 조회 재시도 중... ({retry_state.attempt_number}회째): {retry_state.outcome.exception()}"
            ),
        ):
            with attempt:
                return await self._fetch(product_id)
        return None

    async def aclose(self):
        await self._client.aclose()
