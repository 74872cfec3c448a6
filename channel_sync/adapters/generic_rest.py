"""
범용 REST 채널 어댑터

credentials:
    base_url: 채널 API 루트 (필수)
    api_key: Bearer 토큰 (선택)
    resource: 리소스 경로 (기본 "products")

응답 JSON 규약: {"id", "version", "updated_at", "status", "price", "stock", "status_detail"}
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from channel_sync.adapters.base import AdapterResult, ChannelAdapter, RemoteSnapshot
from channel_sync.schemas.snapshot import ProductSnapshot
from channel_sync.services.exceptions import PermanentAdapterFailure, TransientAdapterFailure
from channel_sync.services.retry_policy import classify_exception, classify_status
from channel_sync.settings import settings
from channel_sync.types import AdapterErrorClass, RemoteListingStatus

logger = logging.getLogger(__name__)

_STATE_KEYS = ("price", "compare_at_price", "stock", "title", "status")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_status(value: Any) -> Optional[RemoteListingStatus]:
    if not value:
        return None
    try:
        return RemoteListingStatus(str(value).upper())
    except ValueError:
        logger.warning(f"[ADAPTER] Unknown remote listing status: {value}")
        return None


def _body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text[:2000]}
    return data if isinstance(data, dict) else {"data": data}


class GenericRestChannelAdapter(ChannelAdapter):
    channel_code = "generic"

    def __init__(self, account: Any = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(account)
        base_url = self.credentials.get("base_url")
        if not base_url:
            raise PermanentAdapterFailure(
                "base_url is not configured for account",
                error_class=AdapterErrorClass.AUTH_EXPIRED,
            )
        self.channel_code = getattr(account, "channel_code", None) or self.channel_code
        self.resource = self.credentials.get("resource", "products")
        headers = {"Accept": "application/json"}
        if self.credentials.get("api_key"):
            headers["Authorization"] = f"Bearer {self.credentials['api_key']}"
        self._client = httpx.AsyncClient(
            base_url=str(base_url).rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(settings.adapter_timeout_seconds, connect=10.0),
            transport=transport,
        )

    def _payload(self, mapping: Any, snapshot: ProductSnapshot) -> Dict[str, Any]:
        return {
            "sku": snapshot.sku,
            "title": snapshot.name,
            "description": snapshot.description,
            "price": str(snapshot.price) if snapshot.price is not None else None,
            "compare_at_price": str(snapshot.compare_at_price) if snapshot.compare_at_price is not None else None,
            "stock": snapshot.stock,
            "brand": snapshot.brand,
            "gtin": snapshot.gtin,
            "images": [m.url for m in snapshot.media],
            "categories": list(snapshot.categories),
            "attributes": {a.code: a.value for a in snapshot.attributes if a.channel in (None, self.channel_code)},
            "external_attributes": dict(getattr(mapping, "external_attributes", None) or {}),
        }

    async def _request(self, method: str, url: str, json: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.HTTPError as e:
            error_class, transient = classify_exception(e)
            if transient:
                raise TransientAdapterFailure(str(e) or e.__class__.__name__, error_class=error_class) from e
            raise PermanentAdapterFailure(str(e), error_class=error_class) from e
        return response

    def _failure(self, response: httpx.Response, request_payload: Optional[dict] = None) -> AdapterResult:
        error_class = classify_status(response.status_code)
        body = _body(response)
        message = body.get("message") or body.get("error") or f"HTTP {response.status_code}"
        return AdapterResult.fail(
            error_class,
            str(message),
            status_code=response.status_code,
            request_payload=request_payload,
            response_payload=body,
        )

    def _success(self, body: Dict[str, Any], request_payload: Optional[dict] = None) -> AdapterResult:
        return AdapterResult.ok(
            external_id=str(body["id"]) if body.get("id") is not None else None,
            external_attributes={k: v for k, v in (body.get("attributes") or {}).items()},
            remote_marker=str(body["version"]) if body.get("version") is not None else None,
            remote_updated_at=_parse_datetime(body.get("updated_at")),
            listing_status=_parse_status(body.get("status")),
            status_detail=body.get("status_detail"),
            remote_state={k: body.get(k) for k in _STATE_KEYS if k in body},
            request_payload=request_payload,
            response_payload=body,
        )

    async def push(self, mapping: Any, snapshot: ProductSnapshot) -> AdapterResult:
        payload = self._payload(mapping, snapshot)
        external_id = getattr(mapping, "external_id", None)
        if external_id:
            response = await self._request("PUT", f"/{self.resource}/{external_id}", json=payload)
        else:
            response = await self._request("POST", f"/{self.resource}", json=payload)
        if response.status_code >= 400:
            return self._failure(response, payload)
        return self._success(_body(response), payload)

    async def pull(self, mapping: Any) -> RemoteSnapshot:
        external_id = getattr(mapping, "external_id", None)
        if not external_id:
            return RemoteSnapshot(external_id=None, exists=False)
        response = await self._request("GET", f"/{self.resource}/{external_id}")
        if response.status_code == 404:
            return RemoteSnapshot(external_id=external_id, exists=False, listing_status=RemoteListingStatus.DELETED)
        if response.status_code >= 400:
            error_class = classify_status(response.status_code)
            message = f"pull failed: HTTP {response.status_code}"
            if error_class.is_transient:
                raise TransientAdapterFailure(message, error_class=error_class, status_code=response.status_code)
            raise PermanentAdapterFailure(message, error_class=error_class, status_code=response.status_code)
        body = _body(response)
        return RemoteSnapshot(
            external_id=str(body.get("id") or external_id),
            exists=True,
            listing_status=_parse_status(body.get("status")),
            remote_marker=str(body["version"]) if body.get("version") is not None else None,
            remote_updated_at=_parse_datetime(body.get("updated_at")),
            state={k: body.get(k) for k in _STATE_KEYS if k in body},
            status_detail=body.get("status_detail"),
            payload=body,
        )

    async def delete(self, mapping: Any) -> AdapterResult:
        external_id = getattr(mapping, "external_id", None)
        if not external_id:
            return AdapterResult.ok(message="never published")
        response = await self._request("DELETE", f"/{self.resource}/{external_id}")
        # 이미 없는 리스팅은 삭제 성공으로 본다
        if response.status_code == 404 or response.status_code < 400:
            return AdapterResult.ok(
                external_id=external_id,
                listing_status=RemoteListingStatus.DELETED,
                response_payload=_body(response) if response.content else None,
            )
        return self._failure(response)

    async def aclose(self):
        await self._client.aclose()
