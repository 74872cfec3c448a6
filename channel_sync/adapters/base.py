"""
채널 어댑터 인터페이스

마켓별 구현체는 이 계약(push/pull/delete)만 만족하면 동기화 엔진에 연결할 수 있다.
마켓 API 와이어 포맷은 각 어댑터가 책임진다.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from channel_sync.schemas.snapshot import ProductSnapshot
from channel_sync.types import AdapterErrorClass, RemoteListingStatus


@dataclass
class AdapterResult:
    success: bool
    external_id: Optional[str] = None
    external_attributes: Dict[str, Any] = field(default_factory=dict)
    remote_marker: Optional[str] = None
    remote_updated_at: Optional[datetime] = None
    listing_status: Optional[RemoteListingStatus] = None
    status_detail: Optional[Dict[str, Any]] = None
    remote_state: Optional[Dict[str, Any]] = None
    error_class: Optional[AdapterErrorClass] = None
    message: Optional[str] = None
    status_code: Optional[int] = None
    request_payload: Optional[Dict[str, Any]] = None
    response_payload: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, external_id: Optional[str] = None, **kwargs) -> "AdapterResult":
        return cls(success=True, external_id=external_id, **kwargs)

    @classmethod
    def fail(cls, error_class: AdapterErrorClass, message: str, **kwargs) -> "AdapterResult":
        return cls(success=False, error_class=error_class, message=message, **kwargs)


@dataclass
class RemoteSnapshot:
    """채널 측 리스팅 관측값"""
    external_id: Optional[str] = None
    exists: bool = True
    listing_status: Optional[RemoteListingStatus] = None
    remote_marker: Optional[str] = None
    remote_updated_at: Optional[datetime] = None
    state: Dict[str, Any] = field(default_factory=dict)  # price, stock, title ...
    status_detail: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], external_id: Optional[str] = None) -> "RemoteSnapshot":
        """웹훅 등에서 전달된 관측값(dict) → RemoteSnapshot"""
        updated_at = data.get("remote_updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
        listing_status = data.get("listing_status")
        return cls(
            external_id=data.get("external_id") or external_id,
            exists=bool(data.get("exists", True)),
            listing_status=RemoteListingStatus(listing_status) if listing_status else None,
            remote_marker=str(data["remote_marker"]) if data.get("remote_marker") is not None else None,
            remote_updated_at=updated_at,
            state=dict(data.get("state") or {}),
            status_detail=data.get("status_detail"),
            payload=data.get("payload"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "exists": self.exists,
            "listing_status": self.listing_status.value if self.listing_status else None,
            "remote_marker": self.remote_marker,
            "remote_updated_at": self.remote_updated_at.isoformat() if self.remote_updated_at else None,
            "state": self.state,
            "status_detail": self.status_detail,
        }


class ChannelAdapter(ABC):
    """
    마켓별 어댑터 기본 클래스.

    Args:
        account: ChannelAccount (credentials/settings 사용)
    """
    channel_code: str = ""

    def __init__(self, account: Any = None):
        self.account = account
        self.credentials: Dict[str, Any] = dict(getattr(account, "credentials", None) or {})

    @abstractmethod
    async def push(self, mapping: Any, snapshot: ProductSnapshot) -> AdapterResult:
        """리스팅 생성 또는 갱신"""
        pass

    @abstractmethod
    async def pull(self, mapping: Any) -> RemoteSnapshot:
        """
        원격 리스팅 상태 조회.
        조회 자체가 실패하면 TransientAdapterFailure / PermanentAdapterFailure 를 던진다.
        """
        pass

    @abstractmethod
    async def delete(self, mapping: Any) -> AdapterResult:
        """리스팅 삭제 또는 비활성화"""
        pass

    async def aclose(self):
        return None
