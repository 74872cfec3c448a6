"""
채널 웹훅 수신 스키마.
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from channel_sync.types import RemoteListingStatus, WebhookEventType


class WebhookEventIn(BaseModel):
    """
    채널이 보내는 이벤트 (채널별 포맷은 어댑터/게이트웨이에서 이 형태로 정규화).
    """
    event_id: str = Field(min_length=1)
    event_type: WebhookEventType
    external_id: str = Field(min_length=1)
    account_id: uuid.UUID | None = None
    remote_marker: str | None = None
    remote_updated_at: datetime | None = None
    listing_status: RemoteListingStatus | None = None
    state: dict = Field(default_factory=dict)  # price, stock, title ...
    status_detail: dict | None = None  # 정지 사유 등
    payload: dict = Field(default_factory=dict)

    def remote_hint(self) -> dict:
        """RemoteSnapshot.from_dict 입력 형태"""
        return {
            "external_id": self.external_id,
            "exists": self.event_type != WebhookEventType.LISTING_DELETED,
            "listing_status": self.listing_status.value if self.listing_status else None,
            "remote_marker": self.remote_marker,
            "remote_updated_at": self.remote_updated_at.isoformat() if self.remote_updated_at else None,
            "state": dict(self.state),
            "status_detail": self.status_detail,
        }


class WebhookEventOut(BaseModel):
    id: uuid.UUID
    channel_code: str
    event_id: str
    event_type: str
    external_id: str | None
    mapping_id: uuid.UUID | None
    status: str
    result: dict | None
    duplicate: bool = False
    received_at: datetime | None
    processed_at: datetime | None

    model_config = {"from_attributes": True}
