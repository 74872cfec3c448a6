"""
채널 매핑 / 동기화 로그 응답 스키마.
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from channel_sync.types import ConflictResolution


class MappingOut(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    product_id: str
    channel_code: str
    generation: int
    external_id: str | None
    status: str
    local_version: int
    synced_local_version: int
    remote_version: int
    synced_remote_version: int
    last_synced_at: datetime | None
    last_sync_direction: str | None
    last_sync_error: str | None
    last_error_class: str | None
    retryable: bool
    retry_count: int
    next_retry_at: datetime | None
    remote_status_detail: dict | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class MappingCreateIn(BaseModel):
    account_id: uuid.UUID
    product_id: str = Field(min_length=1)
    external_id: str | None = None
    external_attributes: dict = Field(default_factory=dict)


class SyncRequestIn(BaseModel):
    """
    수동 동기화 요청.

    force=False 는 사전 점검(검증 실패 시 매핑 상태 유지), True 는 강제 실행.
    """
    force: bool = False
    direction: ConflictResolution | None = None
    requested_by: str | None = None


class ProductChangeIn(BaseModel):
    """PIM 상품 변경 통지"""
    changed_fields: list[str] = Field(default_factory=list)
    family_code: str | None = None
    sync: bool = False  # True 이면 변경된 매핑을 즉시 동기화


class SyncLogOut(BaseModel):
    id: uuid.UUID
    mapping_id: uuid.UUID | None
    account_id: uuid.UUID | None
    product_id: str | None
    channel_code: str | None
    operation: str
    status: str
    direction: str | None
    decision: str | None
    items_processed: int
    items_created: int
    items_updated: int
    items_failed: int
    items_skipped: int
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None
    message: str | None
    error_class: str | None
    retryable: bool | None
    trigger_source: str | None
    triggered_by: str | None

    model_config = {"from_attributes": True}


class SyncLogPage(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[SyncLogOut]


class ConflictOut(BaseModel):
    id: uuid.UUID
    mapping_id: uuid.UUID
    log_id: uuid.UUID | None
    local_version: int
    remote_version: int
    local_snapshot: dict | None
    remote_snapshot: dict | None
    status: str
    strategy: str | None
    resolution: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime | None

    model_config = {"from_attributes": True}


class ConflictResolveIn(BaseModel):
    resolution: ConflictResolution
    resolved_by: str | None = None


class ConflictResolveOut(BaseModel):
    conflict: ConflictOut
    log: SyncLogOut


class AccountIn(BaseModel):
    channel_code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    credentials: dict = Field(default_factory=dict)
    sync_direction: str = "PIM_TO_CHANNEL"
    settings: dict = Field(default_factory=dict)
    is_active: bool = True


class AccountOut(BaseModel):
    id: uuid.UUID
    channel_code: str
    name: str
    sync_direction: str
    settings: dict | None
    is_active: bool
    created_at: datetime | None

    model_config = {"from_attributes": True}
