from datetime import datetime, timezone
import uuid

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# 로컬 sqlite 개발 DB 에서는 JSON 으로 생성
JSONDoc = JSONB().with_variant(JSON(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite 는 tz 정보 없이 돌려준다
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class SystemSetting(Base):
    """키/값 설정 저장소 (rules_revision 등)"""
    __tablename__ = "system_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    value: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ChannelRequirement(Base):
    """
    채널(또는 채널+상품군)별 필수/권장 필드 정의.
    family_code가 NULL이면 채널 기본값입니다.
    """
    __tablename__ = "channel_requirements"
    __table_args__ = (
        UniqueConstraint("channel_code", "family_code", name="uq_channel_requirements_channel_family"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    channel_code: Mapped[str] = mapped_column(Text, nullable=False)
    channel_name: Mapped[str] = mapped_column(Text, nullable=False)
    family_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    required_fields: Mapped[list[str]] = mapped_column(JSONDoc, nullable=False, default=list)
    recommended_fields: Mapped[list[str]] = mapped_column(JSONDoc, nullable=False, default=list)
    min_completeness_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    field_constraints: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)  # {"name": {"min_length": 10}}
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class CompletenessRule(Base):
    __tablename__ = "completeness_rules"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    field: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    category_id: Mapped[str | None] = mapped_column(Text, nullable=True)  # NULL = 전체 상품 적용
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ChannelAccount(Base):
    __tablename__ = "channel_accounts"
    __table_args__ = (UniqueConstraint("channel_code", "name", name="uq_channel_accounts_code_name"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    channel_code: Mapped[str] = mapped_column(Text, nullable=False)  # 'amazon', 'mercadolivre', 'shopify'
    name: Mapped[str] = mapped_column(Text, nullable=False)  # Account Alias
    credentials: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    sync_direction: Mapped[str] = mapped_column(Text, nullable=False, default="PIM_TO_CHANNEL")
    settings: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)  # rate_limit_per_second, max_concurrency
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ChannelMapping(Base):
    """
    PIM 상품 1건과 채널 계정 1곳의 연결.
    물리 삭제하지 않으며 DELETED_* 상태로 종료합니다.
    재생성 시 generation을 올려 새 매핑을 할당합니다.
    """
    __tablename__ = "channel_mappings"
    __table_args__ = (
        UniqueConstraint("account_id", "product_id", "generation", name="uq_channel_mappings_account_product_gen"),
        UniqueConstraint("account_id", "external_id", name="uq_channel_mappings_account_external"),
        Index("ix_channel_mappings_retry", "status", "retryable", "next_retry_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("channel_accounts.id"), nullable=False)
    channel_code: Mapped[str] = mapped_column(Text, nullable=False)
    product_id: Mapped[str] = mapped_column(Text, nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    external_id: Mapped[str | None] = mapped_column(Text, nullable=True)  # ASIN, MLB item id, shopify product id
    external_attributes: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING_SYNC")
    remote_status_detail: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    remote_state: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)

    # 충돌 감지용 버전
    local_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    synced_local_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remote_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced_remote_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remote_marker: Mapped[str | None] = mapped_column(Text, nullable=True)
    remote_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    local_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_direction: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_class: Mapped[str | None] = mapped_column(Text, nullable=True)

    # 재시도
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    account: Mapped["ChannelAccount"] = relationship("ChannelAccount")


class SyncLog(Base):
    """
    동기화 시도 1건당 1행. completed_at 이후에는 수정하지 않습니다.
    mapping_id가 NULL인 행은 배치 집계용입니다.
    """
    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_mapping_started", "mapping_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mapping_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("channel_mappings.id"), nullable=True)
    account_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    product_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_code: Mapped[str | None] = mapped_column(Text, nullable=True)

    operation: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="IN_PROGRESS")
    direction: Mapped[str | None] = mapped_column(Text, nullable=True)
    decision: Mapped[str | None] = mapped_column(Text, nullable=True)

    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_class: Mapped[str | None] = mapped_column(Text, nullable=True)
    retryable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    request_payload: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    response_payload: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    local_snapshot: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    remote_snapshot: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)

    trigger_source: Mapped[str | None] = mapped_column(Text, nullable=True)  # MANUAL, SCHEDULED, WEBHOOK, RETRY
    triggered_by: Mapped[str | None] = mapped_column(Text, nullable=True)


class SyncConflict(Base):
    """양방향 동기화 충돌 (수동 검토 큐 / 자동 해소 이력)"""
    __tablename__ = "sync_conflicts"
    __table_args__ = (
        Index("ix_sync_conflicts_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mapping_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("channel_mappings.id"), nullable=False)
    log_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("sync_logs.id"), nullable=True)
    local_version: Mapped[int] = mapped_column(Integer, nullable=False)
    remote_version: Mapped[int] = mapped_column(Integer, nullable=False)
    local_snapshot: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    remote_snapshot: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    strategy: Mapped[str] = mapped_column(Text, nullable=False, default="MANUAL_REVIEW")
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)  # PUSH, PULL
    resolved_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("channel_code", "event_id", name="uq_webhook_events_channel_event"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    channel_code: Mapped[str] = mapped_column(Text, nullable=False)
    event_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    external_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    mapping_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    payload: Mapped[dict] = mapped_column(JSONDoc, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="RECEIVED")
    result: Mapped[dict | None] = mapped_column(JSONDoc, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
