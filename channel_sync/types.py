"""
채널 동기화 공통 타입 정의

매핑 상태, 동기화 방향/결정, 로그 분류, 어댑터 에러 분류 등
모델/서비스/API 계층이 함께 사용하는 열거형과 트리거 값 객체.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MappingStatus(str, Enum):
    """채널 매핑 상태"""
    PENDING_SYNC = "PENDING_SYNC"
    ACTIVE = "ACTIVE"
    SYNC_ERROR = "SYNC_ERROR"
    SUPPRESSED = "SUPPRESSED"  # 채널 측 품질/심사 차단
    INACTIVE = "INACTIVE"
    PAUSED = "PAUSED"
    DELETED_IN_CHANNEL = "DELETED_IN_CHANNEL"
    DELETED_IN_PIM = "DELETED_IN_PIM"

    @property
    def is_terminal(self) -> bool:
        return self in (MappingStatus.DELETED_IN_CHANNEL, MappingStatus.DELETED_IN_PIM)


class SyncDirection(str, Enum):
    """계정 단위 동기화 방향"""
    PIM_TO_CHANNEL = "PIM_TO_CHANNEL"  # PIM이 마스터
    CHANNEL_TO_PIM = "CHANNEL_TO_PIM"  # 채널이 마스터
    BIDIRECTIONAL = "BIDIRECTIONAL"


class SyncDecision(str, Enum):
    """충돌 분류 결과"""
    PROCEED_PUSH = "PROCEED_PUSH"
    PROCEED_PULL = "PROCEED_PULL"
    STALE_NOOP = "STALE_NOOP"
    CONFLICT = "CONFLICT"


class SyncOperation(str, Enum):
    FULL_SYNC = "FULL_SYNC"
    INCREMENTAL_SYNC = "INCREMENTAL_SYNC"
    SINGLE_PRODUCT = "SINGLE_PRODUCT"
    PRICE_UPDATE = "PRICE_UPDATE"
    INVENTORY_UPDATE = "INVENTORY_UPDATE"
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"
    MANUAL_PUSH = "MANUAL_PUSH"
    MANUAL_PULL = "MANUAL_PULL"
    DELETE = "DELETE"
    CONFLICT = "CONFLICT"


class SyncLogStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    REJECTED = "REJECTED"  # 검증 실패로 어댑터 미호출
    NOOP = "NOOP"
    CONFLICT = "CONFLICT"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"


class TriggerSource(str, Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"
    WEBHOOK = "WEBHOOK"
    RETRY = "RETRY"
    BATCH = "BATCH"
    SYSTEM = "SYSTEM"


class AdapterErrorClass(str, Enum):
    """어댑터 에러 분류 (재시도 여부 판단 기준)"""
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION_REJECTED = "VALIDATION_REJECTED"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"

    @property
    def is_transient(self) -> bool:
        return self in (
            AdapterErrorClass.RATE_LIMITED,
            AdapterErrorClass.TIMEOUT,
            AdapterErrorClass.NETWORK,
            AdapterErrorClass.UNKNOWN,
        )


class RemoteListingStatus(str, Enum):
    """채널이 보고하는 리스팅 상태"""
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    INACTIVE = "INACTIVE"
    SUPPRESSED = "SUPPRESSED"
    DELETED = "DELETED"


class ConflictStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class ConflictResolution(str, Enum):
    PUSH = "PUSH"
    PULL = "PULL"


class IssueType(str, Enum):
    REQUIRED = "REQUIRED"
    RECOMMENDED = "RECOMMENDED"
    LENGTH = "LENGTH"
    CONFIGURATION = "CONFIGURATION"


class WebhookEventType(str, Enum):
    PRICE_CHANGED = "PRICE_CHANGED"
    STOCK_CHANGED = "STOCK_CHANGED"
    LISTING_UPDATED = "LISTING_UPDATED"
    LISTING_SUPPRESSED = "LISTING_SUPPRESSED"
    LISTING_DELETED = "LISTING_DELETED"
    ORDER_PLACED = "ORDER_PLACED"


class WebhookEventStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"


@dataclass
class SyncTrigger:
    """
    동기화 요청 정보.

    force=True 이면 운영자 강제 실행으로 간주하여 검증 실패 시 SYNC_ERROR 로 전환하고,
    False 이면 사전 점검으로 간주하여 매핑 상태를 유지한다.
    """
    source: TriggerSource = TriggerSource.MANUAL
    operation: Optional[SyncOperation] = None
    force: bool = False
    direction: Optional[ConflictResolution] = None  # 지정 시 충돌 분류를 건너뛰고 해당 방향으로 실행
    requested_by: Optional[str] = None
    remote_hint: Optional[dict[str, Any]] = None  # 웹훅 등에서 전달된 원격 관측값
    meta: dict[str, Any] = field(default_factory=dict)

    def resolve_operation(self, decision: Optional[SyncDecision] = None) -> SyncOperation:
        if self.operation is not None:
            return self.operation
        if self.source == TriggerSource.WEBHOOK:
            return SyncOperation.WEBHOOK_RECEIVED
        if self.source == TriggerSource.BATCH:
            return SyncOperation.FULL_SYNC
        if self.source == TriggerSource.SCHEDULED:
            return SyncOperation.INCREMENTAL_SYNC
        if self.source == TriggerSource.MANUAL:
            if decision == SyncDecision.PROCEED_PULL or self.direction == ConflictResolution.PULL:
                return SyncOperation.MANUAL_PULL
            return SyncOperation.MANUAL_PUSH
        return SyncOperation.SINGLE_PRODUCT
