"""
Channel Sync Exception Classes

동기화 엔진의 구조화된 에러 정의.
오케스트레이터는 매핑 경계에서 이 예외들을 잡아 SyncLog 1건과 매핑 상태 전이로 변환한다.
"""
from typing import Optional, Dict, Any, List
from enum import Enum

from channel_sync.types import AdapterErrorClass


class ErrorSeverity(Enum):
    """에러 심각도 레벨"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SyncError(Exception):
    """
    Base exception for all sync engine errors

    Attributes:
        message: 에러 메시지
        error_code: 에러 코드 (SyncLog.error_class 로 기록)
        severity: 에러 심각도
        context: 추가 컨텍스트 정보
        retryable: 재시도 가능 여부
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        retryable: bool = False
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.context = context or {}
        self.retryable = retryable
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """에러 정보를 딕셔너리로 변환"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "retryable": self.retryable
        }


class ValidationFailure(SyncError):
    """
    채널 발행 준비 검증 실패 (재시도하지 않음)

    Attributes:
        channel_code: 검증 대상 채널
        missing_fields: 누락된 필수 필드 목록
        score: 완성도 점수
    """

    def __init__(
        self,
        message: str,
        channel_code: Optional[str] = None,
        missing_fields: Optional[List[str]] = None,
        score: Optional[int] = None,
        **kwargs
    ):
        context = {
            "channel_code": channel_code,
            "missing_fields": list(missing_fields or []),
            "score": score,
        }
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code="VALIDATION_FAILURE",
            severity=ErrorSeverity.LOW,
            context=context,
            retryable=False
        )
        self.channel_code = channel_code
        self.missing_fields = list(missing_fields or [])
        self.score = score


class AdapterFailure(SyncError):
    """
    채널 어댑터 호출 실패

    Attributes:
        error_class: 어댑터 에러 분류
        status_code: HTTP 상태 코드 (있는 경우)
    """

    def __init__(
        self,
        message: str,
        error_class: AdapterErrorClass = AdapterErrorClass.UNKNOWN,
        status_code: Optional[int] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        retryable: bool = False,
        **kwargs
    ):
        context = {
            "error_class": error_class.value,
            "status_code": status_code,
        }
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code=error_class.value,
            severity=severity,
            context=context,
            retryable=retryable
        )
        self.error_class = error_class
        self.status_code = status_code


class TransientAdapterFailure(AdapterFailure):
    """네트워크/타임아웃/레이트리밋 등 일시적 실패 (백오프 후 재시도)"""

    def __init__(self, message: str, error_class: AdapterErrorClass = AdapterErrorClass.UNKNOWN, **kwargs):
        super().__init__(message, error_class=error_class, severity=ErrorSeverity.LOW, retryable=True, **kwargs)


class PermanentAdapterFailure(AdapterFailure):
    """인증 만료, 영구 거절 등 (수동 조치 필요)"""

    def __init__(self, message: str, error_class: AdapterErrorClass = AdapterErrorClass.VALIDATION_REJECTED, **kwargs):
        super().__init__(message, error_class=error_class, severity=ErrorSeverity.HIGH, retryable=False, **kwargs)


class ConflictDetected(SyncError):
    """양방향 버전 충돌 (덮어쓰지 않고 해소 대기)"""

    def __init__(
        self,
        message: str,
        mapping_id: Optional[str] = None,
        local_version: Optional[int] = None,
        remote_version: Optional[int] = None,
        **kwargs
    ):
        context = {
            "mapping_id": mapping_id,
            "local_version": local_version,
            "remote_version": remote_version,
        }
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code="CONFLICT",
            severity=ErrorSeverity.MEDIUM,
            context=context,
            retryable=False
        )


class ConfigurationError(SyncError):
    """채널 요구사항/완성도 규칙 설정 누락 (운영자 설정 필요)"""

    def __init__(self, message: str, channel_code: Optional[str] = None, **kwargs):
        context = {"channel_code": channel_code}
        context.update(kwargs)
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            severity=ErrorSeverity.CRITICAL,
            context=context,
            retryable=False
        )
        self.channel_code = channel_code


class MappingNotFoundError(SyncError):
    """매핑/계정/상품/어댑터 조회 실패"""

    def __init__(self, message: str, entity: str = "mapping", entity_id: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            severity=ErrorSeverity.MEDIUM,
            context={"entity": entity, "entity_id": entity_id},
            retryable=False
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(SyncError):
    """허용되지 않은 매핑 상태 전이"""

    def __init__(self, current: str, target: str, mapping_id: Optional[str] = None):
        super().__init__(
            message=f"Invalid mapping transition {current} -> {target}",
            error_code="INVALID_TRANSITION",
            severity=ErrorSeverity.MEDIUM,
            context={"current": current, "target": target, "mapping_id": mapping_id},
            retryable=False
        )
        self.current = current
        self.target = target


class SyncCancelled(SyncError):
    """운영자 취소 (단계 사이에서만 반영)"""

    def __init__(self, mapping_id: Optional[str] = None, step: Optional[str] = None):
        super().__init__(
            message="Sync cancelled by operator",
            error_code="CANCELLED",
            severity=ErrorSeverity.LOW,
            context={"mapping_id": mapping_id, "step": step},
            retryable=False
        )
        self.step = step
