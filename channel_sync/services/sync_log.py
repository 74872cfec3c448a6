"""
동기화 감사 로그 (append-only)

시도 1건당 SyncLog 1행. start() 로 IN_PROGRESS 행을 남기고 finish() 로 한 번만 완료한다.
completed_at 이 설정된 행은 다시 수정할 수 없다.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from channel_sync.models import ChannelMapping, SyncLog, as_utc, utcnow
from channel_sync.services.exceptions import ErrorSeverity, SyncError
from channel_sync.types import SyncLogStatus, SyncOperation, SyncTrigger

logger = logging.getLogger(__name__)

_COUNT_FIELDS = ("items_processed", "items_created", "items_updated", "items_failed", "items_skipped")


class SyncLogImmutableError(SyncError):
    def __init__(self, log_id):
        super().__init__(
            message=f"Sync log {log_id} is already completed",
            error_code="LOG_IMMUTABLE",
            severity=ErrorSeverity.HIGH,
            context={"log_id": str(log_id)},
        )


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class SyncLogWriter:
    def __init__(self, session: Session):
        self.session = session
        self._started: Dict[Any, float] = {}

    def start(
        self,
        operation: SyncOperation,
        trigger: Optional[SyncTrigger] = None,
        mapping: Optional[ChannelMapping] = None,
        account_id=None,
        product_id: Optional[str] = None,
        channel_code: Optional[str] = None,
        commit: bool = True,
    ) -> SyncLog:
        log = SyncLog(
            mapping_id=mapping.id if mapping is not None else None,
            account_id=mapping.account_id if mapping is not None else account_id,
            product_id=mapping.product_id if mapping is not None else product_id,
            channel_code=mapping.channel_code if mapping is not None else channel_code,
            operation=SyncOperation(operation).value,
            status=SyncLogStatus.IN_PROGRESS.value,
            started_at=utcnow(),
            trigger_source=trigger.source.value if trigger else None,
            triggered_by=trigger.requested_by if trigger else None,
        )
        self.session.add(log)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        self._started[log.id] = time.monotonic()
        return log

    def update(self, log: SyncLog, **fields) -> SyncLog:
        """진행 중 로그 보강 (완료 후에는 거부)"""
        if log.completed_at is not None:
            raise SyncLogImmutableError(log.id)
        for key, value in fields.items():
            if key in ("request_payload", "response_payload", "local_snapshot", "remote_snapshot"):
                value = _jsonable(value)
            if key in ("operation", "status", "direction", "decision") and value is not None:
                value = getattr(value, "value", value)
            setattr(log, key, value)
        return log

    def finish(
        self,
        log: SyncLog,
        status: SyncLogStatus,
        message: Optional[str] = None,
        error: Optional[BaseException] = None,
        error_class: Optional[str] = None,
        retryable: Optional[bool] = None,
        counts: Optional[Dict[str, int]] = None,
        commit: bool = True,
        **fields,
    ) -> SyncLog:
        if log.completed_at is not None:
            raise SyncLogImmutableError(log.id)
        self.update(log, **fields)

        if error is not None:
            if isinstance(error, SyncError):
                error_class = error_class or error.error_code
                retryable = error.retryable if retryable is None else retryable
                log.error_detail = str(error.to_dict())[:4000]
            else:
                error_class = error_class or error.__class__.__name__
                log.error_detail = f"{error.__class__.__name__}: {error}"[:4000]
            message = message or str(error)

        for key in _COUNT_FIELDS:
            if counts and key in counts:
                setattr(log, key, int(counts[key]))

        log.status = SyncLogStatus(status).value
        log.message = message
        log.error_class = error_class
        log.retryable = retryable
        now = utcnow()
        log.completed_at = now
        started = self._started.pop(log.id, None)
        if started is not None:
            log.duration_ms = int((time.monotonic() - started) * 1000)
        else:
            # 다른 세션에서 시작된 로그 (배치 집계 등)
            log.duration_ms = max(0, int((now - as_utc(log.started_at)).total_seconds() * 1000))

        if commit:
            self.session.commit()
        else:
            self.session.flush()
        level = logging.WARNING if log.status in (SyncLogStatus.FAILED.value, SyncLogStatus.CONFLICT.value) else logging.INFO
        logger.log(
            level,
            f"[SYNC] Log {log.id} {log.operation} mapping={log.mapping_id} status={log.status}"
            + (f" error_class={error_class}" if error_class else ""),
        )
        return log

    def record(self, operation: SyncOperation, status: SyncLogStatus, trigger: Optional[SyncTrigger] = None,
               mapping: Optional[ChannelMapping] = None, **kwargs) -> SyncLog:
        """시작과 완료를 한 번에 기록"""
        log = self.start(operation, trigger=trigger, mapping=mapping, commit=False,
                         account_id=kwargs.pop("account_id", None),
                         product_id=kwargs.pop("product_id", None),
                         channel_code=kwargs.pop("channel_code", None))
        return self.finish(log, status, **kwargs)

    # --- 조회 ---

    def list_for_mapping(self, mapping_id, limit: int = 50, offset: int = 0) -> List[SyncLog]:
        stmt = (
            select(SyncLog)
            .where(SyncLog.mapping_id == mapping_id)
            .order_by(SyncLog.started_at.desc(), SyncLog.id)
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def count_for_mapping(self, mapping_id) -> int:
        return self.session.execute(
            select(func.count(SyncLog.id)).where(SyncLog.mapping_id == mapping_id)
        ).scalar() or 0

    def latest_for_mapping(self, mapping_id) -> Optional[SyncLog]:
        logs = self.list_for_mapping(mapping_id, limit=1)
        return logs[0] if logs else None

    @staticmethod
    def is_completed(log: SyncLog) -> bool:
        return log.completed_at is not None

