"""
동기화 오케스트레이터

매핑 1건 단위로 검증 → 충돌 분류 → 어댑터 호출 → 매핑 갱신을 수행한다.
모든 종료 경로는 SyncLog 를 정확히 1건 남긴다.
- 매핑 단위 락 (asyncio + PostgreSQL advisory lock)
- 계정 단위 스로틀 + 어댑터 하드 타임아웃
- 일시적 실패는 지수 백오프 재시도, 영구 실패는 retryable=False
- 취소는 단계 사이에서만 반영
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from channel_sync.adapters.base import AdapterResult, ChannelAdapter, RemoteSnapshot
from channel_sync.adapters.registry import AdapterRegistry, adapter_registry
from channel_sync.models import ChannelAccount, ChannelMapping, SyncConflict, SyncLog, utcnow
from channel_sync.schemas.snapshot import ProductSnapshot
from channel_sync.services import events
from channel_sync.services.channel_validation import ChannelValidator
from channel_sync.services.conflict_resolver import ConflictResolver
from channel_sync.services.exceptions import (
    ConfigurationError,
    ConflictDetected,
    InvalidTransitionError,
    MappingNotFoundError,
    PermanentAdapterFailure,
    SyncCancelled,
    SyncError,
    TransientAdapterFailure,
    ValidationFailure,
)
from channel_sync.services.mapping_locks import MappingLocks, mapping_locks
from channel_sync.services.mapping_store import MappingStore
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.requirements.provider import RuleConfigProvider, rule_provider
from channel_sync.services.retry_policy import RetryDecision, RetryPolicy, to_adapter_failure
from channel_sync.services.sync_log import SyncLogWriter
from channel_sync.services.throttle import ThrottleRegistry, throttles
from channel_sync.settings import settings
from channel_sync.types import (
    AdapterErrorClass,
    ConflictResolution,
    ConflictStatus,
    MappingStatus,
    SyncDecision,
    SyncDirection,
    SyncLogStatus,
    SyncOperation,
    SyncTrigger,
    TriggerSource,
)

logger = logging.getLogger(__name__)


class CancellationRegistry:
    """진행 중인 매핑 동기화에 대한 취소 요청 (프로세스 단위)"""

    def __init__(self):
        self._requested: Set[str] = set()

    def request(self, mapping_id):
        self._requested.add(str(mapping_id))

    def is_requested(self, mapping_id) -> bool:
        return str(mapping_id) in self._requested

    def clear(self, mapping_id):
        self._requested.discard(str(mapping_id))


# 싱글톤 인스턴스
cancellations = CancellationRegistry()


class SyncOrchestrator:
    def __init__(
        self,
        session: Session,
        product_provider: ProductSnapshotProvider,
        adapters: Optional[AdapterRegistry] = None,
        rules: Optional[RuleConfigProvider] = None,
        validator: Optional[ChannelValidator] = None,
        resolver: Optional[ConflictResolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
        event_bus: Optional[events.EventBus] = None,
        locks: Optional[MappingLocks] = None,
        throttle_registry: Optional[ThrottleRegistry] = None,
        conflict_policy: Optional[str] = None,
        adapter_timeout: Optional[float] = None,
        clock: Callable = utcnow,
    ):
        self.session = session
        self.products = product_provider
        self.adapters = adapters or adapter_registry
        self.rules = rules or rule_provider
        self.validator = validator or ChannelValidator()
        self.resolver = resolver or ConflictResolver()
        self.retry_policy = retry_policy or RetryPolicy()
        self.bus = event_bus or events.bus
        self.locks = locks or mapping_locks
        self.throttles = throttle_registry or throttles
        self.conflict_policy = (conflict_policy or settings.sync_conflict_policy).upper()
        self.adapter_timeout = settings.adapter_timeout_seconds if adapter_timeout is None else adapter_timeout
        self.clock = clock
        self.store = MappingStore(session)
        self.logs = SyncLogWriter(session)
        self._pending_events: List[Tuple[str, Dict[str, Any]]] = []

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------

    async def run_sync(self, mapping_id, trigger: Optional[SyncTrigger] = None) -> SyncLog:
        trigger = trigger or SyncTrigger()
        mapping = self.store.get(mapping_id)
        if mapping is None:
            logger.error(f"[SYNC] Mapping not found: {mapping_id}")
            return self.logs.record(
                trigger.resolve_operation(),
                SyncLogStatus.FAILED,
                trigger=trigger,
                message=f"Mapping not found: {mapping_id}",
                error_class="NOT_FOUND",
                retryable=False,
                counts={"items_processed": 1, "items_failed": 1},
            )

        try:
            async with self.locks.hold(self.session, mapping.id) as acquired:
                if not acquired:
                    return self.logs.record(
                        trigger.resolve_operation(),
                        SyncLogStatus.SKIPPED,
                        trigger=trigger,
                        mapping=mapping,
                        message="mapping is locked by another worker",
                        counts={"items_skipped": 1},
                    )
                try:
                    return await self._run_locked(mapping, trigger)
                finally:
                    cancellations.clear(mapping.id)
        finally:
            await self._flush_events()

    async def cancel(self, mapping_id) -> bool:
        """진행 중인 동기화 취소 요청. 진행 중이 아니면 False."""
        if not self.locks.is_locked(mapping_id):
            return False
        cancellations.request(mapping_id)
        logger.info(f"[SYNC] Cancellation requested for mapping {mapping_id}")
        return True

    async def resolve_conflict(
        self,
        conflict_id,
        resolution: ConflictResolution,
        resolved_by: Optional[str] = None,
    ) -> Tuple[SyncConflict, SyncLog]:
        conflict = self.session.get(SyncConflict, _as_uuid(conflict_id))
        if conflict is None:
            raise MappingNotFoundError(f"Conflict not found: {conflict_id}", entity="conflict", entity_id=str(conflict_id))
        if conflict.status != ConflictStatus.PENDING.value:
            raise ValueError(f"Conflict {conflict_id} is already {conflict.status}")

        resolution = ConflictResolution(resolution)
        conflict.status = ConflictStatus.RESOLVED.value
        conflict.resolution = resolution.value
        conflict.resolved_by = resolved_by
        conflict.resolved_at = self.clock()
        self.session.commit()
        logger.info(f"[CONFLICT] {conflict.id} resolved as {resolution.value} by {resolved_by}")

        log = await self.run_sync(
            conflict.mapping_id,
            SyncTrigger(
                source=TriggerSource.MANUAL,
                force=True,
                direction=resolution,
                requested_by=resolved_by,
                meta={"conflict_id": str(conflict.id)},
            ),
        )
        return conflict, log

    def dismiss_conflict(self, conflict_id, resolved_by: Optional[str] = None) -> SyncConflict:
        conflict = self.session.get(SyncConflict, _as_uuid(conflict_id))
        if conflict is None:
            raise MappingNotFoundError(f"Conflict not found: {conflict_id}", entity="conflict", entity_id=str(conflict_id))
        if conflict.status != ConflictStatus.PENDING.value:
            raise ValueError(f"Conflict {conflict_id} is already {conflict.status}")
        conflict.status = ConflictStatus.DISMISSED.value
        conflict.resolved_by = resolved_by
        conflict.resolved_at = self.clock()
        self.session.commit()
        return conflict

    async def retire_product(self, product_id: str, requested_by: Optional[str] = None) -> List[SyncLog]:
        """PIM 상품 삭제: 채널 리스팅 삭제 시도 후 매핑을 DELETED_IN_PIM 으로 종료 (매핑당 DELETE 로그 1건)"""
        trigger = SyncTrigger(source=TriggerSource.SYSTEM, operation=SyncOperation.DELETE, requested_by=requested_by)
        results = []
        try:
            for mapping in self.store.list_for_product(product_id):
                if MappingStatus(mapping.status).is_terminal:
                    continue
                async with self.locks.hold(self.session, mapping.id) as acquired:
                    if not acquired:
                        results.append(self.logs.record(
                            SyncOperation.DELETE, SyncLogStatus.SKIPPED, trigger=trigger, mapping=mapping,
                            message="mapping is locked by another worker", counts={"items_skipped": 1},
                        ))
                        continue
                    results.append(await self._delete_remote(mapping, trigger, MappingStatus.DELETED_IN_PIM))
        finally:
            await self._flush_events()
        logger.info(f"[SYNC] Retired product {product_id}: {len(results)} mapping(s)")
        return results

    async def delete_listing(self, mapping_id, requested_by: Optional[str] = None) -> SyncLog:
        """채널 리스팅만 삭제 (상품은 유지). 성공 시 DELETED_IN_CHANNEL."""
        trigger = SyncTrigger(source=TriggerSource.MANUAL, operation=SyncOperation.DELETE, requested_by=requested_by)
        mapping = self.store.get_or_raise(mapping_id)
        if MappingStatus(mapping.status).is_terminal:
            raise InvalidTransitionError(mapping.status, MappingStatus.DELETED_IN_CHANNEL.value, str(mapping.id))
        try:
            async with self.locks.hold(self.session, mapping.id) as acquired:
                if not acquired:
                    return self.logs.record(
                        SyncOperation.DELETE, SyncLogStatus.SKIPPED, trigger=trigger, mapping=mapping,
                        message="mapping is locked by another worker", counts={"items_skipped": 1},
                    )
                return await self._delete_remote(mapping, trigger, MappingStatus.DELETED_IN_CHANNEL)
        finally:
            await self._flush_events()

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------

    async def _run_locked(self, mapping: ChannelMapping, trigger: SyncTrigger) -> SyncLog:
        # 락 대기 중 다른 작업이 커밋한 내용 반영
        self.session.refresh(mapping)
        log = self.logs.start(trigger.resolve_operation(), trigger=trigger, mapping=mapping)
        old_status = mapping.status

        try:
            status = MappingStatus(mapping.status)
            skip_reason = self._skip_reason(status, trigger)
            if skip_reason:
                return self.logs.finish(log, SyncLogStatus.SKIPPED, message=skip_reason, counts={"items_skipped": 1})

            account, adapter = self._load_account_adapter(mapping)
            try:
                return await self._execute(mapping, account, adapter, trigger, log, old_status)
            finally:
                await adapter.aclose()

        except SyncCancelled as e:
            self._rollback(log)
            logger.info(f"[SYNC] Mapping {mapping.id} cancelled at step '{e.step}'")
            return self.logs.finish(log, SyncLogStatus.CANCELLED, error=e, retryable=False)

        except (ConfigurationError, MappingNotFoundError) as e:
            self._rollback(log)
            if isinstance(e, ConfigurationError):
                logger.critical(f"[SYNC] Configuration error on mapping {mapping.id}: {e.message}")
            else:
                logger.error(f"[SYNC] {e.message}")
            self._record_failure(mapping, e.error_code, e.message, RetryDecision(False, mapping.retry_count))
            self._status_event(mapping, old_status, log)
            return self.logs.finish(
                log, SyncLogStatus.FAILED, error=e, retryable=False,
                counts={"items_processed": 1, "items_failed": 1},
            )

        except Exception as e:
            self._rollback(log)
            failure = to_adapter_failure(e)
            if not isinstance(e, SyncError):
                logger.error(f"[SYNC] Unexpected failure on mapping {mapping.id}: {e}", exc_info=True)
            decision = self.retry_policy.decide(failure.retryable, mapping.retry_count, self.clock())
            self._record_failure(mapping, failure.error_class.value, failure.message, decision)
            self._status_event(mapping, old_status, log)
            if failure.retryable and not decision.retryable:
                logger.warning(f"[SYNC] Mapping {mapping.id} exhausted {self.retry_policy.max_attempts} retries")
            return self.logs.finish(
                log,
                SyncLogStatus.FAILED,
                error=failure,
                error_class=failure.error_class.value,
                retryable=decision.retryable,
                counts={"items_processed": 1, "items_failed": 1},
                request_payload=failure.context.get("request_payload"),
                response_payload=failure.context.get("response_payload"),
            )

    @staticmethod
    def _skip_reason(status: MappingStatus, trigger: SyncTrigger) -> Optional[str]:
        if status.is_terminal:
            return f"mapping is {status.value}"
        if status in (MappingStatus.INACTIVE, MappingStatus.PAUSED):
            return f"mapping is {status.value}; reactivate first"
        if status == MappingStatus.SUPPRESSED and not trigger.force:
            return "listing is suppressed by channel; remediation required"
        return None

    def _load_account_adapter(self, mapping: ChannelMapping) -> Tuple[ChannelAccount, ChannelAdapter]:
        account = self.session.get(ChannelAccount, mapping.account_id)
        if account is None:
            raise MappingNotFoundError(f"Account not found: {mapping.account_id}", entity="account", entity_id=str(mapping.account_id))
        if not account.is_active:
            raise ConfigurationError(f"Account {account.name} is inactive", channel_code=account.channel_code)
        adapter = self.adapters.create(mapping.channel_code, account)
        if adapter is None:
            raise MappingNotFoundError(
                f"No adapter registered for channel '{mapping.channel_code}'",
                entity="adapter",
                entity_id=mapping.channel_code,
            )
        return account, adapter

    async def _execute(
        self,
        mapping: ChannelMapping,
        account: ChannelAccount,
        adapter: ChannelAdapter,
        trigger: SyncTrigger,
        log: SyncLog,
        old_status: str,
    ) -> SyncLog:
        direction = SyncDirection(account.sync_direction)
        self.logs.update(log, direction=direction.value)

        product = await self.products.get_product_snapshot(mapping.product_id)
        if product is None:
            raise MappingNotFoundError(f"Product not found: {mapping.product_id}", entity="product", entity_id=mapping.product_id)
        self._check_cancel(mapping, "load")

        pull_only = trigger.direction == ConflictResolution.PULL or (
            trigger.direction is None and direction == SyncDirection.CHANNEL_TO_PIM
        )
        if not pull_only:
            rejected = self._validate(mapping, product, trigger, log, old_status)
            if rejected is not None:
                return rejected
            self._check_cancel(mapping, "validate")

        # 원격 관측
        remote: Optional[RemoteSnapshot] = None
        if trigger.remote_hint:
            remote = RemoteSnapshot.from_dict(trigger.remote_hint, external_id=mapping.external_id)
        elif mapping.external_id and (direction != SyncDirection.PIM_TO_CHANNEL or pull_only):
            remote = await self._call(account, adapter.pull, mapping)
        if remote is not None:
            if not remote.exists:
                return self._finish_remote_gone(mapping, remote, log, old_status)
            self.store.observe_remote(mapping, remote, self.clock())
        self._check_cancel(mapping, "observe")

        # 분류
        if trigger.direction is not None:
            decision = (
                SyncDecision.PROCEED_PUSH if trigger.direction == ConflictResolution.PUSH else SyncDecision.PROCEED_PULL
            )
        else:
            decision = self.resolver.classify(mapping, mapping.local_version, mapping.remote_version, direction)
        self.logs.update(log, decision=decision.value)
        logger.info(f"[SYNC] Mapping {mapping.id} ({direction.value}) classified {decision.value}")

        if decision == SyncDecision.STALE_NOOP:
            # 재시도 중이던 매핑도 채널과 일치하면 ACTIVE 로 복귀 (같은 커밋)
            self.store.record_in_sync(mapping, self.clock())
            self._status_event(mapping, old_status, log)
            return self.logs.finish(log, SyncLogStatus.NOOP, message="nothing changed since last sync",
                                    counts={"items_processed": 1, "items_skipped": 1})

        if decision == SyncDecision.CONFLICT:
            return await self._handle_conflict(mapping, product, remote, log)

        if decision == SyncDecision.PROCEED_PUSH:
            return await self._push(mapping, account, adapter, product, log, old_status)
        return await self._pull(mapping, account, adapter, remote, log, old_status)

    def _validate(self, mapping, product, trigger, log, old_status) -> Optional[SyncLog]:
        rules = self.rules.snapshot(self.session)
        req_set = rules.requirement_for(mapping.channel_code, product.family_code)
        if req_set is None:
            raise ConfigurationError(
                f"No requirement set configured for channel '{mapping.channel_code}'",
                channel_code=mapping.channel_code,
            )
        result = self.validator.validate(product, mapping.channel_code, req_set, rules.rules, rules.revision)
        if result.needs_configuration:
            raise ConfigurationError(
                f"No completeness rules apply to product {product.id}",
                channel_code=mapping.channel_code,
                product_id=product.id,
            )
        if result.is_valid:
            return None

        message = f"validation failed: missing={result.missing_fields} score={result.score}/{result.min_completeness_score}"
        failure = ValidationFailure(
            message,
            channel_code=mapping.channel_code,
            missing_fields=result.missing_fields,
            score=result.score,
        )
        if trigger.force:
            # 강제 실행이면 SYNC_ERROR 로 전환 (재시도하지 않음)
            self._record_failure(mapping, failure.error_code, message, RetryDecision(False, mapping.retry_count))
            self._status_event(mapping, old_status, log)
        logger.info(f"[SYNC] Mapping {mapping.id} rejected: {message}")
        return self.logs.finish(
            log,
            SyncLogStatus.REJECTED,
            error=failure,
            counts={"items_processed": 1, "items_skipped": 1},
            response_payload=result.model_dump(mode="json"),
        )

    async def _push(self, mapping, account, adapter, product: ProductSnapshot, log, old_status) -> SyncLog:
        pushed_version = mapping.local_version
        is_create = not mapping.external_id
        result: AdapterResult = await self._call(account, adapter.push, mapping, product)
        if not result.success:
            raise _failure_from_result(result)
        if cancellations.is_requested(mapping.id):
            return self._finish_cancelled_push(mapping, result, log)

        self.store.record_push_success(mapping, result, pushed_version, self.clock())
        self._status_event(mapping, old_status, log)
        return self.logs.finish(
            log,
            SyncLogStatus.SUCCESS,
            message=f"pushed local_version={pushed_version}",
            counts={
                "items_processed": 1,
                "items_created": 1 if is_create else 0,
                "items_updated": 0 if is_create else 1,
            },
            request_payload=result.request_payload,
            response_payload=result.response_payload,
        )

    def _finish_cancelled_push(self, mapping: ChannelMapping, result: AdapterResult, log: SyncLog) -> SyncLog:
        # 채널은 이미 반영했으므로 식별자는 남기고, 동기화 완료 처리는 하지 않음
        self.store.record_listing_identity(mapping, result)
        logger.info(f"[SYNC] Mapping {mapping.id} cancelled after push; external_id={mapping.external_id} kept")
        return self.logs.finish(
            log,
            SyncLogStatus.CANCELLED,
            message=f"cancelled after channel accepted the push (external_id={mapping.external_id})",
            error=SyncCancelled(mapping_id=str(mapping.id), step="push"),
            retryable=False,
            request_payload=result.request_payload,
            response_payload=result.response_payload,
        )

    async def _pull(self, mapping, account, adapter, remote: Optional[RemoteSnapshot], log, old_status) -> SyncLog:
        if not mapping.external_id:
            raise PermanentAdapterFailure("cannot pull a listing that was never published",
                                          error_class=AdapterErrorClass.NOT_FOUND)
        # 웹훅 힌트는 일부 필드만 담고 있으므로 전체 상태를 다시 조회
        if remote is None or remote.payload is None:
            remote = await self._call(account, adapter.pull, mapping)
            if not remote.exists:
                return self._finish_remote_gone(mapping, remote, log, old_status)
            self.store.observe_remote(mapping, remote, self.clock())
        self._check_cancel(mapping, "pull")

        self.store.record_pull_success(mapping, remote, self.clock())
        self._status_event(mapping, old_status, log)
        self._pending_events.append((events.MAPPING_PULLED, {
            "mapping_id": str(mapping.id),
            "product_id": mapping.product_id,
            "channel_code": mapping.channel_code,
            "remote": remote.to_dict(),
            "log_id": str(log.id),
        }))
        return self.logs.finish(
            log,
            SyncLogStatus.SUCCESS,
            message=f"pulled remote_version={mapping.remote_version}",
            counts={"items_processed": 1, "items_updated": 1},
            response_payload=remote.payload or remote.to_dict(),
        )

    def _finish_remote_gone(self, mapping, remote: RemoteSnapshot, log, old_status) -> SyncLog:
        self.store.mark_deleted_in_channel(mapping, remote.status_detail, commit=False)
        self._status_event(mapping, old_status, log)
        return self.logs.finish(
            log,
            SyncLogStatus.SUCCESS,
            message="listing no longer exists in channel",
            counts={"items_processed": 1, "items_updated": 1},
            remote_snapshot=remote.to_dict(),
        )

    async def _handle_conflict(self, mapping, product: ProductSnapshot, remote: Optional[RemoteSnapshot], log) -> SyncLog:
        local_snapshot = product.to_payload()
        remote_snapshot = remote.to_dict() if remote is not None else {"state": mapping.remote_state}
        self.logs.update(
            log,
            operation=SyncOperation.CONFLICT,
            local_snapshot=local_snapshot,
            remote_snapshot=remote_snapshot,
        )

        conflict = self.session.execute(
            select(SyncConflict)
            .where(SyncConflict.mapping_id == mapping.id)
            .where(SyncConflict.status == ConflictStatus.PENDING.value)
        ).scalars().first()
        if conflict is None:
            conflict = SyncConflict(mapping_id=mapping.id)
            self.session.add(conflict)
        conflict.log_id = log.id
        conflict.local_version = mapping.local_version
        conflict.remote_version = mapping.remote_version
        conflict.local_snapshot = local_snapshot
        conflict.remote_snapshot = remote_snapshot
        conflict.strategy = self.conflict_policy

        winner = self.resolver.choose_winner(mapping, self.conflict_policy)
        if winner is not None:
            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolution = winner.value
            conflict.resolved_by = "system:last_writer_wins"
            conflict.resolved_at = self.clock()

        self.session.flush()
        self._pending_events.append((events.SYNC_CONFLICT, {
            "mapping_id": str(mapping.id),
            "conflict_id": str(conflict.id),
            "product_id": mapping.product_id,
            "channel_code": mapping.channel_code,
            "resolution": winner.value if winner else None,
            "log_id": str(log.id),
        }))
        conflict_log = self.logs.finish(
            log,
            SyncLogStatus.CONFLICT,
            error=ConflictDetected(
                f"local v{mapping.local_version} and remote v{mapping.remote_version} both changed since last sync",
                mapping_id=str(mapping.id),
                local_version=mapping.local_version,
                remote_version=mapping.remote_version,
            ),
            counts={"items_processed": 1, "items_skipped": 1},
        )
        logger.warning(
            f"[CONFLICT] Mapping {mapping.id}: policy={self.conflict_policy} resolution={winner.value if winner else 'MANUAL'}"
        )

        if winner is not None:
            # 별도 로그를 남기는 강제 실행
            await self._run_locked(mapping, SyncTrigger(
                source=TriggerSource.SYSTEM,
                force=True,
                direction=winner,
                requested_by="system:last_writer_wins",
                meta={"conflict_id": str(conflict.id)},
            ))
        return conflict_log

    async def _delete_remote(self, mapping: ChannelMapping, trigger: SyncTrigger, target: MappingStatus) -> SyncLog:
        self.session.refresh(mapping)
        old_status = mapping.status
        log = self.logs.start(SyncOperation.DELETE, trigger=trigger, mapping=mapping)
        result: Optional[AdapterResult] = None
        error: Optional[BaseException] = None
        try:
            account, adapter = self._load_account_adapter(mapping)
            try:
                result = await self._call(account, adapter.delete, mapping)
            finally:
                await adapter.aclose()
            if not result.success:
                error = _failure_from_result(result)
        except Exception as e:
            self.session.rollback()
            error = e if isinstance(e, SyncError) else to_adapter_failure(e)

        if target == MappingStatus.DELETED_IN_PIM:
            # 상품이 삭제되었으므로 원격 삭제 실패와 무관하게 종료
            self.store.mark_deleted_in_pim(mapping, commit=False)
        elif error is None:
            self.store.mark_deleted_in_channel(mapping, commit=False)
        self._status_event(mapping, old_status, log)

        if error is not None:
            return self.logs.finish(
                log, SyncLogStatus.FAILED, error=error, error_class=error.error_code, retryable=error.retryable,
                counts={"items_processed": 1, "items_failed": 1},
                response_payload=result.response_payload if result is not None else None,
            )
        return self.logs.finish(
            log, SyncLogStatus.SUCCESS, message=f"listing deleted ({target.value})",
            counts={"items_processed": 1, "items_updated": 1},
            response_payload=result.response_payload if result is not None else None,
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _call(self, account: ChannelAccount, fn, *args):
        """계정 스로틀 + 하드 타임아웃 하에서 어댑터 호출. 타임아웃은 일시적 실패."""
        async with self.throttles.get(account).slot():
            try:
                return await asyncio.wait_for(fn(*args), timeout=self.adapter_timeout)
            except asyncio.TimeoutError as e:
                raise TransientAdapterFailure(
                    f"adapter call timed out after {self.adapter_timeout}s",
                    error_class=AdapterErrorClass.TIMEOUT,
                ) from e

    def _rollback(self, log: SyncLog):
        # 진행 중 로그에 기록한 방향/분류는 유지
        kept = {"direction": log.direction, "decision": log.decision, "operation": log.operation}
        self.session.rollback()
        self.logs.update(log, **kept)

    def _check_cancel(self, mapping: ChannelMapping, step: str):
        if cancellations.is_requested(mapping.id):
            raise SyncCancelled(mapping_id=str(mapping.id), step=step)

    def _record_failure(self, mapping: ChannelMapping, error_class: str, message: str, decision: RetryDecision):
        status = MappingStatus(mapping.status)
        if status.is_terminal or status in (MappingStatus.INACTIVE, MappingStatus.PAUSED):
            return
        self.store.record_failure(mapping, error_class, message, decision, self.clock())

    def _status_event(self, mapping: ChannelMapping, old_status: str, log: SyncLog):
        if mapping.status == old_status:
            return
        self._pending_events.append((events.MAPPING_STATUS_CHANGED, {
            "mapping_id": str(mapping.id),
            "product_id": mapping.product_id,
            "channel_code": mapping.channel_code,
            "old_status": old_status,
            "new_status": mapping.status,
            "log_id": str(log.id),
        }))

    async def _flush_events(self):
        pending, self._pending_events = self._pending_events, []
        for event_type, data in pending:
            await self.bus.publish(event_type, data)


def _failure_from_result(result: AdapterResult):
    error_class = result.error_class or AdapterErrorClass.UNKNOWN
    kwargs = {
        "status_code": result.status_code,
        "request_payload": result.request_payload,
        "response_payload": result.response_payload,
    }
    message = result.message or error_class.value
    if error_class.is_transient:
        return TransientAdapterFailure(message, error_class=error_class, **kwargs)
    return PermanentAdapterFailure(message, error_class=error_class, **kwargs)


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))
