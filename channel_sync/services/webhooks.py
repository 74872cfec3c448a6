"""
채널 웹훅 처리

(channel_code, event_id) 로 중복 수신을 막고, 이벤트 종류에 따라
- LISTING_DELETED    → 매핑 DELETED_IN_CHANNEL
- LISTING_SUPPRESSED → 매핑 SUPPRESSED (정지 사유 보관)
- 그 외              → 원격 관측값을 힌트로 WEBHOOK 동기화 실행
알 수 없는 external_id 는 IGNORED 로 기록만 한다.
FAILED 로 끝난 이벤트는 재전송 시 다시 처리한다.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from channel_sync.adapters.base import RemoteSnapshot
from channel_sync.models import ChannelMapping, WebhookEvent, utcnow
from channel_sync.schemas.webhook import WebhookEventIn
from channel_sync.services import events
from channel_sync.services.exceptions import InvalidTransitionError
from channel_sync.services.mapping_locks import MappingLocks, mapping_locks
from channel_sync.services.mapping_store import MappingStore
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.sync_log import SyncLogWriter
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.settings import settings
from channel_sync.types import (
    MappingStatus,
    SyncLogStatus,
    SyncOperation,
    SyncTrigger,
    TriggerSource,
    WebhookEventStatus,
    WebhookEventType,
)

logger = logging.getLogger(__name__)


class WebhookService:
    def __init__(
        self,
        session: Session,
        product_provider: ProductSnapshotProvider,
        locks: Optional[MappingLocks] = None,
        event_bus: Optional[events.EventBus] = None,
        auto_sync: Optional[bool] = None,
        orchestrator_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.session = session
        self.products = product_provider
        self.locks = locks or mapping_locks
        self.bus = event_bus or events.bus
        self.auto_sync = settings.webhook_auto_sync if auto_sync is None else auto_sync
        self.orchestrator_kwargs = dict(orchestrator_kwargs or {})
        self.store = MappingStore(session)
        self.logs = SyncLogWriter(session)

    async def handle(self, channel_code: str, event: WebhookEventIn) -> Tuple[WebhookEvent, bool]:
        """
        이벤트 처리. (WebhookEvent, duplicate) 반환.
        duplicate=True 이면 이전 처리 결과를 그대로 돌려주며 부작용이 없다.
        """
        record, duplicate = self._register(channel_code, event)
        if duplicate:
            logger.info(f"[WEBHOOK] Duplicate event {channel_code}/{event.event_id} ({record.status})")
            return record, True

        try:
            status, result = await self._dispatch(channel_code, event, record)
        except Exception as e:
            logger.error(f"[WEBHOOK] Event {channel_code}/{event.event_id} failed: {e}", exc_info=True)
            self.session.rollback()
            status, result = WebhookEventStatus.FAILED, {"error": str(e)}

        record.status = status.value
        record.result = result
        record.processed_at = utcnow()
        self.session.commit()
        logger.info(f"[WEBHOOK] {channel_code}/{event.event_id} {event.event_type.value} -> {status.value}")
        return record, False

    def _register(self, channel_code: str, event: WebhookEventIn) -> Tuple[WebhookEvent, bool]:
        existing = self._find(channel_code, event.event_id)
        if existing is not None:
            if existing.status != WebhookEventStatus.FAILED.value:
                return existing, True
            # 실패한 이벤트는 재전송 시 다시 처리
            existing.status = WebhookEventStatus.RECEIVED.value
            existing.result = None
            self.session.commit()
            return existing, False

        record = WebhookEvent(
            channel_code=channel_code,
            event_id=event.event_id,
            event_type=event.event_type.value,
            external_id=event.external_id,
            account_id=event.account_id,
            payload=event.model_dump(mode="json"),
            status=WebhookEventStatus.RECEIVED.value,
        )
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError:
            # 동시에 같은 이벤트가 들어온 경우
            self.session.rollback()
            return self._find(channel_code, event.event_id), True
        return record, False

    def _find(self, channel_code: str, event_id: str) -> Optional[WebhookEvent]:
        return self.session.execute(
            select(WebhookEvent)
            .where(WebhookEvent.channel_code == channel_code)
            .where(WebhookEvent.event_id == event_id)
        ).scalars().first()

    async def _dispatch(
        self, channel_code: str, event: WebhookEventIn, record: WebhookEvent
    ) -> Tuple[WebhookEventStatus, Dict[str, Any]]:
        mapping = self.store.find_by_external_id(event.external_id, account_id=event.account_id, channel_code=channel_code)
        if mapping is None:
            return WebhookEventStatus.IGNORED, {"reason": f"unknown external id: {event.external_id}"}

        record.mapping_id = mapping.id
        record.account_id = mapping.account_id
        if MappingStatus(mapping.status).is_terminal:
            return WebhookEventStatus.IGNORED, {"reason": f"mapping is {mapping.status}"}

        if event.event_type in (WebhookEventType.LISTING_DELETED, WebhookEventType.LISTING_SUPPRESSED):
            return await self._apply_listing_state(mapping, event)

        if not self.auto_sync:
            # 관측만 기록, 동기화는 스케줄러/재시도 워커에 위임
            changed = self.store.observe_remote(mapping, RemoteSnapshot.from_dict(event.remote_hint()))
            self.session.commit()
            return WebhookEventStatus.PROCESSED, {"observed": changed, "remote_version": mapping.remote_version}

        orchestrator = SyncOrchestrator(
            self.session,
            self.products,
            **{"locks": self.locks, "event_bus": self.bus, **self.orchestrator_kwargs},
        )
        log = await orchestrator.run_sync(mapping.id, SyncTrigger(
            source=TriggerSource.WEBHOOK,
            requested_by=f"webhook:{channel_code}",
            remote_hint=event.remote_hint(),
            meta={"event_id": event.event_id, "event_type": event.event_type.value},
        ))
        return WebhookEventStatus.PROCESSED, {"log_id": str(log.id), "log_status": log.status, "decision": log.decision}

    async def _apply_listing_state(
        self, mapping: ChannelMapping, event: WebhookEventIn
    ) -> Tuple[WebhookEventStatus, Dict[str, Any]]:
        trigger = SyncTrigger(
            source=TriggerSource.WEBHOOK,
            operation=SyncOperation.WEBHOOK_RECEIVED,
            requested_by=f"webhook:{mapping.channel_code}",
        )
        async with self.locks.hold(self.session, mapping.id) as acquired:
            if not acquired:
                # 진행 중인 동기화와 겹치면 실패 처리 → 채널 재전송 시 다시 처리
                return WebhookEventStatus.FAILED, {"reason": "mapping is locked by another worker"}

            self.session.refresh(mapping)
            old_status = mapping.status
            detail = event.status_detail or {"code": event.event_type.value}
            try:
                if event.event_type == WebhookEventType.LISTING_DELETED:
                    self.store.mark_deleted_in_channel(mapping, detail, commit=False)
                else:
                    self.store.mark_suppressed(mapping, detail, commit=False)
            except InvalidTransitionError as e:
                self.session.rollback()
                return WebhookEventStatus.IGNORED, {"reason": e.message}

            log = self.logs.record(
                SyncOperation.WEBHOOK_RECEIVED,
                SyncLogStatus.SUCCESS,
                trigger=trigger,
                mapping=mapping,
                message=f"{event.event_type.value}: {old_status} -> {mapping.status}",
                counts={"items_processed": 1, "items_updated": 1},
                remote_snapshot=event.remote_hint(),
            )

        if mapping.status != old_status:
            await self.bus.publish(events.MAPPING_STATUS_CHANGED, {
                "mapping_id": str(mapping.id),
                "product_id": mapping.product_id,
                "channel_code": mapping.channel_code,
                "old_status": old_status,
                "new_status": mapping.status,
                "log_id": str(log.id),
            })
        return WebhookEventStatus.PROCESSED, {"log_id": str(log.id), "status": mapping.status}
