"""
배치(전체 카탈로그) 동기화

매핑별로 독립 세션을 열어 동시 실행한다. 한 매핑의 실패가 배치를 중단시키지 않으며
계정 단위 스로틀은 오케스트레이터 내부에서 그대로 적용된다.
결과는 mapping_id 가 비어 있는 FULL_SYNC 집계 로그 1건으로 남긴다.
"""
import asyncio
import uuid
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from channel_sync.models import ChannelAccount, SyncLog
from channel_sync.services.mapping_store import MappingStore
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.sync_log import SyncLogWriter
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.session_factory import session_factory as default_session_factory
from channel_sync.settings import settings
from channel_sync.types import SyncLogStatus, SyncOperation, SyncTrigger, TriggerSource

logger = logging.getLogger(__name__)

_FAILED = {SyncLogStatus.FAILED.value, SyncLogStatus.REJECTED.value}
_SKIPPED = {
    SyncLogStatus.NOOP.value,
    SyncLogStatus.SKIPPED.value,
    SyncLogStatus.CANCELLED.value,
    SyncLogStatus.CONFLICT.value,
}


class BatchSyncRunner:
    def __init__(
        self,
        product_provider: ProductSnapshotProvider,
        session_factory: Callable = default_session_factory,
        concurrency: Optional[int] = None,
        orchestrator_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.products = product_provider
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.batch_sync_concurrency
        self.orchestrator_kwargs = dict(orchestrator_kwargs or {})

    async def run_account(self, account_id, trigger: Optional[SyncTrigger] = None) -> SyncLog:
        with self.session_factory() as db:
            account = db.get(ChannelAccount, account_id if isinstance(account_id, uuid.UUID) else uuid.UUID(str(account_id)))
            if account is None:
                raise ValueError(f"Account not found: {account_id}")
            mapping_ids = [m.id for m in MappingStore(db).list_for_account(account.id)]
            account_id = account.id
            channel_code = account.channel_code
        logger.info(f"[BATCH] Account {account_id}: {len(mapping_ids)} mapping(s)")
        return await self.run_many(mapping_ids, trigger, account_id=account_id, channel_code=channel_code)

    async def run_many(
        self,
        mapping_ids: Iterable,
        trigger: Optional[SyncTrigger] = None,
        account_id=None,
        channel_code: Optional[str] = None,
    ) -> SyncLog:
        trigger = trigger or SyncTrigger(source=TriggerSource.BATCH)
        mapping_ids = list(mapping_ids)

        with self.session_factory() as db:
            aggregate = SyncLogWriter(db).start(
                SyncOperation.FULL_SYNC, trigger=trigger, account_id=account_id, channel_code=channel_code
            )
            aggregate_id = aggregate.id

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(mapping_id) -> Dict[str, Any]:
            async with semaphore:
                # 각 태스크마다 독립된 DB 세션 사용
                with self.session_factory() as db:
                    try:
                        orchestrator = SyncOrchestrator(db, self.products, **self.orchestrator_kwargs)
                        log = await orchestrator.run_sync(mapping_id, trigger)
                        return {
                            "status": log.status,
                            "created": log.items_created or 0,
                            "updated": log.items_updated or 0,
                        }
                    except Exception as e:
                        logger.error(f"[BATCH] Mapping {mapping_id} aborted: {e}", exc_info=True)
                        db.rollback()
                        return {"status": SyncLogStatus.FAILED.value, "created": 0, "updated": 0}

        results: List[Dict[str, Any]] = await asyncio.gather(*(_one(m) for m in mapping_ids))

        counts = {
            "items_processed": len(results),
            "items_created": sum(r["created"] for r in results),
            "items_updated": sum(r["updated"] for r in results),
            "items_failed": sum(1 for r in results if r["status"] in _FAILED),
            "items_skipped": sum(1 for r in results if r["status"] in _SKIPPED),
        }
        if counts["items_failed"] == 0:
            status = SyncLogStatus.SUCCESS
        elif counts["items_failed"] == len(results):
            status = SyncLogStatus.FAILED
        else:
            status = SyncLogStatus.PARTIAL

        with self.session_factory() as db:
            aggregate = db.get(SyncLog, aggregate_id)
            aggregate = SyncLogWriter(db).finish(
                aggregate,
                status,
                message=f"batch of {len(results)} mapping(s)",
                counts=counts,
            )
        logger.info(f"[BATCH] Completed {aggregate_id}: status={status.value} counts={counts}")
        return aggregate
