import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from channel_sync.models import utcnow
from channel_sync.services.mapping_store import MappingStore
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.session_factory import session_factory as default_session_factory
from channel_sync.settings import settings
from channel_sync.types import SyncTrigger, TriggerSource

logger = logging.getLogger(__name__)


class RetryWorker:
    """
    next_retry_at 이 지난 SYNC_ERROR(retryable) 매핑을 다시 실행한다.
    """

    def __init__(
        self,
        product_provider: ProductSnapshotProvider,
        session_factory: Callable = default_session_factory,
        batch_size: Optional[int] = None,
        orchestrator_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.products = product_provider
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.retry_worker_batch_size
        self.orchestrator_kwargs = dict(orchestrator_kwargs or {})
        self._stopped = False

    async def run_due(self, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        with self.session_factory() as db:
            due = [m.id for m in MappingStore(db).list_due_retries(now, limit=self.batch_size)]
        if not due:
            return []

        logger.info(f"[RETRY] {len(due)} mapping(s) due for retry")
        statuses = []
        for mapping_id in due:
            with self.session_factory() as db:
                try:
                    log = await SyncOrchestrator(db, self.products, **self.orchestrator_kwargs).run_sync(
                        mapping_id, SyncTrigger(source=TriggerSource.RETRY, requested_by="retry_worker")
                    )
                    statuses.append(log.status)
                except Exception as e:
                    logger.error(f"[RETRY] Mapping {mapping_id} retry aborted: {e}", exc_info=True)
                    db.rollback()
        return statuses

    async def run_forever(self, interval: Optional[float] = None):
        interval = settings.retry_worker_interval_seconds if interval is None else interval
        logger.info(f"[RETRY] Worker started (interval={interval}s)")
        while not self._stopped:
            try:
                await self.run_due()
            except Exception as e:
                logger.error(f"[RETRY] Worker iteration failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

    def stop(self):
        self._stopped = True
