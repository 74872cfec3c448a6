"""
BatchSyncRunner 통합 테스트
"""
import pytest
from sqlalchemy import select

from channel_sync.models import SyncLog
from channel_sync.services.batch_sync import BatchSyncRunner
from channel_sync.services.mapping_store import MappingStore
from channel_sync.types import MappingStatus, SyncLogStatus, SyncOperation


@pytest.fixture
def runner(products, session_factory, orchestrator_kwargs):
    return BatchSyncRunner(products, session_factory=session_factory, concurrency=2,
                           orchestrator_kwargs=orchestrator_kwargs)


def _mappings(session, account, product_ids):
    store = MappingStore(session)
    return [store.create_mapping(account, pid) for pid in product_ids]


@pytest.mark.integration
class TestBatchSync:
    async def test_failure_is_isolated(self, test_session, account, products, product_factory, runner, fake_adapter):
        products.put(product_factory("P-3"))
        # P-2 는 카탈로그에 없음
        ok_1, missing, ok_3 = _mappings(test_session, account, ["P-1", "P-2", "P-3"])

        aggregate = await runner.run_account(account.id)

        assert aggregate.status == SyncLogStatus.PARTIAL.value
        assert aggregate.mapping_id is None
        assert aggregate.account_id == account.id
        assert aggregate.operation == SyncOperation.FULL_SYNC.value
        assert aggregate.items_processed == 3
        assert aggregate.items_created == 2
        assert aggregate.items_failed == 1
        assert aggregate.completed_at is not None

        test_session.expire_all()
        assert ok_1.status == MappingStatus.ACTIVE.value
        assert ok_3.status == MappingStatus.ACTIVE.value
        assert missing.status == MappingStatus.SYNC_ERROR.value
        assert fake_adapter.count("push") == 2

    async def test_each_mapping_gets_its_own_log(self, test_session, account, products, product_factory, runner):
        products.put(product_factory("P-2"))
        mappings = _mappings(test_session, account, ["P-1", "P-2"])

        aggregate = await runner.run_many([m.id for m in mappings], account_id=account.id, channel_code="shopify")

        assert aggregate.status == SyncLogStatus.SUCCESS.value
        per_mapping = test_session.execute(
            select(SyncLog).where(SyncLog.mapping_id.is_not(None))
        ).scalars().all()
        assert sorted(log.mapping_id for log in per_mapping) == sorted(m.id for m in mappings)
        assert {log.operation for log in per_mapping} == {SyncOperation.FULL_SYNC.value}
        assert {log.trigger_source for log in per_mapping} == {"BATCH"}

    async def test_rerun_counts_noops_as_skipped(self, test_session, account, runner, fake_adapter):
        _mappings(test_session, account, ["P-1"])
        await runner.run_account(account.id)

        aggregate = await runner.run_account(account.id)

        assert aggregate.status == SyncLogStatus.SUCCESS.value
        assert aggregate.items_skipped == 1
        assert aggregate.items_created == 0
        assert fake_adapter.count("push") == 1

    async def test_terminal_mappings_are_not_scheduled(self, test_session, account, runner, fake_adapter):
        (mapping,) = _mappings(test_session, account, ["P-1"])
        MappingStore(test_session).mark_deleted_in_pim(mapping)

        aggregate = await runner.run_account(account.id)

        assert aggregate.items_processed == 0
        assert aggregate.status == SyncLogStatus.SUCCESS.value
        assert fake_adapter.calls == []

    async def test_all_failed(self, test_session, account, runner):
        _mappings(test_session, account, ["P-8", "P-9"])

        aggregate = await runner.run_account(account.id)

        assert aggregate.status == SyncLogStatus.FAILED.value
        assert aggregate.items_failed == 2

    async def test_unknown_account(self, runner, test_session):
        with pytest.raises(ValueError):
            await runner.run_account("00000000-0000-0000-0000-000000000000")
