"""
ConflictResolver 단위 테스트
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from channel_sync.models import ChannelMapping
from channel_sync.services.conflict_resolver import (
    POLICY_LAST_WRITER_WINS,
    POLICY_MANUAL_REVIEW,
    ConflictResolver,
)
from channel_sync.types import ConflictResolution, SyncDecision, SyncDirection

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _mapping(**overrides) -> ChannelMapping:
    data = dict(
        id=uuid.uuid4(),
        account_id=uuid.uuid4(),
        channel_code="shopify",
        product_id="P-1",
        generation=1,
        external_id="EXT-1",
        status="ACTIVE",
        local_version=3,
        synced_local_version=3,
        remote_version=2,
        synced_remote_version=2,
    )
    data.update(overrides)
    return ChannelMapping(**data)


@pytest.fixture
def resolver():
    return ConflictResolver()


@pytest.mark.unit
class TestClassify:
    """방향별 분류 테스트"""

    def test_pim_master_local_edit_pushes(self, resolver):
        """PIM_TO_CHANNEL + 로컬 변경 + 원격 변화 없음 → PROCEED_PUSH"""
        mapping = _mapping()
        decision = resolver.classify(mapping, 4, 2, SyncDirection.PIM_TO_CHANNEL)
        assert decision == SyncDecision.PROCEED_PUSH

    def test_pim_master_remote_drift_is_overwritten(self, resolver):
        mapping = _mapping()
        assert resolver.classify(mapping, 3, 5, SyncDirection.PIM_TO_CHANNEL) == SyncDecision.PROCEED_PUSH

    def test_unchanged_is_noop(self, resolver):
        mapping = _mapping()
        for direction in SyncDirection:
            assert resolver.classify(mapping, 3, 2, direction) == SyncDecision.STALE_NOOP

    def test_unpublished_pim_master_pushes(self, resolver):
        mapping = _mapping(external_id=None, local_version=1, synced_local_version=1)
        assert resolver.classify(mapping, 1, 0, SyncDirection.PIM_TO_CHANNEL) == SyncDecision.PROCEED_PUSH
        assert resolver.classify(mapping, 1, 0, SyncDirection.BIDIRECTIONAL) == SyncDecision.PROCEED_PUSH

    def test_channel_master(self, resolver):
        mapping = _mapping()
        assert resolver.classify(mapping, 3, 3, SyncDirection.CHANNEL_TO_PIM) == SyncDecision.PROCEED_PULL
        assert resolver.classify(mapping, 4, 2, SyncDirection.CHANNEL_TO_PIM) == SyncDecision.PROCEED_PULL
        unpublished = _mapping(external_id=None)
        assert resolver.classify(unpublished, 4, 2, SyncDirection.CHANNEL_TO_PIM) == SyncDecision.STALE_NOOP

    def test_bidirectional(self, resolver):
        mapping = _mapping()
        assert resolver.classify(mapping, 4, 2, SyncDirection.BIDIRECTIONAL) == SyncDecision.PROCEED_PUSH
        assert resolver.classify(mapping, 3, 3, SyncDirection.BIDIRECTIONAL) == SyncDecision.PROCEED_PULL

    def test_bidirectional_both_advanced_is_conflict(self, resolver):
        """양쪽 모두 전진 → CONFLICT (자동 적용 없음)"""
        mapping = _mapping()
        assert resolver.classify(mapping, 4, 3, SyncDirection.BIDIRECTIONAL) == SyncDecision.CONFLICT

    def test_classify_does_not_mutate(self, resolver):
        mapping = _mapping()
        resolver.classify(mapping, 4, 3, SyncDirection.BIDIRECTIONAL)
        assert (mapping.synced_local_version, mapping.synced_remote_version, mapping.status) == (3, 2, "ACTIVE")


@pytest.mark.unit
class TestChooseWinner:
    """충돌 정책 테스트"""

    def test_manual_review_never_picks(self, resolver):
        mapping = _mapping(local_changed_at=T0, remote_updated_at=T0 + timedelta(minutes=5))
        assert resolver.choose_winner(mapping, POLICY_MANUAL_REVIEW) is None

    def test_last_writer_wins(self, resolver):
        newer_remote = _mapping(local_changed_at=T0, remote_updated_at=T0 + timedelta(minutes=5))
        newer_local = _mapping(local_changed_at=T0 + timedelta(minutes=5), remote_updated_at=T0)

        assert resolver.choose_winner(newer_remote, POLICY_LAST_WRITER_WINS) == ConflictResolution.PULL
        assert resolver.choose_winner(newer_local, "last_writer_wins") == ConflictResolution.PUSH

    def test_last_writer_wins_tie_falls_back_to_manual(self, resolver):
        tie = _mapping(local_changed_at=T0, remote_updated_at=T0)
        missing = _mapping(local_changed_at=T0, remote_updated_at=None)

        assert resolver.choose_winner(tie, POLICY_LAST_WRITER_WINS) is None
        assert resolver.choose_winner(missing, POLICY_LAST_WRITER_WINS) is None

    def test_naive_timestamps_are_utc(self, resolver):
        """sqlite 에서 읽은 naive datetime 도 UTC 로 비교"""
        mapping = _mapping(
            local_changed_at=T0.replace(tzinfo=None) + timedelta(seconds=1),
            remote_updated_at=T0,
        )
        assert resolver.choose_winner(mapping, POLICY_LAST_WRITER_WINS) == ConflictResolution.PUSH
