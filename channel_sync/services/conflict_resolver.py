"""
충돌 분류기

로컬/원격 버전이 마지막 동기화 이후 전진했는지로 push/pull/no-op/conflict 를 결정한다.
BIDIRECTIONAL 에서 양쪽 모두 전진하면 절대 자동 적용하지 않고 CONFLICT 를 돌려준다.
"""
import logging
from typing import Optional

from channel_sync.models import ChannelMapping, as_utc
from channel_sync.types import ConflictResolution, SyncDecision, SyncDirection

logger = logging.getLogger(__name__)

POLICY_MANUAL_REVIEW = "MANUAL_REVIEW"
POLICY_LAST_WRITER_WINS = "LAST_WRITER_WINS"


class ConflictResolver:
    def classify(
        self,
        mapping: ChannelMapping,
        local_change_version: int,
        remote_observed_version: int,
        sync_direction: SyncDirection,
    ) -> SyncDecision:
        direction = SyncDirection(sync_direction)
        local_advanced = local_change_version > mapping.synced_local_version
        remote_advanced = remote_observed_version > mapping.synced_remote_version
        published = bool(mapping.external_id)

        if direction == SyncDirection.PIM_TO_CHANNEL:
            if not published or local_advanced or remote_advanced:
                return SyncDecision.PROCEED_PUSH
            return SyncDecision.STALE_NOOP

        if direction == SyncDirection.CHANNEL_TO_PIM:
            # 채널에 리스팅이 없으면 가져올 대상도 없다
            if published and (local_advanced or remote_advanced):
                return SyncDecision.PROCEED_PULL
            return SyncDecision.STALE_NOOP

        if not published:
            return SyncDecision.PROCEED_PUSH
        if local_advanced and remote_advanced:
            return SyncDecision.CONFLICT
        if local_advanced:
            return SyncDecision.PROCEED_PUSH
        if remote_advanced:
            return SyncDecision.PROCEED_PULL
        return SyncDecision.STALE_NOOP

    def choose_winner(self, mapping: ChannelMapping, policy: str) -> Optional[ConflictResolution]:
        """
        충돌 해소 방향 선택. None 이면 수동 검토.
        LAST_WRITER_WINS: local_changed_at 과 remote_updated_at 중 더 최신 쪽. 동률/누락은 수동.
        """
        if (policy or "").upper() != POLICY_LAST_WRITER_WINS:
            return None
        local_at = as_utc(mapping.local_changed_at)
        remote_at = as_utc(mapping.remote_updated_at)
        if local_at is None or remote_at is None or local_at == remote_at:
            logger.info(f"[CONFLICT] {mapping.id}: timestamps inconclusive, falling back to manual review")
            return None
        return ConflictResolution.PUSH if local_at > remote_at else ConflictResolution.PULL
