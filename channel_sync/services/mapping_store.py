"""
매핑 저장소 + 상태 머신

PIM 상품 1건 × 채널 계정 1곳의 연결을 관리한다.
- 상태 전이는 ALLOWED_TRANSITIONS 로만 허용 (종료 상태는 전이 불가)
- 버전 카운터와 상태는 같은 커밋에서 기록
- 물리 삭제 없음, 재생성은 generation 을 올린 새 매핑
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from channel_sync.adapters.base import AdapterResult, RemoteSnapshot
from channel_sync.models import ChannelAccount, ChannelMapping, as_utc, utcnow
from channel_sync.services.exceptions import InvalidTransitionError, MappingNotFoundError
from channel_sync.services.requirements.catalog import normalize_field_ref
from channel_sync.services.requirements.provider import RuleSnapshot
from channel_sync.services.retry_policy import RetryDecision
from channel_sync.types import MappingStatus, RemoteListingStatus, SyncDirection

logger = logging.getLogger(__name__)

_DELETED = {MappingStatus.DELETED_IN_CHANNEL, MappingStatus.DELETED_IN_PIM}

ALLOWED_TRANSITIONS = {
    MappingStatus.PENDING_SYNC: {
        MappingStatus.ACTIVE, MappingStatus.SYNC_ERROR, MappingStatus.SUPPRESSED,
        MappingStatus.INACTIVE, MappingStatus.PAUSED, *_DELETED,
    },
    MappingStatus.ACTIVE: {
        MappingStatus.PENDING_SYNC, MappingStatus.SYNC_ERROR, MappingStatus.SUPPRESSED,
        MappingStatus.INACTIVE, MappingStatus.PAUSED, *_DELETED,
    },
    MappingStatus.SYNC_ERROR: {
        MappingStatus.ACTIVE, MappingStatus.PENDING_SYNC, MappingStatus.SUPPRESSED,
        MappingStatus.INACTIVE, *_DELETED,
    },
    MappingStatus.SUPPRESSED: {
        MappingStatus.PENDING_SYNC, MappingStatus.ACTIVE, MappingStatus.SYNC_ERROR,
        MappingStatus.INACTIVE, *_DELETED,
    },
    MappingStatus.INACTIVE: {MappingStatus.PENDING_SYNC, *_DELETED},
    MappingStatus.PAUSED: {MappingStatus.PENDING_SYNC, *_DELETED},
    MappingStatus.DELETED_IN_CHANNEL: set(),
    MappingStatus.DELETED_IN_PIM: set(),
}

# 채널 요구사항과 무관하게 항상 리스팅에 영향을 주는 필드
ALWAYS_RELEVANT_FIELDS = {"price", "compare_at_price", "stock", "status", "name", "sku"}


def can_transition(current: MappingStatus, target: MappingStatus) -> bool:
    if current.is_terminal:
        return False
    return current == target or target in ALLOWED_TRANSITIONS[current]


def status_for_listing(listing_status: Optional[RemoteListingStatus]) -> MappingStatus:
    if listing_status == RemoteListingStatus.SUPPRESSED:
        return MappingStatus.SUPPRESSED
    if listing_status == RemoteListingStatus.DELETED:
        return MappingStatus.DELETED_IN_CHANNEL
    return MappingStatus.ACTIVE


class MappingStore:
    def __init__(self, session: Session):
        self.session = session

    # --- 조회 ---

    def get(self, mapping_id) -> Optional[ChannelMapping]:
        if isinstance(mapping_id, str):
            try:
                mapping_id = uuid.UUID(mapping_id)
            except ValueError:
                return None
        return self.session.get(ChannelMapping, mapping_id)

    def get_or_raise(self, mapping_id) -> ChannelMapping:
        mapping = self.get(mapping_id)
        if mapping is None:
            raise MappingNotFoundError(f"Mapping not found: {mapping_id}", entity="mapping", entity_id=str(mapping_id))
        return mapping

    def get_live(self, account_id, product_id: str) -> Optional[ChannelMapping]:
        """(계정, 상품) 의 최신 generation 매핑"""
        stmt = (
            select(ChannelMapping)
            .where(ChannelMapping.account_id == account_id)
            .where(ChannelMapping.product_id == product_id)
            .order_by(ChannelMapping.generation.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def find_by_external_id(
        self,
        external_id: str,
        account_id=None,
        channel_code: Optional[str] = None,
    ) -> Optional[ChannelMapping]:
        stmt = select(ChannelMapping).where(ChannelMapping.external_id == external_id)
        if account_id is not None:
            stmt = stmt.where(ChannelMapping.account_id == account_id)
        if channel_code:
            stmt = stmt.where(ChannelMapping.channel_code == channel_code)
        stmt = stmt.order_by(ChannelMapping.generation.desc(), ChannelMapping.created_at.desc()).limit(1)
        return self.session.execute(stmt).scalars().first()

    def list_for_product(self, product_id: str, channel_code: Optional[str] = None, live_only: bool = True) -> List[ChannelMapping]:
        stmt = select(ChannelMapping).where(ChannelMapping.product_id == product_id)
        if channel_code:
            stmt = stmt.where(ChannelMapping.channel_code == channel_code)
        rows = self.session.execute(
            stmt.order_by(ChannelMapping.account_id, ChannelMapping.generation.desc())
        ).scalars().all()
        if not live_only:
            return list(rows)
        latest: Dict[Any, ChannelMapping] = {}
        for row in rows:
            latest.setdefault(row.account_id, row)
        return list(latest.values())

    def get_status(self, product_id: str, channel_code: str) -> List[ChannelMapping]:
        return self.list_for_product(product_id, channel_code=channel_code)

    def list_for_account(self, account_id, include_terminal: bool = False) -> List[ChannelMapping]:
        stmt = select(ChannelMapping).where(ChannelMapping.account_id == account_id)
        if not include_terminal:
            stmt = stmt.where(ChannelMapping.status.notin_([s.value for s in _DELETED]))
        return list(self.session.execute(stmt.order_by(ChannelMapping.created_at)).scalars().all())

    def list_due_retries(self, now: Optional[datetime] = None, limit: int = 100) -> List[ChannelMapping]:
        now = now or utcnow()
        stmt = (
            select(ChannelMapping)
            .where(ChannelMapping.status == MappingStatus.SYNC_ERROR.value)
            .where(ChannelMapping.retryable.is_(True))
            .where(ChannelMapping.next_retry_at.is_not(None))
            .where(ChannelMapping.next_retry_at <= now)
            .order_by(ChannelMapping.next_retry_at)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    # --- 생성 ---

    def create_mapping(
        self,
        account: ChannelAccount,
        product_id: str,
        external_id: Optional[str] = None,
        external_attributes: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> ChannelMapping:
        existing = self.get_live(account.id, product_id)
        if existing is not None:
            raise ValueError(
                f"Mapping already exists for account={account.id} product={product_id} (status={existing.status})"
            )
        mapping = self._new_mapping(account, product_id, 1, external_id, external_attributes)
        self._save(commit)
        logger.info(f"[MAPPING] Created {mapping.id} ({account.channel_code}/{product_id})")
        return mapping

    def recreate(self, mapping: ChannelMapping, commit: bool = True) -> ChannelMapping:
        """종료 상태 매핑을 대체하는 새 generation 매핑 할당 (기존 이력 보존)"""
        if not MappingStatus(mapping.status).is_terminal:
            raise InvalidTransitionError(mapping.status, "RECREATE", str(mapping.id))
        max_generation = self.session.execute(
            select(func.max(ChannelMapping.generation))
            .where(ChannelMapping.account_id == mapping.account_id)
            .where(ChannelMapping.product_id == mapping.product_id)
        ).scalar() or mapping.generation
        account = self.session.get(ChannelAccount, mapping.account_id)
        new_mapping = self._new_mapping(account, mapping.product_id, max_generation + 1, None, None)
        self._save(commit)
        logger.info(f"[MAPPING] Recreated {mapping.id} as {new_mapping.id} (generation {new_mapping.generation})")
        return new_mapping

    def _new_mapping(self, account, product_id, generation, external_id, external_attributes) -> ChannelMapping:
        now = utcnow()
        mapping = ChannelMapping(
            id=uuid.uuid4(),
            account_id=account.id,
            channel_code=account.channel_code,
            product_id=product_id,
            generation=generation,
            external_id=external_id,
            external_attributes=dict(external_attributes or {}),
            status=MappingStatus.PENDING_SYNC.value,
            local_version=1,
            synced_local_version=0,
            remote_version=0,
            synced_remote_version=0,
            local_changed_at=now,
            retryable=False,
            retry_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(mapping)
        return mapping

    # --- 상태 전이 ---

    def transition(self, mapping: ChannelMapping, target: MappingStatus) -> MappingStatus:
        current = MappingStatus(mapping.status)
        if not can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value, str(mapping.id))
        if current != target:
            mapping.status = target.value
            logger.info(f"[MAPPING] {mapping.id}: {current.value} -> {target.value}")
        mapping.updated_at = utcnow()
        return current

    def mark_local_change(
        self,
        product_id: str,
        changed_fields: Optional[Iterable[str]] = None,
        rules: Optional[RuleSnapshot] = None,
        family_code: Optional[str] = None,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> List[ChannelMapping]:
        """
        채널 요구 필드와 겹치는 변경만 local_version 을 올린다.
        changed_fields 가 None 이면 전체 변경으로 간주한다.
        """
        now = now or utcnow()
        changed = set(changed_fields) if changed_fields is not None else None
        touched = []
        for mapping in self.list_for_product(product_id):
            status = MappingStatus(mapping.status)
            if status.is_terminal:
                continue
            if changed is not None and not self._is_relevant(mapping.channel_code, changed, rules, family_code):
                continue
            mapping.local_version += 1
            mapping.local_changed_at = now
            if status == MappingStatus.ACTIVE:
                self.transition(mapping, MappingStatus.PENDING_SYNC)
            mapping.updated_at = now
            touched.append(mapping)
        self._save(commit)
        if touched:
            logger.info(f"[MAPPING] Local change on {product_id} affected {len(touched)} mapping(s)")
        return touched

    @staticmethod
    def _is_relevant(channel_code: str, changed: set, rules: Optional[RuleSnapshot], family_code: Optional[str]) -> bool:
        normalized = {normalize_field_ref(f) for f in changed}
        if normalized & ALWAYS_RELEVANT_FIELDS:
            return True
        if rules is None:
            return True
        req_set = rules.requirement_for(channel_code, family_code)
        if req_set is None:
            return True
        relevant = set(req_set.relevant_fields)
        # attr:code 와 code 표기를 모두 허용
        relevant |= {r[len("attr:"):] for r in relevant if r.startswith("attr:")}
        return bool(normalized & relevant)

    def observe_remote(self, mapping: ChannelMapping, remote: RemoteSnapshot, now: Optional[datetime] = None) -> bool:
        """
        원격 관측값 반영. 마커/타임스탬프/상태가 바뀌었으면 remote_version 을 올리고 True.
        """
        changed = False
        remote_updated_at = as_utc(remote.remote_updated_at)
        if remote.remote_marker is not None and remote.remote_marker != mapping.remote_marker:
            changed = True
        elif remote.remote_marker is None and remote_updated_at is not None:
            known = as_utc(mapping.remote_updated_at)
            changed = known is None or remote_updated_at > known
        elif remote.remote_marker is None and remote.state:
            mirror = mapping.remote_state or {}
            changed = any(mirror.get(k) != v for k, v in remote.state.items())

        if not changed:
            return False

        mapping.remote_version += 1
        if remote.remote_marker is not None:
            mapping.remote_marker = remote.remote_marker
        if remote_updated_at is not None:
            mapping.remote_updated_at = remote_updated_at
        elif mapping.remote_updated_at is None:
            mapping.remote_updated_at = now or utcnow()
        if remote.state:
            mapping.remote_state = {**(mapping.remote_state or {}), **remote.state}
        if remote.status_detail:
            mapping.remote_status_detail = self._status_detail(remote.status_detail, now)
        mapping.updated_at = now or utcnow()
        logger.info(f"[MAPPING] Remote change observed on {mapping.id} (remote_version={mapping.remote_version})")
        return True

    def record_push_success(
        self,
        mapping: ChannelMapping,
        result: AdapterResult,
        pushed_local_version: int,
        now: Optional[datetime] = None,
    ) -> MappingStatus:
        now = now or utcnow()
        if result.external_id:
            mapping.external_id = result.external_id
        if result.external_attributes:
            mapping.external_attributes = {**(mapping.external_attributes or {}), **result.external_attributes}
        if result.remote_marker is not None:
            mapping.remote_marker = result.remote_marker
        if result.remote_updated_at is not None:
            mapping.remote_updated_at = as_utc(result.remote_updated_at)
        if result.remote_state:
            mapping.remote_state = {**(mapping.remote_state or {}), **result.remote_state}
        if result.status_detail:
            mapping.remote_status_detail = self._status_detail(result.status_detail, now)

        mapping.synced_local_version = pushed_local_version
        mapping.synced_remote_version = mapping.remote_version
        mapping.last_sync_direction = SyncDirection.PIM_TO_CHANNEL.value
        return self._finish_success(mapping, result.listing_status, now)

    def record_pull_success(self, mapping: ChannelMapping, remote: RemoteSnapshot, now: Optional[datetime] = None) -> MappingStatus:
        now = now or utcnow()
        if remote.external_id and not mapping.external_id:
            mapping.external_id = remote.external_id
        if remote.state:
            mapping.remote_state = {**(mapping.remote_state or {}), **remote.state}
        if remote.status_detail:
            mapping.remote_status_detail = self._status_detail(remote.status_detail, now)
        mapping.synced_remote_version = mapping.remote_version
        mapping.synced_local_version = mapping.local_version
        mapping.last_sync_direction = SyncDirection.CHANNEL_TO_PIM.value
        listing_status = remote.listing_status
        if not remote.exists:
            listing_status = RemoteListingStatus.DELETED
        return self._finish_success(mapping, listing_status, now)

    def record_in_sync(self, mapping: ChannelMapping, now: Optional[datetime] = None) -> MappingStatus:
        """
        변경 없음(STALE_NOOP) 확인.
        게시된 리스팅이 PIM 과 일치하므로 SYNC_ERROR / PENDING_SYNC 는 성공으로 보고
        재시도 상태를 정리한다.
        """
        status = MappingStatus(mapping.status)
        if status not in (MappingStatus.SYNC_ERROR, MappingStatus.PENDING_SYNC) or not mapping.external_id:
            return status
        return self._finish_success(mapping, None, now or utcnow())

    def record_listing_identity(self, mapping: ChannelMapping, result: AdapterResult) -> ChannelMapping:
        """
        채널이 만든 리스팅 식별자만 반영 (동기화 완료로 보지 않음).
        다음 실행이 같은 리스팅을 갱신하도록 한다.
        """
        if result.external_id and not mapping.external_id:
            mapping.external_id = result.external_id
        if result.external_attributes:
            mapping.external_attributes = {**(mapping.external_attributes or {}), **result.external_attributes}
        return mapping

    def _finish_success(self, mapping: ChannelMapping, listing_status: Optional[RemoteListingStatus], now: datetime) -> MappingStatus:
        mapping.last_synced_at = now
        mapping.last_sync_error = None
        mapping.last_error_class = None
        mapping.retryable = False
        mapping.retry_count = 0
        mapping.next_retry_at = None
        target = status_for_listing(listing_status)
        # 푸시 도중 로컬 변경이 있었다면 다시 동기화 대기
        if target == MappingStatus.ACTIVE and mapping.synced_local_version < mapping.local_version:
            target = MappingStatus.PENDING_SYNC
        self.transition(mapping, target)
        return target

    def record_failure(
        self,
        mapping: ChannelMapping,
        error_class: str,
        message: str,
        decision: RetryDecision,
        now: Optional[datetime] = None,
    ) -> MappingStatus:
        self.transition(mapping, MappingStatus.SYNC_ERROR)
        mapping.last_sync_error = (message or "")[:2000]
        mapping.last_error_class = error_class
        mapping.retryable = decision.retryable
        mapping.retry_count = decision.retry_count
        mapping.next_retry_at = decision.next_retry_at
        mapping.updated_at = now or utcnow()
        return MappingStatus.SYNC_ERROR

    def mark_product_deleted(self, product_id: str, commit: bool = True) -> List[ChannelMapping]:
        touched = []
        for mapping in self.list_for_product(product_id):
            if MappingStatus(mapping.status).is_terminal:
                continue
            self.transition(mapping, MappingStatus.DELETED_IN_PIM)
            self._clear_retry(mapping)
            touched.append(mapping)
        self._save(commit)
        return touched

    def mark_deleted_in_pim(self, mapping: ChannelMapping, commit: bool = True) -> ChannelMapping:
        self.transition(mapping, MappingStatus.DELETED_IN_PIM)
        self._clear_retry(mapping)
        self._save(commit)
        return mapping

    def mark_deleted_in_channel(self, mapping: ChannelMapping, detail: Optional[dict] = None, commit: bool = True) -> ChannelMapping:
        self.transition(mapping, MappingStatus.DELETED_IN_CHANNEL)
        self._clear_retry(mapping)
        if detail:
            mapping.remote_status_detail = self._status_detail(detail)
        self._save(commit)
        return mapping

    def mark_suppressed(self, mapping: ChannelMapping, detail: Optional[dict] = None, commit: bool = True) -> ChannelMapping:
        self.transition(mapping, MappingStatus.SUPPRESSED)
        self._clear_retry(mapping)
        if detail:
            mapping.remote_status_detail = self._status_detail(detail)
        self._save(commit)
        return mapping

    def deactivate(self, mapping: ChannelMapping, commit: bool = True) -> ChannelMapping:
        """운영자 취소: 재시도 루프에서 제외"""
        self.transition(mapping, MappingStatus.INACTIVE)
        self._clear_retry(mapping)
        self._save(commit)
        return mapping

    def pause(self, mapping: ChannelMapping, commit: bool = True) -> ChannelMapping:
        self.transition(mapping, MappingStatus.PAUSED)
        self._clear_retry(mapping)
        self._save(commit)
        return mapping

    def reactivate(self, mapping: ChannelMapping, commit: bool = True) -> ChannelMapping:
        self.transition(mapping, MappingStatus.PENDING_SYNC)
        self._clear_retry(mapping)
        mapping.retry_count = 0
        self._save(commit)
        return mapping

    @staticmethod
    def _clear_retry(mapping: ChannelMapping):
        mapping.retryable = False
        mapping.next_retry_at = None

    @staticmethod
    def _status_detail(detail: dict, now: Optional[datetime] = None) -> dict:
        return {
            "code": detail.get("code"),
            "reason": detail.get("reason"),
            "issues": list(detail.get("issues") or []),
            "observed_at": (now or utcnow()).isoformat(),
        }

    def _save(self, commit: bool):
        if commit:
            self.session.commit()
        else:
            self.session.flush()
