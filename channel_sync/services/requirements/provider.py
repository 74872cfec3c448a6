import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from channel_sync.models import ChannelRequirement, CompletenessRule, SystemSetting
from channel_sync.services.requirements.catalog import (
    ChannelRequirementSet,
    CompletenessRuleDef,
    normalize_field_ref,
    is_known_field_ref,
)
from channel_sync.settings import settings

logger = logging.getLogger(__name__)

RULES_REVISION_KEY = "rules_revision"


def get_rules_revision(session: Session) -> int:
    setting = session.execute(
        select(SystemSetting).where(SystemSetting.key == RULES_REVISION_KEY)
    ).scalars().first()
    if setting is None or not isinstance(setting.value, dict):
        return 0
    return int(setting.value.get("revision", 0))


def bump_rules_revision(session: Session) -> int:
    """
    규칙/요구사항 변경 시 리비전을 올립니다.
    커밋은 호출자가 변경분과 함께 수행합니다.
    """
    setting = session.execute(
        select(SystemSetting).where(SystemSetting.key == RULES_REVISION_KEY)
    ).scalars().first()
    if setting is None:
        setting = SystemSetting(
            key=RULES_REVISION_KEY,
            value={"revision": 0},
            description="채널 요구사항/완성도 규칙 변경 리비전",
        )
        session.add(setting)
    revision = int((setting.value or {}).get("revision", 0)) + 1
    # JSONB 변경 감지를 위해 새 dict 로 교체
    setting.value = {"revision": revision}
    session.flush()
    return revision


@dataclass(frozen=True)
class RuleSnapshot:
    """특정 리비전 시점의 규칙 전체 (불변)"""
    revision: int
    requirement_sets: Dict[Tuple[str, Optional[str]], ChannelRequirementSet] = field(default_factory=dict)
    rules: Tuple[CompletenessRuleDef, ...] = ()

    def requirement_for(self, channel_code: str, family_code: Optional[str] = None) -> Optional[ChannelRequirementSet]:
        code = (channel_code or "").strip().lower()
        if family_code:
            specific = self.requirement_sets.get((code, family_code))
            if specific is not None:
                return specific
        return self.requirement_sets.get((code, None))

    def channel_codes(self) -> List[str]:
        return sorted({code for code, _ in self.requirement_sets})

    def rules_for(self, categories) -> List[CompletenessRuleDef]:
        cats = set(categories or [])
        return [r for r in self.rules if r.applies_to(cats)]


class RuleConfigProvider:
    """
    요구사항/완성도 규칙 설정 제공자.

    리비전 단위로 로드 결과를 캐시하며 TTL 경과 또는 리비전 변경 시 다시 읽는다.
    """

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl_seconds = settings.rule_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._lock = threading.Lock()
        self._cached: Optional[RuleSnapshot] = None
        self._loaded_at: float = 0.0

    def invalidate(self):
        with self._lock:
            self._cached = None
            self._loaded_at = 0.0

    def snapshot(self, session: Session) -> RuleSnapshot:
        revision = get_rules_revision(session)
        with self._lock:
            cached = self._cached
            fresh = (time.monotonic() - self._loaded_at) < self.ttl_seconds
            if cached is not None and cached.revision == revision and fresh:
                return cached

        loaded = self._load(session, revision)
        with self._lock:
            self._cached = loaded
            self._loaded_at = time.monotonic()
        return loaded

    def _load(self, session: Session, revision: int) -> RuleSnapshot:
        requirement_sets: Dict[Tuple[str, Optional[str]], ChannelRequirementSet] = {}
        rows = session.execute(
            select(ChannelRequirement)
            .where(ChannelRequirement.is_active.is_(True))
            .order_by(ChannelRequirement.channel_code, ChannelRequirement.family_code)
        ).scalars().all()
        for row in rows:
            try:
                req_set = ChannelRequirementSet.from_model(row)
            except ValueError as e:
                # 잘못된 설정은 해당 채널만 미설정으로 취급
                logger.error(f"[RULES] Invalid requirement set {row.channel_code}/{row.family_code}: {e}")
                continue
            requirement_sets[req_set.key] = req_set

        rule_rows = session.execute(
            select(CompletenessRule).order_by(CompletenessRule.field, CompletenessRule.id)
        ).scalars().all()
        rules = tuple(CompletenessRuleDef.from_model(r) for r in rule_rows)

        logger.info(
            f"[RULES] Loaded revision {revision}: {len(requirement_sets)} requirement sets, {len(rules)} rules"
        )
        return RuleSnapshot(revision=revision, requirement_sets=requirement_sets, rules=rules)

    # --- 쓰기 ---

    def upsert_requirement_set(self, session: Session, req_set: ChannelRequirementSet) -> ChannelRequirement:
        row = session.execute(
            select(ChannelRequirement)
            .where(ChannelRequirement.channel_code == req_set.channel_code)
            .where(
                ChannelRequirement.family_code == req_set.family_code
                if req_set.family_code
                else ChannelRequirement.family_code.is_(None)
            )
        ).scalars().first()
        if row is None:
            row = ChannelRequirement(channel_code=req_set.channel_code, family_code=req_set.family_code)
            session.add(row)
        row.channel_name = req_set.channel_name
        row.required_fields = list(req_set.required_fields)
        row.recommended_fields = list(req_set.recommended_fields)
        row.min_completeness_score = req_set.min_completeness_score
        row.field_constraints = req_set.constraints_as_dict()
        row.is_active = True

        revision = bump_rules_revision(session)
        session.commit()
        self.invalidate()
        logger.info(f"[RULES] Upserted requirement set {req_set.channel_code}/{req_set.family_code} (rev {revision})")
        return row

    def create_rule(self, session: Session, rule: CompletenessRuleDef) -> CompletenessRule:
        ref = normalize_field_ref(rule.field)
        _check_rule_field(ref)
        row = CompletenessRule(
            field=ref,
            label=rule.label,
            is_required=rule.is_required,
            weight=rule.weight,
            is_active=rule.is_active,
            category_id=rule.category_id,
        )
        session.add(row)
        bump_rules_revision(session)
        session.commit()
        self.invalidate()
        return row

    def update_rule(self, session: Session, rule_id, **changes) -> Optional[CompletenessRule]:
        row = session.get(CompletenessRule, rule_id)
        if row is None:
            return None
        if "field" in changes and changes["field"] is not None:
            changes["field"] = normalize_field_ref(changes["field"])
            _check_rule_field(changes["field"])
        if changes.get("weight") is not None and changes["weight"] < 0:
            raise ValueError("weight must be >= 0")
        for key, value in changes.items():
            if value is not None and hasattr(row, key):
                setattr(row, key, value)
        bump_rules_revision(session)
        session.commit()
        self.invalidate()
        return row

    def delete_rule(self, session: Session, rule_id) -> bool:
        row = session.get(CompletenessRule, rule_id)
        if row is None:
            return False
        session.delete(row)
        bump_rules_revision(session)
        session.commit()
        self.invalidate()
        return True


def _check_rule_field(ref: str):
    if not is_known_field_ref(ref):
        raise ValueError(f"Unknown field ref: {ref}")


# 싱글톤 인스턴스
rule_provider = RuleConfigProvider()
