"""
채널 검증기

요구사항 카탈로그 + 완성도 점수로 상품/채널 쌍의 발행 준비 여부를 판단한다.
순수 함수이며 I/O, 시계, 난수를 사용하지 않는다.
"""
import logging
from typing import Dict, Iterable, List, Optional

from channel_sync.schemas.snapshot import ProductSnapshot
from channel_sync.schemas.validation import ChannelValidationResult, FieldIssue
from channel_sync.services.completeness import CompletenessScorer, field_value, is_field_filled
from channel_sync.services.requirements.catalog import (
    SEVERITY_ERROR,
    ChannelRequirementSet,
    CompletenessRuleDef,
)
from channel_sync.services.requirements.provider import RuleSnapshot
from channel_sync.types import IssueType

logger = logging.getLogger(__name__)


def _length_of(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return len(value)
    return len(str(value).strip())


class ChannelValidator:
    def __init__(self, scorer: Optional[CompletenessScorer] = None):
        self.scorer = scorer or CompletenessScorer()

    def validate(
        self,
        product: ProductSnapshot,
        channel_code: str,
        requirement_set: ChannelRequirementSet,
        rules: Iterable[CompletenessRuleDef],
        rules_revision: Optional[int] = None,
    ) -> ChannelValidationResult:
        channel_code = channel_code.strip().lower()
        errors: List[FieldIssue] = []
        warnings: List[FieldIssue] = []
        missing: List[str] = []

        for ref in requirement_set.required_fields:
            if not is_field_filled(product, ref, channel_code):
                missing.append(ref)
                errors.append(FieldIssue(field=ref, message="field required by channel", type=IssueType.REQUIRED))

        for ref in requirement_set.recommended_fields:
            if not is_field_filled(product, ref, channel_code):
                warnings.append(FieldIssue(field=ref, message="field recommended by channel", type=IssueType.RECOMMENDED))

        constraint_error = False
        for ref, constraint in requirement_set.field_constraints.items():
            length = _length_of(field_value(product, ref, channel_code))
            # 빈 값은 REQUIRED/RECOMMENDED 에서 이미 다룸
            if not length:
                continue
            message = None
            if constraint.min_length is not None and length < constraint.min_length:
                message = f"length {length} below minimum {constraint.min_length}"
            elif constraint.max_length is not None and length > constraint.max_length:
                message = f"length {length} exceeds maximum {constraint.max_length}"
            if message is None:
                continue
            issue = FieldIssue(field=ref, message=message, type=IssueType.LENGTH)
            if constraint.severity == SEVERITY_ERROR:
                errors.append(issue)
                constraint_error = True
            else:
                warnings.append(issue)

        evaluation = self.scorer.evaluate(product, rules, channel_code)
        needs_configuration = evaluation.total == 0
        if needs_configuration:
            errors.append(
                FieldIssue(
                    field="completeness_rules",
                    message="no completeness rules apply to this product",
                    type=IssueType.CONFIGURATION,
                )
            )

        is_valid = (
            not missing
            and evaluation.score >= requirement_set.min_completeness_score
            and not constraint_error
            and not needs_configuration
        )

        return ChannelValidationResult(
            channel_code=channel_code,
            channel_name=requirement_set.channel_name,
            is_valid=is_valid,
            score=evaluation.score,
            errors=errors,
            warnings=warnings,
            missing_fields=missing,
            required_fields=list(requirement_set.required_fields),
            recommended_fields=list(requirement_set.recommended_fields),
            min_completeness_score=requirement_set.min_completeness_score,
            needs_configuration=needs_configuration,
            rules_revision=rules_revision,
        )

    def validate_with_snapshot(
        self,
        product: ProductSnapshot,
        channel_code: str,
        rules: RuleSnapshot,
    ) -> ChannelValidationResult:
        """설정 스냅샷 기준 검증. 요구사항이 없으면 CONFIGURATION 결과 (예외 없음)."""
        channel_code = channel_code.strip().lower()
        requirement_set = rules.requirement_for(channel_code, product.family_code)
        if requirement_set is None:
            return self.configuration_result(product, channel_code, rules.revision)
        return self.validate(product, channel_code, requirement_set, rules.rules, rules.revision)

    def validate_for_all_channels(self, product: ProductSnapshot, rules: RuleSnapshot) -> Dict[str, ChannelValidationResult]:
        results: Dict[str, ChannelValidationResult] = {}
        for channel_code in rules.channel_codes():
            try:
                results[channel_code] = self.validate_with_snapshot(product, channel_code, rules)
            except Exception as e:
                # 한 채널의 오류가 다른 채널 결과에 영향을 주지 않도록 격리
                logger.error(f"[VALIDATION] {channel_code} validation failed for {product.id}: {e}", exc_info=True)
                results[channel_code] = self.configuration_result(product, channel_code, rules.revision, str(e))
        return results

    @staticmethod
    def configuration_result(
        product: ProductSnapshot,
        channel_code: str,
        rules_revision: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> ChannelValidationResult:
        return ChannelValidationResult(
            channel_code=channel_code,
            channel_name=channel_code,
            is_valid=False,
            score=0,
            errors=[
                FieldIssue(
                    field="channel",
                    message=detail or "no requirement set configured for channel",
                    type=IssueType.CONFIGURATION,
                )
            ],
            needs_configuration=True,
            rules_revision=rules_revision,
        )
