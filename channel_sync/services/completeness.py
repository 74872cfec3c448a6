"""
완성도 점수 계산기

가중치 규칙 집합에 대해 상품 스냅샷의 0~100 준비도 점수를 계산한다.
상태를 가지지 않으며 임의의 규칙 집합으로 테스트할 수 있다.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Sequence

from channel_sync.schemas.snapshot import ProductSnapshot
from channel_sync.services.requirements.catalog import (
    CompletenessRuleDef,
    attribute_code,
    is_attribute_ref,
    normalize_field_ref,
)


def _filled_text(value: Optional[str]) -> bool:
    return value is not None and str(value).strip() != ""


def _positive(value) -> bool:
    return value is not None and Decimal(str(value)) > 0


def _filled_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def field_value(product: ProductSnapshot, ref: str, channel_code: Optional[str] = None) -> Any:
    """FieldRef 에 해당하는 원시 값 (길이 제약 검사용)"""
    ref = normalize_field_ref(ref)
    if is_attribute_ref(ref):
        values = product.attribute_values(attribute_code(ref), channel_code)
        # 채널 전용 값을 우선
        values.sort(key=lambda a: a.channel is None)
        for attr in values:
            if _filled_value(attr.value):
                return attr.value
        return None
    if ref in ("meta_title", "meta_description", "meta_keywords", "url_key"):
        return getattr(product.seo, ref)
    if ref == "images":
        return [m for m in product.media if m.type == "image"]
    if ref == "category":
        return product.categories
    if ref == "product_identifier":
        return product.gtin or product.mpn
    return getattr(product, ref, None)


def is_field_filled(product: ProductSnapshot, ref: str, channel_code: Optional[str] = None) -> bool:
    ref = normalize_field_ref(ref)
    if is_attribute_ref(ref):
        return field_value(product, ref, channel_code) is not None

    if ref in ("price", "weight"):
        return _positive(getattr(product, ref))
    if ref == "stock":
        return product.stock is not None and product.stock > 0
    if ref == "images":
        return len(field_value(product, ref)) > 0
    if ref == "category":
        return len(product.categories) > 0
    if ref == "dimensions":
        return product.dimensions is not None and product.dimensions.is_complete
    if ref == "product_identifier":
        return _filled_text(product.gtin) or _filled_text(product.mpn)
    return _filled_text(field_value(product, ref))


@dataclass(frozen=True)
class RuleEvaluation:
    field: str
    label: str
    is_required: bool
    is_filled: bool
    weight: int


@dataclass(frozen=True)
class CompletenessEvaluation:
    product_id: str
    score: int
    earned: int
    total: int
    rules: tuple

    @property
    def missing_required(self) -> List[str]:
        return [r.field for r in self.rules if r.is_required and not r.is_filled]


def round_score(earned: int, total: int) -> int:
    if total <= 0:
        return 0
    ratio = Decimal(100 * earned) / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CompletenessScorer:
    """
    score = round_half_up(100 * earned / total), 적용 규칙이 없으면 0.
    필수 규칙 미충족은 점수에만 반영하며 유효성 판단은 ChannelValidator 가 한다.
    """

    def evaluate(
        self,
        product: ProductSnapshot,
        rules: Iterable[CompletenessRuleDef],
        channel_code: Optional[str] = None,
    ) -> CompletenessEvaluation:
        evaluations = []
        earned = 0
        total = 0
        for rule in self.rules_in_scope(product, rules):
            filled = is_field_filled(product, rule.field, channel_code)
            total += rule.weight
            if filled:
                earned += rule.weight
            evaluations.append(
                RuleEvaluation(
                    field=rule.field,
                    label=rule.label,
                    is_required=rule.is_required,
                    is_filled=filled,
                    weight=rule.weight,
                )
            )
        return CompletenessEvaluation(
            product_id=product.id,
            score=round_score(earned, total),
            earned=earned,
            total=total,
            rules=tuple(evaluations),
        )

    def score(self, product: ProductSnapshot, rules: Iterable[CompletenessRuleDef], channel_code: Optional[str] = None) -> int:
        return self.evaluate(product, rules, channel_code).score

    @staticmethod
    def rules_in_scope(product: ProductSnapshot, rules: Iterable[CompletenessRuleDef]) -> Sequence[CompletenessRuleDef]:
        categories = set(product.categories)
        return [r for r in rules if r.applies_to(categories)]
