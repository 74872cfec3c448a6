"""
CompletenessScorer 단위 테스트
"""
from decimal import Decimal

import pytest

from channel_sync.schemas.snapshot import AttributeValue, Dimensions, MediaItem, ProductSnapshot
from channel_sync.services.completeness import CompletenessScorer, is_field_filled, round_score
from channel_sync.services.requirements.catalog import CompletenessRuleDef


def _rules(*defs):
    return [CompletenessRuleDef(field=f, label=f, weight=w, is_required=r) for f, w, r in defs]


@pytest.mark.unit
class TestScore:
    """점수 계산 테스트"""

    def test_weighted_score(self):
        """name(20) + description(30) 채움, images(50) 누락 → 50"""
        product = ProductSnapshot(id="P-9", name="Widget", description="Long enough description")
        rules = _rules(("name", 20, True), ("description", 30, False), ("images", 50, True))

        evaluation = CompletenessScorer().evaluate(product, rules)

        assert evaluation.score == 50
        assert evaluation.earned == 50
        assert evaluation.total == 100
        assert evaluation.missing_required == ["images"]

    def test_round_half_up(self):
        """2/3 → 67, 1/8 → 13 (반올림은 half-up)"""
        assert round_score(2, 3) == 67
        assert round_score(1, 8) == 13
        assert round_score(1, 200) == 1
        assert round_score(0, 10) == 0

    def test_no_rules_scores_zero(self, product_factory):
        """적용 규칙이 없으면 0점"""
        evaluation = CompletenessScorer().evaluate(product_factory(), [])
        assert evaluation.score == 0
        assert evaluation.total == 0

    def test_inactive_and_category_scoped_rules(self, product_factory):
        """비활성 규칙은 제외, 카테고리 규칙은 해당 카테고리 상품에만 적용"""
        product = product_factory(categories=["apparel"], gtin=None, mpn=None)
        rules = [
            CompletenessRuleDef(field="name", label="Name", weight=10),
            CompletenessRuleDef(field="brand", label="Brand", weight=10, is_active=False),
            CompletenessRuleDef(field="product_identifier", label="GTIN", weight=10, category_id="electronics"),
            CompletenessRuleDef(field="weight", label="Weight", weight=10, category_id="apparel"),
        ]

        evaluation = CompletenessScorer().evaluate(product, rules)

        assert [r.field for r in evaluation.rules] == ["name", "weight"]
        assert evaluation.score == 100

    def test_full_product_scores_100(self, test_session, rules, product_factory):
        """기본 규칙 기준 완전한 상품은 100점"""
        evaluation = CompletenessScorer().evaluate(product_factory(), rules.snapshot(test_session).rules)
        assert evaluation.score == 100
        assert evaluation.missing_required == []

    def test_zero_weight_rule_counts_nothing(self):
        product = ProductSnapshot(id="P-1", name="x")
        rules = _rules(("name", 0, False), ("description", 10, False))
        assert CompletenessScorer().score(product, rules) == 0


@pytest.mark.unit
class TestFieldFilled:
    """필드 충족 판정 테스트"""

    def test_blank_text_is_missing(self):
        product = ProductSnapshot(id="P-1", name="   ")
        assert is_field_filled(product, "name") is False

    def test_price_and_stock_must_be_positive(self):
        product = ProductSnapshot(id="P-1", price=Decimal("0"), stock=0)
        assert is_field_filled(product, "price") is False
        assert is_field_filled(product, "stock") is False
        product = ProductSnapshot(id="P-1", price=Decimal("1.5"), stock=3)
        assert is_field_filled(product, "price") is True
        assert is_field_filled(product, "stock") is True

    def test_images_ignore_videos(self):
        product = ProductSnapshot(id="P-1", media=[MediaItem(url="https://cdn/x.mp4", type="video")])
        assert is_field_filled(product, "images") is False

    def test_dimensions_need_all_three(self):
        product = ProductSnapshot(id="P-1", dimensions=Dimensions(length=Decimal("1"), width=Decimal("2")))
        assert is_field_filled(product, "dimensions") is False

    def test_aliases_and_attribute_refs(self):
        product = ProductSnapshot(
            id="P-1",
            short_description="short",
            attributes=[AttributeValue(code="warranty", value="12 months")],
        )
        assert is_field_filled(product, "shortDescription") is True
        assert is_field_filled(product, "attr:warranty") is True
        assert is_field_filled(product, "warranty") is True
        assert is_field_filled(product, "attr:color") is False

    def test_channel_scoped_attribute(self):
        """다른 채널 전용 속성값은 충족으로 보지 않음"""
        product = ProductSnapshot(
            id="P-1",
            attributes=[AttributeValue(code="ml_category_id", value="MLB123", channel="mercadolivre")],
        )
        assert is_field_filled(product, "attr:ml_category_id", "mercadolivre") is True
        assert is_field_filled(product, "attr:ml_category_id", "amazon") is False
