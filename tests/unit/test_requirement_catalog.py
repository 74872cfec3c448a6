"""
채널 요구사항 카탈로그 값 객체 테스트
"""
import pytest

from channel_sync.services.requirements.catalog import (
    ChannelRequirementSet,
    CompletenessRuleDef,
    FieldConstraint,
    normalize_field_ref,
)


@pytest.mark.unit
class TestChannelRequirementSet:
    def test_build_normalizes(self):
        req_set = ChannelRequirementSet.build(
            channel_code=" Amazon ",
            required_fields=["name", "productIdentifier", "name"],
            recommended_fields=["name", "shortDescription", "attr:bullet_points"],
            min_completeness_score=80,
        )

        assert req_set.channel_code == "amazon"
        assert req_set.channel_name == " Amazon "
        assert req_set.required_fields == ("name", "product_identifier")
        # 필수 필드는 권장 목록에서 제외
        assert req_set.recommended_fields == ("short_description", "attr:bullet_points")

    def test_invalid_score(self):
        with pytest.raises(ValueError):
            ChannelRequirementSet.build(channel_code="amazon", min_completeness_score=101)

    def test_unknown_field_ref(self):
        with pytest.raises(ValueError):
            ChannelRequirementSet.build(channel_code="amazon", required_fields=["attr:bad code!"])

    def test_constraints(self):
        req_set = ChannelRequirementSet.build(
            channel_code="amazon",
            field_constraints={"name": {"min_length": 10, "max_length": 200}, "metaTitle": {"max_length": 60, "severity": "WARNING"}},
        )

        assert req_set.field_constraints["name"] == FieldConstraint(min_length=10, max_length=200)
        assert req_set.field_constraints["meta_title"].severity == "warning"
        assert req_set.constraints_as_dict()["name"] == {"severity": "error", "min_length": 10, "max_length": 200}
        assert "meta_title" in req_set.relevant_fields

    def test_constraint_bounds(self):
        with pytest.raises(ValueError):
            FieldConstraint.from_dict({"min_length": 10, "max_length": 5})
        with pytest.raises(ValueError):
            FieldConstraint.from_dict({"severity": "fatal"})


@pytest.mark.unit
class TestCompletenessRuleDef:
    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            CompletenessRuleDef(field="name", label="Name", weight=-1)

    def test_applies_to(self):
        rule = CompletenessRuleDef(field="attr:voltage", label="Voltage", category_id="electronics")
        assert rule.applies_to(["electronics", "tools"]) is True
        assert rule.applies_to(["apparel"]) is False
        assert CompletenessRuleDef(field="name", label="Name", is_active=False).applies_to([]) is False

    def test_normalize_field_ref(self):
        assert normalize_field_ref(" metaDescription ") == "meta_description"
        assert normalize_field_ref("attr: color") == "attr:color"
        assert normalize_field_ref("vendor") == "brand"
