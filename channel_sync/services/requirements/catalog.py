"""
채널 요구사항 카탈로그

채널(또는 채널+상품군)별 필수/권장 필드, 최소 완성도 점수, 길이 제약을 표현하는 값 객체.
FieldRef 는 코어 상품 필드명 또는 속성 코드이며 `attr:` 접두어는 속성 조회를 강제한다.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

ATTRIBUTE_PREFIX = "attr:"

CORE_FIELDS = (
    "name",
    "sku",
    "description",
    "short_description",
    "price",
    "stock",
    "status",
    "brand",
    "images",
    "category",
    "weight",
    "dimensions",
    "gtin",
    "mpn",
    "product_identifier",
    "meta_title",
    "meta_description",
    "meta_keywords",
    "url_key",
)

# 다른 시스템/화면에서 넘어오는 camelCase 표기
FIELD_ALIASES = {
    "shortDescription": "short_description",
    "stockQuantity": "stock",
    "categories": "category",
    "productIdentifier": "product_identifier",
    "metaTitle": "meta_title",
    "metaDescription": "meta_description",
    "metaKeywords": "meta_keywords",
    "urlKey": "url_key",
    "vendor": "brand",
    "media": "images",
}

_ATTRIBUTE_CODE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.\-]*$")

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


def normalize_field_ref(ref: str) -> str:
    ref = (ref or "").strip()
    if ref.startswith(ATTRIBUTE_PREFIX):
        return ATTRIBUTE_PREFIX + ref[len(ATTRIBUTE_PREFIX):].strip()
    return FIELD_ALIASES.get(ref, ref)


def is_attribute_ref(ref: str) -> bool:
    return ref.startswith(ATTRIBUTE_PREFIX) or ref not in CORE_FIELDS


def attribute_code(ref: str) -> str:
    if ref.startswith(ATTRIBUTE_PREFIX):
        return ref[len(ATTRIBUTE_PREFIX):]
    return ref


def is_known_field_ref(ref: str) -> bool:
    if ref in CORE_FIELDS:
        return True
    return bool(_ATTRIBUTE_CODE_RE.match(attribute_code(ref)))


def _dedupe(refs: Iterable[str]) -> Tuple[str, ...]:
    seen = []
    for ref in refs:
        normalized = normalize_field_ref(ref)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return tuple(seen)


@dataclass(frozen=True)
class FieldConstraint:
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    severity: str = SEVERITY_ERROR

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldConstraint":
        severity = str(data.get("severity") or SEVERITY_ERROR).lower()
        if severity not in (SEVERITY_ERROR, SEVERITY_WARNING):
            raise ValueError(f"Unknown constraint severity: {severity}")
        min_length = data.get("min_length")
        max_length = data.get("max_length")
        if min_length is not None and max_length is not None and int(min_length) > int(max_length):
            raise ValueError("min_length must not exceed max_length")
        return cls(
            min_length=int(min_length) if min_length is not None else None,
            max_length=int(max_length) if max_length is not None else None,
            severity=severity,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"severity": self.severity}
        if self.min_length is not None:
            data["min_length"] = self.min_length
        if self.max_length is not None:
            data["max_length"] = self.max_length
        return data


@dataclass(frozen=True)
class ChannelRequirementSet:
    channel_code: str
    channel_name: str
    required_fields: Tuple[str, ...] = ()
    recommended_fields: Tuple[str, ...] = ()
    min_completeness_score: int = 0
    family_code: Optional[str] = None
    field_constraints: Dict[str, FieldConstraint] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        channel_code: str,
        channel_name: Optional[str] = None,
        required_fields: Iterable[str] = (),
        recommended_fields: Iterable[str] = (),
        min_completeness_score: int = 0,
        family_code: Optional[str] = None,
        field_constraints: Optional[Dict[str, Any]] = None,
    ) -> "ChannelRequirementSet":
        """정규화 + 불변식 검사 후 생성 (위반 시 ValueError)"""
        required = _dedupe(required_fields)
        # 필수 필드는 권장 목록에서 제외
        recommended = tuple(r for r in _dedupe(recommended_fields) if r not in required)

        unknown = [r for r in required + recommended if not is_known_field_ref(r)]
        if unknown:
            raise ValueError(f"Unknown field refs: {', '.join(unknown)}")
        if not 0 <= int(min_completeness_score) <= 100:
            raise ValueError("min_completeness_score must be between 0 and 100")

        constraints = {}
        for ref, raw in (field_constraints or {}).items():
            normalized = normalize_field_ref(ref)
            if not is_known_field_ref(normalized):
                raise ValueError(f"Unknown field ref in constraints: {ref}")
            constraints[normalized] = raw if isinstance(raw, FieldConstraint) else FieldConstraint.from_dict(raw)

        return cls(
            channel_code=channel_code.strip().lower(),
            channel_name=channel_name or channel_code,
            required_fields=required,
            recommended_fields=recommended,
            min_completeness_score=int(min_completeness_score),
            family_code=family_code or None,
            field_constraints=constraints,
        )

    @classmethod
    def from_model(cls, row) -> "ChannelRequirementSet":
        return cls.build(
            channel_code=row.channel_code,
            channel_name=row.channel_name,
            required_fields=row.required_fields or [],
            recommended_fields=row.recommended_fields or [],
            min_completeness_score=row.min_completeness_score,
            family_code=row.family_code,
            field_constraints=row.field_constraints or {},
        )

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.channel_code, self.family_code)

    @property
    def relevant_fields(self) -> Tuple[str, ...]:
        return self.required_fields + self.recommended_fields + tuple(
            r for r in self.field_constraints if r not in self.required_fields + self.recommended_fields
        )

    def constraints_as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {ref: c.to_dict() for ref, c in self.field_constraints.items()}


@dataclass(frozen=True)
class CompletenessRuleDef:
    field: str
    label: str
    weight: int = 10
    is_required: bool = False
    is_active: bool = True
    category_id: Optional[str] = None

    def __post_init__(self):
        if self.weight < 0:
            raise ValueError("weight must be >= 0")

    @classmethod
    def from_model(cls, row) -> "CompletenessRuleDef":
        return cls(
            field=normalize_field_ref(row.field),
            label=row.label,
            weight=row.weight,
            is_required=row.is_required,
            is_active=row.is_active,
            category_id=row.category_id,
        )

    def applies_to(self, categories: Iterable[str]) -> bool:
        if not self.is_active:
            return False
        return self.category_id is None or self.category_id in set(categories)
