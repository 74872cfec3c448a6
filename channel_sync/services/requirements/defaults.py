"""
기본 채널 요구사항 / 완성도 규칙 시드 데이터.

코드에 고정된 로직이 아니라 부트스트랩 시 DB 에 적재되는 초기값이다.
운영 중 변경은 /api/requirements, /api/completeness 를 통해 한다.
"""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from channel_sync.models import ChannelRequirement, CompletenessRule
from channel_sync.services.requirements.provider import bump_rules_revision

logger = logging.getLogger(__name__)


DEFAULT_CHANNEL_REQUIREMENTS = [
    {
        "channel_code": "mercadolivre",
        "channel_name": "Mercado Livre",
        "required_fields": ["name", "price", "stock", "images"],
        "recommended_fields": ["description", "brand", "attr:ml_category_id", "attr:warranty", "weight", "dimensions", "gtin"],
        "min_completeness_score": 70,
        "field_constraints": {
            "name": {"min_length": 5, "max_length": 60, "severity": "warning"},
            "description": {"min_length": 50, "severity": "warning"},
        },
    },
    {
        "channel_code": "amazon",
        "channel_name": "Amazon",
        "required_fields": ["name", "price", "brand", "product_identifier", "images"],
        "recommended_fields": ["description", "attr:bullet_points", "attr:search_terms", "category"],
        "min_completeness_score": 80,
        "field_constraints": {
            "name": {"min_length": 10, "max_length": 200},
            "description": {"min_length": 150, "severity": "warning"},
        },
    },
    {
        "channel_code": "shopify",
        "channel_name": "Shopify",
        "required_fields": ["name"],
        "recommended_fields": ["description", "brand", "attr:product_type", "url_key", "meta_title", "meta_description", "weight"],
        "min_completeness_score": 50,
        "field_constraints": {
            "name": {"max_length": 255},
        },
    },
    {
        "channel_code": "google_shopping",
        "channel_name": "Google Shopping",
        "required_fields": ["name", "description", "price", "stock", "brand", "product_identifier", "attr:google_category", "images"],
        "recommended_fields": ["attr:condition", "attr:color", "attr:size", "attr:gender", "attr:age_group", "mpn"],
        "min_completeness_score": 80,
        "field_constraints": {
            "name": {"min_length": 3, "max_length": 150},
            "description": {"max_length": 5000},
        },
    },
    {
        "channel_code": "woocommerce",
        "channel_name": "WooCommerce",
        "required_fields": ["name", "sku"],
        "recommended_fields": ["description", "short_description", "category"],
        "min_completeness_score": 50,
        "field_constraints": {},
    },
    {
        "channel_code": "vtex",
        "channel_name": "VTEX",
        "required_fields": ["name", "brand", "category"],
        "recommended_fields": ["description", "meta_title", "meta_description"],
        "min_completeness_score": 60,
        "field_constraints": {
            "name": {"max_length": 150},
        },
    },
]

DEFAULT_COMPLETENESS_RULES = [
    {"field": "name", "label": "Product Name", "is_required": True, "weight": 15},
    {"field": "description", "label": "Description", "is_required": True, "weight": 15},
    {"field": "short_description", "label": "Short Description", "is_required": False, "weight": 5},
    {"field": "price", "label": "Price", "is_required": True, "weight": 15},
    {"field": "images", "label": "Images", "is_required": True, "weight": 20},
    {"field": "category", "label": "Category", "is_required": True, "weight": 10},
    {"field": "brand", "label": "Brand", "is_required": False, "weight": 5},
    {"field": "weight", "label": "Weight", "is_required": False, "weight": 5},
    {"field": "meta_title", "label": "Meta Title", "is_required": False, "weight": 5},
    {"field": "meta_description", "label": "Meta Description", "is_required": False, "weight": 5},
]


def seed_defaults(session: Session, overwrite: bool = False) -> dict:
    """
    기본 요구사항/규칙을 적재합니다.
    이미 존재하는 채널 기본값은 overwrite=True 일 때만 덮어씁니다.
    """
    created_requirements = 0
    created_rules = 0

    for entry in DEFAULT_CHANNEL_REQUIREMENTS:
        row = session.execute(
            select(ChannelRequirement)
            .where(ChannelRequirement.channel_code == entry["channel_code"])
            .where(ChannelRequirement.family_code.is_(None))
        ).scalars().first()
        if row is not None and not overwrite:
            continue
        if row is None:
            row = ChannelRequirement(channel_code=entry["channel_code"], family_code=None)
            session.add(row)
            created_requirements += 1
        row.channel_name = entry["channel_name"]
        row.required_fields = list(entry["required_fields"])
        row.recommended_fields = list(entry["recommended_fields"])
        row.min_completeness_score = entry["min_completeness_score"]
        row.field_constraints = dict(entry["field_constraints"])
        row.is_active = True

    has_rules = session.execute(select(CompletenessRule.id).limit(1)).first() is not None
    if not has_rules:
        for rule in DEFAULT_COMPLETENESS_RULES:
            session.add(CompletenessRule(category_id=None, is_active=True, **rule))
            created_rules += 1

    revision = bump_rules_revision(session)
    session.commit()
    logger.info(
        f"[RULES] Seeded defaults: requirements={created_requirements}, rules={created_rules}, revision={revision}"
    )
    return {"requirements": created_requirements, "rules": created_rules, "revision": revision}
