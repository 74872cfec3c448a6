import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider
from channel_sync.db import get_session
from channel_sync.models import CompletenessRule
from channel_sync.schemas.rules import (
    CompletenessEvaluationOut,
    CompletenessRuleIn,
    CompletenessRuleOut,
    CompletenessRuleUpdate,
    RuleEvaluationOut,
)
from channel_sync.services.completeness import CompletenessScorer
from channel_sync.services.product_provider import CatalogUnavailable, ProductSnapshotProvider
from channel_sync.services.requirements.catalog import CompletenessRuleDef
from channel_sync.services.requirements.provider import rule_provider

router = APIRouter()


@router.get("/rules", response_model=list[CompletenessRuleOut])
def list_rules(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    session: Session = Depends(get_session),
):
    stmt = select(CompletenessRule)
    if not include_inactive:
        stmt = stmt.where(CompletenessRule.is_active.is_(True))
    return session.scalars(stmt.order_by(CompletenessRule.field)).all()


@router.post("/rules", response_model=CompletenessRuleOut, status_code=201)
def create_rule(payload: CompletenessRuleIn, session: Session = Depends(get_session)):
    try:
        rule = CompletenessRuleDef(**payload.model_dump())
        return rule_provider.create_rule(session, rule)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/rules/{rule_id}", response_model=CompletenessRuleOut)
def update_rule(rule_id: uuid.UUID, payload: CompletenessRuleUpdate, session: Session = Depends(get_session)):
    try:
        row = rule_provider.update_rule(session, rule_id, **payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if row is None:
        raise HTTPException(status_code=404, detail=f"규칙을 찾을 수 없습니다: {rule_id}")
    return row


@router.delete("/rules/{rule_id}", status_code=204)
def delete_rule(rule_id: uuid.UUID, session: Session = Depends(get_session)):
    if not rule_provider.delete_rule(session, rule_id):
        raise HTTPException(status_code=404, detail=f"규칙을 찾을 수 없습니다: {rule_id}")


@router.get("/products/{product_id}", response_model=CompletenessEvaluationOut)
async def evaluate_product(
    product_id: str,
    channel_code: str | None = Query(default=None, alias="channelCode"),
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    상품 완성도 점수와 규칙별 충족 여부를 반환합니다.
    """
    try:
        product = await provider.get_product_snapshot(product_id)
    except CatalogUnavailable as e:
        raise HTTPException(status_code=503, detail=f"카탈로그 서비스에 연결할 수 없습니다: {e}")
    if product is None:
        raise HTTPException(status_code=404, detail=f"상품을 찾을 수 없습니다: {product_id}")

    rules = rule_provider.snapshot(session)
    evaluation = CompletenessScorer().evaluate(product, rules.rules, channel_code)
    return CompletenessEvaluationOut(
        product_id=product_id,
        channel_code=channel_code,
        score=evaluation.score,
        earned=evaluation.earned,
        total=evaluation.total,
        missing_required=evaluation.missing_required,
        rules=[RuleEvaluationOut(**asdict(r)) for r in evaluation.rules],
        rules_revision=rules.revision,
    )
