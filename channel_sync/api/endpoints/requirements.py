from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from channel_sync.db import get_session
from channel_sync.schemas.rules import RequirementSetIn, RequirementSetOut
from channel_sync.services.requirements.catalog import ChannelRequirementSet
from channel_sync.services.requirements.provider import get_rules_revision, rule_provider

router = APIRouter()


def _to_out(req_set: ChannelRequirementSet, revision: int | None = None) -> RequirementSetOut:
    return RequirementSetOut(
        channel_code=req_set.channel_code,
        channel_name=req_set.channel_name,
        family_code=req_set.family_code,
        required_fields=list(req_set.required_fields),
        recommended_fields=list(req_set.recommended_fields),
        min_completeness_score=req_set.min_completeness_score,
        field_constraints=req_set.constraints_as_dict(),
        rules_revision=revision,
    )


@router.get("", response_model=list[RequirementSetOut])
def list_requirement_sets(session: Session = Depends(get_session)):
    rules = rule_provider.snapshot(session)
    return [_to_out(s, rules.revision) for _, s in sorted(rules.requirement_sets.items(), key=lambda kv: (kv[0][0], kv[0][1] or ""))]


@router.get("/{channel_code}", response_model=RequirementSetOut)
def get_requirement_set(
    channel_code: str,
    family_code: str | None = Query(default=None, alias="familyCode"),
    session: Session = Depends(get_session),
):
    rules = rule_provider.snapshot(session)
    req_set = rules.requirement_for(channel_code, family_code)
    if req_set is None:
        raise HTTPException(status_code=404, detail=f"채널 요구사항이 설정되어 있지 않습니다: {channel_code}")
    return _to_out(req_set, rules.revision)


@router.put("/{channel_code}", response_model=RequirementSetOut)
def upsert_requirement_set(channel_code: str, payload: RequirementSetIn, session: Session = Depends(get_session)):
    """
    채널(또는 채널+상품군) 요구사항을 저장합니다. 저장 시 규칙 리비전이 올라가 캐시가 갱신됩니다.
    """
    try:
        req_set = ChannelRequirementSet.build(channel_code=channel_code, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    rule_provider.upsert_requirement_set(session, req_set)
    return _to_out(req_set, get_rules_revision(session))
