"""
완성도 규칙 / 채널 요구사항 관리 스키마.
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class CompletenessRuleIn(BaseModel):
    field: str = Field(min_length=1)
    label: str = Field(min_length=1)
    weight: int = Field(default=10, ge=0)
    is_required: bool = False
    is_active: bool = True
    category_id: str | None = None


class CompletenessRuleUpdate(BaseModel):
    field: str | None = None
    label: str | None = None
    weight: int | None = Field(default=None, ge=0)
    is_required: bool | None = None
    is_active: bool | None = None
    category_id: str | None = None


class CompletenessRuleOut(BaseModel):
    id: uuid.UUID
    field: str
    label: str
    weight: int
    is_required: bool
    is_active: bool
    category_id: str | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class RuleEvaluationOut(BaseModel):
    field: str
    label: str
    is_required: bool
    is_filled: bool
    weight: int


class CompletenessEvaluationOut(BaseModel):
    product_id: str
    channel_code: str | None = None
    score: int
    earned: int
    total: int
    missing_required: list[str]
    rules: list[RuleEvaluationOut]
    rules_revision: int


class RequirementSetIn(BaseModel):
    channel_name: str | None = None
    family_code: str | None = None
    required_fields: list[str] = Field(default_factory=list)
    recommended_fields: list[str] = Field(default_factory=list)
    min_completeness_score: int = Field(default=0, ge=0, le=100)
    field_constraints: dict = Field(default_factory=dict)


class RequirementSetOut(BaseModel):
    channel_code: str
    channel_name: str
    family_code: str | None
    required_fields: list[str]
    recommended_fields: list[str]
    min_completeness_score: int
    field_constraints: dict
    rules_revision: int | None = None
