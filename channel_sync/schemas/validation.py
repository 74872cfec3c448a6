from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from channel_sync.types import IssueType


class FieldIssue(BaseModel):
    field: str
    message: str
    type: IssueType

    model_config = ConfigDict(frozen=True)


class ChannelValidationResult(BaseModel):
    """채널 발행 준비 검증 결과 (저장하지 않고 매번 재계산)"""
    channel_code: str
    channel_name: str
    is_valid: bool
    score: int = Field(ge=0, le=100)
    errors: List[FieldIssue] = Field(default_factory=list)
    warnings: List[FieldIssue] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    required_fields: List[str] = Field(default_factory=list)
    recommended_fields: List[str] = Field(default_factory=list)
    min_completeness_score: Optional[int] = None
    needs_configuration: bool = False
    rules_revision: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class ProductValidationResponse(BaseModel):
    product_id: str
    results: Dict[str, ChannelValidationResult]


class BulkValidationRequest(BaseModel):
    product_ids: List[str] = Field(min_length=1, max_length=500)


class BulkValidationItem(BaseModel):
    product_id: str
    result: Optional[ChannelValidationResult] = None
    error: Optional[str] = None


class BulkValidationResponse(BaseModel):
    channel_code: str
    total: int
    valid: int
    invalid: int
    items: List[BulkValidationItem]


class ChannelInfo(BaseModel):
    channel_code: str
    channel_name: str
    family_code: Optional[str] = None
    min_completeness_score: int
    required_fields: List[str]
    recommended_fields: List[str]
