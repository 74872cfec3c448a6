import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider
from channel_sync.db import get_session
from channel_sync.schemas.validation import (
    BulkValidationItem,
    BulkValidationRequest,
    BulkValidationResponse,
    ChannelInfo,
    ChannelValidationResult,
    ProductValidationResponse,
)
from channel_sync.services.channel_validation import ChannelValidator
from channel_sync.services.product_provider import CatalogUnavailable, ProductSnapshotProvider
from channel_sync.services.requirements.provider import rule_provider

router = APIRouter()
logger = logging.getLogger(__name__)

_BULK_CONCURRENCY = 10


async def _load_product(provider: ProductSnapshotProvider, product_id: str):
    try:
        product = await provider.get_product_snapshot(product_id)
    except CatalogUnavailable as e:
        raise HTTPException(status_code=503, detail=f"카탈로그 서비스에 연결할 수 없습니다: {e}")
    if product is None:
        raise HTTPException(status_code=404, detail=f"상품을 찾을 수 없습니다: {product_id}")
    return product


@router.get("/products/{product_id}", response_model=ProductValidationResponse)
async def validate_product_all_channels(
    product_id: str,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    설정된 모든 채널에 대해 발행 준비 상태를 검증합니다.
    """
    product = await _load_product(provider, product_id)
    rules = rule_provider.snapshot(session)
    results = ChannelValidator().validate_for_all_channels(product, rules)
    return ProductValidationResponse(product_id=product_id, results=results)


@router.get("/products/{product_id}/channels/{channel_code}", response_model=ChannelValidationResult)
async def validate_product_for_channel(
    product_id: str,
    channel_code: str,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    channel_code = channel_code.strip().lower()
    product = await _load_product(provider, product_id)
    rules = rule_provider.snapshot(session)
    return ChannelValidator().validate_with_snapshot(product, channel_code, rules)


@router.post("/bulk/channels/{channel_code}", response_model=BulkValidationResponse)
async def validate_bulk(
    channel_code: str,
    payload: BulkValidationRequest,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    여러 상품을 한 채널에 대해 검증합니다. 상품별 오류는 항목 단위로 보고합니다.
    """
    channel_code = channel_code.strip().lower()
    rules = rule_provider.snapshot(session)
    validator = ChannelValidator()
    semaphore = asyncio.Semaphore(_BULK_CONCURRENCY)

    async def _one(product_id: str) -> BulkValidationItem:
        async with semaphore:
            try:
                product = await provider.get_product_snapshot(product_id)
            except CatalogUnavailable as e:
                return BulkValidationItem(product_id=product_id, error=str(e))
        if product is None:
            return BulkValidationItem(product_id=product_id, error="product not found")
        return BulkValidationItem(product_id=product_id, result=validator.validate_with_snapshot(product, channel_code, rules))

    items = await asyncio.gather(*(_one(pid) for pid in payload.product_ids))
    valid = sum(1 for item in items if item.result is not None and item.result.is_valid)
    return BulkValidationResponse(
        channel_code=channel_code,
        total=len(items),
        valid=valid,
        invalid=len(items) - valid,
        items=list(items),
    )


@router.get("/channels", response_model=list[ChannelInfo])
def list_channels(session: Session = Depends(get_session)):
    rules = rule_provider.snapshot(session)
    channels = []
    for (code, family_code), req_set in sorted(rules.requirement_sets.items(), key=lambda kv: (kv[0][0], kv[0][1] or "")):
        channels.append(ChannelInfo(
            channel_code=code,
            channel_name=req_set.channel_name,
            family_code=family_code,
            min_completeness_score=req_set.min_completeness_score,
            required_fields=list(req_set.required_fields),
            recommended_fields=list(req_set.recommended_fields),
        ))
    return channels
