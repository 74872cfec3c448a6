import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider, raise_http
from channel_sync.db import get_session
from channel_sync.models import ChannelAccount
from channel_sync.schemas.mapping import MappingCreateIn, MappingOut, SyncLogOut, SyncLogPage, SyncRequestIn
from channel_sync.services.exceptions import InvalidTransitionError, MappingNotFoundError
from channel_sync.services.mapping_store import MappingStore
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.sync_log import SyncLogWriter
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.types import SyncTrigger, TriggerSource

router = APIRouter()


def _get_mapping(session: Session, mapping_id: uuid.UUID):
    mapping = MappingStore(session).get(mapping_id)
    if mapping is None:
        raise HTTPException(status_code=404, detail=f"매핑을 찾을 수 없습니다: {mapping_id}")
    return mapping


@router.get("/status", response_model=list[MappingOut])
def get_mapping_status(
    product_id: str = Query(..., alias="productId"),
    channel_code: str = Query(..., alias="channelCode"),
    session: Session = Depends(get_session),
):
    """
    상품 × 채널의 현재 매핑(계정별 최신 generation) 상태를 조회합니다.
    """
    return MappingStore(session).get_status(product_id, channel_code.strip().lower())


@router.post("", response_model=MappingOut, status_code=201)
def create_mapping(payload: MappingCreateIn, session: Session = Depends(get_session)):
    account = session.get(ChannelAccount, payload.account_id)
    if account is None:
        raise HTTPException(status_code=404, detail=f"계정을 찾을 수 없습니다: {payload.account_id}")
    try:
        return MappingStore(session).create_mapping(
            account,
            payload.product_id,
            external_id=payload.external_id,
            external_attributes=payload.external_attributes,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{mapping_id}", response_model=MappingOut)
def get_mapping(mapping_id: uuid.UUID, session: Session = Depends(get_session)):
    return _get_mapping(session, mapping_id)


@router.post("/{mapping_id}/sync", response_model=SyncLogOut)
async def trigger_sync(
    mapping_id: uuid.UUID,
    payload: SyncRequestIn | None = None,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    매핑 1건 동기화. 결과는 항상 SyncLog 1건이며 실패 시 error_class / retryable 을 포함합니다.
    """
    payload = payload or SyncRequestIn()
    _get_mapping(session, mapping_id)
    trigger = SyncTrigger(
        source=TriggerSource.MANUAL,
        force=payload.force,
        direction=payload.direction,
        requested_by=payload.requested_by,
    )
    return await SyncOrchestrator(session, provider).run_sync(mapping_id, trigger)


@router.get("/{mapping_id}/logs", response_model=SyncLogPage)
def list_sync_logs(
    mapping_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
):
    _get_mapping(session, mapping_id)
    writer = SyncLogWriter(session)
    return SyncLogPage(
        total=writer.count_for_mapping(mapping_id),
        limit=limit,
        offset=offset,
        items=writer.list_for_mapping(mapping_id, limit=limit, offset=offset),
    )


@router.post("/{mapping_id}/cancel")
async def cancel_sync(
    mapping_id: uuid.UUID,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    _get_mapping(session, mapping_id)
    cancelled = await SyncOrchestrator(session, provider).cancel(mapping_id)
    return {"mapping_id": str(mapping_id), "cancelled": cancelled}


@router.post("/{mapping_id}/deactivate", response_model=MappingOut)
def deactivate_mapping(mapping_id: uuid.UUID, session: Session = Depends(get_session)):
    mapping = _get_mapping(session, mapping_id)
    try:
        return MappingStore(session).deactivate(mapping)
    except InvalidTransitionError as e:
        raise_http(e)


@router.post("/{mapping_id}/pause", response_model=MappingOut)
def pause_mapping(mapping_id: uuid.UUID, session: Session = Depends(get_session)):
    mapping = _get_mapping(session, mapping_id)
    try:
        return MappingStore(session).pause(mapping)
    except InvalidTransitionError as e:
        raise_http(e)


@router.post("/{mapping_id}/reactivate", response_model=MappingOut)
def reactivate_mapping(mapping_id: uuid.UUID, session: Session = Depends(get_session)):
    mapping = _get_mapping(session, mapping_id)
    try:
        return MappingStore(session).reactivate(mapping)
    except InvalidTransitionError as e:
        raise_http(e)


@router.post("/{mapping_id}/recreate", response_model=MappingOut, status_code=201)
def recreate_mapping(mapping_id: uuid.UUID, session: Session = Depends(get_session)):
    """종료된 매핑을 대체하는 새 generation 매핑을 만듭니다 (기존 이력은 그대로 보존)."""
    mapping = _get_mapping(session, mapping_id)
    try:
        return MappingStore(session).recreate(mapping)
    except InvalidTransitionError as e:
        raise_http(e)


@router.delete("/{mapping_id}/listing", response_model=SyncLogOut)
async def delete_listing(
    mapping_id: uuid.UUID,
    requested_by: str | None = Query(default=None, alias="requestedBy"),
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    try:
        return await SyncOrchestrator(session, provider).delete_listing(mapping_id, requested_by=requested_by)
    except (MappingNotFoundError, InvalidTransitionError) as e:
        raise_http(e)
