from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider
from channel_sync.db import get_session
from channel_sync.schemas.mapping import MappingOut, ProductChangeIn, SyncLogOut
from channel_sync.services.mapping_store import MappingStore
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.requirements.provider import rule_provider
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.types import SyncOperation, SyncTrigger, TriggerSource

router = APIRouter()


@router.post("/{product_id}/changes")
async def record_product_change(
    product_id: str,
    payload: ProductChangeIn,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    PIM 상품 변경 통지. 채널 요구 필드와 관련된 변경만 매핑의 local_version 을 올립니다.
    sync=true 이면 영향받은 매핑을 바로 동기화합니다.
    """
    rules = rule_provider.snapshot(session)
    touched = MappingStore(session).mark_local_change(
        product_id,
        changed_fields=payload.changed_fields or None,
        rules=rules,
        family_code=payload.family_code,
    )
    logs = []
    if payload.sync:
        orchestrator = SyncOrchestrator(session, provider)
        for mapping in touched:
            logs.append(await orchestrator.run_sync(
                mapping.id,
                SyncTrigger(source=TriggerSource.SYSTEM, operation=SyncOperation.INCREMENTAL_SYNC),
            ))
    return {
        "product_id": product_id,
        "mappings": [MappingOut.model_validate(m) for m in touched],
        "logs": [SyncLogOut.model_validate(log) for log in logs],
    }


@router.delete("/{product_id}/listings", response_model=list[SyncLogOut])
async def retire_product(
    product_id: str,
    requested_by: str | None = Query(default=None, alias="requestedBy"),
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """PIM 상품 삭제: 모든 채널 리스팅 삭제 후 매핑을 DELETED_IN_PIM 으로 종료합니다."""
    return await SyncOrchestrator(session, provider).retire_product(product_id, requested_by=requested_by)
