import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider, raise_http
from channel_sync.db import get_session
from channel_sync.models import SyncConflict
from channel_sync.schemas.mapping import ConflictOut, ConflictResolveIn, ConflictResolveOut
from channel_sync.services.exceptions import MappingNotFoundError
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.sync_orchestrator import SyncOrchestrator
from channel_sync.types import ConflictStatus

router = APIRouter()


@router.get("", response_model=list[ConflictOut])
def list_conflicts(
    status: str | None = Query(default=ConflictStatus.PENDING.value),
    mapping_id: uuid.UUID | None = Query(default=None, alias="mappingId"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
):
    stmt = select(SyncConflict)
    if status:
        stmt = stmt.where(SyncConflict.status == status.upper())
    if mapping_id:
        stmt = stmt.where(SyncConflict.mapping_id == mapping_id)
    stmt = stmt.order_by(SyncConflict.created_at.desc()).offset(offset).limit(limit)
    return session.scalars(stmt).all()


@router.get("/{conflict_id}", response_model=ConflictOut)
def get_conflict(conflict_id: uuid.UUID, session: Session = Depends(get_session)):
    conflict = session.get(SyncConflict, conflict_id)
    if conflict is None:
        raise HTTPException(status_code=404, detail=f"충돌 기록을 찾을 수 없습니다: {conflict_id}")
    return conflict


@router.post("/{conflict_id}/resolve", response_model=ConflictResolveOut)
async def resolve_conflict(
    conflict_id: uuid.UUID,
    payload: ConflictResolveIn,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    운영자 충돌 해결. 선택한 방향(PUSH/PULL)으로 강제 동기화를 실행합니다.
    """
    try:
        conflict, log = await SyncOrchestrator(session, provider).resolve_conflict(
            conflict_id, payload.resolution, resolved_by=payload.resolved_by
        )
    except MappingNotFoundError as e:
        raise_http(e)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ConflictResolveOut(conflict=ConflictOut.model_validate(conflict), log=log)


@router.post("/{conflict_id}/dismiss", response_model=ConflictOut)
def dismiss_conflict(
    conflict_id: uuid.UUID,
    resolved_by: str | None = Query(default=None, alias="resolvedBy"),
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    try:
        return SyncOrchestrator(session, provider).dismiss_conflict(conflict_id, resolved_by=resolved_by)
    except MappingNotFoundError as e:
        raise_http(e)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
