import uuid
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider, get_session_factory
from channel_sync.db import get_session
from channel_sync.models import ChannelAccount
from channel_sync.schemas.mapping import AccountIn, AccountOut, SyncLogOut
from channel_sync.services.batch_sync import BatchSyncRunner
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.types import SyncDirection, SyncTrigger, TriggerSource

router = APIRouter()


@router.get("", response_model=list[AccountOut])
def list_accounts(session: Session = Depends(get_session)):
    return session.scalars(select(ChannelAccount).order_by(ChannelAccount.channel_code, ChannelAccount.name)).all()


@router.post("", response_model=AccountOut, status_code=201)
def create_account(payload: AccountIn, session: Session = Depends(get_session)):
    try:
        direction = SyncDirection(payload.sync_direction.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"알 수 없는 동기화 방향입니다: {payload.sync_direction}")
    account = ChannelAccount(
        channel_code=payload.channel_code.strip().lower(),
        name=payload.name,
        credentials=payload.credentials,
        sync_direction=direction.value,
        settings=payload.settings,
        is_active=payload.is_active,
    )
    session.add(account)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"이미 존재하는 계정입니다: {payload.channel_code}/{payload.name}")
    return account


@router.post("/{account_id}/sync", response_model=SyncLogOut)
async def sync_account(
    account_id: uuid.UUID,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
    factory: Callable = Depends(get_session_factory),
):
    """
    계정의 모든 매핑을 동기화합니다. 결과는 배치 집계 로그(mapping_id 없음)입니다.
    """
    if session.get(ChannelAccount, account_id) is None:
        raise HTTPException(status_code=404, detail=f"계정을 찾을 수 없습니다: {account_id}")
    runner = BatchSyncRunner(provider, session_factory=factory)
    return await runner.run_account(account_id, SyncTrigger(source=TriggerSource.BATCH, requested_by="api"))
