import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from channel_sync.api.deps import get_product_provider
from channel_sync.db import get_session
from channel_sync.schemas.webhook import WebhookEventIn, WebhookEventOut
from channel_sync.services.product_provider import ProductSnapshotProvider
from channel_sync.services.webhooks import WebhookService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{channel_code}", response_model=WebhookEventOut)
async def receive_webhook(
    channel_code: str,
    payload: WebhookEventIn,
    session: Session = Depends(get_session),
    provider: ProductSnapshotProvider = Depends(get_product_provider),
):
    """
    채널 웹훅 수신. 같은 event_id 재전송은 이전 처리 결과를 그대로 반환합니다.
    """
    record, duplicate = await WebhookService(session, provider).handle(channel_code.strip().lower(), payload)
    out = WebhookEventOut.model_validate(record)
    return out.model_copy(update={"duplicate": duplicate})
