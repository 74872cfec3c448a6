import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from channel_sync.adapters.registry import adapter_registry
from channel_sync.db import get_session
from channel_sync.services.requirements.provider import rule_provider

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health(session: Session = Depends(get_session)):
    """
    DB 연결 상태와 규칙 리비전, 등록된 어댑터를 확인합니다.
    """
    db_ok = False
    revision = None
    try:
        session.execute(text("SELECT 1")).scalar_one()
        db_ok = True
        revision = rule_provider.snapshot(session).revision
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "ok" if db_ok else "unhealthy",
        "database": "ok" if db_ok else "error",
        "rules_revision": revision,
        "adapters": adapter_registry.list_available(),
    }
