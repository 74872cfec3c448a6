import logging
import os

from fastapi import FastAPI

from channel_sync.api.endpoints import (
    accounts,
    channel_validation,
    completeness,
    conflicts,
    health,
    mappings,
    products,
    requirements,
    webhooks,
)
from channel_sync.db import engine
from channel_sync.models import Base
from channel_sync.services.requirements.defaults import seed_defaults
from channel_sync.session_factory import session_factory
from channel_sync.settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="Channel Sync")

app.include_router(channel_validation.router, prefix="/api/channel-validation", tags=["Channel Validation"])
app.include_router(mappings.router, prefix="/api/mappings", tags=["Mappings"])
app.include_router(products.router, prefix="/api/products", tags=["Products"])
app.include_router(conflicts.router, prefix="/api/conflicts", tags=["Conflicts"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
app.include_router(completeness.router, prefix="/api/completeness", tags=["Completeness"])
app.include_router(requirements.router, prefix="/api/requirements", tags=["Requirements"])
app.include_router(accounts.router, prefix="/api/accounts", tags=["Accounts"])
app.include_router(health.router, tags=["Health"])


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip() in ("1", "true", "TRUE", "yes", "YES")


@app.on_event("startup")
def on_startup() -> None:
    # 스키마는 Alembic 으로 관리하며, 로컬 sqlite 개발 환경에서만 자동 생성
    if _env_flag("DB_AUTO_CREATE_TABLES") or settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)

    if _env_flag("SEED_DEFAULT_RULES"):
        with session_factory() as session:
            result = seed_defaults(session)
            logger.info(f"[RULES] Default rules seeded: {result}")
