from sqlalchemy.orm import Session

from channel_sync.db import SessionLocal


def session_factory() -> Session:
    return SessionLocal()
