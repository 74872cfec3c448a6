"""
매핑 단위 상호 배제.

- 프로세스 내부: 매핑 ID 별 asyncio.Lock
- 프로세스 간: PostgreSQL advisory lock (sqlite 에서는 생략)
"""
import asyncio
import hashlib
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Dict

from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def advisory_lock_id(key: str) -> int:
    """안정적인 64비트 signed 정수 락 ID 생성 (Postgres bigint 호환)"""
    lock_id = int(hashlib.md5(key.encode()).hexdigest()[:16], 16)
    if lock_id > 0x7FFFFFFFFFFFFFFF:
        lock_id -= 0x10000000000000000
    return lock_id


def _is_postgres(session: Session) -> bool:
    bind = session.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


class MappingLocks:
    def __init__(self):
        self._locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def _local(self, mapping_id) -> asyncio.Lock:
        per_loop = self._locks.setdefault(asyncio.get_running_loop(), {})
        key = str(mapping_id)
        lock = per_loop.get(key)
        if lock is None:
            lock = asyncio.Lock()
            per_loop[key] = lock
        return lock

    def is_locked(self, mapping_id) -> bool:
        per_loop = self._locks.get(asyncio.get_running_loop(), {})
        lock = per_loop.get(str(mapping_id))
        return lock is not None and lock.locked()

    def _try_advisory(self, conn, lock_id: int) -> bool:
        try:
            result = conn.execute(text("SELECT pg_try_advisory_lock(:id)"), {"id": lock_id}).scalar()
            return bool(result)
        except Exception as e:
            logger.error(f"[LOCK] Failed to acquire advisory lock {lock_id}: {e}")
            return False

    def _release_advisory(self, conn, lock_id: int):
        try:
            conn.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": lock_id})
            conn.commit()
        except Exception as e:
            logger.error(f"[LOCK] Failed to release advisory lock {lock_id}: {e}")

    @asynccontextmanager
    async def hold(self, session: Session, mapping_id):
        """
        매핑 락 획득. 프로세스 내부 락은 대기하고, 다른 프로세스가 잡고 있으면 False 를 yield 한다.
        advisory lock 은 커넥션 단위이므로 세션 커밋과 무관한 전용 커넥션에서 잡는다.
        """
        async with self._local(mapping_id):
            if not _is_postgres(session):
                yield True
                return
            lock_id = advisory_lock_id(f"mapping:{mapping_id}")
            with session.get_bind().connect() as conn:
                if not self._try_advisory(conn, lock_id):
                    logger.warning(f"[LOCK] Mapping {mapping_id} is locked by another worker")
                    yield False
                    return
                try:
                    yield True
                finally:
                    self._release_advisory(conn, lock_id)


# 싱글톤 인스턴스
mapping_locks = MappingLocks()
