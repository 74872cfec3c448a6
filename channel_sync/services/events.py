import logging
import asyncio
from typing import Callable, Dict, List, Any

logger = logging.getLogger(__name__)

MAPPING_STATUS_CHANGED = "mapping.status_changed"
MAPPING_PULLED = "mapping.pulled"
SYNC_CONFLICT = "sync.conflict"


class EventBus:
    """
    동기화 엔진의 다운스트림 통지용 경량 이벤트 버스.
    엔티티 리스너 대신 오케스트레이터가 명시적으로 발행한다.
    """
    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, handler: Callable):
        """이벤트 구독 등록"""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"[EVENT] Subscribed to {event_type}")

    def unsubscribe(self, event_type: str, handler: Callable):
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event_type: str, data: Any):
        """이벤트 발행 (핸들러 오류는 발행자에게 전파하지 않음)"""
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return
        logger.info(f"[EVENT] Publishing {event_type} to {len(handlers)} handler(s)")

        tasks = []
        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    tasks.append(handler(data))
                else:
                    handler(data)
            except Exception as e:
                logger.error(f"[EVENT] Error in handler for {event_type}: {e}")

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for res in results:
                if isinstance(res, Exception):
                    logger.error(f"[EVENT] Exception in async handler for {event_type}: {res}")


# 싱글톤 인스턴스
bus = EventBus()
