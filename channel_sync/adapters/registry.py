"""
채널 코드 → 어댑터 팩토리 레지스트리.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from channel_sync.adapters.base import ChannelAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[Any], ChannelAdapter]


class AdapterRegistry:
    def __init__(self):
        self._factories: Dict[str, AdapterFactory] = {}

    def register(self, channel_code: str, factory: AdapterFactory):
        code = channel_code.strip().lower()
        if code in self._factories:
            logger.warning(f"[ADAPTER] {code} already registered, replacing")
        self._factories[code] = factory
        logger.debug(f"[ADAPTER] Registered {code}")

    def unregister(self, channel_code: str):
        self._factories.pop(channel_code.strip().lower(), None)

    def create(self, channel_code: str, account: Any) -> Optional[ChannelAdapter]:
        """계정 단위 어댑터 인스턴스 생성. 미등록 채널이면 None."""
        factory = self._factories.get((channel_code or "").strip().lower())
        if factory is None:
            return None
        return factory(account)

    def is_available(self, channel_code: str) -> bool:
        return (channel_code or "").strip().lower() in self._factories

    def list_available(self) -> List[str]:
        return sorted(self._factories.keys())


def _load_default_adapters(registry: AdapterRegistry):
    from channel_sync.adapters.generic_rest import GenericRestChannelAdapter

    # 계정 credentials 에 base_url 이 있는 REST 형태 채널
    for code in ("woocommerce", "vtex", "generic"):
        registry.register(code, GenericRestChannelAdapter)


# 싱글톤 인스턴스
adapter_registry = AdapterRegistry()
_load_default_adapters(adapter_registry)
