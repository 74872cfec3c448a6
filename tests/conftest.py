"""Pytest configuration and fixtures."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from channel_sync.adapters.base import AdapterResult, ChannelAdapter, RemoteSnapshot
from channel_sync.adapters.registry import AdapterRegistry
from channel_sync.models import Base, ChannelAccount
from channel_sync.schemas.snapshot import AttributeValue, MediaItem, ProductSnapshot, SeoFields
from channel_sync.services.events import EventBus
from channel_sync.services.mapping_locks import MappingLocks
from channel_sync.services.product_provider import InMemoryProductProvider
from channel_sync.services.requirements.defaults import seed_defaults
from channel_sync.services.requirements.provider import RuleConfigProvider, rule_provider
from channel_sync.services.retry_policy import RetryPolicy
from channel_sync.services.throttle import ThrottleRegistry
from channel_sync.types import RemoteListingStatus


# 테스트용 메모리 SQLite 엔진 (여러 세션이 같은 DB 를 보도록 StaticPool)
TEST_DATABASE_URL = "sqlite://"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False  # 테스트 로그 줄이기
)

TestSessionLocal = sessionmaker(
    bind=test_engine,
    autoflush=False,
    expire_on_commit=False,
)

# 테스트 계정은 스로틀 대기가 없도록 넉넉하게
FAST_ACCOUNT_SETTINGS = {"rate_limit_per_second": 1000, "rate_limit_burst": 1000, "max_concurrency": 50}


def _patch_jsonb_to_json(base):
    """
    SQLite에서 JSONB를 JSON으로 변경하여 컴파일 오류 방지.
    테스트용으로만 사용.
    """
    from sqlalchemy.dialects.postgresql import JSONB

    for table in base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, JSONB):
                # JSONB → JSON으로 변경 (SQLite 호환)
                column.type = JSON()


@pytest.fixture(scope="function")
def test_session() -> Session:
    """
    테스트용 데이터베이스 세션 fixture.
    각 테스트마다 새로운 메모리 DB 생성.
    """
    _patch_jsonb_to_json(Base)
    Base.metadata.create_all(bind=test_engine)
    rule_provider.invalidate()

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # 모든 테이블 삭제
        Base.metadata.drop_all(bind=test_engine)
        rule_provider.invalidate()


@pytest.fixture(scope="function")
def db_session(test_session: Session):
    """test_session alias."""
    yield test_session


@pytest.fixture
def session_factory(test_session: Session):
    """배치/재시도 워커용 세션 팩토리 (같은 메모리 DB)"""
    return TestSessionLocal


@pytest.fixture
def seeded(test_session: Session) -> dict:
    """기본 채널 요구사항/완성도 규칙 적재"""
    return seed_defaults(test_session)


@pytest.fixture
def rules(seeded) -> RuleConfigProvider:
    return RuleConfigProvider(ttl_seconds=300)


def make_product(product_id: str = "P-1", **overrides) -> ProductSnapshot:
    """기본 규칙과 shopify/woocommerce 요구사항을 모두 충족하는 상품"""
    data = dict(
        id=product_id,
        sku=f"SKU-{product_id}",
        name="Organic Cotton T-Shirt",
        status="enabled",
        price=Decimal("29.90"),
        stock=12,
        brand="Acme",
        description="Soft organic cotton t-shirt with a relaxed fit, pre-shrunk and garment dyed.",
        short_description="Organic cotton tee",
        categories=["apparel"],
        media=[MediaItem(url="https://cdn.example.com/p1.jpg", position=0)],
        seo=SeoFields(meta_title="Organic Tee", meta_description="Organic cotton t-shirt", url_key="organic-tee"),
        attributes=[AttributeValue(code="product_type", value="T-Shirt")],
        weight=Decimal("0.2"),
        gtin="0123456789012",
    )
    data.update(overrides)
    return ProductSnapshot(**data)


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture
def products() -> InMemoryProductProvider:
    provider = InMemoryProductProvider()
    provider.put(make_product("P-1"))
    return provider


class FakeChannelAdapter(ChannelAdapter):
    """
    스크립트 가능한 테스트 어댑터.
    *_results 큐에 AdapterResult / RemoteSnapshot / Exception 을 넣으면 순서대로 소비한다.
    """
    channel_code = "fake"

    def __init__(self, account=None):
        super().__init__(account)
        self.push_results = []
        self.pull_results = []
        self.delete_results = []
        self.calls = []
        self.delay = 0.0
        self.started = asyncio.Event()
        self.release = None  # asyncio.Event 지정 시 push 가 대기
        self._counter = 0

    @staticmethod
    def _next(queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, BaseException):
            raise item
        return item

    async def push(self, mapping, snapshot):
        self.calls.append(("push", mapping.id))
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        self._counter += 1
        default = AdapterResult.ok(
            external_id=mapping.external_id or f"EXT-{mapping.product_id}",
            remote_marker=f"rev-{self._counter}",
            listing_status=RemoteListingStatus.ACTIVE,
            remote_state={"price": str(snapshot.price), "stock": snapshot.stock},
            request_payload={"title": snapshot.name},
            response_payload={"id": mapping.external_id or f"EXT-{mapping.product_id}"},
        )
        return self._next(self.push_results, default)

    async def pull(self, mapping):
        self.calls.append(("pull", mapping.id))
        if self.delay:
            await asyncio.sleep(self.delay)
        default = RemoteSnapshot(
            external_id=mapping.external_id,
            listing_status=RemoteListingStatus.ACTIVE,
            remote_marker=mapping.remote_marker,
            state=dict(mapping.remote_state or {}),
            payload={"id": mapping.external_id},
        )
        return self._next(self.pull_results, default)

    async def delete(self, mapping):
        self.calls.append(("delete", mapping.id))
        return self._next(self.delete_results, AdapterResult.ok(external_id=mapping.external_id))

    def count(self, kind: str) -> int:
        return sum(1 for c in self.calls if c[0] == kind)


@pytest.fixture
def fake_adapter() -> FakeChannelAdapter:
    return FakeChannelAdapter()


@pytest.fixture
def adapters(fake_adapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    for code in ("shopify", "woocommerce", "mercadolivre"):
        registry.register(code, lambda account: fake_adapter)
    return registry


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def orchestrator_kwargs(adapters, rules, event_bus) -> dict:
    return {
        "adapters": adapters,
        "rules": rules,
        "retry_policy": RetryPolicy(max_attempts=3, initial_delay=30, multiplier=2, max_delay=1800, jitter=0),
        "event_bus": event_bus,
        "locks": MappingLocks(),
        "throttle_registry": ThrottleRegistry(),
        "adapter_timeout": 5.0,
    }


def _make_account(session: Session, channel_code: str, name: str, direction: str) -> ChannelAccount:
    account = ChannelAccount(
        channel_code=channel_code,
        name=name,
        credentials={},
        sync_direction=direction,
        settings=dict(FAST_ACCOUNT_SETTINGS),
        is_active=True,
    )
    session.add(account)
    session.commit()
    return account


@pytest.fixture
def account(test_session: Session) -> ChannelAccount:
    return _make_account(test_session, "shopify", "main-store", "PIM_TO_CHANNEL")


@pytest.fixture
def bidirectional_account(test_session: Session) -> ChannelAccount:
    return _make_account(test_session, "shopify", "bidi-store", "BIDIRECTIONAL")


@pytest.fixture
def pull_account(test_session: Session) -> ChannelAccount:
    return _make_account(test_session, "shopify", "channel-master", "CHANNEL_TO_PIM")
