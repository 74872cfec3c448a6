"""
API 엔드포인트 테스트 (TestClient + 의존성 오버라이드)
"""
import pytest
from fastapi.testclient import TestClient

from channel_sync.adapters.registry import adapter_registry
from channel_sync.api.deps import get_product_provider, get_session_factory
from channel_sync.db import get_session
from channel_sync.main import app
from channel_sync.schemas.snapshot import AttributeValue

FAST_SETTINGS = {"rate_limit_per_second": 1000, "rate_limit_burst": 1000, "max_concurrency": 50}


@pytest.fixture
def client(test_session, seeded, products, session_factory, fake_adapter):
    def override_get_session():
        yield test_session
        test_session.commit()

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_product_provider] = lambda: products
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    adapter_registry.register("shopify", lambda account: fake_adapter)
    try:
        # startup 이벤트(테이블 생성)는 실행하지 않도록 with 블록 없이 사용
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        adapter_registry.unregister("shopify")


def _create_account(client, name="main-store", direction="PIM_TO_CHANNEL"):
    response = client.post("/api/accounts", json={
        "channel_code": "Shopify",
        "name": name,
        "sync_direction": direction,
        "settings": FAST_SETTINGS,
    })
    assert response.status_code == 201, response.text
    return response.json()


def _create_mapping(client, account_id, product_id="P-1"):
    response = client.post("/api/mappings", json={"account_id": account_id, "product_id": product_id})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
class TestHealthAndAccounts:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["rules_revision"] >= 1
        assert "shopify" in body["adapters"]
        assert "woocommerce" in body["adapters"]

    def test_create_and_list_accounts(self, client):
        account = _create_account(client)

        assert account["channel_code"] == "shopify"
        assert account["sync_direction"] == "PIM_TO_CHANNEL"
        assert [a["id"] for a in client.get("/api/accounts").json()] == [account["id"]]

    def test_duplicate_account(self, client):
        _create_account(client)
        response = client.post("/api/accounts", json={"channel_code": "shopify", "name": "main-store"})
        assert response.status_code == 409

    def test_invalid_direction(self, client):
        response = client.post("/api/accounts", json={
            "channel_code": "shopify", "name": "x", "sync_direction": "SIDEWAYS",
        })
        assert response.status_code == 400

    def test_account_batch_sync(self, client, products, product_factory):
        products.put(product_factory("P-2"))
        account = _create_account(client)
        _create_mapping(client, account["id"], "P-1")
        _create_mapping(client, account["id"], "P-2")

        response = client.post(f"/api/accounts/{account['id']}/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["mapping_id"] is None
        assert body["status"] == "SUCCESS"
        assert body["items_processed"] == 2
        assert body["items_created"] == 2


@pytest.mark.integration
class TestMappingEndpoints:
    def test_create_sync_and_read_status(self, client, fake_adapter):
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"])
        assert mapping["status"] == "PENDING_SYNC"
        assert mapping["generation"] == 1

        response = client.post(f"/api/mappings/{mapping['id']}/sync", json={"requested_by": "ops"})

        assert response.status_code == 200
        log = response.json()
        assert log["status"] == "SUCCESS"
        assert log["operation"] == "MANUAL_PUSH"
        assert log["triggered_by"] == "ops"
        assert fake_adapter.count("push") == 1

        status = client.get("/api/mappings/status", params={"productId": "P-1", "channelCode": "SHOPIFY"}).json()
        assert len(status) == 1
        assert status[0]["status"] == "ACTIVE"
        assert status[0]["external_id"] == "EXT-P-1"

        logs = client.get(f"/api/mappings/{mapping['id']}/logs").json()
        assert logs["total"] == 1
        assert logs["items"][0]["id"] == log["id"]

    def test_duplicate_mapping(self, client):
        account = _create_account(client)
        _create_mapping(client, account["id"])
        response = client.post("/api/mappings", json={"account_id": account["id"], "product_id": "P-1"})
        assert response.status_code == 409

    def test_sync_rejected_product(self, client, products, product_factory):
        products.put(product_factory("P-5", name=""))
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"], "P-5")

        log = client.post(f"/api/mappings/{mapping['id']}/sync").json()

        assert log["status"] == "REJECTED"
        assert log["error_class"] == "VALIDATION_FAILURE"
        assert log["retryable"] is False

    def test_unknown_mapping(self, client):
        response = client.post("/api/mappings/00000000-0000-0000-0000-000000000000/sync")
        assert response.status_code == 404

    def test_pause_reactivate_and_invalid_transition(self, client):
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"])

        assert client.post(f"/api/mappings/{mapping['id']}/pause").json()["status"] == "PAUSED"
        # PAUSED → INACTIVE 는 허용되지 않음
        assert client.post(f"/api/mappings/{mapping['id']}/deactivate").status_code == 409
        assert client.post(f"/api/mappings/{mapping['id']}/reactivate").json()["status"] == "PENDING_SYNC"

    def test_delete_listing_and_recreate(self, client):
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"])
        client.post(f"/api/mappings/{mapping['id']}/sync")

        log = client.delete(f"/api/mappings/{mapping['id']}/listing").json()
        assert log["status"] == "SUCCESS"
        assert client.get(f"/api/mappings/{mapping['id']}").json()["status"] == "DELETED_IN_CHANNEL"

        recreated = client.post(f"/api/mappings/{mapping['id']}/recreate")
        assert recreated.status_code == 201
        assert recreated.json()["generation"] == 2
        assert client.delete(f"/api/mappings/{mapping['id']}/listing").status_code == 409

    def test_cancel_when_idle(self, client):
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"])

        assert client.post(f"/api/mappings/{mapping['id']}/cancel").json()["cancelled"] is False


@pytest.mark.integration
class TestProductEndpoints:
    def test_change_notification_with_sync(self, client, fake_adapter):
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"])
        client.post(f"/api/mappings/{mapping['id']}/sync")

        body = client.post("/api/products/P-1/changes", json={"changed_fields": ["price"], "sync": True}).json()

        assert [m["local_version"] for m in body["mappings"]] == [2]
        assert body["logs"][0]["status"] == "SUCCESS"
        assert body["logs"][0]["operation"] == "INCREMENTAL_SYNC"
        assert fake_adapter.count("push") == 2

    def test_irrelevant_change_is_ignored(self, client):
        account = _create_account(client)
        _create_mapping(client, account["id"])

        body = client.post("/api/products/P-1/changes", json={"changed_fields": ["attr:internal_note"]}).json()

        assert body["mappings"] == []

    def test_retire_product(self, client, fake_adapter):
        account = _create_account(client)
        mapping = _create_mapping(client, account["id"])
        client.post(f"/api/mappings/{mapping['id']}/sync")

        logs = client.delete("/api/products/P-1/listings", params={"requestedBy": "pim"}).json()

        assert [log["operation"] for log in logs] == ["DELETE"]
        assert client.get(f"/api/mappings/{mapping['id']}").json()["status"] == "DELETED_IN_PIM"
        assert fake_adapter.count("delete") == 1


@pytest.mark.integration
class TestValidationEndpoints:
    def test_validate_all_channels(self, client):
        body = client.get("/api/channel-validation/products/P-1").json()

        assert body["product_id"] == "P-1"
        assert body["results"]["shopify"]["is_valid"] is True
        assert body["results"]["shopify"]["score"] == 100

    def test_validate_single_channel_missing_fields(self, client, products, product_factory):
        products.put(product_factory("P-6", price=None, media=[]))

        body = client.get("/api/channel-validation/products/P-6/channels/mercadolivre").json()

        assert body["is_valid"] is False
        assert body["missing_fields"] == ["price", "images"]

    def test_channel_code_is_normalized(self, client, products, product_factory):
        products.put(product_factory("P-7", attributes=[
            AttributeValue(code="product_type", value="T-Shirt", channel="shopify"),
        ]))

        body = client.get("/api/channel-validation/products/P-7/channels/Shopify").json()
        bulk = client.post("/api/channel-validation/bulk/channels/SHOPIFY", json={"product_ids": ["P-7"]}).json()

        assert body["channel_code"] == "shopify"
        assert body["is_valid"] is True
        assert bulk["channel_code"] == "shopify"
        assert bulk["items"][0]["result"]["channel_code"] == "shopify"

    def test_unconfigured_channel(self, client):
        body = client.get("/api/channel-validation/products/P-1/channels/etsy").json()

        assert body["is_valid"] is False
        assert body["needs_configuration"] is True

    def test_unknown_product(self, client):
        assert client.get("/api/channel-validation/products/P-404").status_code == 404

    def test_bulk(self, client):
        body = client.post("/api/channel-validation/bulk/channels/shopify", json={"product_ids": ["P-1", "P-404"]}).json()

        assert body["total"] == 2
        assert body["valid"] == 1
        assert body["items"][1]["error"] == "product not found"

    def test_list_channels(self, client):
        codes = [c["channel_code"] for c in client.get("/api/channel-validation/channels").json()]
        assert "shopify" in codes
        assert codes == sorted(codes)


@pytest.mark.integration
class TestRuleEndpoints:
    def test_requirement_update_applies_immediately(self, client):
        before = client.get("/api/requirements/shopify").json()

        response = client.put("/api/requirements/shopify", json={
            "channel_name": "Shopify",
            "required_fields": ["name", "attr:material"],
            "min_completeness_score": 60,
        })

        assert response.status_code == 200
        assert response.json()["rules_revision"] == before["rules_revision"] + 1
        result = client.get("/api/channel-validation/products/P-1/channels/shopify").json()
        assert result["missing_fields"] == ["attr:material"]
        assert result["rules_revision"] == before["rules_revision"] + 1

    def test_invalid_requirement(self, client):
        response = client.put("/api/requirements/shopify", json={"required_fields": ["attr:bad code!"]})
        assert response.status_code == 400

    def test_unknown_requirement(self, client):
        assert client.get("/api/requirements/etsy").status_code == 404

    def test_completeness_rules_crud(self, client):
        assert len(client.get("/api/completeness/rules").json()) == 10

        created = client.post("/api/completeness/rules", json={"field": "attr:material", "label": "Material", "weight": 10})
        assert created.status_code == 201
        rule_id = created.json()["id"]

        evaluation = client.get("/api/completeness/products/P-1").json()
        assert evaluation["total"] == 110
        assert evaluation["score"] == 91

        assert client.patch(f"/api/completeness/rules/{rule_id}", json={"weight": -1}).status_code == 422
        assert client.delete(f"/api/completeness/rules/{rule_id}").status_code == 204
        assert client.get("/api/completeness/products/P-1").json()["score"] == 100


@pytest.mark.integration
class TestWebhookAndConflictEndpoints:
    def test_webhook_dedupe(self, client):
        event = {"event_id": "evt-1", "event_type": "PRICE_CHANGED", "external_id": "UNKNOWN"}

        first = client.post("/api/webhooks/Shopify", json=event).json()
        second = client.post("/api/webhooks/shopify", json=event).json()

        assert first["status"] == "IGNORED"
        assert first["duplicate"] is False
        assert second["duplicate"] is True
        assert second["id"] == first["id"]

    def test_conflict_listing_and_missing(self, client):
        assert client.get("/api/conflicts").json() == []
        missing = "00000000-0000-0000-0000-000000000000"
        assert client.get(f"/api/conflicts/{missing}").status_code == 404
        assert client.post(f"/api/conflicts/{missing}/resolve", json={"resolution": "PUSH"}).status_code == 404
