"""Integration tests for API endpoints"""

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from revenue_attestor.api.dependencies import build_provider_client, get_attestation_service, get_provider_factory
from revenue_attestor.api.v1.schemas import ProviderConnection
from revenue_attestor.attestation.canonical import hash_attestation, keccak256_hex
from revenue_attestor.domain.exceptions import UnknownProviderError
from revenue_attestor.infrastructure.providers.shopify import ShopifyClient
from revenue_attestor.infrastructure.providers.stripe import StripeClient
from revenue_attestor.infrastructure.providers.woocommerce import WooCommerceClient
from revenue_attestor.services.attestation import AttestationService

from tests.helpers import NOW, load_fixture

pytestmark = pytest.mark.integration

MERCHANT = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"


def stripe_handler(request: httpx.Request) -> httpx.Response:
    records = load_fixture("stripe_records.json")
    kind = "refund" if request.url.path == "/v1/refunds" else "charge"
    data = [r for r in records if r.get("object") == kind]
    return httpx.Response(200, json={"object": "list", "data": data, "has_more": False})


def use_transport(app: FastAPI, handler) -> None:
    """Route every adapter the API builds through a mock transport, on a fixed clock"""

    def factory(connection: ProviderConnection):
        client = build_provider_client(connection)
        client.transport = httpx.MockTransport(handler)
        return client

    app.dependency_overrides[get_provider_factory] = lambda: factory
    app.dependency_overrides[get_attestation_service] = lambda: AttestationService(clock=lambda: NOW)


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "revenue-attestor"}
    assert "X-Request-ID" in response.headers


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "provider_pages_fetched_total" in response.text
    assert "attestations_built_total" in response.text


def test_kpis_endpoint(app: FastAPI, client: TestClient):
    """Test POST /v1/kpis renders decimals as strings with feed metadata"""
    use_transport(app, stripe_handler)

    response = client.post(
        "/v1/kpis",
        json={"provider": "stripe", "credential": "sk_test", "timezone": "UTC", "window_days": 30},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["gross_sales"] == "165.50"
    assert data["refunds"] == "25.50"
    assert data["net_sales"] == "140.00"
    assert data["orders_count"] == 2
    assert data["chargebacks"] == 1
    assert data["currency"] == "USD"
    assert data["window_end"] == "2024-06-30T12:00:00.000Z"
    assert data["feeds"] == [
        {"provider": "stripe", "records": 6, "pages": 2, "partial": False, "partial_reason": None, "skipped": 1}
    ]


def test_attestation_endpoint(app: FastAPI, client: TestClient):
    """Test POST /v1/attestations returns a document whose hash verifies"""
    use_transport(app, stripe_handler)

    response = client.post(
        "/v1/attestations",
        json={
            "provider": "stripe",
            "credential": "sk_test",
            "timezone": "UTC",
            "window_days": 30,
            "include_growth": False,
            "merchant_id": MERCHANT,
            "previous_cid": "0x" + "ab" * 32,
        },
    )

    assert response.status_code == 200
    data = response.json()
    attestation = data["attestation"]
    assert attestation["schemaVersion"] == "1.0.0"
    assert attestation["merchant"]["merchantId"] == MERCHANT
    assert attestation["previousCid"] == "0x" + "ab" * 32
    assert attestation["metrics"]["net_sales"] == "140.00"
    assert attestation["metrics"]["aov"] == "70.00"
    assert "growth_t30" not in attestation["metrics"]
    assert data["hash"] == hash_attestation(attestation)
    assert data["hash"] == keccak256_hex(data["canonical"].encode("utf-8"))
    assert data["canonical"].startswith('{\n  "merchant": {')

    verify = client.post("/v1/attestations/verify", json={"attestation": attestation, "expected_hash": data["hash"]})
    assert verify.status_code == 200
    assert verify.json() == {"valid": True, "hash": data["hash"]}

    uppercase = client.post("/v1/attestations/verify", json={"attestation": attestation, "expected_hash": data["hash"].upper()})
    assert uppercase.json()["valid"] is True


def test_verify_detects_tampering(client: TestClient):
    attestation = {
        "schemaVersion": "1.0.0",
        "merchant": {"merchantId": MERCHANT, "currency": "USD"},
        "metrics": {
            "gross_sales": "450.00",
            "discounts": "10.00",
            "refunds": "20.00",
            "net_sales": "420.00",
            "orders_count": 3,
            "items_sold": 4,
            "aov": "140.00",
            "new_customers": 0,
            "returning_customer_rate": "0.0000",
            "repeat_purchase_rate": "0.0000",
            "discount_penetration": "0.3333",
            "discount_rate": "0.0222",
        },
        "nonce": "1719792000000",
        "period": {"start": "2024-05-31T12:00:00.000Z", "end": "2024-06-30T12:00:00.000Z", "timezone": "UTC"},
        "timestamp": "2024-07-01T00:00:00.000Z",
    }
    signed_hash = hash_attestation(attestation)
    tampered = {**attestation, "metrics": {**attestation["metrics"], "net_sales": "520.00"}}

    response = client.post("/v1/attestations/verify", json={"attestation": tampered, "expected_hash": signed_hash})

    assert response.status_code == 200
    assert response.json()["valid"] is False


def test_verify_rejects_float_metrics(client: TestClient):
    response = client.post(
        "/v1/attestations/verify",
        json={"attestation": {"metrics": {"gross_sales": 450.0}}, "expected_hash": "0x00"},
    )
    assert response.status_code == 422


def test_unknown_provider_is_bad_request(client: TestClient):
    response = client.post("/v1/kpis", json={"provider": "etsy", "credential": "token"})
    assert response.status_code == 400
    assert "etsy" in response.json()["detail"]


def test_missing_connection_details_is_bad_request(client: TestClient):
    response = client.post("/v1/kpis", json={"provider": "shopify", "credential": "shpat"})
    assert response.status_code == 400
    assert "shop" in response.json()["detail"]


def test_window_days_must_be_30_or_90(client: TestClient):
    response = client.post("/v1/kpis", json={"provider": "stripe", "credential": "sk", "window_days": 45})
    assert response.status_code == 422


def test_unknown_timezone_is_unprocessable(app: FastAPI, client: TestClient):
    use_transport(app, stripe_handler)
    response = client.post("/v1/kpis", json={"provider": "stripe", "credential": "sk", "timezone": "Nowhere/Land"})
    assert response.status_code == 422


def test_provider_failure_is_bad_gateway(app: FastAPI, client: TestClient):
    use_transport(app, lambda request: httpx.Response(401, json={"error": {"message": "Invalid API Key"}}))

    response = client.post("/v1/kpis", json={"provider": "stripe", "credential": "sk_bad"})

    assert response.status_code == 502
    assert "Invalid API Key" in response.json()["detail"]


def test_rate_limit_is_service_unavailable(app: FastAPI, client: TestClient):
    def factory(connection: ProviderConnection):
        return StripeClient(
            max_retries=0, transport=httpx.MockTransport(lambda request: httpx.Response(429, text="slow down"))
        )

    app.dependency_overrides[get_provider_factory] = lambda: factory

    response = client.post(
        "/v1/attestations", json={"provider": "stripe", "credential": "sk", "merchant_id": MERCHANT}
    )
    assert response.status_code == 503


def test_malformed_provider_body_is_bad_gateway(app: FastAPI, client: TestClient):
    use_transport(app, lambda request: httpx.Response(200, text="not json"))

    response = client.post("/v1/kpis", json={"provider": "stripe", "credential": "sk"})
    assert response.status_code == 502


def test_provider_factory():
    """Test the factory maps providers to adapters with their connection details"""
    shopify = build_provider_client(ProviderConnection(provider="Shopify", credential="t", shop="demo.myshopify.com"))
    woo = build_provider_client(
        ProviderConnection(provider="woocommerce", credential="ck", store_url="https://s.test", consumer_secret="cs")
    )

    assert isinstance(shopify, ShopifyClient)
    assert isinstance(woo, WooCommerceClient)
    with pytest.raises(UnknownProviderError):
        build_provider_client(ProviderConnection(provider="toast", credential="t"))
