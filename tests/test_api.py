"""
Tests for the HTTP layer (status codes and bodies).
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from lnpay.api.deps import get_invoice_service, get_webhook_service
from lnpay.config import settings
from lnpay.main import app
from lnpay.services.gateway import compute_signature
from lnpay.services.webhook_service import WebhookService

ADMIN_KEY = "admin-test-key"
WEBHOOK_SECRET = "api-webhook-secret"
ADMIN = {"X-Admin-Key": ADMIN_KEY}


@pytest_asyncio.fixture
async def client(service, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", ADMIN_KEY)
    app.dependency_overrides[get_invoice_service] = lambda: service
    app.dependency_overrides[get_webhook_service] = lambda: WebhookService(
        service, secret=WEBHOOK_SECRET, cache_ttl=60,
    )

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def create(client, amount=50, **extra):
    response = await client.post("/api/lightning/invoice", json={"amount": amount, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def webhook_request(payload):
    body = json.dumps(payload).encode()
    return body, {
        "BTCPay-Sig": compute_signature(body, WEBHOOK_SECRET),
        "Content-Type": "application/json",
    }


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["gateway"] == settings.gateway_mode
    assert response.json()["redis"] == "ok"


@pytest.mark.asyncio
async def test_api_status(client):
    response = await client.get("/api/status")

    assert response.status_code == 200
    assert response.json()["operational"] is True


# --- Invoices ---------------------------------------------------------


@pytest.mark.asyncio
async def test_create_invoice(client):
    body = await create(client, 50, description="Coffee", customer_email="a@example.com")

    assert body["status"] == "pending"
    assert body["amount"] == 50
    assert body["order_id"].startswith("ORD-")
    assert body["payment_request"]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"amount": 10},
    {"amount": 150},
    {"amount": "abc"},
    {},
])
async def test_create_invoice_bad_amount(client, payload):
    response = await client.post("/api/lightning/invoice", json=payload)

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_create_invoice_gateway_down(client, gateway):
    gateway.unavailable = True

    response = await client.post("/api/lightning/invoice", json={"amount": 50})

    assert response.status_code == 502
    assert response.json() == {"error": "Payment gateway unavailable"}


@pytest.mark.asyncio
async def test_get_invoice(client):
    created = await create(client)

    response = await client.get(f"/api/lightning/invoice/{created['id']}")

    assert response.status_code == 200
    assert response.json()["id"] == created["id"]
    assert response.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_get_invoice_not_found(client):
    response = await client.get("/api/lightning/invoice/inv_missing")

    assert response.status_code == 404
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_cancel_invoice(client):
    created = await create(client)

    response = await client.delete(f"/api/lightning/invoice/{created['id']}")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancelled_at"]

    again = await client.delete(f"/api/lightning/invoice/{created['id']}")
    assert again.status_code == 409

    missing = await client.delete("/api/lightning/invoice/inv_missing")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_list_requires_admin_key(client):
    assert (await client.get("/api/lightning/invoices")).status_code == 401
    assert (await client.get(
        "/api/lightning/invoices", headers={"X-Admin-Key": "wrong"}
    )).status_code == 401


@pytest.mark.asyncio
async def test_list_invoices(client):
    for amount in (20, 30, 40):
        await create(client, amount)

    response = await client.get("/api/lightning/invoices?page=1&limit=2", headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert [i["amount"] for i in body["invoices"]] == [40, 30]
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}


@pytest.mark.asyncio
async def test_list_invoices_bad_limit(client):
    response = await client.get("/api/lightning/invoices?limit=500", headers=ADMIN)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_stats(client):
    response = await client.get("/api/lightning/stats?timeframe=week", headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["conversionRate"] == 0

    assert (await client.get("/api/lightning/stats?timeframe=year", headers=ADMIN)).status_code == 400
    assert (await client.get("/api/lightning/stats")).status_code == 401


@pytest.mark.asyncio
async def test_get_order(client):
    created = await create(client)

    response = await client.get(f"/api/orders/{created['order_id']}")
    assert response.status_code == 200
    assert response.json()["invoice_id"] == created["id"]

    assert (await client.get("/api/orders/ORD-missing")).status_code == 404


# --- Webhooks ---------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_applies_event(client):
    created = await create(client)
    body, headers = webhook_request({
        "deliveryId": "dlv_api_1",
        "type": "InvoiceSettled",
        "invoiceId": created["id"],
        "data": {},
    })

    response = await client.post("/webhooks/btcpay", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "applied"}

    invoice = await client.get(f"/api/lightning/invoice/{created['id']}")
    assert invoice.json()["status"] == "paid"

    delivery = await client.get("/webhooks/btcpay/deliveries/dlv_api_1", headers=ADMIN)
    assert delivery.status_code == 200
    assert delivery.json()["outcome"] == "applied"


@pytest.mark.asyncio
async def test_webhook_bad_signature(client):
    body, headers = webhook_request({"type": "InvoiceSettled", "invoiceId": "inv_1"})
    headers["BTCPay-Sig"] = "sha256=" + "f" * 64

    response = await client.post("/webhooks/btcpay", content=body, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}


@pytest.mark.asyncio
async def test_webhook_unknown_type_acknowledged(client):
    body, headers = webhook_request({"type": "InvoiceCreated", "invoiceId": "inv_1"})

    response = await client.post("/webhooks/btcpay", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "ignored"}


@pytest.mark.asyncio
async def test_webhook_processing_failure_returns_500(client, service):
    created = await create(client)
    body, headers = webhook_request({"type": "InvoiceSettled", "invoiceId": created["id"]})

    with patch.object(service, "apply_status", new=AsyncMock(side_effect=RuntimeError("boom"))):
        response = await client.post("/webhooks/btcpay", content=body, headers=headers)

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}


@pytest.mark.asyncio
async def test_delivery_lookup(client):
    assert (await client.get("/webhooks/btcpay/deliveries/dlv_x")).status_code == 401

    response = await client.get("/webhooks/btcpay/deliveries/dlv_x", headers=ADMIN)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_health_reports_cache_outage(client, redis_mock):
    from redis.exceptions import ConnectionError as RedisConnectionError

    redis_mock.ping.side_effect = RedisConnectionError("redis down")

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["redis"] == "unavailable"
