"""
Tests HTTP per l'API v1 del registro.

Usano l'applicazione reale con la session factory del database di test.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.deps import get_session_factory
from app.core.security import create_access_token
from app.main import app

DRAFT_BODY = {
    "document_type": "FV",
    "pricing_mode": "TTC",
    "client": {"type": "PP", "name": "Jean Mukendi"},
    "lines": [
        {
            "item_reference": "ART-001",
            "kind": "BIE",
            "tax_group": "B",
            "label": "Ciment 50kg",
            "quantity": "1.000",
            "unit_price": "1160.00",
        }
    ],
}


@pytest.fixture
async def client(session_factory):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


@pytest.fixture
def headers(actor_id, tenant_a, tenant_b):
    """Header per un utente membro dei tenant A e B."""
    token = create_access_token(str(actor_id), [tenant_a, tenant_b])

    def _headers(tenant_id=tenant_a, **extra):
        return {
            "Authorization": f"Bearer {token}",
            "X-Tenant-Id": str(tenant_id),
            **extra,
        }

    return _headers


async def create_draft(http_client, headers, **overrides):
    response = await http_client.post("/api/v1/invoices/draft", json={**DRAFT_BODY, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestSystem:
    """Tests per health check e request id."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"


class TestAuthAndTenant:
    """Tests per identità e contesto tenant."""

    async def test_missing_token(self, client, tenant_a):
        response = await client.get("/api/v1/invoices/", headers={"X-Tenant-Id": str(tenant_a)})
        assert response.status_code == 401

    async def test_missing_tenant_header(self, client, headers):
        request_headers = headers()
        del request_headers["X-Tenant-Id"]
        response = await client.get("/api/v1/invoices/", headers=request_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "TENANT_CONTEXT_MISSING"

    async def test_foreign_tenant_forbidden(self, client, headers):
        response = await client.get("/api/v1/invoices/", headers=headers(uuid.uuid4()))
        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    async def test_cross_tenant_read_is_not_found(self, client, headers, tenant_b):
        draft = await create_draft(client, headers())
        response = await client.get(f"/api/v1/invoices/{draft['id']}", headers=headers(tenant_b))
        assert response.status_code == 404
        assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"


class TestInvoiceEndpoints:
    """Tests per il ciclo bozza, conferma, timbro."""

    async def test_draft_response_shape(self, client, headers, tenant_a):
        draft = await create_draft(client, headers())

        assert draft["status"] == "DRAFT"
        assert draft["number"] is None
        assert draft["type"] == "FV"
        assert draft["pricingMode"] == "TTC"
        assert draft["tenantId"] == str(tenant_a)
        assert draft["totals"] == {"ht": "1000.00", "vat": "160.00", "ttc": "1160.00"}
        assert draft["lines"][0]["totalVat"] == "160.00"
        assert draft["lines"][0]["quantity"] == "1.000"

    async def test_business_error_payload(self, client, headers):
        body = {**DRAFT_BODY, "lines": [{**DRAFT_BODY["lines"][0], "kind": "TAX"}]}
        response = await client.post("/api/v1/invoices/draft", json=body, headers=headers())

        assert response.status_code == 422
        payload = response.json()
        assert payload["error_code"] == "TAX_GROUP_NOT_ALLOWED"
        assert payload["extra"]["line"] == 1

    async def test_confirm_replay_is_identical(self, client, headers):
        draft = await create_draft(client, headers())
        url = f"/api/v1/invoices/{draft['id']}/confirm"
        request_headers = headers(**{"X-Idempotency-Key": "confirm-1"})

        first = await client.post(url, headers=request_headers)
        second = await client.post(url, headers=request_headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.content == second.content
        assert second.headers.get("X-Idempotent-Replay") == "true"
        assert first.json()["status"] == "CONFIRMED"

    async def test_confirm_rule_violation(self, client, headers):
        draft = await create_draft(client, headers(), client={"type": "PM", "denomination": "SARL"})
        response = await client.post(f"/api/v1/invoices/{draft['id']}/confirm", headers=headers())

        assert response.status_code == 422
        assert response.json()["error_code"] == "CLIENT_FIELD_REQUIRED"

    async def test_lookup_by_number_and_list(self, client, headers):
        draft = await create_draft(client, headers())
        confirmed = (await client.post(f"/api/v1/invoices/{draft['id']}/confirm", headers=headers())).json()
        await create_draft(client, headers())

        by_number = await client.get(f"/api/v1/invoices/number/{confirmed['number']}", headers=headers())
        listing = await client.get("/api/v1/invoices/", params={"status": "CONFIRMED"}, headers=headers())

        assert by_number.json()["id"] == draft["id"]
        assert listing.json()["totalItems"] == 1
        assert listing.json()["items"][0]["number"] == confirmed["number"]

    async def test_normalized_and_fiscal_stamp(self, client, headers):
        draft = await create_draft(client, headers())

        early = await client.post(f"/api/v1/invoices/{draft['id']}/fiscal-stamp", headers=headers())
        assert early.status_code == 409
        assert early.json()["error_code"] == "INVOICE_NOT_CONFIRMED"

        await client.post(f"/api/v1/invoices/{draft['id']}/confirm", headers=headers())
        normalized = await client.get(f"/api/v1/invoices/{draft['id']}/normalized", headers=headers())
        stamped = await client.post(f"/api/v1/invoices/{draft['id']}/fiscal-stamp", headers=headers())

        assert normalized.status_code == 200
        assert len(normalized.json()["hash"]) == 64
        assert normalized.json()["payload"]["status"] == "CONFIRMED"
        assert stamped.status_code == 200
        assert stamped.json()["fiscalStamp"]["verificationPayload"].startswith("RDCDEF01;")


class TestSupportEndpoints:
    """Tests per tassi di cambio, impostazioni e audit."""

    async def test_fx_rates(self, client, headers):
        created = await client.post(
            "/api/v1/fx-rates/",
            json={"quote": "usd", "rate": "2800.50", "valid_from": "2025-03-01T00:00:00Z"},
            headers=headers(),
        )
        latest = await client.get("/api/v1/fx-rates/latest/USD", headers=headers())
        missing = await client.get("/api/v1/fx-rates/latest/EUR", headers=headers())

        assert created.status_code == 201
        assert created.json()["rate"] == "2800.500000"
        assert latest.json()["quote"] == "USD"
        assert missing.status_code == 404

    async def test_settings(self, client, headers, tenant_b):
        initial = await client.get("/api/v1/settings/", headers=headers())
        updated = await client.put(
            "/api/v1/settings/",
            json={"numbering_prefix": "abc", "numbering_width": 4},
            headers=headers(),
        )
        other = await client.get("/api/v1/settings/", headers=headers(tenant_b))

        assert initial.json()["numberingWidth"] == 6
        assert updated.json()["numberingPrefix"] == "ABC"
        assert updated.json()["numberingWidth"] == 4
        assert other.json()["numberingPrefix"] is None

    async def test_audit_logs(self, client, headers):
        draft = await create_draft(client, headers())
        response = await client.get(
            "/api/v1/audit-logs/",
            params={"resourceId": draft["id"]},
            headers=headers(),
        )

        assert response.status_code == 200
        assert response.json()["totalItems"] == 1
        assert response.json()["items"][0]["action"] == "invoice.createDraft"
