"""HTTP tests: invoice and payment endpoints through the FastAPI app."""

import httpx
import pytest

from app.main import app
from app.services.gateway import GatewayClient, expected_signature, get_gateway_client
from tests.conftest import invoice_payload, make_token

pytestmark = [pytest.mark.api, pytest.mark.asyncio]


def as_json(payload) -> dict:
    return payload.model_dump(mode="json")


async def create_and_finalize(client, headers, client_id) -> dict:
    created = await client.post("/api/invoices", json=as_json(invoice_payload(client_id)), headers=headers)
    assert created.status_code == 201
    finalized = await client.post(f"/api/invoices/{created.json()['id']}/finalize", headers=headers)
    assert finalized.status_code == 200
    return finalized.json()


class TestInvoiceEndpoints:

    async def test_create_draft(self, client, auth_headers, local_client):
        response = await client.post(
            "/api/invoices", json=as_json(invoice_payload(local_client.id)), headers=auth_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "DRAFT"
        assert body["invoice_number"] is None
        assert body["draft_number"] == "DRAFT-2024-25-00001"
        assert body["cgst"] == "900.00"
        assert body["sgst"] == "900.00"
        assert body["total_amount"] == "11800.00"
        assert body["balance_amount"] == "11800.00"

    async def test_finalize_assigns_number(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)
        assert invoice["invoice_number"] == "INV-2024-25-00001"
        assert invoice["finalized_at"] is not None

    async def test_invalid_line_items_rejected(self, client, auth_headers, local_client):
        payload = as_json(invoice_payload(local_client.id))
        payload["line_items"] = []
        response = await client.post("/api/invoices", json=payload, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_get_and_list(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)

        single = await client.get(f"/api/invoices/{invoice['id']}", headers=auth_headers)
        assert single.json()["invoice_number"] == invoice["invoice_number"]

        page = await client.get("/api/invoices", params={"limit": 10}, headers=auth_headers)
        assert page.status_code == 200
        assert page.json()["total"] == 1
        assert page.json()["items"][0]["id"] == invoice["id"]

    async def test_unknown_invoice(self, client, auth_headers, organization):
        response = await client.get("/api/invoices/does-not-exist", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_number_preview(self, client, auth_headers, organization):
        response = await client.get(
            "/api/invoices/number-preview", params={"on": "2024-06-01"}, headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json() == {
            "mode": "AUTO",
            "next_number": "INV-2024-25-00001",
            "financial_year": "2024-25",
        }

    async def test_cancel(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)
        response = await client.post(f"/api/invoices/{invoice['id']}/cancel", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert response.json()["invoice_number"] == invoice["invoice_number"]


class TestPaymentEndpoints:

    async def test_record_pay_and_read_ledger(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)

        response = await client.post("/api/payments", json={
            "invoice_id": invoice["id"],
            "amount": "5000.00",
            "payment_date": "2024-06-10",
            "mode": "UPI",
        }, headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["payment"]["payment_number"] == "PAY-00001"
        assert body["payment"]["is_primary"] is True
        assert body["ledger"]["paid_amount"] == "5000.00"
        assert body["ledger"]["balance_amount"] == "6800.00"
        assert body["ledger"]["status"] == "PARTIALLY_PAID"

        ledger = await client.get(f"/api/invoices/{invoice['id']}/ledger", headers=auth_headers)
        assert ledger.status_code == 200
        assert ledger.json()["balance_amount"] == "6800.00"
        assert ledger.json()["live_payment_count"] == 1

    async def test_overpayment_envelope_carries_ledger(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)

        response = await client.post("/api/payments", json={
            "invoice_id": invoice["id"],
            "amount": "20000.00",
            "payment_date": "2024-06-10",
        }, headers=auth_headers)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "OVERPAYMENT"
        assert error["details"]["ledger"]["balance_amount"] == "11800.00"
        assert error["details"]["ledger"]["paid_amount"] == "0.00"

    async def test_edit_reverse_and_list(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)
        recorded = await client.post("/api/payments", json={
            "invoice_id": invoice["id"],
            "amount": "1000.00",
            "payment_date": "2024-06-10",
        }, headers=auth_headers)
        payment_id = recorded.json()["payment"]["id"]

        edited = await client.patch(f"/api/payments/{payment_id}", json={"amount": "1500.00"}, headers=auth_headers)
        assert edited.status_code == 200
        assert edited.json()["ledger"]["paid_amount"] == "1500.00"

        reversed_ = await client.delete(f"/api/payments/{payment_id}", headers=auth_headers)
        assert reversed_.status_code == 200
        assert reversed_.json()["payment"]["is_reversed"] is True
        assert reversed_.json()["ledger"]["paid_amount"] == "0.00"

        again = await client.delete(f"/api/payments/{payment_id}", headers=auth_headers)
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "IMMUTABLE_ENTRY"

        listing = await client.get(
            f"/api/payments/invoice/{invoice['id']}",
            params={"include_reversed": "false"},
            headers=auth_headers,
        )
        assert listing.json()["items"] == []

    async def test_cancel_blocked_by_live_payment(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)
        await client.post("/api/payments", json={
            "invoice_id": invoice["id"],
            "amount": "1000.00",
            "payment_date": "2024-06-10",
        }, headers=auth_headers)

        response = await client.post(f"/api/invoices/{invoice['id']}/cancel", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_INVOICE_STATE"

    async def test_gateway_verify(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "id": "pay_api", "order_id": "order_api", "amount": 1180000,
                "currency": "INR", "status": "captured", "method": "card",
            })

        secret = "api-secret"
        app.dependency_overrides[get_gateway_client] = lambda: GatewayClient(
            key_id="rzp_test", key_secret=secret,
            base_url="https://gateway.test/v1", transport=httpx.MockTransport(handler),
        )
        body = {
            "invoice_id": invoice["id"],
            "gateway_order_id": "order_api",
            "gateway_payment_id": "pay_api",
            "gateway_signature": expected_signature("order_api", "pay_api", secret),
            "payment_date": "2024-06-10",
        }

        response = await client.post("/api/payments/gateway/verify", json=body, headers=auth_headers)
        assert response.status_code == 201
        assert response.json()["payment"]["mode"] == "ONLINE"
        assert response.json()["ledger"]["status"] == "PAID"

        replay = await client.post("/api/payments/gateway/verify", json=body, headers=auth_headers)
        assert replay.status_code == 409
        assert replay.json()["error"]["code"] == "DUPLICATE_GATEWAY_PAYMENT"

        body["gateway_signature"] = "forged"
        body["gateway_payment_id"] = "pay_other"
        forged = await client.post("/api/payments/gateway/verify", json=body, headers=auth_headers)
        assert forged.status_code == 400
        assert forged.json()["error"]["code"] == "SIGNATURE_MISMATCH"


class TestAccess:

    async def test_missing_token(self, client, organization):
        response = await client.get("/api/invoices")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"

    async def test_garbage_token(self, client, organization):
        response = await client.get("/api/invoices", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_viewer_cannot_write(self, client, organization, local_client):
        headers = {"Authorization": f"Bearer {make_token(organization.id, role='viewer')}"}

        listing = await client.get("/api/invoices", headers=headers)
        assert listing.status_code == 200

        response = await client.post(
            "/api/invoices", json=as_json(invoice_payload(local_client.id)), headers=headers,
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_accountant_cannot_reverse(self, client, auth_headers, organization, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)
        recorded = await client.post("/api/payments", json={
            "invoice_id": invoice["id"],
            "amount": "1000.00",
            "payment_date": "2024-06-10",
        }, headers=auth_headers)

        headers = {"Authorization": f"Bearer {make_token(organization.id, role='accountant')}"}
        response = await client.delete(f"/api/payments/{recorded.json()['payment']['id']}", headers=headers)
        assert response.status_code == 403

    async def test_other_organization_sees_nothing(self, client, auth_headers, local_client):
        invoice = await create_and_finalize(client, auth_headers, local_client.id)
        headers = {"Authorization": f"Bearer {make_token('someone-else')}"}

        response = await client.get(f"/api/invoices/{invoice['id']}", headers=headers)
        assert response.status_code == 404


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["service"] == "Billbook"
