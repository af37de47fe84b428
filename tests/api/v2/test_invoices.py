"""
Tests for the invoice API endpoints (/api/v2/invoices).
"""

import re

import pytest

from app.utils.data_url import to_data_url
from tests.factories import InvoiceCreateFactory, LineItemFactory

INVOICES = "/api/v2/invoices"


async def _create(client, **overrides) -> dict:
    response = await client.post(f"{INVOICES}/", json=InvoiceCreateFactory(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateInvoice:
    @pytest.mark.asyncio
    async def test_create_invoice(self, authenticated_client, mock_email):
        body = await _create(
            authenticated_client,
            items=[LineItemFactory(description="Hours", quantity=2, rate=10.0, tax=10.0)],
        )
        invoice = body["invoice"]

        assert body["success"] is True
        assert body["delivery"]["status"] == "sent"
        assert invoice["invoice_number"] == "INV-0001"
        assert invoice["status"] == "Pending"
        assert invoice["subtotal"] == 20.0
        assert invoice["tax_total"] == 2.0
        assert invoice["total"] == 22.0
        assert invoice["items"][0]["amount"] == 20.0
        assert invoice["qr_code"].startswith("data:image/png;base64,")
        assert len(mock_email.sent_emails) == 1

    @pytest.mark.asyncio
    async def test_numbers_increase(self, authenticated_client):
        numbers = [(await _create(authenticated_client))["invoice"]["invoice_number"] for _ in range(3)]

        assert numbers == ["INV-0001", "INV-0002", "INV-0003"]
        assert all(re.fullmatch(r"INV-\d{4,}", number) for number in numbers)

    @pytest.mark.asyncio
    async def test_email_failure_is_degraded_success(self, authenticated_client, mock_email):
        mock_email.reachable = False

        body = await _create(authenticated_client)

        assert body["message"] == "Invoice created but email sending failed"
        assert body["delivery"]["status"] == "failed"
        listed = (await authenticated_client.get(f"{INVOICES}/")).json()
        assert listed["total"] == 1

    @pytest.mark.asyncio
    async def test_negative_quantity_rejected(self, authenticated_client):
        payload = InvoiceCreateFactory(items=[LineItemFactory(quantity=-1)])

        response = await authenticated_client.post(f"{INVOICES}/", json=payload)

        assert response.status_code == 422
        assert response.headers["content-type"].startswith("application/problem+json")
        assert (await authenticated_client.get(f"{INVOICES}/")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_out_of_range_quantity_rejected(self, authenticated_client):
        payload = InvoiceCreateFactory(items=[LineItemFactory(quantity=10**400, rate=1.0)])

        response = await authenticated_client.post(f"{INVOICES}/", json=payload)

        assert response.status_code == 422
        assert (await authenticated_client.get(f"{INVOICES}/")).json()["total"] == 0
        assert (await _create(authenticated_client))["invoice"]["invoice_number"] == "INV-0001"

    @pytest.mark.asyncio
    async def test_empty_items_rejected(self, authenticated_client):
        response = await authenticated_client.post(f"{INVOICES}/", json=InvoiceCreateFactory(items=[]))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_signature_payload_rejected(self, authenticated_client):
        payload = InvoiceCreateFactory(digital_signature="data:image/png;base64,%%%")

        response = await authenticated_client.post(f"{INVOICES}/", json=payload)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.post(f"{INVOICES}/", json=InvoiceCreateFactory())

        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_001"


class TestReadInvoices:
    @pytest.mark.asyncio
    async def test_list_newest_first(self, authenticated_client):
        for _ in range(2):
            await _create(authenticated_client)

        body = (await authenticated_client.get(f"{INVOICES}/")).json()

        assert body["total"] == 2
        assert [item["invoice_number"] for item in body["items"]] == ["INV-0002", "INV-0001"]

    @pytest.mark.asyncio
    async def test_get_invoice(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.get(f"{INVOICES}/{created['id']}")

        assert response.status_code == 200
        assert response.json()["invoice_number"] == created["invoice_number"]

    @pytest.mark.asyncio
    async def test_get_missing_invoice(self, authenticated_client):
        response = await authenticated_client.get(f"{INVOICES}/9999")

        assert response.status_code == 404
        problem = response.json()
        assert problem["code"] == "RES_001"
        assert problem["instance"] == f"{INVOICES}/9999"
        assert problem["trace_id"]

    @pytest.mark.asyncio
    async def test_other_users_invoice_is_not_found(self, authenticated_client, other_user):
        created = (await _create(authenticated_client))["invoice"]
        login = await authenticated_client.post(
            "/api/v2/auth/login",
            json={"email": "other@example.com", "password": "testpassword123"},
        )
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

        response = await authenticated_client.get(f"{INVOICES}/{created['id']}", headers=headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_download_pdf(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.get(f"{INVOICES}/{created['id']}/pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert "INV-0001.pdf" in response.headers["content-disposition"]
        assert response.content.startswith(b"%PDF")


class TestUpdateInvoice:
    @pytest.mark.asyncio
    async def test_update_recomputes_totals(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.put(
            f"{INVOICES}/{created['id']}",
            json={"items": [{"description": "Hours", "quantity": 3, "rate": 10.0, "tax": 10.0}]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 33.0
        assert body["qr_code"] == created["qr_code"]

    @pytest.mark.asyncio
    async def test_client_supplied_totals_ignored(self, authenticated_client):
        created = (await _create(
            authenticated_client,
            items=[LineItemFactory(quantity=1, rate=100.0, tax=0.0)],
        ))["invoice"]

        response = await authenticated_client.put(
            f"{INVOICES}/{created['id']}", json={"notes": "edited", "total": 1.0}
        )

        assert response.status_code == 200
        assert response.json()["total"] == 100.0
        assert response.json()["notes"] == "edited"

    @pytest.mark.asyncio
    async def test_paid_invoice_is_immutable(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]
        await authenticated_client.patch(f"{INVOICES}/{created['id']}/status", json={"status": "Paid"})

        response = await authenticated_client.put(f"{INVOICES}/{created['id']}", json={"notes": "late"})

        assert response.status_code == 400
        assert response.json()["code"] == "BIZ_003"
        fetched = (await authenticated_client.get(f"{INVOICES}/{created['id']}")).json()
        assert fetched["total"] == created["total"]
        assert fetched["notes"] == created["notes"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"items": []}, {"due_date": "nope"}, {"notes": 5}, None])
    async def test_paid_invoice_rejects_any_payload(self, authenticated_client, payload):
        created = (await _create(authenticated_client))["invoice"]
        await authenticated_client.patch(f"{INVOICES}/{created['id']}/status", json={"status": "Paid"})

        response = await authenticated_client.put(f"{INVOICES}/{created['id']}", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "BIZ_003"

    @pytest.mark.asyncio
    async def test_invalid_payload_on_pending_invoice(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.put(
            f"{INVOICES}/{created['id']}", json={"items": [], "due_date": "nope"}
        )

        assert response.status_code == 422
        problem = response.json()
        assert problem["code"] == "VAL_001"
        assert {error["field"] for error in problem["errors"]} == {"items", "due_date"}

    @pytest.mark.asyncio
    async def test_update_missing_invoice(self, authenticated_client):
        response = await authenticated_client.put(f"{INVOICES}/9999", json={"items": []})
        assert response.status_code == 404


class TestInvoiceStatus:
    @pytest.mark.asyncio
    async def test_mark_paid(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.patch(
            f"{INVOICES}/{created['id']}/status", json={"status": "Paid"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "Paid"
        assert response.json()["paid_at"] is not None

    @pytest.mark.asyncio
    async def test_paid_back_to_pending(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]
        url = f"{INVOICES}/{created['id']}/status"
        await authenticated_client.patch(url, json={"status": "Paid"})

        response = await authenticated_client.patch(url, json={"status": "Pending"})

        assert response.status_code == 200
        assert response.json()["status"] == "Pending"
        assert response.json()["paid_at"] is None

    @pytest.mark.asyncio
    async def test_invalid_status(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.patch(
            f"{INVOICES}/{created['id']}/status", json={"status": "Cancelled"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VAL_002"
        fetched = (await authenticated_client.get(f"{INVOICES}/{created['id']}")).json()
        assert fetched["status"] == "Pending"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"status": 5}, {"status": None}, {}])
    async def test_non_string_status(self, authenticated_client, payload):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.patch(f"{INVOICES}/{created['id']}/status", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "VAL_002"

    @pytest.mark.asyncio
    async def test_status_of_missing_invoice(self, authenticated_client):
        response = await authenticated_client.patch(f"{INVOICES}/9999/status", json={"status": "Paid"})
        assert response.status_code == 404


class TestDeleteInvoice:
    @pytest.mark.asyncio
    async def test_delete_pending(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.delete(f"{INVOICES}/{created['id']}")

        assert response.status_code == 204
        assert (await authenticated_client.get(f"{INVOICES}/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete_paid_rejected(self, authenticated_client):
        created = (await _create(authenticated_client))["invoice"]
        await authenticated_client.patch(f"{INVOICES}/{created['id']}/status", json={"status": "Paid"})

        response = await authenticated_client.delete(f"{INVOICES}/{created['id']}")

        assert response.status_code == 400
        assert (await authenticated_client.get(f"{INVOICES}/{created['id']}")).status_code == 200


class TestSendInvoice:
    @pytest.mark.asyncio
    async def test_send(self, authenticated_client, mock_email):
        created = (await _create(authenticated_client))["invoice"]

        response = await authenticated_client.post(f"{INVOICES}/{created['id']}/send")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["receipt"]["recipient"] == created["client"]["email"]
        assert body["receipt"]["filename"] == "INV-0001.pdf"
        assert len(mock_email.sent_emails) == 2

    @pytest.mark.asyncio
    async def test_send_delivery_failure(self, authenticated_client, mock_email):
        created = (await _create(authenticated_client))["invoice"]
        mock_email.reachable = False

        response = await authenticated_client.post(f"{INVOICES}/{created['id']}/send")

        assert response.status_code == 502
        assert response.json()["code"] == "EXT_001"
        assert (await authenticated_client.get(f"{INVOICES}/{created['id']}")).json()["status"] == "Pending"

    @pytest.mark.asyncio
    async def test_send_render_failure(self, authenticated_client):
        created = (await _create(authenticated_client, digital_signature=to_data_url(b"garbage")))["invoice"]

        response = await authenticated_client.post(f"{INVOICES}/{created['id']}/send")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_send_missing_invoice(self, authenticated_client):
        response = await authenticated_client.post(f"{INVOICES}/9999/send")
        assert response.status_code == 404
