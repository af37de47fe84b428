from fastapi import APIRouter, Body, Response, status
from typing import Any
import logging

from app.api.deps import CurrentUser, Lifecycle
from app.models.invoice import Invoice
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceCreateResponse,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceSendResponse,
    InvoiceStatusUpdate,
)
from app.services.invoice_pdf import pdf_filename

logger = logging.getLogger(__name__)
router = APIRouter()


def invoice_to_response(invoice: Invoice) -> dict:
    """Convert Invoice model to response dict with string IDs."""
    return {
        "id": str(invoice.id),
        "owner_id": str(invoice.owner_id),
        "invoice_number": invoice.invoice_number,
        "client": {
            "name": invoice.client_name,
            "email": invoice.client_email,
            "address": invoice.client_address,
            "phone": invoice.client_phone,
        },
        "items": invoice.items or [],
        "subtotal": invoice.subtotal or 0,
        "tax_total": invoice.tax_total or 0,
        "total": invoice.total or 0,
        "status": invoice.status,
        "paid_at": invoice.paid_at,
        "issue_date": invoice.issue_date,
        "due_date": invoice.due_date,
        "recurring": {
            "is_recurring": bool(invoice.is_recurring),
            "frequency": invoice.recurrence_frequency,
            "next_invoice_date": invoice.next_invoice_date,
        },
        "notes": invoice.notes,
        "terms": invoice.terms,
        "digital_signature": invoice.digital_signature,
        "qr_code": invoice.qr_code,
        "created_at": invoice.created_at,
        "updated_at": invoice.updated_at,
    }


@router.post("/", response_model=InvoiceCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_data: InvoiceCreate,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """Create an invoice and email it to the client.

    The invoice is stored even if the email fails; ``delivery`` reports what
    happened.
    """
    result = await lifecycle.create(current_user, invoice_data)
    return {
        "success": True,
        "message": result.message,
        "invoice": invoice_to_response(result.invoice),
        "delivery": result.delivery,
    }


@router.get("/", response_model=InvoiceListResponse)
async def list_invoices(
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """List the current user's invoices, newest first."""
    invoices = await lifecycle.list(current_user)
    return {
        "items": [invoice_to_response(inv) for inv in invoices],
        "total": len(invoices),
    }


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """Get a single invoice by ID."""
    invoice = await lifecycle.get(current_user, invoice_id)
    return invoice_to_response(invoice)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
    invoice_data: Any = Body(None, description="Partial InvoiceUpdate payload"),
):
    """Update a Pending invoice. Totals are recomputed from the items.

    The body is validated against InvoiceUpdate after the Paid check, so a
    Paid invoice answers 400 whatever is sent.
    """
    invoice = await lifecycle.update(current_user, invoice_id, invoice_data)
    return invoice_to_response(invoice)


@router.patch("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: int,
    status_data: InvoiceStatusUpdate,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """Move an invoice between Pending and Paid."""
    invoice = await lifecycle.set_status(current_user, invoice_id, status_data.status)
    return invoice_to_response(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: int,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """Delete a Pending invoice."""
    await lifecycle.delete(current_user, invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{invoice_id}/send", response_model=InvoiceSendResponse)
async def send_invoice(
    invoice_id: int,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """Render the invoice and email it to the client."""
    receipt = await lifecycle.send(current_user, invoice_id)
    return {
        "success": True,
        "message": "Invoice sent successfully",
        "receipt": receipt.as_dict(),
    }


@router.get("/{invoice_id}/pdf")
async def download_invoice_pdf(
    invoice_id: int,
    lifecycle: Lifecycle,
    current_user: CurrentUser,
):
    """Download the rendered invoice PDF."""
    invoice = await lifecycle.get(current_user, invoice_id)
    document = await lifecycle.render(current_user, invoice)
    return Response(
        content=document,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{pdf_filename(invoice)}"'},
    )
