"""Invoice lifecycle: create, update, status, delete, send.

Create runs allocate -> compute -> QR -> persist in one transaction and
commits before any rendering or email work starts, so a slow or failing
delivery never holds the sequence lock or undoes a stored invoice. Delivery
after create is best effort and reported in the result; an explicit send
surfaces delivery errors to the caller.

State machine: Pending -> Paid through ``set_status``. Paid invoices cannot
be updated or deleted. ``set_status`` is the single administrative path that
may still touch a Paid invoice, including moving it back to Pending.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    AllocationError,
    AppException,
    DeliveryError,
    ImmutableStateError,
    InvalidStatusError,
    RenderError,
    ValidationError,
)
from app.models.invoice import Invoice, InvoiceStatus
from app.models.user import User
from app.schemas.invoice import DeliveryOutcome, InvoiceCreate, InvoiceUpdate, RecurringInfo
from app.services.email_service import DeliveryReceipt, EmailService
from app.services.invoice_calculator import compute_totals, format_money
from app.services.invoice_numbering import reserve_invoice_number
from app.services.invoice_pdf import (
    Issuer,
    make_verification_payload,
    pdf_filename,
    render_invoice_pdf,
)
from app.services.invoice_store import InvoiceStore
from app.utils.data_url import to_data_url

logger = logging.getLogger(__name__)

ALLOWED_STATUSES = [status.value for status in InvoiceStatus]

# Client snapshot columns that cannot be cleared once set
_REQUIRED_CLIENT_FIELDS = {"name", "email", "address"}


@dataclass
class CreateResult:
    invoice: Invoice
    delivery: DeliveryOutcome

    @property
    def message(self) -> str:
        if self.delivery.status == "failed":
            return "Invoice created but email sending failed"
        if self.delivery.status == "sent":
            return "Invoice created and sent successfully"
        return "Invoice created successfully"


def _recurrence_columns(recurring: RecurringInfo) -> Dict[str, Any]:
    if not recurring.is_recurring:
        return {"is_recurring": False, "recurrence_frequency": None, "next_invoice_date": None}
    return {
        "is_recurring": True,
        "recurrence_frequency": recurring.frequency.value,
        "next_invoice_date": recurring.next_invoice_date,
    }


def _parse_update(payload: Any) -> InvoiceUpdate:
    try:
        return InvoiceUpdate.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]) or "body",
                "message": error["msg"],
                "type": error["type"],
            }
            for error in e.errors()
        ]
        raise ValidationError("Request validation failed", errors=errors) from e


class InvoiceLifecycle:
    """Orchestrates invoice operations for one request."""

    def __init__(self, db: AsyncSession, email_service: EmailService):
        self.db = db
        self.store = InvoiceStore(db)
        self.email_service = email_service

    # ----------- reads -----------

    async def list(self, owner: User) -> List[Invoice]:
        return await self.store.list(owner.id)

    async def get(self, owner: User, invoice_id: int) -> Invoice:
        return await self.store.get(owner.id, invoice_id)

    # ----------- create -----------

    async def create(self, owner: User, data: InvoiceCreate) -> CreateResult:
        # Rollback expires the loaded owner
        owner_id = owner.id
        issued_at = datetime.now(timezone.utc)
        try:
            invoice_number = await reserve_invoice_number(self.db)
            totals = compute_totals(item.model_dump() for item in data.items)
        except AllocationError as e:
            await self.db.rollback()
            logger.error(
                "Invoice number allocation failed",
                extra={"owner_id": owner_id, "error": e.detail},
            )
            raise
        except AppException:
            await self.db.rollback()
            raise

        qr_code = to_data_url(
            make_verification_payload(invoice_number, data.client.name, totals.total, issued_at)
        )

        invoice = Invoice(
            owner_id=owner_id,
            invoice_number=invoice_number,
            client_name=data.client.name,
            client_email=str(data.client.email),
            client_address=data.client.address,
            client_phone=data.client.phone,
            status=InvoiceStatus.pending.value,
            issue_date=issued_at,
            due_date=data.due_date,
            notes=data.notes,
            terms=data.terms,
            digital_signature=data.digital_signature,
            qr_code=qr_code,
            created_at=issued_at,
            **totals.as_columns(),
            **_recurrence_columns(data.recurring or RecurringInfo()),
        )
        invoice = await self.store.create(invoice)
        logger.info(
            "Invoice created",
            extra={"invoice_number": invoice.invoice_number, "owner_id": owner_id, "total": invoice.total},
        )

        delivery = await self._deliver_after_create(owner, invoice)
        return CreateResult(invoice=invoice, delivery=delivery)

    async def _deliver_after_create(self, owner: User, invoice: Invoice) -> DeliveryOutcome:
        """Best-effort email; the invoice is already committed."""
        if not invoice.client_email:
            return DeliveryOutcome(status="skipped")

        try:
            receipt = await self._render_and_deliver(owner, invoice)
        except (RenderError, DeliveryError) as e:
            logger.warning(
                "Invoice created but email sending failed",
                extra={"invoice_number": invoice.invoice_number, "error": e.detail},
            )
            return DeliveryOutcome(status="failed", recipient=invoice.client_email, error=e.detail)

        return DeliveryOutcome(
            status="sent",
            recipient=receipt.recipient,
            message_id=receipt.message_id,
        )

    # ----------- update / status / delete -----------

    async def update(
        self, owner: User, invoice_id: int, data: Union[InvoiceUpdate, Dict[str, Any]]
    ) -> Invoice:
        """Apply a partial update to a Pending invoice and recompute its totals.

        A raw payload is only validated once the invoice is known to be
        Pending; a Paid invoice rejects every payload the same way.
        """
        invoice = await self.store.get(owner.id, invoice_id)
        if invoice.is_paid:
            raise ImmutableStateError(invoice.invoice_number, "modified")
        if not isinstance(data, InvoiceUpdate):
            data = _parse_update(data)

        fields = data.model_dump(exclude_unset=True)
        changes: Dict[str, Any] = {}

        for key, value in (fields.pop("client", None) or {}).items():
            if value is None and key in _REQUIRED_CLIENT_FIELDS:
                continue
            changes[f"client_{key}"] = str(value) if key == "email" else value

        recurring = fields.pop("recurring", None)
        if recurring is not None:
            changes.update(_recurrence_columns(RecurringInfo(**recurring)))

        for key in ("due_date", "digital_signature"):
            if fields.get(key) is not None:
                changes[key] = fields[key]
        for key in ("notes", "terms"):
            if key in fields:
                changes[key] = fields[key]

        items = fields.get("items") or invoice.items
        changes.update(compute_totals(items).as_columns())

        invoice = await self.store.update(owner.id, invoice_id, changes)
        logger.info(
            "Invoice updated",
            extra={"invoice_number": invoice.invoice_number, "fields": sorted(changes)},
        )
        return invoice

    async def set_status(self, owner: User, invoice_id: int, status: Any) -> Invoice:
        if status not in ALLOWED_STATUSES:
            raise InvalidStatusError(status, ALLOWED_STATUSES)

        invoice = await self.store.get(owner.id, invoice_id)
        if invoice.status == status:
            paid_at = invoice.paid_at
        elif status == InvoiceStatus.paid.value:
            paid_at = datetime.now(timezone.utc)
        else:
            paid_at = None
            logger.warning(
                "Paid invoice moved back to Pending",
                extra={"invoice_number": invoice.invoice_number, "owner_id": owner.id},
            )

        return await self.store.set_status(owner.id, invoice_id, status, paid_at)

    async def delete(self, owner: User, invoice_id: int) -> None:
        await self.store.delete(owner.id, invoice_id)

    # ----------- render / send -----------

    async def render(self, owner: User, invoice: Invoice) -> bytes:
        """Render off the event loop; ReportLab layout is CPU bound."""
        return await asyncio.to_thread(render_invoice_pdf, invoice, Issuer.from_user(owner))

    async def _render_and_deliver(self, owner: User, invoice: Invoice) -> DeliveryReceipt:
        document = await self.render(owner, invoice)
        subject = f"Invoice {invoice.invoice_number} from {owner.full_name}"
        body = (
            f"Please find attached invoice {invoice.invoice_number} "
            f"for {format_money(invoice.total)}, due {invoice.due_date:%B %d, %Y}."
        )
        return await self.email_service.deliver(
            recipient=invoice.client_email,
            subject=subject,
            body=body,
            document=document,
            filename=pdf_filename(invoice),
        )

    async def send(self, owner: User, invoice_id: int) -> DeliveryReceipt:
        """Render and email an invoice; render and delivery errors propagate."""
        invoice = await self.store.get(owner.id, invoice_id)
        receipt = await self._render_and_deliver(owner, invoice)
        logger.info(
            "Invoice sent",
            extra={"invoice_number": invoice.invoice_number, "message_id": receipt.message_id},
        )
        return receipt
