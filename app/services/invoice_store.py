"""Owner-scoped persistence for invoices.

Every read and write is filtered by owner, so an invoice that belongs to
someone else looks exactly like one that does not exist. Paid invoices only
accept status changes; anything else raises ``ImmutableStateError``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AllocationError, ImmutableStateError, InvoiceNotFoundError
from app.models.invoice import Invoice

logger = logging.getLogger(__name__)

# The only column a Paid invoice may still change (plus its bookkeeping)
STATUS_FIELDS = frozenset({"status", "paid_at"})


def _is_number_collision(error: IntegrityError) -> bool:
    # SQLite: "UNIQUE constraint failed: invoices.invoice_number"
    # Postgres: duplicate key ... "ix_invoices_invoice_number"
    message = str(error.orig).lower()
    return "unique" in message and "invoice_number" in message


class InvoiceStore:
    """Invoice repository bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, invoice: Invoice) -> Invoice:
        """Insert and commit a fully built invoice.

        A duplicate invoice number means another writer won the allocation
        race; the transaction is rolled back and reported as a conflict. Any
        other integrity failure is rolled back and re-raised as is.
        """
        self.db.add(invoice)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not _is_number_collision(e):
                raise
            logger.error(
                "Invoice number collision on insert",
                extra={"invoice_number": invoice.invoice_number, "error": type(e).__name__},
            )
            raise AllocationError(
                f"Invoice number {invoice.invoice_number} is already taken",
                conflict=True,
            ) from e
        await self.db.refresh(invoice)
        return invoice

    async def get(self, owner_id: int, invoice_id: int) -> Invoice:
        result = await self.db.execute(
            select(Invoice).where(Invoice.id == invoice_id, Invoice.owner_id == owner_id)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    async def list(self, owner_id: int) -> List[Invoice]:
        """All invoices of ``owner_id``, newest first."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.owner_id == owner_id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )
        return list(result.scalars().all())

    async def update(self, owner_id: int, invoice_id: int, changes: Dict[str, Any]) -> Invoice:
        """Apply column changes and commit.

        Raises:
            InvoiceNotFoundError: no such invoice for this owner.
            ImmutableStateError: the invoice is Paid and ``changes`` touches
                more than its status.
        """
        invoice = await self.get(owner_id, invoice_id)
        if invoice.is_paid and not set(changes) <= STATUS_FIELDS:
            raise ImmutableStateError(invoice.invoice_number, "modified")

        for field, value in changes.items():
            setattr(invoice, field, value)

        await self.db.commit()
        await self.db.refresh(invoice)
        return invoice

    async def set_status(
        self, owner_id: int, invoice_id: int, status: str, paid_at: Optional[datetime]
    ) -> Invoice:
        """Status-only transition; the one write allowed on a Paid invoice."""
        return await self.update(owner_id, invoice_id, {"status": status, "paid_at": paid_at})

    async def delete(self, owner_id: int, invoice_id: int) -> None:
        invoice = await self.get(owner_id, invoice_id)
        if invoice.is_paid:
            raise ImmutableStateError(invoice.invoice_number, "deleted")

        await self.db.delete(invoice)
        await self.db.commit()
        logger.info(
            "Invoice deleted",
            extra={"invoice_number": invoice.invoice_number, "owner_id": owner_id},
        )
