"""Invoice number allocation.

Numbers look like ``INV-0001``: a fixed prefix and a sequence zero-padded to
four digits. Padding grows past 9999 (``INV-10000``), so anything comparing
numbers must parse the suffix rather than sort the strings.

The sequence lives in an ``InvoiceSequence`` counter row that is locked and
incremented inside the create transaction. The unique constraint on
``invoices.invoice_number`` stays as the last line of defence.
"""

import logging
import re
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AllocationError
from app.models.invoice import Invoice, InvoiceSequence

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
MIN_DIGITS = 4
SEQUENCE_NAME = "invoice"

_NUMBER_RE = re.compile(rf"^{INVOICE_PREFIX}-(\d+)$")


def format_invoice_number(value: int) -> str:
    return f"{INVOICE_PREFIX}-{value:0{MIN_DIGITS}d}"


def parse_invoice_number(number: str) -> int:
    """Numeric suffix of an invoice number.

    Raises:
        AllocationError: if ``number`` is not shaped ``INV-<digits>``.
    """
    match = _NUMBER_RE.match(number or "")
    if not match:
        raise AllocationError(f"Stored invoice number {number!r} does not match {INVOICE_PREFIX}-<digits>")
    return int(match.group(1))


def next_invoice_number(last_number: Optional[str]) -> str:
    """Number following ``last_number``; ``INV-0001`` when there is none."""
    if last_number is None:
        return format_invoice_number(1)
    return format_invoice_number(parse_invoice_number(last_number) + 1)


async def highest_invoice_number(db: AsyncSession) -> Optional[str]:
    """Numerically highest stored invoice number, across all owners."""
    result = await db.execute(
        select(Invoice.invoice_number)
        .order_by(func.length(Invoice.invoice_number).desc(), Invoice.invoice_number.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def reserve_invoice_number(db: AsyncSession) -> str:
    """Reserve the next invoice number inside the caller's transaction.

    The counter row is seeded from the highest stored invoice the first time,
    so an existing store carries on from where it was. Nothing is committed
    here; the caller's commit (or rollback) settles the reservation.
    """
    result = await db.execute(
        select(InvoiceSequence)
        .where(InvoiceSequence.name == SEQUENCE_NAME)
        .with_for_update()
    )
    sequence = result.scalar_one_or_none()

    if sequence is None:
        last_number = await highest_invoice_number(db)
        start = parse_invoice_number(last_number) if last_number else 0
        sequence = InvoiceSequence(name=SEQUENCE_NAME, last_value=start)
        db.add(sequence)
        logger.info("Seeded invoice sequence", extra={"start": start})

    sequence.last_value = sequence.last_value + 1
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.error("Invoice sequence row was created concurrently")
        raise AllocationError("Invoice number allocation conflicted with another request", conflict=True)
    return format_invoice_number(sequence.last_value)
