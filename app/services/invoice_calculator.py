"""Invoice amount calculation.

Pure functions, no I/O. Totals are kept as unrounded floats so recomputing
from stored items always reproduces the stored values; rounding to cents only
happens where amounts are shown (PDF, email text).
"""

import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Iterable, List, Mapping

from app.exceptions import ValidationError


@dataclass(frozen=True)
class InvoiceTotals:
    """Result of :func:`compute_totals`."""

    items: List[dict] = field(default_factory=list)
    subtotal: float = 0.0
    tax_total: float = 0.0
    total: float = 0.0

    def as_columns(self) -> dict:
        """Column values for the Invoice model."""
        return {
            "items": self.items,
            "subtotal": self.subtotal,
            "tax_total": self.tax_total,
            "total": self.total,
        }


def _is_number(value: Any) -> bool:
    if not isinstance(value, Real) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        return False


def _item_errors(index: int, item: Mapping[str, Any]) -> List[dict]:
    errors = []
    prefix = f"items.{index}"

    description = item.get("description")
    if not isinstance(description, str) or not description.strip():
        errors.append({"field": f"{prefix}.description", "message": "Description is required"})

    quantity = item.get("quantity")
    if not _is_number(quantity) or not float(quantity).is_integer() or quantity < 1:
        errors.append({"field": f"{prefix}.quantity", "message": "Quantity must be a whole number of at least 1"})

    rate = item.get("rate")
    if not _is_number(rate) or rate < 0:
        errors.append({"field": f"{prefix}.rate", "message": "Rate cannot be negative"})

    tax = item.get("tax", 0)
    if tax is not None and (not _is_number(tax) or tax < 0):
        errors.append({"field": f"{prefix}.tax", "message": "Tax cannot be negative"})

    return errors


def compute_totals(items: Iterable[Mapping[str, Any]]) -> InvoiceTotals:
    """Compute per-item amounts and invoice totals.

    ``amount = quantity * rate``; tax is excluded from the amount and summed
    separately as ``amount * tax / 100``. Any ``amount`` already present on an
    item is ignored, so feeding the output items back in is idempotent.

    Raises:
        ValidationError: if any item is invalid, there are no items, or an
            amount falls outside float range.
    """
    items = list(items)
    if not items:
        raise ValidationError(
            "An invoice needs at least one line item",
            errors=[{"field": "items", "message": "At least one item is required"}],
        )

    errors = []
    for index, item in enumerate(items):
        errors.extend(_item_errors(index, item))
    if errors:
        raise ValidationError("Invalid line items", errors=errors)

    computed = []
    subtotal = 0.0
    tax_total = 0.0
    for index, item in enumerate(items):
        quantity = int(item["quantity"])
        rate = float(item["rate"])
        tax = float(item.get("tax") or 0)
        amount = quantity * rate
        item_tax = amount * tax / 100
        if not math.isfinite(amount + item_tax):
            raise ValidationError(
                "Line item amount is too large",
                errors=[{"field": f"items.{index}.amount", "message": "Amount is out of range"}],
            )

        subtotal += amount
        tax_total += item_tax
        computed.append({
            "description": item["description"].strip(),
            "quantity": quantity,
            "rate": rate,
            "tax": tax,
            "amount": amount,
        })

    if not math.isfinite(subtotal + tax_total):
        raise ValidationError(
            "Invoice total is too large",
            errors=[{"field": "items", "message": "Total is out of range"}],
        )

    return InvoiceTotals(
        items=computed,
        subtotal=subtotal,
        tax_total=tax_total,
        total=subtotal + tax_total,
    )


def format_money(amount: float) -> str:
    """Presentation rounding: two decimals with thousands separators."""
    return f"${amount:,.2f}"
