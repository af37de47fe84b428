from app.models.user import User
from app.models.invoice import Invoice, InvoiceSequence, InvoiceStatus

__all__ = [
    "User",
    "Invoice",
    "InvoiceSequence",
    "InvoiceStatus",
]
