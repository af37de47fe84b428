"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .user import UserFactory
from .invoice import (
    ClientFactory,
    LineItemFactory,
    InvoiceCreateFactory,
    RecurringInvoiceCreateFactory,
    InvoiceModelFactory,
    PaidInvoiceModelFactory,
    signature_data_url,
)

__all__ = [
    "UserFactory",
    "ClientFactory",
    "LineItemFactory",
    "InvoiceCreateFactory",
    "RecurringInvoiceCreateFactory",
    "InvoiceModelFactory",
    "PaidInvoiceModelFactory",
    "signature_data_url",
]
