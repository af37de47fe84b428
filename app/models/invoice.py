from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Text, ForeignKey, Float, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, enum.Enum):
    """Invoice lifecycle. Paid is absorbing for everything but status."""

    pending = "Pending"
    paid = "Paid"


class RecurrenceFrequency(str, enum.Enum):
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class Invoice(Base):
    """Invoice issued by a user to a client."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("api_users.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_number = Column(String(32), unique=True, index=True, nullable=False)

    # Client snapshot, copied at creation time
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False)
    client_address = Column(String(500), nullable=False)
    client_phone = Column(String(30))

    # Line items stored as JSON array
    # Each item: {description, quantity, rate, tax, amount}
    items = Column(JSON, nullable=False, default=list)

    # Derived from items before every persist
    subtotal = Column(Float, nullable=False, default=0)
    tax_total = Column(Float, nullable=False, default=0)
    total = Column(Float, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=InvoiceStatus.pending.value, index=True)
    paid_at = Column(DateTime(timezone=True))

    # Dates
    issue_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    due_date = Column(Date, nullable=False)

    # Recurrence metadata (descriptive only)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_frequency = Column(String(20))
    next_invoice_date = Column(Date)

    notes = Column(Text)
    terms = Column(Text)

    # data: URLs (base64 images)
    digital_signature = Column(Text, nullable=False)
    qr_code = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    owner = relationship("User", back_populates="invoices")

    def __repr__(self):
        return f"<Invoice {self.invoice_number} {self.status}>"

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.paid.value


class InvoiceSequence(Base):
    """Counter row backing invoice number allocation.

    Reserved with SELECT ... FOR UPDATE inside the create transaction, so the
    increment commits or rolls back together with the invoice it numbered.
    """

    __tablename__ = "invoice_sequences"
    __table_args__ = (UniqueConstraint("name", name="uq_invoice_sequences_name"),)

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<InvoiceSequence {self.name}={self.last_value}>"
