from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Any, Literal, Optional

from app.exceptions import RenderError
from app.models.invoice import InvoiceStatus, RecurrenceFrequency
from app.utils.data_url import decode_data_url


class ClientInfo(BaseModel):
    """Client snapshot copied onto the invoice."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    address: str = Field(..., min_length=1, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)


class ClientUpdate(BaseModel):
    """Partial client snapshot; omitted fields keep their stored value."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)


class LineItem(BaseModel):
    """Schema for an incoming invoice line item. Amount is always computed."""
    description: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    rate: float = Field(..., ge=0)
    tax: float = Field(0, ge=0)


class LineItemResponse(LineItem):
    amount: float


class RecurringInfo(BaseModel):
    """Recurrence metadata. Descriptive only, nothing schedules from it."""
    is_recurring: bool = False
    frequency: Optional[RecurrenceFrequency] = None
    next_invoice_date: Optional[date] = None

    @model_validator(mode="after")
    def require_schedule_when_recurring(self) -> "RecurringInfo":
        if self.is_recurring and (self.frequency is None or self.next_invoice_date is None):
            raise ValueError("frequency and next_invoice_date are required for recurring invoices")
        return self


def _check_image_payload(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        decode_data_url(value)
    except RenderError as e:
        raise ValueError(e.detail) from e
    return value


class InvoiceCreate(BaseModel):
    """Schema for creating an invoice.

    Totals and the QR code are computed server side; the payload carries
    neither.
    """
    client: ClientInfo
    items: list[LineItem] = Field(..., min_length=1)
    due_date: date
    notes: Optional[str] = None
    terms: Optional[str] = None
    recurring: Optional[RecurringInfo] = None
    digital_signature: str = Field(..., min_length=1, description="Base64 data URL of the signature image")

    @field_validator("digital_signature")
    @classmethod
    def check_signature(cls, v: Optional[str]) -> Optional[str]:
        return _check_image_payload(v)


class InvoiceUpdate(BaseModel):
    """Schema for updating a Pending invoice (all fields optional)."""
    client: Optional[ClientUpdate] = None
    items: Optional[list[LineItem]] = Field(None, min_length=1)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    recurring: Optional[RecurringInfo] = None
    digital_signature: Optional[str] = Field(None, min_length=1)

    @field_validator("digital_signature")
    @classmethod
    def check_signature(cls, v: Optional[str]) -> Optional[str]:
        return _check_image_payload(v)


class InvoiceStatusUpdate(BaseModel):
    """Status change request.

    Any JSON value is accepted here; the service checks it against the state
    machine and answers InvalidStatusError for anything but Pending or Paid.
    """
    status: Any = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""
    id: str
    owner_id: str
    invoice_number: str
    client: ClientInfo
    items: list[LineItemResponse]
    subtotal: float
    tax_total: float
    total: float
    status: InvoiceStatus
    paid_at: Optional[datetime] = None
    issue_date: datetime
    due_date: date
    recurring: RecurringInfo
    notes: Optional[str] = None
    terms: Optional[str] = None
    digital_signature: str
    qr_code: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InvoiceListResponse(BaseModel):
    """Owner's invoices, newest first."""
    items: list[InvoiceResponse]
    total: int


class DeliveryOutcome(BaseModel):
    """What happened to the email that follows invoice creation."""
    status: Literal["sent", "failed", "skipped"]
    recipient: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class InvoiceCreateResponse(BaseModel):
    success: bool = True
    message: str
    invoice: InvoiceResponse
    delivery: DeliveryOutcome


class DeliveryReceiptResponse(BaseModel):
    recipient: str
    subject: str
    filename: Optional[str] = None
    message_id: Optional[str] = None
    provider: str
    sent_at: datetime


class InvoiceSendResponse(BaseModel):
    success: bool = True
    message: str
    receipt: DeliveryReceiptResponse
