from app.schemas.auth import (
    UserCreate,
    UserResponse,
    Token,
    TokenData,
    LoginRequest,
)
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceStatusUpdate,
    InvoiceResponse,
    InvoiceListResponse,
)

__all__ = [
    "UserCreate",
    "UserResponse",
    "Token",
    "TokenData",
    "LoginRequest",
    "InvoiceCreate",
    "InvoiceUpdate",
    "InvoiceStatusUpdate",
    "InvoiceResponse",
    "InvoiceListResponse",
]
