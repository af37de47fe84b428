"""
FastAPI Dependencies

Provides dependency injection for database sessions, authentication,
email delivery and the invoice lifecycle.

SECURITY NOTES:
- JWT payloads are never logged
- Bearer token is the primary auth method
- Session cookies are supported but Bearer is preferred
"""

from typing import Annotated
from fastapi import Depends, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt
import bcrypt
from datetime import datetime, timedelta, timezone
import logging

from app.database import get_db
from app.config import settings
from app.exceptions import UnauthorizedError
from app.models.user import User
from app.schemas.auth import TokenData
from app.services.email_service import EmailService, get_email_service
from app.services.invoice_lifecycle import InvoiceLifecycle

logger = logging.getLogger(__name__)


# HTTP Bearer for JWT - primary auth method
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session_token: Annotated[str | None, Cookie(alias="session")] = None,
) -> User:
    """
    Get current user from JWT token or session cookie.

    Invoices are always scoped to this user; there is no anonymous access.
    """
    token = None
    auth_method = None

    if credentials:
        token = credentials.credentials
        auth_method = "bearer"
    elif session_token:
        token = session_token
        auth_method = "cookie"

    if not token:
        raise UnauthorizedError("Could not validate credentials")

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        # SECURITY: Never log JWT payloads
        sub = payload.get("sub")
        if sub is None:
            raise UnauthorizedError("Could not validate credentials")
        token_data = TokenData(user_id=int(sub), email=payload.get("email"))
    except JWTError:
        logger.warning("JWT validation failed", extra={"auth_method": auth_method})
        raise UnauthorizedError("Could not validate credentials")
    except ValueError:
        logger.warning("Invalid token format", extra={"auth_method": auth_method})
        raise UnauthorizedError("Could not validate credentials")

    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise UnauthorizedError("Could not validate credentials")
    if not user.is_active:
        raise UnauthorizedError("User account is disabled")

    logger.debug(
        "User authenticated",
        extra={"user_id": user.id, "auth_method": auth_method}
    )
    return user


def get_invoice_lifecycle(
    db: Annotated[AsyncSession, Depends(get_db)],
    email_service: Annotated[EmailService, Depends(get_email_service)],
) -> InvoiceLifecycle:
    return InvoiceLifecycle(db, email_service)


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
Lifecycle = Annotated[InvoiceLifecycle, Depends(get_invoice_lifecycle)]
