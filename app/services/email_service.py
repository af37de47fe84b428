"""Email Service - Brevo (formerly Sendinblue) integration for invoice delivery.

Features:
- Transport check against the Brevo account endpoint before each delivery
- Transactional email with the invoice PDF attached
- Failures raised as ``DeliveryError``; callers decide whether to absorb them
- No external SDK required (uses httpx)
"""

import base64
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from html import escape
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.exceptions import DeliveryError

logger = logging.getLogger(__name__)

# Brevo API endpoints
BREVO_API_BASE = "https://api.brevo.com/v3"
BREVO_SEND_URL = f"{BREVO_API_BASE}/smtp/email"
BREVO_ACCOUNT_URL = f"{BREVO_API_BASE}/account"

PROVIDER = "brevo"


@dataclass
class DeliveryReceipt:
    """Proof that the provider accepted a message."""

    recipient: str
    subject: str
    filename: Optional[str]
    message_id: Optional[str]
    provider: str = PROVIDER
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["sent_at"] = self.sent_at.isoformat()
        return data


def invoice_email_html(text: str) -> str:
    """HTML body wrapped around the plain-text message."""
    return f"""
    <div style="font-family: Arial, sans-serif; padding: 20px;">
      <h2>Invoice</h2>
      <p>{escape(text)}</p>
      <p>Please find the invoice attached to this email.</p>
      <p style="margin-top: 20px;">Thank you for your business!</p>
      <hr style="margin: 20px 0;">
      <p style="color: #666; font-size: 12px;">
        This is an automated email. Please do not reply directly to this message.
      </p>
    </div>
    """


class EmailService:
    """Service for sending invoice emails via the Brevo API."""

    provider = PROVIDER

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.BREVO_API_KEY
        self.from_address = settings.EMAIL_FROM_ADDRESS
        self.from_name = settings.EMAIL_FROM_NAME
        self.timeout = settings.EMAIL_TIMEOUT_SECONDS
        # Injected transport lets tests stand in for the Brevo API
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        """Check if email service is properly configured."""
        return bool(self.api_key) and bool(self.from_address)

    def get_status(self) -> Dict[str, Any]:
        """Get email service configuration status."""
        if not self.is_configured:
            return {
                "configured": False,
                "provider": self.provider,
                "message": "Brevo API key not configured. Set BREVO_API_KEY environment variable.",
            }
        return {
            "configured": True,
            "provider": self.provider,
            "from_address": self.from_address,
            "from_name": self.from_name,
            "message": "Brevo email service configured",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "api-key": self.api_key or "",
            "content-type": "application/json",
        }

    async def verify_connection(self) -> None:
        """Confirm the provider is reachable and accepts our key.

        Raises:
            DeliveryError: not configured, unreachable, or key rejected.
        """
        if not self.is_configured:
            raise DeliveryError("Brevo API key not configured", provider=self.provider)

        try:
            async with self._client() as client:
                response = await client.get(BREVO_ACCOUNT_URL, headers=self._headers())
        except httpx.TimeoutException as e:
            raise DeliveryError("Brevo API connection check timed out", provider=self.provider) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"Brevo API unreachable: {type(e).__name__}", provider=self.provider) from e

        if response.status_code != 200:
            logger.error(
                "Brevo connection check rejected",
                extra={"status_code": response.status_code},
            )
            raise DeliveryError(
                f"Brevo API connection check failed with status {response.status_code}",
                provider=self.provider,
            )

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        reply_to: Optional[str] = None,
        attachments: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Send an email via Brevo API.

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Plain text body
            html_body: Optional HTML body (plain text wrapped in basic HTML otherwise)
            reply_to: Optional reply-to address
            attachments: Optional list of dicts with 'content' (base64) and 'name' (filename)

        Returns:
            Dict with status_code and message_id

        Raises:
            DeliveryError: on any transport or API failure.
        """
        if not self.is_configured:
            raise DeliveryError("Brevo API key not configured", provider=self.provider)

        payload: Dict[str, Any] = {
            "sender": {
                "name": self.from_name,
                "email": self.from_address,
            },
            "to": [{"email": to}],
            "subject": subject,
            "textContent": body,
            "htmlContent": html_body or f"<html><body><p>{escape(body)}</p></body></html>",
        }
        if reply_to:
            payload["replyTo"] = {"email": reply_to}
        # Brevo format: [{content: base64, name: filename}]
        if attachments:
            payload["attachment"] = attachments

        try:
            async with self._client() as client:
                response = await client.post(BREVO_SEND_URL, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error("Brevo API request timed out", extra={"to": to})
            raise DeliveryError("Brevo API request timed out", provider=self.provider) from e
        except httpx.HTTPError as e:
            logger.error(
                "Failed to send email via Brevo",
                extra={"to": to, "error": type(e).__name__},
            )
            raise DeliveryError(f"Brevo API unreachable: {type(e).__name__}", provider=self.provider) from e

        if response.status_code not in (200, 201, 202):
            logger.error(
                "Brevo API error",
                extra={"status_code": response.status_code, "error": response.text[:200]},
            )
            raise DeliveryError(f"Brevo API error: {response.text[:200]}", provider=self.provider)

        message_id = response.json().get("messageId")
        logger.info(
            "Email sent successfully via Brevo",
            extra={
                "to": to,
                "subject": subject[:50],
                "status_code": response.status_code,
                "message_id": message_id,
            },
        )
        return {"status_code": response.status_code, "message_id": message_id}

    async def deliver(
        self,
        recipient: str,
        subject: str,
        body: str,
        document: bytes,
        filename: str,
    ) -> DeliveryReceipt:
        """Check the transport, then email ``document`` as a named PDF attachment."""
        await self.verify_connection()
        result = await self.send_email(
            to=recipient,
            subject=subject,
            body=body,
            html_body=invoice_email_html(body),
            attachments=[{
                "content": base64.b64encode(document).decode("ascii"),
                "name": filename,
            }],
        )
        return DeliveryReceipt(
            recipient=recipient,
            subject=subject,
            filename=filename,
            message_id=result.get("message_id"),
            provider=self.provider,
        )

    async def check_connection(self) -> bool:
        """Startup probe: log whether delivery will work, never raise."""
        try:
            await self.verify_connection()
        except DeliveryError as e:
            logger.warning("Email server connection failed: %s", e.detail)
            return False
        logger.info("Email server connection established")
        return True


class MockEmailService(EmailService):
    """In-memory email service for testing and development.

    ``reachable=False`` makes every delivery fail the transport check.
    """

    provider = "mock"

    def __init__(self, reachable: bool = True):
        self.api_key = "mock-key"
        self.from_address = "test@example.com"
        self.from_name = "Test Sender"
        self.timeout = 1.0
        self._transport = None
        self.reachable = reachable
        self._sent_emails: List[Dict[str, Any]] = []

    @property
    def sent_emails(self) -> List[Dict[str, Any]]:
        return list(self._sent_emails)

    def get_status(self) -> Dict[str, Any]:
        return {
            "configured": True,
            "provider": self.provider,
            "from_address": self.from_address,
            "from_name": self.from_name,
            "message": "Mock email service (emails not actually sent)",
        }

    async def verify_connection(self) -> None:
        if not self.reachable:
            raise DeliveryError("Mock transport unreachable", provider=self.provider)

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        reply_to: Optional[str] = None,
        attachments: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        if not self.reachable:
            raise DeliveryError("Mock transport unreachable", provider=self.provider)

        mock_message_id = f"mock-{uuid.uuid4().hex[:16]}"
        self._sent_emails.append(
            {
                "to": to,
                "subject": subject,
                "body": body,
                "html_body": html_body,
                "reply_to": reply_to,
                "attachments": attachments or [],
                "message_id": mock_message_id,
            }
        )
        logger.info(f"Mock email sent to {to}: {subject}")
        return {"status_code": 201, "message_id": mock_message_id}


def get_email_service() -> EmailService:
    """FastAPI dependency; overridden with MockEmailService in tests."""
    return EmailService()
