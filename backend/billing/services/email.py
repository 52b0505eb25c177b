"""
Email service for delivering invoices.

WHAT: A provider-agnostic interface for sending the invoice email with
the invoice PDF (and any extra documents) attached.

WHY: Sending is the SEND transition of the invoice lifecycle, and the
status only changes after the provider confirms delivery. The service
therefore reports failure explicitly (EmailServiceError) instead of
swallowing it.

HOW: Uses the Resend API through httpx when RESEND_API_KEY is set and a
mock provider otherwise (development and tests). Attachments are sent
base64 encoded.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from billing.core.config import settings
from billing.core.exceptions import EmailServiceError
from billing.models.base import utcnow
from billing.models.invoice import Invoice
from billing.services.email_template_service import (
    EmailTemplateService,
    get_email_template_service,
)

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


# ============================================================================
# Email Types and Messages
# ============================================================================


class EmailType(str, Enum):
    INVOICE = "invoice"


@dataclass
class EmailAttachment:
    """A file attached to an email."""

    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class EmailMessage:
    """
    Represents an email to be sent.
    """

    to_email: str
    """Recipient email address."""

    subject: str
    """Email subject line."""

    html_content: str
    """HTML email body."""

    text_content: Optional[str] = None
    """Plain text fallback."""

    from_email: Optional[str] = None
    """Sender (defaults to EMAIL_FROM or the company address)."""

    reply_to: Optional[str] = None
    """Reply-to address."""

    attachments: List[EmailAttachment] = field(default_factory=list)

    email_type: EmailType = EmailType.INVOICE
    """Type of email for tracking/logging."""

    metadata: Optional[Dict[str, Any]] = None
    """Additional metadata for tracking."""


@dataclass
class EmailResult:
    """
    Result of an email send operation.
    """

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    WHY: Provider abstraction allows testing with a mock provider and
    switching providers without touching the invoice workflow.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Returns:
            EmailResult with success status and provider details
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """True if API keys/credentials are present."""


def default_sender() -> str:
    return settings.EMAIL_FROM or f"{settings.COMPANY_NAME} <{settings.COMPANY_EMAIL}>"


class ResendProvider(EmailProvider):
    """
    Resend email provider implementation.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: float = 30.0):
        self._api_key = api_key or settings.RESEND_API_KEY
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _payload(self, message: EmailMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "from": message.from_email or default_sender(),
            "to": [message.to_email],
            "subject": message.subject,
            "html": message.html_content,
        }
        if message.text_content:
            payload["text"] = message.text_content
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        if message.attachments:
            payload["attachments"] = [
                {
                    "filename": attachment.filename,
                    "content": base64.b64encode(attachment.content).decode("ascii"),
                }
                for attachment in message.attachments
            ]
        return payload

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via Resend API.

        HOW: Uses httpx for async HTTP requests to the Resend API.
        Network errors are reported as an unsuccessful result.
        """
        if not self.is_configured():
            return EmailResult(
                success=False,
                error="Resend API key not configured",
                provider="resend",
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=self._payload(message),
                )
        except httpx.HTTPError as e:
            logger.error(f"Resend send error: {e}")
            return EmailResult(success=False, error=str(e), provider="resend")

        if response.status_code in (200, 201):
            data = response.json()
            return EmailResult(
                success=True,
                message_id=data.get("id"),
                provider="resend",
            )
        return EmailResult(
            success=False,
            error=f"Resend API error: {response.status_code} - {response.text}",
            provider="resend",
        )


class MockEmailProvider(EmailProvider):
    """
    Mock email provider for testing and development.

    Logs emails instead of sending them. Setting ``fail_with`` makes every
    send fail with that error, to exercise delivery-failure paths.
    """

    sent_emails: List[EmailMessage] = []
    """Class-level list to track sent emails for testing."""

    fail_with: Optional[str] = None

    def is_configured(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        if MockEmailProvider.fail_with:
            return EmailResult(success=False, error=MockEmailProvider.fail_with, provider="mock")

        logger.info(
            f"[MOCK EMAIL] To: {message.to_email}, "
            f"Subject: {message.subject}, "
            f"Attachments: {[a.filename for a in message.attachments]}"
        )
        MockEmailProvider.sent_emails.append(message)

        return EmailResult(
            success=True,
            message_id=f"mock-{utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_emails(cls):
        """Reset tracked emails and failure mode (for test cleanup)."""
        cls.sent_emails = []
        cls.fail_with = None


# ============================================================================
# Email Service
# ============================================================================


class EmailService:
    """
    High-level email service.

    HOW: Uses the configured provider, Jinja2 templates for the invoice
    body, and async sending.
    """

    def __init__(
        self,
        provider: Optional[EmailProvider] = None,
        template_service: Optional[EmailTemplateService] = None,
    ):
        if provider:
            self._provider = provider
        elif settings.RESEND_API_KEY:
            self._provider = ResendProvider()
        else:
            logger.warning("No email provider configured, using mock provider")
            self._provider = MockEmailProvider()

        self._template_service = template_service or get_email_template_service()

    @property
    def provider(self) -> EmailProvider:
        return self._provider

    async def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message and log the outcome.
        """
        logger.info(
            f"Sending {message.email_type.value} email to {message.to_email}",
            extra={
                "email_type": message.email_type.value,
                "to": message.to_email,
            },
        )

        result = await self._provider.send(message)

        if result.success:
            logger.info(
                f"Email sent successfully: {result.message_id}",
                extra={
                    "message_id": result.message_id,
                    "provider": result.provider,
                },
            )
        else:
            logger.error(
                f"Email send failed: {result.error}",
                extra={
                    "email_type": message.email_type.value,
                    "to": message.to_email,
                    "error": result.error,
                },
            )

        return result

    async def send_invoice_email(
        self,
        invoice: Invoice,
        invoice_pdf: bytes,
        subject: Optional[str] = None,
        message: Optional[str] = None,
        attachments: Optional[List[EmailAttachment]] = None,
    ) -> EmailResult:
        """
        Email an invoice PDF to the invoice's client.

        Args:
            invoice: Invoice being sent (client_email is the recipient)
            invoice_pdf: Rendered invoice PDF
            subject: Optional subject override
            message: Optional message shown above the invoice summary
            attachments: Extra files to attach after the invoice PDF

        Returns:
            EmailResult of a successful delivery

        Raises:
            EmailServiceError: If the provider did not accept the email
        """
        subject, html_content, text_content = self._template_service.render_invoice_email(
            invoice, subject=subject, message=message
        )

        email = EmailMessage(
            to_email=invoice.client_email,
            subject=subject,
            html_content=html_content,
            text_content=text_content,
            reply_to=settings.COMPANY_EMAIL,
            attachments=[
                EmailAttachment(filename=f"{invoice.invoice_number}.pdf", content=invoice_pdf),
                *(attachments or []),
            ],
            email_type=EmailType.INVOICE,
            metadata={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
            },
        )

        result = await self.send_email(email)
        if not result.success:
            raise EmailServiceError(
                message="Failed to deliver invoice email",
                invoice_id=invoice.id,
                provider=result.provider,
                error=result.error,
            )
        return result


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """
    Get or create the global email service instance.

    Returns:
        EmailService instance
    """
    global _email_service

    if _email_service is None:
        _email_service = EmailService()

    return _email_service
