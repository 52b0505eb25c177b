"""
Email Template Service for rendering Jinja2 email templates.

WHAT: Loads and renders the HTML body of the invoice email.

WHY: The body is branded with the company details and summarizes the
invoice (dates, total, balance due) around the admin's optional message;
keeping the markup in a template keeps it out of the sending code.

HOW: Uses a Jinja2 environment with FileSystemLoader over
billing/templates/email, autoescaping HTML.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from billing.core.config import settings
from billing.core.exceptions import EmailServiceError
from billing.models.base import utcnow
from billing.models.invoice import Invoice
from billing.services.pdf_service import format_currency, format_date

logger = logging.getLogger(__name__)


class EmailTemplateService:
    """
    Service for rendering email templates.

    Example:
        template_service = EmailTemplateService()
        subject, html, text = template_service.render_invoice_email(invoice)
    """

    def __init__(self, template_dir: Optional[Path] = None):
        """
        Args:
            template_dir: Path to templates directory (defaults to billing/templates/email)
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates" / "email"

        self._template_dir = template_dir
        self._env = Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _get_base_context(self) -> Dict[str, Any]:
        return {
            "year": utcnow().year,
            "company_name": settings.COMPANY_NAME,
            "company_address": settings.COMPANY_ADDRESS,
            "company_city_state_zip": settings.COMPANY_CITY_STATE_ZIP,
            "company_phone": settings.COMPANY_PHONE,
            "company_email": settings.COMPANY_EMAIL,
        }

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render a template with given context.

        Raises:
            EmailServiceError: If template not found or render fails
        """
        try:
            template = self._env.get_template(template_name)
            return template.render(**{**self._get_base_context(), **context})
        except TemplateNotFound:
            logger.error(f"Email template not found: {template_name}")
            raise EmailServiceError(
                message=f"Email template not found: {template_name}",
                template=template_name,
            )
        except Exception as e:
            logger.error(f"Error rendering template {template_name}: {e}")
            raise EmailServiceError(
                message="Failed to render email template",
                template=template_name,
                error=str(e),
            )

    @staticmethod
    def default_subject(invoice_number: str) -> str:
        return f"{settings.COMPANY_NAME} - Invoice {invoice_number}"

    def render_invoice_email(
        self,
        invoice: Invoice,
        subject: Optional[str] = None,
        message: Optional[str] = None,
    ) -> tuple[str, str, str]:
        """
        Render the email that carries an invoice PDF.

        Args:
            invoice: Invoice being sent
            subject: Subject line; blank uses "<Company> - Invoice <number>"
            message: Optional free-text message from the admin

        Returns:
            Tuple of (subject, html_content, text_content)
        """
        subject = (subject or "").strip() or self.default_subject(invoice.invoice_number)
        message = (message or "").strip()
        context = {
            "client_name": invoice.client_name,
            "invoice_number": invoice.invoice_number,
            "invoice_date": format_date(invoice.invoice_date),
            "due_date": format_date(invoice.due_date),
            "total": format_currency(invoice.total),
            "amount_paid": format_currency(invoice.amount_paid),
            "amount_paid_nonzero": bool(invoice.amount_paid and invoice.amount_paid > 0),
            "outstanding_balance": format_currency(invoice.outstanding_balance),
            "message": message,
        }
        html = self.render_template("invoice_sent.html", context)

        intro = message or (
            f"Please find attached invoice {invoice.invoice_number} from {settings.COMPANY_NAME}."
        )
        text = (
            f"Hi {invoice.client_name},\n\n"
            f"{intro}\n\n"
            f"Invoice: {invoice.invoice_number}\n"
            f"Total: {context['total']}\n"
            f"Balance due: {context['outstanding_balance']}\n"
            f"Due: {context['due_date']}\n\n"
            f"---\n{settings.COMPANY_NAME}\n{settings.COMPANY_PHONE} | {settings.COMPANY_EMAIL}"
        )
        return subject, html, text


_template_service: Optional[EmailTemplateService] = None


def get_email_template_service() -> EmailTemplateService:
    """Get or create the global template service instance."""
    global _template_service

    if _template_service is None:
        _template_service = EmailTemplateService()

    return _template_service
