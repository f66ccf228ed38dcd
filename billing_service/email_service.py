"""
Email delivery for billing invoices over SMTP
"""

import asyncio
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from pathlib import Path
from typing import Any, List, Optional

import jinja2

from .core.config import Settings, settings as default_settings
from .errors import DeliveryError

logger = logging.getLogger(__name__)


class EmailService:
    """Sends invoice emails with the generated PDF attached"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.template_dir = Path(__file__).parent / "templates"
        self.jinja_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.template_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
        )
        self.jinja_env.filters["currency"] = lambda value: f"{self.settings.CURRENCY_SYMBOL}{float(value or 0):,.2f}"

    @property
    def configured(self) -> bool:
        return self.settings.email_configured

    @property
    def from_address(self) -> str:
        return formataddr((self.settings.SMTP_FROM_NAME, self.settings.SMTP_USER))

    def _ensure_configured(self) -> None:
        if not self.configured:
            raise DeliveryError("Email service is not configured. Set SMTP_USER and SMTP_PASSWORD")

    def build_invoice_message(self, billing: Any, recipient: str) -> MIMEMultipart:
        """Compose the invoice email; the PDF must already exist"""
        pdf_path = Path(billing.generated_file_path) if billing.generated_file_path else None
        if pdf_path is None or not pdf_path.is_file():
            raise DeliveryError(f"PDF for billing {billing.billing_number} has not been generated")

        msg = MIMEMultipart("mixed")
        msg["Subject"] = f"Billing Statement {billing.billing_number} - {self.settings.COMPANY_NAME}"
        msg["From"] = self.from_address
        msg["To"] = recipient

        html_content = self.jinja_env.get_template("invoice_email.html").render(
            billing=billing,
            company={"name": self.settings.COMPANY_NAME, "email": self.settings.COMPANY_EMAIL},
        )
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        attachment = MIMEApplication(pdf_path.read_bytes(), _subtype="pdf")
        attachment.add_header("Content-Disposition", "attachment", filename=f"{billing.billing_number}.pdf")
        msg.attach(attachment)
        return msg

    async def send_invoice(self, billing: Any, recipient: str) -> None:
        """Send the invoice PDF to ``recipient``; raises DeliveryError on any failure"""
        self._ensure_configured()
        msg = self.build_invoice_message(billing, recipient)
        await self._deliver(msg, [recipient])
        logger.info(f"Invoice {billing.billing_number} emailed to {recipient}")

    async def send_test_email(self, recipient: str) -> None:
        self._ensure_configured()
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"Test Email - {self.settings.APP_NAME}"
        msg["From"] = self.from_address
        msg["To"] = recipient
        html_content = self.jinja_env.get_template("test_email.html").render(
            app_name=self.settings.APP_NAME,
            sent_at=datetime.now(timezone.utc),
        )
        msg.attach(MIMEText(html_content, "html", "utf-8"))
        await self._deliver(msg, [recipient])
        logger.info(f"Test email sent to {recipient}")

    async def test_connection(self) -> bool:
        """Open an authenticated SMTP session and close it again"""
        self._ensure_configured()
        try:
            await asyncio.get_running_loop().run_in_executor(None, self._check_connection)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP connection test failed: {e}")
            raise DeliveryError(f"SMTP connection failed: {e}") from e
        return True

    async def _deliver(self, msg: MIMEMultipart, to_emails: List[str]) -> None:
        try:
            await asyncio.get_running_loop().run_in_executor(None, self._send_email, msg, to_emails)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {', '.join(to_emails)}: {e}")
            raise DeliveryError(f"Failed to send email: {e}") from e

    def _open(self) -> smtplib.SMTP:
        server = smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=self.settings.EMAIL_SEND_TIMEOUT_SECONDS)
        if self.settings.SMTP_USE_TLS:
            server.starttls()
        server.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
        return server

    def _send_email(self, msg: MIMEMultipart, to_emails: List[str]) -> None:
        """Send email synchronously"""
        with self._open() as server:
            server.send_message(msg, to_addrs=to_emails)

    def _check_connection(self) -> None:
        with self._open() as server:
            server.noop()
