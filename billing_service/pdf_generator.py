import asyncio
import logging
import os
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import jinja2

from .core.config import Settings, settings as default_settings
from .errors import RenderError

logger = logging.getLogger(__name__)


class PDFGenerator:
    """Render billing invoices to PDF files, one file per billing number"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.template_dir = Path(__file__).parent / "templates"
        self.output_dir = Path(self.settings.PDF_OUTPUT_DIR)

        # Setup Jinja2 environment
        self.jinja_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.template_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
        )

        # Add custom filters
        self.jinja_env.filters["currency"] = self._format_currency
        self.jinja_env.filters["date"] = self._format_date

    def pdf_path(self, billing_number: str) -> Path:
        return self.output_dir / f"{billing_number}.pdf"

    def pdf_exists(self, billing_number: str) -> bool:
        return self.pdf_path(billing_number).is_file()

    def delete_pdf(self, billing_number: str) -> bool:
        path = self.pdf_path(billing_number)
        if not path.is_file():
            return False
        path.unlink()
        logger.info(f"Deleted PDF {path}")
        return True

    async def generate_invoice(self, billing: Any) -> str:
        """Render the invoice PDF and return its file path.

        Regenerating for the same billing number overwrites the previous file.
        """
        try:
            html_content = self.render_html(billing)
            loop = asyncio.get_running_loop()
            pdf_path = await loop.run_in_executor(None, self._write_pdf, html_content, billing.billing_number)
        except RenderError:
            raise
        except Exception as e:
            logger.error(f"PDF generation failed for {billing.billing_number}: {e}")
            raise RenderError(f"PDF generation failed: {e}") from e

        logger.info(f"Generated PDF for {billing.billing_number} at {pdf_path}")
        return str(pdf_path)

    def render_html(self, billing: Any) -> str:
        template = self.jinja_env.get_template("invoice.html")
        return template.render(**self._prepare_template_context(billing))

    def _prepare_template_context(self, billing: Any) -> Dict[str, Any]:
        """Prepare context data for template rendering"""
        return {
            "billing": billing,
            "items": list(billing.items),
            "company": {
                "name": self.settings.COMPANY_NAME,
                "address": self.settings.COMPANY_ADDRESS,
                "email": self.settings.COMPANY_EMAIL,
            },
            "generated_at": datetime.now(timezone.utc),
        }

    def _write_pdf(self, html_content: str, billing_number: str) -> Path:
        """Convert HTML to PDF using WeasyPrint"""
        from weasyprint import HTML

        self.output_dir.mkdir(parents=True, exist_ok=True)
        pdf_path = self.pdf_path(billing_number)
        # Write beside the target, then swap it in so readers never see a partial file
        partial_path = pdf_path.with_name(f".{pdf_path.name}.{uuid.uuid4().hex}.partial")
        try:
            HTML(string=html_content, base_url=str(self.template_dir)).write_pdf(str(partial_path))
            os.replace(partial_path, pdf_path)
        finally:
            partial_path.unlink(missing_ok=True)
        return pdf_path

    def _format_currency(self, value: Any) -> str:
        """Format decimal as currency"""
        if value is None:
            value = Decimal("0")
        return f"{self.settings.CURRENCY_SYMBOL}{Decimal(str(value)):,.2f}"

    def _format_date(self, value: Any, format_string: str = "%B %d, %Y") -> str:
        """Format date"""
        if value is None:
            return ""
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if isinstance(value, (date, datetime)):
            return value.strftime(format_string)
        return str(value)
