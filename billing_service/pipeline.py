"""
Billing creation pipeline: validate -> persist -> render PDF -> email.

Only validation and persistence failures fail the request. Once the billing
is stored, PDF and email failures are recorded on the billing and returned as
warnings next to the created record.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, models, schemas
from .core.config import Settings, settings as default_settings
from .errors import BillingServiceError, DeliveryError, DuplicateKeyError, RenderError, ValidationError
from .metrics import BILLING_EMAIL_TOTAL, BILLING_PDF_TOTAL, BILLINGS_CREATED_TOTAL
from .validation import validate_billing_create

logger = logging.getLogger(__name__)


def _failure_message(exc: Exception) -> str:
    return exc.message if isinstance(exc, BillingServiceError) else str(exc) or exc.__class__.__name__


async def render_invoice(
    db: AsyncSession, billing: models.Billing, pdf_generator: Any, timeout: float
) -> models.Billing:
    """Render (or re-render) the PDF and record it; raises RenderError on failure or timeout"""
    try:
        file_path = await asyncio.wait_for(pdf_generator.generate_invoice(billing), timeout)
    except Exception as exc:
        BILLING_PDF_TOTAL.labels(result="failure").inc()
        if isinstance(exc, asyncio.TimeoutError):
            raise RenderError(f"PDF generation timed out after {timeout:g} seconds") from exc
        if isinstance(exc, RenderError):
            raise
        raise RenderError(f"PDF generation failed: {_failure_message(exc)}") from exc
    BILLING_PDF_TOTAL.labels(result="success").inc()
    return await crud.mark_pdf_generated(db, billing, file_path)


async def deliver_invoice(
    db: AsyncSession, billing: models.Billing, email_service: Any, recipient: str, timeout: float
) -> models.Billing:
    """Send the invoice, tracking Pending -> Sent | Failed on the billing.

    Raises DeliveryError (after persisting Failed) when sending fails or times out.
    A cancelled send is also recorded as Failed before the cancellation propagates.
    """
    await crud.set_email_status(db, billing, schemas.EmailStatus.PENDING)
    try:
        await asyncio.wait_for(email_service.send_invoice(billing, recipient), timeout)
    except asyncio.CancelledError:
        BILLING_EMAIL_TOTAL.labels(result="failure").inc()
        await crud.set_email_status(db, billing, schemas.EmailStatus.FAILED)
        raise
    except Exception as exc:
        BILLING_EMAIL_TOTAL.labels(result="failure").inc()
        await crud.set_email_status(db, billing, schemas.EmailStatus.FAILED)
        if isinstance(exc, asyncio.TimeoutError):
            raise DeliveryError(f"Email sending timed out after {timeout:g} seconds") from exc
        if isinstance(exc, DeliveryError):
            raise
        raise DeliveryError(f"Failed to send email: {_failure_message(exc)}") from exc
    BILLING_EMAIL_TOTAL.labels(result="success").inc()
    return await crud.set_email_status(db, billing, schemas.EmailStatus.SENT, recipient)


@dataclass
class PipelineResult:
    billing: models.Billing
    pdf: schemas.PdfOutcome
    email: schemas.EmailOutcome
    warnings: List[str] = field(default_factory=list)

    @property
    def outcome(self) -> schemas.PipelineOutcome:
        return schemas.PipelineOutcome(pdf=self.pdf, email=self.email)

    @property
    def message(self) -> str:
        completed = []
        if self.pdf == schemas.PdfOutcome.GENERATED:
            completed.append("PDF generated")
        if self.email == schemas.EmailOutcome.SENT:
            completed.append("Email sent")

        message = "Billing created successfully."
        if completed:
            message += f" {' and '.join(completed)}."
        if self.warnings:
            message += f" Note: {'; '.join(self.warnings)}"
        return message


class BillingCreationPipeline:
    """Runs one billing creation request end to end"""

    def __init__(
        self,
        db: AsyncSession,
        pdf_generator: Any,
        email_service: Any,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.pdf_generator = pdf_generator
        self.email_service = email_service
        self.settings = settings or default_settings

    async def run(
        self, owner_id: str, billing_data: schemas.BillingCreate, now: Optional[datetime] = None
    ) -> PipelineResult:
        logger.info(f"[Pipeline] Starting billing creation for user {owner_id}")

        errors = validate_billing_create(billing_data)
        if errors:
            logger.info(f"[Pipeline] Validation failed with {len(errors)} error(s)")
            BILLINGS_CREATED_TOTAL.labels(result="validation_error").inc()
            raise ValidationError(errors)

        billing = await self._persist(owner_id, billing_data, now)
        warnings: List[str] = []

        if billing_data.draft_id:
            await self._discard_draft(owner_id, billing_data.draft_id, warnings)

        pdf = await self._generate_pdf(billing, warnings)
        email = await self._send_email(billing, billing_data, pdf, warnings)

        logger.info(
            f"[Pipeline] Finished {billing.billing_number}: pdf={pdf.value} email={email.value} "
            f"warnings={len(warnings)}"
        )
        return PipelineResult(billing=billing, pdf=pdf, email=email, warnings=warnings)

    async def _persist(
        self, owner_id: str, billing_data: schemas.BillingCreate, now: Optional[datetime]
    ) -> models.Billing:
        totals = crud.totals_for(billing_data.items, billing_data.discount)
        try:
            billing = await crud.create_billing(
                self.db,
                owner_id=owner_id,
                billing_data=billing_data,
                totals=totals,
                prefix=self.settings.BILLING_NUMBER_PREFIX,
                now=now,
            )
        except DuplicateKeyError:
            BILLINGS_CREATED_TOTAL.labels(result="duplicate").inc()
            raise
        except Exception as exc:
            BILLINGS_CREATED_TOTAL.labels(result="error").inc()
            if isinstance(exc, BillingServiceError):
                raise
            logger.exception("[Pipeline] Failed to persist billing")
            await self.db.rollback()
            raise BillingServiceError("Failed to create billing") from exc

        BILLINGS_CREATED_TOTAL.labels(result="success").inc()
        logger.info(f"[Pipeline] Persisted billing {billing.billing_number}")
        return billing

    async def _discard_draft(self, owner_id: str, draft_id: str, warnings: List[str]) -> None:
        draft = await crud.get_draft(self.db, draft_id)
        if draft is None or draft.created_by != owner_id:
            logger.warning(f"[Pipeline] Draft {draft_id} not found for user {owner_id}; kept as is")
            warnings.append(f"Draft {draft_id} was not found and was not removed")
            return
        await crud.delete_draft(self.db, draft)
        logger.info(f"[Pipeline] Discarded draft {draft_id}")

    async def _generate_pdf(self, billing: models.Billing, warnings: List[str]) -> schemas.PdfOutcome:
        try:
            await render_invoice(self.db, billing, self.pdf_generator, self.settings.PDF_RENDER_TIMEOUT_SECONDS)
        except RenderError as exc:
            logger.error(f"[Pipeline] PDF generation failed for {billing.billing_number}: {exc.message}", exc_info=True)
            warnings.append(exc.message)
            return schemas.PdfOutcome.FAILED

        logger.info(f"[Pipeline] PDF generated for {billing.billing_number}")
        return schemas.PdfOutcome.GENERATED

    async def _send_email(
        self,
        billing: models.Billing,
        billing_data: schemas.BillingCreate,
        pdf: schemas.PdfOutcome,
        warnings: List[str],
    ) -> schemas.EmailOutcome:
        if pdf != schemas.PdfOutcome.GENERATED:
            logger.info(f"[Pipeline] Skipping email for {billing.billing_number}: no PDF")
            return schemas.EmailOutcome.SKIPPED

        recipient = billing.client_email or (billing_data.recipient_email or "").strip()
        if not recipient:
            logger.info(f"[Pipeline] Skipping email for {billing.billing_number}: no recipient")
            return schemas.EmailOutcome.SKIPPED

        try:
            await deliver_invoice(
                self.db, billing, self.email_service, recipient, self.settings.EMAIL_SEND_TIMEOUT_SECONDS
            )
        except DeliveryError as exc:
            logger.error(f"[Pipeline] Email failed for {billing.billing_number}: {exc.message}", exc_info=True)
            warnings.append(f"Email sending failed: {exc.message}")
            return schemas.EmailOutcome.FAILED

        logger.info(f"[Pipeline] Email sent for {billing.billing_number} to {recipient}")
        return schemas.EmailOutcome.SENT
