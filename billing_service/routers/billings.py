import logging
import math
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import FileResponse
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud, models, schemas
from ..auth import CurrentUser, get_current_user
from ..core.config import Settings
from ..database import get_db
from ..dependencies import get_app_settings, get_email_service, get_pdf_generator
from ..email_service import EmailService
from ..errors import InvalidInputError, NotFoundError
from ..pdf_generator import PDFGenerator
from ..pipeline import BillingCreationPipeline, deliver_invoice, render_invoice
from ..reporting_service import BillingReportingService
from ..validation import ensure_valid, is_valid_email, parse_billing_filters, parse_pagination, validate_billing_update

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billings", tags=["billings"])


async def _get_billing_or_404(db: AsyncSession, identifier: str, current_user: CurrentUser) -> models.Billing:
    billing = await crud.find_billing(db, identifier, owner_id=current_user.owner_scope)
    if billing is None:
        raise NotFoundError("Billing not found")
    return billing


def _pdf_available(billing: models.Billing) -> bool:
    return bool(billing.generated_file_path) and Path(billing.generated_file_path).is_file()


@router.post(
    "",
    response_model=schemas.ApiResponse[schemas.Billing],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_billing(
    billing_data: schemas.BillingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    pdf_generator: PDFGenerator = Depends(get_pdf_generator),
    email_service: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_app_settings),
):
    """Create a billing, render its PDF and email it when a recipient is known"""
    pipeline = BillingCreationPipeline(db, pdf_generator, email_service, settings)
    result = await pipeline.run(current_user.id, billing_data)
    return schemas.ApiResponse[schemas.Billing](
        message=result.message,
        data=schemas.Billing.model_validate(result.billing),
        pipeline=result.outcome,
        warnings=result.warnings,
    )


@router.get("", response_model=schemas.ApiResponse[List[schemas.Billing]], response_model_exclude_none=True)
async def list_billings(
    status_filter: Optional[str] = Query(None, alias="status"),
    email_status: Optional[str] = Query(None, alias="emailStatus"),
    company_name: Optional[str] = Query(None, alias="companyName"),
    billing_number: Optional[str] = Query(None, alias="billingNumber"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List billings, newest first, with filters and pagination"""
    page_number, page_size = parse_pagination(page, limit)
    filters = parse_billing_filters(
        status=status_filter,
        email_status=email_status,
        company_name=company_name,
        billing_number=billing_number,
        date_from=date_from,
        date_to=date_to,
    )
    filters.created_by = current_user.owner_scope

    total = await crud.count_billings(db, filters)
    billings = await crud.get_billings(db, filters, page=page_number, limit=page_size)
    total_pages = math.ceil(total / page_size) if total else 0

    applied: Dict[str, str] = {
        to_camel(name): value
        for name, value in filters.model_dump(mode="json", exclude_none=True, exclude={"created_by"}).items()
    }
    return schemas.ApiResponse[List[schemas.Billing]](
        data=[schemas.Billing.model_validate(billing) for billing in billings],
        count=len(billings),
        pagination=schemas.Pagination(
            page=page_number,
            limit=page_size,
            total=total,
            total_pages=total_pages,
            has_next_page=page_number < total_pages,
            has_previous_page=page_number > 1,
        ),
        filters=applied,
    )


@router.get(
    "/statistics",
    response_model=schemas.ApiResponse[schemas.BillingStatistics],
    response_model_exclude_none=True,
)
async def get_billing_statistics(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Dashboard totals for the caller's billings (all billings for admins)"""
    reporting = BillingReportingService(db)
    statistics = await reporting.get_statistics(owner_id=current_user.owner_scope)
    return schemas.ApiResponse[schemas.BillingStatistics](data=statistics)


@router.get("/{billing_id}", response_model=schemas.ApiResponse[schemas.Billing], response_model_exclude_none=True)
async def get_billing(
    billing_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a billing by billing number or id"""
    billing = await _get_billing_or_404(db, billing_id, current_user)
    return schemas.ApiResponse[schemas.Billing](data=schemas.Billing.model_validate(billing))


@router.put("/{billing_id}", response_model=schemas.ApiResponse[schemas.Billing], response_model_exclude_none=True)
async def update_billing(
    billing_id: str,
    billing_update: schemas.BillingUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update editable billing fields; totals follow items and discount"""
    billing = await _get_billing_or_404(db, billing_id, current_user)
    ensure_valid(validate_billing_update(billing_update, billing.subtotal, billing.discount))
    billing = await crud.update_billing(db, billing, billing_update)
    return schemas.ApiResponse[schemas.Billing](
        message="Billing updated successfully",
        data=schemas.Billing.model_validate(billing),
    )


@router.delete("/{billing_id}", response_model=schemas.ApiResponse[Dict[str, str]], response_model_exclude_none=True)
async def delete_billing(
    billing_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    pdf_generator: PDFGenerator = Depends(get_pdf_generator),
):
    """Delete a billing and its generated PDF"""
    billing = await _get_billing_or_404(db, billing_id, current_user)
    billing_number = billing.billing_number
    await crud.delete_billing(db, billing)
    try:
        pdf_generator.delete_pdf(billing_number)
    except OSError as e:
        logger.warning(f"Could not remove PDF for {billing_number}: {e}")
    return schemas.ApiResponse[Dict[str, str]](
        message="Billing deleted successfully",
        data={"id": billing.id, "billingNumber": billing_number},
    )


@router.post(
    "/{billing_id}/generate-pdf",
    response_model=schemas.ApiResponse[schemas.PDFGenerationResponse],
    response_model_exclude_none=True,
)
async def generate_billing_pdf(
    billing_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    pdf_generator: PDFGenerator = Depends(get_pdf_generator),
    settings: Settings = Depends(get_app_settings),
):
    """Render (or re-render) the invoice PDF"""
    billing = await _get_billing_or_404(db, billing_id, current_user)
    billing = await render_invoice(db, billing, pdf_generator, settings.PDF_RENDER_TIMEOUT_SECONDS)
    return schemas.ApiResponse[schemas.PDFGenerationResponse](
        message="PDF generated successfully",
        data=schemas.PDFGenerationResponse(
            billing_number=billing.billing_number,
            file_path=billing.generated_file_path,
            download_url=f"/api/billings/{billing.billing_number}/download-pdf",
            status=billing.status,
            generated_at=billing.updated_at,
        ),
    )


@router.get("/{billing_id}/download-pdf", response_class=FileResponse)
async def download_billing_pdf(
    billing_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Download the generated invoice PDF"""
    billing = await _get_billing_or_404(db, billing_id, current_user)
    if not _pdf_available(billing):
        raise NotFoundError("PDF not found. Please generate the PDF first")
    return FileResponse(
        billing.generated_file_path,
        media_type="application/pdf",
        filename=f"{billing.billing_number}.pdf",
    )


@router.post(
    "/{billing_id}/send-email",
    response_model=schemas.ApiResponse[schemas.EmailDeliveryInfo],
    response_model_exclude_none=True,
)
async def send_billing_email(
    billing_id: str,
    request_body: Optional[schemas.SendEmailRequest] = Body(None),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_app_settings),
):
    """Send (or resend) the invoice email"""
    billing = await _get_billing_or_404(db, billing_id, current_user)

    recipient = ((request_body.recipient_email if request_body else None) or "").strip() or billing.client_email
    if not recipient:
        raise InvalidInputError("Recipient email is required")
    if not is_valid_email(recipient):
        raise InvalidInputError("Please enter a valid email address")
    if not _pdf_available(billing):
        raise InvalidInputError("PDF has not been generated yet. Please generate the PDF first")

    billing = await deliver_invoice(db, billing, email_service, recipient, settings.EMAIL_SEND_TIMEOUT_SECONDS)
    return schemas.ApiResponse[schemas.EmailDeliveryInfo](
        message=f"Email sent successfully to {recipient}",
        data=schemas.EmailDeliveryInfo(
            billing_number=billing.billing_number,
            email_sent_to=billing.email_sent_to,
            email_sent_at=billing.email_sent_at,
            email_status=billing.email_status,
        ),
    )
