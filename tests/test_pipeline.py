import asyncio

import pytest

from billing_service import crud, schemas
from billing_service.errors import DeliveryError, RenderError, ValidationError
from billing_service.pipeline import BillingCreationPipeline, deliver_invoice, render_invoice
from billing_service.validation import ITEMS_REQUIRED_MESSAGE


class SlowPDFGenerator:
    async def generate_invoice(self, billing):
        await asyncio.sleep(5)
        return "/never/written.pdf"


def make_pipeline(db, settings, pdf_generator, email_service):
    return BillingCreationPipeline(db, pdf_generator, email_service, settings)


async def run(pipeline, billing_payload, owner_id="user-1", **overrides):
    return await pipeline.run(owner_id, schemas.BillingCreate.model_validate(billing_payload(**overrides)))


@pytest.mark.asyncio
async def test_full_pipeline(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload)

    billing = result.billing
    assert result.pdf == schemas.PdfOutcome.GENERATED
    assert result.email == schemas.EmailOutcome.SENT
    assert result.warnings == []
    assert result.message == "Billing created successfully. PDF generated and Email sent."
    assert billing.status == "Emailed"
    assert billing.email_status == "Sent"
    assert billing.email_sent_to == "accounts@acme.example.com"
    assert billing.generated_file_path.endswith(f"{billing.billing_number}.pdf")
    assert email_service.sent == [(billing.billing_number, "accounts@acme.example.com")]


@pytest.mark.asyncio
async def test_client_email_takes_precedence_over_recipient(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload, recipientEmail="finance@acme.example.com")

    assert result.billing.email_sent_to == "accounts@acme.example.com"


@pytest.mark.asyncio
async def test_recipient_email_used_without_client_email(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload, clientEmail=None, recipientEmail="finance@acme.example.com")

    assert result.email == schemas.EmailOutcome.SENT
    assert result.billing.email_sent_to == "finance@acme.example.com"
    assert result.billing.client_email is None


@pytest.mark.asyncio
async def test_pdf_failure_keeps_billing_and_skips_email(db_session, settings, pdf_generator, email_service, billing_payload):
    pdf_generator.fail = True
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload)

    assert result.pdf == schemas.PdfOutcome.FAILED
    assert result.email == schemas.EmailOutcome.SKIPPED
    assert result.warnings == ["PDF generation failed: renderer unavailable"]
    assert result.message == "Billing created successfully. Note: PDF generation failed: renderer unavailable"
    assert result.billing.status == "Draft"
    assert result.billing.email_status == "Not Sent"
    assert result.billing.generated_file_path is None
    assert email_service.sent == []
    assert await crud.find_billing(db_session, result.billing.billing_number) is not None


@pytest.mark.asyncio
async def test_email_failure_is_recorded(db_session, settings, pdf_generator, email_service, billing_payload):
    email_service.fail = True
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload)

    assert result.pdf == schemas.PdfOutcome.GENERATED
    assert result.email == schemas.EmailOutcome.FAILED
    assert result.warnings == ["Email sending failed: Failed to send email: SMTP server unavailable"]
    assert result.billing.status == "Generated"
    assert result.billing.email_status == "Failed"
    assert result.billing.email_sent_to is None


@pytest.mark.asyncio
async def test_no_recipient_skips_email(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload, clientEmail=None)

    assert result.pdf == schemas.PdfOutcome.GENERATED
    assert result.email == schemas.EmailOutcome.SKIPPED
    assert result.warnings == []
    assert result.message == "Billing created successfully. PDF generated."
    assert result.billing.status == "Generated"
    assert result.billing.email_status == "Not Sent"


@pytest.mark.asyncio
async def test_validation_failure_stores_nothing(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    with pytest.raises(ValidationError) as exc_info:
        await run(pipeline, billing_payload, companyName="", items=[], discount=0)

    assert exc_info.value.errors == ["Company name is required", ITEMS_REQUIRED_MESSAGE]
    assert await crud.count_billings(db_session, schemas.BillingFilters()) == 0
    assert pdf_generator.generated == []


@pytest.mark.asyncio
async def test_render_timeout_becomes_warning(db_session, settings, email_service, billing_payload):
    fast_settings = settings.model_copy(update={"PDF_RENDER_TIMEOUT_SECONDS": 0.05})
    pipeline = make_pipeline(db_session, fast_settings, SlowPDFGenerator(), email_service)

    result = await run(pipeline, billing_payload)

    assert result.pdf == schemas.PdfOutcome.FAILED
    assert result.warnings == ["PDF generation timed out after 0.05 seconds"]
    assert result.billing.status == "Draft"


@pytest.mark.asyncio
async def test_created_billing_discards_its_draft(db_session, settings, pdf_generator, email_service, billing_payload):
    draft = await crud.create_draft(db_session, "user-1", schemas.DraftSave(company_name="Acme"))
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload, draftId=draft.id)

    assert result.warnings == []
    assert await crud.get_draft(db_session, draft.id) is None


@pytest.mark.asyncio
async def test_foreign_draft_is_left_alone(db_session, settings, pdf_generator, email_service, billing_payload):
    draft = await crud.create_draft(db_session, "user-2", schemas.DraftSave(company_name="Acme"))
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload, draftId=draft.id)

    assert result.warnings == [f"Draft {draft.id} was not found and was not removed"]
    assert await crud.get_draft(db_session, draft.id) is not None


@pytest.mark.asyncio
async def test_server_assigns_billing_number(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)

    result = await run(pipeline, billing_payload, billingNumber="CUSTOM-0001")

    assert result.billing.billing_number.startswith("SEW-")
    assert result.billing.billing_number != "CUSTOM-0001"


@pytest.mark.asyncio
async def test_regenerating_pdf_keeps_later_status(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)
    billing = (await run(pipeline, billing_payload)).billing

    billing = await render_invoice(db_session, billing, pdf_generator, 5)

    assert billing.status == "Emailed"
    assert pdf_generator.generated == [billing.billing_number, billing.billing_number]


@pytest.mark.asyncio
async def test_render_invoice_raises_on_failure(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)
    billing = (await run(pipeline, billing_payload, clientEmail=None)).billing
    pdf_generator.fail = True

    with pytest.raises(RenderError):
        await render_invoice(db_session, billing, pdf_generator, 5)
    assert billing.status == "Generated"


@pytest.mark.asyncio
async def test_resend_after_failure(db_session, settings, pdf_generator, email_service, billing_payload):
    email_service.fail = True
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)
    billing = (await run(pipeline, billing_payload)).billing

    with pytest.raises(DeliveryError):
        await deliver_invoice(db_session, billing, email_service, "accounts@acme.example.com", 5)
    assert billing.email_status == "Failed"

    email_service.fail = False
    await deliver_invoice(db_session, billing, email_service, "accounts@acme.example.com", 5)
    assert billing.email_status == "Sent"
    assert billing.status == "Emailed"


class HangingEmailService:
    async def send_invoice(self, billing, recipient):
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_cancelled_send_is_recorded_as_failed(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)
    billing = (await run(pipeline, billing_payload, clientEmail=None)).billing

    task = asyncio.create_task(deliver_invoice(db_session, billing, HangingEmailService(), "accounts@acme.example.com", 5))
    await asyncio.sleep(0.1)
    assert billing.email_status == "Pending"

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert billing.email_status == "Failed"


@pytest.mark.asyncio
async def test_send_stuck_in_pending_can_be_retried(db_session, settings, pdf_generator, email_service, billing_payload):
    pipeline = make_pipeline(db_session, settings, pdf_generator, email_service)
    billing = (await run(pipeline, billing_payload, clientEmail=None)).billing
    await crud.set_email_status(db_session, billing, schemas.EmailStatus.PENDING)

    await deliver_invoice(db_session, billing, email_service, "accounts@acme.example.com", 5)

    assert billing.email_status == "Sent"
    assert billing.email_sent_to == "accounts@acme.example.com"
