from typing import Dict, Optional

from fastapi import APIRouter, Body, Depends

from .. import schemas
from ..auth import CurrentUser, require_admin
from ..dependencies import get_email_service
from ..email_service import EmailService
from ..errors import InvalidInputError
from ..validation import is_valid_email

router = APIRouter(tags=["email"])


@router.post("/test-connection", response_model=schemas.ApiResponse[Dict[str, bool]], response_model_exclude_none=True)
async def test_email_connection(
    admin: CurrentUser = Depends(require_admin),
    email_service: EmailService = Depends(get_email_service),
):
    """Check that the SMTP server accepts the configured credentials"""
    await email_service.test_connection()
    return schemas.ApiResponse[Dict[str, bool]](message="Email service connection successful", data={"connected": True})


@router.post("/test-email", response_model=schemas.ApiResponse[Dict[str, str]], response_model_exclude_none=True)
async def send_test_email(
    request_body: Optional[schemas.TestEmailRequest] = Body(None),
    admin: CurrentUser = Depends(require_admin),
    email_service: EmailService = Depends(get_email_service),
):
    recipient = ((request_body.recipient_email if request_body else None) or "").strip() or admin.email
    if not is_valid_email(recipient):
        raise InvalidInputError("Please enter a valid email address")

    await email_service.send_test_email(recipient)
    return schemas.ApiResponse[Dict[str, str]](message=f"Test email sent to {recipient}", data={"recipient": recipient})
