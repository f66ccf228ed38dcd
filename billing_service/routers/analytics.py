from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas
from ..auth import CurrentUser, get_current_user
from ..database import get_db
from ..errors import ValidationError
from ..reporting_service import BillingReportingService
from ..validation import parse_query_date

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/billings", response_model=schemas.ApiResponse[schemas.BillingAnalytics], response_model_exclude_none=True)
async def get_billing_analytics(
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Revenue and status analytics over billing dates in [dateFrom, dateTo]"""
    errors = []
    start = parse_query_date("dateFrom", date_from, errors)
    end = parse_query_date("dateTo", date_to, errors)
    if errors:
        raise ValidationError(errors, errors[0])

    reporting = BillingReportingService(db)
    analytics = await reporting.get_analytics(owner_id=current_user.owner_scope, date_from=start, date_to=end)
    return schemas.ApiResponse[schemas.BillingAnalytics](data=analytics)
