from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import and_, desc, extract, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, schemas
from .billing_calculator import ZERO, round_currency


def _money(value: Any) -> Decimal:
    return round_currency(value) if value is not None else ZERO


class BillingReportingService:
    """Dashboard statistics and analytics over stored billings"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _owner_filter(owner_id: Optional[str]):
        # None means an admin caller: every owner's billings count
        if owner_id is None:
            return true()
        return models.Billing.created_by == owner_id

    async def get_statistics(
        self, owner_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> schemas.BillingStatistics:
        now = now or datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        base_filter = self._owner_filter(owner_id)

        totals = (await self.db.execute(
            select(
                func.count(models.Billing.id).label("total_billings"),
                func.sum(models.Billing.grand_total).label("total_revenue"),
            ).where(base_filter)
        )).one()

        this_month = (await self.db.execute(
            select(
                func.count(models.Billing.id).label("billings"),
                func.sum(models.Billing.grand_total).label("revenue"),
            ).where(and_(base_filter, models.Billing.created_at >= month_start))
        )).one()

        emailed_count = (await self.db.execute(
            select(func.count(models.Billing.id)).where(
                and_(base_filter, models.Billing.status == schemas.BillingStatus.EMAILED.value)
            )
        )).scalar_one()

        return schemas.BillingStatistics(
            total_billings=totals.total_billings,
            billings_this_month=this_month.billings,
            emailed_count=emailed_count,
            total_revenue=_money(totals.total_revenue),
            revenue_this_month=_money(this_month.revenue),
        )

    async def get_analytics(
        self,
        owner_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> schemas.BillingAnalytics:
        """Summary, breakdowns, top clients, monthly revenue and recent activity"""
        conditions = [self._owner_filter(owner_id)]
        if date_from:
            conditions.append(models.Billing.billing_date >= date_from)
        if date_to:
            conditions.append(models.Billing.billing_date <= date_to)
        base_filter = and_(*conditions)

        return schemas.BillingAnalytics(
            summary=await self._summary(base_filter),
            status_breakdown=await self._breakdown(models.Billing.status, base_filter),
            email_status_breakdown=await self._breakdown(models.Billing.email_status, base_filter),
            top_clients=await self._top_clients(base_filter),
            monthly_revenue=await self._monthly_revenue(base_filter),
            recent_billings=await self._recent_billings(base_filter),
        )

    async def _summary(self, base_filter) -> schemas.AnalyticsSummary:
        row = (await self.db.execute(
            select(
                func.count(models.Billing.id).label("total_billings"),
                func.sum(models.Billing.grand_total).label("total_revenue"),
                func.sum(models.Billing.subtotal).label("total_subtotal"),
                func.sum(models.Billing.discount).label("total_discount"),
            ).where(base_filter)
        )).one()

        total_revenue = _money(row.total_revenue)
        average = round_currency(total_revenue / row.total_billings) if row.total_billings else ZERO
        return schemas.AnalyticsSummary(
            total_billings=row.total_billings,
            total_revenue=total_revenue,
            total_subtotal=_money(row.total_subtotal),
            total_discount=_money(row.total_discount),
            average_billing_amount=average,
        )

    async def _breakdown(self, column, base_filter) -> List[schemas.StatusCount]:
        result = await self.db.execute(
            select(
                column.label("status"),
                func.count(models.Billing.id).label("count"),
                func.sum(models.Billing.grand_total).label("revenue"),
            )
            .where(base_filter)
            .group_by(column)
            .order_by(column)
        )
        return [
            schemas.StatusCount(status=row.status, count=row.count, revenue=_money(row.revenue))
            for row in result.all()
        ]

    async def _top_clients(self, base_filter, limit: int = 10) -> List[schemas.ClientRevenue]:
        revenue = func.sum(models.Billing.grand_total)
        result = await self.db.execute(
            select(
                models.Billing.company_name,
                revenue.label("total_revenue"),
                func.count(models.Billing.id).label("billing_count"),
            )
            .where(base_filter)
            .group_by(models.Billing.company_name)
            .order_by(revenue.desc(), models.Billing.company_name)
            .limit(limit)
        )
        return [
            schemas.ClientRevenue(
                company_name=row.company_name,
                total_revenue=_money(row.total_revenue),
                billing_count=row.billing_count,
            )
            for row in result.all()
        ]

    async def _monthly_revenue(self, base_filter, months: int = 12) -> List[schemas.MonthlyRevenue]:
        year = extract("year", models.Billing.billing_date)
        month = extract("month", models.Billing.billing_date)
        result = await self.db.execute(
            select(
                year.label("year"),
                month.label("month"),
                func.sum(models.Billing.grand_total).label("revenue"),
                func.count(models.Billing.id).label("count"),
            )
            .where(base_filter)
            .group_by(year, month)
            .order_by(desc(year), desc(month))
            .limit(months)
        )
        # Latest months were selected; report them oldest first
        rows = list(reversed(result.all()))
        return [
            schemas.MonthlyRevenue(
                year=int(row.year),
                month=int(row.month),
                revenue=_money(row.revenue),
                count=row.count,
            )
            for row in rows
        ]

    async def _recent_billings(self, base_filter, limit: int = 10) -> List[schemas.RecentBilling]:
        result = await self.db.execute(
            select(models.Billing)
            .where(base_filter)
            .order_by(desc(models.Billing.created_at), desc(models.Billing.billing_number))
            .limit(limit)
        )
        return [schemas.RecentBilling.model_validate(billing) for billing in result.scalars().all()]
