from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PlainSerializer
from pydantic.alias_generators import to_camel

T = TypeVar("T")

# Decimal in Python, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class BillingStatus(str, Enum):
    DRAFT = "Draft"
    GENERATED = "Generated"
    EMAILED = "Emailed"


class EmailStatus(str, Enum):
    NOT_SENT = "Not Sent"
    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class PdfOutcome(str, Enum):
    GENERATED = "Generated"
    FAILED = "Failed"


class EmailOutcome(str, Enum):
    SENT = "Sent"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# === BILLING ITEM SCHEMAS ===
class BillingItemInput(CamelModel):
    """Submitted line item; rules in validation.py decide what is kept"""
    id: Optional[str] = None
    quantity: Optional[Decimal] = None
    description: Optional[str] = None
    unit_price: Optional[Decimal] = None


class BillingItem(CamelModel):
    id: str
    quantity: int
    description: str
    unit_price: Money
    line_total: Money


# === BILLING SCHEMAS ===
class BillingCreate(CamelModel):
    billing_number: Optional[str] = Field(None, description="Display only; the server assigns the number")
    billing_date: Optional[str] = Field(None, description="ISO date, e.g. 2026-01-15")
    delivery_receipt_number: Optional[str] = Field(None, max_length=100)
    company_name: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=1000)
    contact_number: Optional[str] = Field(None, max_length=50)
    attention_person: Optional[str] = Field(None, max_length=200)
    client_email: Optional[str] = Field(None, max_length=254)
    recipient_email: Optional[str] = Field(None, max_length=254)
    items: Optional[List[BillingItemInput]] = None
    discount: Optional[Decimal] = None
    draft_id: Optional[str] = Field(None, description="Draft to discard once the billing is created")


class BillingUpdate(CamelModel):
    billing_date: Optional[str] = None
    delivery_receipt_number: Optional[str] = Field(None, max_length=100)
    company_name: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=1000)
    contact_number: Optional[str] = Field(None, max_length=50)
    attention_person: Optional[str] = Field(None, max_length=200)
    client_email: Optional[str] = Field(None, max_length=254)
    items: Optional[List[BillingItemInput]] = None
    discount: Optional[Decimal] = None


class Billing(CamelModel):
    id: str
    billing_number: str
    billing_date: date
    delivery_receipt_number: Optional[str] = None
    company_name: str
    address: str
    contact_number: str = ""
    attention_person: str
    client_email: Optional[str] = None
    items: List[BillingItem] = []
    subtotal: Money
    discount: Money
    grand_total: Money
    status: BillingStatus
    generated_file_path: Optional[str] = None
    email_status: EmailStatus
    email_sent_to: Optional[str] = None
    email_sent_at: Optional[datetime] = None
    created_by: str
    created_at: datetime
    updated_at: datetime


class BillingFilters(BaseModel):
    status: Optional[BillingStatus] = None
    email_status: Optional[EmailStatus] = None
    company_name: Optional[str] = None
    billing_number: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    created_by: Optional[str] = None


class PipelineOutcome(CamelModel):
    billing: str = "Created"
    pdf: PdfOutcome
    email: EmailOutcome


class SendEmailRequest(CamelModel):
    recipient_email: Optional[str] = None


class EmailDeliveryInfo(CamelModel):
    billing_number: str
    email_sent_to: str
    email_sent_at: Optional[datetime] = None
    email_status: EmailStatus


class PDFGenerationResponse(CamelModel):
    billing_number: str
    file_path: str
    download_url: str
    status: BillingStatus
    generated_at: datetime


# === DRAFT SCHEMAS ===
class DraftItem(CamelModel):
    id: Optional[str] = None
    quantity: Optional[Money] = None
    description: str = ""
    unit_price: Optional[Money] = None


class DraftSave(CamelModel):
    id: Optional[str] = Field(None, description="Existing draft to update")
    billing_date: Optional[str] = None
    delivery_receipt_number: Optional[str] = Field(None, max_length=100)
    company_name: str = Field("", max_length=200)
    address: str = Field("", max_length=1000)
    contact_number: str = Field("", max_length=50)
    attention_person: str = Field("", max_length=200)
    client_email: str = Field("", max_length=254)
    items: List[DraftItem] = []
    discount: Optional[Decimal] = None


class DraftBilling(CamelModel):
    id: str
    saved_at: datetime
    billing_date: Optional[date] = None
    delivery_receipt_number: Optional[str] = None
    company_name: str = ""
    address: str = ""
    contact_number: str = ""
    attention_person: str = ""
    client_email: str = ""
    items: List[DraftItem] = []
    subtotal: Money
    discount: Money
    grand_total: Money
    created_by: str
    created_at: datetime
    updated_at: datetime


# === USER SCHEMAS ===
class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    name: str = Field(..., min_length=1, max_length=200)


class UserLogin(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class User(CamelModel):
    id: str
    email: str
    name: str
    role: UserRole
    created_at: datetime
    updated_at: datetime


class AuthPayload(CamelModel):
    token: str
    user: User


class RoleUpdate(CamelModel):
    role: Optional[str] = None


# === REPORTING SCHEMAS ===
class BillingStatistics(CamelModel):
    total_billings: int
    billings_this_month: int
    emailed_count: int
    total_revenue: Money
    revenue_this_month: Money


class AnalyticsSummary(CamelModel):
    total_billings: int
    total_revenue: Money
    total_subtotal: Money
    total_discount: Money
    average_billing_amount: Money


class StatusCount(CamelModel):
    status: str
    count: int
    revenue: Optional[Money] = None


class ClientRevenue(CamelModel):
    company_name: str
    total_revenue: Money
    billing_count: int


class MonthlyRevenue(CamelModel):
    year: int
    month: int
    revenue: Money
    count: int


class RecentBilling(CamelModel):
    id: str
    billing_number: str
    company_name: str
    grand_total: Money
    status: BillingStatus
    email_status: EmailStatus
    billing_date: date


class BillingAnalytics(CamelModel):
    summary: AnalyticsSummary
    status_breakdown: List[StatusCount]
    email_status_breakdown: List[StatusCount]
    top_clients: List[ClientRevenue]
    monthly_revenue: List[MonthlyRevenue]
    recent_billings: List[RecentBilling]


class TestEmailRequest(CamelModel):
    recipient_email: Optional[str] = None


# === RESPONSE ENVELOPE ===
class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[List[str]] = None
    warnings: Optional[List[str]] = None
    pipeline: Optional[PipelineOutcome] = None
    pagination: Optional[Pagination] = None
    filters: Optional[Dict[str, Any]] = None
    count: Optional[int] = None
