import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base
from .schemas import BillingStatus, EmailStatus, UserRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on backends that store them naive"""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class User(Base):
    """Account that owns billings and drafts"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    email = Column(String(254), unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)  # user, admin

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)


class Billing(Base):
    """Issued invoice with computed totals and delivery state"""
    __tablename__ = "billings"

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    billing_number = Column(String(32), unique=True, nullable=False, index=True)  # PREFIX-YYYYMM-NNN
    billing_date = Column(Date, nullable=False)
    delivery_receipt_number = Column(String(100), nullable=True)

    # Client Information
    company_name = Column(String(200), nullable=False, index=True)
    address = Column(Text, nullable=False)
    contact_number = Column(String(50), nullable=False, default="")
    attention_person = Column(String(200), nullable=False)
    client_email = Column(String(254), nullable=True)

    # Financial Information
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    # Lifecycle
    status = Column(String(20), nullable=False, default=BillingStatus.DRAFT.value, index=True)
    generated_file_path = Column(String, nullable=True)
    email_status = Column(String(20), nullable=False, default=EmailStatus.NOT_SENT.value, index=True)
    email_sent_to = Column(String(254), nullable=True)
    email_sent_at = Column(UTCDateTime(), nullable=True)

    # Audit Trail
    created_by = Column(String(36), nullable=False, index=True)  # Owning user id
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, index=True)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    items = relationship(
        "BillingItem",
        back_populates="billing",
        cascade="all, delete-orphan",
        order_by="BillingItem.position",
        lazy="selectin",
    )


class BillingItem(Base):
    """Line item; ids are unique within their billing only"""
    __tablename__ = "billing_items"

    billing_id = Column(String(36), ForeignKey("billings.id", ondelete="CASCADE"), primary_key=True)
    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    description = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    billing = relationship("Billing", back_populates="items")


class DraftBilling(Base):
    """Unsubmitted billing data; items are kept as submitted"""
    __tablename__ = "draft_billings"

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    saved_at = Column(UTCDateTime(), nullable=False, default=utcnow, index=True)

    billing_date = Column(Date, nullable=True)
    delivery_receipt_number = Column(String(100), nullable=True)
    company_name = Column(String(200), nullable=False, default="")
    address = Column(Text, nullable=False, default="")
    contact_number = Column(String(50), nullable=False, default="")
    attention_person = Column(String(200), nullable=False, default="")
    client_email = Column(String(254), nullable=False, default="")
    items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    created_by = Column(String(36), nullable=False, index=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)


class BillingSequence(Base):
    """Per-month counter behind billing numbers"""
    __tablename__ = "billing_sequences"

    period = Column(String(6), primary_key=True)  # YYYYMM
    last_value = Column(Integer, nullable=False, default=0)
