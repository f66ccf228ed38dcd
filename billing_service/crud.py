import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import desc, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, schemas
from .billing_calculator import ZERO, BillingTotals, PricedItem, calculate_totals, grand_total, round_currency
from .errors import BillingServiceError, DuplicateKeyError, ValidationError
from .status_machine import advance_email_status, status_after_email_sent, status_after_pdf
from .validation import MAX_AMOUNT, filter_valid_items, parse_billing_date, validate_subtotal

logger = logging.getLogger(__name__)

# Dialects with INSERT .. ON CONFLICT .. RETURNING
SEQUENCE_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

MAX_ITEM_ID_LENGTH = 64


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def totals_for(items: Optional[Iterable[Any]], discount: Any = None) -> BillingTotals:
    """Money rules over the items that survive the completeness filter"""
    kept = [item for _, item in filter_valid_items(items)]
    return calculate_totals(kept, discount)


# === BILLING NUMBERS ===

def format_billing_number(prefix: str, period: str, sequence: int) -> str:
    return f"{prefix}-{period}-{sequence:03d}"


async def allocate_billing_number(db: AsyncSession, prefix: str, now: Optional[datetime] = None) -> str:
    """Atomically take the next number of the current month's sequence.

    A single upsert increments and reads the counter, so concurrent
    transactions can never observe the same value.
    """
    now = now or datetime.now(timezone.utc)
    period = now.strftime("%Y%m")

    dialect = db.get_bind().dialect.name
    insert = SEQUENCE_INSERTS.get(dialect)
    if insert is None:
        raise BillingServiceError(f"Billing number sequence is not supported on {dialect}")

    stmt = (
        insert(models.BillingSequence)
        .values(period=period, last_value=1)
        .on_conflict_do_update(
            index_elements=[models.BillingSequence.period],
            set_={"last_value": models.BillingSequence.last_value + 1},
        )
        .returning(models.BillingSequence.last_value)
    )
    result = await db.execute(stmt)
    return format_billing_number(prefix, period, result.scalar_one())


# === BILLING CRUD OPERATIONS ===

def _build_items(priced_items: Iterable[PricedItem]) -> List[models.BillingItem]:
    rows = []
    seen = set()
    for position, item in enumerate(priced_items):
        item_id = item.id.strip() if isinstance(item.id, str) else ""
        if not item_id or item_id in seen or len(item_id) > MAX_ITEM_ID_LENGTH:
            item_id = uuid4().hex
        seen.add(item_id)
        rows.append(
            models.BillingItem(
                id=item_id,
                position=position,
                description=item.description,
                quantity=int(item.quantity),
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
        )
    return rows


async def create_billing(
    db: AsyncSession,
    owner_id: str,
    billing_data: schemas.BillingCreate,
    totals: BillingTotals,
    prefix: str,
    now: Optional[datetime] = None,
) -> models.Billing:
    """Persist a validated billing under a freshly allocated number"""
    if billing_data.billing_number:
        logger.info(f"Ignoring client-supplied billing number {billing_data.billing_number}")

    try:
        billing_number = await allocate_billing_number(db, prefix, now)
        db_billing = models.Billing(
            id=str(uuid4()),
            billing_number=billing_number,
            billing_date=parse_billing_date(billing_data.billing_date),
            delivery_receipt_number=_clean(billing_data.delivery_receipt_number),
            company_name=billing_data.company_name.strip(),
            address=billing_data.address.strip(),
            contact_number=(billing_data.contact_number or "").strip(),
            attention_person=billing_data.attention_person.strip(),
            client_email=_clean(billing_data.client_email),
            subtotal=totals.subtotal,
            discount=totals.discount,
            grand_total=totals.grand_total,
            status=schemas.BillingStatus.DRAFT.value,
            email_status=schemas.EmailStatus.NOT_SENT.value,
            created_by=owner_id,
        )
        db_billing.items = _build_items(totals.items)
        db.add(db_billing)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateKeyError("Billing number already exists") from exc

    logger.info(f"Created billing {db_billing.billing_number} for user {owner_id}")
    return db_billing


async def get_billing_by_id(
    db: AsyncSession, billing_id: str, owner_id: Optional[str] = None
) -> Optional[models.Billing]:
    query = select(models.Billing).where(models.Billing.id == billing_id)
    if owner_id is not None:
        query = query.where(models.Billing.created_by == owner_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_billing_by_number(
    db: AsyncSession, billing_number: str, owner_id: Optional[str] = None
) -> Optional[models.Billing]:
    query = select(models.Billing).where(models.Billing.billing_number == billing_number)
    if owner_id is not None:
        query = query.where(models.Billing.created_by == owner_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def find_billing(
    db: AsyncSession, identifier: str, owner_id: Optional[str] = None
) -> Optional[models.Billing]:
    """Look up by billing number first, then by id; ``owner_id=None`` means unrestricted"""
    billing = await get_billing_by_number(db, identifier, owner_id)
    if billing is None:
        billing = await get_billing_by_id(db, identifier, owner_id)
    return billing


def _apply_filters(query, filters: schemas.BillingFilters):
    if filters.status:
        query = query.where(models.Billing.status == filters.status.value)
    if filters.email_status:
        query = query.where(models.Billing.email_status == filters.email_status.value)
    if filters.company_name:
        query = query.where(models.Billing.company_name.ilike(f"%{filters.company_name}%"))
    if filters.billing_number:
        query = query.where(models.Billing.billing_number.ilike(f"%{filters.billing_number}%"))
    # billing_date is a calendar date, so <= date_to includes the whole last day
    if filters.date_from:
        query = query.where(models.Billing.billing_date >= filters.date_from)
    if filters.date_to:
        query = query.where(models.Billing.billing_date <= filters.date_to)
    if filters.created_by:
        query = query.where(models.Billing.created_by == filters.created_by)
    return query


async def get_billings(
    db: AsyncSession,
    filters: schemas.BillingFilters,
    page: int = 1,
    limit: int = 10,
) -> List[models.Billing]:
    """Filtered page of billings, newest first"""
    query = _apply_filters(select(models.Billing), filters)
    query = (
        query.order_by(desc(models.Billing.created_at), desc(models.Billing.billing_number))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_billings(db: AsyncSession, filters: schemas.BillingFilters) -> int:
    query = _apply_filters(select(func.count(models.Billing.id)), filters)
    result = await db.execute(query)
    return result.scalar_one()


async def replace_billing_items(
    db: AsyncSession, db_billing: models.Billing, priced_items: Iterable[PricedItem]
) -> None:
    # Old rows must be gone before new rows reuse their (billing_id, id) keys
    db_billing.items.clear()
    await db.flush()
    db_billing.items.extend(_build_items(priced_items))


async def update_billing(
    db: AsyncSession, db_billing: models.Billing, billing_update: schemas.BillingUpdate
) -> models.Billing:
    """Apply the supplied fields and recompute totals when items or discount change"""
    supplied = billing_update.model_fields_set

    for field_name in ("company_name", "address", "attention_person"):
        if field_name in supplied:
            setattr(db_billing, field_name, getattr(billing_update, field_name).strip())
    if "contact_number" in supplied:
        db_billing.contact_number = (billing_update.contact_number or "").strip()
    if "delivery_receipt_number" in supplied:
        db_billing.delivery_receipt_number = _clean(billing_update.delivery_receipt_number)
    if "client_email" in supplied:
        db_billing.client_email = _clean(billing_update.client_email)
    if "billing_date" in supplied:
        db_billing.billing_date = parse_billing_date(billing_update.billing_date)

    if "items" in supplied or "discount" in supplied:
        discount = billing_update.discount if "discount" in supplied else db_billing.discount
        if "items" in supplied:
            totals = totals_for(billing_update.items, discount)
            await replace_billing_items(db, db_billing, totals.items)
            db_billing.subtotal = totals.subtotal
            db_billing.discount = totals.discount
            db_billing.grand_total = totals.grand_total
        else:
            db_billing.discount = round_currency(discount if discount is not None else ZERO)
            db_billing.grand_total = grand_total(db_billing.subtotal, db_billing.discount)

    await db.commit()
    logger.info(f"Updated billing {db_billing.billing_number}")
    return db_billing


async def delete_billing(db: AsyncSession, db_billing: models.Billing) -> None:
    await db.delete(db_billing)
    await db.commit()
    logger.info(f"Deleted billing {db_billing.billing_number}")


# === LIFECYCLE UPDATES ===

async def mark_pdf_generated(db: AsyncSession, db_billing: models.Billing, file_path: str) -> models.Billing:
    db_billing.generated_file_path = file_path
    db_billing.status = status_after_pdf(db_billing.status).value
    await db.commit()
    return db_billing


async def set_email_status(
    db: AsyncSession,
    db_billing: models.Billing,
    target: schemas.EmailStatus,
    recipient: Optional[str] = None,
) -> models.Billing:
    """Move email_status along its lifecycle; Sent also records the delivery"""
    db_billing.email_status = advance_email_status(db_billing.email_status, target).value
    if target == schemas.EmailStatus.SENT:
        db_billing.email_sent_to = recipient
        db_billing.email_sent_at = models.utcnow()
        db_billing.status = status_after_email_sent(db_billing.status).value
    await db.commit()
    return db_billing


# === DRAFT CRUD OPERATIONS ===

def _draft_fields(draft_data: schemas.DraftSave) -> dict:
    billing_date = None
    if draft_data.billing_date:
        billing_date = parse_billing_date(draft_data.billing_date)
        if billing_date is None:
            raise ValidationError(["Invalid date format"])

    _, errors = validate_subtotal(filter_valid_items(draft_data.items))
    if draft_data.discount is not None and draft_data.discount > MAX_AMOUNT:
        errors.append(f"Discount cannot exceed {MAX_AMOUNT}")
    if errors:
        raise ValidationError(errors)

    totals = totals_for(draft_data.items, max(ZERO, round_currency(draft_data.discount or ZERO)))
    return {
        "billing_date": billing_date,
        "delivery_receipt_number": _clean(draft_data.delivery_receipt_number),
        "company_name": draft_data.company_name,
        "address": draft_data.address,
        "contact_number": draft_data.contact_number,
        "attention_person": draft_data.attention_person,
        "client_email": draft_data.client_email,
        "items": [item.model_dump(mode="json", by_alias=True) for item in draft_data.items],
        "subtotal": totals.subtotal,
        "discount": totals.discount,
        "grand_total": totals.grand_total,
    }


async def create_draft(db: AsyncSession, owner_id: str, draft_data: schemas.DraftSave) -> models.DraftBilling:
    db_draft = models.DraftBilling(id=str(uuid4()), created_by=owner_id, **_draft_fields(draft_data))
    db.add(db_draft)
    await db.commit()
    return db_draft


async def update_draft(
    db: AsyncSession, db_draft: models.DraftBilling, draft_data: schemas.DraftSave
) -> models.DraftBilling:
    for field_name, value in _draft_fields(draft_data).items():
        setattr(db_draft, field_name, value)
    db_draft.saved_at = models.utcnow()
    await db.commit()
    return db_draft


async def get_draft(db: AsyncSession, draft_id: str) -> Optional[models.DraftBilling]:
    result = await db.execute(select(models.DraftBilling).where(models.DraftBilling.id == draft_id))
    return result.scalar_one_or_none()


async def get_drafts(db: AsyncSession, owner_id: Optional[str] = None) -> List[models.DraftBilling]:
    query = select(models.DraftBilling)
    if owner_id is not None:
        query = query.where(models.DraftBilling.created_by == owner_id)
    result = await db.execute(query.order_by(desc(models.DraftBilling.saved_at)))
    return list(result.scalars().all())


async def delete_draft(db: AsyncSession, db_draft: models.DraftBilling) -> None:
    await db.delete(db_draft)
    await db.commit()


# === USER CRUD OPERATIONS ===

async def create_user(
    db: AsyncSession,
    email: str,
    password_hash: str,
    name: str,
    role: schemas.UserRole = schemas.UserRole.USER,
) -> models.User:
    db_user = models.User(
        id=str(uuid4()),
        email=email.strip().lower(),
        password_hash=password_hash,
        name=name.strip(),
        role=schemas.UserRole(role).value,
    )
    db.add(db_user)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateKeyError("User with this email already exists") from exc
    return db_user


async def get_user(db: AsyncSession, user_id: str) -> Optional[models.User]:
    result = await db.execute(select(models.User).where(models.User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[models.User]:
    result = await db.execute(select(models.User).where(models.User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_users(db: AsyncSession) -> List[models.User]:
    result = await db.execute(select(models.User).order_by(desc(models.User.created_at)))
    return list(result.scalars().all())


async def update_user_role(db: AsyncSession, db_user: models.User, role: schemas.UserRole) -> models.User:
    db_user.role = schemas.UserRole(role).value
    await db.commit()
    return db_user


async def delete_user(db: AsyncSession, db_user: models.User) -> None:
    await db.delete(db_user)
    await db.commit()


async def ensure_admin_user(
    db: AsyncSession, email: str, name: str, password_hash: Callable[[], str]
) -> models.User:
    """Create the bootstrap admin, or promote an existing account with that email"""
    db_user = await get_user_by_email(db, email)
    if db_user is None:
        db_user = await create_user(db, email, password_hash(), name, schemas.UserRole.ADMIN)
        logger.info(f"Bootstrapped admin user {db_user.email}")
    elif db_user.role != schemas.UserRole.ADMIN.value:
        db_user = await update_user_role(db, db_user, schemas.UserRole.ADMIN)
        logger.info(f"Promoted {db_user.email} to admin")
    return db_user
