"""
Validation rules for billing input.

Every field validator returns ``None`` when the value is acceptable and a
human-readable message otherwise. The ``validate_*`` aggregators run every rule
and collect all messages in a fixed order so the caller can fix every problem
in one round trip.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from . import schemas
from .billing_calculator import ZERO, line_total, round_currency, to_decimal
from .errors import InvalidInputError, ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?\d+$")
PHONE_SEPARATORS = re.compile(r"[\s().-]")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Column limits: INTEGER quantity, NUMERIC(12,2) money
MAX_QUANTITY = 2_147_483_647
MAX_AMOUNT = Decimal("9999999999.99")

ITEMS_REQUIRED_MESSAGE = "At least one valid item is required (with description, quantity > 0, and unit price ≥ 0)"
SUBTOTAL_LIMIT_MESSAGE = f"Subtotal cannot exceed {MAX_AMOUNT}"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# === FIELD VALIDATORS ===

def validate_company_name(value: Any) -> Optional[str]:
    name = _text(value)
    if not name:
        return "Company name is required"
    if len(name) < 2:
        return "Company name must be at least 2 characters"
    return None


def validate_address(value: Any) -> Optional[str]:
    address = _text(value)
    if not address:
        return "Address is required"
    if len(address) < 10:
        return "Please provide a complete address"
    return None


def validate_contact_number(value: Any) -> Optional[str]:
    """Optional; separators are ignored before the digit checks"""
    number = _text(value)
    if not number:
        return None
    cleaned = PHONE_SEPARATORS.sub("", number)
    if not PHONE_PATTERN.match(cleaned):
        return "Please enter a valid phone number"
    if len(cleaned.lstrip("+")) < 10:
        return "Phone number must be at least 10 digits"
    return None


def validate_attention_person(value: Any) -> Optional[str]:
    name = _text(value)
    if not name:
        return "Attention/Contact person is required"
    if len(name) < 2:
        return "Name must be at least 2 characters"
    return None


def parse_billing_date(value: Any) -> Optional[date]:
    """Parse an ISO date (or datetime) string; ``None`` when it is not a calendar date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def validate_billing_date(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return "Billing date is required"
    if parse_billing_date(value) is None:
        return "Invalid date format"
    return None


def validate_email(value: Any, required: bool = False) -> Optional[str]:
    email = _text(value)
    if not email:
        return "Email is required" if required else None
    if not EMAIL_PATTERN.match(email):
        return "Please enter a valid email address"
    return None


def is_valid_email(value: Any) -> bool:
    return bool(_text(value)) and validate_email(value) is None


# === ITEM VALIDATORS ===

def _is_complete_item(item: Any) -> bool:
    description = _text(getattr(item, "description", None))
    quantity = getattr(item, "quantity", None)
    unit_price = getattr(item, "unit_price", None)
    if not description or quantity is None or unit_price is None:
        return False
    try:
        return to_decimal(quantity) > 0 and to_decimal(unit_price) >= 0
    except InvalidInputError:
        return False


def filter_valid_items(items: Optional[Iterable[Any]]) -> List[Tuple[int, Any]]:
    """Drop incomplete rows, keeping each survivor's 1-based submitted position."""
    return [(index, item) for index, item in enumerate(items or [], start=1) if _is_complete_item(item)]


def validate_item_bounds(index: int, item: Any) -> List[str]:
    """Storage limits for a kept item: INTEGER quantity, NUMERIC(12,2) amounts"""
    errors = []
    quantity = to_decimal(item.quantity)
    unit_price = to_decimal(item.unit_price)
    if quantity > MAX_QUANTITY:
        errors.append(f"Item {index}: Quantity cannot exceed {MAX_QUANTITY}")
    if unit_price > MAX_AMOUNT:
        errors.append(f"Item {index}: Unit price cannot exceed {MAX_AMOUNT}")
    if not errors and line_total(quantity, round_currency(unit_price)) > MAX_AMOUNT:
        errors.append(f"Item {index}: Line total cannot exceed {MAX_AMOUNT}")
    return errors


def validate_item(index: int, item: Any) -> List[str]:
    """Strict per-item rules; ``index`` is the item's 1-based position as submitted."""
    errors = []
    if not _text(getattr(item, "description", None)):
        errors.append(f"Item {index}: Description is required")

    quantity = getattr(item, "quantity", None)
    quantity = to_decimal(quantity) if quantity is not None else None
    if quantity is None or quantity <= 0:
        errors.append(f"Item {index}: Quantity must be greater than 0")
    elif quantity != quantity.to_integral_value():
        errors.append(f"Item {index}: Quantity must be a whole number")

    unit_price = getattr(item, "unit_price", None)
    if unit_price is None or to_decimal(unit_price) < 0:
        errors.append(f"Item {index}: Unit price cannot be negative")

    if not errors:
        errors.extend(validate_item_bounds(index, item))
    return errors


def items_subtotal(items: Iterable[Tuple[int, Any]]) -> Decimal:
    """Subtotal of already filtered items, priced the way they will be stored"""
    total = ZERO
    for _, item in items:
        total += line_total(item.quantity, round_currency(item.unit_price))
    return round_currency(total)


def validate_subtotal(items: List[Tuple[int, Any]]) -> Tuple[Optional[Decimal], List[str]]:
    """Subtotal of kept items within storage limits; ``None`` when any item is out of range"""
    errors = [message for index, item in items for message in validate_item_bounds(index, item)]
    if errors:
        return None, errors
    amount = items_subtotal(items)
    if amount > MAX_AMOUNT:
        return None, [SUBTOTAL_LIMIT_MESSAGE]
    return amount, []


def validate_discount(discount: Any, subtotal: Optional[Decimal]) -> Optional[str]:
    """Non-negative, and within ``subtotal`` when it is known"""
    if discount is None:
        return None
    amount = to_decimal(discount)
    if amount < 0:
        return "Discount cannot be negative"
    if subtotal is not None and (amount > MAX_AMOUNT or round_currency(amount) > subtotal):
        return "Discount cannot exceed subtotal"
    return None


# === AGGREGATORS ===

def _validate_item_collection(items: Optional[List[Any]], errors: List[str]) -> Optional[Decimal]:
    """Append item errors; returns the kept subtotal, or None when it cannot be trusted"""
    kept = filter_valid_items(items)
    if not kept:
        errors.append(ITEMS_REQUIRED_MESSAGE)
        return ZERO

    item_errors = [message for index, item in kept for message in validate_item(index, item)]
    if item_errors:
        errors.extend(item_errors)
        return None

    subtotal, subtotal_errors = validate_subtotal(kept)
    errors.extend(subtotal_errors)
    return subtotal


def validate_billing_create(payload: schemas.BillingCreate) -> List[str]:
    """Run every creation rule and return the ordered list of failures."""
    errors = []
    for message in (
        validate_company_name(payload.company_name),
        validate_address(payload.address),
        validate_contact_number(payload.contact_number),
        validate_attention_person(payload.attention_person),
        validate_billing_date(payload.billing_date),
    ):
        if message:
            errors.append(message)

    subtotal = _validate_item_collection(payload.items, errors)

    message = validate_discount(payload.discount, subtotal)
    if message:
        errors.append(message)

    if validate_email(payload.client_email):
        errors.append("Please enter a valid client email address")
    if validate_email(payload.recipient_email):
        errors.append("Please enter a valid recipient email address")
    return errors


def validate_billing_update(
    changes: schemas.BillingUpdate, current_subtotal: Decimal, current_discount: Decimal
) -> List[str]:
    """Same rules as creation, applied to the supplied fields only.

    New items re-check the stored discount when no discount is supplied.
    """
    supplied = changes.model_fields_set
    errors = []
    checks = (
        ("company_name", validate_company_name),
        ("address", validate_address),
        ("contact_number", validate_contact_number),
        ("attention_person", validate_attention_person),
        ("billing_date", validate_billing_date),
    )
    for field_name, validator in checks:
        if field_name in supplied:
            message = validator(getattr(changes, field_name))
            if message:
                errors.append(message)

    subtotal = current_subtotal
    if "items" in supplied:
        subtotal = _validate_item_collection(changes.items, errors)

    if "discount" in supplied or "items" in supplied:
        discount = changes.discount if "discount" in supplied else current_discount
        message = validate_discount(discount, subtotal)
        if message:
            errors.append(message)

    if "client_email" in supplied and validate_email(changes.client_email):
        errors.append("Please enter a valid client email address")
    return errors


def ensure_valid(errors: List[str]) -> None:
    if errors:
        raise ValidationError(errors)


# === QUERY PARAMETERS ===

def _parse_int(value: Optional[str], default: int) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_pagination(page: Optional[str], limit: Optional[str]) -> Tuple[int, int]:
    """Validate 1-based page and bounded page size before any query runs."""
    errors = []
    page_number = _parse_int(page, 1)
    if page_number is None or page_number < 1:
        errors.append("Invalid page number. Must be a positive integer")
    page_size = _parse_int(limit, DEFAULT_PAGE_SIZE)
    if page_size is None or page_size < 1 or page_size > MAX_PAGE_SIZE:
        errors.append(f"Invalid limit. Must be between 1 and {MAX_PAGE_SIZE}")
    if errors:
        raise ValidationError(errors, errors[0])
    return page_number, page_size


def parse_query_date(name: str, value: Optional[str], errors: List[str]) -> Optional[date]:
    if not value:
        return None
    parsed = parse_billing_date(value)
    if parsed is None:
        errors.append(f"Invalid {name} format. Use YYYY-MM-DD")
    return parsed


def parse_billing_filters(
    status: Optional[str] = None,
    email_status: Optional[str] = None,
    company_name: Optional[str] = None,
    billing_number: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> schemas.BillingFilters:
    errors = []
    filters = schemas.BillingFilters(
        company_name=_text(company_name) or None,
        billing_number=_text(billing_number) or None,
    )

    if status:
        try:
            filters.status = schemas.BillingStatus(status)
        except ValueError:
            allowed = ", ".join(s.value for s in schemas.BillingStatus)
            errors.append(f"Invalid status. Must be one of: {allowed}")

    if email_status:
        try:
            filters.email_status = schemas.EmailStatus(email_status)
        except ValueError:
            allowed = ", ".join(s.value for s in schemas.EmailStatus)
            errors.append(f"Invalid email status. Must be one of: {allowed}")

    filters.date_from = parse_query_date("dateFrom", date_from, errors)
    filters.date_to = parse_query_date("dateTo", date_to, errors)
    if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
        errors.append("dateFrom must not be after dateTo")

    if errors:
        raise ValidationError(errors, errors[0])
    return filters
