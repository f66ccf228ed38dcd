from datetime import date
from decimal import Decimal

import pytest

from billing_service import crud, schemas
from billing_service.errors import ValidationError
from billing_service.validation import (
    ITEMS_REQUIRED_MESSAGE,
    parse_billing_date,
    parse_billing_filters,
    parse_pagination,
    validate_billing_create,
    validate_billing_update,
    validate_contact_number,
    validate_discount,
    validate_email,
)


def test_valid_payload_has_no_errors(billing_payload):
    payload = schemas.BillingCreate.model_validate(billing_payload())
    assert validate_billing_create(payload) == []


def test_all_errors_are_collected_in_order():
    errors = validate_billing_create(schemas.BillingCreate())

    assert errors == [
        "Company name is required",
        "Address is required",
        "Attention/Contact person is required",
        "Billing date is required",
        ITEMS_REQUIRED_MESSAGE,
    ]


def test_short_fields_are_reported(billing_payload):
    payload = schemas.BillingCreate.model_validate(
        billing_payload(companyName="A", address="Manila", attentionPerson=" M ")
    )
    errors = validate_billing_create(payload)

    assert "Company name must be at least 2 characters" in errors
    assert "Please provide a complete address" in errors
    assert "Name must be at least 2 characters" in errors


@pytest.mark.parametrize(
    "number, expected",
    [
        ("", None),
        ("(02) 8123-4567", None),
        ("+63 912.345.6789", None),
        ("12345", "Phone number must be at least 10 digits"),
        ("0917-CALL-NOW", "Please enter a valid phone number"),
    ],
)
def test_contact_number(number, expected):
    assert validate_contact_number(number) == expected


def test_invalid_calendar_date_is_rejected(billing_payload):
    payload = schemas.BillingCreate.model_validate(billing_payload(billingDate="2026-02-30"))
    assert validate_billing_create(payload) == ["Invalid date format"]


def test_iso_datetime_is_accepted_as_billing_date():
    assert parse_billing_date("2026-01-15T00:00:00.000Z") == date(2026, 1, 15)
    assert parse_billing_date("not a date") is None


def test_incomplete_items_are_dropped_silently(billing_payload):
    items = [
        {"id": "1", "quantity": 5, "description": "", "unitPrice": 10},
        {"id": "2", "quantity": 2, "description": "Denim jeans", "unitPrice": 100},
    ]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=0))

    assert validate_billing_create(payload) == []
    totals = crud.totals_for(payload.items, payload.discount)
    assert [item.description for item in totals.items] == ["Denim jeans"]
    assert totals.subtotal == Decimal("200.00")


def test_no_complete_item_is_reported_once(billing_payload):
    items = [{"id": "1", "quantity": 0, "description": "Caps", "unitPrice": 10}]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=0))

    assert validate_billing_create(payload) == [ITEMS_REQUIRED_MESSAGE]


def test_fractional_quantity_reported_with_submitted_position(billing_payload):
    items = [
        {"id": "1", "quantity": 1, "description": "", "unitPrice": 10},
        {"id": "2", "quantity": 1.5, "description": "Fabric roll", "unitPrice": 10},
    ]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=0))

    assert validate_billing_create(payload) == ["Item 2: Quantity must be a whole number"]


def test_discount_boundaries():
    assert validate_discount(Decimal("500.00"), Decimal("500.00")) is None
    assert validate_discount(Decimal("500.01"), Decimal("500.00")) == "Discount cannot exceed subtotal"
    assert validate_discount(Decimal("-1"), Decimal("500.00")) == "Discount cannot be negative"
    assert validate_discount(None, Decimal("0.00")) is None


def test_discount_is_checked_against_complete_items_only(billing_payload):
    items = [
        {"id": "1", "quantity": 1, "description": "Shirts", "unitPrice": 100},
        {"id": "2", "quantity": 1, "description": "", "unitPrice": 900},
    ]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=150))

    assert validate_billing_create(payload) == ["Discount cannot exceed subtotal"]


def test_email_shape():
    assert validate_email("accounts@acme.example.com") is None
    assert validate_email("not-an-email") == "Please enter a valid email address"
    assert validate_email("", required=True) == "Email is required"
    assert validate_email(None) is None


def test_invalid_client_email_is_reported(billing_payload):
    payload = schemas.BillingCreate.model_validate(billing_payload(clientEmail="acme.example.com"))
    assert validate_billing_create(payload) == ["Please enter a valid client email address"]


def test_update_validates_supplied_fields_only():
    changes = schemas.BillingUpdate.model_validate({"companyName": "X"})
    assert validate_billing_update(changes, Decimal("500.00"), Decimal("25.00")) == ["Company name must be at least 2 characters"]


def test_update_discount_uses_current_subtotal():
    changes = schemas.BillingUpdate.model_validate({"discount": 600})
    assert validate_billing_update(changes, Decimal("500.00"), Decimal("25.00")) == ["Discount cannot exceed subtotal"]


def test_update_items_recheck_stored_discount():
    changes = schemas.BillingUpdate.model_validate(
        {"items": [{"id": "1", "quantity": 1, "description": "Polo shirts", "unitPrice": 100}]}
    )
    assert validate_billing_update(changes, Decimal("500.00"), Decimal("400.00")) == ["Discount cannot exceed subtotal"]
    assert validate_billing_update(changes, Decimal("500.00"), Decimal("100.00")) == []


def test_update_items_with_new_discount_use_new_subtotal():
    changes = schemas.BillingUpdate.model_validate(
        {"items": [{"id": "1", "quantity": 1, "description": "Polo shirts", "unitPrice": 100}], "discount": 50}
    )
    assert validate_billing_update(changes, Decimal("500.00"), Decimal("400.00")) == []


def test_item_amounts_must_fit_storage(billing_payload):
    items = [
        {"id": "1", "quantity": 10**20, "description": "Polo shirts", "unitPrice": 1},
        {"id": "2", "quantity": 1, "description": "Embroidery", "unitPrice": "10000000000"},
        {"id": "3", "quantity": 2, "description": "Banners", "unitPrice": "6000000000"},
    ]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=0))

    assert validate_billing_create(payload) == [
        "Item 1: Quantity cannot exceed 2147483647",
        "Item 2: Unit price cannot exceed 9999999999.99",
        "Item 3: Line total cannot exceed 9999999999.99",
    ]


def test_subtotal_must_fit_storage(billing_payload):
    items = [
        {"id": "1", "quantity": 1, "description": "Banners", "unitPrice": "6000000000"},
        {"id": "2", "quantity": 1, "description": "Banners", "unitPrice": "6000000000"},
    ]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=0))

    assert validate_billing_create(payload) == ["Subtotal cannot exceed 9999999999.99"]


def test_discount_is_checked_for_sign_when_items_are_invalid(billing_payload):
    items = [{"id": "1", "quantity": 10**20, "description": "Polo shirts", "unitPrice": 1}]
    payload = schemas.BillingCreate.model_validate(billing_payload(items=items, discount=-5))

    assert validate_billing_create(payload) == [
        "Item 1: Quantity cannot exceed 2147483647",
        "Discount cannot be negative",
    ]


@pytest.mark.asyncio
async def test_draft_amounts_must_fit_storage(db_session):
    draft = schemas.DraftSave.model_validate(
        {"items": [{"id": "1", "quantity": 10**20, "description": "Polo shirts", "unitPrice": 1}]}
    )

    with pytest.raises(ValidationError) as exc_info:
        await crud.create_draft(db_session, "user-1", draft)
    assert exc_info.value.errors == ["Item 1: Quantity cannot exceed 2147483647"]


def test_pagination_defaults():
    assert parse_pagination(None, None) == (1, 10)
    assert parse_pagination("3", "100") == (3, 100)


@pytest.mark.parametrize(
    "page, limit, message",
    [
        ("0", "10", "Invalid page number. Must be a positive integer"),
        ("abc", "10", "Invalid page number. Must be a positive integer"),
        ("1", "0", "Invalid limit. Must be between 1 and 100"),
        ("1", "101", "Invalid limit. Must be between 1 and 100"),
    ],
)
def test_invalid_pagination_is_rejected(page, limit, message):
    with pytest.raises(ValidationError) as exc_info:
        parse_pagination(page, limit)
    assert exc_info.value.message == message


def test_filters_parse_enums_and_dates():
    filters = parse_billing_filters(status="Generated", email_status="Not Sent", date_from="2026-01-01")

    assert filters.status == schemas.BillingStatus.GENERATED
    assert filters.email_status == schemas.EmailStatus.NOT_SENT
    assert filters.date_from == date(2026, 1, 1)


def test_unknown_status_filter_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        parse_billing_filters(status="Paid")
    assert exc_info.value.message == "Invalid status. Must be one of: Draft, Generated, Emailed"


def test_bad_date_filter_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        parse_billing_filters(date_to="15/01/2026")
    assert exc_info.value.errors == ["Invalid dateTo format. Use YYYY-MM-DD"]
