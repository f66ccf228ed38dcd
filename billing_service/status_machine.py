"""
Lifecycle rules for ``Billing.status`` and ``Billing.email_status``.

status:        Draft -> Generated -> Emailed
email_status:  Not Sent -> Pending -> Sent | Failed, any of Pending/Failed/Sent -> Pending on resend

The two are tracked independently except that reaching Sent forces
status to Emailed.
"""

from typing import Dict, FrozenSet

from .errors import InvalidTransitionError
from .schemas import BillingStatus, EmailStatus

STATUS_TRANSITIONS: Dict[BillingStatus, FrozenSet[BillingStatus]] = {
    BillingStatus.DRAFT: frozenset({BillingStatus.DRAFT, BillingStatus.GENERATED}),
    BillingStatus.GENERATED: frozenset({BillingStatus.GENERATED, BillingStatus.EMAILED}),
    BillingStatus.EMAILED: frozenset({BillingStatus.EMAILED}),
}

EMAIL_TRANSITIONS: Dict[EmailStatus, FrozenSet[EmailStatus]] = {
    EmailStatus.NOT_SENT: frozenset({EmailStatus.PENDING}),
    # Pending -> Pending lets an operator retry a send that never finished
    EmailStatus.PENDING: frozenset({EmailStatus.PENDING, EmailStatus.SENT, EmailStatus.FAILED}),
    EmailStatus.FAILED: frozenset({EmailStatus.PENDING}),
    EmailStatus.SENT: frozenset({EmailStatus.PENDING}),
}


def can_transition(current: BillingStatus, target: BillingStatus) -> bool:
    return BillingStatus(target) in STATUS_TRANSITIONS[BillingStatus(current)]


def can_transition_email(current: EmailStatus, target: EmailStatus) -> bool:
    return EmailStatus(target) in EMAIL_TRANSITIONS[EmailStatus(current)]


def advance_status(current: BillingStatus, target: BillingStatus) -> BillingStatus:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot change billing status from {BillingStatus(current).value} to {BillingStatus(target).value}"
        )
    return BillingStatus(target)


def advance_email_status(current: EmailStatus, target: EmailStatus) -> EmailStatus:
    if not can_transition_email(current, target):
        raise InvalidTransitionError(
            f"Cannot change email status from {EmailStatus(current).value} to {EmailStatus(target).value}"
        )
    return EmailStatus(target)


def status_after_pdf(current: BillingStatus) -> BillingStatus:
    """A rendered PDF moves Draft to Generated and leaves later stages alone"""
    current = BillingStatus(current)
    if current == BillingStatus.DRAFT:
        return BillingStatus.GENERATED
    return current


def status_after_email_sent(current: BillingStatus) -> BillingStatus:
    """Delivery always lands on Emailed; an invoice is only sent after its PDF exists"""
    current = BillingStatus(current)
    if current == BillingStatus.DRAFT:
        current = advance_status(current, BillingStatus.GENERATED)
    return advance_status(current, BillingStatus.EMAILED)
