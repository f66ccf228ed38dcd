"""
Billing Service

Billing and invoicing backend for small businesses.

Core Components:
- FastAPI Service (main.py): REST API under /api with a uniform response envelope
- Billing Calculator: line totals, subtotal, discount and grand total in Decimal
- Validation: field and item rules that accumulate every error in one pass
- Creation Pipeline: validate -> persist -> render PDF -> email, with partial-failure warnings
- Status Machine: Draft -> Generated -> Emailed and the email delivery states
- PDF Generator / Email Service: WeasyPrint invoices and SMTP delivery
"""

__version__ = "1.0.0"
