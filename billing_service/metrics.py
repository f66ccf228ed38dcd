from prometheus_client import Counter

BILLINGS_CREATED_TOTAL = Counter(
    "billings_created_total",
    "Total billing creation attempts grouped by result.",
    labelnames=("result",),
)
BILLING_PDF_TOTAL = Counter(
    "billing_pdf_generations_total",
    "Total invoice PDF renders grouped by result.",
    labelnames=("result",),
)
BILLING_EMAIL_TOTAL = Counter(
    "billing_emails_total",
    "Total invoice email deliveries grouped by result.",
    labelnames=("result",),
)
