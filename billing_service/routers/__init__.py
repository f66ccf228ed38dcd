from . import admin, analytics, auth, billings, drafts, email_check

all_routers = [
    auth.router,
    billings.router,
    drafts.router,
    analytics.router,
    admin.router,
    email_check.router,
]
