"""Aggregate model imports for Alembic auto-detection."""

from factorchain.models.activity_log import ActivityLog  # noqa: F401
from factorchain.models.invoice import Invoice, InvoiceStatus  # noqa: F401
from factorchain.models.profile import Profile, ProfileRole  # noqa: F401
from factorchain.models.reconciliation_alert import ReconciliationAlert  # noqa: F401
