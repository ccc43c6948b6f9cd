"""Aggregate model imports for Alembic auto-detection."""

# Master data (read-only to the billing core)
from app.models.organization import Organization  # noqa: F401
from app.models.gstin_profile import GstinProfile  # noqa: F401
from app.models.client import Client  # noqa: F401

# Ledger
from app.models.invoice import Invoice  # noqa: F401
from app.models.payment_entry import PaymentEntry  # noqa: F401
from app.models.sequence_counter import SequenceCounter  # noqa: F401
from app.models.invoice_event import InvoiceEvent  # noqa: F401
