"""Invoice status derivation.

Status is a pure function of the ledger fields and the current date,
evaluated after every ledger mutation:

  1. DRAFT / CANCELLED   → unchanged (only explicit actions move them)
  2. balance ≤ 0         → PAID
  3. paid > 0            → PARTIALLY_PAID
  4. due date passed     → OVERDUE
  5. otherwise           → PENDING

A partially paid invoice past its due date reports PARTIALLY_PAID.
"""

from datetime import date
from decimal import Decimal

from app.models.enums import InvoiceStatus

STICKY_STATUSES = {InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED}


def derive_status(
    balance_amount: Decimal,
    paid_amount: Decimal,
    due_date: date,
    current_status: str,
    today: date,
) -> InvoiceStatus:
    current = InvoiceStatus(current_status)
    if current in STICKY_STATUSES:
        return current
    if balance_amount <= 0:
        return InvoiceStatus.PAID
    if paid_amount > 0:
        return InvoiceStatus.PARTIALLY_PAID
    if due_date < today:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


def accepts_payments(status: str) -> bool:
    return InvoiceStatus(status) not in STICKY_STATUSES
