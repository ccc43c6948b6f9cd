"""Field locking: prevent edits to ledger records that must not change.

Each check function returns a LockInfo describing which fields are locked
and why, without raising exceptions.  The calling service decides which
error to raise based on the fields actually being updated.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.models.enums import InvoiceStatus


# ── Data structures ────────────────────────────────────────────


@dataclass
class FieldLock:
    """A single locked field with reason and unlock instructions."""
    field: str
    reason: str
    blocker_type: str   # "gateway", "reversed", "cancelled", "numbered"
    blocker_ref: str    # human-readable reference (e.g. "PAY-00014")
    unlock_hint: str


@dataclass
class LockInfo:
    """Lock state for an entity.  Empty locked_fields means nothing locked."""
    locked_fields: dict[str, FieldLock] = field(default_factory=dict)

    def check_update(self, updating_fields: set[str]) -> FieldLock | None:
        """Return the first FieldLock that conflicts, or None."""
        for f in sorted(updating_fields):
            if f in self.locked_fields:
                return self.locked_fields[f]
        return None


def _add_locks(
    info: LockInfo,
    field_names: list[str],
    reason: str,
    blocker_type: str,
    blocker_ref: str,
    unlock_hint: str,
) -> None:
    for name in field_names:
        info.locked_fields[name] = FieldLock(
            field=name,
            reason=f"Cannot edit {name}: {reason}",
            blocker_type=blocker_type,
            blocker_ref=blocker_ref,
            unlock_hint=unlock_hint,
        )


# ── Payment entry locks ───────────────────────────────────────


PAYMENT_EDITABLE_FIELDS = ["amount", "payment_date", "mode", "reference_number", "notes"]


def get_payment_locks(entry) -> LockInfo:
    """Gateway-settled and reversed entries are frozen entirely."""
    info = LockInfo()

    if entry.is_gateway:
        _add_locks(
            info,
            PAYMENT_EDITABLE_FIELDS,
            reason=f"payment {entry.payment_number} was settled through the payment gateway",
            blocker_type="gateway",
            blocker_ref=entry.gateway_payment_id or entry.payment_number,
            unlock_hint="Refund through the gateway and record a new payment.",
        )
    elif entry.is_reversed:
        _add_locks(
            info,
            PAYMENT_EDITABLE_FIELDS,
            reason=f"payment {entry.payment_number} has been reversed",
            blocker_type="reversed",
            blocker_ref=entry.payment_number,
            unlock_hint="Record a new payment instead.",
        )
    return info


# ── Invoice locks ─────────────────────────────────────────────


INVOICE_EDITABLE_FIELDS = [
    "client_id", "invoice_type", "selected_gstin_id", "reference_number",
    "invoice_date", "due_date", "line_items", "tds_rate", "tcs_rate",
    "reverse_charge", "discount_type", "discount_value", "notes",
]

# The number was drawn from the selected GSTIN's stream for this document type
NUMBERED_LOCKED_FIELDS = ["invoice_type", "selected_gstin_id"]


def get_invoice_locks(invoice) -> LockInfo:
    """Cancelled invoices are frozen; numbered ones keep type and GSTIN."""
    info = LockInfo()
    ref = invoice.invoice_number or invoice.draft_number

    if invoice.status == InvoiceStatus.CANCELLED:
        _add_locks(
            info,
            INVOICE_EDITABLE_FIELDS,
            reason=f"invoice {ref} is cancelled",
            blocker_type="cancelled",
            blocker_ref=ref,
            unlock_hint="Create a new invoice.",
        )
    elif invoice.invoice_number:
        _add_locks(
            info,
            NUMBERED_LOCKED_FIELDS,
            reason=f"invoice {ref} has been numbered",
            blocker_type="numbered",
            blocker_ref=ref,
            unlock_hint="Cancel the invoice and issue a new one.",
        )
    return info
