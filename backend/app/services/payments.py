"""Payment recorder: the only writer of payment entries.

Operations (all run inside the caller's transaction):

  record()                  manual payment (cash, cheque, transfer, UPI ...)
  record_gateway_payment()  signature-verified online payment
  edit()                    change a manual entry
  reverse()                 logically remove a manual entry

Each mutation takes the invoice row lock, checks its preconditions against
the locked state, then folds the live entries back into the invoice via
``ledger.recompute``.  Preconditions are checked before anything is
written, so a rejected call leaves the ledger untouched.  Gateway entries
are immutable: they can be neither edited nor reversed here.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    DuplicateGatewayPayment,
    GatewayError,
    ImmutableEntryError,
    InvalidPaymentInput,
    InvoiceStateError,
    OverpaymentError,
    ResourceNotFoundError,
    SignatureMismatch,
)
from app.models.enums import EventType, PaymentMode
from app.models.invoice import Invoice
from app.models.payment_entry import PaymentEntry
from app.services import events, ledger
from app.services.gateway import GatewayClient, GatewayPaymentIds
from app.services.sequence import allocate_payment_number
from app.services.state_machine import accepts_payments
from app.services.tax_split import PAISA
from app.tenancy import OrganizationContext
from app.utils.locks import get_payment_locks

logger = logging.getLogger(__name__)

GATEWAY_CURRENCY = "INR"


@dataclass
class PaymentDetails:
    payment_date: date | None = None
    reference_number: str | None = None
    notes: str | None = None


# ── Helpers ──────────────────────────────────────────────────


def _money(amount) -> Decimal:
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    if not value.is_finite() or value <= 0:
        raise InvalidPaymentInput(f"Payment amount must be positive: {amount}")
    if value != value.quantize(PAISA):
        raise InvalidPaymentInput(f"Payment amount has more than two decimals: {amount}")
    return value.quantize(PAISA)


def _require_open(invoice: Invoice) -> None:
    if not accepts_payments(invoice.status):
        raise InvoiceStateError(
            f"Invoice is {invoice.status}; payments can only be applied to finalized, "
            "non-cancelled invoices",
            ledger=ledger.snapshot(invoice),
        )


def _require_within_balance(invoice: Invoice, amount: Decimal) -> None:
    if amount > invoice.balance_amount:
        raise OverpaymentError(
            f"Payment of {amount} exceeds outstanding balance {invoice.balance_amount}",
            ledger=ledger.snapshot(invoice),
        )


async def _load_entry(db: AsyncSession, ctx: OrganizationContext, entry_id: str) -> PaymentEntry:
    result = await db.execute(
        select(PaymentEntry).where(
            PaymentEntry.id == entry_id,
            PaymentEntry.organization_id == ctx.organization_id,
        )
    )
    entry = result.scalar_one_or_none()
    if not entry:
        raise ResourceNotFoundError("Payment", entry_id)
    return entry


async def _lock_for_entry(
    db: AsyncSession, ctx: OrganizationContext, entry_id: str
) -> tuple[Invoice, PaymentEntry]:
    """Lock the owning invoice, then return the entry as loaded under it."""
    entry = await _load_entry(db, ctx, entry_id)
    invoice = await ledger.lock_invoice(db, ctx, entry.invoice_id)
    for candidate in invoice.payments:
        if candidate.id == entry_id:
            return invoice, candidate
    raise ResourceNotFoundError("Payment", entry_id)


async def _emit_changes(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice: Invoice,
    outcome: ledger.RecomputeResult,
) -> None:
    if outcome.status_change:
        await events.emit(
            db, invoice, EventType.INVOICE_STATUS_CHANGED,
            actor_id=ctx.user_id,
            from_status=outcome.status_change.old,
            to_status=outcome.status_change.new,
        )


async def _append_entry(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice: Invoice,
    amount: Decimal,
    mode: PaymentMode,
    details: PaymentDetails,
    ids: GatewayPaymentIds | None = None,
    today: date | None = None,
) -> PaymentEntry:
    """Shared tail of record / record_gateway_payment.  Invoice must be locked."""
    _require_open(invoice)
    _require_within_balance(invoice, amount)

    entry = PaymentEntry(
        organization_id=invoice.organization_id,
        payment_number=await allocate_payment_number(db, invoice.organization_id),
        amount=amount,
        payment_date=details.payment_date or date.today(),
        mode=mode.value,
        reference_number=details.reference_number,
        notes=details.notes,
        gateway_order_id=ids.order_id if ids else None,
        gateway_payment_id=ids.payment_id if ids else None,
        gateway_signature=ids.signature if ids else None,
        is_primary=False,
        is_reversed=False,
        created_by=ctx.user_id,
        created_at=datetime.utcnow(),
    )
    invoice.payments.append(entry)
    outcome = ledger.recompute(invoice, today or date.today())

    try:
        await ledger.flush_ledger(db, invoice)
    except IntegrityError as exc:
        if ids is not None:
            raise DuplicateGatewayPayment(
                f"Gateway payment {ids.payment_id} has already been recorded"
            ) from exc
        raise

    await events.emit(
        db, invoice, EventType.PAYMENT_RECORDED,
        actor_id=ctx.user_id,
        payment_id=entry.id,
        payment_number=entry.payment_number,
        amount=entry.amount,
        mode=entry.mode,
        is_primary=entry.is_primary,
    )
    await _emit_changes(db, ctx, invoice, outcome)

    logger.info(
        "Recorded payment %s of %s on invoice %s",
        entry.payment_number, entry.amount, invoice.invoice_number,
        extra={"invoice_id": invoice.id, "organization_id": invoice.organization_id},
    )
    return entry


# ── Record ───────────────────────────────────────────────────


async def record(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice_id: str,
    amount,
    mode: PaymentMode | str,
    details: PaymentDetails | None = None,
    today: date | None = None,
) -> PaymentEntry:
    """Record a manual payment.  The whole amount is accepted or nothing."""
    amount = _money(amount)
    mode = PaymentMode(mode)
    if mode == PaymentMode.ONLINE:
        raise InvalidPaymentInput(
            "Online payments must be recorded through gateway verification"
        )

    invoice = await ledger.lock_invoice(db, ctx, invoice_id)
    return await _append_entry(
        db, ctx, invoice, amount, mode, details or PaymentDetails(), today=today,
    )


async def record_gateway_payment(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice_id: str,
    ids: GatewayPaymentIds,
    gateway: GatewayClient,
    payment_date: date | None = None,
    today: date | None = None,
) -> PaymentEntry:
    """Verify with the gateway, then apply the captured amount.

    Signature check and the provider round-trip happen before the invoice
    row is locked; only the ledger mutation runs under the lock.
    """
    invoice = await ledger.get_invoice(db, ctx, invoice_id)

    _require_open(invoice)

    try:
        gateway.verify_signature(ids)
    except (SignatureMismatch, GatewayError) as exc:
        raise type(exc)(exc.message, ledger=ledger.snapshot(invoice)) from exc

    existing = await db.execute(
        select(PaymentEntry.id).where(PaymentEntry.gateway_payment_id == ids.payment_id)
    )
    if existing.first() is not None:
        raise DuplicateGatewayPayment(
            f"Gateway payment {ids.payment_id} has already been recorded",
            ledger=ledger.snapshot(invoice),
        )

    captured = await gateway.fetch_payment(ids.payment_id)
    if captured.order_id and captured.order_id != ids.order_id:
        logger.warning(
            "Gateway payment %s belongs to order %s, not %s",
            ids.payment_id, captured.order_id, ids.order_id,
            extra={"gateway_payment_id": ids.payment_id, "fraud_review": True},
        )
        raise GatewayError(
            f"Payment {ids.payment_id} does not belong to order {ids.order_id}",
            ledger=ledger.snapshot(invoice),
        )

    if (captured.currency or "").upper() != GATEWAY_CURRENCY:
        raise GatewayError(
            f"Payment {ids.payment_id} was captured in {captured.currency}, not {GATEWAY_CURRENCY}",
            ledger=ledger.snapshot(invoice),
        )
    try:
        amount = _money(captured.amount)
    except InvalidPaymentInput as exc:
        raise GatewayError(
            f"Gateway reported an unusable amount for {ids.payment_id}: {captured.amount}",
            ledger=ledger.snapshot(invoice),
        ) from exc

    invoice = await ledger.lock_invoice(db, ctx, invoice_id)
    details = PaymentDetails(
        payment_date=payment_date,
        reference_number=ids.payment_id,
        notes=f"Online payment via gateway ({captured.method or 'unknown method'})",
    )
    return await _append_entry(
        db, ctx, invoice, amount, PaymentMode.ONLINE, details, ids=ids, today=today,
    )


# ── Edit ─────────────────────────────────────────────────────


async def edit(
    db: AsyncSession,
    ctx: OrganizationContext,
    entry_id: str,
    new_amount=None,
    mode: PaymentMode | str | None = None,
    details: PaymentDetails | None = None,
    today: date | None = None,
) -> PaymentEntry:
    """Change a manual entry; paid is re-folded from the full live set."""
    invoice, entry = await _lock_for_entry(db, ctx, entry_id)
    details = details or PaymentDetails()

    updating = {
        name for name, value in (
            ("amount", new_amount),
            ("mode", mode),
            ("payment_date", details.payment_date),
            ("reference_number", details.reference_number),
            ("notes", details.notes),
        ) if value is not None
    }
    conflict = get_payment_locks(entry).check_update(updating or {"amount"})
    if conflict:
        raise ImmutableEntryError(conflict.reason, ledger=ledger.snapshot(invoice))

    if mode is not None and PaymentMode(mode) == PaymentMode.ONLINE:
        raise InvalidPaymentInput("A manual payment cannot be changed to an online payment")

    changes = {}
    if new_amount is not None:
        amount = _money(new_amount)
        headroom = invoice.balance_amount + entry.amount
        if amount > headroom:
            raise OverpaymentError(
                f"Payment of {amount} would exceed invoice total {invoice.total_amount}",
                ledger=ledger.snapshot(invoice),
            )
        if amount != entry.amount:
            changes["amount"] = {"from": str(entry.amount), "to": str(amount)}
        entry.amount = amount
    if mode is not None:
        entry.mode = PaymentMode(mode).value
    if details.payment_date is not None:
        entry.payment_date = details.payment_date
    if details.reference_number is not None:
        entry.reference_number = details.reference_number
    if details.notes is not None:
        entry.notes = details.notes

    outcome = ledger.recompute(invoice, today or date.today())
    await ledger.flush_ledger(db, invoice)

    await events.emit(
        db, invoice, EventType.PAYMENT_EDITED,
        actor_id=ctx.user_id,
        payment_id=entry.id,
        payment_number=entry.payment_number,
        fields=sorted(updating),
        changes=changes,
    )
    await _emit_changes(db, ctx, invoice, outcome)
    return entry


# ── Reverse ──────────────────────────────────────────────────


async def reverse(
    db: AsyncSession,
    ctx: OrganizationContext,
    entry_id: str,
    today: date | None = None,
) -> PaymentEntry:
    """Logically remove a manual entry and promote a new primary if needed."""
    invoice, entry = await _lock_for_entry(db, ctx, entry_id)

    conflict = get_payment_locks(entry).check_update({"amount"})
    if conflict:
        raise ImmutableEntryError(conflict.reason, ledger=ledger.snapshot(invoice))

    was_primary = entry.is_primary
    entry.is_reversed = True
    entry.is_primary = False
    entry.reversed_at = datetime.utcnow()

    outcome = ledger.recompute(invoice, today or date.today())
    await ledger.flush_ledger(db, invoice)

    await events.emit(
        db, invoice, EventType.PAYMENT_REVERSED,
        actor_id=ctx.user_id,
        payment_id=entry.id,
        payment_number=entry.payment_number,
        amount=entry.amount,
        was_primary=was_primary,
        promoted_payment_id=outcome.promoted[0].id if outcome.promoted else None,
    )
    await _emit_changes(db, ctx, invoice, outcome)

    logger.info(
        "Reversed payment %s on invoice %s",
        entry.payment_number, invoice.invoice_number,
        extra={"invoice_id": invoice.id, "organization_id": invoice.organization_id},
    )
    return entry


async def list_payments(
    db: AsyncSession, ctx: OrganizationContext, invoice_id: str, include_reversed: bool = True
) -> tuple[Invoice, list[PaymentEntry]]:
    """Entries for display: primary first, then chronological."""
    invoice = await ledger.get_invoice(db, ctx, invoice_id)
    entries = [p for p in invoice.payments if include_reversed or not p.is_reversed]
    entries.sort(key=lambda p: (
        not p.is_primary,
        p.is_reversed,
        p.payment_date,
        p.created_at or datetime.max,
    ))
    return invoice, entries
