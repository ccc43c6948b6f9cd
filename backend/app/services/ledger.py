"""Invoice ledger: monetary state of an invoice.

Two halves:

  compute_invoice_amounts()   line items + rates → every derived amount and
                              the tax metadata snapshot (via tax_split)
  recompute()                 live payment entries → paid / balance / status

``paid_amount`` is always a fold over the live (non-reversed) payment
entries; it is never adjusted by a delta.  After ``recompute``:

    balance_amount = total_amount - paid_amount   and   balance_amount >= 0

``lock_invoice`` is the only way mutating services load an invoice: it
issues ``SELECT ... FOR UPDATE`` and the row's ``version`` column turns any
write based on a stale read into a LedgerConflict.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.middleware.exceptions import (
    InvalidTaxInput,
    LedgerConflict,
    OverpaymentError,
    ResourceNotFoundError,
)
from app.models.invoice import Invoice
from app.models.payment_entry import PaymentEntry
from app.schemas.invoice import LedgerSnapshot
from app.services.state_machine import derive_status
from app.services.tax_split import (
    ZERO,
    Destination,
    TaxSplit,
    allocate_pro_rata,
    compute_split,
    discount_amount,
    line_amounts,
    round_money,
    state_name,
    to_decimal,
)
from app.tenancy import OrganizationContext

logger = logging.getLogger(__name__)

RUPEE = Decimal("1")


@dataclass
class InvoiceAmounts:
    line_items: list[dict]
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_tax: Decimal
    tds_amount: Decimal
    tcs_amount: Decimal
    round_off: Decimal
    total_amount: Decimal
    split: TaxSplit


@dataclass
class StatusChange:
    old: str
    new: str


@dataclass
class RecomputeResult:
    status_change: StatusChange | None = None
    promoted: list[PaymentEntry] = field(default_factory=list)


# ── Amounts ─────────────────────────────────────────────────


def _item_value(item, name: str, default=None):
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def compute_invoice_amounts(
    items: list,
    origin_state_code: str,
    destination: Destination,
    tds_rate=0,
    tcs_rate=0,
    reverse_charge: bool = False,
    discount_type: str | None = None,
    discount_value=0,
) -> InvoiceAmounts:
    """Derive every amount of an invoice from its line-item inputs.

    ``items`` may be dicts or objects exposing description, hsn_code,
    quantity, unit, rate, discount_type, discount_value and tax_rate.
    An invoice-level discount is taken on the sum of the line taxable
    values and spread back over the lines (``allocate_pro_rata``) before
    tax is split, so each line is taxed on what the buyer actually pays.
    TDS and TCS are levied on the taxable value.  Under reverse charge the
    buyer pays the tax to the government, so it is reported but not added
    to the payable total.  The total is rounded to the rupee and the
    difference kept in ``round_off``.
    """
    if not items:
        raise InvalidTaxInput("An invoice needs at least one line item")

    tds = to_decimal(tds_rate or 0, "TDS rate")
    tcs = to_decimal(tcs_rate or 0, "TCS rate")
    if tds < 0 or tcs < 0:
        raise InvalidTaxInput("TDS/TCS rates cannot be negative")

    lines = [
        line_amounts(
            _item_value(item, "quantity"),
            _item_value(item, "rate"),
            _item_value(item, "discount_type"),
            _item_value(item, "discount_value", 0),
        )
        for item in items
    ]
    line_taxable = [amounts.taxable_amount for amounts in lines]
    invoice_discount = discount_amount(
        sum(line_taxable, ZERO), getattr(discount_type, "value", discount_type), discount_value,
    )
    shares = allocate_pro_rata(invoice_discount, line_taxable)

    computed: list[dict] = []
    subtotal = discount = taxable = cgst = sgst = igst = ZERO
    document_split: TaxSplit | None = None

    for item, amounts, share in zip(items, lines, shares):
        line_taxable_amount = amounts.taxable_amount - share
        tax_rate = to_decimal(_item_value(item, "tax_rate", 0), "tax rate")
        split = compute_split(
            origin_state_code, destination, tax_rate,
            line_taxable_amount, is_reverse_charge=reverse_charge,
        )
        document_split = document_split or split

        item_discount_type = _item_value(item, "discount_type")
        computed.append({
            "description": _item_value(item, "description"),
            "hsn_code": _item_value(item, "hsn_code"),
            "quantity": str(to_decimal(_item_value(item, "quantity"), "quantity")),
            "unit": _item_value(item, "unit"),
            "rate": str(to_decimal(_item_value(item, "rate"), "rate")),
            "discount_type": getattr(item_discount_type, "value", item_discount_type),
            "discount_value": str(to_decimal(_item_value(item, "discount_value", 0) or 0, "discount")),
            "tax_rate": str(tax_rate),
            "base_amount": str(amounts.base_amount),
            "discount_amount": str(amounts.discount_amount),
            "invoice_discount": str(share),
            "taxable_amount": str(line_taxable_amount),
            "cgst": str(split.cgst),
            "sgst": str(split.sgst),
            "igst": str(split.igst),
            "tax_amount": str(split.total_tax),
            "total_amount": str(line_taxable_amount + split.total_tax),
        })

        subtotal += amounts.base_amount
        discount += amounts.discount_amount + share
        taxable += line_taxable_amount
        cgst += split.cgst
        sgst += split.sgst
        igst += split.igst

    total_tax = cgst + sgst + igst
    tds_amount = round_money(taxable * tds / 100)
    tcs_amount = round_money(taxable * tcs / 100)
    payable_tax = ZERO if document_split.reverse_charge else total_tax

    gross = taxable + payable_tax + tcs_amount - tds_amount
    total = gross.quantize(RUPEE, rounding=ROUND_HALF_UP)
    if total < 0:
        raise InvalidTaxInput("Deductions exceed the invoice value")

    return InvoiceAmounts(
        line_items=computed,
        subtotal=subtotal,
        discount_amount=discount,
        taxable_amount=taxable,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        total_tax=total_tax,
        tds_amount=tds_amount,
        tcs_amount=tcs_amount,
        round_off=round_money(total - gross),
        total_amount=round_money(total),
        split=document_split,
    )


def apply_amounts(
    invoice: Invoice,
    amounts: InvoiceAmounts,
    gstin: str | None,
    destination: Destination,
    computed_at: datetime,
) -> None:
    """Write derived amounts and freeze the tax metadata snapshot."""
    split = amounts.split
    invoice.line_items = amounts.line_items
    invoice.subtotal = amounts.subtotal
    invoice.discount_amount = amounts.discount_amount
    invoice.taxable_amount = amounts.taxable_amount
    invoice.cgst = amounts.cgst
    invoice.sgst = amounts.sgst
    invoice.igst = amounts.igst
    invoice.total_tax = amounts.total_tax
    invoice.tds_amount = amounts.tds_amount
    invoice.tcs_amount = amounts.tcs_amount
    invoice.round_off = amounts.round_off
    invoice.total_amount = amounts.total_amount

    invoice.origin_state_code = split.origin_state_code
    invoice.destination_state_code = split.destination_state_code
    invoice.transaction_type = split.transaction_type.value
    invoice.is_interstate = split.is_interstate
    invoice.reverse_charge = split.reverse_charge
    invoice.gstin_used = {
        "gstin": gstin,
        "state_code": split.origin_state_code,
        "state_name": state_name(split.origin_state_code),
    }
    invoice.destination_used = {
        "gstin": destination.gstin,
        "treatment": destination.treatment,
        "state_code": destination.state_code,
    }
    invoice.tax_computed_at = computed_at


# ── Fold ────────────────────────────────────────────────────


def live_entries(invoice: Invoice) -> list[PaymentEntry]:
    """Non-reversed entries, oldest first."""
    entries = [p for p in invoice.payments if not p.is_reversed]
    return sorted(entries, key=lambda p: (p.payment_date, p.created_at or datetime.max))


def paid_total(invoice: Invoice) -> Decimal:
    return sum((Decimal(p.amount) for p in live_entries(invoice)), ZERO)


def ensure_primary(invoice: Invoice) -> list[PaymentEntry]:
    """Exactly one live entry is primary once any live entry exists.

    Returns entries promoted to primary by this call.
    """
    for entry in invoice.payments:
        if entry.is_reversed and entry.is_primary:
            entry.is_primary = False

    live = live_entries(invoice)
    primaries = [p for p in live if p.is_primary]
    if not live or len(primaries) == 1:
        return []
    for extra in primaries[1:]:
        extra.is_primary = False
    if primaries:
        return []
    live[0].is_primary = True
    return [live[0]]


def recompute(invoice: Invoice, today: date) -> RecomputeResult:
    """Fold live entries into paid/balance and rerun the state machine."""
    paid = paid_total(invoice)
    total = Decimal(invoice.total_amount)
    if paid > total:
        raise OverpaymentError(
            f"Payments of {paid} exceed invoice total {total}",
            ledger=snapshot(invoice),
        )

    invoice.paid_amount = paid
    invoice.balance_amount = total - paid
    result = RecomputeResult(promoted=ensure_primary(invoice))

    new_status = derive_status(
        invoice.balance_amount, invoice.paid_amount,
        invoice.due_date, invoice.status, today,
    )
    if new_status != invoice.status:
        result.status_change = StatusChange(old=invoice.status, new=new_status.value)
        invoice.status = new_status.value
    return result


# ── Loading & persistence ───────────────────────────────────


async def get_invoice(db: AsyncSession, ctx: OrganizationContext, invoice_id: str) -> Invoice:
    result = await db.execute(
        select(Invoice).where(
            Invoice.id == invoice_id,
            Invoice.organization_id == ctx.organization_id,
        )
    )
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise ResourceNotFoundError("Invoice", invoice_id)
    return invoice


async def lock_invoice(db: AsyncSession, ctx: OrganizationContext, invoice_id: str) -> Invoice:
    """Load an invoice for mutation, holding its row lock until commit."""
    result = await db.execute(
        select(Invoice)
        .where(
            Invoice.id == invoice_id,
            Invoice.organization_id == ctx.organization_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise ResourceNotFoundError("Invoice", invoice_id)
    return invoice


async def flush_ledger(db: AsyncSession, invoice: Invoice) -> None:
    """Flush, surfacing a lost optimistic-lock race as LedgerConflict."""
    # A failed flush rolls the session back and expires the instance
    invoice_id, organization_id = invoice.id, invoice.organization_id
    try:
        await db.flush()
    except StaleDataError as exc:
        logger.warning(
            "Concurrent update of invoice %s", invoice_id,
            extra={"invoice_id": invoice_id, "organization_id": organization_id},
        )
        raise LedgerConflict(
            "The invoice was modified concurrently. Reload and retry."
        ) from exc


# ── Snapshot ────────────────────────────────────────────────


def snapshot(invoice: Invoice) -> LedgerSnapshot:
    """Read-only view handed to reporting, rendering and error responses."""
    return LedgerSnapshot(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        draft_number=invoice.draft_number,
        invoice_type=invoice.invoice_type,
        status=invoice.status,
        subtotal=invoice.subtotal or ZERO,
        discount_amount=invoice.discount_amount or ZERO,
        taxable_amount=invoice.taxable_amount or ZERO,
        cgst=invoice.cgst or ZERO,
        sgst=invoice.sgst or ZERO,
        igst=invoice.igst or ZERO,
        total_tax=invoice.total_tax or ZERO,
        tds_amount=invoice.tds_amount or ZERO,
        tcs_amount=invoice.tcs_amount or ZERO,
        round_off=invoice.round_off or ZERO,
        total_amount=invoice.total_amount,
        paid_amount=invoice.paid_amount or ZERO,
        balance_amount=invoice.balance_amount,
        transaction_type=invoice.transaction_type,
        is_interstate=bool(invoice.is_interstate),
        reverse_charge=bool(invoice.reverse_charge),
        origin_state_code=invoice.origin_state_code,
        destination_state_code=invoice.destination_state_code,
        invoice_date=invoice.invoice_date,
        due_date=invoice.due_date,
        live_payment_count=len(live_entries(invoice)),
    )
