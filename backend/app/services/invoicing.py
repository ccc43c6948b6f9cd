"""Invoice lifecycle: draft → finalize → (paid | cancelled).

  create_draft()              draft number allocated immediately; amounts computed
  update_invoice()            recompute amounts from new inputs
  finalize_invoice()          assign the definitive number (AUTO or MANUAL)
  cancel_invoice()            terminal; the number is not released
  mark_overdue()              rerun the state machine for one past-due invoice
  refresh_overdue_statuses()  the same for every candidate, in one transaction

Amounts and the tax snapshot are always derived here from line-item inputs
plus master data (organization, GSTIN profile, client) read at computation
time.  Callers never set them directly.  Once an invoice is numbered its
parties are frozen in the snapshot: edits reprice against the snapshot
unless the client itself is replaced.
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    BusinessLogicError,
    DuplicateInvoiceNumber,
    InvalidTaxInput,
    InvoiceStateError,
    OverpaymentError,
    ResourceNotFoundError,
)
from app.models.client import Client
from app.models.enums import (
    REFERENCE_REQUIRED_TYPES,
    EventType,
    InvoiceStatus,
    InvoiceType,
)
from app.models.gstin_profile import GstinProfile
from app.models.invoice import Invoice
from app.models.organization import Organization
from app.schemas.invoice import InvoiceCreate, InvoiceUpdate
from app.services import events, ledger, sequence
from app.services.tax_split import Destination
from app.tenancy import OrganizationContext
from app.utils.locks import get_invoice_locks

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_TERMS_DAYS = 30


# ── Master data ──────────────────────────────────────────────


async def _get_client(db: AsyncSession, ctx: OrganizationContext, client_id: str) -> Client:
    result = await db.execute(
        select(Client).where(
            Client.id == client_id,
            Client.organization_id == ctx.organization_id,
        )
    )
    client = result.scalar_one_or_none()
    if not client:
        raise ResourceNotFoundError("Client", client_id)
    return client


def _origin(org: Organization, profile: GstinProfile | None) -> tuple[str, str | None]:
    """(state code, GSTIN) of the issuing registration."""
    if profile is not None:
        return profile.state_code, profile.gstin
    state = org.state_code or (org.gstin[:2] if org.gstin else None)
    if not state:
        raise InvalidTaxInput(
            "Organization has no registered state; set a GSTIN or state code first"
        )
    return state, org.gstin


def _destination(client: Client) -> Destination:
    return Destination(
        gstin=client.gstin or None,
        treatment=client.gst_treatment,
        state_code=client.billing_state_code,
    )


def _check_reference(invoice_type: str, reference_number: str | None) -> None:
    if InvoiceType(invoice_type) in REFERENCE_REQUIRED_TYPES and not reference_number:
        raise BusinessLogicError(
            f"{invoice_type} requires a reference to the original document",
            error_code="REFERENCE_REQUIRED",
        )


def _check_dates(invoice_date: date, due_date: date) -> None:
    if due_date < invoice_date:
        raise BusinessLogicError(
            "Due date cannot be before the invoice date",
            error_code="INVALID_DUE_DATE",
        )


async def _price(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice: Invoice,
    org: Organization,
    items: list,
    refresh_parties: bool = True,
) -> None:
    """Compute amounts for ``invoice`` from its parties and ``items``.

    With ``refresh_parties`` false the origin and destination come from the
    invoice's own tax snapshot, so later master-data edits do not leak into
    an issued document.
    """
    if refresh_parties or not invoice.gstin_used or not invoice.destination_used:
        profile = None
        if invoice.selected_gstin_id:
            profile = await sequence.get_gstin_profile(db, ctx.organization_id, invoice.selected_gstin_id)
        client = await _get_client(db, ctx, invoice.client_id)
        origin_state, gstin = _origin(org, profile)
        destination = _destination(client)
    else:
        origin_state = invoice.gstin_used["state_code"]
        gstin = invoice.gstin_used["gstin"]
        destination = Destination(**invoice.destination_used)

    amounts = ledger.compute_invoice_amounts(
        items,
        origin_state,
        destination,
        tds_rate=invoice.tds_rate,
        tcs_rate=invoice.tcs_rate,
        reverse_charge=bool(invoice.reverse_charge),
        discount_type=invoice.discount_type,
        discount_value=invoice.discount_value,
    )
    ledger.apply_amounts(invoice, amounts, gstin, destination, datetime.utcnow())


# ── Create ───────────────────────────────────────────────────


async def create_draft(
    db: AsyncSession,
    ctx: OrganizationContext,
    data: InvoiceCreate,
) -> Invoice:
    org = await sequence.get_organization(db, ctx.organization_id)
    client = await _get_client(db, ctx, data.client_id)

    due_date = data.due_date or data.invoice_date + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS)
    _check_dates(data.invoice_date, due_date)
    _check_reference(data.invoice_type.value, data.reference_number)

    invoice = Invoice(
        organization_id=ctx.organization_id,
        invoice_type=data.invoice_type.value,
        reference_number=data.reference_number,
        client_id=client.id,
        client=client,
        selected_gstin_id=data.selected_gstin_id,
        tds_rate=data.tds_rate,
        tcs_rate=data.tcs_rate,
        reverse_charge=data.reverse_charge,
        discount_type=data.discount_type.value if data.discount_type else None,
        discount_value=data.discount_value,
        invoice_date=data.invoice_date,
        due_date=due_date,
        notes=data.notes,
        status=InvoiceStatus.DRAFT.value,
        created_by=ctx.user_id,
        payments=[],
    )
    await _price(db, ctx, invoice, org, data.line_items)
    invoice.paid_amount = ledger.ZERO
    invoice.balance_amount = invoice.total_amount

    # Allocate last so a rejected draft does not consume a reference
    invoice.draft_number = await sequence.allocate_draft(db, org, data.invoice_date)
    db.add(invoice)
    await db.flush()

    logger.info(
        "Created draft %s (%s)", invoice.draft_number, invoice.total_amount,
        extra={"invoice_id": invoice.id, "organization_id": ctx.organization_id},
    )
    return invoice


# ── Update ───────────────────────────────────────────────────


async def update_invoice(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice_id: str,
    data: InvoiceUpdate,
    today: date | None = None,
) -> Invoice:
    invoice = await ledger.lock_invoice(db, ctx, invoice_id)
    before = ledger.snapshot(invoice)
    updates = data.model_dump(exclude_unset=True)

    conflict = get_invoice_locks(invoice).check_update(set(updates))
    if conflict:
        raise InvoiceStateError(conflict.reason, ledger=ledger.snapshot(invoice))

    invoice_type = updates.get("invoice_type", invoice.invoice_type)
    invoice_type = getattr(invoice_type, "value", invoice_type)
    reference = updates.get("reference_number", invoice.reference_number)
    _check_reference(invoice_type, reference)
    invoice_date = updates.get("invoice_date") or invoice.invoice_date
    due_date = updates.get("due_date") or invoice.due_date
    _check_dates(invoice_date, due_date)

    if "client_id" in updates:
        invoice.client = await _get_client(db, ctx, updates["client_id"])
        invoice.client_id = invoice.client.id
    if "selected_gstin_id" in updates:
        invoice.selected_gstin_id = updates["selected_gstin_id"]
    for name in ("tds_rate", "tcs_rate", "reverse_charge"):
        if updates.get(name) is not None:
            setattr(invoice, name, updates[name])
    invoice.invoice_type = invoice_type
    invoice.reference_number = reference
    invoice.invoice_date = invoice_date
    invoice.due_date = due_date
    if "discount_type" in updates:
        invoice.discount_type = data.discount_type.value if data.discount_type else None
    if updates.get("discount_value") is not None:
        invoice.discount_value = updates["discount_value"]
    if "notes" in updates:
        invoice.notes = updates["notes"]

    pricing_fields = {
        "line_items", "client_id", "selected_gstin_id", "tds_rate", "tcs_rate",
        "reverse_charge", "discount_type", "discount_value",
    }
    if pricing_fields & set(updates):
        org = await sequence.get_organization(db, ctx.organization_id)
        items = data.line_items if data.line_items is not None else invoice.line_items
        # An issued invoice keeps its parties as they were when it was computed
        refresh_parties = (
            not invoice.invoice_number
            or bool({"client_id", "selected_gstin_id"} & set(updates))
        )
        await _price(db, ctx, invoice, org, items, refresh_parties=refresh_parties)
        if invoice.total_amount < invoice.paid_amount:
            raise OverpaymentError(
                f"New total {invoice.total_amount} is below the {invoice.paid_amount} already paid",
                ledger=before,
            )

    outcome = ledger.recompute(invoice, today or date.today())
    await ledger.flush_ledger(db, invoice)
    if outcome.status_change:
        await events.emit(
            db, invoice, EventType.INVOICE_STATUS_CHANGED,
            actor_id=ctx.user_id,
            from_status=outcome.status_change.old,
            to_status=outcome.status_change.new,
        )
    return invoice


# ── Finalize ─────────────────────────────────────────────────


async def finalize_invoice(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice_id: str,
    manual_number: str | None = None,
    today: date | None = None,
) -> Invoice:
    """Assign the definitive number and open the invoice for payment."""
    invoice = await ledger.lock_invoice(db, ctx, invoice_id)

    if invoice.status != InvoiceStatus.DRAFT:
        raise InvoiceStateError(
            f"Only draft invoices can be finalized (status: {invoice.status})",
            ledger=ledger.snapshot(invoice),
        )
    if invoice.invoice_type == InvoiceType.PROFORMA:
        raise InvoiceStateError(
            "A proforma invoice is not a tax document and cannot be numbered; "
            "create a tax invoice from it instead",
            ledger=ledger.snapshot(invoice),
        )

    org = await sequence.get_organization(db, ctx.organization_id)
    profile = None
    if invoice.selected_gstin_id:
        profile = await sequence.get_gstin_profile(db, ctx.organization_id, invoice.selected_gstin_id)

    number = await sequence.allocate_final(
        db, org, profile, invoice.invoice_date,
        manual_number=manual_number, invoice_id=invoice.id,
    )
    invoice.invoice_number = number
    invoice.finalized_at = datetime.utcnow()
    invoice.status = InvoiceStatus.PENDING.value
    ledger.recompute(invoice, today or date.today())

    try:
        await ledger.flush_ledger(db, invoice)
    except IntegrityError as exc:
        raise DuplicateInvoiceNumber(f"Invoice number {number} is already in use") from exc

    await events.emit(
        db, invoice, EventType.INVOICE_FINALIZED,
        actor_id=ctx.user_id,
        total_amount=invoice.total_amount,
        finalized_at=invoice.finalized_at,
    )
    await events.emit(
        db, invoice, EventType.INVOICE_STATUS_CHANGED,
        actor_id=ctx.user_id,
        from_status=InvoiceStatus.DRAFT.value,
        to_status=invoice.status,
    )
    logger.info(
        "Finalized %s as %s", invoice.draft_number, invoice.invoice_number,
        extra={"invoice_id": invoice.id, "organization_id": ctx.organization_id},
    )
    return invoice


# ── Cancel ───────────────────────────────────────────────────


async def cancel_invoice(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice_id: str,
) -> Invoice:
    invoice = await ledger.lock_invoice(db, ctx, invoice_id)

    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvoiceStateError("Invoice is already cancelled", ledger=ledger.snapshot(invoice))
    if ledger.live_entries(invoice):
        raise InvoiceStateError(
            "Reverse the recorded payments before cancelling this invoice",
            ledger=ledger.snapshot(invoice),
        )

    previous = invoice.status
    invoice.status = InvoiceStatus.CANCELLED.value
    invoice.cancelled_at = datetime.utcnow()
    await ledger.flush_ledger(db, invoice)

    await events.emit(
        db, invoice, EventType.INVOICE_STATUS_CHANGED,
        actor_id=ctx.user_id,
        from_status=previous,
        to_status=invoice.status,
    )
    return invoice


# ── Reads ────────────────────────────────────────────────────


async def list_invoices(
    db: AsyncSession,
    ctx: OrganizationContext,
    status: str | None = None,
    client_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    base = select(Invoice).where(Invoice.organization_id == ctx.organization_id)
    if status:
        base = base.where(Invoice.status == status)
    if client_id:
        base = base.where(Invoice.client_id == client_id)

    total = await db.scalar(select(func.count()).select_from(base.subquery()))
    result = await db.execute(
        base.order_by(Invoice.invoice_date.desc(), Invoice.created_at.desc())
        .limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total or 0


# ── Overdue sweep ────────────────────────────────────────────


async def overdue_candidates(
    db: AsyncSession,
    today: date,
    organization_id: str | None = None,
) -> list[tuple[str, str]]:
    """(invoice id, organization id) of PENDING invoices past their due date."""
    stmt = select(Invoice.id, Invoice.organization_id).where(
        Invoice.status == InvoiceStatus.PENDING.value,
        Invoice.due_date < today,
    )
    if organization_id:
        stmt = stmt.where(Invoice.organization_id == organization_id)
    result = await db.execute(stmt.order_by(Invoice.organization_id, Invoice.due_date))
    return [(invoice_id, org_id) for invoice_id, org_id in result.all()]


async def mark_overdue(
    db: AsyncSession,
    ctx: OrganizationContext,
    invoice_id: str,
    today: date,
) -> bool:
    """Lock one invoice and rerun the state machine.  True if it changed."""
    invoice = await ledger.lock_invoice(db, ctx, invoice_id)
    outcome = ledger.recompute(invoice, today)
    if outcome.status_change is None:
        return False
    await ledger.flush_ledger(db, invoice)
    await events.emit(
        db, invoice, EventType.INVOICE_STATUS_CHANGED,
        from_status=outcome.status_change.old,
        to_status=outcome.status_change.new,
    )
    return True


async def refresh_overdue_statuses(
    db: AsyncSession,
    today: date,
    organization_id: str | None = None,
) -> int:
    """Move PENDING invoices past their due date to OVERDUE, in one transaction.

    Each invoice is locked and recomputed individually, so a payment
    landing concurrently is never overwritten.  Returns the number changed.
    The scheduled sweep commits per invoice instead; see
    ``app.services.scheduler.run_overdue_sweep``.
    """
    changed = 0
    for invoice_id, org_id in await overdue_candidates(db, today, organization_id):
        ctx = OrganizationContext(organization_id=org_id)
        if await mark_overdue(db, ctx, invoice_id, today):
            changed += 1

    if changed:
        logger.info("Marked %d invoice(s) overdue", changed)
    return changed
