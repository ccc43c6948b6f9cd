"""Invoice router: drafts, finalization, cancellation and ledger reads.

Endpoints:
    POST  /api/invoices                      Create a draft
    GET   /api/invoices                      List invoices (with filters)
    GET   /api/invoices/number-preview       Next AUTO number (not consumed)
    GET   /api/invoices/{invoice_id}         Single invoice detail
    PATCH /api/invoices/{invoice_id}         Update inputs; amounts recomputed
    POST  /api/invoices/{invoice_id}/finalize  Assign the definitive number
    POST  /api/invoices/{invoice_id}/cancel    Cancel (number is not released)
    GET   /api/invoices/{invoice_id}/ledger    Ledger snapshot (cached)
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_capability
from app.database import get_db
from app.models.invoice import Invoice
from app.schemas.invoice import (
    FinalizeRequest,
    InvoiceCreate,
    InvoiceOut,
    InvoicePage,
    InvoiceSummary,
    InvoiceUpdate,
    LedgerSnapshot,
    NumberPreview,
)
from app.services import invoicing, ledger, sequence
from app.tenancy import OrganizationContext
from app.utils.cache import cache_snapshot, get_cached_snapshot, invalidate_ledger
from app.utils.numbering import financial_year_for

router = APIRouter()


async def _committed(db: AsyncSession, ctx: OrganizationContext, invoice: Invoice) -> InvoiceOut:
    """Commit the mutation, then drop the cached ledger."""
    await db.commit()
    await invalidate_ledger(ctx.organization_id, invoice.id)
    return InvoiceOut.model_validate(invoice)


# ── Create draft ─────────────────────────────────────────────

@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    body: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.write")),
):
    invoice = await invoicing.create_draft(db, ctx, body)
    await db.commit()
    return InvoiceOut.model_validate(invoice)


# ── List invoices ────────────────────────────────────────────

@router.get("", response_model=InvoicePage)
async def list_invoices(
    invoice_status: str | None = Query(None, alias="status"),
    client_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.read")),
):
    items, total = await invoicing.list_invoices(
        db, ctx, status=invoice_status, client_id=client_id, limit=limit, offset=offset,
    )
    return InvoicePage(
        items=[InvoiceSummary.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# ── Number preview ───────────────────────────────────────────

@router.get("/number-preview", response_model=NumberPreview)
async def number_preview(
    gstin_id: str | None = Query(None),
    on: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.read")),
):
    on = on or date.today()
    org = await sequence.get_organization(db, ctx.organization_id)
    profile = None
    if gstin_id:
        profile = await sequence.get_gstin_profile(db, ctx.organization_id, gstin_id)

    return NumberPreview(
        mode=org.invoice_number_mode,
        next_number=await sequence.preview_next(db, org, profile, on),
        financial_year=financial_year_for(on, org.financial_year_start_month),
    )


# ── Single invoice ───────────────────────────────────────────

@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.read")),
):
    invoice = await ledger.get_invoice(db, ctx, invoice_id)
    return InvoiceOut.model_validate(invoice)


# ── Update ───────────────────────────────────────────────────

@router.patch("/{invoice_id}", response_model=InvoiceOut)
async def update_invoice(
    invoice_id: str,
    body: InvoiceUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.write")),
):
    invoice = await invoicing.update_invoice(db, ctx, invoice_id, body)
    return await _committed(db, ctx, invoice)


# ── Finalize ─────────────────────────────────────────────────

@router.post("/{invoice_id}/finalize", response_model=InvoiceOut)
async def finalize_invoice(
    invoice_id: str,
    body: FinalizeRequest | None = None,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.finalize")),
):
    manual_number = body.invoice_number if body else None
    invoice = await invoicing.finalize_invoice(db, ctx, invoice_id, manual_number=manual_number)
    return await _committed(db, ctx, invoice)


# ── Cancel ───────────────────────────────────────────────────

@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
async def cancel_invoice(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.cancel")),
):
    invoice = await invoicing.cancel_invoice(db, ctx, invoice_id)
    return await _committed(db, ctx, invoice)


# ── Ledger snapshot ──────────────────────────────────────────

@router.get("/{invoice_id}/ledger", response_model=LedgerSnapshot)
async def get_ledger(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("invoices.read")),
):
    cached = await get_cached_snapshot(ctx.organization_id, invoice_id)
    if cached is not None:
        return cached

    invoice = await ledger.get_invoice(db, ctx, invoice_id)
    snap = ledger.snapshot(invoice)
    await cache_snapshot(ctx.organization_id, snap)
    return snap
