"""Payment router: manual and gateway payments against invoices.

Endpoints:
    POST   /api/payments                       Record a manual payment
    POST   /api/payments/gateway/verify        Verify and record a gateway payment
    GET    /api/payments/invoice/{invoice_id}  Payments of one invoice
    PATCH  /api/payments/{payment_id}          Edit a manual payment
    DELETE /api/payments/{payment_id}          Reverse a manual payment

Every mutating endpoint answers with the entry and the invoice ledger as
it stands after the commit.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import require_capability
from app.database import get_db
from app.models.payment_entry import PaymentEntry
from app.schemas.payment import (
    GatewayPaymentVerify,
    PaymentCreate,
    PaymentList,
    PaymentOut,
    PaymentResult,
    PaymentUpdate,
)
from app.services import ledger, payments
from app.services.gateway import GatewayClient, GatewayPaymentIds, get_gateway_client
from app.tenancy import OrganizationContext
from app.utils.cache import invalidate_ledger

router = APIRouter()


async def _result(db: AsyncSession, ctx: OrganizationContext, entry: PaymentEntry) -> PaymentResult:
    """Commit, invalidate the cached ledger and render entry + ledger."""
    await db.commit()
    await invalidate_ledger(ctx.organization_id, entry.invoice_id)
    invoice = await ledger.get_invoice(db, ctx, entry.invoice_id)
    return PaymentResult(
        payment=PaymentOut.model_validate(entry),
        ledger=ledger.snapshot(invoice),
    )


# ── POST /api/payments ───────────────────────────────────────

@router.post("", response_model=PaymentResult, status_code=201)
async def record_payment(
    body: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("payments.write")),
):
    entry = await payments.record(
        db, ctx, body.invoice_id, body.amount, body.mode,
        payments.PaymentDetails(
            payment_date=body.payment_date,
            reference_number=body.reference_number,
            notes=body.notes,
        ),
    )
    return await _result(db, ctx, entry)


# ── POST /api/payments/gateway/verify ────────────────────────

@router.post("/gateway/verify", response_model=PaymentResult, status_code=201)
async def verify_gateway_payment(
    body: GatewayPaymentVerify,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("payments.write")),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Verify the gateway callback and apply the captured amount."""
    ids = GatewayPaymentIds(
        order_id=body.gateway_order_id,
        payment_id=body.gateway_payment_id,
        signature=body.gateway_signature,
    )
    entry = await payments.record_gateway_payment(
        db, ctx, body.invoice_id, ids, gateway, payment_date=body.payment_date,
    )
    return await _result(db, ctx, entry)


# ── GET /api/payments/invoice/{invoice_id} ───────────────────

@router.get("/invoice/{invoice_id}", response_model=PaymentList)
async def list_invoice_payments(
    invoice_id: str,
    include_reversed: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("payments.read")),
):
    invoice, entries = await payments.list_payments(db, ctx, invoice_id, include_reversed)
    return PaymentList(
        items=[PaymentOut.model_validate(e) for e in entries],
        ledger=ledger.snapshot(invoice),
    )


# ── PATCH /api/payments/{payment_id} ─────────────────────────

@router.patch("/{payment_id}", response_model=PaymentResult)
async def update_payment(
    payment_id: str,
    body: PaymentUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("payments.write")),
):
    entry = await payments.edit(
        db, ctx, payment_id,
        new_amount=body.amount,
        mode=body.mode,
        details=payments.PaymentDetails(
            payment_date=body.payment_date,
            reference_number=body.reference_number,
            notes=body.notes,
        ),
    )
    return await _result(db, ctx, entry)


# ── DELETE /api/payments/{payment_id} ────────────────────────

@router.delete("/{payment_id}", response_model=PaymentResult)
async def reverse_payment(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    ctx: OrganizationContext = Depends(require_capability("payments.reverse")),
):
    """Reverse (logically delete) a manual payment."""
    entry = await payments.reverse(db, ctx, payment_id)
    return await _result(db, ctx, entry)
