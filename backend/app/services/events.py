"""Domain event outbox.

Usage:
    await emit(
        db, invoice, EventType.PAYMENT_RECORDED,
        actor_id=ctx.user_id,
        payment_id=entry.id, amount=entry.amount,
    )

The row is added to the current session and committed with the
enclosing ledger transaction; no extra flush is performed.  Downstream
notification and reporting collaborators read ``invoice_events``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import EventType
from app.models.invoice import Invoice
from app.models.invoice_event import InvoiceEvent

logger = logging.getLogger(__name__)


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


async def emit(
    db: AsyncSession,
    invoice: Invoice,
    event_type: EventType,
    *,
    actor_id: str | None = None,
    **payload,
) -> InvoiceEvent:
    """Append a domain event for ``invoice`` to the current DB session."""
    body = {
        "invoice_number": invoice.invoice_number,
        "draft_number": invoice.draft_number,
        "status": invoice.status,
        "paid_amount": invoice.paid_amount,
        "balance_amount": invoice.balance_amount,
    }
    body.update(payload)

    event = InvoiceEvent(
        organization_id=invoice.organization_id,
        invoice_id=invoice.id,
        event_type=event_type.value,
        payload={k: _jsonable(v) for k, v in body.items()},
        actor_id=actor_id,
        created_at=datetime.utcnow(),
    )
    db.add(event)
    logger.info(
        "%s for invoice %s", event_type.value, invoice.invoice_number or invoice.draft_number,
        extra={"invoice_id": invoice.id, "organization_id": invoice.organization_id},
    )
    return event


async def list_events(
    db: AsyncSession,
    organization_id: str,
    invoice_id: str | None = None,
    event_type: EventType | None = None,
) -> list[InvoiceEvent]:
    stmt = select(InvoiceEvent).where(InvoiceEvent.organization_id == organization_id)
    if invoice_id:
        stmt = stmt.where(InvoiceEvent.invoice_id == invoice_id)
    if event_type:
        stmt = stmt.where(InvoiceEvent.event_type == event_type.value)
    result = await db.execute(stmt.order_by(InvoiceEvent.created_at, InvoiceEvent.id))
    return list(result.scalars().all())
