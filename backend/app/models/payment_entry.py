"""PaymentEntry: one money movement applied to an invoice.

Manual entries (cash, cheque, transfer, ...) may be edited or reversed.
Gateway entries (mode ONLINE, carrying the provider's order/payment ids and
signature) are immutable and irreversible through this API.

Reversal is logical: the row stays for audit with ``is_reversed`` set and
no longer counts towards the invoice's paid amount.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Numeric,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class PaymentEntry(Base):
    __tablename__ = "payment_entries"
    __table_args__ = (
        UniqueConstraint("organization_id", "payment_number", name="uq_payment_entries_org_number"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id"), nullable=False, index=True
    )
    payment_number: Mapped[str] = mapped_column(String(30), nullable=False)

    # ── Money ────────────────────────────────────────────────
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    # CASH | CHEQUE | BANK_TRANSFER | UPI | CARD | ONLINE | OTHER
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Gateway (present iff mode == ONLINE) ─────────────────
    gateway_order_id: Mapped[str | None] = mapped_column(String(100))
    gateway_payment_id: Mapped[str | None] = mapped_column(
        String(100), unique=True, index=True
    )
    gateway_signature: Mapped[str | None] = mapped_column(String(256))

    # ── Ledger flags ─────────────────────────────────────────
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    is_reversed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Metadata ─────────────────────────────────────────────
    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    invoice = relationship("Invoice", back_populates="payments")

    @property
    def is_gateway(self) -> bool:
        return bool(self.gateway_payment_id or self.gateway_order_id or self.gateway_signature)
