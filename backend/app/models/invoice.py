"""Invoice: a tax document issued (or drafted) by an organization.

Monetary aggregates and the tax metadata snapshot are written only by the
ledger service; callers supply line-item inputs and rates.  The ledger
identity ``balance_amount = total_amount - paid_amount`` holds after every
committed transaction, with ``paid_amount`` folded from live payment
entries.

Lifecycle:  DRAFT → PENDING → PARTIALLY_PAID → PAID
                        ↘ OVERDUE ↗          (CANCELLED is terminal)
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer,
    JSON, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.enums import InvoiceStatus

Money = Numeric(14, 2)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("organization_id", "invoice_number", name="uq_invoices_org_number"),
        UniqueConstraint("organization_id", "draft_number", name="uq_invoices_org_draft_number"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )

    # ── Identity ─────────────────────────────────────────────
    invoice_number: Mapped[str | None] = mapped_column(String(50), index=True)
    draft_number: Mapped[str] = mapped_column(String(50), nullable=False)
    # PROFORMA | TAX_INVOICE | CREDIT_NOTE | DEBIT_NOTE | DELIVERY_CHALLAN
    invoice_type: Mapped[str] = mapped_column(String(30), nullable=False)
    # Original invoice / PO for credit notes, debit notes and challans
    reference_number: Mapped[str | None] = mapped_column(String(50))

    # ── Parties ──────────────────────────────────────────────
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )
    selected_gstin_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("gstin_profiles.id")
    )
    # {"gstin": ..., "state_code": ..., "state_name": ...} at computation time
    gstin_used: Mapped[dict | None] = mapped_column(JSON)
    # {"gstin": ..., "treatment": ..., "state_code": ...} of the buyer, same moment
    destination_used: Mapped[dict | None] = mapped_column(JSON)

    # ── Line items ───────────────────────────────────────────
    # [{"description": "Consulting", "hsn_code": "9983", "quantity": 10, "rate": "1000.00",
    #   "discount_type": null, "discount_value": "0", "tax_rate": "18",
    #   "base_amount": "10000.00", "taxable_amount": "10000.00", "cgst": "900.00", ...}]
    line_items: Mapped[list] = mapped_column(JSON, default=list)

    # ── Inputs for derived amounts ───────────────────────────
    tds_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    tcs_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    reverse_charge: Mapped[bool] = mapped_column(Boolean, default=False)
    # Invoice-level discount, spread over the lines before tax
    discount_type: Mapped[str | None] = mapped_column(String(20))
    discount_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # ── Aggregates (derived) ─────────────────────────────────
    subtotal: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    taxable_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    cgst: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    igst: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tds_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    tcs_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    round_off: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # ── Ledger state ─────────────────────────────────────────
    paid_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=InvoiceStatus.DRAFT.value, index=True
    )

    # ── Dates ────────────────────────────────────────────────
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # ── Tax metadata snapshot (never recomputed retroactively) ──
    origin_state_code: Mapped[str | None] = mapped_column(String(2))
    destination_state_code: Mapped[str | None] = mapped_column(String(2))
    transaction_type: Mapped[str | None] = mapped_column(String(20))
    is_interstate: Mapped[bool] = mapped_column(Boolean, default=False)
    tax_computed_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Metadata ─────────────────────────────────────────────
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Optimistic concurrency: every UPDATE checks and bumps this
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ────────────────────────────────────────
    payments = relationship(
        "PaymentEntry",
        back_populates="invoice",
        lazy="selectin",
        order_by="PaymentEntry.created_at",
    )
    client = relationship("Client", lazy="selectin")
