"""Initial billing ledger: organizations, GSTIN profiles, clients, invoices,
payment entries, sequence counters and the invoice event outbox.

Revision ID: 0001
Revises:
Create Date: 2026-10-05
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def _money(name: str, nullable: bool = True, default: bool = True) -> sa.Column:
    return sa.Column(
        name, sa.Numeric(14, 2), nullable=nullable,
        server_default=sa.text("0") if default else None,
    )


def upgrade() -> None:
    # ── Master data ──────────────────────────────────────────
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("gstin", sa.String(15)),
        sa.Column("state_code", sa.String(2)),
        sa.Column("invoice_number_mode", sa.String(10), server_default="AUTO"),
        sa.Column("invoice_number_format", sa.String(100), server_default="{PREFIX}-{FY}-{SEQ}"),
        sa.Column("invoice_prefix", sa.String(20), server_default="INV"),
        sa.Column("sequence_start", sa.Integer, server_default="1"),
        sa.Column("sequence_padding", sa.Integer, server_default="5"),
        sa.Column("financial_year_start_month", sa.Integer, server_default="4"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "gstin_profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("gstin", sa.String(15), nullable=False),
        sa.Column("state_code", sa.String(2), nullable=False),
        sa.Column("state_name", sa.String(100), nullable=False),
        sa.Column("trade_name", sa.String(255)),
        sa.Column("invoice_prefix", sa.String(20)),
        sa.Column("number_format", sa.String(100)),
        sa.Column("is_default", sa.Boolean, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_gstin_profiles_organization_id", "gstin_profiles", ["organization_id"])

    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("gstin", sa.String(15)),
        sa.Column("billing_state_code", sa.String(2)),
        sa.Column("gst_treatment", sa.String(20), server_default="REGULAR"),
        sa.Column("email", sa.String(255)),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_clients_organization_id", "clients", ["organization_id"])

    # ── Invoices ─────────────────────────────────────────────
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invoice_number", sa.String(50)),
        sa.Column("draft_number", sa.String(50), nullable=False),
        sa.Column("invoice_type", sa.String(30), nullable=False),
        sa.Column("reference_number", sa.String(50)),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("selected_gstin_id", sa.String(36), sa.ForeignKey("gstin_profiles.id")),
        sa.Column("gstin_used", sa.JSON),
        sa.Column("destination_used", sa.JSON),
        sa.Column("line_items", sa.JSON),
        sa.Column("tds_rate", sa.Numeric(5, 2), server_default=sa.text("0")),
        sa.Column("tcs_rate", sa.Numeric(5, 2), server_default=sa.text("0")),
        sa.Column("reverse_charge", sa.Boolean, server_default=sa.false()),
        sa.Column("discount_type", sa.String(20)),
        sa.Column("discount_value", sa.Numeric(14, 2), server_default=sa.text("0")),
        _money("subtotal"),
        _money("discount_amount"),
        _money("taxable_amount"),
        _money("cgst"),
        _money("sgst"),
        _money("igst"),
        _money("total_tax"),
        _money("tds_amount"),
        _money("tcs_amount"),
        _money("round_off"),
        _money("total_amount", nullable=False, default=False),
        _money("paid_amount"),
        _money("balance_amount", nullable=False, default=False),
        sa.Column("status", sa.String(20), server_default="DRAFT"),
        sa.Column("invoice_date", sa.Date, nullable=False),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("origin_state_code", sa.String(2)),
        sa.Column("destination_state_code", sa.String(2)),
        sa.Column("transaction_type", sa.String(20)),
        sa.Column("is_interstate", sa.Boolean, server_default=sa.false()),
        sa.Column("tax_computed_at", sa.DateTime),
        sa.Column("notes", sa.Text),
        sa.Column("created_by", sa.String(36)),
        sa.Column("finalized_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.UniqueConstraint("organization_id", "invoice_number", name="uq_invoices_org_number"),
        sa.UniqueConstraint("organization_id", "draft_number", name="uq_invoices_org_draft_number"),
    )
    op.create_index("ix_invoices_organization_id", "invoices", ["organization_id"])
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"])
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_due_date", "invoices", ["due_date"])

    # ── Payment entries ──────────────────────────────────────
    op.create_table(
        "payment_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("payment_number", sa.String(30), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.Date, nullable=False),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("reference_number", sa.String(100)),
        sa.Column("notes", sa.Text),
        sa.Column("gateway_order_id", sa.String(100)),
        sa.Column("gateway_payment_id", sa.String(100)),
        sa.Column("gateway_signature", sa.String(256)),
        sa.Column("is_primary", sa.Boolean, server_default=sa.false()),
        sa.Column("is_reversed", sa.Boolean, server_default=sa.false()),
        sa.Column("reversed_at", sa.DateTime),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "payment_number", name="uq_payment_entries_org_number"),
    )
    op.create_index("ix_payment_entries_organization_id", "payment_entries", ["organization_id"])
    op.create_index("ix_payment_entries_invoice_id", "payment_entries", ["invoice_id"])
    op.create_index("ix_payment_entries_is_reversed", "payment_entries", ["is_reversed"])
    op.create_index(
        "ix_payment_entries_gateway_payment_id", "payment_entries",
        ["gateway_payment_id"], unique=True,
    )

    # ── Sequence counters ────────────────────────────────────
    op.create_table(
        "sequence_counters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("gstin_key", sa.String(36), nullable=False),
        sa.Column("financial_year", sa.String(10), nullable=False),
        sa.Column("next_number", sa.BigInteger, nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "organization_id", "gstin_key", "financial_year",
            name="uq_sequence_counters_key",
        ),
    )

    # ── Event outbox ─────────────────────────────────────────
    op.create_table(
        "invoice_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", sa.JSON),
        sa.Column("actor_id", sa.String(36)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_invoice_events_organization_id", "invoice_events", ["organization_id"])
    op.create_index("ix_invoice_events_invoice_id", "invoice_events", ["invoice_id"])
    op.create_index("ix_invoice_events_event_type", "invoice_events", ["event_type"])
    op.create_index("ix_invoice_events_created_at", "invoice_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("invoice_events")
    op.drop_table("sequence_counters")
    op.drop_table("payment_entries")
    op.drop_table("invoices")
    op.drop_table("clients")
    op.drop_table("gstin_profiles")
    op.drop_table("organizations")
