"""Pydantic schemas for invoices and the ledger snapshot."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.enums import DiscountType, InvoiceType


class LineItemIn(BaseModel):
    description: str = Field(min_length=1, max_length=500)
    hsn_code: str | None = None
    quantity: Decimal = Field(gt=0)
    unit: str | None = None
    rate: Decimal = Field(ge=0)
    discount_type: DiscountType | None = None
    discount_value: Decimal = Decimal("0")
    tax_rate: Decimal = Field(ge=0, le=100)

    @field_validator("discount_value")
    @classmethod
    def discount_not_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Discount cannot be negative")
        return v


class LineItemOut(BaseModel):
    description: str | None = None
    hsn_code: str | None = None
    quantity: Decimal
    unit: str | None = None
    rate: Decimal
    discount_type: str | None = None
    discount_value: Decimal = Decimal("0")
    tax_rate: Decimal
    base_amount: Decimal
    discount_amount: Decimal
    invoice_discount: Decimal = Decimal("0")
    taxable_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    tax_amount: Decimal
    total_amount: Decimal


class InvoiceCreate(BaseModel):
    client_id: str
    invoice_type: InvoiceType = InvoiceType.TAX_INVOICE
    selected_gstin_id: str | None = None
    reference_number: str | None = Field(default=None, max_length=50)
    invoice_date: date
    due_date: date | None = None
    line_items: list[LineItemIn] = Field(min_length=1)
    tds_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tcs_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    reverse_charge: bool = False
    discount_type: DiscountType | None = None
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None


class InvoiceUpdate(BaseModel):
    client_id: str | None = None
    invoice_type: InvoiceType | None = None
    selected_gstin_id: str | None = None
    reference_number: str | None = Field(default=None, max_length=50)
    invoice_date: date | None = None
    due_date: date | None = None
    line_items: list[LineItemIn] | None = Field(default=None, min_length=1)
    tds_rate: Decimal | None = Field(default=None, ge=0, le=100)
    tcs_rate: Decimal | None = Field(default=None, ge=0, le=100)
    reverse_charge: bool | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class FinalizeRequest(BaseModel):
    """Body of POST /finalize.  ``invoice_number`` only in MANUAL mode."""
    invoice_number: str | None = None


class LedgerSnapshot(BaseModel):
    """Authoritative monetary state of one invoice."""
    invoice_id: str
    invoice_number: str | None = None
    draft_number: str
    invoice_type: str
    status: str
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
    paid_amount: Decimal
    balance_amount: Decimal
    transaction_type: str | None = None
    is_interstate: bool
    reverse_charge: bool
    origin_state_code: str | None = None
    destination_state_code: str | None = None
    invoice_date: date
    due_date: date
    live_payment_count: int = 0


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str | None = None
    draft_number: str
    invoice_type: str
    reference_number: str | None = None
    client_id: str
    selected_gstin_id: str | None = None
    gstin_used: dict | None = None
    destination_used: dict | None = None
    line_items: list[LineItemOut]
    tds_rate: Decimal
    tcs_rate: Decimal
    reverse_charge: bool
    discount_type: str | None = None
    discount_value: Decimal = Decimal("0")
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
    paid_amount: Decimal
    balance_amount: Decimal
    status: str
    invoice_date: date
    due_date: date
    origin_state_code: str | None = None
    destination_state_code: str | None = None
    transaction_type: str | None = None
    is_interstate: bool
    tax_computed_at: datetime | None = None
    notes: str | None = None
    finalized_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    version: int

    model_config = {"from_attributes": True}


class InvoiceSummary(BaseModel):
    id: str
    invoice_number: str | None = None
    draft_number: str
    invoice_type: str
    client_id: str
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: str
    invoice_date: date
    due_date: date

    model_config = {"from_attributes": True}


class NumberPreview(BaseModel):
    mode: str
    next_number: str | None = None
    financial_year: str


class InvoicePage(BaseModel):
    """One page of invoices plus the unpaged match count."""
    items: list[InvoiceSummary]
    total: int
    limit: int
    offset: int
