"""Pydantic schemas for payment entries."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from app.models.enums import PaymentMode
from app.schemas.invoice import LedgerSnapshot


class PaymentCreate(BaseModel):
    invoice_id: str
    amount: Decimal
    payment_date: date
    mode: PaymentMode = PaymentMode.BANK_TRANSFER
    reference_number: str | None = Field(default=None, max_length=100)
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v

    @field_validator("mode")
    @classmethod
    def not_online(cls, v: PaymentMode) -> PaymentMode:
        if v == PaymentMode.ONLINE:
            raise ValueError("Online payments are recorded through gateway verification")
        return v


class PaymentUpdate(BaseModel):
    amount: Decimal | None = None
    payment_date: date | None = None
    mode: PaymentMode | None = None
    reference_number: str | None = Field(default=None, max_length=100)
    notes: str | None = None

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v <= 0:
            raise ValueError("Amount must be positive")
        return v

    @field_validator("mode")
    @classmethod
    def not_online(cls, v: PaymentMode | None) -> PaymentMode | None:
        if v == PaymentMode.ONLINE:
            raise ValueError("A manual payment cannot be changed to an online payment")
        return v


class GatewayPaymentVerify(BaseModel):
    invoice_id: str
    gateway_order_id: str = Field(min_length=1)
    gateway_payment_id: str = Field(min_length=1)
    gateway_signature: str = Field(min_length=1)
    payment_date: date | None = None


class PaymentOut(BaseModel):
    id: str
    invoice_id: str
    payment_number: str
    amount: Decimal
    payment_date: date
    mode: str
    reference_number: str | None = None
    notes: str | None = None
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    is_primary: bool
    is_reversed: bool
    reversed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentResult(BaseModel):
    """A payment entry together with the invoice ledger it changed."""
    payment: PaymentOut
    ledger: LedgerSnapshot


class PaymentList(BaseModel):
    items: list[PaymentOut]
    ledger: LedgerSnapshot
