"""Enumerations shared by models, services and schemas.

Values are stored as plain strings in the database; the ``str`` mixin
lets a column value compare equal to its enum member.
"""

import enum


class InvoiceType(str, enum.Enum):
    PROFORMA = "PROFORMA"
    TAX_INVOICE = "TAX_INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"
    DELIVERY_CHALLAN = "DELIVERY_CHALLAN"


# Document types that must point at another document (original invoice / PO)
REFERENCE_REQUIRED_TYPES = {
    InvoiceType.CREDIT_NOTE,
    InvoiceType.DEBIT_NOTE,
    InvoiceType.DELIVERY_CHALLAN,
}


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class PaymentMode(str, enum.Enum):
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    BANK_TRANSFER = "BANK_TRANSFER"
    UPI = "UPI"
    CARD = "CARD"
    ONLINE = "ONLINE"
    OTHER = "OTHER"


class NumberingMode(str, enum.Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class GstTreatment(str, enum.Enum):
    REGULAR = "REGULAR"
    COMPOSITION = "COMPOSITION"
    UNREGISTERED = "UNREGISTERED"
    B2CS = "B2CS"
    B2CL = "B2CL"
    SEZ = "SEZ"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"
    REVERSE_CHARGE = "REVERSE_CHARGE"


class TransactionType(str, enum.Enum):
    INTRASTATE = "INTRASTATE"
    INTERSTATE = "INTERSTATE"
    B2C = "B2C"
    B2B_INTRASTATE = "B2B_INTRASTATE"
    B2B_INTERSTATE = "B2B_INTERSTATE"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class EventType(str, enum.Enum):
    INVOICE_FINALIZED = "InvoiceFinalized"
    INVOICE_STATUS_CHANGED = "InvoiceStatusChanged"
    PAYMENT_RECORDED = "PaymentRecorded"
    PAYMENT_EDITED = "PaymentEdited"
    PAYMENT_REVERSED = "PaymentReversed"
