"""Organization: the tenant that issues invoices.

Master data owned by the organization-settings service; the billing core
only reads it (numbering mode/template, fiscal-year start, legacy GSTIN).
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.enums import NumberingMode


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── Legacy single registration ───────────────────────────
    # Used when an invoice does not select one of the GSTIN profiles.
    gstin: Mapped[str | None] = mapped_column(String(15))
    state_code: Mapped[str | None] = mapped_column(String(2))

    # ── Invoice numbering ────────────────────────────────────
    # AUTO | MANUAL
    invoice_number_mode: Mapped[str] = mapped_column(
        String(10), default=NumberingMode.AUTO.value
    )
    invoice_number_format: Mapped[str] = mapped_column(
        String(100), default="{PREFIX}-{FY}-{SEQ}"
    )
    invoice_prefix: Mapped[str] = mapped_column(String(20), default="INV")
    sequence_start: Mapped[int] = mapped_column(Integer, default=1)
    sequence_padding: Mapped[int] = mapped_column(Integer, default=5)

    # 1-12; April (4) in the Indian fiscal calendar
    financial_year_start_month: Mapped[int] = mapped_column(Integer, default=4)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    gstin_profiles = relationship("GstinProfile", back_populates="organization")
