"""GstinProfile: one GST registration held by an organization.

An organization registered in several states has one profile per state.
Each profile numbers its invoices independently (own prefix and format,
own counters).  Read-only to the billing core.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class GstinProfile(Base):
    __tablename__ = "gstin_profiles"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    gstin: Mapped[str] = mapped_column(String(15), nullable=False)
    state_code: Mapped[str] = mapped_column(String(2), nullable=False)
    state_name: Mapped[str] = mapped_column(String(100), nullable=False)
    trade_name: Mapped[str | None] = mapped_column(String(255))

    # Overrides of the organization-level numbering settings
    invoice_prefix: Mapped[str | None] = mapped_column(String(20))
    number_format: Mapped[str | None] = mapped_column(String(100))

    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    organization = relationship("Organization", back_populates="gstin_profiles")
