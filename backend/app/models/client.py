"""Client: the billed party.  Read-only to the billing core.

Only the tax-relevant attributes are modelled here: the GSTIN (whose first
two characters give the place of supply), a billing-state fallback for
unregistered buyers, and the GST treatment classification.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.enums import GstTreatment


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    gstin: Mapped[str | None] = mapped_column(String(15))
    billing_state_code: Mapped[str | None] = mapped_column(String(2))
    # REGULAR | COMPOSITION | UNREGISTERED | B2CS | B2CL | SEZ | EXPORT | IMPORT | REVERSE_CHARGE
    gst_treatment: Mapped[str] = mapped_column(
        String(20), default=GstTreatment.REGULAR.value
    )
    email: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
