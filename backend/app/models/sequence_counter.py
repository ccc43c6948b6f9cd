"""SequenceCounter: one numbering stream per (organization, GSTIN, FY).

``next_number`` is the value the next allocation will hand out.  The row
is only ever mutated by a single conditional ``UPDATE ... RETURNING`` so
two concurrent allocations can never observe the same value.  Counters
are never decremented: numbers consumed by later-cancelled invoices are
not reused.

gstin_key:
  - a GSTIN                       → finalized invoice numbers for that registration
  - "DEFAULT"                     → finalized numbers when the organization has no GSTIN
  - "DRAFT"                       → draft references
  - "PAYMENT"                     → payment receipt numbers
"""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "gstin_key", "financial_year",
            name="uq_sequence_counters_key",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False
    )
    gstin_key: Mapped[str] = mapped_column(String(36), nullable=False)
    financial_year: Mapped[str] = mapped_column(String(10), nullable=False)
    next_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
