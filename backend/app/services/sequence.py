"""Sequence allocation for draft references, invoice and payment numbers.

Every stream is a ``SequenceCounter`` row keyed by
(organization, gstin_key, financial_year).  Allocation is one statement:

    UPDATE sequence_counters
       SET next_number = next_number + 1
     WHERE organization_id = :org AND gstin_key = :key
       AND financial_year = :fy AND next_number <= :max
    RETURNING next_number

so two concurrent callers can never read the same value.  The first
allocation on a key inserts the row inside a SAVEPOINT; if a concurrent
transaction won that race the unique constraint fires and we fall back
to the UPDATE.

Numbers are never handed back: a cancelled invoice keeps its number.
"""

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.middleware.exceptions import (
    DuplicateInvoiceNumber,
    InvalidInvoiceNumber,
    ResourceNotFoundError,
    SequenceExhaustion,
)
from app.models.enums import NumberingMode
from app.models.gstin_profile import GstinProfile
from app.models.invoice import Invoice
from app.models.organization import Organization
from app.models.sequence_counter import SequenceCounter
from app.utils.numbering import financial_year_for, render_number, validate_manual_number

logger = logging.getLogger(__name__)

DRAFT_KEY = "DRAFT"
DEFAULT_KEY = "DEFAULT"
PAYMENT_KEY = "PAYMENT"
PAYMENT_STREAM_YEAR = "ALL"


@dataclass(frozen=True)
class NumberingProfile:
    """Everything needed to number invoices issued under one registration."""
    gstin_key: str
    prefix: str
    template: str
    padding: int
    start: int
    fy_start_month: int
    state_code: str | None


# ── Counter primitive ───────────────────────────────────────


def _counter_filter(organization_id: str, gstin_key: str, financial_year: str):
    return (
        SequenceCounter.organization_id == organization_id,
        SequenceCounter.gstin_key == gstin_key,
        SequenceCounter.financial_year == financial_year,
    )


async def _increment(
    db: AsyncSession,
    organization_id: str,
    gstin_key: str,
    financial_year: str,
    max_value: int,
) -> int | None:
    stmt = (
        update(SequenceCounter)
        .where(
            *_counter_filter(organization_id, gstin_key, financial_year),
            SequenceCounter.next_number <= max_value,
        )
        .values(next_number=SequenceCounter.next_number + 1)
        .returning(SequenceCounter.next_number)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    row = result.first()
    return None if row is None else row[0] - 1


async def allocate(
    db: AsyncSession,
    organization_id: str,
    gstin_key: str,
    financial_year: str,
    start: int = 1,
    max_value: int | None = None,
) -> int:
    """Atomically take the next number for a key.

    Returns ``start`` on first use, then ``start + 1``, ``start + 2`` ...
    Raises SequenceExhaustion once ``max_value`` has been handed out.
    """
    max_value = max_value if max_value is not None else settings.sequence_max_value

    allocated = await _increment(db, organization_id, gstin_key, financial_year, max_value)
    if allocated is not None:
        return allocated

    existing = await db.execute(
        select(SequenceCounter.id).where(
            *_counter_filter(organization_id, gstin_key, financial_year)
        )
    )
    if existing.first() is None and start <= max_value:
        try:
            async with db.begin_nested():
                db.add(SequenceCounter(
                    organization_id=organization_id,
                    gstin_key=gstin_key,
                    financial_year=financial_year,
                    next_number=start + 1,
                ))
            return start
        except IntegrityError:
            logger.debug(
                "Counter %s/%s/%s created concurrently, retrying increment",
                organization_id, gstin_key, financial_year,
            )
            allocated = await _increment(db, organization_id, gstin_key, financial_year, max_value)
            if allocated is not None:
                return allocated

    logger.critical(
        "Sequence exhausted for %s/%s/%s (max %d)",
        organization_id, gstin_key, financial_year, max_value,
        extra={
            "organization_id": organization_id,
            "gstin_key": gstin_key,
            "financial_year": financial_year,
        },
    )
    raise SequenceExhaustion(
        f"Sequence {gstin_key}/{financial_year} exhausted at {max_value}"
    )


async def peek(
    db: AsyncSession,
    organization_id: str,
    gstin_key: str,
    financial_year: str,
    start: int = 1,
) -> int:
    """The number the next ``allocate`` would return, without consuming it."""
    result = await db.execute(
        select(SequenceCounter.next_number).where(
            *_counter_filter(organization_id, gstin_key, financial_year)
        )
    )
    current = result.scalar_one_or_none()
    return start if current is None else current


# ── Numbering profiles ──────────────────────────────────────


async def get_organization(db: AsyncSession, organization_id: str) -> Organization:
    result = await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )
    org = result.scalar_one_or_none()
    if not org:
        raise ResourceNotFoundError("Organization", organization_id)
    return org


async def get_gstin_profile(
    db: AsyncSession, organization_id: str, profile_id: str
) -> GstinProfile:
    result = await db.execute(
        select(GstinProfile).where(
            GstinProfile.id == profile_id,
            GstinProfile.organization_id == organization_id,
            GstinProfile.is_active == True,  # noqa: E712
        )
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise ResourceNotFoundError("GSTIN profile", profile_id)
    return profile


def numbering_profile(org: Organization, profile: GstinProfile | None = None) -> NumberingProfile:
    """Merge organization defaults with a GSTIN profile's overrides.

    Each GSTIN numbers independently; invoices on the legacy organization
    GSTIN share one stream keyed by that GSTIN (or DEFAULT when unset).
    """
    if profile is not None:
        return NumberingProfile(
            gstin_key=profile.gstin,
            prefix=profile.invoice_prefix or org.invoice_prefix,
            template=profile.number_format or org.invoice_number_format,
            padding=org.sequence_padding,
            start=org.sequence_start,
            fy_start_month=org.financial_year_start_month,
            state_code=profile.state_code,
        )
    return NumberingProfile(
        gstin_key=org.gstin or DEFAULT_KEY,
        prefix=org.invoice_prefix,
        template=org.invoice_number_format,
        padding=org.sequence_padding,
        start=org.sequence_start,
        fy_start_month=org.financial_year_start_month,
        state_code=org.state_code or (org.gstin[:2] if org.gstin else None),
    )


# ── Allocators ──────────────────────────────────────────────


async def allocate_draft(db: AsyncSession, org: Organization, on: date) -> str:
    """Draft reference, always automatic, e.g. DRAFT-2024-25-00001."""
    fy = financial_year_for(on, org.financial_year_start_month)
    seq = await allocate(db, org.id, DRAFT_KEY, fy)
    return f"DRAFT-{fy}-{seq:05d}"


async def allocate_payment_number(db: AsyncSession, organization_id: str) -> str:
    seq = await allocate(db, organization_id, PAYMENT_KEY, PAYMENT_STREAM_YEAR)
    return f"PAY-{seq:05d}"


async def _ensure_unused(
    db: AsyncSession, organization_id: str, number: str, exclude_invoice_id: str | None
) -> None:
    stmt = select(Invoice.id).where(
        Invoice.organization_id == organization_id,
        Invoice.invoice_number == number,
    )
    if exclude_invoice_id:
        stmt = stmt.where(Invoice.id != exclude_invoice_id)
    result = await db.execute(stmt.limit(1))
    if result.first() is not None:
        raise DuplicateInvoiceNumber(f"Invoice number {number} is already in use")


async def allocate_final(
    db: AsyncSession,
    org: Organization,
    profile: GstinProfile | None,
    invoice_date: date,
    manual_number: str | None = None,
    invoice_id: str | None = None,
) -> str:
    """Definitive invoice number.

    AUTO:   take the next sequence for (GSTIN, FY) and render the template.
    MANUAL: validate the caller's number and reject duplicates.
    """
    if org.invoice_number_mode == NumberingMode.MANUAL:
        number = validate_manual_number(manual_number)
        await _ensure_unused(db, org.id, number, invoice_id)
        return number

    if manual_number:
        raise InvalidInvoiceNumber(
            "Organization uses automatic numbering; an invoice number cannot be supplied"
        )

    np = numbering_profile(org, profile)
    fy = financial_year_for(invoice_date, np.fy_start_month)
    seq = await allocate(db, org.id, np.gstin_key, fy, start=np.start)
    number = render_number(
        np.template, np.prefix, fy, seq, np.padding,
        on=invoice_date, state_code=np.state_code,
    )
    await _ensure_unused(db, org.id, number, invoice_id)
    logger.info(
        "Allocated invoice number %s", number,
        extra={"organization_id": org.id, "gstin_key": np.gstin_key, "financial_year": fy},
    )
    return number


async def preview_next(
    db: AsyncSession,
    org: Organization,
    profile: GstinProfile | None,
    on: date,
) -> str | None:
    """What AUTO numbering would assign next; None in MANUAL mode."""
    if org.invoice_number_mode == NumberingMode.MANUAL:
        return None
    np = numbering_profile(org, profile)
    fy = financial_year_for(on, np.fy_start_month)
    seq = await peek(db, org.id, np.gstin_key, fy, start=np.start)
    return render_number(
        np.template, np.prefix, fy, seq, np.padding,
        on=on, state_code=np.state_code,
    )
