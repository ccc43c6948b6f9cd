"""Invoice number rendering: pure formatting, no counter access.

Format tokens:
  {PREFIX}       → invoice prefix of the GSTIN profile / organization
  {FY}           → financial year, e.g. 2024-25
  {SEQ}          → sequence, zero-padded to the configured width
  {SEQ:N}        → sequence, zero-padded to N digits
  {YEAR} {YY}    → invoice date year (2024 / 24)
  {MONTH} {MM}   → invoice date month (01-12)
  {DAY} {DD}     → invoice date day (01-31)
  {GSTIN_STATE}  → two-digit state code of the issuing GSTIN

Default format:
  {PREFIX}-{FY}-{SEQ}   → INV-2024-25-00001

Manual numbers must follow the GST portal rule: at most 16 characters
drawn from letters, digits, ``/`` and ``-``.
"""

import logging
import re
from datetime import date

from app.middleware.exceptions import InvalidInvoiceNumber

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "{PREFIX}-{FY}-{SEQ}"
DEFAULT_PADDING = 5
MAX_NUMBER_LENGTH = 16

_TOKEN_RE = re.compile(r"\{([A-Z_]+)(?::(\d+))?\}")
_MANUAL_RE = re.compile(r"^[A-Za-z0-9/-]+$")


def financial_year_for(on: date, start_month: int = 4) -> str:
    """Financial year label for a date.

    With an April start, 2024-04-01 .. 2025-03-31 is ``"2024-25"``.
    A January start gives the calendar year, e.g. ``"2024"``.
    """
    if not 1 <= start_month <= 12:
        raise ValueError(f"financial year start month must be 1-12, got {start_month}")
    if start_month == 1:
        return str(on.year)
    start_year = on.year if on.month >= start_month else on.year - 1
    return f"{start_year}-{(start_year + 1) % 100:02d}"


def render_number(
    template: str | None,
    prefix: str,
    financial_year: str,
    seq: int,
    padding: int = DEFAULT_PADDING,
    on: date | None = None,
    state_code: str | None = None,
) -> str:
    """Substitute the format tokens.  Unknown tokens are left verbatim."""
    on = on or date.today()
    values = {
        "PREFIX": prefix or "",
        "FY": financial_year,
        "YEAR": f"{on.year:04d}",
        "YY": f"{on.year % 100:02d}",
        "MONTH": f"{on.month:02d}",
        "MM": f"{on.month:02d}",
        "DAY": f"{on.day:02d}",
        "DD": f"{on.day:02d}",
        "GSTIN_STATE": state_code or "",
    }

    def _substitute(match: re.Match) -> str:
        token, width = match.group(1), match.group(2)
        if token == "SEQ":
            return f"{seq:0{int(width) if width else padding}d}"
        if token in values and width is None:
            return values[token]
        return match.group(0)

    number = _TOKEN_RE.sub(_substitute, template or DEFAULT_FORMAT)
    if len(number) > MAX_NUMBER_LENGTH:
        logger.warning(
            "Rendered invoice number exceeds %d characters: %s",
            MAX_NUMBER_LENGTH, number,
            extra={"template": template, "invoice_number": number},
        )
    return number


def validate_manual_number(number: str | None) -> str:
    """Trim and validate a caller-supplied invoice number."""
    candidate = (number or "").strip()
    if not candidate:
        raise InvalidInvoiceNumber("An invoice number is required in manual numbering mode")
    if len(candidate) > MAX_NUMBER_LENGTH:
        raise InvalidInvoiceNumber(
            f"Invoice number cannot exceed {MAX_NUMBER_LENGTH} characters"
        )
    if not _MANUAL_RE.match(candidate):
        raise InvalidInvoiceNumber(
            "Invoice number may only contain letters, digits, '/' and '-'"
        )
    return candidate
