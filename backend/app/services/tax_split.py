"""GST tax-split calculator: pure functions, no database access.

Decides how the tax on a taxable amount is split between CGST/SGST
(intra-state) and IGST (inter-state), and classifies the transaction.

Rule precedence (first match wins):
  1. EXPORT / SEZ           → zero-rated, all components 0, INTERSTATE
  2. IMPORT                 → IGST at full rate, INTERSTATE
  3. reverse charge         → amounts still computed; ``reverse_charge`` set
  4. origin == destination  → CGST + SGST
  5. otherwise              → IGST

Rounding: the tax for a line is ``round(taxable * rate / 100, 2)``
(half-up).  For intra-state supplies SGST is that amount halved and
rounded *down* to the paisa; CGST takes the remainder, so the two halves
always sum exactly to the full tax.

The calculator never reads the clock or master data, so a historical
invoice recomputed from its stored inputs yields identical figures.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from app.middleware.exceptions import InvalidTaxInput
from app.models.enums import DiscountType, GstTreatment, TransactionType

ZERO = Decimal("0.00")
PAISA = Decimal("0.01")

# ── State codes (GST portal numbering) ──────────────────────

STATE_CODES: dict[str, str] = {
    "01": "Jammu and Kashmir",
    "02": "Himachal Pradesh",
    "03": "Punjab",
    "04": "Chandigarh",
    "05": "Uttarakhand",
    "06": "Haryana",
    "07": "Delhi",
    "08": "Rajasthan",
    "09": "Uttar Pradesh",
    "10": "Bihar",
    "11": "Sikkim",
    "12": "Arunachal Pradesh",
    "13": "Nagaland",
    "14": "Manipur",
    "15": "Mizoram",
    "16": "Tripura",
    "17": "Meghalaya",
    "18": "Assam",
    "19": "West Bengal",
    "20": "Jharkhand",
    "21": "Odisha",
    "22": "Chhattisgarh",
    "23": "Madhya Pradesh",
    "24": "Gujarat",
    "26": "Dadra and Nagar Haveli and Daman and Diu",
    "27": "Maharashtra",
    "29": "Karnataka",
    "30": "Goa",
    "31": "Lakshadweep",
    "32": "Kerala",
    "33": "Tamil Nadu",
    "34": "Puducherry",
    "35": "Andaman and Nicobar Islands",
    "36": "Telangana",
    "37": "Andhra Pradesh",
    "38": "Ladakh",
    "97": "Other Territory",
    "99": "Centre Jurisdiction",
}

GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")

ZERO_RATED_TREATMENTS = {GstTreatment.EXPORT, GstTreatment.SEZ}
B2C_TREATMENTS = {GstTreatment.UNREGISTERED, GstTreatment.B2CS, GstTreatment.B2CL}
REGISTERED_TREATMENTS = {
    GstTreatment.REGULAR,
    GstTreatment.COMPOSITION,
    GstTreatment.REVERSE_CHARGE,
}


# ── Data structures ─────────────────────────────────────────


@dataclass(frozen=True)
class Destination:
    """Where the supply goes: a GSTIN, or a treatment plus billing state."""
    gstin: str | None = None
    treatment: str | None = None
    state_code: str | None = None


@dataclass(frozen=True)
class TaxSplit:
    transaction_type: TransactionType
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    is_interstate: bool
    origin_state_code: str
    destination_state_code: str | None
    reverse_charge: bool = False
    zero_rated: bool = False

    @property
    def total_tax(self) -> Decimal:
        return self.cgst + self.sgst + self.igst


@dataclass(frozen=True)
class LineAmounts:
    base_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal


# ── Helpers ─────────────────────────────────────────────────


def to_decimal(value, field: str = "value") -> Decimal:
    """Coerce ints, strings and Decimals; floats go through ``str``."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidTaxInput(f"Invalid {field}: {value!r}") from exc
    if not result.is_finite():
        raise InvalidTaxInput(f"Invalid {field}: {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    return value.quantize(PAISA, rounding=ROUND_HALF_UP)


def validate_gstin(gstin: str) -> str:
    """Normalize and validate a GSTIN; returns the upper-cased value."""
    normalized = (gstin or "").strip().upper()
    if not GSTIN_PATTERN.match(normalized):
        raise InvalidTaxInput(f"Malformed GSTIN: {gstin!r}")
    if normalized[:2] not in STATE_CODES:
        raise InvalidTaxInput(f"GSTIN {normalized} has unknown state code {normalized[:2]}")
    return normalized


def state_code_from_gstin(gstin: str) -> str:
    return validate_gstin(gstin)[:2]


def state_name(code: str | None) -> str | None:
    return STATE_CODES.get(code) if code else None


def _validate_state_code(code: str, role: str) -> str:
    normalized = str(code).strip().zfill(2)
    if normalized not in STATE_CODES:
        raise InvalidTaxInput(f"Unknown {role} state code: {code!r}")
    return normalized


def _parse_treatment(value: str | None) -> GstTreatment | None:
    if value is None:
        return None
    try:
        return GstTreatment(value)
    except ValueError as exc:
        raise InvalidTaxInput(f"Unrecognized GST treatment: {value!r}") from exc


def _resolve_destination_state(
    destination: Destination,
    treatment: GstTreatment | None,
    origin: str,
) -> str:
    if destination.gstin:
        return state_code_from_gstin(destination.gstin)
    if destination.state_code:
        return _validate_state_code(destination.state_code, "destination")
    # Unregistered buyer with no address on file: place of supply is the
    # supplier's location.
    if treatment in B2C_TREATMENTS:
        return origin
    raise InvalidTaxInput("Destination state unknown for a registered supply")


# ── Split ───────────────────────────────────────────────────


def compute_split(
    origin_state_code: str,
    destination: Destination,
    tax_rate,
    taxable_amount,
    is_reverse_charge: bool = False,
) -> TaxSplit:
    """Split the tax on ``taxable_amount`` at ``tax_rate`` percent."""
    rate = to_decimal(tax_rate, "tax rate")
    if rate < 0:
        raise InvalidTaxInput(f"Tax rate cannot be negative: {rate}")
    taxable = to_decimal(taxable_amount, "taxable amount")
    if taxable < 0:
        raise InvalidTaxInput(f"Taxable amount cannot be negative: {taxable}")

    origin = _validate_state_code(origin_state_code, "origin")
    treatment = _parse_treatment(destination.treatment)
    tax = round_money(taxable * rate / 100)

    if treatment in ZERO_RATED_TREATMENTS:
        dest = None
        if destination.gstin:
            dest = state_code_from_gstin(destination.gstin)
        elif destination.state_code:
            dest = _validate_state_code(destination.state_code, "destination")
        return TaxSplit(
            transaction_type=TransactionType.INTERSTATE,
            cgst=ZERO, sgst=ZERO, igst=ZERO,
            is_interstate=True,
            origin_state_code=origin,
            destination_state_code=dest,
            zero_rated=True,
        )

    if treatment == GstTreatment.IMPORT:
        return TaxSplit(
            transaction_type=TransactionType.INTERSTATE,
            cgst=ZERO, sgst=ZERO, igst=tax,
            is_interstate=True,
            origin_state_code=origin,
            destination_state_code=None,
            reverse_charge=is_reverse_charge,
        )

    reverse_charge = is_reverse_charge or treatment == GstTreatment.REVERSE_CHARGE
    dest = _resolve_destination_state(destination, treatment, origin)

    if origin == dest:
        sgst = (tax / 2).quantize(PAISA, rounding=ROUND_DOWN)
        cgst = tax - sgst
        if treatment in B2C_TREATMENTS:
            transaction_type = TransactionType.B2C
        elif treatment in REGISTERED_TREATMENTS:
            transaction_type = TransactionType.B2B_INTRASTATE
        else:
            transaction_type = TransactionType.INTRASTATE
        return TaxSplit(
            transaction_type=transaction_type,
            cgst=cgst, sgst=sgst, igst=ZERO,
            is_interstate=False,
            origin_state_code=origin,
            destination_state_code=dest,
            reverse_charge=reverse_charge,
        )

    if treatment in REGISTERED_TREATMENTS:
        transaction_type = TransactionType.B2B_INTERSTATE
    else:
        transaction_type = TransactionType.INTERSTATE
    return TaxSplit(
        transaction_type=transaction_type,
        cgst=ZERO, sgst=ZERO, igst=tax,
        is_interstate=True,
        origin_state_code=origin,
        destination_state_code=dest,
        reverse_charge=reverse_charge,
    )


# ── Line items ──────────────────────────────────────────────


def line_amounts(quantity, rate, discount_type: str | None = None, discount_value=0) -> LineAmounts:
    """Base, discount and taxable amount for one line (before tax)."""
    qty = to_decimal(quantity, "quantity")
    unit_rate = to_decimal(rate, "rate")
    if qty <= 0:
        raise InvalidTaxInput(f"Quantity must be positive: {qty}")
    if unit_rate < 0:
        raise InvalidTaxInput(f"Rate cannot be negative: {unit_rate}")

    base = round_money(qty * unit_rate)
    discount = discount_amount(base, discount_type, discount_value)
    return LineAmounts(base_amount=base, discount_amount=discount, taxable_amount=base - discount)


def discount_amount(base: Decimal, discount_type: str | None, discount_value=0) -> Decimal:
    """PERCENTAGE (0-100) or FIXED discount on ``base``; never more than ``base``."""
    value = to_decimal(discount_value or 0, "discount")
    if value < 0:
        raise InvalidTaxInput(f"Discount cannot be negative: {value}")

    if not discount_type or value == 0:
        return ZERO
    if discount_type == DiscountType.PERCENTAGE:
        if value > 100:
            raise InvalidTaxInput(f"Percentage discount above 100: {value}")
        discount = round_money(base * value / 100)
    elif discount_type == DiscountType.FIXED:
        discount = round_money(value)
    else:
        raise InvalidTaxInput(f"Unrecognized discount type: {discount_type!r}")

    if discount > base:
        raise InvalidTaxInput(f"Discount {discount} exceeds amount {base}")
    return discount


def allocate_pro_rata(amount: Decimal, weights: list[Decimal]) -> list[Decimal]:
    """Split ``amount`` across ``weights`` in whole paise.

    Largest remainder: every share is floored, then the leftover paise go
    one each to the largest fractional parts (earliest index on ties).
    Shares sum exactly to ``amount`` and none exceeds its weight when
    ``amount <= sum(weights)``.
    """
    paise = int(round_money(amount) / PAISA)
    units = [int(round_money(w) / PAISA) for w in weights]
    total = sum(units)
    if paise == 0 or total == 0:
        return [ZERO for _ in weights]

    shares = [paise * u // total for u in units]
    leftover = paise - sum(shares)
    by_remainder = sorted(range(len(units)), key=lambda i: (-(paise * units[i] % total), i))
    for i in by_remainder[:leftover]:
        shares[i] += 1
    return [(Decimal(s) * PAISA).quantize(PAISA) for s in shares]
