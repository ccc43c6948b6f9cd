"""Tests for the GST tax-split calculator."""

from decimal import Decimal

import pytest

from app.middleware.exceptions import InvalidTaxInput
from app.models.enums import TransactionType
from app.services.tax_split import (
    Destination,
    allocate_pro_rata,
    compute_split,
    discount_amount,
    line_amounts,
    state_code_from_gstin,
    validate_gstin,
)


@pytest.mark.unit
class TestComputeSplit:

    def test_intrastate_splits_cgst_sgst(self):
        split = compute_split("27", Destination(state_code="27"), Decimal("18"), Decimal("10000.00"))

        assert split.cgst == Decimal("900.00")
        assert split.sgst == Decimal("900.00")
        assert split.igst == Decimal("0.00")
        assert split.transaction_type == TransactionType.INTRASTATE
        assert split.is_interstate is False

    def test_interstate_uses_igst(self):
        split = compute_split("27", Destination(state_code="29"), Decimal("18"), Decimal("10000.00"))

        assert split.igst == Decimal("1800.00")
        assert split.cgst == Decimal("0.00")
        assert split.sgst == Decimal("0.00")
        assert split.transaction_type == TransactionType.INTERSTATE
        assert split.is_interstate is True
        assert split.destination_state_code == "29"

    def test_odd_paisa_goes_to_cgst(self):
        # 18% of 100.05 = 18.009 → 18.01; halves 9.00 (SGST, floored) + 9.01 (CGST)
        split = compute_split("27", Destination(state_code="27"), Decimal("18"), Decimal("100.05"))

        assert split.sgst == Decimal("9.00")
        assert split.cgst == Decimal("9.01")
        assert split.cgst + split.sgst == Decimal("18.01")

    def test_destination_state_from_gstin(self):
        split = compute_split(
            "27", Destination(gstin="29CCCCC2222C1Z5", treatment="REGULAR"),
            Decimal("12"), Decimal("500.00"),
        )
        assert split.transaction_type == TransactionType.B2B_INTERSTATE
        assert split.igst == Decimal("60.00")

    def test_registered_intrastate_is_b2b(self):
        split = compute_split(
            "27", Destination(gstin="27BBBBB1111B1Z5", treatment="REGULAR"),
            Decimal("18"), Decimal("10000.00"),
        )
        assert split.transaction_type == TransactionType.B2B_INTRASTATE

    def test_export_is_zero_rated(self):
        split = compute_split("27", Destination(treatment="EXPORT"), Decimal("18"), Decimal("10000.00"))

        assert split.total_tax == Decimal("0.00")
        assert split.zero_rated is True
        assert split.is_interstate is True

    def test_sez_is_zero_rated(self):
        split = compute_split(
            "27", Destination(state_code="27", treatment="SEZ"), Decimal("18"), Decimal("10000.00"),
        )
        assert split.total_tax == Decimal("0.00")

    def test_import_charges_igst(self):
        split = compute_split("27", Destination(treatment="IMPORT"), Decimal("18"), Decimal("10000.00"))

        assert split.igst == Decimal("1800.00")
        assert split.cgst == split.sgst == Decimal("0.00")

    def test_unregistered_buyer_without_state_uses_origin(self):
        split = compute_split("27", Destination(treatment="UNREGISTERED"), Decimal("5"), Decimal("200.00"))

        assert split.transaction_type == TransactionType.B2C
        assert split.destination_state_code == "27"
        assert split.cgst + split.sgst == Decimal("10.00")

    def test_reverse_charge_flag_keeps_amounts(self):
        split = compute_split(
            "27", Destination(state_code="29"), Decimal("18"), Decimal("1000.00"),
            is_reverse_charge=True,
        )
        assert split.reverse_charge is True
        assert split.igst == Decimal("180.00")

    def test_reverse_charge_treatment_sets_flag(self):
        split = compute_split(
            "27", Destination(state_code="27", treatment="REVERSE_CHARGE"),
            Decimal("18"), Decimal("1000.00"),
        )
        assert split.reverse_charge is True

    def test_zero_rate(self):
        split = compute_split("27", Destination(state_code="27"), Decimal("0"), Decimal("1000.00"))
        assert split.total_tax == Decimal("0.00")

    def test_negative_rate_rejected(self):
        with pytest.raises(InvalidTaxInput):
            compute_split("27", Destination(state_code="27"), Decimal("-1"), Decimal("100.00"))

    def test_negative_taxable_rejected(self):
        with pytest.raises(InvalidTaxInput):
            compute_split("27", Destination(state_code="27"), Decimal("18"), Decimal("-1.00"))

    def test_unknown_state_rejected(self):
        with pytest.raises(InvalidTaxInput):
            compute_split("27", Destination(state_code="42"), Decimal("18"), Decimal("100.00"))

    def test_registered_supply_needs_destination(self):
        with pytest.raises(InvalidTaxInput):
            compute_split("27", Destination(treatment="REGULAR"), Decimal("18"), Decimal("100.00"))

    def test_unknown_treatment_rejected(self):
        with pytest.raises(InvalidTaxInput):
            compute_split("27", Destination(state_code="27", treatment="BARTER"), Decimal("18"), Decimal("1"))


@pytest.mark.unit
class TestGstin:

    def test_valid_gstin_is_normalized(self):
        assert validate_gstin(" 27aaaaa0000a1z5 ") == "27AAAAA0000A1Z5"
        assert state_code_from_gstin("29CCCCC2222C1Z5") == "29"

    @pytest.mark.parametrize("gstin", ["", "27AAAAA0000A1Z", "27AAAAA0000A1X5", "42AAAAA0000A1Z5"])
    def test_malformed_gstin_rejected(self, gstin):
        with pytest.raises(InvalidTaxInput):
            validate_gstin(gstin)


@pytest.mark.unit
class TestLineAmounts:

    def test_no_discount(self):
        amounts = line_amounts(Decimal("10"), Decimal("1000.00"))
        assert amounts.base_amount == Decimal("10000.00")
        assert amounts.taxable_amount == Decimal("10000.00")

    def test_percentage_discount(self):
        amounts = line_amounts("4", "250.00", "PERCENTAGE", "10")
        assert amounts.discount_amount == Decimal("100.00")
        assert amounts.taxable_amount == Decimal("900.00")

    def test_fixed_discount(self):
        amounts = line_amounts("1", "999.99", "FIXED", "99.99")
        assert amounts.taxable_amount == Decimal("900.00")

    def test_discount_above_base_rejected(self):
        with pytest.raises(InvalidTaxInput):
            line_amounts("1", "100.00", "FIXED", "150")

    def test_percentage_above_hundred_rejected(self):
        with pytest.raises(InvalidTaxInput):
            line_amounts("1", "100.00", "PERCENTAGE", "101")

    def test_zero_quantity_rejected(self):
        with pytest.raises(InvalidTaxInput):
            line_amounts("0", "100.00")

    def test_garbage_rejected(self):
        with pytest.raises(InvalidTaxInput):
            line_amounts("ten", "100.00")


@pytest.mark.unit
class TestInvoiceDiscount:

    def test_discount_amount(self):
        assert discount_amount(Decimal("10333.33"), "PERCENTAGE", "10") == Decimal("1033.33")
        assert discount_amount(Decimal("500.00"), "FIXED", "500") == Decimal("500.00")
        assert discount_amount(Decimal("500.00"), None, "50") == Decimal("0.00")

    def test_discount_above_amount_rejected(self):
        with pytest.raises(InvalidTaxInput):
            discount_amount(Decimal("500.00"), "FIXED", "500.01")

    def test_pro_rata_shares_sum_exactly(self):
        shares = allocate_pro_rata(Decimal("1033.33"), [Decimal("10000.00"), Decimal("333.33")])
        assert shares == [Decimal("1000.00"), Decimal("33.33")]
        assert sum(shares) == Decimal("1033.33")

    def test_leftover_paise_go_to_earliest_on_ties(self):
        shares = allocate_pro_rata(Decimal("0.02"), [Decimal("1.00")] * 3)
        assert shares == [Decimal("0.01"), Decimal("0.01"), Decimal("0.00")]

    def test_share_never_exceeds_weight(self):
        weights = [Decimal("0.01"), Decimal("0.01"), Decimal("99.98")]
        shares = allocate_pro_rata(Decimal("100.00"), weights)
        assert shares == weights

    def test_nothing_to_allocate(self):
        assert allocate_pro_rata(Decimal("0"), [Decimal("5.00"), Decimal("7.00")]) == [Decimal("0.00")] * 2
