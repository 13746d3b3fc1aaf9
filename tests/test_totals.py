"""Tests for the financial totals calculator."""

from decimal import Decimal

import pytest

from crm_engine.calculators import (
    LineItem,
    compute_totals,
    manual_totals,
    resolve_item_amount,
    round_to_cents,
)
from crm_engine.calculators.types import to_decimal
from crm_engine.errors import ValidationError


def item(qty="1", price="0", rate="0", amount=None) -> LineItem:
    return LineItem(
        name="Line",
        quantity=Decimal(qty),
        unit_price=Decimal(price),
        tax_rate=Decimal(rate),
        amount=None if amount is None else Decimal(amount),
    )


class TestResolveItemAmount:
    """Test per-line amount resolution."""

    def test_derived_amount_includes_tax(self):
        """Test quantity * unit_price * (1 + tax_rate/100)."""
        assert resolve_item_amount(item("2", "50", "10")) == Decimal("110.00")

    def test_client_amount_wins(self):
        assert resolve_item_amount(item("2", "50", "10", amount="95.50")) == Decimal("95.50")

    def test_zero_amount_is_treated_as_absent(self):
        assert resolve_item_amount(item("3", "10", amount="0")) == Decimal("30.00")

    def test_rounding_half_up(self):
        """Test line amounts round half-up to cents."""
        assert resolve_item_amount(item("1", "10.005")) == Decimal("10.01")
        assert round_to_cents(Decimal("10.125")) == Decimal("10.13")
        assert round_to_cents(Decimal("10.124")) == Decimal("10.12")

    def test_negative_inputs_rejected(self):
        with pytest.raises(ValidationError):
            item("-1", "10")
        with pytest.raises(ValidationError):
            item("1", "-10")
        with pytest.raises(ValidationError):
            item("1", "10", "-5")


class TestComputeTotals:
    """Test document totals."""

    def test_estimate_scenario_with_percent_discount(self):
        """Test 2 x 50 at 10% tax with a 10% discount."""
        totals = compute_totals([item("2", "50", "10")], Decimal("10"), "percent")

        assert totals.sub_total == Decimal("110.00")
        assert totals.discount_amount == Decimal("11.00")
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total == Decimal("99.00")

    @pytest.mark.parametrize("discount", ["0", "5", "12.5", "100"])
    def test_percent_discount_property(self, discount):
        """Test total == S - S*D/100."""
        items = [item(amount="19.99"), item("3", "7.25"), item("1", "100", "20")]
        s = sum(resolve_item_amount(i) for i in items)

        totals = compute_totals(items, Decimal(discount), "percent")

        assert totals.sub_total == s
        assert totals.total == round_to_cents(s - s * Decimal(discount) / 100)

    def test_fixed_discount(self):
        """Test total == S - F."""
        totals = compute_totals([item("4", "25")], Decimal("15"), "fixed")

        assert totals.sub_total == Decimal("100.00")
        assert totals.discount_amount == Decimal("15.00")
        assert totals.total == Decimal("85.00")

    def test_fixed_discount_can_make_total_negative(self):
        """Test that totals are not floored at zero."""
        totals = compute_totals([item("1", "30")], Decimal("50"), "fixed")

        assert totals.total == Decimal("-20.00")

    def test_amount_alias_means_fixed(self):
        totals = compute_totals([item("1", "30")], Decimal("10"), "amount")
        assert totals.total == Decimal("20.00")

    def test_empty_items_are_zero(self):
        totals = compute_totals([], Decimal("10"), "percent")

        assert totals.sub_total == Decimal("0.00")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total == Decimal("0.00")

    def test_tax_is_never_applied_twice(self):
        """Test that tax lives in line amounts only."""
        totals = compute_totals([item("1", "100", "25")])
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total == Decimal("125.00")

    def test_to_params_are_strings(self):
        params = compute_totals([item("1", "10")]).to_params()
        assert params == {
            "sub_total": "10.00",
            "discount_amount": "0.00",
            "tax_amount": "0.00",
            "total": "10.00",
        }


class TestManualTotals:
    """Test the explicit manual-override entry point."""

    def test_sub_total_with_discount(self):
        totals = manual_totals(Decimal("200"), Decimal("10"), "percent")

        assert totals.sub_total == Decimal("200.00")
        assert totals.discount_amount == Decimal("20.00")
        assert totals.total == Decimal("180.00")

    def test_explicit_total_overrides(self):
        totals = manual_totals("200", "10", "percent", total="150")
        assert totals.total == Decimal("150.00")


class TestToDecimal:
    """Test numeric coercion."""

    def test_floats_go_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_and_blank_use_default(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("", Decimal("1")) == Decimal("1")

    @pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity"])
    def test_invalid_values_rejected(self, raw):
        with pytest.raises(ValidationError):
            to_decimal(raw)
