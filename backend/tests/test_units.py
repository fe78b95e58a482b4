"""Fixed-point amount conversion tests."""

from decimal import Decimal

import pytest

from factorchain.chain.units import SCALE, from_minor_units, to_minor_units
from factorchain.middleware.exceptions import ValidationError
from factorchain.models.invoice import MAX_AMOUNT
from factorchain.services.lifecycle import parse_amount


@pytest.mark.unit
class TestToMinorUnits:

    def test_one_and_a_half(self):
        assert to_minor_units("1.5") == 1_500_000_000_000_000_000

    def test_integral_and_decimal_inputs(self):
        assert to_minor_units(10) == 10 * SCALE
        assert to_minor_units(Decimal("0.000000000000000001")) == 1

    def test_float_uses_shortest_repr(self):
        assert to_minor_units(0.1) == 100_000_000_000_000_000

    def test_stored_numeric_with_trailing_zeros(self):
        assert to_minor_units(Decimal("8.000000000000000000")) == 8 * SCALE

    def test_rejects_more_than_eighteen_decimals(self):
        with pytest.raises(ValidationError):
            to_minor_units("0.0000000000000000001")

    @pytest.mark.parametrize("value", ["-1", "NaN", "Infinity", "abc", None])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValidationError):
            to_minor_units(value)


@pytest.mark.unit
class TestFromMinorUnits:

    def test_one_and_a_half_round_trip(self):
        assert from_minor_units(to_minor_units("1.5")) == Decimal("1.5")
        assert str(from_minor_units(1_500_000_000_000_000_000)) == "1.5"

    def test_integral_values_have_no_exponent(self):
        assert str(from_minor_units(10 * SCALE)) == "10"
        assert str(from_minor_units(0)) == "0"

    def test_smallest_unit(self):
        assert from_minor_units(1) == Decimal("1E-18")

    def test_rejects_non_integers(self):
        with pytest.raises(ValidationError):
            from_minor_units("15")
        with pytest.raises(ValidationError):
            from_minor_units(True)


@pytest.mark.unit
class TestParseAmount:
    def test_largest_storable_amount(self):
        largest = "99999999999999999999.999999999999999999"
        assert parse_amount(largest, "Amount") == Decimal(largest)

    @pytest.mark.parametrize("value", [MAX_AMOUNT, "1e21", Decimal(10) ** 30])
    def test_rejects_amounts_the_column_cannot_hold(self, value):
        with pytest.raises(ValidationError) as excinfo:
            parse_amount(value, "Listed price")
        assert excinfo.value.message.startswith("Listed price must be less than")
