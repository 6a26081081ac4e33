from decimal import Decimal

from termfees.shared.utils.money import percentage, round_money, sum_money


class TestRoundMoney:
    """Tests for round_money function."""

    def test_round_half_up(self):
        """Test ROUND_HALF_UP behavior."""
        assert round_money(10.125) == Decimal("10.13")
        assert round_money(10.124) == Decimal("10.12")
        assert round_money(10.115) == Decimal("10.12")  # banker's rounding edge case
        assert round_money(10.145) == Decimal("10.15")

    def test_from_decimal(self):
        assert round_money(Decimal("10.125")) == Decimal("10.13")
        assert round_money(Decimal("99.999")) == Decimal("100.00")

    def test_from_string(self):
        assert round_money("10.125") == Decimal("10.13")
        assert round_money("0.001") == Decimal("0.00")

    def test_from_int(self):
        assert round_money(100) == Decimal("100.00")
        assert round_money(0) == Decimal("0.00")

    def test_negative_ties_round_away_from_zero(self):
        """Credits round to the same magnitude as the matching charge."""
        assert round_money(-10.125) == Decimal("-10.13")
        assert round_money(Decimal("-0.005")) == Decimal("-0.01")
        assert round_money(-10.124) == Decimal("-10.12")

    def test_precision(self):
        """Test that result always has 2 decimal places."""
        assert str(round_money(10)) == "10.00"
        assert str(round_money(10.1)) == "10.10"


class TestSumMoney:
    def test_none_counts_as_zero(self):
        assert sum_money([Decimal("10.00"), None, Decimal("5.50")]) == Decimal("15.50")

    def test_empty(self):
        assert sum_money([]) == Decimal("0.00")

    def test_rounds_result(self):
        assert sum_money([Decimal("0.005"), Decimal("0.005")]) == Decimal("0.01")


class TestPercentage:
    def test_share(self):
        assert percentage(Decimal("250"), Decimal("1000")) == Decimal("25.00")
        assert percentage(Decimal("1"), Decimal("3")) == Decimal("33.33")

    def test_zero_whole(self):
        assert percentage(Decimal("10"), Decimal("0")) == Decimal("0.00")
