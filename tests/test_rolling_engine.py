from decimal import Decimal

from rolling_engine import derive_rolling, fmt_number
from tests.helpers import member


def test_rolling_inverts_fee_and_rate():
    """50,000 fee at 0.5% -> 10,000,000 rolling."""
    c = member("C", casino="0.5", slot="3")

    rolling, error = derive_rolling(Decimal("50000"), c, "casino")
    assert rolling == Decimal("10000000")
    assert error is None

    rolling, error = derive_rolling(Decimal("30000"), c, "slot")
    assert rolling == Decimal("1000000")
    assert error is None


def test_zero_fee_means_zero_rolling_and_no_entry():
    c = member("C", casino="0.5")
    rolling, error = derive_rolling(Decimal("0"), c, "casino")
    assert rolling == 0
    assert error is None


def test_zero_rate_with_fee_is_reported_not_raised():
    """
    fee > 0 but rate 0%: rolling cannot be derived.
    we get a zero-amount self entry that explains why.
    """
    d = member("D", casino="0")
    rolling, error = derive_rolling(Decimal("10000"), d, "casino")

    assert rolling == 0
    assert error is not None
    assert error.role == "self"
    assert error.source == "casino"
    assert error.user_id == "D"
    assert error.amount == 0
    assert "10000" in error.breakdown
    assert "0%" in error.breakdown


def test_fmt_number():
    assert fmt_number(Decimal("1E+7")) == "10000000"
    assert fmt_number(Decimal("0.500")) == "0.5"
    assert fmt_number(Decimal("-1234.250000")) == "-1234.25"
    assert fmt_number(Decimal("-0.0000001")) == "0"
    assert fmt_number(Decimal("3333.3333333333")) == "3333.333333"
    assert fmt_number(0) == "0"


def test_fmt_number_past_28_digits():
    assert fmt_number(Decimal("1E+30")) == "1" + "0" * 30
    assert fmt_number(Decimal("-12345678901234567890123.5")) == "-12345678901234567890123.5"
