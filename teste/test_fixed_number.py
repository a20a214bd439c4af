from decimal import Decimal

import pytest

from src.infrastructure.utils.fixed_number import FixedNumber


def test_from_display_floors_to_base_units():
    assert FixedNumber.from_display("1.2345678", 6).units == 1_234_567
    assert FixedNumber.from_display(0.1, 24).units == 10 ** 23
    assert FixedNumber.from_display(-5, 6).units == 0


def test_large_24_decimal_amounts_keep_precision():
    amount = FixedNumber.from_display("123456789.123456789123456789", 24)
    assert amount.to_u128() == "123456789123456789123456789000000"
    assert amount.to_decimal() == Decimal("123456789.123456789123456789")


def test_ratio_and_zero():
    usdc = FixedNumber.from_display(1000, 6)
    near = FixedNumber.from_display(10, 24)
    assert usdc.ratio(near) == Decimal(100)
    assert FixedNumber.from_units("0", 24).is_zero()
    with pytest.raises(ZeroDivisionError):
        usdc.ratio(FixedNumber(0, 24))
