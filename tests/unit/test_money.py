"""Unit tests for cents/Decimal conversion"""

import pytest
from decimal import Decimal
from dues_gateway.domain.exceptions import ValidationError
from dues_gateway.domain.money import cents_to_decimal, decimal_to_cents, round_cents


def test_cents_to_decimal():
    assert cents_to_decimal(12345) == Decimal("123.45")
    assert str(cents_to_decimal(25000)) == "250.00"
    assert str(cents_to_decimal(7)) == "0.07"


def test_decimal_to_cents():
    assert decimal_to_cents(Decimal("123.45")) == 12345
    assert decimal_to_cents("750") == 75000
    assert decimal_to_cents(3) == 300


def test_decimal_to_cents_rejects_float():
    with pytest.raises(ValidationError):
        decimal_to_cents(0.1)


def test_decimal_to_cents_rejects_sub_cent_precision():
    with pytest.raises(ValidationError):
        decimal_to_cents("1.005")


def test_decimal_to_cents_rejects_garbage():
    with pytest.raises(ValidationError):
        decimal_to_cents("ten dollars")


def test_round_cents_half_up():
    assert round_cents(Decimal("777.5")) == 778
    assert round_cents(Decimal("777.49")) == 777
