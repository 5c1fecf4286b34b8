from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from pay_errors import EmptyReferenceSet, InvalidAmount, MalformedAddress, PrecisionOverflow
from pay_validation import (
    U64_MAX,
    check_precision,
    format_amount,
    fraction_digits,
    is_https_link,
    to_address,
    to_amount,
    to_references,
    to_smallest_unit,
)


def test_to_address_accepts_pubkey_str_and_bytes() -> None:
    pk = Pubkey.new_unique()
    assert to_address(pk) is pk
    assert to_address(str(pk)) == pk
    assert to_address(bytes(pk)) == pk


@pytest.mark.parametrize("value", ["", "abc", "not-base58-0OIl", b"\x01" * 31, b"\x01" * 33, 123])
def test_to_address_rejects_malformed(value) -> None:
    with pytest.raises(MalformedAddress):
        to_address(value)


def test_to_amount_keeps_exact_decimal() -> None:
    assert to_amount("0.1") == Decimal("0.1")
    assert to_amount(3) == Decimal(3)
    assert to_amount(Decimal("2.50")) == Decimal("2.5")


@pytest.mark.parametrize("value", [0.1, True, -1, Decimal("-0.5"), Decimal("NaN"), Decimal("Infinity"), "1e3", " 1"])
def test_to_amount_rejects(value) -> None:
    with pytest.raises(InvalidAmount):
        to_amount(value)


def test_format_amount_does_not_round_long_values() -> None:
    value = Decimal("123456789012345678901234567890.123456789")
    assert format_amount(value) == "123456789012345678901234567890.123456789"
    assert fraction_digits(value) == 9


def test_check_precision() -> None:
    check_precision(Decimal("1.000000001"), 9)
    check_precision(Decimal("1.10"), 1)
    with pytest.raises(PrecisionOverflow):
        check_precision(Decimal("1.0000000001"), 9)


@pytest.mark.parametrize(
    "amount, decimals, units",
    [
        (Decimal("0.01"), 9, 10_000_000),
        (Decimal("1"), 9, 1_000_000_000),
        (Decimal("1E+2"), 6, 100_000_000),
        (Decimal("5.25"), 6, 5_250_000),
        (Decimal("0"), 0, 0),
        (Decimal("7.000"), 0, 7),
    ],
)
def test_to_smallest_unit(amount, decimals, units) -> None:
    assert to_smallest_unit(amount, decimals) == units


def test_to_smallest_unit_refuses_lost_precision_and_overflow() -> None:
    with pytest.raises(PrecisionOverflow):
        to_smallest_unit(Decimal("0.1234567"), 6)
    with pytest.raises(PrecisionOverflow):
        to_smallest_unit(Decimal(U64_MAX) + 1, 0)
    assert to_smallest_unit(Decimal(U64_MAX), 0) == U64_MAX


def test_to_references() -> None:
    a, b = Pubkey.new_unique(), Pubkey.new_unique()
    assert to_references(None) is None
    assert to_references(a) == (a,)
    assert to_references([str(a), b]) == (a, b)
    with pytest.raises(EmptyReferenceSet):
        to_references(())
    with pytest.raises(MalformedAddress):
        to_references([a, "bad"])


def test_is_https_link() -> None:
    assert is_https_link("https://example.com/pay")
    assert not is_https_link("http://example.com/pay")
    assert not is_https_link("https:/nohost")
    assert not is_https_link("example.com")
